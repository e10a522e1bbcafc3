import re


def sanitize_markdown(markdown: str) -> str:
    """
    Cleans up converted markdown by removing excessive blank lines and trailing whitespace.
    """
    # Indentation is kept: it carries list nesting and code blocks.
    markdown = '\n'.join(line.rstrip() for line in markdown.split('\n'))
    # Replace runs of blank lines with a single one
    markdown = re.sub(r'\n{3,}', '\n\n', markdown)
    return markdown.strip('\n')
