from __future__ import annotations

import os
import sys
from pathlib import Path

import anyio


def ensure_src_on_sys_path(repo_root: Path) -> None:
    """Allow running this script directly (e.g., from PyCharm) without installing the package."""
    src_dir = repo_root / "src"
    src_str = str(src_dir)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


def parse_bool(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def normalize_call_tool_result(result: object) -> str:
    """
    `FastMCP.call_tool()` may return:
    - a list of MCP ContentBlocks (TextContent carrying the tool's text), or
    - a `(content_blocks, structured_output)` tuple on newer SDKs.
    """
    if isinstance(result, tuple):
        result = result[0]

    if isinstance(result, list):
        texts: list[str] = []
        for item in result:
            text = getattr(item, "text", None)
            texts.append(text if isinstance(text, str) else str(item))
        return "\n".join(texts)

    return str(result)


async def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    ensure_src_on_sys_path(repo_root)

    # Environment variables are expected to be configured by the IDE/run configuration.
    from fetcher_mcp_server.browser.session import BrowserService
    from fetcher_mcp_server.server import create_server

    urls = sys.argv[1:] or ["https://example.com/"]
    max_length = int(os.environ.get("MAX_LENGTH", "2000"))
    extract_content = parse_bool(os.environ.get("EXTRACT_CONTENT"), default=True)

    mcp = create_server(BrowserService())

    # This calls the MCP tool handlers directly (no MCP host required).
    if len(urls) == 1:
        result = await mcp.call_tool(
            "fetch_url",
            arguments={"url": urls[0], "max_length": max_length, "extract_content": extract_content},
        )
    else:
        result = await mcp.call_tool(
            "fetch_urls",
            arguments={"urls": urls, "max_length": max_length, "extract_content": extract_content},
        )
    print(normalize_call_tool_result(result))

    # No-op unless the browser was kept open (FETCHER_DEBUG=1).
    print(normalize_call_tool_result(await mcp.call_tool("close_browser", arguments={})))


if __name__ == "__main__":
    # Run example:
    #   PYTHONPATH=src python examples/script_run_mcp_tools.py https://example.com/ https://www.python.org/
    anyio.run(main)
