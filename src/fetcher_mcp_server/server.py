from __future__ import annotations

import argparse
import logging
import os
import sys

from mcp.server.fastmcp import FastMCP

from . import tools
from .browser.session import BrowserService
from .settings import settings
from .utils.logging import configure_logging

configure_logging()
LOGGER = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Fetch web pages through a headless Chromium browser and return their main content "
    "as Markdown (or HTML). Use `fetch_url` for one page, `fetch_urls` for several pages "
    "in parallel, and `close_browser` to save cookies and shut the browser down."
)


def create_server(service: BrowserService | None = None) -> FastMCP:
    """
    Build the FastMCP server with its tools bound to `service`.

    The browser service is owned by the caller; every tool call shares it.
    """
    service = service or BrowserService()
    mcp = FastMCP("fetcher-mcp-server", instructions=INSTRUCTIONS)

    @mcp.tool()
    async def fetch_url(
        url: str,
        timeout: int = 30000,
        wait_until: str = "load",
        extract_content: bool = True,
        max_length: int = 0,
        return_html: bool = False,
        wait_for_navigation: bool = False,
        navigation_timeout: int = 10000,
        disable_media: bool = True,
        debug: bool | None = None,
    ) -> str:
        """Retrieve web page content from a specified URL.

        Args:
        - url: URL to fetch.
        - timeout: Page loading timeout in milliseconds (default 30000).
        - wait_until: When navigation is considered complete: 'load', 'domcontentloaded',
          'networkidle' or 'commit' (default 'load').
        - extract_content: Extract the main article content with readability (default true).
        - max_length: Maximum length of returned content in characters; 0 means no limit.
        - return_html: Return HTML instead of Markdown (default false).
        - wait_for_navigation: Wait for an additional navigation after the initial load,
          useful for sites with anti-bot verification (default false).
        - navigation_timeout: Maximum time to wait for that navigation in milliseconds
          (default 10000).
        - disable_media: Block images, stylesheets, fonts and media (default true).
        - debug: Show the browser window and keep pages open; overrides the server's
          `--debug` flag.

        Returns:
        - Text starting with `Title:`, `URL:` and `Content:` lines. Failed fetches use
          `Title: Error` and an `<error>` note instead of raising.
        """
        options = tools.build_options(
            timeout=timeout,
            wait_until=wait_until,
            extract_content=extract_content,
            max_length=max_length,
            return_html=return_html,
            wait_for_navigation=wait_for_navigation,
            navigation_timeout=navigation_timeout,
            disable_media=disable_media,
            debug=debug,
        )
        return await tools.fetch_url(service, url, options)

    @mcp.tool()
    async def fetch_urls(
        urls: list[str],
        timeout: int = 30000,
        wait_until: str = "load",
        extract_content: bool = True,
        max_length: int = 0,
        return_html: bool = False,
        wait_for_navigation: bool = False,
        navigation_timeout: int = 10000,
        disable_media: bool = True,
        debug: bool | None = None,
    ) -> str:
        """Retrieve web page content from multiple URLs in parallel.

        Args:
        - urls: Array of URLs to fetch (must not be empty).
        - Other options: same meaning and defaults as `fetch_url`, applied to every URL.

        Returns:
        - One block per URL in request order, wrapped in `[webpage N begin]` /
          `[webpage N end]` markers. A failing URL does not affect the others.
        """
        options = tools.build_options(
            timeout=timeout,
            wait_until=wait_until,
            extract_content=extract_content,
            max_length=max_length,
            return_html=return_html,
            wait_for_navigation=wait_for_navigation,
            navigation_timeout=navigation_timeout,
            disable_media=disable_media,
            debug=debug,
        )
        return await tools.fetch_urls(service, urls, options)

    @mcp.tool()
    async def close_browser() -> str:
        """Close the browser instance and clean up resources.

        Cookies and local storage are saved first and restored on the next fetch.
        Safe to call when no browser is running.
        """
        return await tools.close_browser(service)

    return mcp


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fetcher-mcp-server",
        description="MCP server: fetch rendered web pages with Playwright and return Markdown.",
    )
    transport = parser.add_mutually_exclusive_group()
    for flags, value in (
        (("--stdio",), "stdio"),
        (("--sse",), "sse"),
        (("--http", "--streamable-http"), "streamable-http"),
    ):
        transport.add_argument(
            *flags,
            dest="transport",
            action="store_const",
            const=value,
            help=f"Serve over {value}" + (" (default)." if value == "stdio" else "."),
        )
    parser.set_defaults(transport="stdio")

    parser.add_argument("--host", help="Bind host for HTTP/SSE (default: $FASTMCP_HOST or 127.0.0.1).")
    parser.add_argument(
        "--port", type=int, help="Bind port for HTTP/SSE (default: $FASTMCP_PORT or 8000)."
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Show the browser window and keep pages open (overrides FETCHER_DEBUG).",
    )
    return parser


def _resolve_host_port(host: str | None, port: int | None) -> tuple[str, int]:
    host = host or os.environ.get("FASTMCP_HOST") or "127.0.0.1"
    if port is not None:
        return host, port
    try:
        return host, int(os.environ.get("FASTMCP_PORT") or 8000)
    except ValueError:
        return host, 8000


def _stdio_on_terminal() -> bool:
    allowed = os.environ.get("MCP_ALLOW_TTY_STDIO", "").strip().lower() in ("1", "true", "yes")
    return sys.stdin.isatty() and not allowed


def main(argv: list[str] | None = None) -> None:
    """
    Entrypoint for running the MCP server.

    `--debug` launches a visible browser and leaves pages open for inspection
    until `close_browser` is called.
    """
    args = _build_arg_parser().parse_args(argv)

    if args.transport == "stdio" and _stdio_on_terminal():
        print(
            "Error: stdio transport expects an MCP client on stdin/stdout. "
            "Use --http for manual runs, or set MCP_ALLOW_TTY_STDIO=1.",
            file=sys.stderr,
        )
        raise SystemExit(2)

    debug = settings.debug if args.debug is None else args.debug
    if debug:
        LOGGER.warning("Debug mode enabled, Chromium window will be visible")

    mcp = create_server(BrowserService(debug=debug))
    if args.transport != "stdio":
        mcp.settings.host, mcp.settings.port = _resolve_host_port(args.host, args.port)
    mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()
