from __future__ import annotations

import argparse
from pathlib import Path

TRANSPORT_FLAGS = frozenset({"--stdio", "--sse", "--http", "--streamable-http"})


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fetcher-mcp",
        description="Launch the fetcher MCP server from an MCP host.",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    start = commands.add_parser(
        "start-mcp-server",
        help="Start the MCP server (stdio unless a transport flag is forwarded).",
    )
    start.add_argument(
        "--storage-state",
        type=Path,
        help="Session-state file for this run; overrides FETCHER_STORAGE_STATE_PATH.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Everything `start-mcp-server` does not recognise is passed to `fetcher-mcp-server`."""
    from .server import main as server_main
    from .settings import settings

    args, server_argv = _build_arg_parser().parse_known_args(argv)
    if server_argv[:1] == ["--"]:
        server_argv = server_argv[1:]
    if not TRANSPORT_FLAGS.intersection(server_argv):
        server_argv = ["--stdio", *server_argv]

    previous_path = settings.storage_state_path
    if args.storage_state is not None:
        settings.storage_state_path = args.storage_state.expanduser()
    try:
        server_main(server_argv)
    finally:
        settings.storage_state_path = previous_path
