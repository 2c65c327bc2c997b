from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import mcp_server
from .config import resolve_config
from .tools.errors import ConfigurationError
from .tools.manager import ToolManager

log = logging.getLogger("imagegen-mcp")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagegen-mcp",
        description="MCP server exposing OpenAI text-to-image and image-to-image tools over stdio.",
    )
    parser.add_argument(
        "--models",
        nargs="+",
        metavar="MODEL",
        help="Allowed model ids; the first one is the default (default: all known models)",
    )
    parser.add_argument("--config", type=Path, help="Path to the YAML config file")
    parser.add_argument("--log-level", help="Logging level for stderr output (default: INFO)")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the MCP server over stdio (default)")
    subparsers.add_parser(
        "tools",
        help="Print the tool schemas as JSON and exit. Works without an API key.",
    )
    return parser


def setup_logging(level: str) -> None:
    # stdout carries JSON-RPC frames only.
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def tools_command(mgr: ToolManager) -> int:
    print(json.dumps({"tools": mgr.tool_definitions()}, indent=2))
    return 0


def serve_command(mgr: ToolManager) -> int:
    mcp_server.configure(mgr)
    mcp_server.log_startup(mgr)
    try:
        mcp_server.run()
    except KeyboardInterrupt:
        pass
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_dotenv()
    try:
        cfg = resolve_config(
            args.config,
            overrides={"models": args.models, "log_level": args.log_level},
        )
    except ConfigurationError as exc:
        setup_logging(args.log_level or "INFO")
        log.error("Failed to start MCP server: %s", exc)
        sys.exit(1)
    setup_logging(cfg.log_level)
    try:
        mgr = ToolManager.from_config(cfg)
    except ConfigurationError as exc:
        log.error("Failed to start MCP server: %s", exc)
        sys.exit(1)
    command = args.command or "serve"
    if command == "tools":
        sys.exit(tools_command(mgr))
    if command == "serve":
        try:
            sys.exit(serve_command(mgr))
        except OSError as exc:
            log.error("Failed to start MCP server: %s", exc)
            sys.exit(1)
    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
