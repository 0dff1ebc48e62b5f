# scorm_mcp/cli.py
from __future__ import annotations

import argparse
import sys
from typing import Any

import anyio
from mcp.server.fastmcp.utilities.logging import configure_logging, get_logger

from scorm_mcp import __version__
from scorm_mcp.orchestrator import Orchestrator
from scorm_mcp.server.stdio import stdio_server
from scorm_mcp.settings import Settings

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scorm-mcp",
        description="SCORM package testing tools over JSON-RPC on stdio.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--topology", choices=["split", "inprocess"], help="where the browser runs")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument("--temp-root", help="root for session workspaces and course folders")
    parser.add_argument("--allow-network", action="store_true", default=None, help="let content load remote URLs")
    parser.add_argument("--headed", action="store_true", help="show the browser window")
    parser.add_argument("--no-chromium-sandbox", action="store_true", help="launch Chromium without its OS sandbox")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    if args.topology:
        overrides["topology"] = args.topology
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.temp_root:
        overrides["temp_root"] = args.temp_root
    if args.allow_network:
        overrides["allow_network"] = True
    if args.headed:
        overrides["headless"] = False
    if args.no_chromium_sandbox:
        overrides["chromium_sandbox"] = False
    return Settings(**overrides)


async def serve(settings: Settings) -> None:
    async with Orchestrator(settings) as app:
        server = app.create_server()
        logger.info("Serving %d tools on stdio (topology=%s)", len(app.router.list_descriptors()), settings.topology)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream)
    logger.info("stdin closed; shut down")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    configure_logging(settings.log_level)
    get_logger("scorm_mcp").setLevel(settings.log_level)
    try:
        anyio.run(serve, settings)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
