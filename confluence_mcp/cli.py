"""
Confluence MCP CLI.

Usage:
    confluence-mcp [serve]
    confluence-mcp doctor [--timeout-seconds N]
    python -m confluence_mcp.cli --help

Commands:
    serve       Run the MCP server over stdio (default).
    doctor      Validate the Confluence configuration and probe user/current.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

import requests

from confluence_mcp.core.config import ConfluenceConfig, resolve_profile
from confluence_mcp.mcp.definitions import build_registry
from confluence_mcp.mcp.dispatcher import Dispatcher
from confluence_mcp.mcp.server import McpServer
from confluence_mcp.sdk.client import ConfluenceGateway, api_base_path, build_url, probe_current_user
from confluence_mcp.sdk.errors import ConfluenceError

logger = logging.getLogger("ConfluenceMCP.cli")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str) -> None:
    # stdout carries the protocol; all diagnostics go to stderr.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


async def run_server(config: ConfluenceConfig) -> None:
    async with ConfluenceGateway(config) as gateway:
        dispatcher = Dispatcher(
            build_registry(gateway),
            default_timeout=config.server.tool_call_timeout_seconds,
        )
        resolution = resolve_profile(config)
        if not resolution.ok:
            logger.warning("Confluence is not configured: %s", resolution.error)
        await McpServer(config, dispatcher).serve()


def cmd_serve(args: argparse.Namespace, config: ConfluenceConfig) -> int:
    configure_logging(args.log_level or config.server.log_level)
    logger.info(
        "Starting %s %s (%s)",
        config.server.name,
        config.server.version,
        config.connection.deployment_type,
    )
    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


def cmd_doctor(
    args: argparse.Namespace,
    config: ConfluenceConfig,
    session: Optional[requests.Session] = None,
) -> int:
    conn = config.connection
    resolution = resolve_profile(config)

    print("\nConfluence MCP Doctor")
    print("=" * 50)
    print(f"Base URL: {conn.base_url or '(not set)'}")
    print(f"Deployment type: {conn.deployment_type} ({conn.mode.value})")
    print(f"API base path: {api_base_path(conn.mode)}")
    if conn.is_cloud:
        print(f"Email: {conn.email or '(not set)'}")
    print(f"API token: {'set (redacted)' if conn.api_token.strip() else '(not set)'}")

    if not resolution.ok:
        print(f"Configuration: FAIL ({resolution.error})")
        print()
        return 1
    print("Configuration: PASS")

    probe_url = build_url(resolution.profile, "user/current")
    try:
        user = probe_current_user(config, session=session, timeout=args.timeout_seconds)
    except ConfluenceError as exc:
        print(f"Connectivity check ({probe_url}): FAIL ({exc})")
        print()
        return 1

    display = user.get("displayName") or user.get("username") or user.get("accountId") or "unknown"
    print(f"Connectivity check ({probe_url}): PASS (authenticated as {display})")
    print()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="confluence-mcp",
        description="Confluence MCP server: Confluence pages, spaces and search as MCP tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  confluence-mcp\n"
               "  confluence-mcp serve --log-level debug\n"
               "  confluence-mcp doctor\n",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the MCP server over stdio (default).")
    serve.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default=None,
        help="Override CONFLUENCE_MCP_LOG_LEVEL.",
    )

    doctor = subparsers.add_parser(
        "doctor",
        help="Validate configuration and check connectivity.",
        description=(
            "Validates CONFLUENCE_* settings, prints the resolved profile with\n"
            "secrets redacted and probes user/current with the configured credentials."
        ),
    )
    doctor.add_argument(
        "--timeout-seconds",
        type=float,
        default=None,
        help="HTTP timeout for the connectivity check (default: CONFLUENCE_HTTP_TIMEOUT_SEC).",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = ConfluenceConfig.from_env()

    if args.command == "doctor":
        return cmd_doctor(args, config)
    if args.command in (None, "serve"):
        if args.command is None:
            args.log_level = None
        return cmd_serve(args, config)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
