"""
Huginn CLI — run and operate the relay.

Usage:
    huginn serve [--host HOST] [--port PORT] [--log-level LEVEL] [--config FILE]
    huginn status [--server-url URL]
    huginn reconnect [--server-url URL]

Commands:
    serve       Load configuration, configure logging and run the relay.
    status      Query /health of a running relay. Exit code 0 when the
                monitor socket is connected, 2 when disconnected, 1 when the
                relay cannot be reached.
    reconnect   Ask a running relay to reconnect to the monitor, e.g. after
                it gave up retrying.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

import requests

from huginn.core.config import HuginnConfig
from huginn.core.errors import ConfigError

logger = logging.getLogger("Huginn.cli")

_DEFAULT_SERVER_URL = "http://127.0.0.1:3000"
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_server_url(server_url: Optional[str]) -> str:
    """
    Return the relay URL.

    Resolution order:
      1. Explicit --server-url argument
      2. HUGINN_SERVER_URL environment variable
      3. http://127.0.0.1:3000
    """
    if server_url:
        return server_url.strip().rstrip("/")
    env_url = os.environ.get("HUGINN_SERVER_URL")
    if env_url and env_url.strip():
        return env_url.strip().rstrip("/")
    return _DEFAULT_SERVER_URL


def configure_logging(level: str, log_file: Optional[str] = None) -> None:
    """Log to stderr (and optionally a file) so stdout stays free for command output."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def load_config(config_path: Optional[str]) -> HuginnConfig:
    if config_path:
        return HuginnConfig.from_yaml(config_path)
    return HuginnConfig.from_env()


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────

def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from huginn.app import create_app

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.log_level:
        overrides["log_level"] = args.log_level
    if overrides:
        try:
            config = HuginnConfig.from_mapping({
                **config.public_dict(),
                "server": {**config.server.model_dump(mode="json"), **overrides},
            })
        except ConfigError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

    configure_logging(config.server.log_level, config.server.log_file)
    logger.info(
        "Starting Huginn relay on %s:%d (monitor=%s)",
        config.server.host,
        config.server.port,
        config.backend.url,
    )
    logger.debug("Effective configuration: %s", json.dumps(config.public_dict()))

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
    )
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    url = _resolve_server_url(args.server_url)
    try:
        response = requests.get(f"{url}/health", timeout=args.timeout_seconds)
        response.raise_for_status()
        health = response.json()
    except (requests.RequestException, ValueError) as exc:
        print(f"Error: relay at {url} is unreachable: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(health, indent=2))
    return 0 if health.get("websocket") == "connected" else 2


def cmd_reconnect(args: argparse.Namespace) -> int:
    url = _resolve_server_url(args.server_url)
    try:
        response = requests.post(f"{url}/backend/reconnect", timeout=args.timeout_seconds)
        response.raise_for_status()
        result = response.json()
    except (requests.RequestException, ValueError) as exc:
        print(f"Error: relay at {url} is unreachable: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0 if result.get("reconnected") else 2


# ─────────────────────────────────────────────────────────────────────────────
# Argument parser
# ─────────────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="huginn",
        description="Huginn relay: MCP tool calls forwarded to a WebSocket monitor.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  huginn serve --port 3000\n"
               "  huginn serve --config huginn.yaml\n"
               "  huginn status\n"
               "  huginn reconnect --server-url http://127.0.0.1:3000\n",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the relay server.")
    serve.add_argument("--host", default=None, help="Host to bind to (default: HUGINN_HOST or 0.0.0.0).")
    serve.add_argument("--port", type=int, default=None, help="Port to bind to (default: HUGINN_PORT or 3000).")
    serve.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (default: HUGINN_LOG_LEVEL or info).",
    )
    serve.add_argument(
        "--config",
        default=None,
        metavar="FILE",
        help="YAML configuration file. Environment variables are used when omitted.",
    )

    for name, help_text in (
        ("status", "Show relay and monitor connection health."),
        ("reconnect", "Ask the relay to reconnect to the monitor."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--server-url",
            type=str,
            default=None,
            metavar="URL",
            help="Relay URL (default: HUGINN_SERVER_URL or http://127.0.0.1:3000).",
        )
        sub.add_argument(
            "--timeout-seconds",
            type=float,
            default=15.0,
            help="HTTP timeout.",
        )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    if args.command == "status":
        return cmd_status(args)
    if args.command == "reconnect":
        return cmd_reconnect(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
