"""Command-line entry point for LazyMail."""

from __future__ import annotations

import argparse
import sqlite3
import sys
from pathlib import Path

import uvicorn
from pydantic import ValidationError

from lazymail.core import AppSettings, configure_logging, load_app_settings
from lazymail.core.container import ServiceContainer
from lazymail.core.interfaces import ConfigStoreError
from lazymail.runtime import build_container
from lazymail.web import create_app

_STARTUP_ERRORS = (ValidationError, ConfigStoreError, sqlite3.Error)


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="LazyMail automatic reply service")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing LAZYMAIL_ settings.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "poll", "serve"],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Bind address for the serve command (default: server.host setting).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Bind port for the serve command (default: server.port setting).",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return the exit status."""
    command = args.command
    if command == "info":
        return _run_info(settings)
    if command == "poll":
        return _run_poll(settings)
    return _run_serve(settings, host=args.host, port=args.port)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_app_settings(env_file=args.env_file)
    except ValidationError as exc:
        print(f"Invalid settings: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    configure_logging(settings.logging)
    raise SystemExit(execute(args, settings))


def _run_info(settings: AppSettings) -> int:
    print("LazyMail is installed. Configure the mailbox through the API to get started.")
    print(f"Environment: {settings.environment}")
    print(f"Database path: {settings.storage.db_path}")
    print(f"API address: http://{settings.server.host}:{settings.server.port}")
    return 0


def _run_poll(settings: AppSettings) -> int:
    """Run a single poll cycle and report what is waiting for confirmation."""
    container: ServiceContainer | None = None
    try:
        container = build_container(settings)
        monitor = container.resolve("email_monitor")
        responder = container.resolve("auto_responder")
        config_manager = container.resolve("config_manager")
        if not config_manager.current.email.has_credentials:
            print("Email credentials are not configured.", file=sys.stderr)
            return 1
        monitor.poll_once()
        failures = monitor.consecutive_failures
        if failures:
            print("Poll failed; see the activity log for details.", file=sys.stderr)
            return 1
        print(f"Poll complete. {responder.pending_count} reply(ies) awaiting confirmation.")
        return 0
    except _STARTUP_ERRORS as exc:
        print(f"Startup failed: {exc}", file=sys.stderr)
        return 1
    finally:
        if container is not None:
            container.close()


def _run_serve(settings: AppSettings, *, host: str | None, port: int | None) -> int:
    try:
        app = create_app(settings)
    except _STARTUP_ERRORS as exc:
        print(f"Startup failed: {exc}", file=sys.stderr)
        return 1
    uvicorn.run(
        app,
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    main()
