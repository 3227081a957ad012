"""Command-line interface for devcontrol.

Provides the main entry point for serving the HTTP API and for running
individual gateway operations locally, printing their result as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from devcontrol.domain.models import ActionKind, ActionRequest

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="devcontrol",
        description="Container and database control service",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/devcontrol.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Start the HTTP API server")

    for action in ("start", "stop", "restart"):
        p = subparsers.add_parser(action, help=f"{action.capitalize()} a container")
        p.add_argument("container", help="Container name")

    logs_parser = subparsers.add_parser("logs", help="Show the tail of a container's logs")
    logs_parser.add_argument("container", help="Container name")
    logs_parser.add_argument(
        "-n", "--lines", type=int, default=100,
        help="Number of lines to show (default: 100)",
    )

    subparsers.add_parser("ps", help="List containers")

    backup_parser = subparsers.add_parser("backup", help="Dump the database")
    backup_parser.add_argument(
        "--filename", default="",
        help="Backup file name (default: backup_<UTC timestamp>.sql)",
    )

    restore_parser = subparsers.add_parser("restore", help="Restore the database from a backup")
    restore_parser.add_argument("filename", help="Backup file name in the backup directory")

    subparsers.add_parser("backups", help="List backup files")
    subparsers.add_parser("info", help="Show docker availability and host metrics")

    return parser.parse_args(argv)


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _run_action(gateway, args) -> bool:  # type: ignore[no-untyped-def]
    """Run a single gateway action and print the result."""
    if args.command == "logs":
        request = ActionRequest(
            action=ActionKind.LOGS, target=args.container, options={"lines": args.lines}
        )
    elif args.command in ("backup", "restore"):
        request = ActionRequest(action=ActionKind(args.command), target=args.filename)
    else:
        request = ActionRequest(action=ActionKind(args.command), target=args.container)

    result = await gateway.execute(request)
    if result.error is not None:
        logger.debug("%s failed: %s (%s)", args.command, result.error.value, result.command_line)
    _print_json({
        "success": result.success,
        "message": result.message,
        "output": result.output,
        "exit_code": result.exit_code,
    })
    return result.success


async def _ps(gateway) -> bool:  # type: ignore[no-untyped-def]
    result, containers = await gateway.list_containers()
    _print_json({
        "success": result.success,
        "containers": [c.model_dump() for c in containers],
        "total": len(containers),
    })
    if not result.success:
        print(result.output, file=sys.stderr)
    return result.success


async def _info(gateway) -> bool:  # type: ignore[no-untyped-def]
    from devcontrol.sysinfo import collect_metrics, collect_system_info

    info = await collect_system_info(gateway)
    metrics = await collect_metrics(gateway)
    _print_json({"system": info, "metrics": metrics["metrics"]})
    return info["docker_available"]


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the devcontrol CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from devcontrol.config.settings import load_settings
    from devcontrol.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        logger.info("Starting devcontrol API server")
        from devcontrol.endpoint.server import main as serve
        serve(settings)
        return

    if not settings.enabled:
        print("devcontrol is disabled in the configuration", file=sys.stderr)
        sys.exit(2)

    from devcontrol.gateway.gateway import CommandGateway

    gateway = CommandGateway(
        docker=settings.docker,
        backup=settings.backup,
        db_password=settings.db_password.get_secret_value(),
    )

    if args.command == "ps":
        ok = asyncio.run(_ps(gateway))
    elif args.command == "info":
        ok = asyncio.run(_info(gateway))
    elif args.command == "backups":
        _print_json({
            "backups": [
                {
                    "filename": a.filename,
                    "size_bytes": a.size_bytes,
                    "created_at": a.created_at.isoformat(),
                }
                for a in gateway.list_backups()
            ],
        })
        ok = True
    else:
        ok = asyncio.run(_run_action(gateway, args))

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
