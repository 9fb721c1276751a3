"""Command line interface for cfbackup.

USAGE:
    cfbackup serve
    cfbackup backup <type> <name>
    cfbackup restore <type> <name> <filename>
    cfbackup list [--service-type TYPE] [--service-name NAME] [--format table|json]
    cfbackup delete <type> <name> <filename>

Global options --config and --env-file select the JSON config file and the
.env file; CFBACKUP_* environment variables override both.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

import uvicorn

from cfbackup.backup import BackupOrchestrator, BackupScheduler
from cfbackup.config import AppConfig, load_config
from cfbackup.exceptions import BackupError
from cfbackup.logger import Logger, create_logger
from cfbackup.state import Phase
from cfbackup.storage import create_catalog
from cfbackup.web import create_app


def build_logger(config: AppConfig, verbose: bool = False) -> Logger:
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    return create_logger("cfbackup", level=level, include_timestamp=config.logging_timestamp)


def build_orchestrator(config: AppConfig, logger: Logger) -> BackupOrchestrator:
    catalog = create_catalog(config, logger=logger)
    return BackupOrchestrator(config, catalog, logger=logger)


# ============================================================================
# COMMANDS


def cmd_serve(config: AppConfig, logger: Logger) -> int:
    """Run the scheduler and, unless disabled, the REST API."""
    orchestrator = build_orchestrator(config, logger)
    scheduler = BackupScheduler(orchestrator, logger=logger)

    if config.disable_web:
        logger.warning("Web API is disabled, running scheduler only")
        try:
            asyncio.run(_run_scheduler(orchestrator, scheduler))
        except KeyboardInterrupt:
            logger.info("Scheduler interrupted")
        return 0

    app = create_app(orchestrator, config, logger=logger, scheduler=scheduler)
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level=config.log_level.lower())
    return 0


async def _run_scheduler(orchestrator: BackupOrchestrator, scheduler: BackupScheduler) -> None:
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown()
        await orchestrator.shutdown()


async def _run_job(orchestrator: BackupOrchestrator, service_type: str, service_name: str, filename: Optional[str]) -> int:
    service = orchestrator.service(service_type, service_name)
    if filename is None:
        task = await orchestrator.create_backup(service)
    else:
        task = await orchestrator.restore_backup(service, filename)

    state = await task
    print(json.dumps(state.to_dict(), indent=2))
    return 0 if state.phase is Phase.SUCCEEDED else 1


def cmd_backup(config: AppConfig, logger: Logger, service_type: str, service_name: str) -> int:
    """Run one backup in the foreground."""
    return asyncio.run(_run_job(build_orchestrator(config, logger), service_type, service_name, None))


def cmd_restore(config: AppConfig, logger: Logger, service_type: str, service_name: str, filename: str) -> int:
    """Run one restore in the foreground."""
    return asyncio.run(_run_job(build_orchestrator(config, logger), service_type, service_name, filename))


def cmd_list(
    config: AppConfig,
    logger: Logger,
    service_type: Optional[str] = None,
    service_name: Optional[str] = None,
    format: str = "table",
) -> int:
    """List backups of all matching services."""
    orchestrator = build_orchestrator(config, logger)
    records = asyncio.run(orchestrator.list_all_backups(service_type, service_name))

    if format == "json":
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return 0

    if not records:
        print("No services found")
        return 0

    print(f"\n{'Service':<30} {'Filename':<45} {'Size':>12} {'Last modified':<20}")
    print("-" * 110)
    for record in records:
        label = str(record.service.key)
        if not record.files:
            print(f"{label:<30} {'(no backups)':<45}")
        for artifact in record.files:
            modified = artifact.last_modified.strftime("%Y-%m-%d %H:%M:%S")
            print(f"{label:<30} {artifact.filename:<45} {artifact.size:>12} {modified:<20}")

    print(f"\nTotal: {sum(len(r.files) for r in records)} backups")
    return 0


def cmd_delete(config: AppConfig, logger: Logger, service_type: str, service_name: str, filename: str) -> int:
    """Delete one backup."""
    orchestrator = build_orchestrator(config, logger)
    service = orchestrator.service(service_type, service_name)
    asyncio.run(orchestrator.delete_backup(service, filename))
    print(f"Deleted {service.key}/{filename}")
    return 0


# ============================================================================
# ENTRY POINT


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cfbackup",
        description="Backup and restore control plane for bound services",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES:
  Serve the API and run scheduled backups:
    %(prog)s --config config.json serve

  Back up one service now:
    %(prog)s backup postgres orders-db

  Restore a service from a backup:
    %(prog)s restore postgres orders-db orders-db_20250101120000.gz

ENVIRONMENT:
  CFBACKUP_CONFIG, CFBACKUP_USERNAME, CFBACKUP_PASSWORD,
  CFBACKUP_ENCRYPTION_KEY, CFBACKUP_PORT, CFBACKUP_LOG_LEVEL
        """,
    )
    parser.add_argument("--config", "-c", help="JSON config file. Default: config.json if present")
    parser.add_argument("--env-file", help=".env file with CFBACKUP_* variables")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    subparsers.add_parser("serve", help="Run the REST API and the backup scheduler")

    backup = subparsers.add_parser("backup", help="Back up a service and wait for the result")
    backup.add_argument("service_type", help="Service type (postgres, mysql, mongodb, redis)")
    backup.add_argument("service_name", help="Service instance name")

    restore = subparsers.add_parser("restore", help="Restore a service and wait for the result")
    restore.add_argument("service_type")
    restore.add_argument("service_name")
    restore.add_argument("filename", help="Backup filename (from 'list')")

    listing = subparsers.add_parser("list", help="List backups")
    listing.add_argument("--service-type", help="Only services of this type")
    listing.add_argument("--service-name", help="Only services with this name")
    listing.add_argument("--format", choices=["table", "json"], default="table", help="Default: %(default)s")

    delete = subparsers.add_parser("delete", help="Delete a backup")
    delete.add_argument("service_type")
    delete.add_argument("service_name")
    delete.add_argument("filename")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config, args.env_file)
        logger = build_logger(config, args.verbose)

        if args.command == "serve":
            return cmd_serve(config, logger)
        if args.command == "backup":
            return cmd_backup(config, logger, args.service_type, args.service_name)
        if args.command == "restore":
            return cmd_restore(config, logger, args.service_type, args.service_name, args.filename)
        if args.command == "list":
            return cmd_list(config, logger, args.service_type, args.service_name, args.format)
        if args.command == "delete":
            return cmd_delete(config, logger, args.service_type, args.service_name, args.filename)
    except BackupError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
