"""
Warehouse Migration CLI

Runs a migration job document end to end.

Usage:
    python -m warehouse_migration <job.yaml> [options]

Examples:
    # Migrate every table in a job (mapping.json read from config/<table>/)
    python -m warehouse_migration config/orders/job.yaml

    # Reload one table from scratch
    python -m warehouse_migration gs://my-bucket/config/orders/job.yaml --table orders --mode TRUNCATE

    # Three tables at a time, verbose logs
    python -m warehouse_migration config/job.yaml --workers 3 --verbose

Exit codes:
    0  every table succeeded
    1  at least one table failed
    2  the job or settings could not be loaded
"""

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from .config.loader import default_mapping_base, enrich_column_mappings, load_job
from .config.settings import MigrationSettings, load_settings
from .errors import ConfigError
from .models.job import LoadMode, MigrationJob
from .models.results import TableOutcome
from .orchestration.log_sink import PACKAGE_LOGGER, GcsLogSession
from .orchestration.orchestrator import MigrationOrchestrator
from .transfer.coordinator import TransferCoordinator
from .transfer.secrets import SecretResolver
from .validation.validator import TransferValidator
from .warehouse.gateway import WarehouseGateway

# __name__ is "__main__" under python -m; keep CLI records in the package tree.
logger = logging.getLogger(f"{PACKAGE_LOGGER}.cli")

EXIT_SUCCESS = 0
EXIT_TABLE_FAILED = 1
EXIT_CONFIG_ERROR = 2


def setup_logging(verbose: bool = False, level_name: str = "INFO"):
    """Configure logging"""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    # The audit log session may lower package logger levels; the console keeps this one.
    console = logging.StreamHandler()
    console.setLevel(level)
    logging.basicConfig(
        level=level,
        handlers=[console],
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="warehouse_migration",
        description="Migrate S3 tables into BigQuery managed Iceberg tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        'job',
        help='Job document (local path or gs:// URI)'
    )
    parser.add_argument(
        '--table',
        action='append',
        dest='tables',
        metavar='NAME',
        help='Table to migrate (repeatable; default: every table in the job)'
    )
    parser.add_argument(
        '--mode',
        type=str.upper,
        choices=[mode.value for mode in LoadMode],
        help='Load mode for every table (default: table setting, then MIGRATION_LOAD_MODE)'
    )
    parser.add_argument(
        '--workers',
        type=int,
        help='Tables migrated concurrently (default: MIGRATION_MAX_WORKERS or 1)'
    )
    parser.add_argument(
        '--mapping-base',
        help='Directory or gs:// prefix holding <table>/mapping.json '
             '(default: MIGRATION_MAPPING_BASE_URI, then two levels above the job document)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )
    return parser


def build_orchestrator(
    job: MigrationJob,
    settings: MigrationSettings,
    log_session: GcsLogSession,
) -> MigrationOrchestrator:
    """Wire the Google clients for a job into an orchestrator."""
    gateway = WarehouseGateway(
        job.project_id,
        query_timeout=settings.query_timeout,
        location=job.region,
    )
    transfer = TransferCoordinator(
        job.project_id,
        secret_resolver=SecretResolver(settings.secret_project_id or job.project_id),
        poll_interval=settings.transfer_poll_interval,
        max_polls=settings.transfer_max_polls,
        run_now=settings.transfer_run_now,
    )
    return MigrationOrchestrator(
        job,
        gateway,
        transfer,
        validator=TransferValidator(gateway),
        log_session=log_session,
        settings=settings,
    )


def print_report(outcomes: List[TableOutcome]) -> None:
    print()
    print("=" * 70)
    print("Migration Results")
    print("=" * 70)
    for outcome in outcomes:
        marker = "✓" if outcome.succeeded else "✗"
        print(
            f"{marker} {outcome.table}: {outcome.status.value} "
            f"(rows={outcome.rows_transferred}, duration={outcome.duration_seconds:.1f}s)"
        )
        for issue in outcome.issues:
            print(f"    - {issue}")
    print()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except ValueError as e:
        setup_logging(args.verbose)
        logger.error(f"Invalid settings: {e}")
        return EXIT_CONFIG_ERROR

    setup_logging(args.verbose, settings.log_level)

    overrides = {}
    if args.workers is not None:
        if args.workers < 1:
            logger.error("--workers must be at least 1")
            return EXIT_CONFIG_ERROR
        overrides["max_workers"] = args.workers
    if args.mapping_base:
        overrides["mapping_base_uri"] = args.mapping_base
    if overrides:
        settings = settings.model_copy(update=overrides)

    cancel_event = threading.Event()

    def request_cancel(signum, frame):
        logger.warning(f"Received signal {signum}; cancelling in-flight tables")
        cancel_event.set()

    previous_handlers = {
        signum: signal.signal(signum, request_cancel)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }

    log_session = GcsLogSession(settings.log_bucket, settings.log_prefix).open()
    orchestrator = None
    try:
        job = load_job(args.job)
        mapping_base = settings.mapping_base_uri or default_mapping_base(args.job)
        job = enrich_column_mappings(job, mapping_base)

        logger.info(f"Job: {args.job}")
        logger.info(f"Project: {job.project_id}")
        logger.info(f"Tables: {', '.join(args.tables or job.table_names)}")
        logger.info(f"Audit log session: {log_session.session_id}")

        orchestrator = build_orchestrator(job, settings, log_session)
        load_mode = LoadMode(args.mode) if args.mode else None
        outcomes = orchestrator.run(args.tables, cancel_event=cancel_event, load_mode=load_mode)

        print_report(outcomes)
        if all(outcome.succeeded for outcome in outcomes):
            return EXIT_SUCCESS
        return EXIT_TABLE_FAILED

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    finally:
        if orchestrator is not None:
            orchestrator.transfer.close()
        log_session.close()
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


if __name__ == "__main__":
    sys.exit(main())
