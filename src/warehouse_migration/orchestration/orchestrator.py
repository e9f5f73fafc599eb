"""
Migration Orchestrator

Drives each table through the migration pipeline:

    PENDING -> SCHEMA_RESOLVED -> TABLE_ENSURED -> TRANSFERRED
            -> EXTERNAL_REFRESHED -> LOADED -> VALIDATED -> SUCCEEDED

The first failing stage ends the table as FAILED. Tables of one job run on a
bounded worker pool; a failed table never stops the others.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Union

from ..config.settings import MigrationSettings
from ..errors import ConfigError, MigrationCancelled, MigrationError, ValidationFailure, WarehouseError
from ..models.job import LoadMode, MigrationJob, TableMigration
from ..models.results import (
    MigrationState,
    TableOutcome,
    TransferDescriptor,
    TransferState,
    ValidationResult,
)
from ..schema.resolver import ResolvedSchema, check_schema_compatibility, resolve_schema
from ..transfer.coordinator import TransferCoordinator, normalize_prefix
from ..validation.validator import TransferValidator
from ..warehouse.gateway import WarehouseGateway
from .log_sink import GcsLogSession, table_context

logger = logging.getLogger(__name__)


class _TableRun:
    """Mutable progress of one table while its stages execute."""

    def __init__(self, name: str):
        self.name = name
        self.state = MigrationState.PENDING
        self.start_time = datetime.now()
        self.rows_loaded = 0
        self.transfer_job: Optional[str] = None
        self.validation: Optional[ValidationResult] = None

    def advance(self, state: MigrationState) -> None:
        self.state = state
        logger.info(f"[{self.name}] Stage complete: {state.value}")

    def outcome(self, status: MigrationState, issues: Optional[List[str]] = None) -> TableOutcome:
        rows = self.validation.target_row_count if self.validation else 0
        return TableOutcome(
            table=self.name,
            status=status,
            last_state=self.state,
            start_time=self.start_time,
            end_time=datetime.now(),
            rows_transferred=rows if status == MigrationState.SUCCEEDED else 0,
            issues=issues or [],
            transfer_job=self.transfer_job,
            validation=self.validation,
        )


class MigrationOrchestrator:
    """
    Runs a migration job table by table.

    All collaborators are injected so that a run can be assembled from real
    Google clients (see __main__) or from mocks in tests.
    """

    def __init__(
        self,
        job: MigrationJob,
        gateway: WarehouseGateway,
        transfer: TransferCoordinator,
        validator: Optional[TransferValidator] = None,
        log_session: Optional[GcsLogSession] = None,
        settings: Optional[MigrationSettings] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            job: Enriched migration job
            gateway: BigQuery gateway shared by all tables
            transfer: Storage Transfer coordinator
            validator: Post-load validator (built on the gateway when omitted)
            log_session: Audit log session receiving per-table summaries
            settings: Runtime settings (read from the environment when omitted)
        """
        self.job = job
        self.gateway = gateway
        self.transfer = transfer
        self.validator = validator or TransferValidator(gateway)
        self.log_session = log_session or GcsLogSession()
        self.settings = settings or MigrationSettings()

        self._in_flight: Set[str] = set()
        self._in_flight_lock = threading.Lock()

    def run(
        self,
        table_names: Optional[Sequence[str]] = None,
        cancel_event: Optional[threading.Event] = None,
        load_mode: Optional[LoadMode] = None,
    ) -> List[TableOutcome]:
        """
        Migrate the requested tables (all tables of the job by default).

        Args:
            table_names: Subset of table names to migrate
            cancel_event: Optional event; setting it cancels in-flight tables
            load_mode: Write mode applied to every table, overriding job settings

        Returns:
            One outcome per table, in request order

        Raises:
            ConfigError: If a requested table is not part of the job
        """
        names = list(dict.fromkeys(table_names)) if table_names else self.job.table_names
        unknown = [name for name in names if self.job.get_table(name) is None]
        if unknown:
            raise ConfigError(
                f"Unknown table(s): {', '.join(unknown)}. "
                f"Available tables: {', '.join(self.job.table_names) or 'none'}"
            )

        if not names:
            logger.warning("Migration job has no tables to process")
            return []

        max_workers = max(1, min(self.settings.max_workers, len(names)))
        logger.info(f"Migrating {len(names)} table(s) with {max_workers} worker(s)")

        outcomes: Dict[str, TableOutcome] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_table = {
                executor.submit(self.migrate_table, name, load_mode, cancel_event): name
                for name in names
            }

            for future in as_completed(future_to_table):
                name = future_to_table[future]
                try:
                    outcomes[name] = future.result()
                except Exception as e:
                    logger.error(f"Migration of {name} could not run: {e}")
                    failed_run = _TableRun(name)
                    outcomes[name] = failed_run.outcome(MigrationState.FAILED, [str(e)])
                    self.log_session.write_summary(outcomes[name])

        succeeded = sum(1 for outcome in outcomes.values() if outcome.succeeded)
        logger.info(f"Migration finished: {succeeded}/{len(names)} table(s) succeeded")
        return [outcomes[name] for name in names]

    def migrate_table(
        self,
        table: Union[str, TableMigration],
        load_mode: Optional[LoadMode] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TableOutcome:
        """
        Run every stage for a single table.

        Stage failures never raise; they end the table as FAILED with the
        error message as its only issue. The execution summary is always
        written to the audit log.

        Args:
            table: Table name or TableMigration from the job
            load_mode: Write mode override (table setting, then settings default)
            cancel_event: Optional event checked between stages and while polling

        Returns:
            TableOutcome

        Raises:
            ConfigError: If the table name is not part of the job
            MigrationError: If the same table is already being migrated
        """
        if isinstance(table, str):
            resolved = self.job.get_table(table)
            if resolved is None:
                raise ConfigError(f"Unknown table: {table}")
            table = resolved

        with self._in_flight_lock:
            if table.name in self._in_flight:
                raise MigrationError(f"Table {table.name} is already being migrated")
            self._in_flight.add(table.name)

        try:
            with table_context(table.name):
                outcome = self._execute_stages(table, load_mode, cancel_event)
            self.log_session.write_summary(outcome)
            return outcome
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(table.name)

    def _execute_stages(
        self,
        table: TableMigration,
        load_mode: Optional[LoadMode],
        cancel_event: Optional[threading.Event],
    ) -> TableOutcome:
        run = _TableRun(table.name)
        logger.info(f"Starting migration for table: {table.name}")

        try:
            schema = resolve_schema(table.destination.column_mapping)
            run.advance(MigrationState.SCHEMA_RESOLVED)

            self._check_cancelled(table, cancel_event)
            self._ensure_managed_table(table, schema)
            run.advance(MigrationState.TABLE_ENSURED)

            self._check_cancelled(table, cancel_event)
            run.transfer_job = self._transfer(table, cancel_event)
            run.advance(MigrationState.TRANSFERRED)

            self._check_cancelled(table, cancel_event)
            self._refresh_external_table(table)
            run.advance(MigrationState.EXTERNAL_REFRESHED)

            self._check_cancelled(table, cancel_event)
            run.rows_loaded = self._load(table, schema, load_mode)
            run.advance(MigrationState.LOADED)

            self._check_cancelled(table, cancel_event)
            run.validation = self._validate(table)
            run.advance(MigrationState.VALIDATED)

        except MigrationError as e:
            if isinstance(e, ValidationFailure):
                run.validation = e.result
            logger.error(f"Migration failed for {table.name} after {run.state.value}: {e}")
            return run.outcome(MigrationState.FAILED, [str(e)])
        except Exception as e:
            logger.exception(f"Unexpected error migrating {table.name} after {run.state.value}: {e}")
            return run.outcome(MigrationState.FAILED, [f"Unexpected error: {e}"])

        logger.info(
            f"Migration succeeded for {table.name}: "
            f"{run.validation.target_row_count} rows in managed table"
        )
        return run.outcome(MigrationState.SUCCEEDED)

    @staticmethod
    def _check_cancelled(table: TableMigration, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise MigrationCancelled(f"Migration of {table.name} was cancelled")

    def _ensure_managed_table(self, table: TableMigration, schema: ResolvedSchema) -> None:
        final = table.destination.final_table

        if schema.is_empty:
            # Without a mapping there are no column types to create the table with.
            if not self.gateway.table_exists(final.dataset, final.table):
                raise WarehouseError(
                    f"ensure managed table {final.dataset}.{final.table}",
                    "no column mapping is configured and the table does not exist",
                )
            logger.info(f"Using existing managed table {final.dataset}.{final.table}")
            return

        self.gateway.create_managed_table(
            final.dataset,
            final.table,
            schema.ddl,
            self.job.destination_bucket,
            table.managed_storage_prefix,
            self.job.connection_id,
            self.job.region,
        )

    def _transfer(self, table: TableMigration, cancel_event: Optional[threading.Event]) -> str:
        descriptor = TransferDescriptor(
            source_bucket=table.source.bucket,
            source_prefix=table.source.prefix,
            dest_bucket=self.job.destination_bucket,
            dest_prefix=table.destination.staging_prefix,
            access_key_secret=self.settings.aws_access_key_secret,
            secret_key_secret=self.settings.aws_secret_key_secret,
            description=f"Migration: {table.name}",
        )
        result = self.transfer.execute_transfer(descriptor, cancel_event=cancel_event)

        if result.state == TransferState.CANCELLED:
            raise MigrationCancelled(
                f"Transfer {result.job_name} for {table.name} was cancelled"
            )
        if not result.confirmed:
            logger.warning(
                f"Transfer {result.job_name} for {table.name} not confirmed "
                f"(state={result.state.value}); continuing with objects already staged"
            )
        return result.job_name

    def _refresh_external_table(self, table: TableMigration) -> None:
        staging_prefix = normalize_prefix(table.destination.staging_prefix)
        hive_prefix = None
        if table.destination.biglake.hive_partitioning:
            hive_prefix = (
                table.destination.biglake.hive_partition_uri_prefix
                or f"gs://{self.job.destination_bucket}/{staging_prefix}"
            )

        self.gateway.create_or_refresh_external_table(
            self.job.external_dataset_id,
            table.external_table_name,
            self.job.destination_bucket,
            staging_prefix,
            file_format=table.source.format,
            connection_id=self.job.connection_id,
            region=self.job.region,
            hive_partition_uri_prefix=hive_prefix,
        )

        if self.settings.check_schema_compatibility and table.selected_columns:
            source_columns = self.gateway.get_table_columns(
                self.job.external_dataset_id, table.external_table_name
            )
            compatible, issues = check_schema_compatibility(source_columns, table.selected_columns)
            if not compatible:
                raise ConfigError(
                    f"External table {table.external_table_name} does not match the mapping: "
                    + "; ".join(issues)
                )

    def _key_column(self, table: TableMigration) -> Optional[str]:
        if table.destination.primary_key:
            return table.destination.primary_key
        checksum_columns = self.job.validation.checksum_columns
        return checksum_columns[0] if checksum_columns else None

    def _load(
        self,
        table: TableMigration,
        schema: ResolvedSchema,
        load_mode: Optional[LoadMode],
    ) -> int:
        mode = load_mode or table.destination.load_mode or self.settings.load_mode
        final = table.destination.final_table
        return self.gateway.load_into_managed_table(
            self.job.external_dataset_id,
            table.external_table_name,
            final.dataset,
            final.table,
            schema.select_expression,
            mode=mode,
            merge_key=self._key_column(table),
        )

    def _validate(self, table: TableMigration) -> ValidationResult:
        final = table.destination.final_table
        result = self.validator.validate_transfer(
            self.job.external_dataset_id,
            table.external_table_name,
            final.dataset,
            final.table,
            checksum_columns=self.job.validation.checksum_columns,
            key_column=self._key_column(table),
        )
        if not result.is_valid:
            raise ValidationFailure(table.name, result)
        return result
