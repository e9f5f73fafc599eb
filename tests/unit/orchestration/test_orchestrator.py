"""Unit tests for the migration orchestrator."""

from __future__ import annotations

import threading
from typing import Any, Optional
from unittest.mock import Mock

import pytest
from google.api_core.exceptions import BadRequest

from warehouse_migration.config.settings import MigrationSettings
from warehouse_migration.errors import ConfigError, TransferError
from warehouse_migration.models.job import LoadMode, MigrationJob
from warehouse_migration.models.results import MigrationState, TransferResult, TransferState
from warehouse_migration.orchestration.log_sink import GcsLogSession
from warehouse_migration.orchestration.orchestrator import MigrationOrchestrator
from warehouse_migration.transfer.coordinator import TransferCoordinator
from warehouse_migration.warehouse.gateway import WarehouseGateway
from tests.helpers.assertions import assert_outcome_failed, assert_outcome_succeeded
from tests.helpers.fixtures import create_sample_job, create_sample_table_document
from tests.helpers.mock_gcp import MockBigQueryClient, MockStorageClient

EXTERNAL = "test-project.staging.orders_ext"
MANAGED = "test-project.final.orders"

ORDERS_MAPPING = [
    {"expr": "order_id", "as": "order_id"},
    {"expr": "cust_id", "as": "customer_id"},
    {"expr": "amt", "as": "total_amount"},
]


def transfer_result(state: TransferState = TransferState.SUCCEEDED) -> TransferResult:
    return TransferResult(job_name="transferJobs/test-job", state=state, polls=1)


def script_successful_load(client: MockBigQueryClient, table: str = "orders", rows: int = 500) -> None:
    client.add_row_count(f"test-project.staging.{table}_ext", rows)
    client.add_row_count(f"test-project.final.{table}", rows)
    client.add_response(f"INSERT INTO `test-project.final.{table}`", num_dml_affected_rows=rows)


@pytest.fixture
def mock_transfer() -> Mock:
    transfer = Mock(spec=TransferCoordinator)
    transfer.execute_transfer.return_value = transfer_result()
    return transfer


@pytest.fixture
def orders_job() -> MigrationJob:
    return create_sample_job(tables=[create_sample_table_document(column_mapping=ORDERS_MAPPING)])


def build_orchestrator(
    job: MigrationJob,
    client: MockBigQueryClient,
    transfer: Mock,
    settings: MigrationSettings,
    log_session: Optional[GcsLogSession] = None,
) -> MigrationOrchestrator:
    return MigrationOrchestrator(
        job,
        WarehouseGateway("test-project", client=client),
        transfer,
        log_session=log_session,
        settings=settings,
    )


@pytest.mark.unit
@pytest.mark.orchestration
class TestMigrateTable:
    """Tests for MigrationOrchestrator.migrate_table."""

    def test_orders_end_to_end(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test a 500-row table through every stage."""
        script_successful_load(mock_bigquery_client)
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_succeeded(outcome, rows=500)
        assert outcome.validation.checksums_match is None
        assert outcome.transfer_job == "transferJobs/test-job"
        assert outcome.end_time >= outcome.start_time

        queries = mock_bigquery_client.queries
        assert queries[0].startswith(f"CREATE TABLE IF NOT EXISTS `{MANAGED}`")
        assert "  customer_id STRING,\n  total_amount NUMERIC" in queries[0]
        assert queries[1].startswith(f"CREATE OR REPLACE EXTERNAL TABLE `{EXTERNAL}`")
        assert "uris = ['gs://test-landing-bucket/staging/orders/*']" in queries[1]
        assert queries[2] == (
            f"INSERT INTO `{MANAGED}`\n"
            f"SELECT order_id, cust_id AS customer_id, amt AS total_amount\n"
            f"FROM `{EXTERNAL}`"
        )

    def test_transfer_descriptor(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that the transfer copies the table's S3 prefix into its staging prefix."""
        script_successful_load(mock_bigquery_client)
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        orchestrator.migrate_table("orders")

        descriptor = mock_transfer.execute_transfer.call_args.args[0]
        assert descriptor.source_bucket == "source-s3-bucket"
        assert descriptor.source_prefix == "exports/orders"
        assert descriptor.dest_bucket == "test-landing-bucket"
        assert descriptor.dest_prefix == "staging/orders/"
        assert descriptor.access_key_secret == settings.aws_access_key_secret

    def test_managed_table_failure(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that a DDL failure stops the table before the transfer."""
        mock_bigquery_client.add_response("CREATE TABLE IF NOT EXISTS", error=BadRequest("Invalid connection"))
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_failed(outcome, MigrationState.SCHEMA_RESOLVED, "Invalid connection")
        mock_transfer.execute_transfer.assert_not_called()

    def test_empty_mapping_requires_existing_table(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that an unmapped table fails when the managed table is missing."""
        orchestrator = build_orchestrator(create_sample_job(), mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_failed(outcome, MigrationState.SCHEMA_RESOLVED, "no column mapping")
        assert mock_bigquery_client.queries == []

    def test_empty_mapping_with_existing_table(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that an unmapped table loads every column into an existing table."""
        mock_bigquery_client.add_table("final", "orders", ["order_id"])
        script_successful_load(mock_bigquery_client)
        orchestrator = build_orchestrator(create_sample_job(), mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_succeeded(outcome, rows=500)
        assert mock_bigquery_client.queries_containing("CREATE TABLE") == []
        assert mock_bigquery_client.queries_containing(f"SELECT *\nFROM `{EXTERNAL}`")

    def test_unconfirmed_transfer_continues(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that a timed-out transfer logs a warning and the load proceeds."""
        script_successful_load(mock_bigquery_client)
        mock_transfer.execute_transfer.return_value = transfer_result(TransferState.TIMED_OUT)
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_succeeded(outcome, rows=500)
        assert "not confirmed" in caplog.text

    def test_cancelled_transfer(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that a cancelled transfer fails the table."""
        mock_transfer.execute_transfer.return_value = transfer_result(TransferState.CANCELLED)
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_failed(outcome, MigrationState.TABLE_ENSURED, "cancelled")
        assert mock_bigquery_client.queries_containing("EXTERNAL TABLE") == []

    def test_transfer_error(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that transfer errors fail the table with their message."""
        mock_transfer.execute_transfer.side_effect = TransferError("Transfer job failed: AccessDenied")
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_failed(outcome, MigrationState.TABLE_ENSURED, "AccessDenied")

    def test_validation_failure(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that an invalid validation result fails the table."""
        mock_bigquery_client.add_row_count(EXTERNAL, 100)
        mock_bigquery_client.add_row_count(MANAGED, 97)
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_failed(
            outcome, MigrationState.LOADED, "Row count mismatch: source=100, target=97, diff=3"
        )
        assert outcome.validation is not None
        assert outcome.validation.is_valid is False

    def test_cancel_before_start(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that a set cancel event stops the table between stages."""
        cancel_event = threading.Event()
        cancel_event.set()
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders", cancel_event=cancel_event)

        assert_outcome_failed(outcome, MigrationState.SCHEMA_RESOLVED, "cancelled")
        assert mock_bigquery_client.queries == []

    def test_unknown_table(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that unknown table names raise ConfigError."""
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        with pytest.raises(ConfigError, match="customers"):
            orchestrator.migrate_table("customers")

    def test_same_table_rejected_while_in_flight(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that a table cannot be migrated twice at the same time."""
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        def reenter(descriptor: Any, cancel_event: Any = None) -> TransferResult:
            orchestrator.migrate_table("orders")
            return transfer_result()

        mock_transfer.execute_transfer.side_effect = reenter

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_failed(outcome, MigrationState.TABLE_ENSURED, "already being migrated")

        # The guard is released afterwards
        mock_transfer.execute_transfer.side_effect = None
        script_successful_load(mock_bigquery_client)
        assert orchestrator.migrate_table("orders").succeeded


@pytest.mark.unit
@pytest.mark.orchestration
class TestLoadModes:
    """Tests for load mode and key selection."""

    def test_mode_argument_overrides(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that an explicit mode wins over the settings default."""
        script_successful_load(mock_bigquery_client)
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        orchestrator.migrate_table("orders", load_mode=LoadMode.TRUNCATE)

        assert mock_bigquery_client.queries_containing(f"TRUNCATE TABLE `{MANAGED}`")

    def test_truncate_reload_is_repeatable(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that rerunning a TRUNCATE migration gives the same outcome."""
        script_successful_load(mock_bigquery_client)
        orchestrator = build_orchestrator(orders_job, mock_bigquery_client, mock_transfer, settings)

        first = orchestrator.migrate_table("orders", load_mode=LoadMode.TRUNCATE)
        second = orchestrator.migrate_table("orders", load_mode=LoadMode.TRUNCATE)

        assert first.rows_transferred == second.rows_transferred == 500
        assert first.status == second.status == MigrationState.SUCCEEDED

    def test_table_merge_with_primary_key(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test per-table MERGE on the configured primary key."""
        job = create_sample_job(
            tables=[
                create_sample_table_document(
                    column_mapping=ORDERS_MAPPING, loadMode="MERGE", primaryKey="order_id"
                )
            ]
        )
        mock_bigquery_client.add_table("final", "orders", ["order_id", "customer_id", "total_amount"])
        mock_bigquery_client.add_row_count(EXTERNAL, 500)
        mock_bigquery_client.add_row_count(MANAGED, 500)
        mock_bigquery_client.add_response("MERGE", num_dml_affected_rows=500)
        orchestrator = build_orchestrator(job, mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_succeeded(outcome, rows=500)
        merge_sql = mock_bigquery_client.queries_containing("MERGE")[0]
        assert "ON T.order_id = S.order_id" in merge_sql

    def test_merge_key_falls_back_to_first_checksum_column(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that MERGE without a primary key uses the first checksum column."""
        job = create_sample_job(
            tables=[create_sample_table_document(column_mapping=ORDERS_MAPPING, loadMode="MERGE")],
            checksum_columns=["customer_id"],
        )
        mock_bigquery_client.add_table("final", "orders", ["order_id", "customer_id", "total_amount"])
        orchestrator = build_orchestrator(job, mock_bigquery_client, mock_transfer, settings)

        orchestrator.migrate_table("orders")

        merge_sql = mock_bigquery_client.queries_containing("MERGE")[0]
        assert "ON T.customer_id = S.customer_id" in merge_sql

    def test_merge_without_any_key(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that MERGE with no key fails after the external refresh."""
        job = create_sample_job(
            tables=[create_sample_table_document(column_mapping=ORDERS_MAPPING, loadMode="MERGE")]
        )
        orchestrator = build_orchestrator(job, mock_bigquery_client, mock_transfer, settings)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_failed(outcome, MigrationState.EXTERNAL_REFRESHED, "merge key")


@pytest.mark.unit
@pytest.mark.orchestration
class TestSchemaCompatibilityCheck:
    """Tests for the optional staging schema check."""

    def test_missing_columns_fail(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that missing staging columns fail the table when the check is on."""
        job = create_sample_job(tables=[create_sample_table_document(column_mapping=ORDERS_MAPPING)])
        table = job.tables[0].model_copy(update={"selected_columns": ["order_id", "cust_id", "amt"]})
        job = job.model_copy(update={"tables": [table]})
        mock_bigquery_client.add_table("staging", "orders_ext", ["order_id", "cust_id"])
        checked = settings.model_copy(update={"check_schema_compatibility": True})
        orchestrator = build_orchestrator(job, mock_bigquery_client, mock_transfer, checked)

        outcome = orchestrator.migrate_table("orders")

        assert_outcome_failed(outcome, MigrationState.TRANSFERRED, "Missing columns in source: amt")
        assert mock_bigquery_client.queries_containing("INSERT INTO") == []


@pytest.mark.unit
@pytest.mark.orchestration
class TestRun:
    """Tests for MigrationOrchestrator.run."""

    def two_table_job(self) -> MigrationJob:
        return create_sample_job(
            tables=[
                create_sample_table_document("orders", column_mapping=ORDERS_MAPPING),
                create_sample_table_document(
                    "customers", column_mapping=[{"expr": "id", "as": "customer_id"}]
                ),
            ]
        )

    def test_best_effort(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that one failing table does not stop the others."""
        script_successful_load(mock_bigquery_client, "orders")
        mock_bigquery_client.add_response(
            "CREATE TABLE IF NOT EXISTS `test-project.final.customers`", error=BadRequest("quota")
        )
        orchestrator = build_orchestrator(self.two_table_job(), mock_bigquery_client, mock_transfer, settings)

        outcomes = orchestrator.run()

        assert [o.table for o in outcomes] == ["orders", "customers"]
        assert_outcome_succeeded(outcomes[0], rows=500)
        assert_outcome_failed(outcomes[1], MigrationState.SCHEMA_RESOLVED, "quota")

    def test_concurrent_workers(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test running tables on several workers."""
        script_successful_load(mock_bigquery_client, "orders")
        script_successful_load(mock_bigquery_client, "customers", rows=42)
        parallel = settings.model_copy(update={"max_workers": 4})
        orchestrator = build_orchestrator(self.two_table_job(), mock_bigquery_client, mock_transfer, parallel)

        outcomes = orchestrator.run()

        assert [o.rows_transferred for o in outcomes] == [500, 42]
        assert all(o.succeeded for o in outcomes)

    def test_subset_and_load_mode(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test running a subset of tables with a load mode override."""
        script_successful_load(mock_bigquery_client, "customers", rows=42)
        orchestrator = build_orchestrator(self.two_table_job(), mock_bigquery_client, mock_transfer, settings)

        outcomes = orchestrator.run(["customers"], load_mode=LoadMode.TRUNCATE)

        assert [o.table for o in outcomes] == ["customers"]
        assert mock_bigquery_client.queries_containing("TRUNCATE TABLE `test-project.final.customers`")
        assert mock_bigquery_client.queries_containing("orders") == []

    def test_unknown_table_before_any_work(
        self,
        mock_bigquery_client: MockBigQueryClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that unknown names are rejected before anything runs."""
        orchestrator = build_orchestrator(self.two_table_job(), mock_bigquery_client, mock_transfer, settings)

        with pytest.raises(ConfigError, match="invoices"):
            orchestrator.run(["orders", "invoices"])

        assert mock_bigquery_client.queries == []
        mock_transfer.execute_transfer.assert_not_called()

    def test_summary_written_per_table(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_storage_client: MockStorageClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that each table's log and summary land in GCS."""
        script_successful_load(mock_bigquery_client)
        log_session = GcsLogSession(
            "test-log-bucket", storage_client=mock_storage_client, session_id="20250314_092653_1"
        ).open()
        orchestrator = build_orchestrator(
            orders_job, mock_bigquery_client, mock_transfer, settings, log_session=log_session
        )

        try:
            orchestrator.run()
        finally:
            log_session.close()

        content = mock_storage_client.get_blob_content("test-log-bucket", log_session.blob_path("orders"))
        assert content is not None
        assert "EXECUTION SUMMARY" in content
        assert "Table: orders" in content
        assert "Status: SUCCEEDED" in content
        assert "Rows Transferred: 500" in content
        assert "[INFO] Starting migration for table: orders" in content

    def test_summary_written_when_table_cannot_start(
        self,
        orders_job: MigrationJob,
        mock_bigquery_client: MockBigQueryClient,
        mock_storage_client: MockStorageClient,
        mock_transfer: Mock,
        settings: MigrationSettings,
    ) -> None:
        """Test that a table rejected by run() still gets a FAILED summary."""
        script_successful_load(mock_bigquery_client)
        log_session = GcsLogSession(
            "test-log-bucket", storage_client=mock_storage_client, session_id="20250314_092653_2"
        ).open()
        orchestrator = build_orchestrator(
            orders_job, mock_bigquery_client, mock_transfer, settings, log_session=log_session
        )
        rejected = []

        def run_again(descriptor: Any, cancel_event: Any = None) -> TransferResult:
            rejected.extend(orchestrator.run(["orders"]))
            return transfer_result()

        mock_transfer.execute_transfer.side_effect = run_again

        try:
            outer = orchestrator.run()
        finally:
            log_session.close()

        assert_outcome_succeeded(outer[0], rows=500)
        assert_outcome_failed(rejected[0], MigrationState.PENDING, "already being migrated")

        content = mock_storage_client.get_blob_content("test-log-bucket", log_session.blob_path("orders"))
        assert "Status: FAILED" in content
        assert "Table orders is already being migrated" in content
        assert "Status: SUCCEEDED" in content
