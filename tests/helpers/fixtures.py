"""Test data fixtures and factory functions."""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

from google.cloud import bigquery, storage_transfer

from warehouse_migration.models.job import MigrationJob

SAMPLE_PROJECT = "test-project"
SAMPLE_BUCKET = "test-landing-bucket"


def create_sample_table_document(
    name: str = "orders",
    s3_bucket: str = "source-s3-bucket",
    prefix: str = "exports/orders",
    column_mapping: Optional[List[Dict[str, str]]] = None,
    **destination_overrides: Any,
) -> Dict[str, Any]:
    """
    Create a table entry as it appears in a job YAML document.

    Args:
        name: Table name
        s3_bucket: Source S3 bucket
        prefix: Source object prefix
        column_mapping: Optional inline column mapping ({"expr", "as"} entries)
        **destination_overrides: Extra destination keys (loadMode, primaryKey, ...)

    Returns:
        Table document dictionary
    """
    destination: Dict[str, Any] = {
        "gcsPrefix": f"staging/{name}/",
        "biglake": {"hivePartitioning": False},
        "finalTable": {"dataset": "final", "table": name},
    }
    if column_mapping is not None:
        destination["columnMapping"] = column_mapping
    destination.update(destination_overrides)

    return {
        "name": name,
        "source": {
            "s3Bucket": s3_bucket,
            "prefix": prefix,
            "format": "PARQUET",
            "schemaSource": "mapping",
        },
        "destination": destination,
    }


def create_sample_job_document(
    tables: Optional[List[Dict[str, Any]]] = None,
    checksum_columns: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Create a job document dictionary using the camelCase keys of job files.

    Args:
        tables: Table documents (default: a single "orders" table)
        checksum_columns: Validation checksum columns (default: none)

    Returns:
        Job document dictionary
    """
    return {
        "projectId": SAMPLE_PROJECT,
        "datasetExternal": "staging",
        "datasetFinal": "final",
        "gcsBucket": SAMPLE_BUCKET,
        "connectionId": "biglake-conn",
        "region": "asia-southeast1",
        "tables": copy.deepcopy(tables) if tables is not None else [create_sample_table_document()],
        "validation": {
            "compareWith": "external",
            "checksumColumns": list(checksum_columns or []),
            "sampleRatio": 0.1,
        },
    }


def create_sample_job(
    tables: Optional[List[Dict[str, Any]]] = None,
    checksum_columns: Optional[List[str]] = None,
) -> MigrationJob:
    """Create a validated MigrationJob."""
    return MigrationJob.model_validate(create_sample_job_document(tables, checksum_columns))


def create_mock_query_job(
    rows: Optional[List[Dict[str, Any]]] = None,
    num_dml_affected_rows: Optional[int] = None,
    error_result: Optional[Dict[str, Any]] = None,
) -> Mock:
    """
    Create a mock BigQuery query job.

    Args:
        rows: Rows returned by result()
        num_dml_affected_rows: Rows affected by a DML statement
        error_result: Job error payload (None for a successful job)

    Returns:
        Mock QueryJob
    """
    mock_job = Mock(spec=bigquery.QueryJob)
    mock_job.result.return_value = list(rows or [])
    mock_job.num_dml_affected_rows = num_dml_affected_rows
    mock_job.error_result = error_result
    return mock_job


def create_mock_schema_table(columns: List[str]) -> Mock:
    """Create a mock BigQuery table whose schema has the given column names."""
    mock_table = Mock(spec=bigquery.Table)
    mock_table.schema = [bigquery.SchemaField(name, "STRING") for name in columns]
    return mock_table


def create_transfer_job_status(
    status: Any = storage_transfer.TransferJob.Status.ENABLED,
    latest_operation_name: str = "transferOperations/op-123",
) -> Mock:
    """Create a mock TransferJob as returned by get_transfer_job."""
    mock_job = Mock()
    mock_job.status = status
    mock_job.latest_operation_name = latest_operation_name
    return mock_job


def create_transfer_operation(
    done: bool = True,
    error_code: int = 0,
    error_message: str = "",
) -> Mock:
    """Create a mock long-running operation for a transfer run."""
    mock_operation = Mock()
    mock_operation.done = done
    mock_operation.HasField.return_value = error_code != 0
    mock_operation.error.code = error_code
    mock_operation.error.message = error_message
    return mock_operation
