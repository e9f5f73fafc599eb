"""Test helper utilities."""

from .assertions import assert_outcome_failed, assert_outcome_succeeded
from .fixtures import (
    SAMPLE_BUCKET,
    SAMPLE_PROJECT,
    create_mock_query_job,
    create_mock_schema_table,
    create_sample_job,
    create_sample_job_document,
    create_sample_table_document,
    create_transfer_job_status,
    create_transfer_operation,
)
from .mock_gcp import MockBigQueryClient, MockStorageClient, create_mock_bigquery_client

__all__ = [
    # Assertions
    "assert_outcome_failed",
    "assert_outcome_succeeded",
    # Fixtures
    "SAMPLE_BUCKET",
    "SAMPLE_PROJECT",
    "create_mock_query_job",
    "create_mock_schema_table",
    "create_sample_job",
    "create_sample_job_document",
    "create_sample_table_document",
    "create_transfer_job_status",
    "create_transfer_operation",
    # Mocks
    "MockBigQueryClient",
    "MockStorageClient",
    "create_mock_bigquery_client",
]
