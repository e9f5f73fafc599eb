"""Shared pytest fixtures for all tests."""

from __future__ import annotations

from typing import Any, Dict, Generator
from unittest.mock import Mock

import pytest
from dotenv import load_dotenv
from google.cloud import secretmanager, storage_transfer

from warehouse_migration.config.settings import MigrationSettings
from warehouse_migration.models.job import LoadMode, MigrationJob

from tests.helpers.fixtures import create_sample_job, create_sample_job_document
from tests.helpers.mock_gcp import MockBigQueryClient, MockStorageClient


@pytest.fixture(scope="session", autouse=True)
def load_env() -> None:
    """Load environment variables from .env file for all tests."""
    load_dotenv()


@pytest.fixture
def mock_env(monkeypatch: pytest.MonkeyPatch) -> Dict[str, str]:
    """
    Mock environment variables for unit tests.

    Returns:
        Dictionary of mocked environment variables
    """
    env_vars = {
        "MIGRATION_LOG_BUCKET": "test-log-bucket",
        "MIGRATION_LOG_PREFIX": "data-platform/logs",
        "AWS_ACCESS_KEY_SECRET": "aws-access-key-id",
        "AWS_SECRET_KEY_SECRET": "aws-secret-access-key",
        "SECRET_PROJECT_ID": "test-secrets-project",
        "TRANSFER_POLL_INTERVAL": "5",
        "TRANSFER_MAX_POLLS": "12",
        "TRANSFER_RUN_NOW": "false",
        "BQ_QUERY_TIMEOUT": "600",
        "MIGRATION_LOAD_MODE": "APPEND",
        "MIGRATION_MAX_WORKERS": "2",
        "MIGRATION_CHECK_SCHEMA": "false",
        "LOG_LEVEL": "INFO",
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("MIGRATION_MAPPING_BASE_URI", raising=False)

    return env_vars


@pytest.fixture
def settings(mock_env: Dict[str, str]) -> MigrationSettings:
    """Settings with a single worker and no log uploads."""
    return MigrationSettings(
        log_bucket="",
        max_workers=1,
        load_mode=LoadMode.APPEND,
        check_schema_compatibility=False,
    )


@pytest.fixture
def sample_job_document() -> Dict[str, Any]:
    """
    Sample job document for the "orders" table with an inline mapping.

    Returns:
        Dictionary in the camelCase layout of job files
    """
    document = create_sample_job_document()
    document["tables"][0]["destination"]["columnMapping"] = [
        {"expr": "order_id", "as": "order_id"},
        {"expr": "cust_id", "as": "customer_id"},
        {"expr": "amt", "as": "total_amount"},
        {"expr": "created", "as": "order_date"},
    ]
    return document


@pytest.fixture
def sample_job(sample_job_document: Dict[str, Any]) -> MigrationJob:
    """Sample MigrationJob built from sample_job_document."""
    return MigrationJob.model_validate(sample_job_document)


@pytest.fixture
def unmapped_job() -> MigrationJob:
    """Sample MigrationJob whose table has no column mapping yet."""
    return create_sample_job()


@pytest.fixture
def mock_bigquery_client() -> Generator[MockBigQueryClient, None, None]:
    """
    Mock BigQuery client for unit tests.

    Yields:
        Scriptable BigQuery client
    """
    yield MockBigQueryClient()


@pytest.fixture
def mock_storage_client() -> Generator[MockStorageClient, None, None]:
    """
    In-memory GCS storage client for unit tests.

    Yields:
        Mocked storage client
    """
    yield MockStorageClient()


@pytest.fixture
def mock_transfer_client() -> Generator[Mock, None, None]:
    """
    Mock Storage Transfer Service client for unit tests.

    Yields:
        Mocked STS client
    """
    mock_client = Mock(spec=storage_transfer.StorageTransferServiceClient)
    created_job = Mock()
    created_job.name = "transferJobs/test-job"
    mock_client.create_transfer_job.return_value = created_job
    mock_client.transport = Mock()
    yield mock_client


@pytest.fixture
def mock_secret_client() -> Generator[Mock, None, None]:
    """
    Mock Secret Manager client returning one value per secret name.

    Yields:
        Mocked Secret Manager client
    """
    secrets = {
        "aws-access-key-id": b"AKIATESTKEY\n",
        "aws-secret-access-key": b"  test-secret-value  ",
    }

    mock_client = Mock(spec=secretmanager.SecretManagerServiceClient)
    mock_client.secret_version_path.side_effect = (
        lambda project, secret, version: f"projects/{project}/secrets/{secret}/versions/{version}"
    )

    def access_secret_version(request: Dict[str, str]) -> Mock:
        secret_name = request["name"].split("/")[3]
        if secret_name not in secrets:
            raise Exception(f"Secret {secret_name} not found")
        response = Mock()
        response.payload.data = secrets[secret_name]
        return response

    mock_client.access_secret_version.side_effect = access_secret_version
    yield mock_client
