"""
Migration Runtime Settings

Process-level settings for the migration engine, loaded from environment
variables (and a .env file when present). Per-job settings live in the YAML
job document instead (see models.job).
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.job import LoadMode

# Load environment variables
load_dotenv()


class MigrationSettings(BaseModel):
    """
    Settings for the migration engine.

    All values come from environment variables; nothing is hardcoded apart
    from defaults. Transfer credentials are referenced by Secret Manager
    secret name, never by value.
    """

    # Values come from default factories, so validators must run on defaults.
    model_config = ConfigDict(validate_default=True)

    # Audit log sink
    log_bucket: str = Field(
        default_factory=lambda: os.getenv("MIGRATION_LOG_BUCKET", ""),
        description="GCS bucket receiving per-table audit logs (empty = logs are not uploaded)"
    )

    log_prefix: str = Field(
        default_factory=lambda: os.getenv("MIGRATION_LOG_PREFIX", "data-platform/logs"),
        description="Object prefix for audit logs inside the log bucket"
    )

    log_level: str = Field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"),
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # Transfer credentials (Secret Manager secret names)
    aws_access_key_secret: str = Field(
        default_factory=lambda: os.getenv("AWS_ACCESS_KEY_SECRET", "aws-access-key-id"),
        description="Secret holding the AWS access key id"
    )

    aws_secret_key_secret: str = Field(
        default_factory=lambda: os.getenv("AWS_SECRET_KEY_SECRET", "aws-secret-access-key"),
        description="Secret holding the AWS secret access key"
    )

    secret_project_id: str = Field(
        default_factory=lambda: os.getenv("SECRET_PROJECT_ID", ""),
        description="Project owning the secrets (empty = the job's project)"
    )

    # Transfer monitoring
    transfer_poll_interval: float = Field(
        default_factory=lambda: float(os.getenv("TRANSFER_POLL_INTERVAL", "60")),
        description="Seconds between transfer status polls"
    )

    transfer_max_polls: int = Field(
        default_factory=lambda: int(os.getenv("TRANSFER_MAX_POLLS", "360")),
        description="Maximum number of transfer status polls before giving up"
    )

    transfer_run_now: bool = Field(
        default_factory=lambda: os.getenv("TRANSFER_RUN_NOW", "true").lower() == "true",
        description="Explicitly start a transfer run right after creating the job"
    )

    # Warehouse
    query_timeout: float = Field(
        default_factory=lambda: float(os.getenv("BQ_QUERY_TIMEOUT", "1800")),
        description="Seconds to wait for a single BigQuery job"
    )

    load_mode: LoadMode = Field(
        default_factory=lambda: LoadMode(os.getenv("MIGRATION_LOAD_MODE", "APPEND").upper()),
        description="Default write mode when a table does not set one"
    )

    # Orchestration
    max_workers: int = Field(
        default_factory=lambda: int(os.getenv("MIGRATION_MAX_WORKERS", "1")),
        description="Number of tables migrated concurrently"
    )

    mapping_base_uri: Optional[str] = Field(
        default_factory=lambda: os.getenv("MIGRATION_MAPPING_BASE_URI") or None,
        description="Directory or gs:// prefix holding <table>/mapping.json documents"
    )

    check_schema_compatibility: bool = Field(
        default_factory=lambda: os.getenv("MIGRATION_CHECK_SCHEMA", "false").lower() == "true",
        description="Compare external table columns with the mapping's selected columns"
    )

    @field_validator("transfer_poll_interval", "query_timeout")
    @classmethod
    def check_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("transfer_max_polls", "max_workers")
    @classmethod
    def check_at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    def validate_required_fields(self) -> None:
        """
        Validate that required settings are set.

        Raises:
            ValueError: If required fields are missing
        """
        required_fields = {
            "aws_access_key_secret": self.aws_access_key_secret,
            "aws_secret_key_secret": self.aws_secret_key_secret,
        }

        missing = [field for field, value in required_fields.items() if not value]

        if missing:
            raise ValueError(
                f"Required configuration missing: {', '.join(missing)}. "
                f"Please set the following environment variables: "
                f"{', '.join(f'{field.upper()}' for field in missing)}"
            )


def load_settings() -> MigrationSettings:
    """
    Load and validate migration settings from the environment.

    Returns:
        MigrationSettings instance

    Raises:
        ValueError: If required configuration is missing or malformed
    """
    settings = MigrationSettings()
    settings.validate_required_fields()
    return settings
