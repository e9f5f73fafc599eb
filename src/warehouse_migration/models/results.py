"""
Migration Result Models

Records produced while a table moves through the pipeline: the transfer
descriptor and result, the validation result and the final table outcome.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class MigrationState(str, Enum):
    """Pipeline stage reached by a table, in execution order"""

    PENDING = "PENDING"
    SCHEMA_RESOLVED = "SCHEMA_RESOLVED"
    TABLE_ENSURED = "TABLE_ENSURED"
    TRANSFERRED = "TRANSFERRED"
    EXTERNAL_REFRESHED = "EXTERNAL_REFRESHED"
    LOADED = "LOADED"
    VALIDATED = "VALIDATED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class TransferState(str, Enum):
    """How monitoring of a transfer job ended"""

    SUCCEEDED = "SUCCEEDED"
    DISABLED = "DISABLED"
    DELETED = "DELETED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"


class TransferDescriptor(BaseModel):
    """Source and sink of one S3 -> GCS copy. Built per transfer call."""

    model_config = ConfigDict(frozen=True)

    source_bucket: str
    source_prefix: str = ""
    dest_bucket: str
    dest_prefix: str = ""
    access_key_secret: str = "aws-access-key-id"
    secret_key_secret: str = "aws-secret-access-key"
    description: Optional[str] = None


class TransferResult(BaseModel):
    """Outcome of submitting and monitoring a transfer job"""

    job_name: str
    state: TransferState
    polls: int = 0

    @computed_field  # type: ignore[misc]
    @property
    def confirmed(self) -> bool:
        """True only when the transfer service reported the run as done."""
        return self.state == TransferState.SUCCEEDED


class ValidationResult(BaseModel):
    """
    Result of comparing the staging table with the loaded table.

    checksums_match is None when no checksum columns were configured or the
    row counts already disagreed.
    """

    source_row_count: int = 0
    target_row_count: int = 0
    counts_match: bool = False
    checksums_match: Optional[bool] = None
    issues: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def is_valid(self) -> bool:
        return (
            self.counts_match
            and self.checksums_match is not False
            and not self.issues
        )


class TableOutcome(BaseModel):
    """Terminal record for one table migration"""

    table: str
    status: MigrationState
    last_state: MigrationState
    start_time: datetime
    end_time: datetime
    rows_transferred: int = 0
    issues: List[str] = Field(default_factory=list)
    transfer_job: Optional[str] = None
    validation: Optional[ValidationResult] = None

    @computed_field  # type: ignore[misc]
    @property
    def duration_seconds(self) -> float:
        return round((self.end_time - self.start_time).total_seconds(), 3)

    @property
    def succeeded(self) -> bool:
        return self.status == MigrationState.SUCCEEDED
