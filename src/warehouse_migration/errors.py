"""
Migration Error Taxonomy

Every failure raised by the migration engine derives from MigrationError so the
orchestrator can turn it into a FAILED table outcome.
"""

from typing import Any, Optional


class MigrationError(Exception):
    """Base class for all migration failures."""


class ConfigError(MigrationError):
    """Job configuration or column-mapping document is missing or malformed."""


class CredentialError(MigrationError):
    """A transfer credential could not be read from Secret Manager."""


class TransferError(MigrationError):
    """Transfer job submission failed or the job ended in an error state."""


class WarehouseError(MigrationError):
    """A BigQuery DDL/DML job failed or reported an error."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class ValidationFailure(MigrationError):
    """Validation ran successfully but the data did not pass."""

    def __init__(self, table_name: str, result: Optional[Any] = None):
        self.table_name = table_name
        self.result = result
        issues = list(getattr(result, "issues", []) or [])
        detail = "; ".join(issues) if issues else "validation did not pass"
        super().__init__(f"Validation failed for {table_name}: {detail}")


class MigrationCancelled(MigrationError):
    """The caller cancelled the run while a table was in flight."""
