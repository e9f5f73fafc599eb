"""
Data Models for Warehouse Migration

Pydantic models for job configuration, transfer and validation results.
"""

from .job import (
    BigLakeOptions,
    ColumnMapping,
    DestinationSpec,
    FinalTable,
    LoadMode,
    MappingDocument,
    MigrationJob,
    SourceSpec,
    TableMigration,
    ValidationPolicy,
)
from .results import (
    MigrationState,
    TableOutcome,
    TransferDescriptor,
    TransferResult,
    TransferState,
    ValidationResult,
)

__all__ = [
    "BigLakeOptions",
    "ColumnMapping",
    "DestinationSpec",
    "FinalTable",
    "LoadMode",
    "MappingDocument",
    "MigrationJob",
    "SourceSpec",
    "TableMigration",
    "ValidationPolicy",
    "MigrationState",
    "TableOutcome",
    "TransferDescriptor",
    "TransferResult",
    "TransferState",
    "ValidationResult",
]
