"""
Migration Job Models

Typed representation of the YAML job document and the per-table column-mapping
document. Keys accept both the camelCase names used in job files and the
snake_case field names; unrecognised keys are ignored so job files can carry
extra settings without code changes.
"""

from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


EXTERNAL_TABLE_SUFFIX = "_ext"


class LoadMode(str, Enum):
    """Write mode used when loading the managed table"""

    APPEND = "APPEND"
    TRUNCATE = "TRUNCATE"
    MERGE = "MERGE"


class _JobModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class ColumnMapping(_JobModel):
    """Projection of one source expression onto a target column"""

    source_expression: str = Field(
        ...,
        validation_alias=AliasChoices("expr", "sourceExpression", "source_expression"),
        description="Expression evaluated against the external table",
    )
    target_name: str = Field(
        ...,
        validation_alias=AliasChoices("as", "targetName", "target_name"),
        description="Column name in the managed table",
    )


def _ensure_unique_targets(mappings: List[ColumnMapping]) -> List[ColumnMapping]:
    seen = set()
    duplicates = []
    for mapping in mappings:
        key = mapping.target_name.lower()
        if key in seen:
            duplicates.append(mapping.target_name)
        seen.add(key)
    if duplicates:
        raise ValueError(f"Duplicate target column names in mapping: {', '.join(duplicates)}")
    return mappings


class MappingDocument(_JobModel):
    """Companion mapping.json document stored next to each table's job file"""

    selected_columns: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("selectedColumns", "selected_columns"),
    )
    column_mapping: List[ColumnMapping] = Field(
        default_factory=list,
        validation_alias=AliasChoices("columnMapping", "column_mapping"),
    )

    @field_validator("column_mapping")
    @classmethod
    def check_unique_targets(cls, mappings: List[ColumnMapping]) -> List[ColumnMapping]:
        return _ensure_unique_targets(mappings)


class SourceSpec(_JobModel):
    """Location of the source objects in S3"""

    bucket: str = Field(..., validation_alias=AliasChoices("s3Bucket", "bucket"))
    prefix: str = ""
    format: str = "PARQUET"
    schema_source: str = Field(
        "mapping", validation_alias=AliasChoices("schemaSource", "schema_source")
    )


class BigLakeOptions(_JobModel):
    """Options applied to the external (staging) table"""

    hive_partitioning: bool = Field(
        False, validation_alias=AliasChoices("hivePartitioning", "hive_partitioning")
    )
    hive_partition_uri_prefix: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("hivePartitionUriPrefix", "hive_partition_uri_prefix"),
    )


class FinalTable(_JobModel):
    dataset: str
    table: str


class DestinationSpec(_JobModel):
    """Where staged objects land and which managed table receives the rows"""

    staging_prefix: str = Field(
        ..., validation_alias=AliasChoices("gcsPrefix", "stagingPrefix", "staging_prefix")
    )
    biglake: BigLakeOptions = Field(
        default_factory=BigLakeOptions,
        validation_alias=AliasChoices("biglake", "biglakeOptions", "biglake_options"),
    )
    final_table: FinalTable = Field(
        ..., validation_alias=AliasChoices("finalTable", "final_table")
    )
    column_mapping: List[ColumnMapping] = Field(
        default_factory=list,
        validation_alias=AliasChoices("columnMapping", "column_mapping"),
    )
    storage_prefix: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("storagePrefix", "storage_prefix"),
        description="GCS prefix holding the managed Iceberg table files",
    )
    load_mode: Optional[LoadMode] = Field(
        None, validation_alias=AliasChoices("loadMode", "load_mode")
    )
    primary_key: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("primaryKey", "primary_key"),
        description="Business key used for MERGE loads and duplicate checks",
    )

    @field_validator("column_mapping")
    @classmethod
    def check_unique_targets(cls, mappings: List[ColumnMapping]) -> List[ColumnMapping]:
        return _ensure_unique_targets(mappings)


class TableMigration(_JobModel):
    """Migration settings for a single table"""

    name: str
    source: SourceSpec
    destination: DestinationSpec
    selected_columns: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("selectedColumns", "selected_columns"),
    )

    @property
    def external_table_name(self) -> str:
        return f"{self.name}{EXTERNAL_TABLE_SUFFIX}"

    @property
    def managed_storage_prefix(self) -> str:
        if self.destination.storage_prefix:
            return self.destination.storage_prefix
        final = self.destination.final_table
        return f"iceberg/{final.dataset}/{final.table}/"


class ValidationPolicy(_JobModel):
    """How loaded data is compared against the staging table"""

    comparison_target: str = Field(
        "external",
        validation_alias=AliasChoices("compareWith", "comparisonTarget", "comparison_target"),
    )
    checksum_columns: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("checksumColumns", "checksum_columns"),
    )
    sample_ratio: float = Field(
        0.0,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("sampleRatio", "sample_ratio"),
    )


class MigrationJob(_JobModel):
    """
    A complete migration job: global settings plus the tables to migrate.

    Immutable once loaded. Column mappings are merged in by building a new
    job (see config.loader.enrich_column_mappings).
    """

    project_id: str = Field(..., validation_alias=AliasChoices("projectId", "project_id"))
    external_dataset_id: str = Field(
        ...,
        validation_alias=AliasChoices(
            "datasetExternal", "externalDatasetId", "external_dataset_id"
        ),
    )
    final_dataset_id: str = Field(
        ...,
        validation_alias=AliasChoices("datasetFinal", "finalDatasetId", "final_dataset_id"),
    )
    destination_bucket: str = Field(
        ...,
        validation_alias=AliasChoices("gcsBucket", "destinationBucket", "destination_bucket"),
    )
    connection_id: str = Field(
        ..., validation_alias=AliasChoices("connectionId", "connection_id")
    )
    region: str = "asia-southeast1"
    tables: List[TableMigration] = Field(default_factory=list)
    validation: ValidationPolicy = Field(default_factory=ValidationPolicy)

    @field_validator("tables")
    @classmethod
    def check_unique_table_names(cls, tables: List[TableMigration]) -> List[TableMigration]:
        names = [t.name for t in tables]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate table names in job: {', '.join(duplicates)}")
        return tables

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def get_table(self, name: str) -> Optional[TableMigration]:
        for table in self.tables:
            if table.name == name:
                return table
        return None
