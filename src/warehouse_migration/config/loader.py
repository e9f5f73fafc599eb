"""
Job Document Loader

Reads the YAML job document into a MigrationJob and merges each table's
companion mapping.json into its column mapping. Both documents may live on the
local filesystem or in GCS.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import yaml
from google.cloud import storage
from pydantic import ValidationError

from ..errors import ConfigError
from ..models.job import MappingDocument, MigrationJob, TableMigration
from ..utils.gcs import document_exists, join_uri, parent_uri, read_text

logger = logging.getLogger(__name__)

MAPPING_FILENAME = "mapping.json"


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        problems.append(f"{location or '<root>'}: {item.get('msg')}")
    return "; ".join(problems)


def parse_job(document: Dict[str, Any], source: str = "<memory>") -> MigrationJob:
    """
    Validate a parsed job document.

    Args:
        document: Parsed YAML/JSON document
        source: Where the document came from (for error messages)

    Returns:
        MigrationJob

    Raises:
        ConfigError: If required fields are missing or mistyped
    """
    if not isinstance(document, dict):
        raise ConfigError(f"Job document {source} must be a mapping, got {type(document).__name__}")

    try:
        return MigrationJob.model_validate(document)
    except ValidationError as e:
        raise ConfigError(f"Invalid job document {source}: {_format_validation_error(e)}") from e


def load_job(path: str, storage_client: Optional[storage.Client] = None) -> MigrationJob:
    """
    Load a migration job from a YAML document.

    Args:
        path: Local path or gs:// URI of the job document
        storage_client: Optional storage client for GCS paths

    Returns:
        MigrationJob (column mappings not yet enriched)

    Raises:
        ConfigError: If the document cannot be read, parsed or validated
    """
    logger.info(f"Loading job configuration from {path}")

    try:
        content = read_text(path, storage_client=storage_client)
    except FileNotFoundError as e:
        raise ConfigError(f"Job document not found: {path}") from e
    except Exception as e:
        logger.error(f"Failed to read job document {path}: {e}")
        raise ConfigError(f"Failed to read job document {path}: {e}") from e

    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Job document {path} is not valid YAML: {e}") from e

    job = parse_job(document, source=path)
    logger.info(
        f"Loaded job for project {job.project_id} with {len(job.tables)} table(s): "
        f"{', '.join(job.table_names) or 'none'}"
    )
    return job


def default_mapping_base(job_path: str) -> str:
    """
    Derive the mapping root from the job document location.

    Job documents live at <root>/<table>/job.yaml, so the root is two levels up.
    """
    return parent_uri(job_path, levels=2)


def mapping_document_path(base: str, table_name: str) -> str:
    """Return <base>/<table_name>/mapping.json for a local or gs:// base."""
    return join_uri(base, table_name, MAPPING_FILENAME)


def load_mapping_document(
    path: str,
    storage_client: Optional[storage.Client] = None,
) -> MappingDocument:
    """
    Read and validate a column-mapping document.

    Raises:
        FileNotFoundError: If the document doesn't exist
        ConfigError: If the document is not valid JSON or fails validation
    """
    content = read_text(path, storage_client=storage_client)

    try:
        document = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Mapping document {path} is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise ConfigError(f"Mapping document {path} must be a JSON object")

    try:
        mapping = MappingDocument.model_validate(document)
    except ValidationError as e:
        raise ConfigError(f"Invalid mapping document {path}: {_format_validation_error(e)}") from e

    logger.info(
        f"Read mapping {path}: {len(mapping.selected_columns)} selected column(s), "
        f"{len(mapping.column_mapping)} mapped column(s)"
    )
    return mapping


def enrich_column_mappings(
    job: MigrationJob,
    mapping_base: str,
    storage_client: Optional[storage.Client] = None,
) -> MigrationJob:
    """
    Merge companion mapping documents into tables that have no column mapping.

    Tables that already carry a non-empty mapping are left untouched. A
    missing mapping document is not fatal: the table keeps an empty mapping,
    which means every column is projected.

    Args:
        job: Job as loaded from YAML
        mapping_base: Directory or gs:// prefix containing <table>/mapping.json
        storage_client: Optional storage client for GCS paths

    Returns:
        New MigrationJob with mappings merged

    Raises:
        ConfigError: If a mapping document exists but is malformed
    """
    enriched: List[TableMigration] = []

    for table in job.tables:
        if table.destination.column_mapping:
            logger.debug(f"Table {table.name} already has an inline column mapping")
            enriched.append(table)
            continue

        path = mapping_document_path(mapping_base, table.name)

        try:
            if not document_exists(path, storage_client=storage_client):
                logger.warning(
                    f"No mapping document for table {table.name} at {path}; "
                    f"all columns will be selected"
                )
                enriched.append(table)
                continue
            mapping = load_mapping_document(path, storage_client=storage_client)
        except FileNotFoundError:
            logger.warning(
                f"No mapping document for table {table.name} at {path}; "
                f"all columns will be selected"
            )
            enriched.append(table)
            continue
        except ConfigError:
            logger.error(f"Malformed mapping document for table {table.name}: {path}")
            raise
        except Exception as e:
            logger.error(f"Failed to read mapping document {path}: {e}")
            raise ConfigError(f"Failed to read mapping document {path}: {e}") from e

        destination = table.destination.model_copy(
            update={"column_mapping": list(mapping.column_mapping)}
        )
        enriched.append(
            table.model_copy(
                update={
                    "destination": destination,
                    "selected_columns": list(mapping.selected_columns),
                }
            )
        )

    return job.model_copy(update={"tables": enriched})
