"""
Configuration Module

Runtime settings from the environment and job documents from YAML.
"""

from .loader import (
    default_mapping_base,
    enrich_column_mappings,
    load_job,
    load_mapping_document,
    mapping_document_path,
    parse_job,
)
from .settings import MigrationSettings, load_settings

__all__ = [
    "MigrationSettings",
    "load_settings",
    "default_mapping_base",
    "enrich_column_mappings",
    "load_job",
    "load_mapping_document",
    "mapping_document_path",
    "parse_job",
]
