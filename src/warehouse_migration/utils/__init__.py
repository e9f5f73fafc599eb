"""Shared helpers for GCS document access."""

from .gcs import (
    document_exists,
    is_gcs_uri,
    join_uri,
    parent_uri,
    parse_gcs_uri,
    read_text,
    write_text,
)

__all__ = [
    "document_exists",
    "is_gcs_uri",
    "join_uri",
    "parent_uri",
    "parse_gcs_uri",
    "read_text",
    "write_text",
]
