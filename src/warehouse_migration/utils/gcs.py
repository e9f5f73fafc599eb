"""
GCS Document Utilities

Helpers for reading job and mapping documents from either a local path or a
gs:// URI, and for writing text blobs (audit logs) to GCS.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

from google.cloud import storage
from google.cloud.exceptions import NotFound

logger = logging.getLogger(__name__)

GCS_SCHEME = "gs://"


def is_gcs_uri(path: str) -> bool:
    return path.startswith(GCS_SCHEME)


def parse_gcs_uri(gcs_uri: str) -> Tuple[str, str]:
    """
    Split a GCS URI into bucket and blob path.

    Args:
        gcs_uri: Full GCS URI (gs://bucket/path/to/object)

    Returns:
        Tuple of (bucket, blob_path)

    Raises:
        ValueError: If the URI is not a gs:// URI or has no object path
    """
    if not gcs_uri or not is_gcs_uri(gcs_uri):
        raise ValueError(f"Invalid GCS path: {gcs_uri}")

    path_without_prefix = gcs_uri[len(GCS_SCHEME):]
    if "/" not in path_without_prefix:
        raise ValueError(f"GCS path has no object name: {gcs_uri}")

    bucket_name, blob_path = path_without_prefix.split("/", 1)
    if not bucket_name or not blob_path:
        raise ValueError(f"Invalid GCS path: {gcs_uri}")
    return bucket_name, blob_path


def join_uri(base: str, *parts: str) -> str:
    """Join path segments onto a local path or gs:// URI."""
    if is_gcs_uri(base):
        segments = [base.rstrip("/")] + [p.strip("/") for p in parts if p]
        return "/".join(segments)
    return str(Path(base).joinpath(*parts))


def parent_uri(path: str, levels: int = 1) -> str:
    """Return the directory `levels` above a local path or gs:// URI."""
    if is_gcs_uri(path):
        bucket_name, blob_path = parse_gcs_uri(path)
        segments = blob_path.rstrip("/").split("/")
        kept = segments[: max(len(segments) - levels, 0)]
        return f"{GCS_SCHEME}{bucket_name}" + ("/" + "/".join(kept) if kept else "")
    parent = Path(path)
    for _ in range(levels):
        parent = parent.parent
    return str(parent)


def document_exists(path: str, storage_client: Optional[storage.Client] = None) -> bool:
    """Check whether a local file or GCS object exists."""
    if not is_gcs_uri(path):
        return Path(path).is_file()

    bucket_name, blob_path = parse_gcs_uri(path)
    client = storage_client or storage.Client()
    return client.bucket(bucket_name).blob(blob_path).exists()


def read_text(path: str, storage_client: Optional[storage.Client] = None) -> str:
    """
    Read a UTF-8 text document from a local path or GCS.

    Args:
        path: Local filesystem path or gs:// URI
        storage_client: Optional storage client (created on demand for GCS paths)

    Returns:
        Document content

    Raises:
        FileNotFoundError: If the document doesn't exist
        google.cloud.exceptions.GoogleCloudError: If the GCS read fails
    """
    if not is_gcs_uri(path):
        content = Path(path).read_text(encoding="utf-8")
        logger.debug(f"Read {len(content)} bytes from {path}")
        return content

    bucket_name, blob_path = parse_gcs_uri(path)
    client = storage_client or storage.Client()
    blob = client.bucket(bucket_name).blob(blob_path)

    try:
        content = blob.download_as_text(encoding="utf-8")
    except NotFound as e:
        raise FileNotFoundError(f"GCS object not found: {path}") from e

    logger.debug(f"Read {len(content)} bytes from {path}")
    return content


def write_text(
    content: str,
    bucket: str,
    blob_path: str,
    content_type: str = "text/plain",
    storage_client: Optional[storage.Client] = None,
) -> str:
    """
    Upload text content to GCS.

    Args:
        content: Text to upload
        bucket: GCS bucket name (without gs:// prefix)
        blob_path: Object path inside the bucket
        content_type: MIME type stored on the object
        storage_client: Optional storage client

    Returns:
        Full GCS URI where content was written
    """
    client = storage_client or storage.Client()
    blob = client.bucket(bucket).blob(blob_path)
    blob.upload_from_string(content, content_type=content_type)

    gcs_uri = f"{GCS_SCHEME}{bucket}/{blob_path}"
    logger.debug(f"Wrote {len(content)} bytes to {gcs_uri}")
    return gcs_uri
