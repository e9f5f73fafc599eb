"""
Object Transfer

S3 -> GCS copies through Storage Transfer Service, with credentials from
Secret Manager.
"""

from .coordinator import TransferCoordinator, build_transfer_job, normalize_prefix
from .secrets import SecretResolver

__all__ = [
    "SecretResolver",
    "TransferCoordinator",
    "build_transfer_job",
    "normalize_prefix",
]
