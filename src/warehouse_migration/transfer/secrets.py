"""
Secret Manager Access

Resolves transfer credentials stored as Secret Manager secrets.
"""

import logging
from typing import Optional

from google.cloud import secretmanager

from ..errors import CredentialError

logger = logging.getLogger(__name__)


class SecretResolver:
    """Reads the latest version of named secrets in one project."""

    def __init__(
        self,
        project_id: str,
        client: Optional[secretmanager.SecretManagerServiceClient] = None,
    ):
        self.project_id = project_id
        self.client = client or secretmanager.SecretManagerServiceClient()

    def get_secret(self, secret_name: str, version: str = "latest") -> str:
        """
        Return the UTF-8 payload of a secret version, stripped of whitespace.

        Raises:
            CredentialError: If the secret is missing, unreadable or empty
        """
        name = self.client.secret_version_path(self.project_id, secret_name, version)

        try:
            response = self.client.access_secret_version(request={"name": name})
            payload = response.payload.data.decode("UTF-8").strip()
        except Exception as e:
            logger.error(f"Failed to read secret {secret_name} in project {self.project_id}: {e}")
            raise CredentialError(f"Secret {secret_name} could not be read: {e}") from e

        if not payload:
            logger.error(f"Secret {secret_name} in project {self.project_id} is empty")
            raise CredentialError(f"Secret {secret_name} is empty")

        logger.debug(f"Resolved secret {secret_name}")
        return payload
