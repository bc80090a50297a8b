"""
Vault Client Utility for the Store Resync Service

Reads store credentials (search cluster, authoritative record service) from
HashiCorp Vault instead of plain environment variables.
"""

import os
import logging
from typing import Any, Dict, Optional

import hvac
from hvac.exceptions import InvalidPath, VaultError

logger = logging.getLogger(__name__)

CREDENTIAL_STORES = ("elastic", "record-service")


class VaultClient:
    """
    Client for store credentials kept in a Vault KV v2 engine.

    Secrets live at ``<mount_point>/data/<store>-credentials``.
    """

    def __init__(
        self,
        vault_url: Optional[str] = None,
        vault_token: Optional[str] = None,
        verify_ssl: bool = True,
        mount_point: str = "secret"
    ):
        """
        Initialize Vault client.

        Args:
            vault_url: Vault server URL (defaults to VAULT_ADDR env var)
            vault_token: Vault token (defaults to VAULT_TOKEN env var)
            verify_ssl: Whether to verify SSL certificates
            mount_point: KV secrets engine mount point

        Raises:
            ValueError: If URL or token are missing
            VaultError: If the client cannot authenticate
        """
        self.vault_url = vault_url or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point

        if not self.vault_url:
            raise ValueError("Vault URL must be provided via parameter or VAULT_ADDR environment variable")

        if not self.vault_token:
            raise ValueError("Vault token must be provided via parameter or VAULT_TOKEN environment variable")

        self.client = hvac.Client(url=self.vault_url, token=self.vault_token, verify=verify_ssl)

        if not self.client.is_authenticated():
            raise VaultError(f"Failed to authenticate with Vault at {self.vault_url}")

        logger.info(f"Connected to Vault at {self.vault_url}")

    def get_secret(self, path: str) -> Dict[str, Any]:
        """
        Read a secret's data.

        Raises:
            InvalidPath: If nothing is stored at ``path``
            VaultError: If the read fails
        """
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.mount_point
            )
        except InvalidPath:
            logger.error(f"Secret not found at path: {path}")
            raise
        except VaultError:
            raise
        except Exception as e:
            logger.error(f"Failed to read secret {path}: {e}")
            raise VaultError(f"Secret retrieval failed: {e}") from e

        if not response or "data" not in response:
            raise InvalidPath(f"No data found at path: {path}")

        return response["data"].get("data", {})

    def get_store_credentials(self, store: str) -> Dict[str, str]:
        """
        Credentials of one store, e.g. ``get_store_credentials("elastic")``.

        Raises:
            ValueError: If ``store`` is not a known credential store
        """
        if store not in CREDENTIAL_STORES:
            raise ValueError(f"Invalid store: {store}. Must be one of {list(CREDENTIAL_STORES)}")

        credentials = self.get_secret(f"{store}-credentials")
        logger.info(f"Retrieved credentials for {store}")
        return credentials

    def close(self):
        self.client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
