"""
HashiCorp Vault access for billing secrets.

AppRole login from VAULT_ADDR / VAULT_ROLE_ID / VAULT_SECRET_ID, KV v2 reads
scoped under 'clinic/'. Missing configuration fails at startup, not on the
first query.

BILLING_DATABASE_URL, when set, short-circuits Vault for local development
and test databases.
"""

import os
import logging
import threading
from typing import Any, Dict

import hvac
from hvac.exceptions import Forbidden, InvalidPath, Unauthorized

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "clinic"
_DATABASE_URL_ENV = "BILLING_DATABASE_URL"

_client_lock = threading.Lock()
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, Dict[str, Any]] = {}


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    with _client_lock:
        if _vault_client_instance is None:
            _vault_client_instance = VaultClient()
        return _vault_client_instance


def clear_secret_cache() -> None:
    """Forget cached secrets; the next read goes back to Vault."""
    _secret_cache.clear()


class VaultClient:
    """AppRole-authenticated KV v2 reader limited to the clinic/ prefix."""

    def __init__(self, vault_addr: str | None = None, vault_namespace: str | None = None):
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError("VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required")

        self.client = hvac.Client(url=self.vault_addr, namespace=self.vault_namespace or None)
        self._login(role_id, secret_id)

        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

        logger.info("Vault client ready for %s", self.vault_addr)

    def _login(self, role_id: str, secret_id: str) -> None:
        try:
            response = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except (Unauthorized, Forbidden, InvalidPath) as e:
            logger.error("AppRole login rejected: %s", e)
            raise PermissionError(f"AppRole login rejected: {e}") from e
        self.client.token = response["auth"]["client_token"]

    def read_secret(self, path: str) -> Dict[str, Any]:
        """
        Read every field of one secret under clinic/.

        Raises:
            PermissionError: Path missing or not readable with this role
        """
        full_path = f"{_SECRET_PREFIX}/{path}"
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath as e:
            logger.error("Secret path not found: %s", full_path)
            raise PermissionError(f"Secret path '{full_path}' not found in Vault") from e
        except (Unauthorized, Forbidden) as e:
            logger.error("Access denied to secret %s", full_path)
            raise PermissionError(f"Access denied to secret '{full_path}': {e}") from e
        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """
        One field of a secret under clinic/.

        Raises:
            PermissionError: Path missing or not readable
            KeyError: Field not present in the secret
        """
        data = self.read_secret(path)
        if field not in data:
            raise KeyError(
                f"Field '{field}' not found in secret '{_SECRET_PREFIX}/{path}'. "
                f"Available: {', '.join(sorted(data))}"
            )
        return data[field]


def get_database_url() -> str:
    """
    PostgreSQL URL for the ledger.

    BILLING_DATABASE_URL wins when set; otherwise clinic/database:url from
    Vault, cached for the life of the process.
    """
    override = os.getenv(_DATABASE_URL_ENV)
    if override:
        return override

    if "database" not in _secret_cache:
        _secret_cache["database"] = _ensure_vault_client().read_secret("database")

    secret = _secret_cache["database"]
    if "url" not in secret:
        raise KeyError(f"Field 'url' not found in secret '{_SECRET_PREFIX}/database'")
    return secret["url"]
