"""
Configuration for the Store Resync Service

Builds one ResyncConfig at process start, from environment variables and an
optional YAML file, and hands it to every component.
"""

import os
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

import yaml

from src.reconciliation.errors import ConfigurationError
from src.reconciliation.models import StoreHost, StoreKind

logger = logging.getLogger(__name__)

FAIL_FAST = "fail_fast"
ISOLATE = "isolate"
HOST_FAILURE_POLICIES = (FAIL_FAST, ISOLATE)

# field name -> environment variable
ENV_VARS = {
    "redis_hosts": "REDIS_HOSTS",
    "elastic_hosts": "ELASTIC_HOSTS",
    "rethink_hosts": "RETHINK_HOSTS",
    "backup_redis_host": "BACKUP_STORAGE_REDIS_HOST",
    "database": "DATABASE",
    "schema_version": "SCHEMA_VERSION",
    "elastic_username": "ELASTIC_USERNAME",
    "elastic_password": "ELASTIC_PASSWORD",
    "excluded_entities": "EXCLUDED_ENTITIES",
    "batch_limit": "BATCH_LIMIT",
    "resync_batch_size": "RESYNC_BATCH_SIZE",
    "max_concurrency": "MAX_CONCURRENCY",
    "resync_concurrency": "RESYNC_CONCURRENCY",
    "call_timeout": "CALL_TIMEOUT_SECONDS",
    "host_failure_policy": "HOST_FAILURE_POLICY",
    "store_endpoint": "RESYNC_STORE_ENDPOINT",
    "store_username": "RESYNC_STORE_AUTH_USERNAME",
    "store_password": "RESYNC_STORE_AUTH_PASSWORD",
    "webhook_url": "ERROR_LOG_WEB_HOOK_URL",
    "timeline_endpoint": "GRAPHQL_ENDPOINT_TIMELINE",
    "metrics_port": "METRICS_PORT",
}

_LIST_FIELDS = ("redis_hosts", "elastic_hosts", "rethink_hosts", "excluded_entities")
_INT_FIELDS = ("batch_limit", "resync_batch_size", "max_concurrency", "resync_concurrency", "metrics_port")
_FLOAT_FIELDS = ("call_timeout",)


def _split(value: Any) -> List[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value or [] if str(item).strip()]


@dataclass
class ResyncConfig:
    """
    Settings shared by collectors, the diff engine and the resync executor.

    Attributes:
        redis_hosts: Key-value replica hosts
        elastic_hosts: Search-index replica hosts
        rethink_hosts: Document-store replica hosts
        backup_redis_host: Key-value host used as the baseline
        database: Database name; the store namespace is <database>_db_<schema_version>
        schema_version: Schema version suffix of the namespace
        excluded_entities: Entities left out of every count and diff
        batch_limit: Page size used when enumerating record ids
        resync_batch_size: Records fetched and re-inserted per resync batch
        max_concurrency: Cap on concurrent host/entity calls while counting and diffing
        resync_concurrency: Cap on entities resynced at the same time
        call_timeout: Per-call network timeout in seconds
        host_failure_policy: "fail_fast" aborts the cycle on a host failure,
            "isolate" drops the host from the assessment
    """

    redis_hosts: List[str] = field(default_factory=lambda: ["localhost:6371", "localhost:6372"])
    elastic_hosts: List[str] = field(default_factory=lambda: ["https://localhost:9200"])
    rethink_hosts: List[str] = field(default_factory=lambda: ["localhost:28015"])
    backup_redis_host: str = "localhost:6371"
    database: str = "gorentals"
    schema_version: str = "v4"
    elastic_username: str = "admin"
    elastic_password: str = "admin"
    excluded_entities: List[str] = field(default_factory=lambda: ["wizard_data"])
    batch_limit: int = 1000
    resync_batch_size: int = 2
    max_concurrency: int = 10
    resync_concurrency: int = 8
    call_timeout: float = 30.0
    host_failure_policy: str = FAIL_FAST
    store_endpoint: str = "http://localhost:8080"
    store_username: str = "admin"
    store_password: str = "admin"
    webhook_url: str = ""
    timeline_endpoint: str = ""
    metrics_port: int = 9090

    @property
    def namespace(self) -> str:
        """Database namespace shared by every store kind, e.g. ``gorentals_db_v4``."""
        return f"{self.database}_db_{self.schema_version}"

    @property
    def app_name(self) -> str:
        """Application name recorded on timeline events."""
        return self.database.split("_core")[0]

    @property
    def isolate_host_failures(self) -> bool:
        return self.host_failure_policy == ISOLATE

    def replica_hosts(self, store_kind: StoreKind) -> List[StoreHost]:
        """Configured hosts of one replica store kind, in order."""
        values = {
            StoreKind.KEY_VALUE: self.redis_hosts,
            StoreKind.SEARCH_INDEX: self.elastic_hosts,
            StoreKind.DOCUMENT: self.rethink_hosts,
        }.get(store_kind, [])
        return [StoreHost(value) for value in values]

    @property
    def backup_host(self) -> StoreHost:
        return StoreHost(self.backup_redis_host)

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "ResyncConfig":
        """
        Build a config from a flat mapping of field names.

        Unknown keys are ignored with a warning; list fields accept either a
        list or a comma-separated string.
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}

        for key, value in values.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue
            if value is None:
                continue
            kwargs[key] = cls._coerce(key, value)

        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, base: Optional["ResyncConfig"] = None) -> "ResyncConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            base: Config whose values are kept where no variable is set

        Returns:
            ResyncConfig instance
        """
        environ = os.environ if environ is None else environ
        overrides = {
            name: cls._coerce(name, environ[var])
            for name, var in ENV_VARS.items()
            if environ.get(var) not in (None, "")
        }
        return replace(base or cls(), **overrides)

    @classmethod
    def from_yaml(cls, path: str, environ: Optional[Dict[str, str]] = None) -> "ResyncConfig":
        """
        Load a YAML config file; environment variables override file values.

        Args:
            path: Path to the YAML file
            environ: Mapping to read instead of os.environ

        Raises:
            ConfigurationError: If the file is not a mapping
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping, got {type(data).__name__}")

        logger.info(f"Loaded configuration from {path}")
        return cls.from_env(environ, base=cls.from_dict(data))

    @classmethod
    def _coerce(cls, name: str, value: Any) -> Any:
        try:
            if name in _LIST_FIELDS:
                return _split(value)
            if name in _INT_FIELDS:
                return int(value)
            if name in _FLOAT_FIELDS:
                return float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
        return str(value).strip()

    def apply_vault_credentials(self, vault_client) -> "ResyncConfig":
        """
        Return a copy with store credentials read from Vault.

        Secrets ``elastic-credentials`` and ``record-service-credentials`` are
        expected to hold ``username`` and ``password``.
        """
        elastic = vault_client.get_store_credentials("elastic")
        record_service = vault_client.get_store_credentials("record-service")

        return replace(
            self,
            elastic_username=elastic.get("username", self.elastic_username),
            elastic_password=elastic.get("password", self.elastic_password),
            store_username=record_service.get("username", self.store_username),
            store_password=record_service.get("password", self.store_password),
        )

    def validate(self) -> "ResyncConfig":
        """
        Check settings before a cycle starts.

        Raises:
            ConfigurationError: On the first invalid setting
        """
        for name in ("batch_limit", "resync_batch_size", "max_concurrency", "resync_concurrency"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {getattr(self, name)}")

        if self.call_timeout <= 0:
            raise ConfigurationError(f"call_timeout must be positive, got {self.call_timeout}")

        if self.host_failure_policy not in HOST_FAILURE_POLICIES:
            raise ConfigurationError(
                f"Unknown host_failure_policy: {self.host_failure_policy}. "
                f"Must be one of {list(HOST_FAILURE_POLICIES)}"
            )

        if not self.backup_redis_host:
            raise ConfigurationError("backup_redis_host must be set")

        addresses = [("backup_redis_host", self.backup_redis_host)] + [
            (name, address)
            for name in ("redis_hosts", "elastic_hosts", "rethink_hosts")
            for address in getattr(self, name)
        ]
        for name, address in addresses:
            try:
                StoreHost(address)
            except ValueError as e:
                raise ConfigurationError(f"{name}: {e}") from e

        if not (self.redis_hosts or self.elastic_hosts or self.rethink_hosts):
            raise ConfigurationError("At least one replica host must be configured")

        return self

    def redacted(self) -> Dict[str, Any]:
        """Settings safe to log."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for secret in ("elastic_password", "store_password", "webhook_url"):
            if values.get(secret):
                values[secret] = "***"
        return values
