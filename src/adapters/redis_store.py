"""
Key-Value Store Adapter (Redis)

Keys follow the layout written by the authoritative service:

    database:<namespace>:<entity>        registry key declaring an entity
    <namespace>:<entity>:item:<id>       one record

Redis has no native pagination for key listings, so list_ids returns every
id of an entity in one call.
"""

import logging
from typing import Dict, List, Optional

import redis

from src.adapters.base import StoreAdapter
from src.reconciliation.models import EntityCountSnapshot, StoreKind

logger = logging.getLogger(__name__)


class RedisStore(StoreAdapter):
    """KeyValueStore over one Redis host."""

    store_kind = StoreKind.KEY_VALUE
    supports_pagination = False

    def __init__(self, host, namespace, notifier=None, excluded_entities=(), timeout=30.0):
        super().__init__(host, namespace, notifier, excluded_entities, timeout)

        try:
            self.client = redis.Redis(
                host=host.hostname,
                port=host.port_or(self.store_kind.default_port),
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
                decode_responses=True
            )
            self.client.ping()
        except redis.RedisError as e:
            raise self.host_unavailable(e) from e

        logger.debug(f"Connected to Redis host {host}")

    @property
    def registry_prefix(self) -> str:
        return f"database:{self.namespace}:"

    def item_prefix(self, entity: str) -> str:
        return f"{self.namespace}:{entity}:item:"

    def count(self) -> EntityCountSnapshot:
        """
        Count item keys per declared entity.

        An empty keyspace (INFO KEYSPACE reports no keys) yields an empty
        snapshot without listing keys.
        """
        try:
            keyspace = self.client.info("keyspace")
            if not any(db.get("keys") for db in keyspace.values() if isinstance(db, dict)):
                logger.info(f"No available data on Redis host {self.host}")
                return self.snapshot({})

            keys = self.client.keys("*")
        except redis.RedisError as e:
            raise self.host_unavailable(e) from e

        return self.snapshot(self.count_keys(keys))

    def count_keys(self, keys: List[str]) -> Dict[str, int]:
        """
        Derive per-entity counts from raw key names.

        Items of entities with no registry key are ignored; excluded
        entities are skipped.
        """
        counts: Dict[str, int] = {}

        for key in keys:
            if key.startswith(self.registry_prefix):
                entity = key[len(self.registry_prefix):].split(":")[0]
                if entity and not self.is_excluded(entity):
                    counts.setdefault(entity, 0)

        for key in keys:
            parts = key.split(":", 3)
            if len(parts) == 4 and parts[0] == self.namespace and parts[2] == "item":
                entity = parts[1]
                if entity in counts:
                    counts[entity] += 1

        return counts

    def list_ids(self, entity: str, offset: int = 0, limit: Optional[int] = None) -> List[str]:
        """All ids of ``entity``, sliced when offset/limit are given."""
        prefix = self.item_prefix(entity)

        try:
            keys = self.client.keys(f"{prefix}*")
        except redis.RedisError as e:
            raise self.host_unavailable(e) from e

        record_ids = [key[len(prefix):] for key in keys if key.startswith(prefix)]
        logger.debug(f"Listed {len(record_ids)} {entity} ids on Redis host {self.host}")

        if limit is None:
            return record_ids[offset:]
        return record_ids[offset:offset + limit]

    def close(self) -> None:
        try:
            self.client.close()
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis connection to {self.host}: {e}")
