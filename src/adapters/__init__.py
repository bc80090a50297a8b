"""
Store Adapters

One adapter per store kind behind the StoreAdapter interface, plus a factory
that builds them from a ResyncConfig.

Usage:
    from src.adapters import AdapterFactory

    factory = AdapterFactory(config, notifier)
    with factory(StoreKind.KEY_VALUE, config.backup_host) as store:
        snapshot = store.count()
"""

from src.adapters.base import StoreAdapter
from src.adapters.elastic_store import ElasticStore
from src.adapters.record_service import RecordServiceClient, TimelineRecorder
from src.adapters.redis_store import RedisStore
from src.adapters.rethink_store import RethinkStore
from src.reconciliation.models import StoreHost, StoreKind

__all__ = [
    "AdapterFactory",
    "ElasticStore",
    "RecordServiceClient",
    "RedisStore",
    "RethinkStore",
    "StoreAdapter",
    "TimelineRecorder",
]


class AdapterFactory:
    """
    Builds a connected adapter for a (store kind, host) pair.

    Every adapter gets the config's namespace, exclusion set and call
    timeout, and reports host failures to ``notifier``.
    """

    def __init__(self, config, notifier=None):
        self.config = config
        self.notifier = notifier

    def __call__(self, store_kind: StoreKind, host: StoreHost) -> StoreAdapter:
        config = self.config
        common = dict(
            notifier=self.notifier,
            excluded_entities=config.excluded_entities,
            timeout=config.call_timeout,
        )

        if store_kind is StoreKind.KEY_VALUE:
            return RedisStore(host, config.namespace, **common)
        if store_kind is StoreKind.SEARCH_INDEX:
            return ElasticStore(
                host, config.namespace, config.elastic_username, config.elastic_password, **common
            )
        if store_kind is StoreKind.DOCUMENT:
            return RethinkStore(host, config.namespace, **common)
        if store_kind is StoreKind.AUTHORITATIVE:
            return self.record_service()

        raise ValueError(f"Unsupported store kind: {store_kind}")

    def record_service(self) -> RecordServiceClient:
        config = self.config
        return RecordServiceClient(
            config.store_endpoint,
            config.namespace,
            config.store_username,
            config.store_password,
            timeout=config.call_timeout
        )
