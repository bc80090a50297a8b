"""
Store Adapter Contract

Uniform capability surface (count, list_ids, fetch_by_id, insert) over the
store kinds taking part in reconciliation. The diff engine and the resync
executor only depend on this interface.
"""

import logging
from abc import ABC
from typing import Any, Dict, Iterable, List, Optional

from src.monitoring.notifier import DEFAULT_CATEGORY
from src.reconciliation.errors import HostUnavailable
from src.reconciliation.models import EntityCountSnapshot, StoreHost, StoreKind

logger = logging.getLogger(__name__)


class StoreAdapter(ABC):
    """
    Base class for one connection to one store host.

    Subclasses implement the operations their store supports; the others
    raise NotImplementedError. Adapters are opened per call site and closed
    by whoever opened them, typically through ``with``.

    Attributes:
        store_kind: Kind of store behind the adapter
        supports_pagination: Whether list_ids honours offset/limit natively
    """

    store_kind: StoreKind
    supports_pagination = False

    def __init__(
        self,
        host: StoreHost,
        namespace: str,
        notifier=None,
        excluded_entities: Iterable[str] = (),
        timeout: float = 30.0
    ):
        self.host = host
        self.namespace = namespace
        self.notifier = notifier
        self.excluded_entities = frozenset(excluded_entities)
        self.timeout = timeout

    def count(self) -> EntityCountSnapshot:
        """Count records per entity on this host."""
        raise NotImplementedError(f"{self.store_kind.label} does not support count")

    def list_ids(self, entity: str, offset: int = 0, limit: Optional[int] = None) -> List[str]:
        """List record ids of ``entity``, one page when offset/limit are given."""
        raise NotImplementedError(f"{self.store_kind.label} does not support list_ids")

    def fetch_by_id(self, entity: str, record_id: str) -> Dict[str, Any]:
        raise NotImplementedError(f"{self.store_kind.label} does not support fetch_by_id")

    def insert(self, entity: str, record: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError(f"{self.store_kind.label} does not support insert")

    def close(self) -> None:
        """Release the connection."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def is_excluded(self, entity: str) -> bool:
        return entity in self.excluded_entities

    def snapshot(self, counts_by_entity: Dict[str, int]) -> EntityCountSnapshot:
        """Build this host's snapshot; the total is the sum of entity counts."""
        snapshot = EntityCountSnapshot(
            host=str(self.host),
            store_kind=self.store_kind,
            total_record_count=sum(counts_by_entity.values()),
            counts_by_entity=counts_by_entity
        )
        logger.info(
            f"Counted {snapshot.total_record_count} records on {self.store_kind.label} host {self.host}",
            extra={"store_kind": self.store_kind.value, "host": str(self.host)}
        )
        return snapshot

    def host_unavailable(self, error: BaseException) -> HostUnavailable:
        """
        Report a connection/command failure and return the error to raise.

        Usage:
            except redis.RedisError as e:
                raise self.host_unavailable(e) from e
        """
        reason = str(error) or error.__class__.__name__
        logger.error(
            f"{self.store_kind.label} host {self.host} unavailable: {reason}",
            extra={"store_kind": self.store_kind.value, "host": str(self.host)}
        )

        if self.notifier is not None:
            self.notifier.notify(
                f"{self.store_kind.label} host: {self.host} Offline/Unavailable.",
                DEFAULT_CATEGORY,
                {"store_kind": self.store_kind.value, "host": str(self.host), "reason": reason}
            )

        return HostUnavailable(self.store_kind.value, str(self.host), reason)
