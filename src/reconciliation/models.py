"""
Data Model for Store Reconciliation

Value types produced and consumed during one reconciliation cycle.
Nothing here outlives the cycle that created it.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from src.reconciliation.errors import PartialBatchFailure


class StoreKind(Enum):
    """Kinds of store taking part in reconciliation."""

    KEY_VALUE = "redis"
    SEARCH_INDEX = "elastic"
    DOCUMENT = "rethink"
    AUTHORITATIVE = "record_service"

    @property
    def label(self) -> str:
        """Human-readable name used in notifications."""
        return _STORE_LABELS[self]

    @property
    def default_port(self) -> int:
        return _DEFAULT_PORTS[self]


_STORE_LABELS = {
    StoreKind.KEY_VALUE: "Redis",
    StoreKind.SEARCH_INDEX: "Elastic",
    StoreKind.DOCUMENT: "RethinkDB",
    StoreKind.AUTHORITATIVE: "Re-Sync Store",
}

_DEFAULT_PORTS = {
    StoreKind.KEY_VALUE: 6379,
    StoreKind.SEARCH_INDEX: 9200,
    StoreKind.DOCUMENT: 28015,
    StoreKind.AUTHORITATIVE: 8080,
}

# Diff order across replica clusters; the baseline is a key-value host.
REPLICA_KINDS = (StoreKind.KEY_VALUE, StoreKind.SEARCH_INDEX, StoreKind.DOCUMENT)


@dataclass(frozen=True)
class StoreHost:
    """
    Address of one store instance.

    Accepts ``host:port`` as well as ``scheme://host:port``.
    """

    address: str

    def __post_init__(self):
        object.__setattr__(self, "address", self.address.strip())
        if not self.address:
            raise ValueError("Store host address cannot be empty")
        try:
            self._parts.port
        except ValueError as e:
            raise ValueError(f"Invalid store host address {self.address!r}: {e}") from e

    @classmethod
    def parse_list(cls, value: str) -> List["StoreHost"]:
        """Parse a comma-separated host list, skipping blanks."""
        return [cls(item) for item in value.split(",") if item.strip()]

    @property
    def _parts(self):
        if "://" in self.address:
            return urlsplit(self.address)
        return urlsplit(f"//{self.address}")

    @property
    def scheme(self) -> Optional[str]:
        return self._parts.scheme or None

    @property
    def hostname(self) -> str:
        return self._parts.hostname or self.address

    def port_or(self, default: int) -> int:
        return self._parts.port or default

    def url(self, default_scheme: str = "http") -> str:
        """Address as a URL, adding ``default_scheme`` when none was given."""
        if self.scheme:
            return self.address
        return f"{default_scheme}://{self.address}"

    def __str__(self) -> str:
        return self.address


@dataclass(frozen=True)
class EntityCountSnapshot:
    """Per-entity record counts of one host, taken once per cycle."""

    host: str
    store_kind: StoreKind
    total_record_count: int
    counts_by_entity: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "counts_by_entity", dict(self.counts_by_entity))

    def count_for(self, entity: str) -> Optional[int]:
        return self.counts_by_entity.get(entity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "total_data_count": self.total_record_count,
            "entity_counts": dict(self.counts_by_entity),
        }


@dataclass(frozen=True)
class HostMismatch:
    """A host whose entity counts disagree with the baseline."""

    store_kind: StoreKind
    host: str
    total_record_count: int
    mismatched_entities: Tuple[str, ...]
    counts_by_entity: Mapping[str, int]
    baseline_counts: Mapping[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "db_name": self.store_kind.value,
            "host": self.host,
            "total_data_count": self.total_record_count,
            "out_of_sync_entities": list(self.mismatched_entities),
            "entity_counts": dict(self.counts_by_entity),
            "baseline_counts": dict(self.baseline_counts),
        }


@dataclass(frozen=True)
class HostFailure:
    """A host dropped from an assessment under the isolate failure policy."""

    store_kind: StoreKind
    host: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"db_name": self.store_kind.value, "host": self.host, "reason": self.reason}


@dataclass
class CollectionResult:
    """Snapshots collected for one store kind, in host order."""

    store_kind: StoreKind
    snapshots: List[EntityCountSnapshot] = field(default_factory=list)
    failures: List[HostFailure] = field(default_factory=list)


@dataclass(frozen=True)
class EvaluationState:
    """
    Diff-in-progress threaded through the per-store-kind evaluations.

    Every update returns a new state; an existing state is never modified.
    """

    min_count: int
    out_of_sync_hosts: Tuple[HostMismatch, ...] = ()
    out_of_sync_records: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def observe_total(self, total: int) -> "EvaluationState":
        """Apply the running-minimum rule; ties move to the latest value."""
        if total <= self.min_count:
            return EvaluationState(total, self.out_of_sync_hosts, self.out_of_sync_records)
        return self

    def with_mismatch(self, mismatch: HostMismatch) -> "EvaluationState":
        return EvaluationState(
            self.min_count,
            self.out_of_sync_hosts + (mismatch,),
            self.out_of_sync_records
        )

    def with_records(self, records: Mapping[str, Tuple[str, ...]]) -> "EvaluationState":
        return EvaluationState(self.min_count, self.out_of_sync_hosts, dict(records))


@dataclass(frozen=True)
class SyncAssessment:
    """Outcome of one "collect counts and assess" cycle."""

    database: str
    max_count: int
    min_count: int
    baseline: EntityCountSnapshot
    per_store_kind_snapshots: Mapping[StoreKind, List[EntityCountSnapshot]]
    out_of_sync_hosts: Tuple[HostMismatch, ...] = ()
    out_of_sync_records: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    failed_hosts: Tuple[HostFailure, ...] = ()

    @property
    def is_synchronized(self) -> bool:
        return self.max_count == self.min_count

    @property
    def status(self) -> str:
        return "DBs are synchronized." if self.is_synchronized else "OUT OF SYNC"

    @property
    def total_out_of_sync(self) -> int:
        return sum(len(ids) for ids in self.out_of_sync_records.values())

    def summary(self) -> Dict[str, Any]:
        """Payload sent to the notification sink on a negative verdict."""
        return {
            "database_maximum_data_count": self.max_count,
            "database_minimum_data_count": self.min_count,
            "status": self.status,
            "out_of_sync_hosts": [m.to_dict() for m in self.out_of_sync_hosts],
        }

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "database": self.database,
            "max_count": self.max_count,
            "min_count": self.min_count,
            "status": self.status,
        }
        for kind in REPLICA_KINDS:
            snapshots = self.per_store_kind_snapshots.get(kind, [])
            result[kind.value] = [s.to_dict() for s in snapshots]
        result["backup_storage"] = [self.baseline.to_dict()]
        result["out_of_sync_hosts"] = [m.to_dict() for m in self.out_of_sync_hosts]
        result["out_of_sync_records"] = {
            entity: list(ids) for entity, ids in self.out_of_sync_records.items()
        }
        result["failed_hosts"] = [f.to_dict() for f in self.failed_hosts]
        return result


@dataclass(frozen=True)
class WriteAttribution:
    """Who a re-insert is attributed to in the audit timeline."""

    user_id: str = ""
    user_role_id: str = ""
    company_id: str = ""
    application_id: str = ""
    user_agent: Mapping[str, Any] = field(default_factory=dict)

    def metadata(self, operation: str) -> Dict[str, Any]:
        """
        Timeline metadata for ``operation``.

        The actor key is the past tense of the operation, e.g. ``inserted_by``.
        """
        stem = operation if operation.endswith("e") else operation + "e"
        return {
            "application_id": self.application_id,
            "company_id": self.company_id,
            "user_agent": dict(self.user_agent),
            f"{stem}d_by": {
                "user_id": self.user_id,
                "user_role_id": self.user_role_id,
            },
        }


@dataclass
class TimelineEvent:
    """Audit entry recorded for every re-inserted record."""

    entity: str
    app: str
    operation: str
    record_id: Optional[str]
    success: bool
    metadata: Dict[str, Any]
    record: Dict[str, Any]
    old_data: Dict[str, Any] = field(default_factory=lambda: {"_": ""})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "app": self.app,
            "operation": self.operation,
            "record_id": self.record_id,
            "success": self.success,
            "metadata": self.metadata,
            "record": self.record,
            "old_data": self.old_data,
        }


@dataclass(frozen=True)
class PageProgress:
    """Progress after one page (enumeration) or batch (resync)."""

    entity: str
    batch: int
    batches: int
    retrieved: int
    total: int

    @property
    def percentage(self) -> float:
        if self.batches == 0:
            return 100.0
        return (self.batch / self.batches) * 100

    @property
    def bar(self) -> str:
        filled = min(10, math.floor(self.percentage / 10))
        return "|" * filled + "*" * (10 - filled)


@dataclass
class ResyncResult:
    """Result of the "resync" operation."""

    success: bool
    message: str
    inserted_records: Optional[Dict[str, List[str]]] = None
    partial_failures: List[PartialBatchFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.inserted_records is not None:
            result["inserted_records"] = {
                entity: list(ids) for entity, ids in self.inserted_records.items()
            }
        if self.partial_failures:
            result["partial_failures"] = [f.to_dict() for f in self.partial_failures]
        return result
