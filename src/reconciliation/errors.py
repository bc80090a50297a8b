"""
Error Types for Store Reconciliation

Failures raised while counting, diffing and resyncing replica stores.
Gateway-class errors are retryable: the caller may rerun the cycle once the
upstream host is reachable again.
"""

from typing import List, Optional


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class ConfigurationError(ReconciliationError, ValueError):
    """Raised when the service configuration is invalid."""


class UpstreamGatewayError(ReconciliationError):
    """
    Failure of an upstream store or service.

    Surfaced by the inbound operations as a bad-gateway style error with the
    original failure message.
    """

    status_code = 502
    retryable = True


class HostUnavailable(UpstreamGatewayError):
    """Connection or command failure against a specific store host."""

    def __init__(self, store_kind: str, host: str, reason: str):
        self.store_kind = store_kind
        self.host = host
        self.reason = reason
        super().__init__(reason)

    def __repr__(self) -> str:
        return f"HostUnavailable(store_kind={self.store_kind!r}, host={self.host!r}, reason={self.reason!r})"


class UpstreamRejected(UpstreamGatewayError):
    """The authoritative record service refused a fetch or insert."""

    def __init__(self, endpoint: str, reason: str, status_code: Optional[int] = None):
        self.endpoint = endpoint
        self.reason = reason
        self.upstream_status = status_code
        super().__init__(reason)


class ResyncCancelled(ReconciliationError):
    """Raised inside a worker once the run has been cancelled."""


class PartialBatchFailure(ReconciliationError):
    """
    A resync batch re-inserted fewer records than it requested.

    Logged as a progress warning and collected on the result; never aborts
    the run.
    """

    def __init__(
        self,
        entity: str,
        batch: int,
        requested_ids: List[str],
        inserted_ids: List[str]
    ):
        self.entity = entity
        self.batch = batch
        self.requested_ids = list(requested_ids)
        self.inserted_ids = list(inserted_ids)
        inserted = set(self.inserted_ids)
        missing = [i for i in self.requested_ids if i not in inserted]
        self.missing_ids = missing
        super().__init__(
            f"Batch {batch} of {entity}: inserted {len(self.inserted_ids)}/"
            f"{len(self.requested_ids)} records (missing: {missing})"
        )

    def to_dict(self) -> dict:
        return {
            "entity": self.entity,
            "batch": self.batch,
            "requested_ids": self.requested_ids,
            "inserted_ids": self.inserted_ids,
            "missing_ids": self.missing_ids,
        }
