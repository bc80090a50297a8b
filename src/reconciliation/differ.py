"""
Diff Engine for Store Reconciliation

Compares every replica host's entity counts against the baseline snapshot
and, for each mismatched entity, resolves exactly which baseline record ids
the host is missing.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from src.reconciliation.models import (
    REPLICA_KINDS,
    EntityCountSnapshot,
    EvaluationState,
    HostFailure,
    HostMismatch,
    StoreHost,
    StoreKind,
    SyncAssessment,
)
from src.utils.correlation import submit_with_correlation

logger = logging.getLogger(__name__)


def find_mismatched_entities(baseline: EntityCountSnapshot, snapshot: EntityCountSnapshot) -> List[str]:
    """
    Baseline entities whose count differs on ``snapshot``.

    An entity the host does not report at all counts as a mismatch.
    """
    return [
        entity
        for entity, count in baseline.counts_by_entity.items()
        if snapshot.count_for(entity) != count
    ]


def find_missing_ids(baseline_ids: Iterable[str], host_ids: Iterable[str]) -> List[str]:
    """
    Ids present in the baseline but absent from the host.

    Keeps baseline order and drops duplicates.
    """
    present = set(host_ids)
    missing = []
    seen = set()

    for record_id in baseline_ids:
        if record_id in present or record_id in seen:
            continue
        seen.add(record_id)
        missing.append(record_id)

    return missing


def merge_out_of_sync(
    existing: Mapping[str, Sequence[str]],
    additions: Mapping[str, Sequence[str]]
) -> Dict[str, Tuple[str, ...]]:
    """
    Union two out-of-sync ledgers entity by entity.

    Ids keep first-seen order and appear once. Neither input is modified.

    Args:
        existing: Ledger accumulated so far
        additions: Ids found for the current host

    Returns:
        New ledger mapping entity -> tuple of ids
    """
    merged: Dict[str, Tuple[str, ...]] = {entity: tuple(ids) for entity, ids in existing.items()}

    for entity, ids in additions.items():
        current = list(merged.get(entity, ()))
        known = set(current)
        for record_id in ids:
            if record_id not in known:
                known.add(record_id)
                current.append(record_id)
        merged[entity] = tuple(current)

    return merged


class DiffEngine:
    """
    Folds per-host snapshots into an EvaluationState and a SyncAssessment.

    Hosts are evaluated one after another; the mismatched entities of one
    host are enumerated concurrently, bounded by ``max_concurrency``.
    """

    def __init__(
        self,
        adapter_factory,
        backup_host: StoreHost,
        enumerator,
        database: str = "",
        max_concurrency: int = 10
    ):
        """
        Initialize the diff engine.

        Args:
            adapter_factory: Callable (store_kind, host) -> StoreAdapter
            backup_host: Key-value host the baseline ids are read from
            enumerator: PaginatedEnumerator used for every id listing
            database: Database name reported on assessments
            max_concurrency: Cap on entities enumerated at the same time
        """
        self.adapter_factory = adapter_factory
        self.backup_host = backup_host
        self.enumerator = enumerator
        self.database = database
        self.max_concurrency = max_concurrency
        logger.debug("Initialized DiffEngine")

    def evaluate(
        self,
        store_kind: StoreKind,
        snapshots: Sequence[EntityCountSnapshot],
        baseline: EntityCountSnapshot,
        state: EvaluationState
    ) -> EvaluationState:
        """
        Evaluate the hosts of one store kind against the baseline.

        Args:
            store_kind: Kind of the hosts behind ``snapshots``
            snapshots: One snapshot per host
            baseline: Baseline snapshot
            state: State accumulated by earlier evaluations

        Returns:
            New state; ``state`` is left untouched
        """
        for snapshot in snapshots:
            state = state.observe_total(snapshot.total_record_count)

            mismatched = find_mismatched_entities(baseline, snapshot)
            if not mismatched:
                continue

            logger.warning(
                f"{store_kind.label} host {snapshot.host} out of sync on {len(mismatched)} entities: {mismatched}",
                extra={"store_kind": store_kind.value, "host": snapshot.host}
            )

            state = state.with_mismatch(HostMismatch(
                store_kind=store_kind,
                host=snapshot.host,
                total_record_count=snapshot.total_record_count,
                mismatched_entities=tuple(mismatched),
                counts_by_entity=dict(snapshot.counts_by_entity),
                baseline_counts={entity: baseline.counts_by_entity[entity] for entity in mismatched}
            ))

            missing = self.find_host_missing_ids(store_kind, snapshot, baseline, mismatched)
            state = state.with_records(merge_out_of_sync(state.out_of_sync_records, missing))

        return state

    def find_host_missing_ids(
        self,
        store_kind: StoreKind,
        snapshot: EntityCountSnapshot,
        baseline: EntityCountSnapshot,
        entities: List[str]
    ) -> Dict[str, List[str]]:
        """
        Resolve the missing ids of each mismatched entity on one host.

        The first failing entity cancels the others and its error propagates.

        Returns:
            Mapping entity -> missing ids, in ``entities`` order
        """
        cancel_event = threading.Event()
        results: Dict[str, List[str]] = {}

        with ThreadPoolExecutor(max_workers=min(self.max_concurrency, len(entities))) as executor:
            future_to_entity = {
                submit_with_correlation(
                    executor,
                    self._entity_missing_ids,
                    store_kind, snapshot, baseline, entity, cancel_event
                ): entity
                for entity in entities
            }

            for future in as_completed(future_to_entity):
                entity = future_to_entity[future]
                try:
                    results[entity] = future.result()
                except Exception:
                    cancel_event.set()
                    for pending in future_to_entity:
                        pending.cancel()
                    logger.error(
                        f"Failed to enumerate {entity} on {store_kind.label} host {snapshot.host}",
                        extra={"store_kind": store_kind.value, "host": snapshot.host, "entity": entity}
                    )
                    raise

        return {entity: results[entity] for entity in entities}

    def _entity_missing_ids(
        self,
        store_kind: StoreKind,
        snapshot: EntityCountSnapshot,
        baseline: EntityCountSnapshot,
        entity: str,
        cancel_event: threading.Event
    ) -> List[str]:
        with self.adapter_factory(StoreKind.KEY_VALUE, self.backup_host) as backup:
            baseline_ids = self.enumerator.list_all_ids(
                backup, entity, baseline.count_for(entity) or 0, cancel_event
            )

        host_total = snapshot.count_for(entity) or 0
        if host_total:
            with self.adapter_factory(store_kind, StoreHost(snapshot.host)) as adapter:
                host_ids = self.enumerator.list_all_ids(adapter, entity, host_total, cancel_event)
        else:
            host_ids = []

        missing = find_missing_ids(baseline_ids, host_ids)
        logger.info(
            f"{len(missing)} {entity} records missing on {store_kind.label} host {snapshot.host}",
            extra={"store_kind": store_kind.value, "host": snapshot.host, "entity": entity}
        )
        return missing

    def assess(
        self,
        baseline: EntityCountSnapshot,
        snapshots_by_kind: Mapping[StoreKind, Sequence[EntityCountSnapshot]],
        failed_hosts: Sequence[HostFailure] = ()
    ) -> SyncAssessment:
        """
        Build the consolidated assessment of one cycle.

        Store kinds are evaluated key-value, then search index, then document
        store. ``max_count`` is the baseline total and is never revised.

        Args:
            baseline: Baseline snapshot
            snapshots_by_kind: Replica snapshots per store kind
            failed_hosts: Hosts isolated during collection

        Returns:
            SyncAssessment
        """
        state = EvaluationState(min_count=baseline.total_record_count)

        for store_kind in REPLICA_KINDS:
            state = self.evaluate(store_kind, snapshots_by_kind.get(store_kind, []), baseline, state)

        assessment = SyncAssessment(
            database=self.database,
            max_count=baseline.total_record_count,
            min_count=state.min_count,
            baseline=baseline,
            per_store_kind_snapshots={kind: list(snapshots_by_kind.get(kind, [])) for kind in REPLICA_KINDS},
            out_of_sync_hosts=state.out_of_sync_hosts,
            out_of_sync_records=state.out_of_sync_records,
            failed_hosts=tuple(failed_hosts)
        )

        logger.info(
            f"Assessment: max={assessment.max_count}, min={assessment.min_count}, "
            f"{len(assessment.out_of_sync_hosts)} hosts and {assessment.total_out_of_sync} records out of sync"
        )
        return assessment
