"""
Count Collection

Takes one EntityCountSnapshot per host of a store kind, hosts in parallel,
and resolves the baseline snapshot from the backup key-value host.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from src.reconciliation.errors import HostUnavailable
from src.reconciliation.models import (
    CollectionResult,
    EntityCountSnapshot,
    HostFailure,
    StoreHost,
    StoreKind,
)
from src.utils.correlation import submit_with_correlation

logger = logging.getLogger(__name__)


class CountCollector:
    """
    Collects per-entity counts from every host of one store kind.

    Hosts are counted concurrently (bounded by ``max_concurrency``); the
    snapshots come back in the order the hosts were given.

    Host failure policies:
    - fail-fast (default): the first failing host cancels the hosts not yet
      started and its HostUnavailable propagates
    - isolate: failing hosts are left out of the snapshots and listed in
      CollectionResult.failures
    """

    def __init__(
        self,
        adapter_factory,
        max_concurrency: int = 10,
        isolate_failures: bool = False,
        metrics=None
    ):
        """
        Initialize the collector.

        Args:
            adapter_factory: Callable (store_kind, host) -> StoreAdapter
            max_concurrency: Cap on hosts counted at the same time
            isolate_failures: Use the isolate policy instead of fail-fast
            metrics: Optional ReconciliationMetrics
        """
        self.adapter_factory = adapter_factory
        self.max_concurrency = max_concurrency
        self.isolate_failures = isolate_failures
        self.metrics = metrics

    def collect(
        self,
        store_kind: StoreKind,
        hosts: List[StoreHost],
        isolate_failures: Optional[bool] = None
    ) -> CollectionResult:
        """
        Count every host of ``store_kind``.

        Args:
            store_kind: Kind of the hosts
            hosts: Hosts to count, in report order
            isolate_failures: Overrides the collector's failure policy

        Returns:
            CollectionResult with snapshots in host order

        Raises:
            HostUnavailable: Under fail-fast, for the first failing host
        """
        isolate = self.isolate_failures if isolate_failures is None else isolate_failures
        result = CollectionResult(store_kind)

        if not hosts:
            logger.info(f"No {store_kind.label} hosts configured")
            return result

        snapshots: Dict[int, EntityCountSnapshot] = {}
        failures: Dict[int, HostFailure] = {}

        with ThreadPoolExecutor(max_workers=min(self.max_concurrency, len(hosts))) as executor:
            future_to_index = {
                submit_with_correlation(executor, self._count_host, store_kind, host): index
                for index, host in enumerate(hosts)
            }

            for future in as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    snapshots[index] = future.result()
                except HostUnavailable as e:
                    if self.metrics is not None:
                        self.metrics.record_host_failure(store_kind.value, str(hosts[index]))

                    if not isolate:
                        for pending in future_to_index:
                            pending.cancel()
                        raise

                    logger.warning(
                        f"Isolating {store_kind.label} host {hosts[index]}: {e.reason}",
                        extra={"store_kind": store_kind.value, "host": str(hosts[index])}
                    )
                    failures[index] = HostFailure(store_kind, str(hosts[index]), e.reason)

        result.snapshots = [snapshots[i] for i in sorted(snapshots)]
        result.failures = [failures[i] for i in sorted(failures)]

        if self.metrics is not None:
            for snapshot in result.snapshots:
                self.metrics.record_snapshot(snapshot)

        return result

    def _count_host(self, store_kind: StoreKind, host: StoreHost) -> EntityCountSnapshot:
        with self.adapter_factory(store_kind, host) as adapter:
            return adapter.count()


class BaselineResolver:
    """
    Resolves the baseline snapshot from the backup key-value host.

    There is no fallback baseline: a failing backup host always aborts the
    cycle, whatever the collector's failure policy.
    """

    def __init__(self, collector: CountCollector, backup_host: StoreHost):
        self.collector = collector
        self.backup_host = backup_host

    def resolve(self) -> EntityCountSnapshot:
        result = self.collector.collect(StoreKind.KEY_VALUE, [self.backup_host], isolate_failures=False)
        baseline = result.snapshots[0]
        logger.info(f"Baseline from backup host {self.backup_host}: {baseline.total_record_count} records")
        return baseline
