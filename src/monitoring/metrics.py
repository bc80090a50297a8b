"""
Prometheus Metrics for the Store Resync Service

Tracks per-host record counts, out-of-sync verdicts, enumeration progress and
resync outcomes. Exposition is optional (see start_server).
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from src.reconciliation.models import EntityCountSnapshot, PageProgress, SyncAssessment

logger = logging.getLogger(__name__)

NAMESPACE = "resync"


class ReconciliationMetrics:
    """Prometheus metrics for count, diff and resync operations."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics.

        Args:
            registry: Registry to register into (a private one if not provided)
        """
        self.registry = registry or CollectorRegistry()

        self.cycles_total = Counter(
            f'{NAMESPACE}_cycles_total',
            'Total reconciliation cycles by operation and outcome',
            ['operation', 'status'],
            registry=self.registry
        )

        self.cycle_duration_seconds = Histogram(
            f'{NAMESPACE}_cycle_duration_seconds',
            'Duration of reconciliation cycles in seconds',
            ['operation'],
            buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600],
            registry=self.registry
        )

        self.host_record_count = Gauge(
            f'{NAMESPACE}_host_record_count',
            'Total records counted on a host',
            ['store_kind', 'host'],
            registry=self.registry
        )

        self.entity_record_count = Gauge(
            f'{NAMESPACE}_entity_record_count',
            'Records counted per entity on a host',
            ['store_kind', 'host', 'entity'],
            registry=self.registry
        )

        self.baseline_record_count = Gauge(
            f'{NAMESPACE}_baseline_record_count',
            'Total records on the baseline host (maximum count)',
            registry=self.registry
        )

        self.minimum_record_count = Gauge(
            f'{NAMESPACE}_minimum_record_count',
            'Lowest total record count seen in the last cycle',
            registry=self.registry
        )

        self.out_of_sync_hosts = Gauge(
            f'{NAMESPACE}_out_of_sync_hosts',
            'Hosts whose entity counts disagree with the baseline',
            registry=self.registry
        )

        self.out_of_sync_records = Gauge(
            f'{NAMESPACE}_out_of_sync_records',
            'Baseline records missing from at least one replica',
            ['entity'],
            registry=self.registry
        )

        self.host_failures_total = Counter(
            f'{NAMESPACE}_host_failures_total',
            'Connection or command failures by store host',
            ['store_kind', 'host'],
            registry=self.registry
        )

        self.pages_fetched_total = Counter(
            f'{NAMESPACE}_pages_fetched_total',
            'Record id pages fetched during enumeration',
            ['entity'],
            registry=self.registry
        )

        self.resynced_records_total = Counter(
            f'{NAMESPACE}_resynced_records_total',
            'Records re-inserted through the authoritative service',
            ['entity', 'status'],
            registry=self.registry
        )

        self.partial_batches_total = Counter(
            f'{NAMESPACE}_partial_batches_total',
            'Resync batches that re-inserted fewer records than requested',
            ['entity'],
            registry=self.registry
        )

    def record_snapshot(self, snapshot: EntityCountSnapshot) -> None:
        kind = snapshot.store_kind.value
        self.host_record_count.labels(store_kind=kind, host=snapshot.host).set(snapshot.total_record_count)
        for entity, count in snapshot.counts_by_entity.items():
            self.entity_record_count.labels(store_kind=kind, host=snapshot.host, entity=entity).set(count)

    def record_assessment(self, assessment: SyncAssessment) -> None:
        """Publish the verdict gauges of one assessment."""
        self.baseline_record_count.set(assessment.max_count)
        self.minimum_record_count.set(assessment.min_count)
        self.out_of_sync_hosts.set(len(assessment.out_of_sync_hosts))
        # Drop entities no longer out of sync
        self.out_of_sync_records.clear()
        for entity, ids in assessment.out_of_sync_records.items():
            self.out_of_sync_records.labels(entity=entity).set(len(ids))

    def record_cycle(self, operation: str, status: str, duration_seconds: float) -> None:
        self.cycles_total.labels(operation=operation, status=status).inc()
        self.cycle_duration_seconds.labels(operation=operation).observe(duration_seconds)
        logger.debug(f"Recorded {operation} cycle: status={status}, duration={duration_seconds:.2f}s")

    def record_host_failure(self, store_kind: str, host: str) -> None:
        self.host_failures_total.labels(store_kind=store_kind, host=host).inc()

    def record_page(self, progress: PageProgress) -> None:
        self.pages_fetched_total.labels(entity=progress.entity).inc()

    def record_resync_batch(self, entity: str, inserted: int, failed: int) -> None:
        if inserted:
            self.resynced_records_total.labels(entity=entity, status='success').inc(inserted)
        if failed:
            self.resynced_records_total.labels(entity=entity, status='failure').inc(failed)
            self.partial_batches_total.labels(entity=entity).inc()

    def start_server(self, port: int) -> None:
        """Expose the registry over HTTP for Prometheus scraping."""
        try:
            start_http_server(port, registry=self.registry)
            logger.info(f"Metrics server started on port {port}")
        except OSError as e:
            if "Address already in use" in str(e):
                logger.warning(f"Metrics server already running on port {port}")
            else:
                raise
