"""
Reconciliation Service

The two inbound operations of the resync service:

- get_all_counts: collect counts from every store, diff them against the
  baseline and return the SyncAssessment
- resync: run the assessment, then re-insert every out-of-sync record

Usage:
    config = ResyncConfig.from_env().validate()
    service = ReconciliationService(config)

    assessment = service.get_all_counts()
    if not assessment.is_synchronized:
        result = service.resync()
"""

import logging
import time
from typing import Any, Dict, Optional

from src.adapters import AdapterFactory, TimelineRecorder
from src.monitoring.metrics import ReconciliationMetrics
from src.monitoring.notifier import WebhookNotifier
from src.reconciliation.collector import BaselineResolver, CountCollector
from src.reconciliation.differ import DiffEngine
from src.reconciliation.errors import ReconciliationError
from src.reconciliation.models import (
    REPLICA_KINDS,
    StoreHost,
    StoreKind,
    SyncAssessment,
    WriteAttribution,
)
from src.reconciliation.paginator import PaginatedEnumerator
from src.reconciliation.repairer import NOTIFICATION_CATEGORY, ResyncExecutor
from src.utils.config import ResyncConfig
from src.utils.correlation import CorrelationContext

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Wires collectors, diff engine and resync executor for one database."""

    def __init__(
        self,
        config: ResyncConfig,
        notifier=None,
        metrics: Optional[ReconciliationMetrics] = None,
        adapter_factory=None,
        timeline=None
    ):
        """
        Initialize the service.

        Args:
            config: Validated ResyncConfig
            notifier: Notification sink (a WebhookNotifier on config.webhook_url if not provided)
            metrics: ReconciliationMetrics (a private registry if not provided)
            adapter_factory: Callable (store_kind, host) -> StoreAdapter
            timeline: TimelineRecorder for re-insert audit events
        """
        self.config = config
        self.notifier = notifier or WebhookNotifier(config.webhook_url, timeout=config.call_timeout)
        self.metrics = metrics or ReconciliationMetrics()
        self.adapter_factory = adapter_factory or AdapterFactory(config, self.notifier)
        self.timeline = timeline or TimelineRecorder(
            config.timeline_endpoint,
            config.store_username,
            config.store_password,
            timeout=config.call_timeout
        )

        self.collector = CountCollector(
            self.adapter_factory,
            max_concurrency=config.max_concurrency,
            isolate_failures=config.isolate_host_failures,
            metrics=self.metrics
        )
        self.baseline_resolver = BaselineResolver(self.collector, config.backup_host)
        self.enumerator = PaginatedEnumerator(config.batch_limit, metrics=self.metrics)
        self.diff_engine = DiffEngine(
            self.adapter_factory,
            config.backup_host,
            self.enumerator,
            database=config.database,
            max_concurrency=config.max_concurrency
        )
        self.executor = ResyncExecutor(
            self._open_record_service,
            notifier=self.notifier,
            timeline=self.timeline,
            app=config.app_name,
            batch_size=config.resync_batch_size,
            concurrency=config.resync_concurrency,
            metrics=self.metrics
        )

    def _open_record_service(self):
        return self.adapter_factory(StoreKind.AUTHORITATIVE, StoreHost(self.config.store_endpoint))

    def get_all_counts(self) -> SyncAssessment:
        """
        Collect counts and assess every replica against the baseline.

        Returns:
            SyncAssessment of this cycle

        Raises:
            UpstreamGatewayError: If a host fails under the fail-fast policy
        """
        with CorrelationContext() as correlation_id:
            logger.info(f"Starting counts cycle {correlation_id} for {self.config.namespace}")
            start_time = time.time()

            try:
                assessment = self._assess()
            except ReconciliationError:
                self.metrics.record_cycle("counts", "failed", time.time() - start_time)
                raise

            status = "synchronized" if assessment.is_synchronized else "out_of_sync"
            self.metrics.record_cycle("counts", status, time.time() - start_time)
            return assessment

    def resync(self, attribution: Optional[WriteAttribution] = None) -> Dict[str, Any]:
        """
        Assess, then re-insert every out-of-sync record.

        Args:
            attribution: Who the re-inserts are attributed to

        Returns:
            ResyncResult as a dict: success, message and, on success,
            inserted_records

        Raises:
            UpstreamGatewayError: On host or record service failure
        """
        with CorrelationContext() as correlation_id:
            logger.info(f"Starting resync cycle {correlation_id} for {self.config.namespace}")
            start_time = time.time()

            try:
                assessment = self._assess()
                result = self.executor.execute(assessment, attribution)
            except ReconciliationError:
                self.metrics.record_cycle("resync", "failed", time.time() - start_time)
                raise

            status = "success" if result.success else "unsuccessful"
            self.metrics.record_cycle("resync", status, time.time() - start_time)
            return result.to_dict()

    def _assess(self) -> SyncAssessment:
        baseline = self.baseline_resolver.resolve()

        snapshots_by_kind = {}
        failed_hosts = []
        for store_kind in REPLICA_KINDS:
            result = self.collector.collect(store_kind, self.config.replica_hosts(store_kind))
            snapshots_by_kind[store_kind] = result.snapshots
            failed_hosts.extend(result.failures)

        assessment = self.diff_engine.assess(baseline, snapshots_by_kind, failed_hosts)
        self.metrics.record_assessment(assessment)

        if not assessment.is_synchronized:
            self.notifier.notify(
                f"Out of Sync Databases - {self.config.namespace}",
                NOTIFICATION_CATEGORY,
                assessment.summary()
            )

        return assessment
