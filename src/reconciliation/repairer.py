"""
Resync Executor

Repairs an out-of-sync assessment by fetching every missing record from the
authoritative record service and inserting it back, which makes the service
fan it out to all replicas again.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Tuple

from src.reconciliation.errors import (
    HostUnavailable,
    PartialBatchFailure,
    ResyncCancelled,
    UpstreamRejected,
)
from src.reconciliation.models import (
    PageProgress,
    ResyncResult,
    SyncAssessment,
    TimelineEvent,
    WriteAttribution,
)
from src.reconciliation.paginator import log_progress
from src.utils.correlation import submit_with_correlation

logger = logging.getLogger(__name__)

NOTIFICATION_CATEGORY = "Re-Sync Service Notification"

NO_RESYNC_NEEDED = "There is no need to re-Sync. All databases synchronized."
RESYNC_SUCCEEDED = "Successfully re-Synced data."
RESYNC_FAILED = "Failed to re-Sync data."

INSERT = "insert"


class ResyncExecutor:
    """
    Re-inserts out-of-sync records through the authoritative record service.

    Entities run concurrently (bounded by ``concurrency``); within an entity
    the ids are split into batches of ``batch_size`` that run one after
    another. Every re-insert is recorded on the timeline.
    """

    def __init__(
        self,
        record_service_factory: Callable,
        notifier=None,
        timeline=None,
        app: str = "",
        batch_size: int = 2,
        concurrency: int = 8,
        metrics=None,
        progress_callback: Optional[Callable[[PageProgress], None]] = None
    ):
        """
        Initialize the executor.

        Args:
            record_service_factory: Callable returning a new record service adapter
            notifier: Notification sink for upstream failures
            timeline: TimelineRecorder for re-insert audit events
            app: Application name put on timeline events
            batch_size: Ids fetched and re-inserted per batch
            concurrency: Cap on entities resynced at the same time
            metrics: Optional ReconciliationMetrics
            progress_callback: Called with a PageProgress after every batch
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        self.record_service_factory = record_service_factory
        self.notifier = notifier
        self.timeline = timeline
        self.app = app
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.metrics = metrics
        self.progress_callback = progress_callback or log_progress

    def make_batches(self, record_ids: List[str]) -> List[List[str]]:
        """Slice ids into consecutive batches of ``batch_size``."""
        return [
            record_ids[i:i + self.batch_size]
            for i in range(0, len(record_ids), self.batch_size)
        ]

    def execute(
        self,
        assessment: SyncAssessment,
        attribution: Optional[WriteAttribution] = None
    ) -> ResyncResult:
        """
        Resync every out-of-sync record of ``assessment``.

        Args:
            assessment: Result of the "collect counts and assess" cycle
            attribution: Who the re-inserts are attributed to

        Returns:
            ResyncResult; success only if every out-of-sync id was re-inserted

        Raises:
            UpstreamRejected: When the record service is unavailable or
                refuses a request; the remaining batches are cancelled
        """
        if assessment.is_synchronized:
            logger.info(NO_RESYNC_NEEDED)
            return ResyncResult(success=False, message=NO_RESYNC_NEEDED)

        attribution = attribution or WriteAttribution()
        records = {
            entity: list(ids)
            for entity, ids in assessment.out_of_sync_records.items()
            if ids
        }

        logger.info(f"Resyncing {assessment.total_out_of_sync} records across {len(records)} entities")

        inserted: Dict[str, List[str]] = {}
        partial_failures: Dict[str, List[PartialBatchFailure]] = {}
        cancel_event = threading.Event()

        if records:
            with ThreadPoolExecutor(max_workers=min(self.concurrency, len(records))) as executor:
                future_to_entity = {
                    submit_with_correlation(
                        executor,
                        self._resync_entity,
                        entity, ids, attribution, cancel_event
                    ): entity
                    for entity, ids in records.items()
                }

                for future in as_completed(future_to_entity):
                    entity = future_to_entity[future]
                    try:
                        inserted[entity], partial_failures[entity] = future.result()
                    except (HostUnavailable, UpstreamRejected) as e:
                        cancel_event.set()
                        for pending in future_to_entity:
                            pending.cancel()
                        raise self._report_upstream_failure(e) from e

        inserted_records = {entity: inserted[entity] for entity in records}
        failures = [f for entity in records for f in partial_failures[entity]]

        total_inserted = sum(len(ids) for ids in inserted_records.values())
        if total_inserted == assessment.total_out_of_sync:
            logger.info(f"{RESYNC_SUCCEEDED} {total_inserted} records re-inserted")
            return ResyncResult(True, RESYNC_SUCCEEDED, inserted_records, failures)

        logger.error(
            f"{RESYNC_FAILED} Re-inserted {total_inserted} of {assessment.total_out_of_sync} records"
        )
        return ResyncResult(False, RESYNC_FAILED, partial_failures=failures)

    def _resync_entity(
        self,
        entity: str,
        record_ids: List[str],
        attribution: WriteAttribution,
        cancel_event: threading.Event
    ) -> Tuple[List[str], List[PartialBatchFailure]]:
        batches = self.make_batches(record_ids)
        inserted_ids: List[str] = []
        failures: List[PartialBatchFailure] = []

        with self.record_service_factory() as service:
            for number, batch in enumerate(batches, 1):
                if cancel_event.is_set():
                    raise ResyncCancelled(f"Resync of {entity} cancelled before batch {number}/{len(batches)}")

                batch_inserted = self._resync_batch(service, entity, batch, attribution)
                inserted_ids.extend(batch_inserted)

                missed = len(batch) - len(batch_inserted)
                if missed:
                    failure = PartialBatchFailure(entity, number, batch, batch_inserted)
                    logger.warning(str(failure), extra={"entity": entity})
                    failures.append(failure)

                if self.metrics is not None:
                    self.metrics.record_resync_batch(entity, len(batch_inserted), missed)

                self.progress_callback(
                    PageProgress(entity, number, len(batches), len(inserted_ids), len(record_ids))
                )

        return inserted_ids, failures

    def _resync_batch(
        self,
        service,
        entity: str,
        batch: List[str],
        attribution: WriteAttribution
    ) -> List[str]:
        """Fetch then re-insert one batch; returns the ids the service stored."""
        records = [service.fetch_by_id(entity, record_id) for record_id in batch]
        inserted_ids = []

        for record_id, record in zip(batch, records):
            if not record:
                logger.warning(f"Record service has no {entity} record {record_id}", extra={"entity": entity})
                continue

            response = service.insert(entity, record)
            stored_id = response.get("id", record.get("id", record_id)) if response else None

            self._record_timeline(entity, stored_id or record_id, bool(response), attribution, record)

            if response:
                inserted_ids.append(str(stored_id))

        return inserted_ids

    def _record_timeline(
        self,
        entity: str,
        record_id: str,
        success: bool,
        attribution: WriteAttribution,
        record: Dict
    ) -> None:
        if self.timeline is None:
            return

        self.timeline.record(TimelineEvent(
            entity=entity,
            app=self.app,
            operation=INSERT,
            record_id=record_id,
            success=success,
            metadata=attribution.metadata(INSERT),
            record=record
        ))

    def _report_upstream_failure(self, error) -> UpstreamRejected:
        endpoint = getattr(error, "endpoint", None) or getattr(error, "host", "")
        reason = str(error)

        logger.error(f"Resync aborted, record service {endpoint} failed: {reason}")

        if self.notifier is not None:
            self.notifier.notify(
                f"Re-Sync Store host: {endpoint} Offline/Unavailable.",
                NOTIFICATION_CATEGORY,
                {"endpoint": endpoint, "reason": reason}
            )

        return UpstreamRejected(endpoint, reason, getattr(error, "upstream_status", None))
