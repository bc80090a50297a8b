"""
Paginated Record Enumeration

Lists every record id of an entity from a store whose listing API is capped
per request. Pages are fetched strictly one after another.
"""

import logging
import math
import threading
from typing import Callable, List, Optional

from src.reconciliation.errors import ResyncCancelled
from src.reconciliation.models import PageProgress

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PageProgress], None]


def log_progress(progress: PageProgress) -> None:
    """Default progress callback."""
    logger.info(
        f"[Progress] {progress.entity}: {progress.percentage:.2f}% {progress.bar}",
        extra={"entity": progress.entity}
    )
    logger.info(
        f"[Batches] {progress.batch}/{progress.batches} ({progress.retrieved}/{progress.total} records)",
        extra={"entity": progress.entity}
    )


class PaginatedEnumerator:
    """
    Enumerates record ids page by page.

    The number of pages is derived from a total hint (the entity's count on
    the host): ``ceil(total_hint / page_size)``, with the last page clamped
    to what is left. A hint lower than the real count truncates the listing.
    """

    def __init__(
        self,
        page_size: int = 1000,
        progress_callback: Optional[ProgressCallback] = None,
        metrics=None,
        cancel_event: Optional[threading.Event] = None
    ):
        """
        Initialize the enumerator.

        Args:
            page_size: Maximum ids requested per page
            progress_callback: Called with a PageProgress after every page
            metrics: ReconciliationMetrics to count fetched pages on
            cancel_event: Event that aborts enumeration once set
        """
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")

        self.page_size = page_size
        self.progress_callback = progress_callback or log_progress
        self.metrics = metrics
        self.cancel_event = cancel_event

    def page_count(self, total_hint: int) -> int:
        if total_hint <= 0:
            return 0
        return math.ceil(total_hint / self.page_size)

    def list_all_ids(
        self,
        adapter,
        entity: str,
        total_hint: int,
        cancel_event: Optional[threading.Event] = None
    ) -> List[str]:
        """
        List all ids of ``entity`` on the adapter's host.

        Args:
            adapter: StoreAdapter to read from
            entity: Entity to enumerate
            total_hint: Expected number of ids
            cancel_event: Overrides the enumerator's cancel event for this call

        Returns:
            Ids in the order the store returned them

        Raises:
            ResyncCancelled: If the cancel event is set between pages
        """
        cancel_event = cancel_event or self.cancel_event

        if not adapter.supports_pagination:
            self._check_cancelled(cancel_event, entity)
            return list(adapter.list_ids(entity))

        batches = self.page_count(total_hint)
        record_ids: List[str] = []

        for batch in range(1, batches + 1):
            self._check_cancelled(cancel_event, entity)

            limit = min(self.page_size, total_hint - len(record_ids))
            page = adapter.list_ids(entity, offset=len(record_ids), limit=limit)
            record_ids.extend(page)

            progress = PageProgress(entity, batch, batches, len(record_ids), total_hint)
            self.progress_callback(progress)
            if self.metrics is not None:
                self.metrics.record_page(progress)

            if not page:
                logger.warning(
                    f"Empty page {batch}/{batches} for {entity}; stopping at {len(record_ids)}/{total_hint} ids",
                    extra={"entity": entity}
                )
                break

        return record_ids

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], entity: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ResyncCancelled(f"Enumeration of {entity} cancelled")
