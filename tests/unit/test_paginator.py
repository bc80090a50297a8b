"""
Unit tests for paginated record enumeration.
"""

import logging
import threading

import pytest

from src.reconciliation.errors import ResyncCancelled
from src.reconciliation.models import StoreKind
from src.reconciliation.paginator import PaginatedEnumerator


class TestPaginatedEnumerator:
    """Test page math, progress reporting and cancellation."""

    @pytest.fixture
    def search_store(self, make_store):
        ids = [f"u{i}" for i in range(1, 8)]
        return make_store(StoreKind.SEARCH_INDEX, "http://es-1:9200", {"users": ids})

    def test_lists_all_ids_in_ceil_pages(self, search_store):
        progress = []
        enumerator = PaginatedEnumerator(page_size=3, progress_callback=progress.append)

        ids = enumerator.list_all_ids(search_store, "users", total_hint=7)

        assert ids == [f"u{i}" for i in range(1, 8)]
        assert search_store.page_requests == [("users", 0, 3), ("users", 3, 3), ("users", 6, 1)]
        assert [(p.batch, p.batches, p.retrieved) for p in progress] == [(1, 3, 3), (2, 3, 6), (3, 3, 7)]

    def test_exact_multiple_of_page_size(self, make_store):
        store = make_store(StoreKind.DOCUMENT, "rethink-1", {"users": ["a", "b", "c", "d"]})
        enumerator = PaginatedEnumerator(page_size=2, progress_callback=lambda p: None)

        ids = enumerator.list_all_ids(store, "users", total_hint=4)

        assert ids == ["a", "b", "c", "d"]
        assert len(store.page_requests) == 2

    def test_undercounting_hint_truncates(self, search_store):
        enumerator = PaginatedEnumerator(page_size=3, progress_callback=lambda p: None)

        ids = enumerator.list_all_ids(search_store, "users", total_hint=4)

        assert ids == ["u1", "u2", "u3", "u4"]

    def test_zero_hint_fetches_nothing(self, search_store):
        enumerator = PaginatedEnumerator(page_size=3)

        assert enumerator.list_all_ids(search_store, "users", total_hint=0) == []
        assert search_store.page_requests == []

    def test_store_without_pagination_returns_whole_list(self, make_store):
        store = make_store(StoreKind.KEY_VALUE, "backup:6379", {"users": ["a", "b", "c"]})
        progress = []
        enumerator = PaginatedEnumerator(page_size=1, progress_callback=progress.append)

        ids = enumerator.list_all_ids(store, "users", total_hint=3)

        assert ids == ["a", "b", "c"]
        assert store.page_requests == [("users", 0, None)]
        assert progress == []

    def test_stops_on_empty_page(self, search_store):
        enumerator = PaginatedEnumerator(page_size=5, progress_callback=lambda p: None)

        ids = enumerator.list_all_ids(search_store, "users", total_hint=20)

        assert len(ids) == 7
        assert len(search_store.page_requests) == 3

    def test_cancel_event_aborts_remaining_pages(self, search_store):
        cancel_event = threading.Event()

        def cancel_after_first(progress):
            cancel_event.set()

        enumerator = PaginatedEnumerator(page_size=3, progress_callback=cancel_after_first)

        with pytest.raises(ResyncCancelled):
            enumerator.list_all_ids(search_store, "users", total_hint=7, cancel_event=cancel_event)

        assert len(search_store.page_requests) == 1

    def test_default_progress_logging(self, search_store, caplog):
        enumerator = PaginatedEnumerator(page_size=7)

        with caplog.at_level(logging.INFO, logger="src.reconciliation.paginator"):
            enumerator.list_all_ids(search_store, "users", total_hint=7)

        assert "[Progress] users: 100.00% ||||||||||" in caplog.text
        assert "[Batches] 1/1 (7/7 records)" in caplog.text

    def test_pages_counted_on_metrics(self, search_store, metrics):
        enumerator = PaginatedEnumerator(page_size=3, progress_callback=lambda p: None, metrics=metrics)

        enumerator.list_all_ids(search_store, "users", total_hint=7)

        assert metrics.registry.get_sample_value(
            "resync_pages_fetched_total", {"entity": "users"}
        ) == 3.0

    def test_rejects_non_positive_page_size(self):
        with pytest.raises(ValueError):
            PaginatedEnumerator(page_size=0)
