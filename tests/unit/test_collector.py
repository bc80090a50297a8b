"""
Unit tests for count collection and baseline resolution.
"""

import json

import pytest
from unittest.mock import Mock

from src.monitoring.notifier import WebhookNotifier
from src.reconciliation.collector import BaselineResolver, CountCollector
from src.reconciliation.errors import HostUnavailable
from src.reconciliation.models import StoreHost, StoreKind
from src.utils.correlation import CorrelationContext, get_correlation_id


def _hosts(*addresses):
    return [StoreHost(a) for a in addresses]


class TestCountCollector:
    """Test per-host collection and failure policies."""

    @pytest.fixture
    def factory(self, store_factory):
        store_factory.add(StoreKind.KEY_VALUE, "redis-1:6379", {"users": ["a", "b"], "cars": ["c"]})
        store_factory.add(StoreKind.KEY_VALUE, "redis-2:6379", {"users": ["a"]})
        store_factory.add(StoreKind.KEY_VALUE, "redis-3:6379", {"users": []}, fail="count")
        return store_factory

    def test_snapshots_keep_host_order(self, factory):
        collector = CountCollector(factory, max_concurrency=2)

        result = collector.collect(StoreKind.KEY_VALUE, _hosts("redis-2:6379", "redis-1:6379"))

        assert [s.host for s in result.snapshots] == ["redis-2:6379", "redis-1:6379"]
        assert result.snapshots[1].total_record_count == 3
        assert result.snapshots[1].counts_by_entity == {"users": 2, "cars": 1}
        assert result.failures == []

    def test_total_is_sum_of_entity_counts(self, factory):
        result = CountCollector(factory).collect(StoreKind.KEY_VALUE, _hosts("redis-1:6379"))
        snapshot = result.snapshots[0]

        assert snapshot.total_record_count == sum(snapshot.counts_by_entity.values())

    def test_adapters_are_closed(self, factory):
        CountCollector(factory).collect(StoreKind.KEY_VALUE, _hosts("redis-1:6379", "redis-2:6379"))

        assert factory.opened
        assert all(store.closed for store in factory.opened)

    def test_fail_fast_raises_and_notifies(self, factory, notifier):
        collector = CountCollector(factory)

        with pytest.raises(HostUnavailable) as exc_info:
            collector.collect(StoreKind.KEY_VALUE, _hosts("redis-1:6379", "redis-3:6379"))

        assert exc_info.value.host == "redis-3:6379"
        assert "Redis host: redis-3:6379 Offline/Unavailable." in notifier.titles

    def test_isolate_policy_drops_failed_host(self, factory, notifier, metrics):
        collector = CountCollector(factory, isolate_failures=True, metrics=metrics)

        result = collector.collect(StoreKind.KEY_VALUE, _hosts("redis-1:6379", "redis-3:6379", "redis-2:6379"))

        assert [s.host for s in result.snapshots] == ["redis-1:6379", "redis-2:6379"]
        assert [(f.host, f.reason) for f in result.failures] == [("redis-3:6379", "count timed out")]
        assert len(notifier.calls) == 1
        assert metrics.registry.get_sample_value(
            "resync_host_failures_total", {"store_kind": "redis", "host": "redis-3:6379"}
        ) == 1.0

    def test_no_hosts(self, factory):
        result = CountCollector(factory).collect(StoreKind.DOCUMENT, [])

        assert result.snapshots == []
        assert result.failures == []

    def test_connection_failure_on_construction(self, store_factory, notifier):
        store_factory.add(StoreKind.DOCUMENT, "rethink-9:28015", {}, fail="connect")

        with pytest.raises(HostUnavailable, match="connection refused"):
            CountCollector(store_factory).collect(StoreKind.DOCUMENT, _hosts("rethink-9:28015"))

        assert notifier.titles == ["RethinkDB host: rethink-9:28015 Offline/Unavailable."]

    def test_host_failure_alert_carries_cycle_correlation_id(self, factory):
        session = Mock()
        factory.notifier = WebhookNotifier("https://chat.example/hook", session=session)
        collector = CountCollector(factory, isolate_failures=True)

        with CorrelationContext("cycle-42"):
            collector.collect(StoreKind.KEY_VALUE, _hosts("redis-1:6379", "redis-3:6379"))

        body = json.loads(session.post.call_args.kwargs["json"]["body"])
        assert body["host"] == "redis-3:6379"
        assert body["correlation_id"] == "cycle-42"

    def test_workers_run_in_cycle_context(self, factory):
        seen = []

        def counting_factory(store_kind, host):
            seen.append(get_correlation_id())
            return factory(store_kind, host)

        with CorrelationContext("cycle-7"):
            CountCollector(counting_factory).collect(StoreKind.KEY_VALUE, _hosts("redis-1:6379", "redis-2:6379"))

        assert seen == ["cycle-7", "cycle-7"]


class TestBaselineResolver:
    """Test baseline resolution."""

    def test_resolve(self, store_factory):
        store_factory.add(StoreKind.KEY_VALUE, "backup:6379", {"users": ["a", "b"]})
        resolver = BaselineResolver(CountCollector(store_factory), StoreHost("backup:6379"))

        baseline = resolver.resolve()

        assert baseline.host == "backup:6379"
        assert baseline.total_record_count == 2

    def test_backup_failure_aborts_even_when_isolating(self, store_factory):
        store_factory.add(StoreKind.KEY_VALUE, "backup:6379", {}, fail="count")
        collector = CountCollector(store_factory, isolate_failures=True)

        with pytest.raises(HostUnavailable):
            BaselineResolver(collector, StoreHost("backup:6379")).resolve()
