"""
Unit tests for reconciliation differ module.

Tests count mismatch detection, missing id resolution and ledger merging.
"""

import pytest

from src.reconciliation.differ import (
    DiffEngine,
    find_mismatched_entities,
    find_missing_ids,
    merge_out_of_sync,
)
from src.reconciliation.errors import HostUnavailable
from src.reconciliation.models import EntityCountSnapshot, EvaluationState, StoreHost, StoreKind
from src.reconciliation.paginator import PaginatedEnumerator


def _snapshot(host, kind, counts):
    return EntityCountSnapshot(host, kind, sum(counts.values()), counts)


class TestDiffHelpers:
    """Test the pure diff functions."""

    def test_identical_counts_have_no_mismatch(self):
        baseline = _snapshot("backup", StoreKind.KEY_VALUE, {"users": 5, "cars": 2})
        host = _snapshot("es-1", StoreKind.SEARCH_INDEX, {"cars": 2, "users": 5})

        assert find_mismatched_entities(baseline, host) == []

    def test_missing_entity_is_a_mismatch(self):
        baseline = _snapshot("backup", StoreKind.KEY_VALUE, {"users": 5, "cars": 2})
        host = _snapshot("es-1", StoreKind.SEARCH_INDEX, {"users": 5})

        assert find_mismatched_entities(baseline, host) == ["cars"]

    def test_host_only_entities_are_ignored(self):
        baseline = _snapshot("backup", StoreKind.KEY_VALUE, {"users": 5})
        host = _snapshot("es-1", StoreKind.SEARCH_INDEX, {"users": 5, "logs": 9})

        assert find_mismatched_entities(baseline, host) == []

    def test_find_missing_ids_preserves_baseline_order(self):
        assert find_missing_ids(["c", "a", "b", "a"], ["b"]) == ["c", "a"]

    def test_find_missing_ids_ignores_extra_host_ids(self):
        assert find_missing_ids(["a"], ["a", "z"]) == []

    def test_merge_is_union_across_store_kinds(self):
        existing = {"users": ("u1", "u2")}

        merged = merge_out_of_sync(existing, {"users": ["u2", "u3"], "cars": ["c1"]})

        assert merged == {"users": ("u1", "u2", "u3"), "cars": ("c1",)}
        assert existing == {"users": ("u1", "u2")}

    def test_merge_with_empty_additions(self):
        assert merge_out_of_sync({"users": ("u1",)}, {}) == {"users": ("u1",)}


class TestDiffEngine:
    """Test evaluation and assessment over fake stores."""

    @pytest.fixture
    def users(self):
        return [f"u{i}" for i in range(1, 51)]

    @pytest.fixture
    def engine(self, store_factory, users):
        store_factory.add(StoreKind.KEY_VALUE, "backup:6379", {"users": users})
        store_factory.add(StoreKind.SEARCH_INDEX, "http://es-1:9200", {"users": users[2:]})
        store_factory.add(StoreKind.DOCUMENT, "rethink-1:28015", {"users": users[:-1]})
        enumerator = PaginatedEnumerator(page_size=20, progress_callback=lambda p: None)
        return DiffEngine(store_factory, StoreHost("backup:6379"), enumerator, database="gorentals")

    @pytest.fixture
    def baseline(self, users):
        return _snapshot("backup:6379", StoreKind.KEY_VALUE, {"users": len(users)})

    def test_search_replica_missing_two_users(self, engine, baseline):
        search = _snapshot("http://es-1:9200", StoreKind.SEARCH_INDEX, {"users": 48})

        state = engine.evaluate(StoreKind.SEARCH_INDEX, [search], baseline, EvaluationState(50))

        assert state.min_count == 48
        assert len(state.out_of_sync_hosts) == 1
        mismatch = state.out_of_sync_hosts[0]
        assert mismatch.host == "http://es-1:9200"
        assert mismatch.mismatched_entities == ("users",)
        assert mismatch.baseline_counts == {"users": 50}
        assert set(state.out_of_sync_records["users"]) == {"u1", "u2"}

    def test_evaluate_does_not_modify_input_state(self, engine, baseline):
        initial = EvaluationState(50)
        search = _snapshot("http://es-1:9200", StoreKind.SEARCH_INDEX, {"users": 48})

        engine.evaluate(StoreKind.SEARCH_INDEX, [search], baseline, initial)

        assert initial == EvaluationState(50)

    def test_matching_host_adds_nothing(self, engine, baseline, store_factory):
        redis = _snapshot("redis-1:6379", StoreKind.KEY_VALUE, {"users": 50})

        state = engine.evaluate(StoreKind.KEY_VALUE, [redis], baseline, EvaluationState(50))

        assert state.out_of_sync_hosts == ()
        assert state.out_of_sync_records == {}
        assert store_factory.opened == []

    def test_assess_merges_across_kinds(self, engine, baseline):
        snapshots = {
            StoreKind.KEY_VALUE: [_snapshot("redis-1:6379", StoreKind.KEY_VALUE, {"users": 50})],
            StoreKind.SEARCH_INDEX: [_snapshot("http://es-1:9200", StoreKind.SEARCH_INDEX, {"users": 48})],
            StoreKind.DOCUMENT: [_snapshot("rethink-1:28015", StoreKind.DOCUMENT, {"users": 49})],
        }

        assessment = engine.assess(baseline, snapshots)

        assert assessment.database == "gorentals"
        assert assessment.max_count == 50
        assert assessment.min_count == 48
        assert not assessment.is_synchronized
        assert [m.store_kind for m in assessment.out_of_sync_hosts] == [StoreKind.SEARCH_INDEX, StoreKind.DOCUMENT]
        assert assessment.out_of_sync_records == {"users": ("u1", "u2", "u50")}

    def test_max_count_never_revised(self, engine, baseline):
        snapshots = {
            StoreKind.DOCUMENT: [_snapshot("rethink-1:28015", StoreKind.DOCUMENT, {"users": 70})],
        }

        assessment = engine.assess(baseline, snapshots)

        assert assessment.max_count == 50
        assert assessment.min_count == 50
        assert assessment.is_synchronized

    def test_host_failure_while_enumerating_propagates(self, store_factory, baseline, users):
        store_factory.add(StoreKind.KEY_VALUE, "backup:6379", {"users": users})
        store_factory.add(StoreKind.SEARCH_INDEX, "http://es-2:9200", {"users": []}, fail="list")
        engine = DiffEngine(
            store_factory, StoreHost("backup:6379"),
            PaginatedEnumerator(page_size=20, progress_callback=lambda p: None)
        )
        search = _snapshot("http://es-2:9200", StoreKind.SEARCH_INDEX, {"users": 10})

        with pytest.raises(HostUnavailable):
            engine.evaluate(StoreKind.SEARCH_INDEX, [search], baseline, EvaluationState(50))
