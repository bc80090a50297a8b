"""
Pytest configuration and shared fixtures.

Provides in-memory stand-ins for the store hosts and the authoritative record
service so whole reconciliation cycles run without live infrastructure.
"""

import pytest
from typing import Dict, List, Optional

from src.adapters.base import StoreAdapter
from src.monitoring.metrics import ReconciliationMetrics
from src.reconciliation.errors import UpstreamRejected
from src.reconciliation.models import StoreHost, StoreKind
from src.utils.config import ResyncConfig


class FakeStore(StoreAdapter):
    """Replica host holding entity -> ordered record ids."""

    def __init__(self, store_kind, host, records, notifier=None, fail=None, paginated=None, excluded_entities=()):
        super().__init__(host, "gorentals_db_v4", notifier=notifier, excluded_entities=excluded_entities)
        self.store_kind = store_kind
        self.records = records
        self.fail = fail
        self.supports_pagination = store_kind is not StoreKind.KEY_VALUE if paginated is None else paginated
        self.page_requests = []
        self.closed = False

        if fail == "connect":
            raise self.host_unavailable(ConnectionError(f"connection refused: {host}"))

    def count(self):
        if self.fail == "count":
            raise self.host_unavailable(TimeoutError("count timed out"))
        return self.snapshot({
            entity: len(ids) for entity, ids in self.records.items() if not self.is_excluded(entity)
        })

    def list_ids(self, entity, offset=0, limit=None):
        if self.fail == "list":
            raise self.host_unavailable(TimeoutError("listing timed out"))
        self.page_requests.append((entity, offset, limit))
        ids = self.records.get(entity, [])
        if limit is None:
            return list(ids[offset:])
        return list(ids[offset:offset + limit])

    def close(self):
        self.closed = True


class FakeRecordService(StoreAdapter):
    """Authoritative service: entity -> {id: record}."""

    store_kind = StoreKind.AUTHORITATIVE

    def __init__(self, records=None, endpoint="http://record-service:8080"):
        super().__init__(StoreHost(endpoint), "gorentals_db_v4")
        self.endpoint = endpoint
        self.records: Dict[str, Dict[str, dict]] = records or {}
        self.inserted: List[tuple] = []
        self.drop_ids = set()
        self.reject_ids = set()
        self.unreachable = False
        self.opened = 0

    def __enter__(self):
        self.opened += 1
        return self

    def fetch_by_id(self, entity, record_id):
        if self.unreachable:
            raise self.host_unavailable(ConnectionError("connection refused"))
        if record_id in self.reject_ids:
            raise UpstreamRejected(self.endpoint, f"GET {entity}/{record_id} returned 500", 500)
        return dict(self.records.get(entity, {}).get(record_id, {}))

    def insert(self, entity, record):
        self.inserted.append((entity, record))
        if record.get("id") in self.drop_ids:
            return {}
        return {"id": record["id"]}


class FakeStoreFactory:
    """Adapter factory over FakeStore hosts keyed by (store kind, address)."""

    def __init__(self, notifier=None):
        self.notifier = notifier
        self.hosts: Dict[tuple, dict] = {}
        self.opened: List[FakeStore] = []
        self.excluded_entities = ()
        self.record_service = FakeRecordService()

    def add(self, store_kind, address, records, fail=None, paginated=None):
        self.hosts[(store_kind, address)] = {"records": records, "fail": fail, "paginated": paginated}
        return self

    def __call__(self, store_kind, host):
        if store_kind is StoreKind.AUTHORITATIVE:
            return self.record_service

        entry = self.hosts[(store_kind, str(host))]
        store = FakeStore(
            store_kind, StoreHost(str(host)), entry["records"],
            notifier=self.notifier, fail=entry["fail"], paginated=entry["paginated"],
            excluded_entities=self.excluded_entities
        )
        self.opened.append(store)
        return store


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, title, category="Re-Sync Service Notification", payload=None):
        self.calls.append({"title": title, "category": category, "payload": payload})
        return True

    @property
    def titles(self):
        return [call["title"] for call in self.calls]


class RecordingTimeline:
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)
        return True


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def timeline():
    return RecordingTimeline()


@pytest.fixture
def metrics():
    """Metrics on a private registry."""
    return ReconciliationMetrics()


@pytest.fixture
def store_factory(notifier):
    return FakeStoreFactory(notifier)


@pytest.fixture
def make_store():
    """Build a single FakeStore."""
    def _make(store_kind, address, records, notifier=None, fail=None, paginated=None):
        return FakeStore(store_kind, StoreHost(address), records, notifier=notifier, fail=fail, paginated=paginated)
    return _make


@pytest.fixture
def config():
    """One host per replica kind, small pages, no exclusions."""
    return ResyncConfig(
        redis_hosts=["redis-1:6379"],
        elastic_hosts=["http://es-1:9200"],
        rethink_hosts=["rethink-1:28015"],
        backup_redis_host="backup:6379",
        database="gorentals",
        schema_version="v4",
        excluded_entities=[],
        batch_limit=2,
        resync_batch_size=2,
        store_endpoint="http://record-service:8080",
    )


def fake_records(entity: str, ids: List[str], extra: Optional[dict] = None) -> Dict[str, Dict[str, dict]]:
    return {entity: {i: {"id": i, **(extra or {})} for i in ids}}


@pytest.fixture
def make_authoritative():
    """Build record-service contents: {entity: [ids]} -> {entity: {id: record}}."""
    def _make(ids_by_entity):
        records = {}
        for entity, ids in ids_by_entity.items():
            records.update(fake_records(entity, ids, {"entity": entity}))
        return records
    return _make
