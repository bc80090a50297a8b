"""
Search-Index Store Adapter (Elasticsearch)

One index per entity, named ``<namespace>-<entity>_v1``. Record ids are read
from the ``id`` field of each document's source.
"""

import logging
from typing import Dict, List, Optional

from elasticsearch import ApiError, Elasticsearch, TransportError

from src.adapters.base import StoreAdapter
from src.reconciliation.models import EntityCountSnapshot, StoreKind

logger = logging.getLogger(__name__)

INDEX_SUFFIX = "_v1"


class ElasticStore(StoreAdapter):
    """SearchIndexStore over one Elasticsearch node, using basic auth."""

    store_kind = StoreKind.SEARCH_INDEX
    supports_pagination = True

    def __init__(
        self,
        host,
        namespace,
        username: str,
        password: str,
        notifier=None,
        excluded_entities=(),
        timeout=30.0
    ):
        super().__init__(host, namespace, notifier, excluded_entities, timeout)

        try:
            self.client = Elasticsearch(
                host.url(),
                basic_auth=(username, password),
                request_timeout=timeout
            )
        except (ApiError, TransportError, ValueError) as e:
            raise self.host_unavailable(e) from e

    @property
    def index_prefix(self) -> str:
        return f"{self.namespace}-"

    def index_name(self, entity: str) -> str:
        return f"{self.index_prefix}{entity}{INDEX_SUFFIX}"

    def entity_from_index(self, index: str) -> Optional[str]:
        """Entity name of a namespace index, or None for foreign indices."""
        if not index.startswith(self.index_prefix):
            return None
        entity = index[len(self.index_prefix):]
        if entity.endswith(INDEX_SUFFIX):
            entity = entity[:-len(INDEX_SUFFIX)]
        return entity or None

    def list_entities(self) -> List[str]:
        try:
            indices = self.client.indices.get(index=f"{self.index_prefix}*")
        except (ApiError, TransportError) as e:
            raise self.host_unavailable(e) from e

        entities = []
        for index in indices:
            entity = self.entity_from_index(index)
            if entity and not self.is_excluded(entity) and entity not in entities:
                entities.append(entity)
        return entities

    def count(self) -> EntityCountSnapshot:
        counts: Dict[str, int] = {}

        for entity in self.list_entities():
            try:
                response = self.client.count(index=self.index_name(entity))
            except (ApiError, TransportError) as e:
                raise self.host_unavailable(e) from e
            counts[entity] = int(response["count"])

        return self.snapshot(counts)

    def list_ids(self, entity: str, offset: int = 0, limit: Optional[int] = None) -> List[str]:
        """One match-all search page projecting only ``id``."""
        try:
            response = self.client.search(
                index=self.index_name(entity),
                query={"match_all": {}},
                source=["id"],
                from_=offset,
                size=limit if limit is not None else 10000,
                track_total_hits=True
            )
        except (ApiError, TransportError) as e:
            raise self.host_unavailable(e) from e

        record_ids = []
        for hit in response["hits"]["hits"]:
            record_id = (hit.get("_source") or {}).get("id")
            if record_id is None:
                record_id = hit.get("_id")
            record_ids.append(str(record_id))
        return record_ids

    def close(self) -> None:
        self.client.close()
