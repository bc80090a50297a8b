"""
Document Store Adapter (RethinkDB)

The namespace is a RethinkDB database; every table in it is an entity.
"""

import logging
import math
from typing import Dict, List, Optional

from rethinkdb import RethinkDB
from rethinkdb.errors import ReqlError

from src.adapters.base import StoreAdapter
from src.reconciliation.models import EntityCountSnapshot, StoreKind

logger = logging.getLogger(__name__)

r = RethinkDB()


class RethinkStore(StoreAdapter):
    """DocumentStore over one RethinkDB server."""

    store_kind = StoreKind.DOCUMENT
    supports_pagination = True

    def __init__(self, host, namespace, notifier=None, excluded_entities=(), timeout=30.0):
        super().__init__(host, namespace, notifier, excluded_entities, timeout)

        try:
            self.connection = r.connect(
                host=host.hostname,
                port=host.port_or(self.store_kind.default_port),
                timeout=max(1, math.ceil(timeout))
            )
        except ReqlError as e:
            raise self.host_unavailable(e) from e

        logger.debug(f"Connected to RethinkDB host {host}")

    def count(self) -> EntityCountSnapshot:
        counts: Dict[str, int] = {}

        try:
            tables = r.db(self.namespace).table_list().run(self.connection)
            for table in tables:
                if self.is_excluded(table):
                    continue
                counts[table] = int(r.db(self.namespace).table(table).count().run(self.connection))
        except ReqlError as e:
            raise self.host_unavailable(e) from e

        return self.snapshot(counts)

    def list_ids(self, entity: str, offset: int = 0, limit: Optional[int] = None) -> List[str]:
        query = r.db(self.namespace).table(entity).pluck("id").skip(offset)
        if limit is not None:
            query = query.limit(limit)

        try:
            documents = query.run(self.connection)
            return [str(document["id"]) for document in documents]
        except ReqlError as e:
            raise self.host_unavailable(e) from e

    def close(self) -> None:
        try:
            self.connection.close()
        except ReqlError as e:
            logger.warning(f"Error closing RethinkDB connection to {self.host}: {e}")
