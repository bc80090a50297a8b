"""
Authoritative Record Service Adapter

HTTP client for the service that owns the records. Fetching a record returns
its authoritative version; inserting it makes the service write it again and
fan it out to every replica.

    GET  <endpoint>/<namespace>/<entity>/<id>
    POST <endpoint>/insert/<namespace>/<entity>
"""

import logging
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth

from src.adapters.base import StoreAdapter
from src.reconciliation.errors import UpstreamRejected
from src.reconciliation.models import StoreHost, StoreKind, TimelineEvent

logger = logging.getLogger(__name__)


class RecordServiceClient(StoreAdapter):
    """
    AuthoritativeRecordService over HTTP with basic auth.

    Failures are not sent to the notifier from here; the resync executor
    reports them once for the whole run.
    """

    store_kind = StoreKind.AUTHORITATIVE

    def __init__(
        self,
        endpoint: str,
        namespace: str,
        username: str,
        password: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        super().__init__(StoreHost(endpoint), namespace, notifier=None, timeout=timeout)
        self.endpoint = endpoint.rstrip("/")
        self.session = session or requests.Session()
        self.session.auth = HTTPBasicAuth(username, password)

    def fetch_by_id(self, entity: str, record_id: str) -> Dict[str, Any]:
        """
        Fetch the authoritative version of one record.

        Returns:
            The record, or an empty dict when the service has no body for it
        """
        url = f"{self.endpoint}/{self.namespace}/{entity}/{record_id}"
        return self._request("GET", url)

    def insert(self, entity: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Re-insert a record; the response carries the stored record's ``id``.
        """
        url = f"{self.endpoint}/insert/{self.namespace}/{entity}"
        return self._request("POST", url, json=record)

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise self.host_unavailable(e) from e

        if not response.ok:
            reason = f"{method} {url} returned {response.status_code}: {response.text[:200]}"
            logger.error(f"Record service rejected request: {reason}")
            raise UpstreamRejected(self.endpoint, reason, response.status_code)

        if not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamRejected(self.endpoint, f"{method} {url} returned invalid JSON", response.status_code) from e

        return data if isinstance(data, dict) else {}

    def close(self) -> None:
        self.session.close()


class TimelineRecorder:
    """Records a TimelineEvent for every re-inserted record."""

    def __init__(
        self,
        endpoint: Optional[str],
        username: str = "",
        password: str = "",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self.endpoint = endpoint or ""
        self.timeout = timeout
        self.session = session or requests.Session()
        if username:
            self.session.auth = HTTPBasicAuth(username, password)

    def record(self, event: TimelineEvent) -> bool:
        """
        Post one event to the timeline endpoint, or log it when none is set.

        Returns:
            True if the endpoint accepted the event
        """
        if not self.endpoint:
            logger.debug(
                f"Timeline: {event.operation} {event.entity}/{event.record_id} success={event.success}",
                extra={"entity": event.entity}
            )
            return False

        try:
            response = self.session.post(self.endpoint, json=event.to_dict(), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Error - timeline: {e}", extra={"entity": event.entity})
            return False

        return True

    def close(self) -> None:
        self.session.close()
