"""
Webhook Notification Sink

Publishes human-readable alerts about unavailable hosts and out-of-sync
verdicts to a chat webhook. Delivery is fire-and-forget: failures are logged
and never propagate into the reconciliation cycle.
"""

import json
import logging
from typing import Any, Optional

import requests

from src.utils.correlation import attach_correlation_id

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Re-Sync Service Notification"


class WebhookNotifier:
    """Posts alerts as ``{activity, title, body}`` JSON to a webhook URL."""

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.webhook_url = webhook_url or ""
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify(self, title: str, category: str = DEFAULT_CATEGORY, payload: Any = None) -> bool:
        """
        Send one alert.

        Args:
            title: Alert headline
            category: Activity name shown by the chat integration
            payload: JSON-serialisable details

        Returns:
            True if the webhook accepted the alert
        """
        if isinstance(payload, dict):
            payload = attach_correlation_id(payload)

        if not self.webhook_url:
            logger.warning(f"No notification webhook configured, dropping alert: {title}")
            return False

        message = {
            "activity": category,
            "title": title,
            "body": json.dumps(payload, default=str),
        }

        try:
            response = self.session.post(self.webhook_url, json=message, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Error - notification webhook: {e}")
            return False

        logger.info(f"Notification sent: {title}")
        return True
