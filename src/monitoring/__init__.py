"""
Monitoring Module for the Store Resync Service

Observability around reconciliation cycles:
- Prometheus metrics for counts, verdicts and resync outcomes
- Alert rule definitions over those metrics
- Webhook notification sink for host failures and out-of-sync verdicts

Usage:
    from src.monitoring import ReconciliationMetrics, WebhookNotifier

    metrics = ReconciliationMetrics()
    notifier = WebhookNotifier(webhook_url)
    notifier.notify("Redis host: cache-1:6379 Offline/Unavailable.", payload={"reason": "timeout"})
"""

from src.monitoring.alerts import AlertRuleGenerator
from src.monitoring.metrics import ReconciliationMetrics
from src.monitoring.notifier import WebhookNotifier

__all__ = [
    "AlertRuleGenerator",
    "ReconciliationMetrics",
    "WebhookNotifier",
]

__version__ = "1.0.0"
