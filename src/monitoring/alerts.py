"""
Alert Rule Generator for Prometheus AlertManager

Generates alert rules over the resync service metrics: replicas drifting
from the baseline, unreachable store hosts and failing resync runs.
"""

import logging
from typing import Any, Dict

import yaml

from src.monitoring.metrics import NAMESPACE

logger = logging.getLogger(__name__)


def _rule(name: str, expr: str, duration: str, severity: str, summary: str, description: str) -> Dict[str, Any]:
    return {
        "alert": name,
        "expr": expr,
        "for": duration,
        "labels": {
            "severity": severity,
            "component": "resync"
        },
        "annotations": {
            "summary": summary,
            "description": description
        }
    }


class AlertRuleGenerator:
    """Generates Prometheus AlertManager alert rules."""

    def __init__(self, namespace: str = NAMESPACE):
        self.namespace = namespace

    def generate_alert_rules(self) -> Dict[str, Any]:
        """
        Generate the complete alert rule configuration.

        Returns:
            Dict with alert rule groups in Prometheus format
        """
        groups = [
            self._generate_consistency_alerts(),
            self._generate_host_alerts(),
            self._generate_resync_alerts(),
        ]

        logger.info(f"Generated {len(groups)} alert rule groups")
        return {"groups": groups}

    def _generate_consistency_alerts(self) -> Dict[str, Any]:
        ns = self.namespace
        return {
            "name": f"{ns}_consistency",
            "interval": "1m",
            "rules": [
                _rule(
                    "ReplicasOutOfSync",
                    f"{ns}_minimum_record_count < {ns}_baseline_record_count",
                    "30m", "warning",
                    "Replica record counts below baseline",
                    "Lowest replica count is {{ $value }}, below the baseline count. Run a resync."
                ),
                _rule(
                    "OutOfSyncRecordsPersisting",
                    f"sum({ns}_out_of_sync_records) > 0",
                    "2h", "critical",
                    "Out-of-sync records not repaired",
                    "{{ $value }} baseline records have been missing from replicas for over 2 hours."
                ),
            ]
        }

    def _generate_host_alerts(self) -> Dict[str, Any]:
        ns = self.namespace
        return {
            "name": f"{ns}_hosts",
            "interval": "30s",
            "rules": [
                _rule(
                    "StoreHostUnavailable",
                    f"increase({ns}_host_failures_total[10m]) > 0",
                    "1m", "critical",
                    "Store host offline or unavailable",
                    "{{ $labels.store_kind }} host {{ $labels.host }} failed during reconciliation."
                ),
            ]
        }

    def _generate_resync_alerts(self) -> Dict[str, Any]:
        ns = self.namespace
        return {
            "name": f"{ns}_repair",
            "interval": "1m",
            "rules": [
                _rule(
                    "ResyncCycleFailing",
                    f"increase({ns}_cycles_total{{status=\"failed\"}}[1h]) > 0",
                    "5m", "critical",
                    "Reconciliation cycles failing",
                    "{{ $labels.operation }} cycles failed {{ $value }} times in the last hour."
                ),
                _rule(
                    "ResyncPartialBatches",
                    f"increase({ns}_partial_batches_total[1h]) > 0",
                    "10m", "warning",
                    "Resync batches partially applied",
                    "Entity {{ $labels.entity }} had {{ $value }} partial resync batches in the last hour."
                ),
            ]
        }

    def export_to_yaml(self, output_file: str) -> None:
        """
        Export alert rules to a YAML file.

        Args:
            output_file: Path to output YAML file
        """
        rules = self.generate_alert_rules()

        with open(output_file, 'w') as f:
            yaml.dump(rules, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Alert rules exported to {output_file}")

    def get_alert_summary(self) -> Dict[str, int]:
        """
        Get summary of alert rules.

        Returns:
            Dict with counts by severity
        """
        rules = self.generate_alert_rules()

        summary = {
            "total_groups": len(rules["groups"]),
            "total_alerts": 0,
            "critical": 0,
            "warning": 0,
            "info": 0
        }

        for group in rules["groups"]:
            for rule in group["rules"]:
                summary["total_alerts"] += 1
                severity = rule["labels"].get("severity", "unknown")
                if severity in summary:
                    summary[severity] += 1

        return summary
