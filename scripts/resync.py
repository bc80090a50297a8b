#!/usr/bin/env python3
"""
Store Resync Tool

Audits Redis, Elasticsearch and RethinkDB replicas against the backup Redis
baseline and re-inserts out-of-sync records through the authoritative record
service:
- counts: collect counts, diff against the baseline, print the assessment
- resync: assess, then re-insert every out-of-sync record
- alerts: export Prometheus alert rules for the service metrics

Usage:
    ./scripts/resync.py counts
    ./scripts/resync.py --config resync.yaml resync --user-id u-1 --company-id c-1
    ./scripts/resync.py alerts --output alerts.yml

Exit codes: 0 on success, 1 when resync did not succeed or on bad input,
2 when an upstream store or the record service failed.
"""

import sys
import os
import argparse
import logging
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.monitoring import AlertRuleGenerator, ReconciliationMetrics
from src.reconciliation.errors import ReconciliationError, UpstreamGatewayError
from src.reconciliation.models import WriteAttribution
from src.reconciliation.service import ReconciliationService
from src.utils.config import ResyncConfig
from src.utils.correlation import setup_correlation_logging
from src.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNSUCCESSFUL = 1
EXIT_GATEWAY_ERROR = 2


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter with correlation ID support."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'N/A'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        # Add extra fields
        for attr in ('store_kind', 'host', 'entity'):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)
        if hasattr(record, 'duration'):
            log_data['duration_seconds'] = record.duration

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_logging(verbose: bool = False) -> None:
    """Console logging, or JSON lines when JSON_LOGGING=true."""
    handler = logging.StreamHandler()

    if os.getenv('JSON_LOGGING', 'false').lower() == 'true':
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(correlation_id)s] %(name)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

    setup_correlation_logging(handler)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)


def load_config(path: Optional[str] = None) -> ResyncConfig:
    """
    Build the config from a YAML file and/or the environment.

    Store credentials are read from Vault when VAULT_ADDR is set.
    """
    config = ResyncConfig.from_yaml(path) if path else ResyncConfig.from_env()

    if os.getenv("VAULT_ADDR"):
        with VaultClient() as vault:
            config = config.apply_vault_credentials(vault)
        logger.info("Loaded store credentials from Vault")

    return config.validate()


def build_attribution(args) -> WriteAttribution:
    user_agent = json.loads(args.user_agent) if args.user_agent else {}
    return WriteAttribution(
        user_id=args.user_id,
        user_role_id=args.user_role_id,
        company_id=args.company_id,
        application_id=args.application_id,
        user_agent=user_agent
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Store Resync Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Counts command
    subparsers.add_parser("counts", help="Collect counts and assess replicas")

    # Resync command
    resync_parser = subparsers.add_parser("resync", help="Re-insert out-of-sync records")
    resync_parser.add_argument("--user-id", default="", help="User the re-inserts are attributed to")
    resync_parser.add_argument("--user-role-id", default="", help="Role of that user")
    resync_parser.add_argument("--company-id", default="", help="Company scope of the re-inserts")
    resync_parser.add_argument("--application-id", default="", help="Application scope of the re-inserts")
    resync_parser.add_argument("--user-agent", default="", help="User agent as a JSON object")

    # Alerts command
    alerts_parser = subparsers.add_parser("alerts", help="Export Prometheus alert rules")
    alerts_parser.add_argument("--output", required=True, help="Output YAML file")

    # Global options
    parser.add_argument("--config", help="YAML config file (environment variables override it)")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return EXIT_UNSUCCESSFUL

    if args.command == "alerts":
        generator = AlertRuleGenerator()
        generator.export_to_yaml(args.output)
        print(json.dumps(generator.get_alert_summary(), indent=2))
        return EXIT_OK

    try:
        config = load_config(args.config)
        logger.info(f"Configuration: {config.redacted()}")

        metrics = ReconciliationMetrics()
        if args.metrics_port:
            metrics.start_server(args.metrics_port)

        service = ReconciliationService(config, metrics=metrics)

        if args.command == "counts":
            assessment = service.get_all_counts()
            print(json.dumps(assessment.to_dict(), indent=2))
            return EXIT_OK

        result = service.resync(build_attribution(args))
        print(json.dumps(result, indent=2))
        return EXIT_OK if result["success"] else EXIT_UNSUCCESSFUL

    except UpstreamGatewayError as e:
        logger.error(f"Upstream error ({e.status_code}): {e}", exc_info=args.verbose)
        return EXIT_GATEWAY_ERROR

    except (ReconciliationError, ValueError) as e:
        logger.error(f"Error: {e}", exc_info=args.verbose)
        return EXIT_UNSUCCESSFUL


if __name__ == "__main__":
    sys.exit(main())
