"""
cli.py — gatekeeper-admin, operator commands against the counter store
======================================================================
Runs the same maintenance and reporting the admin endpoints expose, for
cron jobs and shells that have store access but no admin token.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import get_settings
from .security.alerts import Severity
from .security.errors import StoreUnavailable
from .security.monitor import SecurityMonitor
from .telemetry.logger import configure_logging

logger = logging.getLogger("gatekeeper.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatekeeper-admin",
        description="Marketplace Gatekeeper: security store maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment variables:
  GATEKEEPER_STORE_URL          Counter store URL  [redis://localhost:6379/0]
  GATEKEEPER_LOG_LEVEL          Log level          [info]
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("cleanup", help="Prune dangling alert refs and repair key TTLs")
    sub.add_parser("metrics", help="Print the security metrics snapshot")

    alerts = sub.add_parser("alerts", help="Print recent security alerts, newest first")
    alerts.add_argument("--severity", choices=[s.value for s in Severity], default=None)
    alerts.add_argument("--limit", type=int, default=50, help="Maximum alerts to print (1-500)")
    return parser


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: Optional[List[str]] = None, monitor: Optional[SecurityMonitor] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    # stdout carries the JSON report.
    configure_logging(settings.log_level, "text", stream=sys.stderr)
    if args.command == "alerts" and not 1 <= args.limit <= 500:
        parser.error("--limit must be between 1 and 500")

    own_monitor = monitor is None
    monitor = monitor or SecurityMonitor.from_settings(settings)
    try:
        if args.command == "cleanup":
            _emit(monitor.cleanup().model_dump())
        elif args.command == "metrics":
            _emit(monitor.metrics.snapshot().model_dump(mode="json"))
        elif args.command == "alerts":
            alerts = monitor.alerts.list_alerts(severity=args.severity, limit=args.limit)
            _emit({
                "alerts": [a.model_dump(mode="json") for a in alerts],
                "summary": monitor.alerts.summary(alerts),
            })
    except StoreUnavailable as exc:
        logger.error("Counter store unavailable: %s", exc)
        return 2
    finally:
        if own_monitor:
            monitor.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
