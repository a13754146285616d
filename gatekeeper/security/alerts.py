"""
security/alerts.py — Severity-tiered security alert log
=======================================================
Each alert is stored once under ``security:alert:<id>`` with a 30 day TTL
and indexed by id in two newest-first lists: the global list and the list
for its severity. Records expire on their own but list entries do not, so
the lists drift; ``list_alerts`` skips dangling ids and ``cleanup`` removes
them.
"""
from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from ..store.base import CounterStore

logger = logging.getLogger("gatekeeper.security.alerts")

ALERT_KEY_PREFIX = "security:alert:"
ALL_ALERTS_KEY = "security:alerts:all"
DANGLING_KEY = "security:alerts:dangling"

MAX_GLOBAL_ALERTS = 10_000
MAX_SEVERITY_ALERTS = 1_000
DEFAULT_ALERT_TTL_SECONDS = 30 * 24 * 60 * 60


class Severity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.low: 0,
    Severity.medium: 1,
    Severity.high: 2,
    Severity.critical: 3,
}


class SecurityEvent(str, Enum):
    rate_limit_exceeded = "rate_limit_exceeded"
    suspicious_activity = "suspicious_activity"
    auth_failure = "auth_failure"
    brute_force_attempt = "brute_force_attempt"
    sql_injection_attempt = "sql_injection_attempt"
    xss_attempt = "xss_attempt"
    path_traversal_attempt = "path_traversal_attempt"
    csrf_failure = "csrf_failure"
    invalid_token = "invalid_token"
    permission_denied = "permission_denied"


class SecurityAlert(BaseModel):
    id: str
    timestamp: datetime
    severity: Severity
    type: str
    message: str
    ip: str = "unknown"
    user_agent: str = "unknown"
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def alert_key(alert_id: str) -> str:
    return f"{ALERT_KEY_PREFIX}{alert_id}"


def severity_list_key(severity: Severity) -> str:
    return f"security:alerts:{severity.value}"


class SecurityAlertLog:
    def __init__(
        self,
        store: CounterStore,
        ttl_seconds: int = DEFAULT_ALERT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def _new_id(self) -> str:
        return f"alert_{int(self.clock() * 1000)}_{secrets.token_hex(5)}"

    def raise_alert(
        self,
        severity: Severity | str,
        alert_type: str,
        message: str,
        *,
        ip: str = "unknown",
        user_agent: str = "unknown",
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Record an alert and index it. Returns the new alert id."""
        severity = Severity(severity)
        alert = SecurityAlert(
            id=self._new_id(),
            timestamp=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
            severity=severity,
            type=alert_type,
            message=message,
            ip=ip,
            user_agent=user_agent,
            user_id=user_id,
            metadata=metadata or {},
        )

        self.store.set(alert_key(alert.id), alert.model_dump_json(), ttl_ms=self.ttl_seconds * 1000)
        self.store.lpush(severity_list_key(severity), alert.id, max_len=MAX_SEVERITY_ALERTS)
        self.store.lpush(ALL_ALERTS_KEY, alert.id, max_len=MAX_GLOBAL_ALERTS)

        level = logging.CRITICAL if severity is Severity.critical else logging.WARNING
        logger.log(
            level,
            "Security alert %s [%s] %s",
            alert.id,
            severity.value,
            alert_type,
            extra={"alert_id": alert.id, "severity": severity.value, "alert_type": alert_type, "ip": ip},
        )
        return alert.id

    def get(self, alert_id: str) -> Optional[SecurityAlert]:
        raw = self.store.get(alert_key(alert_id))
        return SecurityAlert.model_validate_json(raw) if raw else None

    def list_alerts(
        self,
        severity: Optional[Severity | str] = None,
        limit: int = 100,
    ) -> List[SecurityAlert]:
        """
        Return at most ``limit`` alerts, newest first. Ids whose record has
        expired are skipped and counted so cleanup can report the drift.
        """
        if limit < 1:
            return []
        list_key = severity_list_key(Severity(severity)) if severity else ALL_ALERTS_KEY
        alert_ids = self.store.lrange(list_key, 0, limit - 1)

        alerts: List[SecurityAlert] = []
        dangling = 0
        for alert_id in alert_ids:
            alert = self.get(alert_id)
            if alert is None:
                dangling += 1
                continue
            alerts.append(alert)

        if dangling:
            self.store.incr(DANGLING_KEY, dangling)

        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        return alerts[:limit]

    def dangling_seen(self) -> int:
        raw = self.store.get(DANGLING_KEY)
        return int(raw) if raw else 0

    def cleanup(self) -> int:
        """
        Remove ids whose alert record no longer exists from the global list
        and every severity list. Returns the number of distinct ids pruned.
        Only dead references are touched, so this is safe under live traffic.
        """
        list_keys = [ALL_ALERTS_KEY] + [severity_list_key(s) for s in Severity]
        checked: set[str] = set()
        pruned = 0

        for list_key in list_keys:
            for alert_id in self.store.lrange(list_key, 0, -1):
                if alert_id in checked:
                    continue
                checked.add(alert_id)
                if self.store.exists(alert_key(alert_id)):
                    continue
                for key in list_keys:
                    self.store.lrem(key, alert_id)
                pruned += 1

        self.store.delete(DANGLING_KEY)
        if pruned:
            logger.info("Pruned %d dangling alert references", pruned)
        return pruned

    @staticmethod
    def summary(alerts: List[SecurityAlert]) -> Dict[str, int]:
        counts = {f"{s.value}_alerts": 0 for s in Severity}
        for alert in alerts:
            counts[f"{alert.severity.value}_alerts"] += 1
        counts["total_alerts"] = len(alerts)
        return counts
