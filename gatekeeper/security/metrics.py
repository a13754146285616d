"""
security/metrics.py — Aggregate security counters
=================================================
Each field is its own atomic counter in the store, so concurrent requests
never lose increments. ``snapshot()`` folds them into one serialisable
``SecurityMetrics`` for the admin endpoint. Counters never decay.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from pydantic import BaseModel

from ..store.base import CounterStore
from .alerts import SecurityEvent

KEY_PREFIX = "security:metrics:"
LAST_UPDATED_KEY = f"{KEY_PREFIX}last_updated"

FIELDS = (
    "total_requests",
    "blocked_requests",
    "rate_limited_requests",
    "suspicious_activity",
    "auth_failures",
)

_EVENT_FIELDS: Dict[str, Tuple[str, ...]] = {
    SecurityEvent.rate_limit_exceeded.value: ("rate_limited_requests", "blocked_requests"),
    SecurityEvent.suspicious_activity.value: ("suspicious_activity", "blocked_requests"),
    SecurityEvent.sql_injection_attempt.value: ("suspicious_activity", "blocked_requests"),
    SecurityEvent.xss_attempt.value: ("suspicious_activity", "blocked_requests"),
    SecurityEvent.path_traversal_attempt.value: ("suspicious_activity", "blocked_requests"),
    SecurityEvent.auth_failure.value: ("auth_failures",),
    SecurityEvent.brute_force_attempt.value: ("auth_failures",),
    SecurityEvent.invalid_token.value: ("auth_failures",),
}


class SecurityMetrics(BaseModel):
    total_requests: int = 0
    blocked_requests: int = 0
    rate_limited_requests: int = 0
    suspicious_activity: int = 0
    auth_failures: int = 0
    last_updated: Optional[datetime] = None


def fields_for_event(event_type: str) -> Tuple[str, ...]:
    """Counters bumped by a security event; unknown events count as blocked."""
    return _EVENT_FIELDS.get(event_type, ("blocked_requests",))


class MetricsRecorder:
    def __init__(self, store: CounterStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.clock = clock

    def increment(self, *fields: str) -> None:
        for name in fields:
            self.store.incr(f"{KEY_PREFIX}{name}", 1)
        self.store.set(LAST_UPDATED_KEY, repr(self.clock()))

    def record_request(self) -> None:
        self.increment("total_requests")

    def record_event(self, event_type: SecurityEvent | str) -> None:
        if isinstance(event_type, SecurityEvent):
            event_type = event_type.value
        self.increment(*fields_for_event(event_type))

    def snapshot(self) -> SecurityMetrics:
        values = {}
        for name in FIELDS:
            raw = self.store.get(f"{KEY_PREFIX}{name}")
            values[name] = int(raw) if raw else 0
        raw_ts = self.store.get(LAST_UPDATED_KEY)
        last_updated = datetime.fromtimestamp(float(raw_ts), tz=timezone.utc) if raw_ts else None
        return SecurityMetrics(**values, last_updated=last_updated)
