"""
security/reputation.py — Per-IP suspicion scores
================================================
Suspicious signals add to an IP's score. The record's 24 h TTL is set when
the score is first created and never refreshed, so an epoch ends exactly
one day after the first offence and the next offence starts from zero.

Because scores only grow inside an epoch and the increment is atomic, the
request that takes the score from below a threshold to at-or-above it is
the only one that sees the crossing. That request raises the alert, so
each crossing alerts exactly once.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..store.base import CounterStore
from .alerts import SecurityAlertLog, SecurityEvent, Severity

logger = logging.getLogger("gatekeeper.security.reputation")

KEY_PREFIX = "ip_reputation:"
MAX_REASONS = 10
DEFAULT_TTL_SECONDS = 24 * 60 * 60

SEVERITY_DELTAS = {
    Severity.low: 5,
    Severity.medium: 15,
    Severity.high: 30,
    Severity.critical: 50,
}


@dataclass
class Reputation:
    ip: str
    score: int
    level: str  # good | suspicious | bad
    reasons: List[str] = field(default_factory=list)


def reputation_key(ip: str) -> str:
    return f"{KEY_PREFIX}{ip}"


def reasons_key(ip: str) -> str:
    return f"{KEY_PREFIX}{ip}:reasons"


class IPReputationTracker:
    def __init__(
        self,
        store: CounterStore,
        alerts: Optional[SecurityAlertLog] = None,
        alert_threshold: int = 50,
        critical_threshold: int = 100,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.alerts = alerts
        self.alert_threshold = alert_threshold
        self.critical_threshold = critical_threshold
        self.ttl_seconds = ttl_seconds

    @property
    def ttl_ms(self) -> int:
        return self.ttl_seconds * 1000

    def get_score(self, ip: str) -> int:
        raw = self.store.get(reputation_key(ip))
        return int(raw) if raw else 0

    def level_for(self, score: int) -> str:
        if score >= self.critical_threshold:
            return "bad"
        if score >= self.alert_threshold:
            return "suspicious"
        return "good"

    def is_suspicious(self, ip: str) -> bool:
        return self.get_score(ip) >= self.alert_threshold

    def get_reputation(self, ip: str) -> Reputation:
        score = self.get_score(ip)
        return Reputation(
            ip=ip,
            score=score,
            level=self.level_for(score),
            reasons=self.store.lrange(reasons_key(ip), 0, MAX_REASONS - 1),
        )

    def add_suspicion_score(
        self,
        ip: str,
        delta: int,
        reason: Optional[str] = None,
        user_agent: str = "unknown",
    ) -> int:
        """Add ``delta`` to the IP's score and return the new score."""
        if delta < 0:
            raise ValueError("suspicion delta must be non-negative")

        new_score = self.store.incr(reputation_key(ip), delta, ttl_ms=self.ttl_ms)
        previous = new_score - delta

        # Only this caller sees the crossing, so alert before any further store write.
        crossed = self._crossed_severity(previous, new_score)
        if crossed is not None:
            logger.warning("IP %s crossed %s reputation threshold (score=%d)", ip, crossed.value, new_score)
            if self.alerts is not None:
                self.alerts.raise_alert(
                    crossed,
                    SecurityEvent.suspicious_activity.value,
                    f"IP reputation score reached {new_score}",
                    ip=ip,
                    user_agent=user_agent,
                    metadata={"score": new_score, "previous_score": previous, "reason": reason},
                )

        if reason:
            key = reasons_key(ip)
            self.store.lpush(key, reason, max_len=MAX_REASONS)
            if self.store.pttl(key) == -1:
                self.store.pexpire(key, self.ttl_ms)
        return new_score

    def add_signal(self, ip: str, severity: Severity | str, reason: str, user_agent: str = "unknown") -> int:
        """Score a signal by its severity."""
        return self.add_suspicion_score(ip, SEVERITY_DELTAS[Severity(severity)], reason, user_agent)

    def _crossed_severity(self, previous: int, new_score: int) -> Optional[Severity]:
        # A jump past both thresholds reports the higher one only.
        if previous < self.critical_threshold <= new_score:
            return Severity.critical
        if previous < self.alert_threshold <= new_score:
            return Severity.high
        return None
