"""
security/heuristics.py — Suspicious request detection
======================================================
Cheap pattern checks on the user agent and the (URL-decoded) request
target. Each hit becomes a signal with a severity; the middleware feeds
signals into IP reputation and the alert log.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List
from urllib.parse import unquote_plus

from .alerts import SecurityEvent, Severity


@dataclass(frozen=True)
class SuspiciousSignal:
    name: str
    event: SecurityEvent
    severity: Severity


_USER_AGENT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"bot", r"crawler", r"scanner", r"hack", r"attack", r"exploit")
]

_SQL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"union\s+select",
        r"drop\s+table",
        r"insert\s+into",
        r"delete\s+from",
        r"update\s+\w+\s+set",
        r"exec\s*\(",
    )
]

_XSS_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"<script", r"javascript:", r"\bon\w+\s*=", r"<iframe")
]

_PATH_TRAVERSAL = ("../", "..\\")


def detect_suspicious_activity(target: str, user_agent: str = "") -> List[SuspiciousSignal]:
    """
    Inspect a request target (path plus query string) and user agent.

    Returns every matching signal, in a stable order, or an empty list.
    """
    signals: List[SuspiciousSignal] = []
    decoded = unquote_plus(target or "")

    if user_agent and any(p.search(user_agent) for p in _USER_AGENT_PATTERNS):
        signals.append(SuspiciousSignal("suspicious_user_agent", SecurityEvent.suspicious_activity, Severity.low))

    if any(marker in decoded for marker in _PATH_TRAVERSAL):
        signals.append(SuspiciousSignal("path_traversal_attempt", SecurityEvent.path_traversal_attempt, Severity.high))

    if any(p.search(decoded) for p in _SQL_PATTERNS):
        signals.append(SuspiciousSignal("sql_injection_attempt", SecurityEvent.sql_injection_attempt, Severity.high))

    if any(p.search(decoded) for p in _XSS_PATTERNS):
        signals.append(SuspiciousSignal("xss_attempt", SecurityEvent.xss_attempt, Severity.high))

    return signals


def strongest(signals: List[SuspiciousSignal]) -> SuspiciousSignal:
    return max(signals, key=lambda s: s.severity.rank)
