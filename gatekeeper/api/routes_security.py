"""
api/routes_security.py — Operator endpoints for the security gate
=================================================================

Covers:
- Metrics snapshot plus recent alerts (optionally one severity)
- On-demand maintenance pass (same as the periodic cleanup task)
- IP reputation lookup
- Clearing a brute-force lockout
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from ..auth.dependencies import require_admin
from ..models import User
from ..security.alerts import SecurityAlert, Severity
from ..security.metrics import SecurityMetrics
from ..security.monitor import CleanupReport, SecurityMonitor

logger = logging.getLogger("gatekeeper.api.security")

router = APIRouter(prefix="/api/admin/security", tags=["security"])


# ═══════════════════════════════════════════════════════════════════════════
# Schemas
# ═══════════════════════════════════════════════════════════════════════════

class SecurityOverview(BaseModel):
    metrics: SecurityMetrics
    alerts: List[SecurityAlert]
    summary: Dict[str, int]


class ReputationRead(BaseModel):
    ip: str
    score: int
    level: str
    reasons: List[str]


class LockoutCleared(BaseModel):
    identity: str
    attempts: int
    was_locked: bool
    cleared: bool
    reset_at: Optional[datetime] = None


def _monitor(request: Request) -> SecurityMonitor:
    return request.app.state.monitor


# ═══════════════════════════════════════════════════════════════════════════
# Endpoints
# ═══════════════════════════════════════════════════════════════════════════

@router.get("", response_model=SecurityOverview)
def security_overview(
    request: Request,
    severity: Optional[Severity] = Query(None, description="Only alerts of this severity"),
    limit: int = Query(50, ge=1, le=500),
    _admin: User = Depends(require_admin),
) -> SecurityOverview:
    monitor = _monitor(request)
    alerts = monitor.alerts.list_alerts(severity=severity, limit=limit)
    return SecurityOverview(
        metrics=monitor.metrics.snapshot(),
        alerts=alerts,
        summary=monitor.alerts.summary(alerts),
    )


@router.post("/cleanup", response_model=CleanupReport)
def run_cleanup(request: Request, admin: User = Depends(require_admin)) -> CleanupReport:
    report = _monitor(request).cleanup()
    logger.info("Manual security cleanup by %s", admin.username, extra={"cleanup": report.model_dump()})
    return report


@router.get("/reputation/{ip}", response_model=ReputationRead)
def get_reputation(ip: str, request: Request, _admin: User = Depends(require_admin)) -> ReputationRead:
    rep = _monitor(request).reputation.get_reputation(ip)
    return ReputationRead(ip=rep.ip, score=rep.score, level=rep.level, reasons=rep.reasons)


@router.delete("/lockouts/{identity:path}", response_model=LockoutCleared)
def clear_lockout(identity: str, request: Request, admin: User = Depends(require_admin)) -> LockoutCleared:
    """``identity`` is ``<ip>:<username>``, as recorded by the login endpoint."""
    tracker = _monitor(request).brute_force
    status = tracker.status(identity)
    cleared = tracker.reset(identity)
    if cleared:
        logger.info("Lockout cleared for %s by %s", identity, admin.username)
    return LockoutCleared(
        identity=identity,
        attempts=status.attempts,
        was_locked=status.locked,
        cleared=cleared,
        reset_at=datetime.fromtimestamp(status.reset_at, tz=timezone.utc) if status.reset_at else None,
    )
