"""
security/monitor.py — Wiring and maintenance for the security gate
==================================================================
``SecurityMonitor`` owns one counter store and the components that share
it. The FastAPI app keeps a single instance on ``app.state.monitor``; tests
build their own around a ``MemoryCounterStore`` and a fake clock.

``cleanup()`` is the periodic maintenance pass:
  - prune alert list entries whose record has expired;
  - re-arm TTLs on lockout / reputation keys that somehow lost theirs;
  - drop rate-limit counters that have no TTL (they would never reset);
  - count keys that turned out to be already expired while scanning.
It only ever removes state that is already logically dead, so it can run
alongside live traffic.
"""
from __future__ import annotations

import logging
import time
from typing import Callable

from pydantic import BaseModel, computed_field

from ..config import Settings
from ..store.base import KEY_MISSING, NO_EXPIRY, CounterStore, StoreUnavailable
from ..store.factory import create_store
from . import brute_force as bf
from . import rate_limiter as rl
from . import reputation as rep
from .alerts import SecurityAlertLog
from .brute_force import BruteForceTracker
from .metrics import MetricsRecorder
from .rate_limiter import RateLimiter
from .reputation import IPReputationTracker

logger = logging.getLogger("gatekeeper.security.monitor")


class CleanupReport(BaseModel):
    pruned_alert_references: int = 0
    dangling_references_seen: int = 0
    brute_force_keys: int = 0
    brute_force_ttl_repaired: int = 0
    expired_brute_force: int = 0
    reputation_keys: int = 0
    reputation_ttl_repaired: int = 0
    expired_reputations: int = 0
    rate_limit_keys_removed: int = 0

    @computed_field
    @property
    def pruned(self) -> int:
        return self.pruned_alert_references + self.rate_limit_keys_removed


class SecurityMonitor:
    def __init__(
        self,
        store: CounterStore,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock

        self.alerts = SecurityAlertLog(store, ttl_seconds=settings.alert_ttl_seconds, clock=clock)
        self.metrics = MetricsRecorder(store, clock=clock)
        self.rate_limiter = RateLimiter(store, clock=clock)
        self.brute_force = BruteForceTracker(
            store,
            threshold=settings.lockout_threshold,
            window_seconds=settings.lockout_window_seconds,
            clock=clock,
        )
        self.reputation = IPReputationTracker(
            store,
            alerts=self.alerts,
            alert_threshold=settings.reputation_alert_threshold,
            critical_threshold=settings.reputation_critical_threshold,
            ttl_seconds=settings.reputation_ttl_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecurityMonitor":
        store = create_store(settings.store_url, timeout_seconds=settings.store_timeout_seconds)
        return cls(store, settings)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _repair_ttls(self, prefix: str, ttl_ms: int) -> tuple[int, int, int]:
        """Return (keys seen, TTLs re-applied, keys already expired)."""
        seen = repaired = expired = 0
        for key in self.store.scan(prefix):
            seen += 1
            ttl = self.store.pttl(key)
            if ttl == NO_EXPIRY:
                self.store.pexpire(key, ttl_ms)
                repaired += 1
            elif ttl == KEY_MISSING:
                expired += 1
        return seen, repaired, expired

    def cleanup(self) -> CleanupReport:
        report = CleanupReport(dangling_references_seen=self.alerts.dangling_seen())
        report.pruned_alert_references = self.alerts.cleanup()

        (
            report.brute_force_keys,
            report.brute_force_ttl_repaired,
            report.expired_brute_force,
        ) = self._repair_ttls(bf.KEY_PREFIX, self.brute_force.window_ms)

        (
            report.reputation_keys,
            report.reputation_ttl_repaired,
            report.expired_reputations,
        ) = self._repair_ttls(rep.KEY_PREFIX, self.reputation.ttl_ms)

        stale = [key for key in self.store.scan(rl.KEY_PREFIX) if self.store.pttl(key) == NO_EXPIRY]
        if stale:
            report.rate_limit_keys_removed = self.store.delete(*stale)

        logger.info(
            "Security cleanup: pruned %d alert refs, repaired %d lockout / %d reputation TTLs, "
            "removed %d stale rate-limit keys",
            report.pruned_alert_references,
            report.brute_force_ttl_repaired,
            report.reputation_ttl_repaired,
            report.rate_limit_keys_removed,
            extra={"cleanup": report.model_dump()},
        )
        return report

    def store_healthy(self) -> bool:
        try:
            return self.store.ping()
        except StoreUnavailable as exc:
            logger.warning("Counter store health check failed: %s", exc)
            return False

    def close(self) -> None:
        self.store.close()
