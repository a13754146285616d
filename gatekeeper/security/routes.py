"""
security/routes.py — Per-prefix gate policy
===========================================
Maps API path prefixes to a ``GuardConfig``. ``SecurityMiddleware`` picks
the longest matching prefix, so ``/api/admin/security/cleanup`` overrides
``/api/admin`` which overrides the ``/api`` fallback.
"""
from __future__ import annotations

from typing import Dict

from ..config import Settings
from .middleware import GuardConfig, RateLimitRule, SecurityOptions

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


def _member_route(rule: RateLimitRule, *, validate_csrf: bool = True) -> GuardConfig:
    return GuardConfig(
        rate_limit=rule,
        security=SecurityOptions(require_auth=True, validate_csrf=validate_csrf),
    )


def build_route_configs(settings: Settings) -> Dict[str, GuardConfig]:
    general = RateLimitRule(window_ms=15 * MINUTE_MS, max=100)
    return {
        "/api/auth": GuardConfig(
            rate_limit=RateLimitRule(
                window_ms=settings.auth_rate_limit_window_ms,
                max=settings.auth_rate_limit_max,
                fail_open=settings.auth_fail_open,
            ),
            security=SecurityOptions(),
        ),
        "/api/admin": _member_route(RateLimitRule(window_ms=MINUTE_MS, max=30)),
        "/api/admin/security": _member_route(RateLimitRule(window_ms=MINUTE_MS, max=20)),
        "/api/admin/security/cleanup": _member_route(RateLimitRule(window_ms=HOUR_MS, max=5)),
        "/api/employer": _member_route(general),
        "/api/freelancer": _member_route(general),
        "/api/jobs": _member_route(general),
        "/api/upload": _member_route(RateLimitRule(window_ms=MINUTE_MS, max=10)),
        "/api/payment": _member_route(RateLimitRule(window_ms=MINUTE_MS, max=5)),
        "/api/messages": _member_route(RateLimitRule(window_ms=MINUTE_MS, max=30), validate_csrf=False),
        "/api": GuardConfig(
            rate_limit=RateLimitRule(window_ms=MINUTE_MS, max=settings.api_rate_limit_per_minute),
            security=SecurityOptions(),
        ),
    }

