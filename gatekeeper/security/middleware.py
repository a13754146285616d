"""
security/middleware.py — Request gate composer
==============================================
Every gated request runs the same fixed sequence:

  1. resolve identity (client IP, principal from Bearer JWT / X-API-Key)
  2. require_auth and no valid principal        -> 401
  3. validate_csrf on an unsafe method, bad token -> 403 csrf_failed
  4. rate limit per (user or client IP, scope)   -> 429
  5. suspicious request heuristics               -> 403 suspicious_request
  6. structured audit line
  7. the handler

The first failing step short-circuits; later steps never run. Each request
counts towards ``total_requests`` and each rejection bumps its own metric
before the JSON error body ``{"error": ..., "message": ...}`` is returned.

Store failures never escape: bookkeeping (metrics, alerts, reputation) is
best effort, and the rate-limit step applies the route's fail-open /
fail-closed policy.

``wrap(handler, config)`` gates a single endpoint; ``SecurityMiddleware``
gates a whole app through a prefix table (see ``security/routes.py``).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Collection, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..store.base import StoreUnavailable
from ..telemetry.logger import audit_log, sanitize_for_log
from .alerts import SecurityEvent, Severity
from .csrf import CSRF_COOKIE, CSRF_HEADER, requires_csrf, verify_csrf_token
from .errors import Forbidden, InternalError, RateLimited, SecurityError, Unauthorized
from .heuristics import detect_suspicious_activity, strongest
from .identity import PrincipalResolver, RequestIdentity, client_ip, extract_credentials
from .monitor import SecurityMonitor
from .rate_limiter import RateLimitResult

logger = logging.getLogger("gatekeeper.security.middleware")

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains; preload",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": (
        "accelerometer=(), camera=(), geolocation=(), gyroscope=(), "
        "magnetometer=(), microphone=(), payment=(self), usb=()"
    ),
}


# ═══════════════════════════════════════════════════════════════════
# CONFIG
# ═══════════════════════════════════════════════════════════════════

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RateLimitRule(_CamelModel):
    window_ms: int = Field(..., ge=1)
    max: int = Field(..., ge=1)
    # None -> the pipeline default (fail open).
    fail_open: Optional[bool] = None
    # "user" keys by the principal when one resolved and by client IP otherwise.
    key_by: Literal["ip", "user"] = "user"


class SecurityOptions(_CamelModel):
    require_auth: bool = False
    validate_csrf: bool = Field(default=False, alias="validateCSRF")
    log_requests: bool = True
    check_suspicious: bool = True


class GuardConfig(_CamelModel):
    rate_limit: Optional[RateLimitRule] = None
    security: Optional[SecurityOptions] = None


def rate_limit_client(identity: RequestIdentity, key_by: str = "user") -> str:
    """Counter owner for one request: ``user:<username>`` or the client IP."""
    if key_by == "user" and identity.principal is not None:
        return f"user:{identity.principal.username}"
    return identity.ip


_REJECTION_EVENTS = (
    (RateLimited, SecurityEvent.rate_limit_exceeded),
    (Unauthorized, SecurityEvent.auth_failure),
    (Forbidden, SecurityEvent.permission_denied),
)


@dataclass
class GateDecision:
    identity: RequestIdentity
    headers: Dict[str, str] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════
# PIPELINE
# ═══════════════════════════════════════════════════════════════════

class SecurityPipeline:
    """Synchronous gate; the async glue below runs it in the threadpool."""

    def __init__(
        self,
        monitor: SecurityMonitor,
        resolve_principal: Optional[PrincipalResolver] = None,
        *,
        fail_open: bool = True,
        block_suspicious: bool = True,
        rate_limit_divisor: int = 2,
        trusted_proxies: Collection[str] = (),
    ) -> None:
        self.monitor = monitor
        self.resolve_principal = resolve_principal
        self.fail_open = fail_open
        self.block_suspicious = block_suspicious
        self.rate_limit_divisor = rate_limit_divisor
        self.trusted_proxies = frozenset(trusted_proxies)

    @classmethod
    def from_monitor(
        cls,
        monitor: SecurityMonitor,
        resolve_principal: Optional[PrincipalResolver] = None,
    ) -> "SecurityPipeline":
        settings = monitor.settings
        return cls(
            monitor,
            resolve_principal,
            fail_open=settings.rate_limit_fail_open,
            block_suspicious=settings.block_suspicious,
            rate_limit_divisor=settings.reputation_rate_limit_divisor,
            trusted_proxies=settings.trusted_proxies,
        )

    # ------------------------------------------------------------------
    # Best-effort bookkeeping
    # ------------------------------------------------------------------

    def _best_effort(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except StoreUnavailable as exc:
            logger.warning("Security bookkeeping skipped (%s): %s", getattr(fn, "__name__", fn), exc)
            return None

    def _record(
        self,
        event: SecurityEvent,
        severity: Optional[Severity],
        message: str,
        identity: RequestIdentity,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._best_effort(self.monitor.metrics.record_event, event)
        if severity is not None:
            self._best_effort(
                self.monitor.alerts.raise_alert,
                severity,
                event.value,
                message,
                ip=identity.ip,
                user_agent=identity.user_agent,
                user_id=identity.user_id,
                metadata=metadata,
            )

    def record_rejection(self, exc: SecurityError) -> None:
        """Count a rejection that did not come from one of the pipeline steps."""
        for kind, event in _REJECTION_EVENTS:
            if isinstance(exc, kind):
                self._best_effort(self.monitor.metrics.record_event, event)
                return
        self._best_effort(self.monitor.metrics.increment, "blocked_requests")

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _identify(self, headers: Mapping[str, str], peer_host: Optional[str], path: str) -> RequestIdentity:
        ip = client_ip(headers, peer_host, self.trusted_proxies)
        user_agent = headers.get("user-agent") or "unknown"
        bearer, api_key = extract_credentials(headers)
        if self.resolve_principal is None or not (bearer or api_key):
            return RequestIdentity(ip=ip, user_agent=user_agent)

        try:
            principal = self.resolve_principal(bearer, api_key)
        except Unauthorized as exc:
            identity = RequestIdentity(ip=ip, user_agent=user_agent, credential_error=exc.reason)
            self._record(
                SecurityEvent.invalid_token,
                Severity.medium,
                "Invalid credentials presented",
                identity,
                {"path": sanitize_for_log(path), "scheme": "bearer" if bearer else "api_key"},
            )
            return identity
        return RequestIdentity(ip=ip, user_agent=user_agent, principal=principal)

    def _check_rate_limit(
        self,
        identity: RequestIdentity,
        route_scope: str,
        rule: RateLimitRule,
    ) -> Optional[RateLimitResult]:
        fail_open = self.fail_open if rule.fail_open is None else rule.fail_open
        try:
            max_requests = rule.max
            if self.monitor.reputation.is_suspicious(identity.ip):
                max_requests = max(1, rule.max // self.rate_limit_divisor)
            result = self.monitor.rate_limiter.check_limit(
                rate_limit_client(identity, rule.key_by), route_scope, rule.window_ms, max_requests
            )
        except StoreUnavailable as exc:
            if fail_open:
                logger.warning("Rate limit store unavailable; allowing %s (fail-open)", route_scope)
                return None
            logger.error("Rate limit store unavailable; rejecting %s (fail-closed)", route_scope)
            rejection = StoreUnavailable()
            self.record_rejection(rejection)
            raise rejection from exc

        if not result.allowed:
            self._record(
                SecurityEvent.rate_limit_exceeded,
                Severity.medium,
                f"Rate limit exceeded for {route_scope}",
                identity,
                {"scope": route_scope, "count": result.count, "limit": result.limit},
            )
            self._best_effort(
                self.monitor.reputation.add_signal,
                identity.ip,
                Severity.low,
                SecurityEvent.rate_limit_exceeded.value,
                identity.user_agent,
            )
            headers = result.headers()
            headers["Retry-After"] = str(result.retry_after(self.monitor.clock()))
            raise RateLimited("Too many requests, please try again later.", headers=headers)
        return result

    def _check_suspicious(self, identity: RequestIdentity, target: str) -> None:
        signals = detect_suspicious_activity(target, identity.user_agent)
        if not signals:
            return

        for signal in signals:
            self._best_effort(
                self.monitor.reputation.add_signal, identity.ip, signal.severity, signal.name, identity.user_agent
            )
        top = strongest(signals)
        metadata = {"signals": [s.name for s in signals], "target": sanitize_for_log(target)}

        if self.block_suspicious:
            self._record(top.event, top.severity, f"Suspicious request blocked: {top.name}", identity, metadata)
            raise Forbidden("Request blocked.", reason="suspicious_request")

        self._best_effort(self.monitor.metrics.increment, "suspicious_activity")
        self._best_effort(
            self.monitor.alerts.raise_alert,
            top.severity,
            top.event.value,
            f"Suspicious request allowed: {top.name}",
            ip=identity.ip,
            user_agent=identity.user_agent,
            user_id=identity.user_id,
            metadata=metadata,
        )

    def evaluate(
        self,
        *,
        method: str,
        path: str,
        query: str,
        headers: Mapping[str, str],
        cookies: Mapping[str, str],
        peer_host: Optional[str],
        route_scope: str,
        config: GuardConfig,
    ) -> GateDecision:
        """Run steps 1-6. Raises a ``SecurityError`` on the first rejection."""
        self._best_effort(self.monitor.metrics.record_request)
        options = config.security or SecurityOptions()

        identity = self._identify(headers, peer_host, path)

        if options.require_auth and identity.principal is None:
            if identity.credential_error is None:
                self._record(SecurityEvent.auth_failure, None, "Authentication required", identity)
                raise Unauthorized()
            raise Unauthorized("Invalid or expired credentials.", reason=identity.credential_error)

        if options.validate_csrf and requires_csrf(method):
            if not verify_csrf_token(headers.get(CSRF_HEADER), cookies.get(CSRF_COOKIE)):
                self._record(
                    SecurityEvent.csrf_failure,
                    Severity.medium,
                    "CSRF token validation failed",
                    identity,
                    {"method": method, "path": sanitize_for_log(path)},
                )
                raise Forbidden("Invalid CSRF token.", reason="csrf_failed")

        decision = GateDecision(identity=identity)
        if config.rate_limit is not None:
            result = self._check_rate_limit(identity, route_scope, config.rate_limit)
            if result is not None:
                decision.headers.update(result.headers())

        if options.check_suspicious:
            target = f"{path}?{query}" if query else path
            self._check_suspicious(identity, target)

        if options.log_requests:
            audit_log(
                method=method,
                path=path,
                ip=identity.ip,
                user_agent=identity.user_agent,
                user_id=identity.user_id,
                role=identity.principal.role if identity.principal else None,
                route=route_scope,
            )
        return decision

    # ------------------------------------------------------------------
    # Async glue
    # ------------------------------------------------------------------

    async def guard(
        self,
        request: Request,
        route_scope: str,
        config: GuardConfig,
    ) -> Union[Response, GateDecision]:
        """Return the rejection response, or the decision for a request that may proceed."""
        try:
            decision = await run_in_threadpool(
                lambda: self.evaluate(
                    method=request.method,
                    path=request.url.path,
                    query=request.url.query,
                    headers=request.headers,
                    cookies=request.cookies,
                    peer_host=request.client.host if request.client else None,
                    route_scope=route_scope,
                    config=config,
                )
            )
        except SecurityError as exc:
            return error_response(exc)
        except Exception:
            logger.exception("Security pipeline failed for %s", sanitize_for_log(request.url.path))
            failure = InternalError()
            await run_in_threadpool(self.record_rejection, failure)
            return error_response(failure)

        request.state.identity = decision.identity
        return decision


# ═══════════════════════════════════════════════════════════════════
# RESPONSES
# ═══════════════════════════════════════════════════════════════════

def apply_security_headers(response: Response, extra: Optional[Mapping[str, str]] = None) -> Response:
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    if extra:
        for name, value in extra.items():
            response.headers[name] = value
    return response


def error_response(exc: SecurityError) -> JSONResponse:
    response = JSONResponse(exc.to_dict(), status_code=exc.status_code)
    return apply_security_headers(response, exc.headers)


def _pipeline_for(request: Request, pipeline: Optional[SecurityPipeline]) -> SecurityPipeline:
    return pipeline if pipeline is not None else request.app.state.security_pipeline


Handler = Callable[[Request], Union[Response, Awaitable[Response]]]


def wrap(
    handler: Handler,
    config: GuardConfig | Mapping[str, Any],
    *,
    pipeline: Optional[SecurityPipeline] = None,
    route_scope: Optional[str] = None,
) -> Callable[[Request], Awaitable[Response]]:
    """
    Gate a single Starlette/FastAPI endpoint with ``config``.

    ``config`` may be a ``GuardConfig`` or a plain mapping using either
    snake_case or camelCase keys. The pipeline defaults to
    ``app.state.security_pipeline``; the rate-limit scope defaults to the
    request path.
    """
    guard_config = config if isinstance(config, GuardConfig) else GuardConfig.model_validate(config)
    is_async = asyncio.iscoroutinefunction(handler)

    async def endpoint(request: Request) -> Response:
        gate = _pipeline_for(request, pipeline)
        outcome = await gate.guard(request, route_scope or request.url.path, guard_config)
        if isinstance(outcome, Response):
            return outcome

        try:
            if is_async:
                response = await handler(request)  # type: ignore[misc]
            else:
                response = await run_in_threadpool(handler, request)
        except SecurityError as exc:
            await run_in_threadpool(gate.record_rejection, exc)
            return error_response(exc)
        except Exception:
            logger.exception("Handler failed for %s", sanitize_for_log(request.url.path))
            failure = InternalError()
            await run_in_threadpool(gate.record_rejection, failure)
            return error_response(failure)
        return apply_security_headers(response, outcome.headers)

    endpoint.__name__ = getattr(handler, "__name__", "endpoint")
    return endpoint


def match_route(path: str, routes: Mapping[str, GuardConfig]) -> Optional[str]:
    """Longest prefix of ``path`` present in ``routes``, on segment boundaries."""
    best: Optional[str] = None
    for prefix in routes:
        if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
            if best is None or len(prefix) > len(best):
                best = prefix
    return best


class SecurityMiddleware(BaseHTTPMiddleware):
    """Gate every request whose path matches a prefix in ``routes``."""

    def __init__(
        self,
        app,
        routes: Mapping[str, GuardConfig],
        pipeline: Optional[SecurityPipeline] = None,
    ) -> None:
        super().__init__(app)
        self.routes = dict(routes)
        self.pipeline = pipeline

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # CORS preflight never carries credentials or CSRF tokens.
        if request.method == "OPTIONS":
            return apply_security_headers(await call_next(request))

        prefix = match_route(request.url.path, self.routes)
        if prefix is None:
            return apply_security_headers(await call_next(request))

        outcome = await _pipeline_for(request, self.pipeline).guard(request, prefix, self.routes[prefix])
        if isinstance(outcome, Response):
            return outcome
        response = await call_next(request)
        return apply_security_headers(response, outcome.headers)
