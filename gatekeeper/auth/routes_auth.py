from typing import Optional

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy import select

from .core import create_access_token, verify_password
from .dependencies import get_current_user
from ..config import settings
from ..database import db_session
from ..models import LoginHistory, User
from ..security.alerts import SecurityEvent, Severity
from ..security.csrf import CSRF_COOKIE, generate_csrf_token
from ..security.errors import RateLimited, Unauthorized
from ..security.identity import client_ip
from ..security.monitor import SecurityMonitor

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=1, max_length=1024)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    username: str
    name: str


class MeResponse(BaseModel):
    username: str
    name: str
    role: str
    api_key: Optional[str] = None
    last_login_at: Optional[datetime] = None
    login_count: int = 0


class CsrfResponse(BaseModel):
    csrf_token: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _request_ip(request: Request) -> str:
    identity = getattr(request.state, "identity", None)
    if identity is not None:
        return identity.ip
    return client_ip(request.headers, request.client.host if request.client else None, settings.trusted_proxies)


def _record_attempt(request: Request, username: str, user: Optional[User], success: bool, reason: Optional[str]) -> None:
    with db_session() as session:
        if success and user is not None:
            user_row = session.get(User, user.id)
            if user_row:
                user_row.last_login_at = datetime.now(timezone.utc)
                user_row.login_count = (user_row.login_count or 0) + 1
        session.add(
            LoginHistory(
                username=username[:256],
                user_id=user.id if user else None,
                ip_address=_request_ip(request),
                user_agent=request.headers.get("user-agent", "")[:512],
                success=success,
                reason=reason,
            )
        )


def _on_failure(monitor: SecurityMonitor, identity: str, ip: str, username: str, user_agent: str) -> None:
    """Count a failed login; the attempt that reaches the threshold raises the alarm."""
    attempts = monitor.brute_force.record_failure(identity)
    monitor.metrics.record_event(SecurityEvent.auth_failure)
    if attempts == monitor.brute_force.threshold:
        monitor.alerts.raise_alert(
            Severity.high,
            SecurityEvent.brute_force_attempt.value,
            f"Account locked after {attempts} failed login attempts",
            ip=ip,
            user_agent=user_agent,
            user_id=username,
            metadata={"identity": identity, "attempts": attempts},
        )
        monitor.reputation.add_signal(ip, Severity.high, SecurityEvent.brute_force_attempt.value, user_agent)


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

@router.post("/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> TokenResponse:
    """
    Password login with per (ip, username) lockout.

    The lock is checked before the password so a locked identity learns
    nothing about the credentials. Counter store failures surface as 503:
    login never proceeds without brute-force protection.
    """
    monitor: SecurityMonitor = request.app.state.monitor
    ip = _request_ip(request)
    user_agent = request.headers.get("user-agent", "unknown")
    identity = f"{ip}:{body.username}"

    lock = monitor.brute_force.status(identity)
    if lock.locked:
        monitor.metrics.record_event(SecurityEvent.brute_force_attempt)
        _record_attempt(request, body.username, None, False, "locked")
        headers = {}
        if lock.reset_at is not None:
            headers["Retry-After"] = str(max(int(lock.reset_at - monitor.clock()), 1))
        raise RateLimited(
            "Too many failed login attempts. Try again later.",
            reason="account_locked",
            headers=headers,
        )

    with db_session() as session:
        user = session.execute(
            select(User).where(User.username == body.username)
        ).scalar_one_or_none()

    if not user or not user.is_active or not verify_password(body.password, user.password_hash):
        _on_failure(monitor, identity, ip, body.username, user_agent)
        _record_attempt(request, body.username, user, False, "bad_credentials")
        raise Unauthorized("Invalid credentials.", reason="invalid_credentials")

    monitor.brute_force.reset(identity)
    _record_attempt(request, body.username, user, True, None)

    token = create_access_token(subject=user.username, role=user.role)
    return TokenResponse(
        access_token=token,
        role=user.role,
        username=user.username,
        name=user.name,
    )


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------

@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        username=current_user.username,
        name=current_user.name,
        role=current_user.role,
        api_key=current_user.api_key,
        last_login_at=current_user.last_login_at,
        login_count=current_user.login_count or 0,
    )


@router.get("/csrf", response_model=CsrfResponse)
def issue_csrf_token(response: Response) -> CsrfResponse:
    """Hand out a double-submit token: echo it in X-CSRF-Token on unsafe requests."""
    token = generate_csrf_token()
    response.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,  # the client script must read it back into the header
        samesite="strict",
        secure=settings.environment != "development",
        path="/",
    )
    return CsrfResponse(csrf_token=token)
