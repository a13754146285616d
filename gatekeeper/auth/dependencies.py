from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select

from .core import ADMIN_ROLE, decode_token
from ..config import settings
from ..database import db_session
from ..models import User
from ..security.alerts import SecurityEvent, Severity
from ..security.errors import Forbidden, StoreUnavailable, Unauthorized
from ..security.identity import Principal, client_ip

bearer_scheme = HTTPBearer(auto_error=False)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

logger = logging.getLogger("gatekeeper.auth")


# ---------------------------------------------------------------------------
# Principal resolution (shared with the security pipeline)
# ---------------------------------------------------------------------------

def _load_user(**criteria) -> Optional[User]:
    column, value = next(iter(criteria.items()))
    with db_session() as session:
        return session.execute(
            select(User).where(getattr(User, column) == value)
        ).scalar_one_or_none()


def resolve_user(bearer: Optional[str], api_key: Optional[str]) -> Optional[User]:
    """
    Accepts either:
      - Authorization: Bearer <jwt>
      - X-API-Key: mkt_<key>
    Returns None when no credentials were sent; raises ``Unauthorized``
    (reason ``invalid_token``) when they were sent but do not check out.
    """
    if bearer:
        try:
            payload = decode_token(bearer)
        except JWTError:
            raise Unauthorized("Invalid or expired token.", reason="invalid_token")
        user = _load_user(username=payload.get("sub", ""))
        if not user or not user.is_active:
            raise Unauthorized("User not found or inactive.", reason="invalid_token")
        return user

    if api_key:
        user = _load_user(api_key=api_key)
        if not user or not user.is_active:
            raise Unauthorized("Invalid API key.", reason="invalid_token")
        return user

    return None


def resolve_principal(bearer: Optional[str], api_key: Optional[str]) -> Optional[Principal]:
    user = resolve_user(bearer, api_key)
    return Principal(username=user.username, role=user.role) if user else None


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

def get_current_user(
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    api_key: str | None = Security(api_key_header),
) -> User:
    user = resolve_user(bearer.credentials if bearer else None, api_key)
    if user is None:
        raise Unauthorized(headers={"WWW-Authenticate": "Bearer"})
    return user


def _report_denied(request: Request, user: User) -> None:
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        return
    try:
        monitor.metrics.record_event(SecurityEvent.permission_denied)
        monitor.alerts.raise_alert(
            Severity.medium,
            SecurityEvent.permission_denied.value,
            f"Admin access denied for role {user.role}",
            ip=client_ip(
                request.headers,
                request.client.host if request.client else None,
                settings.trusted_proxies,
            ),
            user_agent=request.headers.get("user-agent", "unknown"),
            user_id=user.username,
            metadata={"path": request.url.path},
        )
    except StoreUnavailable as exc:
        logger.warning("Could not record permission denial: %s", exc)


def require_admin(request: Request, current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != ADMIN_ROLE:
        _report_denied(request, current_user)
        raise Forbidden("Admin access required.")
    return current_user
