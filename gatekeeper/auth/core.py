from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from ..config import settings

ROLES = ("admin", "employer", "freelancer")
ADMIN_ROLE = "admin"

ALGORITHM = "HS256"
TOKEN_ISSUER = "marketplace-gatekeeper"
API_KEY_PREFIX = "mkt_"

# bcrypt only looks at the first 72 bytes and newer releases reject longer input.
_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(_bcrypt_input(plain), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    """Constant-time check; a malformed stored hash never matches."""
    try:
        return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode())
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------

def create_access_token(subject: str, role: str, expires_minutes: int | None = None) -> str:
    if role not in ROLES:
        raise ValueError(f"unknown role {role!r}")
    now = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or settings.jwt_expire_minutes)
    claims = {
        "sub": subject,
        "role": role,
        "iss": TOKEN_ISSUER,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Verify signature, expiry and issuer. Raises ``JWTError`` when any of
    them fail or when the token names a role the marketplace does not have.
    """
    claims = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM], issuer=TOKEN_ISSUER)
    if claims.get("role") not in ROLES or not claims.get("sub"):
        raise JWTError("token carries no valid subject or role")
    return claims


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------

def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
