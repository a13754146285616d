"""
security/csrf.py — Double-submit CSRF tokens
============================================
The token is handed out once (``GET /api/auth/csrf``) both as a cookie and
in the response body. State-changing requests must echo it back in the
``X-CSRF-Token`` header; a cross-site form cannot read the cookie to do so.
"""
from __future__ import annotations

import secrets
from typing import Optional

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "x-csrf-token"
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def generate_csrf_token() -> str:
    return secrets.token_hex(32)


def verify_csrf_token(header_token: Optional[str], cookie_token: Optional[str]) -> bool:
    if not header_token or not cookie_token:
        return False
    return secrets.compare_digest(header_token.encode(), cookie_token.encode())


def requires_csrf(method: str) -> bool:
    return method.upper() in UNSAFE_METHODS
