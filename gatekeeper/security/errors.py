"""
security/errors.py — Error kinds raised by the security gate
=============================================================
Each kind carries the HTTP status and the machine-readable reason that the
middleware puts in the rejection body. Callers never see stack detail; the
full story goes to the alert log.
"""
from __future__ import annotations

from typing import Dict, Optional


class SecurityError(Exception):
    status_code: int = 500
    reason: str = "internal_error"
    default_message: str = "Internal server error."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        reason: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.message = message or self.default_message
        if reason:
            self.reason = reason
        self.headers = headers or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.reason, "message": self.message}


class Unauthorized(SecurityError):
    status_code = 401
    reason = "unauthorized"
    default_message = "Authentication required."


class Forbidden(SecurityError):
    status_code = 403
    reason = "forbidden"
    default_message = "Insufficient permissions."


class RateLimited(SecurityError):
    status_code = 429
    reason = "rate_limited"
    default_message = "Too many requests."


class ValidationFailed(SecurityError):
    status_code = 422
    reason = "validation_failed"
    default_message = "Request validation failed."


class StoreUnavailable(SecurityError):
    """The counter store could not be reached within its timeout."""

    status_code = 503
    reason = "store_unavailable"
    default_message = "Security service temporarily unavailable."


class InternalError(SecurityError):
    pass
