from __future__ import annotations

import logging
import re
import sys
from typing import Any, Dict, Optional, TextIO

from pythonjsonlogger import jsonlogger

audit_logger = logging.getLogger("gatekeeper.audit")

# Control characters, including CR/LF, that could forge extra log lines.
_UNSAFE_CHARS_RE = re.compile(r"[\x00-\x1f\x7f-\x9f\u2028\u2029]")
_ANSI_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")

_MAX_FIELD_LENGTH = 512


# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

def configure_logging(level: str = "info", log_format: str = "json", stream: Optional[TextIO] = None) -> None:
    """Configure the root logger once; JSON lines when log_format=json."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if any(getattr(h, "_gatekeeper", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(stream or sys.stdout)
    if log_format == "json":
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                "%(asctime)s %(name)s %(levelname)s %(message)s",
                rename_fields={"asctime": "timestamp", "levelname": "level"},
            )
        )
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    handler._gatekeeper = True  # type: ignore[attr-defined]
    root.addHandler(handler)


# ---------------------------------------------------------------------------
# Log injection guards
# ---------------------------------------------------------------------------

def sanitize_for_log(value: Any, max_length: int = _MAX_FIELD_LENGTH) -> str:
    """
    Make a user-controlled value safe for a single log line.

    Strips ANSI escapes and control characters (newlines included) and
    truncates long values. ``None`` and empty values become ``"unknown"``.
    """
    if value is None:
        return "unknown"
    text = _ANSI_RE.sub("", str(value))
    text = _UNSAFE_CHARS_RE.sub("", text).strip()
    if not text:
        return "unknown"
    if len(text) > max_length:
        text = text[: max(0, max_length - 3)] + "..."
    return text


# ---------------------------------------------------------------------------
# Request audit line
# ---------------------------------------------------------------------------

def audit_log(
    *,
    method: str,
    path: str,
    ip: str,
    user_agent: Optional[str] = None,
    user_id: Optional[str] = None,
    role: Optional[str] = None,
    route: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Emit one structured audit record for a request that passed the gate.

    Returns the sanitized fields so callers and tests can inspect them.
    """
    fields: Dict[str, Any] = {
        "method": sanitize_for_log(method, 16),
        "path": sanitize_for_log(path),
        "ip": sanitize_for_log(ip, 64),
        "user_agent": sanitize_for_log(user_agent),
        "user_id": sanitize_for_log(user_id, 256) if user_id else None,
        "role": role,
        "route": route,
    }
    if extra:
        fields.update({k: sanitize_for_log(v) if isinstance(v, str) else v for k, v in extra.items()})

    audit_logger.info(
        "%s %s from %s",
        fields["method"],
        fields["path"],
        fields["ip"],
        extra={"audit": fields},
    )
    return fields
