"""
security/identity.py — Who is calling
=====================================
Resolves the client IP and the authenticated principal for one request.
The principal lookup itself (JWT / API key against the user table) lives in
the auth collaborator and is injected as a ``PrincipalResolver`` so the
pipeline does not depend on the database.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Collection, Mapping, Optional, Tuple

UNKNOWN = "unknown"


@dataclass(frozen=True)
class Principal:
    username: str
    role: str


@dataclass(frozen=True)
class RequestIdentity:
    ip: str
    user_agent: str
    principal: Optional[Principal] = None
    # Set when credentials were presented but rejected.
    credential_error: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.principal.username if self.principal else None


# (bearer token, api key) -> principal, or None when no credentials were sent.
# Raises ``Unauthorized`` for credentials that are present but invalid.
PrincipalResolver = Callable[[Optional[str], Optional[str]], Optional[Principal]]


def _is_trusted(host: str, trusted_proxies: Collection[str]) -> bool:
    return "*" in trusted_proxies or host in trusted_proxies


def client_ip(
    headers: Mapping[str, str],
    peer_host: Optional[str] = None,
    trusted_proxies: Collection[str] = (),
) -> str:
    """
    The socket peer, unless the peer is a trusted proxy.

    Behind a trusted proxy the X-Forwarded-For chain is walked from the
    right and the first hop that is not itself a trusted proxy wins;
    X-Real-IP is the fallback. Forwarding headers from any other peer are
    ignored, since the client can write whatever it likes into them.
    """
    if not peer_host or not _is_trusted(peer_host, trusted_proxies):
        return peer_host or UNKNOWN

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        for hop in reversed(hops):
            if not _is_trusted(hop, trusted_proxies):
                return hop
        if hops:
            return hops[0]
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return peer_host


def extract_credentials(headers: Mapping[str, str]) -> Tuple[Optional[str], Optional[str]]:
    bearer = None
    authorization = headers.get("authorization") or ""
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        bearer = value.strip()
    api_key = (headers.get("x-api-key") or "").strip() or None
    return bearer, api_key
