"""
tests/test_security_api.py — Admin security endpoints and route policy
======================================================================

Covers: admin-only access, overview filtering and validation, CSRF on
the maintenance endpoints, reputation lookup, lockout clearing, meta
routes, and the per-prefix policy table.
"""
from fastapi.testclient import TestClient

from gatekeeper.config import Settings
from gatekeeper.main import app
from gatekeeper.security.alerts import Severity
from gatekeeper.security.middleware import match_route
from gatekeeper.security.routes import build_route_configs

BASE = "/api/admin/security"


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _csrf_client(token: str) -> tuple[TestClient, dict]:
    """A client holding the CSRF cookie plus headers that echo it."""
    c = TestClient(app)
    csrf = c.get("/api/auth/csrf").json()["csrf_token"]
    return c, {**_headers(token), "X-CSRF-Token": csrf}


# ═══════════════════════════════════════════════════════════════════════════
# Access control
# ═══════════════════════════════════════════════════════════════════════════

class TestAccess:
    def test_requires_credentials(self, client):
        resp = client.get(BASE)
        assert resp.status_code == 401
        assert resp.json()["error"] == "unauthorized"

    def test_non_admin_forbidden(self, client, employer_token):
        resp = client.get(BASE, headers=_headers(employer_token))
        assert resp.status_code == 403
        assert resp.json() == {"error": "forbidden", "message": "Admin access required."}

    def test_denial_is_alerted(self, client, employer_token):
        client.get(BASE, headers=_headers(employer_token))
        alerts = app.state.monitor.alerts.list_alerts(severity=Severity.medium)
        denied = [a for a in alerts if a.type == "permission_denied"]
        assert len(denied) == 1
        assert denied[0].user_id == "employer1"
        assert denied[0].metadata["path"] == BASE


# ═══════════════════════════════════════════════════════════════════════════
# Overview
# ═══════════════════════════════════════════════════════════════════════════

class TestOverview:
    def test_shape(self, client, admin_token):
        resp = client.get(BASE, headers=_headers(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        assert set(body) == {"metrics", "alerts", "summary"}
        assert body["metrics"]["total_requests"] >= 1
        assert body["summary"]["total_alerts"] == 0

    def test_severity_filter(self, client, admin_token):
        monitor = app.state.monitor
        monitor.alerts.raise_alert(Severity.low, "test_event", "low one")
        monitor.alerts.raise_alert(Severity.critical, "test_event", "critical one")

        resp = client.get(BASE, params={"severity": "critical"}, headers=_headers(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        assert [a["message"] for a in body["alerts"]] == ["critical one"]
        assert body["summary"]["critical_alerts"] == 1
        assert body["summary"]["low_alerts"] == 0

    def test_limit(self, client, admin_token):
        for i in range(3):
            app.state.monitor.alerts.raise_alert(Severity.medium, "test_event", f"alert {i}")
        resp = client.get(BASE, params={"limit": 2}, headers=_headers(admin_token))
        assert len(resp.json()["alerts"]) == 2

    def test_unknown_severity_rejected(self, client, admin_token):
        resp = client.get(BASE, params={"severity": "urgent"}, headers=_headers(admin_token))
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "validation_failed"
        assert body["message"] == "Request validation failed."
        assert body["details"][0]["loc"] == ["query", "severity"]

    def test_limit_bounds(self, client, admin_token):
        for limit in (0, 501):
            resp = client.get(BASE, params={"limit": limit}, headers=_headers(admin_token))
            assert resp.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
# Maintenance
# ═══════════════════════════════════════════════════════════════════════════

class TestCleanup:
    def test_needs_csrf_token(self, client, admin_token):
        resp = client.post(f"{BASE}/cleanup", headers=_headers(admin_token))
        assert resp.status_code == 403
        assert resp.json()["error"] == "csrf_failed"

    def test_runs_with_csrf_token(self, admin_token):
        c, headers = _csrf_client(admin_token)
        resp = c.post(f"{BASE}/cleanup", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["pruned"] == 0
        assert "brute_force_ttl_repaired" in body

    def test_mismatched_csrf_token(self, admin_token):
        c, headers = _csrf_client(admin_token)
        headers["X-CSRF-Token"] = "0" * 64
        resp = c.post(f"{BASE}/cleanup", headers=headers)
        assert resp.status_code == 403

    def test_cleanup_route_has_its_own_limit(self, admin_token):
        c, headers = _csrf_client(admin_token)
        for _ in range(5):
            assert c.post(f"{BASE}/cleanup", headers=headers).status_code == 200
        resp = c.post(f"{BASE}/cleanup", headers=headers)
        assert resp.status_code == 429
        assert resp.headers["X-RateLimit-Limit"] == "5"
        assert "Retry-After" in resp.headers


class TestReputation:
    def test_clean_ip(self, client, admin_token):
        resp = client.get(f"{BASE}/reputation/198.51.100.7", headers=_headers(admin_token))
        assert resp.status_code == 200
        assert resp.json() == {"ip": "198.51.100.7", "score": 0, "level": "good", "reasons": []}

    def test_scored_ip(self, client, admin_token):
        app.state.monitor.reputation.add_suspicion_score("198.51.100.7", 60, "sql_injection_attempt")
        body = client.get(f"{BASE}/reputation/198.51.100.7", headers=_headers(admin_token)).json()
        assert body["score"] == 60
        assert body["level"] == "suspicious"
        assert body["reasons"] == ["sql_injection_attempt"]


class TestLockouts:
    def test_clear_locked_identity(self, admin_token):
        tracker = app.state.monitor.brute_force
        for _ in range(5):
            tracker.record_failure("198.51.100.30:mallory")

        c, headers = _csrf_client(admin_token)
        resp = c.delete(f"{BASE}/lockouts/198.51.100.30:mallory", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["identity"] == "198.51.100.30:mallory"
        assert body["attempts"] == 5
        assert body["was_locked"] is True
        assert body["cleared"] is True
        assert tracker.is_locked("198.51.100.30:mallory") is False

    def test_clear_unknown_identity(self, admin_token):
        c, headers = _csrf_client(admin_token)
        body = c.delete(f"{BASE}/lockouts/198.51.100.30:nobody", headers=headers).json()
        assert body["cleared"] is False
        assert body["was_locked"] is False
        assert body["reset_at"] is None


# ═══════════════════════════════════════════════════════════════════════════
# Meta routes
# ═══════════════════════════════════════════════════════════════════════════

class TestMeta:
    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == "marketplace-gatekeeper"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "store": True}

    def test_health_degraded(self, client, monkeypatch):
        monkeypatch.setattr(app.state.monitor, "store_healthy", lambda: False)
        assert client.get("/health").json() == {"status": "degraded", "store": False}

    def test_ungated_paths_still_get_headers(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "X-RateLimit-Limit" not in resp.headers

    def test_unknown_api_path(self, client):
        resp = client.get("/api/nothing-here")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"
        assert resp.headers["X-RateLimit-Limit"] == "60"


# ═══════════════════════════════════════════════════════════════════════════
# Route policy table
# ═══════════════════════════════════════════════════════════════════════════

class TestRouteTable:
    routes = build_route_configs(Settings(store_url="memory://", auth_rate_limit_max=5))

    def test_longest_prefix_wins(self):
        assert match_route("/api/admin/security/cleanup", self.routes) == "/api/admin/security/cleanup"
        assert match_route("/api/admin/security", self.routes) == "/api/admin/security"
        assert match_route("/api/admin/users", self.routes) == "/api/admin"
        assert match_route("/api/jobs/42", self.routes) == "/api/jobs"
        assert match_route("/api/jobsearch", self.routes) == "/api"
        assert match_route("/docs", self.routes) is None

    def test_auth_routes(self):
        auth = self.routes["/api/auth"]
        assert auth.rate_limit.max == 5
        assert auth.rate_limit.window_ms == 15 * 60 * 1000
        assert auth.rate_limit.fail_open is False
        assert auth.security.require_auth is False
        assert auth.rate_limit.key_by == "user"

    def test_member_routes(self):
        for prefix in ("/api/employer", "/api/freelancer", "/api/jobs", "/api/upload", "/api/payment"):
            config = self.routes[prefix]
            assert config.security.require_auth is True
            assert config.security.validate_csrf is True
        assert self.routes["/api/payment"].rate_limit.max == 5
        assert self.routes["/api/messages"].security.validate_csrf is False
