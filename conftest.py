"""
pytest configuration – point the service at a throwaway SQLite database and
the in-process counter store before anything imports ``gatekeeper.config``.
Provides a session-scoped admin token so tests log in once.
"""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="gatekeeper-tests-")
os.environ["GATEKEEPER_DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'gatekeeper.db')}"
os.environ["GATEKEEPER_STORE_URL"] = "memory://"
os.environ["GATEKEEPER_CLEANUP_INTERVAL_SECONDS"] = "0"
os.environ["GATEKEEPER_LOG_FORMAT"] = "text"
os.environ["GATEKEEPER_ENVIRONMENT"] = "development"
# Login tests exercise the lockout; keep the route limit out of their way.
os.environ["GATEKEEPER_AUTH_RATE_LIMIT_MAX"] = "1000"
# TestClient connects from the peer "testclient"; let it forward X-Forwarded-For.
os.environ["GATEKEEPER_TRUSTED_PROXIES"] = '["testclient"]'

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import select  # noqa: E402

from gatekeeper.auth.core import hash_password  # noqa: E402
from gatekeeper.database import db_session  # noqa: E402
from gatekeeper.main import app  # noqa: E402
from gatekeeper.models import User  # noqa: E402


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_store():
    """Every test starts with an empty counter store."""
    app.state.monitor.store.flush()
    yield
    app.state.monitor.store.flush()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def ensure_user(username: str, password: str, role: str) -> None:
    with db_session() as session:
        existing = session.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if existing:
            return
        session.add(User(username=username, name=username.title(), password_hash=hash_password(password), role=role))


# Session-scoped tokens: login happens ONCE per test run
_session_tokens: dict = {}


def _login(username: str, password: str) -> str:
    if username not in _session_tokens:
        client = TestClient(app)
        resp = client.post("/api/auth/login", json={"username": username, "password": password})
        assert resp.status_code == 200, f"Login failed: {resp.text}"
        _session_tokens[username] = resp.json()["access_token"]
    return _session_tokens[username]


@pytest.fixture(scope="session")
def admin_token() -> str:
    return _login("admin", "changeme")


@pytest.fixture(scope="session")
def employer_token() -> str:
    ensure_user("employer1", "employer-pass", "employer")
    return _login("employer1", "employer-pass")
