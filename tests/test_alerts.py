"""
tests/test_alerts.py — Security alert log
=========================================

Covers: raise/get round trip, severity lists, newest-first listing with a
limit, dangling references after expiry, and idempotent cleanup.
"""
import pytest

from gatekeeper.security.alerts import (
    ALL_ALERTS_KEY,
    DANGLING_KEY,
    SecurityAlertLog,
    Severity,
    severity_list_key,
)
from gatekeeper.store.memory import MemoryCounterStore

DAY = 24 * 60 * 60


@pytest.fixture
def store(clock):
    return MemoryCounterStore(clock=clock)


@pytest.fixture
def log(store, clock):
    return SecurityAlertLog(store, ttl_seconds=30 * DAY, clock=clock)


class TestRaise:
    def test_alert_is_stored_and_indexed(self, log, store):
        alert_id = log.raise_alert(
            Severity.high, "sql_injection_attempt", "UNION SELECT in query",
            ip="5.5.5.5", user_agent="curl/8", metadata={"path": "/api/jobs"},
        )
        assert alert_id.startswith("alert_")
        alert = log.get(alert_id)
        assert alert.severity is Severity.high
        assert alert.type == "sql_injection_attempt"
        assert alert.ip == "5.5.5.5"
        assert alert.metadata == {"path": "/api/jobs"}
        assert store.lrange(ALL_ALERTS_KEY, 0, -1) == [alert_id]
        assert store.lrange(severity_list_key(Severity.high), 0, -1) == [alert_id]
        assert store.lrange(severity_list_key(Severity.low), 0, -1) == []

    def test_severity_accepts_strings(self, log):
        alert_id = log.raise_alert("critical", "suspicious_activity", "score 100")
        assert log.get(alert_id).severity is Severity.critical

    def test_unknown_severity_rejected(self, log):
        with pytest.raises(ValueError):
            log.raise_alert("urgent", "x", "y")


class TestList:
    def test_newest_first_with_limit(self, log, clock):
        ids = []
        for i in range(5):
            ids.append(log.raise_alert(Severity.low, "suspicious_activity", f"#{i}"))
            clock.advance(1)
        listed = log.list_alerts(limit=3)
        assert [a.id for a in listed] == [ids[4], ids[3], ids[2]]

    def test_filter_by_severity(self, log):
        log.raise_alert(Severity.low, "a", "low one")
        high_id = log.raise_alert(Severity.high, "b", "high one")
        assert [a.id for a in log.list_alerts(severity="high")] == [high_id]

    def test_zero_limit(self, log):
        log.raise_alert(Severity.low, "a", "x")
        assert log.list_alerts(limit=0) == []

    def test_expired_records_are_skipped_and_counted(self, log, clock):
        log.raise_alert(Severity.medium, "old", "expires")
        clock.advance(29 * DAY)
        fresh = log.raise_alert(Severity.medium, "new", "survives")
        clock.advance(DAY)

        assert [a.id for a in log.list_alerts()] == [fresh]
        assert log.dangling_seen() == 1

    def test_summary_counts(self, log):
        log.raise_alert(Severity.low, "a", "x")
        log.raise_alert(Severity.critical, "b", "y")
        log.raise_alert(Severity.critical, "c", "z")
        summary = log.summary(log.list_alerts())
        assert summary == {
            "low_alerts": 1,
            "medium_alerts": 0,
            "high_alerts": 0,
            "critical_alerts": 2,
            "total_alerts": 3,
        }


class TestCleanup:
    def test_cleanup_prunes_dangling_references_everywhere(self, log, store, clock):
        old = log.raise_alert(Severity.high, "old", "expires")
        clock.advance(31 * DAY)
        kept = log.raise_alert(Severity.high, "new", "stays")
        log.list_alerts()

        assert log.cleanup() == 1
        assert store.lrange(ALL_ALERTS_KEY, 0, -1) == [kept]
        assert store.lrange(severity_list_key(Severity.high), 0, -1) == [kept]
        assert old not in store.lrange(ALL_ALERTS_KEY, 0, -1)
        assert store.exists(DANGLING_KEY) is False

    def test_cleanup_is_idempotent(self, log, clock):
        log.raise_alert(Severity.low, "old", "expires")
        clock.advance(31 * DAY)
        assert log.cleanup() == 1
        assert log.cleanup() == 0

    def test_every_listed_id_has_a_record_after_cleanup(self, log, store, clock):
        for i in range(3):
            log.raise_alert(Severity.medium, "t", str(i))
            clock.advance(15 * DAY)
        log.cleanup()
        for alert_id in store.lrange(severity_list_key(Severity.medium), 0, -1):
            assert log.get(alert_id) is not None
