"""
tests/test_reputation.py — IP suspicion scores
==============================================

Covers: accumulation, 24 h epoch set on creation only, levels, bounded
reason history, and exactly one alert per threshold crossing.
"""
import pytest

from gatekeeper.security.alerts import SecurityAlertLog, Severity
from gatekeeper.security.errors import StoreUnavailable
from gatekeeper.security.reputation import IPReputationTracker, reasons_key, reputation_key
from gatekeeper.store.memory import MemoryCounterStore

DAY = 24 * 60 * 60


class ReasonsDown(MemoryCounterStore):
    def lpush(self, key, value, max_len=None):
        if key == reasons_key("9.9.9.9"):
            raise StoreUnavailable("store down")
        return super().lpush(key, value, max_len=max_len)


@pytest.fixture
def store(clock):
    return MemoryCounterStore(clock=clock)


@pytest.fixture
def alerts(store, clock):
    return SecurityAlertLog(store, clock=clock)


@pytest.fixture
def tracker(store, alerts):
    return IPReputationTracker(store, alerts=alerts, alert_threshold=50, critical_threshold=100)


class TestScores:
    def test_scores_accumulate(self, tracker):
        assert tracker.add_suspicion_score("9.9.9.9", 10) == 10
        assert tracker.add_suspicion_score("9.9.9.9", 15) == 25
        assert tracker.get_score("9.9.9.9") == 25
        assert tracker.get_score("8.8.8.8") == 0

    def test_ttl_set_on_creation_only(self, tracker, store, clock):
        tracker.add_suspicion_score("9.9.9.9", 10)
        clock.advance(DAY - 60)
        tracker.add_suspicion_score("9.9.9.9", 10)
        assert store.pttl(reputation_key("9.9.9.9")) == 60_000

        clock.advance(60)
        assert tracker.get_score("9.9.9.9") == 0
        assert tracker.add_suspicion_score("9.9.9.9", 5) == 5

    def test_levels(self, tracker):
        assert tracker.level_for(0) == "good"
        assert tracker.level_for(49) == "good"
        assert tracker.level_for(50) == "suspicious"
        assert tracker.level_for(99) == "suspicious"
        assert tracker.level_for(100) == "bad"

    def test_signal_deltas_follow_severity(self, tracker):
        assert tracker.add_signal("9.9.9.9", Severity.low, "bot_ua") == 5
        assert tracker.add_signal("9.9.9.9", "high", "sqli") == 35

    def test_negative_delta_rejected(self, tracker):
        with pytest.raises(ValueError):
            tracker.add_suspicion_score("9.9.9.9", -1)

    def test_reasons_newest_first_and_bounded(self, tracker, store):
        for i in range(12):
            tracker.add_suspicion_score("9.9.9.9", 1, reason=f"r{i}")
        rep = tracker.get_reputation("9.9.9.9")
        assert rep.reasons[0] == "r11"
        assert len(rep.reasons) == 10
        assert store.pttl(reasons_key("9.9.9.9")) > 0


class TestThresholdAlerts:
    def test_single_alert_per_crossing(self, tracker, alerts):
        tracker.add_suspicion_score("9.9.9.9", 40)
        assert alerts.list_alerts() == []

        tracker.add_suspicion_score("9.9.9.9", 15)   # 55: crosses 50
        tracker.add_suspicion_score("9.9.9.9", 15)   # 70: already above
        high = alerts.list_alerts(severity=Severity.high)
        assert len(high) == 1
        assert high[0].ip == "9.9.9.9"
        assert high[0].metadata["score"] == 55

        tracker.add_suspicion_score("9.9.9.9", 40)   # 110: crosses 100
        tracker.add_suspicion_score("9.9.9.9", 40)
        assert len(alerts.list_alerts(severity=Severity.critical)) == 1
        assert len(alerts.list_alerts()) == 2

    def test_jump_past_both_thresholds_reports_critical_only(self, tracker, alerts):
        tracker.add_suspicion_score("9.9.9.9", 120)
        found = alerts.list_alerts()
        assert [a.severity for a in found] == [Severity.critical]

    def test_new_epoch_alerts_again(self, tracker, alerts, clock):
        tracker.add_suspicion_score("9.9.9.9", 60)
        clock.advance(DAY)
        tracker.add_suspicion_score("9.9.9.9", 60)
        assert len(alerts.list_alerts(severity=Severity.high)) == 2

    def test_crossing_alert_survives_reason_write_failure(self, clock):
        store = ReasonsDown(clock=clock)
        alerts = SecurityAlertLog(store, clock=clock)
        tracker = IPReputationTracker(store, alerts=alerts, alert_threshold=50, critical_threshold=100)

        with pytest.raises(StoreUnavailable):
            tracker.add_suspicion_score("9.9.9.9", 60, "sql_injection_attempt")
        assert tracker.get_score("9.9.9.9") == 60
        high = alerts.list_alerts(severity=Severity.high)
        assert [a.type for a in high] == ["suspicious_activity"]

    def test_is_suspicious(self, tracker):
        tracker.add_suspicion_score("9.9.9.9", 50)
        assert tracker.is_suspicious("9.9.9.9") is True
        assert tracker.is_suspicious("1.1.1.1") is False
