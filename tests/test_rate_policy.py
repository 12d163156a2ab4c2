"""Tests for the pure rate/cooldown policy and the failure circuit."""

from datetime import timedelta

import rate_policy
from config import PolicyConfig
from helpers import CUSTOMER, T0
from models import NotificationEvent


def _event(status, minutes, order_id="T-1"):
    return NotificationEvent(
        customer_id=CUSTOMER, order_id=order_id, message_type="welcome", sheet_type="tailor",
        content_hash="h", status=status, attempted_at=T0 + timedelta(minutes=minutes),
    )


def _at(minutes):
    return T0 + timedelta(minutes=minutes)


class TestEvaluate:

    def test_no_history_is_ok(self):
        assert rate_policy.evaluate(CUSTOMER, T0, PolicyConfig(), []) == rate_policy.OK

    def test_cooldown_after_recent_send(self):
        recent = [_event("sent", 0)]
        assert rate_policy.evaluate(CUSTOMER, _at(4), PolicyConfig(), recent) == rate_policy.COOLDOWN_ACTIVE
        assert rate_policy.evaluate(CUSTOMER, _at(5), PolicyConfig(), recent) == rate_policy.OK

    def test_blocked_and_failed_do_not_count(self):
        recent = [_event("blocked", 0), _event("failed", 1)]
        assert rate_policy.evaluate(CUSTOMER, _at(2), PolicyConfig(), recent) == rate_policy.OK

    def test_rate_limit_over_lookback(self):
        recent = [_event("sent", m * 10, order_id=f"T-{m}") for m in range(5)]
        config = PolicyConfig()

        assert rate_policy.evaluate(CUSTOMER, _at(23 * 60), config, recent) == rate_policy.RATE_LIMIT_EXCEEDED
        # first send drops out of the 24 h window
        assert rate_policy.evaluate(CUSTOMER, _at(24 * 60 + 1), config, recent) == rate_policy.OK

    def test_bypass_always_ok(self):
        config = PolicyConfig(developer_bypass=frozenset({CUSTOMER}))
        recent = [_event("sent", m, order_id=f"T-{m}") for m in range(10)]
        assert rate_policy.evaluate(CUSTOMER, _at(10), config, recent) == rate_policy.OK


class TestCircuitState:

    def test_opens_after_consecutive_failures(self):
        recent = [_event("failed", 0), _event("failed", 1), _event("failed", 2)]
        state = rate_policy.circuit_state(CUSTOMER, _at(3), PolicyConfig(), recent)

        assert state["open"] is True
        assert state["failures"] == 3
        assert state["retry_after"] == _at(32)

    def test_closes_after_suspension(self):
        recent = [_event("failed", 0), _event("failed", 1), _event("failed", 2)]
        state = rate_policy.circuit_state(CUSTOMER, _at(32), PolicyConfig(), recent)
        assert state["open"] is False

    def test_success_resets_count(self):
        recent = [_event("failed", 0), _event("failed", 1), _event("sent", 2), _event("failed", 3)]
        state = rate_policy.circuit_state(CUSTOMER, _at(4), PolicyConfig(), recent)

        assert state["open"] is False
        assert state["failures"] == 1

    def test_blocked_events_are_skipped(self):
        recent = [_event("failed", 0), _event("blocked", 1), _event("failed", 2),
                  _event("blocked", 3), _event("failed", 4)]
        state = rate_policy.circuit_state(CUSTOMER, _at(5), PolicyConfig(), recent)
        assert state["open"] is True

    def test_failures_outside_window_are_ignored(self):
        recent = [_event("failed", 0), _event("failed", 70), _event("failed", 80)]
        state = rate_policy.circuit_state(CUSTOMER, _at(90), PolicyConfig(), recent)

        assert state["failures"] == 2
        assert state["open"] is False


class TestSafetyGate:

    WINDOW = PolicyConfig(send_window=(9, 20), timezone="Asia/Kolkata")

    def test_open_by_default(self):
        assert rate_policy.safety_gate(CUSTOMER, T0, PolicyConfig(), started_at=T0) is None

    def test_kill_switch_wins_even_for_developers(self):
        config = PolicyConfig(kill_switch=True, developer_bypass=frozenset({CUSTOMER}))
        assert rate_policy.safety_gate(CUSTOMER, T0, config, started_at=T0) == "KILL_SWITCH_ACTIVE"
        assert rate_policy.safety_gate(
            CUSTOMER, T0, PolicyConfig(), started_at=T0, kill_switch=True,
        ) == "KILL_SWITCH_ACTIVE"

    def test_startup_grace_period(self):
        config = PolicyConfig(startup_grace=timedelta(minutes=4))
        assert rate_policy.safety_gate(CUSTOMER, _at(3), config, started_at=T0) == "STARTUP_GRACE_PERIOD"
        assert rate_policy.safety_gate(CUSTOMER, _at(4), config, started_at=T0) is None

    def test_send_window_uses_shop_timezone(self):
        # T0 is 10:00 UTC, 15:30 in Kolkata
        assert rate_policy.safety_gate(CUSTOMER, T0, self.WINDOW, started_at=T0) is None
        early = T0 - timedelta(hours=8)   # 07:30 local
        late = T0 + timedelta(hours=5)    # 20:30 local
        assert rate_policy.safety_gate(CUSTOMER, early, self.WINDOW, started_at=early) == "OUTSIDE_SEND_WINDOW"
        assert rate_policy.safety_gate(CUSTOMER, late, self.WINDOW, started_at=early) == "OUTSIDE_SEND_WINDOW"

    def test_developer_skips_grace_and_window(self):
        config = PolicyConfig(
            startup_grace=timedelta(minutes=4), send_window=(9, 20), timezone="Asia/Kolkata",
            developer_bypass=frozenset({CUSTOMER}),
        )
        late = T0 + timedelta(hours=5)
        assert rate_policy.safety_gate(CUSTOMER, late, config, started_at=late) is None
