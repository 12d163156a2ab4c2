"""
Rate/Cooldown Policy — pure decisions over a customer's recent ledger events.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

from config import PolicyConfig
from models import (
    NotificationEvent, SENT, FAILED, BLOCKED,
    KILL_SWITCH_ACTIVE, STARTUP_GRACE_PERIOD, OUTSIDE_SEND_WINDOW,
)

OK = "OK"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"


def sent_in_window(recent_events: list[NotificationEvent], now: datetime,
                   config: PolicyConfig) -> list[NotificationEvent]:
    """`sent` events inside the lookback window, oldest first."""
    window_start = now - config.lookback
    return sorted(
        (e for e in recent_events if e.status == SENT and e.attempted_at >= window_start),
        key=lambda e: e.attempted_at,
    )


def evaluate(customer_id: str, now: datetime, config: PolicyConfig,
             recent_events: list[NotificationEvent]) -> str:
    """
    Decide whether one more message may go to this customer right now.
    Returns OK, RATE_LIMIT_EXCEEDED or COOLDOWN_ACTIVE.
    """
    if customer_id in config.developer_bypass:
        return OK

    sent = sent_in_window(recent_events, now, config)

    if len(sent) >= config.max_messages_per_window:
        return RATE_LIMIT_EXCEEDED

    if sent and now - sent[-1].attempted_at < config.cooldown:
        return COOLDOWN_ACTIVE

    return OK


def circuit_state(customer_id: str, now: datetime, config: PolicyConfig,
                  recent_events: list[NotificationEvent]) -> dict:
    """
    Consecutive-failure breaker for one customer.

    Walks events newest first, ignoring blocked attempts, and counts failed
    sends until the first successful one or the edge of the failure window.
    Returns { "open": bool, "failures": int, "retry_after": datetime|None }.
    """
    if customer_id in config.developer_bypass:
        return {"open": False, "failures": 0, "retry_after": None}

    window_start = now - config.failure_window
    failures = 0
    newest_failure = None

    for event in sorted(recent_events, key=lambda e: e.attempted_at, reverse=True):
        if event.status == BLOCKED:
            continue
        if event.status != FAILED or event.attempted_at < window_start:
            break
        failures += 1
        if newest_failure is None:
            newest_failure = event.attempted_at

    if failures >= config.max_consecutive_failures:
        retry_after = newest_failure + config.suspension
        if now < retry_after:
            return {"open": True, "failures": failures, "retry_after": retry_after}

    return {"open": False, "failures": failures, "retry_after": None}


def in_send_window(now: datetime, config: PolicyConfig) -> bool:
    """True when the shop-local hour of `now` falls inside config.send_window."""
    if config.send_window is None:
        return True
    start, end = config.send_window
    hour = now.astimezone(ZoneInfo(config.timezone)).hour
    return start <= hour < end


def safety_gate(customer_id: str, now: datetime, config: PolicyConfig,
                started_at: datetime, kill_switch: bool = False) -> str | None:
    """
    Process-wide gates checked before anything else.
    Returns KILL_SWITCH_ACTIVE, STARTUP_GRACE_PERIOD, OUTSIDE_SEND_WINDOW or None.

    The kill switch stops everyone. Developer bypass numbers skip the
    grace period and the send window.
    """
    if kill_switch or config.kill_switch:
        return KILL_SWITCH_ACTIVE

    if customer_id in config.developer_bypass:
        return None

    if now - started_at < config.startup_grace:
        return STARTUP_GRACE_PERIOD

    if not in_send_window(now, config):
        return OUTSIDE_SEND_WINDOW

    return None
