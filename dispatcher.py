"""
Notification Dispatcher — the orchestrator that takes one candidate from
classification to a recorded outcome.

Pipeline per candidate:
1. Safety gates → 2. Circuit breaker → 3. Reminder sequence → 4. Classify
→ 5. Throttle → 6. Send → 7. Record → 8. Fallback (blocked only)

A fallback is a candidate of its own and runs the same pipeline, so it is
rate-limited and sent at most once per order like any other message.
"""

import logging
import os
import time
import uuid
from datetime import datetime, timezone

import rate_policy
from config import (
    PolicyConfig, SEND_INTERVAL_SECONDS, FALLBACK_ENABLED, FALLBACK_REASONS,
)
from duplicate_classifier import DuplicateClassifier, content_hash
from logger import DispatchMetrics, mask_phone
from models import (
    Candidate, DispatchResult, NotificationEvent, is_reminder,
    SENT, BLOCKED, FAILED, CIRCUIT_OPEN, KILL_SWITCH_ACTIVE, REMINDER_OUT_OF_SEQUENCE,
)
from templates import render_fallback
from transport import TransportError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationDispatcher:
    """Classifies, sends and records notifications, one at a time."""

    def __init__(self, ledger, transport, policy_config: PolicyConfig,
                 metrics: DispatchMetrics = None,
                 send_interval: float = SEND_INTERVAL_SECONDS,
                 fallback_enabled: bool = FALLBACK_ENABLED,
                 fallback_reasons=FALLBACK_REASONS,
                 now=_utcnow, sleep=time.sleep, monotonic=time.monotonic):
        self.ledger = ledger
        self.transport = transport
        self.config = policy_config
        self.classifier = DuplicateClassifier(ledger, policy_config)
        self.metrics = metrics if metrics is not None else DispatchMetrics()
        self.send_interval = send_interval
        self.fallback_enabled = fallback_enabled
        self.fallback_reasons = set(fallback_reasons)
        self.now = now
        self._sleep = sleep
        self._monotonic = monotonic
        self._last_send = None
        self.started_at = now()

    def dispatch(self, candidate: Candidate) -> DispatchResult:
        """
        Run one candidate through the full pipeline and record the outcome.
        Raises StorageError when the ledger cannot be read or written; in
        that case the outcome is unknown and nothing is marked sent.
        """
        with self.ledger.key_lock(*candidate.key()):
            result = self._dispatch_locked(candidate)

        self.metrics.record(candidate, result)

        if (result.status == BLOCKED and self.fallback_enabled
                and result.reason in self.fallback_reasons
                and candidate.message_type != "fallback"):
            result.fallback = self.dispatch(self._fallback_candidate(candidate, result.reason))

        return result

    def _dispatch_locked(self, candidate: Candidate) -> DispatchResult:
        now = self.now()
        customer = mask_phone(candidate.customer_id)

        # ── Step 1: Safety gates ──────────────────────────────────────
        gate = rate_policy.safety_gate(
            candidate.customer_id, now, self.config, self.started_at,
            kill_switch=self.kill_switch_engaged(),
        )
        if gate is not None:
            logger.info(
                "Held %s for order %s to %s: %s",
                candidate.message_type, candidate.order_id, customer, gate,
            )
            return self._blocked(candidate, now, gate)

        # ── Step 2: Circuit breaker ───────────────────────────────────
        recent = self.ledger.find_recent_by_customer(
            candidate.customer_id, now - max(self.config.lookback, self.config.failure_window)
        )
        circuit = rate_policy.circuit_state(candidate.customer_id, now, self.config, recent)
        if circuit["open"]:
            logger.warning(
                "Dispatch to %s suspended until %s after %d consecutive failures",
                customer, circuit["retry_after"].isoformat(), circuit["failures"],
            )
            return self._blocked(candidate, now, CIRCUIT_OPEN)

        # ── Step 3: Reminder sequence ─────────────────────────────────
        if is_reminder(candidate.message_type):
            expected = self.ledger.count_sent_reminders(*candidate.key()) + 1
            if candidate.reminder_sequence_number != expected:
                logger.warning(
                    "Reminder %s for order %s out of sequence (got %s, expected %d)",
                    candidate.message_type, candidate.order_id,
                    candidate.reminder_sequence_number, expected,
                )
                return self._blocked(candidate, now, REMINDER_OUT_OF_SEQUENCE)

        # ── Step 4: Classify ──────────────────────────────────────────
        verdict = self.classifier.classify(candidate, now)
        if not verdict["allowed"]:
            logger.info(
                "Blocked %s for order %s to %s: %s",
                candidate.message_type, candidate.order_id, customer, verdict["reason"],
            )
            return self._blocked(candidate, now, verdict["reason"])

        # ── Steps 5-7: Throttle, send, record ─────────────────────────
        return self._send_and_record(candidate)

    def _send_and_record(self, candidate: Candidate) -> DispatchResult:
        customer = mask_phone(candidate.customer_id)
        self._throttle()
        try:
            response = self.transport.send(candidate.customer_id, candidate.rendered_body)
        except TransportError as e:
            self._last_send = self._monotonic()
            event = self._event(candidate, FAILED, self.now(), error=type(e).__name__)
            self.ledger.append(event)
            logger.error(
                "Send of %s for order %s to %s failed: %s",
                candidate.message_type, candidate.order_id, customer, e,
            )
            self._check_suspension(candidate)
            return DispatchResult(status=FAILED, reason=type(e).__name__, event=event)

        self._last_send = self._monotonic()
        message_id = response.get("external_message_id")
        event = self._event(candidate, SENT, self.now(), external_message_id=message_id)
        self.ledger.append(event)
        logger.info(
            "Sent %s for order %s to %s (message %s)",
            candidate.message_type, candidate.order_id, customer, message_id,
        )
        return DispatchResult(status=SENT, external_message_id=message_id, event=event)

    def send_test_message(self, customer_id: str, body: str, sheet_type: str = "tailor") -> DispatchResult:
        """
        Operator override: send immediately, skipping every duplicate and
        policy check except the kill switch. The attempt is still recorded
        in the ledger.
        """
        candidate = Candidate(
            customer_id=customer_id,
            order_id=f"manual-{uuid.uuid4().hex[:12]}",
            message_type="test",
            sheet_type=sheet_type,
            rendered_body=body,
        )
        with self.ledger.key_lock(*candidate.key()):
            if self.kill_switch_engaged():
                result = self._blocked(candidate, self.now(), KILL_SWITCH_ACTIVE)
            else:
                result = self._send_and_record(candidate)
        self.metrics.record(candidate, result)
        return result

    # ── Helpers ───────────────────────────────────────────────────────

    def kill_switch_engaged(self) -> bool:
        """Env flag, or the kill switch file reading 'active'. Checked on every dispatch."""
        if self.config.kill_switch:
            return True
        path = self.config.kill_switch_file
        if not path or not os.path.exists(path):
            return False
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read().strip().lower() == "active"
        except OSError as e:
            # unreadable switch file holds all sends
            logger.error("Cannot read kill switch file %s: %s", path, e)
            return True

    def _throttle(self):
        """Keep at least `send_interval` seconds between outbound sends."""
        if self._last_send is None or self.send_interval <= 0:
            return
        wait = self.send_interval - (self._monotonic() - self._last_send)
        if wait > 0:
            self._sleep(wait)

    def _check_suspension(self, candidate: Candidate):
        now = self.now()
        recent = self.ledger.find_recent_by_customer(candidate.customer_id, now - self.config.failure_window)
        circuit = rate_policy.circuit_state(candidate.customer_id, now, self.config, recent)
        if circuit["open"]:
            message = (
                f"Customer {mask_phone(candidate.customer_id)} suspended after "
                f"{circuit['failures']} consecutive failed sends"
            )
            logger.error(message)
            self.metrics.alert(
                "customer_suspended", message,
                customer=mask_phone(candidate.customer_id),
                retry_after=circuit["retry_after"].isoformat(),
            )

    def _blocked(self, candidate: Candidate, now: datetime, reason: str) -> DispatchResult:
        event = self._event(candidate, BLOCKED, now, block_reason=reason)
        self.ledger.append(event)
        return DispatchResult(status=BLOCKED, reason=reason, event=event)

    def _event(self, candidate: Candidate, status: str, when: datetime, **fields) -> NotificationEvent:
        return NotificationEvent(
            customer_id=candidate.customer_id,
            order_id=candidate.order_id,
            message_type=candidate.message_type,
            sheet_type=candidate.sheet_type,
            content_hash=content_hash(candidate.rendered_body),
            status=status,
            attempted_at=when,
            reminder_sequence_number=(
                candidate.reminder_sequence_number if is_reminder(candidate.message_type) else None
            ),
            bypassed=candidate.customer_id in self.config.developer_bypass,
            **fields,
        )

    def _fallback_candidate(self, candidate: Candidate, reason: str) -> Candidate:
        return Candidate(
            customer_id=candidate.customer_id,
            order_id=candidate.order_id,
            message_type="fallback",
            sheet_type=candidate.sheet_type,
            rendered_body=render_fallback(reason),
            metadata={"original_message_type": candidate.message_type, "reason": reason},
        )
