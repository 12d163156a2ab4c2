"""
Models — notification events, candidates, dispatch results and the
enumerations they draw from.
"""

from dataclasses import dataclass, field
from datetime import datetime


MESSAGE_TYPES = {
    "welcome", "order_confirmation", "order_ready", "delivery_notification",
    "pickup_reminder", "payment_reminder", "fabric_welcome", "fabric_purchase",
    "fabric_payment_reminder", "combined_order", "worker_daily_data",
    "test", "fallback",
}
REMINDER_TYPES = {"pickup_reminder", "payment_reminder", "fabric_payment_reminder"}
SHEET_TYPES = {"tailor", "fabric", "combined", "worker"}

# Event status
SENT = "sent"
BLOCKED = "blocked"
FAILED = "failed"
STATUSES = {SENT, BLOCKED, FAILED}

# Block reasons produced by the duplicate classifier
EXACT_DUPLICATE = "EXACT_DUPLICATE"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
SIMILAR_CONTENT_RECENTLY_SENT = "SIMILAR_CONTENT_RECENTLY_SENT"
# Block reasons produced by the dispatcher itself
CIRCUIT_OPEN = "CIRCUIT_OPEN"
REMINDER_OUT_OF_SEQUENCE = "REMINDER_OUT_OF_SEQUENCE"
# Block reasons produced by the safety gates
KILL_SWITCH_ACTIVE = "KILL_SWITCH_ACTIVE"
STARTUP_GRACE_PERIOD = "STARTUP_GRACE_PERIOD"
OUTSIDE_SEND_WINDOW = "OUTSIDE_SEND_WINDOW"

BLOCK_REASONS = {
    EXACT_DUPLICATE, RATE_LIMIT_EXCEEDED, COOLDOWN_ACTIVE,
    SIMILAR_CONTENT_RECENTLY_SENT, CIRCUIT_OPEN, REMINDER_OUT_OF_SEQUENCE,
    KILL_SWITCH_ACTIVE, STARTUP_GRACE_PERIOD, OUTSIDE_SEND_WINDOW,
}


def is_reminder(message_type: str) -> bool:
    return message_type in REMINDER_TYPES


@dataclass
class NotificationEvent:
    """One attempted or completed notification, as stored in the ledger."""

    customer_id: str
    order_id: str
    message_type: str
    sheet_type: str
    content_hash: str
    status: str
    attempted_at: datetime
    block_reason: str | None = None
    reminder_sequence_number: int | None = None
    external_message_id: str | None = None
    error: str | None = None
    bypassed: bool = False
    id: int | None = None

    def key(self) -> tuple:
        return (self.customer_id, self.order_id, self.message_type, self.sheet_type)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "order_id": self.order_id,
            "message_type": self.message_type,
            "sheet_type": self.sheet_type,
            "content_hash": self.content_hash,
            "status": self.status,
            "block_reason": self.block_reason,
            "attempted_at": self.attempted_at.isoformat(),
            "reminder_sequence_number": self.reminder_sequence_number,
            "external_message_id": self.external_message_id,
            "error": self.error,
            "bypassed": self.bypassed,
        }


@dataclass
class Candidate:
    """A normalized, not-yet-dispatched notification request."""

    customer_id: str
    order_id: str
    message_type: str
    sheet_type: str
    rendered_body: str
    reminder_sequence_number: int | None = None
    metadata: dict = field(default_factory=dict)

    def key(self) -> tuple:
        return (self.customer_id, self.order_id, self.message_type, self.sheet_type)


@dataclass
class DispatchResult:
    status: str
    reason: str | None = None
    external_message_id: str | None = None
    event: NotificationEvent | None = None
    fallback: "DispatchResult | None" = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "reason": self.reason,
            "external_message_id": self.external_message_id,
            "fallback": self.fallback.to_dict() if self.fallback else None,
        }
