"""Shared test doubles for the notifier tests.

Plain classes and functions (not fixtures) so both conftest.py and the
test modules can import them.
"""

from datetime import datetime, timedelta, timezone

from models import Candidate
from templates import render
from transport import NotConnectedError

T0 = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
CUSTOMER = "919876543210"


class FakeClock:
    """Injectable `now` callable that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta):
        self.current += timedelta(**delta)
        return self.current

    def set(self, **delta):
        """Jump to T0 + delta."""
        self.current = T0 + timedelta(**delta)
        return self.current


class FakeTransport:
    """Records sends; raises `error` (an exception instance) when set."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.error = None
        self.sent = []

    def get_connection_state(self) -> dict:
        return {"connected": self.connected, "state": "open" if self.connected else "close"}

    def send(self, customer_id: str, body: str) -> dict:
        if not self.connected:
            raise NotConnectedError("offline")
        if self.error is not None:
            raise self.error
        message_id = f"msg-{len(self.sent) + 1}"
        self.sent.append((customer_id, body))
        return {"external_message_id": message_id}


def make_candidate(customer_id: str = CUSTOMER, order_id: str = "T-1001",
                   message_type: str = "welcome", sheet_type: str = "tailor",
                   reminder_sequence_number: int = None, body: str = None) -> Candidate:
    if body is None:
        body = render(message_type, {
            "customer_name": "Ramesh", "order_id": order_id,
            "reminder_number": reminder_sequence_number,
        })
    return Candidate(
        customer_id=customer_id,
        order_id=order_id,
        message_type=message_type,
        sheet_type=sheet_type,
        rendered_body=body,
        reminder_sequence_number=reminder_sequence_number,
    )
