"""
Row Mapper — turns polled spreadsheet rows into candidate notifications.

Columns are located by header name through a per-sheet-type table, so a
reordered or extended sheet still parses correctly. A sheet missing a
required column fails loudly with SchemaError; a bad row raises
ValidationError and is skipped by the caller.
"""

import re
from dataclasses import dataclass, field
from datetime import date

import templates
from config import DEFAULT_COUNTRY_CODE, PICKUP_REMINDER_DAYS, PAYMENT_REMINDER_DAYS
from models import Candidate, SHEET_TYPES
from scheduler import days_since, is_reminder_due


class ValidationError(Exception):
    """Raised when a row (or phone number) cannot be turned into a candidate."""
    pass


class SchemaError(ValidationError):
    """Raised when a sheet lacks columns its sheet type requires."""
    pass


# field name → accepted header names (first match wins)
SHEET_SCHEMAS = {
    "tailor": {
        "fields": {
            "order_id": ["Order ID", "Master Order ID", "Tailoring Order ID"],
            "phone": ["Contact Number", "Contact Info", "Phone Number", "Phone"],
            "customer_name": ["Customer Name"],
            "status": ["Delivery Status", "Status"],
            "garment_type": ["Garment Types", "Garment Type"],
            "total_amount": ["Total Amount", "Price"],
            "advance_amount": ["Advance Payment", "Advance/Partial Payment"],
            "remaining_amount": ["Remaining Amount"],
            "payment_status": ["Payment Status"],
            "ready_date": ["Ready Date"],
            "delivery_date": ["Delivery Date"],
            "welcome_notified": ["Welcome Notified"],
            "confirmation_notified": ["Confirmation Notified"],
            "ready_notified": ["Ready Notified"],
            "delivery_notified": ["Delivery Notified"],
            "pickup_reminder_count": ["Pickup Reminder Count"],
            "payment_reminder_count": ["Payment Reminder Count"],
        },
        "required": ["order_id", "phone", "customer_name", "status"],
    },
    "fabric": {
        "fields": {
            "order_id": ["Fabric Order ID", "Order ID"],
            "phone": ["Contact Number", "Contact Info", "Phone Number", "Phone"],
            "customer_name": ["Customer Name"],
            "status": ["Status", "Order Status", "Delivery Status"],
            "fabric_type": ["Fabric Type"],
            "fabric_color": ["Fabric Color"],
            "quantity": ["Quantity (meters)", "Quantity"],
            "total_amount": ["Fabric Total", "Total Amount", "Price"],
            "advance_amount": ["Advance Payment", "Advance/Partial Payment"],
            "remaining_amount": ["Remaining Amount"],
            "payment_status": ["Payment Status"],
            "purchase_date": ["Purchase Date", "Order Date"],
            "welcome_notified": ["Welcome Notified"],
            "purchase_notified": ["Purchase Notified"],
            "payment_reminder_count": ["Payment Reminder Count"],
        },
        "required": ["order_id", "phone", "customer_name", "status", "payment_status"],
    },
    "combined": {
        "fields": {
            "order_id": ["Combined Order ID"],
            "fabric_order_id": ["Fabric Order ID"],
            "tailor_order_id": ["Tailoring Order ID"],
            "phone": ["Contact Number", "Contact Info", "Phone Number", "Phone"],
            "customer_name": ["Customer Name"],
            "total_amount": ["Total Amount"],
            "advance_amount": ["Advance Payment", "Advance/Partial Payment"],
            "remaining_amount": ["Remaining Amount"],
            "combined_notified": ["Combined Order Notified"],
        },
        "required": ["order_id", "phone", "customer_name"],
    },
    "worker": {
        "fields": {
            "worker_name": ["Worker Name"],
            "phone": ["Worker Phone", "Phone Number", "Phone", "Contact Number"],
            "work_date": ["Date", "Work Date"],
            "work_summary": ["Work Done", "Work Summary"],
            "daily_amount": ["Daily Amount", "Amount"],
            "notified": ["Notified"],
        },
        "required": ["worker_name", "phone", "work_date"],
    },
}

# Status (lowercase) → ordered message-type steps
TAILOR_STATUS_STEPS = {
    "pending": ["welcome", "order_confirmation"],
    "confirmed": ["welcome", "order_confirmation"],
    "new": ["welcome", "order_confirmation"],
    "ready": ["order_ready"],
    "completed": ["order_ready"],
    "pickup": ["order_ready"],
    "delivered": ["delivery_notification"],
    "picked": ["delivery_notification"],
    "picked up": ["delivery_notification"],
    "home delivery": ["delivery_notification"],
}
FABRIC_STATUS_STEPS = {
    "pending": ["fabric_welcome", "fabric_purchase"],
    "new": ["fabric_welcome", "fabric_purchase"],
    "confirmed": ["fabric_welcome", "fabric_purchase"],
    "purchased": ["fabric_welcome", "fabric_purchase"],
    "completed": ["fabric_welcome", "fabric_purchase"],
}
READY_STATUSES = {"ready", "completed", "pickup"}
DELIVERED_STATUSES = {"delivered", "picked", "picked up", "home delivery"}
UNPAID_STATUSES = {"pending", "partial"}

# message type → sheet column mirroring "already notified"
MARKER_FIELDS = {
    "welcome": "welcome_notified",
    "order_confirmation": "confirmation_notified",
    "order_ready": "ready_notified",
    "delivery_notification": "delivery_notified",
    "fabric_welcome": "welcome_notified",
    "fabric_purchase": "purchase_notified",
    "combined_order": "combined_notified",
    "worker_daily_data": "notified",
}
# reminder type → per-order counter column
COUNTER_FIELDS = {
    "pickup_reminder": "pickup_reminder_count",
    "payment_reminder": "payment_reminder_count",
    "fabric_payment_reminder": "payment_reminder_count",
}

NOTIFIED_VALUES = {"yes", "y", "true", "sent", "done", "1"}


@dataclass
class ParsedRow:
    """One sheet row with its cells addressed by schema field name."""

    sheet_type: str
    row_number: int
    customer_id: str
    fields: dict = field(default_factory=dict)

    def get(self, name: str, default: str = "") -> str:
        return self.fields.get(name) or default

    def status(self, name: str = "status") -> str:
        return self.get(name).strip().lower()

    def is_notified(self, marker_field: str) -> bool:
        return self.get(marker_field).strip().lower() in NOTIFIED_VALUES

    def counter(self, counter_field: str) -> int:
        value = self.get(counter_field, "0").strip()
        try:
            return max(0, int(float(value)))
        except (ValueError, OverflowError):
            raise ValidationError(f"Row {self.row_number}: invalid counter '{value}' in {counter_field}")


def normalize_phone(raw, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Canonical phone: country-code-prefixed digits, no symbols.
    Raises ValidationError when the digit count is outside 10–15.
    """
    digits = re.sub(r"\D", "", str(raw or ""))
    if not 10 <= len(digits) <= 15:
        raise ValidationError(f"Phone number has {len(digits)} digits (expected 10-15)")
    if len(digits) == 10:
        return country_code + digits
    if len(digits) == 11 and digits.startswith("0"):
        return country_code + digits[1:]
    return digits


def parse_header(sheet_type: str, header_row: list) -> dict:
    """
    Resolve schema fields to column indexes for one sheet.
    Returns { field_name: column_index }. Raises SchemaError if a required
    field has no matching header.
    """
    if sheet_type not in SHEET_TYPES:
        raise SchemaError(f"Unknown sheet type '{sheet_type}'")
    schema = SHEET_SCHEMAS[sheet_type]
    headers = [str(h).strip().lower() for h in header_row]

    index = {}
    for name, candidates in schema["fields"].items():
        for header in candidates:
            if header.lower() in headers:
                index[name] = headers.index(header.lower())
                break

    missing = [name for name in schema["required"] if name not in index]
    if missing:
        expected = ", ".join(schema["fields"][name][0] for name in missing)
        raise SchemaError(f"{sheet_type} sheet is missing required column(s): {expected}")
    return index


def parse_row(sheet_type: str, column_index: dict, row: list, row_number: int) -> ParsedRow:
    """Read one data row through the column index and validate it."""
    fields = {}
    for name, col in column_index.items():
        fields[name] = str(row[col]).strip() if col < len(row) and row[col] is not None else ""

    for name in SHEET_SCHEMAS[sheet_type]["required"]:
        if not fields.get(name):
            raise ValidationError(f"Row {row_number}: empty required field '{name}'")

    try:
        customer_id = normalize_phone(fields["phone"])
    except ValidationError as e:
        raise ValidationError(f"Row {row_number}: {e}") from e

    return ParsedRow(sheet_type=sheet_type, row_number=row_number,
                     customer_id=customer_id, fields=fields)


def map_row(parsed: ParsedRow, today: date,
            pickup_days: list = PICKUP_REMINDER_DAYS,
            payment_days: list = PAYMENT_REMINDER_DAYS) -> list[Candidate]:
    """
    Candidates for one parsed row, in sending order. Returns at most one
    status-step candidate plus at most one reminder candidate.
    """
    if parsed.sheet_type == "tailor":
        return _map_tailor(parsed, today, pickup_days, payment_days)
    if parsed.sheet_type == "fabric":
        return _map_fabric(parsed, today, payment_days)
    if parsed.sheet_type == "combined":
        return _first_pending_step(parsed, ["combined_order"])
    if parsed.sheet_type == "worker":
        return _map_worker(parsed)
    return []


def _map_tailor(parsed, today, pickup_days, payment_days):
    status = parsed.status()
    candidates = _first_pending_step(parsed, TAILOR_STATUS_STEPS.get(status, []))

    if status in READY_STATUSES and parsed.is_notified("ready_notified"):
        days = days_since(parsed.get("ready_date") or parsed.get("delivery_date"), today)
        reminder = _reminder(parsed, "pickup_reminder", days, pickup_days)
        if reminder:
            candidates.append(reminder)

    elif (status in DELIVERED_STATUSES
          and parsed.status("payment_status") in UNPAID_STATUSES
          and _amount(parsed.get("remaining_amount")) > 0):
        days = days_since(parsed.get("delivery_date"), today)
        reminder = _reminder(parsed, "payment_reminder", days, payment_days)
        if reminder:
            candidates.append(reminder)

    return candidates


def _map_fabric(parsed, today, payment_days):
    candidates = _first_pending_step(parsed, FABRIC_STATUS_STEPS.get(parsed.status(), []))

    if (parsed.status("payment_status") in UNPAID_STATUSES
            and parsed.is_notified("purchase_notified")):
        days = days_since(parsed.get("purchase_date"), today)
        reminder = _reminder(parsed, "fabric_payment_reminder", days, payment_days)
        if reminder:
            candidates.append(reminder)

    return candidates


def _map_worker(parsed):
    if parsed.is_notified("notified"):
        return []
    order_id = f"{parsed.get('worker_name')}:{parsed.get('work_date')}"
    return [_candidate(parsed, "worker_daily_data", order_id=order_id)]


def _first_pending_step(parsed, steps):
    """The first step whose sheet marker is not yet set."""
    for message_type in steps:
        if not parsed.is_notified(MARKER_FIELDS[message_type]):
            return [_candidate(parsed, message_type)]
    return []


def _reminder(parsed, message_type, days, schedule):
    counter_field = COUNTER_FIELDS[message_type]
    sent_count = parsed.counter(counter_field)
    if not is_reminder_due(days, schedule, sent_count):
        return None
    return _candidate(
        parsed, message_type,
        reminder_sequence_number=sent_count + 1,
        extra_fields={"reminder_number": sent_count + 1, "days_waiting": days},
    )


def _candidate(parsed, message_type, order_id=None, reminder_sequence_number=None,
               extra_fields=None) -> Candidate:
    order_id = order_id or parsed.get("order_id")
    render_fields = dict(parsed.fields, order_id=order_id)
    if extra_fields:
        render_fields.update(extra_fields)

    return Candidate(
        customer_id=parsed.customer_id,
        order_id=order_id,
        message_type=message_type,
        sheet_type=parsed.sheet_type,
        rendered_body=templates.render(message_type, render_fields),
        reminder_sequence_number=reminder_sequence_number,
        metadata={
            "row_number": parsed.row_number,
            "marker_field": MARKER_FIELDS.get(message_type),
            "counter_field": COUNTER_FIELDS.get(message_type),
            "customer_name": parsed.get("customer_name") or parsed.get("worker_name"),
        },
    )


def _amount(value: str) -> float:
    cleaned = re.sub(r"[^\d.]", "", value or "")
    try:
        return float(cleaned) if cleaned else 0.0
    except ValueError:
        return 0.0
