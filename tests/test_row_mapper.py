"""Tests for sheet row parsing and candidate mapping."""

from datetime import date

import pytest

from row_mapper import (
    SchemaError, ValidationError, map_row, normalize_phone, parse_header, parse_row,
)

TAILOR_HEADER = [
    "Order ID", "Customer Name", "Contact Number", "Garment Types", "Remaining Amount",
    "Payment Status", "Delivery Status", "Ready Date", "Delivery Date", "Welcome Notified",
    "Confirmation Notified", "Ready Notified", "Delivery Notified", "Pickup Reminder Count",
    "Payment Reminder Count",
]
TODAY = date(2024, 3, 20)


def tailor_row(**values):
    defaults = {
        "Order ID": "T-1001", "Customer Name": "Ramesh", "Contact Number": "9876543210",
        "Delivery Status": "Pending",
    }
    defaults.update(values)
    return [defaults.get(h, "") for h in TAILOR_HEADER]


def tailor_candidates(**values):
    index = parse_header("tailor", TAILOR_HEADER)
    parsed = parse_row("tailor", index, tailor_row(**values), row_number=2)
    return map_row(parsed, TODAY, pickup_days=[3, 10, 25], payment_days=[3, 10])


class TestNormalizePhone:

    @pytest.mark.parametrize("raw, expected", [
        ("9876543210", "919876543210"),
        ("+91 98765-43210", "919876543210"),
        ("09876543210", "919876543210"),
        ("919876543210", "919876543210"),
        ("14155550123", "14155550123"),
    ])
    def test_valid_numbers(self, raw, expected):
        assert normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", ["", "12345", "1234567890123456", None])
    def test_invalid_numbers(self, raw):
        with pytest.raises(ValidationError):
            normalize_phone(raw)


class TestParseHeader:

    def test_columns_found_by_name_in_any_order(self):
        header = ["Delivery Status", "Phone Number", "Customer Name", "Order ID"]
        index = parse_header("tailor", header)
        assert index["status"] == 0
        assert index["phone"] == 1
        assert index["order_id"] == 3

    def test_missing_required_column(self):
        with pytest.raises(SchemaError, match="Contact Number"):
            parse_header("tailor", ["Order ID", "Customer Name", "Delivery Status"])

    def test_unknown_sheet_type(self):
        with pytest.raises(SchemaError):
            parse_header("inventory", ["Order ID"])


class TestParseRow:

    def test_bad_phone_is_validation_error(self):
        index = parse_header("tailor", TAILOR_HEADER)
        with pytest.raises(ValidationError, match="Row 7"):
            parse_row("tailor", index, tailor_row(**{"Contact Number": "12"}), row_number=7)

    def test_short_row_is_padded(self):
        index = parse_header("tailor", TAILOR_HEADER)
        parsed = parse_row("tailor", index, ["T-1", "Ramesh", "9876543210", "", "", "", "Ready"], 3)
        assert parsed.customer_id == "919876543210"
        assert parsed.get("ready_notified") == ""


class TestMapTailor:

    def test_new_order_starts_with_welcome(self):
        [candidate] = tailor_candidates()
        assert candidate.message_type == "welcome"
        assert candidate.metadata["marker_field"] == "welcome_notified"
        assert "T-1001" in candidate.rendered_body

    def test_confirmation_after_welcome_marker(self):
        [candidate] = tailor_candidates(**{"Welcome Notified": "Yes"})
        assert candidate.message_type == "order_confirmation"

    def test_nothing_when_all_steps_marked(self):
        assert tailor_candidates(**{"Welcome Notified": "yes", "Confirmation Notified": "YES"}) == []

    def test_status_is_case_insensitive(self):
        [candidate] = tailor_candidates(**{"Delivery Status": "  READY "})
        assert candidate.message_type == "order_ready"

    def test_pickup_reminder_due(self):
        candidates = tailor_candidates(**{
            "Delivery Status": "Ready", "Ready Notified": "Yes",
            "Ready Date": "2024-03-05", "Pickup Reminder Count": "1",
        })
        [reminder] = candidates
        assert reminder.message_type == "pickup_reminder"
        assert reminder.reminder_sequence_number == 2
        assert reminder.metadata["counter_field"] == "pickup_reminder_count"

    @pytest.mark.parametrize("count", ["abc", "inf", "-inf", "1e400", "nan"])
    def test_unusable_counter_is_validation_error(self, count):
        with pytest.raises(ValidationError):
            tailor_candidates(**{
                "Delivery Status": "Ready", "Ready Notified": "Yes",
                "Ready Date": "2024-03-05", "Pickup Reminder Count": count,
            })

    def test_pickup_reminder_not_yet_due(self):
        assert tailor_candidates(**{
            "Delivery Status": "Ready", "Ready Notified": "Yes",
            "Ready Date": "18/03/2024", "Pickup Reminder Count": "0",
        }) == []

    def test_payment_reminder_for_unpaid_delivery(self):
        candidates = tailor_candidates(**{
            "Delivery Status": "Delivered", "Delivery Notified": "Yes", "Payment Status": "Partial",
            "Remaining Amount": "₹1,300", "Delivery Date": "10/03/2024",
        })
        assert [c.message_type for c in candidates] == ["payment_reminder"]

    def test_no_payment_reminder_when_nothing_remaining(self):
        assert tailor_candidates(**{
            "Delivery Status": "Delivered", "Delivery Notified": "Yes", "Payment Status": "Pending",
            "Remaining Amount": "0", "Delivery Date": "10/03/2024",
        }) == []


class TestOtherSheets:

    def test_worker_order_id_is_composite(self):
        header = ["Worker Name", "Worker Phone", "Date", "Work Done", "Daily Amount", "Notified"]
        index = parse_header("worker", header)
        parsed = parse_row("worker", index, ["Suresh", "9876500055", "2024-03-19", "3 shirts", "650", ""], 2)

        [candidate] = map_row(parsed, TODAY)
        assert candidate.order_id == "Suresh:2024-03-19"
        assert candidate.message_type == "worker_daily_data"

    def test_combined_order_once(self):
        header = ["Combined Order ID", "Customer Name", "Contact Number", "Combined Order Notified"]
        index = parse_header("combined", header)

        pending = parse_row("combined", index, ["C-1", "Neha", "9876500044", ""], 2)
        done = parse_row("combined", index, ["C-1", "Neha", "9876500044", "Yes"], 2)

        assert [c.message_type for c in map_row(pending, TODAY)] == ["combined_order"]
        assert map_row(done, TODAY) == []

    def test_fabric_payment_reminder(self):
        header = ["Fabric Order ID", "Customer Name", "Contact Number", "Status", "Payment Status",
                  "Purchase Date", "Welcome Notified", "Purchase Notified", "Payment Reminder Count"]
        index = parse_header("fabric", header)
        parsed = parse_row("fabric", index, [
            "F-1", "Kavita", "9876500033", "Purchased", "Pending", "2024-03-01", "Yes", "Yes", "0",
        ], 2)

        [candidate] = map_row(parsed, TODAY, payment_days=[3, 10])
        assert candidate.message_type == "fabric_payment_reminder"
        assert candidate.reminder_sequence_number == 1
