"""Tests for the duplicate classifier verdicts."""

from datetime import timedelta

import pytest

from config import PolicyConfig
from duplicate_classifier import DuplicateClassifier, content_hash, normalize_text
from helpers import CUSTOMER, T0, make_candidate
from models import NotificationEvent


def _record(ledger, candidate, minutes, status="sent"):
    ledger.append(NotificationEvent(
        customer_id=candidate.customer_id, order_id=candidate.order_id,
        message_type=candidate.message_type, sheet_type=candidate.sheet_type,
        content_hash=content_hash(candidate.rendered_body), status=status,
        attempted_at=T0 + timedelta(minutes=minutes),
        reminder_sequence_number=candidate.reminder_sequence_number,
    ))


@pytest.fixture
def classifier(ledger, policy):
    return DuplicateClassifier(ledger, policy)


class TestNormalization:

    def test_normalize_text(self):
        assert normalize_text("  Hello,   WORLD!! ") == "hello world"

    def test_hash_ignores_case_and_punctuation(self):
        assert content_hash("Order Ready!") == content_hash("order   ready")
        assert content_hash("Order Ready") != content_hash("Order Delivered")


class TestClassify:

    def test_first_message_allowed(self, classifier):
        verdict = classifier.classify(make_candidate(), T0)
        assert verdict["allowed"] is True
        assert verdict["reason"] is None

    def test_exact_duplicate(self, classifier, ledger):
        welcome = make_candidate()
        _record(ledger, welcome, 0)

        verdict = classifier.classify(welcome, T0 + timedelta(minutes=1))
        assert verdict["allowed"] is False
        assert verdict["reason"] == "EXACT_DUPLICATE"
        assert verdict["matched_event"].order_id == "T-1001"

    def test_exact_duplicate_outlives_lookback(self, classifier, ledger):
        welcome = make_candidate()
        _record(ledger, welcome, 0)

        verdict = classifier.classify(welcome, T0 + timedelta(days=3))
        assert verdict["reason"] == "EXACT_DUPLICATE"

    def test_failed_attempt_is_not_a_duplicate(self, classifier, ledger):
        welcome = make_candidate()
        _record(ledger, welcome, 0, status="failed")

        assert classifier.classify(welcome, T0 + timedelta(minutes=1))["allowed"] is True

    def test_cooldown_then_allow(self, classifier, ledger):
        _record(ledger, make_candidate(), 0)
        ready = make_candidate(order_id="T-2002", message_type="order_ready")

        assert classifier.classify(ready, T0 + timedelta(minutes=1))["reason"] == "COOLDOWN_ACTIVE"
        assert classifier.classify(ready, T0 + timedelta(minutes=6))["allowed"] is True

    def test_rate_limit_then_allow_after_window(self, classifier, ledger):
        for i in range(5):
            _record(ledger, make_candidate(order_id=f"T-{i}"), i * 10)
        sixth = make_candidate(order_id="T-6")

        assert classifier.classify(sixth, T0 + timedelta(hours=23))["reason"] == "RATE_LIMIT_EXCEEDED"
        assert classifier.classify(sixth, T0 + timedelta(hours=25))["allowed"] is True

    def test_reminders_skip_exact_match(self, classifier, ledger):
        first = make_candidate(message_type="pickup_reminder", reminder_sequence_number=1)
        _record(ledger, first, 0)
        second = make_candidate(message_type="pickup_reminder", reminder_sequence_number=2)

        assert classifier.classify(second, T0 + timedelta(minutes=10))["allowed"] is True

    def test_similar_content_same_order(self, classifier, ledger):
        first = make_candidate(message_type="pickup_reminder", reminder_sequence_number=1, body="Come pick up")
        _record(ledger, first, 0)
        again = make_candidate(message_type="payment_reminder", reminder_sequence_number=1, body="come  pick up!")

        verdict = classifier.classify(again, T0 + timedelta(minutes=10))
        assert verdict["reason"] == "SIMILAR_CONTENT_RECENTLY_SENT"

    def test_developer_bypass(self, ledger):
        classifier = DuplicateClassifier(ledger, PolicyConfig(developer_bypass=frozenset({CUSTOMER})))
        welcome = make_candidate()
        _record(ledger, welcome, 0)

        assert classifier.classify(welcome, T0 + timedelta(seconds=5))["allowed"] is True
