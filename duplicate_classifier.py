"""
Duplicate Classifier — exact-match detection, rate/cooldown policy and
content-hash similarity combined into one ALLOW / BLOCK verdict.
"""

import hashlib
import re
import unicodedata
from datetime import datetime

import rate_policy
from config import PolicyConfig
from models import (
    Candidate, SENT, is_reminder,
    EXACT_DUPLICATE, RATE_LIMIT_EXCEEDED, COOLDOWN_ACTIVE, SIMILAR_CONTENT_RECENTLY_SENT,
)

_POLICY_REASONS = {
    rate_policy.RATE_LIMIT_EXCEEDED: RATE_LIMIT_EXCEEDED,
    rate_policy.COOLDOWN_ACTIVE: COOLDOWN_ACTIVE,
}


def normalize_text(text: str) -> str:
    """Normalize text: lowercase, strip punctuation, collapse whitespace."""
    text = unicodedata.normalize("NFKC", text).lower()
    text = re.sub(r'[^\w\s]', '', text)
    text = re.sub(r'\s+', ' ', text).strip()
    return text


def content_hash(body: str) -> str:
    """SHA-256 fingerprint of the normalized message body."""
    return hashlib.sha256(normalize_text(body).encode("utf-8")).hexdigest()


def allow() -> dict:
    return {"allowed": True, "reason": None, "matched_event": None}


def block(reason: str, matched_event=None) -> dict:
    return {"allowed": False, "reason": reason, "matched_event": matched_event}


class DuplicateClassifier:
    """Decides whether a candidate notification may be sent now."""

    def __init__(self, ledger, policy_config: PolicyConfig):
        self.ledger = ledger
        self.config = policy_config

    def classify(self, candidate: Candidate, now: datetime) -> dict:
        """
        Classify a candidate. First matching check wins.
        Returns:
          {
            "allowed": bool,
            "reason": "EXACT_DUPLICATE"|"RATE_LIMIT_EXCEEDED"|"COOLDOWN_ACTIVE"
                      |"SIMILAR_CONTENT_RECENTLY_SENT"|None,
            "matched_event": NotificationEvent|None
          }
        """
        customer_id = candidate.customer_id

        if customer_id in self.config.developer_bypass:
            return allow()

        # 1. Exact match (reminders repeat by sequence number)
        if not is_reminder(candidate.message_type):
            previous = self.ledger.find_sent(*candidate.key())
            if previous is not None:
                return block(EXACT_DUPLICATE, previous)

        # 2. Rate limit / cooldown
        recent = self.ledger.find_recent_by_customer(customer_id, now - self.config.lookback)
        verdict = rate_policy.evaluate(customer_id, now, self.config, recent)
        if verdict != rate_policy.OK:
            return block(_POLICY_REASONS[verdict])

        # 3. Same body recently sent for the same order
        fingerprint = content_hash(candidate.rendered_body)
        for event in rate_policy.sent_in_window(recent, now, self.config):
            if event.order_id == candidate.order_id and event.content_hash == fingerprint:
                return block(SIMILAR_CONTENT_RECENTLY_SENT, event)

        return allow()
