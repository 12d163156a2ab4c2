"""
Logger — logging setup, phone masking, and the dispatch metrics collector.
"""

import json
import logging
import sys
from collections import Counter, deque
from datetime import datetime, timezone

from config import LOG_LEVEL, LOG_FORMAT, METRICS_MAX_ENTRIES


def configure_logging(level: str = LOG_LEVEL):
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level.upper())


def mask_phone(phone: str) -> str:
    """Show only the last 4 digits of a phone number."""
    digits = "".join(ch for ch in str(phone or "") if ch.isdigit())
    if len(digits) < 4:
        return "****"
    return "*" * (len(digits) - 4) + digits[-4:]


class DispatchMetrics:
    """Accumulates dispatch outcomes and operator alerts for reporting."""

    def __init__(self, max_entries: int = METRICS_MAX_ENTRIES):
        # oldest entries drop off; counts keep the running totals
        self.entries: deque = deque(maxlen=max_entries)
        self.alerts: deque = deque(maxlen=max_entries)
        self.counts: Counter = Counter()
        self.blocked_by_reason: Counter = Counter()

    def record(self, candidate, result) -> dict:
        """Store one dispatch outcome."""
        entry = {
            "customer": mask_phone(candidate.customer_id),
            "order_id": candidate.order_id,
            "message_type": candidate.message_type,
            "sheet_type": candidate.sheet_type,
            "status": result.status,
            "reason": result.reason,
            "external_message_id": result.external_message_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.entries.append(entry)
        self.counts["processed"] += 1
        self.counts[result.status] += 1
        if result.status == "blocked":
            self.blocked_by_reason[result.reason] += 1
        return entry

    def increment(self, name: str, amount: int = 1):
        self.counts[name] += amount

    def alert(self, kind: str, message: str, **details) -> dict:
        """Record an operator-visible alert."""
        entry = {
            "kind": kind,
            "message": message,
            "details": details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.alerts.append(entry)
        return entry

    def snapshot(self) -> dict:
        return {
            "counts": dict(self.counts),
            "blocked_by_reason": dict(self.blocked_by_reason),
            "alerts": list(self.alerts)[-20:],
        }

    def print_table(self):
        """Print a formatted table of all dispatch outcomes."""
        if not self.entries:
            print("No dispatches recorded.")
            return

        print("\n" + "=" * 110)
        print(f"{'#':<4} {'Customer':<14} {'Sheet':<9} {'Type':<24} {'Order':<20} "
              f"{'Status':<8} {'Reason':<28}")
        print("-" * 110)

        for i, entry in enumerate(self.entries, 1):
            print(
                f"{i:<4} {entry['customer']:<14} {entry['sheet_type']:<9} "
                f"{entry['message_type']:<24} {entry['order_id'][:19]:<20} "
                f"{entry['status']:<8} {entry['reason'] or '-':<28}"
            )

        print("=" * 110 + "\n")

    def export_json(self, filepath: str = "dispatch_log.json"):
        """Export all entries and alerts to a JSON file."""
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump({"entries": list(self.entries), "alerts": list(self.alerts)}, f,
                      indent=2, default=str, ensure_ascii=False)
        logging.getLogger(__name__).info("Exported %d dispatches to %s", len(self.entries), filepath)

    def clear(self):
        self.entries.clear()
        self.alerts.clear()
        self.counts.clear()
        self.blocked_by_reason.clear()
