"""
Notification Ledger — durable, append-only record of every notification
attempt and its outcome, stored in a local SQLite database.
"""

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from config import LEDGER_DB_PATH
from models import NotificationEvent, SENT, REMINDER_TYPES

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the ledger cannot read or durably write an event."""
    pass


_SCHEMA = """
CREATE TABLE IF NOT EXISTS notification_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_id TEXT NOT NULL,
    order_id TEXT NOT NULL,
    message_type TEXT NOT NULL,
    sheet_type TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('sent', 'blocked', 'failed')),
    block_reason TEXT,
    attempted_at REAL NOT NULL,
    reminder_sequence_number INTEGER,
    external_message_id TEXT,
    error TEXT,
    bypassed INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS ix_events_key
    ON notification_events (customer_id, order_id, message_type, sheet_type, status);

CREATE INDEX IF NOT EXISTS ix_events_customer_time
    ON notification_events (customer_id, attempted_at);

CREATE UNIQUE INDEX IF NOT EXISTS ux_sent_once
    ON notification_events (customer_id, order_id, message_type, sheet_type)
    WHERE status = 'sent' AND reminder_sequence_number IS NULL AND bypassed = 0;

CREATE UNIQUE INDEX IF NOT EXISTS ux_reminder_sequence
    ON notification_events (customer_id, order_id, message_type, sheet_type, reminder_sequence_number)
    WHERE status = 'sent' AND reminder_sequence_number IS NOT NULL AND bypassed = 0;
"""

_COLUMNS = (
    "id, customer_id, order_id, message_type, sheet_type, content_hash, status, "
    "block_reason, attempted_at, reminder_sequence_number, external_message_id, "
    "error, bypassed"
)


def _to_epoch(ts: datetime) -> float:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _row_to_event(row: tuple) -> NotificationEvent:
    return NotificationEvent(
        id=row[0],
        customer_id=row[1],
        order_id=row[2],
        message_type=row[3],
        sheet_type=row[4],
        content_hash=row[5],
        status=row[6],
        block_reason=row[7],
        attempted_at=_from_epoch(row[8]),
        reminder_sequence_number=row[9],
        external_message_id=row[10],
        error=row[11],
        bypassed=bool(row[12]),
    )


class NotificationLedger:
    """SQLite-backed append-only notification history."""

    def __init__(self, db_path: str = LEDGER_DB_PATH):
        self.db_path = db_path
        if db_path != ":memory:":
            directory = os.path.dirname(os.path.abspath(db_path))
            os.makedirs(directory, exist_ok=True)

        self._lock = threading.RLock()
        # key -> [lock, holders]; entries are dropped when the last holder leaves
        self._key_locks: dict[tuple, list] = {}
        self._key_locks_guard = threading.Lock()

        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=FULL")
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Could not open ledger at {db_path}: {e}") from e

        logger.info("Ledger opened at %s (%d events)", db_path, self.count())

    # ── Writes ─────────────────────────────────────────────────────────

    def append(self, event: NotificationEvent) -> None:
        """
        Durably append an event. The write is committed before returning.
        An attempted_at earlier than the customer's latest recorded attempt
        is raised to that value. Raises StorageError if the event could not
        be recorded.
        """
        attempted = _to_epoch(event.attempted_at)
        with self._lock:
            try:
                last = self._conn.execute(
                    "SELECT MAX(attempted_at) FROM notification_events WHERE customer_id = ?",
                    (event.customer_id,),
                ).fetchone()[0]
                # attempted_at never goes backwards within one customer's history
                if last is not None and attempted < last:
                    attempted = last
                    event.attempted_at = _from_epoch(last)

                with self._conn:
                    cur = self._conn.execute(
                        "INSERT INTO notification_events (customer_id, order_id, message_type, "
                        "sheet_type, content_hash, status, block_reason, attempted_at, "
                        "reminder_sequence_number, external_message_id, error, bypassed) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            event.customer_id, event.order_id, event.message_type,
                            event.sheet_type, event.content_hash, event.status,
                            event.block_reason, attempted, event.reminder_sequence_number,
                            event.external_message_id, event.error, int(event.bypassed),
                        ),
                    )
                event.id = cur.lastrowid
            except sqlite3.Error as e:
                raise StorageError(f"Failed to append event {event.key()}: {e}") from e

    def prune(self, older_than: datetime) -> int:
        """Delete events attempted before `older_than`. Returns the count removed."""
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute(
                        "DELETE FROM notification_events WHERE attempted_at < ?",
                        (_to_epoch(older_than),),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to prune ledger: {e}") from e
        removed = cur.rowcount
        if removed:
            logger.info("Ledger pruned %d events older than %s", removed, older_than.isoformat())
        return removed

    # ── Reads ──────────────────────────────────────────────────────────

    def _query(self, sql: str, params: tuple) -> list:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Ledger query failed: {e}") from e

    def find_sent(self, customer_id: str, order_id: str, message_type: str,
                  sheet_type: str) -> NotificationEvent | None:
        """Most recent `sent` event for the exact key, or None."""
        rows = self._query(
            f"SELECT {_COLUMNS} FROM notification_events "
            "WHERE customer_id = ? AND order_id = ? AND message_type = ? AND sheet_type = ? "
            "AND status = 'sent' ORDER BY attempted_at DESC, id DESC LIMIT 1",
            (customer_id, order_id, message_type, sheet_type),
        )
        return _row_to_event(rows[0]) if rows else None

    def find_recent_by_customer(self, customer_id: str, since: datetime) -> list[NotificationEvent]:
        """All events for a customer attempted at or after `since`, oldest first."""
        rows = self._query(
            f"SELECT {_COLUMNS} FROM notification_events "
            "WHERE customer_id = ? AND attempted_at >= ? ORDER BY attempted_at ASC, id ASC",
            (customer_id, _to_epoch(since)),
        )
        return [_row_to_event(r) for r in rows]

    def count_sent_in_window(self, customer_id: str, window_start: datetime) -> int:
        rows = self._query(
            "SELECT COUNT(*) FROM notification_events "
            "WHERE customer_id = ? AND status = 'sent' AND attempted_at >= ?",
            (customer_id, _to_epoch(window_start)),
        )
        return rows[0][0]

    def count_sent_reminders(self, customer_id: str, order_id: str, message_type: str,
                             sheet_type: str) -> int:
        """Number of sent reminders of one kind for one order."""
        if message_type not in REMINDER_TYPES:
            return 0
        rows = self._query(
            "SELECT COUNT(*) FROM notification_events "
            "WHERE customer_id = ? AND order_id = ? AND message_type = ? AND sheet_type = ? "
            "AND status = 'sent' AND reminder_sequence_number IS NOT NULL",
            (customer_id, order_id, message_type, sheet_type),
        )
        return rows[0][0]

    def count(self) -> int:
        return self._query("SELECT COUNT(*) FROM notification_events", ())[0][0]

    def stats(self) -> dict:
        """Totals per status and per block reason."""
        by_status = dict(self._query(
            "SELECT status, COUNT(*) FROM notification_events GROUP BY status", ()
        ))
        by_reason = dict(self._query(
            "SELECT block_reason, COUNT(*) FROM notification_events "
            "WHERE status = 'blocked' GROUP BY block_reason", ()
        ))
        return {
            "total": sum(by_status.values()),
            "sent": by_status.get(SENT, 0),
            "blocked": by_status.get("blocked", 0),
            "failed": by_status.get("failed", 0),
            "blocked_by_reason": by_reason,
        }

    # ── Concurrency ────────────────────────────────────────────────────

    @contextmanager
    def key_lock(self, customer_id: str, order_id: str, message_type: str, sheet_type: str):
        """Serialize check-and-append for one (customer, order, type, sheet) key."""
        key = (customer_id, order_id, message_type, sheet_type)
        with self._key_locks_guard:
            entry = self._key_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[key]

    def close(self):
        with self._lock:
            self._conn.close()
