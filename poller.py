"""
Order Poller — one poll cycle: read every configured sheet, map rows to
candidates, dispatch them one by one, and mirror outcomes back to the sheet.

The ledger is the source of truth. Sheet markers ("… Notified = Yes") and
reminder counters are a best-effort mirror: a failed write is logged and
counted, and is repaired on a later cycle when the ledger reports the
notification as already sent.
"""

import logging
import re
import threading
from collections import Counter
from datetime import date, datetime, timedelta

from config import RETENTION_DAYS, PRUNE_INTERVAL_HOURS, PICKUP_REMINDER_DAYS, PAYMENT_REMINDER_DAYS
from ledger import StorageError
from models import SENT, BLOCKED, EXACT_DUPLICATE, REMINDER_OUT_OF_SEQUENCE
from row_mapper import ValidationError, SchemaError, parse_header, parse_row, map_row
from sheets_client import SheetsError, a1_cell

logger = logging.getLogger(__name__)


def split_range(cell_range: str) -> tuple[str, int]:
    """ "Orders!A1:Z" → ("Orders", 1). Row defaults to 1."""
    tab, _, cells = cell_range.rpartition("!")
    tab = tab.strip("'")
    match = re.match(r"^[A-Za-z]+(\d+)", cells)
    return tab, int(match.group(1)) if match else 1


class OrderPoller:
    """Runs poll cycles against the configured sheet sources."""

    def __init__(self, sources: list[dict], sheets, dispatcher, ledger,
                 stop_event: threading.Event = None,
                 retention_days: int = RETENTION_DAYS,
                 prune_interval_hours: float = PRUNE_INTERVAL_HOURS,
                 pickup_days: list = PICKUP_REMINDER_DAYS,
                 payment_days: list = PAYMENT_REMINDER_DAYS,
                 today=date.today):
        self.sources = sources
        self.sheets = sheets
        self.dispatcher = dispatcher
        self.ledger = ledger
        self.stop_event = stop_event or threading.Event()
        self.retention = timedelta(days=retention_days)
        self.prune_interval = timedelta(hours=prune_interval_hours)
        self.pickup_days = pickup_days
        self.payment_days = payment_days
        self.today = today
        self.last_summary: dict | None = None
        self._last_prune: datetime | None = None
        self._cycle_lock = threading.Lock()

        longest = max(list(pickup_days) + list(payment_days), default=0)
        if retention_days <= longest:
            logger.warning(
                "RETENTION_DAYS=%d is not longer than the reminder schedule (%d days); "
                "reminders past the retention horizon will be blocked as out of sequence",
                retention_days, longest,
            )

    def poll_once(self) -> dict:
        """
        Run one full cycle. Never runs concurrently with another cycle: a
        call made while a cycle is in progress returns immediately.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Poll cycle already in progress; skipping")
            return {"skipped": "cycle_in_progress"}
        try:
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    def _run_cycle(self) -> dict:
        started = self.dispatcher.now()
        summary = {
            "started_at": started.isoformat(),
            "rows": 0, "skipped_rows": 0, "candidates": 0,
            "sent": 0, "blocked": 0, "failed": 0,
            "blocked_by_reason": Counter(),
            "storage_errors": 0, "marker_errors": 0, "sheet_errors": 0,
        }

        state = self.dispatcher.transport.get_connection_state()
        if not state.get("connected"):
            logger.warning("WhatsApp not connected (%s); skipping poll cycle", state.get("state"))
            summary["skipped"] = "not_connected"
            self.last_summary = summary
            return summary

        for source in self.sources:
            if self.stop_event.is_set():
                break
            try:
                self._poll_sheet(source, summary)
            except (SheetsError, SchemaError) as e:
                summary["sheet_errors"] += 1
                logger.error("Skipping %s sheet: %s", source["sheet_type"], e)

        self._maybe_prune()

        summary["blocked_by_reason"] = dict(summary["blocked_by_reason"])
        summary["finished_at"] = self.dispatcher.now().isoformat()
        logger.info(
            "Poll cycle done: rows=%d skipped=%d candidates=%d sent=%d blocked=%d failed=%d "
            "storage_errors=%d marker_errors=%d",
            summary["rows"], summary["skipped_rows"], summary["candidates"], summary["sent"],
            summary["blocked"], summary["failed"], summary["storage_errors"], summary["marker_errors"],
        )
        self.dispatcher.metrics.increment("cycles")
        self.dispatcher.metrics.increment("skipped_rows", summary["skipped_rows"])
        self.last_summary = summary
        return summary

    def _poll_sheet(self, source: dict, summary: dict):
        sheet_type = source["sheet_type"]
        rows = self.sheets.read_rows(source["sheet_id"], source["range"])
        if len(rows) <= 1:
            logger.info("No data rows in %s sheet", sheet_type)
            return

        column_index = parse_header(sheet_type, rows[0])
        tab, header_row = split_range(source["range"])
        today = self.today()

        for offset, row in enumerate(rows[1:], start=1):
            if self.stop_event.is_set():
                return
            row_number = header_row + offset
            summary["rows"] += 1

            try:
                parsed = parse_row(sheet_type, column_index, row, row_number)
                candidates = map_row(parsed, today, self.pickup_days, self.payment_days)
            except ValidationError as e:
                summary["skipped_rows"] += 1
                logger.warning("Skipping %s row: %s", sheet_type, e)
                continue
            except Exception:
                summary["skipped_rows"] += 1
                logger.exception("Unexpected error mapping %s row %d; skipping it", sheet_type, row_number)
                continue

            for candidate in candidates:
                if self.stop_event.is_set():
                    return
                candidate.metadata.update(sheet_id=source["sheet_id"], tab=tab)
                summary["candidates"] += 1

                try:
                    result = self.dispatcher.dispatch(candidate)
                except StorageError:
                    summary["storage_errors"] += 1
                    logger.exception(
                        "Ledger error dispatching %s for order %s; will retry next cycle",
                        candidate.message_type, candidate.order_id,
                    )
                    continue

                summary[result.status] += 1
                if result.status == BLOCKED:
                    summary["blocked_by_reason"][result.reason] += 1

                self._mirror(candidate, result, column_index, summary)

    def _mirror(self, candidate, result, column_index: dict, summary: dict):
        """Write markers / counters back to the sheet. Never raises."""
        meta = candidate.metadata
        writes = []

        marker_field = meta.get("marker_field")
        if marker_field in column_index and (
                result.status == SENT
                or (result.status == BLOCKED and result.reason == EXACT_DUPLICATE)):
            writes.append((column_index[marker_field], "Yes"))

        counter_field = meta.get("counter_field")
        if counter_field in column_index:
            if result.status == SENT:
                writes.append((column_index[counter_field], str(candidate.reminder_sequence_number)))
            elif result.status == BLOCKED and result.reason == REMINDER_OUT_OF_SEQUENCE:
                try:
                    count = self.ledger.count_sent_reminders(*candidate.key())
                except StorageError:
                    logger.exception("Could not read reminder count for order %s", candidate.order_id)
                    count = None
                # the sheet counter only moves forward
                if count is not None and count > candidate.reminder_sequence_number - 1:
                    writes.append((column_index[counter_field], str(count)))

        for column, value in writes:
            cell = a1_cell(meta.get("tab", ""), column, meta["row_number"])
            try:
                self.sheets.write_cell(meta["sheet_id"], cell, value)
            except SheetsError as e:
                summary["marker_errors"] += 1
                logger.warning("Sheet mirror write %s failed (ledger is authoritative): %s", cell, e)

    def _maybe_prune(self):
        now = self.dispatcher.now()
        if self._last_prune is not None and now - self._last_prune < self.prune_interval:
            return
        try:
            self.ledger.prune(now - self.retention)
            self._last_prune = now
        except StorageError:
            logger.exception("Ledger prune failed")
