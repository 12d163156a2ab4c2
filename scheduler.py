"""
Scheduler — the recurring poll timer and reminder-day arithmetic.
"""

import logging
import threading
import time
from datetime import date, datetime

logger = logging.getLogger(__name__)

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d/%m/%y", "%m/%d/%Y")


class PollScheduler:
    """
    Runs `job` immediately, then on a fixed grid of `interval_seconds`.

    The job always runs to completion before the next run starts. If a run
    overruns one or more ticks, those ticks are skipped rather than queued.
    """

    def __init__(self, interval_seconds: float, job, stop_event: threading.Event = None,
                 monotonic=time.monotonic):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval = interval_seconds
        self.job = job
        self.stop_event = stop_event or threading.Event()
        self._monotonic = monotonic
        self.runs = 0
        self.skipped_ticks = 0

    def run(self, max_runs: int = None):
        """Block until the stop event is set (or `max_runs` runs complete)."""
        next_tick = self._monotonic()
        while not self.stop_event.is_set():
            try:
                self.job()
            except Exception:
                logger.exception("Scheduled job raised; continuing with next tick")
            self.runs += 1
            if max_runs is not None and self.runs >= max_runs:
                return

            next_tick, missed = next_tick_after(next_tick, self.interval, self._monotonic())
            if missed:
                self.skipped_ticks += missed
                logger.warning("Poll cycle overran its interval; skipped %d tick(s)", missed)

            self.stop_event.wait(max(0.0, next_tick - self._monotonic()))

    def stop(self):
        self.stop_event.set()


def next_tick_after(last_tick: float, interval: float, now: float) -> tuple[float, int]:
    """
    Next grid point strictly after `now`, starting from `last_tick`.
    Returns (next_tick, number of grid points skipped).
    """
    next_tick = last_tick + interval
    missed = 0
    while next_tick <= now:
        next_tick += interval
        missed += 1
    return next_tick, missed


def parse_date(value: str) -> date | None:
    """Parse a sheet date cell. Returns None for blanks or unknown formats."""
    value = (value or "").strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def days_since(value: str, today: date) -> int | None:
    """Whole days from a sheet date to `today`, or None if unparseable."""
    start = parse_date(value)
    if start is None:
        return None
    return (today - start).days


def is_reminder_due(days: int | None, schedule: list[int], sent_count: int) -> bool:
    """
    A reminder is due when the next unsent schedule entry has been reached.

    With schedule [3, 10, 25] and 1 reminder already sent, the second
    reminder becomes due from day 10 onwards.
    """
    if days is None or sent_count >= len(schedule):
        return False
    return days >= schedule[sent_count]
