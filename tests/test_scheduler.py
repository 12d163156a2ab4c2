"""Tests for the poll scheduler and reminder-day helpers."""

import threading
from datetime import date

import pytest

from scheduler import PollScheduler, days_since, is_reminder_due, next_tick_after, parse_date


class TestNextTick:

    def test_on_time(self):
        assert next_tick_after(0, 180, 10) == (180, 0)

    def test_overrun_skips_missed_ticks(self):
        assert next_tick_after(0, 180, 400) == (540, 2)

    def test_exact_boundary_counts_as_missed(self):
        assert next_tick_after(0, 180, 180) == (360, 1)


class TestPollScheduler:

    def test_runs_immediately_and_stops_after_max_runs(self):
        calls = []
        scheduler = PollScheduler(0.01, lambda: calls.append(1))
        scheduler.run(max_runs=3)
        assert len(calls) == 3

    def test_job_exception_does_not_stop_loop(self):
        calls = []

        def job():
            calls.append(1)
            raise RuntimeError("sheet read failed")

        PollScheduler(0.01, job).run(max_runs=2)
        assert len(calls) == 2

    def test_stop_event_ends_loop(self):
        stop = threading.Event()
        scheduler = PollScheduler(60, stop.set, stop_event=stop)
        scheduler.run()
        assert scheduler.runs == 1

    def test_overrun_is_counted(self):
        ticks = iter([0.0, 500.0, 500.0])
        scheduler = PollScheduler(180, lambda: None, monotonic=lambda: next(ticks))
        scheduler.stop_event.wait = lambda timeout: None
        scheduler.run(max_runs=2)
        assert scheduler.skipped_ticks == 2

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            PollScheduler(0, lambda: None)


class TestDates:

    @pytest.mark.parametrize("value", ["2024-03-05", "05/03/2024", "05-03-2024", "05/03/24"])
    def test_parse_date_formats(self, value):
        assert parse_date(value) == date(2024, 3, 5)

    def test_unparseable_date(self):
        assert parse_date("next tuesday") is None
        assert days_since("", date(2024, 3, 5)) is None

    def test_days_since(self):
        assert days_since("2024-03-01", date(2024, 3, 11)) == 10


class TestReminderDue:

    def test_due_on_schedule_day(self):
        assert is_reminder_due(3, [3, 10, 25], sent_count=0) is True

    def test_not_due_before_schedule_day(self):
        assert is_reminder_due(9, [3, 10, 25], sent_count=1) is False

    def test_late_reminder_still_due(self):
        assert is_reminder_due(40, [3, 10, 25], sent_count=2) is True

    def test_schedule_exhausted(self):
        assert is_reminder_due(400, [3, 10, 25], sent_count=3) is False

    def test_unknown_days(self):
        assert is_reminder_due(None, [3], sent_count=0) is False
