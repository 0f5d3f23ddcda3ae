"""Tests for the schedule computation."""

from datetime import datetime

from services.scheduler import next_run_time, next_wakeup


class TestScheduler:
    """Tests for picking the next fetch or digest slot."""

    def test_next_run_later_today(self):
        assert next_run_time(7, datetime(2026, 1, 5, 6, 30)) == datetime(2026, 1, 5, 7, 0)

    def test_next_run_tomorrow_once_passed(self):
        assert next_run_time(7, datetime(2026, 1, 5, 7, 0)) == datetime(2026, 1, 6, 7, 0)

    def test_fetch_pass_before_digest(self):
        assert next_wakeup(7, datetime(2026, 1, 5, 12, 15)) == (datetime(2026, 1, 5, 16, 0), False)

    def test_digest_slot_wins_when_sooner(self):
        assert next_wakeup(7, datetime(2026, 1, 5, 5, 10)) == (datetime(2026, 1, 5, 7, 0), True)
