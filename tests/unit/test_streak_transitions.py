"""Streak state machine tests: UTC day continuity, gaps and backfills."""

from datetime import date, datetime, timedelta, timezone

from vitality.progress.constants import next_milestone
from vitality.progress.ledger_service import utc_day
from vitality.progress.streak_service import compute_transition, is_streak_broken

D = date(2026, 3, 2)


class TestComputeTransition:
    """Test the pure day transition."""

    def test_first_ever_qualifying_day(self):
        t = compute_transition(0, 0, None, D)
        assert t.changed
        assert t.current_streak == 1
        assert t.longest_streak == 1
        assert t.last_qualifying_date == D

    def test_consecutive_day_extends(self):
        t = compute_transition(4, 6, D - timedelta(days=1), D)
        assert t.current_streak == 5
        assert t.longest_streak == 6
        assert not t.restarted

    def test_same_day_is_noop(self):
        t = compute_transition(3, 3, D, D)
        assert not t.changed
        assert t.current_streak == 3
        assert t.last_qualifying_date == D

    def test_gap_restarts_at_one(self):
        t = compute_transition(5, 5, D - timedelta(days=2), D)
        assert t.current_streak == 1
        assert t.longest_streak == 5
        assert t.restarted

    def test_after_sweep_zero_restarts_at_one(self):
        t = compute_transition(0, 5, D - timedelta(days=3), D)
        assert t.current_streak == 1

    def test_backfill_does_not_move_streak(self):
        t = compute_transition(3, 3, D, D - timedelta(days=2))
        assert not t.changed
        assert t.last_qualifying_date == D

    def test_longest_tracks_new_record(self):
        t = compute_transition(7, 7, D - timedelta(days=1), D)
        assert t.longest_streak == 8

    def test_longest_never_below_current(self):
        current, longest, last = 0, 0, None
        day = D
        for offset in (0, 1, 2, 5, 6, 6, 9, 10, 11, 12):
            day = D + timedelta(days=offset)
            t = compute_transition(current, longest, last, day)
            current, longest, last = t.current_streak, t.longest_streak, t.last_qualifying_date
            assert longest >= current >= 0
        assert (current, longest) == (4, 4)


class TestIsStreakBroken:
    """Test sweep eligibility."""

    def test_yesterday_is_not_broken(self):
        assert not is_streak_broken(D - timedelta(days=1), D)

    def test_today_is_not_broken(self):
        assert not is_streak_broken(D, D)

    def test_two_days_ago_is_broken(self):
        assert is_streak_broken(D - timedelta(days=2), D)

    def test_never_qualified_is_not_broken(self):
        assert not is_streak_broken(None, D)


class TestUtcDay:
    """Day boundaries are UTC midnight."""

    def test_late_evening_utc(self):
        assert utc_day(datetime(2026, 3, 2, 23, 59, 59, tzinfo=timezone.utc)) == D

    def test_midnight_starts_next_day(self):
        assert utc_day(datetime(2026, 3, 3, 0, 0, 0, tzinfo=timezone.utc)) == D + timedelta(days=1)

    def test_offset_timezone_is_converted(self):
        tz = timezone(timedelta(hours=-5))
        # 21:00 at UTC-5 is 02:00 UTC the next day
        assert utc_day(datetime(2026, 3, 2, 21, 0, 0, tzinfo=tz)) == D + timedelta(days=1)

    def test_naive_is_taken_as_utc(self):
        assert utc_day(datetime(2026, 3, 2, 23, 0, 0)) == D


class TestNextMilestone:
    """Test milestone lookup."""

    def test_from_zero(self):
        assert next_milestone(0) == 3

    def test_exactly_on_milestone_returns_next(self):
        assert next_milestone(7) == 14

    def test_past_last_milestone(self):
        assert next_milestone(400) is None
