"""Pure streak computation over activity dates."""

from datetime import date, datetime, timedelta, timezone

from streetxp.progression.streak_service import StreakAnchor, compute_streak, to_utc_date

TODAY = date(2026, 3, 18)


def _days_ago(*offsets: int) -> list[date]:
    return [TODAY - timedelta(days=n) for n in offsets]


class TestComputeStreak:

    def test_no_activity(self):
        result = compute_streak([], TODAY)
        assert result.current_streak == 0
        assert result.longest_streak == 0
        assert result.last_activity_date is None
        assert result.is_active_today is False

    def test_gap_breaks_current_streak(self):
        """today, -1, -2 and -4: the gap at -3 ends the current chain."""
        result = compute_streak(_days_ago(0, 1, 2, 4), TODAY)
        assert result.current_streak == 3
        assert result.longest_streak == 3
        assert result.is_active_today is True
        assert result.last_activity_date == TODAY

    def test_duplicate_dates_count_once(self):
        result = compute_streak(_days_ago(0, 0, 1, 1), TODAY)
        assert result.current_streak == 2

    def test_longest_streak_in_the_past(self):
        result = compute_streak(_days_ago(0, 10, 11, 12, 13, 14), TODAY)
        assert result.current_streak == 1
        assert result.longest_streak == 5

    def test_single_old_day(self):
        result = compute_streak(_days_ago(30), TODAY)
        assert result.current_streak == 0
        assert result.longest_streak == 1

    def test_longest_is_never_below_current(self):
        for offsets in [(0,), (0, 1), (1, 2, 3), (0, 2, 3, 4), (5, 6, 0, 1)]:
            result = compute_streak(_days_ago(*offsets), TODAY)
            assert result.longest_streak >= result.current_streak


class TestStreakAnchor:

    def test_grace_keeps_yesterdays_chain(self):
        result = compute_streak(_days_ago(1, 2, 3), TODAY, StreakAnchor.GRACE)
        assert result.current_streak == 3
        assert result.is_active_today is False

    def test_today_anchor_is_strict(self):
        result = compute_streak(_days_ago(1, 2, 3), TODAY, StreakAnchor.TODAY)
        assert result.current_streak == 0
        assert result.longest_streak == 3

    def test_grace_does_not_reach_two_days_back(self):
        result = compute_streak(_days_ago(2, 3), TODAY, StreakAnchor.GRACE)
        assert result.current_streak == 0

    def test_anchors_agree_when_active_today(self):
        dates = _days_ago(0, 1)
        assert (
            compute_streak(dates, TODAY, StreakAnchor.TODAY).current_streak
            == compute_streak(dates, TODAY, StreakAnchor.GRACE).current_streak
            == 2
        )


class TestToUTCDate:

    def test_aware_timestamp_converted_to_utc(self):
        ts = datetime(2026, 3, 18, 23, 30, tzinfo=timezone(timedelta(hours=-6)))
        assert to_utc_date(ts) == date(2026, 3, 19)

    def test_naive_timestamp_taken_as_utc(self):
        assert to_utc_date(datetime(2026, 3, 18, 23, 30)) == date(2026, 3, 18)
