"""Integration tests for streaks and earnings derived from stored activity."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from streetxp.db.models import Run, VenueLead, XPEvent
from streetxp.progression.earnings import get_user_earnings
from streetxp.progression.streak_service import StreakAnchor, calculate_streak, list_activity_dates

TODAY = date(2026, 3, 18)


def _at(days_ago: int, hour: int = 12) -> datetime:
    day = TODAY - timedelta(days=days_ago)
    return datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


class TestCalculateStreak:

    @pytest.mark.asyncio
    async def test_streak_spans_runs_leads_and_xp(self, db_session, make_user):
        user = await make_user()
        db_session.add_all([
            Run(user_id=user.id, status="completed", created_at=_at(0)),
            VenueLead(created_by_user_id=user.id, venue_name="Blue Bar", created_at=_at(1)),
            XPEvent(user_id=user.id, source="manual_bonus", xp_amount=5, created_at=_at(2)),
            Run(user_id=user.id, status="completed", created_at=_at(4)),
        ])
        await db_session.commit()

        result = await calculate_streak(db_session, user.id, today=TODAY)

        assert result.current_streak == 3
        assert result.longest_streak == 3
        assert result.is_active_today is True
        assert result.last_activity_date == TODAY

    @pytest.mark.asyncio
    async def test_other_users_activity_is_ignored(self, db_session, make_user):
        user = await make_user()
        other = await make_user()
        db_session.add(Run(user_id=other.id, status="completed", created_at=_at(0)))
        await db_session.commit()

        assert await list_activity_dates(db_session, user.id) == set()
        result = await calculate_streak(db_session, user.id, today=TODAY)
        assert result.current_streak == 0

    @pytest.mark.asyncio
    async def test_anchor_setting(self, db_session, make_user, monkeypatch):
        user = await make_user()
        db_session.add(Run(user_id=user.id, status="completed", created_at=_at(1)))
        await db_session.commit()

        assert (await calculate_streak(db_session, user.id, today=TODAY)).current_streak == 1

        monkeypatch.setenv("STX_STREAK_ANCHOR", "today")
        from streetxp.config import get_settings

        get_settings.cache_clear()
        assert (await calculate_streak(db_session, user.id, today=TODAY)).current_streak == 0
        assert (
            await calculate_streak(db_session, user.id, today=TODAY, anchor=StreakAnchor.GRACE)
        ).current_streak == 1


class TestUserEarnings:

    @pytest.mark.asyncio
    async def test_estimate_from_live_leads(self, db_session, make_user):
        user = await make_user(current_rank="Gold")
        for status in ["live"] * 4 + ["signed_pending", "new", "contacted"]:
            db_session.add(VenueLead(created_by_user_id=user.id, venue_name=f"Venue {status}", status=status))
        await db_session.commit()

        summary = await get_user_earnings(db_session, user.id)

        assert summary.live_venues == 4
        assert summary.pending_venues == 1
        assert summary.commission_rate == Decimal("0.20")
        assert summary.estimated_monthly == Decimal("120")
        assert summary.potential_monthly == Decimal("150")

    @pytest.mark.asyncio
    async def test_unknown_user_gets_zeros(self, db_session):
        summary = await get_user_earnings(db_session, 999)
        assert summary.estimated_monthly == 0
        assert summary.live_venues == 0
