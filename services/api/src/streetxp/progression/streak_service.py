"""Daily activity streaks, derived on demand from runs, leads and XP events.

Nothing is persisted: the streak is a pure function of the user's activity
dates, so it is always safe to recompute.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.config import get_settings
from streetxp.db.models import Run, VenueLead, XPEvent
from streetxp.progression.results import StreakResult

logger = logging.getLogger(__name__)


class StreakAnchor(str, Enum):
    """Where the current streak is counted from.

    TODAY: strict, no activity today means a current streak of 0.
    GRACE: if today has no activity yet, a chain ending yesterday still counts
    until midnight UTC.
    """

    TODAY = "today"
    GRACE = "grace"


def to_utc_date(dt: datetime) -> date:
    """Calendar date of a timestamp in UTC (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.date()
    return dt.astimezone(timezone.utc).date()


def compute_streak(
    activity_dates: Iterable[date],
    today: date,
    anchor: StreakAnchor = StreakAnchor.GRACE,
) -> StreakResult:
    """Current and longest run of consecutive activity days."""
    dates = sorted(set(activity_dates), reverse=True)
    if not dates:
        return StreakResult()

    present = set(dates)
    is_active_today = today in present

    start = today
    if not is_active_today and anchor == StreakAnchor.GRACE:
        start = today - timedelta(days=1)

    current = 0
    check = start
    while check in present:
        current += 1
        check -= timedelta(days=1)

    longest = 1
    run = 1
    for newer, older in zip(dates, dates[1:]):
        if (newer - older).days == 1:
            run += 1
            longest = max(longest, run)
        else:
            run = 1

    return StreakResult(
        current_streak=current,
        longest_streak=max(longest, current),
        last_activity_date=dates[0],
        is_active_today=is_active_today,
    )


async def list_activity_dates(db: AsyncSession, user_id: int) -> set[date]:
    """Distinct UTC dates on which the user created a run, a lead or an XP event."""
    dates: set[date] = set()
    for column, owner in (
        (Run.created_at, Run.user_id),
        (VenueLead.created_at, VenueLead.created_by_user_id),
        (XPEvent.created_at, XPEvent.user_id),
    ):
        result = await db.execute(select(column).where(owner == user_id))
        dates.update(to_utc_date(ts) for ts in result.scalars().all() if ts is not None)
    return dates


async def calculate_streak(
    db: AsyncSession,
    user_id: int,
    today: date | None = None,
    anchor: StreakAnchor | str | None = None,
) -> StreakResult:
    """Streak summary for a user. Store failures degrade to an all-zero result."""
    today = today or datetime.now(timezone.utc).date()
    anchor = StreakAnchor(anchor or get_settings().streak_anchor)

    try:
        dates = await list_activity_dates(db, user_id)
    except SQLAlchemyError:
        logger.exception("Error calculating streak for user %s", user_id)
        await db.rollback()
        return StreakResult()

    return compute_streak(dates, today, anchor)
