"""Action recorder: turns field actions into XP awards and mission progress."""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.progression.mission_service import MissionTrigger, update_mission_progress
from streetxp.progression.results import ActionOutcome
from streetxp.progression.xp_service import XPSource, award_xp

logger = logging.getLogger(__name__)

LEAD_ADDED_XP = 25
LEAD_ADDED_POINTS = 2

RUN_BASE_XP = 50
RUN_XP_PER_VENUE = 10
RUN_LONG_BONUS_XP = 25
RUN_LONG_THRESHOLD = timedelta(hours=1)
RUN_BASE_POINTS = 5

# new status -> (xp, mission trigger)
LEAD_STATUS_REWARDS: dict[str, tuple[int, MissionTrigger]] = {
    "contacted": (10, MissionTrigger.LEAD_TO_CONTACTED),
    "follow_up": (15, MissionTrigger.LEAD_TO_FOLLOW_UP),
    "demo_scheduled": (25, MissionTrigger.LEAD_TO_DEMO),
    "verbal_yes": (50, MissionTrigger.LEAD_TO_VERBAL_YES),
    "signed_pending": (100, MissionTrigger.LEAD_TO_SIGNED_PENDING),
    "live": (200, MissionTrigger.LEAD_TO_LIVE),
}


def run_completion_xp(venue_count: int, duration: timedelta) -> tuple[int, int]:
    """(xp, points) for a finished run."""
    xp = RUN_BASE_XP + venue_count * RUN_XP_PER_VENUE
    if duration > RUN_LONG_THRESHOLD:
        xp += RUN_LONG_BONUS_XP
    return xp, RUN_BASE_POINTS + venue_count


def lead_status_reward(old_status: str, new_status: str) -> tuple[int, MissionTrigger] | None:
    """XP and trigger for a pipeline move, or None when it earns nothing.

    "contacted" only pays when the lead comes straight from "new".
    """
    if old_status == new_status:
        return None
    if new_status == "contacted" and old_status != "new":
        return None
    return LEAD_STATUS_REWARDS.get(new_status)


class ActionRecorder:
    """Awards XP for a field action, then advances the missions it counts toward.

    Missions only advance when the award succeeded.
    """

    def __init__(self, db: AsyncSession, redis: object | None) -> None:
        self.db = db
        self.redis = redis

    async def _record(
        self,
        user_id: int,
        xp: int,
        points: int,
        source: XPSource,
        source_id: str | None,
        trigger: MissionTrigger,
    ) -> ActionOutcome:
        award = await award_xp(
            self.db, self.redis, user_id, xp, source,
            source_id=source_id, points_amount=points,
        )
        if not award.success:
            logger.warning("XP award for %s by user %s failed: %s", source.value, user_id, award.error)
            return ActionOutcome(award=award)

        updates = await update_mission_progress(self.db, self.redis, user_id, trigger)
        return ActionOutcome(award=award, mission_updates=updates)

    async def lead_added(self, user_id: int, lead_id: int | None = None) -> ActionOutcome:
        return await self._record(
            user_id,
            LEAD_ADDED_XP,
            LEAD_ADDED_POINTS,
            XPSource.LEAD_ADDED,
            str(lead_id) if lead_id is not None else None,
            MissionTrigger.LEAD_ADDED,
        )

    async def run_completed(
        self,
        user_id: int,
        run_id: int,
        venue_count: int,
        duration: timedelta,
    ) -> ActionOutcome:
        xp, points = run_completion_xp(venue_count, duration)
        return await self._record(
            user_id, xp, points, XPSource.RUN_COMPLETED, str(run_id), MissionTrigger.RUN_COMPLETED,
        )

    async def lead_status_changed(
        self,
        user_id: int,
        lead_id: int,
        old_status: str,
        new_status: str,
    ) -> ActionOutcome:
        reward = lead_status_reward(old_status, new_status)
        if reward is None:
            return ActionOutcome()

        xp, trigger = reward
        return await self._record(
            user_id, xp, 0, XPSource.VENUE_STATUS_CHANGE, str(lead_id), trigger,
        )
