"""Mission catalog, progress tracking and single-shot reward claims."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.config import get_settings
from streetxp.db.models import Mission, MissionProgress, User, XPEvent
from streetxp.progression.events import ProgressionEvents, broadcast
from streetxp.progression.notifications import insert_notification
from streetxp.progression.results import ClaimResult, MissionProgressUpdate, ProgressionError
from streetxp.progression.xp_service import XPSource, award_xp

logger = logging.getLogger(__name__)

# A claim guard older than this is treated as left behind by a dead claim.
CLAIM_TIMEOUT = timedelta(minutes=5)


class MissionTrigger(str, Enum):
    LEAD_ADDED = "lead_added"
    RUN_COMPLETED = "run_completed"
    LEAD_TO_CONTACTED = "lead_to_contacted"
    LEAD_TO_FOLLOW_UP = "lead_to_follow_up"
    LEAD_TO_DEMO = "lead_to_demo"
    LEAD_TO_VERBAL_YES = "lead_to_verbal_yes"
    LEAD_TO_SIGNED_PENDING = "lead_to_signed_pending"
    LEAD_TO_LIVE = "lead_to_live"


class MissionType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    ONE_OFF = "one_off"


class MissionScope(str, Enum):
    GLOBAL = "global"
    CITY = "city"


def _normalize_datetime(dt: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _value(enum_or_str: Enum | str) -> str:
    return enum_or_str.value if isinstance(enum_or_str, Enum) else str(enum_or_str)


def is_mission_active(mission: Mission, city: str | None, now: datetime) -> bool:
    """Validity window contains now and scope is global or the user's city."""
    now = _normalize_datetime(now)
    if not _normalize_datetime(mission.valid_from) <= now <= _normalize_datetime(mission.valid_to):
        return False
    if mission.scope == MissionScope.GLOBAL.value:
        return True
    return city is not None and mission.city == city


async def list_active_missions(
    db: AsyncSession,
    city: str | None,
    trigger: MissionTrigger | str | None = None,
    now: datetime | None = None,
) -> list[Mission]:
    """Missions live right now for a user in ``city``, optionally for one trigger."""
    now = now or datetime.now(timezone.utc)
    scope_filter = Mission.scope == MissionScope.GLOBAL.value
    if city is not None:
        scope_filter = or_(scope_filter, Mission.city == city)

    stmt = select(Mission).where(scope_filter).order_by(Mission.valid_to.asc(), Mission.id.asc())
    if trigger is not None:
        stmt = stmt.where(Mission.trigger_type == _value(trigger))

    result = await db.execute(stmt)
    # Window check in Python: SQLite compares timezone-aware values as text.
    return [m for m in result.scalars().all() if is_mission_active(m, city, now)]


async def create_mission(
    db: AsyncSession,
    *,
    title: str,
    trigger_type: MissionTrigger | str,
    xp_reward: int,
    valid_from: datetime,
    valid_to: datetime,
    required_count: int = 1,
    type_: MissionType | str = MissionType.ONE_OFF,
    scope: MissionScope | str = MissionScope.GLOBAL,
    city: str | None = None,
    description: str = "",
    point_reward: int = 0,
    created_by: int | None = None,
) -> Mission:
    """Author a mission. Raises ValueError for an inconsistent definition."""
    scope_value = MissionScope(_value(scope)).value
    trigger_value = MissionTrigger(_value(trigger_type)).value
    type_value = MissionType(_value(type_)).value

    if required_count < 1:
        raise ValueError("required_count must be at least 1")
    if xp_reward < 0 or point_reward < 0:
        raise ValueError("rewards must be non-negative")
    if _normalize_datetime(valid_from) > _normalize_datetime(valid_to):
        raise ValueError("valid_from must not be after valid_to")
    if scope_value == MissionScope.CITY.value and not city:
        raise ValueError("city is required for city-scoped missions")
    if scope_value == MissionScope.GLOBAL.value:
        city = None

    mission = Mission(
        title=title,
        description=description,
        type=type_value,
        scope=scope_value,
        city=city,
        trigger_type=trigger_value,
        xp_reward=xp_reward,
        point_reward=point_reward,
        required_count=required_count,
        valid_from=valid_from,
        valid_to=valid_to,
        created_by=created_by,
    )
    db.add(mission)
    await db.commit()
    logger.info("Created mission %s (%s, trigger=%s)", mission.id, title, trigger_value)
    return mission


async def get_mission_progress(db: AsyncSession, mission_id: int, user_id: int) -> MissionProgress | None:
    result = await db.execute(
        select(MissionProgress)
        .where(
            MissionProgress.mission_id == mission_id,
            MissionProgress.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _get_or_create_progress(db: AsyncSession, mission_id: int, user_id: int) -> MissionProgress:
    """Fetch the progress row, creating it at zero on first matching action."""
    progress = await get_mission_progress(db, mission_id, user_id)
    if progress is not None:
        return progress

    progress = MissionProgress(
        mission_id=mission_id,
        user_id=user_id,
        current_count=0,
        is_completed=False,
        completed_at=None,
        xp_awarded=False,
    )
    db.add(progress)
    try:
        await db.flush()
    except IntegrityError:
        # Another request created the row first.
        await db.rollback()
        progress = await get_mission_progress(db, mission_id, user_id)
        if progress is None:
            raise
    return progress


async def update_mission_progress(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    trigger: MissionTrigger | str,
    increment_by: int = 1,
    now: datetime | None = None,
) -> list[MissionProgressUpdate]:
    """Advance every active mission matching ``trigger`` for the user.

    Missions already completed and claimed are left alone. On the transition
    to completed, completed_at is stamped once and a notification is sent; XP
    is only granted by claim_mission_reward. Raises ValueError for an
    increment below 1.
    """
    if increment_by < 1:
        raise ValueError("increment_by must be at least 1")

    now = now or datetime.now(timezone.utc)
    try:
        user = await db.get(User, user_id)
        if user is None:
            return []
        missions = await list_active_missions(db, user.city, trigger, now)
    except SQLAlchemyError:
        logger.exception("Failed to load missions for user %s", user_id)
        await db.rollback()
        return []

    # Plain values: a rollback below expires ORM instances.
    targets = [(m.id, m.title, m.xp_reward, m.required_count) for m in missions]

    updates: list[MissionProgressUpdate] = []
    for mission_id, title, xp_reward, required_count in targets:
        try:
            progress = await _get_or_create_progress(db, mission_id, user_id)

            if progress.is_completed and progress.xp_awarded:
                continue

            was_completed = progress.is_completed
            new_count = progress.current_count + increment_by
            is_completed = new_count >= required_count

            progress.current_count = new_count
            progress.is_completed = is_completed
            if is_completed and not was_completed:
                progress.completed_at = now
            await db.commit()
        except SQLAlchemyError:
            logger.exception("Error updating progress on mission %s for user %s", mission_id, user_id)
            await db.rollback()
            continue

        updates.append(MissionProgressUpdate(
            mission_id=mission_id,
            new_count=new_count,
            completed=is_completed,
        ))

        if is_completed and not was_completed:
            await _emit_mission_completed(db, redis, user_id, mission_id, title, xp_reward)

    return updates


async def _emit_mission_completed(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    mission_id: int,
    title: str,
    xp_reward: int,
) -> None:
    """Informational only; the reward still has to be claimed."""
    await insert_notification(
        db,
        user_id,
        "Mission Complete!",
        f'You completed "{title}". Claim your {xp_reward} XP reward!',
        "mission",
    )
    await broadcast(
        redis,
        get_settings().mission_channel,
        ProgressionEvents.MISSION_COMPLETED,
        {"user_id": user_id, "mission_id": mission_id, "title": title, "xp_reward": xp_reward},
    )


def _claim_in_flight(progress: MissionProgress, now: datetime) -> bool:
    started = progress.claim_started_at
    return started is not None and _normalize_datetime(started) > now - CLAIM_TIMEOUT


async def _take_claim(db: AsyncSession, progress_id: int, now: datetime) -> bool:
    """Compare-and-set the claim guard. False if claimed or a claim is in flight.

    A guard older than CLAIM_TIMEOUT belongs to a claim that died and is free.
    """
    result = await db.execute(
        update(MissionProgress)
        .where(
            MissionProgress.id == progress_id,
            MissionProgress.is_completed.is_(True),
            MissionProgress.xp_awarded.is_(False),
            or_(
                MissionProgress.claim_started_at.is_(None),
                MissionProgress.claim_started_at < now - CLAIM_TIMEOUT,
            ),
        )
        .values(claim_started_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def _release_claim(db: AsyncSession, progress_id: int) -> None:
    await db.execute(
        update(MissionProgress)
        .where(MissionProgress.id == progress_id, MissionProgress.xp_awarded.is_(False))
        .values(claim_started_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def _abandon_claim(db: AsyncSession, progress_id: int) -> None:
    """Roll back and free the guard; never raises for store errors."""
    try:
        await db.rollback()
        await _release_claim(db, progress_id)
    except SQLAlchemyError:
        logger.warning("Failed to release claim guard on progress %s", progress_id, exc_info=True)


async def _mark_awarded(db: AsyncSession, progress_id: int) -> None:
    await db.execute(
        update(MissionProgress)
        .where(MissionProgress.id == progress_id)
        .values(xp_awarded=True, claim_started_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


def claim_idempotency_key(mission_id: int, user_id: int) -> str:
    return f"mission:{mission_id}:{user_id}"


async def _ledger_claim_xp(db: AsyncSession, mission_id: int, user_id: int) -> int | None:
    """XP of the ledger row an earlier claim wrote, if any."""
    result = await db.execute(
        select(XPEvent.xp_amount).where(XPEvent.idempotency_key == claim_idempotency_key(mission_id, user_id))
    )
    return result.scalar_one_or_none()


async def claim_mission_reward(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    mission_id: int,
) -> ClaimResult:
    """Grant a completed mission's XP exactly once.

    The guard column is taken with a conditional UPDATE before the award and
    xp_awarded is only set after award_xp succeeds. Any failure or cancellation
    of the award releases the guard so the claim can be retried, and a guard
    left by a crashed claim expires after CLAIM_TIMEOUT. If the ledger already
    holds the claim's idempotency key, the retry only marks the row awarded.
    """
    now = datetime.now(timezone.utc)
    try:
        mission = await db.get(Mission, mission_id)
        progress = await get_mission_progress(db, mission_id, user_id)

        if mission is None or progress is None:
            return ClaimResult(success=False, error=ProgressionError.MISSION_OR_PROGRESS_NOT_FOUND)
        if not progress.is_completed:
            return ClaimResult(success=False, error=ProgressionError.MISSION_NOT_COMPLETED)
        if progress.xp_awarded or _claim_in_flight(progress, now):
            return ClaimResult(success=False, error=ProgressionError.REWARD_ALREADY_CLAIMED)

        progress_id = progress.id
        xp_reward, point_reward = mission.xp_reward, mission.point_reward

        granted = await _ledger_claim_xp(db, mission_id, user_id)
        if granted is not None:
            logger.warning(
                "Mission %s reward for user %s was in the ledger but unmarked; completing claim",
                mission_id, user_id,
            )
            await _mark_awarded(db, progress_id)
            return ClaimResult(success=True, xp_awarded=granted)

        if not await _take_claim(db, progress_id, now):
            return ClaimResult(success=False, error=ProgressionError.REWARD_ALREADY_CLAIMED)
    except SQLAlchemyError:
        logger.exception("Error preparing claim of mission %s for user %s", mission_id, user_id)
        await db.rollback()
        return ClaimResult(success=False, error=ProgressionError.UNEXPECTED_ERROR)

    try:
        result = await award_xp(
            db,
            redis,
            user_id,
            xp_reward,
            XPSource.MISSION,
            source_id=str(mission_id),
            points_amount=point_reward,
            idempotency_key=claim_idempotency_key(mission_id, user_id),
        )
    except BaseException:
        await _abandon_claim(db, progress_id)
        raise

    if not result.success:
        logger.warning(
            "Award failed for mission %s claim by user %s: %s",
            mission_id, user_id, result.error,
        )
        await _abandon_claim(db, progress_id)
        return ClaimResult(success=False, error=result.error)

    try:
        await _mark_awarded(db, progress_id)
    except SQLAlchemyError:
        # The XP is in the ledger; a retry finds the idempotency key and only marks the row.
        logger.exception("Error marking mission %s claimed for user %s", mission_id, user_id)
        await _abandon_claim(db, progress_id)
        return ClaimResult(success=False, error=ProgressionError.UNEXPECTED_ERROR)

    logger.info("User %s claimed mission %s for %d XP", user_id, mission_id, xp_reward)
    return ClaimResult(success=True, xp_awarded=xp_reward)


async def get_user_missions(db: AsyncSession, user_id: int, now: datetime | None = None) -> list[dict] | None:
    """Active missions for the user joined with their progress (None if user unknown)."""
    user = await db.get(User, user_id)
    if user is None:
        return None

    missions = await list_active_missions(db, user.city, now=now)
    if not missions:
        return []

    result = await db.execute(
        select(MissionProgress).where(
            MissionProgress.user_id == user_id,
            MissionProgress.mission_id.in_([m.id for m in missions]),
        )
    )
    progress_map = {p.mission_id: p for p in result.scalars().all()}

    items = []
    for m in missions:
        p = progress_map.get(m.id)
        items.append({
            "mission_id": m.id,
            "title": m.title,
            "description": m.description,
            "type": m.type,
            "scope": m.scope,
            "city": m.city,
            "trigger_type": m.trigger_type,
            "xp_reward": m.xp_reward,
            "point_reward": m.point_reward,
            "required_count": m.required_count,
            "valid_from": m.valid_from,
            "valid_to": m.valid_to,
            "current_count": p.current_count if p else 0,
            "is_completed": p.is_completed if p else False,
            "completed_at": p.completed_at if p else None,
            "xp_awarded": p.xp_awarded if p else False,
        })
    return items
