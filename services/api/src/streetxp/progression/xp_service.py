"""XP ledger: append-only awards, total recompute and rank-up detection."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.config import get_settings
from streetxp.db.models import RankCelebration, User, XPEvent
from streetxp.progression.events import ProgressionEvents, broadcast
from streetxp.progression.locks import user_locks
from streetxp.progression.notifications import insert_notification
from streetxp.progression.rank_table import (
    RankTier,
    commission_rate_for_rank,
    derive_rank,
    get_tier,
    load_rank_table,
    lowest_tier,
    xp_to_next_rank,
)
from streetxp.progression.results import AwardResult, ProgressionError

logger = logging.getLogger(__name__)


class XPSource(str, Enum):
    MISSION = "mission"
    RUN_COMPLETED = "run_completed"
    VENUE_STATUS_CHANGE = "venue_status_change"
    LEAD_ADDED = "lead_added"
    MANUAL_BONUS = "manual_bonus"


async def sum_xp_events(db: AsyncSession, user_id: int) -> int:
    """Canonical total XP: the sum of every ledger row for the user."""
    result = await db.execute(
        select(func.coalesce(func.sum(XPEvent.xp_amount), 0)).where(XPEvent.user_id == user_id)
    )
    return int(result.scalar_one())


async def recompute_progression(
    db: AsyncSession,
    user: User,
    tiers: Sequence[RankTier] | None = None,
) -> tuple[int, str]:
    """Recompute (total_xp, rank) from the ledger and write them onto the user row.

    Does not commit. The cached columns are overwritten unconditionally, so any
    drift between cache and ledger is healed here.
    """
    total = await sum_xp_events(db, user.id)
    rank = derive_rank(total, tiers)
    user.total_xp = total
    user.current_rank = rank
    await db.flush()
    return total, rank


async def sync_progression_cache(db: AsyncSession, user_id: int) -> tuple[int, str] | None:
    """Heal a user's cached progression state. Returns None if the user is unknown."""
    tiers = await load_rank_table(db)
    async with user_locks.hold(user_id):
        user = await db.get(User, user_id, populate_existing=True)
        if user is None:
            return None
        total, rank = await recompute_progression(db, user, tiers)
        await db.commit()
    return total, rank


async def award_xp(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    amount: int,
    source: XPSource | str,
    source_id: str | None = None,
    points_amount: int = 0,
    idempotency_key: str | None = None,
) -> AwardResult:
    """Append an XP event and refresh the user's cached total and rank.

    1. Look up the cached (total_xp, current_rank)
    2. Insert into street_xp_events
    3. Recompute total_xp as SUM over the whole ledger
    4. Derive the rank and write both back onto the user
    5. Commit; on rank change emit a rank_up event

    Steps 2-5 share one transaction, so a failed award leaves no ledger row and
    can be retried. A duplicate idempotency_key fails the insert.
    """
    entry_rank = lowest_tier().name
    try:
        tiers = await load_rank_table(db)
        entry_rank = lowest_tier(tiers).name

        async with user_locks.hold(user_id):
            try:
                user = await db.get(User, user_id, populate_existing=True)
            except SQLAlchemyError:
                logger.exception("Failed to load user %s for XP award", user_id)
                await db.rollback()
                return AwardResult.failed(ProgressionError.UNEXPECTED_ERROR, 0, entry_rank)
            if user is None:
                return AwardResult.failed(ProgressionError.USER_NOT_FOUND, 0, entry_rank)

            previous_total = user.total_xp
            previous_rank = user.current_rank
            if get_tier(previous_rank, tiers) is None:
                # Cached rank predates the current ladder.
                previous_rank = derive_rank(previous_total, tiers)

            if amount < 0 or points_amount < 0:
                return AwardResult.failed(ProgressionError.INVALID_AMOUNT, previous_total, previous_rank)

            source_value = source.value if isinstance(source, XPSource) else str(source)
            db.add(XPEvent(
                user_id=user_id,
                source=source_value,
                source_id=str(source_id) if source_id is not None else None,
                xp_amount=amount,
                points_amount=points_amount,
                idempotency_key=idempotency_key,
                created_at=datetime.now(timezone.utc),
            ))
            try:
                await db.flush()
            except SQLAlchemyError:
                logger.exception("Error logging XP event for user %s", user_id)
                await db.rollback()
                return AwardResult.failed(ProgressionError.LEDGER_WRITE_FAILED, previous_total, previous_rank)

            try:
                new_total = await sum_xp_events(db, user_id)
            except SQLAlchemyError:
                logger.exception("Error calculating total XP for user %s", user_id)
                await db.rollback()
                return AwardResult.failed(
                    ProgressionError.TOTAL_RECOMPUTE_FAILED, previous_total, previous_rank
                )

            new_rank = derive_rank(new_total, tiers)
            try:
                user.total_xp = new_total
                user.current_rank = new_rank
                await db.commit()
            except SQLAlchemyError:
                logger.exception("Error updating XP/rank for user %s", user_id)
                await db.rollback()
                return AwardResult.failed(ProgressionError.USER_UPDATE_FAILED, previous_total, previous_rank)

        rank_up = previous_rank != new_rank
        logger.info(
            "Awarded %d XP to user %s (%s): total=%d rank=%s",
            amount, user_id, source_value, new_total, new_rank,
        )
        if rank_up:
            await _emit_rank_up(db, redis, user_id, previous_rank, new_rank, new_total)

        return AwardResult(
            success=True,
            new_total_xp=new_total,
            previous_rank=previous_rank,
            new_rank=new_rank,
            rank_up=rank_up,
        )
    except Exception:
        logger.exception("Unexpected error awarding XP to user %s", user_id)
        try:
            await db.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback failed after unexpected award error", exc_info=True)
        return AwardResult.failed(ProgressionError.UNEXPECTED_ERROR, 0, entry_rank)


async def _emit_rank_up(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    previous_rank: str,
    new_rank: str,
    total_xp: int,
) -> None:
    """Persist a celebration + notification and broadcast the rank change.

    Every step is best-effort: the award has already been committed.
    """
    try:
        db.add(RankCelebration(
            user_id=user_id,
            previous_rank=previous_rank,
            new_rank=new_rank,
            total_xp=total_xp,
        ))
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning("Failed to persist rank celebration for user %s", user_id, exc_info=True)

    await insert_notification(
        db,
        user_id,
        "Rank Up!",
        f"You've been promoted from {previous_rank} to {new_rank} with {total_xp:,} XP.",
        "rank_up",
    )

    await broadcast(
        redis,
        get_settings().rank_up_channel,
        ProgressionEvents.RANK_UP,
        {
            "user_id": user_id,
            "previous_rank": previous_rank,
            "new_rank": new_rank,
            "total_xp": total_xp,
        },
    )


async def get_progression(db: AsyncSession, user_id: int) -> dict | None:
    """Read-side progression view derived from the ledger, not the cache."""
    user = await db.get(User, user_id)
    if user is None:
        return None

    tiers = await load_rank_table(db)
    total = await sum_xp_events(db, user_id)
    rank = derive_rank(total, tiers)
    if (total, rank) != (user.total_xp, user.current_rank):
        logger.warning(
            "Progression cache drift for user %s: cached=(%d, %s) ledger=(%d, %s)",
            user_id, user.total_xp, user.current_rank, total, rank,
        )

    return {
        "user_id": user_id,
        "total_xp": total,
        "current_rank": rank,
        "commission_rate": commission_rate_for_rank(rank, tiers),
        **xp_to_next_rank(total, rank, tiers),
    }


async def get_xp_history(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[XPEvent], int]:
    """Paginated ledger rows, newest first, plus the total row count."""
    total_result = await db.execute(
        select(func.count()).select_from(XPEvent).where(XPEvent.user_id == user_id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(XPEvent)
        .where(XPEvent.user_id == user_id)
        .order_by(XPEvent.created_at.desc(), XPEvent.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


# ---------------------------------------------------------------------------
# Rank Celebration CRUD
# ---------------------------------------------------------------------------


async def get_pending_rank_celebrations(db: AsyncSession, user_id: int) -> list[dict]:
    """Return rank-up celebrations the user hasn't seen yet."""
    result = await db.execute(
        select(RankCelebration)
        .where(
            RankCelebration.user_id == user_id,
            RankCelebration.celebrated.is_(False),
        )
        .order_by(RankCelebration.created_at.asc(), RankCelebration.id.asc())
    )
    return [
        {
            "celebration_id": row.id,
            "previous_rank": row.previous_rank,
            "new_rank": row.new_rank,
            "total_xp": row.total_xp,
            "created_at": row.created_at,
        }
        for row in result.scalars().all()
    ]


async def acknowledge_rank_celebration(db: AsyncSession, user_id: int, celebration_id: int) -> bool:
    """Mark a rank celebration as seen. Returns True if updated."""
    result = await db.execute(
        select(RankCelebration).where(
            RankCelebration.id == celebration_id,
            RankCelebration.user_id == user_id,
            RankCelebration.celebrated.is_(False),
        )
    )
    cel = result.scalar_one_or_none()
    if cel is None:
        return False

    cel.celebrated = True
    cel.celebrated_at = datetime.now(timezone.utc)
    await db.commit()
    return True
