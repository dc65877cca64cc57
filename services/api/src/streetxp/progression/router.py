"""Progression API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.database import get_session
from streetxp.db.models import User
from streetxp.dependencies import get_redis_dep
from streetxp.progression.action_recorder import ActionRecorder
from streetxp.progression.earnings import get_user_earnings
from streetxp.progression.mission_service import (
    claim_mission_reward,
    create_mission,
    get_user_missions,
)
from streetxp.progression.rank_table import load_rank_table
from streetxp.progression.results import (
    ERROR_MESSAGES,
    ActionOutcome,
    AwardResult,
    ProgressionError,
)
from streetxp.progression.schemas import (
    ActionResponse,
    AllRanksResponse,
    AwardXPRequest,
    AwardXPResponse,
    ClaimResponse,
    EarningsResponse,
    LeadAddedRequest,
    LeadStatusRequest,
    MissionCreate,
    MissionProgressItem,
    MissionResponse,
    PendingRankCelebrationItem,
    PendingRankCelebrationsResponse,
    ProgressionResponse,
    RankEntry,
    RunCompletedRequest,
    StreakResponse,
    UserMissionsResponse,
    XPHistoryEntry,
    XPHistoryResponse,
)
from streetxp.progression.streak_service import calculate_streak
from streetxp.progression.xp_service import (
    XPSource,
    acknowledge_rank_celebration,
    award_xp,
    get_pending_rank_celebrations,
    get_progression,
    get_xp_history,
)

router = APIRouter(prefix="/api/v1", tags=["Progression"])

_ERROR_STATUS: dict[ProgressionError, int] = {
    ProgressionError.USER_NOT_FOUND: 404,
    ProgressionError.MISSION_OR_PROGRESS_NOT_FOUND: 404,
    ProgressionError.MISSION_NOT_COMPLETED: 409,
    ProgressionError.REWARD_ALREADY_CLAIMED: 409,
    ProgressionError.INVALID_AMOUNT: 422,
    ProgressionError.LEDGER_WRITE_FAILED: 503,
    ProgressionError.TOTAL_RECOMPUTE_FAILED: 503,
    ProgressionError.USER_UPDATE_FAILED: 503,
    ProgressionError.UNEXPECTED_ERROR: 500,
}


def _raise_for(error: ProgressionError | None) -> None:
    error = error or ProgressionError.UNEXPECTED_ERROR
    raise HTTPException(status_code=_ERROR_STATUS[error], detail=ERROR_MESSAGES[error])


async def _require_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _award_response(result: AwardResult) -> AwardXPResponse:
    return AwardXPResponse(
        success=result.success,
        new_total_xp=result.new_total_xp,
        previous_rank=result.previous_rank,
        new_rank=result.new_rank,
        rank_up=result.rank_up,
    )


def _action_response(outcome: ActionOutcome) -> ActionResponse:
    if outcome.award is not None and not outcome.award.success:
        _raise_for(outcome.award.error)
    return ActionResponse(
        award=_award_response(outcome.award) if outcome.award else None,
        mission_updates=[
            MissionProgressItem(mission_id=u.mission_id, new_count=u.new_count, completed=u.completed)
            for u in outcome.mission_updates
        ],
    )


# ── Ranks ──


@router.get("/ranks", response_model=AllRanksResponse)
async def list_ranks(db: AsyncSession = Depends(get_session)):
    """Get the rank ladder."""
    tiers = await load_rank_table(db)
    return AllRanksResponse(
        ranks=[
            RankEntry(
                name=t.name,
                min_xp=t.min_xp,
                commission_rate=t.commission_rate,
                perks_description=t.perks_description,
                order_index=t.order_index,
            )
            for t in sorted(tiers, key=lambda t: t.order_index)
        ]
    )


# ── XP ──


@router.get("/users/{user_id}/progression", response_model=ProgressionResponse)
async def get_user_progression(user_id: int, db: AsyncSession = Depends(get_session)):
    """Total XP, rank, commission rate and distance to the next rank."""
    progression = await get_progression(db, user_id)
    if progression is None:
        raise HTTPException(status_code=404, detail="User not found")
    return ProgressionResponse(**progression)


@router.get("/users/{user_id}/xp/history", response_model=XPHistoryResponse)
async def get_user_xp_history(
    user_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """Get XP ledger history (paginated)."""
    await _require_user(db, user_id)
    entries, total = await get_xp_history(db, user_id, page, per_page)
    return XPHistoryResponse(
        entries=[
            XPHistoryEntry(
                xp_amount=e.xp_amount,
                points_amount=e.points_amount,
                source=e.source,
                source_id=e.source_id,
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/users/{user_id}/xp", response_model=AwardXPResponse)
async def award_manual_bonus(
    user_id: int,
    body: AwardXPRequest,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Grant a manual XP bonus (operator action)."""
    result = await award_xp(
        db, redis, user_id, body.amount, XPSource.MANUAL_BONUS,
        source_id=body.source_id, points_amount=body.points_amount,
    )
    if not result.success:
        _raise_for(result.error)
    return _award_response(result)


# ── Missions ──


@router.post("/missions", response_model=MissionResponse, status_code=201)
async def create_new_mission(body: MissionCreate, db: AsyncSession = Depends(get_session)):
    """Author a mission."""
    try:
        mission = await create_mission(
            db,
            title=body.title,
            description=body.description,
            type_=body.type,
            scope=body.scope,
            city=body.city,
            trigger_type=body.trigger_type,
            xp_reward=body.xp_reward,
            point_reward=body.point_reward,
            required_count=body.required_count,
            valid_from=body.valid_from,
            valid_to=body.valid_to,
            created_by=body.created_by,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return MissionResponse(
        mission_id=mission.id,
        title=mission.title,
        description=mission.description,
        type=mission.type,
        scope=mission.scope,
        city=mission.city,
        trigger_type=mission.trigger_type,
        xp_reward=mission.xp_reward,
        point_reward=mission.point_reward,
        required_count=mission.required_count,
        valid_from=mission.valid_from,
        valid_to=mission.valid_to,
    )


@router.get("/users/{user_id}/missions", response_model=UserMissionsResponse)
async def list_user_missions(user_id: int, db: AsyncSession = Depends(get_session)):
    """Active missions for the user with their progress."""
    missions = await get_user_missions(db, user_id)
    if missions is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserMissionsResponse(missions=[MissionResponse(**m) for m in missions])


@router.post("/users/{user_id}/missions/{mission_id}/claim", response_model=ClaimResponse)
async def claim_mission(
    user_id: int,
    mission_id: int,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Claim a completed mission's XP reward (single-shot)."""
    result = await claim_mission_reward(db, redis, user_id, mission_id)
    if not result.success:
        _raise_for(result.error)
    return ClaimResponse(success=True, xp_awarded=result.xp_awarded)


# ── Actions ──


@router.post("/users/{user_id}/actions/lead-added", response_model=ActionResponse)
async def record_lead_added(
    user_id: int,
    body: LeadAddedRequest,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    outcome = await ActionRecorder(db, redis).lead_added(user_id, body.lead_id)
    return _action_response(outcome)


@router.post("/users/{user_id}/actions/run-completed", response_model=ActionResponse)
async def record_run_completed(
    user_id: int,
    body: RunCompletedRequest,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    outcome = await ActionRecorder(db, redis).run_completed(
        user_id, body.run_id, body.venue_count, body.duration,
    )
    return _action_response(outcome)


@router.post("/users/{user_id}/actions/lead-status", response_model=ActionResponse)
async def record_lead_status(
    user_id: int,
    body: LeadStatusRequest,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    outcome = await ActionRecorder(db, redis).lead_status_changed(
        user_id, body.lead_id, body.old_status, body.new_status,
    )
    return _action_response(outcome)


# ── Streak & earnings ──


@router.get("/users/{user_id}/streak", response_model=StreakResponse)
async def get_user_streak(user_id: int, db: AsyncSession = Depends(get_session)):
    """Current and longest daily activity streak."""
    await _require_user(db, user_id)
    streak = await calculate_streak(db, user_id)
    return StreakResponse(
        current_streak=streak.current_streak,
        longest_streak=streak.longest_streak,
        last_activity_date=streak.last_activity_date,
        is_active_today=streak.is_active_today,
    )


@router.get("/users/{user_id}/earnings", response_model=EarningsResponse)
async def get_user_earnings_estimate(user_id: int, db: AsyncSession = Depends(get_session)):
    """Estimated commission earnings (not authoritative revenue)."""
    await _require_user(db, user_id)
    summary = await get_user_earnings(db, user_id)
    return EarningsResponse(
        commission_rate=summary.commission_rate,
        live_venues=summary.live_venues,
        pending_venues=summary.pending_venues,
        estimated_monthly=summary.estimated_monthly,
        estimated_annual=summary.estimated_annual,
        pending_monthly=summary.pending_monthly,
        potential_monthly=summary.potential_monthly,
    )


# ── Rank Celebrations ──


@router.get("/users/{user_id}/rank-celebrations", response_model=PendingRankCelebrationsResponse)
async def list_rank_celebrations(user_id: int, db: AsyncSession = Depends(get_session)):
    """Rank-ups the user has not seen yet."""
    rows = await get_pending_rank_celebrations(db, user_id)
    return PendingRankCelebrationsResponse(
        celebrations=[PendingRankCelebrationItem(**row) for row in rows]
    )


@router.post("/users/{user_id}/rank-celebrations/{celebration_id}/ack")
async def ack_rank_celebration(
    user_id: int,
    celebration_id: int,
    db: AsyncSession = Depends(get_session),
):
    """Mark a rank celebration as seen."""
    if not await acknowledge_rank_celebration(db, user_id, celebration_id):
        raise HTTPException(status_code=404, detail="Celebration not found")
    return {"status": "acknowledged"}
