"""Pydantic request/response models for progression endpoints."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from streetxp.progression.mission_service import MissionScope, MissionTrigger, MissionType


# --- Ranks ---


class RankEntry(BaseModel):
    name: str
    min_xp: int
    commission_rate: Decimal
    perks_description: str
    order_index: int


class AllRanksResponse(BaseModel):
    ranks: list[RankEntry]


# --- XP ---


class ProgressionResponse(BaseModel):
    user_id: int
    total_xp: int
    current_rank: str
    commission_rate: Decimal
    next_rank: str | None = None
    xp_required: int | None = None
    xp_remaining: int | None = None


class AwardXPRequest(BaseModel):
    amount: int = Field(ge=0)
    points_amount: int = Field(default=0, ge=0)
    source_id: str | None = None


class AwardXPResponse(BaseModel):
    success: bool
    new_total_xp: int
    previous_rank: str
    new_rank: str
    rank_up: bool


class XPHistoryEntry(BaseModel):
    xp_amount: int
    points_amount: int
    source: str
    source_id: str | None = None
    created_at: datetime | None = None


class XPHistoryResponse(BaseModel):
    entries: list[XPHistoryEntry]
    total: int
    page: int
    per_page: int


# --- Missions ---


class MissionCreate(BaseModel):
    title: str = Field(min_length=1, max_length=128)
    description: str = ""
    type: MissionType = MissionType.ONE_OFF
    scope: MissionScope = MissionScope.GLOBAL
    city: str | None = None
    trigger_type: MissionTrigger
    xp_reward: int = Field(ge=0)
    point_reward: int = Field(default=0, ge=0)
    required_count: int = Field(default=1, ge=1)
    valid_from: datetime
    valid_to: datetime
    created_by: int | None = None

    @model_validator(mode="after")
    def _check_window_and_scope(self) -> MissionCreate:
        if self.valid_from > self.valid_to:
            raise ValueError("valid_from must not be after valid_to")
        if self.scope == MissionScope.CITY and not self.city:
            raise ValueError("city is required for city-scoped missions")
        return self


class MissionResponse(BaseModel):
    mission_id: int
    title: str
    description: str
    type: str
    scope: str
    city: str | None = None
    trigger_type: str
    xp_reward: int
    point_reward: int
    required_count: int
    valid_from: datetime
    valid_to: datetime
    current_count: int = 0
    is_completed: bool = False
    completed_at: datetime | None = None
    xp_awarded: bool = False


class UserMissionsResponse(BaseModel):
    missions: list[MissionResponse]


class MissionProgressItem(BaseModel):
    mission_id: int
    new_count: int
    completed: bool


class ClaimResponse(BaseModel):
    success: bool
    xp_awarded: int


# --- Actions ---


class LeadAddedRequest(BaseModel):
    lead_id: int | None = None


class RunCompletedRequest(BaseModel):
    run_id: int
    venue_count: int = Field(ge=0)
    duration_seconds: int = Field(ge=0)

    @property
    def duration(self) -> timedelta:
        return timedelta(seconds=self.duration_seconds)


class LeadStatusRequest(BaseModel):
    lead_id: int
    old_status: str
    new_status: str


class ActionResponse(BaseModel):
    award: AwardXPResponse | None = None
    mission_updates: list[MissionProgressItem] = []


# --- Streak & earnings ---


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    last_activity_date: date | None = None
    is_active_today: bool = False


class EarningsResponse(BaseModel):
    commission_rate: Decimal
    live_venues: int
    pending_venues: int
    estimated_monthly: Decimal
    estimated_annual: Decimal
    pending_monthly: Decimal
    potential_monthly: Decimal


# --- Rank Celebrations ---


class PendingRankCelebrationItem(BaseModel):
    celebration_id: int
    previous_rank: str
    new_rank: str
    total_xp: int
    created_at: datetime


class PendingRankCelebrationsResponse(BaseModel):
    celebrations: list[PendingRankCelebrationItem]
