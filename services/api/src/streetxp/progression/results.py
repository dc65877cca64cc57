"""Result objects returned across the progression service boundary.

Public ledger operations never raise for store failures; they return one of
these with ``success=False`` and a ``ProgressionError`` the caller can branch on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum


class ProgressionError(str, Enum):
    USER_NOT_FOUND = "user_not_found"
    INVALID_AMOUNT = "invalid_amount"
    LEDGER_WRITE_FAILED = "ledger_write_failed"
    TOTAL_RECOMPUTE_FAILED = "total_recompute_failed"
    USER_UPDATE_FAILED = "user_update_failed"
    MISSION_OR_PROGRESS_NOT_FOUND = "mission_or_progress_not_found"
    MISSION_NOT_COMPLETED = "mission_not_completed"
    REWARD_ALREADY_CLAIMED = "reward_already_claimed"
    UNEXPECTED_ERROR = "unexpected_error"


ERROR_MESSAGES: dict[ProgressionError, str] = {
    ProgressionError.USER_NOT_FOUND: "User not found",
    ProgressionError.INVALID_AMOUNT: "XP and point amounts must be non-negative",
    ProgressionError.LEDGER_WRITE_FAILED: "Failed to log XP event",
    ProgressionError.TOTAL_RECOMPUTE_FAILED: "Failed to calculate total XP",
    ProgressionError.USER_UPDATE_FAILED: "Failed to update user",
    ProgressionError.MISSION_OR_PROGRESS_NOT_FOUND: "Mission or progress not found",
    ProgressionError.MISSION_NOT_COMPLETED: "Mission not completed yet",
    ProgressionError.REWARD_ALREADY_CLAIMED: "Reward already claimed",
    ProgressionError.UNEXPECTED_ERROR: "Unexpected error",
}


@dataclass
class AwardResult:
    success: bool
    new_total_xp: int
    previous_rank: str
    new_rank: str
    rank_up: bool = False
    error: ProgressionError | None = None

    @property
    def message(self) -> str | None:
        return ERROR_MESSAGES[self.error] if self.error else None

    @classmethod
    def failed(cls, error: ProgressionError, total_xp: int, rank: str) -> AwardResult:
        """A failed award leaves the user's visible state untouched."""
        return cls(
            success=False,
            new_total_xp=total_xp,
            previous_rank=rank,
            new_rank=rank,
            rank_up=False,
            error=error,
        )


@dataclass
class ClaimResult:
    success: bool
    xp_awarded: int = 0
    error: ProgressionError | None = None

    @property
    def message(self) -> str | None:
        return ERROR_MESSAGES[self.error] if self.error else None


@dataclass(frozen=True)
class MissionProgressUpdate:
    mission_id: int
    new_count: int
    completed: bool


@dataclass(frozen=True)
class StreakResult:
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: date | None = None
    is_active_today: bool = False


@dataclass(frozen=True)
class EarningsSummary:
    commission_rate: Decimal = Decimal("0")
    live_venues: int = 0
    pending_venues: int = 0
    estimated_monthly: Decimal = Decimal("0")
    estimated_annual: Decimal = Decimal("0")
    pending_monthly: Decimal = Decimal("0")
    potential_monthly: Decimal = Decimal("0")


@dataclass
class ActionOutcome:
    """What a recorded field action produced: its XP award and mission updates."""

    award: AwardResult | None = None
    mission_updates: list[MissionProgressUpdate] = field(default_factory=list)
