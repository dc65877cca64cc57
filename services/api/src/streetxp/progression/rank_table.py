"""Rank tiers, rank derivation and commission lookup.

The default table mirrors the rows seeded into ``street_ranks``; the store copy
wins when it has rows so operators can tune thresholds without a deploy.
Startup seeding only inserts missing tiers and never rewrites tuned rows.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.db.models import Rank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankTier:
    name: str
    min_xp: int
    commission_rate: Decimal
    perks_description: str
    order_index: int


DEFAULT_RANK_TABLE: tuple[RankTier, ...] = (
    RankTier("Bronze", 0, Decimal("0.15"), "15% commission on venues you sign", 1),
    RankTier("Silver", 1000, Decimal("0.15"), "15% commission, priority lead routing", 2),
    RankTier("Gold", 2500, Decimal("0.20"), "20% commission, city leaderboard spotlight", 3),
    RankTier("Platinum", 5000, Decimal("0.25"), "25% commission, extended rev-share period", 4),
    RankTier("Diamond", 10000, Decimal("0.30"), "30% commission, team lead eligibility", 5),
    RankTier("Black Key", 25000, Decimal("0.30"), "30% commission, HQ partner access", 6),
)


def _tiers(tiers: Sequence[RankTier] | None) -> Sequence[RankTier]:
    return tiers if tiers else DEFAULT_RANK_TABLE


def lowest_tier(tiers: Sequence[RankTier] | None = None) -> RankTier:
    """The entry tier (lowest order_index)."""
    return min(_tiers(tiers), key=lambda t: (t.order_index, t.min_xp))


def validate_rank_table(tiers: Sequence[RankTier]) -> None:
    """Raise ValueError unless names are unique and min_xp strictly increases with order_index."""
    if not tiers:
        raise ValueError("rank table is empty")
    names = [t.name for t in tiers]
    if len(set(names)) != len(names):
        raise ValueError("rank names must be unique")
    for tier in tiers:
        if tier.min_xp < 0:
            raise ValueError(f"min_xp must be non-negative for {tier.name}")
        if not Decimal("0") <= tier.commission_rate <= Decimal("1"):
            raise ValueError(f"commission rate out of range for {tier.name}")
    ordered = sorted(tiers, key=lambda t: t.order_index)
    for lower, higher in zip(ordered, ordered[1:]):
        if higher.min_xp <= lower.min_xp:
            raise ValueError(
                f"min_xp must increase with order_index: {lower.name}={lower.min_xp}, "
                f"{higher.name}={higher.min_xp}"
            )


def derive_rank(total_xp: int, tiers: Sequence[RankTier] | None = None) -> str:
    """Return the name of the highest tier whose min_xp <= total_xp.

    Duplicate thresholds resolve to the lowest order_index. XP below every
    threshold falls back to the entry tier.
    """
    ranked = sorted(_tiers(tiers), key=lambda t: (-t.min_xp, t.order_index))
    for tier in ranked:
        if total_xp >= tier.min_xp:
            return tier.name
    return lowest_tier(tiers).name


def get_tier(rank_name: str, tiers: Sequence[RankTier] | None = None) -> RankTier | None:
    for tier in _tiers(tiers):
        if tier.name == rank_name:
            return tier
    return None


def commission_rate_for_rank(rank_name: str, tiers: Sequence[RankTier] | None = None) -> Decimal:
    """Commission rate for a rank; unknown names get the entry tier's rate."""
    tier = get_tier(rank_name, tiers)
    if tier is None:
        return lowest_tier(tiers).commission_rate
    return tier.commission_rate


def xp_to_next_rank(
    total_xp: int,
    current_rank: str,
    tiers: Sequence[RankTier] | None = None,
) -> dict:
    """XP needed to reach the tier after current_rank.

    All values are None at the top tier or when current_rank is unknown.
    """
    ordered = sorted(_tiers(tiers), key=lambda t: t.order_index)
    index = next((i for i, t in enumerate(ordered) if t.name == current_rank), -1)

    if index == -1 or index == len(ordered) - 1:
        return {"next_rank": None, "xp_required": None, "xp_remaining": None}

    next_tier = ordered[index + 1]
    return {
        "next_rank": next_tier.name,
        "xp_required": next_tier.min_xp,
        "xp_remaining": max(0, next_tier.min_xp - total_xp),
    }


def tier_from_row(row: Rank) -> RankTier:
    return RankTier(
        name=row.name,
        min_xp=row.min_xp,
        commission_rate=Decimal(str(row.commission_rate)),
        perks_description=row.perks_description or "",
        order_index=row.order_index,
    )


async def load_rank_table(db: AsyncSession) -> tuple[RankTier, ...]:
    """Load rank tiers from the store, falling back to the built-in table."""
    try:
        result = await db.execute(select(Rank).order_by(Rank.order_index))
        rows = result.scalars().all()
    except SQLAlchemyError:
        logger.warning("Failed to load rank table, using defaults", exc_info=True)
        return DEFAULT_RANK_TABLE

    if not rows:
        return DEFAULT_RANK_TABLE
    return tuple(tier_from_row(r) for r in rows)
