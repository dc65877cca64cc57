"""Commission-based earnings estimates.

These are display estimates from an average platform fee per venue, not
billing figures.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.config import get_settings
from streetxp.db.models import User, VenueLead
from streetxp.progression.rank_table import RankTier, commission_rate_for_rank, load_rank_table
from streetxp.progression.results import EarningsSummary

logger = logging.getLogger(__name__)

LIVE_STATUS = "live"
PENDING_STATUS = "signed_pending"


def estimate_monthly_earnings(
    rank_name: str,
    live_venue_count: int,
    per_venue_fee: Decimal | int | None = None,
    tiers: Sequence[RankTier] | None = None,
) -> Decimal:
    """live venues * fee per venue * the rank's commission rate."""
    fee = Decimal(str(per_venue_fee)) if per_venue_fee is not None else get_settings().per_venue_fee
    return Decimal(live_venue_count) * fee * commission_rate_for_rank(rank_name, tiers)


def summarize_earnings(
    rank_name: str,
    live_venue_count: int,
    pending_venue_count: int = 0,
    per_venue_fee: Decimal | int | None = None,
    tiers: Sequence[RankTier] | None = None,
) -> EarningsSummary:
    monthly = estimate_monthly_earnings(rank_name, live_venue_count, per_venue_fee, tiers)
    pending = estimate_monthly_earnings(rank_name, pending_venue_count, per_venue_fee, tiers)
    return EarningsSummary(
        commission_rate=commission_rate_for_rank(rank_name, tiers),
        live_venues=live_venue_count,
        pending_venues=pending_venue_count,
        estimated_monthly=monthly,
        estimated_annual=monthly * 12,
        pending_monthly=pending,
        potential_monthly=monthly + pending,
    )


async def get_user_earnings(db: AsyncSession, user_id: int) -> EarningsSummary:
    """Earnings summary from the user's lead pipeline; zeros if anything fails."""
    try:
        user = await db.get(User, user_id)
        if user is None:
            return EarningsSummary()

        result = await db.execute(
            select(VenueLead.status, func.count())
            .where(
                VenueLead.created_by_user_id == user_id,
                VenueLead.status.in_([LIVE_STATUS, PENDING_STATUS]),
            )
            .group_by(VenueLead.status)
        )
        counts = {status: count for status, count in result.all()}
        tiers = await load_rank_table(db)
    except SQLAlchemyError:
        logger.exception("Error loading earnings inputs for user %s", user_id)
        await db.rollback()
        return EarningsSummary()

    return summarize_earnings(
        user.current_rank,
        counts.get(LIVE_STATUS, 0),
        counts.get(PENDING_STATUS, 0),
        tiers=tiers,
    )
