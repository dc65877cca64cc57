"""Rank seed data: the default ladder written into street_ranks."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.db.models import Rank
from streetxp.progression.rank_table import DEFAULT_RANK_TABLE, RankTier, validate_rank_table

logger = logging.getLogger(__name__)


async def seed_ranks(
    db: AsyncSession,
    tiers: Sequence[RankTier] = DEFAULT_RANK_TABLE,
    overwrite: bool = False,
) -> int:
    """Insert missing rank tiers by name. Returns number of rows written.

    Existing rows are left as operators tuned them unless ``overwrite`` is set.
    """
    validate_rank_table(tiers)

    existing = {r.name: r for r in (await db.execute(select(Rank))).scalars().all()}
    written = 0
    for tier in tiers:
        row = existing.get(tier.name)
        if row is None:
            db.add(Rank(
                name=tier.name,
                min_xp=tier.min_xp,
                commission_rate=tier.commission_rate,
                perks_description=tier.perks_description,
                order_index=tier.order_index,
            ))
            written += 1
        elif overwrite:
            row.min_xp = tier.min_xp
            row.commission_rate = tier.commission_rate
            row.perks_description = tier.perks_description
            row.order_index = tier.order_index
            written += 1

    await db.commit()
    logger.info("Seeded %d of %d rank tiers", written, len(tiers))
    return written
