"""Best-effort notification rows for the in-app inbox."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.db.models import Notification

logger = logging.getLogger(__name__)


async def insert_notification(
    db: AsyncSession,
    user_id: int,
    title: str,
    body: str,
    type_: str,
) -> bool:
    """Persist a notification in its own commit. Returns False instead of raising.

    Callers must have committed their own work first: a failure here rolls
    back the session.
    """
    try:
        db.add(Notification(user_id=user_id, title=title, body=body, type=type_))
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning("Failed to create %s notification for user %s", type_, user_id, exc_info=True)
        return False
    return True
