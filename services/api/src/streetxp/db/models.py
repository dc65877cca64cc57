"""ORM models for the street-team progression ledger.

Users, runs and leads are owned by the wider application; only the columns the
ledger reads or maintains are mapped here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column

from streetxp.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'street_users' table. total_xp/current_rank are a ledger cache."""

    __tablename__ = "street_users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    city: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="agent")
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    current_rank: Mapped[str] = mapped_column(
        String(32), nullable=False, default="Bronze", server_default="Bronze"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Ranks & XP ledger
# ---------------------------------------------------------------------------


class Rank(Base):
    """Rank tier reference data, ordered by order_index."""

    __tablename__ = "street_ranks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    min_xp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    perks_description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)


class XPEvent(Base):
    """Append-only XP log. SUM(xp_amount) per user is the canonical total."""

    __tablename__ = "street_xp_events"
    __table_args__ = (Index("idx_street_xp_events_user", "user_id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("street_users.id", ondelete="CASCADE"), nullable=False
    )
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    xp_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    points_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class RankCelebration(Base):
    """Pending rank-up celebration, shown on the user's next visit."""

    __tablename__ = "rank_celebrations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("street_users.id", ondelete="CASCADE"), nullable=False
    )
    previous_rank: Mapped[str] = mapped_column(String(32), nullable=False)
    new_rank: Mapped[str] = mapped_column(String(32), nullable=False)
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    celebrated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    celebrated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Missions
# ---------------------------------------------------------------------------


class Mission(Base):
    """Time-boxed, scoped challenge with a target count and an XP reward."""

    __tablename__ = "street_missions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    city: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trigger_type: Mapped[str] = mapped_column(String(32), nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False)
    point_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    required_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_to: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("street_users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MissionProgress(Base):
    """Per (mission, user) counter. UNIQUE(mission_id, user_id) keeps one row per pair."""

    __tablename__ = "street_mission_progress"
    __table_args__ = (
        UniqueConstraint("mission_id", "user_id", name="street_mission_progress_mission_user_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    mission_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("street_missions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("street_users.id", ondelete="CASCADE"), nullable=False
    )
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    xp_awarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    # Set while a claim is in flight; cleared again if the award fails.
    claim_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Activity sources (runs, leads)
# ---------------------------------------------------------------------------


class Run(Base):
    """A street run: one agent session of venue visits."""

    __tablename__ = "street_runs"
    __table_args__ = (Index("idx_street_runs_user", "user_id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("street_users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    actual_venue_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class VenueLead(Base):
    """A venue lead moving through the sales pipeline."""

    __tablename__ = "street_venue_leads"
    __table_args__ = (Index("idx_street_venue_leads_creator", "created_by_user_id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    created_by_user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("street_users.id", ondelete="CASCADE"), nullable=False
    )
    venue_name: Mapped[str] = mapped_column(String(128), nullable=False)
    city: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="new")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted user notifications (best-effort, never authoritative)."""

    __tablename__ = "street_notifications"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("street_users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
