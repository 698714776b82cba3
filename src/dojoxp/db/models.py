"""ORM models for accounts, topic progress and badges.

Tables are created by alembic/versions/001_progression_tables.py; tests
build them from this metadata directly.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from dojoxp.db.base import Base, BigIntId


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class Account(Base):
    """One row per student. Only the progression ledger writes the counters."""

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subscription_tier: Mapped[str] = mapped_column(String(16), nullable=False, default="explorer", server_default="explorer")

    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # --- Weekly XP goal streak ---
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    weekly_xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    weekly_xp_goal: Mapped[int] = mapped_column(Integer, nullable=False, default=500, server_default="500")
    missions_this_week: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    week_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # --- Daily activity chain ---
    daily_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    missions_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_mission_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # --- Vacation passes ---
    vacation_passes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_term_replenish_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------


class Topic(Base):
    """Reference data: a topic inside a subject (e.g. maths/geometry)."""

    __tablename__ = "topics"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    subject_slug: Mapped[str] = mapped_column(String(64), nullable=False)
    slug: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)


class TopicProgress(Base):
    """Per (account, topic) counters, created lazily on the first XP award."""

    __tablename__ = "topic_progress"
    __table_args__ = (
        UniqueConstraint("account_id", "topic_id", name="uq_topic_progress_account_topic"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    topic_id: Mapped[int] = mapped_column(ForeignKey("topics.id", ondelete="CASCADE"), nullable=False)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    weekly_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    missions_this_week: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    week_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_mastered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(Base):
    """A badge and the counter threshold that earns it."""

    __tablename__ = "badge_definitions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    emoji: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    trigger_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


class EarnedBadge(Base):
    """Immutable (account, badge) award. The unique constraint makes awarding idempotent."""

    __tablename__ = "earned_badges"
    __table_args__ = (
        UniqueConstraint("account_id", "badge_id", name="uq_earned_badges_account_badge"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    badge_id: Mapped[int] = mapped_column(ForeignKey("badge_definitions.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
