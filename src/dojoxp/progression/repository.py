"""Storage contract the progression core needs: row reads, upserts, idempotent badge insert.

All functions take the caller's AsyncSession and never commit; the ledger
owns the transaction boundary. Upserts use the dialect's native
``INSERT ... ON CONFLICT`` (PostgreSQL in production, SQLite in tests).
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from dojoxp.db.models import Account, BadgeDefinition, EarnedBadge, Topic, TopicProgress
from dojoxp.exceptions import ConcurrencyAnomaly


def insert_for(db: AsyncSession, model: type) -> Any:
    """Dialect-specific insert construct that supports ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    msg = f"Upserts are not supported on {dialect}"
    raise RuntimeError(msg)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


async def read_account(db: AsyncSession, account_id: int, for_update: bool = False) -> Account | None:
    """Fetch an account. ``for_update`` takes a row lock where the database supports one."""
    stmt = select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_account(db: AsyncSession, account_id: int, fields: dict[str, Any]) -> None:
    values = {**fields, "updated_at": datetime.now(timezone.utc)}
    stmt = insert_for(db, Account).values(id=account_id, **values)
    stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=values)
    result = await db.execute(stmt)
    if result.rowcount != 1:
        msg = f"account {account_id} upsert wrote {result.rowcount} rows"
        raise ConcurrencyAnomaly(msg)


# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------


async def read_topic(db: AsyncSession, topic_id: int) -> Topic | None:
    result = await db.execute(select(Topic).where(Topic.id == topic_id))
    return result.scalar_one_or_none()


async def read_topic_progress(db: AsyncSession, account_id: int, topic_id: int) -> TopicProgress | None:
    result = await db.execute(
        select(TopicProgress)
        .where(TopicProgress.account_id == account_id, TopicProgress.topic_id == topic_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_topic_progress(db: AsyncSession, account_id: int) -> list[TopicProgress]:
    result = await db.execute(
        select(TopicProgress)
        .where(TopicProgress.account_id == account_id)
        .order_by(TopicProgress.topic_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def upsert_topic_progress(db: AsyncSession, account_id: int, topic_id: int, fields: dict[str, Any]) -> None:
    """Insert or update the (account, topic) row; first and later completions share this path."""
    values = {**fields, "updated_at": datetime.now(timezone.utc)}
    stmt = insert_for(db, TopicProgress).values(account_id=account_id, topic_id=topic_id, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["account_id", "topic_id"],
        set_=values,
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        msg = f"topic progress ({account_id}, {topic_id}) upsert wrote {result.rowcount} rows"
        raise ConcurrencyAnomaly(msg)


async def reset_topic_weeks(db: AsyncSession, account_id: int, anchor: date) -> int:
    """Zero the weekly counters of every topic row not already on ``anchor``. Returns rows touched."""
    result = await db.execute(
        update(TopicProgress)
        .where(
            TopicProgress.account_id == account_id,
            or_(TopicProgress.week_start_date.is_(None), TopicProgress.week_start_date != anchor),
        )
        .values(weekly_xp=0, missions_this_week=0, week_start_date=anchor)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def delete_topic_progress(db: AsyncSession, account_id: int) -> int:
    result = await db.execute(
        delete(TopicProgress)
        .where(TopicProgress.account_id == account_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def count_mastered_topics(db: AsyncSession, account_id: int) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(TopicProgress)
        .where(TopicProgress.account_id == account_id, TopicProgress.is_mastered.is_(True))
    )
    return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


async def list_badge_definitions(db: AsyncSession, active_only: bool = True) -> list[BadgeDefinition]:
    stmt = select(BadgeDefinition).order_by(BadgeDefinition.sort_order, BadgeDefinition.id)
    if active_only:
        stmt = stmt.where(BadgeDefinition.is_active.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def insert_earned_badge(db: AsyncSession, account_id: int, badge_id: int) -> bool:
    """Record an award. Returns False (and writes nothing) if the pair already exists."""
    stmt = insert_for(db, EarnedBadge).values(
        account_id=account_id,
        badge_id=badge_id,
        earned_at=datetime.now(timezone.utc),
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["account_id", "badge_id"])
    result = await db.execute(stmt)
    return result.rowcount == 1


async def list_earned_badges(db: AsyncSession, account_id: int) -> list[tuple[EarnedBadge, BadgeDefinition]]:
    result = await db.execute(
        select(EarnedBadge, BadgeDefinition)
        .join(BadgeDefinition, BadgeDefinition.id == EarnedBadge.badge_id)
        .where(EarnedBadge.account_id == account_id)
        .order_by(EarnedBadge.earned_at, EarnedBadge.id)
    )
    return [(row[0], row[1]) for row in result.all()]
