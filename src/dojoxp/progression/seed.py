"""Badge seed data: the default streak, XP and mastery badges."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from dojoxp.db.models import BadgeDefinition
from dojoxp.progression import repository

logger = logging.getLogger(__name__)

STREAK = "streak"
TOTAL_XP = "total_xp"
TOPIC_MASTERY_COUNT = "topic_mastery_count"

TRIGGER_KINDS = (STREAK, TOTAL_XP, TOPIC_MASTERY_COUNT)

BADGE_SEED_DATA: list[dict] = [
    # Weekly streak
    {
        "slug": "first_steps",
        "name": "First Steps",
        "description": "Reach your first weekly goal",
        "emoji": "\U0001F3C3",
        "trigger_kind": STREAK,
        "threshold": 1,
        "sort_order": 1,
    },
    {
        "slug": "week_warrior",
        "name": "Week Warrior",
        "description": "Keep a 7-week streak",
        "emoji": "⚡",
        "trigger_kind": STREAK,
        "threshold": 7,
        "sort_order": 2,
    },
    {
        "slug": "month_master",
        "name": "Month Master",
        "description": "Keep a 30-week streak",
        "emoji": "\U0001F525",
        "trigger_kind": STREAK,
        "threshold": 30,
        "sort_order": 3,
    },
    {
        "slug": "streak_legend",
        "name": "Streak Legend",
        "description": "Keep a 100-week streak",
        "emoji": "\U0001F31F",
        "trigger_kind": STREAK,
        "threshold": 100,
        "sort_order": 4,
    },
    # Topic mastery
    {
        "slug": "topic_pro",
        "name": "Topic Pro",
        "description": "Master your first topic (500+ XP)",
        "emoji": "\U0001F3AF",
        "trigger_kind": TOPIC_MASTERY_COUNT,
        "threshold": 1,
        "sort_order": 5,
    },
    {
        "slug": "knowledge_hunter",
        "name": "Knowledge Hunter",
        "description": "Master 5 topics",
        "emoji": "\U0001F3F9",
        "trigger_kind": TOPIC_MASTERY_COUNT,
        "threshold": 5,
        "sort_order": 6,
    },
    {
        "slug": "subject_champion",
        "name": "Subject Champion",
        "description": "Master 10 topics",
        "emoji": "\U0001F3C6",
        "trigger_kind": TOPIC_MASTERY_COUNT,
        "threshold": 10,
        "sort_order": 7,
    },
    # Total XP
    {
        "slug": "xp_collector",
        "name": "XP Collector",
        "description": "Earn 1000 total XP",
        "emoji": "\U0001F48E",
        "trigger_kind": TOTAL_XP,
        "threshold": 1000,
        "sort_order": 8,
    },
    {
        "slug": "xp_master",
        "name": "XP Master",
        "description": "Earn 5000 total XP",
        "emoji": "\U0001F451",
        "trigger_kind": TOTAL_XP,
        "threshold": 5000,
        "sort_order": 9,
    },
    {
        "slug": "xp_legend",
        "name": "XP Legend",
        "description": "Earn 10000 total XP",
        "emoji": "\U0001F9B8",
        "trigger_kind": TOTAL_XP,
        "threshold": 10000,
        "sort_order": 10,
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Upsert every seed badge definition. Returns how many were seeded.

    Existing rows take the current name, description, trigger and threshold;
    ``is_active`` is left alone so a disabled badge stays disabled.
    """
    seeded = 0
    for data in BADGE_SEED_DATA:
        stmt = repository.insert_for(db, BadgeDefinition).values(**data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "emoji": stmt.excluded.emoji,
                "trigger_kind": stmt.excluded.trigger_kind,
                "threshold": stmt.excluded.threshold,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
