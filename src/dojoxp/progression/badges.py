"""Badge evaluation: compare an account's counters with every active badge threshold."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from dojoxp.db.models import Account, BadgeDefinition
from dojoxp.progression import repository
from dojoxp.progression.seed import STREAK, TOPIC_MASTERY_COUNT, TOTAL_XP

logger = logging.getLogger(__name__)


def badge_crossed(badge: BadgeDefinition, total_xp: int, current_streak: int, mastered_topics: int) -> bool:
    """True if the counters meet the badge's threshold."""
    if badge.trigger_kind == STREAK:
        return current_streak >= badge.threshold
    if badge.trigger_kind == TOTAL_XP:
        return total_xp >= badge.threshold
    if badge.trigger_kind == TOPIC_MASTERY_COUNT:
        return mastered_topics >= badge.threshold
    logger.warning("Unknown badge trigger kind %r on %s", badge.trigger_kind, badge.slug)
    return False


async def award_crossed_badges(db: AsyncSession, account: Account) -> list[BadgeDefinition]:
    """Insert an EarnedBadge for every crossed threshold; returns only the new ones.

    Already-earned badges are skipped by the (account, badge) unique
    constraint, not by a prior read, so retries and concurrent checks are safe.
    """
    badges = await repository.list_badge_definitions(db)
    if not badges:
        return []

    mastered = await repository.count_mastered_topics(db, account.id)
    awarded: list[BadgeDefinition] = []
    for badge in badges:
        if not badge_crossed(badge, account.total_xp, account.current_streak, mastered):
            continue
        if await repository.insert_earned_badge(db, account.id, badge.id):
            awarded.append(badge)
    return awarded
