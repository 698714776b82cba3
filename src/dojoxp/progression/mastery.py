"""Topic mastery tiers and in-tier progress.

Tier names and minimums are shown to students on every topic card; keep
them in step with the front end's tier table.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_MASTERY_THRESHOLD = 500


@dataclass(frozen=True)
class MasteryTier:
    index: int
    name: str
    min_xp: int
    max_xp: int | None  # None for the top tier
    emoji: str


MASTERY_TIERS: tuple[MasteryTier, ...] = (
    MasteryTier(0, "Beginning", 0, 49, "\U0001F331"),
    MasteryTier(1, "Developing", 50, 149, "\U0001F4DA"),
    MasteryTier(2, "Consolidating", 150, 299, "\U0001F4AA"),
    MasteryTier(3, "Extending", 300, 499, "\U0001F680"),
    MasteryTier(4, "Mastering", 500, None, "⭐"),
)


def tier_for(xp: int) -> MasteryTier:
    """Highest tier whose minimum is at or below ``xp``. Negative XP clamps to the first tier."""
    current = MASTERY_TIERS[0]
    for tier in MASTERY_TIERS:
        if xp >= tier.min_xp:
            current = tier
    return current


def next_tier(xp: int) -> MasteryTier | None:
    idx = tier_for(xp).index
    if idx + 1 < len(MASTERY_TIERS):
        return MASTERY_TIERS[idx + 1]
    return None


def progress_within_tier(xp: int) -> int:
    """Percent of the way from the current tier's minimum to the next one, 0-100.

    Rounds half up. Always 100 at the top tier.
    """
    current = tier_for(xp)
    upcoming = next_tier(xp)
    if upcoming is None:
        return 100

    span = upcoming.min_xp - current.min_xp
    into = max(0, xp - current.min_xp)
    # integer half-up rounding of 100 * into / span
    pct = (200 * into + span) // (2 * span)
    return max(0, min(100, pct))


def xp_to_next_tier(xp: int) -> int:
    upcoming = next_tier(xp)
    if upcoming is None:
        return 0
    return upcoming.min_xp - max(xp, 0)


def is_mastered(xp: int, threshold: int = DEFAULT_MASTERY_THRESHOLD) -> bool:
    return xp >= threshold


def tier_by_name(name: str) -> MasteryTier:
    for tier in MASTERY_TIERS:
        if tier.name.lower() == name.lower():
            return tier
    msg = f"Unknown mastery tier: {name}"
    raise KeyError(msg)


def level_shift_xp(xp: int, step: int) -> int:
    """Minimum XP of the tier ``step`` places away from the current one, clamped to the table."""
    idx = tier_for(xp).index + step
    idx = max(0, min(len(MASTERY_TIERS) - 1, idx))
    return MASTERY_TIERS[idx].min_xp


def describe(xp: int, threshold: int = DEFAULT_MASTERY_THRESHOLD) -> dict:
    """Tier summary for a topic card."""
    current = tier_for(xp)
    upcoming = next_tier(xp)
    return {
        "tier": current.name,
        "tier_index": current.index,
        "emoji": current.emoji,
        "progress": progress_within_tier(xp),
        "xp_to_next": xp_to_next_tier(xp),
        "next_tier": upcoming.name if upcoming else None,
        "mastered": is_mastered(xp, threshold),
    }
