"""Pydantic models returned by the progression ledger."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict


# --- Account / topic snapshots ---


class AccountState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_tier: str = "explorer"
    total_xp: int = 0
    current_streak: int = 0
    weekly_xp_earned: int = 0
    weekly_xp_goal: int = 500
    missions_this_week: int = 0
    week_start_date: date | None = None
    daily_streak: int = 0
    missions_today: int = 0
    last_mission_date: date | None = None
    vacation_passes: int = 0
    last_term_replenish_date: date | None = None


class TopicState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: int
    topic_id: int
    xp_earned: int = 0
    weekly_xp: int = 0
    missions_this_week: int = 0
    week_start_date: date | None = None
    is_mastered: bool = False
    tier: str = "Beginning"
    progress: int = 0


# --- Operation results ---


class RolloverOutcome(BaseModel):
    """How the previous week was judged. Present only when a week boundary was crossed."""

    previous_week_start: date
    previous_streak: int
    new_streak: int
    new_goal: int
    vacation_passes: int
    pass_consumed: bool = False
    streak_reset: bool = False
    holiday_protected: bool = False
    replenished: bool = False
    message: str | None = None


class RolloverResult(BaseModel):
    account: AccountState
    rollover: RolloverOutcome | None = None
    replenished: bool = False
    holiday_label: str | None = None


class CompletionResult(BaseModel):
    account: AccountState
    topic: TopicState
    rollover: RolloverOutcome | None = None
    mastered_now: bool = False
