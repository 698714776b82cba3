"""Weekly XP-goal streaks, vacation passes and daily activity chains.

Pure functions only: callers hand in the stored counters and the civil date,
and persist whatever comes back.

Weekly model: each week has an XP goal that grows with the streak. At the
first interaction in a new week the previous week is judged once:

  - holiday week           -> streak kept, no pass used
  - goal met               -> streak + 1
  - goal missed, pass left -> pass used, streak kept
  - goal missed, no pass   -> streak back to 0

Vacation passes are refilled (not topped up) at the start of each school
term. A week that is skipped entirely is not judged on its own: only the
week recorded in the stored anchor is evaluated.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date

from dojoxp.exceptions import PolicyViolation
from dojoxp.progression.calendar import CalendarPolicy, is_new_day, is_new_period, was_yesterday, week_anchor

EXPLORER_TIER = "explorer"
CHAMPION_TIER = "champion"


# ---------------------------------------------------------------------------
# Weekly goal scaling
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GoalPolicy:
    """Goal = base + step per streak week, held at ``cap``."""

    base: int = 500
    step: int = 100
    cap: int = 1000

    def goal_for_streak(self, streak: int) -> int:
        return min(self.base + self.step * max(streak, 0), self.cap)


DEFAULT_GOALS = GoalPolicy()


def goal_for_streak(streak: int, goals: GoalPolicy = DEFAULT_GOALS) -> int:
    return goals.goal_for_streak(streak)


# ---------------------------------------------------------------------------
# Weekly transition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StreakState:
    """The streak-related slice of an account."""

    current_streak: int = 0
    weekly_xp_earned: int = 0
    week_start_date: date | None = None
    vacation_passes: int = 0
    last_term_replenish_date: date | None = None


@dataclass(frozen=True)
class WeeklyTransition:
    new_streak: int
    new_goal: int
    vacation_passes: int
    last_term_replenish_date: date | None
    weekly_xp_earned: int = 0
    pass_consumed: bool = False
    streak_reset: bool = False
    holiday_protected: bool = False
    replenished: bool = False


def weekly_transition(
    state: StreakState,
    previous_anchor: date,
    today: date,
    calendar: CalendarPolicy,
    goals: GoalPolicy = DEFAULT_GOALS,
    replenish_count: int = 2,
) -> WeeklyTransition:
    """Judge the week anchored at ``previous_anchor`` using its accumulated XP."""
    goal = goals.goal_for_streak(state.current_streak)

    # Looked up first, applied after the verdict: a refill landing in the
    # rollover week only serves future weeks.
    replenish_on = calendar.term_replenishment_due(state.last_term_replenish_date, today)

    streak = state.current_streak
    passes = state.vacation_passes
    pass_consumed = streak_reset = holiday_protected = False

    if calendar.is_holiday_week(previous_anchor):
        holiday_protected = True
    elif state.weekly_xp_earned >= goal:
        streak += 1
    elif passes > 0:
        passes -= 1
        pass_consumed = True
    else:
        streak = 0
        streak_reset = True

    replenish_date = state.last_term_replenish_date
    if replenish_on is not None:
        passes = replenish_count
        replenish_date = replenish_on

    return WeeklyTransition(
        new_streak=streak,
        new_goal=goals.goal_for_streak(streak),
        vacation_passes=passes,
        last_term_replenish_date=replenish_date,
        pass_consumed=pass_consumed,
        streak_reset=streak_reset,
        holiday_protected=holiday_protected,
        replenished=replenish_on is not None,
    )


@dataclass(frozen=True)
class WeekEvaluation:
    """What the ledger must write back after looking at the calendar.

    ``transition`` is set only when a previous week was judged.
    ``changed`` is False when nothing needs persisting.
    """

    state: StreakState
    goal: int
    anchor: date
    previous_anchor: date | None = None
    rolled_over: bool = False
    initialised: bool = False
    replenished: bool = False
    transition: WeeklyTransition | None = None
    changed: bool = False


def evaluate_week(
    state: StreakState,
    today: date,
    calendar: CalendarPolicy,
    goals: GoalPolicy = DEFAULT_GOALS,
    replenish_count: int = 2,
) -> WeekEvaluation:
    """Apply at most one weekly step against the stored anchor."""
    anchor = week_anchor(today)

    if state.week_start_date is None:
        # First activity ever: start the clock, nothing to judge yet
        new_state = replace(state, week_start_date=anchor, weekly_xp_earned=0)
        replenished = _replenish(new_state, today, calendar, replenish_count)
        if replenished is not None:
            new_state = replenished
        return WeekEvaluation(
            state=new_state,
            goal=goals.goal_for_streak(new_state.current_streak),
            anchor=anchor,
            initialised=True,
            replenished=replenished is not None,
            changed=True,
        )

    if is_new_period(state.week_start_date, anchor):
        result = weekly_transition(state, state.week_start_date, today, calendar, goals, replenish_count)
        new_state = StreakState(
            current_streak=result.new_streak,
            weekly_xp_earned=0,
            week_start_date=anchor,
            vacation_passes=result.vacation_passes,
            last_term_replenish_date=result.last_term_replenish_date,
        )
        return WeekEvaluation(
            state=new_state,
            goal=result.new_goal,
            anchor=anchor,
            previous_anchor=state.week_start_date,
            rolled_over=True,
            replenished=result.replenished,
            transition=result,
            changed=True,
        )

    # Same week: a term may still have started since the last refill
    replenished = _replenish(state, today, calendar, replenish_count)
    return WeekEvaluation(
        state=replenished or state,
        goal=goals.goal_for_streak(state.current_streak),
        anchor=anchor,
        replenished=replenished is not None,
        changed=replenished is not None,
    )


def _replenish(state: StreakState, today: date, calendar: CalendarPolicy, count: int) -> StreakState | None:
    due = calendar.term_replenishment_due(state.last_term_replenish_date, today)
    if due is None:
        return None
    return replace(state, vacation_passes=count, last_term_replenish_date=due)


# ---------------------------------------------------------------------------
# Daily chain
# ---------------------------------------------------------------------------


def daily_transition(current: int, last_date: date | None, today: date) -> int:
    """Daily streak after a mission completed on ``today``."""
    if last_date is None:
        return 1
    if last_date == today:
        return current
    if was_yesterday(last_date, today):
        return current + 1
    return 1


def missions_today_after(missions_today: int, last_date: date | None, today: date) -> int:
    """Today's mission count including the one just completed."""
    if is_new_day(last_date, today):
        return 1
    return missions_today + 1


# ---------------------------------------------------------------------------
# Mission gating
# ---------------------------------------------------------------------------


def daily_mission_cap(tier: str, explorer_cap: int = 2) -> int | None:
    """Missions allowed per civil day, or None when uncapped (paying tier)."""
    if tier == CHAMPION_TIER:
        return None
    return explorer_cap


def missions_remaining_today(
    tier: str, missions_today: int, last_date: date | None, today: date, explorer_cap: int = 2
) -> int | None:
    cap = daily_mission_cap(tier, explorer_cap)
    if cap is None:
        return None
    done = 0 if is_new_day(last_date, today) else missions_today
    return max(0, cap - done)


def is_daily_limit_reached(
    tier: str, missions_today: int, last_date: date | None, today: date, explorer_cap: int = 2
) -> bool:
    return missions_remaining_today(tier, missions_today, last_date, today, explorer_cap) == 0


def ensure_mission_allowed(
    tier: str, missions_today: int, last_date: date | None, today: date, explorer_cap: int = 2
) -> None:
    """Raise PolicyViolation if the student may not start another mission today."""
    if is_daily_limit_reached(tier, missions_today, last_date, today, explorer_cap):
        raise PolicyViolation(
            "daily_mission_cap",
            f"You've finished your {explorer_cap} missions for today. Come back tomorrow for more!",
        )


# ---------------------------------------------------------------------------
# Subject multipliers
# ---------------------------------------------------------------------------

SUBJECT_MULTIPLIERS: dict[str, float] = {
    "english": 1.2,
    "maths": 1.2,
    "science-technology": 1.0,
    "geography": 1.0,
    "history": 1.0,
}


def subject_multiplier(subject_slug: str) -> float:
    return SUBJECT_MULTIPLIERS.get(subject_slug, 1.0)


def apply_subject_multiplier(base_xp: int, subject_slug: str) -> int:
    """Scale mission XP for the subject, rounding half up."""
    scaled = base_xp * subject_multiplier(subject_slug)
    return int(scaled + 0.5)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def weekly_progress_message(earned: int, goal: int) -> str:
    pct = earned / goal if goal > 0 else 0
    remaining = max(0, goal - earned)
    if pct >= 1:
        return "Goal smashed! \U0001F389"
    if pct >= 0.75:
        return f"Almost there! {remaining} XP to go \U0001F4AA"
    return f"Keep training! {remaining} XP to go \U0001F94B"


def daily_streak_message(streak: int) -> str:
    if streak <= 0:
        return "Start your streak today!"
    if streak == 1:
        return "1 day - Great start!"
    if streak < 7:
        return f"{streak} days - Keep it up!"
    if streak < 30:
        return f"{streak} days - On fire! \U0001F525"
    if streak < 100:
        return f"{streak} days - Incredible! \U0001F4AA"
    return f"{streak} days - LEGENDARY! \U0001F31F"


def rollover_message(transition: WeeklyTransition) -> str | None:
    """Student-facing note about how last week was judged, if worth showing."""
    if transition.pass_consumed and transition.replenished:
        return (
            "Vacation pass used! A new term has started, so your passes are back to "
            f"{transition.vacation_passes}. Your streak continues!"
        )
    if transition.pass_consumed:
        return (
            f"Vacation pass used! You have {transition.vacation_passes} left this term. "
            "Your streak continues!"
        )
    if transition.streak_reset:
        return "Your streak has reset. Don't worry, start fresh this week!"
    if transition.holiday_protected:
        return "School holidays protected your streak!"
    return None
