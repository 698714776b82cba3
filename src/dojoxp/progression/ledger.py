"""Progression ledger: the only writer of account and topic progress counters.

Every mutating operation follows the same shape:

1. take the per-account lock (serializes callers inside this process)
2. open a transaction and read the account row FOR UPDATE (serializes
   callers across processes on PostgreSQL)
3. compute the new counters with the pure calendar/streak/mastery functions
4. upsert the rows and commit; any failure rolls the whole transaction back

so two missions finished at the same moment in two tabs both land, and a
failed completion leaves XP and streaks untouched and can be retried.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import date
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dojoxp.config import Settings, get_settings
from dojoxp.db.models import Account, TopicProgress
from dojoxp.exceptions import InputError, NotFoundError
from dojoxp.progression import events, repository
from dojoxp.progression.badges import award_crossed_badges
from dojoxp.progression.calendar import CalendarPolicy, get_calendar_policy, week_anchor
from dojoxp.progression.clock import ClockAdapter, SeasonalOffsetRule
from dojoxp.progression.mastery import is_mastered, level_shift_xp, progress_within_tier, tier_for
from dojoxp.progression.schemas import (
    AccountState,
    CompletionResult,
    RolloverOutcome,
    RolloverResult,
    TopicState,
)
from dojoxp.progression.streak import (
    GoalPolicy,
    StreakState,
    WeekEvaluation,
    daily_transition,
    ensure_mission_allowed,
    evaluate_week,
    missions_remaining_today,
    missions_today_after,
    rollover_message,
)

logger = structlog.get_logger()


class AccountLocks:
    """One asyncio.Lock per account id, dropped once no caller holds it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def for_account(self, account_id: int) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock


def _require_id(value: object, kind: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        msg = f"{kind} id must be a positive integer, got {value!r}"
        raise InputError(msg)
    return value


def _require_xp(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        msg = f"{name} must be a non-negative integer, got {value!r}"
        raise InputError(msg)
    return value


class ProgressionLedger:
    """Applies mission completions, level overrides, weekly rollovers and badge checks."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: ClockAdapter | None = None,
        calendar: CalendarPolicy | None = None,
        settings: Settings | None = None,
        redis: object = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.clock = clock or ClockAdapter(SeasonalOffsetRule.from_settings(self.settings))
        self.calendar = calendar or get_calendar_policy()
        self.goals = GoalPolicy(
            base=self.settings.weekly_goal_base,
            step=self.settings.weekly_goal_step,
            cap=self.settings.weekly_goal_cap,
        )
        self.redis = redis
        self._session_factory = session_factory
        self._locks = AccountLocks()

        today = self.clock.today()
        if not self.calendar.covers(today):
            logger.warning(
                "school_calendar_exhausted",
                today=today.isoformat(),
                last_covered_day=str(self.calendar.last_covered_day()),
            )

    # ------------------------------------------------------------------
    # Mission completion
    # ------------------------------------------------------------------

    async def apply_mission_completion(self, account_id: int, topic_id: int, xp_delta: int) -> CompletionResult:
        """Add ``xp_delta`` to the account and topic, rolling the week and day first."""
        _require_id(account_id, "account")
        _require_id(topic_id, "topic")
        _require_xp(xp_delta, "xp_delta")
        log = logger.bind(account_id=account_id, topic_id=topic_id)

        async with self._locks.for_account(account_id), self._session_factory() as db:
            account = await self._load_account(db, account_id, for_update=True)
            await self._require_topic(db, topic_id)
            progress = await repository.read_topic_progress(db, account_id, topic_id)

            today = self.clock.today()
            previous_streak = account.current_streak
            week = self._evaluate_week(account, today)
            if week.rolled_over:
                await repository.reset_topic_weeks(db, account_id, week.anchor)

            fields = self._week_fields(account, week)
            fields.update(
                total_xp=account.total_xp + xp_delta,
                weekly_xp_earned=week.state.weekly_xp_earned + xp_delta,
                missions_this_week=fields["missions_this_week"] + 1,
                daily_streak=daily_transition(account.daily_streak, account.last_mission_date, today),
                missions_today=missions_today_after(account.missions_today, account.last_mission_date, today),
                last_mission_date=today,
            )

            was_mastered = bool(progress and progress.is_mastered)
            topic_fields = self._topic_after_xp(progress, week.anchor, xp_delta)

            await repository.upsert_account(db, account_id, fields)
            await repository.upsert_topic_progress(db, account_id, topic_id, topic_fields)
            await db.commit()

            account_state = self._snapshot(account, fields)

        topic_state = self._topic_state(account_id, topic_id, topic_fields)
        outcome = self._outcome(week, previous_streak)
        mastered_now = topic_state.is_mastered and not was_mastered

        log.info(
            "mission_completed",
            xp=xp_delta,
            total_xp=account_state.total_xp,
            topic_xp=topic_state.xp_earned,
            weekly_xp=account_state.weekly_xp_earned,
            daily_streak=account_state.daily_streak,
            rolled_over=week.rolled_over,
        )
        if outcome is not None:
            self._log_rollover(log, outcome)

        await events.publish_event(self.redis, events.PROGRESS_CHANNEL, {
            "account_id": account_id,
            "event": "mission_completed",
            "topic_id": topic_id,
            "xp": xp_delta,
            "total_xp": account_state.total_xp,
            "topic_xp": topic_state.xp_earned,
            "tier": topic_state.tier,
            "mastered_now": mastered_now,
        })
        if outcome is not None:
            await self._publish_rollover(account_id, outcome)

        return CompletionResult(
            account=account_state,
            topic=topic_state,
            rollover=outcome,
            mastered_now=mastered_now,
        )

    async def ensure_can_start_mission(self, account_id: int) -> int | None:
        """Gate for the calling layer, checked before a mission starts.

        Raises PolicyViolation when the non-paying tier has used today's
        missions. Returns missions left today, or None when uncapped.
        """
        _require_id(account_id, "account")
        async with self._session_factory() as db:
            account = await self._load_account(db, account_id)

        today = self.clock.today()
        cap = self.settings.explorer_daily_mission_cap
        ensure_mission_allowed(account.subscription_tier, account.missions_today, account.last_mission_date, today, cap)
        return missions_remaining_today(
            account.subscription_tier, account.missions_today, account.last_mission_date, today, cap
        )

    # ------------------------------------------------------------------
    # Level override
    # ------------------------------------------------------------------

    async def override_topic_xp(self, account_id: int, topic_id: int, new_xp: int) -> TopicState:
        """Set a topic's XP directly. No streak or account-total changes; mastery is recomputed."""
        _require_id(account_id, "account")
        _require_id(topic_id, "topic")
        _require_xp(new_xp, "new_xp")

        async with self._locks.for_account(account_id), self._session_factory() as db:
            await self._load_account(db, account_id, for_update=True)
            await self._require_topic(db, topic_id)
            progress = await repository.read_topic_progress(db, account_id, topic_id)
            topic_fields = await self._override(db, account_id, topic_id, progress, new_xp)

        logger.info("topic_xp_overridden", account_id=account_id, topic_id=topic_id, xp=new_xp)
        return self._topic_state(account_id, topic_id, topic_fields)

    async def shift_topic_level(self, account_id: int, topic_id: int, step: int) -> TopicState:
        """Move a topic ``step`` mastery tiers up or down, landing on that tier's minimum XP."""
        _require_id(account_id, "account")
        _require_id(topic_id, "topic")
        if isinstance(step, bool) or not isinstance(step, int):
            msg = f"step must be an integer, got {step!r}"
            raise InputError(msg)

        async with self._locks.for_account(account_id), self._session_factory() as db:
            await self._load_account(db, account_id, for_update=True)
            await self._require_topic(db, topic_id)
            progress = await repository.read_topic_progress(db, account_id, topic_id)
            current = progress.xp_earned if progress else 0
            new_xp = level_shift_xp(current, step)
            topic_fields = await self._override(db, account_id, topic_id, progress, new_xp)

        logger.info("topic_level_shifted", account_id=account_id, topic_id=topic_id, step=step, xp=new_xp)
        return self._topic_state(account_id, topic_id, topic_fields)

    async def _override(
        self,
        db: AsyncSession,
        account_id: int,
        topic_id: int,
        progress: TopicProgress | None,
        new_xp: int,
    ) -> dict[str, Any]:
        anchor = self.calendar_anchor()
        weekly_xp, missions = self._topic_week_counters(progress, anchor)
        topic_fields = {
            "xp_earned": new_xp,
            # weekly XP can never exceed the cumulative total
            "weekly_xp": min(weekly_xp, new_xp),
            "missions_this_week": missions,
            "week_start_date": anchor,
            "is_mastered": is_mastered(new_xp, self.settings.mastery_threshold_xp),
        }
        await repository.upsert_topic_progress(db, account_id, topic_id, topic_fields)
        await db.commit()
        return topic_fields

    # ------------------------------------------------------------------
    # Weekly rollover
    # ------------------------------------------------------------------

    async def evaluate_weekly_rollover(self, account_id: int) -> RolloverResult:
        """Judge last week (and refill passes) without a mission, e.g. on dashboard load."""
        _require_id(account_id, "account")
        log = logger.bind(account_id=account_id)

        async with self._locks.for_account(account_id), self._session_factory() as db:
            account = await self._load_account(db, account_id, for_update=True)
            previous_streak = account.current_streak
            today = self.clock.today()
            week = self._evaluate_week(account, today)

            fields: dict[str, Any] = {}
            if week.changed:
                fields = self._week_fields(account, week)
                if week.rolled_over:
                    await repository.reset_topic_weeks(db, account_id, week.anchor)
                await repository.upsert_account(db, account_id, fields)
                await db.commit()

            account_state = self._snapshot(account, fields)

        outcome = self._outcome(week, previous_streak)
        if outcome is not None:
            self._log_rollover(log, outcome)
            await self._publish_rollover(account_id, outcome)
        elif week.replenished:
            log.info("vacation_passes_replenished", passes=account_state.vacation_passes)

        return RolloverResult(
            account=account_state,
            rollover=outcome,
            replenished=week.replenished,
            holiday_label=self.calendar.holiday_label(week.anchor),
        )

    # ------------------------------------------------------------------
    # Badges
    # ------------------------------------------------------------------

    async def check_and_award_badges(self, account_id: int) -> list[str]:
        """Award every badge whose threshold the account has crossed. Returns new slugs only."""
        _require_id(account_id, "account")

        async with self._locks.for_account(account_id), self._session_factory() as db:
            account = await self._load_account(db, account_id, for_update=True)
            awarded = await award_crossed_badges(db, account)
            await db.commit()

        for badge in awarded:
            logger.info("badge_awarded", account_id=account_id, badge=badge.slug, trigger=badge.trigger_kind)
            await events.publish_event(self.redis, events.BADGE_CHANNEL, {
                "account_id": account_id,
                "badge_slug": badge.slug,
                "badge_name": badge.name,
                "emoji": badge.emoji,
            })
        return [badge.slug for badge in awarded]

    async def list_earned_badges(self, account_id: int) -> list[dict]:
        _require_id(account_id, "account")
        async with self._session_factory() as db:
            await self._load_account(db, account_id)
            rows = await repository.list_earned_badges(db, account_id)
        return [
            {"slug": badge.slug, "name": badge.name, "emoji": badge.emoji, "earned_at": earned.earned_at}
            for earned, badge in rows
        ]

    # ------------------------------------------------------------------
    # Reads and reset
    # ------------------------------------------------------------------

    async def get_account_state(self, account_id: int) -> AccountState:
        _require_id(account_id, "account")
        async with self._session_factory() as db:
            account = await self._load_account(db, account_id)
            return AccountState.model_validate(account)

    async def get_topic_states(self, account_id: int) -> list[TopicState]:
        _require_id(account_id, "account")
        async with self._session_factory() as db:
            await self._load_account(db, account_id)
            rows = await repository.list_topic_progress(db, account_id)

        anchor = self.calendar_anchor()
        states = []
        for row in rows:
            weekly_xp, missions = self._topic_week_counters(row, anchor)
            states.append(self._topic_state(account_id, row.topic_id, {
                "xp_earned": row.xp_earned,
                "weekly_xp": weekly_xp,
                "missions_this_week": missions,
                "week_start_date": row.week_start_date,
                "is_mastered": row.is_mastered,
            }))
        return states

    async def reset_account(self, account_id: int) -> AccountState:
        """Zero XP and streak fields and drop topic progress. Identity and earned badges stay."""
        _require_id(account_id, "account")

        async with self._locks.for_account(account_id), self._session_factory() as db:
            account = await self._load_account(db, account_id, for_update=True)
            fields = {
                "total_xp": 0,
                "current_streak": 0,
                "weekly_xp_earned": 0,
                "weekly_xp_goal": self.goals.goal_for_streak(0),
                "missions_this_week": 0,
                "week_start_date": None,
                "daily_streak": 0,
                "missions_today": 0,
                "last_mission_date": None,
                "vacation_passes": 0,
                "last_term_replenish_date": None,
            }
            removed = await repository.delete_topic_progress(db, account_id)
            await repository.upsert_account(db, account_id, fields)
            await db.commit()
            state = self._snapshot(account, fields)

        logger.info("account_reset", account_id=account_id, topics_removed=removed)
        return state

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def calendar_anchor(self) -> date:
        """Monday of the current home-timezone week."""
        return week_anchor(self.clock.today())

    async def _load_account(self, db: AsyncSession, account_id: int, for_update: bool = False) -> Account:
        account = await repository.read_account(db, account_id, for_update=for_update)
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    async def _require_topic(self, db: AsyncSession, topic_id: int) -> None:
        if await repository.read_topic(db, topic_id) is None:
            raise NotFoundError("topic", topic_id)

    def _evaluate_week(self, account: Account, today: date) -> WeekEvaluation:
        state = StreakState(
            current_streak=account.current_streak,
            weekly_xp_earned=account.weekly_xp_earned,
            week_start_date=account.week_start_date,
            vacation_passes=account.vacation_passes,
            last_term_replenish_date=account.last_term_replenish_date,
        )
        return evaluate_week(
            state,
            today,
            self.calendar,
            self.goals,
            self.settings.vacation_pass_replenish_count,
        )

    @staticmethod
    def _week_fields(account: Account, week: WeekEvaluation) -> dict[str, Any]:
        new_week = week.rolled_over or week.initialised
        return {
            "current_streak": week.state.current_streak,
            "weekly_xp_earned": week.state.weekly_xp_earned,
            "weekly_xp_goal": week.goal,
            "missions_this_week": 0 if new_week else account.missions_this_week,
            "week_start_date": week.state.week_start_date,
            "vacation_passes": week.state.vacation_passes,
            "last_term_replenish_date": week.state.last_term_replenish_date,
        }

    @staticmethod
    def _topic_week_counters(progress: TopicProgress | None, anchor: date) -> tuple[int, int]:
        """Weekly XP and mission count of a topic row as seen from the ``anchor`` week."""
        if progress is None or progress.week_start_date != anchor:
            return 0, 0
        return progress.weekly_xp, progress.missions_this_week

    def _topic_after_xp(self, progress: TopicProgress | None, anchor: date, xp_delta: int) -> dict[str, Any]:
        weekly_xp, missions = self._topic_week_counters(progress, anchor)
        xp_earned = (progress.xp_earned if progress else 0) + xp_delta
        return {
            "xp_earned": xp_earned,
            "weekly_xp": weekly_xp + xp_delta,
            "missions_this_week": missions + 1,
            "week_start_date": anchor,
            "is_mastered": is_mastered(xp_earned, self.settings.mastery_threshold_xp),
        }

    @staticmethod
    def _snapshot(account: Account, fields: dict[str, Any]) -> AccountState:
        return AccountState.model_validate(account).model_copy(update=fields)

    @staticmethod
    def _topic_state(account_id: int, topic_id: int, fields: dict[str, Any]) -> TopicState:
        xp = fields["xp_earned"]
        return TopicState(
            account_id=account_id,
            topic_id=topic_id,
            xp_earned=xp,
            weekly_xp=fields["weekly_xp"],
            missions_this_week=fields["missions_this_week"],
            week_start_date=fields["week_start_date"],
            is_mastered=fields["is_mastered"],
            tier=tier_for(xp).name,
            progress=progress_within_tier(xp),
        )

    @staticmethod
    def _outcome(week: WeekEvaluation, previous_streak: int) -> RolloverOutcome | None:
        result = week.transition
        if result is None:
            return None
        return RolloverOutcome(
            previous_week_start=week.previous_anchor,
            previous_streak=previous_streak,
            new_streak=result.new_streak,
            new_goal=result.new_goal,
            vacation_passes=result.vacation_passes,
            pass_consumed=result.pass_consumed,
            streak_reset=result.streak_reset,
            holiday_protected=result.holiday_protected,
            replenished=result.replenished,
            message=rollover_message(result),
        )

    @staticmethod
    def _log_rollover(log: Any, outcome: RolloverOutcome) -> None:
        log.info(
            "weekly_rollover",
            previous_week_start=outcome.previous_week_start.isoformat(),
            previous_streak=outcome.previous_streak,
            new_streak=outcome.new_streak,
            new_goal=outcome.new_goal,
            vacation_passes=outcome.vacation_passes,
            pass_consumed=outcome.pass_consumed,
            streak_reset=outcome.streak_reset,
            holiday_protected=outcome.holiday_protected,
        )

    async def _publish_rollover(self, account_id: int, outcome: RolloverOutcome) -> None:
        if outcome.streak_reset:
            event = "streak_reset"
        elif outcome.pass_consumed:
            event = "pass_consumed"
        elif outcome.holiday_protected:
            event = "holiday_protected"
        else:
            event = "streak_extended"
        await events.publish_event(self.redis, events.STREAK_CHANNEL, {
            "account_id": account_id,
            "event": event,
            "streak_length": outcome.new_streak,
            "previous_streak": outcome.previous_streak,
            "weekly_goal": outcome.new_goal,
            "vacation_passes": outcome.vacation_passes,
        })


def build_ledger(redis: object = None) -> ProgressionLedger:
    """Ledger wired to the process-wide database, settings and calendar."""
    from dojoxp.database import get_session_factory
    from dojoxp.redis_client import get_redis

    if redis is None:
        redis = get_redis()
    return ProgressionLedger(get_session_factory(), settings=get_settings(), redis=redis)
