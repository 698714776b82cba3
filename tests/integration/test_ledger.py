"""Progression ledger tests against a real (SQLite) database."""

import asyncio
import json
from datetime import date
from unittest.mock import MagicMock

import pytest
from sqlalchemy import update

from dojoxp.db.models import Account
from dojoxp.exceptions import InputError, NotFoundError, PolicyViolation
from dojoxp.progression import events, repository
from tests.conftest import clock_on


async def _set_account(db_session, account_id, **fields):
    await db_session.execute(update(Account).where(Account.id == account_id).values(**fields))
    await db_session.commit()


class FakeRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))


class BrokenRedis:
    async def publish(self, channel, message):
        raise ConnectionError("redis down")


class TestMissionCompletion:
    """Test XP, weekly and daily counters after a completed mission."""

    @pytest.mark.asyncio
    async def test_first_mission(self, ledger, seeded):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]

        result = await ledger.apply_mission_completion(account_id, topic_id, 40)

        assert result.topic.xp_earned == 40
        assert result.topic.weekly_xp == 40
        assert result.topic.missions_this_week == 1
        assert result.topic.is_mastered is False
        assert result.topic.tier == "Beginning"
        assert result.topic.progress == 80
        assert result.account.total_xp == 40
        assert result.account.weekly_xp_earned == 40
        assert result.account.missions_this_week == 1
        assert result.account.daily_streak == 1
        assert result.account.missions_today == 1
        assert result.account.last_mission_date == date(2026, 3, 2)
        assert result.account.week_start_date == date(2026, 3, 2)
        assert result.rollover is None
        assert result.mastered_now is False

    @pytest.mark.asyncio
    async def test_result_matches_stored_state(self, ledger, seeded):
        account_id = seeded["account_id"]
        result = await ledger.apply_mission_completion(account_id, seeded["topic_ids"][0], 40)

        stored = await ledger.get_account_state(account_id)
        assert stored == result.account

        topics = await ledger.get_topic_states(account_id)
        assert topics == [result.topic]

    @pytest.mark.asyncio
    async def test_first_activity_grants_term_passes(self, ledger, seeded):
        result = await ledger.apply_mission_completion(seeded["account_id"], seeded["topic_ids"][0], 10)
        assert result.account.vacation_passes == 2
        assert result.account.last_term_replenish_date == date(2026, 1, 28)

    @pytest.mark.asyncio
    async def test_accumulates_across_topics(self, ledger, seeded):
        account_id = seeded["account_id"]
        t1, t2, _ = seeded["topic_ids"]
        await ledger.apply_mission_completion(account_id, t1, 40)
        result = await ledger.apply_mission_completion(account_id, t2, 25)

        assert result.account.total_xp == 65
        assert result.account.weekly_xp_earned == 65
        assert result.account.missions_today == 2
        assert result.topic.xp_earned == 25

    @pytest.mark.asyncio
    async def test_crossing_mastery_threshold(self, ledger, seeded):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]
        first = await ledger.apply_mission_completion(account_id, topic_id, 480)
        assert first.mastered_now is False

        second = await ledger.apply_mission_completion(account_id, topic_id, 30)
        assert second.topic.xp_earned == 510
        assert second.topic.is_mastered is True
        assert second.topic.tier == "Mastering"
        assert second.mastered_now is True

        third = await ledger.apply_mission_completion(account_id, topic_id, 10)
        assert third.mastered_now is False

    @pytest.mark.asyncio
    async def test_zero_xp_mission_still_counts(self, ledger, seeded):
        result = await ledger.apply_mission_completion(seeded["account_id"], seeded["topic_ids"][0], 0)
        assert result.account.total_xp == 0
        assert result.account.missions_today == 1
        assert result.topic.missions_this_week == 1

    @pytest.mark.asyncio
    async def test_daily_chain_across_days(self, ledger, seeded):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]
        await ledger.apply_mission_completion(account_id, topic_id, 10)

        ledger.clock = clock_on(date(2026, 3, 3))
        result = await ledger.apply_mission_completion(account_id, topic_id, 10)
        assert result.account.daily_streak == 2
        assert result.account.missions_today == 1

        ledger.clock = clock_on(date(2026, 3, 6))
        result = await ledger.apply_mission_completion(account_id, topic_id, 10)
        assert result.account.daily_streak == 1


class TestInputValidation:
    """Invalid input is rejected before anything is written."""

    @pytest.mark.asyncio
    async def test_unknown_account(self, ledger, seeded):
        with pytest.raises(NotFoundError) as exc_info:
            await ledger.apply_mission_completion(99999, seeded["topic_ids"][0], 10)
        assert exc_info.value.kind == "account"

    @pytest.mark.asyncio
    async def test_unknown_topic_leaves_account_unchanged(self, ledger, seeded):
        account_id = seeded["account_id"]
        with pytest.raises(NotFoundError) as exc_info:
            await ledger.apply_mission_completion(account_id, 99999, 10)
        assert exc_info.value.kind == "topic"

        state = await ledger.get_account_state(account_id)
        assert state.total_xp == 0
        assert state.week_start_date is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("xp", [-1, 1.5, "10", True, None])
    async def test_bad_xp(self, ledger, seeded, xp):
        with pytest.raises(InputError):
            await ledger.apply_mission_completion(seeded["account_id"], seeded["topic_ids"][0], xp)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("account_id", [0, -3, "1", False])
    async def test_bad_account_id(self, ledger, seeded, account_id):
        with pytest.raises(InputError):
            await ledger.apply_mission_completion(account_id, seeded["topic_ids"][0], 10)

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back(self, ledger, seeded, monkeypatch):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]

        async def boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(repository, "upsert_topic_progress", boom)
        with pytest.raises(RuntimeError):
            await ledger.apply_mission_completion(account_id, topic_id, 40)

        state = await ledger.get_account_state(account_id)
        assert state.total_xp == 0
        assert state.missions_today == 0

        monkeypatch.undo()
        result = await ledger.apply_mission_completion(account_id, topic_id, 40)
        assert result.account.total_xp == 40


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_simultaneous_completions_both_land(self, ledger, seeded):
        account_id = seeded["champion_id"]
        topic_id = seeded["topic_ids"][0]

        await asyncio.gather(
            ledger.apply_mission_completion(account_id, topic_id, 30),
            ledger.apply_mission_completion(account_id, topic_id, 20),
        )

        state = await ledger.get_account_state(account_id)
        assert state.total_xp == 50
        assert state.weekly_xp_earned == 50
        assert state.missions_today == 2
        assert state.missions_this_week == 2

        (topic,) = await ledger.get_topic_states(account_id)
        assert topic.xp_earned == 50
        assert topic.missions_this_week == 2


class TestWeeklyRollover:
    """Test week boundaries crossed by missions and by explicit evaluation."""

    @pytest.mark.asyncio
    async def test_goal_met_extends_streak(self, ledger, seeded):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]
        await ledger.apply_mission_completion(account_id, topic_id, 600)

        ledger.clock = clock_on(date(2026, 3, 9))
        result = await ledger.apply_mission_completion(account_id, topic_id, 10)

        assert result.rollover is not None
        assert result.rollover.previous_week_start == date(2026, 3, 2)
        assert result.rollover.previous_streak == 0
        assert result.rollover.new_streak == 1
        assert result.rollover.new_goal == 600
        assert result.account.current_streak == 1
        assert result.account.weekly_xp_goal == 600
        assert result.account.weekly_xp_earned == 10
        assert result.account.missions_this_week == 1
        assert result.account.week_start_date == date(2026, 3, 9)
        assert result.topic.xp_earned == 610
        assert result.topic.weekly_xp == 10

    @pytest.mark.asyncio
    async def test_rollover_resets_other_topic_weeks(self, ledger, seeded):
        account_id = seeded["account_id"]
        t1, t2, _ = seeded["topic_ids"]
        await ledger.apply_mission_completion(account_id, t1, 100)

        ledger.clock = clock_on(date(2026, 3, 10))
        await ledger.apply_mission_completion(account_id, t2, 20)

        states = {s.topic_id: s for s in await ledger.get_topic_states(account_id)}
        assert states[t1].xp_earned == 100
        assert states[t1].weekly_xp == 0
        assert states[t1].missions_this_week == 0
        assert states[t2].weekly_xp == 20

    @pytest.mark.asyncio
    async def test_missed_goal_uses_pass(self, ledger, seeded):
        account_id = seeded["account_id"]
        await ledger.apply_mission_completion(account_id, seeded["topic_ids"][0], 40)

        ledger.clock = clock_on(date(2026, 3, 16))
        result = await ledger.evaluate_weekly_rollover(account_id)

        assert result.rollover.pass_consumed is True
        assert result.rollover.vacation_passes == 1
        assert "Vacation pass used" in result.rollover.message
        assert result.account.vacation_passes == 1
        assert result.account.weekly_xp_earned == 0
        assert result.account.week_start_date == date(2026, 3, 16)

        stored = await ledger.get_account_state(account_id)
        assert stored == result.account

    @pytest.mark.asyncio
    async def test_no_pass_resets_streak(self, ledger, seeded, db_session):
        account_id = seeded["account_id"]
        await _set_account(
            db_session,
            account_id,
            current_streak=4,
            weekly_xp_goal=900,
            weekly_xp_earned=120,
            week_start_date=date(2026, 3, 2),
            vacation_passes=0,
            last_term_replenish_date=date(2026, 1, 28),
        )

        ledger.clock = clock_on(date(2026, 3, 9))
        result = await ledger.evaluate_weekly_rollover(account_id)

        assert result.rollover.streak_reset is True
        assert result.rollover.previous_streak == 4
        assert result.account.current_streak == 0
        assert result.account.weekly_xp_goal == 500

    @pytest.mark.asyncio
    async def test_holiday_week_protects_streak(self, ledger, seeded, db_session):
        account_id = seeded["account_id"]
        await _set_account(
            db_session,
            account_id,
            current_streak=4,
            weekly_xp_goal=900,
            weekly_xp_earned=0,
            week_start_date=date(2026, 4, 6),
            vacation_passes=2,
            last_term_replenish_date=date(2026, 1, 28),
        )

        ledger.clock = clock_on(date(2026, 4, 13))
        result = await ledger.evaluate_weekly_rollover(account_id)

        assert result.rollover.holiday_protected is True
        assert result.account.current_streak == 4
        assert result.account.vacation_passes == 2
        assert result.holiday_label == "Autumn Holidays"

    @pytest.mark.asyncio
    async def test_term_replenishment_happens_once(self, ledger, seeded, db_session):
        account_id = seeded["account_id"]
        await _set_account(
            db_session,
            account_id,
            week_start_date=date(2026, 4, 20),
            vacation_passes=0,
            last_term_replenish_date=date(2026, 1, 28),
        )

        ledger.clock = clock_on(date(2026, 4, 22))
        first = await ledger.evaluate_weekly_rollover(account_id)
        assert first.rollover is None
        assert first.replenished is True
        assert first.account.vacation_passes == 2
        assert first.account.last_term_replenish_date == date(2026, 4, 22)

        second = await ledger.evaluate_weekly_rollover(account_id)
        assert second.replenished is False
        assert second.account.vacation_passes == 2

    @pytest.mark.asyncio
    async def test_evaluation_is_idempotent_within_week(self, ledger, seeded):
        account_id = seeded["account_id"]
        await ledger.apply_mission_completion(account_id, seeded["topic_ids"][0], 40)

        ledger.clock = clock_on(date(2026, 3, 9))
        first = await ledger.evaluate_weekly_rollover(account_id)
        second = await ledger.evaluate_weekly_rollover(account_id)

        assert first.rollover is not None
        assert second.rollover is None
        assert second.account == first.account

    @pytest.mark.asyncio
    async def test_unknown_account(self, ledger, seeded):
        with pytest.raises(NotFoundError):
            await ledger.evaluate_weekly_rollover(99999)


class TestMissionGate:
    @pytest.mark.asyncio
    async def test_explorer_capped_after_two(self, ledger, seeded):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]
        assert await ledger.ensure_can_start_mission(account_id) == 2

        await ledger.apply_mission_completion(account_id, topic_id, 10)
        assert await ledger.ensure_can_start_mission(account_id) == 1

        await ledger.apply_mission_completion(account_id, topic_id, 10)
        with pytest.raises(PolicyViolation) as exc_info:
            await ledger.ensure_can_start_mission(account_id)
        assert exc_info.value.code == "daily_mission_cap"

        ledger.clock = clock_on(date(2026, 3, 3))
        assert await ledger.ensure_can_start_mission(account_id) == 2

    @pytest.mark.asyncio
    async def test_champion_uncapped(self, ledger, seeded):
        account_id = seeded["champion_id"]
        for _ in range(3):
            await ledger.apply_mission_completion(account_id, seeded["topic_ids"][0], 10)
        assert await ledger.ensure_can_start_mission(account_id) is None


class TestLevelOverride:
    """Manual topic level changes touch only the topic row."""

    @pytest.mark.asyncio
    async def test_override_locks_account_row(self, ledger, seeded, monkeypatch):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]
        read_account = repository.read_account
        locked = []

        async def recording_read(db, acc_id, for_update=False):
            locked.append(for_update)
            return await read_account(db, acc_id, for_update=for_update)

        monkeypatch.setattr(repository, "read_account", recording_read)
        await ledger.override_topic_xp(account_id, topic_id, 120)
        await ledger.shift_topic_level(account_id, topic_id, 1)
        await ledger.check_and_award_badges(account_id)

        assert locked == [True, True, True]

    @pytest.mark.asyncio
    async def test_override_recomputes_mastery(self, ledger, seeded):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]
        await ledger.apply_mission_completion(account_id, topic_id, 40)

        topic = await ledger.override_topic_xp(account_id, topic_id, 520)
        assert topic.xp_earned == 520
        assert topic.is_mastered is True
        assert topic.weekly_xp == 40

        state = await ledger.get_account_state(account_id)
        assert state.total_xp == 40
        assert state.current_streak == 0

    @pytest.mark.asyncio
    async def test_override_down_clamps_weekly_xp(self, ledger, seeded):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]
        await ledger.apply_mission_completion(account_id, topic_id, 600)

        topic = await ledger.override_topic_xp(account_id, topic_id, 10)
        assert topic.xp_earned == 10
        assert topic.weekly_xp == 10
        assert topic.is_mastered is False

    @pytest.mark.asyncio
    async def test_override_creates_missing_row(self, ledger, seeded):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][1]
        topic = await ledger.override_topic_xp(account_id, topic_id, 150)
        assert topic.tier == "Consolidating"
        assert topic.weekly_xp == 0

    @pytest.mark.asyncio
    async def test_shift_level(self, ledger, seeded):
        account_id = seeded["account_id"]
        topic_id = seeded["topic_ids"][0]
        await ledger.apply_mission_completion(account_id, topic_id, 40)

        up = await ledger.shift_topic_level(account_id, topic_id, 1)
        assert up.xp_earned == 50
        assert up.tier == "Developing"

        down = await ledger.shift_topic_level(account_id, topic_id, -5)
        assert down.xp_earned == 0

    @pytest.mark.asyncio
    async def test_override_rejects_negative(self, ledger, seeded):
        with pytest.raises(InputError):
            await ledger.override_topic_xp(seeded["account_id"], seeded["topic_ids"][0], -1)

    @pytest.mark.asyncio
    async def test_override_unknown_topic(self, ledger, seeded):
        with pytest.raises(NotFoundError):
            await ledger.override_topic_xp(seeded["account_id"], 99999, 10)


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_clears_progress(self, ledger, seeded):
        account_id = seeded["account_id"]
        await ledger.apply_mission_completion(account_id, seeded["topic_ids"][0], 600)

        state = await ledger.reset_account(account_id)

        assert state.total_xp == 0
        assert state.current_streak == 0
        assert state.weekly_xp_goal == 500
        assert state.week_start_date is None
        assert state.last_mission_date is None
        assert await ledger.get_topic_states(account_id) == []
        assert await ledger.get_account_state(account_id) == state


class TestEvents:
    """Progress events are published after commit, best effort."""

    @pytest.mark.asyncio
    async def test_mission_event_published(self, ledger, seeded):
        redis = FakeRedis()
        ledger.redis = redis
        await ledger.apply_mission_completion(seeded["account_id"], seeded["topic_ids"][0], 40)

        channel, payload = redis.published[0]
        assert channel == events.PROGRESS_CHANNEL
        assert payload["event"] == "mission_completed"
        assert payload["total_xp"] == 40

    @pytest.mark.asyncio
    async def test_rollover_event_published(self, ledger, seeded):
        redis = FakeRedis()
        ledger.redis = redis
        account_id = seeded["account_id"]
        await ledger.apply_mission_completion(account_id, seeded["topic_ids"][0], 600)

        ledger.clock = clock_on(date(2026, 3, 9))
        await ledger.evaluate_weekly_rollover(account_id)

        streak_events = [p for c, p in redis.published if c == events.STREAK_CHANNEL]
        assert streak_events == [{
            "account_id": account_id,
            "event": "streak_extended",
            "streak_length": 1,
            "previous_streak": 0,
            "weekly_goal": 600,
            "vacation_passes": 2,
        }]

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_undo_progress(self, ledger, seeded):
        ledger.redis = BrokenRedis()
        result = await ledger.apply_mission_completion(seeded["account_id"], seeded["topic_ids"][0], 40)
        assert result.account.total_xp == 40
        assert (await ledger.get_account_state(seeded["account_id"])).total_xp == 40

    @pytest.mark.asyncio
    async def test_no_redis(self):
        assert await events.publish_event(None, events.PROGRESS_CHANNEL, {"x": 1}) is False


class TestWiring:
    @pytest.mark.asyncio
    async def test_build_ledger_uses_process_wiring(self, seeded):
        from dojoxp.progression.ledger import build_ledger

        redis = FakeRedis()
        built = build_ledger(redis=redis)
        assert built.redis is redis

        state = await built.get_account_state(seeded["account_id"])
        assert state.total_xp == 0

    @pytest.mark.asyncio
    async def test_warns_when_calendar_runs_out(self, session_factory, settings, calendar_policy, monkeypatch):
        from dojoxp.progression import ledger as ledger_module

        fake_logger = MagicMock()
        monkeypatch.setattr(ledger_module, "logger", fake_logger)

        ledger_module.ProgressionLedger(
            session_factory, clock=clock_on(date(2026, 12, 21)), calendar=calendar_policy, settings=settings
        )

        fake_logger.warning.assert_called_once()
        assert fake_logger.warning.call_args.args == ("school_calendar_exhausted",)

    @pytest.mark.asyncio
    async def test_no_warning_inside_calendar(self, session_factory, settings, calendar_policy, monkeypatch):
        from dojoxp.progression import ledger as ledger_module

        fake_logger = MagicMock()
        monkeypatch.setattr(ledger_module, "logger", fake_logger)

        ledger_module.ProgressionLedger(
            session_factory, clock=clock_on(date(2026, 10, 19)), calendar=calendar_policy, settings=settings
        )

        fake_logger.warning.assert_not_called()
