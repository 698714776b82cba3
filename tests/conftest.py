"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date, datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dojoxp.config import Settings
from dojoxp.database import close_db, get_engine, get_session_factory, init_db
from dojoxp.db.base import Base
from dojoxp.db.models import Account, Topic
from dojoxp.progression.calendar import CalendarPolicy, SchoolCalendar
from dojoxp.progression.calendar_data import DEFAULT_CALENDAR
from dojoxp.progression.clock import ClockAdapter
from dojoxp.progression.ledger import ProgressionLedger
from dojoxp.progression.seed import seed_badges


def sydney_midday(d: date) -> datetime:
    """01:00 UTC is 11:00 or 12:00 in Sydney on the same civil date."""
    return datetime(d.year, d.month, d.day, 1, 0, 0, tzinfo=timezone.utc)


def clock_on(d: date) -> ClockAdapter:
    return ClockAdapter(fixed_instant=sydney_midday(d))


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def calendar_policy() -> CalendarPolicy:
    return CalendarPolicy(SchoolCalendar.model_validate(DEFAULT_CALENDAR))


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite database file per test, schema built from the ORM metadata."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'progression.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A direct session for arranging rows and asserting on them."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(session_factory, db_session: AsyncSession) -> dict:
    """One explorer account, one champion account, three topics and the default badges."""
    explorer = Account(display_name="Mia", subscription_tier="explorer")
    champion = Account(display_name="Noah", subscription_tier="champion")
    topics = [
        Topic(subject_slug="maths", slug="fractions", name="Fractions"),
        Topic(subject_slug="maths", slug="geometry", name="Geometry"),
        Topic(subject_slug="english", slug="vocabulary", name="Vocabulary Building"),
    ]
    db_session.add_all([explorer, champion, *topics])
    await db_session.commit()
    await seed_badges(db_session)

    return {
        "account_id": explorer.id,
        "champion_id": champion.id,
        "topic_ids": [t.id for t in topics],
    }


@pytest.fixture
def ledger(session_factory, settings, calendar_policy) -> ProgressionLedger:
    """Ledger pinned to Monday 2 March 2026 (term time, not a holiday)."""
    return ProgressionLedger(
        session_factory,
        clock=clock_on(date(2026, 3, 2)),
        calendar=calendar_policy,
        settings=settings,
    )
