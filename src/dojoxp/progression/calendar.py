"""Week/day boundaries, school holidays and term windows.

Everything here works on civil dates only. Weeks run Monday to Sunday and
are identified by their Monday (the week anchor).
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, model_validator

from dojoxp.config import Settings, get_settings
from dojoxp.progression.calendar_data import DEFAULT_CALENDAR

logger = logging.getLogger(__name__)


# --- Boundary arithmetic ---


def week_anchor(d: date) -> date:
    """Monday of the week containing ``d``."""
    return d - timedelta(days=d.weekday())


def is_new_period(last_anchor: date | None, current_anchor: date) -> bool:
    """True if nothing is stored yet or the stored anchor is not the current one."""
    return last_anchor is None or last_anchor != current_anchor


def is_new_day(last_date: date | None, today: date) -> bool:
    return last_date is None or last_date != today


def was_yesterday(last_date: date | None, today: date) -> bool:
    return last_date is not None and last_date == today - timedelta(days=1)


# --- Calendar tables ---


class DateRange(BaseModel):
    label: str
    start: date
    end: date

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _ordered(self) -> DateRange:
        if self.start > self.end:
            msg = f"{self.label}: start {self.start} is after end {self.end}"
            raise ValueError(msg)
        return self

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


class TermWindow(DateRange):
    """An academic term. Its start date is the pass-replenishment trigger."""


class HolidayPeriod(DateRange):
    """School holidays; weeks anchored inside one are streak-protected."""


class SchoolCalendar(BaseModel):
    terms: list[TermWindow]
    holidays: list[HolidayPeriod] = []

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _terms_in_order(self) -> SchoolCalendar:
        starts = [t.start for t in self.terms]
        if starts != sorted(starts):
            msg = "terms must be listed in start-date order"
            raise ValueError(msg)
        return self


class CalendarPolicy:
    """Read-only lookups over one school calendar."""

    def __init__(self, calendar: SchoolCalendar) -> None:
        self.calendar = calendar

    def is_holiday_week(self, anchor: date) -> bool:
        return self.holiday_for(anchor) is not None

    def holiday_for(self, anchor: date) -> HolidayPeriod | None:
        for period in self.calendar.holidays:
            if period.contains(anchor):
                return period
        return None

    def holiday_label(self, anchor: date) -> str | None:
        period = self.holiday_for(anchor)
        return period.label if period else None

    def term_containing(self, d: date) -> TermWindow | None:
        for term in self.calendar.terms:
            if term.contains(d):
                return term
        return None

    def last_covered_day(self) -> date | None:
        """Latest day any term or holiday in the calendar reaches."""
        ends = [r.end for r in (*self.calendar.terms, *self.calendar.holidays)]
        return max(ends, default=None)

    def covers(self, d: date) -> bool:
        last = self.last_covered_day()
        return last is not None and d <= last

    def term_replenishment_due(self, last_replenish: date | None, today: date) -> date | None:
        """Start of the latest term that began on or before ``today`` and after ``last_replenish``.

        Only the latest qualifying start is returned: skipping several terms
        still yields a single replenishment.
        """
        due: date | None = None
        for term in self.calendar.terms:
            if term.start > today:
                break
            if last_replenish is None or term.start > last_replenish:
                due = term.start
        return due


def load_school_calendar(settings: Settings) -> SchoolCalendar:
    """Calendar from ``school_calendar_path`` if set, else the built-in tables."""
    if settings.school_calendar_path:
        path = Path(settings.school_calendar_path)
        logger.info("Loading school calendar from %s", path)
        return SchoolCalendar.model_validate_json(path.read_text(encoding="utf-8"))
    return SchoolCalendar.model_validate(DEFAULT_CALENDAR)


@lru_cache
def get_calendar_policy() -> CalendarPolicy:
    """Process-wide calendar policy, loaded once."""
    return CalendarPolicy(load_school_calendar(get_settings()))
