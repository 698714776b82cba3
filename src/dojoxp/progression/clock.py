"""Home-timezone civil dates.

The product runs on Sydney time: UTC+10 (AEST) for most of the year and
UTC+11 (AEDT) from the first Sunday of October 02:00 local standard time
until the first Sunday of April 03:00 local daylight time. Both transitions
fall on the preceding Saturday at 16:00 UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from dojoxp.config import Settings

# A calendar date with no time-of-day, read in the home timezone.
CivilDate = date


def first_sunday(year: int, month: int) -> date:
    """First Sunday of the given month."""
    first = date(year, month, 1)
    return first + timedelta(days=(6 - first.weekday()) % 7)


@dataclass(frozen=True)
class SeasonalOffsetRule:
    """Fixed standard offset, a different fixed offset inside a seasonal window.

    The window opens on the first Sunday of ``start_month`` at
    ``start_local_hour`` (standard time) and closes on the first Sunday of
    ``end_month`` at ``end_local_hour`` (daylight time). The window wraps the
    new year when ``start_month > end_month``.
    """

    standard_hours: int = 10
    daylight_hours: int = 11
    start_month: int = 10
    start_local_hour: int = 2
    end_month: int = 4
    end_local_hour: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> SeasonalOffsetRule:
        return cls(
            standard_hours=settings.home_standard_offset_hours,
            daylight_hours=settings.home_daylight_offset_hours,
        )

    def daylight_starts(self, year: int) -> datetime:
        """UTC instant the daylight offset takes effect in ``year``."""
        local = datetime.combine(first_sunday(year, self.start_month), time(self.start_local_hour))
        return (local - timedelta(hours=self.standard_hours)).replace(tzinfo=timezone.utc)

    def daylight_ends(self, year: int) -> datetime:
        """UTC instant the standard offset resumes in ``year``."""
        local = datetime.combine(first_sunday(year, self.end_month), time(self.end_local_hour))
        return (local - timedelta(hours=self.daylight_hours)).replace(tzinfo=timezone.utc)

    def is_daylight(self, instant: datetime) -> bool:
        instant = _as_utc(instant)
        # Transitions are a few hours either side of midnight UTC on known
        # dates, so the UTC year is the right one to build them from.
        year = instant.year
        starts = self.daylight_starts(year)
        ends = self.daylight_ends(year)
        if starts > ends:
            # Southern hemisphere: daylight spans the new year
            return instant >= starts or instant < ends
        return starts <= instant < ends

    def utc_offset(self, instant: datetime) -> timedelta:
        hours = self.daylight_hours if self.is_daylight(instant) else self.standard_hours
        return timedelta(hours=hours)

    def to_civil_date(self, instant: datetime) -> CivilDate:
        """Civil date in the home timezone at ``instant``."""
        instant = _as_utc(instant)
        return (instant + self.utc_offset(instant)).date()


def _as_utc(instant: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


class ClockAdapter:
    """Resolves "now" to a home-timezone civil date, independent of the host timezone.

    Pass ``fixed_instant`` to pin the reference instant (tests, replays).
    """

    def __init__(self, rule: SeasonalOffsetRule | None = None, fixed_instant: datetime | None = None) -> None:
        self.rule = rule or SeasonalOffsetRule()
        self.fixed_instant = _as_utc(fixed_instant) if fixed_instant is not None else None

    def now(self) -> datetime:
        if self.fixed_instant is not None:
            return self.fixed_instant
        return datetime.now(timezone.utc)

    def today(self, at: datetime | None = None) -> CivilDate:
        return self.rule.to_civil_date(at if at is not None else self.now())

    def pinned(self, instant: datetime) -> ClockAdapter:
        """A copy of this clock frozen at ``instant``."""
        return ClockAdapter(self.rule, instant)
