"""
Rollup levels and period arithmetic.

Period keys encode the start of the period:

    hour     2025-11-15T14
    day      2025-11-15
    week     2025-W46      (ISO week, Monday start)
    month    2025-11
    quarter  2025-Q4
    year     2025
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterator, List, Optional


class SummaryLevel(str, Enum):
    """Rollup granularity, finest first"""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


PIPELINE_ORDER: List[SummaryLevel] = [
    SummaryLevel.HOUR,
    SummaryLevel.DAY,
    SummaryLevel.WEEK,
    SummaryLevel.MONTH,
    SummaryLevel.QUARTER,
    SummaryLevel.YEAR,
]

# Level each summary is summed from. Hour reads raw rows. ISO weeks
# straddle month boundaries, so months sum their days.
SOURCE_LEVEL = {
    SummaryLevel.DAY: SummaryLevel.HOUR,
    SummaryLevel.WEEK: SummaryLevel.DAY,
    SummaryLevel.MONTH: SummaryLevel.DAY,
    SummaryLevel.QUARTER: SummaryLevel.MONTH,
    SummaryLevel.YEAR: SummaryLevel.QUARTER,
}

# Levels that carry vs-prior-period and year-over-year comparisons
PRIOR_PERIOD_LEVELS = {SummaryLevel.WEEK, SummaryLevel.MONTH, SummaryLevel.QUARTER, SummaryLevel.YEAR}
YOY_LEVELS = {SummaryLevel.MONTH, SummaryLevel.QUARTER}


@dataclass(frozen=True)
class Period:
    """
    One rollup period.

    At hour level the unit of work is a whole store-day, so an hour-level
    Period covers a single date and its key is the date; individual hour
    rows are keyed with ``hour_key``.
    """

    level: SummaryLevel
    key: str
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


def hour_key(d: date, hour: int) -> str:
    return f"{d.isoformat()}T{hour:02d}"


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def period_for(level: SummaryLevel, d: date) -> Period:
    """The period of ``level`` containing date ``d``."""
    level = SummaryLevel(level)

    if level in (SummaryLevel.HOUR, SummaryLevel.DAY):
        return Period(level, d.isoformat(), d, d)

    if level == SummaryLevel.WEEK:
        iso_year, iso_week, _ = d.isocalendar()
        start = d - timedelta(days=d.weekday())
        return Period(level, f"{iso_year}-W{iso_week:02d}", start, start + timedelta(days=6))

    if level == SummaryLevel.MONTH:
        return Period(level, f"{d.year}-{d.month:02d}", date(d.year, d.month, 1), _month_end(d.year, d.month))

    if level == SummaryLevel.QUARTER:
        quarter = (d.month - 1) // 3 + 1
        first_month = (quarter - 1) * 3 + 1
        return Period(
            level,
            f"{d.year}-Q{quarter}",
            date(d.year, first_month, 1),
            _month_end(d.year, first_month + 2),
        )

    return Period(level, f"{d.year}", date(d.year, 1, 1), date(d.year, 12, 31))


def periods_between(level: SummaryLevel, start: date, end: date) -> Iterator[Period]:
    """Every period of ``level`` overlapping [start, end], in order."""
    current = period_for(level, start)
    while current.start <= end:
        yield current
        current = period_for(level, current.end + timedelta(days=1))


def prior_period(period: Period) -> Period:
    return period_for(period.level, period.start - timedelta(days=1))


def same_period_prior_year(period: Period) -> Optional[Period]:
    """Month or quarter one year earlier; None for other levels."""
    if period.level not in YOY_LEVELS:
        return None
    return period_for(period.level, date(period.start.year - 1, period.start.month, 1))


def parse_period_key(level: SummaryLevel, key: str) -> Period:
    """Inverse of ``period_for(level, d).key``."""
    level = SummaryLevel(level)
    try:
        if level in (SummaryLevel.HOUR, SummaryLevel.DAY):
            return period_for(level, date.fromisoformat(key[:10]))
        if level == SummaryLevel.WEEK:
            year, week = key.split("-W")
            return period_for(level, date.fromisocalendar(int(year), int(week), 1))
        if level == SummaryLevel.MONTH:
            year, month = key.split("-")
            return period_for(level, date(int(year), int(month), 1))
        if level == SummaryLevel.QUARTER:
            year, quarter = key.split("-Q")
            return period_for(level, date(int(year), (int(quarter) - 1) * 3 + 1, 1))
        return period_for(level, date(int(key), 1, 1))
    except ValueError as e:
        raise ValueError(f"Invalid {level.value} period key {key!r}") from e


def optimal_level(start: date, end: date) -> SummaryLevel:
    """Coarsest level whose periods still resolve a range of this length."""
    span = (end - start).days
    if span <= 0:
        return SummaryLevel.HOUR
    if span <= 6:
        return SummaryLevel.DAY
    if span <= 27:
        return SummaryLevel.WEEK
    if span <= 89:
        return SummaryLevel.MONTH
    if span <= 364:
        return SummaryLevel.QUARTER
    return SummaryLevel.YEAR


def resolve_levels(level: str) -> List[SummaryLevel]:
    """'all' or a single level name, in pipeline order."""
    if level == "all":
        return list(PIPELINE_ORDER)
    return [SummaryLevel(level)]
