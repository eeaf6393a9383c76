"""
Unit Tests - Rollup Levels and Periods
"""
from datetime import date

import pytest

from src.aggregation.levels import (
    PIPELINE_ORDER,
    SOURCE_LEVEL,
    SummaryLevel,
    hour_key,
    optimal_level,
    parse_period_key,
    period_for,
    periods_between,
    prior_period,
    resolve_levels,
    same_period_prior_year,
)


class TestPeriods:
    """Tests for period keys and bounds"""

    def test_hour_key(self):
        assert hour_key(date(2025, 11, 15), 9) == "2025-11-15T09"

    def test_day(self):
        period = period_for(SummaryLevel.DAY, date(2025, 11, 15))
        assert period.key == "2025-11-15"
        assert period.start == period.end == date(2025, 11, 15)

    def test_iso_week_starts_monday(self):
        period = period_for(SummaryLevel.WEEK, date(2025, 11, 15))  # Saturday
        assert period.key == "2025-W46"
        assert period.start == date(2025, 11, 10)
        assert period.end == date(2025, 11, 16)
        assert period.days == 7

    def test_iso_week_across_year_boundary(self):
        period = period_for(SummaryLevel.WEEK, date(2024, 12, 31))
        assert period.key == "2025-W01"
        assert period.start == date(2024, 12, 30)

    def test_month(self):
        period = period_for(SummaryLevel.MONTH, date(2024, 2, 10))
        assert period.key == "2024-02"
        assert period.end == date(2024, 2, 29)

    def test_quarter(self):
        period = period_for(SummaryLevel.QUARTER, date(2025, 11, 15))
        assert period.key == "2025-Q4"
        assert period.start == date(2025, 10, 1)
        assert period.end == date(2025, 12, 31)

    def test_year(self):
        period = period_for(SummaryLevel.YEAR, date(2025, 11, 15))
        assert period.key == "2025"
        assert period.contains(date(2025, 1, 1))
        assert not period.contains(date(2026, 1, 1))

    @pytest.mark.parametrize("level,key", [
        (SummaryLevel.DAY, "2025-11-15"),
        (SummaryLevel.WEEK, "2025-W46"),
        (SummaryLevel.MONTH, "2025-11"),
        (SummaryLevel.QUARTER, "2025-Q4"),
        (SummaryLevel.YEAR, "2025"),
    ])
    def test_parse_period_key(self, level, key):
        assert parse_period_key(level, key).key == key

    def test_parse_invalid_key(self):
        with pytest.raises(ValueError):
            parse_period_key(SummaryLevel.MONTH, "2025-13")

    def test_periods_between(self):
        keys = [p.key for p in periods_between(SummaryLevel.MONTH, date(2025, 8, 28), date(2025, 10, 2))]
        assert keys == ["2025-08", "2025-09", "2025-10"]

    def test_prior_period(self):
        assert prior_period(period_for(SummaryLevel.WEEK, date(2025, 11, 15))).key == "2025-W45"
        assert prior_period(period_for(SummaryLevel.QUARTER, date(2025, 1, 15))).key == "2024-Q4"

    def test_same_period_prior_year(self):
        assert same_period_prior_year(period_for(SummaryLevel.MONTH, date(2025, 11, 15))).key == "2024-11"
        assert same_period_prior_year(period_for(SummaryLevel.QUARTER, date(2025, 11, 15))).key == "2024-Q4"
        assert same_period_prior_year(period_for(SummaryLevel.WEEK, date(2025, 11, 15))) is None


class TestLevels:
    """Tests for level ordering and selection"""

    def test_every_source_runs_before_its_level(self):
        for level, source in SOURCE_LEVEL.items():
            assert PIPELINE_ORDER.index(source) < PIPELINE_ORDER.index(level)

    def test_resolve_all(self):
        assert resolve_levels("all") == PIPELINE_ORDER

    def test_resolve_single(self):
        assert resolve_levels("month") == [SummaryLevel.MONTH]

    def test_resolve_unknown(self):
        with pytest.raises(ValueError):
            resolve_levels("decade")

    @pytest.mark.parametrize("days,level", [
        (0, SummaryLevel.HOUR),
        (6, SummaryLevel.DAY),
        (20, SummaryLevel.WEEK),
        (60, SummaryLevel.MONTH),
        (200, SummaryLevel.QUARTER),
        (400, SummaryLevel.YEAR),
    ])
    def test_optimal_level(self, days, level):
        start = date(2025, 1, 1)
        assert optimal_level(start, date.fromordinal(start.toordinal() + days)) == level
