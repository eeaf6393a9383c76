"""
Unit Tests - Consistency Auditor
"""
from datetime import date, timedelta

import pytest

from src.aggregation.engine import AggregationEngine
from src.core.tiers import Tier
from src.quality.auditor import ConsistencyAuditor
from tests.conftest import CUTOFF
from tests.factories import line_row, load_rows, order_row

DAY = date(2025, 11, 15)


@pytest.fixture
def auditor(router) -> ConsistencyAuditor:
    return ConsistencyAuditor(router, tolerance=0.01, expected_stores=[])


async def _summarize(router, store_id: str, day: date) -> None:
    result = await AggregationEngine(router, max_concurrency=1).notify_raw_data_available(store_id, day)
    assert result.ok


class TestDateAudit:
    """Tests for single-date audits"""

    async def test_consistent_date_passes(self, databases, router, auditor):
        await load_rows(Tier.HOT, "detail_orders", [
            order_row("S1", DAY, "o1", amount=10.0),
            order_row("S1", DAY, "o2", amount=25.5),
        ])
        await load_rows(Tier.HOT, "order_line", [line_row("S1", DAY, "o1", "100001")])
        await _summarize(router, "S1", DAY)

        report = await auditor.validate_date(DAY)

        assert report.passed, report.issues
        assert report.dates_checked == 1
        assert report.checks["hot_connection"] == "healthy"
        assert report.checks[f"detail_orders:{DAY.isoformat()}"] == 2
        assert f"No waste rows for {DAY.isoformat()}" in report.warnings

    async def test_sales_mismatch_is_an_issue(self, databases, router, auditor):
        await load_rows(Tier.HOT, "detail_orders", [order_row("S1", DAY, "o1", amount=10.0)])
        await _summarize(router, "S1", DAY)
        # Late row not yet rolled up
        await load_rows(Tier.HOT, "detail_orders", [order_row("S1", DAY, "o2", amount=5.0)])

        report = await auditor.validate_date(DAY)

        assert not report.passed
        assert any(i.startswith(f"Sales mismatch for S1 on {DAY.isoformat()}") for i in report.issues)

    async def test_difference_within_tolerance_passes(self, databases, router):
        await load_rows(Tier.HOT, "detail_orders", [order_row("S1", DAY, "o1", amount=10.0)])
        await _summarize(router, "S1", DAY)
        await load_rows(Tier.HOT, "detail_orders", [order_row("S1", DAY, "o1", amount=10.01)])

        report = await ConsistencyAuditor(router, tolerance=0.05, expected_stores=[]).validate_date(DAY)
        assert report.passed, report.issues

    async def test_raw_without_summary_is_an_issue(self, databases, auditor):
        await load_rows(Tier.HOT, "detail_orders", [order_row("S2", DAY, "o1")])

        report = await auditor.validate_date(DAY)

        assert f"Store S2 has raw data but no day summary for {DAY.isoformat()}" in report.issues

    async def test_missing_expected_store(self, databases, router):
        await load_rows(Tier.HOT, "detail_orders", [order_row("S1", DAY, "o1")])
        await _summarize(router, "S1", DAY)
        auditor = ConsistencyAuditor(router, expected_stores=["S1", "S2"])

        report = await auditor.validate_date(DAY)

        assert report.issues == [f"Expected store S2 has no orders for {DAY.isoformat()}"]

    async def test_orphan_order_lines_are_warnings(self, databases, router, auditor):
        await load_rows(Tier.HOT, "detail_orders", [order_row("S1", DAY, "o1")])
        await load_rows(Tier.HOT, "order_line", [line_row("S1", DAY, "missing", "100001")])
        await _summarize(router, "S1", DAY)

        report = await auditor.validate_date(DAY)

        assert report.passed
        assert any("order_line" in w and "no matching" in w for w in report.warnings)

    async def test_hot_rows_past_cutoff_are_reported(self, databases, router, auditor):
        old_day = CUTOFF - timedelta(days=1)
        row = order_row("S1", old_day, "o1")
        await load_rows(Tier.ARCHIVE, "detail_orders", [row])
        await load_rows(Tier.HOT, "detail_orders", [row])
        await _summarize(router, "S1", old_day)

        report = await auditor.validate_date(old_day)

        assert report.passed
        assert any("awaiting archival (1 already in archive)" in w for w in report.warnings)


class TestWindowAudits:
    """Tests for recent and full audits"""

    async def test_recent_days_before_as_of(self, databases, auditor, classifier):
        report = await auditor.validate_recent(3)

        assert report.dates_checked == 3
        yesterday = (classifier.today - timedelta(days=1)).isoformat()
        assert f"No detail_orders rows for {yesterday}" in report.warnings
        assert f"detail_orders:{classifier.today.isoformat()}" not in report.checks

    async def test_full_covers_both_tiers(self, databases, router, auditor):
        old_day = CUTOFF - timedelta(days=10)
        await load_rows(Tier.ARCHIVE, "detail_orders", [order_row("S1", old_day, "a")])
        await load_rows(Tier.HOT, "detail_orders", [order_row("S1", DAY, "b")])
        await _summarize(router, "S1", old_day)
        await _summarize(router, "S1", DAY)

        report = await auditor.validate_full()

        assert report.passed, report.issues
        assert report.dates_checked == 2
        assert report.checks["detail_orders_total_rows"] == 2

    async def test_unreachable_tier(self, auditor):
        # No databases initialised
        report = await auditor.validate_date(DAY)

        assert not report.passed
        assert report.dates_checked == 0
        assert any("tier unreachable" in i for i in report.issues)
