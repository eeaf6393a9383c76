"""
Unit Tests - Tiered Query Router
"""
from datetime import date, timedelta

import pytest

from src.core.exceptions import InvalidRangeError, UnknownDatasetError
from src.core.tiers import Tier
from src.routing.router import EARLIEST_BUSINESS_DATE
from tests.conftest import CUTOFF
from tests.factories import daily_orders, load_rows, order_row


class TestRouting:
    """Tests for sub-query planning"""

    def test_hot_only(self, router):
        spec = router.route("detail_orders", date(2025, 10, 1), date(2025, 10, 31))
        assert spec.tiers == [Tier.HOT]
        assert not spec.is_split

    def test_archive_only(self, router):
        spec = router.route("detail_orders", date(2025, 6, 1), date(2025, 6, 30))
        assert spec.tiers == [Tier.ARCHIVE]

    def test_range_ending_day_before_cutoff_is_archive_only(self, router):
        spec = router.route("order_line", date(2025, 8, 1), CUTOFF - timedelta(days=1))
        assert spec.tiers == [Tier.ARCHIVE]

    def test_range_starting_at_cutoff_is_hot_only(self, router):
        spec = router.route("order_line", CUTOFF, CUTOFF)
        assert spec.tiers == [Tier.HOT]

    def test_straddling_range_splits_at_cutoff(self, router):
        start, end = CUTOFF - timedelta(days=10), CUTOFF + timedelta(days=9)
        spec = router.route("detail_orders", start, end)

        assert spec.is_split
        archive, hot = spec.subqueries
        assert (archive.tier, archive.start, archive.end) == (Tier.ARCHIVE, start, CUTOFF - timedelta(days=1))
        assert (hot.tier, hot.start, hot.end) == (Tier.HOT, CUTOFF, end)

    def test_start_only_runs_to_as_of_date(self, router, classifier):
        spec = router.route("waste", start=date(2025, 8, 1))
        assert spec.end == classifier.today
        assert spec.is_split

    def test_end_only_starts_at_earliest_date(self, router):
        spec = router.route("waste", end=date(2025, 7, 1))
        assert spec.start == EARLIEST_BUSINESS_DATE
        assert spec.tiers == [Tier.ARCHIVE]

    def test_unbounded_reads_both_tiers(self, router):
        spec = router.route("waste")
        archive, hot = spec.subqueries
        assert archive.start is None and archive.end == CUTOFF - timedelta(days=1)
        assert hot.start == CUTOFF and hot.end is None

    def test_invalid_range(self, router):
        with pytest.raises(InvalidRangeError):
            router.route("detail_orders", date(2025, 10, 2), date(2025, 10, 1))

    def test_invalid_range_is_value_error(self, router):
        with pytest.raises(ValueError):
            router.route("detail_orders", date(2025, 10, 2), date(2025, 10, 1))

    def test_unknown_dataset(self, router):
        with pytest.raises(UnknownDatasetError):
            router.route("customers", date(2025, 10, 1), date(2025, 10, 2))


class TestExecution:
    """Tests for routed reads against both tiers"""

    async def test_straddling_fetch_combines_tiers(self, databases, router):
        before = daily_orders("S1", CUTOFF - timedelta(days=10), 10)
        after = daily_orders("S1", CUTOFF, 10)
        await load_rows(Tier.ARCHIVE, "detail_orders", before)
        await load_rows(Tier.HOT, "detail_orders", after)

        spec = router.route("detail_orders", CUTOFF - timedelta(days=10), CUTOFF + timedelta(days=9))
        rows = await router.fetch(spec, order_by_date=True)

        assert len(rows) == 20
        assert [r["business_date"] for r in rows] == sorted(r["business_date"] for r in before + after)
        assert await router.count(spec) == 20
        assert await router.sum(spec, "royalty_obligation") == 200.0

    async def test_each_natural_key_returned_once(self, databases, router):
        old_day = CUTOFF - timedelta(days=5)
        row = order_row("S1", old_day, "dup", amount=12.5)
        # Copied to archive but not yet removed from hot
        await load_rows(Tier.ARCHIVE, "detail_orders", [row])
        await load_rows(Tier.HOT, "detail_orders", [row])

        for start, end in [(old_day, old_day), (old_day, CUTOFF + timedelta(days=3)), (None, None)]:
            spec = router.route("detail_orders", start, end)
            rows = await router.fetch(spec)
            keys = [(r["store_id"], r["business_date"], r["order_id"], r["transaction_type"]) for r in rows]
            assert len(keys) == len(set(keys)) == 1

    async def test_archive_only_matches_straddling_pre_cutoff_part(self, databases, router):
        await load_rows(Tier.ARCHIVE, "detail_orders", daily_orders("S1", date(2025, 8, 20), 13))
        await load_rows(Tier.HOT, "detail_orders", daily_orders("S1", CUTOFF, 5))

        archive_only = await router.fetch(router.route("detail_orders", date(2025, 8, 20), CUTOFF - timedelta(days=1)))
        straddling = await router.fetch(router.route("detail_orders", date(2025, 8, 20), CUTOFF + timedelta(days=4)))
        pre_cutoff = [r for r in straddling if r["business_date"] < CUTOFF]

        def keys(rows):
            return sorted((r["business_date"], r["order_id"]) for r in rows)

        assert keys(archive_only) == keys(pre_cutoff)
        assert len(straddling) == 18

    async def test_filters(self, databases, router):
        await load_rows(Tier.HOT, "detail_orders", daily_orders("S1", date(2025, 10, 1), 3))
        await load_rows(Tier.HOT, "detail_orders", daily_orders("S2", date(2025, 10, 1), 3))
        await load_rows(Tier.HOT, "detail_orders", daily_orders("S3", date(2025, 10, 1), 3))
        spec = router.route("detail_orders", date(2025, 10, 1), date(2025, 10, 3))

        assert await router.count(spec, {"store_id": "S1"}) == 3
        assert await router.count(spec, {"store_id": ["S1", "S2"]}) == 6
        assert await router.distinct(spec, "store_id") == ["S1", "S2", "S3"]

    async def test_distinct_pairs_across_tiers(self, databases, router):
        await load_rows(Tier.ARCHIVE, "detail_orders", daily_orders("S1", CUTOFF - timedelta(days=1), 1, per_day=2))
        await load_rows(Tier.HOT, "detail_orders", daily_orders("S1", CUTOFF, 1, per_day=2))
        spec = router.route("detail_orders", CUTOFF - timedelta(days=1), CUTOFF)

        pairs = await router.distinct(spec, ["store_id", "business_date"])
        assert pairs == [("S1", CUTOFF - timedelta(days=1)), ("S1", CUTOFF)]

    async def test_empty_range(self, databases, router):
        spec = router.route("waste", date(2025, 10, 1), date(2025, 10, 2))
        assert await router.fetch(spec) == []
        assert await router.sum(spec, "item_cost") == 0.0
