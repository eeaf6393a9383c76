"""
Unit Tests - Synthetic Data Generator
"""
from datetime import date

from src.core.tiers import Tier
from src.data.generators import DataGenerator
from src.ingestion.hot_writer import HotTierWriter, LoadStatus
from tests.factories import count_rows

DAY = date(2025, 11, 15)


class TestDataGenerator:
    """Tests for DataGenerator"""

    def test_same_seed_same_rows(self):
        first = DataGenerator(seed=7, orders_per_day=5).generate(["S1"], DAY, DAY)
        second = DataGenerator(seed=7, orders_per_day=5).generate(["S1"], DAY, DAY)
        assert first == second
        assert len(first["summary_sales"]) == 1

    async def test_seed_upserts_through_writer(self, databases):
        generator = DataGenerator(seed=3, orders_per_day=4)
        results = await generator.seed(HotTierWriter(), ["S1", "S2"], DAY, DAY, datasets=["detail_orders", "waste"])

        assert sorted(results) == ["detail_orders", "waste"]
        assert all(r.status in (LoadStatus.COMPLETED, LoadStatus.EMPTY) for r in results.values())
        assert await count_rows(Tier.HOT, "detail_orders") == results["detail_orders"].rows_loaded
        assert await count_rows(Tier.HOT, "order_line") == 0
