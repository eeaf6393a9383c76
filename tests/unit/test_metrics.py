"""
Unit Tests - Rollup Metrics
"""
from datetime import date

import pytest

from src.aggregation.metrics import (
    COMPARISON_METRICS,
    ITEM_ADDITIVE_METRICS,
    ITEM_DERIVED_METRICS,
    STORE_ADDITIVE_METRICS,
    STORE_DERIVED_METRICS,
    comparison_metrics,
    compute_hourly_item_metrics,
    compute_hourly_store_metrics,
    finalize_store_metrics,
    payment_class,
    product_flags,
    sum_item_metrics,
    sum_store_metrics,
)
from src.database.models import DayItemSummary, DayStoreSummary
from tests.factories import line_row, order_row

DAY = date(2025, 11, 15)
IDENTITY = {"id", "store_id", "period_key", "period_start", "period_end", "hour", "computed_at"}


class TestCatalogue:
    """Metric names line up with the summary relations"""

    def test_store_columns(self):
        columns = {c.name for c in DayStoreSummary.__table__.columns} - IDENTITY
        metrics = set(STORE_ADDITIVE_METRICS) | set(STORE_DERIVED_METRICS) | set(COMPARISON_METRICS)
        assert metrics == columns

    def test_item_columns(self):
        columns = {c.name for c in DayItemSummary.__table__.columns} - IDENTITY
        metrics = set(ITEM_ADDITIVE_METRICS) | set(ITEM_DERIVED_METRICS) | {"item_id", "menu_item_name", "menu_item_account"}
        assert metrics == columns


class TestClassification:
    """Tests for product and payment classification"""

    def test_pizza_account(self):
        flags = product_flags("Pizza", "Large Pepperoni", "100001")
        assert flags["is_pizza"] and not flags["is_hnr"]

    def test_hnr_counts_as_pizza(self):
        flags = product_flags("HNR", "Hot-N-Ready Classic", "100010")
        assert flags["is_pizza"] and flags["is_hnr"]

    def test_crazy_puffs_by_name_or_id(self):
        assert product_flags("Bread", "Pepperoni Puffs", "999")["is_crazy_puffs"]
        assert product_flags("Bread", "Something", "103057")["is_crazy_puffs"]
        assert not product_flags("Bread", "Crazy Bread", "100020")["is_crazy_puffs"]

    def test_missing_account(self):
        assert not any(product_flags(None, None, None).values())

    @pytest.mark.parametrize("text,expected", [
        ("Cash", "cash"),
        ("Credit Card, Cash", "cash"),
        ("Visa card", "credit_card"),
        ("Prepaid", "prepaid"),
        ("", None),
        (None, None),
    ])
    def test_payment_class(self, text, expected):
        assert payment_class(text) == expected


class TestHourlyMetrics:
    """Tests for hourly metrics from raw rows"""

    def test_orders_bucketed_by_hour(self):
        orders = [
            order_row("S1", DAY, "o1", hour=10, amount=10.0),
            order_row("S1", DAY, "o2", hour=10, amount=5.0, order_placed_method="Mobile", payment_methods="Cash"),
            order_row("S1", DAY, "o3", hour=14, amount=20.0, order_fulfilled_method="Delivery",
                      order_placed_method="DoorDash", delivery_tip=3.0, delivery_fee=2.99),
        ]
        hourly = compute_hourly_store_metrics(orders, [], [])

        assert sorted(hourly) == [10, 14]
        assert hourly[10]["total_sales"] == 15.0
        assert hourly[10]["total_orders"] == 2
        assert hourly[10]["website_orders"] == 1
        assert hourly[10]["mobile_sales"] == 5.0
        assert hourly[10]["digital_orders"] == 2
        assert hourly[10]["cash_sales"] == 5.0
        assert hourly[10]["credit_card_sales"] == 10.0
        assert hourly[10]["avg_order_value"] == 7.5
        assert hourly[14]["delivery_orders"] == 1
        assert hourly[14]["doordash_sales"] == 20.0
        assert hourly[14]["total_tips"] == 3.0
        assert hourly[14]["delivery_fees"] == 2.99

    def test_completed_excludes_refunded_and_cancelled(self):
        orders = [
            order_row("S1", DAY, "o1"),
            order_row("S1", DAY, "o2", refunded="Yes"),
            order_row("S1", DAY, "o3", transaction_type="Cancelled"),
        ]
        hour = compute_hourly_store_metrics(orders, [], [])[12]
        assert hour["total_orders"] == 3
        assert hour["refunded_orders"] == 1
        assert hour["cancelled_orders"] == 1
        assert hour["completed_orders"] == 1
        assert hour["refund_amount"] == 10.0

    def test_product_sales_from_lines(self):
        lines = [
            line_row("S1", DAY, "o1", "100001", amount=12.99),
            line_row("S1", DAY, "o1", "100030", amount=8.99, menu_item_account="Wings", menu_item_name="Wings"),
        ]
        hour = compute_hourly_store_metrics([], lines, [])[12]
        assert hour["pizza_sales"] == 12.99
        assert hour["pizza_quantity"] == 1
        assert hour["wings_sales"] == 8.99
        assert hour["total_orders"] == 0

    def test_rows_without_timestamp_are_excluded(self):
        orders = [order_row("S1", DAY, "o1"), order_row("S1", DAY, "o2", date_time_fulfilled=None)]
        hourly = compute_hourly_store_metrics(orders, [], [])
        assert hourly[12]["total_orders"] == 1

    def test_item_metrics(self):
        lines = [
            line_row("S1", DAY, "o1", "100001", amount=12.99),
            line_row("S1", DAY, "o2", "100001", amount=25.98, quantity=2, order_fulfilled_method="Delivery"),
        ]
        items = compute_hourly_item_metrics(lines)
        assert len(items) == 1
        item = items[0]
        assert item["hour"] == 12
        assert item["quantity_sold"] == 3
        assert item["gross_sales"] == 38.97
        assert item["delivery_quantity"] == 2
        assert item["avg_item_price"] == 12.99

    def test_no_rows(self):
        assert compute_hourly_store_metrics([], [], []) == {}
        assert compute_hourly_item_metrics([]) == []


class TestSummingAndComparisons:
    """Tests for child sums and derived metrics"""

    def test_sum_store_metrics(self):
        children = [
            finalize_store_metrics({**sum_store_metrics([]), "total_sales": 10.0, "total_orders": 1}),
            finalize_store_metrics({**sum_store_metrics([]), "total_sales": 20.0, "total_orders": 3}),
        ]
        totals = finalize_store_metrics(sum_store_metrics(children))
        assert totals["total_sales"] == 30.0
        assert totals["total_orders"] == 4
        assert totals["avg_order_value"] == 7.5

    def test_avg_daily_uses_operational_days(self):
        totals = finalize_store_metrics({**sum_store_metrics([]), "total_sales": 70.0, "total_orders": 7, "operational_days": 7})
        assert totals["avg_daily_sales"] == 10.0
        assert totals["avg_daily_orders"] == 1.0

    def test_zero_denominators(self):
        totals = finalize_store_metrics(sum_store_metrics([]))
        assert totals["avg_order_value"] == 0.0
        assert totals["portal_usage_rate"] == 0.0

    def test_sum_item_metrics(self):
        children = [
            {"item_id": "A", "menu_item_name": "Pizza", "quantity_sold": 2, "gross_sales": 20.0},
            {"item_id": "A", "menu_item_name": None, "quantity_sold": 1, "gross_sales": 10.0},
            {"item_id": "B", "quantity_sold": 1, "gross_sales": 3.0},
        ]
        items = sum_item_metrics(children)
        assert [i["item_id"] for i in items] == ["A", "B"]
        assert items[0]["quantity_sold"] == 3
        assert items[0]["menu_item_name"] == "Pizza"
        assert items[0]["avg_item_price"] == 10.0

    def test_growth(self):
        out = comparison_metrics(
            {"total_sales": 150.0, "total_orders": 12},
            {"total_sales": 100.0, "total_orders": 10},
            {"total_sales": 120.0, "total_orders": 9},
        )
        assert out["sales_vs_prior_period"] == 50.0
        assert out["sales_growth_percent"] == 50.0
        assert out["orders_growth_percent"] == 20.0
        assert out["sales_vs_prior_year"] == 30.0
        assert out["yoy_growth_percent"] == 25.0

    def test_missing_reference_is_null(self):
        out = comparison_metrics({"total_sales": 150.0, "total_orders": 12}, None)
        assert all(v is None for v in out.values())

    def test_zero_prior_total(self):
        out = comparison_metrics({"total_sales": 50.0, "total_orders": 5}, {"total_sales": 0, "total_orders": 0})
        assert out["sales_vs_prior_period"] == 50.0
        assert out["sales_growth_percent"] == 0.0
