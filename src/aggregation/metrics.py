"""
Rollup metric calculations.

Hour-level metrics are computed from raw rows with polars. Every level
above sums the additive metrics of its children and then recomputes the
derived ratios, so additive metrics at any level always equal the sum of
the level below.
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

import polars as pl
import structlog

logger = structlog.get_logger(__name__)


# =============================================================================
# METRIC CATALOGUE
# =============================================================================

STORE_MONEY_METRICS = [
    "total_sales", "gross_sales", "net_sales", "refund_amount",
    "phone_sales", "website_sales", "mobile_sales", "call_center_sales", "drive_thru_sales",
    "doordash_sales", "ubereats_sales", "grubhub_sales",
    "delivery_sales", "carryout_sales",
    "pizza_sales", "hnr_sales", "bread_sales", "wings_sales", "beverages_sales", "crazy_puffs_sales",
    "sales_tax", "delivery_fees", "delivery_tips", "store_tips", "total_tips",
    "cash_sales", "credit_card_sales", "prepaid_sales", "over_short",
    "total_waste_cost", "digital_sales",
]

STORE_COUNT_METRICS = [
    "total_orders", "completed_orders", "cancelled_orders", "modified_orders", "refunded_orders",
    "customer_count",
    "phone_orders", "website_orders", "mobile_orders", "call_center_orders", "drive_thru_orders",
    "doordash_orders", "ubereats_orders", "grubhub_orders",
    "delivery_orders", "carryout_orders",
    "pizza_quantity", "hnr_quantity", "bread_quantity", "wings_quantity", "beverages_quantity",
    "crazy_puffs_quantity",
    "portal_eligible_orders", "portal_used_orders", "portal_on_time_orders",
    "total_waste_items", "digital_orders", "operational_days",
]

STORE_ADDITIVE_METRICS = STORE_MONEY_METRICS + STORE_COUNT_METRICS

STORE_DERIVED_METRICS = [
    "avg_order_value", "avg_customers_per_order", "portal_usage_rate", "portal_on_time_rate",
    "digital_penetration", "avg_daily_sales", "avg_daily_orders",
]

COMPARISON_METRICS = [
    "sales_vs_prior_period", "sales_growth_percent",
    "orders_vs_prior_period", "orders_growth_percent",
    "sales_vs_prior_year", "yoy_growth_percent",
]

# Not derivable from hourly raw rows; set at day level and summed above it
DAY_SOURCED_METRICS = ("over_short", "operational_days")

ITEM_MONEY_METRICS = ["gross_sales", "net_sales"]
ITEM_COUNT_METRICS = [
    "quantity_sold", "delivery_quantity", "carryout_quantity", "modified_quantity", "refunded_quantity",
]
ITEM_ADDITIVE_METRICS = ITEM_MONEY_METRICS + ITEM_COUNT_METRICS
ITEM_DERIVED_METRICS = ["avg_item_price"]

# order_placed_method value -> metric prefix
CHANNELS = {
    "Phone": "phone",
    "Website": "website",
    "Mobile": "mobile",
    "SoundHoundAgent": "call_center",
    "Drive Thru": "drive_thru",
    "DoorDash": "doordash",
    "UberEats": "ubereats",
    "Grubhub": "grubhub",
}

CARRYOUT_METHODS = ["Register", "Drive-Thru"]

PRODUCT_CLASSES = ["pizza", "hnr", "bread", "wings", "beverages", "crazy_puffs"]
PIZZA_ACCOUNTS = {"HNR", "Pizza"}
CRAZY_PUFFS_ITEM_IDS = {"103057", "103044", "103033"}


# =============================================================================
# CLASSIFICATION
# =============================================================================

def product_flags(account: Optional[str], name: Optional[str], item_id: Any) -> Dict[str, bool]:
    """Product classes of one order line, from its menu account and name."""
    account = account or ""
    return {
        "is_pizza": account in PIZZA_ACCOUNTS,
        "is_hnr": account == "HNR",
        "is_bread": account == "Bread",
        "is_wings": account == "Wings",
        "is_beverages": account == "Beverages",
        "is_crazy_puffs": "puffs" in (name or "").lower() or str(item_id) in CRAZY_PUFFS_ITEM_IDS,
    }


def payment_class(payment_methods: Optional[str]) -> Optional[str]:
    """First matching class wins: cash, then credit card, then prepaid."""
    text = (payment_methods or "").lower()
    if "cash" in text:
        return "cash"
    if "credit" in text or "card" in text:
        return "credit_card"
    if "prepaid" in text:
        return "prepaid"
    return None


def _payment_class_expr() -> pl.Expr:
    pay = pl.col("payment_methods")
    return (
        pl.when(pay.str.contains("(?i)cash")).then(pl.lit("cash"))
        .when(pay.str.contains("(?i)credit|card")).then(pl.lit("credit_card"))
        .when(pay.str.contains("(?i)prepaid")).then(pl.lit("prepaid"))
        .otherwise(pl.lit(None, dtype=pl.Utf8))
        .alias("payment_class")
    )


# =============================================================================
# RAW FRAMES
# =============================================================================

ORDER_SCHEMA = {
    "order_id": pl.Utf8,
    "transaction_type": pl.Utf8,
    "date_time_fulfilled": pl.Datetime,
    "royalty_obligation": pl.Float64,
    "gross_sales": pl.Float64,
    "non_royalty_amount": pl.Float64,
    "sales_tax": pl.Float64,
    "customer_count": pl.Int64,
    "order_placed_method": pl.Utf8,
    "order_fulfilled_method": pl.Utf8,
    "delivery_tip": pl.Float64,
    "delivery_fee": pl.Float64,
    "store_tip_amount": pl.Float64,
    "override_approval_employee": pl.Utf8,
    "refunded": pl.Utf8,
    "payment_methods": pl.Utf8,
    "portal_eligible": pl.Utf8,
    "portal_used": pl.Utf8,
    "put_into_portal_before_promise_time": pl.Utf8,
}

LINE_SCHEMA = {
    "order_id": pl.Utf8,
    "item_id": pl.Utf8,
    "date_time_fulfilled": pl.Datetime,
    "menu_item_name": pl.Utf8,
    "menu_item_account": pl.Utf8,
    "net_amount": pl.Float64,
    "quantity": pl.Int64,
    "order_fulfilled_method": pl.Utf8,
    "modified_order_amount": pl.Float64,
    "modification_reason": pl.Utf8,
    "refunded": pl.Utf8,
}

WASTE_SCHEMA = {
    "item_id": pl.Utf8,
    "waste_date_time": pl.Datetime,
    "item_cost": pl.Float64,
    "quantity": pl.Int64,
}


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def to_frame(rows: Iterable[Dict[str, Any]], schema: Dict[str, Any]) -> pl.DataFrame:
    """Project raw row dicts onto a fixed schema."""
    data = []
    for row in rows:
        record = {}
        for col, dtype in schema.items():
            value = _plain(row.get(col))
            if dtype == pl.Utf8 and value is not None:
                value = str(value)
            record[col] = value
        data.append(record)
    return pl.DataFrame(data, schema=schema)


def _fill_nulls(df: pl.DataFrame) -> pl.DataFrame:
    exprs = []
    for name, dtype in df.schema.items():
        if dtype == pl.Utf8:
            exprs.append(pl.col(name).fill_null(""))
        elif dtype in (pl.Float64, pl.Int64):
            exprs.append(pl.col(name).fill_null(0))
    return df.with_columns(exprs) if exprs else df


def _with_hour(df: pl.DataFrame, ts_column: str, dataset: str) -> pl.DataFrame:
    missing = df.filter(pl.col(ts_column).is_null()).height
    if missing:
        logger.warning(
            "Rows without timestamp excluded from hourly rollup",
            dataset=dataset,
            column=ts_column,
            rows=missing,
        )
    return df.filter(pl.col(ts_column).is_not_null()).with_columns(
        pl.col(ts_column).dt.hour().cast(pl.Int64).alias("hour")
    )


# =============================================================================
# HOURLY METRICS FROM RAW ROWS
# =============================================================================

def _order_aggregations() -> List[pl.Expr]:
    placed = pl.col("order_placed_method")
    fulfilled = pl.col("order_fulfilled_method")
    refunded = pl.col("refunded") == "Yes"

    def orders(cond: pl.Expr) -> pl.Expr:
        return pl.col("order_id").filter(cond).n_unique()

    def sales(cond: pl.Expr) -> pl.Expr:
        return pl.col("royalty_obligation").filter(cond).sum()

    aggs = [
        pl.col("royalty_obligation").sum().alias("total_sales"),
        pl.col("gross_sales").sum().alias("gross_sales"),
        (pl.col("gross_sales") - pl.col("non_royalty_amount")).sum().alias("net_sales"),
        pl.col("gross_sales").filter(refunded).sum().alias("refund_amount"),
        pl.col("order_id").n_unique().alias("total_orders"),
        orders(refunded).alias("refunded_orders"),
        orders(pl.col("override_approval_employee") != "").alias("modified_orders"),
        orders(pl.col("transaction_type") == "Cancelled").alias("cancelled_orders"),
        pl.col("customer_count").sum().alias("customer_count"),
        orders(fulfilled == "Delivery").alias("delivery_orders"),
        sales(fulfilled == "Delivery").alias("delivery_sales"),
        orders(fulfilled.is_in(CARRYOUT_METHODS)).alias("carryout_orders"),
        sales(fulfilled.is_in(CARRYOUT_METHODS)).alias("carryout_sales"),
        pl.col("sales_tax").sum().alias("sales_tax"),
        pl.col("delivery_fee").sum().alias("delivery_fees"),
        pl.col("delivery_tip").sum().alias("delivery_tips"),
        pl.col("store_tip_amount").sum().alias("store_tips"),
        sales(pl.col("payment_class") == "cash").alias("cash_sales"),
        sales(pl.col("payment_class") == "credit_card").alias("credit_card_sales"),
        sales(pl.col("payment_class") == "prepaid").alias("prepaid_sales"),
        orders(pl.col("portal_eligible") == "Yes").alias("portal_eligible_orders"),
        orders(pl.col("portal_used") == "Yes").alias("portal_used_orders"),
        orders(pl.col("put_into_portal_before_promise_time") == "Yes").alias("portal_on_time_orders"),
    ]
    for method, prefix in CHANNELS.items():
        aggs.append(orders(placed == method).alias(f"{prefix}_orders"))
        aggs.append(sales(placed == method).alias(f"{prefix}_sales"))
    return aggs


def _line_aggregations() -> List[pl.Expr]:
    aggs = []
    for product in PRODUCT_CLASSES:
        flag = pl.col(f"is_{product}")
        aggs.append(pl.col("quantity").filter(flag).sum().alias(f"{product}_quantity"))
        aggs.append(pl.col("net_amount").filter(flag).sum().alias(f"{product}_sales"))
    return aggs


def _line_frame(lines: Iterable[Dict[str, Any]]) -> pl.DataFrame:
    df = _fill_nulls(to_frame(lines, LINE_SCHEMA))
    flags = [
        product_flags(acc, name, item)
        for acc, name, item in zip(df["menu_item_account"], df["menu_item_name"], df["item_id"])
    ]
    flag_frame = pl.DataFrame(
        flags, schema={f"is_{p}": pl.Boolean for p in PRODUCT_CLASSES}
    )
    return pl.concat([df, flag_frame], how="horizontal")


def _by_hour(df: pl.DataFrame) -> Dict[int, Dict[str, Any]]:
    return {row.pop("hour"): row for row in df.to_dicts()}


def compute_hourly_store_metrics(
    orders: Iterable[Dict[str, Any]],
    lines: Iterable[Dict[str, Any]],
    waste: Iterable[Dict[str, Any]],
) -> Dict[int, Dict[str, Any]]:
    """
    Store metrics for every hour of one store-day that has activity.

    Orders and lines are bucketed by the hour they were fulfilled, waste by
    the hour it was recorded.
    """
    order_df = _with_hour(_fill_nulls(to_frame(orders, ORDER_SCHEMA)), "date_time_fulfilled", "detail_orders")
    order_df = order_df.with_columns(_payment_class_expr())
    line_df = _with_hour(_line_frame(lines), "date_time_fulfilled", "order_line")
    waste_df = _with_hour(_fill_nulls(to_frame(waste, WASTE_SCHEMA)), "waste_date_time", "waste")

    order_metrics = _by_hour(order_df.group_by("hour").agg(_order_aggregations()))
    line_metrics = _by_hour(line_df.group_by("hour").agg(_line_aggregations()))
    waste_metrics = _by_hour(
        waste_df.group_by("hour").agg(
            pl.len().alias("total_waste_items"),
            (pl.col("item_cost") * pl.col("quantity")).sum().alias("total_waste_cost"),
        )
    )

    hours = sorted(set(order_metrics) | set(line_metrics) | set(waste_metrics))
    result = {}
    for hour in hours:
        metrics = empty_store_metrics()
        for source in (order_metrics, line_metrics, waste_metrics):
            metrics.update(source.get(hour, {}))
        metrics["completed_orders"] = (
            metrics["total_orders"] - metrics["refunded_orders"] - metrics["cancelled_orders"]
        )
        metrics["total_tips"] = metrics["delivery_tips"] + metrics["store_tips"]
        metrics["digital_orders"] = metrics["website_orders"] + metrics["mobile_orders"]
        metrics["digital_sales"] = metrics["website_sales"] + metrics["mobile_sales"]
        result[hour] = finalize_store_metrics(metrics)
    return result


def compute_hourly_item_metrics(lines: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Item metrics per (hour, item_id) for one store-day."""
    df = _with_hour(_line_frame(lines), "date_time_fulfilled", "order_line")
    if df.is_empty():
        return []

    fulfilled = pl.col("order_fulfilled_method")
    grouped = df.group_by(["hour", "item_id"]).agg(
        pl.col("menu_item_name").first(),
        pl.col("menu_item_account").first(),
        pl.col("quantity").sum().alias("quantity_sold"),
        pl.col("net_amount").sum().alias("gross_sales"),
        pl.col("net_amount").filter(pl.col("modification_reason") == "").sum().alias("net_sales"),
        pl.col("quantity").filter(fulfilled == "Delivery").sum().alias("delivery_quantity"),
        pl.col("quantity").filter(fulfilled.is_in(CARRYOUT_METHODS)).sum().alias("carryout_quantity"),
        pl.col("quantity").filter(pl.col("modified_order_amount") != 0).sum().alias("modified_quantity"),
        pl.col("quantity").filter(pl.col("refunded") == "Yes").sum().alias("refunded_quantity"),
    ).sort(["hour", "item_id"])

    return [finalize_item_metrics(row) for row in grouped.to_dicts()]


# =============================================================================
# SUMMING CHILDREN
# =============================================================================

def empty_store_metrics() -> Dict[str, Any]:
    metrics: Dict[str, Any] = {m: 0.0 for m in STORE_MONEY_METRICS}
    metrics.update({m: 0 for m in STORE_COUNT_METRICS})
    return metrics


def sum_store_metrics(children: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Sum the additive store metrics of child summaries."""
    totals = empty_store_metrics()
    for child in children:
        for metric in STORE_ADDITIVE_METRICS:
            totals[metric] += child.get(metric) or 0
    return totals


def sum_item_metrics(children: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Sum child item summaries per item_id."""
    items: Dict[str, Dict[str, Any]] = {}
    for child in children:
        item = items.setdefault(child["item_id"], {
            "item_id": child["item_id"],
            "menu_item_name": None,
            "menu_item_account": None,
            **{m: 0.0 for m in ITEM_MONEY_METRICS},
            **{m: 0 for m in ITEM_COUNT_METRICS},
        })
        item["menu_item_name"] = child.get("menu_item_name") or item["menu_item_name"]
        item["menu_item_account"] = child.get("menu_item_account") or item["menu_item_account"]
        for metric in ITEM_ADDITIVE_METRICS:
            item[metric] += child.get(metric) or 0
    return [finalize_item_metrics(items[k]) for k in sorted(items)]


# =============================================================================
# DERIVED METRICS
# =============================================================================

def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    return round(numerator / denominator * scale, 2) if denominator else 0.0


def finalize_store_metrics(metrics: Dict[str, Any]) -> Dict[str, Any]:
    """Round additive metrics and recompute the derived ones."""
    out = dict(metrics)
    for metric in STORE_MONEY_METRICS:
        out[metric] = round(float(out.get(metric) or 0), 2)
    for metric in STORE_COUNT_METRICS:
        out[metric] = int(out.get(metric) or 0)

    orders = out["total_orders"]
    days = out["operational_days"]
    out["avg_order_value"] = _ratio(out["total_sales"], orders)
    out["avg_customers_per_order"] = _ratio(out["customer_count"], orders)
    out["portal_usage_rate"] = _ratio(out["portal_used_orders"], out["portal_eligible_orders"], 100)
    out["portal_on_time_rate"] = _ratio(out["portal_on_time_orders"], out["portal_used_orders"], 100)
    out["digital_penetration"] = _ratio(out["digital_orders"], orders, 100)
    out["avg_daily_sales"] = _ratio(out["total_sales"], days)
    out["avg_daily_orders"] = _ratio(orders, days)
    return out


def finalize_item_metrics(item: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(item)
    for metric in ITEM_MONEY_METRICS:
        out[metric] = round(float(out.get(metric) or 0), 2)
    for metric in ITEM_COUNT_METRICS:
        out[metric] = int(out.get(metric) or 0)
    out["avg_item_price"] = _ratio(out["gross_sales"], out["quantity_sold"])
    return out


def _change(current: float, previous: float) -> Tuple[float, float]:
    delta = round(current - previous, 2)
    percent = round((current - previous) / previous * 100, 2) if previous else 0.0
    return delta, percent


def comparison_metrics(
    current: Dict[str, Any],
    prior: Optional[Dict[str, Any]],
    prior_year: Optional[Dict[str, Any]] = None,
) -> Dict[str, Optional[float]]:
    """
    Growth against previously committed summaries.

    Comparisons whose reference summary does not exist are null.
    """
    out: Dict[str, Optional[float]] = {m: None for m in COMPARISON_METRICS}
    if prior is not None:
        out["sales_vs_prior_period"], out["sales_growth_percent"] = _change(
            current["total_sales"], float(prior.get("total_sales") or 0)
        )
        out["orders_vs_prior_period"], out["orders_growth_percent"] = _change(
            current["total_orders"], float(prior.get("total_orders") or 0)
        )
    if prior_year is not None:
        out["sales_vs_prior_year"], out["yoy_growth_percent"] = _change(
            current["total_sales"], float(prior_year.get("total_sales") or 0)
        )
    return out
