"""
Database Models - Tiered Raw Relations and Rollup Summaries

Raw POS relations exist twice, once per storage tier. Each dataset is
described by a single column mixin so ``<base>_hot`` and ``<base>_archive``
can never drift apart:

Raw Relations (hot + archive):
- detail_orders: one row per order / transaction type
- order_line: one row per order line item
- waste: one row per waste event
- summary_sales: one row per store per business day (daily reconciliation)

Summary Relations (archive/analytics endpoint):
- <level>_store_summary: store metrics per period
- <level>_item_summary: item metrics per period
for level in hour, day, week, month, quarter, year.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional, Type

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class HotBase(DeclarativeBase):
    """Relations living on the hot (operational) endpoint"""
    pass


class ArchiveBase(DeclarativeBase):
    """Raw relations living on the archive endpoint"""
    pass


class SummaryBase(DeclarativeBase):
    """Rollup relations, stored alongside the archive tier"""
    pass


class NaturalKeyMixin:
    """Adds the natural-key unique constraint and a store/date index"""

    __natural_key__: tuple = ()

    @declared_attr.directive
    def __table_args__(cls):
        return (
            UniqueConstraint(*cls.__natural_key__, name=f"uq_{cls.__tablename__}"),
            Index(f"ix_{cls.__tablename__}_store_date", "store_id", "business_date"),
        )


# =============================================================================
# RAW DATASET COLUMNS
# =============================================================================

class DetailOrderColumns(NaturalKeyMixin):
    """
    Order header rows.

    Monetary columns follow the POS export; ``royalty_obligation`` is the
    figure reported as total sales.
    """

    __natural_key__ = ("store_id", "business_date", "order_id", "transaction_type")

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(20), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    order_id: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False, default="Order")

    date_time_placed: Mapped[Optional[datetime]] = mapped_column(DateTime)
    date_time_fulfilled: Mapped[Optional[datetime]] = mapped_column(DateTime)

    royalty_obligation: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    gross_sales: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    non_royalty_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    sales_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    customer_count: Mapped[int] = mapped_column(Integer, default=0)

    order_placed_method: Mapped[Optional[str]] = mapped_column(String(50))
    order_fulfilled_method: Mapped[Optional[str]] = mapped_column(String(50))

    delivery_tip: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    store_tip_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)

    employee: Mapped[Optional[str]] = mapped_column(String(100))
    override_approval_employee: Mapped[Optional[str]] = mapped_column(String(100))
    modified_order_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    refunded: Mapped[Optional[str]] = mapped_column(String(10))
    payment_methods: Mapped[Optional[str]] = mapped_column(String(200))

    # Pickup portal flags ("Yes"/"No" as exported)
    portal_eligible: Mapped[Optional[str]] = mapped_column(String(10))
    portal_used: Mapped[Optional[str]] = mapped_column(String(10))
    put_into_portal_before_promise_time: Mapped[Optional[str]] = mapped_column(String(10))

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class OrderLineColumns(NaturalKeyMixin):
    """Order line items; product class flags are derived at rollup time"""

    __natural_key__ = ("store_id", "business_date", "order_id", "item_id")

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(20), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    order_id: Mapped[str] = mapped_column(String(50), nullable=False)
    item_id: Mapped[str] = mapped_column(String(30), nullable=False)

    date_time_placed: Mapped[Optional[datetime]] = mapped_column(DateTime)
    date_time_fulfilled: Mapped[Optional[datetime]] = mapped_column(DateTime)

    menu_item_name: Mapped[Optional[str]] = mapped_column(String(200))
    menu_item_account: Mapped[Optional[str]] = mapped_column(String(50))
    bundle_name: Mapped[Optional[str]] = mapped_column(String(200))
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    quantity: Mapped[int] = mapped_column(Integer, default=0)

    order_placed_method: Mapped[Optional[str]] = mapped_column(String(50))
    order_fulfilled_method: Mapped[Optional[str]] = mapped_column(String(50))
    modified_order_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    modification_reason: Mapped[Optional[str]] = mapped_column(String(200))
    refunded: Mapped[Optional[str]] = mapped_column(String(10))

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class WasteColumns(NaturalKeyMixin):
    """Waste events"""

    __natural_key__ = ("store_id", "business_date", "item_id", "waste_date_time")

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(20), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    item_id: Mapped[str] = mapped_column(String(30), nullable=False)
    waste_date_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    menu_item_name: Mapped[Optional[str]] = mapped_column(String(200))
    waste_reason: Mapped[Optional[str]] = mapped_column(String(100))
    waste_type: Mapped[Optional[str]] = mapped_column(String(50))
    expired: Mapped[bool] = mapped_column(Boolean, default=False)
    item_cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0)
    quantity: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class SummarySalesColumns(NaturalKeyMixin):
    """Daily sales reconciliation reported by the store"""

    __natural_key__ = ("store_id", "business_date")

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(20), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)

    royalty_obligation: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    gross_sales: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    customer_count: Mapped[Optional[int]] = mapped_column(Integer)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    sales_tax: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    prepaid_sales: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    over_short: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    manager_notes: Mapped[Optional[str]] = mapped_column(String(200))

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


# =============================================================================
# TIER RELATIONS
# =============================================================================

class DetailOrderHot(DetailOrderColumns, HotBase):
    __tablename__ = "detail_orders_hot"


class DetailOrderArchive(DetailOrderColumns, ArchiveBase):
    __tablename__ = "detail_orders_archive"


class OrderLineHot(OrderLineColumns, HotBase):
    __tablename__ = "order_line_hot"


class OrderLineArchive(OrderLineColumns, ArchiveBase):
    __tablename__ = "order_line_archive"


class WasteHot(WasteColumns, HotBase):
    __tablename__ = "waste_hot"


class WasteArchive(WasteColumns, ArchiveBase):
    __tablename__ = "waste_archive"


class SummarySalesHot(SummarySalesColumns, HotBase):
    __tablename__ = "summary_sales_hot"


class SummarySalesArchive(SummarySalesColumns, ArchiveBase):
    __tablename__ = "summary_sales_archive"


# =============================================================================
# SUMMARY COLUMNS
# =============================================================================

def _money(nullable: bool = False):
    return mapped_column(Numeric(14, 2, asdecimal=False), nullable=nullable, default=None if nullable else 0)


def _count():
    return mapped_column(Integer, nullable=False, default=0)


class PeriodColumns:
    """Period identity shared by every summary relation"""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(20), nullable=False)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    hour: Mapped[Optional[int]] = mapped_column(Integer)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


class StoreSummaryColumns(PeriodColumns):
    """
    Store-level metrics for one period.

    Additive columns equal the sum of the same columns across the child
    periods. Derived and comparison columns are recomputed after the sums.
    """

    @declared_attr.directive
    def __table_args__(cls):
        return (
            UniqueConstraint("store_id", "period_key", name=f"uq_{cls.__tablename__}"),
            Index(f"ix_{cls.__tablename__}_start", "store_id", "period_start"),
        )

    # Sales
    total_sales: Mapped[float] = _money()
    gross_sales: Mapped[float] = _money()
    net_sales: Mapped[float] = _money()
    refund_amount: Mapped[float] = _money()

    # Orders
    total_orders: Mapped[int] = _count()
    completed_orders: Mapped[int] = _count()
    cancelled_orders: Mapped[int] = _count()
    modified_orders: Mapped[int] = _count()
    refunded_orders: Mapped[int] = _count()
    customer_count: Mapped[int] = _count()

    # Channels
    phone_orders: Mapped[int] = _count()
    phone_sales: Mapped[float] = _money()
    website_orders: Mapped[int] = _count()
    website_sales: Mapped[float] = _money()
    mobile_orders: Mapped[int] = _count()
    mobile_sales: Mapped[float] = _money()
    call_center_orders: Mapped[int] = _count()
    call_center_sales: Mapped[float] = _money()
    drive_thru_orders: Mapped[int] = _count()
    drive_thru_sales: Mapped[float] = _money()
    doordash_orders: Mapped[int] = _count()
    doordash_sales: Mapped[float] = _money()
    ubereats_orders: Mapped[int] = _count()
    ubereats_sales: Mapped[float] = _money()
    grubhub_orders: Mapped[int] = _count()
    grubhub_sales: Mapped[float] = _money()

    # Fulfillment
    delivery_orders: Mapped[int] = _count()
    delivery_sales: Mapped[float] = _money()
    carryout_orders: Mapped[int] = _count()
    carryout_sales: Mapped[float] = _money()

    # Products
    pizza_quantity: Mapped[int] = _count()
    pizza_sales: Mapped[float] = _money()
    hnr_quantity: Mapped[int] = _count()
    hnr_sales: Mapped[float] = _money()
    bread_quantity: Mapped[int] = _count()
    bread_sales: Mapped[float] = _money()
    wings_quantity: Mapped[int] = _count()
    wings_sales: Mapped[float] = _money()
    beverages_quantity: Mapped[int] = _count()
    beverages_sales: Mapped[float] = _money()
    crazy_puffs_quantity: Mapped[int] = _count()
    crazy_puffs_sales: Mapped[float] = _money()

    # Financial
    sales_tax: Mapped[float] = _money()
    delivery_fees: Mapped[float] = _money()
    delivery_tips: Mapped[float] = _money()
    store_tips: Mapped[float] = _money()
    total_tips: Mapped[float] = _money()

    # Payments
    cash_sales: Mapped[float] = _money()
    credit_card_sales: Mapped[float] = _money()
    prepaid_sales: Mapped[float] = _money()
    over_short: Mapped[float] = _money()

    # Portal
    portal_eligible_orders: Mapped[int] = _count()
    portal_used_orders: Mapped[int] = _count()
    portal_on_time_orders: Mapped[int] = _count()

    # Waste
    total_waste_items: Mapped[int] = _count()
    total_waste_cost: Mapped[float] = _money()

    # Digital
    digital_orders: Mapped[int] = _count()
    digital_sales: Mapped[float] = _money()

    operational_days: Mapped[int] = _count()

    # Derived
    avg_order_value: Mapped[float] = _money()
    avg_customers_per_order: Mapped[float] = _money()
    portal_usage_rate: Mapped[float] = _money()
    portal_on_time_rate: Mapped[float] = _money()
    digital_penetration: Mapped[float] = _money()
    avg_daily_sales: Mapped[float] = _money()
    avg_daily_orders: Mapped[float] = _money()

    # Comparisons (null when the reference period has no summary)
    sales_vs_prior_period: Mapped[Optional[float]] = _money(nullable=True)
    sales_growth_percent: Mapped[Optional[float]] = _money(nullable=True)
    orders_vs_prior_period: Mapped[Optional[float]] = _money(nullable=True)
    orders_growth_percent: Mapped[Optional[float]] = _money(nullable=True)
    sales_vs_prior_year: Mapped[Optional[float]] = _money(nullable=True)
    yoy_growth_percent: Mapped[Optional[float]] = _money(nullable=True)


class ItemSummaryColumns(PeriodColumns):
    """Item-level metrics for one period"""

    @declared_attr.directive
    def __table_args__(cls):
        return (
            UniqueConstraint("store_id", "period_key", "item_id", name=f"uq_{cls.__tablename__}"),
            Index(f"ix_{cls.__tablename__}_start", "store_id", "period_start"),
        )

    item_id: Mapped[str] = mapped_column(String(30), nullable=False)
    menu_item_name: Mapped[Optional[str]] = mapped_column(String(200))
    menu_item_account: Mapped[Optional[str]] = mapped_column(String(50))

    quantity_sold: Mapped[int] = _count()
    gross_sales: Mapped[float] = _money()
    net_sales: Mapped[float] = _money()
    delivery_quantity: Mapped[int] = _count()
    carryout_quantity: Mapped[int] = _count()
    modified_quantity: Mapped[int] = _count()
    refunded_quantity: Mapped[int] = _count()

    avg_item_price: Mapped[float] = _money()


# =============================================================================
# SUMMARY RELATIONS
# =============================================================================

class HourStoreSummary(StoreSummaryColumns, SummaryBase):
    __tablename__ = "hour_store_summary"


class DayStoreSummary(StoreSummaryColumns, SummaryBase):
    __tablename__ = "day_store_summary"


class WeekStoreSummary(StoreSummaryColumns, SummaryBase):
    __tablename__ = "week_store_summary"


class MonthStoreSummary(StoreSummaryColumns, SummaryBase):
    __tablename__ = "month_store_summary"


class QuarterStoreSummary(StoreSummaryColumns, SummaryBase):
    __tablename__ = "quarter_store_summary"


class YearStoreSummary(StoreSummaryColumns, SummaryBase):
    __tablename__ = "year_store_summary"


class HourItemSummary(ItemSummaryColumns, SummaryBase):
    __tablename__ = "hour_item_summary"


class DayItemSummary(ItemSummaryColumns, SummaryBase):
    __tablename__ = "day_item_summary"


class WeekItemSummary(ItemSummaryColumns, SummaryBase):
    __tablename__ = "week_item_summary"


class MonthItemSummary(ItemSummaryColumns, SummaryBase):
    __tablename__ = "month_item_summary"


class QuarterItemSummary(ItemSummaryColumns, SummaryBase):
    __tablename__ = "quarter_item_summary"


class YearItemSummary(ItemSummaryColumns, SummaryBase):
    __tablename__ = "year_item_summary"


# Keyed by level name; str-valued level enums index these directly
STORE_SUMMARY_MODELS: Dict[str, Type[StoreSummaryColumns]] = {
    "hour": HourStoreSummary,
    "day": DayStoreSummary,
    "week": WeekStoreSummary,
    "month": MonthStoreSummary,
    "quarter": QuarterStoreSummary,
    "year": YearStoreSummary,
}

ITEM_SUMMARY_MODELS: Dict[str, Type[ItemSummaryColumns]] = {
    "hour": HourItemSummary,
    "day": DayItemSummary,
    "week": WeekItemSummary,
    "month": MonthItemSummary,
    "quarter": QuarterItemSummary,
    "year": YearItemSummary,
}
