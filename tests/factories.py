"""
Row factories and direct tier access for tests.
"""
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List

from sqlalchemy import func, select

from src.core.datasets import get_dataset
from src.core.tiers import Tier
from src.database.connection import get_session
from src.database.models import ITEM_SUMMARY_MODELS, STORE_SUMMARY_MODELS
from src.database.statements import upsert_statement


def order_row(store_id: str, business_date: date, order_id: str, hour: int = 12, amount: float = 10.0, **overrides) -> Dict[str, Any]:
    placed = datetime.combine(business_date, time(hour, 0))
    row = {
        "store_id": store_id,
        "business_date": business_date,
        "order_id": order_id,
        "transaction_type": "Order",
        "date_time_placed": placed,
        "date_time_fulfilled": placed + timedelta(minutes=15),
        "royalty_obligation": amount,
        "gross_sales": amount,
        "non_royalty_amount": 0.0,
        "sales_tax": round(amount * 0.06, 2),
        "quantity": 1,
        "customer_count": 1,
        "order_placed_method": "Website",
        "order_fulfilled_method": "Register",
        "delivery_tip": 0.0,
        "delivery_fee": 0.0,
        "store_tip_amount": 0.0,
        "employee": "EMP001",
        "override_approval_employee": None,
        "modified_order_amount": 0.0,
        "refunded": "No",
        "payment_methods": "Credit Card",
        "portal_eligible": "No",
        "portal_used": "No",
        "put_into_portal_before_promise_time": "No",
    }
    row.update(overrides)
    return row


def line_row(store_id: str, business_date: date, order_id: str, item_id: str, hour: int = 12, amount: float = 10.0, **overrides) -> Dict[str, Any]:
    placed = datetime.combine(business_date, time(hour, 0))
    row = {
        "store_id": store_id,
        "business_date": business_date,
        "order_id": order_id,
        "item_id": item_id,
        "date_time_placed": placed,
        "date_time_fulfilled": placed + timedelta(minutes=15),
        "menu_item_name": "Large Pepperoni",
        "menu_item_account": "Pizza",
        "bundle_name": None,
        "net_amount": amount,
        "quantity": 1,
        "order_placed_method": "Website",
        "order_fulfilled_method": "Register",
        "modified_order_amount": 0.0,
        "modification_reason": None,
        "refunded": "No",
    }
    row.update(overrides)
    return row


def daily_orders(store_id: str, start: date, days: int, per_day: int = 1, amount: float = 10.0) -> List[Dict[str, Any]]:
    rows = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        for n in range(per_day):
            rows.append(order_row(store_id, day, f"{day:%Y%m%d}-{n}", hour=10 + n % 10, amount=amount))
    return rows


async def load_rows(tier: Tier, kind: str, rows: Iterable[Dict[str, Any]]) -> None:
    """Upsert rows straight into one tier, bypassing routing"""
    descriptor = get_dataset(kind)
    rows = list(rows)
    if not rows:
        return
    async with get_session(tier) as db:
        await db.execute(upsert_statement(db, descriptor.model_for(tier), rows, descriptor.natural_key))


async def load_by_tier(classifier, kind: str, rows: Iterable[Dict[str, Any]]) -> None:
    """Place each row in the tier that owns its business date"""
    rows = list(rows)
    for tier in (Tier.HOT, Tier.ARCHIVE):
        await load_rows(tier, kind, [r for r in rows if classifier.tier_for(r["business_date"]) == tier])


async def count_rows(tier: Tier, kind: str) -> int:
    model = get_dataset(kind).model_for(tier)
    async with get_session(tier) as db:
        result = await db.execute(select(func.count()).select_from(model))
        return int(result.scalar_one())


async def store_summaries(level: str, store_id: str) -> List[Dict[str, Any]]:
    model = STORE_SUMMARY_MODELS[level]
    async with get_session(Tier.ARCHIVE) as db:
        result = await db.execute(
            select(model).where(model.store_id == store_id).order_by(model.period_key)
        )
        return [
            {c.name: getattr(obj, c.name) for c in model.__table__.columns}
            for obj in result.scalars()
        ]


async def item_summaries(level: str, store_id: str) -> List[Dict[str, Any]]:
    model = ITEM_SUMMARY_MODELS[level]
    async with get_session(Tier.ARCHIVE) as db:
        result = await db.execute(
            select(model).where(model.store_id == store_id).order_by(model.period_key, model.item_id)
        )
        return [
            {c.name: getattr(obj, c.name) for c in model.__table__.columns}
            for obj in result.scalars()
        ]
