"""
Synthetic POS Data Generator

Generates realistic store activity for testing and development.
Includes:
- Detail orders spread over the trading hours of each day
- Order lines drawn from a small menu
- Waste records
- Daily summary sales with a cash over/short figure

Generation is deterministic for a given seed, store and date.
"""

import zlib
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import structlog

from src.aggregation.metrics import CHANNELS

logger = structlog.get_logger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# (item_id, name, account, price)
MENU = [
    ("100001", "Large Pepperoni", "Pizza", 12.99),
    ("100002", "Large Cheese", "Pizza", 10.99),
    ("100003", "ExtraMostBestest Supreme", "Pizza", 15.49),
    ("100010", "Hot-N-Ready Classic", "HNR", 6.99),
    ("100011", "Hot-N-Ready Pepperoni", "HNR", 7.49),
    ("100020", "Crazy Bread", "Bread", 4.49),
    ("103057", "Crazy Puffs 4pc", "Bread", 3.99),
    ("103044", "Pepperoni Crazy Puffs", "Bread", 4.49),
    ("100030", "Caesar Wings 8pc", "Wings", 8.99),
    ("100040", "2L Pepsi", "Beverages", 3.29),
]

WASTE_REASONS = ["Expired", "Burnt", "Dropped", "Wrong Order"]
PAYMENT_METHODS = ["Cash", "Credit Card", "Prepaid Card", "Credit Card, Cash"]
FULFILLED_METHODS = ["Register", "Drive-Thru", "Delivery"]
PLACED_WEIGHTS = {
    "Phone": 0.15,
    "Website": 0.20,
    "Mobile": 0.25,
    "SoundHoundAgent": 0.05,
    "Drive Thru": 0.10,
    "DoorDash": 0.10,
    "UberEats": 0.08,
    "Grubhub": 0.07,
}
OPEN_HOUR = 10
CLOSE_HOUR = 23
TAX_RATE = 0.06


def _rng_for(seed: int, store_id: str, business_date: date) -> np.random.Generator:
    token = f"{seed}:{store_id}:{business_date.isoformat()}".encode()
    return np.random.default_rng(zlib.crc32(token))


def _date_range(start: date, end: date) -> Iterable[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


# =============================================================================
# GENERATORS
# =============================================================================

class StoreDayGenerator:
    """Generate one store's activity for one business date"""

    def __init__(self, store_id: str, business_date: date, seed: int = 42, orders_per_day: int = 40):
        self.store_id = store_id
        self.business_date = business_date
        self.orders_per_day = orders_per_day
        self.rng = _rng_for(seed, store_id, business_date)

    def _timestamp(self) -> datetime:
        minutes = int(self.rng.integers(OPEN_HOUR * 60, CLOSE_HOUR * 60))
        return datetime.combine(self.business_date, time()) + timedelta(minutes=minutes)

    def generate(self) -> Dict[str, List[Dict[str, Any]]]:
        orders, lines = [], []
        methods = list(PLACED_WEIGHTS)
        weights = np.array(list(PLACED_WEIGHTS.values()))
        weights = weights / weights.sum()
        n_orders = max(1, int(self.rng.poisson(self.orders_per_day)))

        for n in range(n_orders):
            order_id = f"{self.store_id}-{self.business_date:%Y%m%d}-{n + 1:04d}"
            placed_at = self._timestamp()
            fulfilled_at = placed_at + timedelta(minutes=int(self.rng.integers(5, 40)))
            placed = str(self.rng.choice(methods, p=weights))
            fulfilled = "Delivery" if CHANNELS[placed] in ("doordash", "ubereats", "grubhub") else str(
                self.rng.choice(FULFILLED_METHODS)
            )
            refunded = "Yes" if self.rng.random() < 0.02 else "No"
            modified = self.rng.random() < 0.05

            royalty = 0.0
            picks = self.rng.choice(len(MENU), size=int(self.rng.integers(1, 4)), replace=False)
            for idx in picks:
                item_id, name, account, price = MENU[int(idx)]
                quantity = int(self.rng.integers(1, 3))
                amount = round(price * quantity, 2)
                royalty += amount
                lines.append({
                    "store_id": self.store_id,
                    "business_date": self.business_date,
                    "order_id": order_id,
                    "item_id": item_id,
                    "date_time_placed": placed_at,
                    "date_time_fulfilled": fulfilled_at,
                    "menu_item_name": name,
                    "menu_item_account": account,
                    "bundle_name": None,
                    "net_amount": amount,
                    "quantity": quantity,
                    "order_placed_method": placed,
                    "order_fulfilled_method": fulfilled,
                    "modified_order_amount": round(amount * 0.1, 2) if modified else 0.0,
                    "modification_reason": "Customer request" if modified else None,
                    "refunded": refunded,
                })

            royalty = round(royalty, 2)
            non_royalty = round(float(self.rng.choice([0.0, 0.0, 0.0, 1.5])), 2)
            is_delivery = fulfilled == "Delivery"
            eligible = fulfilled in ("Register", "Drive-Thru")
            used = eligible and self.rng.random() < 0.6
            orders.append({
                "store_id": self.store_id,
                "business_date": self.business_date,
                "order_id": order_id,
                "transaction_type": "Cancelled" if self.rng.random() < 0.01 else "Order",
                "date_time_placed": placed_at,
                "date_time_fulfilled": fulfilled_at,
                "royalty_obligation": royalty,
                "gross_sales": round(royalty + non_royalty, 2),
                "non_royalty_amount": non_royalty,
                "sales_tax": round(royalty * TAX_RATE, 2),
                "quantity": sum(1 for line in lines if line["order_id"] == order_id),
                "customer_count": 1,
                "order_placed_method": placed,
                "order_fulfilled_method": fulfilled,
                "delivery_tip": round(float(self.rng.uniform(0, 6)), 2) if is_delivery else 0.0,
                "delivery_fee": 2.99 if is_delivery else 0.0,
                "store_tip_amount": round(float(self.rng.uniform(0, 2)), 2) if self.rng.random() < 0.2 else 0.0,
                "employee": f"EMP{int(self.rng.integers(1, 12)):03d}",
                "override_approval_employee": "MGR001" if modified else None,
                "modified_order_amount": round(royalty * 0.1, 2) if modified else 0.0,
                "refunded": refunded,
                "payment_methods": str(self.rng.choice(PAYMENT_METHODS)),
                "portal_eligible": "Yes" if eligible else "No",
                "portal_used": "Yes" if used else "No",
                "put_into_portal_before_promise_time": "Yes" if used and self.rng.random() < 0.9 else "No",
            })

        waste = []
        for n in range(int(self.rng.integers(0, 4))):
            item_id, name, _account, price = MENU[int(self.rng.integers(0, len(MENU)))]
            waste.append({
                "store_id": self.store_id,
                "business_date": self.business_date,
                "item_id": item_id,
                "waste_date_time": datetime.combine(self.business_date, time(CLOSE_HOUR - 1, 0)) + timedelta(minutes=n),
                "menu_item_name": name,
                "waste_reason": str(self.rng.choice(WASTE_REASONS)),
                "waste_type": "Product",
                "expired": False,
                "item_cost": round(price * 0.35, 4),
                "quantity": int(self.rng.integers(1, 3)),
            })

        summary = {
            "store_id": self.store_id,
            "business_date": self.business_date,
            "royalty_obligation": round(sum(o["royalty_obligation"] for o in orders), 2),
            "gross_sales": round(sum(o["gross_sales"] for o in orders), 2),
            "customer_count": sum(o["customer_count"] for o in orders),
            "refund_amount": round(sum(o["gross_sales"] for o in orders if o["refunded"] == "Yes"), 2),
            "sales_tax": round(sum(o["sales_tax"] for o in orders), 2),
            "prepaid_sales": 0.0,
            "over_short": round(float(self.rng.normal(0, 3)), 2),
            "manager_notes": None,
        }

        return {
            "detail_orders": orders,
            "order_line": lines,
            "waste": waste,
            "summary_sales": [summary],
        }


# =============================================================================
# MAIN GENERATOR
# =============================================================================

class DataGenerator:
    """Generate activity for a set of stores over a date range"""

    def __init__(self, seed: int = 42, orders_per_day: int = 40):
        self.random_seed = seed
        self.orders_per_day = orders_per_day

    def generate(
        self,
        stores: List[str],
        start: date,
        end: date,
    ) -> Dict[str, List[Dict[str, Any]]]:
        data: Dict[str, List[Dict[str, Any]]] = {
            "detail_orders": [], "order_line": [], "waste": [], "summary_sales": [],
        }
        for day in _date_range(start, end):
            for store_id in stores:
                generated = StoreDayGenerator(store_id, day, self.random_seed, self.orders_per_day).generate()
                for name, rows in generated.items():
                    data[name].extend(rows)

        logger.info(
            "Generated synthetic POS data",
            stores=len(stores),
            start=start.isoformat(),
            end=end.isoformat(),
            **{name: len(rows) for name, rows in data.items()},
        )
        return data

    async def seed(
        self,
        writer: Any,
        stores: List[str],
        start: date,
        end: date,
        datasets: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Generate and upsert through a HotTierWriter"""
        data = self.generate(stores, start, end)
        results = {}
        for name, rows in data.items():
            if datasets and name not in datasets:
                continue
            results[name] = await writer.upsert(name, rows)
        return results
