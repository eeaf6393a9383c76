"""
Dataset registry.

Every raw POS dataset is described once here. The router, the archival
mover, the hot-tier writer and the auditor all resolve datasets through
``get_dataset`` so a relation that is not registered can never be routed
or moved by accident.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Tuple, Union

from src.core.exceptions import UnknownDatasetError
from src.core.tiers import Tier
from src.database.models import (
    DetailOrderArchive,
    DetailOrderHot,
    OrderLineArchive,
    OrderLineHot,
    SummarySalesArchive,
    SummarySalesHot,
    WasteArchive,
    WasteHot,
)


class DatasetKind(str, Enum):
    """Raw datasets held in both tiers"""
    DETAIL_ORDERS = "detail_orders"
    ORDER_LINE = "order_line"
    WASTE = "waste"
    SUMMARY_SALES = "summary_sales"


@dataclass(frozen=True)
class DatasetDescriptor:
    kind: DatasetKind
    hot_model: Any
    archive_model: Any
    natural_key: Tuple[str, ...]
    date_column: str = "business_date"
    store_column: str = "store_id"
    archivable: bool = True

    @property
    def base_name(self) -> str:
        return self.kind.value

    @property
    def hot_table(self) -> str:
        return self.hot_model.__tablename__

    @property
    def archive_table(self) -> str:
        return self.archive_model.__tablename__

    def model_for(self, tier: Tier) -> Any:
        return self.hot_model if tier == Tier.HOT else self.archive_model

    def data_columns(self) -> List[str]:
        """Columns copied between tiers (surrogate id excluded)"""
        return [c.name for c in self.hot_model.__table__.columns if c.name != "id"]


def _descriptor(kind: DatasetKind, hot_model, archive_model) -> DatasetDescriptor:
    # Both relations are built from the same mixin, so the key is read from it
    return DatasetDescriptor(
        kind=kind,
        hot_model=hot_model,
        archive_model=archive_model,
        natural_key=tuple(hot_model.__natural_key__),
    )


DATASETS: Dict[DatasetKind, DatasetDescriptor] = {
    DatasetKind.DETAIL_ORDERS: _descriptor(DatasetKind.DETAIL_ORDERS, DetailOrderHot, DetailOrderArchive),
    DatasetKind.ORDER_LINE: _descriptor(DatasetKind.ORDER_LINE, OrderLineHot, OrderLineArchive),
    DatasetKind.WASTE: _descriptor(DatasetKind.WASTE, WasteHot, WasteArchive),
    DatasetKind.SUMMARY_SALES: _descriptor(DatasetKind.SUMMARY_SALES, SummarySalesHot, SummarySalesArchive),
}


def get_dataset(name: Union[str, DatasetKind]) -> DatasetDescriptor:
    """
    Resolve a dataset by kind or base name.

    Raises:
        UnknownDatasetError: If the name is not registered
    """
    try:
        kind = DatasetKind(name)
    except ValueError:
        raise UnknownDatasetError(name) from None
    try:
        return DATASETS[kind]
    except KeyError:
        raise UnknownDatasetError(name) from None


def archivable_datasets() -> List[DatasetDescriptor]:
    return [d for d in DATASETS.values() if d.archivable]
