"""
Hot Tier Writer

The seam between the ingestion subsystem and the tiered store: raw rows are
upserted into the hot relation on their natural key (so a re-import
replaces rather than duplicates), and once committed every affected
store/date is announced to the rollup engine.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

import structlog
from pydantic import BaseModel

from src.config import get_settings
from src.core.datasets import DatasetKind, get_dataset
from src.core.tiers import Tier, TierClassifier
from src.database.connection import get_session
from src.database.statements import chunked, upsert_statement

logger = structlog.get_logger(__name__)
settings = get_settings()

RawDataCallback = Callable[[str, date], Awaitable[Any]]


class LoadStatus(str, Enum):
    """Hot-tier load status"""
    COMPLETED = "completed"
    FAILED = "failed"
    EMPTY = "empty"


class LoadResult(BaseModel):
    """Result of a hot-tier upsert"""
    dataset: str
    target_table: str
    status: LoadStatus
    rows_loaded: int = 0
    store_dates: List[Tuple[str, date]] = []
    rows_before_cutoff: int = 0
    notifications_failed: int = 0
    error_message: Optional[str] = None
    load_duration_seconds: float = 0
    started_at: datetime
    completed_at: Optional[datetime] = None


class HotTierWriter:
    """
    Upsert raw POS rows into the hot tier.

    Example:
        engine = AggregationEngine(router)
        writer = HotTierWriter(on_raw_data=engine.notify_raw_data_available)
        result = await writer.upsert("detail_orders", rows)
    """

    def __init__(
        self,
        on_raw_data: Optional[RawDataCallback] = None,
        classifier: Optional[TierClassifier] = None,
        chunk_size: Optional[int] = None,
    ):
        self.on_raw_data = on_raw_data
        self.classifier = classifier
        self.chunk_size = chunk_size or settings.tiering.insert_chunk_size

    async def upsert(self, kind: Union[str, DatasetKind], records: Iterable[Dict[str, Any]]) -> LoadResult:
        """
        Upsert rows by natural key and announce the affected store/dates.

        Rows are committed before any notification is sent. A failing
        notification is logged and counted; the rows stay committed.
        """
        descriptor = get_dataset(kind)
        columns = set(descriptor.data_columns())
        rows = [{k: v for k, v in r.items() if k in columns} for r in records]
        started_at = datetime.now()

        result = LoadResult(
            dataset=descriptor.base_name,
            target_table=descriptor.hot_table,
            status=LoadStatus.EMPTY,
            started_at=started_at,
        )
        if not rows:
            return result

        store_dates: Set[Tuple[str, date]] = {
            (r[descriptor.store_column], r[descriptor.date_column]) for r in rows
        }
        if self.classifier is not None:
            stale = [r for r in rows if self.classifier.tier_for(r[descriptor.date_column]) == Tier.ARCHIVE]
            result.rows_before_cutoff = len(stale)
            if stale:
                logger.warning(
                    "Rows older than the cutoff written to hot tier; they stay invisible until archived",
                    dataset=descriptor.base_name,
                    rows=len(stale),
                    cutoff=self.classifier.cutoff.isoformat(),
                )

        try:
            async with get_session(Tier.HOT) as db:
                for chunk in chunked(rows, self.chunk_size):
                    await db.execute(upsert_statement(db, descriptor.hot_model, chunk, descriptor.natural_key))
        except Exception as e:
            result.status = LoadStatus.FAILED
            result.error_message = str(e)
            result.completed_at = datetime.now()
            logger.error("Hot tier load failed", dataset=descriptor.base_name, error=str(e), exc_info=True)
            return result

        result.status = LoadStatus.COMPLETED
        result.rows_loaded = len(rows)
        result.store_dates = sorted(store_dates)

        if self.on_raw_data is not None:
            for store_id, business_date in result.store_dates:
                try:
                    outcome = await self.on_raw_data(store_id, business_date)
                except Exception as e:
                    result.notifications_failed += 1
                    logger.error(
                        "Raw data notification failed",
                        store_id=store_id,
                        business_date=business_date.isoformat(),
                        error=str(e),
                    )
                    continue
                # A run result can report failed units without raising
                if getattr(outcome, "ok", True) is False:
                    result.notifications_failed += 1
                    logger.error(
                        "Raw data notification reported failures",
                        store_id=store_id,
                        business_date=business_date.isoformat(),
                        failed=getattr(outcome, "failed", None),
                    )

        result.completed_at = datetime.now()
        result.load_duration_seconds = (result.completed_at - started_at).total_seconds()
        logger.info(
            "Hot tier load completed",
            dataset=descriptor.base_name,
            rows=result.rows_loaded,
            store_dates=len(result.store_dates),
            duration_seconds=round(result.load_duration_seconds, 3),
        )
        return result
