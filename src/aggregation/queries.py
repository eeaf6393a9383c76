"""
Summary reads for reporting code.

Reporting never scans raw rows; it reads committed summaries at the
coarsest level that still resolves the requested range.
"""

from datetime import date
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select

from src.aggregation.levels import SummaryLevel, optimal_level
from src.core.exceptions import InvalidRangeError
from src.core.tiers import Tier
from src.database.connection import get_session
from src.database.models import ITEM_SUMMARY_MODELS, STORE_SUMMARY_MODELS

logger = structlog.get_logger(__name__)


class SummaryQueryService:
    """Read access to store and item summaries"""

    async def get_summary(
        self,
        level: SummaryLevel,
        store_id: Optional[str],
        start: date,
        end: date,
    ) -> List[Dict[str, Any]]:
        """
        Store summaries of ``level`` overlapping [start, end], oldest first.

        ``store_id=None`` returns every store.
        """
        return await self._read(STORE_SUMMARY_MODELS[SummaryLevel(level)], store_id, start, end)

    async def get_item_summary(
        self,
        level: SummaryLevel,
        store_id: Optional[str],
        start: date,
        end: date,
        item_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        model = ITEM_SUMMARY_MODELS[SummaryLevel(level)]
        extra = [model.item_id == item_id] if item_id is not None else []
        return await self._read(model, store_id, start, end, extra)

    async def get_optimal_summary(self, store_id: Optional[str], start: date, end: date) -> List[Dict[str, Any]]:
        level = optimal_level(start, end)
        logger.debug("Optimal summary level", level=level.value, start=start.isoformat(), end=end.isoformat())
        return await self.get_summary(level, store_id, start, end)

    async def _read(self, model, store_id, start: date, end: date, extra=None) -> List[Dict[str, Any]]:
        if start > end:
            raise InvalidRangeError(start, end)
        clauses = [model.period_end >= start, model.period_start <= end, *(extra or [])]
        if store_id is not None:
            clauses.append(model.store_id == store_id)

        stmt = select(model.__table__).where(*clauses).order_by(
            model.store_id, model.period_start, model.hour
        )
        async with get_session(Tier.ARCHIVE) as db:
            result = await db.execute(stmt)
            return [{k: v for k, v in r._mapping.items() if k != "id"} for r in result]
