"""
Tiered Query Router

Splits a date-range read over a raw dataset into at most two independent
sub-queries, one per tier, and concatenates their results client-side.
Archive sub-queries never reach the cutoff and hot sub-queries never go
below it, so a logical row is returned at most once even while a hot row
older than the cutoff is waiting to be archived.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog
from sqlalchemy import func, select

from src.core.datasets import DatasetDescriptor, DatasetKind, get_dataset
from src.core.exceptions import InvalidRangeError
from src.core.tiers import Tier, TierClassifier
from src.database.connection import get_session

logger = structlog.get_logger(__name__)

# Lower bound used when a range has an end but no start
EARLIEST_BUSINESS_DATE = date(2000, 1, 1)

Filters = Optional[Dict[str, Any]]


@dataclass(frozen=True)
class SubQuery:
    """One tier's share of a routed range; None bounds are open"""
    tier: Tier
    start: Optional[date]
    end: Optional[date]


@dataclass
class QuerySpec:
    dataset: DatasetDescriptor
    start: Optional[date]
    end: Optional[date]
    cutoff: date
    subqueries: List[SubQuery] = field(default_factory=list)

    @property
    def tiers(self) -> List[Tier]:
        return [q.tier for q in self.subqueries]

    @property
    def is_split(self) -> bool:
        return len(self.subqueries) > 1


class TieredQueryRouter:
    """
    Route reads over raw datasets to the hot tier, the archive tier, or both.

    Example:
        router = TieredQueryRouter(TierClassifier.from_settings())
        spec = router.route("detail_orders", date(2025, 8, 1), date(2025, 9, 30))
        rows = await router.fetch(spec, filters={"store_id": "S1"})
    """

    def __init__(self, classifier: TierClassifier):
        self.classifier = classifier

    # =========================================================================
    # ROUTING
    # =========================================================================

    def route(
        self,
        dataset: Union[str, DatasetKind],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> QuerySpec:
        """
        Build the per-tier sub-queries for a date range.

        Raises:
            UnknownDatasetError: Dataset not registered
            InvalidRangeError: start after end
        """
        descriptor = get_dataset(dataset)
        cutoff = self.classifier.cutoff

        if start is not None and end is None:
            end = self.classifier.today
        elif start is None and end is not None:
            start = EARLIEST_BUSINESS_DATE

        if start is not None and end is not None and start > end:
            raise InvalidRangeError(start, end)

        spec = QuerySpec(dataset=descriptor, start=start, end=end, cutoff=cutoff)
        last_archive_day = cutoff - timedelta(days=1)

        if start is None:
            # Unbounded: every archive day plus every hot day
            spec.subqueries = [
                SubQuery(Tier.ARCHIVE, None, last_archive_day),
                SubQuery(Tier.HOT, cutoff, None),
            ]
        elif self.classifier.spans_tiers(start, end):
            spec.subqueries = [
                SubQuery(Tier.ARCHIVE, start, last_archive_day),
                SubQuery(Tier.HOT, cutoff, end),
            ]
        else:
            spec.subqueries = [SubQuery(self.classifier.tier_for(start), start, end)]

        logger.debug(
            "Routed query",
            dataset=descriptor.base_name,
            tiers=[t.value for t in spec.tiers],
            cutoff=cutoff.isoformat(),
            start=start.isoformat() if start else None,
            end=end.isoformat() if end else None,
        )
        return spec

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _where(self, model: Any, sub: SubQuery, dataset: DatasetDescriptor, filters: Filters) -> list:
        date_col = getattr(model, dataset.date_column)
        clauses = []
        if sub.start is not None:
            clauses.append(date_col >= sub.start)
        if sub.end is not None:
            clauses.append(date_col <= sub.end)
        for name, value in (filters or {}).items():
            column = getattr(model, name)
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        return clauses

    async def _run(self, sub: SubQuery, stmt) -> list:
        async with get_session(sub.tier) as db:
            result = await db.execute(stmt)
            return list(result)

    async def _gather(self, spec: QuerySpec, build) -> List[list]:
        """Execute one statement per sub-query concurrently, each on its own tier."""
        tasks = [
            self._run(sub, build(spec.dataset.model_for(sub.tier), sub))
            for sub in spec.subqueries
        ]
        return await asyncio.gather(*tasks)

    async def fetch(
        self,
        spec: QuerySpec,
        filters: Filters = None,
        order_by_date: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Fetch rows for a routed range as dicts.

        Results are the concatenation of the tier results and carry no
        ordering unless ``order_by_date`` is set.
        """
        dataset = spec.dataset
        columns = dataset.data_columns()

        def build(model, sub):
            cols = [getattr(model, c) for c in columns]
            return select(*cols).where(*self._where(model, sub, dataset, filters))

        results = await self._gather(spec, build)
        rows = [dict(r._mapping) for part in results for r in part]

        if order_by_date:
            rows.sort(key=lambda r: r[dataset.date_column])

        logger.debug("Fetched routed rows", dataset=dataset.base_name, rows=len(rows))
        return rows

    async def count(self, spec: QuerySpec, filters: Filters = None) -> int:
        dataset = spec.dataset

        def build(model, sub):
            return select(func.count()).select_from(model).where(*self._where(model, sub, dataset, filters))

        results = await self._gather(spec, build)
        return sum(int(part[0][0] or 0) for part in results)

    async def sum(self, spec: QuerySpec, column: str, filters: Filters = None) -> float:
        dataset = spec.dataset

        def build(model, sub):
            return select(func.coalesce(func.sum(getattr(model, column)), 0)).where(
                *self._where(model, sub, dataset, filters)
            )

        results = await self._gather(spec, build)
        return round(sum(float(part[0][0] or 0) for part in results), 2)

    async def distinct(
        self,
        spec: QuerySpec,
        column: Union[str, Sequence[str]],
        filters: Filters = None,
    ) -> List[Any]:
        """
        Distinct values of one column, or distinct tuples of several,
        across both tiers.
        """
        dataset = spec.dataset
        names = [column] if isinstance(column, str) else list(column)

        def build(model, sub):
            cols = [getattr(model, c) for c in names]
            return select(*cols).distinct().where(*self._where(model, sub, dataset, filters))

        results = await self._gather(spec, build)
        if isinstance(column, str):
            values = {r[0] for part in results for r in part if r[0] is not None}
        else:
            values = {tuple(r) for part in results for r in part}
        return sorted(values)
