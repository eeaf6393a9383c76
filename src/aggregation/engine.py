"""
Aggregation Rollup Engine

Computes store and item summaries at six granularities:

    hour    <- raw rows (routed across tiers)
    day     <- hour summaries
    week    <- day summaries
    month   <- day summaries
    quarter <- month summaries
    year    <- quarter summaries

Each (level, store, period) is one unit of work, committed in its own
transaction as an upsert on the natural key, so re-running a unit
overwrites it. Units with the same key are serialized; disjoint keys run
in parallel up to the configured concurrency. A failed unit is logged and
counted and never aborts the rest of the batch.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import structlog
from sqlalchemy import delete, select

from src.aggregation import metrics
from src.aggregation.levels import (
    PIPELINE_ORDER,
    PRIOR_PERIOD_LEVELS,
    SOURCE_LEVEL,
    Period,
    SummaryLevel,
    hour_key,
    period_for,
    periods_between,
    prior_period,
    resolve_levels,
    same_period_prior_year,
)
from src.config import get_settings
from src.core.control import KeyedLocks, RunControl
from src.core.datasets import DatasetKind
from src.core.exceptions import InvalidRangeError, RollupComputationError
from src.core.tiers import Tier
from src.database.connection import get_session
from src.database.models import ITEM_SUMMARY_MODELS, STORE_SUMMARY_MODELS
from src.database.statements import chunked, upsert_statement
from src.routing.router import TieredQueryRouter

logger = structlog.get_logger(__name__)
settings = get_settings()

STORE_KEY = ("store_id", "period_key")
ITEM_KEY = ("store_id", "period_key", "item_id")
_ROW_EXCLUDE = {"id", "computed_at"}

# Rows per summary upsert statement
SUMMARY_CHUNK_SIZE = 200


class UnitState(str, Enum):
    """Lifecycle of one (level, store, period) rollup"""
    PENDING = "pending"
    COMPUTING = "computing"
    COMMITTED = "committed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class UnitResult:
    level: SummaryLevel
    store_id: str
    period_key: str
    state: UnitState
    store_rows: int = 0
    item_rows: int = 0
    error: Optional[str] = None


@dataclass
class LevelRunResult:
    """Outcome of one level across all of its units"""
    level: SummaryLevel
    start: date
    end: date
    units: List[UnitResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    def _count(self, state: UnitState) -> int:
        return sum(1 for u in self.units if u.state == state)

    @property
    def succeeded(self) -> int:
        return self._count(UnitState.COMMITTED)

    @property
    def failed(self) -> int:
        return self._count(UnitState.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(UnitState.SKIPPED)


@dataclass
class PipelineResult:
    levels: List[LevelRunResult] = field(default_factory=list)
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(r.succeeded for r in self.levels)

    @property
    def failed(self) -> int:
        return sum(r.failed for r in self.levels)

    @property
    def skipped(self) -> int:
        return sum(r.skipped for r in self.levels)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.cancelled


def _row_dict(row: Any) -> Dict[str, Any]:
    return {k: v for k, v in row._mapping.items() if k not in _ROW_EXCLUDE}


class AggregationEngine:
    """
    Rollup engine over the tiered raw store.

    Example:
        router = TieredQueryRouter(TierClassifier.from_settings())
        engine = AggregationEngine(router)
        result = await engine.rebuild(date(2025, 1, 1), date(2025, 3, 31))
    """

    def __init__(
        self,
        router: TieredQueryRouter,
        max_concurrency: Optional[int] = None,
        lock_timeout: Optional[float] = None,
        control: Optional[RunControl] = None,
    ):
        self.router = router
        self.max_concurrency = max_concurrency or settings.aggregation.max_concurrency
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.aggregation.lock_timeout_seconds
        self.control = control or RunControl()
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._locks = KeyedLocks()
        self._states: Dict[Tuple[str, str, str], UnitState] = {}

    @property
    def as_of(self) -> datetime:
        return self.router.classifier.as_of

    def state_of(self, level: SummaryLevel, store_id: str, period_key: str) -> UnitState:
        return self._states.get((SummaryLevel(level).value, store_id, period_key), UnitState.PENDING)

    def _set_state(self, level: SummaryLevel, store_id: str, period_key: str, state: UnitState) -> None:
        self._states[(level.value, store_id, period_key)] = state

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def rollup(self, level: SummaryLevel, store_id: str, period: Any) -> UnitResult:
        """
        Compute and commit one (level, store, period) unit.

        ``period`` is a Period or any date inside it. Concurrent calls for
        the same key run one after another.

        Raises:
            RollupComputationError: If the unit cannot be computed
        """
        level = SummaryLevel(level)
        if not isinstance(period, Period):
            period = period_for(level, period)
        key = (level.value, store_id, period.key)

        try:
            async with self._locks.hold(key, timeout=self.lock_timeout):
                self._set_state(level, store_id, period.key, UnitState.COMPUTING)
                async with get_session(Tier.ARCHIVE) as db:
                    if level == SummaryLevel.HOUR:
                        store_rows, item_rows = await self._compute_hours(db, store_id, period)
                    else:
                        store_rows, item_rows = await self._compute_from_children(db, level, store_id, period)
        except Exception as e:
            self._set_state(level, store_id, period.key, UnitState.FAILED)
            if isinstance(e, RollupComputationError):
                raise
            if isinstance(e, asyncio.TimeoutError):
                reason = f"key busy for more than {self.lock_timeout}s"
            else:
                reason = f"{type(e).__name__}: {e}"
            raise RollupComputationError(level.value, store_id, period.key, reason) from e

        self._set_state(level, store_id, period.key, UnitState.COMMITTED)
        logger.debug(
            "Rollup committed",
            level=level.value,
            store_id=store_id,
            period_key=period.key,
            store_rows=store_rows,
            item_rows=item_rows,
        )
        return UnitResult(level, store_id, period.key, UnitState.COMMITTED, store_rows, item_rows)

    async def run_level(
        self,
        level: SummaryLevel,
        start: date,
        end: date,
        stores: Optional[Sequence[str]] = None,
    ) -> LevelRunResult:
        """Roll up every store/period of one level overlapping [start, end]."""
        level = SummaryLevel(level)
        if start > end:
            raise InvalidRangeError(start, end)

        started = time.perf_counter()
        units = await self._discover_units(level, start, end)
        if stores is not None:
            wanted = set(stores)
            units = [(s, p) for s, p in units if s in wanted]

        logger.info(
            f"{level.value} aggregation started",
            level=level.value,
            start=start.isoformat(),
            end=end.isoformat(),
            units=len(units),
        )

        if level in PRIOR_PERIOD_LEVELS:
            # A period reads its predecessor's committed row: stores run in
            # parallel, each store's periods oldest first
            by_store: Dict[str, List[Period]] = {}
            for store_id, period in units:
                by_store.setdefault(store_id, []).append(period)
            chains = await asyncio.gather(
                *(self._run_chain(level, store_id, periods) for store_id, periods in by_store.items())
            )
            results = [unit for chain in chains for unit in chain]
        else:
            results = await asyncio.gather(*(self._run_unit(level, s, p) for s, p in units))
        run = LevelRunResult(level, start, end, list(results), time.perf_counter() - started)

        logger.info(
            f"{level.value} aggregation finished",
            level=level.value,
            succeeded=run.succeeded,
            failed=run.failed,
            skipped=run.skipped,
            duration_seconds=round(run.duration_seconds, 3),
        )
        return run

    async def run_pipeline(
        self,
        levels: Iterable[SummaryLevel],
        start: date,
        end: date,
        stores: Optional[Sequence[str]] = None,
    ) -> PipelineResult:
        """
        Run levels in dependency order (hour first, year last).

        A level starts only after the level below it has finished for the
        whole range. Once the run is cancelled, remaining levels are not
        started.
        """
        if start > end:
            raise InvalidRangeError(start, end)
        wanted = {SummaryLevel(level) for level in levels}
        started = time.perf_counter()
        result = PipelineResult()

        for level in PIPELINE_ORDER:
            if level not in wanted:
                continue
            if self.control.cancelled:
                result.cancelled = True
                logger.warning("Pipeline cancelled before level", level=level.value, reason=self.control.reason)
                break
            result.levels.append(await self.run_level(level, start, end, stores))

        result.cancelled = result.cancelled or self.control.cancelled
        result.duration_seconds = time.perf_counter() - started
        return result

    async def update(self, day: Optional[date] = None, level: str = "all") -> PipelineResult:
        """Recompute the periods containing ``day`` (default: yesterday)."""
        day = day or (self.as_of.date() - timedelta(days=1))
        return await self.run_pipeline(resolve_levels(level), day, day)

    async def rebuild(self, start: date, end: date, level: str = "all") -> PipelineResult:
        """Recompute every period overlapping [start, end]."""
        return await self.run_pipeline(resolve_levels(level), start, end)

    async def notify_raw_data_available(self, store_id: str, business_date: date) -> PipelineResult:
        """Raw rows for a store/date were committed: refresh its hour and day summaries."""
        logger.info("Raw data available", store_id=store_id, business_date=business_date.isoformat())
        return await self.run_pipeline(
            [SummaryLevel.HOUR, SummaryLevel.DAY], business_date, business_date, stores=[store_id]
        )

    # =========================================================================
    # UNIT EXECUTION
    # =========================================================================

    async def _run_unit(self, level: SummaryLevel, store_id: str, period: Period) -> UnitResult:
        async with self._semaphore:
            if self.control.cancelled:
                self._set_state(level, store_id, period.key, UnitState.SKIPPED)
                return UnitResult(level, store_id, period.key, UnitState.SKIPPED)
            try:
                return await self.rollup(level, store_id, period)
            except Exception as e:
                logger.error(
                    "Rollup failed",
                    level=level.value,
                    store_id=store_id,
                    period_key=period.key,
                    error=str(e),
                    exc_info=e.__cause__ is not None,
                )
                return UnitResult(level, store_id, period.key, UnitState.FAILED, error=str(e))

    async def _run_chain(self, level: SummaryLevel, store_id: str, periods: List[Period]) -> List[UnitResult]:
        results = []
        for period in sorted(periods, key=lambda p: p.start):
            results.append(await self._run_unit(level, store_id, period))
        return results

    async def _discover_units(self, level: SummaryLevel, start: date, end: date) -> List[Tuple[str, Period]]:
        """(store, period) pairs with source data for ``level`` in the range."""
        if level in (SummaryLevel.HOUR, SummaryLevel.DAY):
            spec = self.router.route(DatasetKind.DETAIL_ORDERS, start, end)
            pairs: Set[Tuple[str, date]] = set(
                await self.router.distinct(spec, ["store_id", "business_date"])
            )
            if level == SummaryLevel.HOUR:
                for kind in (DatasetKind.ORDER_LINE, DatasetKind.WASTE):
                    spec = self.router.route(kind, start, end)
                    pairs.update(await self.router.distinct(spec, ["store_id", "business_date"]))
            else:
                pairs.update(await self._summary_pairs(SummaryLevel.HOUR, start, end))
            return [(store, period_for(level, d)) for store, d in sorted(pairs)]

        source = SOURCE_LEVEL[level]
        units = []
        for period in periods_between(level, start, end):
            model = STORE_SUMMARY_MODELS[source]
            async with get_session(Tier.ARCHIVE) as db:
                result = await db.execute(
                    select(model.store_id).distinct().where(
                        model.period_start >= period.start,
                        model.period_end <= period.end,
                    )
                )
                stores = sorted(r[0] for r in result)
            units.extend((store, period) for store in stores)
        return units

    async def _summary_pairs(self, level: SummaryLevel, start: date, end: date) -> Set[Tuple[str, date]]:
        model = STORE_SUMMARY_MODELS[level]
        async with get_session(Tier.ARCHIVE) as db:
            result = await db.execute(
                select(model.store_id, model.period_start).distinct().where(
                    model.period_start >= start,
                    model.period_start <= end,
                )
            )
            return {(r[0], r[1]) for r in result}

    # =========================================================================
    # COMPUTATION
    # =========================================================================

    async def _compute_hours(self, db, store_id: str, period: Period) -> Tuple[int, int]:
        """Replace every hour summary of one store-day from raw rows."""
        day = period.start
        filters = {"store_id": store_id}
        orders, lines, waste = await asyncio.gather(
            self.router.fetch(self.router.route(DatasetKind.DETAIL_ORDERS, day, day), filters),
            self.router.fetch(self.router.route(DatasetKind.ORDER_LINE, day, day), filters),
            self.router.fetch(self.router.route(DatasetKind.WASTE, day, day), filters),
        )

        hourly = metrics.compute_hourly_store_metrics(orders, lines, waste)
        items = metrics.compute_hourly_item_metrics(lines)
        now = datetime.now()

        store_records = [
            {
                "store_id": store_id,
                "period_key": hour_key(day, hour),
                "period_start": day,
                "period_end": day,
                "hour": hour,
                "computed_at": now,
                **values,
            }
            for hour, values in hourly.items()
        ]
        item_records = []
        for item in items:
            hour = item.pop("hour")
            item_records.append({
                "store_id": store_id,
                "period_key": hour_key(day, hour),
                "period_start": day,
                "period_end": day,
                "hour": hour,
                "computed_at": now,
                **item,
            })

        # Hours that no longer have activity must not survive a recompute
        for model in (STORE_SUMMARY_MODELS[SummaryLevel.HOUR], ITEM_SUMMARY_MODELS[SummaryLevel.HOUR]):
            await db.execute(delete(model).where(model.store_id == store_id, model.period_start == day))

        await self._upsert(db, STORE_SUMMARY_MODELS[SummaryLevel.HOUR], store_records, STORE_KEY)
        await self._upsert(db, ITEM_SUMMARY_MODELS[SummaryLevel.HOUR], item_records, ITEM_KEY)
        return len(store_records), len(item_records)

    async def _compute_from_children(self, db, level: SummaryLevel, store_id: str, period: Period) -> Tuple[int, int]:
        source = SOURCE_LEVEL[level]
        children = await self._load_children(db, STORE_SUMMARY_MODELS[source], store_id, period)
        if not children:
            raise RollupComputationError(
                level.value,
                store_id,
                period.key,
                f"no {source.value} summaries for the period; run the {source.value} rollup first",
            )

        totals = metrics.sum_store_metrics(children)
        if level == SummaryLevel.DAY:
            totals["over_short"] = await self._over_short(store_id, period.start)
            totals["operational_days"] = 1
        summary = metrics.finalize_store_metrics(totals)

        if level in PRIOR_PERIOD_LEVELS:
            model = STORE_SUMMARY_MODELS[level]
            prior = await self._load_summary(db, model, store_id, prior_period(period).key)
            last_year = same_period_prior_year(period)
            prior_year = await self._load_summary(db, model, store_id, last_year.key) if last_year else None
            summary.update(metrics.comparison_metrics(summary, prior, prior_year))

        now = datetime.now()
        identity = {
            "store_id": store_id,
            "period_key": period.key,
            "period_start": period.start,
            "period_end": period.end,
            "hour": None,
            "computed_at": now,
        }
        await self._upsert(db, STORE_SUMMARY_MODELS[level], [{**identity, **summary}], STORE_KEY)

        item_children = await self._load_children(db, ITEM_SUMMARY_MODELS[source], store_id, period)
        item_records = [{**identity, **item} for item in metrics.sum_item_metrics(item_children)]
        item_model = ITEM_SUMMARY_MODELS[level]
        await db.execute(
            delete(item_model).where(item_model.store_id == store_id, item_model.period_key == period.key)
        )
        await self._upsert(db, item_model, item_records, ITEM_KEY)
        return 1, len(item_records)

    async def _load_children(self, db, model: Any, store_id: str, period: Period) -> List[Dict[str, Any]]:
        result = await db.execute(
            select(model).where(
                model.store_id == store_id,
                model.period_start >= period.start,
                model.period_end <= period.end,
            )
        )
        return [
            {c.name: getattr(obj, c.name) for c in model.__table__.columns if c.name not in _ROW_EXCLUDE}
            for obj in result.scalars()
        ]

    async def _load_summary(self, db, model: Any, store_id: str, period_key: str) -> Optional[Dict[str, Any]]:
        result = await db.execute(
            select(model.total_sales, model.total_orders).where(
                model.store_id == store_id, model.period_key == period_key
            )
        )
        row = result.first()
        return _row_dict(row) if row is not None else None

    async def _over_short(self, store_id: str, day: date) -> float:
        spec = self.router.route(DatasetKind.SUMMARY_SALES, day, day)
        return await self.router.sum(spec, "over_short", {"store_id": store_id})

    async def _upsert(self, db, model: Any, records: List[Dict[str, Any]], key: Sequence[str]) -> None:
        for chunk in chunked(records, SUMMARY_CHUNK_SIZE):
            await db.execute(upsert_statement(db, model, chunk, key))
