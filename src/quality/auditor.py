"""
Consistency Auditor

Read-only cross-checks between the tiers and between raw rows and day
summaries. Mismatches are reported as issues (the audit fails); empty
dates and other soft findings are warnings.
"""

import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import polars as pl
import structlog
from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, inspect, select

from src.aggregation.levels import SummaryLevel
from src.aggregation.queries import SummaryQueryService
from src.config import get_settings
from src.core.datasets import DATASETS, DatasetDescriptor, DatasetKind
from src.core.tiers import Tier
from src.database.connection import check_database_health, get_engine, get_session
from src.database.models import ArchiveBase, HotBase, SummaryBase
from src.quality.validators import (
    DataValidator,
    ValidationSeverity,
    create_detail_orders_validator,
    create_order_line_validator,
    create_waste_validator,
)
from src.routing.router import TieredQueryRouter

logger = structlog.get_logger(__name__)
settings = get_settings()

_FRAME_VALIDATORS = {
    DatasetKind.DETAIL_ORDERS: create_detail_orders_validator,
    DatasetKind.ORDER_LINE: create_order_line_validator,
    DatasetKind.WASTE: create_waste_validator,
}

_REQUIRED_TABLES = {
    Tier.HOT: set(HotBase.metadata.tables),
    Tier.ARCHIVE: set(ArchiveBase.metadata.tables) | set(SummaryBase.metadata.tables),
}


@dataclass
class AuditReport:
    scope: str
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    checks: Dict[str, Any] = field(default_factory=dict)
    dates_checked: int = 0
    duration_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return not self.issues

    def issue(self, message: str, **context) -> None:
        self.issues.append(message)
        logger.error("Audit issue", message=message, **context)

    def warn(self, message: str, **context) -> None:
        self.warnings.append(message)
        logger.warning("Audit warning", message=message, **context)


def _polars_type(column) -> Any:
    sa_type = column.type
    if isinstance(sa_type, DateTime):
        return pl.Datetime
    if isinstance(sa_type, Date):
        return pl.Date
    if isinstance(sa_type, Numeric):
        return pl.Float64
    if isinstance(sa_type, Integer):
        return pl.Int64
    if isinstance(sa_type, Boolean):
        return pl.Boolean
    return pl.Utf8


def _frame(rows: List[Dict[str, Any]], descriptor: DatasetDescriptor) -> pl.DataFrame:
    """Routed rows as a frame typed from the dataset's columns."""
    columns = [c for c in descriptor.hot_model.__table__.columns if c.name != "id"]
    schema = {c.name: _polars_type(c) for c in columns}
    data = [
        {name: (float(row.get(name)) if isinstance(row.get(name), Decimal) else row.get(name)) for name in schema}
        for row in rows
    ]
    return pl.DataFrame(data, schema=schema)


class ConsistencyAuditor:
    """
    Validate data integrity for a date, a recent window or everything.

    Example:
        auditor = ConsistencyAuditor(router)
        report = await auditor.validate_recent()
        if not report.passed: ...
    """

    def __init__(
        self,
        router: TieredQueryRouter,
        tolerance: Optional[float] = None,
        expected_stores: Optional[Iterable[str]] = None,
    ):
        self.router = router
        self.classifier = router.classifier
        self.tolerance = settings.audit.tolerance if tolerance is None else tolerance
        self.expected_stores = list(settings.audit.expected_stores if expected_stores is None else expected_stores)
        self.summaries = SummaryQueryService()

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def validate_date(self, day: date) -> AuditReport:
        return await self._run(f"date {day.isoformat()}", [day])

    async def validate_recent(self, days: Optional[int] = None) -> AuditReport:
        """The ``days`` business dates before the as-of date."""
        days = days or settings.audit.recent_days
        today = self.classifier.today
        dates = [today - timedelta(days=n) for n in range(days, 0, -1)]
        return await self._run(f"recent {days} days", dates)

    async def validate_full(self) -> AuditReport:
        """Every business date present in either tier."""
        report = AuditReport(scope="full")
        if not await self._check_infrastructure(report):
            return report
        spec = self.router.route(DatasetKind.DETAIL_ORDERS)
        dates = await self.router.distinct(spec, "business_date")
        for kind in DATASETS:
            spec = self.router.route(kind)
            report.checks[f"{kind.value}_total_rows"] = await self.router.count(spec)
        return await self._run("full", dates, report)

    async def _run(self, scope: str, dates: List[date], report: Optional[AuditReport] = None) -> AuditReport:
        started = time.perf_counter()
        if report is None:
            report = AuditReport(scope=scope)
            if not await self._check_infrastructure(report):
                report.duration_seconds = time.perf_counter() - started
                return report

        for day in dates:
            await self._check_date(report, day)
            report.dates_checked += 1

        report.duration_seconds = time.perf_counter() - started
        logger.info(
            "Audit complete",
            scope=report.scope,
            dates=report.dates_checked,
            issues=len(report.issues),
            warnings=len(report.warnings),
            passed=report.passed,
            duration_seconds=round(report.duration_seconds, 3),
        )
        return report

    # =========================================================================
    # INFRASTRUCTURE
    # =========================================================================

    async def _check_infrastructure(self, report: AuditReport) -> bool:
        healthy = True
        for tier in (Tier.HOT, Tier.ARCHIVE):
            health = await check_database_health(tier)
            report.checks[f"{tier.value}_connection"] = health["status"]
            if health["status"] != "healthy":
                report.issue(f"{tier.value} tier unreachable: {health.get('error')}", tier=tier.value)
                healthy = False
        if not healthy:
            return False

        for tier, required in _REQUIRED_TABLES.items():
            async with get_engine(tier).connect() as conn:
                present = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
            for table in sorted(required - present):
                report.issue(f"Missing relation {table} on {tier.value} tier", tier=tier.value, table=table)
                healthy = False
        return healthy

    # =========================================================================
    # PER-DATE CHECKS
    # =========================================================================

    async def _check_date(self, report: AuditReport, day: date) -> None:
        iso = day.isoformat()
        frames: Dict[DatasetKind, pl.DataFrame] = {}

        for kind, descriptor in DATASETS.items():
            if self.classifier.tier_for(day) == Tier.ARCHIVE:
                await self._check_pending_archival(report, descriptor, day)

            rows = await self.router.fetch(self.router.route(kind, day, day))
            frames[kind] = _frame(rows, descriptor)
            report.checks[f"{kind.value}:{iso}"] = len(rows)
            if not rows:
                report.warn(f"No {kind.value} rows for {iso}", dataset=kind.value, date=iso)
                continue
            if kind in _FRAME_VALIDATORS:
                self._apply_validator(report, _FRAME_VALIDATORS[kind](), frames[kind], kind, iso)

        orders = frames[DatasetKind.DETAIL_ORDERS]
        lines = frames[DatasetKind.ORDER_LINE]

        if not lines.is_empty() and not orders.is_empty():
            validator = DataValidator(name="order_line").add_referential_integrity_check(
                ["store_id", "business_date", "order_id"], orders, severity=ValidationSeverity.WARNING
            )
            self._apply_validator(report, validator, lines, DatasetKind.ORDER_LINE, iso)

        raw_stores = set(orders["store_id"].to_list()) if not orders.is_empty() else set()
        for store in sorted(set(self.expected_stores) - raw_stores):
            report.issue(f"Expected store {store} has no orders for {iso}", store_id=store, date=iso)

        if not orders.is_empty():
            await self._check_sales_vs_summary(report, orders, day)

    def _apply_validator(
        self,
        report: AuditReport,
        validator: DataValidator,
        frame: pl.DataFrame,
        kind: DatasetKind,
        iso: str,
    ) -> None:
        result = validator.validate(frame)
        for check in result.failures():
            message = f"{kind.value} {iso}: {check.message}"
            if check.severity == ValidationSeverity.ERROR:
                report.issue(message, dataset=kind.value, date=iso, check=check.name)
            else:
                report.warn(message, dataset=kind.value, date=iso, check=check.name)

    async def _check_sales_vs_summary(self, report: AuditReport, orders: pl.DataFrame, day: date) -> None:
        iso = day.isoformat()
        raw = {
            row["store_id"]: round(row["gross_sales"] or 0.0, 2)
            for row in orders.group_by("store_id").agg(
                pl.col("gross_sales").cast(pl.Float64).sum()
            ).to_dicts()
        }
        summaries = await self.summaries.get_summary(SummaryLevel.DAY, None, day, day)
        summarized = {row["store_id"]: float(row["gross_sales"] or 0) for row in summaries}

        for store, raw_total in sorted(raw.items()):
            if store not in summarized:
                report.issue(f"Store {store} has raw data but no day summary for {iso}", store_id=store, date=iso)
                continue
            difference = abs(raw_total - summarized[store])
            if difference > self.tolerance:
                report.issue(
                    f"Sales mismatch for {store} on {iso}: raw {raw_total:.2f} vs summary {summarized[store]:.2f}",
                    store_id=store,
                    date=iso,
                    difference=round(difference, 2),
                )

    async def _check_pending_archival(self, report: AuditReport, descriptor: DatasetDescriptor, day: date) -> None:
        """Natural keys held by both tiers for an archive-tier date."""
        keys = {}
        for tier in (Tier.HOT, Tier.ARCHIVE):
            model = descriptor.model_for(tier)
            cols = [getattr(model, c) for c in descriptor.natural_key]
            async with get_session(tier) as db:
                result = await db.execute(select(*cols).where(getattr(model, descriptor.date_column) == day))
                keys[tier] = {tuple(r) for r in result}

        if keys[Tier.HOT]:
            duplicates = len(keys[Tier.HOT] & keys[Tier.ARCHIVE])
            report.warn(
                f"{descriptor.base_name} {day.isoformat()}: {len(keys[Tier.HOT])} hot rows past the cutoff "
                f"awaiting archival ({duplicates} already in archive)",
                dataset=descriptor.base_name,
                date=day.isoformat(),
            )
