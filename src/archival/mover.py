"""
Archival Batch Mover

Relocates raw rows older than the cutoff from the hot tier to the archive
tier, one bounded date window at a time.

Per window:
1. Count hot rows in the window; skip empty windows.
2. Copy the rows to archive with INSERT .. ON CONFLICT DO NOTHING, in
   chunks, and commit the archive side.
3. Delete the copied rows from hot and commit.
4. Optionally verify: no hot rows remain and archive holds at least as
   many rows as were copied.

The tiers are separate endpoints, so steps 2 and 3 are two transactions.
A crash between them leaves rows in both tiers; the next run copies
them again (every copy is ignored) and completes the delete. The router
never reads hot rows older than the cutoff, so the overlap is invisible.
"""

import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

import structlog
from sqlalchemy import delete, func, select

from src.config import get_settings
from src.core.control import RunControl
from src.core.datasets import DatasetDescriptor, DatasetKind, archivable_datasets, get_dataset
from src.core.exceptions import VerificationFailedError
from src.core.tiers import Tier, TierClassifier
from src.database.connection import get_session
from src.database.statements import insert_ignore_statement

logger = structlog.get_logger(__name__)
settings = get_settings()


class WindowOutcome(str, Enum):
    """Result of one archival window"""
    MOVED = "moved"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ArchiveBatchRecord:
    """Progress record for one window; kept in memory and logged"""
    table: str
    batch_start_date: date
    batch_end_date: date
    outcome: WindowOutcome
    rows_found: int = 0
    rows_moved: int = 0
    duplicates_ignored: int = 0
    rows_deleted: int = 0
    verified: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0


@dataclass
class DatasetArchiveResult:
    dataset: str
    cutoff: date
    min_date: Optional[date] = None
    max_date: Optional[date] = None
    windows: List[ArchiveBatchRecord] = field(default_factory=list)
    duration_seconds: float = 0.0

    def _count(self, outcome: WindowOutcome) -> int:
        return sum(1 for w in self.windows if w.outcome == outcome)

    @property
    def succeeded(self) -> int:
        return self._count(WindowOutcome.MOVED) + self._count(WindowOutcome.DRY_RUN)

    @property
    def failed(self) -> int:
        return self._count(WindowOutcome.FAILED)

    @property
    def cancelled(self) -> int:
        return self._count(WindowOutcome.CANCELLED)

    @property
    def rows_moved(self) -> int:
        return sum(w.rows_moved for w in self.windows)

    @property
    def rows_deleted(self) -> int:
        return sum(w.rows_deleted for w in self.windows)

    @property
    def duplicates_ignored(self) -> int:
        return sum(w.duplicates_ignored for w in self.windows)


@dataclass
class ArchiveRunResult:
    datasets: List[DatasetArchiveResult] = field(default_factory=list)
    failed_datasets: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def failed_windows(self) -> int:
        return sum(d.failed for d in self.datasets)

    @property
    def ok(self) -> bool:
        return not self.failed_datasets and self.failed_windows == 0 and not self.cancelled


class ArchivalBatchMover:
    """
    Move hot rows older than the cutoff into the archive tier.

    Example:
        mover = ArchivalBatchMover(TierClassifier.from_settings(), verify=True)
        result = await mover.archive_all()
    """

    def __init__(
        self,
        classifier: TierClassifier,
        batch_days: Optional[int] = None,
        chunk_size: Optional[int] = None,
        verify: Optional[bool] = None,
        dry_run: bool = False,
        control: Optional[RunControl] = None,
    ):
        self.classifier = classifier
        self.batch_days = batch_days or settings.tiering.archive_batch_days
        self.chunk_size = chunk_size or settings.tiering.insert_chunk_size
        self.verify = settings.tiering.verify_archive if verify is None else verify
        self.dry_run = dry_run
        self.control = control or RunControl()

        if self.batch_days < 1:
            raise ValueError("batch_days must be >= 1")

    # =========================================================================
    # RUNS
    # =========================================================================

    async def archive_all(self, datasets: Optional[List[Union[str, DatasetKind]]] = None) -> ArchiveRunResult:
        """Archive every archivable dataset (or the given ones)."""
        started = time.perf_counter()
        targets = [get_dataset(d) for d in datasets] if datasets else archivable_datasets()
        result = ArchiveRunResult()

        for descriptor in targets:
            if self.control.cancelled:
                result.cancelled = True
                break
            try:
                result.datasets.append(await self.archive_dataset(descriptor.kind))
            except Exception as e:
                logger.error(
                    "Dataset archival failed",
                    dataset=descriptor.base_name,
                    error=str(e),
                    exc_info=True,
                )
                result.failed_datasets[descriptor.base_name] = str(e)

        result.cancelled = result.cancelled or self.control.cancelled
        result.duration_seconds = time.perf_counter() - started
        logger.info(
            "Archival run finished",
            datasets=len(result.datasets),
            failed_datasets=len(result.failed_datasets),
            failed_windows=result.failed_windows,
            cancelled=result.cancelled,
            dry_run=self.dry_run,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    async def archive_dataset(self, kind: Union[str, DatasetKind]) -> DatasetArchiveResult:
        descriptor = get_dataset(kind)
        cutoff = self.classifier.cutoff
        started = time.perf_counter()
        result = DatasetArchiveResult(dataset=descriptor.base_name, cutoff=cutoff)

        result.min_date, result.max_date = await self._hot_date_bounds(descriptor, cutoff)
        if result.min_date is None:
            logger.info("No data to archive", dataset=descriptor.base_name, cutoff=cutoff.isoformat())
            return result

        windows = list(self._windows(result.min_date, result.max_date, cutoff))
        logger.info(
            "Archiving dataset",
            dataset=descriptor.base_name,
            cutoff=cutoff.isoformat(),
            min_date=result.min_date.isoformat(),
            max_date=result.max_date.isoformat(),
            windows=len(windows),
            batch_days=self.batch_days,
            dry_run=self.dry_run,
        )

        for start, end in windows:
            if self.control.cancelled:
                result.windows.append(
                    ArchiveBatchRecord(descriptor.hot_table, start, end, WindowOutcome.CANCELLED)
                )
                continue
            record = await self._run_window(descriptor, start, end)
            result.windows.append(record)

        result.duration_seconds = time.perf_counter() - started
        logger.info(
            "Dataset archived",
            dataset=descriptor.base_name,
            succeeded=result.succeeded,
            failed=result.failed,
            cancelled=result.cancelled,
            rows_moved=result.rows_moved,
            rows_deleted=result.rows_deleted,
            duplicates_ignored=result.duplicates_ignored,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def _windows(self, min_date: date, max_date: date, cutoff: date) -> Iterator[Tuple[date, date]]:
        last = min(max_date, cutoff - timedelta(days=1))
        start = min_date
        while start <= last:
            end = min(start + timedelta(days=self.batch_days - 1), last)
            yield start, end
            start = end + timedelta(days=1)

    # =========================================================================
    # WINDOWS
    # =========================================================================

    async def _run_window(self, descriptor: DatasetDescriptor, start: date, end: date) -> ArchiveBatchRecord:
        started = time.perf_counter()
        record = ArchiveBatchRecord(descriptor.hot_table, start, end, WindowOutcome.FAILED)
        try:
            await self._move_window(descriptor, record)
        except Exception as e:
            record.outcome = WindowOutcome.FAILED
            record.error = str(e)
            logger.error(
                "Archive window failed",
                dataset=descriptor.base_name,
                window_start=start.isoformat(),
                window_end=end.isoformat(),
                rows_moved=record.rows_moved,
                rows_deleted=record.rows_deleted,
                error=str(e),
                exc_info=not isinstance(e, VerificationFailedError),
            )
        record.duration_seconds = time.perf_counter() - started

        if record.outcome != WindowOutcome.FAILED:
            logger.info(
                "Archive window",
                dataset=descriptor.base_name,
                window_start=start.isoformat(),
                window_end=end.isoformat(),
                outcome=record.outcome.value,
                rows_found=record.rows_found,
                rows_moved=record.rows_moved,
                duplicates_ignored=record.duplicates_ignored,
                rows_deleted=record.rows_deleted,
                verified=record.verified,
            )
        return record

    async def _move_window(self, descriptor: DatasetDescriptor, record: ArchiveBatchRecord) -> None:
        start, end = record.batch_start_date, record.batch_end_date
        hot_model = descriptor.hot_model
        archive_model = descriptor.archive_model

        record.rows_found = await self._count(Tier.HOT, descriptor, start, end)
        if record.rows_found == 0:
            record.outcome = WindowOutcome.SKIPPED
            return
        if self.dry_run:
            record.outcome = WindowOutcome.DRY_RUN
            return

        # Copy: page through hot by id, insert-or-ignore into archive
        columns = descriptor.data_columns()
        date_col = getattr(hot_model, descriptor.date_column)
        copied = 0
        inserted = 0
        last_id = 0
        async with get_session(Tier.ARCHIVE) as archive_db:
            while True:
                async with get_session(Tier.HOT) as hot_db:
                    page = await hot_db.execute(
                        select(hot_model.id, *[getattr(hot_model, c) for c in columns])
                        .where(date_col >= start, date_col <= end, hot_model.id > last_id)
                        .order_by(hot_model.id)
                        .limit(self.chunk_size)
                    )
                    rows = [dict(r._mapping) for r in page]
                if not rows:
                    break
                last_id = rows[-1]["id"]
                records = [{c: row[c] for c in columns} for row in rows]
                res = await archive_db.execute(
                    insert_ignore_statement(archive_db, archive_model, records, descriptor.natural_key)
                )
                copied += len(records)
                inserted += res.rowcount if res.rowcount is not None and res.rowcount >= 0 else len(records)

        record.rows_moved = inserted
        record.duplicates_ignored = copied - inserted
        if record.duplicates_ignored:
            logger.warning(
                "Archive rows already present, insert ignored",
                dataset=descriptor.base_name,
                window_start=start.isoformat(),
                window_end=end.isoformat(),
                duplicates_ignored=record.duplicates_ignored,
            )

        # Delete only what was copied; rows written to the window meanwhile have higher ids
        async with get_session(Tier.HOT) as hot_db:
            res = await hot_db.execute(
                delete(hot_model).where(date_col >= start, date_col <= end, hot_model.id <= last_id)
            )
            record.rows_deleted = res.rowcount if res.rowcount is not None else 0

        if self.verify:
            await self._verify_window(descriptor, record, copied)
        record.outcome = WindowOutcome.MOVED

    async def _verify_window(self, descriptor: DatasetDescriptor, record: ArchiveBatchRecord, copied: int) -> None:
        start, end = record.batch_start_date, record.batch_end_date
        hot_remaining = await self._count(Tier.HOT, descriptor, start, end)
        archive_count = await self._count(Tier.ARCHIVE, descriptor, start, end)
        if hot_remaining != 0 or archive_count < copied:
            raise VerificationFailedError(descriptor.base_name, start, end, hot_remaining, archive_count)
        record.verified = True

    # =========================================================================
    # COUNTS
    # =========================================================================

    async def _count(self, tier: Tier, descriptor: DatasetDescriptor, start: date, end: date) -> int:
        model = descriptor.model_for(tier)
        date_col = getattr(model, descriptor.date_column)
        async with get_session(tier) as db:
            result = await db.execute(
                select(func.count()).select_from(model).where(date_col >= start, date_col <= end)
            )
            return int(result.scalar_one())

    async def _hot_date_bounds(self, descriptor: DatasetDescriptor, cutoff: date) -> Tuple[Optional[date], Optional[date]]:
        date_col = getattr(descriptor.hot_model, descriptor.date_column)
        async with get_session(Tier.HOT) as db:
            result = await db.execute(select(func.min(date_col), func.max(date_col)).where(date_col < cutoff))
            min_date, max_date = result.one()
        return _as_date(min_date), _as_date(max_date)

    async def distribution(self, kind: Union[str, DatasetKind]) -> Dict[str, object]:
        """Hot/archive row counts for one dataset"""
        descriptor = get_dataset(kind)
        counts = {}
        for tier in (Tier.HOT, Tier.ARCHIVE):
            model = descriptor.model_for(tier)
            async with get_session(tier) as db:
                result = await db.execute(select(func.count()).select_from(model))
                counts[tier] = int(result.scalar_one())

        total = counts[Tier.HOT] + counts[Tier.ARCHIVE]
        return {
            "dataset": descriptor.base_name,
            "hot_rows": counts[Tier.HOT],
            "archive_rows": counts[Tier.ARCHIVE],
            "total_rows": total,
            "hot_percent": round(counts[Tier.HOT] / total * 100, 1) if total else 0.0,
        }


def _as_date(value) -> Optional[date]:
    # SQLite returns MIN/MAX over dates as ISO strings
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value)[:10])
