"""
Prefect Workflow Orchestration - Tier Maintenance

Scheduled jobs for the tiered POS store:
- Rollup aggregation (yesterday, or an explicit range)
- Archival of hot rows older than the cutoff
- Consistency audit of the recent window
- Nightly flow running the three in order
"""

from datetime import date, datetime
from typing import List, Optional

from prefect import flow, get_run_logger, task

from src.aggregation.engine import AggregationEngine
from src.archival.mover import ArchivalBatchMover
from src.core.tiers import TierClassifier
from src.database.connection import close_databases, init_databases
from src.quality.auditor import ConsistencyAuditor
from src.routing.router import TieredQueryRouter


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="run_aggregation",
    description="Roll up summaries for a date range",
)
async def run_aggregation(
    as_of: datetime,
    start: Optional[date] = None,
    end: Optional[date] = None,
    level: str = "all",
) -> dict:
    """Update yesterday's periods, or rebuild [start, end]"""
    logger = get_run_logger()
    engine = AggregationEngine(TieredQueryRouter(TierClassifier.from_settings(as_of=as_of)))

    if start is not None and end is not None:
        result = await engine.rebuild(start, end, level)
    else:
        result = await engine.update(start, level)

    logger.info(
        f"Aggregation complete: {result.succeeded} succeeded, "
        f"{result.failed} failed, {result.skipped} skipped"
    )
    return {
        "ok": result.ok,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "skipped": result.skipped,
        "duration_seconds": result.duration_seconds,
    }


@task(
    name="run_archival",
    description="Move hot rows older than the cutoff to the archive tier",
    retries=2,
    retry_delay_seconds=300,
)
async def run_archival(
    as_of: datetime,
    datasets: Optional[List[str]] = None,
    verify: Optional[bool] = None,
) -> dict:
    """Archive every archivable dataset; safe to retry"""
    logger = get_run_logger()
    classifier = TierClassifier.from_settings(as_of=as_of)
    result = await ArchivalBatchMover(classifier, verify=verify).archive_all(datasets)

    rows_moved = sum(d.rows_moved for d in result.datasets)
    logger.info(
        f"Archival complete (cutoff {classifier.cutoff}): {rows_moved} rows moved, "
        f"{result.failed_windows} failed windows, {len(result.failed_datasets)} failed datasets"
    )
    return {
        "ok": result.ok,
        "cutoff": classifier.cutoff.isoformat(),
        "rows_moved": rows_moved,
        "failed_windows": result.failed_windows,
        "failed_datasets": result.failed_datasets,
    }


@task(
    name="run_audit",
    description="Consistency audit of the recent window",
)
async def run_audit(as_of: datetime, days: Optional[int] = None) -> dict:
    logger = get_run_logger()
    auditor = ConsistencyAuditor(TieredQueryRouter(TierClassifier.from_settings(as_of=as_of)))
    report = await auditor.validate_recent(days)

    for issue in report.issues:
        logger.warning(f"Audit issue: {issue}")
    logger.info(
        f"Audit {'passed' if report.passed else 'failed'}: "
        f"{len(report.issues)} issues, {len(report.warnings)} warnings over {report.dates_checked} dates"
    )
    return {
        "ok": report.passed,
        "issues": report.issues,
        "warnings": len(report.warnings),
        "dates_checked": report.dates_checked,
    }


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="aggregation",
    description="Rollup aggregation for yesterday or an explicit range",
)
async def aggregation_flow(
    start: Optional[date] = None,
    end: Optional[date] = None,
    level: str = "all",
) -> dict:
    await init_databases()
    try:
        return await run_aggregation(datetime.now(), start, end, level)
    finally:
        await close_databases()


@flow(
    name="archival",
    description="Daily archival of hot rows past the retention window",
)
async def archival_flow(datasets: Optional[List[str]] = None, verify: Optional[bool] = None) -> dict:
    await init_databases()
    try:
        return await run_archival(datetime.now(), datasets, verify)
    finally:
        await close_databases()


@flow(
    name="audit",
    description="Daily consistency audit",
)
async def audit_flow(days: Optional[int] = None) -> dict:
    await init_databases()
    try:
        return await run_audit(datetime.now(), days)
    finally:
        await close_databases()


@flow(
    name="nightly_maintenance",
    description="Aggregate, archive, then audit",
    retries=1,
    retry_delay_seconds=600,
)
async def nightly_maintenance(as_of: Optional[datetime] = None) -> dict:
    """
    Nightly maintenance pipeline.

    Steps:
    1. Roll up yesterday's periods at every level
    2. Archive hot rows older than the cutoff
    3. Audit the recent window

    Every step runs against one as-of instant so they agree on the cutoff.
    Each step runs even if an earlier one reported failures; the flow fails
    at the end if any step did.
    """
    logger = get_run_logger()
    as_of = as_of or datetime.now()
    logger.info(f"Starting nightly maintenance as of {as_of.isoformat()}")

    results = {"as_of": as_of.isoformat(), "steps": {}}
    await init_databases()
    try:
        results["steps"]["aggregation"] = await run_aggregation(as_of)
        results["steps"]["archival"] = await run_archival(as_of)
        results["steps"]["audit"] = await run_audit(as_of)
    finally:
        await close_databases()

    failed = [name for name, step in results["steps"].items() if not step["ok"]]
    results["status"] = "failed" if failed else "success"
    if failed:
        logger.error(f"Nightly maintenance failed steps: {failed}")
        raise RuntimeError(f"Nightly maintenance failed: {', '.join(failed)}")
    return results


if __name__ == "__main__":
    import asyncio

    asyncio.run(nightly_maintenance())
