"""
Operational command line for the tiered POS analytics store.

Commands:
    pos-tiers init-db
    pos-tiers aggregate rebuild --start 2025-01-01 --end 2025-03-31 [--level month]
    pos-tiers aggregate update [--date 2025-11-15] [--level all]
    pos-tiers archive [--cutoff-days 90] [--table detail_orders] [--batch-days 30] [--verify] [--dry-run]
    pos-tiers stats
    pos-tiers validate [--date 2025-11-15 | --days 7 | --full]
    pos-tiers seed --stores 1001 1002 --start 2025-11-01 --end 2025-11-07

Every command prints one line per item and a summary line, and exits
non-zero when anything failed.
"""

import argparse
import asyncio
import sys
import time
from datetime import date
from typing import List, Optional

import structlog

from src.aggregation.engine import AggregationEngine, PipelineResult
from src.aggregation.levels import PIPELINE_ORDER
from src.archival.mover import ArchivalBatchMover
from src.config.logging import configure_logging
from src.core.control import RunControl
from src.core.datasets import DATASETS, archivable_datasets
from src.core.exceptions import TieredStorageError
from src.core.tiers import TierClassifier
from src.data.generators import DataGenerator
from src.database.connection import close_databases, create_schema, init_databases
from src.ingestion.hot_writer import HotTierWriter, LoadStatus
from src.quality.auditor import ConsistencyAuditor
from src.routing.router import TieredQueryRouter

logger = structlog.get_logger(__name__)

LEVEL_CHOICES = ["all"] + [level.value for level in PIPELINE_ORDER]


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from e


def _summary(name: str, succeeded: int, failed: int, started: float, **extra) -> None:
    parts = [f"{name}: {succeeded} succeeded, {failed} failed"]
    parts.extend(f"{k}={v}" for k, v in extra.items())
    parts.append(f"duration={time.perf_counter() - started:.2f}s")
    print(", ".join(parts))


# =============================================================================
# COMMANDS
# =============================================================================

async def cmd_init_db(args: argparse.Namespace) -> int:
    await create_schema()
    print("Schema created on hot and archive tiers")
    return 0


def _print_pipeline(result: PipelineResult) -> None:
    for level in result.levels:
        print(
            f"  {level.level.value:<8} {level.start.isoformat()}..{level.end.isoformat()}  "
            f"succeeded={level.succeeded} failed={level.failed} skipped={level.skipped}"
        )
        for unit in level.units:
            if unit.error:
                print(f"    FAILED {unit.store_id} {unit.period_key}: {unit.error}")


async def cmd_aggregate(args: argparse.Namespace) -> int:
    started = time.perf_counter()
    classifier = TierClassifier.from_settings()
    control = RunControl(deadline_seconds=args.deadline)
    engine = AggregationEngine(TieredQueryRouter(classifier), control=control)

    if args.action == "rebuild":
        result = await engine.rebuild(args.start, args.end, args.level)
    else:
        result = await engine.update(args.date, args.level)

    _print_pipeline(result)
    _summary(
        f"aggregate {args.action}",
        result.succeeded,
        result.failed,
        started,
        skipped=result.skipped,
        cancelled=result.cancelled,
    )
    return 0 if result.ok else 1


async def cmd_archive(args: argparse.Namespace) -> int:
    started = time.perf_counter()
    classifier = TierClassifier.from_settings(retention_days=args.cutoff_days)
    mover = ArchivalBatchMover(
        classifier,
        batch_days=args.batch_days,
        verify=True if args.verify else None,
        dry_run=args.dry_run,
        control=RunControl(deadline_seconds=args.deadline),
    )
    result = await mover.archive_all([args.table] if args.table else None)

    print(f"Cutoff: {classifier.cutoff.isoformat()}{' (dry run)' if args.dry_run else ''}")
    for dataset in result.datasets:
        for window in dataset.windows:
            line = (
                f"  {window.table:<22} {window.batch_start_date.isoformat()}..{window.batch_end_date.isoformat()}  "
                f"{window.outcome.value:<9} found={window.rows_found} moved={window.rows_moved} "
                f"deleted={window.rows_deleted} duplicates={window.duplicates_ignored}"
            )
            if window.error:
                line += f"  error={window.error}"
            print(line)
    for name, error in result.failed_datasets.items():
        print(f"  {name}: FAILED {error}")

    succeeded = sum(d.succeeded for d in result.datasets)
    _summary(
        "archive",
        succeeded,
        result.failed_windows + len(result.failed_datasets),
        started,
        rows_moved=sum(d.rows_moved for d in result.datasets),
        cancelled=result.cancelled,
    )
    return 0 if result.ok else 1


async def cmd_stats(args: argparse.Namespace) -> int:
    started = time.perf_counter()
    mover = ArchivalBatchMover(TierClassifier.from_settings())
    print(f"{'dataset':<16} {'hot':>10} {'archive':>10} {'total':>10} {'hot %':>7}")
    for descriptor in DATASETS.values():
        dist = await mover.distribution(descriptor.kind)
        print(
            f"{dist['dataset']:<16} {dist['hot_rows']:>10} {dist['archive_rows']:>10} "
            f"{dist['total_rows']:>10} {dist['hot_percent']:>6.1f}%"
        )
    _summary("stats", len(DATASETS), 0, started)
    return 0


async def cmd_validate(args: argparse.Namespace) -> int:
    auditor = ConsistencyAuditor(TieredQueryRouter(TierClassifier.from_settings()))
    if args.full:
        report = await auditor.validate_full()
    elif args.date:
        report = await auditor.validate_date(args.date)
    else:
        report = await auditor.validate_recent(args.days)

    for name, value in sorted(report.checks.items()):
        print(f"  {name}: {value}")
    for warning in report.warnings:
        print(f"  WARNING {warning}")
    for issue in report.issues:
        print(f"  ISSUE {issue}")
    print(
        f"validate {report.scope}: {'PASSED' if report.passed else 'FAILED'}, "
        f"dates={report.dates_checked}, issues={len(report.issues)}, warnings={len(report.warnings)}, "
        f"duration={report.duration_seconds:.2f}s"
    )
    return 0 if report.passed else 1


async def cmd_seed(args: argparse.Namespace) -> int:
    started = time.perf_counter()
    engine = None
    if args.aggregate:
        engine = AggregationEngine(TieredQueryRouter(TierClassifier.from_settings()))
    writer = HotTierWriter(on_raw_data=engine.notify_raw_data_available if engine else None)
    results = await DataGenerator(seed=args.seed).seed(writer, args.stores, args.start, args.end)

    failed = 0
    for name, result in results.items():
        print(f"  {name:<16} {result.status.value:<9} rows={result.rows_loaded}")
        if result.status == LoadStatus.FAILED:
            failed += 1
    _summary("seed", len(results) - failed, failed, started)
    return 0 if failed == 0 else 1


# =============================================================================
# PARSER
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pos-tiers", description="Tiered POS analytics maintenance")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--log-format", choices=["json", "console"], default=None, help="Override LOG_FORMAT")
    sub = parser.add_subparsers(dest="command", required=True)

    init_db = sub.add_parser("init-db", help="Create all relations on both tiers")
    init_db.set_defaults(handler=cmd_init_db)

    aggregate = sub.add_parser("aggregate", help="Compute rollup summaries")
    aggregate_sub = aggregate.add_subparsers(dest="action", required=True)
    rebuild = aggregate_sub.add_parser("rebuild", help="Recompute every period in a date range")
    rebuild.add_argument("--start", type=_parse_date, required=True)
    rebuild.add_argument("--end", type=_parse_date, required=True)
    update = aggregate_sub.add_parser("update", help="Recompute the periods containing one date")
    update.add_argument("--date", type=_parse_date, default=None, help="Default: yesterday")
    for p in (rebuild, update):
        p.add_argument("--level", choices=LEVEL_CHOICES, default="all")
        p.add_argument("--deadline", type=float, default=None, help="Stop starting new units after N seconds")
        p.set_defaults(handler=cmd_aggregate)

    archive = sub.add_parser("archive", help="Move hot rows older than the cutoff to archive")
    archive.add_argument("--cutoff-days", type=int, default=None, help="Retention override in days")
    archive.add_argument("--table", choices=[d.base_name for d in archivable_datasets()], default=None)
    archive.add_argument("--batch-days", type=int, default=None)
    archive.add_argument("--verify", action="store_true")
    archive.add_argument("--dry-run", action="store_true")
    archive.add_argument("--deadline", type=float, default=None, help="Stop starting new windows after N seconds")
    archive.set_defaults(handler=cmd_archive)

    stats = sub.add_parser("stats", help="Hot/archive row distribution per dataset")
    stats.set_defaults(handler=cmd_stats)

    validate = sub.add_parser("validate", help="Audit data consistency")
    scope = validate.add_mutually_exclusive_group()
    scope.add_argument("--date", type=_parse_date, default=None)
    scope.add_argument("--days", type=int, default=None)
    scope.add_argument("--full", action="store_true")
    validate.set_defaults(handler=cmd_validate)

    seed = sub.add_parser("seed", help="Load synthetic POS data into the hot tier")
    seed.add_argument("--stores", nargs="+", required=True)
    seed.add_argument("--start", type=_parse_date, required=True)
    seed.add_argument("--end", type=_parse_date, required=True)
    seed.add_argument("--seed", type=int, default=42)
    seed.add_argument("--aggregate", action="store_true", help="Roll up hour/day summaries as data lands")
    seed.set_defaults(handler=cmd_seed)

    return parser


async def _run(args: argparse.Namespace) -> int:
    await init_databases()
    try:
        return await args.handler(args)
    finally:
        await close_databases()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    if getattr(args, "start", None) and getattr(args, "end", None) and args.start > args.end:
        parser.error("--start is after --end")

    try:
        return asyncio.run(_run(args))
    except TieredStorageError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
