"""
Unit Tests - Archival Batch Mover
"""
from datetime import date, timedelta

import pytest

from src.archival.mover import ArchivalBatchMover, WindowOutcome
from src.core.control import RunControl
from src.core.tiers import Tier
from tests.conftest import CUTOFF
from tests.factories import count_rows, daily_orders, line_row, load_rows, order_row

START = date(2025, 6, 10)


@pytest.fixture
def seventy_five_days():
    rows = daily_orders("S1", START, 75)
    assert rows[-1]["business_date"] == date(2025, 8, 23)
    return rows


class TestWindows:
    """Tests for window planning"""

    def test_windows_cover_range(self, classifier):
        mover = ArchivalBatchMover(classifier, batch_days=30)
        windows = list(mover._windows(START, date(2025, 8, 23), CUTOFF))
        assert [w[0] for w in windows] == [START, date(2025, 7, 10), date(2025, 8, 9)]
        assert list(mover._windows(START, START, CUTOFF)) == [(START, START)]

    def test_windows_stop_before_cutoff(self, classifier):
        mover = ArchivalBatchMover(classifier, batch_days=7)
        windows = list(mover._windows(date(2025, 8, 20), CUTOFF + timedelta(days=10), CUTOFF))
        assert windows[0] == (date(2025, 8, 20), date(2025, 8, 26))
        assert windows[-1] == (date(2025, 8, 27), CUTOFF - timedelta(days=1))

    def test_batch_days_must_be_positive(self, classifier):
        with pytest.raises(ValueError):
            ArchivalBatchMover(classifier, batch_days=-1)


class TestArchive:
    """Tests for moving rows between tiers"""

    async def test_moves_aged_rows_in_windows(self, databases, classifier, seventy_five_days):
        await load_rows(Tier.HOT, "detail_orders", seventy_five_days)
        mover = ArchivalBatchMover(classifier, batch_days=30, chunk_size=7, verify=True)

        result = await mover.archive_dataset("detail_orders")

        assert [(w.batch_start_date, w.batch_end_date) for w in result.windows] == [
            (date(2025, 6, 10), date(2025, 7, 9)),
            (date(2025, 7, 10), date(2025, 8, 8)),
            (date(2025, 8, 9), date(2025, 8, 23)),
        ]
        assert all(w.outcome == WindowOutcome.MOVED for w in result.windows)
        assert all(w.verified for w in result.windows)
        assert result.rows_moved == 75
        assert result.rows_deleted == 75
        assert await count_rows(Tier.HOT, "detail_orders") == 0
        assert await count_rows(Tier.ARCHIVE, "detail_orders") == 75

    async def test_cutoff_date_rows_stay_hot(self, databases, classifier):
        await load_rows(Tier.HOT, "detail_orders", daily_orders("S1", CUTOFF - timedelta(days=2), 4))
        mover = ArchivalBatchMover(classifier, batch_days=30, verify=True)

        await mover.archive_dataset("detail_orders")

        assert await count_rows(Tier.HOT, "detail_orders") == 2
        assert await count_rows(Tier.ARCHIVE, "detail_orders") == 2

    async def test_rerun_after_partial_copy(self, databases, classifier, router, seventy_five_days):
        # Copy committed for the first ten days, hot delete never ran
        await load_rows(Tier.ARCHIVE, "detail_orders", seventy_five_days[:10])
        await load_rows(Tier.HOT, "detail_orders", seventy_five_days)
        mover = ArchivalBatchMover(classifier, batch_days=30, chunk_size=7, verify=True)

        result = await mover.archive_dataset("detail_orders")

        assert result.failed == 0
        assert result.duplicates_ignored == 10
        assert result.rows_moved == 65
        assert await count_rows(Tier.HOT, "detail_orders") == 0
        assert await count_rows(Tier.ARCHIVE, "detail_orders") == 75
        assert await router.count(router.route("detail_orders", START, date(2025, 8, 23))) == 75

    async def test_second_run_is_noop(self, databases, classifier, seventy_five_days):
        await load_rows(Tier.HOT, "detail_orders", seventy_five_days)
        mover = ArchivalBatchMover(classifier, batch_days=30)
        await mover.archive_dataset("detail_orders")

        again = await mover.archive_dataset("detail_orders")
        assert again.windows == []
        assert again.min_date is None
        assert await count_rows(Tier.ARCHIVE, "detail_orders") == 75

    async def test_empty_window_is_skipped(self, databases, classifier):
        rows = [order_row("S1", date(2025, 6, 1), "a"), order_row("S1", date(2025, 8, 1), "b")]
        await load_rows(Tier.HOT, "detail_orders", rows)
        mover = ArchivalBatchMover(classifier, batch_days=20)

        result = await mover.archive_dataset("detail_orders")
        outcomes = [w.outcome for w in result.windows]
        assert outcomes == [WindowOutcome.MOVED, WindowOutcome.SKIPPED, WindowOutcome.SKIPPED, WindowOutcome.MOVED]

    async def test_dry_run_changes_nothing(self, databases, classifier, seventy_five_days):
        await load_rows(Tier.HOT, "detail_orders", seventy_five_days)
        mover = ArchivalBatchMover(classifier, batch_days=30, dry_run=True)

        result = await mover.archive_dataset("detail_orders")

        assert [w.outcome for w in result.windows] == [WindowOutcome.DRY_RUN] * 3
        assert sum(w.rows_found for w in result.windows) == 75
        assert await count_rows(Tier.HOT, "detail_orders") == 75
        assert await count_rows(Tier.ARCHIVE, "detail_orders") == 0

    async def test_verification_failure_marks_window_failed(self, databases, classifier, monkeypatch):
        await load_rows(Tier.HOT, "detail_orders", daily_orders("S1", date(2025, 8, 1), 5))
        mover = ArchivalBatchMover(classifier, batch_days=30, verify=True)
        real_count = mover._count
        hot_calls = []

        async def count(tier, descriptor, start, end):
            value = await real_count(tier, descriptor, start, end)
            if tier == Tier.HOT:
                hot_calls.append(value)
                # Second hot count is the post-delete check
                if len(hot_calls) == 2:
                    return value + 1
            return value

        monkeypatch.setattr(mover, "_count", count)
        result = await mover.archive_all(["detail_orders"])

        window = result.datasets[0].windows[0]
        assert window.outcome == WindowOutcome.FAILED
        assert not window.verified
        assert "verification failed" in window.error.lower()
        assert result.failed_windows == 1
        assert not result.ok

    async def test_cancelled_run(self, databases, classifier, seventy_five_days):
        await load_rows(Tier.HOT, "detail_orders", seventy_five_days)
        control = RunControl()
        control.cancel()
        mover = ArchivalBatchMover(classifier, batch_days=30, control=control)

        result = await mover.archive_all()
        assert result.cancelled
        assert not result.ok
        assert await count_rows(Tier.HOT, "detail_orders") == 75

    async def test_archive_all_datasets(self, databases, classifier):
        old = date(2025, 7, 1)
        await load_rows(Tier.HOT, "detail_orders", [order_row("S1", old, "o1")])
        await load_rows(Tier.HOT, "order_line", [line_row("S1", old, "o1", "100001")])
        mover = ArchivalBatchMover(classifier, batch_days=30, verify=True)

        result = await mover.archive_all()

        assert result.ok
        assert [d.dataset for d in result.datasets] == ["detail_orders", "order_line", "waste", "summary_sales"]
        assert await count_rows(Tier.ARCHIVE, "order_line") == 1
        assert await count_rows(Tier.HOT, "order_line") == 0

    async def test_distribution(self, databases, classifier):
        await load_rows(Tier.HOT, "detail_orders", daily_orders("S1", CUTOFF, 3))
        await load_rows(Tier.ARCHIVE, "detail_orders", daily_orders("S1", date(2025, 7, 1), 1))
        mover = ArchivalBatchMover(classifier)

        stats = await mover.distribution("detail_orders")
        assert stats == {
            "dataset": "detail_orders",
            "hot_rows": 3,
            "archive_rows": 1,
            "total_rows": 4,
            "hot_percent": 75.0,
        }
