"""
Error taxonomy for the tiered store.

Router argument errors are fatal to the call. Rollup, window and dataset
errors are caught at their unit boundary, logged and counted.
"""

from datetime import date
from typing import Optional


class TieredStorageError(Exception):
    """Base class for every error raised by this package"""


class InvalidRangeError(TieredStorageError, ValueError):
    """Start date after end date"""

    def __init__(self, start: date, end: date):
        self.start = start
        self.end = end
        super().__init__(f"Invalid date range: start {start} is after end {end}")


class UnknownDatasetError(TieredStorageError, KeyError):
    """Dataset name or kind not present in the registry"""

    def __init__(self, name):
        self.name = name
        super().__init__(f"Unknown dataset: {name!r}")

    def __str__(self) -> str:
        return self.args[0]


class RollupComputationError(TieredStorageError):
    """A single (level, store, period) rollup unit failed"""

    def __init__(self, level: str, store_id: str, period_key: str, reason: str):
        self.level = level
        self.store_id = store_id
        self.period_key = period_key
        self.reason = reason
        super().__init__(f"{level} rollup failed for store={store_id} period={period_key}: {reason}")


class VerificationFailedError(TieredStorageError):
    """Rows remain in the hot tier after an archival window was moved"""

    def __init__(
        self,
        dataset: str,
        window_start: date,
        window_end: date,
        hot_remaining: int,
        archive_count: Optional[int] = None,
    ):
        self.dataset = dataset
        self.window_start = window_start
        self.window_end = window_end
        self.hot_remaining = hot_remaining
        self.archive_count = archive_count
        super().__init__(
            f"Verification failed for {dataset} [{window_start}..{window_end}]: "
            f"{hot_remaining} rows still in hot tier"
        )


class TierConnectionError(TieredStorageError, ConnectionError):
    """A storage tier could not be reached"""

    def __init__(self, tier: str, reason: str):
        self.tier = tier
        self.reason = reason
        super().__init__(f"{tier} tier unreachable: {reason}")
