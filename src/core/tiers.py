"""
Tier Classifier

Maps a business date to the storage tier that owns it. The cutoff is
derived once from an as-of instant, so every decision made during one run
uses the same boundary.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional

from src.config import get_settings


class Tier(str, Enum):
    """Storage tier"""
    HOT = "hot"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class TierClassifier:
    """
    Snapshot of the retention window at a fixed instant.

    A date on or after ``cutoff`` is hot; anything older is archive.
    """

    retention_days: int
    as_of: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.retention_days < 1:
            raise ValueError("retention_days must be >= 1")

    @property
    def today(self) -> date:
        return self.as_of.date()

    @property
    def cutoff(self) -> date:
        """First business date held by the hot tier"""
        return self.today - timedelta(days=self.retention_days)

    def tier_for(self, business_date: date) -> Tier:
        return Tier.HOT if business_date >= self.cutoff else Tier.ARCHIVE

    def spans_tiers(self, start: date, end: date) -> bool:
        """True when [start, end] has dates on both sides of the cutoff"""
        return start < self.cutoff <= end

    @classmethod
    def from_settings(
        cls,
        as_of: Optional[datetime] = None,
        retention_days: Optional[int] = None,
    ) -> "TierClassifier":
        """Build a classifier from configuration, snapshotting the clock once."""
        settings = get_settings()
        return cls(
            retention_days=retention_days or settings.tiering.retention_days,
            as_of=as_of or datetime.now(),
        )
