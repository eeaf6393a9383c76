"""
Core Module
Tier classification, dataset registry, run controls and errors.
"""
from .exceptions import (
    InvalidRangeError,
    RollupComputationError,
    TierConnectionError,
    TieredStorageError,
    UnknownDatasetError,
    VerificationFailedError,
)
from .tiers import Tier, TierClassifier

__all__ = [
    "Tier",
    "TierClassifier",
    "TieredStorageError",
    "InvalidRangeError",
    "UnknownDatasetError",
    "RollupComputationError",
    "VerificationFailedError",
    "TierConnectionError",
]
