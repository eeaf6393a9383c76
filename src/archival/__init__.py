"""
Archival Module
"""
from .mover import (
    ArchivalBatchMover,
    ArchiveBatchRecord,
    ArchiveRunResult,
    DatasetArchiveResult,
    WindowOutcome,
)

__all__ = [
    "ArchivalBatchMover",
    "ArchiveBatchRecord",
    "ArchiveRunResult",
    "DatasetArchiveResult",
    "WindowOutcome",
]
