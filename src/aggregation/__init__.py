"""
Aggregation Module
Hour to year rollups of raw POS data.
"""
from .engine import AggregationEngine, PipelineResult, UnitState
from .levels import SummaryLevel, optimal_level
from .queries import SummaryQueryService

__all__ = [
    "AggregationEngine",
    "PipelineResult",
    "UnitState",
    "SummaryLevel",
    "SummaryQueryService",
    "optimal_level",
]
