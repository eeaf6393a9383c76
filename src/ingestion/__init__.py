"""
Ingestion Module
"""
from .hot_writer import HotTierWriter, LoadResult, LoadStatus

__all__ = ["HotTierWriter", "LoadResult", "LoadStatus"]
