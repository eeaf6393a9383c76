"""
Routing Module
"""
from .router import QuerySpec, SubQuery, TieredQueryRouter

__all__ = ["QuerySpec", "SubQuery", "TieredQueryRouter"]
