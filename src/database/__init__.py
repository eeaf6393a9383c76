"""
Database Module
"""
from .connection import (
    check_database_health,
    close_databases,
    create_schema,
    get_engine,
    get_session,
    init_databases,
)
from .models import ArchiveBase, HotBase, SummaryBase

__all__ = [
    "init_databases",
    "close_databases",
    "create_schema",
    "get_engine",
    "get_session",
    "check_database_health",
    "HotBase",
    "ArchiveBase",
    "SummaryBase",
]
