"""
Test Suite Configuration
"""
from datetime import date, datetime

import pytest

from src.config import Settings
from src.core.tiers import TierClassifier
from src.database.connection import close_databases, create_schema, init_databases
from src.routing.router import TieredQueryRouter

# Pinned clock: with 90 days retention the cutoff is 2025-09-02
AS_OF = datetime(2025, 12, 1, 6, 0)
CUTOFF = date(2025, 9, 2)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        APP_ENV="testing",
        DEBUG=True,
    )


@pytest.fixture
def classifier() -> TierClassifier:
    return TierClassifier(retention_days=90, as_of=AS_OF)


@pytest.fixture
def router(classifier) -> TieredQueryRouter:
    return TieredQueryRouter(classifier)


@pytest.fixture
async def databases(tmp_path):
    """One SQLite file per tier, schema created, disposed after the test"""
    await init_databases(
        hot_url=f"sqlite+aiosqlite:///{tmp_path / 'hot.db'}",
        archive_url=f"sqlite+aiosqlite:///{tmp_path / 'archive.db'}",
    )
    await create_schema()
    yield
    await close_databases()
