"""Fixtures for the optlock test suite."""

import pytest
import pytest_asyncio

from optlock import DB
from optlock.database import build_engine

from tests.entities import Base


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "optlock.db"


@pytest_asyncio.fixture
async def db(db_path):
    engine = build_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield DB(engine)
    await engine.dispose()


@pytest.fixture
def dry_db():
    """Builder that only renders SQL."""
    engine = build_engine("sqlite+aiosqlite://", echo=False)
    return DB(engine, dry_run=True)
