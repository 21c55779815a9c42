# tests/conftest.py
from decimal import Decimal

import pytest
import pytest_asyncio

from settleup.core.database import Database
from settleup.models.records import Member


@pytest.fixture
def alice():
    return Member(1, 'Alice')


@pytest.fixture
def bob():
    return Member(2, 'Bob')


@pytest.fixture
def carol():
    return Member(3, 'Carol')


@pytest.fixture
def dave():
    return Member(4, 'Dave')


@pytest.fixture
def tolerance():
    return Decimal('0.01')


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'settleup.db'}", echo=False)
    await db.create_tables()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def session(database):
    async with database.session_factory() as session:
        yield session
