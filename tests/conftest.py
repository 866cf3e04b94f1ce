"""Shared test fixtures."""

from collections.abc import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from aqbot.config import Settings
from aqbot.db.engine import create_engine, create_tables, get_session
from aqbot.db.models import AllianceRow
from aqbot.db.repository import Repository
from fakes import FakeChat, FakeRoles


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(aqbot_env="development", database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def repo(engine: AsyncEngine) -> AsyncIterator[Repository]:
    """Yield a repository with a session bound to the in-memory database."""
    async with get_session(engine) as session:
        yield Repository(session)


@pytest.fixture
async def alliance(repo: Repository) -> AllianceRow:
    return await repo.create_alliance("guild-1", "Summoners United")


@pytest.fixture
def chat() -> FakeChat:
    return FakeChat()


@pytest.fixture
def roles() -> FakeRoles:
    return FakeRoles({"role-bg1": ["300", "100", "200"]})
