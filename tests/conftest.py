"""Shared pytest fixtures for all test suites."""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from backend.app.adapters.platform import FixturePlatformGateway
from backend.app.config import Settings
from backend.app.db.inmemory import InMemorySessionRepository
from backend.app.db.locks import InMemorySessionLockManager
from backend.app.db.models import Base
from backend.app.llm.client import DeterministicStubClient
from backend.app.orchestration.engine import AssistantEngine, build_engine
from backend.app.tools.executor import BreakerRegistry, ToolConfig


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    return Settings(_env_file=None, database_url=None, redis_url=None, openai_api_key=None)


@pytest.fixture
def tool_config() -> ToolConfig:
    """Fast, single-attempt tool execution."""
    return ToolConfig(
        hard_timeout_ms=1000,
        retry_count=0,
        retry_jitter_min_ms=0,
        retry_jitter_max_ms=0,
    )


@pytest.fixture
def gateway() -> FixturePlatformGateway:
    return FixturePlatformGateway()


@pytest.fixture
def llm() -> DeterministicStubClient:
    return DeterministicStubClient()


@pytest.fixture
def repository() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def locks() -> InMemorySessionLockManager:
    return InMemorySessionLockManager()


@pytest.fixture
def engine(
    settings: Settings,
    repository: InMemorySessionRepository,
    locks: InMemorySessionLockManager,
    llm: DeterministicStubClient,
    gateway: FixturePlatformGateway,
    tool_config: ToolConfig,
) -> AssistantEngine:
    """Engine on in-memory storage, fixture platform data and the stub LLM."""
    return build_engine(
        settings,
        repository=repository,
        locks=locks,
        llm=llm,
        gateway=gateway,
        tool_config=tool_config,
        breakers=BreakerRegistry(),
    )


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed sqlite engine with the session schema created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}",
        poolclass=NullPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string.
    Tests using this fixture should be marked with @pytest.mark.postgres.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    # Ensure it's a postgres URL
    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    # Convert to async driver if needed
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Cleanup: drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
