"""
Shared fixtures for Idea Browser backend tests.

Uses the database named by TEST_DATABASE_URL; by default a throwaway SQLite
file (aiosqlite) in a temp directory, so the suite runs without Postgres.
Each test function gets freshly created tables, dropped again afterwards.
Process-wide services (room registry, import manager, AI service) are built
per test and attached to ``app.state`` with a fake LLM client.
"""
from __future__ import annotations

import asyncio
import os
import tempfile
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

_TMP_DIR = tempfile.mkdtemp(prefix="ideabrowser-tests-")

# Override DATABASE_URL *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB.
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["GROQ_API"] = ""

from app.database import Base, _engine_options, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.database_models import Idea  # noqa: E402
from app.services.import_manager import ImportJobManager  # noqa: E402
from app.services.room_registry import RoomRegistry  # noqa: E402
from app.services.synthesis import AISynthesisService  # noqa: E402


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeLLM:
    """Stands in for LLMClient: records prompts and returns a canned reply."""

    backend = "fake"

    def __init__(self, reply: str = "Here is what the AI thinks.") -> None:
        self.reply = reply
        self.error: Optional[Exception] = None
        self.healthy = True
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, prompt: str, context: str = "", max_tokens: Optional[int] = None) -> str:
        self.calls.append({"prompt": prompt, "context": context})
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply

    async def check_health(self) -> bool:
        return self.healthy


class FakeConnection:
    """Collects everything the registry pushes to it, like a WebSocket would."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, name: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e for e in self.sent if name is None or e["event"] == name]


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory bound to a test engine with freshly created tables."""
    engine = create_async_engine(TEST_DATABASE_URL, **_engine_options(TEST_DATABASE_URL))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest_asyncio.fixture
async def registry() -> AsyncGenerator[RoomRegistry, None]:
    reg = RoomRegistry(outbox_size=16)
    yield reg
    await reg.close()


@pytest_asyncio.fixture
async def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest_asyncio.fixture
async def import_manager(session_factory: async_sessionmaker) -> AsyncGenerator[ImportJobManager, None]:
    manager = ImportJobManager(session_factory)
    yield manager
    await manager.shutdown()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker,
    registry: RoomRegistry,
    fake_llm: FakeLLM,
    import_manager: ImportJobManager,
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB dependency
    overridden to open a session on the per-test database.
    ASGITransport does not run the lifespan, so services are set here.
    """

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.state.room_registry = registry
    app.state.llm_client = fake_llm
    app.state.synthesis = AISynthesisService(fake_llm, registry)
    app.state.import_manager = import_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def idea(db_session: AsyncSession) -> Idea:
    """A persisted idea whose room the collaboration tests use."""
    record = Idea(
        title="AI meal planner",
        slug="ai-meal-planner",
        description="Weekly meal plans generated from what is already in the fridge.",
        content="Weekly meal plans generated from what is already in the fridge.",
        target_audience="Busy parents",
        market="B2C",
    )
    db_session.add(record)
    await db_session.commit()
    return record


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {
    "X-User-Id": "test-user-1",
    "X-User-Email": "test1@example.com",
    "X-User-Name": "Test User 1",
}

AUTH_HEADERS_USER2 = {
    "X-User-Id": "test-user-2",
    "X-User-Email": "test2@example.com",
    "X-User-Name": "Test User 2",
}
