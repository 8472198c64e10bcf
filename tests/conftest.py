"""Test configuration and fixtures."""

import os
import uuid
from contextlib import asynccontextmanager
from datetime import date
from functools import partial
from typing import Any, Dict, Iterable, List, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables BEFORE importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["CHATBOT_ENABLED"] = "true"
os.environ.pop("GOOGLE_MAPS_API_KEY", None)
os.environ.pop("GEMINI_API_KEY", None)

from trip_assistant.main import app
from trip_assistant.chat.llm import StreamChunk
from trip_assistant.database.connection import get_db_context
from trip_assistant.models import (
    Base,
    Itinerary,
    ItineraryDay,
    ItineraryItem,
    Place,
    Project,
    ProjectMember,
)
from trip_assistant.security.tokens import create_access_token


TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class ScriptedLLM:
    """Stand-in for the Gemini client that replays a fixed list of chunks."""

    def __init__(self, chunks: Optional[List[StreamChunk]] = None):
        self.chunks = chunks if chunks is not None else [
            StreamChunk.text("도쿄에 오신 것을 환영합니다!"),
            StreamChunk.done("msg-test"),
        ]
        self.error: Optional[BaseException] = None
        self.fail_after: Optional[int] = None
        self.calls: List[Any] = []
        self.closed = False

    async def stream_chat(self, message, context):
        self.calls.append((message, context))
        try:
            if self.error is not None and self.fail_after is None:
                raise self.error
            for index, chunk in enumerate(self.chunks):
                if self.fail_after is not None and index == self.fail_after:
                    raise self.error
                yield chunk
        finally:
            self.closed = True


def auth_headers(user_id: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


async def create_project(
    owner_id: str,
    destination: str = "도쿄",
    country: Optional[str] = "일본",
    members: Iterable[str] = (),
    places: Iterable[Dict[str, Any]] = (),
    session_factory=get_db_context,
) -> str:
    """Insert a project with optional members and saved places; returns its id."""
    async with session_factory() as session:
        project = Project(name="테스트 여행", destination=destination, country=country, owner_id=owner_id)
        session.add(project)
        await session.flush()
        for member in members:
            session.add(ProjectMember(project_id=project.id, user_id=member))
        for place in places:
            session.add(Place(project_id=project.id, **place))
        return str(project.id)


async def create_itinerary(
    project_id: str,
    start: date,
    end: date,
    days: Dict[int, List[str]],
    session_factory=get_db_context,
) -> str:
    """Insert an itinerary whose day items reference saved places by name."""
    from sqlalchemy import select

    async with session_factory() as session:
        pid = uuid.UUID(project_id)
        itinerary = Itinerary(project_id=pid, start_date=start, end_date=end)
        session.add(itinerary)
        await session.flush()

        result = await session.execute(select(Place).where(Place.project_id == pid))
        by_name = {p.name: p for p in result.scalars()}
        for day_number, names in days.items():
            day = ItineraryDay(
                itinerary_id=itinerary.id,
                day_number=day_number,
                date=date.fromordinal(start.toordinal() + day_number - 1),
            )
            session.add(day)
            await session.flush()
            for order, name in enumerate(names):
                session.add(ItineraryItem(day_id=day.id, place_id=by_name[name].id, order=order))
        return str(itinerary.id)


# ---------------------------------------------------------------------------
# Database fixtures for repository-level tests
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session scope bound to the per-test engine, committing on success."""
    maker = async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def _factory():
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return _factory


# ---------------------------------------------------------------------------
# Application fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client() -> TestClient:
    """Test client with the lifespan running against a fresh in-memory DB."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def llm(client) -> ScriptedLLM:
    """Replace the Gemini client used by the chat endpoint."""
    scripted = ScriptedLLM()
    client.app.state.send_message.llm = scripted
    return scripted


@pytest.fixture
def run(client):
    """Run a coroutine function on the app's event loop."""
    def _run(fn, *args, **kwargs):
        return client.portal.call(partial(fn, *args, **kwargs))
    return _run


@pytest.fixture
def seed_project():
    return create_project


@pytest.fixture
def seed_itinerary():
    return create_itinerary
