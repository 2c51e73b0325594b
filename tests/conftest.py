"""
Pytest configuration and shared fixtures for ConsensusHub tests.

Testing Standards:
- Async tests run under pytest-asyncio (auto mode enabled in pyproject.toml)
- The store is an in-memory SQLite database through aiosqlite
- External analysis/moderation calls go through httpx.MockTransport
"""

import json
from datetime import datetime, timezone
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from consensus_hub.models import Base, Department, Role, User, UserDepartment, UserRole
from consensus_hub.services.consensus_analyzer import AnalysisConfig, ConsensusAnalyzerService
from consensus_hub.services.moderation import ModerationConfig, ModerationService


# =============================================================================
# DATABASE
# =============================================================================


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# USERS & MEMBERSHIP
# =============================================================================


@pytest.fixture
def make_user(session: AsyncSession):
    async def factory(name: str) -> User:
        user = User(email=f"{name.lower()}-{uuid4().hex[:8]}@example.com", name=name)
        session.add(user)
        await session.flush()
        return user

    return factory


@pytest_asyncio.fixture
async def alice(make_user) -> User:
    return await make_user("Alice")


@pytest_asyncio.fixture
async def bob(make_user) -> User:
    return await make_user("Bob")


@pytest_asyncio.fixture
async def carol(make_user) -> User:
    return await make_user("Carol")


@pytest.fixture
def make_department(session: AsyncSession):
    async def factory(name: str, members: list[User]) -> Department:
        department = Department(name=name)
        session.add(department)
        await session.flush()
        session.add_all(
            UserDepartment(user_id=m.id, department_id=department.id) for m in members
        )
        await session.flush()
        return department

    return factory


@pytest.fixture
def make_role(session: AsyncSession):
    async def factory(name: str, members: list[User]) -> Role:
        role = Role(name=name)
        session.add(role)
        await session.flush()
        session.add_all(UserRole(user_id=m.id, role_id=role.id) for m in members)
        await session.flush()
        return role

    return factory


# =============================================================================
# EXTERNAL SERVICES
# =============================================================================


def chat_completion(content) -> httpx.Response:
    """OpenAI-style chat completion whose message content is `content`."""
    text = content if isinstance(content, str) else json.dumps(content)
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


@pytest.fixture
def sushi_analysis() -> dict:
    return {
        "question": "Where should we eat?",
        "groups": [
            {
                "id": "g1",
                "label": "Sushi",
                "criteria": "Prefers sushi",
                "members": [1, 3],
                "count": 2,
            },
            {
                "id": "g2",
                "label": "Pizza",
                "criteria": "Prefers pizza",
                "members": [2],
                "count": 1,
            },
        ],
        "consensus": {
            "group_id": "g1",
            "label": "Sushi",
            "confidence": 0.67,
            "reasoning": "Two of three responses chose sushi",
        },
    }


@pytest_asyncio.fixture
async def http_clients():
    clients: list[httpx.AsyncClient] = []
    yield clients
    for client in clients:
        await client.aclose()


@pytest.fixture
def make_analyzer(http_clients):
    """Analyzer whose HTTP calls are answered by `handler` (request -> response)."""

    def factory(handler, api_key: str | None = "test-key") -> ConsensusAnalyzerService:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        http_clients.append(client)
        return ConsensusAnalyzerService(
            AnalysisConfig(api_key=api_key, base_url="https://llm.test/v1"),
            http_client=client,
        )

    return factory


@pytest.fixture
def make_moderation(http_clients):
    def factory(handler, fail_open: bool = False, api_key: str | None = "test-key") -> ModerationService:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        http_clients.append(client)
        return ModerationService(
            ModerationConfig(api_key=api_key, base_url="https://llm.test/v1", fail_open=fail_open),
            http_client=client,
        )

    return factory


@pytest.fixture
def permit_all(make_moderation) -> ModerationService:
    return make_moderation(
        lambda request: chat_completion(
            {"original_text": "", "status": "permitted", "reason": "ok", "user_message": ""}
        )
    )


@pytest.fixture
def chat_reply():
    """Build a chat completion response from a dict or raw string content."""
    return chat_completion


# =============================================================================
# FILE-BACKED DATABASE (separate connections per session)
# =============================================================================


@pytest.fixture
def file_database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'hub.db'}"


@pytest_asyncio.fixture
async def file_engine(file_database_url):
    engine = create_async_engine(file_database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def file_sessions(file_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(file_engine, expire_on_commit=False)
