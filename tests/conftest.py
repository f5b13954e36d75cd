"""Shared test fixtures."""

from unittest.mock import AsyncMock

import httpx
import mlflow
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from policy_whisperer.core.errors import LLMError
from policy_whisperer.retrieval.llm import LLMClient
from policy_whisperer.storage.models import Base

POLICY_HTML = """
<html><head><title>Clean Air Act</title>
<style>body { color: red; }</style>
<script>trackVisitor();</script></head>
<body><h1>Clean Air Act</h1><p>Limits industrial emissions across all counties.</p></body></html>
"""

# URL → (status, content type, body) served by the fake fetch transport
PAGES = {
    "https://policy.example.gov/clean-air": (200, "text/html; charset=utf-8", POLICY_HTML),
    "https://policy.example.gov/plain": (200, "text/plain", "Plain policy text with enough length."),
    "https://policy.example.gov/tiny": (200, "text/html", "<html><body><p>Hi</p><script>x()</script></body></html>"),
}


def fetch_handler(request: httpx.Request) -> httpx.Response:
    status, content_type, body = PAGES.get(str(request.url), (404, "text/plain", "Not Found"))
    return httpx.Response(status, headers={"content-type": content_type}, text=body)


@pytest.fixture(autouse=True)
def _disable_mlflow_tracing():
    """Disable MLflow tracing during tests: no side effects, no mlruns/ writes."""
    mlflow.tracing.disable()
    yield
    mlflow.tracing.enable()


@pytest.fixture
async def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def llm():
    """LLMClient mock that fails every call until a test configures it."""
    mock = AsyncMock(spec=LLMClient)
    mock.complete.side_effect = LLMError("LLM unavailable")
    return mock


@pytest.fixture
async def fetch_client():
    client = httpx.AsyncClient(transport=httpx.MockTransport(fetch_handler))
    yield client
    await client.aclose()


@pytest.fixture
async def client(engine, llm, fetch_client):
    """API client with the database, LLM and fetch client swapped for fakes."""
    from policy_whisperer.api.deps import get_db, get_http_client, get_llm
    from policy_whisperer.api.main import app

    factory = async_sessionmaker(engine, expire_on_commit=False)

    async def _db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_llm] = lambda: llm
    app.dependency_overrides[get_http_client] = lambda: fetch_client
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
