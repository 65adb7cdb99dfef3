"""
Shared fixtures for LandIQ tests.
"""

import os

# Settings are read at import time; these must be set before landiq is imported.
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("USE_REDIS", "false")

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from landiq.data.db import get_session
from landiq.data.session_store import MemorySessionStore
from landiq.data.tables import Base
from landiq.main import create_app
from landiq.models.openai_model import get_openai_client, normalize_result
from landiq.routers.valuation import get_provider
from landiq.schemas import PropertyInput


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_input():
    return PropertyInput(
        property_description="Level dryland quarter section with good soils",
        acreage=80,
        location="Hamilton County, NE",
        irrigated=False,
        tillable=True,
        crop_type="Corn",
    )


@pytest.fixture
def sample_payload():
    return {
        "property": {"location": "Hamilton County, NE", "acreage": 80, "features": ["Dryland", "Tillable", "Corn"]},
        "valuation": {"p10": 7000, "p50": 8500, "p90": 10000, "totalValue": 680000, "pricePerAcre": 8500},
        "analysis": {
            "narrative": "Dryland values in Hamilton County have held steady.",
            "keyFactors": ["Soil productivity", "Local demand"],
            "confidence": 0.8,
        },
        "comparableSales": [
            {
                "description": "160 ac dryland",
                "location": "Aurora, NE",
                "date": "2024-11",
                "pricePerAcre": 8200,
                "totalPrice": 1312000,
                "acreage": 160,
                "features": ["Dryland"],
                "sourceUrl": "https://example.com/sale",
            }
        ],
        "sources": [{"title": "Land values survey", "organization": "UNL", "url": "https://cap.unl.edu/land"}],
    }


# ---------------------------------------------------------------------------
# OpenAI SDK look-alikes
# ---------------------------------------------------------------------------

def text_item(text, citations=()):
    annotations = [SimpleNamespace(type="url_citation", url=url, title=title) for title, url in citations]
    return SimpleNamespace(
        type="message",
        content=[SimpleNamespace(type="output_text", text=text, annotations=annotations)],
    )


def function_call_item(name, arguments):
    return SimpleNamespace(type="function_call", name=name, arguments=json.dumps(arguments), call_id="fc_1")


def responses_reply(*items):
    return SimpleNamespace(output=list(items))


def chat_reply(content=None, tool_calls=None):
    calls = None
    if tool_calls:
        calls = [
            SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=json.dumps(args)))
            for call_id, name, args in tool_calls
        ]
    message = SimpleNamespace(content=content, tool_calls=calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def mock_openai_client():
    """AsyncOpenAI stand-in; tests set return values / side effects."""
    client = MagicMock()
    client.responses.create = AsyncMock()
    client.chat.completions.create = AsyncMock()
    return client


class FakeProvider:
    def __init__(self, payload):
        self.payload = payload
        self.calls = []
        self.error = None

    async def produce_valuation(self, prop):
        self.calls.append(prop)
        if self.error:
            raise self.error
        return normalize_result(self.payload, prop)


@pytest.fixture
def fake_provider(sample_payload):
    return FakeProvider(sample_payload)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    """
    Fresh in-memory DB per test. StaticPool makes all connections share the same
    in-memory database for the lifetime of this engine fixture.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

@pytest.fixture
def app(async_session_maker, fake_provider, mock_openai_client):
    app = create_app()

    async def _session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_provider] = lambda: fake_provider
    app.dependency_overrides[get_openai_client] = lambda: mock_openai_client
    app.state.sessions = MemorySessionStore()
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
