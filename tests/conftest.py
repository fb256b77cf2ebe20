"""Pytest configuration and fixtures for backend tests."""

from typing import AsyncGenerator, Callable

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from donjed_assistant.core.config import Settings
from donjed_assistant.knowledge.models import KnowledgeBase
from donjed_assistant.knowledge.retriever import KnowledgeRetriever, get_knowledge_retriever
from donjed_assistant.main import app as main_app
from donjed_assistant.observability import MetricsCollector
from donjed_assistant.services.chat import (
    ChatOrchestrator,
    SessionStore,
    get_chat_orchestrator,
    get_session_store,
)
from donjed_assistant.services.llm_client import LLMClient
from tests.helpers import (
    FALLBACK_BASE_URL,
    PRIMARY_BASE_URL,
    FakeLLMClient,
    RecordingSleep,
    make_chunk,
)

# -------------------------------------------------------------------------
# Settings Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Settings with a fake key and test endpoints, ignoring any .env file."""
    return Settings(
        _env_file=None,
        llm_api_key="test-key",
        llm_base_url=PRIMARY_BASE_URL,
        llm_fallback_base_urls=[FALLBACK_BASE_URL],
        llm_model="test-model",
        llm_max_retries=3,
    )


# -------------------------------------------------------------------------
# Knowledge Base Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def knowledge_base() -> KnowledgeBase:
    """Small corpus with pricing, weather and maintenance chunks."""
    chunks = (
        make_chunk(
            "Our 3.5kVA starter kit suits small flats and shops.",
            source="donjed_price_list",
            index=0,
        ),
        make_chunk(
            "The price of the 5kVA system is NGN 4,200,000. The 5kva kit includes "
            "a 5kWh battery, eight panels and installation.",
            source="donjed_price_list",
            index=1,
        ),
        make_chunk(
            "Panels still produce power on cloudy days and during rain, "
            "usually 10 to 25 percent of rated output.",
            source="solar_faq",
            index=0,
        ),
        make_chunk(
            "Battery maintenance is minimal: keep the battery room ventilated and dry.",
            source="solar_faq",
            index=1,
        ),
    )
    return KnowledgeBase(
        version="1.0",
        generated_at="2026-10-01T09:00:00+00:00",
        total_documents=2,
        total_chunks=len(chunks),
        documents=chunks,
    )


@pytest.fixture
def retriever(knowledge_base: KnowledgeBase) -> KnowledgeRetriever:
    """Keyword retriever over the test corpus."""
    return KnowledgeRetriever(knowledge_base)


# -------------------------------------------------------------------------
# LLM Client Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def make_llm_client(
    test_settings: Settings,
    metrics: MetricsCollector,
    recording_sleep: RecordingSleep,
) -> AsyncGenerator[Callable[..., LLMClient], None]:
    """Factory for LLM clients whose HTTP calls go to a mock handler."""
    http_clients: list[httpx.AsyncClient] = []

    def factory(handler: Callable, settings: Settings | None = None) -> LLMClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        http_clients.append(http_client)
        return LLMClient(
            settings=settings or test_settings,
            http_client=http_client,
            metrics=metrics,
            sleep=recording_sleep,
        )

    yield factory

    for http_client in http_clients:
        await http_client.aclose()


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


# -------------------------------------------------------------------------
# Application Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def orchestrator(fake_llm: FakeLLMClient, retriever: KnowledgeRetriever) -> ChatOrchestrator:
    return ChatOrchestrator(llm_client=fake_llm, retriever=retriever)


@pytest.fixture
def app(
    session_store: SessionStore,
    orchestrator: ChatOrchestrator,
    retriever: KnowledgeRetriever,
) -> FastAPI:
    """FastAPI app wired to the test store, orchestrator and retriever."""
    main_app.dependency_overrides[get_session_store] = lambda: session_store
    main_app.dependency_overrides[get_chat_orchestrator] = lambda: orchestrator
    main_app.dependency_overrides[get_knowledge_retriever] = lambda: retriever
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
