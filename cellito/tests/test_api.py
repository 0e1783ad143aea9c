from __future__ import annotations

import httpx
import pytest

from cellito.app import main
from cellito.app.dependencies import reset_dependency_cache
from cellito.app.main import app
from cellito.rag.guardrails import NO_EVIDENCE_MESSAGE
from cellito.rag.index import RAGIndex
from cellito.rag.llm import LLMError
from cellito.rag.pipeline import AnswerOrchestrator
from cellito.rag.types import FeedbackStoreError
from cellito.stores.inmemory import (
    InMemoryCacheStore,
    InMemoryDocumentStore,
    InMemoryFeedbackStore,
)

pytestmark = pytest.mark.anyio

KEY_MAP = '{"reader-key": "reader", "writer-key": "writer", "admin-key": {"role": "admin"}}'


class FailingChat:
    async def complete(self, request) -> str:
        raise LLMError("API error: 500")


class UnavailableFeedbackStore:
    async def find_by_question(self, normalized_question: str):
        raise FeedbackStoreError("database locked")

    async def list_all(self):
        raise FeedbackStoreError("database locked")


def get_client() -> httpx.AsyncClient:
    reset_dependency_cache()
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.fixture
def services(monkeypatch, chat, sample_documents) -> AnswerOrchestrator:
    index = RAGIndex(
        document_store=InMemoryDocumentStore(sample_documents),
        cache_store=InMemoryCacheStore(),
    )
    feedback = InMemoryFeedbackStore()
    orchestrator = AnswerOrchestrator(index=index, chat=chat, feedback=feedback)
    monkeypatch.setattr(main, "get_index", lambda: index)
    monkeypatch.setattr(main, "get_orchestrator", lambda: orchestrator)
    monkeypatch.setattr(main, "get_feedback_store", lambda: feedback)
    return orchestrator


async def test_health_endpoint() -> None:
    async with get_client() as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_chat_answers_from_articles(services) -> None:
    async with get_client() as client:
        response = await client.post(
            "/chat",
            json={"query": "quanto custa o plano Socializa"},
            headers={"X-Request-ID": "req-1"},
        )
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-1"
    payload = response.json()
    assert payload["content"] == services.chat.reply
    assert payload["confidence"] == 95
    assert payload["strategy"] == "internal-only"
    assert payload["sources"][0]["document_id"] == "1"
    assert payload["sources"][0]["title"] == "Planos"
    assert payload["request_id"] == "req-1"


async def test_chat_without_evidence_returns_fixed_answer(services) -> None:
    async with get_client() as client:
        response = await client.post("/chat", json={"query": "previsão do tempo amanhã"})
    payload = response.json()
    assert response.status_code == 200
    assert payload["content"] == NO_EVIDENCE_MESSAGE
    assert payload["confidence"] == 0
    assert payload["has_relevant_docs"] is False
    assert services.chat.requests == []


async def test_chat_serves_recorded_answers_unless_disabled(services) -> None:
    query = {"query": "quanto custa o plano Socializa"}
    async with get_client() as client:
        first = await client.post("/chat", json=query)
        cached = await client.post("/chat", json=query)
        fresh = await client.post("/chat", json={**query, "use_feedback": False})
    assert first.json()["source"] == "rag"
    assert cached.json()["source"] == "feedback-cache"
    assert cached.json()["strategy"] == "pre-approved-qa"
    assert fresh.json()["source"] == "rag"
    assert len(services.chat.requests) == 2


async def test_chat_maps_llm_failures_to_bad_gateway(services) -> None:
    services.chat = FailingChat()
    async with get_client() as client:
        response = await client.post("/chat", json={"query": "quanto custa o plano Socializa"})
    assert response.status_code == 502
    assert response.json()["detail"] == "Answer generation failed"


async def test_chat_rejects_empty_query(services) -> None:
    async with get_client() as client:
        response = await client.post("/chat", json={"query": ""})
    assert response.status_code == 422


async def test_search_returns_chunks_without_generation(services) -> None:
    async with get_client() as client:
        response = await client.post(
            "/search", json={"query": "quanto custa o plano Socializa", "max_chunks": 2}
        )
        invalid = await client.post("/search", json={"query": "plano", "max_chunks": 9})
    assert response.status_code == 200
    payload = response.json()
    assert [chunk["document_id"] for chunk in payload["chunks"]] == ["1"]
    assert "ARTIGO: Planos" in payload["context"]
    assert services.chat.requests == []
    assert invalid.status_code == 422


async def test_index_endpoints_report_build_state(services) -> None:
    async with get_client() as client:
        before = await client.get("/index/status")
        refreshed = await client.post("/index/refresh")
        reused = await client.post("/index/refresh")
        rebuilt = await client.post("/index/rebuild")
    assert before.json()["is_ready"] is False
    assert refreshed.json()["is_ready"] is True
    assert refreshed.json()["total_documents"] == 3
    assert refreshed.json()["from_cache"] is False
    assert reused.json()["from_cache"] is True
    assert rebuilt.json()["from_cache"] is False
    assert services.index.document_store.list_calls == 2


async def test_feedback_endpoints_record_and_report(services) -> None:
    body = {"question": "Como ativar roaming?", "answer": "Ligue 111.", "tags": ["roaming"]}
    async with get_client() as client:
        created = await client.post("/feedback", json=body)
        bumped = await client.post("/feedback", json=body)
        stats = await client.get("/feedback/stats")
    assert created.status_code == 200
    assert created.json()["rating_count"] == 1
    assert created.json()["confidence_score"] == 90.0
    assert bumped.json()["record_id"] == created.json()["record_id"]
    assert bumped.json()["rating_count"] == 2
    assert stats.json() == {"total": 1, "average_rating": 5.0, "recent_count": 1}


async def test_feedback_store_outage_returns_service_unavailable(services, monkeypatch) -> None:
    monkeypatch.setattr(main, "get_feedback_store", lambda: UnavailableFeedbackStore())
    async with get_client() as client:
        response = await client.post("/feedback", json={"question": "q", "answer": "a"})
        stats = await client.get("/feedback/stats")
    assert response.status_code == 503
    assert stats.json()["total"] == 0


async def test_metrics_endpoint_exposes_answer_counters(services) -> None:
    async with get_client() as client:
        await client.post("/chat", json={"query": "quanto custa o plano Socializa"})
        response = await client.get("/metrics")
    assert response.status_code == 200
    assert "cellito_answers_total" in response.text


async def test_api_key_required_when_configured(services, monkeypatch) -> None:
    monkeypatch.setenv("CELLITO_API_KEYS", "secret")
    async with get_client() as client:
        missing = await client.post("/search", json={"query": "plano"})
        wrong = await client.post("/search", json={"query": "plano"}, headers={"X-API-Key": "nope"})
        ok = await client.post("/search", json={"query": "plano"}, headers={"X-API-Key": "secret"})
        bearer = await client.get("/index/status", headers={"Authorization": "Bearer secret"})
        health = await client.get("/health")
    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert ok.status_code == 200
    assert bearer.status_code == 200
    assert health.status_code == 200


async def test_roles_gate_index_and_feedback_writes(services, monkeypatch) -> None:
    monkeypatch.setenv("CELLITO_API_KEY_MAP", KEY_MAP)
    async with get_client() as client:
        reader_status = await client.get("/index/status", headers={"X-API-Key": "reader-key"})
        reader_refresh = await client.post("/index/refresh", headers={"X-API-Key": "reader-key"})
        writer_refresh = await client.post("/index/refresh", headers={"X-API-Key": "writer-key"})
        writer_rebuild = await client.post("/index/rebuild", headers={"X-API-Key": "writer-key"})
        admin_rebuild = await client.post("/index/rebuild", headers={"X-API-Key": "admin-key"})
        reader_feedback = await client.post(
            "/feedback",
            json={"question": "q", "answer": "a"},
            headers={"X-API-Key": "reader-key"},
        )
    assert reader_status.status_code == 200
    assert reader_refresh.status_code == 403
    assert writer_refresh.status_code == 200
    assert writer_rebuild.status_code == 403
    assert admin_rebuild.status_code == 200
    assert reader_feedback.status_code == 403


async def test_anonymous_access_can_be_disabled(services, monkeypatch) -> None:
    monkeypatch.setenv("CELLITO_ALLOW_ANONYMOUS", "false")
    async with get_client() as client:
        response = await client.get("/index/status")
    assert response.status_code == 401
