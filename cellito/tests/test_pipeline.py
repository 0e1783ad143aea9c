from __future__ import annotations

import asyncio

import pytest

from cellito.rag.guardrails import NO_EVIDENCE_MESSAGE
from cellito.rag.index import RAGIndex
from cellito.rag.indexer import process_document
from cellito.rag.llm import Determinism, LLMError, LLMTimeoutError, query_seed
from cellito.rag.pipeline import AnswerOrchestrator, finalize_confidence
from cellito.rag.types import RawDocument, WebResult
from cellito.rag.web import WebSearchError
from cellito.stores.inmemory import InMemoryCacheStore, InMemoryDocumentStore

pytestmark = pytest.mark.anyio

SCENARIO_QUERY = "quanto custa o plano Socializa"
WEB_RESULT = WebResult(
    title="Africell Angola",
    snippet="Novos tarifários disponíveis.",
    url="https://www.africell.ao/planos",
    source="www.africell.ao",
)


class SlowChat:
    async def complete(self, request) -> str:
        await asyncio.sleep(1)
        return "tarde demais"


class RaisingChat:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def complete(self, request) -> str:
        raise self.exc


class FailingWebSearch:
    async def search(self, query: str, limit: int = 3):
        raise WebSearchError("quota exceeded")


def make_orchestrator(documents, chat, **kwargs) -> AnswerOrchestrator:
    store = InMemoryDocumentStore(documents)
    index = RAGIndex(document_store=store, cache_store=InMemoryCacheStore())
    return AnswerOrchestrator(index=index, chat=chat, **kwargs)


async def test_no_evidence_returns_fixed_answer_without_generation(chat, web_search_factory) -> None:
    web = web_search_factory([])
    orchestrator = make_orchestrator([], chat, web=web)

    answer = await orchestrator.answer("qualquer coisa sem resposta")

    assert answer.content == NO_EVIDENCE_MESSAGE
    assert answer.confidence == 0
    assert answer.has_relevant_docs is False
    assert answer.has_web_results is False
    assert answer.strategy == "no-evidence"
    assert answer.query_info["web_search_used"] is True
    assert web.queries == ["qualquer coisa sem resposta"]
    assert chat.requests == []


async def test_scenario_query_answers_from_internal_articles(
    chat, sample_documents, web_search_factory
) -> None:
    web = web_search_factory([WEB_RESULT])
    orchestrator = make_orchestrator(sample_documents, chat, web=web)

    answer = await orchestrator.answer(SCENARIO_QUERY)

    assert answer.content == chat.reply
    assert answer.confidence == 95
    assert answer.has_relevant_docs is True
    assert answer.has_web_results is False
    assert answer.strategy == "internal-only"
    assert answer.sources[0]["document_id"] == "1"
    assert answer.sources[0]["category"] == "Tarifários"
    assert answer.query_info["chunks_found"] == 1
    assert answer.query_info["web_search_used"] is False
    assert web.queries == []

    request = chat.requests[0]
    assert "BASE DE CONHECIMENTO:" in request.system_prompt
    assert "FONTE INTERNA: Planos" in request.system_prompt
    assert request.user_prompt == SCENARIO_QUERY
    assert request.temperature == 0.3
    assert request.seed == 42


async def test_explicit_documents_skip_the_index(chat) -> None:
    orchestrator = make_orchestrator([], chat)
    orchestrator.index.document_store.unavailable = True
    document = process_document(
        RawDocument(doc_id="1", title="Planos", text="O plano Socializa custa 500 Kz por dia.")
    )

    answer = await orchestrator.answer(SCENARIO_QUERY, documents=[document])

    assert answer.confidence > 0
    assert answer.sources[0]["score"] == 206
    assert orchestrator.index.document_store.list_calls == 0


async def test_recency_words_trigger_hybrid_answer(chat, sample_documents, web_search_factory) -> None:
    web = web_search_factory([WEB_RESULT])
    orchestrator = make_orchestrator(sample_documents, chat, web=web)

    answer = await orchestrator.answer("qual o plano Socializa atual")

    assert web.queries == ["qual o plano Socializa atual"]
    assert answer.has_relevant_docs is True
    assert answer.has_web_results is True
    assert answer.strategy == "hybrid"
    assert answer.confidence == 85
    assert answer.web_sources == [
        {"title": WEB_RESULT.title, "url": WEB_RESULT.url, "source": WEB_RESULT.source}
    ]
    assert "INFORMAÇÕES WEB COMPLEMENTARES:" in chat.requests[0].system_prompt


async def test_recency_words_without_web_service_stay_internal(chat, sample_documents) -> None:
    orchestrator = make_orchestrator(sample_documents, chat)

    answer = await orchestrator.answer("qual o plano Socializa atual")

    assert answer.has_relevant_docs is True
    assert answer.has_web_results is False
    assert answer.strategy == "internal-only"
    assert answer.query_info["web_search_used"] is False
    assert len(chat.requests) == 1


async def test_web_only_evidence_uses_fixed_confidence(
    chat, sample_documents, web_search_factory
) -> None:
    web = web_search_factory([WEB_RESULT])
    orchestrator = make_orchestrator(sample_documents, chat, web=web)

    answer = await orchestrator.answer("preço do iphone")

    assert answer.has_relevant_docs is False
    assert answer.has_web_results is True
    assert answer.confidence == 65
    assert answer.sources == []
    assert len(chat.requests) == 1


async def test_failed_web_search_degrades_to_internal_evidence(chat, sample_documents) -> None:
    orchestrator = make_orchestrator(sample_documents, chat, web=FailingWebSearch())

    answer = await orchestrator.answer("qual o plano Socializa atual")

    assert answer.has_web_results is False
    assert answer.strategy == "internal-only"
    assert answer.query_info["web_search_used"] is True
    assert answer.query_info["web_results_found"] == 0
    assert answer.confidence == 95


async def test_generation_timeout_returns_no_evidence_answer(sample_documents) -> None:
    orchestrator = make_orchestrator(sample_documents, SlowChat(), generation_timeout=0.01)

    answer = await orchestrator.answer(SCENARIO_QUERY)

    assert answer.content == NO_EVIDENCE_MESSAGE
    assert answer.confidence == 0
    assert answer.query_info["timed_out"] is True
    assert answer.query_info["chunks_found"] == 1


async def test_client_timeout_is_treated_like_generation_timeout(sample_documents) -> None:
    chat = RaisingChat(LLMTimeoutError("read timeout"))
    orchestrator = make_orchestrator(sample_documents, chat)

    answer = await orchestrator.answer(SCENARIO_QUERY)

    assert answer.query_info["timed_out"] is True


async def test_llm_errors_propagate(sample_documents) -> None:
    orchestrator = make_orchestrator(sample_documents, RaisingChat(LLMError("API error: 500")))
    with pytest.raises(LLMError):
        await orchestrator.answer(SCENARIO_QUERY)


async def test_seed_can_be_derived_from_the_query(chat, sample_documents) -> None:
    orchestrator = make_orchestrator(
        sample_documents,
        chat,
        determinism=Determinism(temperature=0.0, seed_from_query=True),
    )

    await orchestrator.answer(SCENARIO_QUERY)
    await orchestrator.answer("  QUANTO custa o plano Socializa?  ")

    first, second = chat.requests
    assert first.temperature == 0.0
    assert first.seed == query_seed(SCENARIO_QUERY)
    assert first.seed == second.seed


async def test_search_preview_does_not_generate(chat, sample_documents) -> None:
    orchestrator = make_orchestrator(sample_documents, chat)

    preview = await orchestrator.search(SCENARIO_QUERY)

    assert [item.document.doc_id for item in preview.chunks] == ["1"]
    assert "ARTIGO: Planos" in preview.context
    assert chat.requests == []


def test_finalize_confidence_combines_evidence() -> None:
    assert finalize_confidence(60, True, True) == 75
    assert finalize_confidence(80, True, True) == 85
    assert finalize_confidence(0, False, True) == 65
    assert finalize_confidence(55, True, False) == 55
