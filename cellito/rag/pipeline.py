from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from cellito.rag.context import build_context, build_search_preview
from cellito.rag.feedback import FeedbackMatch, find_cached_answer, record_answer
from cellito.rag.guardrails import (
    LOW_CONFIDENCE_THRESHOLD,
    decide_web_search,
    internal_confidence,
    no_evidence_answer,
)
from cellito.rag.index import RAGIndex
from cellito.rag.llm import Determinism, LLMTimeoutError, build_system_prompt
from cellito.rag.selector import (
    DEFAULT_MAX_CHUNKS,
    DEFAULT_MAX_CONTEXT_TOKENS,
    DEFAULT_MIN_SCORE,
    select_top_chunks,
)
from cellito.rag.types import (
    ChatCompletionService,
    CompletionRequest,
    FeedbackStore,
    ProcessedDocument,
    RAGAnswer,
    ScoredChunk,
    WebResult,
    WebSearchService,
)
from cellito.rag.web import WebSearchError

logger = logging.getLogger(__name__)

HYBRID_BOOST = 15
HYBRID_CAP = 85
WEB_ONLY_CONFIDENCE = 65


class QueryStage(str, enum.Enum):
    SEARCH_INTERNAL = "search_internal"
    DECIDE_WEB = "decide_web"
    SEARCH_WEB = "search_web"
    SKIP_WEB = "skip_web"
    BUILD_CONTEXT = "build_context"
    GENERATE = "generate"
    FINALIZE = "finalize"


@dataclass(frozen=True)
class SearchPreview:
    chunks: list[ScoredChunk]
    context: str


def finalize_confidence(internal: int, has_internal: bool, has_web: bool) -> int:
    """Combine internal confidence with the presence of web evidence."""
    if has_internal and has_web:
        return min(HYBRID_CAP, internal + HYBRID_BOOST)
    if has_web:
        return WEB_ONLY_CONFIDENCE
    return internal


def _chunk_sources(chunks: Sequence[ScoredChunk]) -> list[dict[str, Any]]:
    return [
        {
            "document_id": item.document.doc_id,
            "title": item.document.display_name,
            "category": item.document.category,
            "score": item.score,
        }
        for item in chunks
    ]


def _web_sources(results: Sequence[WebResult]) -> list[dict[str, Any]]:
    return [
        {"title": result.title, "url": result.url, "source": result.source}
        for result in results
    ]


@dataclass
class AnswerOrchestrator:
    """Runs a query through retrieval, optional web search and generation.

    Stages run in order: SEARCH_INTERNAL, DECIDE_WEB, SEARCH_WEB or SKIP_WEB,
    BUILD_CONTEXT, GENERATE, FINALIZE. When neither internal chunks nor web
    results exist, a fixed no-evidence answer is returned and the chat
    service is never called.
    """
    index: RAGIndex
    chat: ChatCompletionService
    web: WebSearchService | None = None
    feedback: FeedbackStore | None = None
    max_chunks: int = DEFAULT_MAX_CHUNKS
    min_score: float = DEFAULT_MIN_SCORE
    max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS
    low_confidence_threshold: int = LOW_CONFIDENCE_THRESHOLD
    determinism: Determinism = field(default_factory=Determinism)
    max_tokens: int = 1500
    generation_timeout: float | None = 30.0
    web_timeout: float | None = 10.0
    web_limit: int = 3
    feedback_min_confidence: float = 70
    record_min_confidence: int = 80
    system_prompt: str | None = None

    async def ask(self, query: str) -> RAGAnswer:
        """Answer from approved feedback when possible, otherwise run the pipeline."""
        if self.feedback is not None:
            match = await find_cached_answer(self.feedback, query, self.feedback_min_confidence)
            if match is not None:
                return self._feedback_answer(match)

        answer = await self.answer(query)
        if (
            self.feedback is not None
            and answer.has_relevant_docs
            and answer.confidence >= self.record_min_confidence
            and not answer.query_info.get("timed_out")
        ):
            await record_answer(
                self.feedback,
                question=query,
                answer=answer.content,
                source="hybrid" if answer.has_web_results else "internal",
            )
        return answer

    async def answer(
        self,
        query: str,
        documents: Sequence[ProcessedDocument] | None = None,
    ) -> RAGAnswer:
        if documents is None:
            documents = await self.index.ensure_ready()

        self._stage(QueryStage.SEARCH_INTERNAL, query, documents=len(documents))
        chunks = select_top_chunks(
            documents,
            query,
            max_chunks=self.max_chunks,
            min_score=self.min_score,
            max_context_tokens=self.max_context_tokens,
        )
        avg_score, confidence = internal_confidence(chunks)

        self._stage(QueryStage.DECIDE_WEB, query, chunks=len(chunks), confidence=confidence)
        decision = decide_web_search(chunks, query, confidence, self.low_confidence_threshold)
        web_results: list[WebResult] = []
        web = self.web if decision.search else None
        web_used = web is not None
        if web is not None:
            self._stage(QueryStage.SEARCH_WEB, query)
            web_results = await self._search_web(web, query)
        else:
            self._stage(QueryStage.SKIP_WEB, query)

        query_info: dict[str, Any] = {
            "chunks_found": len(chunks),
            "web_results_found": len(web_results),
            "average_score": round(avg_score, 2),
            "web_search_used": web_used,
            "strategy": "hybrid" if web_results else "internal-only",
        }
        if not chunks and not web_results:
            logger.info("no_evidence", extra={"query": query})
            return no_evidence_answer(**query_info)

        self._stage(QueryStage.BUILD_CONTEXT, query)
        context = build_context(chunks, web_results, query)
        request = CompletionRequest(
            system_prompt=build_system_prompt(context, self.system_prompt),
            user_prompt=query,
            temperature=self.determinism.temperature,
            max_tokens=self.max_tokens,
            seed=self.determinism.seed_for(query),
        )

        self._stage(QueryStage.GENERATE, query, seed=request.seed)
        try:
            content = await self._generate(request)
        except (asyncio.TimeoutError, LLMTimeoutError):
            logger.warning("generation_timed_out", extra={"query": query})
            return no_evidence_answer(**query_info, timed_out=True)

        final_confidence = finalize_confidence(confidence, bool(chunks), bool(web_results))
        self._stage(QueryStage.FINALIZE, query, confidence=final_confidence)
        return RAGAnswer(
            content=content,
            has_relevant_docs=bool(chunks),
            has_web_results=bool(web_results),
            confidence=final_confidence,
            query_info=query_info,
            source="rag",
            strategy=query_info["strategy"],
            sources=_chunk_sources(chunks),
            web_sources=_web_sources(web_results),
        )

    async def search(self, query: str, max_chunks: int | None = None) -> SearchPreview:
        """Select chunks and render a preview without calling the chat service."""
        documents = await self.index.ensure_ready()
        chunks = select_top_chunks(
            documents,
            query,
            max_chunks=max_chunks or self.max_chunks,
            min_score=self.min_score,
            max_context_tokens=self.max_context_tokens,
        )
        return SearchPreview(chunks=chunks, context=build_search_preview(chunks, query))

    async def _search_web(self, web: WebSearchService, query: str) -> list[WebResult]:
        try:
            if self.web_timeout is None:
                return await web.search(query, self.web_limit)
            return await asyncio.wait_for(
                web.search(query, self.web_limit), timeout=self.web_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("web_search_timed_out", extra={"query": query})
        except WebSearchError as exc:
            logger.warning("web_search_failed", extra={"query": query, "error": str(exc)})
        return []

    async def _generate(self, request: CompletionRequest) -> str:
        if self.generation_timeout is None:
            return await self.chat.complete(request)
        return await asyncio.wait_for(self.chat.complete(request), timeout=self.generation_timeout)

    def _feedback_answer(self, match: FeedbackMatch) -> RAGAnswer:
        return RAGAnswer(
            content=match.record.answer,
            has_relevant_docs=True,
            has_web_results=False,
            confidence=match.confidence,
            query_info={
                "feedback_score": round(match.score, 2),
                "record_id": match.record.record_id,
            },
            source="feedback-cache",
            strategy="pre-approved-qa",
        )

    def _stage(self, stage: QueryStage, query: str, **context: Any) -> None:
        logger.info("query_stage", extra={"stage": stage.value, "query_length": len(query), **context})
