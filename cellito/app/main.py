from __future__ import annotations

"""FastAPI application entrypoint for the Cellito knowledge-base assistant."""

import logging
import uuid

from fastapi import Depends, FastAPI, HTTPException, Request

from cellito.app.dependencies import get_feedback_store, get_index, get_orchestrator
from cellito.app.metrics import (
    metrics_middleware,
    metrics_response,
    observe_answer,
    observe_index_build,
)
from cellito.app.schemas import (
    ChatRequest,
    ChatResponse,
    ChatSource,
    FeedbackRequest,
    FeedbackResponse,
    FeedbackStatsResponse,
    IndexStatusResponse,
    SearchChunk,
    SearchRequest,
    SearchResponse,
    WebSource,
)
from cellito.app.security import AuthContext, require_api_key, require_roles
from cellito.app.settings import settings
from cellito.rag.feedback import feedback_stats, record_answer
from cellito.rag.index import IndexBuildResult, RAGIndex
from cellito.rag.llm import LLMError

logger = logging.getLogger(__name__)

app = FastAPI(title="Cellito RAG Service", version="0.1.0")


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


def _request_id(request: Request, trace_id: str | None = None) -> str:
    return trace_id or getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _safe_error_message(exc: Exception) -> str:
    """Return a safe error type name for logs and responses."""
    return type(exc).__name__


def _index_status(index: RAGIndex, result: IndexBuildResult | None = None) -> IndexStatusResponse:
    status = result.status if result is not None else index.status
    return IndexStatusResponse(
        total_documents=status.total_documents,
        total_chunks=status.total_chunks,
        is_ready=status.is_ready,
        from_cache=status.from_cache,
        is_indexing=index.is_indexing,
        last_updated=status.last_updated,
        error=status.error,
        skipped=status.skipped,
    )


def _observe_build(result: IndexBuildResult) -> None:
    if result.status.error:
        outcome = "failed"
    elif result.status.skipped:
        outcome = "skipped"
    elif result.from_cache:
        outcome = "cache_hit"
    else:
        outcome = "rebuilt"
    observe_index_build(outcome)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health probe for uptime checks."""
    return {"status": "ok"}


@app.get("/index/status", response_model=IndexStatusResponse)
async def index_status(auth: AuthContext = Depends(require_api_key)) -> IndexStatusResponse:
    require_roles(auth, {"reader", "writer", "admin"})
    return _index_status(get_index())


@app.post("/index/refresh", response_model=IndexStatusResponse)
async def index_refresh(auth: AuthContext = Depends(require_api_key)) -> IndexStatusResponse:
    """Rebuild the index only when the corpus changed since the last build."""
    require_roles(auth, {"writer", "admin"})
    index = get_index()
    result = await index.rebuild_if_needed()
    _observe_build(result)
    return _index_status(index, result)


@app.post("/index/rebuild", response_model=IndexStatusResponse)
async def index_rebuild(auth: AuthContext = Depends(require_api_key)) -> IndexStatusResponse:
    """Rebuild the index from the document store, ignoring the cache."""
    require_roles(auth, {"admin"})
    index = get_index()
    result = await index.force_rebuild()
    _observe_build(result)
    return _index_status(index, result)


@app.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    http_request: Request,
    auth: AuthContext = Depends(require_api_key),
) -> SearchResponse:
    """Return the chunks selected for a query without generating an answer."""
    require_roles(auth, {"reader", "writer", "admin"})
    request_id = _request_id(http_request)
    preview = await get_orchestrator().search(request.query, max_chunks=request.max_chunks)
    logger.info(
        "search_complete",
        extra={"request_id": request_id, "chunks": len(preview.chunks)},
    )
    return SearchResponse(
        chunks=[
            SearchChunk(
                document_id=item.document.doc_id,
                title=item.document.display_name,
                category=item.document.category,
                chunk_index=item.chunk_index,
                score=item.score,
                estimated_tokens=item.estimated_tokens,
                text=item.chunk.text,
            )
            for item in preview.chunks
        ],
        context=preview.context,
        request_id=request_id,
    )


@app.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    http_request: Request,
    auth: AuthContext = Depends(require_api_key),
) -> ChatResponse:
    """Answer a question from feedback, the knowledge base and the web."""
    require_roles(auth, {"reader", "writer", "admin"})
    request_id = _request_id(http_request, request.trace_id)
    orchestrator = get_orchestrator()
    try:
        if request.use_feedback:
            answer = await orchestrator.ask(request.query)
        else:
            answer = await orchestrator.answer(request.query)
    except LLMError as exc:
        logger.error(
            "llm_failed",
            extra={
                "request_id": request_id,
                "query": request.query,
                "detail": _safe_error_message(exc),
            },
        )
        raise HTTPException(status_code=502, detail="Answer generation failed") from exc

    observe_answer(
        answer.strategy,
        answer.confidence,
        bool(answer.query_info.get("web_search_used")),
    )
    logger.info(
        "chat_complete",
        extra={
            "request_id": request_id,
            "strategy": answer.strategy,
            "confidence": answer.confidence,
        },
    )
    return ChatResponse(
        content=answer.content,
        has_relevant_docs=answer.has_relevant_docs,
        has_web_results=answer.has_web_results,
        confidence=answer.confidence,
        source=answer.source,
        strategy=answer.strategy,
        query_info=answer.query_info,
        sources=[ChatSource(**item) for item in answer.sources],
        web_sources=[WebSource(**item) for item in answer.web_sources],
        request_id=request_id,
    )


@app.post("/feedback", response_model=FeedbackResponse)
async def feedback(
    request: FeedbackRequest,
    auth: AuthContext = Depends(require_api_key),
) -> FeedbackResponse:
    """Record an approved answer, or bump the rating of a matching one."""
    require_roles(auth, {"writer", "admin"})
    record = await record_answer(
        get_feedback_store(),
        question=request.question,
        answer=request.answer,
        source=request.source,
        tags=request.tags,
    )
    if record is None:
        raise HTTPException(status_code=503, detail="Feedback store unavailable")
    return FeedbackResponse(
        record_id=record.record_id,
        rating_count=record.rating_count,
        average_rating=record.average_rating,
        confidence_score=record.confidence_score,
    )


@app.get("/feedback/stats", response_model=FeedbackStatsResponse)
async def feedback_statistics(
    auth: AuthContext = Depends(require_api_key),
) -> FeedbackStatsResponse:
    require_roles(auth, {"reader", "writer", "admin"})
    stats = await feedback_stats(get_feedback_store())
    return FeedbackStatsResponse(
        total=stats.total,
        average_rating=stats.average_rating,
        recent_count=stats.recent_count,
    )
