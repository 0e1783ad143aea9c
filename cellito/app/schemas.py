from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    query: str = Field(min_length=1)
    use_feedback: bool = True
    trace_id: str | None = None


class ChatSource(BaseModel):
    document_id: str
    title: str
    category: str = ""
    score: int


class WebSource(BaseModel):
    title: str
    url: str
    source: str


class ChatResponse(BaseModel):
    content: str
    has_relevant_docs: bool
    has_web_results: bool
    confidence: int
    source: str
    strategy: str
    query_info: dict[str, Any] = Field(default_factory=dict)
    sources: list[ChatSource] = Field(default_factory=list)
    web_sources: list[WebSource] = Field(default_factory=list)
    request_id: str


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    max_chunks: int | None = Field(default=None, ge=1, le=8)


class SearchChunk(BaseModel):
    document_id: str
    title: str
    category: str = ""
    chunk_index: int
    score: int
    estimated_tokens: int
    text: str


class SearchResponse(BaseModel):
    chunks: list[SearchChunk]
    context: str
    request_id: str


class IndexStatusResponse(BaseModel):
    total_documents: int
    total_chunks: int
    is_ready: bool
    from_cache: bool
    is_indexing: bool = False
    last_updated: datetime | None = None
    error: str | None = None
    skipped: bool = False


class FeedbackRequest(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    source: str = "internal"
    tags: list[str] = Field(default_factory=list)


class FeedbackResponse(BaseModel):
    record_id: str | None
    rating_count: int
    average_rating: float
    confidence_score: float


class FeedbackStatsResponse(BaseModel):
    total: int
    average_rating: float
    recent_count: int
