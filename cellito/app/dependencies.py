from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from cellito.app.settings import settings
from cellito.loaders.articles import SharePointArticleStore
from cellito.loaders.folder import FolderDocumentStore
from cellito.metadata.store import SQLCacheStore, SQLFeedbackStore
from cellito.rag.index import RAGIndex
from cellito.rag.llm import Determinism, build_chat_client
from cellito.rag.pipeline import AnswerOrchestrator
from cellito.rag.types import (
    CacheStore,
    ChatCompletionService,
    DocumentStore,
    FeedbackStore,
    WebSearchService,
)
from cellito.rag.web import GoogleCustomSearch
from cellito.stores.inmemory import InMemoryCacheStore, InMemoryFeedbackStore


@lru_cache
def get_document_store() -> DocumentStore:
    source = settings.corpus_source.strip().lower()
    if source == "files":
        return FolderDocumentStore(root=Path(settings.documents_path))
    return SharePointArticleStore(
        site_url=settings.sharepoint_site_url,
        access_token=settings.sharepoint_access_token,
        list_name=settings.sharepoint_list_name,
        timeout=settings.sharepoint_timeout,
        cache_slug=settings.cache_key,
    )


@lru_cache
def get_cache_store() -> CacheStore:
    if settings.cache_backend.strip().lower() == "sql" and settings.cache_db_uri:
        return SQLCacheStore(settings.cache_db_uri)
    return InMemoryCacheStore()


@lru_cache
def get_feedback_store() -> FeedbackStore:
    if settings.feedback_db_uri:
        return SQLFeedbackStore(settings.feedback_db_uri)
    return InMemoryFeedbackStore()


@lru_cache
def get_index() -> RAGIndex:
    return RAGIndex(
        document_store=get_document_store(),
        cache_store=get_cache_store(),
        cache_key=settings.cache_key,
        chunk_size=settings.chunk_size,
        overlap=settings.chunk_overlap,
    )


@lru_cache
def get_chat_client() -> ChatCompletionService:
    return build_chat_client(
        settings.llm_provider,
        api_key_openai=settings.openai_api_key,
        api_key_groq=settings.groq_api_key,
        api_key_gemini=settings.gemini_api_key,
        openai_base_url=settings.openai_base_url,
        groq_base_url=settings.groq_base_url,
        chat_model=settings.chat_model,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
        timeout=settings.llm_timeout,
    )


@lru_cache
def get_web_search() -> WebSearchService | None:
    if not settings.web_search_enabled:
        return None
    if not (settings.google_search_api_key and settings.google_search_engine_id):
        return None
    return GoogleCustomSearch(
        api_key=settings.google_search_api_key,
        engine_id=settings.google_search_engine_id,
        timeout=settings.web_timeout,
        query_prefix=settings.web_query_prefix,
    )


@lru_cache
def get_orchestrator() -> AnswerOrchestrator:
    return AnswerOrchestrator(
        index=get_index(),
        chat=get_chat_client(),
        web=get_web_search(),
        feedback=get_feedback_store(),
        max_chunks=settings.max_chunks,
        min_score=settings.min_score,
        max_context_tokens=settings.max_context_tokens,
        low_confidence_threshold=settings.low_confidence_threshold,
        determinism=Determinism(
            temperature=settings.temperature,
            seed=settings.seed,
            seed_from_query=settings.seed_from_query,
        ),
        max_tokens=settings.llm_max_tokens,
        generation_timeout=settings.llm_timeout,
        web_timeout=settings.web_timeout,
        web_limit=settings.web_max_results,
        feedback_min_confidence=settings.feedback_min_confidence,
        record_min_confidence=settings.record_min_confidence,
    )


def reset_dependency_cache() -> None:
    for factory in (
        get_orchestrator,
        get_web_search,
        get_chat_client,
        get_index,
        get_feedback_store,
        get_cache_store,
        get_document_store,
    ):
        factory.cache_clear()
