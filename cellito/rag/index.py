from __future__ import annotations

"""Process-wide RAG index with cache-backed rebuilds."""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from cellito.rag.cache import build_cache_record, is_cache_valid, parse_cache_record
from cellito.rag.indexer import (
    ARTICLE_CHUNK_SIZE,
    DEFAULT_OVERLAP,
    process_for_rag,
    summarize_corpus,
)
from cellito.rag.types import (
    CacheRecord,
    CacheStore,
    CacheStoreError,
    CorpusFingerprint,
    DocumentStore,
    DocumentStoreError,
    ProcessedDocument,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_KEY = "cellito-rag-cache"


@dataclass(frozen=True)
class IndexStatus:
    """Snapshot of the index state for status reporting."""
    total_documents: int = 0
    total_chunks: int = 0
    is_ready: bool = False
    from_cache: bool = False
    last_updated: datetime | None = None
    error: str | None = None
    skipped: bool = False


@dataclass(frozen=True)
class IndexBuildResult:
    from_cache: bool
    processed_documents: tuple[ProcessedDocument, ...]
    status: IndexStatus


@dataclass
class RAGIndex:
    """Owns the processed-document index and keeps it in sync with the corpus.

    The processed documents are replaced wholesale by reference on every
    rebuild, so readers never observe a partially built index. Only one build
    runs at a time; a call that arrives during a build returns the current
    state instead of starting a second pass over the same cache slot.
    """
    document_store: DocumentStore
    cache_store: CacheStore
    cache_key: str = DEFAULT_CACHE_KEY
    chunk_size: int = ARTICLE_CHUNK_SIZE
    overlap: int = DEFAULT_OVERLAP
    _record: CacheRecord | None = field(default=None, init=False, repr=False)
    _status: IndexStatus = field(default_factory=IndexStatus, init=False, repr=False)
    _indexing: bool = field(default=False, init=False, repr=False)

    @property
    def processed_documents(self) -> tuple[ProcessedDocument, ...]:
        if self._record is None:
            return ()
        return self._record.processed_documents

    @property
    def status(self) -> IndexStatus:
        return self._status

    @property
    def is_indexing(self) -> bool:
        return self._indexing

    async def init(self) -> IndexBuildResult:
        """Bring the index up, reusing the durable cache when it is still valid."""
        return await self.rebuild_if_needed()

    def reset(self) -> None:
        """Drop the in-memory index; the durable cache is left untouched.

        A build already in flight keeps its guard and installs its result
        when it finishes.
        """
        self._record = None
        self._status = IndexStatus()

    async def ensure_ready(self) -> tuple[ProcessedDocument, ...]:
        if not self._status.is_ready:
            await self.rebuild_if_needed()
        return self.processed_documents

    async def rebuild_if_needed(self) -> IndexBuildResult:
        """Reuse the in-memory or cached index when valid, otherwise rebuild."""
        return await self._build(force=False)

    async def force_rebuild(self) -> IndexBuildResult:
        """Rebuild from the document store regardless of cache state."""
        return await self._build(force=True)

    async def _build(self, force: bool) -> IndexBuildResult:
        if self._indexing:
            logger.info("index_build_skipped", extra={"reason": "already_indexing"})
            return self._result(replace(self._status, skipped=True))
        self._indexing = True
        try:
            return await self._build_locked(force)
        finally:
            self._indexing = False

    async def _build_locked(self, force: bool) -> IndexBuildResult:
        try:
            live = await self.document_store.get_fingerprint()
        except DocumentStoreError as exc:
            return self._fail("fingerprint_unavailable", exc)

        if not force:
            if self._record is not None and is_cache_valid(self._record, live):
                logger.info(
                    "index_reused",
                    extra={"documents": len(self._record.processed_documents)},
                )
                self._status = replace(self._status, from_cache=True, skipped=False)
                return self._result(self._status)
            record = await self._read_cache()
            if record is not None and is_cache_valid(record, live):
                return self._install(record, from_cache=True)

        return await self._rebuild(live)

    async def _read_cache(self) -> CacheRecord | None:
        try:
            payload = await self.cache_store.read(self.cache_key)
        except CacheStoreError as exc:
            logger.warning(
                "cache_read_failed",
                extra={"cache_key": self.cache_key, "detail": str(exc)},
            )
            return None
        return parse_cache_record(payload)

    async def _rebuild(self, live: CorpusFingerprint) -> IndexBuildResult:
        try:
            documents = await self.document_store.list_documents()
        except DocumentStoreError as exc:
            return self._fail("documents_unavailable", exc)
        if len(documents) != live.count:
            logger.warning(
                "document_count_mismatch",
                extra={"fingerprint": live.count, "loaded": len(documents)},
            )
        processed = process_for_rag(documents, chunk_size=self.chunk_size, overlap=self.overlap)
        record = build_cache_record(processed, live, now=datetime.now(timezone.utc))
        try:
            await self.cache_store.write(self.cache_key, record.to_dict())
        except CacheStoreError as exc:
            logger.warning(
                "cache_write_failed",
                extra={"cache_key": self.cache_key, "detail": str(exc)},
            )
        return self._install(record, from_cache=False)

    def _install(self, record: CacheRecord, from_cache: bool) -> IndexBuildResult:
        self._record = record
        summary = summarize_corpus(record.processed_documents)
        self._status = IndexStatus(
            total_documents=summary.total_documents,
            total_chunks=summary.total_chunks,
            is_ready=True,
            from_cache=from_cache,
            last_updated=record.metadata.last_updated,
        )
        logger.info(
            "index_ready",
            extra={
                "documents": summary.total_documents,
                "chunks": summary.total_chunks,
                "from_cache": from_cache,
            },
        )
        return self._result(self._status)

    def _fail(self, reason: str, exc: Exception) -> IndexBuildResult:
        logger.error("index_build_failed", extra={"reason": reason, "detail": str(exc)})
        self._record = None
        self._status = IndexStatus(error=str(exc) or reason)
        return self._result(self._status)

    def _result(self, status: IndexStatus) -> IndexBuildResult:
        return IndexBuildResult(
            from_cache=status.from_cache,
            processed_documents=self.processed_documents,
            status=status,
        )
