from __future__ import annotations

"""Corpus fingerprints, cache validity checks and cache record (de)serialization."""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable

from cellito.rag.indexer import summarize_corpus
from cellito.rag.types import (
    CacheMetadata,
    CacheRecord,
    CorpusFingerprint,
    MalformedStoredContent,
    ProcessedDocument,
)

logger = logging.getLogger(__name__)

CACHE_VERSION = "3.0"

_NUMERIC_RE = re.compile(r"^\d+$")


def _id_sort_key(doc_id: str) -> tuple[int, int, str]:
    if _NUMERIC_RE.match(doc_id):
        return (0, int(doc_id), doc_id)
    return (1, 0, doc_id)


def sort_document_ids(document_ids: Iterable[Any]) -> tuple[str, ...]:
    """Sort ids numerically when they are numeric, lexically otherwise."""
    return tuple(sorted((str(doc_id) for doc_id in document_ids), key=_id_sort_key))


def build_fingerprint(
    document_ids: Iterable[Any],
    modified: Iterable[datetime | None],
    source_kind: str,
) -> CorpusFingerprint:
    """Build a fingerprint from document ids and modification times."""
    ids = sort_document_ids(document_ids)
    latest: datetime | None = None
    for value in modified:
        if value is None:
            continue
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        if latest is None or value > latest:
            latest = value
    return CorpusFingerprint(
        count=len(ids),
        last_modified=latest,
        document_ids=ids,
        source_kind=source_kind,
    )


def canonical_ids(document_ids: Iterable[str]) -> str:
    return json.dumps(list(document_ids), separators=(",", ":"))


def is_cache_valid(record: CacheRecord | None, live: CorpusFingerprint | None) -> bool:
    """Return True when the cached index still describes the live corpus."""
    if record is None or live is None:
        logger.info("cache_invalid", extra={"reason": "missing"})
        return False
    cached = record.metadata
    if cached.source_kind != live.source_kind:
        logger.info(
            "cache_invalid",
            extra={
                "reason": "source_kind_changed",
                "cached": cached.source_kind,
                "live": live.source_kind,
            },
        )
        return False
    if cached.count != live.count:
        logger.info(
            "cache_invalid",
            extra={"reason": "count_changed", "cached": cached.count, "live": live.count},
        )
        return False
    if canonical_ids(cached.document_ids) != canonical_ids(live.document_ids):
        cached_ids = set(cached.document_ids)
        live_ids = set(live.document_ids)
        logger.info(
            "cache_invalid",
            extra={
                "reason": "documents_changed",
                "added": [doc_id for doc_id in live.document_ids if doc_id not in cached_ids],
                "removed": [doc_id for doc_id in cached.document_ids if doc_id not in live_ids],
            },
        )
        return False
    if cached.last_modified is not None and live.last_modified is not None:
        if live.last_modified > cached.last_modified:
            logger.info(
                "cache_invalid",
                extra={
                    "reason": "documents_modified",
                    "cached": cached.last_modified.isoformat(),
                    "live": live.last_modified.isoformat(),
                },
            )
            return False
    return True


def build_cache_record(
    processed: Iterable[ProcessedDocument],
    fingerprint: CorpusFingerprint,
    now: datetime | None = None,
) -> CacheRecord:
    """Package processed documents with the fingerprint they were built from."""
    documents = tuple(processed)
    summary = summarize_corpus(documents)
    metadata = CacheMetadata(
        count=fingerprint.count,
        last_modified=fingerprint.last_modified,
        document_ids=fingerprint.document_ids,
        source_kind=fingerprint.source_kind,
        total_documents=summary.total_documents,
        total_chunks=summary.total_chunks,
        last_updated=now or datetime.now(timezone.utc),
        version=CACHE_VERSION,
    )
    return CacheRecord(metadata=metadata, processed_documents=documents)


def parse_cache_record(payload: dict[str, Any] | None) -> CacheRecord | None:
    """Parse a stored cache payload.

    A payload whose metadata cannot be read is treated as absent. Documents
    that fail to parse are dropped one by one so a single corrupt entry does
    not discard the rest of the index.
    """
    if payload is None:
        return None
    if not isinstance(payload, dict):
        logger.warning("cache_record_malformed", extra={"detail": "payload is not an object"})
        return None
    try:
        metadata = CacheMetadata.from_dict(payload.get("metadata"))
    except (MalformedStoredContent, TypeError, ValueError) as exc:
        logger.warning("cache_record_malformed", extra={"detail": str(exc)})
        return None

    raw_documents = payload.get("processedDocuments")
    if not isinstance(raw_documents, list):
        logger.warning(
            "cache_record_malformed", extra={"detail": "processedDocuments is not a list"}
        )
        return None
    documents: list[ProcessedDocument] = []
    for idx, item in enumerate(raw_documents):
        try:
            documents.append(ProcessedDocument.from_dict(item))
        except (MalformedStoredContent, TypeError, ValueError) as exc:
            doc_id = item.get("id") if isinstance(item, dict) else None
            logger.warning(
                "cached_document_skipped",
                extra={"doc_id": doc_id, "position": idx, "detail": str(exc)},
            )
    return CacheRecord(metadata=metadata, processed_documents=tuple(documents))
