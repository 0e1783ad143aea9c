from __future__ import annotations

"""In-memory document store, durable cache and feedback store."""

import copy
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable

from cellito.rag.cache import build_fingerprint
from cellito.rag.types import (
    CacheStoreError,
    CorpusFingerprint,
    DocumentStoreError,
    FeedbackStoreError,
    QnARecord,
    RawDocument,
)


class InMemoryDocumentStore:
    """Document store over a dict of documents keyed by id."""
    def __init__(
        self,
        documents: Iterable[RawDocument] | None = None,
        source_kind: str = "articles",
    ) -> None:
        self.source_kind = source_kind
        self._documents: dict[str, RawDocument] = {}
        self.list_calls = 0
        self.fingerprint_calls = 0
        self.unavailable = False
        for document in documents or []:
            self.add(document)

    def add(self, document: RawDocument) -> None:
        self._documents[document.doc_id] = document

    def remove(self, doc_id: str) -> None:
        self._documents.pop(doc_id, None)

    def touch(self, doc_id: str, modified_at: datetime) -> None:
        """Change a document's modification time."""
        self._documents[doc_id] = replace(self._documents[doc_id], modified_at=modified_at)

    async def list_documents(self) -> list[RawDocument]:
        self._check_available()
        self.list_calls += 1
        return list(self._documents.values())

    async def get_fingerprint(self) -> CorpusFingerprint:
        self._check_available()
        self.fingerprint_calls += 1
        return build_fingerprint(
            self._documents.keys(),
            [document.modified_at for document in self._documents.values()],
            source_kind=self.source_kind,
        )

    def _check_available(self) -> None:
        if self.unavailable:
            raise DocumentStoreError("Document store unavailable")


class InMemoryCacheStore:
    """Key-value cache holding deep copies of JSON payloads."""
    def __init__(self) -> None:
        self._entries: dict[str, dict[str, Any]] = {}
        self.reads = 0
        self.writes = 0
        self.unavailable = False

    async def read(self, key: str) -> dict[str, Any] | None:
        if self.unavailable:
            raise CacheStoreError("Cache store unavailable")
        self.reads += 1
        payload = self._entries.get(key)
        return copy.deepcopy(payload) if payload is not None else None

    async def write(self, key: str, payload: dict[str, Any]) -> None:
        if self.unavailable:
            raise CacheStoreError("Cache store unavailable")
        self.writes += 1
        self._entries[key] = copy.deepcopy(payload)

    def clear(self) -> None:
        self._entries.clear()


class InMemoryFeedbackStore:
    """Feedback store holding records in insertion order."""
    def __init__(self, records: Iterable[QnARecord] | None = None) -> None:
        self._records: dict[str, QnARecord] = {}
        self.list_calls = 0
        for record in records or []:
            self._store(record)

    def _store(self, record: QnARecord) -> QnARecord:
        stored = replace(record, record_id=record.record_id or str(uuid.uuid4()))
        self._records[stored.record_id] = stored
        return replace(stored)

    async def list_approved(self, min_confidence: float) -> list[QnARecord]:
        self.list_calls += 1
        return [
            replace(record)
            for record in self._records.values()
            if record.is_approved and record.confidence_score >= min_confidence
        ]

    async def find_by_question(self, normalized_question: str) -> QnARecord | None:
        for record in self._records.values():
            if normalized_question in record.question.lower():
                return replace(record)
        return None

    async def add(self, record: QnARecord) -> QnARecord:
        return self._store(record)

    async def update(self, record: QnARecord) -> None:
        if record.record_id is None or record.record_id not in self._records:
            raise FeedbackStoreError(f"Unknown feedback record: {record.record_id}")
        self._records[record.record_id] = replace(record)

    async def list_all(self) -> list[QnARecord]:
        return [replace(record) for record in self._records.values()]
