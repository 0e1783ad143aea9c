from __future__ import annotations

"""Core data types for documents, chunks, cache records and answers."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol


class MalformedStoredContent(ValueError):
    """Raised when a persisted document, chunk or record cannot be parsed."""
    pass


class DocumentStoreError(RuntimeError):
    """Raised when the document store cannot be reached or read."""
    pass


class CacheStoreError(RuntimeError):
    """Raised when the durable cache cannot be read or written."""
    pass


class FeedbackStoreError(RuntimeError):
    """Raised when the feedback store cannot be read or written."""
    pass


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or datetime) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedStoredContent(f"Invalid timestamp: {value!r}") from exc
    else:
        raise MalformedStoredContent(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _require(data: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    if not isinstance(data, dict):
        raise MalformedStoredContent("Expected an object")
    if key not in data:
        raise MalformedStoredContent(f"Missing field: {key}")
    value = data[key]
    if isinstance(value, bool) and kind in (int, float, (int, float)):
        raise MalformedStoredContent(f"Invalid field type: {key}")
    if not isinstance(value, kind):
        raise MalformedStoredContent(f"Invalid field type: {key}")
    return value


@dataclass(frozen=True)
class RawDocument:
    """Source document as returned by a document store."""
    doc_id: str
    title: str
    text: str
    category: str = ""
    modified_at: datetime | None = None
    source_metadata: dict[str, Any] = field(default_factory=dict)
    file_name: str = ""

    @property
    def display_name(self) -> str:
        return self.file_name or self.title


@dataclass(frozen=True)
class Chunk:
    """Sentence-aligned passage of a document."""
    text: str
    size: int
    sentence_count: int
    starts_with_capital: bool
    ends_with_punctuation: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "size": self.size,
            "sentenceCount": self.sentence_count,
            "startsWithCapital": self.starts_with_capital,
            "endsWithPunctuation": self.ends_with_punctuation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chunk":
        return cls(
            text=_require(data, "text", str),
            size=_require(data, "size", int),
            sentence_count=_require(data, "sentenceCount", int),
            starts_with_capital=_require(data, "startsWithCapital", bool),
            ends_with_punctuation=_require(data, "endsWithPunctuation", bool),
        )


@dataclass(frozen=True)
class ProcessedDocument:
    """Indexed document: source fields plus chunks and keywords."""
    doc_id: str
    title: str
    text: str
    chunks: tuple[Chunk, ...]
    keywords: dict[str, int]
    original_text_length: int
    category: str = ""
    modified_at: datetime | None = None
    source_metadata: dict[str, Any] = field(default_factory=dict)
    file_name: str = ""

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    @property
    def display_name(self) -> str:
        return self.file_name or self.title

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.doc_id,
            "title": self.title,
            "text": self.text,
            "category": self.category,
            "fileName": self.file_name,
            "modifiedAt": format_timestamp(self.modified_at),
            "sourceMetadata": self.source_metadata,
            "chunks": [chunk.to_dict() for chunk in self.chunks],
            "totalChunks": self.total_chunks,
            "keywords": self.keywords,
            "originalTextLength": self.original_text_length,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcessedDocument":
        raw_chunks = _require(data, "chunks", list)
        keywords = _require(data, "keywords", dict)
        metadata = data.get("sourceMetadata") or {}
        if not isinstance(metadata, dict):
            raise MalformedStoredContent("Invalid field type: sourceMetadata")
        return cls(
            doc_id=str(_require(data, "id", (str, int))),
            title=_require(data, "title", str),
            text=_require(data, "text", str),
            chunks=tuple(Chunk.from_dict(item) for item in raw_chunks),
            keywords={str(key): int(value) for key, value in keywords.items()},
            original_text_length=_require(data, "originalTextLength", int),
            category=str(data.get("category") or ""),
            modified_at=parse_timestamp(data.get("modifiedAt")),
            source_metadata=metadata,
            file_name=str(data.get("fileName") or ""),
        )


@dataclass(frozen=True)
class CorpusFingerprint:
    """Summary of the live corpus used to validate a cache record."""
    count: int
    last_modified: datetime | None
    document_ids: tuple[str, ...]
    source_kind: str = "articles"


@dataclass(frozen=True)
class CacheMetadata:
    """Fingerprint and build stats embedded in a cache record."""
    count: int
    last_modified: datetime | None
    document_ids: tuple[str, ...]
    source_kind: str
    total_documents: int
    total_chunks: int
    last_updated: datetime
    version: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "lastModified": format_timestamp(self.last_modified),
            "documentIds": list(self.document_ids),
            "sourceKind": self.source_kind,
            "totalDocuments": self.total_documents,
            "totalChunks": self.total_chunks,
            "lastUpdated": format_timestamp(self.last_updated),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheMetadata":
        ids = _require(data, "documentIds", list)
        last_updated = parse_timestamp(_require(data, "lastUpdated", str))
        if last_updated is None:
            raise MalformedStoredContent("Missing field: lastUpdated")
        return cls(
            count=_require(data, "count", int),
            last_modified=parse_timestamp(data.get("lastModified")),
            document_ids=tuple(str(item) for item in ids),
            source_kind=_require(data, "sourceKind", str),
            total_documents=_require(data, "totalDocuments", int),
            total_chunks=_require(data, "totalChunks", int),
            last_updated=last_updated,
            version=_require(data, "version", str),
        )


@dataclass(frozen=True)
class CacheRecord:
    """Persisted index state: fingerprint metadata plus processed documents."""
    metadata: CacheMetadata
    processed_documents: tuple[ProcessedDocument, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "processedDocuments": [doc.to_dict() for doc in self.processed_documents],
        }


@dataclass(frozen=True)
class DocumentRef:
    """Document fields carried alongside a scored chunk."""
    doc_id: str
    title: str
    file_name: str = ""
    category: str = ""

    @property
    def display_name(self) -> str:
        return self.file_name or self.title


@dataclass(frozen=True)
class ScoredChunk:
    """Chunk scored against a query."""
    chunk: Chunk
    score: int
    document: DocumentRef
    chunk_index: int
    doc_index: int
    estimated_tokens: int


@dataclass(frozen=True)
class WebResult:
    """Ranked snippet returned by a web search service."""
    title: str
    snippet: str
    url: str
    source: str


@dataclass
class QnARecord:
    """Curated question/answer pair backed by user feedback."""
    question: str
    answer: str
    rating_count: int = 1
    average_rating: float = 5.0
    confidence_score: float = 90.0
    tags: list[str] = field(default_factory=list)
    last_used: datetime | None = None
    is_approved: bool = True
    source: str = "internal"
    record_id: str | None = None


@dataclass(frozen=True)
class CompletionRequest:
    """Prompt and generation parameters for a chat completion call."""
    system_prompt: str
    user_prompt: str
    temperature: float
    max_tokens: int
    seed: int | None = None


@dataclass(frozen=True)
class RAGAnswer:
    """Final answer annotated with confidence and attribution."""
    content: str
    has_relevant_docs: bool
    has_web_results: bool
    confidence: int
    query_info: dict[str, Any] = field(default_factory=dict)
    source: str = "rag"
    strategy: str = "internal-only"
    sources: list[dict[str, Any]] = field(default_factory=list)
    web_sources: list[dict[str, Any]] = field(default_factory=list)


class DocumentStore(Protocol):
    async def list_documents(self) -> list[RawDocument]:
        ...

    async def get_fingerprint(self) -> CorpusFingerprint:
        ...


class CacheStore(Protocol):
    async def read(self, key: str) -> dict[str, Any] | None:
        ...

    async def write(self, key: str, payload: dict[str, Any]) -> None:
        ...


class ChatCompletionService(Protocol):
    async def complete(self, request: CompletionRequest) -> str:
        ...


class WebSearchService(Protocol):
    async def search(self, query: str, limit: int = 3) -> list[WebResult]:
        ...


class FeedbackStore(Protocol):
    async def list_approved(self, min_confidence: float) -> list[QnARecord]:
        ...

    async def find_by_question(self, normalized_question: str) -> QnARecord | None:
        ...

    async def add(self, record: QnARecord) -> QnARecord:
        ...

    async def update(self, record: QnARecord) -> None:
        ...

    async def list_all(self) -> list[QnARecord]:
        ...
