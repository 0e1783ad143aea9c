from __future__ import annotations

"""SQL persistence for the durable index cache and feedback records."""

import asyncio
import json
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse, urlunparse

from cellito.rag.types import CacheStoreError, FeedbackStoreError, QnARecord

logger = logging.getLogger(__name__)


def redact_uri(uri: str) -> str:
    """Redact credentials from connection URIs before logging."""
    if "://" not in uri:
        return uri
    parsed = urlparse(uri)
    if parsed.password is None:
        return uri
    netloc = parsed.hostname or ""
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLCacheStore:
    """Store cache records as JSON text keyed by cache key."""
    def __init__(self, connection_uri: str) -> None:
        """Initialize the cache store and ensure tables exist."""
        try:
            from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, create_engine
            from sqlalchemy.exc import SQLAlchemyError
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise CacheStoreError("sqlalchemy is required to use the SQL cache store") from exc

        self._errors = SQLAlchemyError
        try:
            self._engine = create_engine(connection_uri)
            self._metadata = MetaData()
            self._table = Table(
                "rag_cache",
                self._metadata,
                Column("cache_key", String(255), primary_key=True),
                Column("payload", Text, nullable=False),
                Column("updated_at", DateTime(timezone=True), nullable=False),
            )
            self._metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise CacheStoreError(f"Cache store unavailable: {exc}") from exc
        logger.info("cache_store_ready", extra={"uri": redact_uri(connection_uri)})

    async def read(self, key: str) -> dict[str, Any] | None:
        """Return the payload stored under ``key``, if any."""
        text = await asyncio.to_thread(self._read_text, key)
        if text is None:
            return None
        try:
            payload = json.loads(text)
        except ValueError:
            logger.warning("cache_payload_corrupt", extra={"cache_key": key})
            return None
        return payload if isinstance(payload, dict) else None

    def _read_text(self, key: str) -> str | None:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    self._table.select().where(self._table.c.cache_key == key)
                ).first()
        except self._errors as exc:
            raise CacheStoreError(f"Cache read failed: {exc}") from exc
        return None if row is None else row.payload

    async def write(self, key: str, payload: dict[str, Any]) -> None:
        """Replace the payload stored under ``key``."""
        text = json.dumps(payload, ensure_ascii=False, default=str)
        await asyncio.to_thread(self._write_text, key, text)

    def _write_text(self, key: str, text: str) -> None:
        updated_at = datetime.now(timezone.utc)
        try:
            with self._engine.begin() as conn:
                conn.execute(self._table.delete().where(self._table.c.cache_key == key))
                conn.execute(
                    self._table.insert().values(cache_key=key, payload=text, updated_at=updated_at)
                )
        except self._errors as exc:
            raise CacheStoreError(f"Cache write failed: {exc}") from exc


class SQLFeedbackStore:
    """Persist curated question/answer records in a SQL database."""
    def __init__(self, connection_uri: str) -> None:
        try:
            from sqlalchemy import (
                Boolean,
                Column,
                DateTime,
                Float,
                Integer,
                MetaData,
                String,
                Table,
                Text,
                create_engine,
            )
            from sqlalchemy.exc import SQLAlchemyError
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise FeedbackStoreError(
                "sqlalchemy is required to use the SQL feedback store"
            ) from exc

        self._errors = SQLAlchemyError
        try:
            self._engine = create_engine(connection_uri)
            self._metadata = MetaData()
            self._table = Table(
                "qna_records",
                self._metadata,
                Column("id", String(36), primary_key=True),
                Column("title", String(255), nullable=False),
                Column("question", Text, nullable=False),
                Column("answer", Text, nullable=False),
                Column("source", String(32), nullable=False),
                Column("rating_count", Integer, nullable=False),
                Column("average_rating", Float, nullable=False),
                Column("confidence_score", Float, nullable=False),
                Column("tags", Text, nullable=True),
                Column("is_approved", Boolean, nullable=False),
                Column("last_used", DateTime(timezone=True), nullable=True),
            )
            self._metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise FeedbackStoreError(f"Feedback store unavailable: {exc}") from exc

    async def list_approved(self, min_confidence: float) -> list[QnARecord]:
        table = self._table
        query = table.select().where(
            table.c.is_approved.is_(True), table.c.confidence_score >= min_confidence
        )
        return await asyncio.to_thread(self._fetch, query)

    async def find_by_question(self, normalized_question: str) -> QnARecord | None:
        from sqlalchemy import func

        table = self._table
        query = (
            table.select()
            .where(func.lower(table.c.question).contains(normalized_question, autoescape=True))
            .limit(1)
        )
        records = await asyncio.to_thread(self._fetch, query)
        return records[0] if records else None

    async def add(self, record: QnARecord) -> QnARecord:
        """Insert a new record and return it with its assigned id."""
        record_id = record.record_id or str(uuid.uuid4())
        row = self._serialize(record)
        row["id"] = record_id
        await asyncio.to_thread(self._insert, row)
        return replace(record, record_id=record_id)

    async def update(self, record: QnARecord) -> None:
        if record.record_id is None:
            raise FeedbackStoreError("Cannot update a record without an id")
        updated = await asyncio.to_thread(self._update, record.record_id, self._serialize(record))
        if updated == 0:
            raise FeedbackStoreError(f"Unknown feedback record: {record.record_id}")

    async def list_all(self) -> list[QnARecord]:
        return await asyncio.to_thread(self._fetch, self._table.select())

    def _insert(self, row: dict[str, Any]) -> None:
        try:
            with self._engine.begin() as conn:
                conn.execute(self._table.insert().values(**row))
        except self._errors as exc:
            raise FeedbackStoreError(f"Feedback insert failed: {exc}") from exc

    def _update(self, record_id: str, values: dict[str, Any]) -> int:
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    self._table.update().where(self._table.c.id == record_id).values(**values)
                )
        except self._errors as exc:
            raise FeedbackStoreError(f"Feedback update failed: {exc}") from exc
        return result.rowcount

    def _fetch(self, query: Any) -> list[QnARecord]:
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(query).fetchall()
        except self._errors as exc:
            raise FeedbackStoreError(f"Feedback read failed: {exc}") from exc
        return [self._deserialize(row) for row in rows]

    @staticmethod
    def _serialize(record: QnARecord) -> dict[str, Any]:
        question = record.question
        title = question if len(question) <= 90 else question[:87] + "..."
        return {
            "title": title,
            "question": question,
            "answer": record.answer,
            "source": record.source,
            "rating_count": record.rating_count,
            "average_rating": record.average_rating,
            "confidence_score": record.confidence_score,
            "tags": ", ".join(record.tags),
            "is_approved": record.is_approved,
            "last_used": record.last_used,
        }

    @staticmethod
    def _deserialize(row: Any) -> QnARecord:
        tags = [tag.strip() for tag in (row.tags or "").split(",") if tag.strip()]
        return QnARecord(
            question=row.question,
            answer=row.answer,
            rating_count=row.rating_count,
            average_rating=row.average_rating,
            confidence_score=row.confidence_score,
            tags=tags,
            last_used=_as_utc(row.last_used),
            is_approved=bool(row.is_approved),
            source=row.source,
            record_id=row.id,
        )
