from __future__ import annotations

"""Answers backed by user feedback: lookup, upsert and stats."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging

from cellito.rag.types import FeedbackStore, FeedbackStoreError, QnARecord

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 70
MIN_MATCH_SCORE = 20
MAX_CACHED_CONFIDENCE = 95
QUESTION_KEY_LENGTH = 100
NEW_RECORD_RATING = 5.0
NEW_RECORD_CONFIDENCE = 90.0
BASE_CONFIDENCE = 70
CONFIDENCE_PER_RATING = 6
RECENT_DAYS = 7


@dataclass(frozen=True)
class FeedbackMatch:
    record: QnARecord
    score: float

    @property
    def confidence(self) -> int:
        return int(min(MAX_CACHED_CONFIDENCE, self.score))


@dataclass(frozen=True)
class FeedbackStats:
    total: int
    average_rating: float
    recent_count: int


def normalize_question(question: str) -> str:
    """Lookup key for a question: trimmed, lowercased, first 100 characters."""
    return question.strip().lower()[:QUESTION_KEY_LENGTH]


def _significant_words(text: str) -> list[str]:
    return [word for word in text.lower().split() if len(word) > 3]


def match_score(query_words: list[str], record: QnARecord) -> float:
    """Word-overlap relevance weighted by the record's rating and confidence."""
    if not query_words:
        return 0.0
    question_words = _significant_words(record.question)
    matches = sum(
        1
        for word in query_words
        if any(word in candidate or candidate in word for candidate in question_words)
    )
    relevance = matches / len(query_words)
    rating_boost = record.average_rating / 5
    confidence_boost = record.confidence_score / 100
    return relevance * rating_boost * confidence_boost * 100


async def find_similar_answers(
    store: FeedbackStore,
    query: str,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    top_n: int = 3,
) -> list[FeedbackMatch]:
    """Approved records similar to ``query``, best first."""
    words = _significant_words(query.strip())
    if not words:
        return []
    try:
        records = await store.list_approved(min_confidence)
    except FeedbackStoreError as exc:
        logger.warning("feedback_lookup_failed", extra={"query": query, "error": str(exc)})
        return []

    matches: list[FeedbackMatch] = []
    for record in records:
        if not record.is_approved or record.confidence_score < min_confidence:
            continue
        score = match_score(words, record)
        if score > MIN_MATCH_SCORE:
            matches.append(FeedbackMatch(record=record, score=score))
    matches.sort(key=lambda item: item.score, reverse=True)
    return matches[:top_n]


async def find_cached_answer(
    store: FeedbackStore,
    query: str,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> FeedbackMatch | None:
    """Best approved answer for ``query`` scoring above the floor, if any."""
    matches = await find_similar_answers(store, query, min_confidence, top_n=1)
    if not matches:
        logger.info("feedback_cache_miss", extra={"query_length": len(query)})
        return None
    best = matches[0]
    logger.info(
        "feedback_cache_hit",
        extra={"record_id": best.record.record_id, "score": round(best.score, 2)},
    )
    return best


async def record_answer(
    store: FeedbackStore,
    question: str,
    answer: str,
    source: str = "internal",
    tags: list[str] | None = None,
    now: datetime | None = None,
) -> QnARecord | None:
    """Insert a new approved record or bump the rating of an existing one."""
    now = now or datetime.now(timezone.utc)
    normalized = normalize_question(question)
    try:
        existing = await store.find_by_question(normalized)
        if existing is not None:
            count = existing.rating_count + 1
            average = round((existing.average_rating * existing.rating_count + 5) / count, 2)
            existing.rating_count = count
            existing.average_rating = average
            existing.confidence_score = min(100.0, BASE_CONFIDENCE + average * CONFIDENCE_PER_RATING)
            existing.last_used = now
            await store.update(existing)
            logger.info(
                "feedback_record_updated",
                extra={"record_id": existing.record_id, "rating_count": count},
            )
            return existing
        record = QnARecord(
            question=question,
            answer=answer,
            rating_count=1,
            average_rating=NEW_RECORD_RATING,
            confidence_score=NEW_RECORD_CONFIDENCE,
            tags=list(tags or []),
            last_used=now,
            is_approved=True,
            source=source,
        )
        saved = await store.add(record)
    except FeedbackStoreError as exc:
        logger.warning("feedback_record_failed", extra={"query": question, "error": str(exc)})
        return None
    logger.info("feedback_record_added", extra={"record_id": saved.record_id})
    return saved


async def feedback_stats(store: FeedbackStore, now: datetime | None = None) -> FeedbackStats:
    """Approved total, mean rating and records used in the last week."""
    now = now or datetime.now(timezone.utc)
    try:
        records = [record for record in await store.list_all() if record.is_approved]
    except FeedbackStoreError as exc:
        logger.warning("feedback_stats_failed", extra={"error": str(exc)})
        return FeedbackStats(total=0, average_rating=0.0, recent_count=0)

    total = len(records)
    average = round(sum(record.average_rating for record in records) / total, 2) if total else 0.0
    cutoff = now - timedelta(days=RECENT_DAYS)
    recent = sum(
        1 for record in records if record.last_used is not None and record.last_used > cutoff
    )
    return FeedbackStats(total=total, average_rating=average, recent_count=recent)
