from __future__ import annotations

"""Rank chunks across the corpus and pick a budgeted, diverse subset."""

import functools
import logging
from typing import Sequence

from cellito.loaders.chunking import estimate_tokens
from cellito.rag.scoring import score_chunk
from cellito.rag.types import DocumentRef, ProcessedDocument, ScoredChunk

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNKS = 3
DEFAULT_MIN_SCORE = 30
DEFAULT_MAX_CONTEXT_TOKENS = 2500
SCORE_TIE_BAND = 5
PREFERRED_SENTENCE_COUNT = 3
DIVERSITY_FREE_PICKS = 2


def score_corpus(documents: Sequence[ProcessedDocument], query: str) -> list[ScoredChunk]:
    """Score every chunk of every document, keeping positive scores."""
    scored: list[ScoredChunk] = []
    for doc_index, document in enumerate(documents):
        ref = DocumentRef(
            doc_id=document.doc_id,
            title=document.title,
            file_name=document.file_name,
            category=document.category,
        )
        for chunk_index, chunk in enumerate(document.chunks):
            score = score_chunk(query, chunk, document.display_name)
            if score <= 0:
                continue
            scored.append(
                ScoredChunk(
                    chunk=chunk,
                    score=score,
                    document=ref,
                    chunk_index=chunk_index,
                    doc_index=doc_index,
                    estimated_tokens=estimate_tokens(chunk.text),
                )
            )
    return scored


def _quality(item: ScoredChunk) -> int:
    return int(item.chunk.starts_with_capital) + int(item.chunk.ends_with_punctuation)


def compare_scored(a: ScoredChunk, b: ScoredChunk) -> int:
    """Order by score, treating scores within the tie band as equal."""
    if abs(b.score - a.score) > SCORE_TIE_BAND:
        return b.score - a.score
    a_sentences = abs(a.chunk.sentence_count - PREFERRED_SENTENCE_COUNT)
    b_sentences = abs(b.chunk.sentence_count - PREFERRED_SENTENCE_COUNT)
    if a_sentences != b_sentences:
        return a_sentences - b_sentences
    return _quality(b) - _quality(a)


def rank_chunks(scored: list[ScoredChunk]) -> list[ScoredChunk]:
    return sorted(scored, key=functools.cmp_to_key(compare_scored))


def select_top_chunks(
    documents: Sequence[ProcessedDocument],
    query: str,
    max_chunks: int = DEFAULT_MAX_CHUNKS,
    min_score: float = DEFAULT_MIN_SCORE,
    max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
) -> list[ScoredChunk]:
    """Select up to ``max_chunks`` relevant chunks within the token budget.

    After the first two picks, chunks from documents that already contributed
    are passed over so the context is not dominated by a single document.
    """
    if not documents or not query.strip():
        return []
    scored = score_corpus(documents, query)
    ranked = [item for item in rank_chunks(scored) if item.score >= min_score]

    selected: list[ScoredChunk] = []
    used_documents: set[str] = set()
    used_tokens = 0
    for item in ranked:
        if len(selected) >= max_chunks:
            break
        if used_tokens + item.estimated_tokens > max_context_tokens:
            continue
        doc_key = item.document.title or item.document.file_name or item.document.doc_id
        if len(selected) >= DIVERSITY_FREE_PICKS and doc_key in used_documents:
            continue
        selected.append(item)
        used_documents.add(doc_key)
        used_tokens += item.estimated_tokens

    logger.info(
        "chunks_selected",
        extra={
            "candidates": len(scored),
            "above_threshold": len(ranked),
            "selected": len(selected),
            "min_score": min_score,
            "tokens": used_tokens,
        },
    )
    return selected
