from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Sequence

from cellito.rag.types import RAGAnswer, ScoredChunk

logger = logging.getLogger(__name__)

NO_EVIDENCE_MESSAGE = (
    "Não encontrei informações relevantes para responder à sua pergunta. "
    "Pode reformular ou ser mais específico?"
)

LOW_CONFIDENCE_THRESHOLD = 40
MIN_CONFIDENCE = 20
MAX_CONFIDENCE = 95
CONFIDENCE_FACTOR = 0.8

_RECENCY_RE = re.compile(
    r"\b(atual|recente|hoje|agora|último|nova|novo|20[23]\d)\b", re.IGNORECASE
)
_CURRENT_INFO_RE = re.compile(r"\b(qual.*(atual|recente)|como.*(hoje|agora))\b", re.IGNORECASE)


@dataclass(frozen=True)
class WebDecision:
    search: bool
    no_internal_results: bool
    low_confidence: bool
    needs_current_info: bool
    asking_for_current_info: bool


def internal_confidence(chunks: Sequence[ScoredChunk]) -> tuple[float, int]:
    """Return the average chunk score and the derived confidence."""
    if not chunks:
        return 0.0, 0
    avg_score = sum(item.score for item in chunks) / len(chunks)
    confidence = math.floor(avg_score * CONFIDENCE_FACTOR + 0.5)
    return avg_score, min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, confidence))


def decide_web_search(
    chunks: Sequence[ScoredChunk],
    query: str,
    confidence: int,
    low_confidence_threshold: int = LOW_CONFIDENCE_THRESHOLD,
) -> WebDecision:
    """Decide whether internal evidence needs web search support."""
    no_internal_results = not chunks
    low_confidence = confidence < low_confidence_threshold
    needs_current_info = bool(_RECENCY_RE.search(query))
    asking_for_current_info = bool(_CURRENT_INFO_RE.search(query))
    decision = WebDecision(
        search=(
            no_internal_results
            or low_confidence
            or needs_current_info
            or asking_for_current_info
        ),
        no_internal_results=no_internal_results,
        low_confidence=low_confidence,
        needs_current_info=needs_current_info,
        asking_for_current_info=asking_for_current_info,
    )
    logger.info("web_search_decision", extra={"decision": decision.__dict__})
    return decision


def no_evidence_answer(**query_info: object) -> RAGAnswer:
    """Fixed zero-evidence response; generation is never attempted for it."""
    return RAGAnswer(
        content=NO_EVIDENCE_MESSAGE,
        has_relevant_docs=False,
        has_web_results=False,
        confidence=0,
        query_info=dict(query_info),
        strategy="no-evidence",
    )
