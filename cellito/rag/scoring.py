from __future__ import annotations

"""Lexical relevance scoring of chunks against a query."""

import math
import re

from cellito.rag.types import Chunk

EXACT_PHRASE_BONUS = 200
EXACT_WORD_WEIGHT = 25
PARTIAL_WORD_WEIGHT = 5
MATCH_RATIO_THRESHOLD = 0.5
PROXIMITY_BONUS = 30
PROXIMITY_WINDOW = 20
TITLE_WORD_BONUS = 15
WELL_FORMED_BONUS = 10
SENTENCE_RANGE_BONUS = 8
SHORT_CHUNK_CHARS = 100
SHORT_CHUNK_FACTOR = 0.7
LONG_CHUNK_CHARS = 1000
LONG_CHUNK_FACTOR = 0.9
DENSITY_THRESHOLD = 0.1
DENSITY_BONUS = 20


def query_words(query: str) -> list[str]:
    """Lowercased query words longer than two characters, in order."""
    return [word for word in query.lower().split() if len(word) > 2]


def _proximity_pattern(first: str, second: str) -> re.Pattern[str]:
    a = re.escape(first)
    b = re.escape(second)
    window = f".{{0,{PROXIMITY_WINDOW}}}"
    return re.compile(f"{a}{window}{b}|{b}{window}{a}", re.IGNORECASE)


def score_chunk(query: str, chunk: Chunk, display_name: str = "") -> int:
    """Score a chunk for a query by combining lexical signals.

    The signals apply in a fixed order: exact phrase, word matches (doubled
    when most query words match exactly), proximity of adjacent query words,
    document name matches, chunk quality, a length factor applied to the
    running total, and finally a density bonus.
    """
    query_lower = query.lower().strip()
    text_lower = chunk.text.lower()
    words = query_words(query)
    chunk_words = text_lower.split()

    score = 0.0
    if query_lower and query_lower in text_lower:
        score += EXACT_PHRASE_BONUS

    word_match_score = 0
    exact_word_matches = 0
    for word in words:
        exact = sum(1 for candidate in chunk_words if candidate == word)
        if exact:
            exact_word_matches += 1
            word_match_score += exact * EXACT_WORD_WEIGHT
        if len(word) > 3:
            partial = sum(
                1
                for candidate in chunk_words
                if len(candidate) > 3 and (word in candidate or candidate in word)
            )
            word_match_score += partial * PARTIAL_WORD_WEIGHT

    match_ratio = exact_word_matches / len(words) if words else 0.0
    if match_ratio > MATCH_RATIO_THRESHOLD:
        score += word_match_score * 2
    else:
        score += word_match_score

    for first, second in zip(words, words[1:]):
        if _proximity_pattern(first, second).search(chunk.text):
            score += PROXIMITY_BONUS

    name_lower = display_name.lower()
    if name_lower:
        for word in words:
            if word in name_lower:
                score += TITLE_WORD_BONUS

    if chunk.starts_with_capital and chunk.ends_with_punctuation:
        score += WELL_FORMED_BONUS
    if 2 <= chunk.sentence_count <= 5:
        score += SENTENCE_RANGE_BONUS

    if len(chunk.text) < SHORT_CHUNK_CHARS:
        score *= SHORT_CHUNK_FACTOR
    elif len(chunk.text) > LONG_CHUNK_CHARS:
        score *= LONG_CHUNK_FACTOR

    if chunk_words and exact_word_matches / len(chunk_words) > DENSITY_THRESHOLD:
        score += DENSITY_BONUS

    return max(0, int(math.floor(score + 0.5)))
