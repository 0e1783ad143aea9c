from __future__ import annotations

"""Frequency-ranked keyword and phrase extraction for indexed documents."""

import re
from collections import Counter

PORTUGUESE_STOP_WORDS = frozenset(
    {
        "o", "a", "os", "as", "um", "uma", "uns", "umas", "e", "ou", "mas", "se",
        "que", "de", "da", "do", "das", "dos", "em", "no", "na", "nos", "nas",
        "por", "para", "com", "sem", "sob", "sobre", "entre", "até", "desde",
        "durante", "ser", "ter", "estar", "fazer", "dizer", "haver", "ir", "ver",
        "dar", "saber", "vir", "ficar", "poder", "dever", "isso", "isto",
        "aquilo", "ele", "ela", "eles", "elas", "você", "vocês", "nós", "seu",
        "sua", "seus", "suas", "meu", "minha", "meus", "minhas", "nosso",
        "nossa", "nossos", "nossas", "este", "esta", "estes", "estas", "esse",
        "essa", "esses", "essas", "aquele", "aquela", "aqueles", "aquelas",
        "muito", "mais", "menos", "bem", "mal", "onde", "quando", "como",
        "porque", "então", "assim", "também", "ainda", "já", "sempre", "nunca",
    }
)

ENGLISH_STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "if", "that", "of", "in", "on", "at", "by",
        "for", "with", "without", "to", "from", "is", "are", "was", "were", "be",
        "been", "being", "have", "has", "had", "do", "does", "did", "will",
        "would", "could", "should", "may", "might", "can", "must", "shall",
        "this", "these", "those", "i", "you", "he", "she", "it", "we", "they",
        "me", "him", "her", "us", "them", "my", "your", "his", "its", "our",
        "their", "a", "an", "some", "any", "all", "each", "every", "no", "not",
        "only", "just", "very", "too", "so", "now", "then", "here", "there",
        "where", "when", "why", "how", "what", "who", "which", "whose", "whom",
    }
)

STOP_WORDS = PORTUGUESE_STOP_WORDS | ENGLISH_STOP_WORDS

MAX_KEYWORDS = 30
PHRASE_WEIGHT = 2

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation and drop stop words, short and numeric tokens."""
    processed = _PUNCTUATION_RE.sub(" ", text.lower())
    processed = _WHITESPACE_RE.sub(" ", processed).strip()
    if not processed:
        return []
    return [
        word
        for word in processed.split(" ")
        if len(word) > 2 and word not in STOP_WORDS and not word.isdigit()
    ]


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> dict[str, int]:
    """Return the top words and 2-3 word phrases of a text with their scores.

    Words count once per occurrence and phrases twice, and only terms seen more
    than once are kept.
    """
    if not text:
        return {}
    words = tokenize(text)

    word_freq = Counter(words)
    phrases: list[str] = []
    for idx in range(len(words) - 1):
        phrases.append(f"{words[idx]} {words[idx + 1]}")
        if idx < len(words) - 2:
            phrases.append(f"{words[idx]} {words[idx + 1]} {words[idx + 2]}")
    phrase_freq = Counter(phrases)

    scores: dict[str, int] = {}
    for word, freq in word_freq.items():
        if freq > 1:
            scores[word] = freq
    for phrase, freq in phrase_freq.items():
        if freq > 1:
            scores[phrase] = freq * PHRASE_WEIGHT

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return dict(ranked[:limit])
