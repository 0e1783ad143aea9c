from __future__ import annotations

"""Text normalization, HTML cleanup and sentence-aligned chunking."""

import json
import math
import re
from typing import Any

from cellito.rag.types import Chunk

_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_ENDS_WITH_PUNCTUATION_RE = re.compile(r"[.!?]$")
_SCRIPT_RE = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")
_TAG_RE = re.compile(r"<[^>]*>")
_ENTITIES = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&hellip;", "..."),
)
_TEXT_FIELDS = ("text", "content", "value", "innerHTML", "innerText")

MIN_SENTENCE_CHARS = 15
MIN_TRAILING_CHUNK_CHARS = 20


def normalize_text(text: str) -> str:
    """Normalize whitespace and line endings in text."""
    return _WHITESPACE_RE.sub(" ", text.replace("\r\n", "\n")).strip()


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 chars per token)."""
    return math.ceil(len(text) / 4)


def strip_html(content: str) -> str:
    """Remove markup from HTML content and collapse whitespace."""
    if not content or not isinstance(content, str):
        return ""
    cleaned = _SCRIPT_RE.sub("", content)
    cleaned = _STYLE_RE.sub("", cleaned)
    cleaned = _COMMENT_RE.sub("", cleaned)
    for entity, replacement in _ENTITIES:
        cleaned = cleaned.replace(entity, replacement)
    cleaned = _TAG_RE.sub(" ", cleaned)
    return normalize_text(cleaned)


def extract_article_text(content: str) -> str:
    """Extract readable text from an article body.

    Article bodies are stored either as HTML or as a JSON document produced by
    the page editor. JSON bodies contribute their heading followed by the text
    found under ``content``, ``body`` or ``text``; anything that does not parse
    as a JSON object is treated as HTML.
    """
    if not content or not isinstance(content, str):
        return ""
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, ValueError):
        return strip_html(content)
    if not isinstance(parsed, dict):
        return strip_html(str(parsed))

    parts: list[str] = []
    heading = parsed.get("title") or parsed.get("header") or parsed.get("heading")
    if isinstance(heading, str) and heading.strip():
        parts.append(strip_html(heading))
    for key in ("content", "body", "text"):
        if parsed.get(key):
            parts.append(strip_html(_collect_text(parsed[key])))
            break
    return "\n\n".join(part for part in parts if part).strip()


def _collect_text(node: Any) -> str:
    """Walk nested editor content and join every text-bearing field."""
    if not node:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "\n".join(_collect_text(item) for item in node)
    if isinstance(node, dict):
        pieces = [_collect_text(node[name]) for name in _TEXT_FIELDS if node.get(name)]
        if not any(piece.strip() for piece in pieces):
            pieces = [
                _collect_text(value)
                for value in node.values()
                if isinstance(value, (str, list, dict))
            ]
        return "\n".join(piece for piece in pieces if piece.strip())
    return ""


def split_sentences(text: str) -> list[str]:
    """Split text on sentence punctuation, dropping fragments of 15 chars or less."""
    sentences: list[str] = []
    for piece in _SENTENCE_SPLIT_RE.split(text):
        sentence = piece.strip()
        if len(sentence) > MIN_SENTENCE_CHARS:
            sentences.append(sentence)
    return sentences


def _make_chunk(sentences: list[str]) -> Chunk:
    text = " ".join(sentences).strip()
    return Chunk(
        text=text,
        size=len(text),
        sentence_count=len(sentences),
        starts_with_capital=text[:1].isupper(),
        ends_with_punctuation=bool(_ENDS_WITH_PUNCTUATION_RE.search(text)),
    )


def chunk_text(text: str, target_size: int = 800, overlap: int = 100) -> list[Chunk]:
    """Split text into sentence-aligned chunks of roughly ``target_size`` chars.

    Overlap is sentence-granular: when ``overlap`` is positive, each new chunk
    starts with the last sentence of the chunk before it, unless carrying that
    sentence would push the new chunk past ``target_size``.
    """
    if not text or not text.strip():
        return []
    sentences = split_sentences(text)
    if not sentences:
        return []

    chunks: list[Chunk] = []
    current: list[str] = []
    current_len = 0
    for sentence in sentences:
        projected = current_len + (1 if current else 0) + len(sentence)
        if projected > target_size and current:
            chunks.append(_make_chunk(current))
            carried = current[-1]
            if overlap > 0 and len(carried) + 1 + len(sentence) <= target_size:
                current = [carried, sentence]
                current_len = len(carried) + 1 + len(sentence)
            else:
                current = [sentence]
                current_len = len(sentence)
        else:
            current.append(sentence)
            current_len = projected

    if current:
        tail = _make_chunk(current)
        if len(tail.text) > MIN_TRAILING_CHUNK_CHARS:
            chunks.append(tail)
    return chunks
