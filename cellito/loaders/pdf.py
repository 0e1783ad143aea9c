from __future__ import annotations

"""PDF text extraction and cleanup."""

import re
from pathlib import Path


class PDFLoaderError(RuntimeError):
    """Raised when PDF loading fails."""
    pass


_WHITESPACE_RE = re.compile(r"\s+")
_HYPHEN_BREAK_RE = re.compile(r"(\w)-\n(\w)")


def clean_pdf_text(text: str) -> str:
    """Join hyphenated line breaks and collapse whitespace."""
    if not text:
        return ""
    cleaned = text.replace("\r\n", "\n")
    cleaned = _HYPHEN_BREAK_RE.sub(r"\1\2", cleaned)
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def _extract(reader) -> str:
    parts = [page.get_text() or "" for page in reader]
    return clean_pdf_text("\n".join(parts))


def load_pdf_file(path: Path) -> str:
    """Extract the text of a PDF on disk."""
    try:
        import fitz
    except ImportError as exc:
        raise PDFLoaderError("PyMuPDF is required to load PDF files") from exc

    try:
        with fitz.open(str(path)) as reader:
            return _extract(reader)
    except (RuntimeError, ValueError) as exc:
        raise PDFLoaderError(f"Failed to read PDF {path.name}: {exc}") from exc
