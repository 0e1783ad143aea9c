from __future__ import annotations

"""Plain text and markdown extraction."""

from pathlib import Path


def load_text_file(path: Path) -> str:
    """Read a text file from disk."""
    return path.read_text(encoding="utf-8", errors="ignore")
