from __future__ import annotations

"""Document store over a local folder of text, PDF and Word files."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from cellito.loaders.docx import DocxLoaderError, load_docx_file
from cellito.loaders.pdf import PDFLoaderError, load_pdf_file
from cellito.loaders.text import load_text_file
from cellito.rag.cache import build_fingerprint
from cellito.rag.types import CorpusFingerprint, DocumentStoreError, RawDocument

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = "cellito_rag_cache.txt"

_EXTRACTORS: dict[str, Callable[[Path], str]] = {
    ".txt": load_text_file,
    ".md": load_text_file,
    ".pdf": load_pdf_file,
    ".docx": load_docx_file,
}


@dataclass(frozen=True)
class FolderDocumentStore:
    """Document store over the supported files below ``root``.

    Document ids are paths relative to ``root``. The cache file is never
    treated as a document.
    """
    root: Path
    recursive: bool = True
    cache_file_name: str = CACHE_FILE_NAME

    def _files(self) -> list[Path]:
        if not self.root.is_dir():
            raise DocumentStoreError(f"Document folder not found: {self.root}")
        pattern = "**/*" if self.recursive else "*"
        try:
            return sorted(
                path
                for path in self.root.glob(pattern)
                if path.is_file()
                and path.suffix.lower() in _EXTRACTORS
                and path.name != self.cache_file_name
            )
        except OSError as exc:
            raise DocumentStoreError(f"Document folder unreadable: {exc}") from exc

    def _doc_id(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    @staticmethod
    def _modified_at(path: Path) -> datetime:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

    async def get_fingerprint(self) -> CorpusFingerprint:
        return await asyncio.to_thread(self._fingerprint)

    async def list_documents(self) -> list[RawDocument]:
        """Extract every supported file off the event loop."""
        return await asyncio.to_thread(self._load_documents)

    def _fingerprint(self) -> CorpusFingerprint:
        files = self._files()
        try:
            modified = [self._modified_at(path) for path in files]
        except OSError as exc:
            raise DocumentStoreError(f"Document folder unreadable: {exc}") from exc
        return build_fingerprint(
            (self._doc_id(path) for path in files), modified, source_kind="files"
        )

    def _load_documents(self) -> list[RawDocument]:
        documents: list[RawDocument] = []
        for path in self._files():
            try:
                text = _EXTRACTORS[path.suffix.lower()](path)
                modified_at = self._modified_at(path)
            except (OSError, PDFLoaderError, DocxLoaderError) as exc:
                logger.warning(
                    "file_extraction_failed",
                    extra={"doc_id": self._doc_id(path), "error": str(exc)},
                )
                continue
            documents.append(
                RawDocument(
                    doc_id=self._doc_id(path),
                    title=path.stem,
                    text=text,
                    modified_at=modified_at,
                    source_metadata={"extension": path.suffix.lower().lstrip("."), "size": len(text)},
                    file_name=path.name,
                )
            )
        logger.info("files_loaded", extra={"documents": len(documents)})
        return documents
