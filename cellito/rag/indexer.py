from __future__ import annotations

"""Turn raw documents into chunked, keyword-annotated index entries."""

import logging
from dataclasses import dataclass
from typing import Iterable

from cellito.loaders.chunking import chunk_text
from cellito.rag.keywords import extract_keywords
from cellito.rag.types import ProcessedDocument, RawDocument

logger = logging.getLogger(__name__)

ARTICLE_CHUNK_SIZE = 800
FILE_CHUNK_SIZE = 500
DEFAULT_OVERLAP = 100
MIN_DOCUMENT_CHARS = 50


@dataclass(frozen=True)
class CorpusSummary:
    total_documents: int
    total_chunks: int


def process_document(
    document: RawDocument,
    chunk_size: int = ARTICLE_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> ProcessedDocument:
    """Chunk and extract keywords for a single document."""
    chunks = chunk_text(document.text, target_size=chunk_size, overlap=overlap)
    return ProcessedDocument(
        doc_id=document.doc_id,
        title=document.title,
        text=document.text,
        chunks=tuple(chunks),
        keywords=extract_keywords(document.text),
        original_text_length=len(document.text),
        category=document.category,
        modified_at=document.modified_at,
        source_metadata=dict(document.source_metadata),
        file_name=document.file_name,
    )


def process_for_rag(
    documents: Iterable[RawDocument],
    chunk_size: int = ARTICLE_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[ProcessedDocument]:
    """Process documents in input order, skipping short or unreadable ones."""
    processed: list[ProcessedDocument] = []
    skipped = 0
    for document in documents:
        if not document.text or len(document.text) < MIN_DOCUMENT_CHARS:
            logger.info(
                "document_skipped",
                extra={
                    "doc_id": document.doc_id,
                    "title": document.title,
                    "reason": "insufficient_content",
                },
            )
            skipped += 1
            continue
        try:
            entry = process_document(document, chunk_size=chunk_size, overlap=overlap)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "document_processing_failed",
                extra={"doc_id": document.doc_id, "detail": str(exc)},
            )
            skipped += 1
            continue
        processed.append(entry)
    summary = summarize_corpus(processed)
    logger.info(
        "corpus_processed",
        extra={
            "documents": summary.total_documents,
            "chunks": summary.total_chunks,
            "skipped": skipped,
            "chunk_size": chunk_size,
        },
    )
    return processed


def summarize_corpus(documents: Iterable[ProcessedDocument]) -> CorpusSummary:
    total_documents = 0
    total_chunks = 0
    for document in documents:
        total_documents += 1
        total_chunks += document.total_chunks
    return CorpusSummary(total_documents=total_documents, total_chunks=total_chunks)
