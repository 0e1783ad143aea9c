from __future__ import annotations

"""Prompt context assembly from internal chunks and web snippets."""

from typing import Sequence

from cellito.rag.types import ScoredChunk, WebResult

NO_ARTICLES_MESSAGE = "Nenhum artigo relevante encontrado para esta consulta."


def build_context(
    chunks: Sequence[ScoredChunk],
    web_results: Sequence[WebResult],
    query: str,
) -> str:
    """Build the knowledge block: internal sources first, then web sources."""
    lines: list[str] = [f'PERGUNTA: "{query}"', ""]
    if chunks:
        lines.extend(["ARTIGOS INTERNOS:", ""])
        for idx, item in enumerate(chunks, start=1):
            lines.append(f"{idx}. FONTE INTERNA: {item.document.display_name}")
            if item.document.category:
                lines.append(f"   CATEGORIA: {item.document.category}")
            lines.append(f"   CONTEÚDO: {item.chunk.text.strip()}")
            lines.append("")
    if web_results:
        lines.extend(["INFORMAÇÕES WEB COMPLEMENTARES:", ""])
        for idx, result in enumerate(web_results, start=1):
            lines.append(f"{idx}. FONTE WEB: {result.title}")
            lines.append(f"   SITE: {result.source}")
            lines.append(f"   RESUMO: {result.snippet}")
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def build_search_preview(chunks: Sequence[ScoredChunk], query: str) -> str:
    """Group selected chunks by document for display without generation."""
    if not chunks:
        return NO_ARTICLES_MESSAGE
    grouped: dict[str, list[ScoredChunk]] = {}
    for item in chunks:
        grouped.setdefault(item.document.display_name, []).append(item)

    lines: list[str] = [f'CONTEXTO RELEVANTE PARA: "{query}"', ""]
    for name, items in grouped.items():
        lines.append(f"ARTIGO: {name}")
        for item in items:
            lines.append(f"[Seção {item.chunk_index + 1} - Relevância: {item.score}]")
            lines.append(item.chunk.text)
        lines.append("-" * 50)
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
