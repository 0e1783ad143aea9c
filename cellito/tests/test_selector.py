from __future__ import annotations

from cellito.rag.indexer import process_document
from cellito.rag.selector import compare_scored, rank_chunks, select_top_chunks
from cellito.rag.types import Chunk, DocumentRef, RawDocument, ScoredChunk

PLAN_SENTENCES = (
    "O plano Socializa custa 500 Kz por dia. "
    "O plano Socializa semanal custa 3000 Kz. "
    "O plano Socializa mensal custa 10000 Kz."
)
ROAMING_SENTENCE = "O serviço de roaming não inclui o plano diário."


def _plans():
    return process_document(
        RawDocument(doc_id="1", title="Planos", text=PLAN_SENTENCES),
        chunk_size=50,
        overlap=0,
    )


def _roaming():
    return process_document(RawDocument(doc_id="2", title="Roaming", text=ROAMING_SENTENCE))


def _scored(score: int, sentence_count: int = 1, well_formed: bool = True) -> ScoredChunk:
    chunk = Chunk(
        text="texto",
        size=5,
        sentence_count=sentence_count,
        starts_with_capital=well_formed,
        ends_with_punctuation=well_formed,
    )
    return ScoredChunk(
        chunk=chunk,
        score=score,
        document=DocumentRef(doc_id=str(score), title=f"doc-{score}"),
        chunk_index=0,
        doc_index=0,
        estimated_tokens=2,
    )


def test_plan_document_splits_into_one_chunk_per_sentence() -> None:
    assert _plans().total_chunks == 3


def test_third_pick_must_come_from_a_new_document() -> None:
    selected = select_top_chunks([_plans(), _roaming()], "plano socializa", max_chunks=3)
    assert [item.document.title for item in selected] == ["Planos", "Planos", "Roaming"]
    assert selected[0].score > selected[-1].score


def test_selection_respects_token_budget() -> None:
    documents = [_plans(), _roaming()]
    selected = select_top_chunks(documents, "plano socializa", max_context_tokens=25)
    assert len(selected) == 2
    assert sum(item.estimated_tokens for item in selected) <= 25

    tight = select_top_chunks(documents, "plano socializa", max_context_tokens=15)
    assert len(tight) == 1


def test_min_score_threshold_filters_weak_chunks() -> None:
    documents = [_roaming()]
    assert len(select_top_chunks(documents, "plano socializa", min_score=30)) == 1
    assert select_top_chunks(documents, "plano socializa", min_score=50) == []


def test_empty_inputs_select_nothing() -> None:
    assert select_top_chunks([], "plano") == []
    assert select_top_chunks([_plans()], "   ") == []


def test_scores_within_tie_band_prefer_three_sentences() -> None:
    higher = _scored(103, sentence_count=6)
    preferred = _scored(100, sentence_count=3)
    assert compare_scored(preferred, higher) < 0
    assert rank_chunks([higher, preferred])[0] is preferred


def test_scores_outside_tie_band_order_by_score() -> None:
    higher = _scored(110, sentence_count=6)
    lower = _scored(100, sentence_count=3)
    assert rank_chunks([lower, higher])[0] is higher


def test_tie_band_falls_back_to_chunk_quality() -> None:
    rough = _scored(100, sentence_count=3, well_formed=False)
    clean = _scored(98, sentence_count=3, well_formed=True)
    assert rank_chunks([rough, clean])[0] is clean


def test_selected_chunks_carry_the_scored_display_name() -> None:
    document = process_document(
        RawDocument(doc_id="7", title="Planos", text=ROAMING_SENTENCE, file_name="roaming.txt")
    )
    selected = select_top_chunks([document], "roaming plano")
    assert selected[0].document.display_name == document.display_name == "roaming.txt"
