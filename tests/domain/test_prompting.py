"""Tests for query normalization, context selection and prompt assembly."""

from ragdesk.domain.models import ChunkMeta, ScoredChunk, SearchHit
from ragdesk.domain.services.prompting import (
    MAX_BLOCKS_PER_DOC,
    MAX_CONTEXT_BLOCKS,
    NO_CONTEXT,
    PROMPT_HEADER,
    align_query_weights,
    build_prompt,
    build_references,
    dedupe_queries,
    normalize_query,
    select_context,
)


def make_scored(chunk_id: str, score: float, doc: str = "", version: str = "") -> ScoredChunk:
    hit = SearchHit(chunk_id=chunk_id, score=score, document_id=doc, document_version_id=version)
    return ScoredChunk(hit=hit, vector_score=score, score=score)


class TestQueryHelpers:
    def test_normalize_query(self) -> None:
        assert normalize_query("  What's the REFUND policy?!  ") == "what s the refund policy"
        assert normalize_query("退款 政策？") == "退款 政策"
        assert normalize_query("   ") == ""

    def test_dedupe_queries_case_insensitive(self) -> None:
        assert dedupe_queries(["Refund", " refund ", "", "Returns"]) == ["Refund", "Returns"]

    def test_dedupe_queries_all_empty_keeps_first(self) -> None:
        assert dedupe_queries(["", " "]) == [""]

    def test_align_query_weights_defaults_to_one(self) -> None:
        assert align_query_weights(["a", "b", "c"], [0.5, 0.0]) == [0.5, 1.0, 1.0]


class TestSelectContext:
    def test_caps_blocks_per_document(self) -> None:
        ranked = [make_scored(f"c{i}", 1 - i / 100) for i in range(6)]
        chunks = {
            f"c{i}": ChunkMeta(chunk_id=f"c{i}", document_id="d1", content=f"passage {i}")
            for i in range(6)
        }
        selected = select_context(ranked, chunks)
        assert [m.chunk_id for m in selected] == ["c0", "c1", "c2"]
        assert len(selected) == MAX_BLOCKS_PER_DOC

    def test_caps_total_blocks(self) -> None:
        ranked = [make_scored(f"c{i}", 1.0) for i in range(20)]
        chunks = {
            f"c{i}": ChunkMeta(chunk_id=f"c{i}", document_id=f"d{i}", content=f"text {i}")
            for i in range(20)
        }
        assert len(select_context(ranked, chunks)) == MAX_CONTEXT_BLOCKS

    def test_skips_duplicate_and_blank_content(self) -> None:
        ranked = [make_scored("a", 0.9), make_scored("b", 0.8), make_scored("c", 0.7), make_scored("d", 0.6)]
        chunks = {
            "a": ChunkMeta(chunk_id="a", content="Same   text"),
            "b": ChunkMeta(chunk_id="b", content="same text"),
            "c": ChunkMeta(chunk_id="c", content="   "),
            "d": ChunkMeta(chunk_id="d", content="other"),
        }
        assert [m.chunk_id for m in select_context(ranked, chunks)] == ["a", "d"]


class TestBuildPrompt:
    def test_prompt_layout(self) -> None:
        ranked = [make_scored("c1", 0.9)]
        chunks = {
            "c1": ChunkMeta(
                chunk_id="c1",
                document_id="d1",
                content="Refunds are\n accepted within 30 days.",
                section="Refunds",
                page_no=2,
            )
        }
        prompt = build_prompt(" What is the refund policy? ", ranked, chunks)
        assert prompt == (
            PROMPT_HEADER
            + "Context:\n"
            + "[1] doc=d1 chunk=c1 section=Refunds page=2\n"
            + "Refunds are accepted within 30 days.\n"
            + "\nQuestion: What is the refund policy?\nAnswer:"
        )

    def test_prompt_without_context(self) -> None:
        prompt = build_prompt("hi", [], {})
        assert NO_CONTEXT in prompt
        assert prompt.endswith("Question: hi\nAnswer:")


class TestReferences:
    def test_references_follow_rank_order(self) -> None:
        ranked = [make_scored("c2", 0.9), make_scored("c1", 0.5, doc="hit-doc", version="hit-ver")]
        chunks = {
            "c2": ChunkMeta(chunk_id="c2", document_id="d2", document_version_id="v2", content="y" * 300),
        }
        refs = build_references(ranked, chunks)
        assert [(r.rank, r.chunk_id) for r in refs] == [(1, "c2"), (2, "c1")]
        assert refs[0].snippet == "y" * 200 + "..."
        assert refs[0].document_version_id == "v2"
        assert refs[1].document_id == "hit-doc"
        assert refs[1].document_version_id == "hit-ver"
        assert refs[1].snippet == ""
