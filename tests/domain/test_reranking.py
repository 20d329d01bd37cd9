"""Tests for the cross-encoder rerank helpers."""

import pytest

from ragdesk.domain.models import ChunkMeta, ScoredChunk, SearchHit
from ragdesk.domain.services.reranking import (
    CROSS_TIMEOUT_MAX_MS,
    CROSS_TIMEOUT_MIN_MS,
    apply_rerank_order,
    build_cross_encoder_prompt,
    cross_encoder_timeout_ms,
    parse_rerank_order,
    truncate_text,
)


def make_scored(chunk_id: str, score: float) -> ScoredChunk:
    return ScoredChunk(hit=SearchHit(chunk_id=chunk_id, score=score), vector_score=score, score=score)


class TestParseRerankOrder:
    @pytest.mark.parametrize(
        "reply,expected",
        [
            ('["c2", "c1"]', ["c2", "c1"]),
            ('Sure! Here it is: ["c3", " c1 "] hope that helps', ["c3", "c1"]),
            ("c2, c1\nc3", ["c2", "c1", "c3"]),
            ("", []),
            ("   ", []),
            ('["c1", 7, null]', ["c1", "7"]),
        ],
    )
    def test_parse(self, reply: str, expected: list[str]) -> None:
        assert parse_rerank_order(reply) == expected

    def test_json_object_falls_back_to_split(self) -> None:
        assert parse_rerank_order('{"a": 1}') == ['{"a":', "1}"]


class TestApplyRerankOrder:
    def test_recognized_ids_first_then_rest(self) -> None:
        ranked = [make_scored("a", 0.9), make_scored("b", 0.8), make_scored("c", 0.7)]
        out = apply_rerank_order(["c", "unknown", "a", "c"], ranked)
        assert [r.chunk_id for r in out] == ["c", "a", "b"]

    def test_empty_order_keeps_ranking(self) -> None:
        ranked = [make_scored("a", 0.9), make_scored("b", 0.8)]
        assert apply_rerank_order([], ranked) == ranked


class TestCrossEncoderPrompt:
    def test_prompt_lists_passages_with_ids(self) -> None:
        ranked = [make_scored("c1", 0.9), make_scored("c2", 0.8)]
        chunks = {
            "c1": ChunkMeta(chunk_id="c1", content="Refunds within 30 days.", section="Refunds"),
            "c2": ChunkMeta(chunk_id="c2", content="x" * 1000),
        }
        prompt = build_cross_encoder_prompt("  refund policy? ", ranked, chunks)
        assert "Question: refund policy?" in prompt
        assert "[1] chunk_id=c1 section=Refunds\nRefunds within 30 days." in prompt
        assert "[2] chunk_id=c2\n" + "x" * 400 + "..." in prompt


class TestHelpers:
    def test_timeout_clamped(self) -> None:
        assert cross_encoder_timeout_ms(1000, None) == CROSS_TIMEOUT_MIN_MS
        assert cross_encoder_timeout_ms(100000, None) == CROSS_TIMEOUT_MAX_MS
        assert cross_encoder_timeout_ms(10000, None) == 2000

    def test_timeout_capped_by_remaining(self) -> None:
        assert cross_encoder_timeout_ms(10000, 500.0) == 500
        assert cross_encoder_timeout_ms(10000, 0.0) == 0

    def test_truncate_text(self) -> None:
        assert truncate_text("  abc  ", 10) == "abc"
        assert truncate_text("abcdef", 3) == "abc..."
        assert truncate_text("abcdef", 0) == "abcdef"
