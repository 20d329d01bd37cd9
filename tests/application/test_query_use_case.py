"""Tests for QueryKnowledgeBase use case."""

import asyncio
from collections.abc import Sequence

import pytest

from ragdesk.application.budget import Deadline
from ragdesk.application.dto.query_dto import DEFAULT_REFUSAL_MESSAGE, QueryRequest, RAGOptions
from ragdesk.application.ports.llm_port import GenerationRequest, LLMResponse, LLMUsage
from ragdesk.application.ports.vector_store_port import VectorFilter, VectorPoint
from ragdesk.application.use_cases.query_knowledge_base import QueryKnowledgeBase, RAGContext
from ragdesk.domain.errors import DomainError, LLMError, VectorStoreError
from ragdesk.domain.models import BotKnowledgeBase, ChunkMeta, ScoredChunk, SearchHit
from ragdesk.domain.services.reranking import CROSS_SYSTEM_PROMPT
from ragdesk.domain.types import Result


class FakeBindings:
    def __init__(self, kbs: list[BotKnowledgeBase] | None = None) -> None:
        self.kbs = kbs or []

    async def resolve_bot_knowledge_bases(self, tenant_id: str, bot_id: str) -> list[BotKnowledgeBase]:
        return list(self.kbs)


class FakeEmbedding:
    """Returns one fixed vector per text, or a wrong count when asked to."""

    model = "fake-embedding-v1"
    dim = 2

    def __init__(self, count_override: int | None = None, delay_s: float = 0.0) -> None:
        self.count_override = count_override
        self.delay_s = delay_s
        self.calls: list[list[str]] = []

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        n = len(texts) if self.count_override is None else self.count_override
        return [[1.0, 0.0] for _ in range(n)]


class FakeVectorStore:
    """Hits per KB id; a DomainError value makes that KB's search fail."""

    def __init__(self, hits_by_kb: dict[str, list[SearchHit] | DomainError], chunks: dict[str, ChunkMeta]) -> None:
        self.hits_by_kb = hits_by_kb
        self.chunks = chunks
        self.filters: list[VectorFilter] = []
        self.thresholds: list[float] = []

    async def ensure_collection(self, name: str, dim: int) -> Result[None, DomainError]:
        return Result.success(None)

    async def upsert(self, collection: str, points: Sequence[VectorPoint]) -> Result[None, DomainError]:
        return Result.success(None)

    async def search(
        self,
        collection: str,
        vector: Sequence[float],
        top_k: int,
        flt: VectorFilter,
        score_threshold: float = 0.0,
    ) -> Result[list[SearchHit], DomainError]:
        self.filters.append(flt)
        self.thresholds.append(score_threshold)
        hits = self.hits_by_kb.get(flt.value_of("kb_id"), [])
        if isinstance(hits, DomainError):
            return Result.failure(hits)
        return Result.success(list(hits)[:top_k])

    async def load_chunks(self, collection: str, chunk_ids: Sequence[str]) -> Result[dict[str, ChunkMeta], DomainError]:
        return Result.success({cid: self.chunks[cid] for cid in chunk_ids if cid in self.chunks})


class FakeLLM:
    def __init__(
        self, replies: list[str] | None = None, model: str = "fake-llm-v1", offline: bool = True
    ) -> None:
        self.replies = replies or ["Refunds are accepted within 30 days [1]."]
        self.model = model
        self.offline = offline
        self.requests: list[GenerationRequest] = []

    async def generate(self, req: GenerationRequest) -> LLMResponse:
        self.requests.append(req)
        text = self.replies[min(len(self.requests), len(self.replies)) - 1]
        return LLMResponse(text=text, usage=LLMUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15))


def hit(chunk_id: str, score: float, kb: str, doc: str = "doc-1") -> SearchHit:
    return SearchHit(chunk_id=chunk_id, score=score, document_id=doc, document_version_id=f"{doc}-v1", kb_id=kb)


def meta(chunk_id: str, content: str, doc: str = "doc-1") -> ChunkMeta:
    return ChunkMeta(chunk_id=chunk_id, document_id=doc, document_version_id=f"{doc}-v1", content=content)


def refund_fixture() -> tuple[FakeBindings, FakeVectorStore]:
    bindings = FakeBindings([BotKnowledgeBase("kb1"), BotKnowledgeBase("kb2")])
    store = FakeVectorStore(
        {
            "kb1": [hit("c1", 0.9, "kb1"), hit("c2", 0.85, "kb1")],
            "kb2": [hit("c3", 0.4, "kb2", doc="doc-2")],
        },
        {
            "c1": meta("c1", "Refunds are accepted within 30 days of purchase."),
            "c2": meta("c2", "Refund requests need the order number."),
            "c3": meta("c3", "Shipping takes five business days.", doc="doc-2"),
        },
    )
    return bindings, store


def make_uc(
    bindings: FakeBindings,
    store: FakeVectorStore,
    llm: FakeLLM | None = None,
    embedding: FakeEmbedding | None = None,
    **options: object,
) -> QueryKnowledgeBase:
    return QueryKnowledgeBase(
        bindings=bindings,
        embedding=embedding or FakeEmbedding(),
        vector_store=store,
        llm=llm or FakeLLM(),
        options=RAGOptions(**options),  # type: ignore[arg-type]
    )


def req(message: str = "what is the refund policy", **kwargs: object) -> QueryRequest:
    return QueryRequest(tenant_id="t1", bot_id="bot-1", message=message, **kwargs)  # type: ignore[arg-type]


class TestAnswering:
    @pytest.mark.asyncio
    async def test_score_only_ranking_across_two_kbs(self) -> None:
        """With rerank weight 0 the order is plain vector score, descending."""
        bindings, store = refund_fixture()
        llm = FakeLLM()
        uc = make_uc(bindings, store, llm=llm, rerank_weight=0.0)

        res = await uc.execute(req())

        assert res.ok and res.value is not None
        answer = res.value
        assert not answer.refused
        assert [r.score for r in answer.references] == [0.9, 0.85, 0.4]
        assert [r.chunk_id for r in answer.references] == ["c1", "c2", "c3"]
        assert [r.rank for r in answer.references] == [1, 2, 3]
        expected_conf = 0.8 * ((0.9 + 0.85 + 0.4) / 3) + 0.2 * (3 / 5)
        assert answer.confidence == pytest.approx(expected_conf)
        assert answer.reply == "Refunds are accepted within 30 days [1]."
        assert answer.model == "fake-llm-v1"
        assert answer.usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_searches_are_tenant_and_kb_scoped(self) -> None:
        bindings, store = refund_fixture()
        uc = make_uc(bindings, store)
        await uc.execute(req())
        assert sorted(f.value_of("kb_id") for f in store.filters) == ["kb1", "kb2"]
        assert all(f.value_of("tenant_id") == "t1" for f in store.filters)
        assert all(t == pytest.approx(0.04) for t in store.thresholds)

    @pytest.mark.asyncio
    async def test_prompt_uses_raw_message_and_context(self) -> None:
        bindings, store = refund_fixture()
        llm = FakeLLM()
        uc = make_uc(bindings, store, llm=llm)
        await uc.execute(req("  What is the Refund Policy?  "))

        prompt = llm.requests[-1].prompt
        assert prompt.endswith("Question: What is the Refund Policy?\nAnswer:")
        assert "chunk=c1" in prompt
        assert llm.requests[-1].system == RAGOptions().system_prompt

    @pytest.mark.asyncio
    async def test_kb_weight_scales_scores(self) -> None:
        bindings, store = refund_fixture()
        bindings.kbs = [BotKnowledgeBase("kb1", weight=0.1), BotKnowledgeBase("kb2", weight=2.0)]
        uc = make_uc(bindings, store, rerank_weight=0.0)
        res = await uc.execute(req())
        assert res.value is not None
        assert [r.chunk_id for r in res.value.references] == ["c3", "c1", "c2"]
        assert res.value.references[0].score == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_lexical_rerank_promotes_matching_chunk(self) -> None:
        bindings = FakeBindings([BotKnowledgeBase("kb1")])
        store = FakeVectorStore(
            {"kb1": [hit("a", 0.6, "kb1"), hit("b", 0.55, "kb1")]},
            {"a": meta("a", "unrelated shipping text"), "b": meta("b", "the refund policy is simple")},
        )
        uc = make_uc(bindings, store, rerank_weight=0.5)
        res = await uc.execute(req())
        assert res.value is not None
        assert [r.chunk_id for r in res.value.references] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_partial_branch_failure_still_answers(self) -> None:
        bindings, store = refund_fixture()
        store.hits_by_kb["kb2"] = VectorStoreError("kb2 down")
        uc = make_uc(bindings, store)
        res = await uc.execute(req())
        assert res.ok and res.value is not None
        assert {r.chunk_id for r in res.value.references} == {"c1", "c2"}


class TestRefusal:
    @pytest.mark.asyncio
    async def test_low_confidence_refuses_without_references(self) -> None:
        bindings, store = refund_fixture()
        llm = FakeLLM()
        uc = make_uc(bindings, store, llm=llm)

        res = await uc.execute(req(threshold=0.99))

        assert res.ok and res.value is not None
        assert res.value.refused
        assert res.value.reply == DEFAULT_REFUSAL_MESSAGE
        assert res.value.references == []
        assert 0 < res.value.confidence < 0.99
        assert llm.requests == []

    @pytest.mark.asyncio
    async def test_bot_without_knowledge_bases_refuses(self) -> None:
        embedding = FakeEmbedding()
        uc = make_uc(FakeBindings([]), FakeVectorStore({}, {}), embedding=embedding)
        res = await uc.execute(req())
        assert res.ok and res.value is not None
        assert res.value.refused
        assert res.value.confidence == 0.0
        assert embedding.calls == []

    @pytest.mark.asyncio
    async def test_no_hits_refuses(self) -> None:
        uc = make_uc(FakeBindings([BotKnowledgeBase("kb1")]), FakeVectorStore({"kb1": []}, {}))
        res = await uc.execute(req())
        assert res.value is not None and res.value.refused

    @pytest.mark.asyncio
    async def test_empty_llm_reply_becomes_refusal(self) -> None:
        bindings, store = refund_fixture()
        uc = make_uc(bindings, store, llm=FakeLLM(replies=["   "]))
        res = await uc.execute(req())
        assert res.value is not None
        assert res.value.refused
        assert res.value.reply == DEFAULT_REFUSAL_MESSAGE
        assert res.value.references == []


class TestFailures:
    @pytest.mark.parametrize(
        "tenant,bot,message,code",
        [
            ("", "b", "m", "TENANT_MISSING"),
            ("t", " ", "m", "BOT_ID_MISSING"),
            ("t", "b", "   ", "MESSAGE_MISSING"),
        ],
    )
    @pytest.mark.asyncio
    async def test_validation_codes(self, tenant: str, bot: str, message: str, code: str) -> None:
        bindings, store = refund_fixture()
        uc = make_uc(bindings, store)
        res = await uc.execute(QueryRequest(tenant_id=tenant, bot_id=bot, message=message))
        assert not res.ok
        assert res.error is not None and res.error.code == code

    @pytest.mark.asyncio
    async def test_all_branches_failing_surfaces_first_error(self) -> None:
        bindings = FakeBindings([BotKnowledgeBase("kb1"), BotKnowledgeBase("kb2")])
        err = VectorStoreError("qdrant unreachable", code="VECTORDB_REQUEST_FAILED")
        store = FakeVectorStore({"kb1": err, "kb2": err}, {})
        uc = make_uc(bindings, store)
        res = await uc.execute(req())
        assert not res.ok
        assert res.error is err

    @pytest.mark.asyncio
    async def test_embedding_count_mismatch_fails(self) -> None:
        bindings, store = refund_fixture()
        uc = make_uc(bindings, store, embedding=FakeEmbedding(count_override=3))
        res = await uc.execute(req())
        assert res.error is not None and res.error.code == "EMBEDDING_COUNT_MISMATCH"
        assert store.filters == []

    @pytest.mark.asyncio
    async def test_slow_embedding_times_out(self) -> None:
        bindings, store = refund_fixture()
        uc = make_uc(bindings, store, embedding=FakeEmbedding(delay_s=1.0), embedding_timeout_ms=20)
        res = await uc.execute(req())
        assert res.error is not None and res.error.code == "RAG_TIMEOUT"


class TestInitStage:
    def test_variants_are_deduped_with_first_weight(self) -> None:
        bindings, store = refund_fixture()
        uc = make_uc(bindings, store)
        rc = uc._init(
            req("Refund Policy!", expansions=("refund policy", "returns"), expansion_weights=(1.0, 0.5, 0.7))
        )
        assert rc.normalized == "refund policy"
        assert rc.queries == ["refund policy", "returns"]
        assert rc.query_weights == [1.0, 0.7]
        assert rc.top_k == 5
        assert rc.threshold == pytest.approx(0.2)


class TestCrossEncoder:
    def _context(self) -> RAGContext:
        ranked = [
            ScoredChunk(hit=SearchHit("c1", 0.3), vector_score=0.3, score=0.3),
            ScoredChunk(hit=SearchHit("c2", 0.2), vector_score=0.2, score=0.2),
            ScoredChunk(hit=SearchHit("c3", 0.1), vector_score=0.1, score=0.1),
        ]
        return RAGContext(
            tenant_id="t1",
            bot_id="bot-1",
            message="refund policy?",
            top_k=5,
            threshold=0.9,
            normalized="refund policy",
            queries=["refund policy"],
            query_weights=[1.0],
            ranked=ranked,
            chunks={c.chunk_id: meta(c.chunk_id, f"text {c.chunk_id}") for c in ranked},
        )

    @pytest.mark.asyncio
    async def test_low_confidence_asks_llm_to_reorder(self) -> None:
        llm = FakeLLM(replies=['["c3", "c1"]'], model="fake-ranker", offline=False)
        bindings, store = refund_fixture()
        uc = make_uc(bindings, store, llm=llm)
        rc = self._context()

        await uc._assess(rc, Deadline())

        assert [c.chunk_id for c in rc.ranked] == ["c3", "c1", "c2"]
        assert llm.requests[0].system == CROSS_SYSTEM_PROMPT
        assert llm.requests[0].temperature == 0.0
        assert "Question: refund policy?" in llm.requests[0].prompt
        assert rc.should_refuse

    @pytest.mark.asyncio
    async def test_offline_adapter_skips_cross_encoder(self) -> None:
        llm = FakeLLM(replies=['["c3"]'], model="gpt-4o-mini", offline=True)
        bindings, store = refund_fixture()
        uc = make_uc(bindings, store, llm=llm)
        rc = self._context()

        await uc._assess(rc, Deadline())

        assert llm.requests == []
        assert [c.chunk_id for c in rc.ranked] == ["c1", "c2", "c3"]

    @pytest.mark.asyncio
    async def test_cross_encoder_failure_is_ignored(self) -> None:
        class BrokenLLM(FakeLLM):
            async def generate(self, req: GenerationRequest) -> LLMResponse:
                raise LLMError("rerank backend down")

        bindings, store = refund_fixture()
        uc = make_uc(bindings, store, llm=BrokenLLM(model="gpt-4o-mini", offline=False))
        rc = self._context()

        await uc._assess(rc, Deadline())

        assert rc.should_refuse
        assert rc.reply == DEFAULT_REFUSAL_MESSAGE
