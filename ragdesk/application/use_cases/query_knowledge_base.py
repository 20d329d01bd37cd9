"""Query a bot's knowledge bases and answer with citations.

Why: Fester Stufenablauf (init → resolve → embed → retrieve → load_chunks →
     rerank → assess → prompt → generate → respond) auf einem eigenen
     Kontext pro Anfrage; Confidence-Gate entscheidet über Antwort oder
     Ablehnung.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace

from ...config.logging import get_logger
from ...domain.errors import DomainError, EmbeddingError, ValidationError
from ...domain.models import BotKnowledgeBase, ChunkMeta, ScoredChunk
from ...domain.services.prompting import (
    align_query_weights,
    build_prompt,
    build_references,
    dedupe_queries,
    normalize_query,
)
from ...domain.services.ranking import (
    clamp,
    compute_confidence,
    derive_retrieve_threshold,
    fuse,
    rank_and_filter,
    text_score,
)
from ...domain.services.reranking import (
    CROSS_ENCODER_TOP_N,
    CROSS_MAX_TOKENS,
    CROSS_SYSTEM_PROMPT,
    apply_rerank_order,
    build_cross_encoder_prompt,
    cross_encoder_timeout_ms,
    parse_rerank_order,
)
from ...domain.types import Result
from ..budget import Deadline
from ..dto.query_dto import QueryRequest, RAGAnswer, RAGOptions
from ..ports.embedding_port import EmbeddingPort
from ..ports.knowledge_repo_port import BotBindingsPort
from ..ports.llm_port import GenerationRequest, LLMPort, LLMUsage
from ..ports.vector_store_port import VectorFilter, VectorStorePort

MAX_RETRIEVE_CONCURRENCY = 64

logger = get_logger(__name__)


@dataclass
class RAGContext:
    """Per-request pipeline state; created by ``execute`` and never shared."""

    tenant_id: str
    bot_id: str
    message: str
    top_k: int
    threshold: float
    normalized: str
    queries: list[str]
    query_weights: list[float]
    session_id: str = ""
    kbs: list[BotKnowledgeBase] = field(default_factory=list)
    query_vectors: list[list[float]] = field(default_factory=list)
    ranked: list[ScoredChunk] = field(default_factory=list)
    chunks: dict[str, ChunkMeta] = field(default_factory=dict)
    confidence: float = 0.0
    should_refuse: bool = False
    prompt: str = ""
    reply: str = ""
    model: str = ""
    usage: LLMUsage = field(default_factory=LLMUsage)


@contextmanager
def _log_step(step: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    except Exception as ex:
        logger.warning("rag_step", step=step, elapsed_ms=_elapsed_ms(start), error=str(ex))
        raise
    logger.info("rag_step", step=step, elapsed_ms=_elapsed_ms(start), error=None)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class QueryKnowledgeBase:
    """RAG answer pipeline over the KBs bound to a bot.

    Pipeline:
    1. init: validate, defaults, normalized query + variants
    2. resolve: bot → knowledge bases (none → refuse)
    3. embed: all query variants in one batch
    4. retrieve: bounded fan-out over (variant × KB), tolerant to partial failure
    5. load_chunks: hydrate ranked survivors
    6. rerank: lexical overlap fused with vector score
    7. assess: confidence gate, LLM cross-encoder as second opinion
    8. prompt / generate / respond
    """

    def __init__(
        self,
        bindings: BotBindingsPort,
        embedding: EmbeddingPort,
        vector_store: VectorStorePort,
        llm: LLMPort,
        options: RAGOptions | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bindings = bindings
        self.embedding = embedding
        self.vector_store = vector_store
        self.llm = llm
        self.options = options or RAGOptions()
        self._clock = clock

    async def execute(self, req: QueryRequest) -> Result[RAGAnswer, DomainError]:
        deadline = Deadline.after_ms(self.options.rag_timeout_ms, clock=self._clock)
        try:
            rc = self._init(req)
            await self._resolve(rc)
            await self._embed(rc, deadline)
            await self._retrieve(rc, deadline)
            await self._load_chunks(rc, deadline)
            self._rerank(rc)
            await self._assess(rc, deadline)
            self._prompt(rc)
            await self._generate(rc, deadline)
            return Result.success(self._respond(rc))
        except DomainError as ex:
            return Result.failure(ex)

    # ---------- stages ----------

    def _init(self, req: QueryRequest) -> RAGContext:
        tenant_id = req.tenant_id.strip()
        bot_id = req.bot_id.strip()
        message = req.message.strip()
        if not tenant_id:
            raise ValidationError("tenant_id missing", code="TENANT_MISSING")
        if not bot_id:
            raise ValidationError("bot_id missing", code="BOT_ID_MISSING")
        if not message:
            raise ValidationError("message missing", code="MESSAGE_MISSING")

        normalized = normalize_query(message) or message
        raw_queries = [normalized, *req.expansions]
        raw_weights = align_query_weights(raw_queries, req.expansion_weights)
        weight_by_key: dict[str, float] = {}
        for q, w in zip(raw_queries, raw_weights):
            weight_by_key.setdefault(q.strip().lower(), w)
        queries = dedupe_queries(raw_queries)

        return RAGContext(
            tenant_id=tenant_id,
            bot_id=bot_id,
            message=message,
            top_k=req.top_k if req.top_k > 0 else self.options.top_k,
            threshold=req.threshold if req.threshold > 0 else self.options.score_threshold,
            normalized=normalized,
            queries=queries,
            query_weights=[weight_by_key.get(q.strip().lower(), 1.0) for q in queries],
            session_id=req.session_id,
        )

    async def _resolve(self, rc: RAGContext) -> None:
        with _log_step("resolve"):
            rc.kbs = await self.bindings.resolve_bot_knowledge_bases(rc.tenant_id, rc.bot_id)
        if not rc.kbs:
            rc.should_refuse = True

    async def _embed(self, rc: RAGContext, deadline: Deadline) -> None:
        if rc.should_refuse:
            return
        with _log_step("embed"):
            vectors = await deadline.run(
                self.embedding.embed(rc.queries), self.options.embedding_timeout_ms, "embed"
            )
            if not vectors:
                raise EmbeddingError("embedding returned no vectors", code="EMBEDDING_EMPTY")
            if len(vectors) != len(rc.queries):
                raise EmbeddingError(
                    f"embedding returned {len(vectors)} vectors for {len(rc.queries)} queries",
                    code="EMBEDDING_COUNT_MISMATCH",
                )
        rc.query_vectors = vectors

    async def _retrieve(self, rc: RAGContext, deadline: Deadline) -> None:
        if rc.should_refuse:
            return
        stage = deadline.child(self.options.retrieve_timeout_ms)
        min_score = derive_retrieve_threshold(rc.threshold)
        limit = int(clamp(self.options.retrieve_concurrency, 1, MAX_RETRIEVE_CONCURRENCY))
        sem = asyncio.Semaphore(limit)
        lock = asyncio.Lock()
        scored: list[ScoredChunk] = []
        errors: list[DomainError] = []

        async def branch(vector: list[float], q_weight: float, kb: BotKnowledgeBase) -> None:
            kb_id = kb.kb_id.strip()
            async with sem:
                try:
                    res = await stage.run(
                        self.vector_store.search(
                            self.options.collection,
                            vector,
                            rc.top_k,
                            VectorFilter.scoped(rc.tenant_id, kb_id),
                            score_threshold=min_score,
                        ),
                        0,
                        "retrieve",
                    )
                    hits = res.unwrap()
                except DomainError as ex:
                    errors.append(ex)
                    logger.warning("retrieve_branch_failed", kb_id=kb_id, error=str(ex))
                    return
            kb_weight = kb.weight if kb.weight > 0 else 1.0
            local = []
            for hit in hits:
                if min_score > 0 and hit.score < min_score:
                    continue
                vec_score = hit.score * kb_weight * q_weight
                local.append(ScoredChunk(hit=hit, vector_score=vec_score, score=vec_score))
            if local:
                async with lock:
                    scored.extend(local)

        with _log_step("retrieve"):
            await asyncio.gather(
                *(
                    branch(vec, rc.query_weights[i] if i < len(rc.query_weights) else 1.0, kb)
                    for i, vec in enumerate(rc.query_vectors)
                    for kb in rc.kbs
                    if kb.kb_id.strip()
                )
            )
            if errors:
                logger.warning("retrieve_partial_failure", error_count=len(errors), first_error=str(errors[0]))
            if not scored and errors:
                raise errors[0]
        rc.ranked = rank_and_filter(scored, rc.top_k)

    async def _load_chunks(self, rc: RAGContext, deadline: Deadline) -> None:
        if rc.should_refuse or not rc.ranked:
            return
        ids = list(dict.fromkeys(item.chunk_id for item in rc.ranked if item.chunk_id))
        with _log_step("chunks"):
            res = await deadline.run(
                self.vector_store.load_chunks(self.options.collection, ids),
                self.options.retrieve_timeout_ms,
                "load_chunks",
            )
            rc.chunks = res.unwrap()

    def _rerank(self, rc: RAGContext) -> None:
        if rc.should_refuse or not rc.ranked:
            return
        weight = clamp(self.options.rerank_weight, 0.0, 1.0)
        with _log_step("rerank"):
            rescored = []
            for item in rc.ranked:
                meta = rc.chunks.get(item.chunk_id, ChunkMeta(chunk_id=item.chunk_id))
                ts = text_score(rc.normalized, meta.content, meta.section)
                rescored.append(replace(item, text_score=ts, score=fuse(item.vector_score, ts, weight)))
            # sorted() ist stabil: Gleichstand behält die bisherige Reihenfolge
            rc.ranked = sorted(rescored, key=lambda c: c.score, reverse=True)

    async def _assess(self, rc: RAGContext, deadline: Deadline) -> None:
        if rc.should_refuse:
            rc.reply = self.options.refusal_message
            return
        conf = compute_confidence(rc.ranked, rc.top_k)
        if len(rc.ranked) > 1 and conf < rc.threshold:
            try:
                if await self._cross_encoder_rerank(rc, deadline):
                    conf = compute_confidence(rc.ranked, rc.top_k)
            except DomainError as ex:
                logger.warning("rerank_cross_skipped", error=str(ex))
        rc.confidence = conf
        if not rc.ranked or conf < rc.threshold:
            rc.should_refuse = True
            rc.reply = self.options.refusal_message

    async def _cross_encoder_rerank(self, rc: RAGContext, deadline: Deadline) -> bool:
        # Offline adapters echo the prompt and cannot rank
        if getattr(self.llm, "offline", False):
            return False
        timeout = cross_encoder_timeout_ms(self.options.llm_timeout_ms, deadline.remaining_ms())
        if timeout <= 0:
            return False
        prompt = build_cross_encoder_prompt(rc.message, rc.ranked[:CROSS_ENCODER_TOP_N], rc.chunks)
        with _log_step("rerank_cross"):
            resp = await deadline.run(
                self.llm.generate(
                    GenerationRequest(
                        prompt=prompt,
                        system=CROSS_SYSTEM_PROMPT,
                        temperature=0.0,
                        max_tokens=CROSS_MAX_TOKENS,
                    )
                ),
                timeout,
                "rerank_cross",
            )
        order = parse_rerank_order(resp.text)
        if not order:
            return False
        rc.ranked = apply_rerank_order(order, rc.ranked)
        return True

    def _prompt(self, rc: RAGContext) -> None:
        if rc.should_refuse:
            return
        rc.prompt = build_prompt(rc.message, rc.ranked, rc.chunks)

    async def _generate(self, rc: RAGContext, deadline: Deadline) -> None:
        if rc.should_refuse:
            return
        with _log_step("llm"):
            resp = await deadline.run(
                self.llm.generate(
                    GenerationRequest(
                        prompt=rc.prompt,
                        system=self.options.system_prompt,
                        temperature=self.options.llm_temperature,
                        max_tokens=self.options.llm_max_tokens,
                    )
                ),
                self.options.llm_timeout_ms,
                "llm",
            )
        rc.reply = resp.text.strip()
        rc.model = self.llm.model
        rc.usage = resp.usage

    def _respond(self, rc: RAGContext) -> RAGAnswer:
        reply = rc.reply.strip()
        if not reply:
            reply = self.options.refusal_message
            rc.should_refuse = True
        references = [] if rc.should_refuse else build_references(rc.ranked, rc.chunks)
        logger.info(
            "rag_answered",
            tenant_id=rc.tenant_id,
            bot_id=rc.bot_id,
            session_id=rc.session_id,
            refused=rc.should_refuse,
            confidence=round(rc.confidence, 4),
            references=len(references),
        )
        return RAGAnswer(
            reply=reply,
            confidence=rc.confidence,
            references=references,
            refused=rc.should_refuse,
            model=rc.model,
            usage=rc.usage,
        )
