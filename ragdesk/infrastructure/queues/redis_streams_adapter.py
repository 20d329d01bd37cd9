"""Redis Streams work queue adapter for async ingestion.

Why: Pipeline-Entkopplung (Backpressure, Retry, Idempotenz). Jobs are
     acknowledged per message; a nack re-adds the job with ``retry + 1``
     and moves it to the dead-letter stream once retries are used up.
"""

import json
import os
import socket
from dataclasses import dataclass, field
from importlib import import_module
from typing import Any

from ragdesk.application.ports.work_queue_port import QueuedJob
from ragdesk.config.logging import get_logger
from ragdesk.domain.errors import DomainError, WorkQueueError
from ragdesk.domain.models import IngestionJob
from ragdesk.domain.types import Result

INGESTION_STREAM = "ragdesk.ingestion"
INGESTION_DLQ_STREAM = "ragdesk.ingestion.dlq"
INGESTION_GROUP = "ragdesk-ingestion-workers"
MAX_RETRIES_CAP = 10

logger = get_logger(__name__)


def encode_envelope(job: IngestionJob, retry: int) -> str:
    return json.dumps({"job": job.to_dict(), "retry": retry})


def decode_envelope(raw: str) -> tuple[IngestionJob, int]:
    """Parse ``{"job": {...}, "retry": n}``; raises ValueError when malformed."""
    data = json.loads(raw)
    if not isinstance(data, dict) or not isinstance(data.get("job"), dict):
        raise ValueError("queue payload has no job object")
    job = IngestionJob.from_dict(data["job"])
    if not job.document_version_id:
        raise ValueError("queue payload job has no document_version_id")
    return job, int(data.get("retry") or 0)


def clamp_max_retries(value: int) -> int:
    return min(max(value, 0), MAX_RETRIES_CAP)


def _default_consumer() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@dataclass
class RedisQueueConfig:
    """Configuration for the Redis Streams queue."""

    url: str = "redis://localhost:6379/0"
    stream: str = INGESTION_STREAM
    dlq_stream: str = INGESTION_DLQ_STREAM
    group: str = INGESTION_GROUP
    consumer: str = field(default_factory=_default_consumer)
    max_retries: int = 3
    maxlen: int = 100000  # keep the stream bounded
    claim_idle_ms: int = 60000  # reclaim entries a dead consumer left pending; 0 disables


class RedisWorkQueueAdapter:
    """WorkQueuePort on Redis Streams (XADD / XREADGROUP / XACK).

    At-least-once: a job stays pending in the consumer group until acked.
    Entries pending longer than ``claim_idle_ms`` (their consumer crashed)
    are taken over with XAUTOCLAIM before new entries are read.
    """

    def __init__(self, cfg: RedisQueueConfig, client: Any | None = None) -> None:
        self._cfg = cfg
        self._max_retries = clamp_max_retries(cfg.max_retries)
        self._client = client if client is not None else self._init_client(cfg)
        self._group_ready = False
        self._claim_cursor = "0-0"

    def _init_client(self, cfg: RedisQueueConfig) -> Any:
        """Initialize redis.asyncio client with lazy import.

        Raises:
            WorkQueueError: If redis-py not available or init fails
        """
        try:
            redis_asyncio = import_module("redis.asyncio")
            return redis_asyncio.from_url(cfg.url, decode_responses=True)
        except Exception as ex:
            raise WorkQueueError(f"Redis init failed: {ex}") from ex

    async def _ensure_group(self) -> None:
        if self._group_ready:
            return
        try:
            await self._client.xgroup_create(self._cfg.stream, self._cfg.group, id="0", mkstream=True)
        except Exception as ex:  # noqa: BLE001
            # Group already exists
            if "BUSYGROUP" not in str(ex):
                raise
        self._group_ready = True

    async def enqueue(self, job: IngestionJob) -> Result[str, DomainError]:
        try:
            msg_id = await self._client.xadd(
                self._cfg.stream,
                {"payload": encode_envelope(job, 0)},
                maxlen=self._cfg.maxlen,
                approximate=True,
            )
            return Result.success(str(msg_id))
        except Exception as ex:  # noqa: BLE001
            return Result.failure(WorkQueueError(f"enqueue failed: {ex}"))

    async def dequeue(self, max_n: int = 1, block_ms: int = 1000) -> Result[list[QueuedJob], DomainError]:
        try:
            await self._ensure_group()
            count = max(max_n, 1)
            reclaimed = await self._claim_idle(count)
            if reclaimed:
                return Result.success(reclaimed)
            messages = await self._client.xreadgroup(
                self._cfg.group,
                self._cfg.consumer,
                {self._cfg.stream: ">"},
                count=count,
                block=block_ms if block_ms > 0 else None,  # BLOCK 0 would wait forever
            )
            jobs: list[QueuedJob] = []
            for _stream, entries in messages or []:
                jobs.extend(await self._decode_entries(entries))
            return Result.success(jobs)
        except Exception as ex:  # noqa: BLE001
            return Result.failure(WorkQueueError(f"dequeue failed: {ex}"))

    async def _claim_idle(self, count: int) -> list[QueuedJob]:
        """Take over entries another consumer read but never acked."""
        if self._cfg.claim_idle_ms <= 0:
            return []
        reply = await self._client.xautoclaim(
            self._cfg.stream,
            self._cfg.group,
            self._cfg.consumer,
            min_idle_time=self._cfg.claim_idle_ms,
            start_id=self._claim_cursor,
            count=count,
        )
        # [next_start_id, [(id, fields), ...]] plus deleted ids on Redis >= 7
        self._claim_cursor = str(reply[0]) if reply else "0-0"
        entries = reply[1] if reply and len(reply) > 1 else []
        jobs = await self._decode_entries(entries)
        if jobs:
            logger.info("jobs_reclaimed", count=len(jobs), consumer=self._cfg.consumer)
        return jobs

    async def _decode_entries(self, entries: Any) -> list[QueuedJob]:
        jobs: list[QueuedJob] = []
        for msg_id, fields in entries or []:
            if fields is None:
                # Eintrag wurde inzwischen aus dem Stream getrimmt
                await self._client.xack(self._cfg.stream, self._cfg.group, str(msg_id))
                continue
            raw = fields.get("payload", "")
            try:
                job, retry = decode_envelope(raw)
            except (ValueError, TypeError) as ex:
                await self._dead_letter(str(msg_id), raw, f"undecodable payload: {ex}")
                continue
            jobs.append(QueuedJob(message_id=str(msg_id), job=job, retry=retry))
        return jobs

    async def ack(self, msg: QueuedJob) -> Result[None, DomainError]:
        try:
            await self._client.xack(self._cfg.stream, self._cfg.group, msg.message_id)
            return Result.success(None)
        except Exception as ex:  # noqa: BLE001
            return Result.failure(WorkQueueError(f"ack failed: {ex}"))

    async def nack(self, msg: QueuedJob, requeue: bool = True) -> Result[None, DomainError]:
        try:
            if requeue and msg.retry < self._max_retries:
                await self._client.xadd(
                    self._cfg.stream,
                    {"payload": encode_envelope(msg.job, msg.retry + 1)},
                    maxlen=self._cfg.maxlen,
                    approximate=True,
                )
                await self._client.xack(self._cfg.stream, self._cfg.group, msg.message_id)
            else:
                await self._dead_letter(
                    msg.message_id, encode_envelope(msg.job, msg.retry), "max retries exceeded"
                )
            return Result.success(None)
        except Exception as ex:  # noqa: BLE001
            return Result.failure(WorkQueueError(f"nack failed: {ex}"))

    async def _dead_letter(self, msg_id: str, raw: str, reason: str) -> None:
        await self._client.xadd(
            self._cfg.dlq_stream,
            {"payload": raw, "reason": reason, "source_id": msg_id},
            maxlen=self._cfg.maxlen,
            approximate=True,
        )
        await self._client.xack(self._cfg.stream, self._cfg.group, msg_id)
        logger.warning("job_dead_lettered", message_id=msg_id, reason=reason)
