"""Background consumer for queued ingestion jobs.

Why: Entkoppelt Upload und Verarbeitung. Each consumer task handles one
     job at a time: ack on success, exponential backoff then nack on failure.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ...config.logging import get_logger
from ...domain.models import IngestionJob
from ..ports.work_queue_port import QueuedJob, WorkQueuePort

MAX_WORKERS = 32

logger = get_logger(__name__)


def backoff_ms(base_ms: int, retry: int) -> int:
    """``base * 2**retry``; the first retry waits the base delay."""
    if base_ms <= 0:
        return 0
    return base_ms * (2 ** max(retry, 0))


def clamp_workers(value: int) -> int:
    return min(max(value, 1), MAX_WORKERS)


@dataclass
class IngestionWorker:
    queue: WorkQueuePort
    process: Callable[[IngestionJob], Awaitable[int]]
    worker_count: int = 1
    backoff_base_ms: int = 500
    poll_block_ms: int = 1000
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Run consumers until ``stop`` is set (or the task is cancelled)."""
        stop = stop or asyncio.Event()
        count = clamp_workers(self.worker_count)
        logger.info("ingestion_worker_started", workers=count)
        await asyncio.gather(*(self._consume(i, stop) for i in range(count)))
        logger.info("ingestion_worker_stopped", workers=count)

    async def _consume(self, worker_id: int, stop: asyncio.Event) -> None:
        while not stop.is_set():
            batch = await self.queue.dequeue(max_n=1, block_ms=self.poll_block_ms)
            if not batch.ok:
                logger.warning("ingestion_dequeue_failed", worker=worker_id, error=str(batch.error))
                await self.sleep(max(self.backoff_base_ms, 100) / 1000.0)
                continue
            for msg in batch.value or []:
                await self.handle(msg, worker_id)

    async def handle(self, msg: QueuedJob, worker_id: int = 0) -> bool:
        """Process one delivered job; returns True when it was acked."""
        job = msg.job
        try:
            chunks = await self.process(job)
        except Exception as ex:  # noqa: BLE001
            delay = backoff_ms(self.backoff_base_ms, msg.retry)
            logger.warning(
                "ingestion_job_failed",
                worker=worker_id,
                message_id=msg.message_id,
                document_version_id=job.document_version_id,
                retry=msg.retry,
                backoff_ms=delay,
                error=str(ex),
            )
            if delay:
                await self.sleep(delay / 1000.0)
            nacked = await self.queue.nack(msg, requeue=True)
            if not nacked.ok:
                logger.error("ingestion_nack_failed", message_id=msg.message_id, error=str(nacked.error))
            return False

        acked = await self.queue.ack(msg)
        if not acked.ok:
            logger.error("ingestion_ack_failed", message_id=msg.message_id, error=str(acked.error))
        logger.info(
            "ingestion_job_done",
            worker=worker_id,
            message_id=msg.message_id,
            document_version_id=job.document_version_id,
            chunks=chunks,
        )
        return True

    async def drain(self) -> int:
        """Process everything currently queued once (CLI/tests); returns the acked count."""
        done = 0
        while True:
            batch = await self.queue.dequeue(max_n=1, block_ms=0)
            if not batch.ok or not batch.value:
                return done
            for msg in batch.value:
                if await self.handle(msg):
                    done += 1
