"""In-process work queue with the same retry/DLQ semantics as Redis Streams."""

import asyncio
import itertools

from ragdesk.application.ports.work_queue_port import QueuedJob
from ragdesk.domain.errors import DomainError
from ragdesk.domain.models import IngestionJob
from ragdesk.domain.types import Result
from ragdesk.infrastructure.queues.redis_streams_adapter import clamp_max_retries


class InMemoryWorkQueue:
    def __init__(self, max_retries: int = 3) -> None:
        self._max_retries = clamp_max_retries(max_retries)
        self._queue: asyncio.Queue[QueuedJob] = asyncio.Queue()
        self._ids = itertools.count(1)
        self.pending: dict[str, QueuedJob] = {}
        self.dead_letters: list[QueuedJob] = []

    def _next_id(self) -> str:
        return f"mem-{next(self._ids)}"

    async def enqueue(self, job: IngestionJob) -> Result[str, DomainError]:
        msg = QueuedJob(message_id=self._next_id(), job=job, retry=0)
        self._queue.put_nowait(msg)
        return Result.success(msg.message_id)

    async def dequeue(self, max_n: int = 1, block_ms: int = 1000) -> Result[list[QueuedJob], DomainError]:
        out: list[QueuedJob] = []
        if self._queue.empty() and block_ms > 0:
            try:
                out.append(await asyncio.wait_for(self._queue.get(), block_ms / 1000.0))
            except asyncio.TimeoutError:
                return Result.success([])
        while len(out) < max(max_n, 1) and not self._queue.empty():
            out.append(self._queue.get_nowait())
        for msg in out:
            self.pending[msg.message_id] = msg
        return Result.success(out)

    async def ack(self, msg: QueuedJob) -> Result[None, DomainError]:
        self.pending.pop(msg.message_id, None)
        return Result.success(None)

    async def nack(self, msg: QueuedJob, requeue: bool = True) -> Result[None, DomainError]:
        self.pending.pop(msg.message_id, None)
        if requeue and msg.retry < self._max_retries:
            self._queue.put_nowait(QueuedJob(message_id=self._next_id(), job=msg.job, retry=msg.retry + 1))
        else:
            self.dead_letters.append(msg)
        return Result.success(None)

    def qsize(self) -> int:
        return self._queue.qsize()
