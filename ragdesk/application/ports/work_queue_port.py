"""Work queue port for async ingestion jobs."""

from dataclasses import dataclass
from typing import Protocol

from ragdesk.domain.errors import DomainError
from ragdesk.domain.models import IngestionJob
from ragdesk.domain.types import Result


@dataclass(frozen=True)
class QueuedJob:
    """A delivered job plus the bookkeeping needed to ack/nack it."""

    message_id: str
    job: IngestionJob
    retry: int = 0


class WorkQueuePort(Protocol):
    """Durable, acknowledged job queue (at-least-once)."""

    async def enqueue(self, job: IngestionJob) -> Result[str, DomainError]:
        """Enqueue a job. Returns the message id."""
        ...

    async def dequeue(self, max_n: int = 1, block_ms: int = 1000) -> Result[list[QueuedJob], DomainError]:
        """Wait up to ``block_ms`` for at most ``max_n`` jobs."""
        ...

    async def ack(self, msg: QueuedJob) -> Result[None, DomainError]:
        """Mark a job as done."""
        ...

    async def nack(self, msg: QueuedJob, requeue: bool = True) -> Result[None, DomainError]:
        """Give a job back (retry) or dead-letter it once retries are used up."""
        ...
