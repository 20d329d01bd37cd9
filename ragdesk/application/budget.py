"""Explicit request deadline, split into per-stage budgets.

Why: Every network await gets ``min(stage timeout, remaining request time)``.
     The deadline is a plain value handed to each stage, not ambient state.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from ragdesk.domain.errors import PipelineTimeoutError

T = TypeVar("T")


@dataclass(frozen=True)
class Deadline:
    expires_at: float = math.inf
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def after_ms(cls, timeout_ms: int, clock: Callable[[], float] = time.monotonic) -> Deadline:
        """A deadline ``timeout_ms`` from now; ``<= 0`` means unbounded."""
        if timeout_ms <= 0:
            return cls(clock=clock)
        return cls(expires_at=clock() + timeout_ms / 1000.0, clock=clock)

    def remaining_ms(self) -> float | None:
        if math.isinf(self.expires_at):
            return None
        return max(0.0, (self.expires_at - self.clock()) * 1000.0)

    def budget_ms(self, stage_ms: int) -> float | None:
        """Stage budget never exceeding what is left on the request."""
        remaining = self.remaining_ms()
        if stage_ms <= 0:
            return remaining
        if remaining is None:
            return float(stage_ms)
        return min(float(stage_ms), remaining)

    def child(self, stage_ms: int) -> Deadline:
        """A tighter deadline for a whole stage (e.g. a fan-out sharing one budget)."""
        if stage_ms <= 0:
            return self
        return Deadline(
            expires_at=min(self.expires_at, self.clock() + stage_ms / 1000.0), clock=self.clock
        )

    async def run(self, aw: Awaitable[T], stage_ms: int, stage: str) -> T:
        """Await ``aw`` within the stage budget, mapping expiry to PipelineTimeoutError."""
        budget = self.budget_ms(stage_ms)
        if budget is not None and budget <= 0:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise PipelineTimeoutError(f"no time left for stage '{stage}'")
        try:
            return await asyncio.wait_for(aw, None if budget is None else budget / 1000.0)
        except asyncio.TimeoutError as ex:
            raise PipelineTimeoutError(f"stage '{stage}' exceeded {budget:.0f}ms") from ex
