"""
Update Cycle State

One-shot completion signal, the per-cycle record and the orchestrator's
tagged state (Idle | Running).
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .contracts import EventStreamSession


class CycleOutcome(str, Enum):
    """How the last update cycle ended"""
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class CompletionSignal:
    """
    Single-assignment boolean result shared by every task in a cycle.

    The first `try_set` wins; later calls are no-ops and return False.
    All writers run on the same event loop, so the done() check and the
    assignment cannot interleave.
    """

    def __init__(self):
        self._future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

    def try_set(self, value: bool) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def done(self) -> bool:
        return self._future.done()

    @property
    def value(self) -> bool | None:
        """The result, or None while unresolved"""
        if not self._future.done():
            return None
        return self._future.result()

    async def wait(self, timeout: float | None = None) -> bool | None:
        """
        Wait for the result.

        Returns:
            The result, or None if `timeout` elapsed first
        """
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except asyncio.TimeoutError:
            return None


@dataclass(eq=False)
class UpdateCycle:
    """One attempt to apply a newer build to a target"""
    latest_build_id: str
    running_build_id: str
    completion: CompletionSignal = field(default_factory=CompletionSignal)
    credential: str | None = None
    session: EventStreamSession | None = None
    post_update_task: asyncio.Task | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def post_update_started(self) -> bool:
        return self.post_update_task is not None

    def fail(self) -> bool:
        """Resolve as failed; no-op if already resolved"""
        return self.completion.try_set(False)


@dataclass(frozen=True)
class Idle:
    """No update cycle is live"""


@dataclass(frozen=True)
class Running:
    """Exactly one update cycle is live"""
    cycle: UpdateCycle


OrchestratorState = Idle | Running
