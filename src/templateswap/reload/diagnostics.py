"""Diagnostics and the bounded channel that carries them to the host.

The coordinator never raises across its boundary. Every failure becomes a
Diagnostic pushed onto an ErrorChannel, which the host process drains.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 5


class DiagnosticKind(str, Enum):
    """Kinds of failure reported by the reload coordinator."""

    SETUP_ERROR = "setup_error"  # Notifier could not be built or registered
    SHUTTING_DOWN = "shutting_down"  # A notifier stream closed
    NOTIFIER_ERROR = "notifier_error"  # Notifier reported an internal error
    COMPILE_ERROR = "compile_error"  # Recompilation failed, old set stays live

    @property
    def is_terminal(self) -> bool:
        return self in (DiagnosticKind.SETUP_ERROR, DiagnosticKind.SHUTTING_DOWN)


class Diagnostic(BaseModel):
    """A single failure occurrence."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    kind: DiagnosticKind
    message: str
    directory: str | None = None
    detail: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        """True when no further diagnostics will follow this one."""
        return self.kind.is_terminal

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "message": self.message,
            "directory": self.directory,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return self.message


class OverflowPolicy(str, Enum):
    """What ErrorChannel.push does when the channel is full."""

    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"
    DROP_NEWEST = "drop_newest"


class ErrorChannel:
    """Bounded FIFO of diagnostics with an explicit overflow policy.

    BLOCK makes ``push`` wait for the consumer, which stalls the coordinator
    if nobody drains the channel. DROP_OLDEST evicts the oldest queued
    diagnostic. DROP_NEWEST discards the incoming one, except that terminal
    diagnostics are always admitted (evicting the oldest) so consumers
    iterating the channel still see the end.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, policy: OverflowPolicy = OverflowPolicy.BLOCK):
        if capacity < 1:
            raise ValueError(f"ErrorChannel capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self.policy = OverflowPolicy(policy)
        self.dropped = 0
        self._queue: asyncio.Queue[Diagnostic] = asyncio.Queue(maxsize=capacity)
        self._overflowing = False

    async def push(self, diagnostic: Diagnostic) -> None:
        """Enqueue a diagnostic according to the overflow policy."""
        if self.policy is OverflowPolicy.BLOCK:
            await self._queue.put(diagnostic)
            return

        try:
            self._queue.put_nowait(diagnostic)
            self._overflowing = False
            return
        except asyncio.QueueFull:
            pass

        # Log once per overflow episode
        if not self._overflowing:
            logger.warning(f"Error channel full ({self.capacity}), applying {self.policy.value} policy")
            self._overflowing = True
        self.dropped += 1

        if self.policy is OverflowPolicy.DROP_NEWEST and not diagnostic.is_terminal:
            return

        self._queue.get_nowait()
        self._queue.put_nowait(diagnostic)

    def drain(self) -> Diagnostic | None:
        """Return the oldest queued diagnostic, or None without waiting."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain_all(self) -> list[Diagnostic]:
        """Return every queued diagnostic, oldest first."""
        diagnostics: list[Diagnostic] = []
        while (diagnostic := self.drain()) is not None:
            diagnostics.append(diagnostic)
        return diagnostics

    async def get(self) -> Diagnostic:
        """Wait for the next diagnostic."""
        return await self._queue.get()

    def full(self) -> bool:
        return self._queue.full()

    def empty(self) -> bool:
        return self._queue.empty()

    def __len__(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> AsyncIterator[Diagnostic]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Diagnostic]:
        while True:
            diagnostic = await self.get()
            yield diagnostic
            if diagnostic.is_terminal:
                return
