"""Readers-writer locking for the artifact store.

The store and every reader of it must agree on a single lock. Callers may
bring their own implementation as long as it satisfies ``SharedLock``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class SharedLock(Protocol):
    """Capability interface shared by the reload coordinator and readers."""

    async def acquire_read(self) -> None: ...

    async def release_read(self) -> None: ...

    async def acquire_exclusive(self) -> None: ...

    async def release_exclusive(self) -> None: ...


class ReadWriteLock:
    """Asyncio readers-writer lock with writer preference.

    Any number of readers may hold the lock at once. An exclusive holder
    excludes readers and other writers. Once a writer is waiting, new
    readers queue behind it so a swap cannot be starved by read traffic.
    There are no timeouts: a holder that never releases stalls everyone.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        """Number of tasks currently holding shared access."""
        return self._readers

    @property
    def writer_active(self) -> bool:
        """Whether a task currently holds exclusive access."""
        return self._writer

    async def acquire_read(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1

    async def release_read(self) -> None:
        async with self._cond:
            if self._readers == 0:
                raise RuntimeError("release_read() called without shared access held")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    async def acquire_exclusive(self) -> None:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            except BaseException:
                # Readers parked behind this writer must re-check
                self._waiting_writers -= 1
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True

    async def release_exclusive(self) -> None:
        async with self._cond:
            if not self._writer:
                raise RuntimeError("release_exclusive() called without exclusive access held")
            self._writer = False
            self._cond.notify_all()

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[None]:
        """Hold shared access for the duration of the block."""
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def writing(self) -> AsyncIterator[None]:
        """Hold exclusive access for the duration of the block."""
        await self.acquire_exclusive()
        try:
            yield
        finally:
            await self.release_exclusive()

    def __repr__(self) -> str:
        return (
            f"<ReadWriteLock readers={self._readers} writer={self._writer} "
            f"waiting_writers={self._waiting_writers}>"
        )
