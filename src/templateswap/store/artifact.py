"""The single shared slot that holds the live artifact."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Generic, TypeVar

from templateswap.store.lock import ReadWriteLock, SharedLock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ArtifactStore(Generic[T]):
    """Handle through which every reader reaches the current artifact.

    Readers keep a reference to the store, never to the artifact itself,
    so a swap is visible to every holder of the handle. The artifact is
    replaced wholesale; it is never mutated field by field.
    """

    def __init__(self, artifact: T, lock: SharedLock | None = None):
        """Initialize the store.

        Args:
            artifact: The artifact to serve until the first successful reload.
            lock: Lock shared with every reader. Defaults to a new ReadWriteLock.
        """
        if artifact is None:
            raise ValueError("ArtifactStore requires an initial artifact")
        self._artifact = artifact
        self.lock: SharedLock = lock if lock is not None else ReadWriteLock()
        self._generation = 0

    @property
    def current(self) -> T:
        """The artifact in the slot, read without locking.

        Only safe for code that already holds the lock.
        """
        return self._artifact

    @property
    def generation(self) -> int:
        """Number of successful swaps since construction."""
        return self._generation

    @asynccontextmanager
    async def read(self) -> AsyncIterator[T]:
        """Hold shared access and yield the current artifact."""
        await self.lock.acquire_read()
        try:
            yield self._artifact
        finally:
            await self.lock.release_read()

    async def swap(self, artifact: T) -> int:
        """Replace the held artifact under exclusive access.

        Args:
            artifact: Fully constructed replacement.

        Returns:
            The store generation after the swap.
        """
        if artifact is None:
            raise ValueError("cannot swap None into an ArtifactStore")

        await self.lock.acquire_exclusive()
        try:
            self._artifact = artifact
            self._generation += 1
            generation = self._generation
        finally:
            await self.lock.release_exclusive()

        logger.debug(f"Artifact store advanced to generation {generation}")
        return generation
