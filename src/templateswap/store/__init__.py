"""Shared artifact store guarded by a readers-writer lock."""

from templateswap.store.artifact import ArtifactStore
from templateswap.store.lock import ReadWriteLock, SharedLock

__all__ = ["ArtifactStore", "ReadWriteLock", "SharedLock"]
