"""Change notifiers feeding the reload coordinator.

A notifier exposes two independent streams: change events and internal
errors. Either stream closing means no more events will ever arrive.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Generic, TypeVar

from watchfiles import Change, DefaultFilter, awatch

from templateswap.errors import NotifierSetupError, StreamClosed

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


@dataclass
class ChangeEvent:
    """Represents a detected change under the watched directory."""

    path: Path
    change_type: str  # "added", "modified", "deleted"
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class NotifierStream(Generic[T]):
    """Unbounded async stream that can be closed exactly once.

    Items put before ``close()`` are still delivered; after that ``get()``
    raises StreamClosed forever.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put_nowait(self, item: T) -> None:
        if self._closed:
            raise StreamClosed("cannot put on a closed stream")
        self._queue.put_nowait(item)

    async def put(self, item: T) -> None:
        self.put_nowait(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any later reader
            self._queue.put_nowait(_CLOSED)
            raise StreamClosed("stream closed")
        return item

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            try:
                yield await self.get()
            except StreamClosed:
                return


class ChangeNotifier(ABC):
    """Base class for directory change notifiers."""

    def __init__(self) -> None:
        self.events: NotifierStream[ChangeEvent] = NotifierStream()
        self.errors: NotifierStream[BaseException] = NotifierStream()
        self.directory: Path | None = None
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @abstractmethod
    async def register(self, path: str | Path) -> None:
        """Start watching a directory.

        Raises:
            NotifierSetupError: If the path cannot be watched.
        """

    async def _shutdown(self) -> None:
        """Stop producing events. Subclasses free their resources here."""

    async def release(self) -> None:
        """Stop delivery, close both streams and free resources. Idempotent."""
        if self._released:
            return
        self._released = True
        try:
            await self._shutdown()
        finally:
            self.events.close()
            self.errors.close()
        logger.debug(f"{type(self).__name__} released for {self.directory}")

    async def __aenter__(self) -> "ChangeNotifier":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()


class TemplateFilter(DefaultFilter):
    """Accept changes to matching files directly inside one directory."""

    def __init__(self, directory: Path, pattern: str = "*"):
        super().__init__()
        self.directory = directory
        self.pattern = pattern

    def __call__(self, change: Change, path: str) -> bool:
        candidate = Path(path)
        if candidate.parent != self.directory:
            return False
        if not fnmatch(candidate.name, self.pattern):
            return False
        return super().__call__(change, path)


class WatchfilesNotifier(ChangeNotifier):
    """Change notifier backed by ``watchfiles.awatch``.

    Every (change, path) pair reported by watchfiles becomes one
    ChangeEvent; nothing is merged at this layer.
    """

    def __init__(
        self,
        pattern: str = "*",
        debounce_ms: int = 50,
        step_ms: int = 50,
        force_polling: bool | None = None,
    ):
        super().__init__()
        self.pattern = pattern
        self.debounce_ms = debounce_ms
        self.step_ms = step_ms
        self.force_polling = force_polling
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    async def register(self, path: str | Path) -> None:
        directory = Path(path)
        if self._released:
            raise NotifierSetupError(directory, "notifier already released")
        if self._task is not None:
            raise NotifierSetupError(directory, f"notifier already watching {self.directory}")
        if not directory.exists():
            raise NotifierSetupError(directory, "no such directory")
        if not directory.is_dir():
            raise NotifierSetupError(directory, "not a directory")

        self.directory = directory.resolve()
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._pump(self.directory), name=f"watchfiles:{self.directory}")
        logger.info(f"Watching {self.directory} for changes (pattern {self.pattern!r})")

    async def _pump(self, directory: Path) -> None:
        watch_filter = TemplateFilter(directory, self.pattern)
        try:
            async for changes in awatch(
                directory,
                watch_filter=watch_filter,
                debounce=self.debounce_ms,
                step=self.step_ms,
                stop_event=self._stop_event,
                force_polling=self.force_polling,
                recursive=False,
            ):
                for change, raw_path in sorted(changes, key=lambda c: c[1]):
                    event = ChangeEvent(path=Path(raw_path), change_type=change.name)
                    logger.debug(f"Change detected: {event.change_type} {event.path}")
                    self.events.put_nowait(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Watcher for {directory} failed: {e}")
            if not self.errors.closed:
                self.errors.put_nowait(e)
        finally:
            self.events.close()
            self.errors.close()

    async def _shutdown(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task


class QueueNotifier(ChangeNotifier):
    """Notifier driven by the host instead of the filesystem.

    Useful when the host already has its own change source, and for tests.
    """

    def __init__(self, fail_with: BaseException | None = None):
        super().__init__()
        self.fail_with = fail_with
        self.registered = False

    async def register(self, path: str | Path) -> None:
        directory = Path(path)
        if self.fail_with is not None:
            raise NotifierSetupError(directory, str(self.fail_with)) from self.fail_with
        if self._released:
            raise NotifierSetupError(directory, "notifier already released")
        self.directory = directory
        self.registered = True

    def emit(self, path: str | Path, change_type: str = "modified") -> ChangeEvent:
        """Deliver a change event to the coordinator."""
        event = ChangeEvent(path=Path(path), change_type=change_type)
        self.events.put_nowait(event)
        return event

    def report(self, error: BaseException) -> None:
        """Deliver a notifier-internal error to the coordinator."""
        self.errors.put_nowait(error)
