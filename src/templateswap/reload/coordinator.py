"""Reload coordinator: change events in, template sets swapped out.

Flow:
1. Build and register a change notifier for the directory
2. Wait on the notifier's event and error streams at once
3. On a change event, recompile the whole directory
4. On success, swap the new artifact into the store under exclusive access
5. On any failure, push a Diagnostic and keep watching

The loop ends only when a notifier stream closes, either because the
notifier died or because the host called ``AutoReload.stop()``.
"""

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Generic, TypeVar

from templateswap.errors import StreamClosed
from templateswap.reload.config import ReloadConfig
from templateswap.reload.diagnostics import Diagnostic, DiagnosticKind, ErrorChannel
from templateswap.reload.watcher import ChangeEvent, ChangeNotifier, WatchfilesNotifier
from templateswap.store import ArtifactStore
from templateswap.templates import compile_directory

logger = logging.getLogger(__name__)

T = TypeVar("T")

Compiler = Callable[[Path], Any]
NotifierFactory = Callable[[], ChangeNotifier]


class CoordinatorState(str, Enum):
    """Lifecycle states of a reload coordinator."""

    INITIALIZING = "initializing"
    WATCHING = "watching"
    COMPILING = "compiling"
    TERMINATED = "terminated"


class ReloadCoordinator(Generic[T]):
    """Links a change notifier to recompilation and publication."""

    def __init__(
        self,
        store: ArtifactStore[T],
        directory: Path,
        errors: ErrorChannel,
        compiler: Compiler,
        notifier_factory: NotifierFactory,
        config: ReloadConfig,
    ):
        self.store = store
        self.directory = directory
        self.errors = errors
        self.compiler = compiler
        self.notifier_factory = notifier_factory
        self.config = config

        self.state = CoordinatorState.INITIALIZING
        self.notifier: ChangeNotifier | None = None
        self.events_processed = 0
        self._registered = False
        self._stop_requested = False

    async def _report(self, kind: DiagnosticKind, message: str, cause: BaseException | None = None) -> None:
        diagnostic = Diagnostic(
            kind=kind,
            message=message,
            directory=str(self.directory),
            detail=repr(cause) if cause is not None else None,
        )
        if kind.is_terminal:
            logger.error(f"[{kind.value}] {message}")
        else:
            logger.warning(f"[{kind.value}] {message}")
        await self.errors.push(diagnostic)

    async def _release(self, notifier: ChangeNotifier) -> None:
        try:
            await notifier.release()
        except Exception as e:
            logger.error(f"Failed to release notifier for {self.directory}: {e}")

    async def run(self) -> None:
        """Run the coordinator until a notifier stream closes."""
        try:
            notifier = self.notifier_factory()
        except Exception as e:
            self.state = CoordinatorState.TERMINATED
            await self._report(DiagnosticKind.SETUP_ERROR, f"auto-reload error: {e}", e)
            return
        self.notifier = notifier

        try:
            await notifier.register(self.directory)
        except Exception as e:
            await self._release(notifier)
            self.state = CoordinatorState.TERMINATED
            await self._report(DiagnosticKind.SETUP_ERROR, f"auto-reload error: {e}", e)
            return

        self._registered = True
        try:
            if self._stop_requested:
                await self._release(notifier)
            elif self.config.compile_on_start:
                await self._recompile(None)
            await self._watch(notifier)
        finally:
            self.state = CoordinatorState.TERMINATED
            await self._release(notifier)
            logger.info(f"Auto-reload for {self.directory} terminated")

    async def _shut_down(self) -> None:
        self.state = CoordinatorState.TERMINATED
        await self._report(DiagnosticKind.SHUTTING_DOWN, "auto-reloader shutting down")

    async def _watch(self, notifier: ChangeNotifier) -> None:
        self.state = CoordinatorState.WATCHING
        next_event = asyncio.ensure_future(notifier.events.get())
        next_error = asyncio.ensure_future(notifier.errors.get())

        try:
            while True:
                done, _ = await asyncio.wait({next_event, next_error}, return_when=asyncio.FIRST_COMPLETED)

                # Errors first, so a failure that precedes closure is still reported
                if next_error in done:
                    try:
                        error = next_error.result()
                    except StreamClosed:
                        await self._shut_down()
                        return
                    await self._report(DiagnosticKind.NOTIFIER_ERROR, f"auto-reload error: {error}", error)
                    next_error = asyncio.ensure_future(notifier.errors.get())

                if next_event in done:
                    try:
                        event = next_event.result()
                    except StreamClosed:
                        await self._shut_down()
                        return
                    await self._recompile(event)
                    next_event = asyncio.ensure_future(notifier.events.get())
        finally:
            next_event.cancel()
            next_error.cancel()

    async def _recompile(self, event: ChangeEvent | None) -> None:
        if event is not None:
            logger.info(f"Change detected: {event.change_type} {event.path}")

        self.state = CoordinatorState.COMPILING
        try:
            artifact = await asyncio.to_thread(self.compiler, self.directory)
            generation = await self.store.swap(artifact)
        except Exception as e:
            # The previous artifact stays live
            await self._report(DiagnosticKind.COMPILE_ERROR, f"auto-reload error: {e}", e)
        else:
            logger.info(f"Reloaded templates from {self.directory} (generation {generation})")
        finally:
            self.events_processed += 1
            self.state = CoordinatorState.WATCHING

    async def stop(self) -> None:
        """Ask the loop to end through its normal shutdown path."""
        self._stop_requested = True
        if self._registered and self.notifier is not None:
            await self.notifier.release()


@dataclass
class AutoReload(Generic[T]):
    """Handle returned by start_auto_reload."""

    errors: ErrorChannel
    coordinator: ReloadCoordinator[T]
    task: asyncio.Task

    @property
    def state(self) -> CoordinatorState:
        return self.coordinator.state

    @property
    def done(self) -> bool:
        return self.task.done()

    @property
    def events_processed(self) -> int:
        return self.coordinator.events_processed

    async def stop(self) -> None:
        """Release the notifier so the loop pushes SHUTTING_DOWN and exits.

        Does not wait for the loop; use ``wait()`` for that. With the BLOCK
        overflow policy the loop only finishes once the channel has room.
        """
        await self.coordinator.stop()

    async def wait(self) -> None:
        """Wait for the coordinator task to finish."""
        await self.task


def start_auto_reload(
    store: ArtifactStore[T],
    directory: str | Path,
    *,
    config: ReloadConfig | None = None,
    compiler: Compiler | None = None,
    notifier_factory: NotifierFactory | None = None,
) -> AutoReload[T]:
    """Keep ``store`` in sync with the templates in ``directory``.

    Every reader of the store must go through ``store.read()`` (or the
    store's lock) so swaps never race with reads. Keep draining
    ``AutoReload.errors``: it is bounded and, under the default BLOCK
    policy, a full channel stalls the coordinator.

    Args:
        store: Store holding the caller's current artifact and shared lock.
        directory: Flat directory of template files to watch.
        config: Reload configuration. Defaults to ReloadConfig().
        compiler: Callable turning the directory path into a new artifact.
            Defaults to compile_directory with the configured pattern.
        notifier_factory: Builds the change notifier. Defaults to a
            WatchfilesNotifier configured from ``config``.

    Returns:
        AutoReload handle with the error channel and a stop() method.
    """
    config = config or ReloadConfig()
    directory = Path(directory)

    if compiler is None:
        compiler = functools.partial(compile_directory, pattern=config.pattern)
    if notifier_factory is None:
        notifier_factory = functools.partial(
            WatchfilesNotifier,
            pattern=config.pattern,
            debounce_ms=config.debounce_ms,
            step_ms=config.step_ms,
            force_polling=config.force_polling,
        )

    errors = ErrorChannel(config.error_capacity, config.overflow_policy)
    coordinator = ReloadCoordinator(store, directory, errors, compiler, notifier_factory, config)
    task = asyncio.get_running_loop().create_task(coordinator.run(), name=f"auto-reload:{directory}")
    return AutoReload(errors=errors, coordinator=coordinator, task=task)
