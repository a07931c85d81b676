"""Tests for the reload coordinator."""

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from templateswap.errors import StreamClosed
from templateswap.reload import (
    CoordinatorState,
    DiagnosticKind,
    OverflowPolicy,
    QueueNotifier,
    ReloadConfig,
    start_auto_reload,
)
from templateswap.store import ArtifactStore, ReadWriteLock
from templateswap.templates import TemplateSet, compile_directory


class PoisonedLock(ReadWriteLock):
    """Caller lock whose exclusive side always fails."""

    async def acquire_exclusive(self) -> None:
        raise RuntimeError("lock poisoned")


class BrokenReleaseNotifier(QueueNotifier):
    """QueueNotifier whose teardown fails."""

    async def _shutdown(self) -> None:
        raise OSError("release failed")


async def failing_awatch(*paths, **kwargs):
    """Stand-in for watchfiles.awatch whose watcher dies on startup."""
    raise OSError("inotify watch limit reached")
    yield set()


@pytest.fixture
def notifier() -> QueueNotifier:
    return QueueNotifier()


@pytest.fixture
def store(template_dir: Path) -> ArtifactStore[TemplateSet]:
    return ArtifactStore(compile_directory(template_dir))


async def render(store: ArtifactStore[TemplateSet], name: str = "a.tmpl") -> str:
    async with store.read() as template_set:
        return template_set.render(name)


async def shut_down(handle) -> None:
    await handle.stop()
    handle.errors.drain_all()
    await asyncio.wait_for(handle.wait(), timeout=2.0)


class TestReload:
    """Change events recompile the directory and swap the result in."""

    async def test_modified_template_is_served(self, template_dir, store, notifier, wait_until):
        """After a change event the store renders the new content."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)
        await wait_until(lambda: handle.state is CoordinatorState.WATCHING)
        assert await render(store) == "Hello"

        (template_dir / "a.tmpl").write_text("Goodbye")
        notifier.emit(template_dir / "a.tmpl")
        await wait_until(lambda: handle.events_processed == 1)

        assert await render(store) == "Goodbye"
        assert store.generation == 1
        assert handle.errors.empty()
        await shut_down(handle)

    async def test_compile_error_keeps_previous_set(self, template_dir, store, notifier, wait_until):
        """A broken template leaves the live set untouched and reports once."""
        before = store.current
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)

        (template_dir / "a.tmpl").write_text("{{ Hello")
        notifier.emit(template_dir / "a.tmpl")
        await wait_until(lambda: handle.events_processed == 1)

        assert store.current is before
        assert store.generation == 0
        assert await render(store) == "Hello"

        diagnostics = handle.errors.drain_all()
        assert [d.kind for d in diagnostics] == [DiagnosticKind.COMPILE_ERROR]
        assert diagnostics[0].message.startswith("auto-reload error: a.tmpl:1:")
        assert diagnostics[0].directory == str(template_dir)
        assert handle.state is CoordinatorState.WATCHING
        await shut_down(handle)

    async def test_recovers_after_compile_error(self, template_dir, store, notifier, wait_until):
        """The next good edit after a failure is picked up."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)
        path = template_dir / "a.tmpl"

        path.write_text("{% if %}")
        notifier.emit(path)
        await wait_until(lambda: handle.events_processed == 1)
        path.write_text("Fixed")
        notifier.emit(path)
        await wait_until(lambda: handle.events_processed == 2)

        assert await render(store) == "Fixed"
        assert len(handle.errors) == 1
        await shut_down(handle)

    async def test_store_holds_latest_of_many_reloads(self, template_dir, store, notifier, wait_until):
        """Successive successful compiles leave the most recent one live."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)
        path = template_dir / "a.tmpl"

        for n in range(1, 6):
            path.write_text(f"version {n}")
            notifier.emit(path)
            await wait_until(lambda n=n: handle.events_processed == n)

        assert await render(store) == "version 5"
        assert store.generation == 5
        await shut_down(handle)

    async def test_always_recompiles_whole_directory(self, template_dir, notifier, wait_until):
        """The compiler receives the directory, not the changed file."""
        calls: list[Path] = []

        def compiler(directory: Path) -> str:
            calls.append(directory)
            return f"compiled {len(calls)}"

        store = ArtifactStore("initial")
        handle = start_auto_reload(store, template_dir, compiler=compiler, notifier_factory=lambda: notifier)

        notifier.emit(template_dir / "a.tmpl", "modified")
        notifier.emit(template_dir / "b.tmpl", "added")
        await wait_until(lambda: handle.events_processed == 2)

        assert calls == [template_dir, template_dir]
        assert store.current == "compiled 2"
        await shut_down(handle)

    async def test_unexpected_compiler_exception_is_reported(self, template_dir, notifier, wait_until):
        """Any compiler failure becomes a COMPILE_ERROR diagnostic."""

        def compiler(directory: Path) -> str:
            raise RuntimeError("disk on fire")

        store = ArtifactStore("initial")
        handle = start_auto_reload(store, template_dir, compiler=compiler, notifier_factory=lambda: notifier)

        notifier.emit(template_dir / "a.tmpl")
        await wait_until(lambda: handle.events_processed == 1)

        diagnostic = handle.errors.drain()
        assert diagnostic.kind is DiagnosticKind.COMPILE_ERROR
        assert diagnostic.message == "auto-reload error: disk on fire"
        assert "RuntimeError" in diagnostic.detail
        assert store.current == "initial"
        assert not handle.done
        await shut_down(handle)

    async def test_swap_waits_for_readers(self, template_dir, store, notifier, wait_until):
        """A reader mid-read finishes on the old set; the swap lands afterwards."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)
        path = template_dir / "a.tmpl"

        async with store.read() as template_set:
            path.write_text("Goodbye")
            notifier.emit(path)
            await asyncio.sleep(0.2)
            assert template_set.render("a.tmpl") == "Hello"
            assert store.generation == 0
            assert handle.events_processed == 0

        await wait_until(lambda: handle.events_processed == 1)
        assert await render(store) == "Goodbye"
        await shut_down(handle)

    async def test_compile_on_start(self, template_dir, notifier, wait_until):
        """compile_on_start reflects disk before the first event."""
        store = ArtifactStore(TemplateSet.empty(template_dir))
        config = ReloadConfig(compile_on_start=True)
        handle = start_auto_reload(store, template_dir, config=config, notifier_factory=lambda: notifier)

        await wait_until(lambda: handle.events_processed == 1)

        assert await render(store) == "Hello"
        await shut_down(handle)


    async def test_swap_failure_is_reported(self, template_dir, notifier, wait_until):
        """A failing swap becomes a COMPILE_ERROR and the loop keeps running."""
        store = ArtifactStore("initial")
        handle = start_auto_reload(store, template_dir, compiler=lambda d: None, notifier_factory=lambda: notifier)

        notifier.emit(template_dir / "a.tmpl")
        await wait_until(lambda: handle.events_processed == 1)

        diagnostic = handle.errors.drain()
        assert diagnostic.kind is DiagnosticKind.COMPILE_ERROR
        assert "cannot swap None" in diagnostic.message
        assert store.current == "initial"
        assert store.generation == 0
        assert not handle.done
        await shut_down(handle)

    async def test_lock_failure_is_reported(self, template_dir, notifier, wait_until):
        """A caller lock that refuses exclusive access leaves the store untouched."""
        store = ArtifactStore("initial", PoisonedLock())
        handle = start_auto_reload(store, template_dir, compiler=lambda d: "new", notifier_factory=lambda: notifier)

        notifier.emit(template_dir / "a.tmpl")
        await wait_until(lambda: handle.events_processed == 1)

        diagnostic = handle.errors.drain()
        assert diagnostic.kind is DiagnosticKind.COMPILE_ERROR
        assert diagnostic.message == "auto-reload error: lock poisoned"
        assert store.current == "initial"
        assert not handle.done
        await shut_down(handle)


class TestSetup:
    """Setup failures end the coordinator before it starts watching."""

    async def test_registration_failure(self, template_dir, store):
        """A failed registration yields exactly one SETUP_ERROR."""
        notifier = QueueNotifier(fail_with=OSError("permission denied"))
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)

        await asyncio.wait_for(handle.wait(), timeout=2.0)

        diagnostics = handle.errors.drain_all()
        assert [d.kind for d in diagnostics] == [DiagnosticKind.SETUP_ERROR]
        assert "permission denied" in diagnostics[0].message
        assert handle.state is CoordinatorState.TERMINATED
        assert handle.events_processed == 0
        assert notifier.released

    async def test_missing_directory(self, tmp_path, store):
        """The default notifier refuses a directory that does not exist."""
        handle = start_auto_reload(store, tmp_path / "missing")

        await asyncio.wait_for(handle.wait(), timeout=2.0)

        diagnostics = handle.errors.drain_all()
        assert [d.kind for d in diagnostics] == [DiagnosticKind.SETUP_ERROR]
        assert "no such directory" in diagnostics[0].message

    async def test_notifier_construction_failure(self, template_dir, store):
        """A notifier that cannot be built is also a setup error."""

        def factory():
            raise OSError("too many open files")

        handle = start_auto_reload(store, template_dir, notifier_factory=factory)
        await asyncio.wait_for(handle.wait(), timeout=2.0)

        diagnostics = handle.errors.drain_all()
        assert [d.kind for d in diagnostics] == [DiagnosticKind.SETUP_ERROR]
        assert diagnostics[0].message == "auto-reload error: too many open files"

    async def test_requires_running_loop(self, template_dir, store):
        """start_auto_reload must be called from inside the event loop."""
        with pytest.raises(RuntimeError):
            await asyncio.to_thread(start_auto_reload, store, template_dir)


    async def test_release_failure_still_reports(self, template_dir, store):
        """A notifier that fails to release still yields its SETUP_ERROR."""
        notifier = BrokenReleaseNotifier(fail_with=OSError("permission denied"))
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)

        await asyncio.wait_for(handle.wait(), timeout=2.0)

        diagnostics = handle.errors.drain_all()
        assert [d.kind for d in diagnostics] == [DiagnosticKind.SETUP_ERROR]
        assert handle.task.exception() is None


class TestShutdown:
    """Closing a notifier stream ends the loop with one SHUTTING_DOWN."""

    async def test_events_stream_closed(self, template_dir, store, notifier):
        """Closure of the event stream terminates the loop."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)

        notifier.events.close()
        await asyncio.wait_for(handle.wait(), timeout=2.0)

        diagnostics = handle.errors.drain_all()
        assert [d.kind for d in diagnostics] == [DiagnosticKind.SHUTTING_DOWN]
        assert diagnostics[0].message == "auto-reloader shutting down"
        assert handle.state is CoordinatorState.TERMINATED
        assert notifier.released

    async def test_errors_stream_closed(self, template_dir, store, notifier):
        """Closure of the error stream terminates the loop too."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)

        notifier.errors.close()
        await asyncio.wait_for(handle.wait(), timeout=2.0)

        assert [d.kind for d in handle.errors.drain_all()] == [DiagnosticKind.SHUTTING_DOWN]

    async def test_nothing_pushed_after_shutdown(self, template_dir, store, notifier):
        """After SHUTTING_DOWN the notifier is released and no events can arrive."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)

        notifier.events.close()
        await asyncio.wait_for(handle.wait(), timeout=2.0)

        with pytest.raises(StreamClosed):
            notifier.emit(template_dir / "a.tmpl")
        with pytest.raises(StreamClosed):
            notifier.report(OSError("late"))
        await asyncio.sleep(0.05)

        assert len(handle.errors) == 1

    async def test_stop(self, template_dir, store, notifier):
        """stop() ends the loop through the normal shutdown path."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)
        await asyncio.sleep(0)

        await handle.stop()
        await asyncio.wait_for(handle.wait(), timeout=2.0)

        assert [d.kind for d in handle.errors.drain_all()] == [DiagnosticKind.SHUTTING_DOWN]
        assert notifier.released

    async def test_stop_before_registration(self, template_dir, store, notifier):
        """A stop requested before the loop starts still ends it cleanly."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)

        await handle.stop()
        await asyncio.wait_for(handle.wait(), timeout=2.0)

        assert [d.kind for d in handle.errors.drain_all()] == [DiagnosticKind.SHUTTING_DOWN]
        assert handle.events_processed == 0

    async def test_cancellation_releases_notifier(self, template_dir, store, notifier, wait_until):
        """The notifier is released even when the task is cancelled."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)
        await wait_until(lambda: handle.state is CoordinatorState.WATCHING)

        handle.task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await handle.wait()

        assert notifier.released
        assert handle.state is CoordinatorState.TERMINATED


    async def test_terminated_when_shutdown_is_reported(self, template_dir, store, notifier, wait_until):
        """The state is already TERMINATED when SHUTTING_DOWN reaches the channel."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)
        await wait_until(lambda: handle.state is CoordinatorState.WATCHING)

        states: list[CoordinatorState] = []
        push = handle.errors.push

        async def recording_push(diagnostic):
            states.append(handle.state)
            await push(diagnostic)

        handle.errors.push = recording_push
        notifier.events.close()
        diagnostic = await asyncio.wait_for(handle.errors.get(), timeout=2.0)

        assert diagnostic.kind is DiagnosticKind.SHUTTING_DOWN
        assert states == [CoordinatorState.TERMINATED]
        await asyncio.wait_for(handle.wait(), timeout=2.0)


class TestNotifierErrors:
    """Notifier-internal errors are reported without ending the loop."""

    async def test_error_is_reported_and_loop_continues(self, template_dir, store, notifier, wait_until):
        """A NOTIFIER_ERROR is pushed and later events still reload."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)

        notifier.report(OSError("event queue overflow"))
        await wait_until(lambda: len(handle.errors) == 1)

        (template_dir / "a.tmpl").write_text("Goodbye")
        notifier.emit(template_dir / "a.tmpl")
        await wait_until(lambda: handle.events_processed == 1)

        diagnostic = handle.errors.drain()
        assert diagnostic.kind is DiagnosticKind.NOTIFIER_ERROR
        assert diagnostic.message == "auto-reload error: event queue overflow"
        assert await render(store) == "Goodbye"
        assert not handle.done
        await shut_down(handle)

    async def test_error_before_closure_is_reported(self, template_dir, store, notifier):
        """An error queued before the streams close is reported before shutdown."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)

        notifier.report(OSError("watch descriptor lost"))
        notifier.events.close()
        notifier.errors.close()
        await asyncio.wait_for(handle.wait(), timeout=2.0)

        kinds = [d.kind for d in handle.errors.drain_all()]
        assert kinds == [DiagnosticKind.NOTIFIER_ERROR, DiagnosticKind.SHUTTING_DOWN]

    async def test_diagnostics_keep_event_order(self, template_dir, store, notifier, wait_until):
        """Diagnostics arrive in the order their causes were observed."""
        handle = start_auto_reload(store, template_dir, notifier_factory=lambda: notifier)
        path = template_dir / "a.tmpl"

        path.write_text("{{ broken")
        notifier.emit(path)
        await wait_until(lambda: handle.events_processed == 1)
        notifier.report(OSError("overflow"))
        await wait_until(lambda: len(handle.errors) == 2)

        kinds = [d.kind for d in handle.errors.drain_all()]
        assert kinds == [DiagnosticKind.COMPILE_ERROR, DiagnosticKind.NOTIFIER_ERROR]
        await shut_down(handle)


    async def test_watcher_crash_reports_then_shuts_down(self, template_dir, store):
        """A crashed watchfiles watcher yields NOTIFIER_ERROR followed by SHUTTING_DOWN."""
        with patch("templateswap.reload.watcher.awatch", failing_awatch):
            handle = start_auto_reload(store, template_dir)
            await asyncio.wait_for(handle.wait(), timeout=2.0)

        diagnostics = handle.errors.drain_all()
        assert [d.kind for d in diagnostics] == [DiagnosticKind.NOTIFIER_ERROR, DiagnosticKind.SHUTTING_DOWN]
        assert diagnostics[0].message == "auto-reload error: inotify watch limit reached"


class TestBackpressure:
    """Behaviour when nobody drains the error channel."""

    @staticmethod
    def failing_compiler(directory: Path) -> str:
        raise ValueError("bad template")

    async def test_block_policy_stalls_on_sixth_failure(self, template_dir, notifier, wait_until):
        """With capacity 5 and BLOCK, the sixth failure stalls the loop until drained."""
        store = ArtifactStore("initial")
        handle = start_auto_reload(
            store, template_dir, compiler=self.failing_compiler, notifier_factory=lambda: notifier
        )

        for _ in range(6):
            notifier.emit(template_dir / "a.tmpl")
        await wait_until(lambda: handle.errors.full() and handle.events_processed == 5)
        await asyncio.sleep(0.05)

        assert handle.events_processed == 5
        assert handle.state is CoordinatorState.COMPILING

        handle.errors.drain()
        await wait_until(lambda: handle.events_processed == 6)
        assert len(handle.errors) == 5
        await shut_down(handle)

    async def test_drop_oldest_policy_never_stalls(self, template_dir, notifier, wait_until):
        """With DROP_OLDEST the loop keeps going and the oldest failure is lost."""
        store = ArtifactStore("initial")
        config = ReloadConfig(error_capacity=5, overflow_policy=OverflowPolicy.DROP_OLDEST)
        handle = start_auto_reload(
            store,
            template_dir,
            config=config,
            compiler=self.failing_compiler,
            notifier_factory=lambda: notifier,
        )

        for _ in range(6):
            notifier.emit(template_dir / "a.tmpl")
        await wait_until(lambda: handle.events_processed == 6)

        assert len(handle.errors) == 5
        assert handle.errors.dropped == 1
        await shut_down(handle)
