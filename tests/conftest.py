"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest


@pytest.fixture
def template_dir(tmp_path: Path) -> Path:
    """A template directory holding a single a.tmpl that renders Hello."""
    directory = tmp_path / "templates"
    directory.mkdir()
    (directory / "a.tmpl").write_text("Hello")
    return directory


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds, failing the test on timeout."""

    async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> None:
        async with asyncio.timeout(timeout):
            while not predicate():
                await asyncio.sleep(interval)

    return _wait_until
