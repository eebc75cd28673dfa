"""Tests for resource scopes."""

import asyncio

import pytest

from heimdizzy.cleanup import ResourceScope


class Recorder:
    """Records release callbacks."""

    def __init__(self) -> None:
        self.released: list[str] = []

    def callback(self, name: str, fail: bool = False):  # type: ignore[no-untyped-def]
        async def release() -> None:
            self.released.append(name)
            if fail:
                raise RuntimeError(f"{name} failed")

        return release


async def test_release_in_reverse_order() -> None:
    """Test outstanding handles are released newest first on exit."""
    recorder = Recorder()
    async with ResourceScope() as scope:
        scope.acquire("first", recorder.callback("first"))
        scope.acquire("second", recorder.callback("second"))
        assert scope.outstanding == ["first", "second"]
    assert recorder.released == ["second", "first"]
    assert scope.outstanding == []


async def test_release_is_idempotent() -> None:
    """Test a handle released early is not released again."""
    recorder = Recorder()
    async with ResourceScope() as scope:
        handle = scope.acquire("image", recorder.callback("image"))
        await handle.release()
        await handle.release()
        assert handle.released
    assert recorder.released == ["image"]


async def test_release_on_failure() -> None:
    """Test resources are released when the body raises."""
    recorder = Recorder()
    with pytest.raises(ValueError):
        async with ResourceScope() as scope:
            scope.acquire("image", recorder.callback("image"))
            raise ValueError("boom")
    assert recorder.released == ["image"]


async def test_release_on_cancellation() -> None:
    """Test resources are released when the run is cancelled."""
    recorder = Recorder()
    acquired = asyncio.Event()

    async def pipeline() -> None:
        async with ResourceScope() as scope:
            scope.acquire("image", recorder.callback("image"))
            acquired.set()
            await asyncio.sleep(60)

    task = asyncio.create_task(pipeline())
    await acquired.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert recorder.released == ["image"]


async def test_failed_release_continues() -> None:
    """Test a failing callback does not prevent the others."""
    recorder = Recorder()
    scope = ResourceScope()
    scope.acquire("first", recorder.callback("first"))
    scope.acquire("second", recorder.callback("second", fail=True))
    await scope.close()
    await scope.close()
    assert recorder.released == ["second", "first"]
