"""Scoped ownership of resources acquired during a pipeline run.

A `ResourceScope` is entered once at the top of a run. Collaborators register a
release callback when they acquire something that must not outlive the run,
such as a locally built image, and receive a `ResourceHandle`. Releasing a
handle early is allowed and releasing it again is a no-op. When the scope
exits, on success, failure or cancellation, every outstanding handle is
released in reverse order of acquisition.
"""

from collections.abc import Awaitable, Callable
import logging
from types import TracebackType
from typing import Self

__all__ = ["ResourceScope", "ResourceHandle"]

_LOGGER = logging.getLogger(__name__)

ReleaseCallback = Callable[[], Awaitable[None]]


class ResourceHandle:
    """A single acquired resource and its release callback."""

    def __init__(self, name: str, callback: ReleaseCallback) -> None:
        """Initialize ResourceHandle."""
        self.name = name
        self._callback = callback
        self._released = False

    @property
    def released(self) -> bool:
        """True once the release callback has been invoked."""
        return self._released

    async def release(self) -> None:
        """Invoke the release callback at most once."""
        if self._released:
            return
        self._released = True
        _LOGGER.debug("Releasing %s", self.name)
        await self._callback()


class ResourceScope:
    """Async context manager that releases acquired resources on exit."""

    def __init__(self) -> None:
        """Initialize ResourceScope."""
        self._handles: list[ResourceHandle] = []
        self._closed = False

    def acquire(self, name: str, callback: ReleaseCallback) -> ResourceHandle:
        """Register a resource to be released when the scope closes."""
        handle = ResourceHandle(name, callback)
        self._handles.append(handle)
        _LOGGER.debug("Acquired %s", name)
        return handle

    @property
    def outstanding(self) -> list[str]:
        """Names of handles that have not been released."""
        return [handle.name for handle in self._handles if not handle.released]

    async def close(self) -> None:
        """Release every outstanding handle, newest first."""
        if self._closed:
            return
        self._closed = True
        for handle in reversed(self._handles):
            if handle.released:
                continue
            try:
                await handle.release()
            except Exception as err:  # noqa: BLE001
                _LOGGER.warning("Failed to release %s: %s", handle.name, err)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
