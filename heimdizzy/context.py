"""Utilities for tracing and timing pipeline phases."""

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

__all__ = ["trace_context", "Stopwatch"]


trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")


@dataclass
class Stopwatch:
    """Elapsed time of a traced phase."""

    start: float
    end: float | None = None

    @property
    def elapsed_ms(self) -> int:
        """Milliseconds since the phase started, or its total once finished."""
        end = self.end if self.end is not None else perf_counter()
        return int((end - self.start) * 1000)


@contextmanager
def trace_context(name: str) -> Generator[Stopwatch, None, None]:
    """Log entry and exit of a named phase, nested under any enclosing phase."""
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    watch = Stopwatch(start=perf_counter())
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield watch
    finally:
        watch.end = perf_counter()
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, watch.elapsed_ms / 1000)
