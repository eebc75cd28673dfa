"""Library for issuing commands using asyncio and returning the result.

Every external tool the pipeline drives (container engine, cluster CLI,
package manager, hook commands) goes through a `Command`. Collaborators accept
a `Runner` so that tests can record the commands instead of executing them.
"""

import asyncio
from collections.abc import Awaitable, Callable
import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
import os

from .exceptions import CommandException, PipelineError

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0

__all__ = [
    "Command",
    "Runner",
    "run",
    "shell",
]


def format_path(path: Path) -> str:
    """Format path for debugging."""
    if path.is_absolute():
        cwd = Path.cwd()
        if path.is_relative_to(cwd):
            rel_path = str(path.relative_to(cwd))
            return f"{rel_path} (abs)"
    return str(path)


@dataclass
class Command:
    """An instance of a command to run."""

    cmd: list[str]
    """Array of command line arguments."""

    cwd: Path | None = None
    """Current working directory."""

    exc: type[PipelineError] = CommandException
    """Exception to throw in case of an error."""

    retcodes: list[int] | None = None
    """Non-zero error codes that are allowed to indicate success."""

    env: dict[str, str] | None = None
    """Environment variables for the subprocess."""

    timeout: float | None = DEFAULT_TIMEOUT
    """Seconds to wait for the command before giving up."""

    @property
    def string(self) -> str:
        """Render the command as a single string."""
        return " ".join([shlex.quote(arg) for arg in self.cmd])

    def __str__(self) -> str:
        """Render as a debug string."""
        cwd: str = ""
        if self.cwd:
            cwd = f"({format_path(self.cwd)}) "
        return f"{cwd}{self.string}"

    async def run(self, stdin: bytes | None = None) -> bytes:
        """Run the command, returning stdout."""
        _LOGGER.debug("Running command: %s", self)
        env = {
            **os.environ,
            **(self.env if self.env else {}),
        }
        proc = await asyncio.create_subprocess_shell(
            self.string,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self.cwd,
            env=env,
        )
        try:
            out, err = await asyncio.wait_for(proc.communicate(stdin), self.timeout)
        except asyncio.TimeoutError as error:
            proc.kill()
            await proc.wait()
            raise self.exc(
                f"Command '{self}' timed out after {self.timeout}s"
            ) from error
        if proc.returncode:
            if self.retcodes and proc.returncode in self.retcodes:
                return out
            errors = [f"Command '{self}' failed with return code {proc.returncode}"]
            if out:
                errors.append(out.decode("utf-8"))
            if err:
                errors.append(err.decode("utf-8"))
            _LOGGER.debug("\n".join(errors))
            raise self.exc("\n".join(errors))
        return out


Runner = Callable[[Command, bytes | None], Awaitable[str]]
"""Executes a command with optional stdin and returns its stdout."""


async def run(cmd: Command, stdin: bytes | None = None) -> str:
    """Run the specified command and return stdout."""
    out = await cmd.run(stdin)
    return out.decode("utf-8") if out else ""


def shell(
    script: str,
    cwd: Path | None = None,
    exc: type[PipelineError] = CommandException,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> Command:
    """Return a command that runs a shell script string."""
    return Command(["sh", "-c", script], cwd=cwd, exc=exc, timeout=timeout)
