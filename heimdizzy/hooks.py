"""Runs user defined shell hooks at pipeline checkpoints."""

import logging
from pathlib import Path

from . import command
from .config import HookSpec
from .exceptions import CommandException, HookError

__all__ = ["HookRunner", "HOOK_TIMEOUT"]

_LOGGER = logging.getLogger(__name__)

HOOK_TIMEOUT = 300.0


class HookRunner:
    """Executes ordered hook lists, stopping at the first failure."""

    def __init__(
        self,
        runner: command.Runner = command.run,
        cwd: Path | None = None,
        dry_run: bool = False,
    ) -> None:
        """Initialize HookRunner."""
        self._runner = runner
        self._cwd = cwd
        self._dry_run = dry_run

    async def run(self, hooks: list[HookSpec], phase: str) -> None:
        """Run each hook in order, raising `HookError` when one fails."""
        if not hooks:
            return
        _LOGGER.info("Executing %s hooks", phase)
        for hook in hooks:
            if self._dry_run:
                _LOGGER.info(
                    "[dry run] Would run %s hook %s: %s", phase, hook.name, hook.command
                )
                continue
            _LOGGER.info("Running hook %s", hook.name)
            if hook.description:
                _LOGGER.info("  %s", hook.description)
            cmd = command.shell(
                hook.command,
                cwd=self._cwd,
                exc=CommandException,
                timeout=HOOK_TIMEOUT,
            )
            try:
                output = await self._runner(cmd, None)
            except CommandException as err:
                _LOGGER.error("Hook %s failed", hook.name)
                raise HookError(hook.name, hook.command, str(err)) from err
            if output.strip():
                _LOGGER.info("  Output: %s", output.strip())
            _LOGGER.info("Hook %s completed", hook.name)
        _LOGGER.info("All %s hooks completed successfully", phase)
