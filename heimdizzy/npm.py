"""Library for driving the `npm` CLI."""

import logging
from pathlib import Path

from . import command
from .exceptions import DeploymentError

__all__ = ["Npm", "NPM_BIN"]

_LOGGER = logging.getLogger(__name__)

NPM_BIN = "npm"
PUBLISH_TIMEOUT = 600.0


class Npm:
    """Wrapper around the `npm` CLI."""

    def __init__(self, runner: command.Runner = command.run) -> None:
        """Initialize Npm."""
        self._runner = runner

    async def publish(
        self,
        cwd: Path,
        registry: str,
        tag: str = "latest",
        access: str | None = None,
        otp: str | None = None,
    ) -> None:
        """Publish the package in cwd."""
        args = [NPM_BIN, "publish", "--registry", registry]
        if tag != "latest":
            args.extend(["--tag", tag])
        if access in ("public", "restricted"):
            args.extend(["--access", access])
        if otp:
            args.extend(["--otp", otp])
        _LOGGER.info("Publishing package from %s", cwd)
        await self._runner(
            command.Command(
                args, cwd=cwd, exc=DeploymentError, timeout=PUBLISH_TIMEOUT
            ),
            None,
        )
