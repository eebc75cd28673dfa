"""Library for driving the container engine CLI.

Each method issues one `docker` subcommand through the injected runner and
raises the configured exception type on failure.
"""

import logging
from pathlib import Path

from . import command
from .exceptions import BuildError, CommandException, DeploymentError, PipelineError

__all__ = ["Docker", "DOCKER_BIN", "BUILD_TIMEOUT"]

_LOGGER = logging.getLogger(__name__)

DOCKER_BIN = "docker"
BUILD_TIMEOUT = 3600.0


class Docker:
    """Wrapper around the `docker` CLI."""

    def __init__(
        self,
        runner: command.Runner = command.run,
        cwd: Path | None = None,
    ) -> None:
        """Initialize Docker."""
        self._runner = runner
        self._cwd = cwd

    async def _run(
        self,
        args: list[str],
        exc: type[PipelineError] = DeploymentError,
        timeout: float | None = command.DEFAULT_TIMEOUT,
        stdin: bytes | None = None,
        cwd: Path | None = None,
    ) -> str:
        cmd = command.Command(
            [DOCKER_BIN, *args], cwd=cwd or self._cwd, exc=exc, timeout=timeout
        )
        return await self._runner(cmd, stdin)

    async def build(
        self,
        tag: str,
        dockerfile: str = "Dockerfile",
        build_args: dict[str, str] | None = None,
        target: str | None = None,
        platform: str | None = None,
        context: str = ".",
        cwd: Path | None = None,
    ) -> None:
        """Build an image from a Dockerfile."""
        args = ["build", "-f", dockerfile]
        for key, value in (build_args or {}).items():
            args.extend(["--build-arg", f"{key}={value}"])
        if target:
            args.extend(["--target", target])
        if platform:
            args.extend(["--platform", platform])
        args.extend(["-t", tag, context])
        _LOGGER.info("Building image %s", tag)
        await self._run(args, exc=BuildError, timeout=BUILD_TIMEOUT, cwd=cwd)

    async def tag(self, source: str, target: str) -> None:
        """Create a tag that refers to the source image."""
        await self._run(["tag", source, target])

    async def push(self, image: str) -> None:
        """Push an image to its registry."""
        _LOGGER.info("Pushing %s", image)
        await self._run(["push", image], timeout=BUILD_TIMEOUT)

    async def remove_image(self, image: str) -> None:
        """Remove a local image."""
        await self._run(["rmi", image], exc=CommandException)

    async def list_images(self) -> list[str]:
        """Return local image references as `repository:tag`."""
        out = await self._run(
            ["images", "--format", "{{.Repository}}:{{.Tag}}"], exc=CommandException
        )
        return [line.strip() for line in out.splitlines() if line.strip()]

    async def login(
        self, username: str, password: str, registry: str | None = None
    ) -> None:
        """Authenticate with a registry, passing the password on stdin."""
        args = ["login"]
        if registry:
            args.append(registry)
        args.extend(["-u", username, "--password-stdin"])
        await self._run(args, stdin=password.encode("utf-8"))

    async def copy_from_image(self, image: str, source: str, dest: Path) -> None:
        """Copy a file out of an image using a throwaway container."""
        mount = f"{dest.parent.resolve()}:/output"
        await self._run(
            [
                "run",
                "--rm",
                "-v",
                mount,
                "--entrypoint",
                "cp",
                image,
                source,
                f"/output/{dest.name}",
            ],
            exc=BuildError,
        )

    async def builder_prune(self) -> None:
        """Remove dangling build cache."""
        await self._run(["builder", "prune", "-f"], exc=CommandException)

    async def buildx_use_or_create(self, name: str) -> None:
        """Select the named buildx builder, creating it when it does not exist."""
        try:
            await self._run(["buildx", "create", "--name", name, "--use"])
        except DeploymentError:
            _LOGGER.debug("Builder %s exists, selecting it", name)
            await self._run(["buildx", "use", name])

    async def buildx_bootstrap(self) -> None:
        """Start the selected buildx builder."""
        await self._run(["buildx", "inspect", "--bootstrap"])

    async def buildx_push(
        self,
        tags: list[str],
        platforms: list[str],
        dockerfile: str = "Dockerfile",
        build_args: dict[str, str] | None = None,
        context: str = ".",
    ) -> None:
        """Build for several platforms and push every tag."""
        args = ["buildx", "build", "--push", "--platform", ",".join(platforms)]
        for tag in tags:
            args.extend(["-t", tag])
        for key, value in (build_args or {}).items():
            args.extend(["--build-arg", f"{key}={value}"])
        args.extend(["-f", dockerfile, context])
        await self._run(args, timeout=BUILD_TIMEOUT)

    async def buildx_remove(self, name: str) -> None:
        """Remove a buildx builder."""
        await self._run(["buildx", "rm", name], exc=CommandException)
