"""Builds the binary artifact for `lambda-zip` deployments.

The binary is built either inside the container engine, copying `/bootstrap`
out of the build image, or directly with `cargo`. The build image is owned by
the run's `ResourceScope` so it is removed even when the pipeline fails.
"""

from dataclasses import dataclass
import datetime
import logging
from pathlib import Path
import time

from aiofiles.ospath import exists, isfile
from aiofiles.os import makedirs

from . import command
from .cleanup import ResourceScope
from .config import BuildConfig
from .docker import BUILD_TIMEOUT, Docker
from .exceptions import BuildError, CommandException

__all__ = ["Builder", "BuildArtifact", "find_service_root"]

_LOGGER = logging.getLogger(__name__)

BUILD_IMAGE_PREFIX = "heimdizzy-build-"
BOOTSTRAP = "bootstrap"
DRY_RUN_LOCATION = "<dry-run>"


@dataclass(frozen=True)
class BuildArtifact:
    """Output of a build, never modified once created."""

    location: str
    """Path to the binary, or an image reference."""

    revision: str
    """Source revision the artifact was built from."""

    build_id: str
    """Millisecond timestamp joined with the revision prefix."""

    timestamp: str
    """ISO 8601 build time."""

    @classmethod
    def create(cls, location: str, revision: str) -> "BuildArtifact":
        """Create an artifact stamped with the current time."""
        now = datetime.datetime.now(datetime.timezone.utc)
        return cls(
            location=location,
            revision=revision,
            build_id=f"{int(now.timestamp() * 1000)}-{revision[:8]}",
            timestamp=now.isoformat(),
        )


def find_service_root(start: Path) -> Path:
    """Return the nearest directory at or above start containing `Cargo.toml`."""
    start = start.resolve()
    for directory in [start, *start.parents]:
        if (directory / "Cargo.toml").is_file():
            return directory
    raise BuildError("Could not find service root (no Cargo.toml found)")


class Builder:
    """Produces a `BuildArtifact` for a service."""

    def __init__(
        self,
        config: BuildConfig,
        project_root: Path,
        docker: Docker,
        scope: ResourceScope,
        runner: command.Runner = command.run,
        dry_run: bool = False,
    ) -> None:
        """Initialize Builder."""
        self._config = config
        self._project_root = project_root
        self._docker = docker
        self._scope = scope
        self._runner = runner
        self._dry_run = dry_run

    async def build(self, revision: str) -> BuildArtifact:
        """Build the binary and return the artifact describing it."""
        if self._dry_run:
            _LOGGER.info(
                "[dry run] Would build %s for %s (features: %s)",
                self._config.binary_name,
                self._config.platform,
                ", ".join(self._config.features or []) or "default",
            )
            return BuildArtifact.create(DRY_RUN_LOCATION, revision)

        service_root = find_service_root(self._project_root)
        target_dir = service_root / "target"
        await makedirs(target_dir, exist_ok=True)

        if self._config.use_docker:
            binary = await self._build_with_docker(service_root, target_dir)
        else:
            binary = await self._build_with_cargo(service_root)

        if not await isfile(binary):
            raise BuildError(f"Build did not produce binary at {binary}")
        _LOGGER.info("Built %s", binary)
        return BuildArtifact.create(str(binary), revision)

    async def existing_artifact(self, revision: str) -> BuildArtifact:
        """Locate a previously built binary when the build phase is skipped."""
        if self._dry_run:
            return BuildArtifact.create(DRY_RUN_LOCATION, revision)
        service_root = find_service_root(self._project_root)
        candidates = [
            service_root / "target" / BOOTSTRAP,
            service_root
            / "target"
            / self._config.target_triple
            / "release"
            / self._config.binary_name,
        ]
        for candidate in candidates:
            if await isfile(candidate):
                _LOGGER.info("Using existing binary %s", candidate)
                return BuildArtifact.create(str(candidate), revision)
        raise BuildError(
            "No previously built binary found; run without --skip-build first"
        )

    async def _build_with_docker(self, service_root: Path, target_dir: Path) -> Path:
        dockerfile = service_root / self._config.dockerfile
        if not await exists(dockerfile):
            raise BuildError(f"Dockerfile not found: {dockerfile}")

        image = f"{BUILD_IMAGE_PREFIX}{int(time.time() * 1000)}"
        handle = self._scope.acquire(image, lambda: self._remove_build_image(image))
        bootstrap = target_dir / BOOTSTRAP
        _LOGGER.info("Building with container image %s", image)
        try:
            await self._docker.build(
                image,
                dockerfile=self._config.dockerfile,
                target=self._config.target,
                cwd=service_root,
            )
            await self._docker.copy_from_image(image, f"/{BOOTSTRAP}", bootstrap)
        except BuildError:
            await handle.release()
            raise
        except CommandException as err:
            await handle.release()
            raise BuildError(f"Docker build failed: {err}") from err
        if self._config.cleanup_container:
            await handle.release()
        return bootstrap

    async def _remove_build_image(self, image: str) -> None:
        _LOGGER.info("Cleaning up build image %s", image)
        try:
            await self._docker.remove_image(image)
            await self._docker.builder_prune()
        except CommandException as err:
            _LOGGER.warning("Failed to remove build image %s: %s", image, err)

    async def _build_with_cargo(self, service_root: Path) -> Path:
        triple = self._config.target_triple
        args = [
            "cargo",
            "build",
            "--release",
            "--bin",
            self._config.binary_name,
            "--target",
            triple,
        ]
        if self._config.features:
            args.extend(["--features", ",".join(self._config.features)])
        await self._runner(
            command.Command(
                args, cwd=service_root, exc=BuildError, timeout=BUILD_TIMEOUT
            ),
            None,
        )
        return service_root / "target" / triple / "release" / self._config.binary_name
