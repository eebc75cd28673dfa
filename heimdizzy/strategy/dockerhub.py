"""Publishes a multi-platform image to a public image registry."""

import logging
import os

from ..config import DockerHubConfig
from ..exceptions import CommandException, ConfigurationError, DeploymentError
from .base import DeployContext, DeploymentResult, DockerHubResult, Strategy

__all__ = ["DockerHubStrategy", "image_tags"]

_LOGGER = logging.getLogger(__name__)

BUILDER_NAME = "heimdizzy-builder"
LATEST = "latest"


def image_tags(config: DockerHubConfig, revision: str) -> tuple[str, list[str]]:
    """Return the primary tag and the additional tags, which include `latest`.

    The revision becomes the primary tag unless a specific tag is configured.
    """
    primary = revision if config.tag == LATEST else config.tag
    additional = [tag for tag in config.tags if tag != primary]
    if LATEST not in additional and primary != LATEST:
        additional.append(LATEST)
    return primary, additional


class DockerHubStrategy(Strategy):
    """Builds and pushes every tag for every platform with buildx."""

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        """Initialize DockerHubStrategy."""
        self._environ = environ

    async def deploy(self, ctx: DeployContext) -> DeploymentResult:
        config: DockerHubConfig = ctx.target.deployment.require("dockerhub")
        primary, additional = image_tags(config, ctx.revision)
        result = DockerHubResult(
            repository=config.repository,
            tag=primary,
            additional_tags=additional,
            platforms=list(config.platform),
            pushed=False,
            image_name=f"{config.repository}:{primary}",
        )
        _LOGGER.info(
            "Image %s tags %s for %s",
            config.repository,
            ", ".join([primary, *additional]),
            ", ".join(config.platform),
        )

        await ctx.run_hooks("pre_build")
        await ctx.run_hooks("post_build")
        await ctx.run_hooks("pre_deploy")
        if ctx.dry_run:
            _LOGGER.info("[dry run] Would push %s", result.image_name)
            await ctx.run_hooks("post_deploy")
            return DeploymentResult(dockerhub=result)

        environ = self._environ if self._environ is not None else os.environ
        username = config.username or environ.get("DOCKER_USERNAME")
        password = config.password or environ.get("DOCKER_PASSWORD")
        if not username or not password:
            raise ConfigurationError(
                "Docker Hub credentials required. Set DOCKER_USERNAME and "
                "DOCKER_PASSWORD environment variables or provide in config."
            )

        docker = ctx.toolchain.docker
        try:
            await docker.login(username, password)
            await docker.buildx_use_or_create(BUILDER_NAME)
            await docker.buildx_bootstrap()
            await docker.buildx_push(
                [f"{config.repository}:{tag}" for tag in [primary, *additional]],
                config.platform,
                dockerfile=config.dockerfile,
                build_args={**config.build_args, "GIT_HASH": ctx.revision},
                context=str(ctx.project_root),
            )
        except DeploymentError as err:
            raise DeploymentError(f"Docker Hub push failed: {err}") from err
        finally:
            try:
                await docker.buildx_remove(BUILDER_NAME)
            except CommandException as err:
                _LOGGER.debug("Ignoring failure removing builder: %s", err)

        _LOGGER.info("Pushed %s", result.image_name)
        result.pushed = True
        await ctx.run_hooks("post_deploy")
        return DeploymentResult(dockerhub=result)
