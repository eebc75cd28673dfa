"""Publishes the project as a package to an npm registry."""

import json
import logging
import os
import re

import aiofiles
from aiofiles.os import remove

from ..config import NpmConfig
from ..exceptions import ConfigurationError, DeploymentError
from .base import DeployContext, DeploymentResult, NpmResult, Strategy

__all__ = ["NpmStrategy"]

_LOGGER = logging.getLogger(__name__)

PACKAGE_JSON = "package.json"
NPMRC = ".npmrc"
TOKEN_ENV = "NPM_TOKEN"


def npmrc_content(registry: str, token: str) -> str:
    """Return the `.npmrc` line authenticating with the registry."""
    return f"{re.sub(r'^https?:', '', registry)}:_authToken={token}\n"


class NpmStrategy(Strategy):
    """Publishes `package.json` in the project root."""

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        """Initialize NpmStrategy."""
        self._environ = environ

    async def deploy(self, ctx: DeployContext) -> DeploymentResult:
        npm: NpmConfig = ctx.target.deployment.require("npm")
        package_name, version = await self._read_package(ctx)
        _LOGGER.info(
            "Package %s@%s to %s (tag %s, access %s)",
            package_name,
            version,
            npm.registry,
            npm.tag,
            npm.access,
        )
        result = NpmResult(
            package_name=package_name,
            version=version,
            registry=npm.registry,
            tag=npm.tag,
            published=False,
        )

        await ctx.run_hooks("pre_build")
        await ctx.run_hooks("post_build")
        await ctx.run_hooks("pre_deploy")
        if ctx.dry_run or npm.dry_run:
            _LOGGER.info("[dry run] Would publish %s@%s", package_name, version)
            await ctx.run_hooks("post_deploy")
            return DeploymentResult(npm=result)

        environ = self._environ if self._environ is not None else os.environ
        if not (token := npm.token or environ.get(TOKEN_ENV)):
            raise ConfigurationError(
                "NPM authentication token required. Set NPM_TOKEN environment "
                "variable or provide token in config."
            )
        npmrc = ctx.project_root / NPMRC
        async with aiofiles.open(npmrc, mode="w") as npmrc_file:
            await npmrc_file.write(npmrc_content(npm.registry, token))
        try:
            await ctx.toolchain.npm.publish(
                ctx.project_root,
                npm.registry,
                tag=npm.tag,
                access=npm.access,
                otp=npm.otp,
            )
        except DeploymentError as err:
            raise DeploymentError(f"NPM publish failed: {err}") from err
        finally:
            try:
                await remove(npmrc)
            except FileNotFoundError:
                pass
        _LOGGER.info("Published %s@%s to %s", package_name, version, npm.registry)
        result.published = True
        await ctx.run_hooks("post_deploy")
        return DeploymentResult(npm=result)

    async def _read_package(self, ctx: DeployContext) -> tuple[str, str]:
        path = ctx.project_root / PACKAGE_JSON
        try:
            async with aiofiles.open(path, encoding="utf-8") as package_file:
                package = json.loads(await package_file.read())
        except (OSError, json.JSONDecodeError) as err:
            raise ConfigurationError(f"Unable to read {path}: {err}") from err
        name, version = package.get("name"), package.get("version")
        if not name or not version:
            raise ConfigurationError(
                "Package name and version are required in package.json"
            )
        return name, version
