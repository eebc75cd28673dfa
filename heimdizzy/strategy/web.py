"""Static site deployments to object storage behind a CDN."""

import logging
import mimetypes
from pathlib import Path
import time

import aiofiles
import httpx

from .. import command
from ..config import VerificationConfig, WebConfig
from ..exceptions import BuildError, DeploymentError, VerificationError
from ..storage import ObjectStore
from .base import DeployContext, DeploymentResult, Strategy

__all__ = ["WebStrategy", "cache_control_for", "collect_files"]

_LOGGER = logging.getLogger(__name__)

WEB_BUILD_TIMEOUT = 1800.0
DRY_RUN_INVALIDATION = "dry-run-invalidation-id"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def cache_control_for(relative: str, web: WebConfig) -> str:
    """Return the cache policy for a file, HTML is never cached."""
    if relative.endswith(".html") or relative == web.index_file:
        return web.cache_control.html
    return web.cache_control.assets


def collect_files(build_dir: Path) -> list[str]:
    """Return every file below build_dir as a sorted posix relative path."""
    if not build_dir.is_dir():
        raise DeploymentError(f"Build directory not found: {build_dir}")
    return sorted(
        path.relative_to(build_dir).as_posix()
        for path in build_dir.rglob("*")
        if path.is_file()
    )


class WebStrategy(Strategy):
    """Builds a static site, uploads it and verifies the result."""

    async def deploy(self, ctx: DeployContext) -> DeploymentResult:
        web: WebConfig = ctx.target.deployment.require("web")
        started = time.monotonic()
        build_dir = ctx.project_root / web.build_dir

        await ctx.run_hooks("pre_build")
        build_time = await self._build(ctx, web)
        await ctx.run_hooks("post_build")
        await ctx.run_hooks("pre_deploy")

        if ctx.dry_run:
            _LOGGER.info(
                "[dry run] Would upload %s to bucket %s under %s",
                build_dir,
                ctx.target.storage.bucket,
                web.path or "/",
            )
            invalidation_id = None
            if web.cloudfront and web.cloudfront.distribution_id:
                invalidation_id = DRY_RUN_INVALIDATION
            await ctx.run_hooks("post_deploy")
            return DeploymentResult(
                deployed_files=0,
                invalidation_id=invalidation_id,
                build_time=build_time,
                deploy_time=0,
            )

        files = collect_files(build_dir)
        _LOGGER.info("Found %d files to deploy in %s", len(files), build_dir)
        store = ctx.toolchain.object_store(ctx.target.storage)
        deployed = await self._upload(ctx, store, web, build_dir, files)
        invalidation_id = await self._invalidate(ctx, web)
        await self._verify(web.verification, deployed)
        await ctx.run_hooks("post_deploy")

        deploy_time = int((time.monotonic() - started) * 1000)
        _LOGGER.info("Web deployment completed in %dms", deploy_time)
        return DeploymentResult(
            deployed_files=deployed,
            invalidation_id=invalidation_id,
            build_time=build_time,
            deploy_time=deploy_time,
        )

    async def _build(self, ctx: DeployContext, web: WebConfig) -> int | None:
        if not web.build_command:
            return None
        if ctx.dry_run:
            _LOGGER.info("[dry run] Would run build command: %s", web.build_command)
            return 0
        _LOGGER.info("Running build command: %s", web.build_command)
        started = time.monotonic()
        cmd = command.shell(
            web.build_command,
            cwd=ctx.project_root,
            exc=BuildError,
            timeout=WEB_BUILD_TIMEOUT,
        )
        await ctx.runner(cmd, None)
        return int((time.monotonic() - started) * 1000)

    async def _upload(
        self,
        ctx: DeployContext,
        store: ObjectStore,
        web: WebConfig,
        build_dir: Path,
        files: list[str],
    ) -> int:
        deployed_at = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        metadata = {
            "product": ctx.product_name,
            "service": ctx.service_name,
            "deployedAt": deployed_at,
        }
        deployed = 0
        for relative in files:
            key = f"{web.path.rstrip('/')}/{relative}" if web.path else relative
            content_type = mimetypes.guess_type(relative)[0] or DEFAULT_CONTENT_TYPE
            async with aiofiles.open(build_dir / relative, "rb") as asset:
                body = await asset.read()
            await store.put_object(
                key,
                body,
                content_type=content_type,
                metadata=metadata,
                cache_control=cache_control_for(relative, web),
            )
            deployed += 1
            _LOGGER.debug("Uploaded %s (%s)", key, content_type)
        _LOGGER.info("Uploaded %d files to %s", deployed, store.bucket)
        return deployed

    async def _invalidate(self, ctx: DeployContext, web: WebConfig) -> str | None:
        if not web.cloudfront or not web.cloudfront.distribution_id:
            return None
        cdn = ctx.toolchain.cdn(ctx.target.storage.region)
        try:
            invalidation_id = await cdn.create_invalidation(
                web.cloudfront.distribution_id, web.cloudfront.paths
            )
        except DeploymentError as err:
            _LOGGER.warning("%s", err)
            return None
        _LOGGER.info("CloudFront invalidation created: %s", invalidation_id)
        return invalidation_id

    async def _verify(
        self, verification: VerificationConfig | None, deployed: int
    ) -> None:
        """Fail the deployment when the uploaded site does not look right.

        The uploads have already happened at this point and are not undone.
        """
        if verification is None or not verification.enabled:
            return
        check = verification.minio_check
        if check is not None and check.enabled:
            if deployed < check.min_files:
                raise VerificationError(
                    f"Verification failed: Only {deployed} files deployed, "
                    f"expected at least {check.min_files}"
                )
            _LOGGER.info("File count verified: %d files", deployed)

        if not verification.base_url or not verification.endpoints:
            return
        async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
            for endpoint in verification.endpoints:
                url = f"{verification.base_url.rstrip('/')}{endpoint.path}"
                try:
                    response = await client.get(url)
                except httpx.HTTPError as err:
                    raise VerificationError(f"Could not reach {url}: {err}") from err
                if response.status_code != endpoint.expected_status:
                    raise VerificationError(
                        f"Verification failed: {url} returned "
                        f"{response.status_code}, expected {endpoint.expected_status}"
                    )
                if endpoint.contains and endpoint.contains not in response.text:
                    raise VerificationError(
                        f"Verification failed: {url} does not contain "
                        f"'{endpoint.contains}'"
                    )
                _LOGGER.info("Endpoint %s verified", url)
