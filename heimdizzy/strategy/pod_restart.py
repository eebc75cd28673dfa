"""Restarts the pods serving a `lambda-zip` artifact so they load the upload."""

import asyncio
from collections.abc import Awaitable, Callable
import logging

from ..config import PodRestartConfig
from .base import DeployContext, DeploymentResult, Strategy

__all__ = ["PodRestartStrategy"]

_LOGGER = logging.getLogger(__name__)


class PodRestartStrategy(Strategy):
    """Deletes matching pods and reports the replacements."""

    def __init__(
        self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> None:
        """Initialize PodRestartStrategy."""
        self._sleep = sleep

    async def deploy(self, ctx: DeployContext) -> DeploymentResult:
        settings: PodRestartConfig | None = ctx.target.deployment.lambda_
        await ctx.run_hooks("pre_deploy")
        if settings is None:
            _LOGGER.info("No lambda pod restart configured, skipping deployment")
            await ctx.run_hooks("post_deploy")
            return DeploymentResult(skipped=True)

        namespace = settings.namespace
        selector = settings.selector or f"app={ctx.service_name}-lambda-rie"
        if ctx.dry_run:
            _LOGGER.info(
                "[dry run] Would restart pods in %s matching %s", namespace, selector
            )
            await ctx.run_hooks("post_deploy")
            return DeploymentResult(skipped=True, pod_count=0)

        kubectl = ctx.toolchain.kubectl
        if not await kubectl.available():
            _LOGGER.warning("kubectl not available, skipping pod restart")
            await ctx.run_hooks("post_deploy")
            return DeploymentResult(skipped=True)

        pods = await kubectl.get_pods(namespace, selector)
        if pods.count == 0:
            _LOGGER.info("No pods found with selector %s", selector)
            await ctx.run_hooks("post_deploy")
            return DeploymentResult(pod_count=0)

        _LOGGER.info("Restarting %d pod(s)", pods.count)
        await kubectl.delete_pods(namespace, selector)
        _LOGGER.info("Waiting for pods to start")
        await self._sleep(settings.settle_seconds)
        status = await kubectl.get_pods(namespace, selector)
        _LOGGER.info("Pod status:\n%s", status.status)
        await ctx.run_hooks("post_deploy")
        return DeploymentResult(pod_count=pods.count, pod_status=status.status)
