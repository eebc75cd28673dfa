"""Deployment strategies, one per deployment type.

A strategy takes the `DeployContext` of a pipeline run and applies the
artifact to its target system, always returning a `DeploymentResult`. The type
tag of the target selects the strategy with `select_strategy`; an unknown tag
has no strategy and the deployment is reported as skipped.
"""

import logging

from ..config import DeploymentType
from .base import (
    ContainerResult,
    DeployContext,
    DeploymentResult,
    DockerHubResult,
    NpmResult,
    ServiceResult,
    Strategy,
    Toolchain,
)
from .container import ContainerStrategy
from .dockerhub import DockerHubStrategy
from .npm import NpmStrategy
from .pod_restart import PodRestartStrategy
from .service import ServiceStrategy
from .web import WebStrategy

__all__ = [
    "Strategy",
    "DeployContext",
    "Toolchain",
    "DeploymentResult",
    "ContainerResult",
    "ServiceResult",
    "NpmResult",
    "DockerHubResult",
    "select_strategy",
    "dispatch",
]

_LOGGER = logging.getLogger(__name__)


def select_strategy(deployment_type: DeploymentType | None) -> Strategy | None:
    """Return the strategy for a deployment type, or None if unknown."""
    match deployment_type:
        case DeploymentType.LAMBDA_ZIP:
            return PodRestartStrategy()
        case DeploymentType.CONTAINER:
            return ContainerStrategy()
        case DeploymentType.WEB:
            return WebStrategy()
        case DeploymentType.NPM:
            return NpmStrategy()
        case DeploymentType.DOCKERHUB:
            return DockerHubStrategy()
        case DeploymentType.SERVICE:
            return ServiceStrategy()
        case None:
            return None


async def dispatch(
    ctx: DeployContext, strategy: Strategy | None = None
) -> DeploymentResult:
    """Run the strategy selected by the target's deployment type."""
    spec = ctx.target.deployment
    if strategy is None:
        strategy = select_strategy(spec.deployment_type)
    if strategy is None:
        _LOGGER.warning(
            "Deployment type '%s' is not supported, skipping deployment", spec.type
        )
        return DeploymentResult(skipped=True)
    _LOGGER.info("Deploying %s with %s", ctx.service_name, type(strategy).__name__)
    return await strategy.deploy(ctx)
