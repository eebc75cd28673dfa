"""Managed runtime deployments with migrations, health checks and rollback.

The rollout advances through `ServiceState` in order:

    BUILDING -> PUSHING -> MIGRATING -> ROLLOUT_RESTARTING -> HEALTH_CHECKING
        -> HEALTHY
        -> FAILED -> ROLLING_BACK -> ROLLED_BACK

Any failure once the image push has started triggers exactly one
`kubectl rollout undo`. A failed rollback is logged and the original error is
raised.
"""

import asyncio
from collections.abc import Awaitable, Callable
import datetime
from enum import StrEnum
import json
import logging
from pathlib import Path
import tempfile
import time

import aiofiles
import yaml

from ..config import ContainerConfig, HealthConfig, ServiceRuntimeConfig
from ..exceptions import DeploymentError, PipelineError
from ..kubectl import Kubectl
from ..manifest import migration_job_manifest
from .base import DeployContext, DeploymentResult, ServiceResult, Strategy
from .container import LATEST, push_image

__all__ = ["ServiceStrategy", "ServiceState"]

_LOGGER = logging.getLogger(__name__)

HEALTHY = "healthy"
JOB_COMPLETE = "Complete"


class ServiceState(StrEnum):
    """Rollout states of a managed runtime deployment."""

    BUILDING = "building"
    PUSHING = "pushing"
    MIGRATING = "migrating"
    ROLLOUT_RESTARTING = "rollout-restarting"
    HEALTH_CHECKING = "health-checking"
    HEALTHY = "healthy"
    FAILED = "failed"
    ROLLING_BACK = "rolling-back"
    ROLLED_BACK = "rolled-back"


_TRANSITIONS: dict[ServiceState, set[ServiceState]] = {
    ServiceState.BUILDING: {ServiceState.PUSHING, ServiceState.FAILED},
    ServiceState.PUSHING: {ServiceState.MIGRATING, ServiceState.FAILED},
    ServiceState.MIGRATING: {ServiceState.ROLLOUT_RESTARTING, ServiceState.FAILED},
    ServiceState.ROLLOUT_RESTARTING: {
        ServiceState.HEALTH_CHECKING,
        ServiceState.FAILED,
    },
    ServiceState.HEALTH_CHECKING: {ServiceState.HEALTHY, ServiceState.FAILED},
    ServiceState.FAILED: {ServiceState.ROLLING_BACK},
    ServiceState.ROLLING_BACK: {ServiceState.ROLLED_BACK},
    ServiceState.HEALTHY: set(),
    ServiceState.ROLLED_BACK: set(),
}


class _Rollout:
    """Tracks the current state and rejects transitions that go backwards."""

    def __init__(self) -> None:
        self.state = ServiceState.BUILDING
        self.history = [ServiceState.BUILDING]

    def advance(self, state: ServiceState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Invalid transition {self.state} -> {state}")
        _LOGGER.debug("Service rollout %s -> %s", self.state, state)
        self.state = state
        self.history.append(state)


class ServiceStrategy(Strategy):
    """Deploys a long running service image with a migration step."""

    def __init__(
        self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> None:
        """Initialize ServiceStrategy, sleep is replaceable for polling."""
        self._sleep = sleep
        self.rollout: _Rollout | None = None

    async def deploy(self, ctx: DeployContext) -> DeploymentResult:
        container: ContainerConfig = ctx.target.deployment.require("container")
        runtime = ctx.target.deployment.service or ServiceRuntimeConfig()
        namespace = container.kubernetes.namespace
        name = ctx.service_name
        registry = container.registry
        image_tag = ctx.revision or LATEST
        image_ref = f"{registry.image_name}:{image_tag}"
        timestamp = datetime.datetime.now(datetime.timezone.utc).isoformat()
        job_name = f"{name}-migration-{int(time.time() * 1000)}"

        self.rollout = rollout = _Rollout()
        result = ServiceResult(
            image_name=image_ref,
            image_tag=image_tag,
            namespace=namespace,
            state=rollout.state.value,
            revision=ctx.revision,
            build_timestamp=timestamp,
        )
        if ctx.dry_run:
            _LOGGER.info(
                "[dry run] Would build %s, push to %s, run migration job %s, "
                "restart the deployment in %s and verify health",
                image_ref,
                registry.endpoint,
                job_name,
                namespace,
            )
            for phase in ("pre_build", "post_build", "pre_deploy", "post_deploy"):
                await ctx.run_hooks(phase)
            return DeploymentResult(pod_count=0, service=result)

        docker = ctx.toolchain.docker
        kubectl = ctx.toolchain.kubectl
        local_image = f"{name}:{image_tag}"
        build = ctx.build_config

        await ctx.run_hooks("pre_build")
        await docker.build(
            local_image,
            dockerfile=build.dockerfile if build else "Dockerfile",
            build_args={"GIT_SHA": ctx.revision, "BUILD_TIMESTAMP": timestamp},
            cwd=ctx.project_root,
        )
        await ctx.run_hooks("post_build")

        try:
            rollout.advance(ServiceState.PUSHING)
            await push_image(
                docker, kubectl, registry, local_image, [image_tag, LATEST]
            )
            await ctx.run_hooks("pre_deploy")

            rollout.advance(ServiceState.MIGRATING)
            if runtime.migration.enabled:
                await self._run_migration(
                    ctx, container, runtime, job_name, image_ref, timestamp
                )
                result.migration_completed = True
            else:
                _LOGGER.info("Migrations disabled, skipping migration job")

            rollout.advance(ServiceState.ROLLOUT_RESTARTING)
            await kubectl.rollout_restart(namespace, name)
            await kubectl.rollout_status(namespace, name, runtime.migration.timeout)
            result.deployment_restarted = True

            rollout.advance(ServiceState.HEALTH_CHECKING)
            await self._verify_health(ctx, namespace, runtime.health)
            result.health_check_passed = True
            rollout.advance(ServiceState.HEALTHY)
        except Exception as err:
            rollout.advance(ServiceState.FAILED)
            _LOGGER.error("Service deployment failed: %s", err)
            await self._rollback(ctx, namespace, name)
            result.state = rollout.state.value
            if isinstance(err, PipelineError):
                raise
            raise DeploymentError(f"Service deployment failed: {err}") from err

        try:
            pods = await kubectl.get_pods(namespace, f"app={name}")
            result.pod_count = pods.count
        except DeploymentError as err:
            _LOGGER.warning("Unable to count pods: %s", err)
        await ctx.run_hooks("post_deploy")
        result.state = rollout.state.value
        return DeploymentResult(pod_count=result.pod_count, service=result)

    async def _rollback(self, ctx: DeployContext, namespace: str, name: str) -> None:
        assert self.rollout is not None
        self.rollout.advance(ServiceState.ROLLING_BACK)
        _LOGGER.warning("Attempting rollback of deployment/%s", name)
        try:
            await ctx.toolchain.kubectl.rollout_undo(namespace, name)
        except Exception as err:  # noqa: BLE001
            _LOGGER.error("Rollback failed: %s", err)
        else:
            _LOGGER.warning("Rollback completed")
        self.rollout.advance(ServiceState.ROLLED_BACK)

    async def _run_migration(
        self,
        ctx: DeployContext,
        container: ContainerConfig,
        runtime: ServiceRuntimeConfig,
        job_name: str,
        image: str,
        timestamp: str,
    ) -> None:
        kubectl = ctx.toolchain.kubectl
        namespace = container.kubernetes.namespace
        doc = migration_job_manifest(
            ctx.service_name,
            job_name,
            image,
            container.kubernetes,
            runtime.migration,
            ctx.revision,
            timestamp,
        )
        with tempfile.TemporaryDirectory(prefix="heimdizzy-") as tmp_dir:
            path = Path(tmp_dir) / f"{job_name}.yaml"
            async with aiofiles.open(path, mode="w") as job_file:
                await job_file.write(yaml.dump(doc, sort_keys=False))
            await kubectl.apply_file(path)

        _LOGGER.info("Waiting for migration job %s to complete", job_name)
        await kubectl.wait_job(namespace, job_name, runtime.migration.timeout)
        condition = await kubectl.job_condition(namespace, job_name)
        if condition != JOB_COMPLETE:
            logs = await kubectl.job_logs(namespace, job_name)
            _LOGGER.error("Migration job failed. Logs:\n%s", logs)
            raise DeploymentError(f"Migration job {job_name} failed: {condition}")
        await kubectl.delete_job(namespace, job_name)
        _LOGGER.info("Migrations completed successfully")

    async def _verify_health(
        self, ctx: DeployContext, namespace: str, health: HealthConfig
    ) -> None:
        kubectl = ctx.toolchain.kubectl
        selector = f"app={ctx.service_name}"
        url = f"http://localhost:{health.port}{health.path}"
        for attempt in range(1, health.attempts + 1):
            status = await self._probe(kubectl, namespace, selector, url, ctx.revision)
            if status == HEALTHY:
                _LOGGER.info("Health check passed")
                return
            _LOGGER.info(
                "Attempt %d/%d: %s", attempt, health.attempts, status or "no pods found"
            )
            if attempt < health.attempts:
                await self._sleep(health.interval)
        raise DeploymentError(
            f"Health check failed after {health.attempts} attempts"
        )

    async def _probe(
        self, kubectl: Kubectl, namespace: str, selector: str, url: str, revision: str
    ) -> str | None:
        """Return `healthy` or a description of why the probe failed."""
        try:
            pod = await kubectl.first_pod_name(namespace, selector)
            if not pod:
                return None
            response = await kubectl.exec(namespace, pod, ["curl", "-s", url])
        except PipelineError as err:
            return f"health check failed ({err})"
        try:
            data = json.loads(response or "{}")
        except json.JSONDecodeError:
            return "invalid health response"
        if not isinstance(data, dict) or data.get("status") != HEALTHY:
            return "service not healthy yet"
        if (git_hash := data.get("git_hash")) and git_hash != revision:
            _LOGGER.warning(
                "Git hash mismatch: expected %s, got %s", revision, git_hash
            )
        for dependency, dep_status in (data.get("dependencies") or {}).items():
            _LOGGER.info("  Dependency %s: %s", dependency, dep_status)
        return HEALTHY
