"""Orchestrator for heimdizzy.

The orchestrator runs the deployment pipeline for one environment:

- Select the deployment target for the environment
- Resolve the source revision
- Build and upload the artifact when the deployment type uses one
- Dispatch to the deployment strategy for the target's type
- Emit a notification at each checkpoint

Every resource acquired during a run is owned by a `ResourceScope` that is
released exactly once when the run ends, whether it succeeded, failed or was
cancelled.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
import time

import httpx

from . import command
from .builder import BuildArtifact, Builder
from .cleanup import ResourceScope
from .config import BuildConfig, DeploymentTarget, DeploymentType, HeimdizzyConfig
from .context import trace_context
from .exceptions import PipelineError
from .hooks import HookRunner
from .notify import NotificationEvent, Notifier
from .publisher import Publisher
from .strategy import DeployContext, DeploymentResult, Strategy, Toolchain, dispatch
from .strategy.base import ResultModel

__all__ = [
    "Orchestrator",
    "DeployOptions",
    "PipelineReport",
    "BUILD_TYPES",
]

_LOGGER = logging.getLogger(__name__)

BUILD_TYPES = {DeploymentType.LAMBDA_ZIP}
"""Deployment types that use the build and upload phases."""

RESTART_TYPES = {DeploymentType.SERVICE, DeploymentType.LAMBDA_ZIP}


@dataclass
class DeployOptions:
    """Options for a pipeline run.

    Attributes:
        dry_run: Log side effects instead of performing them.
        skip_build: Reuse a previously built artifact.
        skip_upload: Do not upload the artifact.
        product: Overrides the product reported in notifications.
    """

    dry_run: bool = False
    skip_build: bool = False
    skip_upload: bool = False
    product: str | None = None


@dataclass
class PipelineReport(ResultModel):
    """Aggregated outcome of a successful pipeline run."""

    service: str
    environment: str
    revision: str
    deployment_type: str
    dry_run: bool
    result: DeploymentResult
    duration: int = 0
    """Milliseconds from start to finish."""

    build_id: str | None = None
    artifact_location: str | None = None
    artifact_uri: str | None = None


@dataclass
class _Run:
    """State of one pipeline run."""

    target: DeploymentTarget
    options: DeployOptions
    notifier: Notifier
    scope: ResourceScope
    hooks: HookRunner
    revision: str = ""
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class Orchestrator:
    """Runs deployment pipelines for a loaded configuration."""

    def __init__(
        self,
        config: HeimdizzyConfig,
        project_root: Path | None = None,
        toolchain: Toolchain | None = None,
        runner: command.Runner = command.run,
        http_client: httpx.AsyncClient | None = None,
        strategy: Strategy | None = None,
    ) -> None:
        """Initialize the orchestrator.

        A strategy may be given to replace the one selected by deployment type.
        """
        self._config = config
        self._toolchain = toolchain or Toolchain()
        self._project_root = project_root or self._resolve_project_root()
        self._runner = runner
        self._http_client = http_client
        self._strategy = strategy

    def _resolve_project_root(self) -> Path:
        if self._config.global_.project_root:
            return Path(self._config.global_.project_root)
        return self._toolchain.git.root() or Path.cwd()

    def _new_run(
        self, environment: str, options: DeployOptions, scope: ResourceScope
    ) -> _Run:
        target = self._config.target(environment)
        service = self._config.service
        notifier = Notifier(
            target.notifications,
            service=service.name,
            product=options.product or service.product or service.name,
            environment=environment,
            client=self._http_client,
        )
        hooks = HookRunner(
            self._runner, cwd=self._project_root, dry_run=options.dry_run
        )
        return _Run(
            target=target, options=options, notifier=notifier, scope=scope, hooks=hooks
        )

    def _builder(self, run: _Run) -> Builder:
        return Builder(
            self._config.build_config(run.target) or BuildConfig(),
            self._project_root,
            self._toolchain.docker,
            run.scope,
            runner=self._runner,
            dry_run=run.options.dry_run,
        )

    async def run(
        self, environment: str, options: DeployOptions | None = None
    ) -> PipelineReport:
        """Run the full pipeline for an environment."""
        options = options or DeployOptions()
        async with ResourceScope() as scope:
            run = self._new_run(environment, options, scope)
            try:
                return await self._run_pipeline(run, environment)
            except PipelineError as err:
                await self._notify_error(run, environment, err)
                raise
            except Exception as err:
                await self._notify_error(run, environment, err)
                raise PipelineError(f"Deployment failed: {err}") from err

    async def build(
        self, environment: str, options: DeployOptions | None = None
    ) -> BuildArtifact:
        """Run only the build phase, with its hooks, for an environment."""
        options = options or DeployOptions()
        async with ResourceScope() as scope:
            run = self._new_run(environment, options, scope)
            run.revision = self._toolchain.git.revision()
            return await self._build(run)

    async def _notify_error(self, run: _Run, environment: str, err: Exception) -> None:
        _LOGGER.error("Deployment failed: %s", err)
        await run.notifier.notify(
            NotificationEvent.DEPLOY_ERROR,
            f"Failed to deploy {self._config.service.name} to {environment}",
            error=str(err),
            duration=run.elapsed_ms,
        )

    async def _run_pipeline(self, run: _Run, environment: str) -> PipelineReport:
        service = self._config.service.name
        options = run.options
        deployment = run.target.deployment
        deployment_type = deployment.deployment_type
        notifier = run.notifier

        run.revision = self._toolchain.git.revision()
        _LOGGER.info("Deploying %s (%s) to %s", service, run.revision, environment)
        await notifier.notify(
            NotificationEvent.DEPLOY_START,
            f"Starting deployment of {service} to {environment}",
            git_hash=run.revision,
        )
        if options.dry_run:
            await notifier.notify(
                NotificationEvent.DRY_RUN,
                f"Dry run deployment of {service} to {environment}",
            )

        applies = deployment_type in BUILD_TYPES
        artifact: BuildArtifact | None = None
        if options.skip_build:
            _LOGGER.info("Build skipped")
            await notifier.notify(
                NotificationEvent.BUILD_SKIPPED, f"Build skipped for {service}"
            )
        elif not applies:
            _LOGGER.info("No build phase for deployment type '%s'", deployment.type)
        elif self._config.build_config(run.target) is None:
            _LOGGER.info("No build configuration, skipping build phase")
        else:
            artifact = await self._build(run)

        artifact_uri: str | None = None
        if options.skip_upload:
            _LOGGER.info("Upload skipped")
            await notifier.notify(
                NotificationEvent.UPLOAD_SKIPPED, f"Upload skipped for {service}"
            )
        elif not applies:
            _LOGGER.info("No upload phase for deployment type '%s'", deployment.type)
        else:
            if artifact is None:
                artifact = await self._builder(run).existing_artifact(run.revision)
            artifact_uri = await self._upload(run, environment, artifact)

        if not options.dry_run:
            if deployment_type in RESTART_TYPES:
                await notifier.notify(
                    NotificationEvent.PODS_RESTARTING, f"Restarting pods for {service}"
                )
            elif deployment_type == DeploymentType.WEB:
                await notifier.notify(
                    NotificationEvent.WEB_DEPLOYING,
                    f"Deploying web assets for {service}",
                )

        ctx = DeployContext(
            config=self._config,
            target=run.target,
            revision=run.revision,
            project_root=self._project_root,
            toolchain=self._toolchain,
            hooks=run.hooks,
            scope=run.scope,
            dry_run=options.dry_run,
            artifact=artifact,
            product=options.product,
            runner=self._runner,
        )
        with trace_context("Deploy"):
            result = await dispatch(ctx, self._strategy)

        if result.pod_count:
            await notifier.notify(
                NotificationEvent.PODS_READY,
                f"{result.pod_count} pod(s) ready for {service}",
                count=result.pod_count,
                pod_status=result.pod_status,
            )
        elif result.deployed_files is not None:
            await notifier.notify(
                NotificationEvent.WEB_DEPLOYED,
                f"{result.deployed_files} files deployed for {service}",
                files_deployed=result.deployed_files,
                invalidation_id=result.invalidation_id,
                build_time=result.build_time,
                deploy_time=result.deploy_time,
            )

        duration = run.elapsed_ms
        _LOGGER.info("%s deployed successfully to %s", service, environment)
        await notifier.notify(
            NotificationEvent.DEPLOY_SUCCESS,
            f"Successfully deployed {service} to {environment}",
            duration=duration,
            git_hash=run.revision,
        )
        return PipelineReport(
            service=service,
            environment=environment,
            revision=run.revision,
            deployment_type=deployment.type,
            dry_run=options.dry_run,
            result=result,
            duration=duration,
            build_id=artifact.build_id if artifact else None,
            artifact_location=artifact.location if artifact else None,
            artifact_uri=artifact_uri,
        )

    async def _build(self, run: _Run) -> BuildArtifact:
        service = self._config.service.name
        builder = self._builder(run)
        build = self._config.build_config(run.target) or BuildConfig()
        await run.notifier.notify(
            NotificationEvent.BUILD_START, f"Building {service}"
        )
        await run.hooks.run(run.target.hooks.pre_build, "pre-build")
        with trace_context("Build") as watch:
            artifact = await builder.build(run.revision)
        await run.hooks.run(run.target.hooks.post_build, "post-build")
        await run.notifier.notify(
            NotificationEvent.BUILD_SUCCESS,
            f"Build completed for {service}",
            duration=watch.elapsed_ms,
            git_hash=artifact.revision,
        )
        if build.use_docker and build.cleanup_container and not run.options.dry_run:
            await run.notifier.notify(
                NotificationEvent.CLEANUP, f"Docker cleanup completed for {service}"
            )
        return artifact

    async def _upload(
        self, run: _Run, environment: str, artifact: BuildArtifact
    ) -> str:
        service = self._config.service.name
        await run.notifier.notify(
            NotificationEvent.UPLOAD_START, f"Uploading artifacts for {service}"
        )
        publisher = Publisher(
            service,
            environment,
            run.target.storage,
            store_factory=self._toolchain.object_store,
            dry_run=run.options.dry_run,
        )
        with trace_context("Upload") as watch:
            uri = await publisher.publish(artifact)
        _LOGGER.info("Artifacts uploaded to %s", uri)
        await run.notifier.notify(
            NotificationEvent.UPLOAD_SUCCESS,
            f"Upload completed for {service}",
            duration=watch.elapsed_ms,
            artifact_path=uri,
        )
        return uri
