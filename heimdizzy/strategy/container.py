"""Container deployments, either through GitOps or applied directly.

Both modes build the image, push it and then either patch the service's
kustomization in the repository (`gitops: true`) for the cluster to reconcile,
or apply manifests and restart the deployment with the cluster CLI.

When the registry endpoint is only resolvable inside the cluster, the image is
pushed through the registry's NodePort on `localhost` instead.
"""

import logging
from pathlib import Path
import tempfile
import time

import aiofiles
import yaml

from .. import kustomization
from ..config import DEFAULT_NODE_PORT, ContainerConfig, RegistryConfig
from ..context import trace_context
from ..docker import Docker
from ..exceptions import CommandException, DeploymentError, VcsAdvisoryError
from ..kubectl import Kubectl
from ..manifest import deployment_manifest, service_manifest
from .base import ContainerResult, DeployContext, DeploymentResult, Strategy

__all__ = ["ContainerStrategy", "resolve_push_registry", "push_image"]

_LOGGER = logging.getLogger(__name__)

REGISTRY_NODEPORT_SERVICE = "docker-registry-nodeport"
LATEST = "latest"


async def resolve_push_registry(registry: RegistryConfig, kubectl: Kubectl) -> str:
    """Return the registry host images should be pushed through.

    In-cluster endpoints are replaced with `localhost:{nodePort}`. The port comes
    from the configuration, else from the registry's NodePort service, else the
    default.
    """
    if not registry.in_cluster:
        return registry.endpoint
    _LOGGER.info("Detected in-cluster registry, pushing through NodePort")
    if registry.node_port:
        return f"localhost:{registry.node_port}"
    node_port = DEFAULT_NODE_PORT
    try:
        out = await kubectl.get_node_port(registry.namespace, REGISTRY_NODEPORT_SERVICE)
        node_port = int(out)
    except (CommandException, ValueError) as err:
        _LOGGER.info("Using default NodePort %s: %s", DEFAULT_NODE_PORT, err)
    return f"localhost:{node_port}"


async def push_image(
    docker: Docker,
    kubectl: Kubectl,
    registry: RegistryConfig,
    local_image: str,
    tags: list[str],
) -> list[str]:
    """Tag the local image for the push registry and push each tag."""
    host = await resolve_push_registry(registry, kubectl)
    if registry.username and registry.password:
        _LOGGER.info("Logging into registry %s", host)
        await docker.login(registry.username, registry.password, host)
    pushed = []
    for tag in tags:
        remote = f"{host}/{registry.repository}:{tag}"
        await docker.tag(local_image, remote)
        await docker.push(remote)
        pushed.append(remote)
    return pushed


class ContainerStrategy(Strategy):
    """Builds, pushes and rolls out a container image."""

    async def deploy(self, ctx: DeployContext) -> DeploymentResult:
        container: ContainerConfig = ctx.target.deployment.require("container")
        registry = container.registry
        image_tag = f"{ctx.revision}-{int(time.time() * 1000)}"
        image_ref = f"{registry.image_name}:{image_tag}"
        result = ContainerResult(
            image_name=image_ref,
            image_tag=image_tag,
            revision=ctx.revision,
            gitops=container.gitops,
            commit_hash=ctx.revision,
            namespace=container.kubernetes.namespace,
        )
        if ctx.dry_run:
            _LOGGER.info(
                "[dry run] Would deploy container %s to namespace %s (%s)",
                image_ref,
                container.kubernetes.namespace,
                "gitops" if container.gitops else "direct",
            )
            for phase in ("pre_build", "post_build", "pre_deploy", "post_deploy"):
                await ctx.run_hooks(phase)
            return DeploymentResult(pod_count=0, container=result)

        docker = ctx.toolchain.docker
        local_image = f"{ctx.service_name}:{image_tag}"
        build = ctx.build_config

        await ctx.run_hooks("pre_build")
        with trace_context("Build image"):
            await docker.build(
                local_image,
                dockerfile=build.dockerfile if build else "Dockerfile",
                cwd=ctx.project_root,
            )
        handle = ctx.scope.acquire(
            local_image, lambda: _remove_image(docker, local_image)
        )
        await ctx.run_hooks("post_build")

        with trace_context("Push image"):
            await push_image(
                docker,
                ctx.toolchain.kubectl,
                registry,
                local_image,
                [image_tag, LATEST],
            )
        await ctx.run_hooks("pre_deploy")

        pod_count = 0
        if container.gitops:
            with trace_context("Update manifests"):
                result.manifest_updated = await self._update_gitops(
                    ctx, container, image_tag
                )
        else:
            with trace_context("Apply manifests"):
                pod_count = await self._apply_direct(ctx, container)
            result.manifests_applied = True

        await ctx.run_hooks("post_deploy")
        await handle.release()
        return DeploymentResult(pod_count=pod_count, container=result)

    async def _update_gitops(
        self, ctx: DeployContext, container: ContainerConfig, image_tag: str
    ) -> bool:
        registry = container.registry
        kubernetes = container.kubernetes
        paths = kustomization.candidate_paths(
            ctx.project_root, ctx.service_name, kubernetes, ctx.gitops_base_path
        )
        update = await kustomization.update_image_tag(
            paths,
            kubernetes.namespace,
            registry.image_name,
            image_tag,
            aliases=(registry.repository,),
        )
        message = f"chore(k8s): update {ctx.service_name} image to {image_tag}"
        try:
            commit = ctx.toolchain.git.commit_and_push(
                [update.path.resolve()], message
            )
        except VcsAdvisoryError as err:
            _LOGGER.warning(
                "Failed to commit/push %s, commit it manually: %s (%s)",
                update.path,
                message,
                err,
            )
        else:
            if commit.committed:
                _LOGGER.info("Changes committed and pushed, the cluster will reconcile")
            else:
                _LOGGER.info("No changes to commit (image tag might be the same)")
        _LOGGER.info(
            "Monitor with: kubectl -n %s get pods -l app=%s -w",
            kubernetes.namespace,
            ctx.service_name,
        )
        return update.changed

    async def _apply_direct(
        self, ctx: DeployContext, container: ContainerConfig
    ) -> int:
        kubectl = ctx.toolchain.kubectl
        kubernetes = container.kubernetes
        name = ctx.service_name
        latest_image = f"{container.registry.image_name}:{LATEST}"

        manifest_dir = None
        if kubernetes.use_existing_manifests:
            manifest_dir = await _find_manifest_dir(ctx, kubernetes.namespace)
        if manifest_dir is not None:
            _LOGGER.info("Applying manifests from %s", manifest_dir)
            await kubectl.apply_kustomize(manifest_dir)
            await kubectl.set_image(kubernetes.namespace, name, name, latest_image)
            await kubectl.rollout_restart(kubernetes.namespace, name)
        else:
            _LOGGER.info("No existing manifests found, generating a basic deployment")
            await _apply_generated(kubectl, name, container, latest_image)

        try:
            await kubectl.rollout_status(
                kubernetes.namespace, name, kubernetes.deployment_timeout
            )
        except DeploymentError as err:
            _LOGGER.warning(
                "Rollout status check failed, deployment may still be in progress: %s",
                err,
            )
        pods = await kubectl.get_pods(kubernetes.namespace, f"app={name}")
        _LOGGER.info("Container deployment complete, %d pods running", pods.count)
        return pods.count


async def _remove_image(docker: Docker, image: str) -> None:
    try:
        await docker.remove_image(image)
    except CommandException as err:
        _LOGGER.debug("Ignoring failure removing %s: %s", image, err)


async def _find_manifest_dir(ctx: DeployContext, namespace: str) -> Path | None:
    root = ctx.project_root
    name = ctx.service_name
    candidates = [
        root / ctx.gitops_base_path / "infrastructure" / namespace / "services" / name,
        root / "k8s" / name,
        root / "kubernetes" / name,
    ]
    for candidate in candidates:
        if candidate.is_dir() and any(candidate.glob("*.yaml")):
            return candidate
    return None


async def _apply_generated(
    kubectl: Kubectl, name: str, container: ContainerConfig, image: str
) -> None:
    docs = {
        "deployment.yaml": deployment_manifest(name, container.kubernetes, image),
        "service.yaml": service_manifest(name, container.kubernetes),
    }
    with tempfile.TemporaryDirectory(prefix="heimdizzy-") as tmp_dir:
        for filename, doc in docs.items():
            path = Path(tmp_dir) / filename
            async with aiofiles.open(path, mode="w") as manifest_file:
                await manifest_file.write(yaml.dump(doc, sort_keys=False))
            await kubectl.apply_file(path)
