"""Types shared by the deployment strategies."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from pathlib import Path

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig

from .. import command
from ..builder import BuildArtifact
from ..cleanup import ResourceScope
from ..config import (
    DEFAULT_GITOPS_BASE_PATH,
    BuildConfig,
    DeploymentTarget,
    HeimdizzyConfig,
    StorageConfig,
)
from ..docker import Docker
from ..git_repo import GitRepo
from ..hooks import HookRunner
from ..kubectl import Kubectl
from ..npm import Npm
from ..storage import Cdn, ObjectStore

__all__ = [
    "Strategy",
    "DeployContext",
    "Toolchain",
    "DeploymentResult",
    "ContainerResult",
    "ServiceResult",
    "NpmResult",
    "DockerHubResult",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ResultModel(DataClassDictMixin):
    """Base class for result records."""

    class Config(BaseConfig):
        omit_none = True


@dataclass
class ContainerResult(ResultModel):
    """Outcome of a `container` deployment."""

    image_name: str
    image_tag: str
    revision: str
    gitops: bool
    manifest_updated: bool = False
    manifests_applied: bool = False
    pr_created: bool = False
    """Always false, manifest changes are pushed directly."""

    commit_hash: str | None = None
    namespace: str | None = None


@dataclass
class ServiceResult(ResultModel):
    """Outcome of a managed runtime (`service`) deployment."""

    image_name: str
    image_tag: str
    namespace: str
    state: str
    migration_completed: bool = False
    deployment_restarted: bool = False
    health_check_passed: bool = False
    pod_count: int = 0
    revision: str | None = None
    build_timestamp: str | None = None


@dataclass
class NpmResult(ResultModel):
    package_name: str
    version: str
    registry: str
    tag: str
    published: bool


@dataclass
class DockerHubResult(ResultModel):
    repository: str
    tag: str
    additional_tags: list[str]
    platforms: list[str]
    pushed: bool
    image_name: str


@dataclass
class DeploymentResult(ResultModel):
    """Uniform outcome of every strategy, including no-op branches."""

    skipped: bool = False
    pod_count: int | None = None
    pod_status: str | None = None
    deployed_files: int | None = None
    invalidation_id: str | None = None
    build_time: int | None = None
    """Milliseconds spent in a strategy's own build step."""

    deploy_time: int | None = None
    container: ContainerResult | None = None
    service: ServiceResult | None = None
    npm: NpmResult | None = None
    dockerhub: DockerHubResult | None = None


@dataclass
class Toolchain:
    """External collaborators used by the strategies."""

    docker: Docker = field(default_factory=Docker)
    kubectl: Kubectl = field(default_factory=Kubectl)
    git: GitRepo = field(default_factory=GitRepo)
    npm: Npm = field(default_factory=Npm)
    object_store: Callable[[StorageConfig], ObjectStore] = ObjectStore
    cdn: Callable[[str], Cdn] = Cdn
    """Factory taking the storage region."""


@dataclass
class DeployContext:
    """Everything a strategy needs for one pipeline run."""

    config: HeimdizzyConfig
    target: DeploymentTarget
    revision: str
    project_root: Path
    toolchain: Toolchain
    hooks: HookRunner
    scope: ResourceScope
    dry_run: bool = False
    artifact: BuildArtifact | None = None
    product: str | None = None
    runner: command.Runner = command.run
    """Runs commands that are not owned by a CLI wrapper."""

    @property
    def service_name(self) -> str:
        return self.config.service.name

    @property
    def product_name(self) -> str:
        return self.product or self.config.service.product or self.config.service.name

    @property
    def build_config(self) -> BuildConfig | None:
        return self.config.build_config(self.target)

    @property
    def gitops_base_path(self) -> str:
        return self.config.global_.gitops_base_path or DEFAULT_GITOPS_BASE_PATH

    async def run_hooks(self, phase: str) -> None:
        """Run the target's hooks for a phase e.g. `pre_build`."""
        await self.hooks.run(getattr(self.target.hooks, phase), phase.replace("_", "-"))


class Strategy(ABC):
    """Applies a built artifact to its target system."""

    @abstractmethod
    async def deploy(self, ctx: DeployContext) -> DeploymentResult:
        """Run the deployment and report the result."""
