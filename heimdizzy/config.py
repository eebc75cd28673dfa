"""Configuration objects decoded from `heimdizzy.yml`.

The file describes one service and a list of deployment targets, one per
environment. Each target carries a `DeploymentSpec` whose `type` selects the
strategy, and only the settings block for that type is consulted.

Example:
```yaml
version: "1.0"
service:
  name: email-service
  product: novaskyn
deployments:
  - name: staging
    environment: staging
    storage:
      bucket: artifacts
    deployment:
      type: container
      container:
        registry:
          endpoint: docker-registry.container-registry.svc.cluster.local:5000
          repository: email-service
        kubernetes:
          namespace: email
```
"""

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import ConfigurationError

__all__ = [
    "HeimdizzyConfig",
    "ServiceDescriptor",
    "DeploymentTarget",
    "DeploymentSpec",
    "DeploymentType",
    "Environment",
    "HookSpec",
    "Hooks",
]

_LOGGER = logging.getLogger(__name__)

SUPPORTED_VERSION = "1.0"
IN_CLUSTER_SUFFIX = "svc.cluster.local"
DEFAULT_NODE_PORT = 30500
DEFAULT_GITOPS_BASE_PATH = "k8s/clusters/main"


class Environment(StrEnum):
    """Environments a deployment target may be tagged with."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class DeploymentType(StrEnum):
    """The closed set of deployment strategies."""

    LAMBDA_ZIP = "lambda-zip"
    CONTAINER = "container"
    WEB = "web"
    NPM = "npm"
    DOCKERHUB = "dockerhub"
    SERVICE = "service"


@dataclass
class BaseConfigModel(DataClassDictMixin):
    """Base class for all configuration objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class ServiceDescriptor(BaseConfigModel):
    """Identity of the thing being deployed."""

    name: str
    type: str = "lambda"
    product: str | None = None
    category: str | None = None


@dataclass
class GlobalConfig(BaseConfigModel):
    """Options shared by all deployment targets."""

    project_root: str | None = field(
        metadata=field_options(alias="projectRoot"), default=None
    )
    """Project root directory, defaults to the git repository root."""

    kubectl_path: str | None = field(
        metadata=field_options(alias="kubectlPath"), default=None
    )
    """Path to the kubectl binary, defaults to kubectl in PATH."""

    gitops_base_path: str | None = field(
        metadata=field_options(alias="gitOpsBasePath"), default=None
    )
    """Base path for GitOps manifests e.g. `k8s/clusters/main`."""

    cluster_name: str | None = field(
        metadata=field_options(alias="clusterName"), default=None
    )


@dataclass
class BuildConfig(BaseConfigModel):
    """How to produce a binary artifact."""

    dockerfile: str = "Dockerfile"
    target: str | None = None
    platform: str = "x86_64"
    binary_name: str = field(
        metadata=field_options(alias="binaryName"), default="lambda"
    )
    features: list[str] | None = None
    use_docker: bool = field(metadata=field_options(alias="useDocker"), default=True)
    cleanup_container: bool = field(
        metadata=field_options(alias="cleanupContainer"), default=True
    )

    @property
    def target_triple(self) -> str:
        """Rust target triple for the configured platform."""
        if self.platform == "arm64":
            return "aarch64-unknown-linux-gnu"
        return "x86_64-unknown-linux-gnu"


@dataclass
class StorageConfig(BaseConfigModel):
    """Object storage destination for artifacts and static assets."""

    bucket: str
    endpoint: str | None = None
    region: str = "us-east-1"
    access_key_id: str | None = field(
        metadata=field_options(alias="accessKeyId"), default=None
    )
    secret_access_key: str | None = field(
        metadata=field_options(alias="secretAccessKey"), default=None
    )
    force_path_style: bool = field(
        metadata=field_options(alias="forcePathStyle"), default=True
    )


@dataclass
class HookSpec(BaseConfigModel):
    """A named shell command run at a pipeline checkpoint."""

    name: str
    command: str
    description: str | None = None


@dataclass
class Hooks(BaseConfigModel):
    """Hook lists for each checkpoint."""

    pre_build: list[HookSpec] = field(default_factory=list)
    post_build: list[HookSpec] = field(default_factory=list)
    pre_deploy: list[HookSpec] = field(default_factory=list)
    post_deploy: list[HookSpec] = field(default_factory=list)


@dataclass
class NotificationEvents(BaseConfigModel):
    """Per event toggles, all enabled by default."""

    deploy_start: bool = field(
        metadata=field_options(alias="deployStart"), default=True
    )
    deploy_success: bool = field(
        metadata=field_options(alias="deploySuccess"), default=True
    )
    deploy_error: bool = field(
        metadata=field_options(alias="deployError"), default=True
    )
    build_start: bool = field(metadata=field_options(alias="buildStart"), default=True)
    build_success: bool = field(
        metadata=field_options(alias="buildSuccess"), default=True
    )
    build_skipped: bool = field(
        metadata=field_options(alias="buildSkipped"), default=True
    )
    upload_start: bool = field(
        metadata=field_options(alias="uploadStart"), default=True
    )
    upload_success: bool = field(
        metadata=field_options(alias="uploadSuccess"), default=True
    )
    upload_skipped: bool = field(
        metadata=field_options(alias="uploadSkipped"), default=True
    )
    pods_restarting: bool = field(
        metadata=field_options(alias="podsRestarting"), default=True
    )
    pods_ready: bool = field(metadata=field_options(alias="podsReady"), default=True)
    web_deploying: bool = field(
        metadata=field_options(alias="webDeploying"), default=True
    )
    web_deployed: bool = field(
        metadata=field_options(alias="webDeployed"), default=True
    )
    cleanup: bool = True
    dry_run: bool = field(metadata=field_options(alias="dryRun"), default=True)

    def is_enabled(self, event: str) -> bool:
        """Return True if the camelCase event name is enabled."""
        return bool(self.to_dict().get(event, True))


@dataclass
class NotificationSettings(BaseConfigModel):
    """Webhook notification settings for a deployment target."""

    webhook: str | None = None
    enabled: bool = True
    rate_limit_delay: int = field(
        metadata=field_options(alias="rateLimitDelay"), default=2000
    )
    """Milliseconds to wait when the webhook reports a rate limit."""

    events: NotificationEvents = field(default_factory=NotificationEvents)


@dataclass
class RegistryConfig(BaseConfigModel):
    """Container registry the image is pushed to."""

    endpoint: str
    repository: str
    tag: str = "latest"
    insecure: bool = False
    node_port: int | None = field(
        metadata=field_options(alias="nodePort"), default=None
    )
    namespace: str = "container-registry"
    """Namespace of the in-cluster registry, used for NodePort discovery."""

    username: str | None = None
    password: str | None = None

    @property
    def image_name(self) -> str:
        """Image reference without a tag."""
        return f"{self.endpoint}/{self.repository}"

    @property
    def in_cluster(self) -> bool:
        """True when the endpoint is only resolvable inside the cluster."""
        return IN_CLUSTER_SUFFIX in self.endpoint


@dataclass
class ContainerPort(BaseConfigModel):
    container_port: int = field(metadata=field_options(alias="containerPort"))
    name: str


@dataclass
class EnvVar(BaseConfigModel):
    name: str
    value: str


@dataclass
class ResourceQuantities(BaseConfigModel):
    memory: str
    cpu: str


@dataclass
class Resources(BaseConfigModel):
    requests: ResourceQuantities = field(
        default_factory=lambda: ResourceQuantities(memory="256Mi", cpu="100m")
    )
    limits: ResourceQuantities = field(
        default_factory=lambda: ResourceQuantities(memory="512Mi", cpu="300m")
    )


@dataclass
class KubernetesConfig(BaseConfigModel):
    """Cluster side settings for container based targets."""

    namespace: str
    replicas: int = 2
    resources: Resources = field(default_factory=Resources)
    ports: list[ContainerPort] = field(
        default_factory=lambda: [ContainerPort(container_port=8080, name="http")]
    )
    env: list[EnvVar] = field(default_factory=list)
    use_existing_manifests: bool = field(
        metadata=field_options(alias="useExistingManifests"), default=True
    )
    gitops_path: str | None = field(
        metadata=field_options(alias="gitOpsPath"), default=None
    )
    """Custom kustomization path relative to the project root."""

    deployment_timeout: int = field(
        metadata=field_options(alias="deploymentTimeout"), default=300
    )
    flux_namespace: str = field(
        metadata=field_options(alias="fluxNamespace"), default="flux-system"
    )


@dataclass
class ContainerConfig(BaseConfigModel):
    """Settings for the `container` and `service` deployment types."""

    registry: RegistryConfig
    kubernetes: KubernetesConfig
    gitops: bool = True


@dataclass
class MigrationConfig(BaseConfigModel):
    enabled: bool = True
    timeout: int = 300
    image_pull_secrets: list[str] = field(
        metadata=field_options(alias="imagePullSecrets"), default_factory=list
    )


@dataclass
class HealthConfig(BaseConfigModel):
    port: int = 8081
    path: str = "/health"
    attempts: int = 30
    interval: float = 10.0


@dataclass
class ServiceRuntimeConfig(BaseConfigModel):
    """Extra settings for the managed runtime (`service`) type."""

    migration: MigrationConfig = field(default_factory=MigrationConfig)
    health: HealthConfig = field(default_factory=HealthConfig)


@dataclass
class CloudFrontConfig(BaseConfigModel):
    distribution_id: str | None = field(
        metadata=field_options(alias="distributionId"), default=None
    )
    paths: list[str] = field(default_factory=lambda: ["/*", "/index.html"])


@dataclass
class CacheControlConfig(BaseConfigModel):
    html: str = "no-cache, no-store, must-revalidate"
    assets: str = "public, max-age=31536000"


@dataclass
class EndpointCheck(BaseConfigModel):
    path: str
    expected_status: int = field(metadata=field_options(alias="expectedStatus"))
    contains: str | None = None


@dataclass
class MinioCheck(BaseConfigModel):
    enabled: bool = True
    min_files: int = field(metadata=field_options(alias="minFiles"), default=5)


@dataclass
class VerificationConfig(BaseConfigModel):
    enabled: bool = True
    base_url: str | None = field(metadata=field_options(alias="baseUrl"), default=None)
    endpoints: list[EndpointCheck] = field(default_factory=list)
    minio_check: MinioCheck | None = field(
        metadata=field_options(alias="minioCheck"), default=None
    )


@dataclass
class WebConfig(BaseConfigModel):
    """Settings for static site deployments."""

    build_command: str | None = field(
        metadata=field_options(alias="buildCommand"), default=None
    )
    build_dir: str = field(metadata=field_options(alias="buildDir"), default="dist")
    index_file: str = field(
        metadata=field_options(alias="indexFile"), default="index.html"
    )
    path: str | None = None
    """Key prefix within the bucket e.g. `novaskyn/frontend/staging`."""

    cloudfront: CloudFrontConfig | None = None
    cache_control: CacheControlConfig = field(
        metadata=field_options(alias="cacheControl"), default_factory=CacheControlConfig
    )
    verification: VerificationConfig | None = None


@dataclass
class NpmConfig(BaseConfigModel):
    registry: str = "https://registry.npmjs.org/"
    access: str = "public"
    tag: str = "latest"
    dry_run: bool = field(metadata=field_options(alias="dryRun"), default=False)
    otp: str | None = None
    token: str | None = None


@dataclass
class DockerHubConfig(BaseConfigModel):
    repository: str
    tag: str = "latest"
    tags: list[str] = field(default_factory=list)
    username: str | None = None
    password: str | None = None
    dockerfile: str = "Dockerfile"
    build_args: dict[str, str] = field(
        metadata=field_options(alias="buildArgs"), default_factory=dict
    )
    platform: list[str] = field(default_factory=lambda: ["linux/amd64"])


@dataclass
class PodRestartConfig(BaseConfigModel):
    """Pods to restart after a `lambda-zip` artifact has been uploaded."""

    namespace: str
    selector: str | None = None
    """Label selector, defaults to `app={service}-lambda-rie`."""

    settle_seconds: float = field(
        metadata=field_options(alias="settleSeconds"), default=3.0
    )


@dataclass
class ArtifactConfig(BaseConfigModel):
    key: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class DeploymentSpec(BaseConfigModel):
    """The deployment type tag and the per-type settings blocks."""

    type: str = DeploymentType.LAMBDA_ZIP.value
    runtime: str = "rust"
    artifact: ArtifactConfig | None = None
    web: WebConfig | None = None
    container: ContainerConfig | None = None
    npm: NpmConfig | None = None
    dockerhub: DockerHubConfig | None = None
    service: ServiceRuntimeConfig | None = None
    lambda_: PodRestartConfig | None = field(
        metadata=field_options(alias="lambda"), default=None
    )

    @property
    def deployment_type(self) -> DeploymentType | None:
        """The parsed type tag, or None when it is not a known strategy."""
        try:
            return DeploymentType(self.type)
        except ValueError:
            return None

    def require(self, block: str) -> Any:
        """Return the settings block for a type or fail if not configured."""
        attr = "lambda_" if block == "lambda" else block
        if (value := getattr(self, attr)) is None:
            raise ConfigurationError(
                f"Deployment type '{self.type}' requires a '{block}' "
                "configuration block"
            )
        return value


@dataclass
class DeploymentTarget(BaseConfigModel):
    """A named, environment tagged deployment entry."""

    name: str
    environment: Environment
    storage: StorageConfig
    deployment: DeploymentSpec
    build: BuildConfig | None = None
    hooks: Hooks = field(default_factory=Hooks)
    notifications: NotificationSettings | None = None


@dataclass
class HeimdizzyConfig(BaseConfigModel):
    """Top level contents of `heimdizzy.yml`."""

    version: str
    service: ServiceDescriptor
    deployments: list[DeploymentTarget]
    global_: GlobalConfig = field(
        metadata=field_options(alias="global"), default_factory=GlobalConfig
    )
    build: BuildConfig | None = None

    def target(self, environment: str) -> DeploymentTarget:
        """Select the deployment target for the requested environment."""
        for deployment in self.deployments:
            if deployment.environment == environment:
                return deployment
        raise ConfigurationError(
            f"No deployment configuration found for environment: {environment}"
        )

    def build_config(self, target: DeploymentTarget) -> BuildConfig | None:
        """Build settings for a target, preferring the per-target override."""
        return target.build or self.build
