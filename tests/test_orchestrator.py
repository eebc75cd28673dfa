"""Tests for the deployment pipeline."""

import json
from pathlib import Path

import httpx
import pytest

from heimdizzy.exceptions import ConfigurationError, HookError, PipelineError
from heimdizzy.loader import parse_config
from heimdizzy.orchestrator import DeployOptions, Orchestrator
from heimdizzy.strategy import DeployContext, DeploymentResult, Strategy

from .fakes import FakeGit, FakeRunner, FakeStoreFactory, make_toolchain

CONFIG = """
version: "1.0"
service:
  name: email-service
  product: messaging
build:
  binaryName: email
deployments:
  - name: email-staging
    environment: staging
    storage:
      bucket: lambda-artifacts
    hooks:
      pre_build:
        - name: lint
          command: cargo clippy
    deployment:
      type: {type}
      lambda:
        namespace: lambda
        settleSeconds: 0
    notifications:
      webhook: https://hooks.example.com/webhook
"""

PODS = "email-service-lambda-rie-1 1/1 Running 0 2s\n"


class Webhook:
    """Collects the embeds posted to the webhook."""

    def __init__(self) -> None:
        self.embeds: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.embeds.extend(json.loads(request.content)["embeds"])
        return httpx.Response(204)

    @property
    def titles(self) -> list[str]:
        return [embed["title"] for embed in self.embeds]

    def field(self, title: str, name: str) -> str | None:
        for embed in self.embeds:
            if embed["title"] != title:
                continue
            for field in embed["fields"]:
                if field["name"] == name:
                    return str(field["value"])
        return None


@pytest.fixture(name="project")
def project_fixture(tmp_path: Path) -> Path:
    """A rust service with a previously built binary."""
    (tmp_path / "Cargo.toml").write_text("[package]\nname = \"email\"\n")
    (tmp_path / "Dockerfile").write_text("FROM scratch\n")
    (tmp_path / "target").mkdir()
    (tmp_path / "target" / "bootstrap").write_bytes(b"\x7fELF")
    return tmp_path


@pytest.fixture(name="webhook")
def webhook_fixture() -> Webhook:
    return Webhook()


@pytest.fixture(name="stores")
def stores_fixture() -> FakeStoreFactory:
    return FakeStoreFactory()


def make_orchestrator(
    runner: FakeRunner,
    project: Path,
    webhook: Webhook,
    stores: FakeStoreFactory,
    deployment_type: str = "lambda-zip",
    strategy: Strategy | None = None,
) -> Orchestrator:
    return Orchestrator(
        parse_config(CONFIG.format(type=deployment_type)),
        project_root=project,
        toolchain=make_toolchain(runner, git=FakeGit(), stores=stores),
        runner=runner,
        http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(webhook.handler)
        ),
        strategy=strategy,
    )


async def test_deploy(
    runner: FakeRunner, project: Path, webhook: Webhook, stores: FakeStoreFactory
) -> None:
    """Test the full pipeline for a lambda artifact."""
    runner.respond("kubectl", "get", "pods", output=PODS)
    orchestrator = make_orchestrator(runner, project, webhook, stores)

    report = await orchestrator.run("staging")

    assert webhook.titles == [
        "Deployment Started",
        "Build Started",
        "Build Completed",
        "Cleanup Completed",
        "Upload Started",
        "Upload Completed",
        "Restarting Pods",
        "Pods Ready",
        "Deployment Completed",
    ]
    assert report.service == "email-service"
    assert report.revision == "abc1234"
    assert report.deployment_type == "lambda-zip"
    assert report.artifact_uri == (
        "s3://lambda-artifacts/email-service/lambda-vabc1234.zip"
    )
    assert report.build_id is not None
    assert report.build_id.endswith("-abc1234")
    assert report.result.pod_count == 1
    assert sorted(stores.objects) == [
        "email-service/lambda-latest.zip",
        "email-service/lambda-vabc1234.zip",
    ]
    assert webhook.field("Pods Ready", "Pod Count") == "1"
    artifact = webhook.field("Upload Completed", "Artifact")
    assert artifact == f"`{report.artifact_uri}`"
    assert webhook.field("Deployment Completed", "Git Hash") == "`abc1234`"

    # The lint hook runs before the build image is built
    lint = runner.args.index(["sh", "-c", "cargo clippy"])
    build = runner.args.index(runner.calls("docker", "build")[0])
    assert lint < build
    assert len(runner.calls("docker", "rmi")) == 1


async def test_skip_build(
    runner: FakeRunner, project: Path, webhook: Webhook, stores: FakeStoreFactory
) -> None:
    """Test skipping the build uploads the previously built binary."""
    runner.respond("kubectl", "get", "pods", output=PODS)
    orchestrator = make_orchestrator(runner, project, webhook, stores)

    report = await orchestrator.run("staging", DeployOptions(skip_build=True))

    assert webhook.titles == [
        "Deployment Started",
        "Build Skipped",
        "Upload Started",
        "Upload Completed",
        "Restarting Pods",
        "Pods Ready",
        "Deployment Completed",
    ]
    assert not runner.calls("docker")
    assert not runner.calls("sh")
    bootstrap = project.resolve() / "target" / "bootstrap"
    assert report.artifact_location == str(bootstrap)
    assert len(stores.objects) == 2


async def test_skip_build_and_upload(
    runner: FakeRunner, project: Path, webhook: Webhook, stores: FakeStoreFactory
) -> None:
    """Test skipping both artifact phases only restarts the pods."""
    orchestrator = make_orchestrator(runner, project, webhook, stores)
    report = await orchestrator.run(
        "staging", DeployOptions(skip_build=True, skip_upload=True, product="mail")
    )
    assert webhook.titles == [
        "Deployment Started",
        "Build Skipped",
        "Upload Skipped",
        "Restarting Pods",
        "Deployment Completed",
    ]
    assert webhook.field("Deployment Started", "Product") == "mail"
    assert report.artifact_uri is None
    assert not stores.stores


async def test_dry_run(
    runner: FakeRunner, project: Path, webhook: Webhook, stores: FakeStoreFactory
) -> None:
    """Test a dry run notifies but runs nothing."""
    orchestrator = make_orchestrator(runner, project, webhook, stores)
    report = await orchestrator.run("staging", DeployOptions(dry_run=True))

    assert report.dry_run
    assert webhook.titles == [
        "Deployment Started",
        "Dry Run Mode",
        "Build Started",
        "Build Completed",
        "Upload Started",
        "Upload Completed",
        "Deployment Completed",
    ]
    assert runner.commands == []
    assert not stores.stores


async def test_hook_failure(
    runner: FakeRunner, project: Path, webhook: Webhook, stores: FakeStoreFactory
) -> None:
    """Test a failing hook aborts the pipeline and is reported."""
    runner.fail("sh", "-c", "cargo clippy", error="warnings found")
    orchestrator = make_orchestrator(runner, project, webhook, stores)

    with pytest.raises(HookError, match="Hook lint failed"):
        await orchestrator.run("staging")

    assert webhook.titles == [
        "Deployment Started",
        "Build Started",
        "Deployment Failed",
    ]
    error = webhook.field("Deployment Failed", "Error")
    assert error is not None
    assert "warnings found" in error
    assert not runner.calls("docker")
    assert not stores.stores


async def test_unexpected_error_is_wrapped(
    runner: FakeRunner, project: Path, webhook: Webhook, stores: FakeStoreFactory
) -> None:
    """Test an unexpected strategy failure is reported as a pipeline error."""

    class Broken(Strategy):
        async def deploy(self, ctx: DeployContext) -> DeploymentResult:
            raise RuntimeError("kaboom")

    orchestrator = make_orchestrator(
        runner, project, webhook, stores, deployment_type="web", strategy=Broken()
    )
    with pytest.raises(PipelineError, match="kaboom"):
        await orchestrator.run("staging")
    assert webhook.titles[-1] == "Deployment Failed"


async def test_unknown_type(
    runner: FakeRunner, project: Path, webhook: Webhook, stores: FakeStoreFactory
) -> None:
    """Test an unknown deployment type completes as skipped."""
    orchestrator = make_orchestrator(
        runner, project, webhook, stores, deployment_type="ftp"
    )
    report = await orchestrator.run("staging")
    assert report.result.skipped
    assert webhook.titles == ["Deployment Started", "Deployment Completed"]
    assert runner.commands == []


async def test_unknown_environment(
    runner: FakeRunner, project: Path, webhook: Webhook, stores: FakeStoreFactory
) -> None:
    """Test a missing target fails before anything is sent."""
    orchestrator = make_orchestrator(runner, project, webhook, stores)
    with pytest.raises(ConfigurationError, match="production"):
        await orchestrator.run("production")
    assert webhook.embeds == []


async def test_build_only(
    runner: FakeRunner, project: Path, webhook: Webhook, stores: FakeStoreFactory
) -> None:
    """Test running only the build phase."""
    orchestrator = make_orchestrator(runner, project, webhook, stores)
    artifact = await orchestrator.build("staging")
    assert artifact.revision == "abc1234"
    assert artifact.location.endswith("target/bootstrap")
    assert runner.calls("docker", "build")
    assert not stores.stores
