"""Tests for selecting and dispatching deployment strategies."""

from pathlib import Path

import pytest

from heimdizzy.config import DeploymentType
from heimdizzy.strategy import dispatch, select_strategy
from heimdizzy.strategy.container import ContainerStrategy
from heimdizzy.strategy.dockerhub import DockerHubStrategy
from heimdizzy.strategy.npm import NpmStrategy
from heimdizzy.strategy.pod_restart import PodRestartStrategy
from heimdizzy.strategy.service import ServiceStrategy
from heimdizzy.strategy.web import WebStrategy

from ..fakes import FakeRunner, make_context

CONFIG = """
version: "1.0"
service:
  name: svc
deployments:
  - name: svc-staging
    environment: staging
    storage:
      bucket: artifacts
    hooks:
      pre_build:
        - name: never
          command: exit 1
      post_deploy:
        - name: never-either
          command: exit 1
    deployment:
      type: {type}
      lambda:
        namespace: lambda
      container:
        registry:
          endpoint: registry.example.com
          repository: svc
        kubernetes:
          namespace: svc
      web:
        buildCommand: npm run build
        cloudfront:
          distributionId: E123
      npm: {{}}
      dockerhub:
        repository: acme/svc
      service: {{}}
"""


@pytest.mark.parametrize(
    ("deployment_type", "strategy_type"),
    [
        (DeploymentType.LAMBDA_ZIP, PodRestartStrategy),
        (DeploymentType.CONTAINER, ContainerStrategy),
        (DeploymentType.WEB, WebStrategy),
        (DeploymentType.NPM, NpmStrategy),
        (DeploymentType.DOCKERHUB, DockerHubStrategy),
        (DeploymentType.SERVICE, ServiceStrategy),
    ],
)
def test_select_strategy(deployment_type: DeploymentType, strategy_type: type) -> None:
    """Test every deployment type has a strategy."""
    assert isinstance(select_strategy(deployment_type), strategy_type)


def test_select_unknown() -> None:
    """Test an unknown type has no strategy."""
    assert select_strategy(None) is None


async def test_unknown_type_is_skipped(runner: FakeRunner, tmp_path: Path) -> None:
    """Test an unknown type is reported as skipped."""
    ctx = make_context(CONFIG.format(type="ftp"), tmp_path, runner)
    result = await dispatch(ctx)
    assert result.skipped
    assert runner.commands == []


@pytest.mark.parametrize("deployment_type", [t.value for t in DeploymentType])
async def test_dry_run_has_no_side_effects(
    runner: FakeRunner, tmp_path: Path, deployment_type: str
) -> None:
    """Test no strategy runs a command or writes a file in dry run mode."""
    (tmp_path / "package.json").write_text('{"name": "svc", "version": "1.0.0"}')
    ctx = make_context(
        CONFIG.format(type=deployment_type), tmp_path, runner, dry_run=True
    )
    result = await dispatch(ctx)
    assert result is not None
    assert runner.commands == []
    assert sorted(path.name for path in tmp_path.iterdir()) == ["package.json"]
