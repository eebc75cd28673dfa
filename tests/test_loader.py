"""Tests for loading heimdizzy.yml."""

from pathlib import Path

import pytest

from heimdizzy.config import DeploymentType, Environment
from heimdizzy.exceptions import ConfigurationError
from heimdizzy.loader import (
    ConfigLoader,
    LoadOptions,
    expand_environment,
    find_config_file,
    parse_config,
)

from .conftest import TESTDATA

MINIMAL = """
version: "1.0"
service:
  name: api
deployments:
  - name: api-staging
    environment: staging
    storage:
      bucket: artifacts
    deployment:
      type: {type}
"""


async def test_load_config() -> None:
    """Test loading and decoding the test configuration."""
    loader = ConfigLoader(
        LoadOptions(path=TESTDATA, environ={"MINIO_TEST_ENDPOINT": "http://minio:9000"})
    )
    config = await loader.load()
    assert loader.config_path == TESTDATA / "heimdizzy.yml"

    assert config.service.name == "email-service"
    assert config.service.product == "messaging"
    assert config.global_.gitops_base_path == "k8s/clusters/main"
    assert config.build is not None
    assert config.build.binary_name == "bootstrap"
    assert config.build.target_triple == "aarch64-unknown-linux-gnu"

    staging = config.target("staging")
    assert staging.environment == Environment.STAGING
    assert staging.storage.endpoint == "http://minio:9000"
    assert staging.storage.region == "us-east-1"
    assert staging.storage.force_path_style
    assert staging.deployment.deployment_type == DeploymentType.LAMBDA_ZIP
    assert staging.deployment.lambda_ is not None
    assert staging.deployment.lambda_.namespace == "lambda"
    assert [hook.name for hook in staging.hooks.pre_build] == ["lint"]
    assert staging.hooks.post_deploy == []
    assert staging.notifications is not None
    assert not staging.notifications.events.is_enabled("buildStart")
    assert staging.notifications.events.is_enabled("deployStart")

    production = config.target("production")
    assert production.deployment.deployment_type == DeploymentType.CONTAINER
    container = production.deployment.require("container")
    assert container.gitops
    assert container.kubernetes.replicas == 2
    assert container.kubernetes.ports[0].container_port == 8080
    assert container.registry.image_name == (
        "registry.example.com/messaging/email-service"
    )
    assert not container.registry.in_cluster


async def test_unset_environment_variable() -> None:
    """Test an unset variable expands to an empty string."""
    config = await ConfigLoader(LoadOptions(path=TESTDATA, environ={})).load()
    assert not config.target("staging").storage.endpoint


async def test_missing_config_file(tmp_path: Path) -> None:
    """Test a directory tree without a configuration file."""
    with pytest.raises(ConfigurationError, match="No heimdizzy.yml found"):
        await ConfigLoader(LoadOptions(path=tmp_path / "empty.yml")).load()


def test_find_config_file_walks_up(tmp_path: Path) -> None:
    """Test the configuration file is found in a parent directory."""
    config_file = tmp_path / "heimdizzy.yml"
    config_file.write_text("version: '1.0'\n")
    nested = tmp_path / "src" / "bin"
    nested.mkdir(parents=True)
    assert find_config_file(nested) == config_file


def test_expand_environment() -> None:
    """Test `${VAR}` references are replaced."""
    assert (
        expand_environment("${A}-${B}", {"A": "one", "B": "two"}) == "one-two"
    )
    assert expand_environment("x${MISSING}y", {}) == "xy"


def test_unsupported_version() -> None:
    """Test only version 1.0 is accepted."""
    with pytest.raises(ConfigurationError, match="unsupported version"):
        parse_config(MINIMAL.format(type="web").replace('"1.0"', '"2.0"'))


def test_invalid_yaml() -> None:
    """Test a file that is not valid yaml."""
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        parse_config("version: [1.0")


def test_missing_required_field() -> None:
    """Test a target without storage settings."""
    content = MINIMAL.format(type="web").replace(
        "    storage:\n      bucket: artifacts\n", ""
    )
    with pytest.raises(ConfigurationError, match="Invalid"):
        parse_config(content)


def test_unknown_deployment_type_is_accepted() -> None:
    """Test an unknown type loads and has no strategy type."""
    config = parse_config(MINIMAL.format(type="ftp"))
    deployment = config.target("staging").deployment
    assert deployment.type == "ftp"
    assert deployment.deployment_type is None


def test_missing_environment() -> None:
    """Test selecting an environment without a target."""
    config = parse_config(MINIMAL.format(type="web"))
    with pytest.raises(ConfigurationError, match="environment: production"):
        config.target("production")


def test_missing_settings_block() -> None:
    """Test requiring the settings block of the deployment type."""
    config = parse_config(MINIMAL.format(type="web"))
    with pytest.raises(ConfigurationError, match="requires a 'web'"):
        config.target("staging").deployment.require("web")
