"""Tests for the artifact builder."""

from pathlib import Path
from typing import Any

import pytest

from heimdizzy.builder import (
    BUILD_IMAGE_PREFIX,
    BuildArtifact,
    Builder,
    find_service_root,
)
from heimdizzy.cleanup import ResourceScope
from heimdizzy.config import BuildConfig
from heimdizzy.docker import Docker
from heimdizzy.exceptions import BuildError

from .fakes import FakeRunner


@pytest.fixture(name="service_root")
def service_root_fixture(tmp_path: Path) -> Path:
    """A rust service with a Dockerfile."""
    (tmp_path / "Cargo.toml").write_text("[package]\nname = \"email\"\n")
    (tmp_path / "Dockerfile").write_text("FROM scratch\n")
    return tmp_path


def make_builder(
    runner: FakeRunner,
    root: Path,
    scope: ResourceScope,
    dry_run: bool = False,
    **kwargs: Any,
) -> Builder:
    return Builder(
        BuildConfig(**kwargs),
        root,
        Docker(runner),
        scope,
        runner=runner,
        dry_run=dry_run,
    )


def test_find_service_root(service_root: Path) -> None:
    """Test the service root is found from a nested directory."""
    nested = service_root / "src" / "handlers"
    nested.mkdir(parents=True)
    assert find_service_root(nested) == service_root.resolve()


def test_find_service_root_missing(tmp_path: Path) -> None:
    """Test a project without Cargo.toml."""
    with pytest.raises(BuildError, match="no Cargo.toml"):
        find_service_root(tmp_path)


def test_build_artifact() -> None:
    """Test the build id combines a timestamp and the revision prefix."""
    artifact = BuildArtifact.create("target/bootstrap", "0123456789abcdef")
    millis, prefix = artifact.build_id.split("-")
    assert prefix == "01234567"
    assert millis.isdigit()
    assert artifact.timestamp.endswith("+00:00")


async def test_docker_build(runner: FakeRunner, service_root: Path) -> None:
    """Test building in a container and copying the binary out."""
    (service_root / "target").mkdir()
    (service_root / "target" / "bootstrap").write_bytes(b"\x7fELF")
    async with ResourceScope() as scope:
        builder = make_builder(runner, service_root, scope, target="runtime")
        artifact = await builder.build("abc1234")
        assert scope.outstanding == []

    assert artifact.location == str(service_root.resolve() / "target" / "bootstrap")
    assert artifact.revision == "abc1234"
    build, copy, rmi, prune = runner.args
    assert build[:4] == ["docker", "build", "-f", "Dockerfile"]
    assert ["--target", "runtime"] == build[4:6]
    image = build[-2]
    assert image.startswith(BUILD_IMAGE_PREFIX)
    assert copy[:3] == ["docker", "run", "--rm"]
    assert copy[-3:] == [image, "/bootstrap", "/output/bootstrap"]
    assert rmi == ["docker", "rmi", image]
    assert prune == ["docker", "builder", "prune", "-f"]


async def test_docker_build_keeps_image(runner: FakeRunner, service_root: Path) -> None:
    """Test the build image lives until the scope closes without cleanup."""
    (service_root / "target").mkdir()
    (service_root / "target" / "bootstrap").write_bytes(b"\x7fELF")
    async with ResourceScope() as scope:
        builder = make_builder(runner, service_root, scope, cleanup_container=False)
        await builder.build("abc1234")
        assert len(scope.outstanding) == 1
        assert not runner.calls("docker", "rmi")
    assert len(runner.calls("docker", "rmi")) == 1


async def test_docker_build_failure(runner: FakeRunner, service_root: Path) -> None:
    """Test a failed build removes the build image and raises."""
    runner.fail("docker", "build", error="compile error")
    async with ResourceScope() as scope:
        builder = make_builder(runner, service_root, scope, cleanup_container=False)
        with pytest.raises(BuildError, match="compile error"):
            await builder.build("abc1234")
        assert scope.outstanding == []
    assert len(runner.calls("docker", "rmi")) == 1
    assert not runner.calls("docker", "run")


async def test_missing_dockerfile(runner: FakeRunner, service_root: Path) -> None:
    """Test building without a Dockerfile."""
    (service_root / "Dockerfile").unlink()
    async with ResourceScope() as scope:
        with pytest.raises(BuildError, match="Dockerfile not found"):
            await make_builder(runner, service_root, scope).build("abc1234")
    assert runner.commands == []


async def test_missing_binary(runner: FakeRunner, service_root: Path) -> None:
    """Test a build that did not produce the binary."""
    async with ResourceScope() as scope:
        with pytest.raises(BuildError, match="did not produce binary"):
            await make_builder(runner, service_root, scope).build("abc1234")


async def test_cargo_build(runner: FakeRunner, service_root: Path) -> None:
    """Test building with cargo for the configured platform and features."""
    release = service_root / "target" / "aarch64-unknown-linux-gnu" / "release"
    release.mkdir(parents=True)
    (release / "email").write_bytes(b"\x7fELF")
    async with ResourceScope() as scope:
        builder = make_builder(
            runner,
            service_root,
            scope,
            use_docker=False,
            platform="arm64",
            binary_name="email",
            features=["sqs", "tracing"],
        )
        artifact = await builder.build("abc1234")
    assert runner.args == [
        [
            "cargo",
            "build",
            "--release",
            "--bin",
            "email",
            "--target",
            "aarch64-unknown-linux-gnu",
            "--features",
            "sqs,tracing",
        ]
    ]
    assert artifact.location.endswith("aarch64-unknown-linux-gnu/release/email")


async def test_existing_artifact(runner: FakeRunner, service_root: Path) -> None:
    """Test locating a previously built binary."""
    release = service_root / "target" / "x86_64-unknown-linux-gnu" / "release"
    release.mkdir(parents=True)
    (release / "lambda").write_bytes(b"\x7fELF")
    async with ResourceScope() as scope:
        builder = make_builder(runner, service_root, scope)
        artifact = await builder.existing_artifact("abc1234")
        assert artifact.location.endswith("release/lambda")

        (service_root / "target" / "bootstrap").write_bytes(b"\x7fELF")
        artifact = await builder.existing_artifact("abc1234")
        assert artifact.location.endswith("target/bootstrap")
    assert runner.commands == []


async def test_existing_artifact_missing(
    runner: FakeRunner, service_root: Path
) -> None:
    """Test skipping the build without a previous build."""
    async with ResourceScope() as scope:
        with pytest.raises(BuildError, match="No previously built binary"):
            await make_builder(runner, service_root, scope).existing_artifact("x")


async def test_dry_run(runner: FakeRunner, tmp_path: Path) -> None:
    """Test a dry run builds nothing."""
    async with ResourceScope() as scope:
        artifact = await make_builder(runner, tmp_path, scope, dry_run=True).build(
            "abc1234"
        )
    assert artifact.location == "<dry-run>"
    assert runner.commands == []
