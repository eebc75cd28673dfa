"""Shared fixtures for heimdizzy tests."""

from pathlib import Path

import pytest

from .fakes import FakeRunner

TESTDATA = Path(__file__).parent / "testdata"


@pytest.fixture(name="runner")
def runner_fixture() -> FakeRunner:
    """A command runner that records instead of executing."""
    return FakeRunner()


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep credentials from the developer's shell out of the tests."""
    for name in (
        "NPM_TOKEN",
        "DOCKER_USERNAME",
        "DOCKER_PASSWORD",
        "MINIO_ENDPOINT",
        "MINIO_ACCESS_KEY",
        "MINIO_SECRET_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
