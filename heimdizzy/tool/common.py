"""Flags and helpers shared by the heimdizzy commands."""

from argparse import ArgumentParser
import logging
import pathlib

from heimdizzy.config import HeimdizzyConfig
from heimdizzy.git_repo import GitRepo
from heimdizzy.kubectl import Kubectl
from heimdizzy.loader import ConfigLoader, LoadOptions
from heimdizzy.orchestrator import Orchestrator
from heimdizzy.strategy import Toolchain

_LOGGER = logging.getLogger(__name__)


def add_config_flag(args: ArgumentParser) -> None:
    """Add the flag selecting the configuration file."""
    args.add_argument(
        "-c",
        "--config",
        type=pathlib.Path,
        default=None,
        help="Path to heimdizzy.yml, or a directory to search upwards from",
    )


def add_environment_arg(args: ArgumentParser) -> None:
    """Add the positional environment argument."""
    args.add_argument(
        "environment",
        type=str,
        help="Environment of the deployment target, e.g. staging or production",
    )


async def load_config(
    config: pathlib.Path | None,
) -> tuple[HeimdizzyConfig, pathlib.Path | None]:
    """Load the configuration, returning it with the file it was read from."""
    loader = ConfigLoader(LoadOptions(path=config))
    result = await loader.load()
    return result, loader.config_path


def project_root(
    config: HeimdizzyConfig, config_path: pathlib.Path | None
) -> pathlib.Path:
    """Resolve the project root, relative paths are relative to the config file."""
    base = config_path.parent if config_path else pathlib.Path.cwd()
    if config.global_.project_root:
        return (base / config.global_.project_root).resolve()
    return GitRepo(base).root() or base


def make_orchestrator(
    config: HeimdizzyConfig, config_path: pathlib.Path | None
) -> Orchestrator:
    """Create an orchestrator using the real external tools."""
    root = project_root(config, config_path)
    toolchain = Toolchain(
        kubectl=Kubectl(kubectl_bin=config.global_.kubectl_path),
        git=GitRepo(root),
    )
    return Orchestrator(config, project_root=root, toolchain=toolchain)
