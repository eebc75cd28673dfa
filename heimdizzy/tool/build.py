"""Heimdizzy build action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
    BooleanOptionalAction,
)
import dataclasses
import logging
import pathlib
import sys
from typing import cast

import yaml

from heimdizzy.orchestrator import DeployOptions

from . import common

_LOGGER = logging.getLogger(__name__)


class BuildAction:
    """Heimdizzy build action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "build",
                help="Build the artifact for an environment without deploying",
            ),
        )
        common.add_environment_arg(args)
        common.add_config_flag(args)
        args.add_argument(
            "--dry-run",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Log what would be done without building",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        environment: str,
        config: pathlib.Path | None,
        dry_run: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        heimdizzy_config, config_path = await common.load_config(config)
        orchestrator = common.make_orchestrator(heimdizzy_config, config_path)
        artifact = await orchestrator.build(environment, DeployOptions(dry_run=dry_run))
        yaml.dump(
            dataclasses.asdict(artifact),
            sys.stdout,
            sort_keys=False,
            explicit_start=True,
        )
