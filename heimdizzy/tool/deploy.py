"""Heimdizzy deploy action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
    BooleanOptionalAction,
)
import logging
import pathlib
import sys
from typing import cast

import yaml

from heimdizzy.orchestrator import DeployOptions

from . import common

_LOGGER = logging.getLogger(__name__)


class DeployAction:
    """Heimdizzy deploy action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "deploy",
                help="Deploy the service to an environment",
                description="""Runs the deployment pipeline for the target
                    matching the environment: build, upload, hooks, the
                    deployment strategy for the target's type and
                    notifications.""",
            ),
        )
        common.add_environment_arg(args)
        common.add_config_flag(args)
        args.add_argument(
            "-p",
            "--product",
            type=str,
            default=None,
            help="Product name reported in notifications",
        )
        args.add_argument(
            "--skip-build",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Skip the build phase and use a previously built artifact",
        )
        args.add_argument(
            "--skip-upload",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Skip uploading the artifact",
        )
        args.add_argument(
            "--dry-run",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Log what would be done without making changes",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        environment: str,
        config: pathlib.Path | None,
        product: str | None,
        skip_build: bool,
        skip_upload: bool,
        dry_run: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        heimdizzy_config, config_path = await common.load_config(config)
        orchestrator = common.make_orchestrator(heimdizzy_config, config_path)
        report = await orchestrator.run(
            environment,
            DeployOptions(
                dry_run=dry_run,
                skip_build=skip_build,
                skip_upload=skip_upload,
                product=product,
            ),
        )
        yaml.dump(report.to_dict(), sys.stdout, sort_keys=False, explicit_start=True)
