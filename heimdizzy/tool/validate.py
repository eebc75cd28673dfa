"""Heimdizzy validate action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
)
import logging
import pathlib
from typing import cast

from . import common

_LOGGER = logging.getLogger(__name__)


class ValidateAction:
    """Heimdizzy validate action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "validate",
                help="Validate heimdizzy.yml",
            ),
        )
        common.add_config_flag(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: pathlib.Path | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        heimdizzy_config, _ = await common.load_config(config)
        for target in heimdizzy_config.deployments:
            _LOGGER.info(
                "Target %s (%s): %s",
                target.name,
                target.environment,
                target.deployment.type,
            )
        print("Configuration is valid")
