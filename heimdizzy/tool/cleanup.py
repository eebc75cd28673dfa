"""Heimdizzy cleanup action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
)
import logging
from typing import cast

from heimdizzy.builder import BUILD_IMAGE_PREFIX
from heimdizzy.docker import Docker
from heimdizzy.exceptions import CommandException

_LOGGER = logging.getLogger(__name__)


class CleanupAction:
    """Heimdizzy cleanup action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "cleanup",
                help="Remove local build images left behind by earlier runs",
            ),
        )
        args.add_argument(
            "--pattern",
            type=str,
            default=BUILD_IMAGE_PREFIX,
            help="Remove images whose reference contains this pattern",
        )
        args.set_defaults(cls=cls, docker=None)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        pattern: str,
        docker: Docker | None = None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        docker = docker or Docker()
        images = [image for image in await docker.list_images() if pattern in image]
        if not images:
            print("No images to clean up")
            return
        for image in images:
            try:
                await docker.remove_image(image)
            except CommandException as err:
                _LOGGER.warning("Failed to remove %s: %s", image, err)
                continue
            print(f"Removed {image}")
