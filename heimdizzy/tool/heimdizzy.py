"""Command line tool for deploying services described by heimdizzy.yml."""

import argparse
import asyncio
from collections.abc import Coroutine
import logging
import signal
import sys
import traceback
from typing import Any

from heimdizzy.exceptions import HeimdizzyException

from . import build, cleanup, deploy, validate

_LOGGER = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Configuration driven deployment orchestrator.",
    )
    parser.add_argument("--log-level", choices=LOG_LEVELS, default="INFO")

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    deploy.DeployAction.register(subparsers)
    build.BuildAction.register(subparsers)
    validate.ValidateAction.register(subparsers)
    cleanup.CleanupAction.register(subparsers)
    return parser


async def run_cancellable(coro: Coroutine[Any, Any, None]) -> None:
    """Run the action, cancelling it when the process is interrupted.

    Cancellation unwinds through the action so resources it acquired are
    released before the process exits.
    """
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(coro)
    signals = (signal.SIGINT, signal.SIGTERM)
    for signum in signals:
        loop.add_signal_handler(signum, task.cancel)
    try:
        await task
    finally:
        for signum in signals:
            loop.remove_signal_handler(signum)


def main(argv: list[str] | None = None) -> None:
    """Heimdizzy command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    action = args.cls()
    try:
        asyncio.run(run_cancellable(action.run(**vars(args))))
    except HeimdizzyException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("heimdizzy error: ", err, file=sys.stderr)
        sys.exit(1)
    except asyncio.CancelledError:
        print("heimdizzy: interrupted, cleaned up resources", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
