"""Tests for command library."""

import pytest

from heimdizzy.command import Command, run, shell
from heimdizzy.exceptions import BuildError, CommandException


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_command_stdin() -> None:
    """Test passing input on stdin."""
    result = await run(Command(["cat"]), b"secret")
    assert result == "secret"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_failed_command_exception_type() -> None:
    """Test a failing command raises the configured exception."""
    with pytest.raises(BuildError, match="return code 1"):
        await run(Command(["/bin/false"], exc=BuildError))


async def test_allowed_return_code() -> None:
    """Test a non-zero return code that is allowed."""
    result = await run(Command(["sh", "-c", "echo partial; exit 3"], retcodes=[3]))
    assert result == "partial\n"


async def test_command_timeout() -> None:
    """Test a command that runs longer than its timeout."""
    with pytest.raises(BuildError, match="timed out"):
        await run(Command(["sleep", "5"], exc=BuildError, timeout=0.2))


async def test_shell() -> None:
    """Test running a shell script string."""
    result = await run(shell("echo one && echo two"))
    assert result == "one\ntwo\n"


async def test_command_env() -> None:
    """Test environment variables are passed to the subprocess."""
    result = await run(
        Command(["sh", "-c", "echo $HEIMDIZZY_TEST"], env={"HEIMDIZZY_TEST": "x"})
    )
    assert result == "x\n"
