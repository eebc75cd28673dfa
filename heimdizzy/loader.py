"""Configuration loader for `heimdizzy.yml`.

The loader is the only place that reads the configuration file. It is
responsible for:
- Finding the file, walking up from the working directory when no explicit
  file is given
- Expanding `${VAR}` references from the environment before parsing
- Decoding the YAML into `HeimdizzyConfig` and reporting problems as a
  `ConfigurationError`
"""

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import re
from typing import Any

from mashumaro.exceptions import MissingField, InvalidFieldValue
import aiofiles
import yaml

from .config import HeimdizzyConfig, SUPPORTED_VERSION
from .exceptions import ConfigurationError

__all__ = ["ConfigLoader", "LoadOptions", "CONFIG_FILENAME"]

_LOGGER = logging.getLogger(__name__)

CONFIG_FILENAME = "heimdizzy.yml"

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


@dataclass
class LoadOptions:
    """Options for locating the configuration file.

    Attributes:
        path: A configuration file, or a directory to start searching from.
            Defaults to the current working directory.
        environ: Environment used for `${VAR}` expansion.
    """

    path: Path | None = None
    environ: dict[str, str] = field(default_factory=lambda: dict(os.environ))


def expand_environment(content: str, environ: dict[str, str]) -> str:
    """Replace `${VAR}` references, using an empty string for unset variables."""

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if (value := environ.get(name)) is None:
            _LOGGER.warning("Environment variable %s is not set", name)
            return ""
        return value

    return _ENV_VAR_RE.sub(replace, content)


def find_config_file(path: Path | None = None) -> Path | None:
    """Return the configuration file for the path, walking up parent directories."""
    if path is not None and path.is_file():
        return path
    start = (path or Path.cwd()).expanduser().resolve()
    for directory in [start, *start.parents]:
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def parse_config(content: str, source: str = CONFIG_FILENAME) -> HeimdizzyConfig:
    """Decode configuration file contents."""
    try:
        doc: Any = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ConfigurationError(f"Invalid YAML in {source}: {err}") from err
    if not isinstance(doc, dict):
        raise ConfigurationError(f"Invalid {source}: expected a mapping at top level")
    if str(doc.get("version")) != SUPPORTED_VERSION:
        raise ConfigurationError(
            f"Invalid {source}: unsupported version '{doc.get('version')}', "
            f"expected '{SUPPORTED_VERSION}'"
        )
    doc["version"] = SUPPORTED_VERSION
    try:
        return HeimdizzyConfig.from_dict(doc)
    except (MissingField, InvalidFieldValue) as err:
        raise ConfigurationError(f"Invalid {source} configuration: {err}") from err


class ConfigLoader:
    """Loads `heimdizzy.yml` from the filesystem."""

    def __init__(self, options: LoadOptions | None = None) -> None:
        """Initialize the loader."""
        self._options = options or LoadOptions()
        self.config_path: Path | None = None

    async def load(self) -> HeimdizzyConfig:
        """Find, read and decode the configuration file."""
        if (config_path := find_config_file(self._options.path)) is None:
            raise ConfigurationError(
                f"No {CONFIG_FILENAME} found. Create one in your project root."
            )
        _LOGGER.info("Loading configuration from %s", config_path)
        try:
            async with aiofiles.open(config_path, encoding="utf-8") as config_file:
                content = await config_file.read()
        except OSError as err:
            raise ConfigurationError(f"Failed to read {config_path}: {err}") from err

        self.config_path = config_path
        content = expand_environment(content, self._options.environ)
        return parse_config(content, str(config_path))
