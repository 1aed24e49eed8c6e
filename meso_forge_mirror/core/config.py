# SPDX-License-Identifier: GPL-3.0-or-later
import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError

from meso_forge_mirror.core.errors import InvalidInput

log = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "meso-forge-mirror.json"


def _env(name: str) -> Optional[str]:
    return os.environ.get(name) or None


class Config(BaseModel):
    """Runtime configuration, loaded from a JSON file or built from defaults."""

    model_config = ConfigDict(extra="forbid")

    max_concurrent_downloads: PositiveInt = 5
    retry_attempts: PositiveInt = 3
    timeout_seconds: PositiveInt = 300
    s3_region: Optional[str] = None
    s3_endpoint: Optional[str] = None
    github_token: Optional[str] = Field(default_factory=lambda: _env("GITHUB_TOKEN"))
    azure_devops_token: Optional[str] = Field(default_factory=lambda: _env("AZURE_DEVOPS_TOKEN"))

    @classmethod
    def load_from_file(cls, path: Union[str, os.PathLike[str]]) -> "Config":
        """
        Load a config file.

        Tokens missing from the file still fall back to the environment.

        :param path: Path to a JSON config file
        :raises InvalidInput: If the file can't be read or doesn't match the schema
        """
        try:
            data = json.loads(Path(path).read_text())
        except OSError as e:
            raise InvalidInput(f"Cannot read config file {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise InvalidInput(
                f"Config file {path} is not valid JSON: {e}",
                solution="Generate a fresh config with the 'init' command and compare.",
            ) from e

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            loc = e.errors()[0]["loc"]
            msg = e.errors()[0]["msg"]
            raise InvalidInput(
                f"Config file {path} format is not valid: '{loc}: {msg}'",
                solution="Generate a fresh config with the 'init' command and compare.",
            ) from e

    def save_to_file(self, path: Union[str, os.PathLike[str]]) -> None:
        """Write the config as pretty-printed JSON."""
        Path(path).write_text(self.model_dump_json(indent=2) + "\n")
        log.debug(f"Wrote config to {path}")


_current_config: Optional[Config] = None


def get_config() -> Config:
    """Get the current process-wide config, creating the default one on first use."""
    global _current_config
    if _current_config is None:
        _current_config = Config()
    return _current_config


def set_config(config: Optional[Config]) -> None:
    """Replace the process-wide config (None resets it to the defaults on next access)."""
    global _current_config
    _current_config = config


def default_cache_dir() -> Path:
    """Return the package cache directory shared with rattler-based tools (pixi, rattler-build)."""
    if rattler_cache := _env("RATTLER_CACHE_DIR"):
        return Path(rattler_cache).expanduser()
    if xdg_cache := _env("XDG_CACHE_HOME"):
        return Path(xdg_cache).expanduser() / "rattler" / "cache"
    return Path.home() / ".cache" / "rattler" / "cache"
