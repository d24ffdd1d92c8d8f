"""Configuration for the Cloudreve CLI.

Settings are read from ``<user config dir>/cloudreve-cli/config.toml``
and can be overridden through environment variables. The resulting
:class:`Config` is passed explicitly to the components that need it.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from platformdirs import user_cache_dir, user_config_dir

from .exceptions import CloudreveConfigError
from .utils import DEFAULT_WORKERS

logger = logging.getLogger(__name__)

APP_NAME = "cloudreve-cli"
TOKENS_FILE_NAME = "tokens.json"

ENV_URL = "CLOUDREVE_URL"
ENV_EMAIL = "CLOUDREVE_EMAIL"
ENV_POLICY = "CLOUDREVE_POLICY"
ENV_CACHE_DIR = "CLOUDREVE_CACHE_DIR"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def default_config_path() -> Path:
    return Path(user_config_dir(APP_NAME)) / "config.toml"


def default_cache_dir() -> Path:
    return Path(user_cache_dir(APP_NAME))


@dataclass
class Config:
    """User settings for the CLI."""

    default_url: Optional[str] = None
    default_email: Optional[str] = None
    default_policy: Optional[str] = None
    default_upload_path: str = "/"
    default_download_dir: str = "."
    log_level: str = "info"
    workers: int = DEFAULT_WORKERS
    cache_dir: Path = field(default_factory=default_cache_dir)
    config_path: Optional[Path] = None

    @property
    def tokens_file(self) -> Path:
        """Location of the credential cache."""
        return self.cache_dir / TOKENS_FILE_NAME

    @property
    def logging_level(self) -> int:
        return LOG_LEVELS.get(self.log_level.lower(), logging.INFO)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """Load the configuration file and apply environment overrides.

        Args:
            path: Explicit config file (defaults to the user config dir)

        Returns:
            Populated Config (defaults when the file does not exist)

        Raises:
            CloudreveConfigError: If the file is not valid TOML or has bad values
        """
        config_path = path or default_config_path()
        data: dict[str, Any] = {}

        if config_path.exists():
            try:
                with open(config_path, "rb") as f:
                    data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise CloudreveConfigError(
                    f"Invalid config file {config_path}: {e}"
                ) from e
            except OSError as e:
                raise CloudreveConfigError(
                    f"Cannot read config file {config_path}: {e}"
                ) from e
            logger.debug("Loaded config from %s", config_path)

        config = cls.from_dict(data)
        config.config_path = config_path
        config.apply_env(os.environ)
        return config

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        config = cls()
        for key in (
            "default_url",
            "default_email",
            "default_policy",
            "default_upload_path",
            "default_download_dir",
            "log_level",
        ):
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise CloudreveConfigError(f"Config value '{key}' must be a string")
            setattr(config, key, value)

        workers = data.get("workers")
        if workers is not None:
            if not isinstance(workers, int) or isinstance(workers, bool) or workers < 0:
                raise CloudreveConfigError(
                    "Config value 'workers' must be a non-negative integer"
                )
            config.workers = workers

        cache_dir = data.get("cache_dir")
        if cache_dir:
            config.cache_dir = Path(cache_dir).expanduser()
        return config

    def apply_env(self, environ: Any) -> None:
        """Override settings from environment variables."""
        if environ.get(ENV_URL):
            self.default_url = environ[ENV_URL]
        if environ.get(ENV_EMAIL):
            self.default_email = environ[ENV_EMAIL]
        if environ.get(ENV_POLICY):
            self.default_policy = environ[ENV_POLICY]
        if environ.get(ENV_CACHE_DIR):
            self.cache_dir = Path(environ[ENV_CACHE_DIR]).expanduser()
