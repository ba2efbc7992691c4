"""Configuration management for drivesync.

Settings come from ``DRIVESYNC_*`` environment variables first, then from
the dotenv-style config file in ``~/.config/drivesync/config``, which uses
the same variable names::

    DRIVESYNC_API_KEY=abc123
    export DRIVESYNC_POLL_INTERVAL="12.5"
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import set_key
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError
from .utils import DEFAULT_POLL_INTERVAL

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.drivesync.example/v1"
CONFIG_DIR = Path.home() / ".config" / "drivesync"
ENV_PREFIX = "DRIVESYNC_"


class Settings(BaseSettings):
    """Validated settings, read from the environment and the config file."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    api_key: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    state_dir: Optional[Path] = None
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    workers: int = Field(default=1, ge=1)


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        name = ENV_PREFIX + ".".join(str(part) for part in item["loc"]).upper()
        problems.append(f"{name}: {item['msg']}")
    return "; ".join(problems)


class Config:
    """Resolved drivesync settings.

    The settings are loaded on first access, so an invalid value only
    fails the commands that read configuration.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding the config file and the default
                state directory. Defaults to ~/.config/drivesync
        """
        self.config_dir = config_dir or CONFIG_DIR
        self._settings: Optional[Settings] = None

    def get_config_path(self) -> Path:
        """Return the path of the config file."""
        return self.config_dir / "config"

    @property
    def settings(self) -> Settings:
        """The validated settings.

        Raises:
            ConfigError: If a value in the environment or the config file
                is invalid
        """
        if self._settings is None:
            try:
                self._settings = Settings(_env_file=self.get_config_path())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {_describe(e)}") from e
        return self._settings

    def reload(self) -> None:
        """Forget the loaded settings so the next access reads them again."""
        self._settings = None

    @property
    def api_key(self) -> Optional[str]:
        """API key for the remote storage service."""
        return self.settings.api_key

    @property
    def api_url(self) -> str:
        """Base URL of the remote storage API."""
        return self.settings.api_url

    @property
    def state_dir(self) -> Path:
        """Directory holding one state file per tracked file."""
        if self.settings.state_dir is not None:
            return self.settings.state_dir.expanduser()
        return self.config_dir / "tracked_files"

    @property
    def poll_interval(self) -> float:
        """Seconds between two scheduler cycles."""
        return self.settings.poll_interval

    @property
    def workers(self) -> int:
        """Number of parallel transfers per scheduler cycle."""
        return self.settings.workers

    def is_configured(self) -> bool:
        """Check whether an API key is available."""
        return bool(self.api_key)

    def save_api_key(self, api_key: str) -> None:
        """Store the API key in the config file.

        Other settings already present in the file are preserved and the
        file is made readable by the owner only.
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)
        config_path = self.get_config_path()
        config_path.touch(mode=0o600, exist_ok=True)
        set_key(config_path, f"{ENV_PREFIX}API_KEY", api_key)
        os.chmod(config_path, 0o600)
        logger.debug(f"Saved API key to {config_path}")
        self.reload()


config = Config()
