"""Configuration dependency."""

from __future__ import annotations

import os
from pathlib import Path

from ..config import Config
from ..constants import CONFIG_PATH

__all__ = ["ConfigDependency", "config_dependency"]


class ConfigDependency:
    """Provides the configuration as a dependency.

    The configuration path defaults to a fixed location but may be overridden
    by the ``RIGGER_CONFIG_PATH`` environment variable or by the test suite.
    If the file does not exist, the configuration is built from environment
    variables alone. The configuration is loaded when first requested and
    reloaded whenever the path is changed.
    """

    def __init__(self) -> None:
        config_path = os.getenv("RIGGER_CONFIG_PATH", CONFIG_PATH)
        self._config_path = Path(config_path)
        self._config: Config | None = None

    @property
    def config_path(self) -> Path:
        """Path to the configuration file."""
        return self._config_path

    def config(self) -> Config:
        """Load the configuration if necessary and return it.

        The configuration is cached until the path is changed.
        """
        if not self._config:
            self._config = self._load()
            self._config.configure_logging()
        return self._config

    def set_config_path(self, path: Path) -> None:
        """Change the configuration path and reload the config.

        Parameters
        ----------
        path
            The new configuration path.
        """
        self._config_path = path
        self._config = self._load()
        self._config.configure_logging()

    def _load(self) -> Config:
        if self._config_path.exists():
            return Config.from_file(self._config_path)
        return Config()


config_dependency = ConfigDependency()
"""The dependency that will return the current configuration."""
