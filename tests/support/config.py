"""Build test configuration for Rigger."""

from __future__ import annotations

from pathlib import Path

from rigger.config import Config
from rigger.dependencies.config import config_dependency

__all__ = ["config_path", "configure"]


def config_path(filename: str) -> Path:
    """Return the path to a test configuration file.

    Parameters
    ----------
    filename
        The base name of a test configuration file.

    Returns
    -------
    Path
        The path to that file.
    """
    return (
        Path(__file__).parent.parent / "data" / "config" / (filename + ".yaml")
    )


def configure(filename: str) -> Config:
    """Change the test configuration.

    Parameters
    ----------
    filename
        Configuration file to use.

    Returns
    -------
    Config
        The new configuration.
    """
    config_dependency.set_config_path(config_path(filename))
    return config_dependency.config()
