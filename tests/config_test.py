"""Test configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError
from safir.logging import LogLevel, Profile

from rigger.config import Config
from rigger.dependencies.config import config_dependency

from tests.support.config import config_path


def test_config_defaults() -> None:
    config = Config()
    assert config.log_level == LogLevel.INFO
    assert config.log_profile == Profile.development
    assert config.kubeconfig is None
    assert config.kube_context is None
    assert config.http_timeout == 20.0
    assert config.retry_interval == timedelta(seconds=5)
    assert config.timeout == timedelta(seconds=600)
    assert config.cleanup_retry_interval == timedelta(seconds=1)
    assert config.cleanup_timeout == timedelta(seconds=5)


def test_config_file() -> None:
    config = Config.from_file(config_path("full"))
    assert config.log_level == LogLevel.DEBUG
    assert config.kubeconfig == Path("/etc/rigger/kubeconfig")
    assert config.kube_context == "test-cluster"
    assert config.http_timeout == 5.0
    assert config.retry_interval == timedelta(seconds=2)
    assert config.timeout == timedelta(minutes=5)
    assert config.cleanup_retry_interval == timedelta(seconds=1)
    assert config.cleanup_timeout == timedelta(seconds=30)


def test_config_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RIGGER_TIMEOUT", "10m")
    monkeypatch.setenv("RIGGER_KUBE_CONTEXT", "other-cluster")
    config = Config.from_file(config_path("full"))
    assert config.timeout == timedelta(minutes=10)
    assert config.kube_context == "other-cluster"
    assert config.retry_interval == timedelta(seconds=2)


def test_config_invalid(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("httpTimeout: 0\n")
    with pytest.raises(ValidationError):
        Config.from_file(path)

    path.write_text("unknownSetting: true\n")
    with pytest.raises(ValidationError):
        Config.from_file(path)


def test_config_dependency_missing_file(tmp_path: Path) -> None:
    config_dependency.set_config_path(tmp_path / "missing.yaml")
    config = config_dependency.config()
    assert config.timeout == timedelta(seconds=600)

    config_dependency.set_config_path(config_path("base"))
    config = config_dependency.config()
    assert config.timeout == timedelta(seconds=0.5)
    assert config_dependency.config_path == config_path("base")
