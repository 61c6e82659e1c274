"""Test fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import structlog
from httpx import AsyncClient
from kubernetes_asyncio.client import ApiClient

from rigger.config import Config
from rigger.factory import Factory

from tests.support.config import configure
from tests.support.kubernetes import MockKubernetesApi, patch_kubernetes


@pytest.fixture(autouse=True)
def environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear environment variables that would override test settings."""
    for setting in (
        "KUBECONFIG",
        "RIGGER_HTTP_TIMEOUT",
        "RIGGER_KUBECONFIG",
        "RIGGER_KUBE_CONTEXT",
        "RIGGER_LOG_LEVEL",
        "RIGGER_LOG_PROFILE",
        "RIGGER_RETRY_INTERVAL",
        "RIGGER_TIMEOUT",
        "RIGGER_CLEANUP_RETRY_INTERVAL",
        "RIGGER_CLEANUP_TIMEOUT",
    ):
        monkeypatch.delenv(setting, raising=False)


@pytest.fixture
def config() -> Config:
    """Set up and return the default test configuration.

    The test configuration uses JSON logging so that log messages can be
    checked with `tests.support.logging.parse_log`, and short poll intervals
    and timeouts so that readiness tests run quickly.
    """
    return configure("base")


@pytest_asyncio.fixture
async def factory(
    config: Config, mock_kubernetes: MockKubernetesApi
) -> AsyncIterator[Factory]:
    """Return a component factory backed by the mock Kubernetes API."""
    logger = structlog.get_logger("rigger")
    async with ApiClient() as api_client:
        async with AsyncClient() as http_client:
            yield Factory(config, api_client, http_client, logger)


@pytest.fixture
def mock_kubernetes() -> Iterator[MockKubernetesApi]:
    """Replace the Kubernetes API with a mock class."""
    with patch_kubernetes() as mock_api:
        yield mock_api


@pytest.fixture
def namespace() -> str:
    """Namespace into which test operators are provisioned."""
    return "rigger-test"
