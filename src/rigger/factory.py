"""Create Rigger components."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Self

import structlog
from httpx import AsyncClient
from kubernetes_asyncio.client import ApiClient, Configuration
from kubernetes_asyncio.config import (
    ConfigException,
    load_incluster_config,
    load_kube_config,
)
from structlog.stdlib import BoundLogger

from .builder import OperatorBuilder
from .config import Config
from .dependencies.config import config_dependency
from .exceptions import ConfigurationError
from .models.provisioning import OperatorFamily
from .services.applier import DynamicApplier
from .services.readiness import ReadinessService
from .storage.kubernetes import (
    KubernetesDynamicStorage,
    KubernetesResourceStorage,
)
from .storage.manifest import ManifestSource

__all__ = ["Factory", "create_api_client"]


async def create_api_client(config: Config) -> ApiClient:
    """Create a Kubernetes client for the configured cluster.

    The client configuration is built explicitly rather than stored in the
    global default, so clients for different clusters can be used at the same
    time.

    Parameters
    ----------
    config
        Rigger configuration.

    Returns
    -------
    kubernetes_asyncio.client.ApiClient
        Kubernetes client. The caller is responsible for closing it.

    Raises
    ------
    ConfigurationError
        Raised if no usable cluster configuration was found.
    """
    configuration = Configuration()
    try:
        if config.kubeconfig or config.kube_context:
            kubeconfig = str(config.kubeconfig) if config.kubeconfig else None
            await load_kube_config(
                config_file=kubeconfig,
                context=config.kube_context,
                client_configuration=configuration,
            )
        else:
            try:
                load_incluster_config(client_configuration=configuration)
            except ConfigException:
                await load_kube_config(client_configuration=configuration)
    except ConfigException as e:
        msg = f"Cannot load Kubernetes configuration: {e!s}"
        raise ConfigurationError(msg) from e
    return ApiClient(configuration)


class Factory:
    """Build Rigger components.

    Parameters
    ----------
    config
        Rigger configuration.
    api_client
        Kubernetes client.
    http_client
        HTTP client used to download manifests.
    logger
        Logger to use.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(
        cls, config: Config | None = None
    ) -> AsyncIterator[Self]:
        """Async context manager for Rigger components.

        Creates the Kubernetes and HTTP clients and closes them on exit.

        Parameters
        ----------
        config
            Rigger configuration. If not given, the configuration is loaded
            from the configuration file, if present, and the environment.

        Yields
        ------
        Factory
            The factory. Must be used as an async context manager.

        Examples
        --------
        .. code-block:: python

           async with Factory.standalone() as factory:
               builder = factory.create_builder(OperatorFamily.router)
               operator = await builder.with_namespace("test").build()
        """
        if not config:
            config = config_dependency.config()
        logger = structlog.get_logger("rigger")
        api_client = await create_api_client(config)
        async with api_client:
            async with AsyncClient(timeout=config.http_timeout) as client:
                yield cls(config, api_client, client, logger)

    def __init__(
        self,
        config: Config,
        api_client: ApiClient,
        http_client: AsyncClient,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._api_client = api_client
        self._http_client = http_client
        self._logger = logger

    @property
    def api_client(self) -> ApiClient:
        """Underlying Kubernetes client, mainly for tests."""
        return self._api_client

    def create_applier(self) -> DynamicApplier:
        """Create an applier for manifests of arbitrary kinds.

        Returns
        -------
        DynamicApplier
            Newly-created applier.
        """
        storage = self.create_dynamic_storage()
        return DynamicApplier(storage, self._logger)

    def create_builder(
        self, family: OperatorFamily = OperatorFamily.base
    ) -> OperatorBuilder:
        """Create a builder for a new operator.

        Parameters
        ----------
        family
            Family of the operator.

        Returns
        -------
        OperatorBuilder
            Newly-created builder.
        """
        return OperatorBuilder(
            self._api_client,
            family=family,
            config=self._config,
            logger=self._logger,
            http_client=self._http_client,
        )

    def create_dynamic_storage(self) -> KubernetesDynamicStorage:
        """Create storage for Kubernetes objects of arbitrary kinds."""
        return KubernetesDynamicStorage(self._api_client, self._logger)

    def create_manifest_source(self) -> ManifestSource:
        """Create a source for loading manifests."""
        return ManifestSource(
            self._http_client, self._logger, timeout=self._config.http_timeout
        )

    def create_readiness_service(self) -> ReadinessService:
        """Create a service for waiting for workloads to become ready.

        Returns
        -------
        ReadinessService
            Newly-created readiness service.
        """
        return ReadinessService(
            self.create_resource_storage(),
            self.create_dynamic_storage(),
            self._config,
            self._logger,
        )

    def create_resource_storage(self) -> KubernetesResourceStorage:
        """Create storage for Kubernetes objects of well-known kinds."""
        return KubernetesResourceStorage(self._api_client, self._logger)
