"""Build provisioned operators."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Any, Self

import structlog
from httpx import AsyncClient
from kubernetes_asyncio.client import ApiClient
from structlog.stdlib import BoundLogger

from .config import Config
from .constants import ROUTER_MANIFEST_BASE_URL
from .exceptions import BuilderFinalizedError
from .models.provisioning import (
    OperatorFamily,
    OperatorProfile,
    ProvisioningConfig,
)
from .services.applier import DynamicApplier
from .services.dispatcher import ManifestDispatcher
from .services.lifecycle import OperatorLifecycle
from .storage.kubernetes import (
    KubernetesDynamicStorage,
    KubernetesResourceStorage,
)
from .storage.manifest import ManifestSource

__all__ = ["OPERATOR_PROFILES", "OperatorBuilder"]

OPERATOR_PROFILES: dict[OperatorFamily, OperatorProfile] = {
    OperatorFamily.base: OperatorProfile(),
    OperatorFamily.broker: OperatorProfile(
        default_name="broker-operator",
        default_image="quay.io/artemiscloud/activemq-artemis-operator",
        crd_names=(
            "activemqartemisaddresses.broker.amq.io",
            "activemqartemises.broker.amq.io",
            "activemqartemisscaledowns.broker.amq.io",
        ),
        group_name="broker.amq.io",
        default_api_version="v2alpha1",
    ),
    OperatorFamily.router: OperatorProfile(
        default_name="qdr-operator",
        default_manifest_urls=tuple(
            ROUTER_MANIFEST_BASE_URL + path
            for path in (
                "service_account.yaml",
                "role.yaml",
                "role_binding.yaml",
                "cluster_role.yaml",
                "cluster_role_binding.yaml",
                "crds/interconnectedcloud_v1alpha1_interconnect_crd.yaml",
                "operator.yaml",
            )
        ),
        crd_names=("interconnects.interconnectedcloud.github.io",),
        group_name="interconnectedcloud.github.io",
        default_api_version="v1alpha1",
    ),
}
"""Defaults for each family of operators."""


class OperatorBuilder:
    """Accumulate settings for an operator and then provision it.

    Settings may be changed, with chained calls, until the builder is
    finalized. After that, every setter raises
    `~rigger.exceptions.BuilderFinalizedError`.

    Parameters
    ----------
    api_client
        Kubernetes client for the cluster in which to provision the operator.
    family
        Family of the operator, which supplies defaults for settings that are
        not set.
    config
        Rigger configuration. If not given, the defaults are used.
    logger
        Logger to use. If not given, the ``rigger`` logger is used.
    http_client
        HTTP client used to download manifests. If not given, a client is
        created for each download.
    """

    def __init__(
        self,
        api_client: ApiClient,
        *,
        family: OperatorFamily = OperatorFamily.base,
        config: Config | None = None,
        logger: BoundLogger | None = None,
        http_client: AsyncClient | None = None,
    ) -> None:
        self._api_client = api_client
        self._config = config or Config()
        self._logger = logger or structlog.get_logger("rigger")
        self._http_client = http_client
        self._settings = ProvisioningConfig(family=family)
        self._finalized = False

    @property
    def finalized(self) -> bool:
        """Whether the builder has been finalized."""
        return self._finalized

    @property
    def settings(self) -> ProvisioningConfig:
        """The settings accumulated so far, without family defaults."""
        return self._settings

    def with_namespace(self, namespace: str) -> Self:
        """Set the namespace for namespaced resources."""
        self._update("namespace", namespace=namespace)
        return self

    def with_image(self, image: str) -> Self:
        """Override the image of the operator deployment."""
        self._update("image", image=image)
        return self

    def with_command(self, command: str) -> Self:
        """Override the command of the operator container."""
        self._update("command", command=command)
        return self

    def with_manifest_urls(self, urls: Iterable[str]) -> Self:
        """Replace the URLs of the manifests to apply."""
        self._update("manifest URLs", manifest_urls=tuple(urls))
        return self

    def add_manifest_url(self, url: str) -> Self:
        """Add a URL to the end of the manifests to apply."""
        urls = (*self._settings.manifest_urls, url)
        self._update("manifest URLs", manifest_urls=urls)
        return self

    def with_manifests(self, manifests: Iterable[bytes | str]) -> Self:
        """Replace the manifests to apply with pre-loaded data.

        Parameters
        ----------
        manifests
            Manifest buffers, each of which may contain several documents.
        """
        buffers = tuple(
            m.encode() if isinstance(m, str) else m for m in manifests
        )
        self._update("manifests", manifests=buffers)
        return self

    def with_operator_name(self, name: str) -> Self:
        """Override the name of the operator deployment."""
        self._update("operator name", name=name)
        return self

    def keep_cluster_resources(self, *, keep: bool = True) -> Self:
        """Leave cluster-scoped resources in place on teardown."""
        self._update("keep cluster resources", keep_cluster_resources=keep)
        return self

    def set_admin_unavailable(self, *, unavailable: bool = True) -> Self:
        """Indicate that CRDs were installed by a cluster administrator.

        CRD manifests are then skipped during setup and never deleted.
        """
        self._update("admin unavailable", admin_unavailable=unavailable)
        return self

    def with_api_version(self, api_version: str) -> Self:
        """Override the API version of the operator's custom resources."""
        self._update("API version", api_version=api_version)
        return self

    def with_global_namespace(self, *, enabled: bool = True) -> Self:
        """Make the operator watch all namespaces."""
        self._update("global namespace", global_namespace=enabled)
        return self

    def finalize(self) -> Self:
        """Lock the settings against further changes."""
        self._finalized = True
        return self

    def create_lifecycle(self) -> OperatorLifecycle:
        """Finalize the builder and create the operator without setting it up.

        Use this instead of `build` to be able to tear down whatever was
        created if setup fails. Nothing is sent to the cluster.

        Returns
        -------
        OperatorLifecycle
            The operator, not yet provisioned.
        """
        self.finalize()
        profile = OPERATOR_PROFILES[self._settings.family]
        settings = self._apply_defaults(self._settings, profile)
        logger = self._logger.bind(family=settings.family.value)

        storage = KubernetesResourceStorage(self._api_client, logger)
        dynamic_storage = KubernetesDynamicStorage(self._api_client, logger)
        applier = DynamicApplier(dynamic_storage, logger)
        return OperatorLifecycle(
            settings=settings,
            profile=profile,
            manifest_source=ManifestSource(
                self._http_client, logger, timeout=self._config.http_timeout
            ),
            dispatcher=ManifestDispatcher(storage, applier, logger),
            applier=applier,
            storage=storage,
            logger=logger,
        )

    async def build(self) -> OperatorLifecycle:
        """Finalize the builder and provision the operator.

        Returns
        -------
        OperatorLifecycle
            The provisioned operator.

        Raises
        ------
        ConfigurationError
            Raised if the settings are incomplete or inconsistent.
        KubernetesError
            Raised if an object could not be created.
        ManifestError
            Raised if the manifests could not be loaded.
        """
        lifecycle = self.create_lifecycle()
        await lifecycle.setup()
        return lifecycle

    def _apply_defaults(
        self, settings: ProvisioningConfig, profile: OperatorProfile
    ) -> ProvisioningConfig:
        """Fill in unset settings from the family profile."""
        manifest_urls = settings.manifest_urls
        if not manifest_urls and not settings.manifests:
            manifest_urls = profile.default_manifest_urls
        return replace(
            settings,
            name=settings.name or profile.default_name,
            image=settings.image or profile.default_image,
            api_version=settings.api_version or profile.default_api_version,
            manifest_urls=manifest_urls,
        )

    def _update(self, setting: str, **changes: Any) -> None:
        """Change settings, refusing if the builder is finalized."""
        if self._finalized:
            raise BuilderFinalizedError(setting)
        self._settings = replace(self._settings, **changes)
