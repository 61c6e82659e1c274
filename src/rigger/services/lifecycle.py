"""Provision and tear down one operator."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from kubernetes_asyncio.client import V1Deployment
from structlog.stdlib import BoundLogger

from ..exceptions import ConfigurationError, LifecycleStateError
from ..models.provisioning import (
    DynamicAction,
    LifecycleState,
    OperatorProfile,
    ProvisionedResource,
    ProvisioningConfig,
    ProvisioningState,
    ResourceKind,
)
from ..storage.kubernetes import KubernetesResourceStorage
from ..storage.manifest import ManifestSource
from .applier import DynamicApplier
from .dispatcher import ManifestDispatcher

__all__ = ["OperatorLifecycle"]


class OperatorLifecycle:
    """An operator that can be set up and torn down.

    Created by `~rigger.builder.OperatorBuilder` with settings that no longer
    change. Setup creates the objects described by the operator's manifests
    and records them. Teardown deletes only the recorded objects that setup
    actually created, so anything that already existed is left alone.

    Namespaced objects are deleted by `teardown_each`, which is meant to be
    called after each test, and cluster-scoped objects by `teardown_suite`,
    which is meant to be called once at the end of the test run.

    Parameters
    ----------
    settings
        Settings for this operator, with family defaults already applied.
    profile
        Defaults for the operator's family.
    manifest_source
        Source used to load the manifests.
    dispatcher
        Dispatcher used to create objects from the manifests.
    applier
        Applier used to delete CRDs and for arbitrary manifests.
    storage
        Storage for well-known Kubernetes kinds.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        settings: ProvisioningConfig,
        profile: OperatorProfile,
        manifest_source: ManifestSource,
        dispatcher: ManifestDispatcher,
        applier: DynamicApplier,
        storage: KubernetesResourceStorage,
        logger: BoundLogger,
    ) -> None:
        self._settings = settings
        self._profile = profile
        self._source = manifest_source
        self._dispatcher = dispatcher
        self._applier = applier
        self._storage = storage
        self._logger = logger.bind(
            operator=settings.name, namespace=settings.namespace
        )
        self._state = ProvisioningState()
        self._lifecycle_state = LifecycleState.unprovisioned

    @property
    def settings(self) -> ProvisioningConfig:
        """Settings used to provision the operator."""
        return self._settings

    @property
    def namespace(self) -> str | None:
        """Namespace into which the operator is provisioned."""
        return self._settings.namespace

    @property
    def name(self) -> str | None:
        """Name of the operator deployment, if overridden."""
        return self._settings.name

    @property
    def image(self) -> str | None:
        """Image of the operator, if overridden."""
        return self._settings.image

    @property
    def crd_names(self) -> tuple[str, ...]:
        """Names of the CRDs the operator manages."""
        return self._profile.crd_names

    @property
    def group_name(self) -> str | None:
        """API group of the operator's custom resources."""
        return self._profile.group_name

    @property
    def api_version(self) -> str | None:
        """API version of the operator's custom resources."""
        return self._settings.api_version

    @property
    def state(self) -> LifecycleState:
        """Current state of the operator."""
        return self._lifecycle_state

    @property
    def keep_resources(self) -> bool:
        """Whether any resource already existed during setup.

        Once this is `True`, it stays `True`.
        """
        return self._state.keep_resources

    @property
    def resources(self) -> list[ProvisionedResource]:
        """Every resource recorded during setup, in order."""
        return list(self._state.resources)

    @property
    def service_account(self) -> ProvisionedResource | None:
        """The last ``ServiceAccount`` recorded during setup."""
        return self._state.last(ResourceKind.ServiceAccount)

    @property
    def role(self) -> ProvisionedResource | None:
        """The last ``Role`` recorded during setup."""
        return self._state.last(ResourceKind.Role)

    @property
    def cluster_role(self) -> ProvisionedResource | None:
        """The last ``ClusterRole`` recorded during setup."""
        return self._state.last(ResourceKind.ClusterRole)

    @property
    def role_binding(self) -> ProvisionedResource | None:
        """The last ``RoleBinding`` recorded during setup."""
        return self._state.last(ResourceKind.RoleBinding)

    @property
    def cluster_role_binding(self) -> ProvisionedResource | None:
        """The last ``ClusterRoleBinding`` recorded during setup."""
        return self._state.last(ResourceKind.ClusterRoleBinding)

    @property
    def deployment(self) -> ProvisionedResource | None:
        """The last ``Deployment`` recorded during setup."""
        return self._state.last(ResourceKind.Deployment)

    @property
    def crds(self) -> list[ProvisionedResource]:
        """Every ``CustomResourceDefinition`` recorded during setup."""
        return self._state.all_of(ResourceKind.CustomResourceDefinition)

    async def setup(self) -> None:
        """Create the objects described by the operator's manifests.

        On failure, objects created before the failing manifest are left in
        place and the operator stays unprovisioned. Teardown may still be
        called to remove them.

        Raises
        ------
        ConfigurationError
            Raised if no namespace was configured, or if the manifest source
            is missing or ambiguous.
        KubernetesError
            Raised if an object could not be created for any reason other
            than already existing.
        LifecycleStateError
            Raised if setup has already been done.
        ManifestError
            Raised if a manifest could not be loaded, could not be parsed, or
            has an unsupported kind.
        """
        if self._lifecycle_state != LifecycleState.unprovisioned:
            msg = f"Cannot set up operator in state {self._lifecycle_state}"
            raise LifecycleStateError(msg)
        if not self._settings.namespace:
            raise ConfigurationError("No namespace configured for operator")
        documents = await self._source.load(
            urls=self._settings.manifest_urls,
            buffers=self._settings.manifests,
        )
        for document in documents:
            await self._dispatcher.dispatch(
                document, self._settings, self._state
            )
        self._lifecycle_state = LifecycleState.provisioned
        self._logger.info(
            "Operator provisioned",
            resources=len(self._state.resources),
            keep_resources=self._state.keep_resources,
        )

    async def teardown_each(self) -> None:
        """Delete the namespaced objects created by setup.

        The service account, role, role binding, and deployment are deleted
        in that order. Objects that already existed before setup, and objects
        that are already gone, are skipped.

        Raises
        ------
        KubernetesError
            Raised if an object could not be deleted.
        """
        for resource in self._owned(ResourceKind.ServiceAccount):
            await self._delete(
                resource, self._storage.delete_service_account
            )
        for resource in self._owned(ResourceKind.Role):
            await self._delete(resource, self._storage.delete_role)
        for resource in self._owned(ResourceKind.RoleBinding):
            await self._delete(resource, self._storage.delete_role_binding)
        for resource in self._owned(ResourceKind.Deployment):
            await self._delete(resource, self._storage.delete_deployment)

    async def teardown_suite(self) -> None:
        """Delete the cluster-scoped objects created by setup.

        The cluster role, cluster role binding, and CRDs are deleted in that
        order. Nothing is deleted if cluster resources are to be kept.
        Objects that already existed before setup, and objects that are
        already gone, are skipped.

        Raises
        ------
        KubernetesError
            Raised if an object could not be deleted.
        """
        if self._settings.keep_cluster_resources:
            self._logger.info("Keeping cluster resources")
        else:
            for resource in self._owned(ResourceKind.ClusterRole):
                name = resource.name
                deleted = await self._storage.delete_cluster_role(name)
                self._log_deletion(resource, deleted=deleted)
            for resource in self._owned(ResourceKind.ClusterRoleBinding):
                name = resource.name
                deleted = await self._storage.delete_cluster_role_binding(name)
                self._log_deletion(resource, deleted=deleted)
            crds = self._owned(ResourceKind.CustomResourceDefinition)
            if crds:
                await self._applier.apply_documents(
                    [r.body for r in crds], DynamicAction.delete, None
                )
        self._lifecycle_state = LifecycleState.torn_down

    async def get_deployment(self) -> V1Deployment | None:
        """Retrieve the operator's deployment.

        Returns
        -------
        kubernetes_asyncio.client.V1Deployment or None
            The deployment, or `None` if none was provisioned or it no longer
            exists.
        """
        deployment = self.deployment
        if not deployment or not deployment.namespace:
            return None
        return await self._storage.read_deployment(
            deployment.name, deployment.namespace
        )

    async def update_deployment(
        self, body: V1Deployment | dict[str, Any]
    ) -> None:
        """Replace the operator's deployment with a new definition.

        Raises
        ------
        LifecycleStateError
            Raised if no deployment was provisioned.
        KubernetesError
            Raised if the deployment could not be replaced.
        """
        deployment = self._require_deployment()
        assert deployment.namespace
        await self._storage.replace_deployment(
            deployment.name, deployment.namespace, body
        )

    async def delete_deployment(self) -> None:
        """Delete the operator's deployment, if it still exists.

        Raises
        ------
        LifecycleStateError
            Raised if no deployment was provisioned.
        KubernetesError
            Raised if the deployment could not be deleted.
        """
        deployment = self._require_deployment()
        assert deployment.namespace
        await self._storage.delete_deployment(
            deployment.name, deployment.namespace
        )

    async def create_resources_from_yaml(
        self, data: bytes | str
    ) -> list[dict[str, Any]]:
        """Create arbitrary objects in the operator's namespace.

        Parameters
        ----------
        data
            One or more manifest documents of any kind.

        Returns
        -------
        list of dict
            Bodies of the created objects.

        Raises
        ------
        ConfigurationError
            Raised if an object is namespaced, does not specify a namespace,
            and no namespace was configured.
        KubernetesError
            Raised if an object could not be created, including if it already
            exists.
        ManifestDecodeError
            Raised if the manifests could not be parsed.
        """
        return await self._applier.apply(
            data, DynamicAction.create, self.namespace
        )

    async def delete_resources_from_yaml(
        self, data: bytes | str
    ) -> list[dict[str, Any]]:
        """Delete arbitrary objects from the operator's namespace.

        Objects that do not exist are skipped.
        """
        return await self._applier.apply(
            data, DynamicAction.delete, self.namespace
        )

    async def create_resources_from_location(
        self, location: str | Path
    ) -> list[dict[str, Any]]:
        """Create arbitrary objects from a manifest URL or file.

        Parameters
        ----------
        location
            An ``http`` or ``https`` URL, or a path to a local file.

        Returns
        -------
        list of dict
            Bodies of the created objects.

        Raises
        ------
        KubernetesError
            Raised if an object could not be created.
        ManifestError
            Raised if the manifest could not be retrieved or parsed.
        """
        data = await self._source.read_location(str(location))
        return await self.create_resources_from_yaml(data)

    async def _delete(
        self,
        resource: ProvisionedResource,
        delete: Callable[[str, str], Awaitable[bool]],
    ) -> None:
        assert resource.namespace
        deleted = await delete(resource.name, resource.namespace)
        self._log_deletion(resource, deleted=deleted)

    def _log_deletion(
        self, resource: ProvisionedResource, *, deleted: bool
    ) -> None:
        if deleted:
            self._logger.info("Deleted resource", resource=resource.key)
        else:
            self._logger.debug("Resource already gone", resource=resource.key)

    def _owned(self, kind: ResourceKind) -> list[ProvisionedResource]:
        return [r for r in self._state.all_of(kind) if r.owned]

    def _require_deployment(self) -> ProvisionedResource:
        deployment = self.deployment
        if not deployment:
            raise LifecycleStateError("No deployment was provisioned")
        return deployment
