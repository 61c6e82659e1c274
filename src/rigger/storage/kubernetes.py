"""Kubernetes storage layer for Rigger."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1DaemonSet,
    V1Deployment,
    V1Service,
    V1StatefulSet,
)
from kubernetes_asyncio.dynamic import DynamicClient
from kubernetes_asyncio.dynamic.exceptions import (
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from kubernetes_asyncio.dynamic.resource import Resource
from structlog.stdlib import BoundLogger

from ..exceptions import (
    KubernetesError,
    KubernetesMappingError,
    KubernetesResourceExistsError,
)
from ..models.kubernetes import GroupVersionKind

DELETE_GRACE_PERIOD = 1
"""Grace period (in seconds) for deleting provisioned objects."""

__all__ = [
    "KubernetesDynamicStorage",
    "KubernetesResourceStorage",
    "is_already_exists",
]


def is_already_exists(exc: ApiException) -> bool:
    """Determine whether a Kubernetes error means the object already exists.

    A 409 status is also used for update conflicts, so the reason in the
    returned ``Status`` object is checked as well.

    Parameters
    ----------
    exc
        Exception from the Kubernetes client.

    Returns
    -------
    bool
        `True` if the object already existed, `False` otherwise.
    """
    if exc.status != 409:
        return False
    body = exc.body
    try:
        status = json.loads(body) if body else None
    except (TypeError, ValueError):
        status = None
    if isinstance(status, dict) and status.get("reason") == "AlreadyExists":
        return True
    if isinstance(body, bytes):
        body = body.decode(errors="replace")
    return "already exists" in str(body or "")


@contextmanager
def _convert_exception(
    action: str, kind: str, name: str | None, namespace: str | None = None
) -> Iterator[None]:
    """Convert Kubernetes ApiException to KubernetesError."""
    try:
        yield
    except ApiException as e:
        if action == "creating" and is_already_exists(e):
            raise KubernetesResourceExistsError(
                f"Error {action} object",
                kind=kind,
                name=name,
                namespace=namespace,
                exc=e,
            ) from e
        raise KubernetesError(
            f"Error {action} object",
            kind=kind,
            name=name,
            namespace=namespace,
            exc=e,
        ) from e


class KubernetesResourceStorage:
    """Kubernetes storage layer for well-known resource kinds.

    Wraps the typed Kubernetes API clients for the kinds that Rigger creates
    directly and the workload kinds whose readiness it checks. All failures
    are converted to `~rigger.exceptions.KubernetesError`, and deleting or
    reading an object that does not exist is not an error.

    Parameters
    ----------
    api_client
        Kubernetes async client to use.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._apps_api = client.AppsV1Api(api_client)
        self._core_api = client.CoreV1Api(api_client)
        self._rbac_api = client.RbacAuthorizationV1Api(api_client)
        self._logger = logger

    async def create_service_account(
        self, body: dict[str, Any], namespace: str
    ) -> None:
        """Create a ``ServiceAccount``.

        Parameters
        ----------
        body
            Manifest of the service account.
        namespace
            Namespace in which to create it.

        Raises
        ------
        KubernetesResourceExistsError
            Raised if the service account already exists.
        KubernetesError
            Raised for any other Kubernetes API failure.
        """
        name = body["metadata"]["name"]
        with _convert_exception("creating", "ServiceAccount", name, namespace):
            await self._core_api.create_namespaced_service_account(
                namespace, body
            )

    async def create_role(self, body: dict[str, Any], namespace: str) -> None:
        """Create a ``Role``.

        Parameters
        ----------
        body
            Manifest of the role.
        namespace
            Namespace in which to create it.

        Raises
        ------
        KubernetesResourceExistsError
            Raised if the role already exists.
        KubernetesError
            Raised for any other Kubernetes API failure.
        """
        name = body["metadata"]["name"]
        with _convert_exception("creating", "Role", name, namespace):
            await self._rbac_api.create_namespaced_role(namespace, body)

    async def create_cluster_role(self, body: dict[str, Any]) -> None:
        """Create a ``ClusterRole``."""
        name = body["metadata"]["name"]
        with _convert_exception("creating", "ClusterRole", name):
            await self._rbac_api.create_cluster_role(body)

    async def create_role_binding(
        self, body: dict[str, Any], namespace: str
    ) -> None:
        """Create a ``RoleBinding`` in the given namespace."""
        name = body["metadata"]["name"]
        with _convert_exception("creating", "RoleBinding", name, namespace):
            await self._rbac_api.create_namespaced_role_binding(
                namespace, body
            )

    async def create_cluster_role_binding(self, body: dict[str, Any]) -> None:
        """Create a ``ClusterRoleBinding``."""
        name = body["metadata"]["name"]
        with _convert_exception("creating", "ClusterRoleBinding", name):
            await self._rbac_api.create_cluster_role_binding(body)

    async def create_deployment(
        self, body: dict[str, Any], namespace: str
    ) -> None:
        """Create a ``Deployment`` in the given namespace."""
        name = body["metadata"]["name"]
        with _convert_exception("creating", "Deployment", name, namespace):
            await self._apps_api.create_namespaced_deployment(namespace, body)

    async def delete_service_account(self, name: str, namespace: str) -> bool:
        """Delete a ``ServiceAccount``.

        Parameters
        ----------
        name
            Name of the service account.
        namespace
            Namespace of the service account.

        Returns
        -------
        bool
            `True` if the object was deleted, `False` if it did not exist.

        Raises
        ------
        KubernetesError
            Raised for any Kubernetes API failure other than not found.
        """
        with _convert_exception("deleting", "ServiceAccount", name, namespace):
            try:
                await self._core_api.delete_namespaced_service_account(
                    name, namespace, grace_period_seconds=DELETE_GRACE_PERIOD
                )
            except ApiException as e:
                if e.status == 404:
                    return False
                raise
        return True

    async def delete_role(self, name: str, namespace: str) -> bool:
        """Delete a ``Role``, returning `False` if it did not exist."""
        with _convert_exception("deleting", "Role", name, namespace):
            try:
                await self._rbac_api.delete_namespaced_role(
                    name, namespace, grace_period_seconds=DELETE_GRACE_PERIOD
                )
            except ApiException as e:
                if e.status == 404:
                    return False
                raise
        return True

    async def delete_cluster_role(self, name: str) -> bool:
        """Delete a ``ClusterRole``, returning `False` if it did not exist."""
        with _convert_exception("deleting", "ClusterRole", name):
            try:
                await self._rbac_api.delete_cluster_role(
                    name, grace_period_seconds=DELETE_GRACE_PERIOD
                )
            except ApiException as e:
                if e.status == 404:
                    return False
                raise
        return True

    async def delete_role_binding(self, name: str, namespace: str) -> bool:
        """Delete a ``RoleBinding``, returning `False` if it did not exist."""
        with _convert_exception("deleting", "RoleBinding", name, namespace):
            try:
                await self._rbac_api.delete_namespaced_role_binding(
                    name, namespace, grace_period_seconds=DELETE_GRACE_PERIOD
                )
            except ApiException as e:
                if e.status == 404:
                    return False
                raise
        return True

    async def delete_cluster_role_binding(self, name: str) -> bool:
        """Delete a ``ClusterRoleBinding``.

        Returns `False` if it did not exist.
        """
        with _convert_exception("deleting", "ClusterRoleBinding", name):
            try:
                await self._rbac_api.delete_cluster_role_binding(
                    name, grace_period_seconds=DELETE_GRACE_PERIOD
                )
            except ApiException as e:
                if e.status == 404:
                    return False
                raise
        return True

    async def delete_deployment(self, name: str, namespace: str) -> bool:
        """Delete a ``Deployment``, returning `False` if it did not exist."""
        with _convert_exception("deleting", "Deployment", name, namespace):
            try:
                await self._apps_api.delete_namespaced_deployment(
                    name, namespace, grace_period_seconds=DELETE_GRACE_PERIOD
                )
            except ApiException as e:
                if e.status == 404:
                    return False
                raise
        return True

    async def read_deployment(
        self, name: str, namespace: str
    ) -> V1Deployment | None:
        """Retrieve a ``Deployment``.

        Parameters
        ----------
        name
            Name of the deployment.
        namespace
            Namespace in which the deployment is located.

        Returns
        -------
        kubernetes_asyncio.client.models.V1Deployment or None
            The deployment, or `None` if it doesn't exist.

        Raises
        ------
        KubernetesError
            Raised for any Kubernetes API failure other than not found.
        """
        with _convert_exception("reading", "Deployment", name, namespace):
            try:
                return await self._apps_api.read_namespaced_deployment(
                    name, namespace
                )
            except ApiException as e:
                if e.status == 404:
                    return None
                raise

    async def replace_deployment(
        self, name: str, namespace: str, body: V1Deployment | dict[str, Any]
    ) -> None:
        """Replace a ``Deployment`` with a new definition."""
        with _convert_exception("replacing", "Deployment", name, namespace):
            await self._apps_api.replace_namespaced_deployment(
                name, namespace, body
            )

    async def read_stateful_set(
        self, name: str, namespace: str
    ) -> V1StatefulSet | None:
        """Retrieve a ``StatefulSet``, or `None` if it doesn't exist."""
        with _convert_exception("reading", "StatefulSet", name, namespace):
            try:
                return await self._apps_api.read_namespaced_stateful_set(
                    name, namespace
                )
            except ApiException as e:
                if e.status == 404:
                    return None
                raise

    async def read_daemon_set(
        self, name: str, namespace: str
    ) -> V1DaemonSet | None:
        """Retrieve a ``DaemonSet``, or `None` if it doesn't exist."""
        with _convert_exception("reading", "DaemonSet", name, namespace):
            try:
                return await self._apps_api.read_namespaced_daemon_set(
                    name, namespace
                )
            except ApiException as e:
                if e.status == 404:
                    return None
                raise

    async def read_service(
        self, name: str, namespace: str
    ) -> V1Service | None:
        """Retrieve a ``Service``, or `None` if it doesn't exist."""
        with _convert_exception("reading", "Service", name, namespace):
            try:
                return await self._core_api.read_namespaced_service(
                    name, namespace
                )
            except ApiException as e:
                if e.status == 404:
                    return None
                raise


class KubernetesDynamicStorage:
    """Kubernetes storage layer for arbitrary resource kinds.

    This uses the API server's discovery information to find the REST
    resource and scope for a group, version, and kind, and then issues
    generic requests against it. It trades type safety for the ability to
    handle kinds, such as custom resources, that have no typed client.

    The discovery-backed client is created on first use, so constructing
    this object does not contact the cluster.

    Parameters
    ----------
    api_client
        Kubernetes async client to use.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api_client = api_client
        self._client: DynamicClient | None = None
        self._logger = logger

    async def get_resource(self, gvk: GroupVersionKind) -> Resource:
        """Find the REST resource for a group, version, and kind.

        Parameters
        ----------
        gvk
            Group, version, and kind of the object.

        Returns
        -------
        kubernetes_asyncio.dynamic.resource.Resource
            Resource information, including the resource name and whether it
            is namespaced.

        Raises
        ------
        KubernetesMappingError
            Raised if the API server has no such kind in that group and
            version, or more than one resource matches it.
        KubernetesError
            Raised if the discovery request failed.
        """
        try:
            dynamic_client = await self._get_client()
            return await dynamic_client.resources.get(
                api_version=gvk.api_version, kind=gvk.kind
            )
        except (ResourceNotFoundError, ResourceNotUniqueError) as e:
            msg = f"Error obtaining mapping for {gvk.api_version}: {e!s}"
            raise KubernetesMappingError(msg, kind=gvk.kind) from e
        except ApiException as e:
            msg = f"Error getting API resources for {gvk.api_version}"
            raise KubernetesError(msg, kind=gvk.kind, exc=e) from e

    async def create(
        self, resource: Resource, body: dict[str, Any], namespace: str | None
    ) -> None:
        """Create an object.

        Parameters
        ----------
        resource
            Resource to create, from `get_resource`.
        body
            Manifest of the object.
        namespace
            Namespace in which to create it, or `None` for cluster-scoped
            resources.

        Raises
        ------
        KubernetesResourceExistsError
            Raised if the object already exists.
        KubernetesError
            Raised for any other Kubernetes API failure.
        """
        name = body.get("metadata", {}).get("name")
        action = f"creating resource [group={resource.group}]"
        try:
            dynamic_client = await self._get_client()
            await dynamic_client.create(
                resource, body=body, namespace=namespace
            )
        except ApiException as e:
            error_class = KubernetesError
            if is_already_exists(e):
                error_class = KubernetesResourceExistsError
            raise error_class(
                f"Error {action}",
                kind=resource.kind,
                name=name,
                namespace=namespace,
                exc=e,
            ) from e

    async def delete(
        self, resource: Resource, name: str, namespace: str | None
    ) -> bool:
        """Delete an object.

        Parameters
        ----------
        resource
            Resource to delete, from `get_resource`.
        name
            Name of the object.
        namespace
            Namespace of the object, or `None` for cluster-scoped resources.

        Returns
        -------
        bool
            `True` if the object was deleted, `False` if it did not exist.

        Raises
        ------
        KubernetesError
            Raised for any Kubernetes API failure other than not found.
        """
        action = f"deleting resource [group={resource.group}]"
        try:
            dynamic_client = await self._get_client()
            await dynamic_client.delete(
                resource, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise KubernetesError(
                f"Error {action}",
                kind=resource.kind,
                name=name,
                namespace=namespace,
                exc=e,
            ) from e
        return True

    async def get(
        self, resource: Resource, name: str, namespace: str | None
    ) -> Any | None:
        """Retrieve an object, or `None` if it does not exist."""
        try:
            dynamic_client = await self._get_client()
            return await dynamic_client.get(
                resource, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError(
                f"Error reading resource [group={resource.group}]",
                kind=resource.kind,
                name=name,
                namespace=namespace,
                exc=e,
            ) from e

    async def _get_client(self) -> DynamicClient:
        """Return the dynamic client, loading discovery data if needed."""
        if not self._client:
            self._client = await DynamicClient(self._api_client)
        return self._client
