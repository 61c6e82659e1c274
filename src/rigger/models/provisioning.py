"""Models for operator provisioning."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

__all__ = [
    "DynamicAction",
    "LifecycleState",
    "OperatorFamily",
    "OperatorProfile",
    "ProvisionedResource",
    "ProvisioningConfig",
    "ProvisioningState",
    "ReadinessQuery",
    "ResourceKind",
]


class DynamicAction(Enum):
    """Action to perform on resources applied through the dynamic client."""

    create = "create"
    delete = "delete"

    @property
    def verb(self) -> str:
        """Progressive form of the action, for error messages."""
        return "creating" if self == DynamicAction.create else "deleting"


class LifecycleState(Enum):
    """State of a provisioned operator."""

    unprovisioned = "unprovisioned"
    provisioned = "provisioned"
    torn_down = "torn_down"


class OperatorFamily(Enum):
    """Families of operators with known default manifests."""

    base = "base"
    broker = "broker"
    router = "router"


class ResourceKind(str, Enum):
    """Kinds of resources handled directly by manifest-driven setup."""

    ServiceAccount = "ServiceAccount"
    Role = "Role"
    ClusterRole = "ClusterRole"
    RoleBinding = "RoleBinding"
    ClusterRoleBinding = "ClusterRoleBinding"
    CustomResourceDefinition = "CustomResourceDefinition"
    Deployment = "Deployment"
    ConfigMap = "ConfigMap"

    @property
    def is_namespaced(self) -> bool:
        """Whether objects of this kind live in a namespace."""
        return self not in _CLUSTER_KINDS


_CLUSTER_KINDS = frozenset(
    {
        ResourceKind.ClusterRole,
        ResourceKind.ClusterRoleBinding,
        ResourceKind.CustomResourceDefinition,
    }
)


@dataclass(frozen=True, slots=True)
class OperatorProfile:
    """Defaults for a family of operators.

    A profile only supplies values the caller did not set on the builder. It
    carries no behavior of its own.
    """

    default_name: str | None = None
    """Operator name if none was set."""

    default_image: str | None = None
    """Operator image if none was set."""

    default_manifest_urls: tuple[str, ...] = ()
    """Manifest URLs if no manifest source was set."""

    crd_names: tuple[str, ...] = ()
    """Names of the CRDs the operator manages."""

    group_name: str | None = None
    """API group of the operator's custom resources."""

    default_api_version: str | None = None
    """API version of the operator's custom resources if none was set."""


@dataclass(frozen=True, slots=True)
class ProvisioningConfig:
    """Settings for provisioning one operator.

    Built up by `~rigger.builder.OperatorBuilder` and copied into the
    resulting lifecycle, after which it never changes.
    """

    namespace: str | None = None
    """Namespace into which namespaced resources are created."""

    name: str | None = None
    """Name of the operator deployment, overriding the manifest."""

    image: str | None = None
    """Image of the operator, overriding the manifest."""

    command: str | None = None
    """Command of the operator container, overriding the manifest."""

    manifest_urls: tuple[str, ...] = ()
    """URLs of the manifests to apply."""

    manifests: tuple[bytes, ...] = ()
    """Pre-loaded manifest buffers to apply."""

    admin_unavailable: bool = False
    """Whether CRDs are already installed by a cluster administrator."""

    keep_cluster_resources: bool = False
    """Whether to leave cluster-scoped resources behind on teardown."""

    global_namespace: bool = False
    """Whether the operator should watch all namespaces."""

    api_version: str | None = None
    """API version of the operator's custom resources."""

    family: OperatorFamily = OperatorFamily.base
    """Family of the operator, which determines defaults."""


@dataclass(slots=True)
class ProvisionedResource:
    """A resource created (or found) during setup."""

    kind: str
    """Kind of the resource."""

    name: str
    """Name of the resource."""

    namespace: str | None
    """Namespace of the resource, or `None` if cluster-scoped."""

    owned: bool
    """Whether this setup created it and teardown should delete it.

    This is `False` if the resource already existed when setup tried to
    create it.
    """

    body: dict[str, Any] = field(default_factory=dict)
    """The request body that was sent to create the resource."""

    @property
    def key(self) -> str:
        """A human-readable key for the resource."""
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


@dataclass(frozen=True, slots=True)
class ReadinessQuery:
    """Parameters for one readiness wait.

    The interval and timeout default to the values from the configuration if
    not given.
    """

    namespace: str
    """Namespace of the object to check."""

    name: str
    """Name of the object to check."""

    count: int = 1
    """Target number of ready replicas."""

    interval: timedelta | None = None
    """How long to wait between checks."""

    timeout: timedelta | None = None
    """How long to wait before giving up."""


@dataclass(slots=True)
class ProvisioningState:
    """Resources recorded by one operator's setup.

    Resources are recorded in the order they were created. Once any resource
    is recorded as not owned, `keep_resources` stays `True` for the life of
    the object.
    """

    resources: list[ProvisionedResource] = field(default_factory=list)
    """Every resource recorded during setup, in order."""

    keep_resources: bool = False
    """Whether any resource already existed when setup tried to create it."""

    def record(self, resource: ProvisionedResource) -> None:
        """Record a resource created or found during setup."""
        self.resources.append(resource)
        if not resource.owned:
            self.keep_resources = True

    def last(self, kind: ResourceKind) -> ProvisionedResource | None:
        """Return the most recently recorded resource of a kind."""
        for resource in reversed(self.resources):
            if resource.kind == kind.value:
                return resource
        return None

    def all_of(self, kind: ResourceKind) -> list[ProvisionedResource]:
        """Return every recorded resource of a kind, in order."""
        return [r for r in self.resources if r.kind == kind.value]
