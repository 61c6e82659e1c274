"""Models for Kubernetes manifests.

The typed models here only describe the fields that Rigger reads or patches.
Every model allows extra fields and passes them through unchanged when the
manifest is converted back into a request body, so manifests may contain
anything the Kubernetes API accepts.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..constants import WATCH_NAMESPACE_VARIABLE

__all__ = [
    "ClusterRoleBindingManifest",
    "ClusterRoleManifest",
    "Container",
    "CustomResourceDefinitionManifest",
    "CustomResourceDefinitionNames",
    "CustomResourceDefinitionSpec",
    "DeploymentManifest",
    "DeploymentSpec",
    "EnvVar",
    "GroupVersionKind",
    "KubernetesManifest",
    "KubernetesMetadata",
    "ManifestEnvelope",
    "PodSpec",
    "PodTemplateSpec",
    "RoleBindingManifest",
    "RoleManifest",
    "RoleRef",
    "ServiceAccountManifest",
    "Subject",
]


class PassthroughModel(BaseModel):
    """Base class for models that preserve unknown fields."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="allow", populate_by_name=True
    )


class GroupVersionKind(BaseModel):
    """The API group, version, and kind of a Kubernetes object."""

    group: str
    """API group, or the empty string for the core group."""

    version: str
    """API version within the group."""

    kind: str
    """Kind of the object."""

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> GroupVersionKind:
        """Split an ``apiVersion`` string into its group and version.

        Parameters
        ----------
        api_version
            Value of the ``apiVersion`` field, such as ``apps/v1`` or ``v1``.
        kind
            Value of the ``kind`` field.

        Returns
        -------
        GroupVersionKind
            Corresponding group, version, and kind.
        """
        if "/" in api_version:
            group, version = api_version.split("/", 1)
        else:
            group, version = "", api_version
        return cls(group=group, version=version, kind=kind)

    @property
    def api_version(self) -> str:
        """The ``apiVersion`` string for this group and version."""
        return f"{self.group}/{self.version}" if self.group else self.version


class ManifestEnvelope(PassthroughModel):
    """The envelope fields common to every manifest.

    Only these fields are decoded when deciding how to handle a manifest.
    The rest of the document is validated later by the typed model for its
    kind, if there is one.
    """

    api_version: str
    """API group and version of the object."""

    kind: str
    """Kind of the object."""

    metadata: dict[str, Any] = Field(default_factory=dict)
    """Metadata of the object, undecoded."""

    spec: Any = None
    """Specification of the object, undecoded."""

    @property
    def gvk(self) -> GroupVersionKind:
        """The group, version, and kind of the object."""
        return GroupVersionKind.from_api_version(self.api_version, self.kind)

    @property
    def name(self) -> str | None:
        """The name of the object, if present."""
        name = self.metadata.get("name")
        return str(name) if name is not None else None


class KubernetesMetadata(PassthroughModel):
    """The metadata section of a Kubernetes manifest."""

    name: str
    """The name of the object."""

    namespace: str | None = None
    """The namespace of the object, if it is namespaced and set."""

    labels: dict[str, str] | None = None
    """The labels of the object."""

    annotations: dict[str, str] | None = None
    """The annotations of the object."""


class KubernetesManifest(PassthroughModel):
    """Base class for typed manifests of well-known kinds."""

    api_version: str
    """API group and version of the object."""

    kind: str
    """Kind of the object."""

    metadata: KubernetesMetadata
    """Metadata section of the object."""

    @property
    def name(self) -> str:
        """The name of the object."""
        return self.metadata.name

    def to_body(self) -> dict[str, Any]:
        """Convert to a request body for the Kubernetes API.

        Returns
        -------
        dict
            The manifest with camel-case keys, omitting unset fields.
        """
        return self.model_dump(by_alias=True, exclude_none=True)


class ServiceAccountManifest(KubernetesManifest):
    """A ``ServiceAccount`` manifest."""

    kind: Literal["ServiceAccount"]


class RoleManifest(KubernetesManifest):
    """A ``Role`` manifest."""

    kind: Literal["Role"]

    rules: list[dict[str, Any]] = Field(default_factory=list)
    """Policy rules granted by the role."""


class ClusterRoleManifest(KubernetesManifest):
    """A ``ClusterRole`` manifest."""

    kind: Literal["ClusterRole"]

    rules: list[dict[str, Any]] = Field(default_factory=list)
    """Policy rules granted by the cluster role."""


class RoleRef(PassthroughModel):
    """Reference to the role granted by a binding."""

    api_group: str
    """API group of the referenced role."""

    kind: str
    """Kind of the referenced role."""

    name: str
    """Name of the referenced role."""


class Subject(PassthroughModel):
    """A subject of a role binding."""

    kind: str
    """Kind of the subject, such as ``ServiceAccount``."""

    name: str
    """Name of the subject."""

    namespace: str | None = None
    """Namespace of the subject, for namespaced subjects."""


class RoleBindingManifest(KubernetesManifest):
    """A ``RoleBinding`` manifest."""

    kind: Literal["RoleBinding"]

    role_ref: RoleRef
    """The role granted by this binding."""

    subjects: list[Subject] = Field(default_factory=list)
    """The subjects to which the role is granted."""


class ClusterRoleBindingManifest(KubernetesManifest):
    """A ``ClusterRoleBinding`` manifest."""

    kind: Literal["ClusterRoleBinding"]

    role_ref: RoleRef
    """The cluster role granted by this binding."""

    subjects: list[Subject] = Field(default_factory=list)
    """The subjects to which the cluster role is granted."""


class CustomResourceDefinitionNames(PassthroughModel):
    """Names of the resource defined by a CRD."""

    kind: str
    """Kind of the custom resource."""

    plural: str
    """Plural resource name used in API paths."""


class CustomResourceDefinitionSpec(PassthroughModel):
    """Specification of a CRD."""

    group: str
    """API group of the custom resource."""

    names: CustomResourceDefinitionNames
    """Names of the custom resource."""

    scope: Literal["Namespaced", "Cluster"]
    """Whether the custom resource is namespaced."""


class CustomResourceDefinitionManifest(KubernetesManifest):
    """A ``CustomResourceDefinition`` manifest."""

    kind: Literal["CustomResourceDefinition"]

    spec: CustomResourceDefinitionSpec
    """Specification of the CRD."""


class EnvVar(PassthroughModel):
    """An environment variable for a container."""

    name: str
    """Name of the environment variable."""

    value: str | None = None
    """Literal value of the environment variable."""


class Container(PassthroughModel):
    """A container in a pod template."""

    name: str
    """Name of the container."""

    image: str | None = None
    """Image the container runs."""

    command: list[str] | None = None
    """Entrypoint of the container."""

    env: list[EnvVar] | None = None
    """Environment variables for the container."""


class PodSpec(PassthroughModel):
    """Specification of the pods of a deployment."""

    containers: list[Container] = Field(..., min_length=1)
    """Containers in the pod. At least one is required."""


class PodTemplateSpec(PassthroughModel):
    """Template for the pods of a deployment."""

    spec: PodSpec
    """Specification of the pods."""


class DeploymentSpec(PassthroughModel):
    """Specification of a deployment."""

    replicas: int | None = None
    """Number of desired pods."""

    template: PodTemplateSpec
    """Template for the pods."""


class DeploymentManifest(KubernetesManifest):
    """A ``Deployment`` manifest."""

    kind: Literal["Deployment"]

    spec: DeploymentSpec
    """Specification of the deployment."""

    @property
    def container(self) -> Container:
        """The first container, which is the one patched by overrides."""
        return self.spec.template.spec.containers[0]

    def set_image(self, image: str) -> None:
        """Replace the image of the first container."""
        self.container.image = image

    def set_command(self, command: str) -> None:
        """Replace the command of the first container."""
        self.container.command = [command]

    def set_name(self, name: str) -> None:
        """Rename the deployment."""
        self.metadata.name = name

    def watch_all_namespaces(self) -> None:
        """Configure the operator to watch every namespace.

        This appends an empty ``WATCH_NAMESPACE`` variable to the first
        container, leaving any existing setting in place earlier in the list
        where the later entry overrides it.
        """
        watch = EnvVar(name=WATCH_NAMESPACE_VARIABLE, value="")
        if self.container.env is None:
            self.container.env = []
        self.container.env.append(watch)
