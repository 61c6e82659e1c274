"""Route manifests to the handler for their kind."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ValidationError
from structlog.stdlib import BoundLogger

from ..exceptions import (
    ConfigurationError,
    KubernetesResourceExistsError,
    ManifestDecodeError,
    UnknownKindError,
)
from ..models.kubernetes import (
    ClusterRoleBindingManifest,
    ClusterRoleManifest,
    CustomResourceDefinitionManifest,
    DeploymentManifest,
    KubernetesManifest,
    ManifestEnvelope,
    RoleBindingManifest,
    RoleManifest,
    ServiceAccountManifest,
)
from ..models.provisioning import (
    DynamicAction,
    ProvisionedResource,
    ProvisioningConfig,
    ProvisioningState,
    ResourceKind,
)
from ..storage.kubernetes import KubernetesResourceStorage
from ..storage.manifest import parse_envelope
from .applier import DynamicApplier

type _Handler = Callable[
    [dict[str, Any], ProvisioningConfig, ProvisioningState], Awaitable[None]
]

__all__ = ["ManifestDispatcher", "parse_envelope"]


def _parse_typed[M: BaseModel](
    model: type[M], document: dict[str, Any], envelope: ManifestEnvelope
) -> M:
    """Validate a manifest as the typed model for its kind."""
    try:
        return model.model_validate(document)
    except ValidationError as e:
        raise ManifestDecodeError.from_validation_error(
            envelope.kind, envelope.name, e
        ) from e


class ManifestDispatcher:
    """Create the objects described by manifests during setup.

    Each manifest is routed by its kind, which must match exactly, to a
    handler that validates it as a typed model, applies the configured
    overrides, and creates it. ``ConfigMap`` manifests are ignored, and any
    kind without a handler is an error. An object that already exists is
    recorded as not owned, so that teardown leaves it alone.

    Parameters
    ----------
    storage
        Storage for well-known Kubernetes kinds.
    applier
        Applier used for ``CustomResourceDefinition`` objects.
    logger
        Logger to use.
    """

    def __init__(
        self,
        storage: KubernetesResourceStorage,
        applier: DynamicApplier,
        logger: BoundLogger,
    ) -> None:
        self._storage = storage
        self._applier = applier
        self._logger = logger
        self._handlers: dict[str, _Handler] = {
            ResourceKind.ServiceAccount: self._create_service_account,
            ResourceKind.Role: self._create_role,
            ResourceKind.ClusterRole: self._create_cluster_role,
            ResourceKind.RoleBinding: self._create_role_binding,
            ResourceKind.ClusterRoleBinding: self._create_cluster_role_binding,
            ResourceKind.CustomResourceDefinition: self._create_crd,
            ResourceKind.Deployment: self._create_deployment,
            ResourceKind.ConfigMap: self._ignore,
        }

    async def dispatch(
        self,
        document: dict[str, Any],
        settings: ProvisioningConfig,
        state: ProvisioningState,
    ) -> None:
        """Create the object described by one manifest.

        Parameters
        ----------
        document
            Parsed manifest document.
        settings
            Provisioning settings, including overrides to apply.
        state
            Record of provisioned resources, updated with the new object.

        Raises
        ------
        ConfigurationError
            Raised if the manifest is namespaced and no namespace was
            configured.
        KubernetesError
            Raised if the object could not be created for any reason other
            than already existing.
        ManifestDecodeError
            Raised if the manifest is malformed.
        UnknownKindError
            Raised if there is no handler for the manifest's kind.
        """
        envelope = parse_envelope(document)
        handler = self._handlers.get(envelope.kind)
        if not handler:
            raise UnknownKindError(envelope.kind)
        await handler(document, settings, state)

    async def _create_service_account(
        self,
        document: dict[str, Any],
        settings: ProvisioningConfig,
        state: ProvisioningState,
    ) -> None:
        envelope = parse_envelope(document)
        manifest = _parse_typed(ServiceAccountManifest, document, envelope)
        namespace = self._namespace(settings)
        body = self._namespaced_body(manifest, namespace)
        await self._record(
            state,
            manifest,
            body,
            namespace,
            self._storage.create_service_account(body, namespace),
        )

    async def _create_role(
        self,
        document: dict[str, Any],
        settings: ProvisioningConfig,
        state: ProvisioningState,
    ) -> None:
        envelope = parse_envelope(document)
        manifest = _parse_typed(RoleManifest, document, envelope)
        namespace = self._namespace(settings)
        body = self._namespaced_body(manifest, namespace)
        await self._record(
            state,
            manifest,
            body,
            namespace,
            self._storage.create_role(body, namespace),
        )

    async def _create_cluster_role(
        self,
        document: dict[str, Any],
        settings: ProvisioningConfig,
        state: ProvisioningState,
    ) -> None:
        envelope = parse_envelope(document)
        manifest = _parse_typed(ClusterRoleManifest, document, envelope)
        body = manifest.to_body()
        await self._record(
            state,
            manifest,
            body,
            None,
            self._storage.create_cluster_role(body),
        )

    async def _create_role_binding(
        self,
        document: dict[str, Any],
        settings: ProvisioningConfig,
        state: ProvisioningState,
    ) -> None:
        envelope = parse_envelope(document)
        manifest = _parse_typed(RoleBindingManifest, document, envelope)
        namespace = self._namespace(settings)
        body = self._namespaced_body(manifest, namespace)
        await self._record(
            state,
            manifest,
            body,
            namespace,
            self._storage.create_role_binding(body, namespace),
        )

    async def _create_cluster_role_binding(
        self,
        document: dict[str, Any],
        settings: ProvisioningConfig,
        state: ProvisioningState,
    ) -> None:
        envelope = parse_envelope(document)
        manifest = _parse_typed(ClusterRoleBindingManifest, document, envelope)
        body = manifest.to_body()
        await self._record(
            state,
            manifest,
            body,
            None,
            self._storage.create_cluster_role_binding(body),
        )

    async def _create_crd(
        self,
        document: dict[str, Any],
        settings: ProvisioningConfig,
        state: ProvisioningState,
    ) -> None:
        envelope = parse_envelope(document)
        manifest = _parse_typed(
            CustomResourceDefinitionManifest, document, envelope
        )
        if settings.admin_unavailable:
            self._logger.info(
                "Skipping creation of CRD installed by administrator",
                name=manifest.name,
            )
            return
        body = manifest.to_body()
        await self._record(
            state,
            manifest,
            body,
            None,
            self._applier.apply_documents([body], DynamicAction.create, None),
        )

    async def _create_deployment(
        self,
        document: dict[str, Any],
        settings: ProvisioningConfig,
        state: ProvisioningState,
    ) -> None:
        envelope = parse_envelope(document)
        manifest = _parse_typed(DeploymentManifest, document, envelope)
        if settings.image:
            manifest.set_image(settings.image)
        if settings.command:
            manifest.set_command(settings.command)
        if settings.name:
            manifest.set_name(settings.name)
        if settings.global_namespace:
            manifest.watch_all_namespaces()
        namespace = self._namespace(settings)
        body = self._namespaced_body(manifest, namespace)
        await self._record(
            state,
            manifest,
            body,
            namespace,
            self._storage.create_deployment(body, namespace),
        )

    async def _ignore(
        self,
        document: dict[str, Any],
        settings: ProvisioningConfig,
        state: ProvisioningState,
    ) -> None:
        envelope = parse_envelope(document)
        self._logger.debug(
            f"Ignoring {envelope.kind} manifest", name=envelope.name
        )

    def _namespace(self, settings: ProvisioningConfig) -> str:
        if not settings.namespace:
            raise ConfigurationError("No namespace configured for operator")
        return settings.namespace

    def _namespaced_body(
        self, manifest: KubernetesManifest, namespace: str
    ) -> dict[str, Any]:
        body = manifest.to_body()
        body["metadata"]["namespace"] = namespace
        return body

    async def _record(
        self,
        state: ProvisioningState,
        manifest: KubernetesManifest,
        body: dict[str, Any],
        namespace: str | None,
        create: Awaitable[Any],
    ) -> None:
        """Run a create call and record the resource in the state.

        If the object already exists, it is recorded as not owned.
        """
        logger = self._logger.bind(
            kind=manifest.kind, name=manifest.name, namespace=namespace
        )
        owned = True
        try:
            await create
        except KubernetesResourceExistsError:
            logger.warning("Resource already exists, will not delete")
            owned = False
        else:
            logger.info("Created resource")
        resource = ProvisionedResource(
            kind=manifest.kind,
            name=manifest.name,
            namespace=namespace,
            owned=owned,
            body=body,
        )
        state.record(resource)
