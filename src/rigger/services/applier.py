"""Create and delete arbitrary Kubernetes objects from manifests."""

from __future__ import annotations

from collections.abc import Iterable
from copy import deepcopy
from typing import Any

from structlog.stdlib import BoundLogger

from ..exceptions import ConfigurationError, ManifestDecodeError
from ..models.provisioning import DynamicAction
from ..storage.kubernetes import KubernetesDynamicStorage
from ..storage.manifest import parse_envelope, split_documents

__all__ = ["DynamicApplier"]


class DynamicApplier:
    """Apply manifests of any kind using API discovery.

    The scope of each kind, and the REST resource used to manage it, are
    looked up from the API server rather than assumed, so this works for
    custom resources and for kinds whose scope differs between API versions.

    Parameters
    ----------
    storage
        Storage for arbitrary Kubernetes kinds.
    logger
        Logger to use.
    """

    def __init__(
        self, storage: KubernetesDynamicStorage, logger: BoundLogger
    ) -> None:
        self._storage = storage
        self._logger = logger

    async def apply(
        self, data: bytes | str, action: DynamicAction, namespace: str | None
    ) -> list[dict[str, Any]]:
        """Create or delete every object in a manifest buffer.

        Parameters
        ----------
        data
            One or more manifest documents in YAML or JSON.
        action
            Whether to create or delete the objects.
        namespace
            Namespace for namespaced objects that do not specify one.

        Returns
        -------
        list of dict
            Bodies of the objects acted on, with the namespace filled in.

        Raises
        ------
        ConfigurationError
            Raised if an object is namespaced, does not specify a namespace,
            and no default namespace was given.
        KubernetesError
            Raised if discovery or the create or delete call failed. This
            includes `~rigger.exceptions.KubernetesResourceExistsError` if an
            object being created already exists.
        ManifestDecodeError
            Raised if the manifest could not be parsed.
        """
        return await self.apply_documents(
            split_documents(data), action, namespace
        )

    async def apply_documents(
        self,
        documents: Iterable[dict[str, Any]],
        action: DynamicAction,
        namespace: str | None,
    ) -> list[dict[str, Any]]:
        """Create or delete already-parsed manifest documents.

        Processing stops at the first failure. Objects already acted on are
        left as they are.

        Parameters
        ----------
        documents
            Parsed manifest documents.
        action
            Whether to create or delete the objects.
        namespace
            Namespace for namespaced objects that do not specify one.

        Returns
        -------
        list of dict
            Bodies of the objects acted on, with the namespace filled in.

        Raises
        ------
        ConfigurationError
            Raised if an object is namespaced, does not specify a namespace,
            and no default namespace was given.
        KubernetesError
            Raised if discovery or the create or delete call failed.
        ManifestDecodeError
            Raised if a document is missing its envelope fields.
        """
        applied = []
        for document in documents:
            body = await self._apply_one(document, action, namespace)
            applied.append(body)
        return applied

    async def _apply_one(
        self,
        document: dict[str, Any],
        action: DynamicAction,
        namespace: str | None,
    ) -> dict[str, Any]:
        envelope = parse_envelope(document)
        name = envelope.name
        if not name:
            raise ManifestDecodeError("metadata.name missing", envelope.kind)

        gvk = envelope.gvk
        resource = await self._storage.get_resource(gvk)
        body = deepcopy(document)
        target_namespace = None
        if resource.namespaced:
            metadata = body.setdefault("metadata", {})
            if not metadata.get("namespace"):
                if not namespace:
                    msg = f"No namespace for {envelope.kind} {name}"
                    raise ConfigurationError(msg)
                metadata["namespace"] = namespace
            target_namespace = metadata["namespace"]

        logger = self._logger.bind(
            group=gvk.group,
            kind=gvk.kind,
            name=name,
            namespace=target_namespace,
        )
        if action == DynamicAction.create:
            await self._storage.create(resource, body, target_namespace)
            logger.info("Created resource")
        elif await self._storage.delete(resource, name, target_namespace):
            logger.info("Deleted resource")
        else:
            logger.debug("Resource to delete not found")
        return body
