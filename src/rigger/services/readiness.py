"""Wait for provisioned workloads to become ready."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from kubernetes_asyncio.client import (
    V1DaemonSet,
    V1Deployment,
    V1Service,
    V1StatefulSet,
)
from structlog.stdlib import BoundLogger

from ..config import Config
from ..exceptions import ManifestDecodeError, WaitTimeoutError
from ..models.provisioning import ReadinessQuery
from ..storage.kubernetes import (
    KubernetesDynamicStorage,
    KubernetesResourceStorage,
)
from ..storage.manifest import parse_envelope

__all__ = [
    "ReadinessService",
    "daemonset_is_ready",
    "deployment_is_ready",
    "poll",
    "statefulset_is_ready",
]


async def poll(
    check: Callable[[], Awaitable[bool]],
    *,
    interval: timedelta,
    timeout: timedelta,
    what: str = "condition",
) -> None:
    """Wait for a condition to become true.

    The check is called immediately and then after each interval until it
    returns `True`. If the check raises an exception, polling stops and the
    exception is propagated unchanged.

    Parameters
    ----------
    check
        Async predicate to call.
    interval
        How long to wait between calls.
    timeout
        How long to wait in total before giving up.
    what
        Description of the condition, used in the timeout error.

    Raises
    ------
    WaitTimeoutError
        Raised if the deadline passed without the check returning `True`.
    """
    deadline = time.monotonic() + timeout.total_seconds()
    while True:
        if await check():
            return
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise WaitTimeoutError(what, timeout)
        await asyncio.sleep(min(interval.total_seconds(), remaining))


def _or_default(value: timedelta | None, default: timedelta) -> timedelta:
    """Return the value, or the default if none was given.

    A zero interval or timeout is a real setting and is kept.
    """
    return default if value is None else value


def deployment_is_ready(deployment: V1Deployment, count: int) -> bool:
    """Check whether a deployment has exactly the target number of pods.

    Every replica count must match the target and no replica may be
    unavailable. Having more ready pods than the target does not count.

    Parameters
    ----------
    deployment
        Deployment to check.
    count
        Target number of replicas.

    Returns
    -------
    bool
        Whether the deployment is ready.
    """
    status = deployment.status
    if not status:
        return count == 0
    return (
        (status.replicas or 0) == count
        and (status.available_replicas or 0) == count
        and (status.updated_replicas or 0) == count
        and (status.ready_replicas or 0) == count
        and (status.unavailable_replicas or 0) == 0
    )


def statefulset_is_ready(statefulset: V1StatefulSet, count: int) -> bool:
    """Check whether a stateful set has exactly ``count`` ready replicas."""
    status = statefulset.status
    ready = (status.ready_replicas if status else None) or 0
    return ready == count


def daemonset_is_ready(daemonset: V1DaemonSet, count: int) -> bool:
    """Check whether a daemon set has at least ``count`` ready pods.

    Daemon sets may run more pods than requested when nodes are added, so
    this is a threshold rather than an exact match.
    """
    status = daemonset.status
    ready = (status.number_ready if status else None) or 0
    return ready >= count


class ReadinessService:
    """Wait for Kubernetes objects to reach a desired state.

    Each wait treats an object that does not exist yet as not ready and keeps
    polling. Any other Kubernetes error aborts the wait.

    Parameters
    ----------
    storage
        Storage for well-known Kubernetes kinds.
    dynamic_storage
        Storage for arbitrary Kubernetes kinds.
    config
        Rigger configuration, which supplies default intervals and timeouts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        storage: KubernetesResourceStorage,
        dynamic_storage: KubernetesDynamicStorage,
        config: Config,
        logger: BoundLogger,
    ) -> None:
        self._storage = storage
        self._dynamic = dynamic_storage
        self._config = config
        self._logger = logger

    async def wait_for_deployment(self, query: ReadinessQuery) -> None:
        """Wait for a ``Deployment`` to be fully available.

        Parameters
        ----------
        query
            Deployment to wait for and the target replica count.

        Raises
        ------
        KubernetesError
            Raised if the deployment could not be read.
        WaitTimeoutError
            Raised if the deployment did not become ready in time.
        """
        logger = self._logger.bind(
            deployment=query.name, namespace=query.namespace
        )

        async def check() -> bool:
            deployment = await self._storage.read_deployment(
                query.name, query.namespace
            )
            if not deployment:
                logger.debug("Waiting for deployment to be created")
                return False
            status = deployment.status
            if status:
                logger.debug(
                    "Waiting for full availability of deployment",
                    replicas=status.replicas or 0,
                    available=status.available_replicas or 0,
                    updated=status.updated_replicas or 0,
                    ready=status.ready_replicas or 0,
                    unavailable=status.unavailable_replicas or 0,
                    target=query.count,
                )
            return deployment_is_ready(deployment, query.count)

        what = f"deployment {query.namespace}/{query.name}"
        await self._poll(check, query, what)
        logger.info("Deployment available", replicas=query.count)

    async def wait_for_statefulset(self, query: ReadinessQuery) -> None:
        """Wait for a ``StatefulSet`` to have exactly the target replicas.

        Parameters
        ----------
        query
            Stateful set to wait for and the target replica count.

        Raises
        ------
        KubernetesError
            Raised if the stateful set could not be read.
        WaitTimeoutError
            Raised if the stateful set did not become ready in time.
        """
        logger = self._logger.bind(
            statefulset=query.name, namespace=query.namespace
        )

        async def check() -> bool:
            statefulset = await self._storage.read_stateful_set(
                query.name, query.namespace
            )
            if not statefulset:
                logger.debug("Waiting for stateful set to be created")
                return False
            status = statefulset.status
            ready = (status.ready_replicas if status else None) or 0
            logger.debug(
                "Waiting for full availability of stateful set",
                ready=ready,
                target=query.count,
            )
            return statefulset_is_ready(statefulset, query.count)

        what = f"stateful set {query.namespace}/{query.name}"
        await self._poll(check, query, what)
        logger.info("Stateful set ready", replicas=query.count)

    async def wait_for_statefulset_creation(
        self, query: ReadinessQuery
    ) -> None:
        """Wait for a ``StatefulSet`` to exist, regardless of its status."""

        async def check() -> bool:
            statefulset = await self._storage.read_stateful_set(
                query.name, query.namespace
            )
            return statefulset is not None

        what = f"creation of stateful set {query.namespace}/{query.name}"
        await self._poll(check, query, what)
        self._logger.info(
            "Stateful set created",
            statefulset=query.name,
            namespace=query.namespace,
        )

    async def wait_for_daemonset(self, query: ReadinessQuery) -> None:
        """Wait for a ``DaemonSet`` to have at least the target ready pods.

        Parameters
        ----------
        query
            Daemon set to wait for and the minimum number of ready pods.

        Raises
        ------
        KubernetesError
            Raised if the daemon set could not be read.
        WaitTimeoutError
            Raised if the daemon set did not become ready in time.
        """
        logger = self._logger.bind(
            daemonset=query.name, namespace=query.namespace
        )

        async def check() -> bool:
            daemonset = await self._storage.read_daemon_set(
                query.name, query.namespace
            )
            if not daemonset:
                logger.debug("Waiting for daemon set to be created")
                return False
            if daemonset_is_ready(daemonset, query.count):
                return True
            status = daemonset.status
            logger.debug(
                "Waiting for full availability of daemon set",
                ready=(status.number_ready if status else None) or 0,
                target=query.count,
            )
            return False

        what = f"daemon set {query.namespace}/{query.name}"
        await self._poll(check, query, what)
        logger.info("Daemon set ready", replicas=query.count)

    async def wait_for_deployment_deleted(self, query: ReadinessQuery) -> None:
        """Wait for a ``Deployment`` to no longer exist.

        The cleanup interval and timeout from the configuration are used if
        the query does not specify them. The target count is ignored.
        """

        async def check() -> bool:
            deployment = await self._storage.read_deployment(
                query.name, query.namespace
            )
            if deployment:
                self._logger.debug(
                    "Waiting for deletion of deployment",
                    deployment=query.name,
                    namespace=query.namespace,
                )
            return deployment is None

        await poll(
            check,
            interval=_or_default(
                query.interval, self._config.cleanup_retry_interval
            ),
            timeout=_or_default(query.timeout, self._config.cleanup_timeout),
            what=f"deletion of deployment {query.namespace}/{query.name}",
        )
        self._logger.info(
            "Deployment no longer present",
            deployment=query.name,
            namespace=query.namespace,
        )

    async def wait_for_service(self, query: ReadinessQuery) -> V1Service:
        """Wait for a ``Service`` to exist.

        Parameters
        ----------
        query
            Service to wait for. The target count is ignored.

        Returns
        -------
        kubernetes_asyncio.client.V1Service
            The service once it exists.

        Raises
        ------
        KubernetesError
            Raised if the service could not be read.
        WaitTimeoutError
            Raised if the service was not created in time.
        """
        service: V1Service | None = None

        async def check() -> bool:
            nonlocal service
            service = await self._storage.read_service(
                query.name, query.namespace
            )
            return service is not None

        what = f"service {query.namespace}/{query.name}"
        await self._poll(check, query, what)
        assert service
        return service

    async def wait_for_deletion(
        self,
        manifest: dict[str, Any],
        *,
        namespace: str | None = None,
        interval: timedelta | None = None,
        timeout: timedelta | None = None,
    ) -> None:
        """Wait for an arbitrary object to be deleted.

        Parameters
        ----------
        manifest
            Manifest of the object. Only the ``apiVersion``, ``kind``, and
            ``metadata`` fields are used.
        namespace
            Namespace of the object if it is namespaced and the manifest does
            not specify one.
        interval
            How long to wait between checks. Defaults to the configured
            cleanup interval.
        timeout
            How long to wait in total. Defaults to the configured cleanup
            timeout.

        Raises
        ------
        KubernetesError
            Raised if the object could not be read for some reason other
            than not existing.
        ManifestDecodeError
            Raised if the manifest is malformed or has no name.
        WaitTimeoutError
            Raised if the object still existed at the deadline.
        """
        envelope = parse_envelope(manifest)
        name = envelope.name
        if not name:
            raise ManifestDecodeError("metadata.name missing", envelope.kind)
        resource = await self._dynamic.get_resource(envelope.gvk)
        if resource.namespaced:
            namespace = envelope.metadata.get("namespace") or namespace
        else:
            namespace = None
        key = f"{namespace}/{name}" if namespace else name

        async def check() -> bool:
            obj = await self._dynamic.get(resource, name, namespace)
            if obj is not None:
                self._logger.debug(
                    f"Waiting for {envelope.kind} {key} to be deleted"
                )
            return obj is None

        await poll(
            check,
            interval=_or_default(
                interval, self._config.cleanup_retry_interval
            ),
            timeout=_or_default(timeout, self._config.cleanup_timeout),
            what=f"deletion of {envelope.kind} {key}",
        )
        self._logger.info(f"{envelope.kind} {key} was deleted")

    async def _poll(
        self,
        check: Callable[[], Awaitable[bool]],
        query: ReadinessQuery,
        what: str,
    ) -> None:
        """Poll using the query's interval and timeout or the defaults."""
        await poll(
            check,
            interval=_or_default(query.interval, self._config.retry_interval),
            timeout=_or_default(query.timeout, self._config.timeout),
            what=what,
        )
