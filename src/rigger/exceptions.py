"""Exceptions for Rigger."""

from __future__ import annotations

from datetime import timedelta

from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError

__all__ = [
    "BuilderFinalizedError",
    "ConfigurationError",
    "KubernetesError",
    "KubernetesMappingError",
    "KubernetesResourceExistsError",
    "LifecycleStateError",
    "ManifestDecodeError",
    "ManifestError",
    "ManifestFetchError",
    "ManifestSourceError",
    "RiggerError",
    "UnknownKindError",
    "WaitTimeoutError",
]


class RiggerError(Exception):
    """Base class for all Rigger exceptions."""


class ConfigurationError(RiggerError):
    """The provisioning configuration is unusable.

    This always indicates a programming or configuration error and is never
    worth retrying.
    """


class BuilderFinalizedError(ConfigurationError):
    """A builder setting was changed after the builder was finalized."""

    def __init__(self, setting: str) -> None:
        msg = f"Cannot set {setting} on operator builder after finalization"
        super().__init__(msg)


class ManifestSourceError(ConfigurationError):
    """The manifest source was missing or ambiguous."""


class LifecycleStateError(ConfigurationError):
    """A lifecycle operation was attempted in the wrong state."""


class ManifestError(RiggerError):
    """A manifest could not be loaded."""


class ManifestFetchError(ManifestError):
    """A manifest could not be retrieved from its location."""


class ManifestDecodeError(ManifestError):
    """A manifest could not be parsed.

    Parameters
    ----------
    message
        Description of the problem.
    kind
        Kind of the malformed manifest, if known.
    name
        Name of the malformed manifest, if known.
    """

    def __init__(
        self, message: str, kind: str | None = None, name: str | None = None
    ) -> None:
        if kind and name:
            message = f"{kind} {name} is malformed: {message}"
        elif kind:
            message = f"{kind} is malformed: {message}"
        super().__init__(message)
        self.kind = kind
        self.name = name

    @classmethod
    def from_validation_error(
        cls, kind: str, name: str | None, exc: ValidationError
    ) -> ManifestDecodeError:
        """Create an exception from a Pydantic parse failure.

        Parameters
        ----------
        kind
            Kind of the manifest.
        name
            Name of the manifest, if it could be determined.
        exc
            Pydantic exception.

        Returns
        -------
        ManifestDecodeError
            Constructed exception.
        """
        error = "; ".join(
            f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}"
            for e in exc.errors()
        )
        return cls(error, kind, name)


class UnknownKindError(ManifestError):
    """A manifest kind is not supported by manifest-driven setup."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Cannot find handler for resource kind {kind}")
        self.kind = kind


class KubernetesError(RiggerError):
    """An error occurred talking to the Kubernetes API.

    Parameters
    ----------
    message
        Summary of the failed operation.
    kind
        Kind of the object being operated on.
    name
        Name of the object being operated on, if known.
    namespace
        Namespace of the object, or `None` for cluster-scoped objects.
    exc
        Underlying Kubernetes exception, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        name: str | None = None,
        namespace: str | None = None,
        exc: ApiException | None = None,
    ) -> None:
        if name:
            key = f"{namespace}/{name}" if namespace else name
            message = f"{message} ({kind} {key})"
        else:
            message = f"{message} ({kind})"
        if exc:
            message += f": {exc.status} {exc.reason}"
            body = getattr(exc, "body", None)
            if body:
                message += f": {body!s}"
        super().__init__(message)
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.status = exc.status if exc else None


class KubernetesResourceExistsError(KubernetesError):
    """An object could not be created because it already exists."""


class KubernetesMappingError(KubernetesError):
    """No REST mapping was found for a group, version, and kind."""


class WaitTimeoutError(RiggerError):
    """A readiness condition was not reached before the deadline.

    This does not inherit from `KubernetesError` so that callers
    can distinguish a timeout from a failure of the condition check.

    Parameters
    ----------
    what
        Description of the condition being waited for.
    timeout
        How long the wait lasted.
    """

    def __init__(self, what: str, timeout: timedelta) -> None:
        seconds = timeout.total_seconds()
        super().__init__(f"Timed out after {seconds}s waiting for {what}")
        self.timeout = timeout
