"""Configuration for Rigger.

Rigger is configured by an optional YAML file plus environment variables. All
settings may be given in either place, and environment variables (with the
``RIGGER_`` prefix) take precedence over the file. The configuration only
holds settings shared by every provisioning run; per-operator settings such as
the namespace and image are supplied to the builder.
"""

from __future__ import annotations

from pathlib import Path
from typing import Self, override

import yaml
from pydantic import AliasChoices, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, Profile, configure_logging
from safir.pydantic import HumanTimedelta

from .constants import (
    CLEANUP_RETRY_INTERVAL,
    CLEANUP_TIMEOUT,
    HTTP_TIMEOUT,
    RETRY_INTERVAL,
    TIMEOUT,
)

__all__ = ["Config"]


class Config(BaseSettings):
    """Configuration for Rigger."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    log_level: LogLevel = Field(
        LogLevel.INFO,
        title="Logging level",
        description="Python logging level",
        validation_alias=AliasChoices("RIGGER_LOG_LEVEL", "logLevel"),
    )

    log_profile: Profile = Field(
        Profile.development,
        title="Logging profile",
        description=(
            "Logging profile. ``production`` emits structured JSON logs and"
            " ``development`` emits human-readable logs."
        ),
        validation_alias=AliasChoices("RIGGER_LOG_PROFILE", "logProfile"),
    )

    kubeconfig: Path | None = Field(
        None,
        title="Path to kubeconfig",
        description=(
            "Path to the kubeconfig file describing the cluster connection."
            " If neither this nor ``kubeContext`` is set and Rigger is"
            " running inside a cluster, the in-cluster service account is"
            " used instead."
        ),
        validation_alias=AliasChoices("RIGGER_KUBECONFIG", "kubeconfig"),
    )

    kube_context: str | None = Field(
        None,
        title="Kubernetes context",
        description="Context within the kubeconfig file to use",
        validation_alias=AliasChoices("RIGGER_KUBE_CONTEXT", "kubeContext"),
    )

    http_timeout: float = Field(
        HTTP_TIMEOUT,
        title="HTTP timeout",
        description="Timeout in seconds for downloading remote manifests",
        validation_alias=AliasChoices("RIGGER_HTTP_TIMEOUT", "httpTimeout"),
        gt=0,
    )

    retry_interval: HumanTimedelta = Field(
        RETRY_INTERVAL,
        title="Readiness poll interval",
        description="Default interval between readiness checks",
        validation_alias=AliasChoices(
            "RIGGER_RETRY_INTERVAL", "retryInterval"
        ),
    )

    timeout: HumanTimedelta = Field(
        TIMEOUT,
        title="Readiness timeout",
        description="Default deadline for readiness waits",
        validation_alias=AliasChoices("RIGGER_TIMEOUT", "timeout"),
    )

    cleanup_retry_interval: HumanTimedelta = Field(
        CLEANUP_RETRY_INTERVAL,
        title="Deletion poll interval",
        description="Default interval between checks for object deletion",
        validation_alias=AliasChoices(
            "RIGGER_CLEANUP_RETRY_INTERVAL", "cleanupRetryInterval"
        ),
    )

    cleanup_timeout: HumanTimedelta = Field(
        CLEANUP_TIMEOUT,
        title="Deletion timeout",
        description="Default deadline for waits for object deletion",
        validation_alias=AliasChoices(
            "RIGGER_CLEANUP_TIMEOUT", "cleanupTimeout"
        ),
    )

    @override
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support and let environment
        variables override init parameters, since init parameters come from
        the YAML configuration file.
        """
        return (env_settings, init_settings)

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct a Config object from a configuration file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding `Config` object.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})

    def configure_logging(self) -> None:
        """Configure logging based on the Rigger configuration."""
        configure_logging(
            name="rigger", profile=self.log_profile, log_level=self.log_level
        )
