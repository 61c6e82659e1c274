"""Constants for Rigger."""

from datetime import timedelta

__all__ = [
    "CLEANUP_RETRY_INTERVAL",
    "CLEANUP_TIMEOUT",
    "CONFIG_PATH",
    "HTTP_TIMEOUT",
    "RETRY_INTERVAL",
    "ROUTER_MANIFEST_BASE_URL",
    "TIMEOUT",
    "WATCH_NAMESPACE_VARIABLE",
]

CLEANUP_RETRY_INTERVAL = timedelta(seconds=1)
"""Default poll interval while waiting for an object to be deleted."""

CLEANUP_TIMEOUT = timedelta(seconds=5)
"""Default deadline while waiting for an object to be deleted."""

CONFIG_PATH = "/etc/rigger/rigger.yaml"
"""Default configuration path."""

HTTP_TIMEOUT = 20.0
"""Timeout (in seconds) for downloading remote manifests."""

RETRY_INTERVAL = timedelta(seconds=5)
"""Default poll interval for readiness waits."""

TIMEOUT = timedelta(seconds=600)
"""Default deadline for readiness waits."""

ROUTER_MANIFEST_BASE_URL = (
    "https://raw.githubusercontent.com/interconnectedcloud/qdr-operator"
    "/master/deploy/"
)
"""Base URL of the upstream deployment manifests for the router operator."""

WATCH_NAMESPACE_VARIABLE = "WATCH_NAMESPACE"
"""Environment variable telling an operator which namespace to watch.

An empty value means the operator watches all namespaces.
"""
