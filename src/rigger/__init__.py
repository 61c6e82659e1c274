"""Provision Kubernetes operators from manifests for test suites."""
