"""Tests for applying manifests of arbitrary kinds."""

from __future__ import annotations

import pytest
from _pytest.logging import LogCaptureFixture
from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.dynamic.exceptions import ResourceNotUniqueError

from rigger.exceptions import (
    ConfigurationError,
    KubernetesError,
    KubernetesMappingError,
    KubernetesResourceExistsError,
    ManifestDecodeError,
)
from rigger.factory import Factory
from rigger.models.provisioning import DynamicAction
from rigger.storage.manifest import split_documents
from tests.support.data import read_manifest
from tests.support.kubernetes import MockKubernetesApi, MockResource
from tests.support.logging import parse_log


@pytest.mark.asyncio
async def test_create_and_delete(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    namespace: str,
    caplog: LogCaptureFixture,
) -> None:
    applier = factory.create_applier()
    data = read_manifest("resources")

    caplog.clear()
    bodies = await applier.apply(data, DynamicAction.create, namespace)

    # Namespaced objects without a namespace get the default one, namespaced
    # objects with a namespace keep it, and cluster-scoped objects never get
    # one.
    assert [b["metadata"].get("namespace") for b in bodies] == [
        namespace,
        "other",
        None,
    ]
    services = mock_kubernetes.get_all_objects_for_test("Service")
    assert services == [bodies[0]]
    assert mock_kubernetes.objects["ConfigMap"].keys() == {
        ("other", "widget-config")
    }
    assert mock_kubernetes.objects["ClusterRole"].keys() == {
        ("", "widget-reader")
    }
    assert parse_log(caplog) == [
        {
            "event": "Created resource",
            "group": "",
            "kind": "Service",
            "name": "widget-service",
            "namespace": namespace,
            "severity": "info",
        },
        {
            "event": "Created resource",
            "group": "",
            "kind": "ConfigMap",
            "name": "widget-config",
            "namespace": "other",
            "severity": "info",
        },
        {
            "event": "Created resource",
            "group": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": "widget-reader",
            "namespace": None,
            "severity": "info",
        },
    ]

    await applier.apply(data, DynamicAction.delete, namespace)
    assert mock_kubernetes.get_all_objects_for_test("Service") == []
    assert mock_kubernetes.get_all_objects_for_test("ConfigMap") == []
    assert mock_kubernetes.get_all_objects_for_test("ClusterRole") == []

    # Deleting again is not an error.
    bodies = await applier.apply(data, DynamicAction.delete, namespace)
    assert len(bodies) == 3


@pytest.mark.asyncio
async def test_already_exists(
    factory: Factory, mock_kubernetes: MockKubernetesApi, namespace: str
) -> None:
    applier = factory.create_applier()
    data = read_manifest("resources")
    await applier.apply(data, DynamicAction.create, namespace)

    with pytest.raises(KubernetesResourceExistsError) as excinfo:
        await applier.apply(data, DynamicAction.create, namespace)
    assert excinfo.value.kind == "Service"
    assert excinfo.value.status == 409


@pytest.mark.asyncio
async def test_custom_resource(
    factory: Factory, mock_kubernetes: MockKubernetesApi, namespace: str
) -> None:
    applier = factory.create_applier()
    widget = """
apiVersion: example.io/v1alpha1
kind: Widget
metadata:
  name: sprocket
spec:
  size: 3
"""

    with pytest.raises(KubernetesMappingError, match="example.io/v1alpha1"):
        await applier.apply(widget, DynamicAction.create, namespace)

    mock_kubernetes.add_resource_for_test(
        MockResource(
            "example.io", "v1alpha1", "Widget", "widgets", namespaced=True
        )
    )
    documents = split_documents(widget)
    bodies = await applier.apply_documents(
        documents, DynamicAction.create, namespace
    )
    assert bodies[0]["spec"] == {"size": 3}
    assert bodies[0]["metadata"]["namespace"] == namespace
    assert "namespace" not in documents[0]["metadata"]
    assert mock_kubernetes.get_all_objects_for_test("Widget") == bodies


@pytest.mark.asyncio
async def test_errors(
    factory: Factory, mock_kubernetes: MockKubernetesApi, namespace: str
) -> None:
    applier = factory.create_applier()

    with pytest.raises(ManifestDecodeError):
        await applier.apply("kind: Service\n", DynamicAction.create, namespace)
    with pytest.raises(ManifestDecodeError, match="metadata.name"):
        await applier.apply(
            "apiVersion: v1\nkind: Service\nmetadata: {}\n",
            DynamicAction.create,
            namespace,
        )

    def callback(method: str, *args: str) -> None:
        if method == "dynamic_delete":
            raise ApiException(status=403, reason="Forbidden")

    mock_kubernetes.error_callback = callback
    with pytest.raises(KubernetesError, match="403") as excinfo:
        await applier.apply(
            read_manifest("resources"), DynamicAction.delete, namespace
        )
    assert not isinstance(excinfo.value, KubernetesResourceExistsError)

    # Processing stops at the first failure.
    deletes = [c for c in mock_kubernetes.calls if c[0] == "dynamic_delete"]
    assert len(deletes) == 1


@pytest.mark.asyncio
async def test_missing_namespace(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    applier = factory.create_applier()
    data = read_manifest("resources")

    with pytest.raises(ConfigurationError, match="Service widget-service"):
        await applier.apply(data, DynamicAction.create, None)
    with pytest.raises(ConfigurationError, match="Service widget-service"):
        await applier.apply(data, DynamicAction.delete, None)
    assert not [c for c in mock_kubernetes.calls if c[0] != "discover"]
    assert mock_kubernetes.get_all_objects_for_test("Service") == []

    # Cluster-scoped objects do not need a namespace.
    cluster_role = split_documents(data)[2]
    await applier.apply_documents([cluster_role], DynamicAction.create, None)
    assert mock_kubernetes.get_all_objects_for_test("ClusterRole")


@pytest.mark.asyncio
async def test_ambiguous_mapping(
    factory: Factory, mock_kubernetes: MockKubernetesApi, namespace: str
) -> None:
    applier = factory.create_applier()

    def callback(method: str, *args: str) -> None:
        if method == "discover":
            raise ResourceNotUniqueError("Multiple matches found")

    mock_kubernetes.error_callback = callback
    with pytest.raises(KubernetesMappingError, match="Multiple matches"):
        await applier.apply(
            read_manifest("resources"), DynamicAction.create, namespace
        )
    assert mock_kubernetes.get_all_objects_for_test("Service") == []
