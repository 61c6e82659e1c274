"""Tests for routing manifests to the handler for their kind."""

from __future__ import annotations

import pytest
import structlog
from _pytest.logging import LogCaptureFixture

from rigger.exceptions import (
    ConfigurationError,
    ManifestDecodeError,
    UnknownKindError,
)
from rigger.factory import Factory
from rigger.models.provisioning import (
    ProvisioningConfig,
    ProvisioningState,
)
from rigger.services.dispatcher import ManifestDispatcher, parse_envelope
from rigger.storage.manifest import split_documents
from tests.support.data import read_manifest
from tests.support.kubernetes import MockKubernetesApi
from tests.support.logging import parse_log


def create_dispatcher(factory: Factory) -> ManifestDispatcher:
    return ManifestDispatcher(
        factory.create_resource_storage(),
        factory.create_applier(),
        structlog.get_logger("rigger"),
    )


def test_parse_envelope() -> None:
    envelope = parse_envelope(
        {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": "a"},
        }
    )
    assert envelope.kind == "ServiceAccount"
    assert envelope.name == "a"

    with pytest.raises(ManifestDecodeError, match="ServiceAccount"):
        parse_envelope({"kind": "ServiceAccount"})


@pytest.mark.asyncio
async def test_dispatch(
    factory: Factory, mock_kubernetes: MockKubernetesApi, namespace: str
) -> None:
    dispatcher = create_dispatcher(factory)
    settings = ProvisioningConfig(namespace=namespace)
    state = ProvisioningState()

    for document in split_documents(read_manifest("operator")):
        await dispatcher.dispatch(document, settings, state)

    assert [(r.kind, r.name, r.namespace) for r in state.resources] == [
        ("ServiceAccount", "widget-operator", namespace),
        ("Role", "widget-operator", namespace),
        ("RoleBinding", "widget-operator", namespace),
        ("ClusterRole", "widget-operator", None),
        ("ClusterRoleBinding", "widget-operator", None),
        ("CustomResourceDefinition", "widgets.example.io", None),
        ("Deployment", "widget-operator", namespace),
    ]
    assert all(r.owned for r in state.resources)
    assert not state.keep_resources

    # The namespace from the manifest is replaced.
    accounts = mock_kubernetes.get_all_objects_for_test("ServiceAccount")
    assert accounts[0]["metadata"]["namespace"] == namespace
    assert mock_kubernetes.get_all_objects_for_test("ConfigMap") == []
    crds = mock_kubernetes.get_all_objects_for_test("CustomResourceDefinition")
    assert "namespace" not in crds[0]["metadata"]
    assert ("dynamic_create", "CustomResourceDefinition", "None") in (
        mock_kubernetes.calls
    )

    # Nothing was patched in the deployment.
    deployment = mock_kubernetes.get_all_objects_for_test("Deployment")[0]
    container = deployment["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "example.io/widget-operator:1.0.0"
    assert container["command"] == ["widget-operator"]
    assert [e["name"] for e in container["env"]] == [
        "WATCH_NAMESPACE",
        "OPERATOR_NAME",
    ]


@pytest.mark.asyncio
async def test_deployment_overrides(
    factory: Factory, mock_kubernetes: MockKubernetesApi, namespace: str
) -> None:
    dispatcher = create_dispatcher(factory)
    settings = ProvisioningConfig(
        namespace=namespace,
        image="example.io/widget-operator:2.0.0",
        command="run-widgets",
        name="custom-operator",
        global_namespace=True,
    )
    state = ProvisioningState()
    documents = split_documents(read_manifest("operator"))
    deployment = next(d for d in documents if d["kind"] == "Deployment")

    await dispatcher.dispatch(deployment, settings, state)

    assert state.resources[0].name == "custom-operator"
    assert mock_kubernetes.objects["Deployment"].keys() == {
        (namespace, "custom-operator")
    }
    body = mock_kubernetes.get_all_objects_for_test("Deployment")[0]
    assert body == state.resources[0].body
    container = body["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "example.io/widget-operator:2.0.0"
    assert container["command"] == ["run-widgets"]
    assert container["env"][-1] == {"name": "WATCH_NAMESPACE", "value": ""}


@pytest.mark.asyncio
async def test_already_exists(
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    namespace: str,
    caplog: LogCaptureFixture,
) -> None:
    dispatcher = create_dispatcher(factory)
    settings = ProvisioningConfig(namespace=namespace)
    state = ProvisioningState()
    account = {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": {"name": "op"},
    }
    mock_kubernetes.create_object_for_test(
        "ServiceAccount", account, namespace
    )

    caplog.clear()
    await dispatcher.dispatch(account, settings, state)

    assert not state.resources[0].owned
    assert state.keep_resources
    assert parse_log(caplog) == [
        {
            "event": "Resource already exists, will not delete",
            "kind": "ServiceAccount",
            "name": "op",
            "namespace": namespace,
            "severity": "warning",
        }
    ]

    # Creating something new does not reset the flag.
    role = {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "Role",
        "metadata": {"name": "op"},
    }
    await dispatcher.dispatch(role, settings, state)
    assert state.resources[1].owned
    assert state.keep_resources


@pytest.mark.asyncio
async def test_admin_unavailable(
    factory: Factory, mock_kubernetes: MockKubernetesApi, namespace: str
) -> None:
    dispatcher = create_dispatcher(factory)
    settings = ProvisioningConfig(namespace=namespace, admin_unavailable=True)
    state = ProvisioningState()

    for document in split_documents(read_manifest("scenario")):
        await dispatcher.dispatch(document, settings, state)

    assert [r.kind for r in state.resources] == ["ServiceAccount", "Role"]
    assert mock_kubernetes.get_all_objects_for_test(
        "CustomResourceDefinition"
    ) == []


@pytest.mark.asyncio
async def test_dispatch_errors(
    factory: Factory, mock_kubernetes: MockKubernetesApi, namespace: str
) -> None:
    dispatcher = create_dispatcher(factory)
    settings = ProvisioningConfig(namespace=namespace)
    state = ProvisioningState()

    documents = split_documents(read_manifest("unknown"))
    await dispatcher.dispatch(documents[0], settings, state)
    with pytest.raises(UnknownKindError, match="Secret") as excinfo:
        await dispatcher.dispatch(documents[1], settings, state)
    assert excinfo.value.kind == "Secret"
    assert len(state.resources) == 1

    # Kinds must match exactly.
    document = {
        "apiVersion": "v1",
        "kind": "serviceaccount",
        "metadata": {"name": "lower"},
    }
    with pytest.raises(UnknownKindError):
        await dispatcher.dispatch(document, settings, state)

    document = split_documents(read_manifest("invalid-deployment"))[0]
    with pytest.raises(ManifestDecodeError, match="Deployment broken"):
        await dispatcher.dispatch(document, settings, state)
    assert mock_kubernetes.get_all_objects_for_test("Deployment") == []
    assert len(state.resources) == 1

    # Namespaced kinds need a namespace, cluster-scoped ones do not.
    settings = ProvisioningConfig()
    documents = split_documents(read_manifest("operator"))
    with pytest.raises(ConfigurationError, match="namespace"):
        await dispatcher.dispatch(documents[0], settings, state)
    accounts = mock_kubernetes.get_all_objects_for_test("ServiceAccount")
    assert [a["metadata"]["name"] for a in accounts] == ["op"]
    cluster_role = next(d for d in documents if d["kind"] == "ClusterRole")
    await dispatcher.dispatch(cluster_role, settings, state)
    assert state.resources[-1].kind == "ClusterRole"
