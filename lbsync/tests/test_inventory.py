from __future__ import annotations

import socket
import time
from types import SimpleNamespace
from typing import Any
from unittest.mock import patch

import pytest
from kubernetes.client import ApiException
from urllib3.exceptions import ConnectTimeoutError, MaxRetryError, NewConnectionError, ReadTimeoutError

from lbsync.src.inventory import (
    Endpoint,
    InventoryError,
    InventoryTimeoutError,
    ServiceInventory,
    assigned_address,
    endpoints_changed,
    filter_endpoints,
)


def make_service(
    name: str = "web",
    namespace: str = "default",
    service_type: str | None = "LoadBalancer",
    load_balancer_ip: str | None = "10.0.0.1",
    ingress: list[dict[str, str]] | None = None,
) -> SimpleNamespace:
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, namespace=namespace),
        spec=SimpleNamespace(type=service_type, load_balancer_ip=load_balancer_ip),
        status=SimpleNamespace(
            load_balancer=SimpleNamespace(
                ingress=[SimpleNamespace(**entry) for entry in ingress or []]
            )
        ),
    )


# ---------------------------------------------------------------------------
# filter_endpoints()
# ---------------------------------------------------------------------------


def test_filter_builds_endpoint_from_eligible_service() -> None:
    endpoints = filter_endpoints([make_service()])

    assert endpoints == [Endpoint(name="web", namespace="default", address="10.0.0.1")]


@pytest.mark.parametrize("service_type", ["ClusterIP", "NodePort", "ExternalName", None])
def test_filter_drops_non_load_balancer_types(service_type: str | None) -> None:
    assert filter_endpoints([make_service(service_type=service_type)]) == []


@pytest.mark.parametrize("load_balancer_ip", ["", None])
def test_filter_drops_services_without_address(load_balancer_ip: str | None) -> None:
    assert filter_endpoints([make_service(load_balancer_ip=load_balancer_ip)]) == []


def test_filter_preserves_input_order_and_duplicates() -> None:
    services = [
        make_service(name="b", load_balancer_ip="10.0.0.2"),
        make_service(name="a", load_balancer_ip="10.0.0.1"),
        make_service(name="b", load_balancer_ip="10.0.0.2"),
    ]

    endpoints = filter_endpoints(services)

    assert [e.name for e in endpoints] == ["b", "a", "b"]


def test_filter_mixed_inventory_keeps_only_eligible() -> None:
    services = [
        make_service(name="internal", service_type="ClusterIP"),
        make_service(name="pending", load_balancer_ip=None),
        make_service(name="edge", namespace="ingress", load_balancer_ip="192.0.2.10"),
    ]

    assert filter_endpoints(services) == [
        Endpoint(name="edge", namespace="ingress", address="192.0.2.10")
    ]


def test_filter_tolerates_malformed_records() -> None:
    services: list[Any] = [
        object(),
        SimpleNamespace(metadata=None, spec=None),
        SimpleNamespace(
            metadata=None,
            spec=SimpleNamespace(type="LoadBalancer", load_balancer_ip="10.0.0.9"),
        ),
    ]

    assert filter_endpoints(services) == []


def test_filter_empty_input() -> None:
    assert filter_endpoints([]) == []


# ---------------------------------------------------------------------------
# assigned_address()
# ---------------------------------------------------------------------------


def test_assigned_address_prefers_requested_ip() -> None:
    service = make_service(load_balancer_ip="10.0.0.1", ingress=[{"ip": "203.0.113.5"}])
    assert assigned_address(service) == "10.0.0.1"


def test_assigned_address_falls_back_to_ingress_ip() -> None:
    service = make_service(load_balancer_ip=None, ingress=[{"ip": "203.0.113.5"}])
    assert assigned_address(service) == "203.0.113.5"


def test_assigned_address_falls_back_to_ingress_hostname() -> None:
    service = make_service(
        load_balancer_ip=None,
        ingress=[{"hostname": "lb-123.elb.example.com"}],
    )
    assert assigned_address(service) == "lb-123.elb.example.com"


def test_assigned_address_none_when_ingress_empty() -> None:
    assert assigned_address(make_service(load_balancer_ip=None, ingress=[])) is None


# ---------------------------------------------------------------------------
# endpoints_changed()
# ---------------------------------------------------------------------------

WEB = Endpoint(name="web", namespace="default", address="10.0.0.1")
API = Endpoint(name="api", namespace="default", address="10.0.0.2")


def test_changed_is_false_for_identical_sets() -> None:
    assert endpoints_changed([WEB, API], [WEB, API]) is False
    assert endpoints_changed([], []) is False


def test_changed_compares_by_value_not_identity() -> None:
    copy = Endpoint(name="web", namespace="default", address="10.0.0.1")
    assert endpoints_changed([WEB], [copy]) is False


def test_changed_detects_reordering() -> None:
    # Reordering with identical membership is still a change and triggers a reload.
    assert endpoints_changed([WEB, API], [API, WEB]) is True


def test_changed_detects_length_difference() -> None:
    assert endpoints_changed([WEB], [WEB, WEB]) is True
    assert endpoints_changed([WEB], []) is True


def test_changed_detects_field_difference() -> None:
    moved = Endpoint(name="web", namespace="default", address="10.0.0.99")
    assert endpoints_changed([WEB], [moved]) is True


# ---------------------------------------------------------------------------
# ServiceInventory.fetch()
# ---------------------------------------------------------------------------


def test_fetch_lists_all_namespaces_with_request_timeout() -> None:
    calls: list[dict[str, Any]] = []

    def fake_list(**kwargs: Any) -> SimpleNamespace:
        calls.append(kwargs)
        return SimpleNamespace(items=[make_service()])

    inventory = ServiceInventory(
        core_api=SimpleNamespace(list_service_for_all_namespaces=fake_list),
        timeout_seconds=7,
    )

    services = inventory.fetch()

    assert len(services) == 1
    assert calls == [{"_request_timeout": 7}]
    assert inventory.scope == "all namespaces"


def test_fetch_single_namespace() -> None:
    calls: list[dict[str, Any]] = []

    def fake_list(**kwargs: Any) -> SimpleNamespace:
        calls.append(kwargs)
        return SimpleNamespace(items=None)

    inventory = ServiceInventory(
        core_api=SimpleNamespace(list_namespaced_service=fake_list),
        namespace="edge",
    )

    assert inventory.fetch() == []
    assert calls == [{"namespace": "edge"}]
    assert inventory.scope == "edge"


def _failing_inventory(exc: Exception) -> ServiceInventory:
    def fake_list(**kwargs: Any) -> SimpleNamespace:
        raise exc

    return ServiceInventory(
        core_api=SimpleNamespace(list_service_for_all_namespaces=fake_list),
        timeout_seconds=5,
    )


def test_fetch_wraps_api_errors() -> None:
    inventory = _failing_inventory(ApiException(status=403, reason="Forbidden"))

    with pytest.raises(InventoryError, match="status=403") as excinfo:
        inventory.fetch()

    assert not isinstance(excinfo.value, InventoryTimeoutError)
    assert isinstance(excinfo.value.__cause__, ApiException)


def test_fetch_classifies_read_timeout() -> None:
    inventory = _failing_inventory(ReadTimeoutError(None, "/api/v1/services", "read timed out"))

    with pytest.raises(InventoryTimeoutError, match="exceeded 5s"):
        inventory.fetch()


def test_fetch_classifies_connect_timeout_behind_retries() -> None:
    inventory = _failing_inventory(
        MaxRetryError(None, "/api/v1/services", reason=ConnectTimeoutError("connect timed out"))
    )

    with pytest.raises(InventoryTimeoutError):
        inventory.fetch()


def test_fetch_wraps_connection_errors_as_plain_inventory_error() -> None:
    inventory = _failing_inventory(
        MaxRetryError(None, "/api/v1/services", reason=NewConnectionError(None, "refused"))
    )

    with pytest.raises(InventoryError) as excinfo:
        inventory.fetch()

    assert not isinstance(excinfo.value, InventoryTimeoutError)


def test_fetch_wraps_deserialization_errors() -> None:
    inventory = _failing_inventory(ValueError("Invalid value for `spec`"))

    with pytest.raises(InventoryError, match="Cannot decode"):
        inventory.fetch()


def test_fetch_deadline_covers_the_whole_call_against_a_stalled_apiserver() -> None:
    from kubernetes import client

    from lbsync.src.kube import build_core_api

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        # Connections land in the backlog and are never answered.
        listener.bind(("127.0.0.1", 0))
        listener.listen(8)
        port = listener.getsockname()[1]

        active = client.Configuration(host=f"http://127.0.0.1:{port}")
        with patch(
            "lbsync.src.kube.client.Configuration.get_default_copy", return_value=active
        ):
            core_api = build_core_api()
        inventory = ServiceInventory(core_api=core_api, timeout_seconds=1)

        started = time.monotonic()
        with pytest.raises(InventoryTimeoutError):
            inventory.fetch()
        elapsed = time.monotonic() - started

    assert elapsed < 2
