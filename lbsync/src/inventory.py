from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from kubernetes.client import ApiException, CoreV1Api
from urllib3.exceptions import HTTPError, MaxRetryError, NewConnectionError
from urllib3.exceptions import TimeoutError as Urllib3TimeoutError

LOGGER = logging.getLogger(__name__)

LOAD_BALANCER_TYPE = "LoadBalancer"


@dataclass(frozen=True)
class Endpoint:
    """An externally load-balanced Service with an assigned address.

    Only built by :func:`filter_endpoints` for records that pass the
    eligibility checks, so every instance has all three fields populated.
    """

    name: str
    namespace: str
    address: str


class InventoryError(RuntimeError):
    """Raised when the Service inventory cannot be fetched."""


class InventoryTimeoutError(InventoryError):
    """Raised when the Service list call exceeds its deadline."""


def _is_timeout(exc: BaseException) -> bool:
    # MaxRetryError wraps connect timeouts in ``reason``; NewConnectionError
    # subclasses ConnectTimeoutError but means the connection was refused.
    candidate = exc.reason if isinstance(exc, MaxRetryError) else exc
    return isinstance(candidate, Urllib3TimeoutError) and not isinstance(
        candidate, NewConnectionError
    )


class ServiceInventory:
    """Lists Services from the Kubernetes API.

    Stateless: every :meth:`fetch` is a fresh list call with no caching or
    retry. An empty ``namespace`` lists across all namespaces.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str = "",
        timeout_seconds: float | None = None,
    ) -> None:
        self.core_api = core_api
        self.namespace = namespace
        self.timeout_seconds = timeout_seconds

    @property
    def scope(self) -> str:
        return self.namespace or "all namespaces"

    def fetch(self) -> list[Any]:
        """Return the raw Service records in scope, in API order."""
        kwargs: dict[str, Any] = {}
        if self.timeout_seconds is not None:
            kwargs["_request_timeout"] = self.timeout_seconds

        try:
            if self.namespace:
                result = self.core_api.list_namespaced_service(namespace=self.namespace, **kwargs)
            else:
                result = self.core_api.list_service_for_all_namespaces(**kwargs)
        except ApiException as exc:
            raise InventoryError(
                f"Cannot list services in {self.scope}: status={exc.status} reason={exc.reason}"
            ) from exc
        except (HTTPError, OSError) as exc:
            if _is_timeout(exc):
                raise InventoryTimeoutError(
                    f"Listing services in {self.scope} exceeded {self.timeout_seconds}s"
                ) from exc
            raise InventoryError(f"Cannot list services in {self.scope}: {exc}") from exc
        except ValueError as exc:
            raise InventoryError(f"Cannot decode service list for {self.scope}: {exc}") from exc

        return list(getattr(result, "items", None) or [])


def assigned_address(service: Any) -> str | None:
    """Return the externally assigned address of a Service, if any.

    ``spec.loadBalancerIP`` wins when set; otherwise the first
    ``status.loadBalancer.ingress`` entry's ``ip`` or ``hostname``.
    """
    spec = getattr(service, "spec", None)
    requested = getattr(spec, "load_balancer_ip", None)
    if isinstance(requested, str) and requested:
        return requested

    status = getattr(service, "status", None)
    load_balancer = getattr(status, "load_balancer", None)
    ingress = getattr(load_balancer, "ingress", None) or []
    for entry in ingress:
        for attr in ("ip", "hostname"):
            value = getattr(entry, attr, None)
            if isinstance(value, str) and value:
                return value
        break
    return None


def filter_endpoints(services: Iterable[Any]) -> list[Endpoint]:
    """Map raw Service records to eligible :class:`Endpoint` values.

    Input order is kept and duplicates are not collapsed. Records that are
    not ``LoadBalancer`` typed, have no assigned address, or are missing
    metadata are dropped. Never raises on malformed input.
    """
    endpoints: list[Endpoint] = []
    for service in services:
        metadata = getattr(service, "metadata", None)
        name = getattr(metadata, "name", None)
        namespace = getattr(metadata, "namespace", None)
        service_type = getattr(getattr(service, "spec", None), "type", None)

        LOGGER.debug("Service candidate: %s/%s type=%s", namespace, name, service_type)

        if service_type != LOAD_BALANCER_TYPE:
            LOGGER.debug("Dropped candidate %s: not %s type", name, LOAD_BALANCER_TYPE)
            continue

        address = assigned_address(service)
        if not address:
            LOGGER.debug("Dropped candidate %s: no load balancer address", name)
            continue

        if not isinstance(name, str) or not isinstance(namespace, str):
            LOGGER.debug("Dropped candidate with incomplete metadata: %r", metadata)
            continue

        endpoint = Endpoint(name=name, namespace=namespace, address=address)
        endpoints.append(endpoint)
        LOGGER.debug("Candidate OK: %s", endpoint)

    return endpoints


def endpoints_changed(previous: Sequence[Endpoint], current: Sequence[Endpoint]) -> bool:
    """Return True unless both sets hold equal endpoints in the same order.

    Reordering alone counts as a change.
    """
    if len(previous) != len(current):
        return True
    return any(old != new for old, new in zip(previous, current))
