"""Cluster objects the DNS server watches, and a keyed store for them."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

SERVICE_TYPE_CLUSTER_IP = "ClusterIP"
SERVICE_TYPE_EXTERNAL_NAME = "ExternalName"
CLUSTER_IP_NONE = "None"

LABEL_ZONE_FAILURE_DOMAIN = "failure-domain.beta.kubernetes.io/zone"
LABEL_ZONE_REGION = "failure-domain.beta.kubernetes.io/region"


@dataclass
class ServicePort:
    """A port exposed by a service."""

    port: int = 0
    name: str = ""
    protocol: str = ""


@dataclass
class Service:
    """A service: a cluster IP, a headless service or an external name."""

    name: str
    namespace: str = "default"
    cluster_ip: str = ""
    type: str = SERVICE_TYPE_CLUSTER_IP
    external_name: str = ""
    ports: list[ServicePort] = field(default_factory=list)

    def is_ip_set(self) -> bool:
        """Return whether the service has a cluster IP (is not headless)."""
        return self.cluster_ip not in ("", CLUSTER_IP_NONE)

    def is_external_name(self) -> bool:
        """Return whether the service is an alias for an external name."""
        return self.type == SERVICE_TYPE_EXTERNAL_NAME


@dataclass
class EndpointAddress:
    """One address backing a service, optionally with a pod hostname."""

    ip: str
    hostname: str = ""


@dataclass
class EndpointPort:
    """A port on which the addresses of a subset listen."""

    port: int = 0
    name: str = ""
    protocol: str = ""


@dataclass
class EndpointSubset:
    """A group of addresses sharing the same ports."""

    addresses: list[EndpointAddress] = field(default_factory=list)
    ports: list[EndpointPort] = field(default_factory=list)


@dataclass
class Endpoints:
    """The addresses behind the service of the same name and namespace."""

    name: str
    namespace: str = "default"
    subsets: list[EndpointSubset] = field(default_factory=list)
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class Node:
    """A cluster node, of which only the labels matter here."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    namespace: str = ""


def object_key(obj: Any) -> str:
    """Return the store key of *obj*: ``namespace/name``, or ``name`` alone."""
    try:
        name = obj.name
        namespace = getattr(obj, "namespace", "")
    except AttributeError as err:
        raise TypeError(f"object {obj!r} has no name") from err
    return f"{namespace}/{name}" if namespace else name


T = TypeVar("T")


class Store(Generic[T]):
    """Objects indexed by their key, kept in insertion order."""

    def __init__(self, key: Callable[[Any], str] = object_key) -> None:
        self._key = key
        self._items: dict[str, T] = {}

    def add(self, obj: T) -> None:
        """Add *obj*, replacing any object with the same key."""
        self._items[self._key(obj)] = obj

    def delete(self, obj: T) -> None:
        """Remove the object with the key of *obj*, if present."""
        self._items.pop(self._key(obj), None)

    def get(self, key: str) -> T | None:
        """Return the object stored under *key*, or None."""
        return self._items.get(key)

    def list(self) -> list[T]:
        """Return every stored object."""
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items.values()))