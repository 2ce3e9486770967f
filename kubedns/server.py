"""Serve DNS records for the services and endpoints of a cluster.

Records live in an in-memory tree. Services and endpoints fill it as they are
added, updated and removed. ``KubeDNS.records`` answers forward lookups from
the tree and ``KubeDNS.reverse_record`` answers reverse lookups.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import replace
from pathlib import Path
from typing import Any

from .config import Config
from .objects import (
    LABEL_ZONE_FAILURE_DOMAIN,
    LABEL_ZONE_REGION,
    EndpointAddress,
    Endpoints,
    Node,
    Service,
    Store,
    object_key,
)
from .records import RecordNotFound, RecordTree, SkyRecord, extract_ip, fqdn, sky_record
from .sync import ConfigSync, NopSync
from .validation import (
    is_dns1035_label,
    is_dns1123_label,
    is_dns1123_subdomain,
    is_valid_ip,
    validate_nameserver,
)

log = logging.getLogger(__name__)

SERVICE_SUBDOMAIN = "svc"
POD_SUBDOMAIN = "pod"
DEFAULT_RESOLV_FILE = "/etc/resolv.conf"
_DEFAULT_DNS_PORT = "53"


def _join_host_port(host: str, port: str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _service_fqdn(domain: str, service: Service) -> str:
    return ".".join([service.name, service.namespace, SERVICE_SUBDOMAIN, domain])


def _cname(host: str) -> SkyRecord:
    return SkyRecord(host=host, priority=0, weight=0, ttl=0)


def _addresses(endpoints: Endpoints) -> Iterator[EndpointAddress]:
    for subset in endpoints.subsets:
        yield from subset.addresses


class KubeDNS:
    """A DNS backend authoritative for the cluster domain *domain*.

    ``list_nodes`` is called to fetch cluster nodes when the node store is
    empty and a federation query needs the cluster's zone and region.
    ``nameservers`` holds the upstream nameservers of the serving DNS
    server; when it is None, upstream configuration is not tracked.
    """

    def __init__(
        self,
        domain: str,
        config_sync: ConfigSync | None = None,
        *,
        list_nodes: Callable[[], Iterable[Node]] | None = None,
        nameservers: list[str] | None = None,
        resolv_file: str | Path = DEFAULT_RESOLV_FILE,
    ) -> None:
        self.domain = domain
        self.domain_path = list(reversed(domain.rstrip(".").split(".")))
        self.config_sync = (
            config_sync if config_sync is not None else NopSync(Config.default())
        )
        self.config = Config.default()
        self.nameservers = nameservers
        self.resolv_file = Path(resolv_file)

        self.services_store: Store[Service] = Store()
        self.endpoints_store: Store[Endpoints] = Store()
        self.nodes_store: Store[Node] = Store()
        self._list_nodes = list_nodes

        self._cache = RecordTree()
        self._reverse_records: dict[str, SkyRecord] = {}
        self._cluster_ip_services: dict[str, Service] = {}
        self._cache_lock = threading.RLock()
        self._config_lock = threading.RLock()

    # Configuration

    def _load_default_nameservers(self) -> list[str]:
        try:
            text = self.resolv_file.read_text()
        except OSError as err:
            log.error("Load nameserver from %s failed: %s", self.resolv_file, err)
            return []
        servers = []
        for line in text.splitlines():
            fields = line.split()
            if len(fields) >= 2 and fields[0] == "nameserver":
                servers.append(_join_host_port(fields[1], _DEFAULT_DNS_PORT))
        return servers

    def update_config(self, next_config: Config) -> None:
        """Adopt *next_config*, keeping the old one if its nameservers are invalid."""
        with self._config_lock:
            if self.nameservers is not None:
                resolved = []
                for nameserver in next_config.upstream_nameservers:
                    try:
                        ip, port = validate_nameserver(nameserver)
                    except ValueError as err:
                        log.error("Invalid nameserver %r: %s", nameserver, err)
                        if not self.nameservers:
                            # Fall back to resolv.conf on initialization failure.
                            self.nameservers = self._load_default_nameservers()
                        return
                    resolved.append(_join_host_port(ip, port))
                self.nameservers = resolved or self._load_default_nameservers()
            self.config = next_config
            log.info("Configuration updated: %s", next_config)

    def start_config_sync(self) -> threading.Thread:
        """Load the initial configuration and follow later changes in the background."""
        try:
            initial = self.config_sync.once()
        except Exception as err:  # any failure of the source falls back to defaults
            log.error("Error getting initial ConfigMap: %s, starting with defaults", err)
            with self._config_lock:
                self.config = Config.default()
        else:
            if initial is None:
                with self._config_lock:
                    self.config = Config.default()
            else:
                self.update_config(initial)

        thread = threading.Thread(
            target=self._follow_config, args=(self.config_sync.periodic(),), daemon=True
        )
        thread.start()
        return thread

    def _follow_config(self, updates: Iterable[Config]) -> None:
        for next_config in updates:
            self.update_config(next_config)

    def cache_as_json(self) -> str:
        """Return the record tree as JSON."""
        with self._cache_lock:
            return self._cache.to_json()

    # Services

    def new_service(self, service: Any) -> None:
        """Create the records of a newly seen service."""
        if not isinstance(service, Service):
            log.error("Expected a Service, got %s", type(service).__name__)
            return
        log.debug("New service: %s", service.name)
        if service.is_external_name():
            self._new_external_name_service(service)
            return
        if not service.is_ip_set():
            try:
                self._new_headless_service(service)
            except TypeError as err:
                log.error("Could not create new headless service %s: %s", service.name, err)
            return
        if not service.ports:
            log.warning("Service with no ports, this should not have happened: %s", service)
        self._new_portal_service(service)

    def remove_service(self, service: Any) -> None:
        """Drop every record of *service*."""
        if not isinstance(service, Service):
            log.error("Expected a Service, got %s", type(service).__name__)
            return
        path = [*self.domain_path, SERVICE_SUBDOMAIN, service.namespace, service.name]
        with self._cache_lock:
            removed = self._cache.delete_path(*path)
            log.debug("removeService %s at path %s. Success: %s", service.name, path, removed)
            if service.is_ip_set():
                self._reverse_records.pop(service.cluster_ip, None)
                self._cluster_ip_services.pop(service.cluster_ip, None)

    def update_service(self, old: Any, new: Any) -> None:
        """Replace the records of *old* with those of *new*."""
        if not isinstance(new, Service) or not isinstance(old, Service):
            log.error("Expected Services, got %s and %s", type(old).__name__, type(new).__name__)
            return
        # Only a change to or from ExternalName moves the records elsewhere.
        if new.is_external_name() != old.is_external_name():
            self.remove_service(old)
        self.new_service(new)

    def _fqdn(self, service: Service, *subpaths: str) -> str:
        labels = [*self.domain_path, SERVICE_SUBDOMAIN, service.namespace, service.name, *subpaths]
        return fqdn(".".join(reversed(labels)))

    def _srv_record(self, service: Service, port: int, *labels: str) -> SkyRecord:
        host = ".".join([service.name, service.namespace, SERVICE_SUBDOMAIN, self.domain])
        for label in labels:
            host = f"{label}.{host}"
        return sky_record(host, port)[0]

    def _new_portal_service(self, service: Service) -> None:
        subtree = RecordTree()
        record, label = sky_record(service.cluster_ip, 0)
        subtree.set_entry(label, record, self._fqdn(service, label))
        for port in service.ports:
            if port.name and port.protocol:
                srv = self._srv_record(service, port.port)
                path = ["_" + port.protocol.lower(), "_" + port.name]
                subtree.set_entry(label, srv, self._fqdn(service, *path, label), *path)
        reverse = sky_record(_service_fqdn(self.domain, service), 0)[0]
        with self._cache_lock:
            self._cache.set_subtree(
                service.name, subtree, *self.domain_path, SERVICE_SUBDOMAIN, service.namespace
            )
            self._reverse_records[service.cluster_ip] = reverse
            self._cluster_ip_services[service.cluster_ip] = service

    def _new_headless_service(self, service: Service) -> None:
        endpoints = self.endpoints_store.get(object_key(service))
        if endpoints is None:
            log.info(
                "Could not find endpoints for service %r in namespace %r. "
                "DNS records will be created once endpoints show up.",
                service.name,
                service.namespace,
            )
            return
        if isinstance(endpoints, Endpoints):
            self._generate_headless_records(endpoints, service)

    def _new_external_name_service(self, service: Service) -> None:
        record = sky_record(service.external_name, 0)[0]
        with self._cache_lock:
            self._cache.set_entry(
                service.name,
                record,
                self._fqdn(service),
                *self.domain_path,
                SERVICE_SUBDOMAIN,
                service.namespace,
            )

    def _generate_headless_records(self, endpoints: Endpoints, service: Service) -> None:
        subtree = RecordTree()
        reverse: dict[str, SkyRecord] = {}
        for subset in endpoints.subsets:
            for address in subset.addresses:
                record, endpoint_name = sky_record(address.ip, 0)
                if address.hostname:
                    endpoint_name = address.hostname
                subtree.set_entry(endpoint_name, record, self._fqdn(service, endpoint_name))
                for port in subset.ports:
                    if port.name and port.protocol:
                        srv = self._srv_record(service, port.port, endpoint_name)
                        path = ["_" + port.protocol.lower(), "_" + port.name]
                        subtree.set_entry(
                            endpoint_name, srv, self._fqdn(service, *path, endpoint_name), *path
                        )
                # Only named endpoints get reverse records.
                if address.hostname:
                    reverse[address.ip] = sky_record(self._fqdn(service, endpoint_name), 0)[0]
        with self._cache_lock:
            self._reverse_records.update(reverse)
            self._cache.set_subtree(
                service.name, subtree, *self.domain_path, SERVICE_SUBDOMAIN, service.namespace
            )

    # Endpoints

    def _service_for_endpoints(self, endpoints: Endpoints) -> Service | None:
        obj = self.services_store.get(object_key(endpoints))
        if obj is None:
            log.debug(
                "No service for endpoint %r in namespace %r", endpoints.name, endpoints.namespace
            )
            return None
        if not isinstance(obj, Service):
            raise TypeError(f"got a non service object in services store {obj!r}")
        return obj

    def _add_dns_using_endpoints(self, endpoints: Endpoints) -> None:
        service = self._service_for_endpoints(endpoints)
        if service is None or service.is_ip_set() or service.is_external_name():
            return
        self._generate_headless_records(endpoints, service)

    def handle_endpoint_add(self, endpoints: Any) -> None:
        """Create the records of a headless service from its endpoints."""
        if not isinstance(endpoints, Endpoints):
            log.error("Expected Endpoints, got %s", type(endpoints).__name__)
            return
        try:
            self._add_dns_using_endpoints(endpoints)
        except TypeError as err:
            log.error("Error adding DNS for endpoints %s: %s", endpoints.name, err)

    def handle_endpoint_update(self, old: Any, new: Any) -> None:
        """Drop reverse records no longer named by *new*, then add *new*."""
        if not isinstance(old, Endpoints) or not isinstance(new, Endpoints):
            log.error(
                "Expected Endpoints, got %s and %s", type(old).__name__, type(new).__name__
            )
            return
        try:
            service = self._service_for_endpoints(old)
        except TypeError:
            service = None
        if service is not None and not service.is_ip_set():
            stale = {address.ip for address in _addresses(old) if address.hostname}
            stale -= {address.ip for address in _addresses(new) if address.hostname}
            with self._cache_lock:
                for ip in stale:
                    log.debug("Removing old endpoint IP %r", ip)
                    self._reverse_records.pop(ip, None)
        self.handle_endpoint_add(new)

    def handle_endpoint_delete(self, endpoints: Any) -> None:
        """Drop the reverse records of a named headless service's endpoints."""
        if not isinstance(endpoints, Endpoints):
            log.error("Expected Endpoints, got %s", type(endpoints).__name__)
            return
        try:
            service = self._service_for_endpoints(endpoints)
        except TypeError as err:
            log.error("Error finding service for %s: %s", endpoints.name, err)
            return
        if service is None or service.is_ip_set():
            return
        with self._cache_lock:
            for address in _addresses(endpoints):
                if address.hostname:
                    self._reverse_records.pop(address.ip, None)

    # Lookups

    def records(self, name: str, exact: bool) -> list[SkyRecord]:
        """Return the records for *name*.

        With *exact*, the single record named is returned; otherwise every
        record under the matching subtree. Raises RecordNotFound when there
        are none.
        """
        segments = name.rstrip(".").split(".")
        federation_segments: list[str] | None = None
        if not exact and self._is_federation_query(segments):
            # Try the local service first: drop the federation name.
            federation_segments = list(segments)
            segments = segments[:2] + segments[3:]

        path = list(reversed(segments))
        found = self._records_for_path(path, exact)

        if federation_segments is not None:
            return self._records_for_federation(found, path, exact, federation_segments)
        if found:
            return found
        raise RecordNotFound(name)

    def _records_for_federation(
        self,
        found: list[SkyRecord],
        path: list[str],
        exact: bool,
        federation_segments: list[str],
    ) -> list[SkyRecord]:
        valid = False
        with self._cache_lock:
            for record in found:
                # Records of headless services are endpoint addresses already.
                if not self._is_headless_record(record):
                    try:
                        has_endpoints = self._has_endpoints(record)
                    except (LookupError, TypeError) as err:
                        log.debug("Federation: error finding if service has endpoint: %s", err)
                        continue
                    if not has_endpoints:
                        continue
                valid = True
                break

        if valid:
            return [_cname(fqdn(".".join(reversed(path))))]
        if not exact:
            return self._federation_records(list(reversed(federation_segments)))
        raise RecordNotFound(".".join(reversed(path)))

    def _records_for_path(self, path: list[str], exact: bool) -> list[SkyRecord]:
        if self._is_pod_record(path):
            return [sky_record(self._pod_ip(path), 0)[0]]

        with self._cache_lock:
            if exact:
                key = path[-1]
                if not key:
                    return []
                record = self._cache.get_entry(key, *path[:-1])
                if record is None:
                    raise RecordNotFound(".".join(reversed(path)))
                return [replace(record)]
            return [replace(record) for record in self._cache.values_for_path(*path)]

    def _is_headless_record(self, record: SkyRecord) -> bool:
        return record.host not in self._cluster_ip_services

    def _has_endpoints(self, record: SkyRecord) -> bool:
        service = self._cluster_ip_services.get(record.host)
        if service is None:
            raise LookupError("not expected to be called for a headless service")
        endpoints = self.endpoints_store.get(object_key(service))
        if endpoints is None:
            return False
        if not isinstance(endpoints, Endpoints):
            raise TypeError(f"found non-endpoint object in endpoint store: {endpoints!r}")
        return bool(endpoints.subsets)

    def reverse_record(self, name: str) -> SkyRecord:
        """Return the record for a reverse lookup name such as ``4.3.2.1.in-addr.arpa.``."""
        ip = extract_ip(name)
        if ip is None:
            raise ValueError(f"does not support reverse lookup for {name}")
        with self._cache_lock:
            record = self._reverse_records.get(ip)
        if record is None:
            raise RecordNotFound(name)
        return record

    def _is_pod_record(self, path: list[str]) -> bool:
        return (
            len(path) == len(self.domain_path) + 3
            and path[len(self.domain_path)] == POD_SUBDOMAIN
            and "*" not in path
        )

    @staticmethod
    def _pod_ip(path: list[str]) -> str:
        ip = path[-1].replace("-", ".")
        if not is_valid_ip(ip):
            raise ValueError(f"Invalid IP Address {ip}")
        return ip

    def _is_federation_query(self, path: list[str]) -> bool:
        """Whether *path* reads service.namespace.federation.svc.<domain>."""
        if len(path) != 4 + len(self.domain_path):
            return False
        if not is_dns1035_label(path[0]):
            return False
        if not is_dns1123_label(path[1]) or not is_dns1123_label(path[2]):
            return False
        if path[3] != SERVICE_SUBDOMAIN:
            return False
        if list(reversed(path[-len(self.domain_path):])) != self.domain_path:
            return False
        with self._config_lock:
            return path[2] in self.config.federations

    def _federation_records(self, query_path: list[str]) -> list[SkyRecord]:
        path = list(reversed(query_path))
        if not self._is_federation_query(path):
            raise RecordNotFound(".".join(path))

        path = path[: len(path) - len(self.domain_path)]
        try:
            zone, region = self._cluster_zone_and_region()
        except (LookupError, TypeError) as err:
            raise LookupError(f"failed to obtain the cluster zone and region: {err}") from err
        path += [zone, region]

        with self._config_lock:
            domain = self.config.federations[path[2]]
        if not is_dns1123_subdomain(domain):
            raise ValueError(f"{domain} is not a valid domain name for federation {path[2]}")
        return [_cname(fqdn(".".join([*path, domain])))]

    def _cluster_zone_and_region(self) -> tuple[str, str]:
        node: Node | None = None
        cached = self.nodes_store.list()
        if cached:
            node = cached[0]
            if not isinstance(node, Node):
                raise TypeError(f"expected node object, got: {type(node).__name__}")
        else:
            try:
                nodes = list(self._list_nodes()) if self._list_nodes is not None else []
            except Exception as err:  # the node source is external
                raise LookupError(f"failed to retrieve the cluster nodes: {err}") from err
            if not nodes:
                raise LookupError("failed to retrieve the cluster nodes")
            for item in nodes:
                if LABEL_ZONE_FAILURE_DOMAIN in item.labels and LABEL_ZONE_REGION in item.labels:
                    node = item
                    self.nodes_store.add(node)
                    break

        if node is None:
            raise LookupError("Could not find any nodes")
        zone = node.labels.get(LABEL_ZONE_FAILURE_DOMAIN, "")
        if not zone:
            raise LookupError("unknown cluster zone")
        region = node.labels.get(LABEL_ZONE_REGION, "")
        if not region:
            raise LookupError("unknown cluster region")
        return zone, region