# kubedns

An in-memory DNS record backend for a cluster. It keeps address, SRV, CNAME
and PTR-style records for services and endpoints and answers forward and
reverse lookups from them. Its configuration (federations, stub domains,
upstream nameservers) can be validated, and loaded and refreshed from a
directory of files.

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Serving records

`kubedns.server.KubeDNS` holds the record tree. Feed it the dataclasses from
`kubedns.objects` (`Service`, `ServicePort`, `Endpoints`, `EndpointSubset`,
`EndpointAddress`, `EndpointPort`, `Node`) and query it with `records` and
`reverse_record`.

```python
from kubedns.objects import Service, ServicePort
from kubedns.server import KubeDNS

kd = KubeDNS("cluster.local.")
svc = Service(
    name="web",
    namespace="default",
    cluster_ip="10.0.0.10",
    ports=[ServicePort(name="http", port=80, protocol="TCP")],
)
kd.new_service(svc)

kd.records("web.default.svc.cluster.local.", False)
# one record whose host is "10.0.0.10"

kd.records("_http._tcp.web.default.svc.cluster.local.", False)
# one SRV-style record, port 80, whose host is "web.default.svc.cluster.local."

kd.reverse_record("10.0.0.10.in-addr.arpa.")
# record whose host is "web.default.svc.cluster.local."
```

Lookups:

- `records(name, exact)` returns a list of `kubedns.records.SkyRecord`. With
  `exact=False`, a `*` label matches any label, and every record under the
  matched subtree is returned. When nothing matches it raises
  `kubedns.records.RecordNotFound`.
- `reverse_record(name)` takes an `in-addr.arpa.` or `ip6.arpa.` name. It
  raises `ValueError` for other names and `RecordNotFound` when there is no
  record for the address.
- Pod names such as `1-2-3-4.default.pod.cluster.local.` resolve to the pod's
  IP; a label that is not an address raises `ValueError`.

Keeping records up to date:

- `new_service`, `update_service` and `remove_service` handle cluster-IP,
  headless and ExternalName services. ExternalName services get a CNAME-style
  record for their external name.
- Headless services take their records from the endpoints found in
  `kd.endpoints_store`; `handle_endpoint_add`, `handle_endpoint_update` and
  `handle_endpoint_delete` keep them current. Only endpoint addresses with a
  hostname get reverse records.
- Endpoint handlers look services up in `kd.services_store`. Both stores are
  `kubedns.objects.Store` instances keyed `namespace/name`.

Federation queries (`service.namespace.federation.svc.<domain>` for a
federation named in the configuration) return the local service's name if it
has endpoints, and otherwise a CNAME under the federation domain built from
the cluster's zone and region. These are read from the labels of a node in
`kd.nodes_store`, or, when that is empty, from the nodes returned by the
`list_nodes` callable passed to `KubeDNS`.

`cache_as_json()` dumps the whole record tree.

## Configuration

`kubedns.config.Config` holds `federations`, `stub_domains` and
`upstream_nameservers`. `Config.default()` gives an empty configuration, and
`validate()` raises `ValueError` if a value is not valid (at most three
upstream nameservers, each an IP with an optional port).

```python
from kubedns.config import Config

cfg = Config(upstream_nameservers=["1.2.3.4", "8.8.8.8:53"])
cfg.validate()
```

`KubeDNS.update_config(config)` adopts a configuration. If `KubeDNS` was
given a `nameservers` list, the upstream nameservers are resolved into it as
`host:port`; an empty upstream list falls back to the `nameserver` lines of
the `resolv_file` (default `/etc/resolv.conf`), and an invalid entry keeps the
previous configuration.

## Loading configuration from files

`kubedns.sync_dir.new_file_sync(directory, period)` returns a
`kubedns.sync.KubeSync` that reads every top-level, non-hidden file in
`directory`. Each file's name is a key and its content the value. The keys
used are `federations` (`name=domain,name=domain`), `stubDomains` (a JSON
object) and `upstreamNameservers` (a JSON list). `once()` returns the current
configuration; `periodic()` yields each new valid configuration whose
contents changed, rescanning every `period` seconds.

```python
from kubedns.server import KubeDNS
from kubedns.sync_dir import new_file_sync

kd = KubeDNS("cluster.local.", config_sync=new_file_sync("/etc/kube-dns/config", 10.0))
kd.start_config_sync()
```

`start_config_sync()` loads the initial configuration (falling back to the
default if that fails) and follows later changes on a daemon thread, which it
returns.

`kubedns.sync` also has `NopSync` (a fixed configuration) and, for tests,
`MockSync` and `MockSource`, whose updates are fed through their `queue`.
`kubedns.sync_dir.ManualClock` drives `FileSyncSource` rescans by hand.

## Validation helpers

`kubedns.validation` provides `is_dns1123_label`, `is_dns1035_label`,
`is_dns1123_subdomain`, `is_valid_ip`, `split_host_port`,
`validate_nameserver` and `parse_federations`.

## What it does not do

The package is a record backend only. It does not listen on a socket or speak
the DNS wire protocol, and it does not watch a cluster API for services,
endpoints or nodes: the caller feeds it objects and calls its lookup methods.
It has no command-line program.