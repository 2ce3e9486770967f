"""The dynamic configuration of the DNS server."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .validation import (
    is_dns1123_label,
    is_dns1123_subdomain,
    is_valid_ip,
    split_host_port,
    validate_nameserver,
)

_MAX_UPSTREAM_NAMESERVERS = 3
_DIGITS = re.compile(r"[0-9]+")


def _is_port(value: str) -> bool:
    return _DIGITS.fullmatch(value) is not None and int(value) <= 65535


@dataclass
class Config:
    """Configuration from command-line flags or a config map.

    ``federations`` maps federation names to their domains,
    ``stub_domains`` maps domain suffixes to the nameservers serving them and
    ``upstream_nameservers`` overrides the nameservers inherited from the node.
    """

    federations: dict[str, str] = field(default_factory=dict)
    stub_domains: dict[str, list[str]] = field(default_factory=dict)
    upstream_nameservers: list[str] = field(default_factory=list)

    @classmethod
    def default(cls) -> Config:
        """Return the configuration used when nothing else is provided."""
        return cls()

    def validate(self) -> None:
        """Raise ValueError if the configuration is not valid."""
        self._validate_federations()
        self._validate_stub_domains()
        self._validate_upstream_nameservers()

    def _validate_federations(self) -> None:
        for name, domain in self.federations.items():
            if not is_dns1123_label(name):
                raise ValueError(f"{name!r} is not a valid federation name")
            if not is_dns1123_subdomain(domain):
                raise ValueError(
                    f"{domain!r} is not a valid domain name for federation {name!r}"
                )

    def _validate_stub_domains(self) -> None:
        for domain, nameservers in self.stub_domains.items():
            if not is_dns1123_subdomain(domain):
                raise ValueError(f"invalid domain name: {domain!r}")
            for nameserver in nameservers:
                try:
                    host, port = split_host_port(nameserver)
                except ValueError:
                    # No port, or an unbracketed IPv6 address.
                    host, port = nameserver, ""
                if port and not _is_port(port):
                    raise ValueError(f"invalid nameserver: {nameserver!r}")
                if not is_valid_ip(host) and not is_dns1123_subdomain(nameserver):
                    raise ValueError(f"invalid nameserver: {nameserver!r}")

    def _validate_upstream_nameservers(self) -> None:
        if len(self.upstream_nameservers) > _MAX_UPSTREAM_NAMESERVERS:
            raise ValueError("upstreamNameserver cannot have more than three entries")
        for nameserver in self.upstream_nameservers:
            validate_nameserver(nameserver)