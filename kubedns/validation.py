"""Validation of DNS names, addresses, nameservers and the federations flag."""

from __future__ import annotations

import ipaddress
import re

_LABEL_MAX_LENGTH = 63
_SUBDOMAIN_MAX_LENGTH = 253
_DEFAULT_DNS_PORT = "53"
_MAX_PORT = 65535

_DNS1123_LABEL = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?")
_DNS1035_LABEL = re.compile(r"[a-z]([-a-z0-9]*[a-z0-9])?")
_DNS1123_SUBDOMAIN = re.compile(
    r"[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*"
)
_DIGITS = re.compile(r"[0-9]+")


def is_dns1123_label(value: str) -> bool:
    """Return whether *value* is a valid RFC 1123 label."""
    return (
        len(value) <= _LABEL_MAX_LENGTH
        and _DNS1123_LABEL.fullmatch(value) is not None
    )


def is_dns1035_label(value: str) -> bool:
    """Return whether *value* is a valid RFC 1035 label."""
    return (
        len(value) <= _LABEL_MAX_LENGTH
        and _DNS1035_LABEL.fullmatch(value) is not None
    )


def is_dns1123_subdomain(value: str) -> bool:
    """Return whether *value* is a valid RFC 1123 subdomain."""
    return (
        len(value) <= _SUBDOMAIN_MAX_LENGTH
        and _DNS1123_SUBDOMAIN.fullmatch(value) is not None
    )


def is_valid_ip(value: str) -> bool:
    """Return whether *value* is a textual IPv4 or IPv6 address."""
    if "%" in value:
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def _is_port(value: str) -> bool:
    return _DIGITS.fullmatch(value) is not None and int(value) <= _MAX_PORT


def split_host_port(value: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[host]:port`` into its host and port.

    Raises ValueError when the address has no port, too many colons or
    misplaced brackets.
    """
    colon = value.rfind(":")
    if colon < 0:
        raise ValueError(f"missing port in address {value!r}")

    start, stop = 0, 0
    if value.startswith("["):
        end = value.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {value!r}")
        if end + 1 == len(value):
            raise ValueError(f"missing port in address {value!r}")
        if end + 1 != colon:
            if value[end + 1] == ":":
                raise ValueError(f"too many colons in address {value!r}")
            raise ValueError(f"missing port in address {value!r}")
        host = value[1:end]
        start, stop = 1, end + 1
    else:
        host = value[:colon]
        if ":" in host:
            raise ValueError(f"too many colons in address {value!r}")

    if "[" in value[start:]:
        raise ValueError(f"unexpected '[' in address {value!r}")
    if "]" in value[stop:]:
        raise ValueError(f"unexpected ']' in address {value!r}")
    return host, value[colon + 1:]


def validate_nameserver(value: str) -> tuple[str, str]:
    """Return the ``(ip, port)`` of a nameserver given as ``ip`` or ``ip:port``.

    A bare address gets the standard DNS port. Raises ValueError when the
    address or the port is invalid.
    """
    if is_valid_ip(value):
        return value, _DEFAULT_DNS_PORT
    host, port = split_host_port(value)
    if not is_valid_ip(host):
        raise ValueError(f"bad IP address {host!r} in nameserver {value!r}")
    if not _is_port(port):
        raise ValueError(f"bad port {port!r} in nameserver {value!r}")
    return host, port


def parse_federations(value: str) -> dict[str, str]:
    """Parse a ``name=domain,name=domain`` list into a mapping.

    Names must be RFC 1123 labels and domains RFC 1123 subdomains.
    """
    federations: dict[str, str] = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, domain = item.partition("=")
        if not sep:
            raise ValueError(f"federation {item!r} is not of the form name=domain")
        name, domain = name.strip(), domain.strip()
        if not is_dns1123_label(name):
            raise ValueError(f"{name!r} is not a valid federation name")
        if not is_dns1123_subdomain(domain):
            raise ValueError(
                f"{domain!r} is not a valid domain name for federation {name!r}"
            )
        federations[name] = domain
    return federations