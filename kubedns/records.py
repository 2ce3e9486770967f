"""DNS records and the tree of names under which they are stored."""

from __future__ import annotations

import ipaddress
import json
from dataclasses import asdict, dataclass, replace

ARPA_SUFFIX = ".in-addr.arpa."
ARPA_SUFFIX_V6 = ".ip6.arpa."
WILDCARD = "*"

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


class RecordNotFound(LookupError):
    """No record exists for the queried name."""

    def __init__(self, name: str = "") -> None:
        super().__init__(f"key not found: {name}" if name else "key not found")
        self.name = name


@dataclass
class SkyRecord:
    """A record served for a name: an address, a target host or an alias."""

    host: str
    port: int = 0
    priority: int = 10
    weight: int = 10
    ttl: int = 30
    fqdn: str = ""


def _fnv1a32(data: bytes) -> int:
    value = _FNV_OFFSET
    for byte in data:
        value ^= byte
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return value


def _label_for(record: SkyRecord) -> str:
    text = f"{record.host}|{record.port}|{record.priority}|{record.weight}|{record.ttl}"
    return f"{_fnv1a32(text.encode('utf-8')):x}"


def sky_record(host: str, port: int) -> tuple[SkyRecord, str]:
    """Return a record for *host* and *port* and the hash label naming it."""
    record = SkyRecord(host=host, port=port)
    return record, _label_for(record)


def fqdn(name: str) -> str:
    """Return *name* as a fully qualified name, ending with a dot."""
    return name if name.endswith(".") else name + "."


def extract_ip(name: str) -> str | None:
    """Return the address a reverse-lookup name refers to, or None."""
    name = fqdn(name.lower())
    if name.endswith(ARPA_SUFFIX):
        labels = name[: -len(ARPA_SUFFIX)].split(".")
        if len(labels) != 4:
            return None
        candidate = ".".join(reversed(labels))
        try:
            ipaddress.IPv4Address(candidate)
        except ValueError:
            return None
        return candidate
    if name.endswith(ARPA_SUFFIX_V6):
        nibbles = name[: -len(ARPA_SUFFIX_V6)].split(".")
        if len(nibbles) != 32 or any(len(nibble) != 1 for nibble in nibbles):
            return None
        digits = "".join(reversed(nibbles))
        groups = ":".join(digits[i : i + 4] for i in range(0, 32, 4))
        try:
            return str(ipaddress.IPv6Address(groups))
        except ValueError:
            return None
    return None


class RecordTree:
    """Records stored under paths of labels, the reverse of a domain name.

    Each node holds entries (records keyed by a leaf label) and child nodes.
    The tree is not thread-safe; callers coordinate access.
    """

    def __init__(self) -> None:
        self.entries: dict[str, SkyRecord] = {}
        self.children: dict[str, RecordTree] = {}

    def _find(self, path: tuple[str, ...]) -> RecordTree | None:
        node: RecordTree | None = self
        for label in path:
            node = node.children.get(label)
            if node is None:
                return None
        return node

    def _ensure(self, path: tuple[str, ...]) -> RecordTree:
        node = self
        for label in path:
            node = node.children.setdefault(label, RecordTree())
        return node

    def set_entry(self, key: str, value: SkyRecord, fqdn: str, *args: str) -> None:
        """Store *value* as entry *key* under the path *args*, tagged with *fqdn*."""
        self._ensure(args).entries[key] = replace(value, fqdn=fqdn)

    def get_entry(self, key: str, *args: str) -> SkyRecord | None:
        """Return entry *key* under the path *args*, or None."""
        node = self._find(args)
        return None if node is None else node.entries.get(key)

    def set_subtree(self, key: str, subtree: RecordTree, *args: str) -> None:
        """Place *subtree* as child *key* under the path *args*."""
        self._ensure(args).children[key] = subtree

    def delete_path(self, *args: str) -> bool:
        """Remove the child node or entry at the path; return whether one existed."""
        if not args:
            return False
        parent = self._find(args[:-1])
        if parent is None:
            return False
        name = args[-1]
        if name in parent.children:
            del parent.children[name]
            return True
        if name in parent.entries:
            del parent.entries[name]
            return True
        return False

    def values_for_path(self, *args: str) -> list[SkyRecord]:
        """Return the records at a path in which ``*`` matches any label.

        A wildcard in the middle of the path skips children whose label starts
        with an underscore. The path may end on an entry; otherwise the direct
        entries of every node reached are returned.
        """
        found: list[SkyRecord] = []
        nodes: list[RecordTree] = [self]
        for position, label in enumerate(args):
            if position == len(args) - 1:
                last: list[RecordTree] = []
                for node in nodes:
                    if label == WILDCARD:
                        last.append(node)
                    elif label in node.entries:
                        found.append(node.entries[label])
                    elif label in node.children:
                        last.append(node.children[label])
                nodes = last
                break
            if label == WILDCARD:
                nodes = [
                    child
                    for node in nodes
                    for key, child in node.children.items()
                    if not key.startswith("_")
                ]
            else:
                nodes = [node.children[label] for node in nodes if label in node.children]
        for node in nodes:
            found.extend(node.entries.values())
        return found

    def _as_dict(self) -> dict:
        return {
            "entries": {key: asdict(value) for key, value in self.entries.items()},
            "children": {key: child._as_dict() for key, child in self.children.items()},
        }

    def to_json(self) -> str:
        """Return the whole tree as indented JSON."""
        return json.dumps(self._as_dict(), indent=2, sort_keys=True)