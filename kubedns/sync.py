"""Synchronisation of the configuration from a changing source."""

from __future__ import annotations

import json
import logging
import queue
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Protocol

from .config import Config
from .validation import parse_federations

log = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """A versioned snapshot of the raw configuration data."""

    version: str = ""
    data: dict[str, str] = field(default_factory=dict)


class _SyncSource(Protocol):
    def once(self) -> SyncResult: ...

    def periodic(self) -> Iterator[SyncResult]: ...


class ConfigSync(ABC):
    """Provides the configuration once, then its later changes."""

    @abstractmethod
    def once(self) -> Config:
        """Fetch the current configuration, blocking until it is known."""

    @abstractmethod
    def periodic(self) -> Iterator[Config]:
        """Yield each new configuration as it is detected."""


def _update_federations(config: Config, value: str) -> None:
    config.federations = parse_federations(value)


def _update_stub_domains(config: Config, value: str) -> None:
    parsed = json.loads(value)
    if parsed is None:
        parsed = {}
    if not isinstance(parsed, dict):
        raise ValueError(f"stubDomains must be a JSON object, got {value!r}")
    stub_domains: dict[str, list[str]] = {}
    for domain, nameservers in parsed.items():
        if nameservers is None:
            nameservers = []
        if not isinstance(nameservers, list) or not all(
            isinstance(ns, str) for ns in nameservers
        ):
            raise ValueError(f"nameservers for {domain!r} must be a list of strings")
        stub_domains[domain] = nameservers
    config.stub_domains = stub_domains


def _update_upstream_nameservers(config: Config, value: str) -> None:
    parsed = json.loads(value)
    if parsed is None:
        parsed = []
    if not isinstance(parsed, list) or not all(isinstance(ns, str) for ns in parsed):
        raise ValueError(f"upstreamNameservers must be a list of strings, got {value!r}")
    config.upstream_nameservers = parsed


_FIELD_UPDATERS: dict[str, Callable[[Config, str], None]] = {
    "federations": _update_federations,
    "stubDomains": _update_stub_domains,
    "upstreamNameservers": _update_upstream_nameservers,
}


class KubeSync(ConfigSync):
    """Builds configurations from the results of a sync source."""

    def __init__(self, source: _SyncSource) -> None:
        self.source = source
        self.latest_version = ""

    def once(self) -> Config:
        result = self.source.once()
        config, _ = self.process_update(result, True)
        assert config is not None
        return config

    def periodic(self) -> Iterator[Config]:
        for result in self.source.periodic():
            try:
                config, changed = self.process_update(result, False)
            except ValueError as err:
                log.error("Invalid configuration, ignoring update: %s", err)
                continue
            if changed and config is not None:
                yield config

    def process_update(
        self, result: SyncResult, build_unchanged_config: bool
    ) -> tuple[Config | None, bool]:
        """Turn *result* into a configuration.

        Returns the configuration and whether the version changed. When the
        version is unchanged and *build_unchanged_config* is false, no
        configuration is built. Raises ValueError on invalid data.
        """
        changed = result.version != self.latest_version
        if changed:
            log.info(
                "Updating config to version %s (was %s)",
                result.version,
                self.latest_version,
            )
            self.latest_version = result.version
        else:
            log.debug("Config was unchanged (version %s)", self.latest_version)
            if not build_unchanged_config:
                return None, False

        if not result.version and not result.data:
            return Config.default(), changed

        config = Config()
        data = result.data or {}
        for key, update in _FIELD_UPDATERS.items():
            if key not in data:
                log.debug("No %s present", key)
                continue
            update(config, data[key])
        config.validate()
        return config, changed


class NopSync(ConfigSync):
    """A fixed configuration that never changes."""

    def __init__(self, config: Config) -> None:
        self.config = config

    def once(self) -> Config:
        return self.config

    def periodic(self) -> Iterator[Config]:
        return iter(())


class MockSync(ConfigSync):
    """A sync for tests: a fixed initial result and a queue of updates."""

    def __init__(self, config: Config | None, error: Exception | None = None) -> None:
        self.config = config
        self.error = error
        self.queue: queue.Queue[Config] = queue.Queue()

    def once(self) -> Config | None:
        if self.error is not None:
            raise self.error
        return self.config

    def periodic(self) -> Iterator[Config]:
        while True:
            yield self.queue.get()


class MockSource:
    """A sync source for tests: a fixed initial result and a queue of updates."""

    def __init__(self, result: SyncResult, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.queue: queue.Queue[SyncResult] = queue.Queue()

    def once(self) -> SyncResult:
        if self.error is not None:
            raise self.error
        return self.result

    def periodic(self) -> Iterator[SyncResult]:
        while True:
            yield self.queue.get()