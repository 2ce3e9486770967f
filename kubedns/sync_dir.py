"""Configuration read from the files of a directory, rescanned periodically."""

from __future__ import annotations

import hashlib
import logging
import os
import stat
import threading
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Protocol

from .sync import KubeSync, SyncResult

log = logging.getLogger(__name__)


class _Clock(Protocol):
    def wait_tick(self, period: float) -> None: ...


class _RealClock:
    """Ticks on multiples of the period since the clock was created."""

    def __init__(self) -> None:
        self._start = time.monotonic()
        self._ticks: dict[float, int] = {}

    def wait_tick(self, period: float) -> None:
        done = self._ticks.get(period, 0)
        delay = self._start + (done + 1) * period - time.monotonic()
        if delay > 0:
            time.sleep(delay)
        self._ticks[period] = int((time.monotonic() - self._start) // period)


class ManualClock:
    """A clock that only moves when stepped; ticks fall on multiples of a period."""

    def __init__(self, start: float = 0.0) -> None:
        self._start = start
        self._now = start
        self._ticks: dict[float, int] = {}
        self._changed = threading.Condition()

    @property
    def now(self) -> float:
        with self._changed:
            return self._now

    def step(self, seconds: float) -> None:
        """Move the clock forward, waking anything waiting for a tick."""
        with self._changed:
            self._now += seconds
            self._changed.notify_all()

    def wait_tick(self, period: float) -> None:
        """Block until the clock passes the next tick of *period*."""
        with self._changed:
            done = self._ticks.get(period, 0)
            target = self._start + (done + 1) * period
            self._changed.wait_for(lambda: self._now >= target)
            self._ticks[period] = int((self._now - self._start) // period)


class FileSyncSource:
    """Reads every visible regular file of a directory as a configuration key."""

    def __init__(
        self,
        directory: str | os.PathLike[str],
        period: float,
        clock: _Clock | None = None,
    ) -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        self.directory = os.fspath(directory)
        self.period = period
        self._clock: _Clock = clock if clock is not None else _RealClock()

    def once(self) -> SyncResult:
        return self._load()

    def periodic(self) -> Iterator[SyncResult]:
        while True:
            try:
                result = self._load()
            except (OSError, ValueError) as err:
                log.error("Error loading config from %s: %s", self.directory, err)
            else:
                yield result
            self._clock.wait_tick(self.period)

    def _load(self) -> SyncResult:
        info = os.lstat(self.directory)
        if not stat.S_ISDIR(info.st_mode):
            raise NotADirectoryError(
                f"config path {self.directory!r} is not a directory"
            )

        hasher = hashlib.sha256()
        data: dict[str, str] = {}
        with os.scandir(self.directory) as scan:
            entries = sorted(scan, key=lambda entry: entry.name)
        for entry in entries:
            if entry.is_dir(follow_symlinks=False) or entry.name.startswith("."):
                continue
            raw = Path(entry.path).read_bytes()
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError as err:
                raise ValueError(f"non-utf8 data in {entry.path}") from err
            hasher.update(os.fsencode(entry.name))
            hasher.update(b"\0")
            hasher.update(raw)
            hasher.update(b"\0")
            data[entry.name] = text

        version = hasher.hexdigest() if data else ""
        return SyncResult(version=version, data=data)


def new_file_sync(directory: str | os.PathLike[str], period: float) -> KubeSync:
    """Return a configuration sync that rescans *directory* every *period* seconds."""
    return KubeSync(FileSyncSource(directory, period))