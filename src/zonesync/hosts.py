"""Hosts-file ingestion and change watching.

Brief:
  - parse_hosts() reads a POSIX hosts file and maps each address to the
    ordered, de-duplicated list of names it carries, every name rooted under
    the active domain.
  - HostsWatcher uses watchdog to call back (usually ResyncLoop.trigger) when
    the file changes on disk, so edits show up before the next interval.
"""

from __future__ import annotations

import logging
import os
import pathlib
import threading
import time
from typing import Callable, Dict, List, Optional

from dnslib import DNSLabel
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .addresses import IPAddress, parse_ip_from_cidr
from .errors import HostsFileError, InvalidAddressError, InvalidNameError
from .names import to_fqdn

logger = logging.getLogger(__name__)

HostsMapping = Dict[IPAddress, List[DNSLabel]]


def check_hosts_path(path: str) -> pathlib.Path:
    """Brief: Resolve an explicitly configured hosts path and make sure it is a file.

    Inputs:
      - path: Path as configured (``~`` is expanded).

    Outputs:
      - pathlib.Path of the hosts file.

    Raises:
      - HostsFileError when the path does not exist or is not a regular file.
    """

    hosts_path = pathlib.Path(os.path.expanduser(str(path)))
    if not hosts_path.exists():
        raise HostsFileError("hosts file %s does not exist" % hosts_path)
    if not hosts_path.is_file():
        raise HostsFileError("hosts file %s is not a regular file" % hosts_path)
    return hosts_path


def parse_hosts_text(text: str, domain: DNSLabel, source: str = "<hosts>") -> HostsMapping:
    """Brief: Parse hosts-file text into an address -> names mapping.

    - Comments start with '#', including inline comments.
    - The first token is the address; the remaining tokens are names.
    - Lines with an invalid address are skipped with a warning.
    - Invalid name tokens are dropped one by one.
    - Names for the same address accumulate in file order without duplicates
      (compared case-insensitively).

    Inputs:
      - text: Hosts file contents.
      - domain: Validated domain appended to every name.
      - source: Label used in log messages.

    Outputs:
      - HostsMapping (insertion ordered).
    """

    mapping: HostsMapping = {}

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue

        parts = line.split()
        try:
            address = parse_ip_from_cidr(parts[0])
        except InvalidAddressError as exc:
            logger.warning("%s:%d: skipping line: %s", source, lineno, exc)
            continue

        names = mapping.get(address)
        for token in parts[1:]:
            try:
                name = to_fqdn(token, domain)
            except InvalidNameError:
                logger.warning(
                    "%s:%d: dropping invalid name %r", source, lineno, token
                )
                continue
            if names is None:
                names = mapping[address] = []
            if name not in names:
                names.append(name)

    return mapping


def parse_hosts(path: Optional[str], domain: DNSLabel) -> HostsMapping:
    """Brief: Read a hosts file (if one is configured) and parse it.

    Inputs:
      - path: Hosts file path, or None for "no static entries".
      - domain: Validated domain.

    Outputs:
      - HostsMapping; empty when ``path`` is None.

    Raises:
      - HostsFileError when ``path`` is given but missing or unreadable.

    Example:
      127.0.1.1 islay.localdomain islay
        -> {127.0.1.1: [islay.localdomain.<domain>., islay.<domain>.]}
    """

    if path is None:
        return {}

    hosts_path = check_hosts_path(path)
    logger.debug("reading hostfile: %s", hosts_path)
    try:
        text = hosts_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise HostsFileError("cannot read hosts file %s: %s" % (hosts_path, exc)) from exc
    return parse_hosts_text(text, domain, source=str(hosts_path))


class HostsWatcher:
    """Call ``on_change`` when a hosts file is written, created or replaced.

    Rapid bursts of events (editors saving via temp file + rename) are
    coalesced: at most one callback per ``min_interval`` seconds, with a
    deferred callback scheduled for events that arrive inside the window.
    """

    class _Handler(FileSystemEventHandler):
        def __init__(self, watcher: "HostsWatcher") -> None:
            super().__init__()
            self._watcher = watcher

        def on_any_event(self, event) -> None:  # type: ignore[override]
            if getattr(event, "is_directory", False):
                return
            if getattr(event, "event_type", None) not in {"modified", "created", "moved"}:
                return
            candidates = [
                getattr(event, "src_path", None),
                getattr(event, "dest_path", None),
            ]
            if any(self._watcher.matches(c) for c in candidates if c):
                self._watcher.notify()

    def __init__(
        self,
        path: str,
        on_change: Callable[[], None],
        min_interval: float = 1.0,
    ) -> None:
        self.path = pathlib.Path(os.path.expanduser(str(path))).resolve()
        self._on_change = on_change
        self._min_interval = float(min_interval)
        self._last_fired = float("-inf")
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._observer = None

    def matches(self, raw_path: object) -> bool:
        try:
            return pathlib.Path(str(raw_path)).resolve() == self.path
        except (OSError, RuntimeError):
            return False

    def notify(self) -> None:
        """Brief: Fire the callback now, or schedule it once the debounce window ends.

        Inputs:
          - None.

        Outputs:
          - None.
        """

        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_fired
            if elapsed < self._min_interval:
                if self._timer is None or not self._timer.is_alive():
                    self._timer = threading.Timer(
                        self._min_interval - elapsed, self._fire
                    )
                    self._timer.daemon = True
                    self._timer.start()
                return
            self._last_fired = now
        self._fire_callback()

    def _fire(self) -> None:
        with self._lock:
            self._last_fired = time.monotonic()
            self._timer = None
        self._fire_callback()

    def _fire_callback(self) -> None:
        logger.info("hosts file %s changed; requesting resync", self.path)
        try:
            self._on_change()
        except Exception:  # pragma: no cover - callback errors must not kill the observer
            logger.warning("hosts change callback failed", exc_info=True)

    def start(self) -> bool:
        """Brief: Start watching the hosts file's directory.

        Inputs:
          - None.

        Outputs:
          - bool: True when an observer is running.
        """

        observer = Observer()
        try:
            observer.schedule(self._Handler(self), str(self.path.parent), recursive=False)
            observer.daemon = True
            observer.start()
        except OSError as exc:
            logger.warning("failed to watch %s: %s", self.path.parent, exc)
            return False

        self._observer = observer
        logger.debug("watching %s", self.path)
        return True

    def stop(self) -> None:
        observer = self._observer
        self._observer = None
        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)
        with self._lock:
            timer = self._timer
            self._timer = None
        if timer is not None:
            timer.cancel()
