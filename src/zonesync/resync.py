"""Background resync loop: fetch members, rebuild the zone, publish it.

Brief:
  - One cycle walks IDLE -> FETCHING -> MERGING -> PUBLISHING -> IDLE. A
    failure in any stage goes to FAILED and back to IDLE without touching
    the live snapshot.
  - Cycles run on a single daemon thread, one at a time, on a fixed interval;
    trigger() starts the next cycle early. After consecutive failures the wait
    grows exponentially up to backoff_max.
  - stop() sets a stop event that is checked after the fetch and after the
    merge, so a cycle interrupted by shutdown never publishes.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ZoneSyncError
from .hosts import parse_hosts
from .membership import MembershipSource
from .zone import ZoneBuilder, ZoneStore

logger = logging.getLogger(__name__)


class ResyncState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    PUBLISHING = "publishing"
    FAILED = "failed"


@dataclass(frozen=True)
class ResyncResult:
    """Outcome of one resync cycle, handed to observers via on_result."""

    ok: bool
    failed_in: Optional[ResyncState] = None
    error: Optional[str] = None
    records: int = 0
    dropped: int = 0
    generation: Optional[int] = None
    duration: float = 0.0
    cancelled: bool = False


class ResyncLoop:
    """Keep a ZoneStore in sync with a membership source and a hosts file."""

    def __init__(
        self,
        source: MembershipSource,
        builder: ZoneBuilder,
        store: ZoneStore,
        hosts_path: Optional[str] = None,
        interval: float = 30.0,
        backoff_initial: float = 1.0,
        backoff_max: float = 60.0,
        on_result: Optional[Callable[[ResyncResult], None]] = None,
        on_transition: Optional[Callable[[ResyncState, ResyncState], None]] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if backoff_initial <= 0 or backoff_max < backoff_initial:
            raise ValueError("backoff must satisfy 0 < backoff_initial <= backoff_max")

        self.source = source
        self.builder = builder
        self.store = store
        self.hosts_path = hosts_path
        self.interval = float(interval)
        self.backoff_initial = float(backoff_initial)
        self.backoff_max = float(backoff_max)
        self._on_result = on_result
        self._on_transition = on_transition

        self._state = ResyncState.IDLE
        self._failures = 0
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> ResyncState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def _transition(self, new_state: ResyncState) -> None:
        old_state = self._state
        self._state = new_state
        logger.debug("resync state %s -> %s", old_state.value, new_state.value)
        if self._on_transition is not None:
            self._on_transition(old_state, new_state)

    def _cancelled(self, started: float) -> ResyncResult:
        logger.info("resync cancelled by shutdown; live zone left unchanged")
        self._transition(ResyncState.IDLE)
        return ResyncResult(
            ok=False, cancelled=True, duration=time.monotonic() - started
        )

    def run_once(self) -> ResyncResult:
        """Brief: Run exactly one fetch/merge/publish cycle.

        Inputs:
          - None.

        Outputs:
          - ResyncResult describing the cycle. Failures are reported here,
            never raised.
        """

        with self._cycle_lock:
            result = self._run_cycle()
        self._report(result)
        return result

    def _run_cycle(self) -> ResyncResult:
        started = time.monotonic()

        self._transition(ResyncState.FETCHING)
        try:
            members = self.source.fetch_members()
        except Exception as exc:  # any collaborator failure is retried, never fatal
            return self._failed(ResyncState.FETCHING, exc, started)
        if self._stop_event.is_set():
            return self._cancelled(started)

        self._transition(ResyncState.MERGING)
        try:
            hosts = parse_hosts(self.hosts_path, self.builder.domain)
            built = self.builder.build(members, hosts)
        except ZoneSyncError as exc:
            return self._failed(ResyncState.MERGING, exc, started)
        if self._stop_event.is_set():
            return self._cancelled(started)

        self._transition(ResyncState.PUBLISHING)
        try:
            published = self.store.publish(built.snapshot)
        except ZoneSyncError as exc:
            return self._failed(ResyncState.PUBLISHING, exc, started)
        self._failures = 0
        self._transition(ResyncState.IDLE)

        return ResyncResult(
            ok=True,
            records=built.records,
            dropped=built.dropped + self.source.skipped,
            generation=published.generation,
            duration=time.monotonic() - started,
        )

    def _failed(self, where: ResyncState, exc: Exception, started: float) -> ResyncResult:
        self._failures += 1
        self._transition(ResyncState.FAILED)
        self._transition(ResyncState.IDLE)
        return ResyncResult(
            ok=False,
            failed_in=where,
            error=str(exc),
            duration=time.monotonic() - started,
        )

    def _report(self, result: ResyncResult) -> None:
        if result.ok:
            logger.info(
                "resync ok generation=%s records=%d dropped=%d duration=%.3fs",
                result.generation,
                result.records,
                result.dropped,
                result.duration,
            )
        elif not result.cancelled:
            # Avoid full stack traces so a flapping API does not flood logs.
            logger.warning(
                "resync failed in=%s error=%s failures=%d; keeping previous zone",
                result.failed_in.value if result.failed_in else None,
                result.error,
                self._failures,
            )
        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception:  # pragma: no cover - observers must not break the loop
                logger.warning("resync result observer failed", exc_info=True)

    def next_delay(self, result: ResyncResult) -> float:
        """Brief: Seconds to wait before the next cycle.

        Inputs:
          - result: Result of the cycle that just finished.

        Outputs:
          - float: ``interval`` after a success, otherwise
            ``backoff_initial * 2 ** (failures - 1)`` capped at ``backoff_max``.
        """

        if result.ok:
            return self.interval
        return self._backoff_delay()

    def _backoff_delay(self) -> float:
        if self._failures == 0:
            return self.interval
        delay = self.backoff_initial * (2 ** (self._failures - 1))
        return min(delay, self.backoff_max)

    def trigger(self) -> None:
        """Request an out-of-band cycle (e.g. membership or hosts file changed)."""
        self._wake_event.set()

    def start(self) -> None:
        """Start the background thread.

        The first cycle runs after ``interval``, or after the backoff delay when
        the most recent cycle failed.
        """
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        thread = threading.Thread(target=self._loop, name="ZoneResync", daemon=True)
        self._thread = thread
        thread.start()

    def _loop(self) -> None:
        # A failed cycle before start() (e.g. the startup sync) retries on the
        # backoff schedule rather than a full interval.
        delay = self._backoff_delay()
        while not self._stop_event.is_set():
            self._wake_event.wait(delay)
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            try:
                result = self.run_once()
            except Exception as exc:
                # Keep the thread alive; the live zone is untouched.
                self._failures += 1
                self._state = ResyncState.IDLE
                logger.warning(
                    "resync cycle raised unexpectedly; keeping previous zone: %s",
                    exc,
                    exc_info=True,
                )
                delay = self._backoff_delay()
                continue
            delay = self.next_delay(result)

    def stop(self, timeout: float = 5.0) -> None:
        """Brief: Stop the loop, abandon any in-flight cycle and join the thread.

        Inputs:
          - timeout: Seconds to wait for the thread.

        Outputs:
          - None.
        """

        self._stop_event.set()
        self._wake_event.set()
        try:
            self.source.close()
        except Exception:  # pragma: no cover - best effort during shutdown
            logger.debug("error closing membership source", exc_info=True)
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
            self._thread = None
