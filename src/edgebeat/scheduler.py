"""
Collection loop: collect -> encode -> store -> publish, once per interval.

The first cycle runs as soon as the loop starts. After that, ticks are
spaced on a monotonic clock; if a cycle overruns, the missed ticks are
skipped rather than run back to back.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from edgebeat.collector.aggregator import Aggregator
from edgebeat.metrics import SnapshotEncodeError, encode_snapshot
from edgebeat.sinks.base import PublishSink
from edgebeat.storage.snapshot_store import SnapshotStore

log = logging.getLogger(__name__)

DEFAULT_PUBLISH_TIMEOUT = 5.0


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Scheduler:

    def __init__(
        self,
        aggregator: Aggregator,
        interval: float,
        store: Optional[SnapshotStore] = None,
        sinks: Iterable[PublishSink] = (),
        publish_timeout: float = DEFAULT_PUBLISH_TIMEOUT,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if not interval > 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if not publish_timeout > 0:
            raise ValueError(f"publish_timeout must be positive, got {publish_timeout}")

        self._aggregator = aggregator
        self._interval = float(interval)
        self._store = store
        self._sinks = list(sinks)
        self._publish_timeout = float(publish_timeout)
        self._monotonic = monotonic

        self._state = SchedulerState.IDLE
        self._state_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.cycles = 0
        self.last_publish_errors: Dict[str, str] = {}

    @property
    def state(self) -> SchedulerState:
        return self._state

    def _set_state(self, state: SchedulerState):
        with self._state_lock:
            self._state = state
        log.debug("Scheduler state -> %s", state.value)

    def run(self, stop_event: Optional[threading.Event] = None):
        """Run the loop in the calling thread until stopped.

        `stop_event` (or stop()) ends the loop. A cycle already in progress
        finishes, bounded by the publish timeout; no new cycle starts.
        """
        if stop_event is not None:
            self._stop = stop_event

        with self._state_lock:
            if self._state is not SchedulerState.IDLE:
                raise RuntimeError(f"scheduler already {self._state.value}")
            self._state = SchedulerState.RUNNING

        log.info("Collection loop started: interval=%.1fs, sinks=%d",
                 self._interval, len(self._sinks))

        next_tick = self._monotonic()
        try:
            while not self._stop.is_set():
                try:
                    self.run_cycle()
                except Exception:  # one bad cycle must not end the loop
                    log.exception("Collection cycle failed, continuing with the next tick")

                next_tick += self._interval
                now = self._monotonic()
                if next_tick <= now:
                    skipped = int((now - next_tick) // self._interval) + 1
                    log.warning("Cycle overran the interval, skipping %d tick(s)", skipped)
                    next_tick += skipped * self._interval

                if self._stop.wait(next_tick - now):
                    break
        finally:
            self._set_state(SchedulerState.STOPPING)
            log.info("Collection loop shutting down after %d cycle(s)", self.cycles)
            self._set_state(SchedulerState.STOPPED)

    def start(self) -> threading.Thread:
        """Run the loop on a background thread."""
        if self._thread is not None:
            raise RuntimeError("scheduler already started")
        self._thread = threading.Thread(target=self.run, name="edgebeat-scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Signal the loop to exit and wait for it. Returns True once stopped."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            return not self._thread.is_alive()
        return self._state in (SchedulerState.IDLE, SchedulerState.STOPPED)

    def run_cycle(self) -> bool:
        """One collect/store/publish pass. Returns False if the cycle was dropped."""
        snapshot, errors = self._aggregator.collect()

        try:
            payload = encode_snapshot(snapshot)
        except SnapshotEncodeError as e:
            log.error("Dropping cycle, snapshot could not be encoded: %s", e)
            return False

        if self._store is not None and not self._store.set(payload):
            log.error("Dropping cycle, store rejected the snapshot for %s",
                      snapshot.captured_at.isoformat())
            return False

        self.cycles += 1
        self._publish(payload)

        s = snapshot.summary()
        headline = (f"cpu {s['cpu_pct']}%, mem {s['mem_pct']}%, load1 {s['load1']}, "
                    f"root disk {s['root_disk_pct']}%")
        if errors:
            log.warning("System info collected with %d error(s) (%s): %s",
                        len(errors), headline, "; ".join(errors))
        else:
            log.info("System info collected (%s)", headline)
        return True

    def _publish(self, payload: bytes):
        """Hand the payload to every sink. One sink failing doesn't affect the rest."""
        failures: Dict[str, str] = {}

        for sink in self._sinks:
            if self._stop.is_set():
                log.info("Shutdown requested, skipping publish to %s", sink.name())
                continue
            try:
                sink.publish(payload, timeout=self._publish_timeout)
            except Exception as e:  # sinks are independent; none may stop the loop
                failures[sink.name()] = str(e) or type(e).__name__
                log.error("Publish to %s failed: %s", sink.name(), e)

        self.last_publish_errors = failures
