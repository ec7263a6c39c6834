"""
In-memory holder for the most recent snapshot. No history: each accepted
write replaces the previous one, and everything is gone on restart.

One writer (the scheduler), any number of readers (HTTP handlers). The
stored payload and its decoded Snapshot are swapped together, so a reader
always gets both from the same cycle.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from edgebeat.metrics import (
    SECTION_TYPES,
    SectionView,
    Snapshot,
    SnapshotDecodeError,
    decode_snapshot,
)

log = logging.getLogger(__name__)


class RWLock:
    """Reader/writer lock that favours writers.

    New readers queue behind a waiting writer, so a steady stream of reads
    can't hold off a write forever.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SnapshotStore:

    def __init__(self):
        self._lock = RWLock()
        self._payload: Optional[bytes] = None
        self._snapshot: Optional[Snapshot] = None

    def set(self, payload: bytes) -> bool:
        """Replace the cached snapshot with `payload`.

        Payloads that don't decode to a valid Snapshot are dropped and the
        previous value stays in place. Returns whether the write was applied.
        """
        if not isinstance(payload, (bytes, bytearray)):
            log.debug("Rejected store write: expected bytes, got %s", type(payload).__name__)
            return False

        data = bytes(payload)
        try:
            snapshot = decode_snapshot(data)
        except SnapshotDecodeError as e:
            log.debug("Rejected store write: %s", e)
            return False

        with self._lock.write():
            self._payload = data
            self._snapshot = snapshot
        return True

    def get(self) -> Tuple[Optional[Snapshot], bool]:
        with self._lock.read():
            snapshot = self._snapshot
        return snapshot, snapshot is not None

    def get_payload(self) -> Tuple[Optional[bytes], bool]:
        """The latest snapshot exactly as it was serialized."""
        with self._lock.read():
            payload = self._payload
        return payload, payload is not None

    def get_section(self, name: str) -> Tuple[Optional[SectionView], bool]:
        """One section of the latest snapshot.

        Availability tracks whether any cycle has been stored, not whether
        this section's providers succeeded. A failed section comes back
        zero-valued with the cycle's errors attached.
        """
        if name not in SECTION_TYPES:
            raise KeyError(f"unknown section: {name}")

        snapshot, ok = self.get()
        if not ok:
            return None, False
        view = SectionView(
            name=name,
            captured_at=snapshot.captured_at,
            data=snapshot.section(name),
            errors=snapshot.errors,
        )
        return view, True

    @property
    def has_data(self) -> bool:
        return self.get()[1]
