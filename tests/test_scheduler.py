"""Tests for the collection loop: timing, storing, publishing, shutdown."""

import threading
import time
from datetime import datetime, timezone

import pytest

from edgebeat.collector.aggregator import Aggregator
from edgebeat.collector.base import FunctionProvider, ProviderError
from edgebeat.metrics import SECTION_NAMES, CPUStats, LoadStats, Snapshot
from edgebeat.scheduler import Scheduler, SchedulerState
from edgebeat.sinks.base import PublishError, PublishSink
from edgebeat.storage.snapshot_store import SnapshotStore

TS = datetime(2026, 2, 15, tzinfo=timezone.utc)


class RecordingSink(PublishSink):

    def __init__(self, label="recording", fail_with=None, on_publish=None):
        self._label = label
        self._fail_with = fail_with
        self._on_publish = on_publish
        self.payloads = []
        self.timeouts = []

    def publish(self, payload, timeout):
        self.timeouts.append(timeout)
        if self._on_publish:
            self._on_publish()
        if self._fail_with:
            raise self._fail_with
        self.payloads.append(payload)

    def name(self):
        return self._label


class CannedAggregator:
    """Hands out a fixed snapshot, or raises, without touching any provider."""

    def __init__(self, snapshot=None, fail_first=0):
        self._snapshot = snapshot or Snapshot(captured_at=TS)
        self._fail_first = fail_first
        self.calls = 0

    def collect(self):
        self.calls += 1
        if self.calls <= self._fail_first:
            raise RuntimeError("collector bug")
        return self._snapshot, list(self._snapshot.errors)


class RejectingStore(SnapshotStore):

    def set(self, payload):
        return False


def _counting_aggregator(calls, value=1.0):
    def read():
        calls.append(time.monotonic())
        return {"load1": value}
    return Aggregator([FunctionProvider("load.Avg", "load", read)])


def test_rejects_non_positive_interval():
    agg = Aggregator([])
    for bad in (0, -1, 0.0):
        with pytest.raises(ValueError):
            Scheduler(agg, interval=bad)


def test_rejects_non_positive_publish_timeout():
    with pytest.raises(ValueError):
        Scheduler(Aggregator([]), interval=1, publish_timeout=0)


def test_cycle_stores_and_publishes():
    store = SnapshotStore()
    sink = RecordingSink()
    sched = Scheduler(_counting_aggregator([], 0.9), interval=60, store=store, sinks=[sink],
                      publish_timeout=2.5)

    assert sched.run_cycle() is True
    snap, ok = store.get()
    assert ok
    assert snap.load.load1 == 0.9
    assert sink.payloads == [store.get_payload()[0]]
    assert sink.timeouts == [2.5]
    assert sched.cycles == 1


def test_cycle_without_store_or_sinks():
    sched = Scheduler(_counting_aggregator([]), interval=60)
    assert sched.run_cycle() is True


def test_fully_failed_cycle_is_still_stored_and_published():
    def fail():
        raise ProviderError("down")

    agg = Aggregator([FunctionProvider(f"{n}.read", n, fail) for n in SECTION_NAMES])
    store = SnapshotStore()
    sink = RecordingSink()
    Scheduler(agg, interval=60, store=store, sinks=[sink]).run_cycle()

    snap, ok = store.get()
    assert ok
    assert len(snap.errors) == 7
    assert len(sink.payloads) == 1


def test_publish_failure_does_not_touch_store_or_other_sinks():
    store = SnapshotStore()
    broken = RecordingSink("broken", fail_with=PublishError("broker unreachable"))
    crashing = RecordingSink("crashing", fail_with=RuntimeError("bug"))
    healthy = RecordingSink("healthy")
    sched = Scheduler(_counting_aggregator([], 3.0), interval=60, store=store,
                      sinks=[broken, crashing, healthy])

    assert sched.run_cycle() is True
    assert store.get()[0].load.load1 == 3.0
    assert len(healthy.payloads) == 1
    assert sched.last_publish_errors == {"broken": "broker unreachable", "crashing": "bug"}

    # next tick proceeds normally
    assert sched.run_cycle() is True
    assert len(healthy.payloads) == 2
    assert sched.cycles == 2


def test_publish_failure_is_logged(caplog):
    sink = RecordingSink("mqtt", fail_with=PublishError("not connected"))
    with caplog.at_level("ERROR", logger="edgebeat.scheduler"):
        Scheduler(_counting_aggregator([]), interval=60, sinks=[sink]).run_cycle()
    assert "Publish to mqtt failed: not connected" in caplog.text


def test_unencodable_snapshot_drops_the_cycle(caplog):
    store = SnapshotStore()
    Scheduler(_counting_aggregator([], 1.0), interval=60, store=store).run_cycle()
    before = store.get_payload()

    sink = RecordingSink()
    bad = CannedAggregator(Snapshot(captured_at=TS, load=LoadStats(load1=float("inf"))))
    sched = Scheduler(bad, interval=60, store=store, sinks=[sink])
    with caplog.at_level("ERROR", logger="edgebeat.scheduler"):
        assert sched.run_cycle() is False

    assert store.get_payload() == before
    assert sink.payloads == []
    assert sched.cycles == 0
    assert "could not be encoded" in caplog.text


def test_first_cycle_runs_immediately_then_on_interval():
    calls = []
    sched = Scheduler(_counting_aggregator(calls), interval=0.1)
    started = time.monotonic()
    t = sched.start()
    time.sleep(0.35)
    assert sched.stop(timeout=2)
    t.join(2)

    assert calls, "no cycle ran"
    assert calls[0] - started < 0.1
    assert 3 <= len(calls) <= 5
    gaps = [b - a for a, b in zip(calls, calls[1:])]
    for gap in gaps:
        assert 0.05 < gap < 0.25


def test_state_transitions():
    sched = Scheduler(_counting_aggregator([]), interval=60)
    assert sched.state is SchedulerState.IDLE

    sched.start()
    deadline = time.monotonic() + 2
    while sched.cycles == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert sched.state is SchedulerState.RUNNING

    assert sched.stop(timeout=2)
    assert sched.state is SchedulerState.STOPPED


def test_cannot_run_twice():
    sched = Scheduler(_counting_aggregator([]), interval=60)
    stop = threading.Event()
    stop.set()
    sched.run(stop)
    with pytest.raises(RuntimeError):
        sched.run(stop)


def test_stop_during_wait_exits_without_new_cycle():
    calls = []
    sched = Scheduler(_counting_aggregator(calls), interval=30)
    stop = threading.Event()
    t = threading.Thread(target=sched.run, args=(stop,))
    t.start()

    deadline = time.monotonic() + 2
    while not calls and time.monotonic() < deadline:
        time.sleep(0.01)
    stop.set()
    t.join(2)

    assert not t.is_alive()
    assert len(calls) == 1


def test_stop_before_first_cycle_runs_nothing():
    calls = []
    sched = Scheduler(_counting_aggregator(calls), interval=1)
    stop = threading.Event()
    stop.set()
    sched.run(stop)
    assert calls == []
    assert sched.state is SchedulerState.STOPPED


def test_stop_during_publish_keeps_the_stored_cycle():
    store = SnapshotStore()
    stop = threading.Event()
    interrupted = RecordingSink("slow", fail_with=PublishError("cancelled"), on_publish=stop.set)
    skipped = RecordingSink("after")
    sched = Scheduler(_counting_aggregator([], 4.0), interval=30, store=store,
                      sinks=[interrupted, skipped])

    sched.run(stop)

    assert store.get()[0].load.load1 == 4.0
    assert skipped.timeouts == []
    assert sched.cycles == 1
    assert sched.state is SchedulerState.STOPPED


def test_overrun_skips_missed_ticks():
    now = [0.0]
    calls = []

    def slow_read():
        calls.append(now[0])
        now[0] += 2.5  # each cycle takes 2.5 intervals
        return {"load1": 1.0}

    stop = threading.Event()
    agg = Aggregator([FunctionProvider("load.Avg", "load", slow_read)])
    sched = Scheduler(agg, interval=1.0, monotonic=lambda: now[0])

    original_wait = stop.wait

    def wait(timeout):
        now[0] += timeout
        if len(calls) >= 3:
            stop.set()
        return original_wait(0)

    stop.wait = wait
    sched.run(stop)

    # ticks land on whole intervals: 0, 3, 6
    assert calls == [0.0, 3.0, 6.0]


def test_rejected_store_write_drops_the_cycle(caplog):
    sink = RecordingSink()
    sched = Scheduler(_counting_aggregator([]), interval=60, store=RejectingStore(), sinks=[sink])

    with caplog.at_level("ERROR", logger="edgebeat.scheduler"):
        assert sched.run_cycle() is False

    assert sink.payloads == []
    assert sink.timeouts == []
    assert sched.cycles == 0
    assert "store rejected the snapshot" in caplog.text


def test_badly_typed_provider_does_not_cost_the_cycle():
    store = SnapshotStore()
    sink = RecordingSink()
    agg = Aggregator([
        FunctionProvider("load.Avg", "load", lambda: {"load1": "high"}),
        FunctionProvider("host.Info", "host", lambda: {"hostname": "edge-01"}),
    ])
    sched = Scheduler(agg, interval=60, store=store, sinks=[sink])

    assert sched.run_cycle() is True
    snap, ok = store.get()
    assert ok
    assert snap.host.hostname == "edge-01"
    assert snap.errors == ("load.Avg: load.load1: expected a number, got str",)
    assert sink.payloads == [store.get_payload()[0]]


def test_failing_cycle_does_not_end_the_loop(caplog):
    store = SnapshotStore()
    agg = CannedAggregator(Snapshot(captured_at=TS, cpu=CPUStats(total_percent=5.0)), fail_first=1)
    sched = Scheduler(agg, interval=0.05, store=store)

    with caplog.at_level("ERROR", logger="edgebeat.scheduler"):
        sched.start()
        deadline = time.monotonic() + 2
        while sched.cycles < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert sched.state is SchedulerState.RUNNING
        assert sched.stop(timeout=2)

    assert agg.calls >= 3
    assert sched.cycles >= 2
    assert store.get()[0].cpu.total_percent == 5.0
    assert "Collection cycle failed" in caplog.text


def test_collected_log_line_carries_headline_numbers(caplog):
    agg = CannedAggregator(Snapshot(captured_at=TS, cpu=CPUStats(total_percent=37.25),
                                    load=LoadStats(load1=0.5)))
    with caplog.at_level("INFO", logger="edgebeat.scheduler"):
        Scheduler(agg, interval=60).run_cycle()
    assert "System info collected (cpu 37.2%, mem 0.0%, load1 0.5, root disk 0.0%)" in caplog.text
