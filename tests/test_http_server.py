"""
Tests for the read-only HTTP API.

Each test binds a MetricsServer to an ephemeral port and talks to it
with httpx.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from edgebeat.metrics import CPUStats, HostStats, Snapshot, encode_snapshot
from edgebeat.server.http_server import MetricsServer, parse_address
from edgebeat.storage.snapshot_store import SnapshotStore

TS = datetime(2026, 2, 15, tzinfo=timezone.utc)


def _start_server(store):
    server = MetricsServer("127.0.0.1:0", store)
    server.serve_in_thread()
    return server


def _filled_store(errors=()):
    store = SnapshotStore()
    store.set(encode_snapshot(Snapshot(
        captured_at=TS,
        cpu=CPUStats(total_percent=12.5, per_cpu_percent=(10.0, 15.0)),
        host=HostStats(hostname="edge-01"),
        errors=tuple(errors),
    )))
    return store


@pytest.fixture
def empty_server():
    server = _start_server(SnapshotStore())
    yield server
    server.stop()


@pytest.fixture
def server():
    server = _start_server(_filled_store(errors=["sensors.SensorsTemperatures: not supported"]))
    yield server
    server.stop()


@pytest.mark.parametrize("path", ["/metrics", "/health", "/metrics/cpu", "/metrics/system"])
def test_no_data_is_503(empty_server, path):
    r = httpx.get(empty_server.url + path)
    assert r.status_code == 503
    assert r.json() == {"error": "no data available"}


def test_missing_store_behaves_like_empty():
    server = _start_server(None)
    try:
        r = httpx.get(server.url + "/metrics")
    finally:
        server.stop()
    assert r.status_code == 503


def test_ping_works_without_data(empty_server):
    r = httpx.get(empty_server.url + "/ping")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_metrics_serves_stored_bytes(server):
    r = httpx.get(server.url + "/metrics")
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/json"
    assert r.content == server.store.get_payload()[0]

    data = r.json()
    assert data["timestamp"] == "2026-02-15T00:00:00Z"
    assert data["cpu"]["total_percent"] == 12.5
    assert data["errors"] == ["sensors.SensorsTemperatures: not supported"]


def test_health_matches_metrics(server):
    assert httpx.get(server.url + "/health").content == httpx.get(server.url + "/metrics").content


def test_section_route(server):
    r = httpx.get(server.url + "/metrics/cpu")
    assert r.status_code == 200
    body = r.json()
    assert body["timestamp"] == "2026-02-15T00:00:00Z"
    assert body["data"]["per_cpu_percent"] == [10.0, 15.0]
    assert body["errors"] == ["sensors.SensorsTemperatures: not supported"]


def test_system_is_an_alias_for_host(server):
    system = httpx.get(server.url + "/metrics/system").json()
    host = httpx.get(server.url + "/metrics/host").json()
    assert system == host
    assert system["data"]["hostname"] == "edge-01"


def test_failed_section_is_still_served_as_zero(server):
    r = httpx.get(server.url + "/metrics/sensors")
    assert r.status_code == 200
    assert r.json()["data"] == {"temperatures": [], "fans": []}


def test_trailing_slash_and_query_are_ignored(server):
    assert httpx.get(server.url + "/metrics/cpu/?pretty=1").status_code == 200


@pytest.mark.parametrize("path", ["/", "/metrics/gpu", "/integrations", "/metricsx"])
def test_unknown_path_is_404(server, path):
    r = httpx.get(server.url + path)
    assert r.status_code == 404
    assert r.json() == {"error": "not found"}


@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH"])
def test_writes_are_not_allowed(server, method):
    r = httpx.request(method, server.url + "/metrics", content=b"{}")
    assert r.status_code == 405
    assert r.headers["allow"] == "GET"


def test_response_reflects_latest_cycle(server):
    server.store.set(encode_snapshot(Snapshot(captured_at=TS, cpu=CPUStats(total_percent=99.0))))
    assert json.loads(httpx.get(server.url + "/metrics").content)["cpu"]["total_percent"] == 99.0


@pytest.mark.parametrize("address, expected", [
    (":8080", ("0.0.0.0", 8080)),
    ("localhost:9000", ("localhost", 9000)),
    ("[::1]:8080", ("::1", 8080)),
])
def test_parse_address(address, expected):
    assert parse_address(address) == expected


@pytest.mark.parametrize("address", ["8080", ":http", ":70000"])
def test_parse_address_rejects(address):
    with pytest.raises(ValueError):
        parse_address(address)
