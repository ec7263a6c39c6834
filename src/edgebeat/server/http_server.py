"""
Read-only HTTP API over the snapshot store.

    GET /metrics            full latest snapshot
    GET /health             same as /metrics
    GET /metrics/<section>  one section: cpu, load, memory, disk, network,
                            host (alias: system), sensors
    GET /ping               liveness, independent of data

Until the first cycle lands every data route answers 503.
"""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional, Tuple

from edgebeat.metrics import SECTION_NAMES
from edgebeat.storage.snapshot_store import SnapshotStore

log = logging.getLogger(__name__)

DEFAULT_ADDRESS = ":8080"

# /metrics/system predates the host section name
_SECTION_ALIASES = {"system": "host"}


def parse_address(address: str) -> Tuple[str, int]:
    """':8080' -> ('0.0.0.0', 8080); 'localhost:9000' -> ('localhost', 9000)."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address must be host:port or :port, got {address!r}")
    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None
    if not 0 <= port_num <= 65535:
        raise ValueError(f"port out of range in address {address!r}")
    return host.strip("[]") or "0.0.0.0", port_num


class _MetricsHandler(BaseHTTPRequestHandler):
    server: "MetricsServer"

    def do_GET(self):
        path = self.path.split("?", 1)[0].rstrip("/") or "/"

        if path == "/ping":
            self._write_json({"status": "ok"})
        elif path in ("/metrics", "/health"):
            self._full_snapshot()
        elif path.startswith("/metrics/"):
            name = path[len("/metrics/"):]
            name = _SECTION_ALIASES.get(name, name)
            if name not in SECTION_NAMES:
                self._write_json({"error": "not found"}, 404)
            else:
                self._section(name)
        else:
            self._write_json({"error": "not found"}, 404)

    def _not_allowed(self):
        self._write_json({"error": "method not allowed"}, 405, extra_headers={"Allow": "GET"})

    do_POST = do_PUT = do_DELETE = do_PATCH = _not_allowed

    def _full_snapshot(self):
        store = self.server.store
        payload, ok = store.get_payload() if store is not None else (None, False)
        if not ok:
            self._no_data()
            return
        self._write_body(payload)

    def _section(self, name: str):
        store = self.server.store
        view, ok = store.get_section(name) if store is not None else (None, False)
        if not ok:
            self._no_data()
            return
        self._write_json(view.to_dict())

    def _no_data(self):
        self._write_json({"error": "no data available"}, 503)

    def _write_json(self, data, status: int = 200, extra_headers=None):
        self._write_body(json.dumps(data).encode(), status, extra_headers)

    def _write_body(self, body: bytes, status: int = 200, extra_headers=None):
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        for key, value in (extra_headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        log.debug("%s - %s", self.address_string(), format % args)


class MetricsServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: str = DEFAULT_ADDRESS, store: Optional[SnapshotStore] = None):
        self.store = store
        super().__init__(parse_address(address), _MetricsHandler)
        self._thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        host, port = self.server_address[:2]
        if host in ("0.0.0.0", ""):
            host = "127.0.0.1"
        return f"http://{host}:{port}"

    def serve_in_thread(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.serve_forever, name="edgebeat-http", daemon=True)
        self._thread.start()
        log.info("HTTP server listening on %s", self.url)
        return self._thread

    def stop(self):
        self.shutdown()
        self.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        log.info("HTTP server stopped")
