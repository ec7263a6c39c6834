"""
MQTT push sink on top of paho-mqtt.

paho's network thread owns the connection and reconnects on its own
(5s first retry, backing off to 60s). While it's down, publish fails fast
instead of queueing, so a dead broker costs each cycle nothing.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from edgebeat.sinks.base import PublishError, PublishSink

log = logging.getLogger(__name__)

RECONNECT_MIN_DELAY = 5
RECONNECT_MAX_DELAY = 60
KEEPALIVE_SECONDS = 60

_TLS_SCHEMES = {"ssl", "tls", "mqtts"}
_PLAIN_SCHEMES = {"tcp", "mqtt", ""}


def parse_broker(broker: str):
    """Split a broker URL like tcp://host:1883 into (host, port, use_tls)."""
    if "://" not in broker:
        broker = "tcp://" + broker
    parsed = urlparse(broker)
    scheme = parsed.scheme.lower()
    if scheme not in _TLS_SCHEMES | _PLAIN_SCHEMES:
        raise ValueError(f"unsupported broker scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise ValueError(f"broker has no host: {broker}")
    use_tls = scheme in _TLS_SCHEMES
    port = parsed.port or (8883 if use_tls else 1883)
    return parsed.hostname, port, use_tls


class MqttSink(PublishSink):

    def __init__(
        self,
        broker: str,
        topic: str,
        client_id: str = "",
        username: str = "",
        password: str = "",
        qos: int = 1,
        client: Optional[Any] = None,
    ):
        if qos not in (0, 1, 2):
            raise ValueError(f"qos must be 0, 1 or 2, got {qos}")
        if not topic:
            raise ValueError("mqtt topic is required")

        self._host, self._port, use_tls = parse_broker(broker)
        self._broker = broker
        self._topic = topic
        self._qos = qos
        self._connected = threading.Event()
        self._started = False

        if client is None:
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=client_id,
            )
            if use_tls:
                client.tls_set()
            if username:
                client.username_pw_set(username, password or None)
            client.reconnect_delay_set(min_delay=RECONNECT_MIN_DELAY, max_delay=RECONNECT_MAX_DELAY)
            client.on_connect = self._on_connect
            client.on_disconnect = self._on_disconnect
        self._client = client

    def connect(self, timeout: float = 10.0) -> bool:
        """Start the network loop and wait up to `timeout` for the first connect.

        Returns False if the broker isn't reachable yet; the loop keeps
        retrying in the background either way.
        """
        if not self._started:
            self._client.connect_async(self._host, self._port, keepalive=KEEPALIVE_SECONDS)
            self._client.loop_start()
            self._started = True
        return self._connected.wait(timeout)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if getattr(reason_code, "is_failure", False):
            log.warning("MQTT connect refused by %s: %s", self._broker, reason_code)
            return
        self._connected.set()
        log.info("MQTT connected to %s", self._broker)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected.clear()
        log.warning("MQTT connection to %s lost: %s", self._broker, reason_code)

    def publish(self, payload: bytes, timeout: float) -> None:
        if not self._client.is_connected():
            raise PublishError("mqtt client not connected")

        info = self._client.publish(self._topic, payload, qos=self._qos, retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"mqtt publish: {mqtt.error_string(info.rc)}")

        try:
            info.wait_for_publish(timeout=timeout)
        except (RuntimeError, ValueError) as e:
            raise PublishError(f"mqtt publish: {e}") from e
        if not info.is_published():
            raise PublishError(f"mqtt publish not acknowledged within {timeout:g}s")

        log.debug("MQTT published %d bytes to %s", len(payload), self._topic)

    def name(self) -> str:
        return f"MQTT ({self._broker} -> {self._topic})"

    def close(self):
        if self._started:
            self._client.disconnect()
            self._client.loop_stop()
            self._started = False
            log.info("MQTT disconnected from %s", self._broker)
