"""
Agent configuration: a YAML file on top of built-in defaults.

    frequency_seconds: 60
    rest:
      address: ":8080"
    mqtt:
      enabled: true
      broker: tcp://localhost:1883
      topic: edgebeat/host1
    webhook:
      enabled: false
      url: https://collector.example/ingest
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

log = logging.getLogger(__name__)

DEFAULT_FREQUENCY_SECONDS = 60
MIN_FREQUENCY_SECONDS = 1
MAX_FREQUENCY_SECONDS = 180
DEFAULT_REST_ADDRESS = ":8080"
DEFAULT_MQTT_QOS = 1
DEFAULT_PUBLISH_TIMEOUT_SECONDS = 5.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0


class ConfigError(ValueError):
    """Config file missing, unparsable, or out of range."""


@dataclass
class RestConfig:
    address: str = DEFAULT_REST_ADDRESS


@dataclass
class MQTTConfig:
    enabled: bool = False
    broker: str = ""
    client_id: str = ""
    topic: str = ""
    username: str = ""
    password: str = ""
    qos: int = DEFAULT_MQTT_QOS
    connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""


@dataclass
class Config:
    frequency_seconds: int = DEFAULT_FREQUENCY_SECONDS
    publish_timeout_seconds: float = DEFAULT_PUBLISH_TIMEOUT_SECONDS
    provider_timeout_seconds: Optional[float] = None
    rest: RestConfig = field(default_factory=RestConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)

    def validate(self) -> "Config":
        if not MIN_FREQUENCY_SECONDS <= self.frequency_seconds <= MAX_FREQUENCY_SECONDS:
            raise ConfigError(
                f"frequency_seconds out of range: {self.frequency_seconds} "
                f"(allowed {MIN_FREQUENCY_SECONDS}-{MAX_FREQUENCY_SECONDS})"
            )
        if self.publish_timeout_seconds <= 0:
            raise ConfigError("publish_timeout_seconds must be positive")
        if self.provider_timeout_seconds is not None and self.provider_timeout_seconds <= 0:
            raise ConfigError("provider_timeout_seconds must be positive")
        if not self.rest.address:
            self.rest.address = DEFAULT_REST_ADDRESS

        if self.mqtt.enabled:
            if not self.mqtt.broker:
                raise ConfigError("mqtt.broker is required when mqtt is enabled")
            if not self.mqtt.topic:
                raise ConfigError("mqtt.topic is required when mqtt is enabled")
            if self.mqtt.qos not in (0, 1, 2):
                raise ConfigError(f"mqtt.qos must be 0, 1 or 2, got {self.mqtt.qos}")
        if self.webhook.enabled and not self.webhook.url:
            raise ConfigError("webhook.url is required when the webhook is enabled")
        return self


def load(path: Optional[Union[str, Path]] = None) -> Config:
    """Read and validate a config file. No path means pure defaults."""
    if path is None:
        return Config().validate()

    try:
        text = Path(path).read_text()
    except OSError as e:
        raise ConfigError(f"read config {path}: {e}") from e

    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"parse config {path}: {e}") from e

    if not isinstance(raw, Mapping):
        raise ConfigError(f"parse config {path}: top level must be a mapping")

    cfg = _merge(Config(), raw, "")
    log.debug("Loaded config from %s", path)
    return cfg.validate()


def _merge(target: Any, raw: Mapping[str, Any], prefix: str) -> Any:
    """Overlay YAML values onto a dataclass of defaults, checking types."""
    known = {f.name: f for f in fields(target)}
    for key, value in raw.items():
        if key not in known:
            log.warning("Ignoring unknown config key %s%s", prefix, key)
            continue
        current = getattr(target, key)
        name = f"{prefix}{key}"

        if is_dataclass(current):
            if value is None:
                continue
            if not isinstance(value, Mapping):
                raise ConfigError(f"{name} must be a mapping")
            _merge(current, value, name + ".")
        else:
            setattr(target, key, _check_type(name, current, known[key].default, value))
    return target


def _check_type(name: str, current: Any, default: Any, value: Any) -> Any:
    if value is None:
        return default
    expected = type(current) if current is not None else float
    if expected is bool:
        if not isinstance(value, bool):
            raise ConfigError(f"{name} must be true or false")
        return value
    if expected in (int, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{name} must be a number")
        if expected is int and not float(value).is_integer():
            raise ConfigError(f"{name} must be a whole number")
        return expected(value)
    if expected is str:
        if not isinstance(value, (str, int)):
            raise ConfigError(f"{name} must be a string")
        return str(value)
    return value
