"""
Core metric definitions for edgebeat.

One Snapshot is one full sampling pass over the host. Every section is
always present: a section whose provider failed keeps its zero value and
the failure shows up in `errors` instead.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Tuple, Union, get_type_hints


SECTION_NAMES = ("cpu", "load", "memory", "disk", "network", "host", "sensors")


class SnapshotDecodeError(ValueError):
    """Payload is not a valid serialized Snapshot."""


class SnapshotEncodeError(ValueError):
    """Snapshot holds a value that can't be written as strict JSON."""


# -- CPU --

@dataclass(frozen=True)
class CPUInfo:
    model_name: str = ""
    cores: int = 0
    mhz: float = 0.0
    cache_size: int = 0


@dataclass(frozen=True)
class CPUTimes:
    user: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    nice: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    soft_irq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


@dataclass(frozen=True)
class CPUStats:
    info: Tuple[CPUInfo, ...] = ()
    total_times: CPUTimes = field(default_factory=CPUTimes)
    per_cpu_times: Tuple[CPUTimes, ...] = ()
    total_percent: float = 0.0
    per_cpu_percent: Tuple[float, ...] = ()


@dataclass(frozen=True)
class LoadStats:
    load1: float = 0.0
    load5: float = 0.0
    load15: float = 0.0


# -- Memory --

@dataclass(frozen=True)
class VirtualMemory:
    total: int = 0
    available: int = 0
    used: int = 0
    free: int = 0
    buffers: int = 0
    cached: int = 0
    active: int = 0
    inactive: int = 0
    used_percent: float = 0.0


@dataclass(frozen=True)
class SwapMemory:
    total: int = 0
    used: int = 0
    free: int = 0
    used_percent: float = 0.0


@dataclass(frozen=True)
class MemoryStats:
    virtual: VirtualMemory = field(default_factory=VirtualMemory)
    swap: SwapMemory = field(default_factory=SwapMemory)


# -- Disk --

@dataclass(frozen=True)
class DiskPartition:
    device: str = ""
    mountpoint: str = ""
    fs_type: str = ""


@dataclass(frozen=True)
class DiskUsage:
    device: str = ""
    mountpoint: str = ""
    fs_type: str = ""
    total: int = 0
    used: int = 0
    free: int = 0
    used_percent: float = 0.0


@dataclass(frozen=True)
class DiskIO:
    device: str = ""
    read_bytes: int = 0
    write_bytes: int = 0
    read_count: int = 0
    write_count: int = 0
    read_time_ms: int = 0
    write_time_ms: int = 0


@dataclass(frozen=True)
class DiskStats:
    partitions: Tuple[DiskPartition, ...] = ()
    usage: Tuple[DiskUsage, ...] = ()
    io: Tuple[DiskIO, ...] = ()


# -- Network --

@dataclass(frozen=True)
class NetInterface:
    name: str = ""
    mtu: int = 0
    hardware_addr: str = ""
    flags: Tuple[str, ...] = ()
    addrs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NetIO:
    bytes_sent: int = 0
    bytes_recv: int = 0
    packets_sent: int = 0
    packets_recv: int = 0
    err_in: int = 0
    err_out: int = 0
    drop_in: int = 0
    drop_out: int = 0


@dataclass(frozen=True)
class NetworkStats:
    interfaces: Tuple[NetInterface, ...] = ()
    totals: NetIO = field(default_factory=NetIO)


# -- Host --

@dataclass(frozen=True)
class HostUser:
    user: str = ""
    terminal: str = ""
    host: str = ""
    started_unix: int = 0


@dataclass(frozen=True)
class HostStats:
    hostname: str = ""
    os: str = ""
    platform: str = ""
    platform_family: str = ""
    platform_version: str = ""
    kernel_version: str = ""
    kernel_arch: str = ""
    uptime_seconds: int = 0
    boot_time: int = 0
    procs: int = 0
    virtualization_system: str = ""
    virtualization_role: str = ""
    users: Tuple[HostUser, ...] = ()


# -- Sensors --

@dataclass(frozen=True)
class Temperature:
    sensor_key: str = ""
    value: float = 0.0
    high: float = 0.0
    critical: float = 0.0


@dataclass(frozen=True)
class Fan:
    sensor_key: str = ""
    value: float = 0.0


@dataclass(frozen=True)
class SensorsStats:
    temperatures: Tuple[Temperature, ...] = ()
    fans: Tuple[Fan, ...] = ()


Section = Union[CPUStats, LoadStats, MemoryStats, DiskStats, NetworkStats, HostStats, SensorsStats]

SECTION_TYPES: Dict[str, type] = {
    "cpu": CPUStats,
    "load": LoadStats,
    "memory": MemoryStats,
    "disk": DiskStats,
    "network": NetworkStats,
    "host": HostStats,
    "sensors": SensorsStats,
}


@dataclass(frozen=True)
class Snapshot:
    """A single point-in-time reading of the whole host."""

    captured_at: datetime
    cpu: CPUStats = field(default_factory=CPUStats)
    load: LoadStats = field(default_factory=LoadStats)
    memory: MemoryStats = field(default_factory=MemoryStats)
    disk: DiskStats = field(default_factory=DiskStats)
    network: NetworkStats = field(default_factory=NetworkStats)
    host: HostStats = field(default_factory=HostStats)
    sensors: SensorsStats = field(default_factory=SensorsStats)
    errors: Tuple[str, ...] = ()

    def section(self, name: str) -> Section:
        if name not in SECTION_TYPES:
            raise KeyError(f"unknown section: {name}")
        return getattr(self, name)

    def to_dict(self) -> dict:
        out: Dict[str, Any] = {"timestamp": _format_time(self.captured_at)}
        for name in SECTION_NAMES:
            out[name] = asdict(getattr(self, name))
        out["errors"] = list(self.errors)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        if not isinstance(data, Mapping):
            raise SnapshotDecodeError("snapshot must be a JSON object")

        raw_ts = data.get("timestamp")
        if not isinstance(raw_ts, str):
            raise SnapshotDecodeError("snapshot is missing its timestamp")
        try:
            captured_at = _parse_time(raw_ts)
        except ValueError as e:
            raise SnapshotDecodeError(f"bad timestamp {raw_ts!r}: {e}") from e

        sections = {}
        for name, section_type in SECTION_TYPES.items():
            raw = data.get(name)
            if raw is None:
                continue
            try:
                sections[name] = _build(section_type, raw)
            except (TypeError, ValueError) as e:
                raise SnapshotDecodeError(f"section {name}: {e}") from e

        errors = data.get("errors") or []
        if not isinstance(errors, list) or not all(isinstance(e, str) for e in errors):
            raise SnapshotDecodeError("errors must be a list of strings")

        return cls(captured_at=captured_at, errors=tuple(errors), **sections)

    def summary(self) -> dict:
        """Headline numbers as a flat dict, used for the per-cycle log line."""
        root = next((u for u in self.disk.usage if u.mountpoint == "/"), None)
        hottest = max((t.value for t in self.sensors.temperatures), default=0.0)
        return {
            "timestamp": _format_time(self.captured_at),
            "hostname": self.host.hostname,
            "cpu_pct": round(self.cpu.total_percent, 1),
            "cores": len(self.cpu.per_cpu_percent),
            "load1": round(self.load.load1, 2),
            "mem_pct": round(self.memory.virtual.used_percent, 1),
            "swap_pct": round(self.memory.swap.used_percent, 1),
            "root_disk_pct": round(root.used_percent, 1) if root else 0.0,
            "net_sent_bytes": self.network.totals.bytes_sent,
            "net_recv_bytes": self.network.totals.bytes_recv,
            "max_temp_c": round(hottest, 1),
            "uptime_seconds": self.host.uptime_seconds,
            "error_count": len(self.errors),
        }


@dataclass(frozen=True)
class SectionView:
    """One section of a stored snapshot, as served to per-domain readers."""

    name: str
    captured_at: datetime
    data: Section
    errors: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "timestamp": _format_time(self.captured_at),
            "data": asdict(self.data),
            "errors": list(self.errors),
        }


def encode_snapshot(snapshot: Snapshot) -> bytes:
    try:
        return json.dumps(snapshot.to_dict(), allow_nan=False, separators=(",", ":")).encode()
    except (TypeError, ValueError) as e:
        raise SnapshotEncodeError(f"encode snapshot: {e}") from e


def decode_snapshot(payload: bytes) -> Snapshot:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise SnapshotDecodeError(f"invalid JSON: {e}") from e
    return Snapshot.from_dict(data)


def build_section(name: str, values: Mapping[str, Any]) -> Section:
    """Build a section from already-typed field values.

    Lists are frozen into tuples; nothing else is converted.
    """
    frozen = {k: tuple(v) if isinstance(v, list) else v for k, v in values.items()}
    return SECTION_TYPES[name](**frozen)


def section_fields(name: str) -> frozenset:
    return frozenset(f.name for f in fields(SECTION_TYPES[name]))


def coerce_fields(name: str, values: Mapping[str, Any]) -> Dict[str, Any]:
    """Type-check one provider's field values for section `name`.

    Applies the same rules decode_snapshot does, so anything that passes
    here survives a round trip through the store. Raises TypeError or
    ValueError naming the offending field.
    """
    hints = _hints(SECTION_TYPES[name])
    out = {}
    for key, value in values.items():
        try:
            out[key] = _coerce(hints[key], _plain(value))
        except (TypeError, ValueError) as e:
            raise type(e)(f"{name}.{key}: {e}") from e
    return out


def _format_time(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_time(value: str) -> datetime:
    # fromisoformat only learned the Z suffix in 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


_HINTS: Dict[type, Dict[str, Any]] = {}


def _hints(cls: type) -> Dict[str, Any]:
    hints = _HINTS.get(cls)
    if hints is None:
        hints = _HINTS[cls] = get_type_hints(cls)
    return hints


def _build(cls: type, raw: Any):
    """Recursively rebuild a frozen dataclass from its JSON form."""
    if not isinstance(raw, Mapping):
        raise TypeError(f"{cls.__name__} expects an object, got {type(raw).__name__}")
    hints = _hints(cls)
    kwargs = {}
    for f in fields(cls):
        if f.name in raw:
            kwargs[f.name] = _coerce(hints[f.name], raw[f.name])
    return cls(**kwargs)


def _coerce(hint: Any, value: Any):
    if is_dataclass(hint):
        return _build(hint, value)

    args = getattr(hint, "__args__", None)
    if getattr(hint, "__origin__", None) is tuple and args:
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            raise TypeError(f"expected a list, got {type(value).__name__}")
        return tuple(_coerce(args[0], item) for item in value)

    if hint is str:
        if not isinstance(value, str):
            raise TypeError(f"expected a string, got {type(value).__name__}")
        return value
    if hint is int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"expected an integer, got {type(value).__name__}")
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("non-finite number")
        return int(value)
    if hint is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"expected a number, got {type(value).__name__}")
        if not math.isfinite(value):
            raise ValueError("non-finite number")
        return float(value)
    return value


def _plain(value: Any):
    """Typed provider output -> the JSON-shaped form _coerce checks."""
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value
