"""
Host metric providers backed by psutil.

Each function reads one thing from the OS and maps psutil's named tuples
onto our section types. Fields psutil only reports on some platforms
(buffers, iowait, steal, ...) fall back to zero instead of failing.
"""

from __future__ import annotations

import platform
import socket
import time
from typing import Any, Dict, List

import psutil

from edgebeat.collector.base import FunctionProvider, MetricProvider, PartialReading, ProviderError
from edgebeat.metrics import (
    CPUInfo,
    CPUTimes,
    DiskIO,
    DiskPartition,
    DiskUsage,
    Fan,
    HostUser,
    NetInterface,
    NetIO,
    SwapMemory,
    Temperature,
    VirtualMemory,
)

_CPUINFO_PATH = "/proc/cpuinfo"
_OS_RELEASE_PATH = "/etc/os-release"


def _num(obj: Any, attr: str, default: float = 0) -> Any:
    value = getattr(obj, attr, None)
    return default if value is None else value


# -- CPU / load --

def read_load() -> Dict[str, Any]:
    load1, load5, load15 = psutil.getloadavg()
    return {"load1": load1, "load5": load5, "load15": load15}


def _model_name() -> str:
    try:
        with open(_CPUINFO_PATH) as f:
            for line in f:
                if line.lower().startswith("model name"):
                    return line.split(":", 1)[1].strip()
    except OSError:
        pass
    return platform.processor() or platform.machine()


def read_cpu_info() -> Dict[str, Any]:
    freq = psutil.cpu_freq()
    info = CPUInfo(
        model_name=_model_name(),
        cores=psutil.cpu_count(logical=False) or psutil.cpu_count() or 0,
        mhz=freq.current if freq else 0.0,
    )
    return {"info": (info,)}


def read_cpu_percent_per_cpu() -> Dict[str, Any]:
    # interval=None compares against the previous call, so the very first
    # reading after startup is 0.0 for every core.
    return {"per_cpu_percent": tuple(psutil.cpu_percent(interval=None, percpu=True))}


def read_cpu_percent_total() -> Dict[str, Any]:
    return {"total_percent": psutil.cpu_percent(interval=None)}


def _map_times(t: Any) -> CPUTimes:
    return CPUTimes(
        user=_num(t, "user"),
        system=_num(t, "system"),
        idle=_num(t, "idle"),
        nice=_num(t, "nice"),
        iowait=_num(t, "iowait"),
        irq=_num(t, "irq"),
        soft_irq=_num(t, "softirq"),
        steal=_num(t, "steal"),
        guest=_num(t, "guest"),
        guest_nice=_num(t, "guest_nice"),
    )


def read_cpu_times_total() -> Dict[str, Any]:
    return {"total_times": _map_times(psutil.cpu_times())}


def read_cpu_times_per_cpu() -> Dict[str, Any]:
    return {"per_cpu_times": tuple(_map_times(t) for t in psutil.cpu_times(percpu=True))}


# -- Memory --

def read_virtual_memory() -> Dict[str, Any]:
    vm = psutil.virtual_memory()
    return {
        "virtual": VirtualMemory(
            total=vm.total,
            available=vm.available,
            used=vm.used,
            free=vm.free,
            buffers=_num(vm, "buffers"),
            cached=_num(vm, "cached"),
            active=_num(vm, "active"),
            inactive=_num(vm, "inactive"),
            used_percent=vm.percent,
        )
    }


def read_swap_memory() -> Dict[str, Any]:
    sm = psutil.swap_memory()
    return {
        "swap": SwapMemory(total=sm.total, used=sm.used, free=sm.free, used_percent=sm.percent)
    }


# -- Disk --

def read_disk_partitions() -> Dict[str, Any]:
    parts = psutil.disk_partitions(all=False)
    return {
        "partitions": tuple(
            DiskPartition(device=p.device, mountpoint=p.mountpoint, fs_type=p.fstype)
            for p in parts
        )
    }


def read_disk_usage() -> PartialReading:
    """Usage for every mounted partition.

    A mountpoint we can't stat (stale NFS, permission) is left out of the
    list and reported as its own error; the readable ones still count.
    """
    usage: List[DiskUsage] = []
    errors: List[str] = []

    for p in psutil.disk_partitions(all=False):
        try:
            u = psutil.disk_usage(p.mountpoint)
        except OSError as e:
            errors.append(f"{p.mountpoint}: {e}")
            continue
        usage.append(DiskUsage(
            device=p.device,
            mountpoint=p.mountpoint,
            fs_type=p.fstype,
            total=u.total,
            used=u.used,
            free=u.free,
            used_percent=u.percent,
        ))

    return PartialReading({"usage": tuple(usage)}, tuple(errors))


def read_disk_io() -> Dict[str, Any]:
    counters = psutil.disk_io_counters(perdisk=True) or {}
    return {
        "io": tuple(
            DiskIO(
                device=device,
                read_bytes=s.read_bytes,
                write_bytes=s.write_bytes,
                read_count=s.read_count,
                write_count=s.write_count,
                read_time_ms=_num(s, "read_time"),
                write_time_ms=_num(s, "write_time"),
            )
            for device, s in sorted(counters.items())
        )
    }


# -- Network --

def read_net_interfaces() -> Dict[str, Any]:
    addrs = psutil.net_if_addrs()
    stats = psutil.net_if_stats()
    link_family = getattr(psutil, "AF_LINK", None)

    interfaces = []
    for name in sorted(addrs):
        hw_addr = ""
        ips = []
        for a in addrs[name]:
            if a.family == link_family:
                hw_addr = a.address
            else:
                ips.append(a.address)

        st = stats.get(name)
        flags: List[str] = []
        mtu = 0
        if st is not None:
            mtu = st.mtu
            # psutil >= 5.9.3 exposes the raw flag string
            raw_flags = getattr(st, "flags", "")
            flags = [f for f in raw_flags.split(",") if f] if raw_flags else (["up"] if st.isup else [])

        interfaces.append(NetInterface(
            name=name, mtu=mtu, hardware_addr=hw_addr, flags=tuple(flags), addrs=tuple(ips),
        ))
    return {"interfaces": tuple(interfaces)}


def read_net_io() -> Dict[str, Any]:
    c = psutil.net_io_counters(pernic=False)
    if c is None:
        raise ProviderError("no network interfaces reported")
    return {
        "totals": NetIO(
            bytes_sent=c.bytes_sent,
            bytes_recv=c.bytes_recv,
            packets_sent=c.packets_sent,
            packets_recv=c.packets_recv,
            err_in=c.errin,
            err_out=c.errout,
            drop_in=c.dropin,
            drop_out=c.dropout,
        )
    }


# -- Host --

def _os_release() -> Dict[str, str]:
    """Parse /etc/os-release into a dict. Empty off Linux."""
    out: Dict[str, str] = {}
    try:
        with open(_OS_RELEASE_PATH) as f:
            for line in f:
                key, sep, value = line.strip().partition("=")
                if sep:
                    out[key] = value.strip('"')
    except OSError:
        pass
    return out


def read_host_info() -> Dict[str, Any]:
    boot = psutil.boot_time()
    uname = platform.uname()
    release = _os_release()
    return {
        "hostname": socket.gethostname(),
        "os": uname.system.lower(),
        "platform": release.get("ID", uname.system.lower()),
        "platform_family": (release.get("ID_LIKE") or release.get("ID", "")).split(" ")[0],
        "platform_version": release.get("VERSION_ID", ""),
        "kernel_version": uname.release,
        "kernel_arch": uname.machine,
        "uptime_seconds": max(0, int(time.time() - boot)),
        "boot_time": int(boot),
        "procs": len(psutil.pids()),
    }


def read_host_users() -> Dict[str, Any]:
    return {
        "users": tuple(
            HostUser(
                user=u.name,
                terminal=u.terminal or "",
                host=u.host or "",
                started_unix=int(u.started),
            )
            for u in psutil.users()
        )
    }


# -- Sensors --

def read_temperatures() -> Dict[str, Any]:
    if not hasattr(psutil, "sensors_temperatures"):
        raise ProviderError("temperature sensors not supported on this platform")

    temps = []
    for chip, entries in sorted(psutil.sensors_temperatures().items()):
        for i, e in enumerate(entries):
            key = f"{chip}_{e.label or i}".replace(" ", "_").lower()
            temps.append(Temperature(
                sensor_key=key,
                value=e.current,
                high=e.high or 0.0,
                critical=e.critical or 0.0,
            ))
    return {"temperatures": tuple(temps)}


def read_fans() -> Dict[str, Any]:
    if not hasattr(psutil, "sensors_fans"):
        raise ProviderError("fan sensors not supported on this platform")

    fans = []
    for chip, entries in sorted(psutil.sensors_fans().items()):
        for i, e in enumerate(entries):
            key = f"{chip}_{e.label or i}".replace(" ", "_").lower()
            fans.append(Fan(sensor_key=key, value=float(e.current)))
    return {"fans": tuple(fans)}


_HOST_INFO_FIELDS = (
    "hostname", "os", "platform", "platform_family", "platform_version",
    "kernel_version", "kernel_arch", "uptime_seconds", "boot_time", "procs",
)

# Fixed collection order. Names double as the prefixes in Snapshot.errors.
_PROVIDERS = [
    ("load.Avg", "load", read_load, ("load1", "load5", "load15")),
    ("cpu.Info", "cpu", read_cpu_info, ("info",)),
    ("cpu.Percent per-cpu", "cpu", read_cpu_percent_per_cpu, ("per_cpu_percent",)),
    ("cpu.Percent total", "cpu", read_cpu_percent_total, ("total_percent",)),
    ("cpu.Times total", "cpu", read_cpu_times_total, ("total_times",)),
    ("cpu.Times per-cpu", "cpu", read_cpu_times_per_cpu, ("per_cpu_times",)),
    ("mem.VirtualMemory", "memory", read_virtual_memory, ("virtual",)),
    ("mem.SwapMemory", "memory", read_swap_memory, ("swap",)),
    ("disk.Partitions", "disk", read_disk_partitions, ("partitions",)),
    ("disk.Usage", "disk", read_disk_usage, ("usage",)),
    ("disk.IOCounters", "disk", read_disk_io, ("io",)),
    ("net.Interfaces", "network", read_net_interfaces, ("interfaces",)),
    ("net.IOCounters", "network", read_net_io, ("totals",)),
    ("host.Info", "host", read_host_info, _HOST_INFO_FIELDS),
    ("host.Users", "host", read_host_users, ("users",)),
    ("sensors.SensorsTemperatures", "sensors", read_temperatures, ("temperatures",)),
    ("sensors.Fans", "sensors", read_fans, ("fans",)),
]


def default_providers() -> List[MetricProvider]:
    """The full psutil-backed provider set, in collection order."""
    return [
        FunctionProvider(name, section, func, provides)
        for name, section, func, provides in _PROVIDERS
    ]
