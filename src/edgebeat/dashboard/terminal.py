"""Terminal rendering of a single snapshot using Rich."""

from __future__ import annotations

from typing import Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from edgebeat import __version__
from edgebeat.metrics import Snapshot


def _color_for_percent(value: float) -> str:
    if value < 50:
        return "green"
    elif value < 80:
        return "yellow"
    return "red"


def _bytes(n: float) -> str:
    if abs(n) < 1024:
        return f"{n:.0f} B"
    for unit in ("KiB", "MiB", "GiB", "TiB"):
        n /= 1024
        if abs(n) < 1024 or unit == "TiB":
            break
    return f"{n:.1f} {unit}"


def _pct(value: float) -> str:
    color = _color_for_percent(value)
    return f"[{color}]{value:.1f}%[/{color}]"


def _build_overview(snapshot: Snapshot) -> Table:
    table = Table(show_header=False, expand=True, padding=(0, 1))
    table.add_column("metric", style="bold")
    table.add_column("value")

    cpu = snapshot.cpu
    table.add_row("CPU", f"{_pct(cpu.total_percent)} across {len(cpu.per_cpu_percent)} cores")
    if cpu.info:
        table.add_row("Model", cpu.info[0].model_name or "[dim]unknown[/dim]")
    load = snapshot.load
    table.add_row("Load", f"{load.load1:.2f} {load.load5:.2f} {load.load15:.2f}")

    vm = snapshot.memory.virtual
    table.add_row("Memory", f"{_pct(vm.used_percent)} of {_bytes(vm.total)}")
    swap = snapshot.memory.swap
    if swap.total:
        table.add_row("Swap", f"{_pct(swap.used_percent)} of {_bytes(swap.total)}")

    net = snapshot.network.totals
    table.add_row("Network", f"sent {_bytes(net.bytes_sent)}, recv {_bytes(net.bytes_recv)}")

    host = snapshot.host
    uptime_h = host.uptime_seconds / 3600
    table.add_row("Host", f"{host.hostname} ({host.platform} {host.platform_version}, {host.kernel_arch})")
    table.add_row("Uptime", f"{uptime_h:.1f} h, {host.procs} processes")
    return table


def _build_disks(snapshot: Snapshot) -> Optional[Table]:
    if not snapshot.disk.usage:
        return None
    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("Mount")
    table.add_column("Device")
    table.add_column("FS")
    table.add_column("Used", justify="right")
    table.add_column("Size", justify="right")
    for u in snapshot.disk.usage:
        table.add_row(u.mountpoint, u.device, u.fs_type, _pct(u.used_percent), _bytes(u.total))
    return table


def _build_sensors(snapshot: Snapshot) -> Optional[Table]:
    temps = snapshot.sensors.temperatures
    if not temps:
        return None
    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("Sensor")
    table.add_column("Temp", justify="right")
    table.add_column("High", justify="right")
    table.add_column("Critical", justify="right")
    for t in temps:
        color = "red" if t.critical and t.value >= t.critical else (
            "yellow" if t.high and t.value >= t.high else "green")
        table.add_row(
            t.sensor_key,
            f"[{color}]{t.value:.1f} C[/{color}]",
            f"{t.high:.0f}" if t.high else "-",
            f"{t.critical:.0f}" if t.critical else "-",
        )
    return table


def build_display(snapshot: Snapshot) -> Group:
    """Assemble every panel for one snapshot."""
    ts = snapshot.captured_at.strftime("%Y-%m-%d %H:%M:%S %Z")
    header = Text(f"edgebeat v{__version__}  |  captured {ts}", style="bold")
    parts = [header, Panel(_build_overview(snapshot), title="Host", border_style="blue")]

    disks = _build_disks(snapshot)
    if disks is not None:
        parts.append(Panel(disks, title="Disks", border_style="blue"))

    sensors = _build_sensors(snapshot)
    if sensors is not None:
        parts.append(Panel(sensors, title="Temperatures", border_style="blue"))

    if snapshot.errors:
        lines = Text("\n".join(snapshot.errors), style="yellow")
        parts.append(Panel(lines, title=f"Collection errors ({len(snapshot.errors)})", border_style="yellow"))
    return Group(*parts)


def print_snapshot(snapshot: Snapshot, console: Optional[Console] = None):
    (console or Console()).print(build_display(snapshot))
