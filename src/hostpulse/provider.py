"""Raw host metric provider backed by psutil."""

import platform
import socket
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import psutil

# Sensor groups that carry the CPU package temperature, in preference order.
CPU_SENSORS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "cpu-thermal", "acpitz")

# Shortest window a CPU, process or network rate is measured over.
MIN_SAMPLE_WINDOW = 0.5


@dataclass(slots=True, frozen=True)
class FsEntry:
    """Size and usage of one mounted filesystem, in bytes."""

    mount: str
    size: int
    used: int


@dataclass(slots=True, frozen=True)
class NetEntry:
    """Byte rates of one network interface since the previous query."""

    iface: str
    rx_sec: float
    tx_sec: float


@dataclass(slots=True, frozen=True)
class ProcEntry:
    """Raw per-process CPU and memory usage."""

    pid: int
    name: str
    cpu: float
    mem: float


@dataclass(slots=True, frozen=True)
class MemoryStats:
    total: int
    active: int


@dataclass(slots=True, frozen=True)
class HostFacts:
    hostname: str
    platform: str
    arch: str
    cpu_model: str
    cpu_cores: int
    total_memory: int  # Bytes


class MetricProvider(Protocol):
    """
    Point-in-time host readings.

    Every method is blocking and may raise; callers are expected to run them
    off the event loop and to recover from failures per method.
    """

    def cpu_load(self) -> float: ...

    def memory(self) -> MemoryStats: ...

    def main_temperature(self) -> float | None: ...

    def filesystems(self) -> list[FsEntry]: ...

    def network_stats(self) -> list[NetEntry]: ...

    def processes(self) -> list[ProcEntry]: ...

    def uptime(self) -> float: ...

    def host_facts(self) -> HostFacts: ...


class PsutilProvider:
    """
    MetricProvider implementation using psutil.

    CPU load, per-process CPU and network rates are measured against the
    previous sample, so the very first reading of each is zero. Those samples
    are shared: a caller arriving within `min_window` seconds of the last
    sample gets that sample again instead of measuring a near-empty window.
    Handles AccessDenied and ZombieProcess errors gracefully when walking the
    process table.
    """

    def __init__(self, min_window: float = MIN_SAMPLE_WINDOW, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize the provider and prime the rate counters.

        Args:
            min_window: Shortest measurement window, in seconds, of a rate sample.
            clock: Monotonic time source.
        """
        self._min_window = min_window
        self._clock = clock
        self._samples: dict[str, tuple[float, Any]] = {}
        self._locks = {name: threading.Lock() for name in ("cpu", "net", "procs")}
        self._net_last: dict[str, tuple[int, int]] = {}
        self._net_time: float = 0.0
        # Initialize CPU percent (first call returns 0.0)
        psutil.cpu_percent(interval=None)

    def _sampled(self, name: str, read: Callable[[], Any]) -> Any:
        """Return the cached `name` sample, taking a new one once it is stale."""
        with self._locks[name]:
            now = self._clock()
            cached = self._samples.get(name)
            if cached is not None and now - cached[0] < self._min_window:
                return cached[1]
            value = read()
            self._samples[name] = (now, value)
            return value

    def cpu_load(self) -> float:
        return self._sampled("cpu", lambda: psutil.cpu_percent(interval=None))

    def memory(self) -> MemoryStats:
        mem = psutil.virtual_memory()
        # "active" is not reported on Windows
        active = getattr(mem, "active", mem.total - mem.available)
        return MemoryStats(total=mem.total, active=active)

    def main_temperature(self) -> float | None:
        """Return the CPU package temperature in °C, or None without sensors."""
        if not hasattr(psutil, "sensors_temperatures"):
            return None
        temps = psutil.sensors_temperatures(fahrenheit=False)
        if not temps:
            return None
        for group in CPU_SENSORS:
            entries = temps.get(group)
            if not entries:
                continue
            for entry in entries:
                if entry.label.startswith(("Package", "Tctl", "Tdie")):
                    return float(entry.current)
            return float(entries[0].current)
        return None

    def filesystems(self) -> list[FsEntry]:
        entries: list[FsEntry] = []
        for part in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError:
                # Unreadable mounts (e.g. empty CD drives) are not reported
                continue
            entries.append(FsEntry(mount=part.mountpoint, size=usage.total, used=usage.used))
        return entries

    def network_stats(self) -> list[NetEntry]:
        """
        Return per-interface byte rates.

        Interfaces that are up and not loopback are reported first, so the
        first entry is the one carrying the host's traffic.
        """
        return list(self._sampled("net", self._read_network))

    def _read_network(self) -> list[NetEntry]:
        counters = psutil.net_io_counters(pernic=True)
        try:
            stats = psutil.net_if_stats()
        except OSError:
            # ioctl is not supported in some containers
            stats = {}

        now = self._clock()
        elapsed = now - self._net_time if self._net_time else 0.0
        entries: list[NetEntry] = []
        for iface, io in counters.items():
            last = self._net_last.get(iface)
            if last is None or elapsed <= 0:
                rx_sec = tx_sec = 0.0
            else:
                rx_sec = max(0.0, (io.bytes_recv - last[0]) / elapsed)
                tx_sec = max(0.0, (io.bytes_sent - last[1]) / elapsed)
            self._net_last[iface] = (io.bytes_recv, io.bytes_sent)
            entries.append(NetEntry(iface=iface, rx_sec=rx_sec, tx_sec=tx_sec))
        self._net_time = now

        def rank(entry: NetEntry) -> int:
            stat = stats.get(entry.iface)
            is_up = stat.isup if stat is not None else True
            is_loopback = entry.iface == "lo" or entry.iface.startswith("Loopback")
            return 0 if is_up and not is_loopback else 1

        return sorted(entries, key=rank)

    def processes(self) -> list[ProcEntry]:
        """
        Collect CPU and memory usage of all running processes.

        Processes that die mid-poll or deny access are skipped.
        """
        return list(self._sampled("procs", self._read_processes))

    def _read_processes(self) -> list[ProcEntry]:
        entries: list[ProcEntry] = []
        for proc in psutil.process_iter(attrs=["pid", "name", "cpu_percent", "memory_percent"]):
            try:
                info = proc.info
                entries.append(
                    ProcEntry(
                        pid=info.get("pid", 0),
                        name=info.get("name") or "",
                        cpu=info.get("cpu_percent") or 0.0,
                        mem=info.get("memory_percent") or 0.0,
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return entries

    def uptime(self) -> float:
        return time.time() - psutil.boot_time()

    def host_facts(self) -> HostFacts:
        return HostFacts(
            hostname=socket.gethostname(),
            platform=sys.platform,
            arch=platform.machine(),
            cpu_model=_cpu_model(),
            cpu_cores=psutil.cpu_count(logical=True) or 0,
            total_memory=psutil.virtual_memory().total,
        )


def _cpu_model() -> str:
    """Best-effort CPU model name."""
    if sys.platform.startswith("linux"):
        try:
            with open("/proc/cpuinfo", encoding="utf-8") as fh:
                for line in fh:
                    if line.lower().startswith("model name"):
                        return line.split(":", 1)[1].strip()
        except OSError:
            pass
    return platform.processor() or "unknown"
