"""Per-metric normalization with failure isolation."""

import asyncio
import logging

from hostpulse.models import (
    GIB,
    NAME_LIMIT,
    DiskReading,
    NetworkReading,
    ProcessSample,
    StaticHostInfo,
    fixed2,
    round2,
)
from hostpulse.provider import MetricProvider, PsutilProvider

logger = logging.getLogger(__name__)

TOP_PROCESSES = 5


class MetricSourceAdapter:
    """
    Normalized, fault-isolated views over a MetricProvider.

    Each query runs the blocking provider call in a worker thread and turns
    any failure into that query's default reading, so one broken sensor never
    affects the others. The adapter holds no per-session state and is safe to
    share between sessions.
    """

    def __init__(self, provider: MetricProvider | None = None) -> None:
        """
        Initialize the MetricSourceAdapter.

        Args:
            provider: Source of raw readings. Defaults to PsutilProvider.
        """
        self._provider = provider if provider is not None else PsutilProvider()
        self._host_info: StaticHostInfo | None = None

    @property
    def provider(self) -> MetricProvider:
        return self._provider

    async def cpu_load(self) -> float:
        """Current CPU load percent, 0.0 when unavailable."""
        try:
            load = await asyncio.to_thread(self._provider.cpu_load)
            return round2(load)
        except Exception as exc:
            logger.debug("CPU load unavailable: %s", exc)
            return 0.0

    async def memory(self) -> float:
        """RAM in use as `active / total * 100`, 0.0 when unavailable."""
        try:
            mem = await asyncio.to_thread(self._provider.memory)
            return round2(mem.active / mem.total * 100)
        except Exception as exc:
            logger.debug("Memory stats unavailable: %s", exc)
            return 0.0

    async def temperature(self) -> float:
        """Main CPU sensor temperature in °C, 0 when there is none."""
        try:
            main = await asyncio.to_thread(self._provider.main_temperature)
        except Exception as exc:
            logger.debug("Temperature unavailable: %s", exc)
            return 0
        return main or 0

    async def disk_usage(self) -> DiskReading:
        """Usage of the first reported filesystem, all-zero on failure."""
        try:
            filesystems = await asyncio.to_thread(self._provider.filesystems)
            if not filesystems:
                return DiskReading()
            disk = filesystems[0]
            return DiskReading(
                total=fixed2(disk.size / GIB),
                used=fixed2(disk.used / GIB),
                available=fixed2((disk.size - disk.used) / GIB),
                use_percent=fixed2(disk.used / disk.size * 100),
            )
        except Exception as exc:
            logger.debug("Disk usage unavailable: %s", exc)
            return DiskReading()

    async def network_throughput(self) -> NetworkReading:
        """KB/s received and sent on the first reported interface."""
        try:
            interfaces = await asyncio.to_thread(self._provider.network_stats)
            if not interfaces:
                return NetworkReading()
            iface = interfaces[0]
            return NetworkReading(rx=fixed2(iface.rx_sec / 1024), tx=fixed2(iface.tx_sec / 1024))
        except Exception as exc:
            logger.debug("Network stats unavailable: %s", exc)
            return NetworkReading()

    async def top_processes(self, n: int = TOP_PROCESSES) -> list[ProcessSample]:
        """
        Return the `n` processes using the most CPU, highest first.

        Names are truncated to 25 characters. A negative `n` yields an empty
        list, as does any failure; the list is never partial.
        """
        try:
            processes = await asyncio.to_thread(self._provider.processes)
            ranked = sorted(processes, key=lambda p: p.cpu, reverse=True)[: max(n, 0)]
            return [
                ProcessSample(
                    pid=int(p.pid),
                    name=p.name[:NAME_LIMIT],
                    cpu=fixed2(p.cpu),
                    mem=fixed2(p.mem),
                )
                for p in ranked
            ]
        except Exception as exc:
            logger.debug("Process list unavailable: %s", exc)
            return []

    async def uptime(self) -> float:
        """Host uptime in seconds, always read fresh."""
        try:
            return await asyncio.to_thread(self._provider.uptime)
        except Exception as exc:
            logger.debug("Uptime unavailable: %s", exc)
            return 0.0

    async def host_info(self) -> StaticHostInfo:
        """
        Static host facts, computed on first use and cached afterwards.

        Unlike the metric queries this does not swallow provider errors: a
        host that cannot describe itself is a setup defect.
        """
        if self._host_info is None:
            facts = await asyncio.to_thread(self._provider.host_facts)
            self._host_info = StaticHostInfo(
                hostname=facts.hostname,
                platform=facts.platform,
                arch=facts.arch,
                cpu_model=facts.cpu_model,
                cpu_cores=facts.cpu_cores,
                total_memory=fixed2(facts.total_memory / GIB),
            )
        return self._host_info
