"""Snapshot composition."""

import asyncio
from datetime import datetime, timezone

from hostpulse.adapter import TOP_PROCESSES, MetricSourceAdapter
from hostpulse.models import Snapshot


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 instant with millisecond precision, e.g. 2024-01-01T00:00:00.000Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SnapshotComposer:
    """Gathers every adapter reading into one Snapshot."""

    def __init__(self, adapter: MetricSourceAdapter) -> None:
        self._adapter = adapter

    @property
    def adapter(self) -> MetricSourceAdapter:
        return self._adapter

    async def compose(self) -> Snapshot:
        """
        Collect a snapshot of the current system state.

        All adapter queries run concurrently. Each recovers from its own
        failures, so this only raises on a programming error.
        """
        timestamp = utc_timestamp()
        cpu, ram, temp, disk, network, processes, uptime = await asyncio.gather(
            self._adapter.cpu_load(),
            self._adapter.memory(),
            self._adapter.temperature(),
            self._adapter.disk_usage(),
            self._adapter.network_throughput(),
            self._adapter.top_processes(TOP_PROCESSES),
            self._adapter.uptime(),
        )
        return Snapshot(
            timestamp=timestamp,
            cpu=cpu,
            ram=ram,
            temp=temp,
            disk=disk,
            network=network,
            processes=tuple(processes),
            uptime=uptime,
        )
