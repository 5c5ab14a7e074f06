"""Shared fixtures for hostpulse tests."""

import pytest

from hostpulse.adapter import MetricSourceAdapter
from hostpulse.composer import SnapshotComposer
from hostpulse.provider import FsEntry, HostFacts, MemoryStats, NetEntry, ProcEntry

GIB = 1024**3


class FakeProvider:
    """
    In-memory MetricProvider.

    Readings are plain attributes; any method named in `failing` raises
    RuntimeError instead of answering.
    """

    def __init__(self) -> None:
        self.failing: set[str] = set()
        self.calls: dict[str, int] = {}
        self.load = 12.345
        self.mem = MemoryStats(total=16 * GIB, active=4 * GIB)
        self.temp: float | None = 48.0
        self.fs = [FsEntry(mount="/", size=100 * GIB, used=40 * GIB)]
        self.net = [NetEntry(iface="eth0", rx_sec=2048.0, tx_sec=1024.0)]
        self.procs = [
            ProcEntry(pid=1, name="init", cpu=0.5, mem=0.1),
            ProcEntry(pid=42, name="python", cpu=35.25, mem=2.5),
            ProcEntry(pid=7, name="postgres", cpu=12.0, mem=8.75),
        ]
        self.up = 3600.0
        self.facts = HostFacts(
            hostname="box",
            platform="linux",
            arch="x86_64",
            cpu_model="Test CPU @ 3.00GHz",
            cpu_cores=8,
            total_memory=16 * GIB,
        )

    def _answer(self, name: str, value):
        self.calls[name] = self.calls.get(name, 0) + 1
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")
        return value

    def cpu_load(self) -> float:
        return self._answer("cpu_load", self.load)

    def memory(self) -> MemoryStats:
        return self._answer("memory", self.mem)

    def main_temperature(self) -> float | None:
        return self._answer("main_temperature", self.temp)

    def filesystems(self) -> list[FsEntry]:
        return self._answer("filesystems", list(self.fs))

    def network_stats(self) -> list[NetEntry]:
        return self._answer("network_stats", list(self.net))

    def processes(self) -> list[ProcEntry]:
        return self._answer("processes", list(self.procs))

    def uptime(self) -> float:
        return self._answer("uptime", self.up)

    def host_facts(self) -> HostFacts:
        return self._answer("host_facts", self.facts)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def adapter(provider: FakeProvider) -> MetricSourceAdapter:
    return MetricSourceAdapter(provider)


@pytest.fixture
def composer(adapter: MetricSourceAdapter) -> SnapshotComposer:
    return SnapshotComposer(adapter)
