"""Data models for hostpulse."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

GIB = 1024**3
ZERO = "0.00"
NAME_LIMIT = 25
PROCESS_LIMIT = 5

# Fixed 2-decimal string such as "2.00"
Fixed2 = Annotated[str, StringConstraints(pattern=r"^-?\d+\.\d{2}$")]


def fixed2(value: float) -> str:
    """Format a number as a fixed 2-decimal string ("2.00")."""
    try:
        quantized = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return ZERO
    if not quantized.is_finite() or quantized == 0:
        return ZERO  # No "-0.00"
    return f"{quantized:.2f}"


def round2(value: float) -> float:
    """Round a number to 2 decimals, the numeric counterpart of fixed2."""
    return float(fixed2(value))


class WireModel(BaseModel):
    """Immutable record exchanged with viewers, keyed by its wire names."""

    model_config = ConfigDict(
        frozen=True,
        validate_by_name=True,
        validate_by_alias=True,
        serialize_by_alias=True,
    )


class StaticHostInfo(WireModel):
    """Host facts that cannot change while the server process runs."""

    hostname: str
    platform: str
    arch: str
    cpu_model: str = Field(alias="cpuModel")
    cpu_cores: int = Field(alias="cpuCores", ge=0)
    total_memory: Fixed2 = Field(alias="totalMemory")  # GiB


class DiskReading(WireModel):
    """Usage of the first reported filesystem, in GiB."""

    total: Fixed2 = ZERO
    used: Fixed2 = ZERO
    available: Fixed2 = ZERO
    use_percent: Fixed2 = Field(default=ZERO, alias="usePercent")


class NetworkReading(WireModel):
    """Throughput of the first reported interface, in KB/s."""

    rx: Fixed2 = ZERO
    tx: Fixed2 = ZERO


class ProcessSample(WireModel):
    pid: int
    name: Annotated[str, StringConstraints(max_length=NAME_LIMIT)]
    cpu: Fixed2
    mem: Fixed2


class Snapshot(WireModel):
    """Immutable point-in-time reading of every metric class."""

    timestamp: str
    cpu: float
    ram: float
    temp: float
    disk: DiskReading = Field(default_factory=DiskReading)
    network: NetworkReading = Field(default_factory=NetworkReading)
    processes: tuple[ProcessSample, ...] = Field(default=(), max_length=PROCESS_LIMIT)
    uptime: float = 0.0
