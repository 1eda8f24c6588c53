"""
Hardware Profile

Immutable, per-session description of the target accelerator. The profile is
built once from a DeviceInfo (see device_query.py) and then only read.

Memory-tier parameters are not queried from the device: they are
experimentally selected per architecture family (microbenchmark results) and
decided here, at construction time. An architecture without parameters is a
deployment error and raises UnsupportedArchitectureError.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from functools import total_ordering
from typing import Any, Dict

from ..core.errors import UnsupportedArchitectureError


@total_ordering
class GpuArch(Enum):
    """GPU architecture families, ordered by generation"""
    GEN9 = "gen9"
    GEN11 = "gen11"
    XE_LP = "xe_lp"
    XE_HP = "xe_hp"
    XE_HPG = "xe_hpg"
    XE_HPC = "xe_hpc"
    XE2 = "xe2"
    XE3 = "xe3"

    @property
    def generation(self) -> int:
        return _ARCH_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, GpuArch):
            return NotImplemented
        return self.generation < other.generation

    @classmethod
    def parse(cls, name: str) -> 'GpuArch':
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise UnsupportedArchitectureError(f"Unknown GPU architecture: '{name}'") from None


_ARCH_ORDER = list(GpuArch)

# First generation with fast atomics; atomics-based reduction is only
# considered at or above it.
ATOMICS_MIN_ARCH = GpuArch.XE_HPC

MIB = 1 << 20


@dataclass(frozen=True)
class MemoryParameters:
    """Bandwidths in GB/s (bytes / GBps == ns), sizes in bytes"""
    slow_tier_bandwidth_gbps: float
    fast_tier_size_bytes: int
    fast_tier_bandwidth_gbps: float
    host_overhead_ns: float


def memory_parameters(arch: GpuArch) -> MemoryParameters:
    """
    Experimentally selected memory parameters for an architecture family.

    Raises:
        UnsupportedArchitectureError: no model exists for the architecture
    """
    if arch == GpuArch.XE_HPG:
        return MemoryParameters(
            slow_tier_bandwidth_gbps=400.0,
            fast_tier_size_bytes=16 * MIB,
            fast_tier_bandwidth_gbps=2000.0,
            host_overhead_ns=8000.0,
        )
    if arch >= GpuArch.XE_HPC:
        return MemoryParameters(
            slow_tier_bandwidth_gbps=1000.0,
            fast_tier_size_bytes=192 * MIB,
            fast_tier_bandwidth_gbps=3000.0,
            host_overhead_ns=6000.0,
        )
    raise UnsupportedArchitectureError(
        f"Architecture '{arch.value}' is not supported by the performance model")


@dataclass(frozen=True)
class HardwareProfile:
    """
    Target device capabilities used by every planning stage.

    Compute units are EUs; `units_per_slice` EUs share one sub-slice, which
    is where work-groups are scheduled.
    """

    name: str
    arch: GpuArch
    compute_unit_count: int
    threads_per_unit: int
    max_local_group_size: int
    units_per_slice: int

    # Memory tiers
    fast_tier_size_bytes: int
    fast_tier_bandwidth_gbps: float
    slow_tier_bandwidth_gbps: float
    host_overhead_ns: float

    def __post_init__(self):
        # Raises for architectures the model cannot describe
        memory_parameters(self.arch)
        for name in ('compute_unit_count', 'threads_per_unit',
                     'max_local_group_size', 'units_per_slice'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.fast_tier_bandwidth_gbps <= 0 or self.slow_tier_bandwidth_gbps <= 0:
            raise ValueError("memory bandwidths must be positive")
        if self.host_overhead_ns < 0:
            raise ValueError("host overhead must be non-negative")

    @classmethod
    def from_device(cls, info: 'DeviceInfo') -> 'HardwareProfile':
        """Build the profile from a device query result"""
        params = memory_parameters(info.arch)
        return cls(
            name=info.name,
            arch=info.arch,
            compute_unit_count=info.eu_count,
            threads_per_unit=info.threads_per_eu,
            max_local_group_size=info.max_wg_size,
            units_per_slice=info.eus_per_ss,
            fast_tier_size_bytes=params.fast_tier_size_bytes,
            fast_tier_bandwidth_gbps=params.fast_tier_bandwidth_gbps,
            slow_tier_bandwidth_gbps=params.slow_tier_bandwidth_gbps,
            host_overhead_ns=params.host_overhead_ns,
        )

    @property
    def slice_count(self) -> int:
        """Number of sub-slices (work-group schedulers)"""
        return -(-self.compute_unit_count // self.units_per_slice)

    @property
    def thread_slots(self) -> int:
        return self.compute_unit_count * self.threads_per_unit

    @property
    def supports_atomics_reduction(self) -> bool:
        return self.arch >= ATOMICS_MIN_ARCH

    @property
    def fingerprint(self) -> str:
        """
        Stable identity of the hardware for registry keys.

        Built from the architecture and the counts the model consumes, so
        devices with different marketing names but equal capabilities share
        registry entries.
        """
        return (f"{self.arch.value}-eu{self.compute_unit_count}"
                f"-tpe{self.threads_per_unit}-ss{self.units_per_slice}"
                f"-wg{self.max_local_group_size}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['arch'] = self.arch.value
        return data

    def format_summary(self) -> str:
        lines = []
        lines.append(f"Hardware: {self.name} ({self.arch.value})")
        lines.append(f"  EUs: {self.compute_unit_count} x {self.threads_per_unit} threads, "
                     f"{self.slice_count} sub-slices of {self.units_per_slice}")
        lines.append(f"  Max work-group size: {self.max_local_group_size}")
        lines.append(f"  L3: {self.fast_tier_size_bytes // MIB} MiB @ {self.fast_tier_bandwidth_gbps:.0f} GB/s")
        lines.append(f"  HBM: {self.slow_tier_bandwidth_gbps:.0f} GB/s")
        lines.append(f"  Host overhead per kernel: {self.host_overhead_ns:.0f} ns")
        return "\n".join(lines)
