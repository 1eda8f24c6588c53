"""
Kernel Executor

Boundary to the runtime that dispatches the elementary kernels. The planner
asks an executor two things:

- launch_geometry(): the global/local work sizes a kernel would be dispatched
  with, used to derive occupancy for the cost model
- measure(): the measured wall time of a full kernel sequence (benchmark and
  search modes only)

AnalyticalExecutor derives NHWC dispatch geometry in closed form and cannot
measure. TorchProxyExecutor (torch_executor.py) measures on a real device.
"""

import statistics
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Tuple

from ..core.errors import PlanningError
from ..core.structures import (
    CandidateConfiguration,
    KernelDescriptor,
    KernelKind,
    KernelRole,
    Occupancy,
    WorkloadDescriptor,
)
from ..core.dims import calc_stat_ic, div_up, round_up
from ..hardware.profile import HardwareProfile


Range3 = Tuple[int, int, int]


# =============================================================================
# LAUNCH GEOMETRY
# =============================================================================

@dataclass(frozen=True)
class LaunchGeometry:
    """ND-range of one kernel launch"""
    gws: Range3
    lws: Range3

    @staticmethod
    def _nelems(r: Range3) -> int:
        n = 1
        for d in r:
            n *= d
        return n

    @property
    def global_size(self) -> int:
        return self._nelems(self.gws)

    @property
    def local_size(self) -> int:
        return self._nelems(self.lws)

    @property
    def is_valid(self) -> bool:
        """A zero local size means the kernel cannot be dispatched"""
        return self.local_size > 0

    @property
    def num_wgs(self) -> int:
        return self.global_size // self.local_size

    def occupancy(self, hw: HardwareProfile, sub_group_size: int) -> Occupancy:
        """
        Hardware utilization of the launch.

        One work-group is assumed per sub-slice; several work-groups sharing
        a sub-slice are not modeled.
        """
        if not self.is_valid:
            raise PlanningError(f"Cannot derive occupancy of launch with lws={self.lws}")
        num_wgs = self.num_wgs
        threads_generated = self.global_size / sub_group_size
        thread_capacity = min(num_wgs * hw.units_per_slice * hw.threads_per_unit,
                              hw.thread_slots)
        return Occupancy(
            num_wgs=num_wgs,
            slice_util=num_wgs / hw.slice_count,
            thread_util=threads_generated / thread_capacity,
        )


# =============================================================================
# TIMING
# =============================================================================

@dataclass
class ExecutionConfig:
    """Measurement settings"""
    warmup_iterations: int = 3
    measurement_iterations: int = 10
    sync_before_timing: bool = True
    device: str = "auto"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'warmup_iterations': self.warmup_iterations,
            'measurement_iterations': self.measurement_iterations,
            'sync_before_timing': self.sync_before_timing,
            'device': self.device,
        }


@dataclass
class TimingStats:
    """Statistical summary of timing measurements"""
    mean_ms: float
    std_ms: float
    min_ms: float
    max_ms: float
    median_ms: float
    p95_ms: float
    p99_ms: float
    num_iterations: int

    @property
    def mean_ns(self) -> float:
        return self.mean_ms * 1e6

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mean_ms': self.mean_ms,
            'std_ms': self.std_ms,
            'min_ms': self.min_ms,
            'max_ms': self.max_ms,
            'median_ms': self.median_ms,
            'p95_ms': self.p95_ms,
            'p99_ms': self.p99_ms,
            'num_iterations': self.num_iterations,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimingStats':
        return cls(**data)


def compute_stats(timings: List[float]) -> TimingStats:
    """Compute statistical summary of timings (milliseconds)"""
    if not timings:
        raise PlanningError("No timing samples to summarize")

    sorted_timings = sorted(timings)
    n = len(timings)

    return TimingStats(
        mean_ms=statistics.mean(timings),
        std_ms=statistics.stdev(timings) if n > 1 else 0.0,
        min_ms=min(timings),
        max_ms=max(timings),
        median_ms=statistics.median(timings),
        p95_ms=sorted_timings[int(n * 0.95)] if n >= 20 else sorted_timings[-1],
        p99_ms=sorted_timings[int(n * 0.99)] if n >= 100 else sorted_timings[-1],
        num_iterations=n,
    )


class DeviceLocks:
    """
    Per-device measurement locks.

    Measurements on one device must not overlap; measurements on different
    devices may. Owned by a planner session.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, device: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(device)
            if lock is None:
                lock = threading.Lock()
                self._locks[device] = lock
            return lock

    @contextmanager
    def hold(self, device: str) -> Iterator[None]:
        with self.lock_for(device):
            yield


# =============================================================================
# EXECUTORS
# =============================================================================

class KernelExecutor(ABC):
    """Dispatch boundary of the planner"""

    #: Device key used to serialize measurements
    device: str = "model"

    @abstractmethod
    def launch_geometry(self, kind: KernelKind, workload: WorkloadDescriptor,
                        candidate: CandidateConfiguration,
                        hw: HardwareProfile) -> LaunchGeometry:
        """ND-range the kernel would be dispatched with"""
        pass

    @abstractmethod
    def measure(self, kernels: List[KernelDescriptor], workload: WorkloadDescriptor,
                candidate: CandidateConfiguration, hw: HardwareProfile) -> TimingStats:
        """
        Run the kernel sequence and time it.

        Returns:
            TimingStats of the whole sequence, in milliseconds
        """
        pass

    @property
    def can_measure(self) -> bool:
        return True


class AnalyticalExecutor(KernelExecutor):
    """
    Closed-form NHWC dispatch geometry.

    Statistics and default kernels run one sub-group per channel block along
    dimension 0 and one work-item row per spatial block along dimension 1;
    their work-group is one sub-group wide and as tall as the largest divisor
    of the spatial grid that fits the maximum local size. Reduction and
    auxiliary kernels run one work-item per channel in a 1-D grid of
    sub-group sized work-groups.
    """

    device = "model"

    def launch_geometry(self, kind: KernelKind, workload: WorkloadDescriptor,
                        candidate: CandidateConfiguration,
                        hw: HardwareProfile) -> LaunchGeometry:
        sg = workload.sub_group_size
        max_lws = hw.max_local_group_size

        if kind.role in (KernelRole.REDUCE_STATISTIC, KernelRole.AUXILIARY_INIT,
                         KernelRole.AUXILIARY_FINALIZE):
            gws = (round_up(workload.ic, sg), 1, 1)
            if max_lws < sg:
                return LaunchGeometry(gws=gws, lws=(0, 0, 0))
            return LaunchGeometry(gws=gws, lws=(sg, 1, 1))

        if kind.role in (KernelRole.DEFAULT_FORWARD, KernelRole.DEFAULT_BACKWARD):
            sp_block = candidate.update_sp_block
        else:
            sp_block = candidate.stat_sp_block
        gws = (calc_stat_ic(workload.ic, candidate.ic_block, sg),
               div_up(workload.sp, sp_block), 1)
        if max_lws < sg:
            return LaunchGeometry(gws=gws, lws=(0, 0, 0))
        return LaunchGeometry(gws=gws, lws=(sg, _largest_divisor(gws[1], max_lws // sg), 1))

    def measure(self, kernels: List[KernelDescriptor], workload: WorkloadDescriptor,
                candidate: CandidateConfiguration, hw: HardwareProfile) -> TimingStats:
        raise PlanningError("The analytical executor cannot run kernels; "
                            "use a device executor for benchmark or search modes")

    @property
    def can_measure(self) -> bool:
        return False


def _largest_divisor(n: int, limit: int) -> int:
    """Largest d <= limit that divides n (at least 1)"""
    for d in range(min(n, limit), 0, -1):
        if n % d == 0:
            return d
    return 1
