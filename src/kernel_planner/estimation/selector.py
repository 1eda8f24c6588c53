"""
Configuration Selector

Picks the best candidate configuration of a workload, either by the cost
model (every candidate is estimated, optionally on a thread pool) or by live
measurement through a kernel executor, and writes the winner back into the
workload descriptor.

Usage:
    selector = ConfigurationSelector(hw, estimator, AnalyticalExecutor(), logger)
    result = selector.select(workload)
    print(result.workload.value('ic_block'), result.expected_time_ms)
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from ..core.dims import calc_stat_ic
from ..core.errors import PlanningError, SearchInterrupted
from ..core.logging import PlannerLogger
from ..core.structures import (
    CandidateConfiguration,
    KernelDescriptor,
    KernelKind,
    Occupancy,
    Tunable,
    WorkloadDescriptor,
)
from ..execute.executor import DeviceLocks, KernelExecutor, TimingStats
from ..hardware.profile import HardwareProfile
from .candidates import generate_candidates, vector_width
from .cost_model import CostEstimator
from .decomposition import decompose, kernel_kinds


@dataclass(frozen=True)
class Evaluation:
    """Predicted or measured cost of one candidate"""
    index: int
    candidate: CandidateConfiguration
    total_time_ns: float
    kernels: Tuple[KernelDescriptor, ...]
    timing: Optional[TimingStats] = None

    @property
    def sort_key(self) -> Tuple[float, int]:
        return (self.total_time_ns, self.index)


@dataclass
class PlanResult:
    """Outcome of planning one workload"""
    workload: WorkloadDescriptor
    candidate: CandidateConfiguration
    total_time_ns: float
    kernels: List[KernelDescriptor] = field(default_factory=list)
    source: str = "model"
    evaluated: int = 0
    excluded: int = 0
    timing: Optional[TimingStats] = None

    @property
    def expected_time_ms(self) -> float:
        return self.total_time_ns * 1e-6


class _RunningBest:
    """Lock-protected arg-min with the candidate index as tie-break"""

    def __init__(self):
        self._lock = threading.Lock()
        self.best: Optional[Evaluation] = None

    def offer(self, evaluation: Evaluation):
        with self._lock:
            if self.best is None or evaluation.sort_key < self.best.sort_key:
                self.best = evaluation


# =============================================================================
# WRITE-BACK
# =============================================================================

def unroll_is_legal(sp: int, update_sp_block: int, unroll: int) -> bool:
    return update_sp_block % unroll == 0 and (sp % update_sp_block) % unroll == 0


def apply_unroll_guard(workload: WorkloadDescriptor,
                       logger: Optional[PlannerLogger] = None) -> WorkloadDescriptor:
    """
    Reset an unroll factor that does not divide the update blocks to 1.

    This is the one recoverable case in which a pinned value changes; the
    pinned flag itself is kept.
    """
    unroll = workload.value('update_sp_unroll')
    update_sp_block = workload.value('update_sp_block')
    if unroll is None or update_sp_block is None or unroll == 1:
        return workload
    if unroll_is_legal(workload.sp, update_sp_block, unroll):
        return workload
    if logger is not None:
        logger.warning(
            f"update_sp_unroll={unroll} does not divide update_sp_block={update_sp_block} "
            f"and its remainder for sp={workload.sp}; using 1")
    return replace(workload, update_sp_unroll=Tunable(
        1, pinned=workload.is_pinned('update_sp_unroll')))


def write_back(workload: WorkloadDescriptor, candidate: CandidateConfiguration,
               total_time_ns: float,
               logger: Optional[PlannerLogger] = None) -> WorkloadDescriptor:
    """Store the chosen configuration in every unpinned tunable"""
    updated = workload.with_tunables(**candidate.tunable_values())
    updated = apply_unroll_guard(updated, logger)
    sg = updated.sub_group_size
    ic_block = updated.value('ic_block')
    return updated.with_outputs(
        vect_size=vector_width(ic_block, updated.value('max_vect_size'), sg),
        calc_stat_ic=calc_stat_ic(updated.ic, ic_block, sg),
        expected_time_ms=total_time_ns * 1e-6,
    )


# =============================================================================
# SELECTOR
# =============================================================================

class ConfigurationSelector:
    """
    Chooses a configuration for one hardware profile.

    All mutable state of a selection lives in local objects, so one selector
    can serve concurrent selections.
    """

    def __init__(
        self,
        hw: HardwareProfile,
        estimator: CostEstimator,
        executor: KernelExecutor,
        logger: Optional[PlannerLogger] = None,
        workers: int = 1,
        device_locks: Optional[DeviceLocks] = None,
    ):
        self.hw = hw
        self.estimator = estimator
        self.executor = executor
        self.logger = logger or PlannerLogger.console()
        self.workers = max(1, workers)
        self.device_locks = device_locks or DeviceLocks()

    def occupancy_map(self, workload: WorkloadDescriptor,
                      candidate: CandidateConfiguration) -> Optional[Dict[KernelKind, Occupancy]]:
        """Occupancy of every kernel, or None if one cannot be dispatched"""
        occupancy = {}
        for kind in kernel_kinds(workload, candidate):
            geometry = self.executor.launch_geometry(kind, workload, candidate, self.hw)
            if not geometry.is_valid:
                self.logger.debug(
                    f"excluded [{candidate}]: {kind.value} has zero local size "
                    f"(gws={geometry.gws})")
                return None
            occupancy[kind] = geometry.occupancy(self.hw, workload.sub_group_size)
        return occupancy

    def evaluate(self, workload: WorkloadDescriptor, candidate: CandidateConfiguration,
                 index: int = 0) -> Optional[Evaluation]:
        """Model cost of one candidate; None when the candidate is excluded"""
        occupancy = self.occupancy_map(workload, candidate)
        if occupancy is None:
            return None
        kernels = decompose(workload, candidate, occupancy=occupancy)
        estimated = self.estimator.estimate_all(workload, candidate, kernels)
        total_ns = self.estimator.total_time_ns(estimated)
        self.logger.debug(f"candidate {index} [{candidate}]: total {total_ns:.1f}ns "
                          f"({total_ns * 1e-6:.4f} ms)")
        return Evaluation(index=index, candidate=candidate,
                          total_time_ns=total_ns, kernels=tuple(estimated))

    def select(self, workload: WorkloadDescriptor,
               candidates: Optional[List[CandidateConfiguration]] = None) -> PlanResult:
        """
        Model-driven selection.

        Raises:
            PlanningError: no candidate could be evaluated
        """
        if candidates is None:
            candidates = generate_candidates(workload, self.hw)

        best = _RunningBest()
        evaluated = 0

        def run(index: int, candidate: CandidateConfiguration) -> bool:
            evaluation = self.evaluate(workload, candidate, index)
            if evaluation is None:
                return False
            best.offer(evaluation)
            return True

        if self.workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                futures = [pool.submit(run, i, c) for i, c in enumerate(candidates)]
                evaluated = sum(1 for f in futures if f.result())
        else:
            evaluated = sum(1 for i, c in enumerate(candidates) if run(i, c))

        if best.best is None:
            raise PlanningError(
                f"cannot plan: none of {len(candidates)} candidates could be dispatched")

        chosen = best.best
        return PlanResult(
            workload=write_back(workload, chosen.candidate, chosen.total_time_ns, self.logger),
            candidate=chosen.candidate,
            total_time_ns=chosen.total_time_ns,
            kernels=list(chosen.kernels),
            source="model",
            evaluated=evaluated,
            excluded=len(candidates) - evaluated,
        )

    # -------------------------------------------------------------------------
    # Measurement
    # -------------------------------------------------------------------------

    def measure(self, workload: WorkloadDescriptor,
                candidate: CandidateConfiguration) -> Optional[Evaluation]:
        """
        Measure the candidate's kernel sequence on the executor's device.

        Measurements of one device are serialized. Returns None when the
        candidate cannot be dispatched.
        """
        occupancy = self.occupancy_map(workload, candidate)
        if occupancy is None:
            return None
        kernels = decompose(workload, candidate, occupancy=occupancy)
        with self.device_locks.hold(self.executor.device):
            timing = self.executor.measure(kernels, workload, candidate, self.hw)
        self.logger.debug(f"measured [{candidate}]: {timing.mean_ms:.4f} ms "
                          f"(std {timing.std_ms:.4f}, n={timing.num_iterations})")
        return Evaluation(index=0, candidate=candidate, total_time_ns=timing.mean_ns,
                          kernels=tuple(kernels), timing=timing)

    def search(self, workload: WorkloadDescriptor,
               time_budget_s: Optional[float] = None,
               candidates: Optional[List[CandidateConfiguration]] = None) -> PlanResult:
        """
        Measurement-driven selection over every candidate.

        When the wall-clock budget runs out, no new candidate is measured and
        the best complete measurement so far wins.

        Raises:
            SearchInterrupted: the budget expired before any measurement
            PlanningError: no candidate could be dispatched
        """
        if candidates is None:
            candidates = generate_candidates(workload, self.hw)
        deadline = time.monotonic() + time_budget_s if time_budget_s is not None else None

        best = _RunningBest()
        evaluated = 0
        skipped = 0
        for index, candidate in enumerate(candidates):
            if deadline is not None and time.monotonic() >= deadline:
                skipped = len(candidates) - index
                self.logger.warning(
                    f"Search budget of {time_budget_s}s exhausted; "
                    f"{skipped} candidates not measured")
                break
            evaluation = self.measure(workload, candidate)
            if evaluation is None:
                continue
            evaluated += 1
            best.offer(replace(evaluation, index=index))

        if best.best is None:
            if skipped:
                raise SearchInterrupted(
                    f"Search budget of {time_budget_s}s expired before any measurement")
            raise PlanningError(
                f"cannot plan: none of {len(candidates)} candidates could be dispatched")

        chosen = best.best
        return PlanResult(
            workload=write_back(workload, chosen.candidate, chosen.total_time_ns, self.logger),
            candidate=chosen.candidate,
            total_time_ns=chosen.total_time_ns,
            kernels=list(chosen.kernels),
            source="search",
            evaluated=evaluated,
            excluded=len(candidates) - evaluated - skipped,
            timing=chosen.timing,
        )
