"""
Cost Model

Predicts the execution time of one elementary kernel from its byte volumes,
the memory tier its operands are expected to live in, and the hardware
occupancy of its launch:

    time = (read_bytes / read_bw + write_bytes / write_bw)
           * slice saturation factor
           * thread utilization factor   (per operation and tier)
           * atomics penalty             (statistics kernels, writes only)
           * vectorization factor

Reusable kernels take their thread utilization factor from the calibrated
approximation table; optimized kernels use closed-form two-piece curves.
"""

import math
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from ..calibration.approximation import ApproximationTable, solve_two_piece_linear
from ..core.errors import ModelLookupError
from ..core.logging import PlannerLogger
from ..core.structures import (
    CandidateConfiguration,
    DataType,
    KernelDescriptor,
    KernelKind,
    KernelVariant,
    MemOperation,
    MemoryTier,
    WorkloadDescriptor,
)
from ..hardware.profile import GpuArch, HardwareProfile


# Write time multiplier of statistics kernels that reduce through atomics
ATOMICS_WRITE_PENALTY = 64

# Vector width of the reusable reduction kernels
REUSABLE_REDUCTION_VECT_SIZE = 8

# Time multiplier by vector width; widths not listed use 1.0
_VECTORIZATION_FACTORS: Dict[Tuple[KernelVariant, bool], Dict[int, float]] = {
    # (variant, narrow dtype)
    (KernelVariant.REUSABLE, True): {1: 2.5, 2: 1.8, 4: 1.2},
    (KernelVariant.REUSABLE, False): {1: 2.5, 2: 1.5},
    (KernelVariant.OPTIMIZED, True): {1: 4.0, 2: 1.5, 4: 1.3},
    (KernelVariant.OPTIMIZED, False): {1: 4.0, 2: 1.3},
}

# Slice saturation curves of the reusable kernels: a * u ** b
_REUSABLE_SLICE_CURVES = {
    True: (2.0, -0.8),
    False: (5.3, -0.7),
}


def vectorization_factor(vect_size: int, data_type: DataType,
                         variant: KernelVariant) -> float:
    """How much a short vector slows down memory access"""
    factors = _VECTORIZATION_FACTORS[(variant, data_type.is_narrow)]
    return factors.get(vect_size, 1.0)


def slice_saturation_factor(util: float, data_type: DataType,
                            variant: KernelVariant) -> float:
    """Time multiplier for partially occupied sub-slices (util capped at 1)"""
    util = min(util, 1.0)
    if util <= 0:
        raise ModelLookupError(f"Slice utilization must be positive, got {util}")
    if variant == KernelVariant.REUSABLE:
        a, b = _REUSABLE_SLICE_CURVES[data_type.is_narrow]
        return a * util ** b
    return 1.0 / util


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _pow2_round_up(value: int) -> int:
    return 1 << max(0, value - 1).bit_length()


class CostEstimator:
    """
    Per-kernel time predictions for one hardware profile.

    The estimator is stateless apart from its read-only inputs and can be
    shared by concurrent evaluations.
    """

    def __init__(self, hw: HardwareProfile, table: ApproximationTable,
                 logger: Optional[PlannerLogger] = None):
        self.hw = hw
        self.table = table
        self.logger = logger

    # -------------------------------------------------------------------------
    # Placement
    # -------------------------------------------------------------------------

    def placement(self, workload: WorkloadDescriptor,
                  kernel: KernelDescriptor) -> Tuple[MemoryTier, MemoryTier]:
        """Expected (input, output) memory tier of a kernel's operands"""
        if self.hw.arch == GpuArch.XE_HPG:
            return MemoryTier.SLOW, MemoryTier.SLOW

        fast_size = self.hw.fast_tier_size_bytes
        kind = kernel.kind
        input_tier = MemoryTier.SLOW
        if kind in (KernelKind.CALC_MEAN, KernelKind.CALC_VAR):
            if kernel.input_nbytes + kernel.output_nbytes < fast_size:
                input_tier = MemoryTier.FAST
        elif ((kind == KernelKind.DEFAULT_FWD and not workload.calculate_stats)
              or (kind == KernelKind.DEFAULT_BWD and not workload.calculate_diff_stats)):
            # nothing earlier in the sequence touched the input
            input_tier = MemoryTier.SLOW
        elif kernel.input_nbytes < fast_size:
            input_tier = MemoryTier.FAST

        output_tier = MemoryTier.FAST if kernel.output_nbytes < fast_size else MemoryTier.SLOW
        return input_tier, output_tier

    def bandwidth(self, tier: MemoryTier) -> float:
        if tier == MemoryTier.FAST:
            return self.hw.fast_tier_bandwidth_gbps
        if tier == MemoryTier.SLOW:
            return self.hw.slow_tier_bandwidth_gbps
        raise ModelLookupError(f"Unexpected memory tier: {tier}")

    # -------------------------------------------------------------------------
    # Utilization
    # -------------------------------------------------------------------------

    def thread_factor(self, slice_util: float, thread_util: float,
                      tier: MemoryTier, op: MemOperation,
                      data_type: DataType, variant: KernelVariant) -> float:
        """Time multiplier for the launch's thread utilization"""
        if variant == KernelVariant.REUSABLE:
            return self.table.thread_factor(slice_util, thread_util, data_type,
                                            op, variant, tier)

        if tier == MemoryTier.FAST:
            ss = min(slice_util, 1.0)
            thr = min(thread_util, 1.0)
            y = solve_two_piece_linear(thr, 0.0, 0.25, 1.0, 0.0, 1.0 - ss / 2, 1.0)
        elif tier == MemoryTier.SLOW:
            if self.hw.arch == GpuArch.XE_HPG:
                ss_rounded = max(1, _round_half_up(slice_util))
                x_br = 2.0 ** (math.log2(_pow2_round_up(ss_rounded)) - 4)
                y_br = 0.9 if slice_util > 4 else 0.5
                y = solve_two_piece_linear(thread_util, 0.0, x_br, 32.0, 0.0, y_br, 1.0)
            elif self.hw.arch >= GpuArch.XE_HPC:
                ss = min(slice_util, 1.0)
                thr = min(thread_util, 1.0)
                y_br = 0.9 if ss < 0.25 else 0.7
                y = solve_two_piece_linear(thr, 0.0, 0.125, 1.0, 0.0, y_br, 1.0)
            else:
                raise ModelLookupError(
                    f"No thread utilization curve for {self.hw.arch.value}")
        else:
            raise ModelLookupError(f"Unexpected memory tier: {tier}")

        return 1.0 / max(y, self.table.min_curve_ratio)

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------

    def estimate(self, workload: WorkloadDescriptor,
                 candidate: CandidateConfiguration,
                 kernel: KernelDescriptor) -> KernelDescriptor:
        """
        Predict the time of one kernel launch.

        Returns:
            Copy of the descriptor with tiers and time_ns set

        Raises:
            ModelLookupError: the prediction is negative or not finite
        """
        input_tier, output_tier = self.placement(workload, kernel)
        occ = kernel.occupancy
        data_type = workload.data_type
        variant = kernel.variant

        read_ns = kernel.input_nbytes / self.bandwidth(input_tier)
        write_ns = kernel.output_nbytes / self.bandwidth(output_tier)
        base_read, base_write = read_ns, write_ns

        ss_factor = slice_saturation_factor(occ.slice_util, data_type, variant)
        read_ns *= ss_factor
        write_ns *= ss_factor

        read_ns *= self.thread_factor(occ.slice_util, occ.thread_util, input_tier,
                                      MemOperation.READ, data_type, variant)
        write_ns *= self.thread_factor(occ.slice_util, occ.thread_util, output_tier,
                                       MemOperation.WRITE, data_type, variant)

        if candidate.use_fused_atomics_reduction and kernel.kind.is_statistic:
            write_ns *= ATOMICS_WRITE_PENALTY

        if kernel.kind.is_reduction and variant == KernelVariant.REUSABLE:
            vect_size = REUSABLE_REDUCTION_VECT_SIZE
        else:
            vect_size = candidate.vect_size
        v_coeff = vectorization_factor(vect_size, data_type, variant)
        read_ns *= v_coeff
        write_ns *= v_coeff

        time_ns = read_ns + write_ns
        if not math.isfinite(time_ns) or time_ns < 0:
            raise ModelLookupError(
                f"Invalid time estimate {time_ns} for {kernel.kind.value} under {candidate}")

        if self.logger is not None:
            self.logger.debug(
                f"estimate {kernel.kind.value} [{candidate}]: "
                f"thr_util={occ.thread_util:.3g} ss_util={occ.slice_util:.3g} "
                f"location={input_tier.value}/{output_tier.value} "
                f"base={base_read:.1f}/{base_write:.1f} v_coeff={v_coeff:.1f} "
                f"final={read_ns:.1f}/{write_ns:.1f} total={time_ns:.1f}ns")

        return replace(kernel, input_tier=input_tier, output_tier=output_tier,
                       time_ns=time_ns)

    def estimate_all(self, workload: WorkloadDescriptor,
                     candidate: CandidateConfiguration,
                     kernels: List[KernelDescriptor]) -> List[KernelDescriptor]:
        return [self.estimate(workload, candidate, k) for k in kernels]

    def total_time_ns(self, kernels: List[KernelDescriptor]) -> float:
        """Sum of ncalls * (time + host overhead) over the sequence"""
        return sum(k.total_ns(self.hw.host_overhead_ns) for k in kernels)
