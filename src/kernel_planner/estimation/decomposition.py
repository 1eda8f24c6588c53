"""
Kernel Decomposition

Expands a (workload, candidate) pair into the ordered sequence of elementary
kernels that executes it, with closed-form invocation counts and byte volumes.
Everything here is a pure function of its arguments; memory placement and
time are added later by the cost estimator.

Byte volumes use:
    T = sp * ic * elsz              (activation tensor)
    S = ic * 4                      (per-channel f32 statistics vector)
    B = ceil(sp / stat_sp_block)    (number of spatial blocks)
    R = roundup(ic, sg) * 4         (per-block partial statistics row)
    W = sp * ic                     (one-byte fused ReLU workspace)
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..core.errors import ModelLookupError
from ..core.structures import (
    CandidateConfiguration,
    KernelDescriptor,
    KernelKind,
    KernelVariant,
    Occupancy,
    WorkloadDescriptor,
    require_total,
)
from ..core.dims import div_up, round_up


STAT_ELEMENT_BYTES = 4  # statistics are accumulated in f32


def kernel_kinds(workload: WorkloadDescriptor,
                 candidate: CandidateConfiguration) -> List[KernelKind]:
    """Ordered kernel sequence of the workload under the candidate"""
    atomics = candidate.use_fused_atomics_reduction
    kinds = []

    if workload.is_forward:
        kinds.append(KernelKind.DEFAULT_FWD)
        if not workload.calculate_stats:
            return kinds
        if workload.use_stats_one_pass:
            kinds.append(KernelKind.CALC_MEAN_VAR)
        else:
            kinds.extend([KernelKind.CALC_MEAN, KernelKind.CALC_VAR])
        if atomics:
            kinds.extend([KernelKind.REDUCE_AUX_INIT, KernelKind.REDUCE_AUX_FINALIZE])
        elif workload.use_stats_one_pass:
            kinds.append(KernelKind.REDUCE_MEAN_VAR)
        elif workload.variant == KernelVariant.REUSABLE:
            kinds.append(KernelKind.REUSABLE_REDUCE_STATS_FWD)
        else:
            kinds.append(KernelKind.REDUCE_STATS_FWD)
        return kinds

    kinds.extend([KernelKind.DEFAULT_BWD, KernelKind.CALC_STATS])
    if atomics:
        kinds.extend([KernelKind.REDUCE_AUX_INIT, KernelKind.REDUCE_AUX_FINALIZE])
    else:
        kinds.append(KernelKind.REDUCE_STATS_BWD)
    return kinds


def invocation_count(workload: WorkloadDescriptor,
                     candidate: CandidateConfiguration,
                     kind: KernelKind) -> int:
    """How many times the kernel is launched for one execution"""
    if workload.is_backward:
        return 1

    stats = workload.calculate_stats
    atomics = candidate.use_fused_atomics_reduction
    if kind == KernelKind.DEFAULT_FWD:
        return 1
    if kind in (KernelKind.CALC_MEAN, KernelKind.CALC_VAR, KernelKind.CALC_MEAN_VAR):
        return 1 if stats else 0
    if kind in (KernelKind.REDUCE_STATS_FWD, KernelKind.REUSABLE_REDUCE_STATS_FWD):
        # mean and variance are reduced by separate launches
        return 2 if stats and not atomics else 0
    if kind == KernelKind.REDUCE_MEAN_VAR:
        return 1 if stats and not atomics else 0
    if kind == KernelKind.REDUCE_AUX_INIT:
        return 1 if stats and atomics else 0
    if kind == KernelKind.REDUCE_AUX_FINALIZE:
        if not (stats and atomics):
            return 0
        return 1 if workload.use_stats_one_pass else 2
    raise ModelLookupError(f"{kind.value} is not a forward kernel")


# =============================================================================
# BYTE VOLUMES
# =============================================================================

@dataclass(frozen=True)
class _Sizes:
    """Shared size terms of the byte volume formulas"""
    T: int
    S: int
    B: int
    R: int
    W: int
    num_wgs: int
    atomics: bool

    @classmethod
    def of(cls, workload: WorkloadDescriptor, candidate: CandidateConfiguration,
           num_wgs: int) -> '_Sizes':
        return cls(
            T=workload.tensor_bytes,
            S=workload.ic * STAT_ELEMENT_BYTES,
            B=div_up(workload.sp, candidate.stat_sp_block),
            R=round_up(workload.ic, workload.sub_group_size) * STAT_ELEMENT_BYTES,
            W=workload.sp * workload.ic,
            num_wgs=num_wgs,
            atomics=candidate.use_fused_atomics_reduction,
        )

    def partials(self, count: int) -> int:
        """Partial statistics written by a statistics kernel"""
        if self.atomics:
            return count * self.S * self.num_wgs
        return count * self.B * self.R


_VolumeFn = Callable[[WorkloadDescriptor, _Sizes], int]

_INPUT_BYTES: Dict[KernelKind, _VolumeFn] = {
    KernelKind.CALC_MEAN: lambda w, s: s.T,
    KernelKind.CALC_VAR: lambda w, s: s.T + s.S * s.B,
    KernelKind.CALC_MEAN_VAR: lambda w, s: s.T,
    KernelKind.CALC_STATS: lambda w, s: (
        2 * s.T + s.S * s.B + int(w.fuse_norm_relu) * s.W),
    KernelKind.REDUCE_STATS_FWD: lambda w, s: s.B * s.R,
    KernelKind.REUSABLE_REDUCE_STATS_FWD: lambda w, s: s.B * s.R,
    KernelKind.REDUCE_MEAN_VAR: lambda w, s: 2 * s.B * s.R,
    KernelKind.REDUCE_STATS_BWD: lambda w, s: 2 * s.B * s.R,
    KernelKind.REDUCE_AUX_INIT: lambda w, s: 0,
    KernelKind.REDUCE_AUX_FINALIZE: lambda w, s: (
        s.S * (2 if w.is_backward or w.use_stats_one_pass else 1)),
    KernelKind.DEFAULT_FWD: lambda w, s: (
        (int(w.fuse_norm_add_relu) + 1) * s.T
        + (int(w.use_scale) + int(w.use_shift) + 2) * s.S),
    KernelKind.DEFAULT_BWD: lambda w, s: (
        2 * s.T
        + (1 + 3 * int(w.calculate_diff_stats) + int(w.use_scale)) * s.S
        + int(w.fuse_norm_relu) * s.W),
}

_OUTPUT_BYTES: Dict[KernelKind, _VolumeFn] = {
    KernelKind.CALC_MEAN: lambda w, s: s.partials(1),
    KernelKind.CALC_VAR: lambda w, s: s.partials(1),
    KernelKind.CALC_MEAN_VAR: lambda w, s: s.partials(2),
    KernelKind.CALC_STATS: lambda w, s: s.partials(2),
    KernelKind.REDUCE_STATS_FWD: lambda w, s: s.S,
    KernelKind.REUSABLE_REDUCE_STATS_FWD: lambda w, s: s.S,
    KernelKind.REDUCE_MEAN_VAR: lambda w, s: 2 * s.S,
    KernelKind.REDUCE_STATS_BWD: lambda w, s: 2 * s.S,
    KernelKind.REDUCE_AUX_INIT: lambda w, s: 2 * s.S,
    KernelKind.REDUCE_AUX_FINALIZE: lambda w, s: (
        s.S * (2 if w.is_forward and w.use_stats_one_pass else 1)),
    KernelKind.DEFAULT_FWD: lambda w, s: s.T,
    KernelKind.DEFAULT_BWD: lambda w, s: (1 + int(w.fuse_norm_add_relu)) * s.T,
}

require_total(_INPUT_BYTES, "input volume table")
require_total(_OUTPUT_BYTES, "output volume table")


def input_bytes(workload: WorkloadDescriptor, candidate: CandidateConfiguration,
                kind: KernelKind, num_wgs: int = 1) -> int:
    try:
        fn = _INPUT_BYTES[kind]
    except KeyError:
        raise ModelLookupError(f"No input volume formula for {kind}") from None
    return fn(workload, _Sizes.of(workload, candidate, num_wgs))


def output_bytes(workload: WorkloadDescriptor, candidate: CandidateConfiguration,
                 kind: KernelKind, num_wgs: int = 1) -> int:
    try:
        fn = _OUTPUT_BYTES[kind]
    except KeyError:
        raise ModelLookupError(f"No output volume formula for {kind}") from None
    return fn(workload, _Sizes.of(workload, candidate, num_wgs))


def decompose(
    workload: WorkloadDescriptor,
    candidate: CandidateConfiguration,
    variant: Optional[KernelVariant] = None,
    occupancy: Optional[Dict[KernelKind, Occupancy]] = None,
) -> List[KernelDescriptor]:
    """
    Kernel descriptors of the workload under the candidate.

    Args:
        workload: Workload being planned
        candidate: Configuration being evaluated
        variant: Kernel implementation variant (default: the workload's)
        occupancy: Launch occupancy per kernel kind; kinds without an entry
            get a single fully utilized work-group

    Returns:
        Descriptors in launch order, without placement or time
    """
    variant = variant or workload.variant
    occupancy = occupancy or {}

    descriptors = []
    for kind in kernel_kinds(workload, candidate):
        occ = occupancy.get(kind, Occupancy())
        sizes = _Sizes.of(workload, candidate, occ.num_wgs)
        descriptors.append(KernelDescriptor(
            kind=kind,
            ncalls=invocation_count(workload, candidate, kind),
            input_nbytes=_INPUT_BYTES[kind](workload, sizes),
            output_nbytes=_OUTPUT_BYTES[kind](workload, sizes),
            variant=variant,
            occupancy=occ,
        ))
    return descriptors
