"""
Candidate Generation

Enumerates the configuration search space of an NHWC normalization workload:
channel blocks that divide the channel count, each with a spatial block sized
for good thread-wave efficiency, a vector width, and one candidate per
reduction strategy the hardware allows.

Pinned tunables of the workload are hard constraints on the generated set.
"""

from typing import List, Optional

from ..core.dims import calc_stat_ic, div_up, round_up
from ..core.errors import PlanningError
from ..core.structures import (
    CandidateBuilder,
    CandidateConfiguration,
    ReductionStrategy,
    WorkloadDescriptor,
)
from ..hardware.profile import HardwareProfile


# Upper bound of the thread-count multiplier in the spatial block search
MAX_THREAD_MULTIPLIER = 32


def vector_width(ic: int, max_vect_size: int, simd: int) -> int:
    """
    Largest power of two v <= max_vect_size such that one sub-group of simd
    lanes, each loading v channels, fits in ic at least once.

    >>> vector_width(256, 8, 16)
    8
    >>> vector_width(32, 8, 16)
    2
    """
    vect = 1
    while vect * 2 <= max_vect_size:
        vect *= 2
    while vect > 1:
        if ic // (vect * simd) > 0:
            return vect
        vect //= 2
    return 1


def spatial_block_size(sp: int, ic_dim: int, eu_count: int,
                       threads_per_eu: int, simd: int) -> int:
    """
    Spatial block size that maximizes thread-wave efficiency.

    Tries thread counts of 1..32 waves of EUs. Blocks whose thread count
    fills every EU exactly are preferred; among those (or among all trials,
    when none does) the one with the best thread efficiency wins, the
    earliest trial on ties.
    """
    ic_nsg = max(1, ic_dim // simd)
    thread_slots = eu_count * threads_per_eu

    best_thr_eff = 0.0
    best_thr_block = 1
    best_peak_eff = 0.0
    best_peak_block = 1

    for mul in range(1, MAX_THREAD_MULTIPLIER + 1):
        nthr = mul * eu_count
        block = div_up(sp * ic_nsg, nthr)
        nthr_gen = div_up(sp, block) * ic_nsg

        eff_eu = nthr_gen / round_up(nthr_gen, eu_count)
        eff_thr = nthr_gen / round_up(nthr_gen, thread_slots)

        if eff_thr > best_thr_eff:
            best_thr_eff = eff_thr
            best_thr_block = block
        if eff_eu == 1 and eff_thr > best_peak_eff:
            best_peak_eff = eff_thr
            best_peak_block = block

    if best_peak_eff > 0.0:
        return best_peak_block
    return best_thr_block


def channel_blocks(workload: WorkloadDescriptor) -> List[int]:
    """Multiples of the sub-group size that divide ic, capped by max_ic_block"""
    sg = workload.sub_group_size
    blocks = []
    ic_block = sg
    while ic_block <= workload.ic:
        if workload.max_ic_block is not None and ic_block > workload.max_ic_block:
            break
        if workload.ic % ic_block == 0:
            blocks.append(ic_block)
        ic_block += sg
    return blocks


def reduction_strategies(workload: WorkloadDescriptor,
                         hw: HardwareProfile) -> List[ReductionStrategy]:
    strategies = [ReductionStrategy.TWO_PASS]
    if hw.supports_atomics_reduction and not workload.deterministic:
        strategies.append(ReductionStrategy.ATOMICS)

    if workload.is_pinned('use_fused_atomics_reduction'):
        wanted = (ReductionStrategy.ATOMICS
                  if workload.value('use_fused_atomics_reduction')
                  else ReductionStrategy.TWO_PASS)
        strategies = [s for s in strategies if s == wanted]
    return strategies


def generate_candidates(workload: WorkloadDescriptor,
                        hw: HardwareProfile) -> List[CandidateConfiguration]:
    """
    Enumerate every legal configuration for the workload on the hardware.

    Raises:
        PlanningError: ic is not a multiple of the sub-group size, or the
            pinned tunables leave no legal configuration
    """
    sg = workload.sub_group_size
    if workload.ic % sg != 0:
        raise PlanningError(
            f"cannot plan: ic={workload.ic} is not a multiple of sub-group size {sg}")

    blocks = channel_blocks(workload)
    if workload.is_pinned('ic_block'):
        pinned_block = workload.value('ic_block')
        blocks = [b for b in blocks if b == pinned_block]

    strategies = reduction_strategies(workload, hw)
    max_vect = workload.value('max_vect_size')
    unroll = _pinned_or(workload, 'update_sp_unroll', 1)

    candidates = []
    for ic_block in blocks:
        stat_ic = calc_stat_ic(workload.ic, ic_block, sg)
        stat_sp_block = _pinned_or(workload, 'stat_sp_block', None)
        if stat_sp_block is None:
            stat_sp_block = spatial_block_size(
                workload.sp, stat_ic, hw.compute_unit_count, hw.threads_per_unit, sg)
        update_sp_block = _pinned_or(workload, 'update_sp_block', stat_sp_block)

        builder = (CandidateBuilder()
                   .with_ic_block(ic_block)
                   .with_spatial_blocks(stat_sp_block, update_sp_block)
                   .with_vect_size(vector_width(ic_block, max_vect, sg))
                   .with_unroll(unroll))
        for strategy in strategies:
            candidates.append(builder.with_reduction(strategy).build())

    if not candidates:
        pinned = workload.pinned_fields()
        raise PlanningError(
            f"cannot plan: no legal configuration for ic={workload.ic} "
            f"sp={workload.sp} on {hw.arch.value} with pinned {pinned or 'nothing'}")
    return candidates


def _pinned_or(workload: WorkloadDescriptor, name: str, default: Optional[int]):
    if workload.is_pinned(name):
        return workload.value(name)
    return default
