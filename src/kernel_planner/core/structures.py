"""
Data structures for kernel configuration planning.

This module defines the hardware-independent types shared by every stage of
the planner:
- WorkloadDescriptor: normalized parameters of one normalization operator
- CandidateConfiguration: one concrete choice of execution parameters
- KernelDescriptor: one elementary kernel launch of a decomposed workload
- Occupancy: hardware utilization figures of one launch
"""

from dataclasses import dataclass, field, replace, asdict
from typing import Any, Dict, Optional, Tuple
from enum import Enum

from .errors import ModelLookupError, PlanningError


class DataType(Enum):
    """Tensor element types supported by the normalization kernels"""
    F32 = "f32"
    F16 = "f16"
    BF16 = "bf16"
    S8 = "s8"

    @property
    def size(self) -> int:
        """Element width in bytes"""
        return _DATA_TYPE_SIZES[self]

    @property
    def is_narrow(self) -> bool:
        """16-bit floating point types share their own model curves"""
        return self in (DataType.F16, DataType.BF16)


_DATA_TYPE_SIZES = {
    DataType.F32: 4,
    DataType.F16: 2,
    DataType.BF16: 2,
    DataType.S8: 1,
}


class KernelVariant(Enum):
    """Implementation class of the normalization kernels.

    The reusable kernels are generic and modeled through the calibrated
    approximation tables; the optimized kernels use closed-form curves.
    """
    REUSABLE = "reusable"
    OPTIMIZED = "optimized"


class ReductionStrategy(Enum):
    """How per-block statistics are combined into per-channel statistics"""
    TWO_PASS = "two_pass"  # separate reduction kernel(s)
    ATOMICS = "atomics"    # fused atomic accumulation + aux init/finalize


class MemoryTier(Enum):
    """Level of the memory hierarchy an operand is expected to live in"""
    FAST = "L3"
    SLOW = "HBM"


class MemOperation(Enum):
    READ = "read"
    WRITE = "write"


class KernelRole(Enum):
    """Elementary role of a kernel in the decomposed sequence"""
    COMPUTE_STATISTIC = "compute-statistic"
    COMBINED_STATISTIC = "combined-statistic"
    REDUCE_STATISTIC = "reduce-statistic"
    AUXILIARY_INIT = "auxiliary-init"
    AUXILIARY_FINALIZE = "auxiliary-finalize"
    DEFAULT_FORWARD = "default-forward"
    DEFAULT_BACKWARD = "default-backward"


class KernelKind(Enum):
    """Closed set of kernels a normalization workload decomposes into"""
    CALC_MEAN = "calc_mean"
    CALC_VAR = "calc_var"
    CALC_MEAN_VAR = "calc_mean_var"
    CALC_STATS = "calc_stat"
    REDUCE_STATS_FWD = "reduce_stats_fwd"
    REUSABLE_REDUCE_STATS_FWD = "reusable_reduce_stats_fwd"
    REDUCE_MEAN_VAR = "reduce_mean_var"
    REDUCE_STATS_BWD = "reduce_stats_bwd"
    REDUCE_AUX_INIT = "reduce_aux_init"
    REDUCE_AUX_FINALIZE = "reduce_aux_finalize"
    DEFAULT_FWD = "default_fwd"
    DEFAULT_BWD = "default_bwd"

    @property
    def role(self) -> KernelRole:
        return KERNEL_ROLES[self]

    @property
    def is_reduction(self) -> bool:
        """Two-pass reduction kernels (they have their own vector width)"""
        return self.role == KernelRole.REDUCE_STATISTIC

    @property
    def is_statistic(self) -> bool:
        """Kernels that accumulate statistics (atomics are issued here)"""
        return self.role in (KernelRole.COMPUTE_STATISTIC,
                             KernelRole.COMBINED_STATISTIC)


KERNEL_ROLES: Dict[KernelKind, KernelRole] = {
    KernelKind.CALC_MEAN: KernelRole.COMPUTE_STATISTIC,
    KernelKind.CALC_VAR: KernelRole.COMPUTE_STATISTIC,
    KernelKind.CALC_MEAN_VAR: KernelRole.COMBINED_STATISTIC,
    KernelKind.CALC_STATS: KernelRole.COMBINED_STATISTIC,
    KernelKind.REDUCE_STATS_FWD: KernelRole.REDUCE_STATISTIC,
    KernelKind.REUSABLE_REDUCE_STATS_FWD: KernelRole.REDUCE_STATISTIC,
    KernelKind.REDUCE_MEAN_VAR: KernelRole.REDUCE_STATISTIC,
    KernelKind.REDUCE_STATS_BWD: KernelRole.REDUCE_STATISTIC,
    KernelKind.REDUCE_AUX_INIT: KernelRole.AUXILIARY_INIT,
    KernelKind.REDUCE_AUX_FINALIZE: KernelRole.AUXILIARY_FINALIZE,
    KernelKind.DEFAULT_FWD: KernelRole.DEFAULT_FORWARD,
    KernelKind.DEFAULT_BWD: KernelRole.DEFAULT_BACKWARD,
}

def require_total(table: Dict[KernelKind, Any], what: str):
    """Raise unless every kernel kind has an entry in the table"""
    missing = [k.value for k in KernelKind if k not in table]
    if missing:
        raise ModelLookupError(f"{what} has no entry for: {', '.join(missing)}")


require_total(KERNEL_ROLES, "kernel role table")


# =============================================================================
# WORKLOAD
# =============================================================================

@dataclass(frozen=True)
class Tunable:
    """A tunable workload parameter and whether the caller fixed it.

    A pinned value is a hard constraint: the planner never replaces it.
    """
    value: Any = None
    pinned: bool = False

    def __str__(self) -> str:
        suffix = " (pinned)" if self.pinned else ""
        return f"{self.value}{suffix}"


# Tunable fields in the order they are reported
TUNABLE_FIELDS: Tuple[str, ...] = (
    'use_fused_atomics_reduction',
    'max_vect_size',
    'ic_block',
    'stat_sp_block',
    'update_sp_block',
    'update_sp_unroll',
)

DEFAULT_SUB_GROUP_SIZE = 16
DEFAULT_MAX_VECT_SIZE = 8


@dataclass(frozen=True)
class WorkloadDescriptor:
    """
    Normalized, engine-independent description of one batch normalization
    instance on an NHWC tensor.

    Spatial extent `sp` is the product of all non-channel dimensions
    (MB * D * H * W). The planner only reads the non-tunable fields and only
    writes the unpinned tunables plus the derived outputs at the bottom.
    """

    # Problem
    ic: int
    sp: int
    data_type: DataType = DataType.F32
    is_forward: bool = True
    sub_group_size: int = DEFAULT_SUB_GROUP_SIZE

    # Mode flags
    calculate_stats: bool = True
    use_stats_one_pass: bool = False
    fuse_norm_relu: bool = False
    fuse_norm_add_relu: bool = False
    use_scale: bool = False
    use_shift: bool = False
    calculate_diff_stats: bool = True
    deterministic: bool = False
    variant: KernelVariant = KernelVariant.OPTIMIZED
    max_ic_block: Optional[int] = None

    # Tunables
    use_fused_atomics_reduction: Tunable = field(default_factory=Tunable)
    max_vect_size: Tunable = field(default_factory=lambda: Tunable(DEFAULT_MAX_VECT_SIZE))
    ic_block: Tunable = field(default_factory=Tunable)
    stat_sp_block: Tunable = field(default_factory=Tunable)
    update_sp_block: Tunable = field(default_factory=Tunable)
    update_sp_unroll: Tunable = field(default_factory=Tunable)

    # Derived outputs (set by the planner)
    vect_size: Optional[int] = None
    calc_stat_ic: Optional[int] = None
    expected_time_ms: Optional[float] = None
    found_in_table: bool = False

    def __post_init__(self):
        """Validate workload descriptor"""
        if self.ic <= 0 or self.sp <= 0:
            raise ValueError(f"ic and sp must be positive, got ic={self.ic} sp={self.sp}")
        if self.sub_group_size <= 0:
            raise ValueError(f"sub_group_size must be positive, got {self.sub_group_size}")
        for name in TUNABLE_FIELDS:
            if not isinstance(getattr(self, name), Tunable):
                raise TypeError(f"{name} must be a Tunable")

    @property
    def is_backward(self) -> bool:
        return not self.is_forward

    @property
    def elsz(self) -> int:
        """Element size in bytes"""
        return self.data_type.size

    @property
    def tensor_bytes(self) -> int:
        return self.sp * self.ic * self.elsz

    def value(self, name: str) -> Any:
        """Current value of a tunable field"""
        return getattr(self, name).value

    def is_pinned(self, name: str) -> bool:
        return getattr(self, name).pinned

    def pinned_fields(self) -> Dict[str, Any]:
        """Mapping of pinned tunable names to their values"""
        return {name: self.value(name) for name in TUNABLE_FIELDS if self.is_pinned(name)}

    def with_pinned(self, **values) -> 'WorkloadDescriptor':
        """Return a copy with the given tunables pinned to caller values"""
        updates = {}
        for name, val in values.items():
            if name not in TUNABLE_FIELDS:
                raise KeyError(f"Unknown tunable field: {name}")
            updates[name] = Tunable(val, pinned=True)
        return replace(self, **updates)

    def with_tunables(self, **values) -> 'WorkloadDescriptor':
        """Return a copy with unpinned tunables set; pinned ones are kept."""
        updates = {}
        for name, val in values.items():
            if name not in TUNABLE_FIELDS:
                raise KeyError(f"Unknown tunable field: {name}")
            if not self.is_pinned(name):
                updates[name] = Tunable(val, pinned=False)
        return replace(self, **updates)

    def with_outputs(self, **values) -> 'WorkloadDescriptor':
        """Return a copy with derived output fields set"""
        return replace(self, **values)

    def shape_class(self) -> str:
        """
        Canonical registry key of this workload.

        Covers every field that changes the search space; pinned tunables are
        appended so constrained searches never shadow unconstrained ones.
        """
        parts = [
            "fwd" if self.is_forward else "bwd",
            self.data_type.value,
            f"ic{self.ic}",
            f"sp{self.sp}",
            f"sg{self.sub_group_size}",
            self.variant.value,
        ]
        flags = [
            ('stats', self.calculate_stats),
            ('one_pass', self.use_stats_one_pass),
            ('relu', self.fuse_norm_relu),
            ('add_relu', self.fuse_norm_add_relu),
            ('scale', self.use_scale),
            ('shift', self.use_shift),
            ('diff_stats', self.calculate_diff_stats),
            ('det', self.deterministic),
        ]
        parts.extend(f"{name}{int(flag)}" for name, flag in flags)
        if self.max_ic_block is not None:
            parts.append(f"max_ic_block{self.max_ic_block}")
        pinned = self.pinned_fields()
        for name in sorted(pinned):
            parts.append(f"{name}={_format_value(pinned[name])}")
        return ":".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = {}
        for key, val in asdict(self).items():
            if isinstance(val, Enum):
                val = val.value
            data[key] = val
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkloadDescriptor':
        """Create from dictionary"""
        data = dict(data)
        if 'data_type' in data:
            data['data_type'] = DataType(data['data_type'])
        if 'variant' in data:
            data['variant'] = KernelVariant(data['variant'])
        for name in TUNABLE_FIELDS:
            if name in data and isinstance(data[name], dict):
                data[name] = Tunable(**data[name])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def _format_value(val: Any) -> str:
    if isinstance(val, bool):
        return str(int(val))
    return str(val)


# =============================================================================
# CANDIDATE CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class CandidateConfiguration:
    """
    One point of the configuration search space.

    Reduction strategies are exclusive: a candidate is either two-pass or
    atomics based, never a mix.
    """
    reduction: ReductionStrategy
    ic_block: int
    stat_sp_block: int
    update_sp_block: int
    vect_size: int
    update_sp_unroll: int = 1

    @property
    def use_fused_atomics_reduction(self) -> bool:
        return self.reduction == ReductionStrategy.ATOMICS

    def tunable_values(self) -> Dict[str, Any]:
        """Values this candidate assigns to the workload tunables"""
        return {
            'use_fused_atomics_reduction': self.use_fused_atomics_reduction,
            'ic_block': self.ic_block,
            'stat_sp_block': self.stat_sp_block,
            'update_sp_block': self.update_sp_block,
            'update_sp_unroll': self.update_sp_unroll,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reduction': self.reduction.value,
            'ic_block': self.ic_block,
            'stat_sp_block': self.stat_sp_block,
            'update_sp_block': self.update_sp_block,
            'vect_size': self.vect_size,
            'update_sp_unroll': self.update_sp_unroll,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CandidateConfiguration':
        data = dict(data)
        data['reduction'] = ReductionStrategy(data['reduction'])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def __str__(self) -> str:
        return (f"{self.reduction.value}:ic_block={self.ic_block}"
                f":sp_block={self.stat_sp_block}/{self.update_sp_block}"
                f":vect={self.vect_size}:unroll={self.update_sp_unroll}")


@dataclass(frozen=True)
class CandidateBuilder:
    """
    Immutable builder for CandidateConfiguration.

    Each `with_*` call returns a new builder; `build()` produces a fully
    formed candidate in one step or fails if a field is missing.
    """
    reduction: Optional[ReductionStrategy] = None
    ic_block: Optional[int] = None
    stat_sp_block: Optional[int] = None
    update_sp_block: Optional[int] = None
    vect_size: Optional[int] = None
    update_sp_unroll: int = 1

    def with_reduction(self, reduction: ReductionStrategy) -> 'CandidateBuilder':
        return replace(self, reduction=reduction)

    def with_ic_block(self, ic_block: int) -> 'CandidateBuilder':
        return replace(self, ic_block=ic_block)

    def with_spatial_blocks(self, stat_sp_block: int,
                            update_sp_block: Optional[int] = None) -> 'CandidateBuilder':
        if update_sp_block is None:
            update_sp_block = stat_sp_block
        return replace(self, stat_sp_block=stat_sp_block, update_sp_block=update_sp_block)

    def with_vect_size(self, vect_size: int) -> 'CandidateBuilder':
        return replace(self, vect_size=vect_size)

    def with_unroll(self, update_sp_unroll: int) -> 'CandidateBuilder':
        return replace(self, update_sp_unroll=update_sp_unroll)

    def build(self) -> CandidateConfiguration:
        missing = [name for name in ('reduction', 'ic_block', 'stat_sp_block',
                                     'update_sp_block', 'vect_size')
                   if getattr(self, name) is None]
        if missing:
            raise PlanningError(f"Incomplete candidate, missing: {', '.join(missing)}")
        for name in ('ic_block', 'stat_sp_block', 'update_sp_block',
                     'vect_size', 'update_sp_unroll'):
            if getattr(self, name) <= 0:
                raise PlanningError(f"Candidate {name} must be positive, got {getattr(self, name)}")
        return CandidateConfiguration(
            reduction=self.reduction,
            ic_block=self.ic_block,
            stat_sp_block=self.stat_sp_block,
            update_sp_block=self.update_sp_block,
            vect_size=self.vect_size,
            update_sp_unroll=self.update_sp_unroll,
        )


# =============================================================================
# KERNEL DESCRIPTORS
# =============================================================================

@dataclass(frozen=True)
class Occupancy:
    """Hardware utilization of one kernel launch"""
    num_wgs: int = 1
    slice_util: float = 1.0   # used work-groups / sub-slices
    thread_util: float = 1.0  # generated threads / available thread slots


@dataclass(frozen=True)
class KernelDescriptor:
    """
    One elementary kernel of a decomposed workload.

    Invocation count and byte volumes are closed-form functions of the
    workload and candidate; tiers and time are filled by the cost estimator.
    """
    kind: KernelKind
    ncalls: int
    input_nbytes: int
    output_nbytes: int
    variant: KernelVariant = KernelVariant.OPTIMIZED
    occupancy: Occupancy = field(default_factory=Occupancy)
    input_tier: MemoryTier = MemoryTier.SLOW
    output_tier: MemoryTier = MemoryTier.SLOW
    time_ns: Optional[float] = None

    def __post_init__(self):
        if self.ncalls < 0:
            raise ValueError(f"ncalls must be non-negative, got {self.ncalls}")
        if self.input_nbytes < 0 or self.output_nbytes < 0:
            raise ValueError("byte volumes must be non-negative")

    def total_ns(self, host_overhead_ns: float) -> float:
        """Contribution of this kernel to the workload time"""
        if self.time_ns is None:
            raise ValueError(f"{self.kind.value} has not been estimated")
        return self.ncalls * (self.time_ns + host_overhead_ns)

    def __str__(self) -> str:
        time = f"{self.time_ns:.1f}ns" if self.time_ns is not None else "n/a"
        return (f"{self.kind.value} x{self.ncalls}: "
                f"bytes={self.input_nbytes}/{self.output_nbytes} "
                f"location={self.input_tier.value}/{self.output_tier.value} "
                f"wgs={self.occupancy.num_wgs} "
                f"ss_util={self.occupancy.slice_util:.3g} "
                f"thr_util={self.occupancy.thread_util:.3g} "
                f"time={time}")

