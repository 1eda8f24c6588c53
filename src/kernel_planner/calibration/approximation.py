"""
Approximation Tables

Calibrated curves describing how achieved memory throughput depends on
thread utilization. Each entry is a two-parameter curve

    linear: y = a * x + b
    ln:     y = a * ln(x) + b

keyed by (slice-utilization bucket, dtype class, memory operation, kernel
variant, memory tier). Tables are static data loaded from versioned YAML files
under calibration/data/ and are read-only once loaded.

Usage:
    from kernel_planner.calibration.approximation import load_table

    table = load_table("nhwc_bnorm_v1")
    factor = table.thread_factor(slice_util=0.5, thread_util=4.0,
                                 data_type=DataType.F32, op=MemOperation.READ,
                                 variant=KernelVariant.REUSABLE,
                                 tier=MemoryTier.SLOW)
"""

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import yaml

from ..core.errors import ModelLookupError
from ..core.structures import DataType, KernelVariant, MemOperation, MemoryTier


TABLES_DIR = Path(__file__).parent / "data"
DEFAULT_TABLE = "nhwc_bnorm_v1"

WIDE = "wide"
NARROW = "narrow"
DTYPE_CLASSES = (WIDE, NARROW)

# Smallest x fed to a logarithmic curve
MIN_LN_ARGUMENT = 1e-3


def dtype_class(data_type: DataType) -> str:
    return NARROW if data_type.is_narrow else WIDE


class ApproximationAlg(Enum):
    """Curve family of an approximation entry"""
    LINEAR = "linear"
    LN = "ln"


@dataclass(frozen=True)
class ApproximationEntry:
    """Two-parameter throughput curve"""
    a: float
    b: float
    alg: ApproximationAlg

    def evaluate(self, x: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        x = np.asarray(x, dtype=float)
        if self.alg == ApproximationAlg.LINEAR:
            y = self.a * x + self.b
        elif self.alg == ApproximationAlg.LN:
            y = self.a * np.log(np.maximum(x, MIN_LN_ARGUMENT)) + self.b
        else:
            raise ModelLookupError(f"Unexpected approximation alg: {self.alg}")
        return float(y) if y.ndim == 0 else y

    def to_list(self) -> List[Any]:
        return [self.a, self.b, self.alg.value]

    @classmethod
    def from_list(cls, data: List[Any]) -> 'ApproximationEntry':
        a, b, alg = data
        return cls(a=float(a), b=float(b), alg=ApproximationAlg(alg))


# (bucket, dtype class, operation, variant, tier)
ApproximationKey = Tuple[int, str, MemOperation, KernelVariant, MemoryTier]


def bucket_index(value: float, breakpoints) -> int:
    """Index of the first breakpoint >= value, else the last index"""
    for i, bp in enumerate(breakpoints):
        if value <= bp:
            return i
    return len(breakpoints) - 1


# =============================================================================
# CLOSED-FORM CURVES
# =============================================================================

def solve_2p_line(x: float, xa: float, xb: float, ya: float, yb: float) -> float:
    """y on the line through (xa, ya) and (xb, yb)"""
    dx = xb - xa
    if dx == 0:
        raise ModelLookupError(f"Degenerate line through x={xa}")
    return (yb - ya) / dx * (x - xa) + ya


def solve_two_piece_linear(x: float, x0: float, x1: float, x2: float,
                           y0: float, y1: float, y2: float) -> float:
    """Two connected segments (x0,y0)-(x1,y1)-(x2,y2)"""
    if x < x1:
        return solve_2p_line(x, x0, x1, y0, y1)
    return solve_2p_line(x, x1, x2, y1, y2)


# =============================================================================
# TABLE
# =============================================================================

class ApproximationTable:
    """
    Immutable, total lookup table of approximation entries.

    Every combination of bucket, dtype class, operation, variant and tier must
    be present; an incomplete table is rejected at construction.
    """

    def __init__(
        self,
        name: str,
        entries: Dict[ApproximationKey, ApproximationEntry],
        breakpoints: Tuple[float, ...] = (0.125, 0.25, 1.0, 2.0, 4.0, 8.0),
        max_slice_util: float = 8.0,
        max_thread_util: float = 32.0,
        min_curve_ratio: float = 1.0 / 64,
    ):
        self.name = name
        self.breakpoints = tuple(float(bp) for bp in breakpoints)
        self.max_slice_util = float(max_slice_util)
        self.max_thread_util = float(max_thread_util)
        self.min_curve_ratio = float(min_curve_ratio)
        self._entries = dict(entries)

        missing = [key for key in self.keys() if key not in self._entries]
        if missing:
            raise ModelLookupError(
                f"Approximation table '{name}' is missing {len(missing)} entries, "
                f"first: {_format_key(missing[0])}")

    def keys(self) -> List[ApproximationKey]:
        """All keys in storage order (tier, variant, op, dtype class, bucket)"""
        keys = []
        for tier in (MemoryTier.SLOW, MemoryTier.FAST):
            for variant in (KernelVariant.REUSABLE, KernelVariant.OPTIMIZED):
                for op in (MemOperation.READ, MemOperation.WRITE):
                    for dt_class in DTYPE_CLASSES:
                        for bucket in range(len(self.breakpoints)):
                            keys.append((bucket, dt_class, op, variant, tier))
        return keys

    def __len__(self) -> int:
        return len(self._entries)

    def bucket(self, slice_util: float) -> int:
        return bucket_index(slice_util, self.breakpoints)

    def index(self, slice_util: float, data_type: DataType, op: MemOperation,
              variant: KernelVariant, tier: MemoryTier) -> int:
        """Flat position of the entry in storage order"""
        key = (self.bucket(slice_util), dtype_class(data_type), op, variant, tier)
        return self.keys().index(key)

    def entry(self, slice_util: float, data_type: DataType, op: MemOperation,
              variant: KernelVariant, tier: MemoryTier) -> ApproximationEntry:
        key = (self.bucket(slice_util), dtype_class(data_type), op, variant, tier)
        try:
            return self._entries[key]
        except KeyError:
            raise ModelLookupError(f"No approximation entry for {_format_key(key)}") from None

    def thread_factor(self, slice_util: float, thread_util: float,
                      data_type: DataType, op: MemOperation,
                      variant: KernelVariant, tier: MemoryTier) -> float:
        """
        Time multiplier for a thread utilization: y(max) / y(x).

        Slice and thread utilization are capped at the table limits; y is
        floored at min_curve_ratio * y(max) so the factor stays finite.
        """
        slice_adj = min(slice_util, self.max_slice_util)
        thread_adj = min(thread_util, self.max_thread_util)
        entry = self.entry(slice_adj, data_type, op, variant, tier)

        y_max = entry.evaluate(self.max_thread_util)
        if not y_max > 0:
            raise ModelLookupError(
                f"Approximation curve {entry} is not positive at x={self.max_thread_util}")
        y = max(entry.evaluate(thread_adj), self.min_curve_ratio * y_max)
        return y_max / y

    def with_entry(self, key: ApproximationKey, entry: ApproximationEntry) -> 'ApproximationTable':
        """Copy of the table with one entry replaced"""
        if key not in self._entries:
            raise ModelLookupError(f"Unknown approximation key {_format_key(key)}")
        entries = dict(self._entries)
        entries[key] = entry
        return ApproximationTable(
            name=self.name,
            entries=entries,
            breakpoints=self.breakpoints,
            max_slice_util=self.max_slice_util,
            max_thread_util=self.max_thread_util,
            min_curve_ratio=self.min_curve_ratio,
        )

    def __getitem__(self, key: ApproximationKey) -> ApproximationEntry:
        return self._entries[key]

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        groups = []
        n_buckets = len(self.breakpoints)
        keys = self.keys()
        for start in range(0, len(keys), n_buckets):
            _, dt_class, op, variant, tier = keys[start]
            groups.append({
                'tier': tier.value,
                'variant': variant.value,
                'operation': op.value,
                'dtype_class': dt_class,
                'entries': [self._entries[k].to_list() for k in keys[start:start + n_buckets]],
            })
        return {
            'name': self.name,
            'slice_util_breakpoints': list(self.breakpoints),
            'max_slice_util': self.max_slice_util,
            'max_thread_util': self.max_thread_util,
            'min_curve_ratio': self.min_curve_ratio,
            'groups': groups,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApproximationTable':
        breakpoints = tuple(data.get('slice_util_breakpoints', (0.125, 0.25, 1, 2, 4, 8)))
        entries = {}
        for group in data.get('groups', []):
            try:
                tier = MemoryTier(group['tier'])
                variant = KernelVariant(group['variant'])
                op = MemOperation(group['operation'])
                dt_class = group['dtype_class']
                rows = group['entries']
            except (KeyError, ValueError) as e:
                raise ModelLookupError(f"Malformed approximation group: {e}") from e
            if dt_class not in DTYPE_CLASSES:
                raise ModelLookupError(f"Unknown dtype class '{dt_class}'")
            if len(rows) != len(breakpoints):
                raise ModelLookupError(
                    f"Group {tier.value}/{variant.value}/{op.value}/{dt_class} has "
                    f"{len(rows)} entries, expected {len(breakpoints)}")
            for bucket, row in enumerate(rows):
                entries[(bucket, dt_class, op, variant, tier)] = ApproximationEntry.from_list(row)

        kwargs = {}
        for name in ('max_slice_util', 'max_thread_util', 'min_curve_ratio'):
            if name in data:
                kwargs[name] = data[name]
        return cls(name=data.get('name', 'unnamed'), entries=entries,
                   breakpoints=breakpoints, **kwargs)


def _format_key(key: ApproximationKey) -> str:
    bucket, dt_class, op, variant, tier = key
    return f"bucket={bucket} dtype={dt_class} op={op.value} variant={variant.value} tier={tier.value}"


# =============================================================================
# LOADING
# =============================================================================

_table_cache: Dict[str, ApproximationTable] = {}
_table_lock = threading.Lock()


def list_tables() -> List[str]:
    """Names of the bundled table versions"""
    return sorted(p.stem for p in TABLES_DIR.glob("*.yaml"))


def resolve_table_path(name_or_path: str) -> Path:
    path = Path(name_or_path)
    if path.suffix in ('.yaml', '.yml') and path.exists():
        return path
    bundled = TABLES_DIR / f"{name_or_path}.yaml"
    if bundled.exists():
        return bundled
    raise ModelLookupError(
        f"Unknown cost model '{name_or_path}'. Available: {', '.join(list_tables())}")


def load_table(name_or_path: Optional[str] = None) -> ApproximationTable:
    """
    Load a table by bundled version name or YAML path.

    Tables are cached per resolved path and shared between sessions; they are
    never mutated after loading.
    """
    path = resolve_table_path(name_or_path or DEFAULT_TABLE)
    cache_key = str(path.resolve())
    with _table_lock:
        table = _table_cache.get(cache_key)
        if table is None:
            with open(path, 'r') as f:
                try:
                    data = yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise ModelLookupError(
                        f"Approximation table {path} is not valid YAML: {e}") from e
            if not isinstance(data, dict):
                raise ModelLookupError(f"Approximation table {path} is empty or malformed")
            table = ApproximationTable.from_dict(data)
            _table_cache[cache_key] = table
    return table


def save_table(table: ApproximationTable, path: Union[str, Path]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.safe_dump(table.to_dict(), f, sort_keys=False)

