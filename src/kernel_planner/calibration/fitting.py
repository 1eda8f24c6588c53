"""
Approximation Curve Fitting

Refits a two-parameter approximation curve from measured throughput samples,
for example after collecting new microbenchmark data on a device. The result
can replace an entry of a loaded table via ApproximationTable.with_entry()
and be written out with save_table().

This is an offline calibration tool: no planner mode calls it. Refitted tables
are selected at planning time with --model <path.yaml> or the `model` config key.

Usage:
    from kernel_planner.calibration.fitting import fit_approximation_entry

    entry, result = fit_approximation_entry(thread_utils, throughputs)
    if result.success:
        table = table.with_entry(key, entry)
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .approximation import ApproximationAlg, ApproximationEntry, MIN_LN_ARGUMENT


@dataclass
class CurveFitResult:
    """Result of fitting an approximation curve"""
    success: bool
    alg: ApproximationAlg
    parameters: Dict[str, float]
    r_squared: float
    rmse: float
    num_points: int
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'alg': self.alg.value,
            'parameters': self.parameters,
            'r_squared': self.r_squared,
            'rmse': self.rmse,
            'num_points': self.num_points,
            'message': self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CurveFitResult':
        data = data.copy()
        data['alg'] = ApproximationAlg(data['alg'])
        return cls(**data)


def _design_matrix(xs: np.ndarray, alg: ApproximationAlg) -> np.ndarray:
    if alg == ApproximationAlg.LN:
        xs = np.log(np.maximum(xs, MIN_LN_ARGUMENT))
    return np.column_stack([xs, np.ones_like(xs)])


def _fit_one(xs: np.ndarray, ys: np.ndarray,
             alg: ApproximationAlg) -> Tuple[ApproximationEntry, CurveFitResult]:
    coeffs, _, _, _ = np.linalg.lstsq(_design_matrix(xs, alg), ys, rcond=None)
    entry = ApproximationEntry(a=float(coeffs[0]), b=float(coeffs[1]), alg=alg)

    predictions = np.asarray(entry.evaluate(xs))
    residuals = ys - predictions
    ss_res = np.sum(residuals ** 2)
    ss_tot = np.sum((ys - np.mean(ys)) ** 2)

    r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0
    rmse = float(np.sqrt(np.mean(residuals ** 2)))

    return entry, CurveFitResult(
        success=True,
        alg=alg,
        parameters={'a': entry.a, 'b': entry.b},
        r_squared=float(max(0.0, r_squared)),
        rmse=rmse,
        num_points=len(xs),
        message="Fit successful",
    )


def fit_approximation_entry(
    xs,
    ys,
    alg: Optional[ApproximationAlg] = None,
) -> Tuple[Optional[ApproximationEntry], CurveFitResult]:
    """
    Least-squares fit of y = a*x + b or y = a*ln(x) + b.

    Args:
        xs: Thread utilization samples
        ys: Measured throughput at each sample
        alg: Curve family; None tries both and keeps the better R^2

    Returns:
        (entry, fit result). The entry is None when the fit failed.
    """
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)

    n = len(xs)
    if n < 2 or len(ys) != n:
        return None, CurveFitResult(
            success=False,
            alg=alg or ApproximationAlg.LINEAR,
            parameters={},
            r_squared=0.0,
            rmse=float('inf'),
            num_points=n,
            message="Insufficient data points (need >= 2 matching x/y samples)",
        )

    if alg is not None:
        return _fit_one(xs, ys, alg)

    best = None
    for candidate in (ApproximationAlg.LINEAR, ApproximationAlg.LN):
        entry, result = _fit_one(xs, ys, candidate)
        if best is None or result.r_squared > best[1].r_squared:
            best = (entry, result)
    return best
