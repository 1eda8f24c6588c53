"""
Calibration data for the cost model: approximation tables and curve refitting.
"""

from .approximation import (
    ApproximationAlg,
    ApproximationEntry,
    ApproximationTable,
    ApproximationKey,
    DEFAULT_TABLE,
    NARROW,
    WIDE,
    bucket_index,
    dtype_class,
    list_tables,
    load_table,
    save_table,
    solve_2p_line,
    solve_two_piece_linear,
)
from .fitting import CurveFitResult, fit_approximation_entry

__all__ = [
    'ApproximationAlg',
    'ApproximationEntry',
    'ApproximationTable',
    'ApproximationKey',
    'DEFAULT_TABLE',
    'NARROW',
    'WIDE',
    'bucket_index',
    'dtype_class',
    'list_tables',
    'load_table',
    'save_table',
    'solve_2p_line',
    'solve_two_piece_linear',
    'CurveFitResult',
    'fit_approximation_entry',
]
