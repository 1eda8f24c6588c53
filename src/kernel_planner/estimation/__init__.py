"""
Performance-model driven configuration search.

Pipeline: candidates -> decomposition -> cost_model -> selector.
"""

from .candidates import (
    channel_blocks,
    generate_candidates,
    reduction_strategies,
    spatial_block_size,
    vector_width,
)
from .decomposition import decompose, input_bytes, invocation_count, kernel_kinds, output_bytes
from .cost_model import (
    CostEstimator,
    slice_saturation_factor,
    vectorization_factor,
)
from .selector import (
    ConfigurationSelector,
    Evaluation,
    PlanResult,
    apply_unroll_guard,
    unroll_is_legal,
    write_back,
)

__all__ = [
    'channel_blocks',
    'generate_candidates',
    'reduction_strategies',
    'spatial_block_size',
    'vector_width',
    'decompose',
    'input_bytes',
    'invocation_count',
    'kernel_kinds',
    'output_bytes',
    'CostEstimator',
    'slice_saturation_factor',
    'vectorization_factor',
    'ConfigurationSelector',
    'Evaluation',
    'PlanResult',
    'apply_unroll_guard',
    'unroll_is_legal',
    'write_back',
]
