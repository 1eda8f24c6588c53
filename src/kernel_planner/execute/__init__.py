"""
Kernel executors: launch geometry and live measurement.

TorchProxyExecutor lives in execute.torch_executor and is imported on demand
so that model-only planning does not load PyTorch.
"""

from .executor import (
    AnalyticalExecutor,
    DeviceLocks,
    ExecutionConfig,
    KernelExecutor,
    LaunchGeometry,
    TimingStats,
    compute_stats,
)

__all__ = [
    'AnalyticalExecutor',
    'DeviceLocks',
    'ExecutionConfig',
    'KernelExecutor',
    'LaunchGeometry',
    'TimingStats',
    'compute_stats',
]
