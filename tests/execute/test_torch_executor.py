"""
Tests for the PyTorch proxy executor (CPU).
"""

import pytest

from kernel_planner.core.structures import (
    CandidateConfiguration,
    KernelKind,
    ReductionStrategy,
    WorkloadDescriptor,
)
from kernel_planner.estimation.decomposition import decompose
from kernel_planner.execute.executor import AnalyticalExecutor, ExecutionConfig
from kernel_planner.execute.torch_executor import TorchProxyExecutor, resolve_device
from kernel_planner.hardware.device_query import PresetDeviceQuery
from kernel_planner.hardware.profile import HardwareProfile


@pytest.fixture
def hw():
    return HardwareProfile.from_device(PresetDeviceQuery("max_1550").query())


@pytest.fixture
def workload():
    return WorkloadDescriptor(ic=32, sp=64)


@pytest.fixture
def candidate():
    return CandidateConfiguration(ReductionStrategy.TWO_PASS, 32, 16, 16, 2)


@pytest.fixture
def executor():
    return TorchProxyExecutor(ExecutionConfig(warmup_iterations=1,
                                              measurement_iterations=3,
                                              device="cpu"))


class TestResolveDevice:

    def test_explicit_device(self):
        assert resolve_device("cpu") == "cpu"

    def test_auto(self):
        assert resolve_device("auto") in ("xpu", "cuda", "cpu")


class TestTorchProxyExecutor:

    def test_can_measure(self, executor):
        assert executor.can_measure
        assert executor.device == "cpu"

    def test_geometry_matches_analytical(self, executor, hw, workload, candidate):
        for kind in (KernelKind.CALC_MEAN, KernelKind.REDUCE_STATS_FWD):
            assert executor.launch_geometry(kind, workload, candidate, hw) == \
                AnalyticalExecutor().launch_geometry(kind, workload, candidate, hw)

    def test_measure_sequence(self, executor, hw, workload, candidate):
        kernels = decompose(workload, candidate)
        stats = executor.measure(kernels, workload, candidate, hw)
        assert stats.num_iterations == 3
        assert stats.min_ms >= 0.0
        assert stats.min_ms <= stats.mean_ms <= stats.max_ms

    def test_zero_call_kernels_skipped(self, executor, hw, candidate):
        workload = WorkloadDescriptor(ic=32, sp=64, calculate_stats=False)
        kernels = decompose(workload, candidate)
        assert executor.measure(kernels, workload, candidate, hw).num_iterations == 3
