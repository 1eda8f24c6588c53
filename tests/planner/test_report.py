"""
Tests for plan rendering.
"""

import pytest

from kernel_planner.calibration.approximation import load_table
from kernel_planner.core.structures import (
    CandidateConfiguration,
    ReductionStrategy,
    WorkloadDescriptor,
)
from kernel_planner.estimation.cost_model import CostEstimator
from kernel_planner.estimation.selector import ConfigurationSelector
from kernel_planner.execute.executor import AnalyticalExecutor
from kernel_planner.hardware.device_query import PresetDeviceQuery
from kernel_planner.hardware.profile import HardwareProfile
from kernel_planner.planner.report import add_tag, describe_plan, registry_line
from kernel_planner.registry.plan_registry import PlanRegistryEntry


@pytest.fixture
def hw():
    return HardwareProfile.from_device(PresetDeviceQuery("max_1550").query())


@pytest.fixture
def result(hw):
    selector = ConfigurationSelector(hw, CostEstimator(hw, load_table()), AnalyticalExecutor())
    workload = WorkloadDescriptor(ic=256, sp=3136).with_pinned(ic_block=64)
    return selector.select(workload)


def test_add_tag():
    assert add_tag("Reqs", "a\nb") == "Reqs:\n  a\n  b"
    assert add_tag("Reqs", "a", indent=4) == "Reqs:\n    a"


class TestDescribePlan:

    def test_plan_fields(self, result, hw):
        text = describe_plan(result, hw)
        assert text.startswith("Plan:\n")
        assert f"hardware: {hw.name}" in text
        assert "source: model" in text
        assert "ic_block: 64 (pinned)" in text
        assert f"vect_size: {result.workload.vect_size}" in text
        assert f"expected_time_ms: {result.expected_time_ms:.4f}" in text
        assert "\nKernels:\n" in text

    def test_registry_plan_reports_lookup(self, result):
        result.workload = result.workload.with_outputs(found_in_table=True)
        text = describe_plan(result)
        assert "source: registry" in text
        assert "expected_time_ms: LT" in text
        assert "hardware:" not in text

    def test_candidate_counts(self, result):
        assert f"candidates: {result.evaluated} evaluated" in describe_plan(result)


def test_registry_line():
    workload = WorkloadDescriptor(ic=64, sp=100)
    config = CandidateConfiguration(ReductionStrategy.ATOMICS, 64, 25, 50, 4, 2)
    entry = PlanRegistryEntry.create(workload, config, 1234.5, "xe_hpc-x", source="search")
    line = registry_line(entry)
    assert line.startswith("dir=fwd dt=f32 ic=64 sp=100")
    assert line.endswith("-> atomics=1 ic_block=64 stat_sp_block=25 update_sp_block=50 "
                         "vect=4 unroll=2 time_ns=1234.5")
