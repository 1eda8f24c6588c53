"""
Tests for PlannerSession modes.
"""

import io
from types import SimpleNamespace

import pytest

from kernel_planner.calibration.approximation import load_table
from kernel_planner.core.errors import PlanningError, RegistryError, SearchInterrupted
from kernel_planner.core.logging import PlannerLogger
from kernel_planner.core.structures import (
    CandidateConfiguration,
    ReductionStrategy,
    WorkloadDescriptor,
)
from kernel_planner.execute.executor import AnalyticalExecutor, compute_stats
from kernel_planner.hardware.device_query import PresetDeviceQuery
from kernel_planner.hardware.profile import HardwareProfile
from kernel_planner.planner.session import PlannerMode, PlannerSession
from kernel_planner.registry.config import PlannerConfig
from kernel_planner.registry.plan_registry import PlanRegistry, PlanRegistryEntry


class FakeDeviceExecutor(AnalyticalExecutor):
    """Reports 1 ms for ic_block=64 two-pass plans, slower for everything else"""

    device = "fake0"

    @property
    def can_measure(self):
        return True

    def measure(self, kernels, workload, candidate, hw):
        ms = 1.0 + abs(candidate.ic_block - 64) / 64.0
        if candidate.use_fused_atomics_reduction:
            ms += 0.5
        return compute_stats([ms, ms])


@pytest.fixture
def hw():
    return HardwareProfile.from_device(PresetDeviceQuery("max_1550").query())


@pytest.fixture
def log_stream():
    return io.StringIO()


@pytest.fixture
def registry():
    reg = PlanRegistry(":memory:")
    yield reg
    reg.close()


def make_session(hw, log_stream, registry=None, executor=None, **kwargs):
    return PlannerSession(hw, load_table(), executor=executor, registry=registry,
                          logger=PlannerLogger.console(stream=log_stream), **kwargs)


@pytest.fixture
def workload():
    return WorkloadDescriptor(ic=256, sp=3136)


class TestPlannerMode:

    def test_values(self):
        assert PlannerMode("auto-search") is PlannerMode.AUTO_SEARCH

    def test_measuring_modes(self):
        assert not PlannerMode.TRACE.measures
        assert all(m.measures for m in (PlannerMode.BENCH, PlannerMode.SEARCH,
                                        PlannerMode.AUTO_SEARCH))


class TestTrace:
    """Test plan() and create_plan()."""

    def test_plan_without_registry(self, hw, log_stream, workload):
        session = make_session(hw, log_stream)
        planned, ms = session.plan(workload)
        assert planned.value('ic_block') is not None
        assert planned.vect_size is not None
        assert ms == pytest.approx(planned.expected_time_ms)
        assert ms > 0
        assert not planned.found_in_table

    def test_plan_keeps_input_untouched(self, hw, log_stream, workload):
        make_session(hw, log_stream).plan(workload)
        assert workload.value('ic_block') is None

    def test_registry_hit(self, hw, log_stream, registry, workload):
        config = CandidateConfiguration(ReductionStrategy.TWO_PASS, 32, 64, 64, 2)
        registry.upsert(PlanRegistryEntry.create(workload, config, 12345.0,
                                                 hw.fingerprint, source="search"))
        result = make_session(hw, log_stream, registry).create_plan(workload)

        assert result.source == "registry"
        assert result.candidate == config
        assert result.workload.found_in_table
        assert result.workload.value('ic_block') == 32
        assert result.workload.expected_time_ms == pytest.approx(0.012345)
        assert result.kernels

    def test_other_hardware_entry_ignored(self, hw, log_stream, registry, workload):
        config = CandidateConfiguration(ReductionStrategy.TWO_PASS, 32, 64, 64, 2)
        registry.upsert(PlanRegistryEntry.create(workload, config, 1.0,
                                                 "xe_hpg-other", source="search"))
        result = make_session(hw, log_stream, registry).create_plan(workload)
        assert result.source == "model"

    def test_registry_failure_falls_back_to_model(self, hw, log_stream, workload):
        broken = PlanRegistry(":memory:")
        broken.close()
        result = make_session(hw, log_stream, broken).create_plan(workload)
        assert result.source == "model"
        assert "WARNING" in log_stream.getvalue()

    def test_trace_never_stores(self, hw, log_stream, registry, workload):
        make_session(hw, log_stream, registry).plan(workload)
        assert registry.count() == 0

    def test_unplannable_workload(self, hw, log_stream):
        with pytest.raises(PlanningError):
            make_session(hw, log_stream).plan(WorkloadDescriptor(ic=24, sp=100))


class TestMeasuringModes:

    def test_bench_stores_measured_plan(self, hw, log_stream, registry, workload):
        session = make_session(hw, log_stream, registry, FakeDeviceExecutor())
        result, entry = session.bench(workload)

        assert result.source == "bench"
        assert result.timing.num_iterations == 2
        assert result.total_time_ns == pytest.approx(result.timing.mean_ns)
        assert entry.source == "bench"
        assert entry.config == result.candidate
        assert registry.lookup(workload.shape_class(), hw.fingerprint) is not None

    def test_bench_requires_measuring_executor(self, hw, log_stream, registry, workload):
        session = make_session(hw, log_stream, registry)
        with pytest.raises(PlanningError):
            session.bench(workload)

    def test_search_stores_fastest(self, hw, log_stream, registry, workload):
        session = make_session(hw, log_stream, registry, FakeDeviceExecutor())
        result, entry = session.search(workload)
        assert result.candidate.ic_block == 64
        assert entry.source == "search"
        assert entry.time_ns == pytest.approx(1.0e6)
        assert "Stored search plan" in log_stream.getvalue()

    def test_slower_plan_not_stored(self, hw, log_stream, registry, workload):
        fast = CandidateConfiguration(ReductionStrategy.TWO_PASS, 64, 64, 64, 8)
        registry.upsert(PlanRegistryEntry.create(workload, fast, 10.0, hw.fingerprint,
                                                 source="bench"))
        session = make_session(hw, log_stream, registry, FakeDeviceExecutor())
        session.search(workload)
        assert registry.lookup(workload.shape_class(), hw.fingerprint).time_ns == 10.0
        assert "Kept faster stored plan" in log_stream.getvalue()

    def test_search_requires_registry(self, hw, log_stream, workload):
        session = make_session(hw, log_stream, executor=FakeDeviceExecutor())
        with pytest.raises(RegistryError):
            session.search(workload)

    def test_auto_search_rebuilds_this_hardware(self, hw, log_stream, registry):
        stale = CandidateConfiguration(ReductionStrategy.TWO_PASS, 16, 64, 64, 1)
        for ic in (128, 256):
            registry.upsert(PlanRegistryEntry.create(
                WorkloadDescriptor(ic=ic, sp=3136), stale, 5.0e6, hw.fingerprint,
                source="bench"))
        registry.upsert(PlanRegistryEntry.create(
            WorkloadDescriptor(ic=64, sp=64), stale, 5.0e6, "xe_hpg-other", source="bench"))

        session = make_session(hw, log_stream, registry, FakeDeviceExecutor())
        assert session.auto_search() == 2

        rebuilt = registry.entries(hw.fingerprint)
        assert [e.source for e in rebuilt] == ["rebuild", "rebuild"]
        assert all(e.config.ic_block == 64 for e in rebuilt)
        assert registry.entries("xe_hpg-other")[0].source == "bench"

    def test_zero_budget_search_interrupted(self, hw, log_stream, registry, workload):
        session = make_session(hw, log_stream, registry, FakeDeviceExecutor(),
                               time_budget_s=0.0)
        with pytest.raises(SearchInterrupted):
            session.search(workload)
        assert registry.count() == 0


class TestFromConfig:

    def test_preset_and_registry(self, tmp_path):
        config = PlannerConfig(registry_path=tmp_path / "plans.db", workers=2)
        with PlannerSession.from_config(config, device="arc_a770",
                                        logger=PlannerLogger.console(stream=io.StringIO())) \
                as session:
            assert session.hw.fingerprint.startswith("xe_hpg")
            assert session.model_name == "nhwc_bnorm_v1"
            assert session.workers == 2
            assert session.registry is not None
            assert not session.hw.supports_atomics_reduction
        assert (tmp_path / "plans.db").exists()

    def test_without_registry(self, tmp_path):
        config = PlannerConfig(registry_path=tmp_path / "plans.db")
        session = PlannerSession.from_config(config, use_registry=False,
                                             logger=PlannerLogger.console(stream=io.StringIO()))
        assert session.registry is None
        assert session.hw.fingerprint == "xe_hpc-eu1024-tpe8-ss8-wg1024"
        session.close()

    def test_auto_device_queries_runtime(self, tmp_path, monkeypatch):
        torch = pytest.importorskip("torch")
        props = SimpleNamespace(name="Intel(R) Arc(TM) A770 Graphics", gpu_eu_count=512,
                                gpu_subslice_count=32, max_work_group_size=1024)
        monkeypatch.setattr(torch, "xpu", SimpleNamespace(
            is_available=lambda: True, get_device_properties=lambda index: props),
            raising=False)
        config = PlannerConfig(registry_path=tmp_path / "plans.db", device="auto")
        session = PlannerSession.from_config(config, use_registry=False,
                                             logger=PlannerLogger.console(stream=io.StringIO()))
        assert session.hw.name == props.name
        assert session.hw.fingerprint.startswith("xe_hpg-eu512-")
        session.close()
