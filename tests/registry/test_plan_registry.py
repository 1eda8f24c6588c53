"""
Tests for the SQLite plan registry.
"""

import itertools

import pytest

from kernel_planner.core.errors import RegistryError, SearchInterrupted
from kernel_planner.core.structures import (
    CandidateConfiguration,
    ReductionStrategy,
    WorkloadDescriptor,
)
from kernel_planner.registry import plan_registry as registry_module
from kernel_planner.registry.plan_registry import PlanRegistry, PlanRegistryEntry


HPC = "xe_hpc-eu1024-tpe8-ss8-wg1024"
HPG = "xe_hpg-eu512-tpe8-ss16-wg1024"


def make_entry(ic=256, sp=3136, time_ns=100.0, fingerprint=HPC, source="bench",
               ic_block=64):
    workload = WorkloadDescriptor(ic=ic, sp=sp)
    config = CandidateConfiguration(ReductionStrategy.TWO_PASS, ic_block, 64, 64, 8)
    return PlanRegistryEntry.create(workload, config, time_ns, fingerprint, source=source)


@pytest.fixture
def registry():
    reg = PlanRegistry(":memory:")
    yield reg
    reg.close()


class TestPlanRegistryEntry:

    def test_create(self):
        entry = make_entry()
        assert entry.shape_class == WorkloadDescriptor(ic=256, sp=3136).shape_class()
        assert entry.hw_fingerprint == HPC
        assert entry.updated_at

    def test_invalid_source(self):
        with pytest.raises(ValueError):
            make_entry(source="guess")

    def test_dict_conversion(self):
        entry = make_entry()
        restored = PlanRegistryEntry.from_dict(entry.to_dict())
        assert restored.config == entry.config
        assert restored.workload.shape_class() == entry.shape_class
        assert restored.time_ns == entry.time_ns

    def test_summary(self):
        assert "[bench," in make_entry().summary()


class TestUpsert:

    def test_lookup_after_upsert(self, registry):
        entry = make_entry()
        assert registry.upsert(entry)
        stored = registry.lookup(entry.shape_class, HPC)
        assert stored is not None
        assert stored.config == entry.config
        assert stored.source == "bench"

    def test_lookup_miss(self, registry):
        assert registry.lookup("fwd-f32-ic1", HPC) is None

    def test_keeps_faster_plan(self, registry):
        registry.upsert(make_entry(time_ns=100.0, ic_block=64))
        assert not registry.upsert(make_entry(time_ns=200.0, ic_block=32))
        stored = registry.lookup(make_entry().shape_class, HPC)
        assert stored.time_ns == 100.0
        assert stored.config.ic_block == 64

        assert registry.upsert(make_entry(time_ns=50.0, ic_block=128))
        assert registry.lookup(make_entry().shape_class, HPC).config.ic_block == 128

    def test_force_replaces(self, registry):
        registry.upsert(make_entry(time_ns=100.0))
        assert registry.upsert(make_entry(time_ns=500.0, ic_block=16), force=True)
        assert registry.lookup(make_entry().shape_class, HPC).time_ns == 500.0

    def test_one_row_per_hardware(self, registry):
        registry.upsert(make_entry(fingerprint=HPC))
        registry.upsert(make_entry(fingerprint=HPG))
        registry.upsert(make_entry(ic=128, fingerprint=HPC))
        assert registry.count() == 3
        assert registry.count(HPC) == 2
        assert [e.hw_fingerprint for e in registry.entries(HPG)] == [HPG]

    def test_closed_registry(self):
        registry = PlanRegistry(":memory:")
        registry.close()
        with pytest.raises(RegistryError):
            registry.lookup("anything", HPC)


class TestRebuild:
    """Test atomic per-hardware regeneration."""

    @pytest.fixture
    def populated(self, registry):
        registry.upsert(make_entry(ic=256, fingerprint=HPC))
        registry.upsert(make_entry(ic=128, fingerprint=HPC))
        registry.upsert(make_entry(ic=256, fingerprint=HPG))
        return registry

    @staticmethod
    def regenerate(workload):
        config = CandidateConfiguration(ReductionStrategy.ATOMICS, 32, 32, 32, 2)
        return PlanRegistryEntry.create(workload, config, 42.0, HPC, source="rebuild")

    def test_rebuild_replaces_entries(self, populated):
        assert populated.rebuild(HPC, self.regenerate) == 2
        rebuilt = populated.entries(HPC)
        assert len(rebuilt) == 2
        assert all(e.source == "rebuild" for e in rebuilt)
        assert all(e.time_ns == 42.0 for e in rebuilt)
        assert all(e.config.use_fused_atomics_reduction for e in rebuilt)

    def test_other_hardware_untouched(self, populated):
        before = populated.entries(HPG)
        populated.rebuild(HPC, self.regenerate)
        after = populated.entries(HPG)
        assert [e.to_dict() for e in after] == [e.to_dict() for e in before]

    def test_failure_leaves_registry_unchanged(self, populated):
        before = [e.to_dict() for e in populated.entries()]
        calls = []

        def failing(workload):
            calls.append(workload)
            if len(calls) == 2:
                raise RuntimeError("device lost")
            return self.regenerate(workload)

        with pytest.raises(RuntimeError):
            populated.rebuild(HPC, failing)
        assert [e.to_dict() for e in populated.entries()] == before

    def test_fingerprint_mismatch(self, populated):
        def wrong_hardware(workload):
            entry = self.regenerate(workload)
            entry.hw_fingerprint = HPG
            return entry

        with pytest.raises(RegistryError):
            populated.rebuild(HPC, wrong_hardware)
        assert all(e.source == "bench" for e in populated.entries(HPC))

    def test_budget_expiry_leaves_registry_unchanged(self, populated, monkeypatch):
        ticks = itertools.count(0, 10)
        monkeypatch.setattr(registry_module.time, "monotonic", lambda: next(ticks))
        with pytest.raises(SearchInterrupted):
            populated.rebuild(HPC, self.regenerate, time_budget_s=5.0)
        assert all(e.source == "bench" for e in populated.entries(HPC))

    def test_zero_budget_leaves_registry_unchanged(self, populated):
        with pytest.raises(SearchInterrupted):
            populated.rebuild(HPC, self.regenerate, time_budget_s=0)
        assert all(e.source == "bench" for e in populated.entries(HPC))

    def test_rebuild_of_unknown_hardware(self, populated):
        assert populated.rebuild("xe_hpc-other", self.regenerate) == 0
        assert populated.count() == 3


class TestFileRegistry:

    def test_persists_across_sessions(self, tmp_path):
        path = tmp_path / "nested" / "plans.db"
        with PlanRegistry(path) as registry:
            registry.upsert(make_entry())
        assert path.exists()
        with PlanRegistry(path) as registry:
            assert registry.count(HPC) == 1

    def test_unopenable_path(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(RegistryError):
            PlanRegistry(blocker / "plans.db")
