"""
Tests for hardware profiles and device presets.
"""

from types import SimpleNamespace

import pytest

from kernel_planner.core.errors import PlannerError, UnsupportedArchitectureError
from kernel_planner.hardware.device_query import (
    DeviceInfo,
    PresetDeviceQuery,
    TorchDeviceQuery,
    device_query_for,
    find_preset_by_device_name,
    list_presets,
)
from kernel_planner.hardware.profile import (
    ATOMICS_MIN_ARCH,
    GpuArch,
    HardwareProfile,
    MIB,
    memory_parameters,
)


def profile_of(preset: str) -> HardwareProfile:
    return HardwareProfile.from_device(PresetDeviceQuery(preset).query())


class TestGpuArch:

    def test_ordering(self):
        assert GpuArch.GEN9 < GpuArch.XE_LP < GpuArch.XE_HPG < GpuArch.XE_HPC < GpuArch.XE2
        assert GpuArch.XE3 >= ATOMICS_MIN_ARCH
        assert not GpuArch.XE_HPG >= ATOMICS_MIN_ARCH

    def test_parse(self):
        assert GpuArch.parse("xe_hpc") == GpuArch.XE_HPC
        assert GpuArch.parse(" XE2 ") == GpuArch.XE2

    def test_parse_unknown(self):
        with pytest.raises(UnsupportedArchitectureError):
            GpuArch.parse("pascal")


class TestMemoryParameters:

    def test_xe_hpg(self):
        params = memory_parameters(GpuArch.XE_HPG)
        assert params.slow_tier_bandwidth_gbps == 400.0
        assert params.fast_tier_size_bytes == 16 * MIB
        assert params.fast_tier_bandwidth_gbps == 2000.0
        assert params.host_overhead_ns == 8000.0

    @pytest.mark.parametrize("arch", [GpuArch.XE_HPC, GpuArch.XE2, GpuArch.XE3])
    def test_xe_hpc_and_later(self, arch):
        params = memory_parameters(arch)
        assert params.slow_tier_bandwidth_gbps == 1000.0
        assert params.fast_tier_size_bytes == 192 * MIB
        assert params.fast_tier_bandwidth_gbps == 3000.0
        assert params.host_overhead_ns == 6000.0

    @pytest.mark.parametrize("arch", [GpuArch.GEN9, GpuArch.XE_LP, GpuArch.XE_HP])
    def test_unsupported(self, arch):
        with pytest.raises(UnsupportedArchitectureError):
            memory_parameters(arch)


class TestHardwareProfile:
    """Test HardwareProfile construction and derived figures."""

    def test_max_1550(self):
        hw = profile_of("max_1550")
        assert hw.arch == GpuArch.XE_HPC
        assert hw.slice_count == 128
        assert hw.thread_slots == 8192
        assert hw.supports_atomics_reduction
        assert hw.fingerprint == "xe_hpc-eu1024-tpe8-ss8-wg1024"

    def test_arc_has_no_atomics_reduction(self):
        hw = profile_of("arc_a770")
        assert hw.slice_count == 32
        assert not hw.supports_atomics_reduction
        assert hw.host_overhead_ns == 8000.0

    def test_same_capabilities_share_fingerprint(self):
        assert profile_of("arc_a770").fingerprint == profile_of("flex_170").fingerprint

    def test_unsupported_architecture_fails_at_construction(self):
        info = PresetDeviceQuery("iris_xe").query()
        assert info.arch == GpuArch.XE_LP
        with pytest.raises(UnsupportedArchitectureError):
            HardwareProfile.from_device(info)

    def test_direct_construction_validates_arch(self):
        with pytest.raises(UnsupportedArchitectureError):
            HardwareProfile(
                name="old", arch=GpuArch.GEN9, compute_unit_count=24,
                threads_per_unit=7, max_local_group_size=256, units_per_slice=8,
                fast_tier_size_bytes=MIB, fast_tier_bandwidth_gbps=100.0,
                slow_tier_bandwidth_gbps=50.0, host_overhead_ns=1000.0)

    def test_non_positive_counts(self):
        with pytest.raises(ValueError):
            HardwareProfile(
                name="broken", arch=GpuArch.XE_HPC, compute_unit_count=0,
                threads_per_unit=8, max_local_group_size=1024, units_per_slice=8,
                fast_tier_size_bytes=MIB, fast_tier_bandwidth_gbps=3000.0,
                slow_tier_bandwidth_gbps=1000.0, host_overhead_ns=6000.0)

    def test_to_dict_and_summary(self):
        hw = profile_of("b580")
        assert hw.to_dict()['arch'] == "xe2"
        summary = hw.format_summary()
        assert "Intel Arc B580" in summary
        assert "192 MiB" in summary


class TestDevicePresets:

    def test_list_presets(self):
        presets = list_presets()
        assert "max_1550" in presets
        assert "arc_a770" in presets
        assert presets == sorted(presets)

    def test_unknown_preset(self):
        with pytest.raises(PlannerError, match="Unknown device preset"):
            PresetDeviceQuery("tesla_v100").query()

    def test_find_by_runtime_name(self):
        assert find_preset_by_device_name("Intel(R) Data Center GPU Max 1550") == "max_1550"
        assert find_preset_by_device_name("Intel(R) Arc(TM) A770 Graphics") == "arc_a770"
        assert find_preset_by_device_name("NVIDIA H100") is None

    def test_device_info_dict(self):
        info = PresetDeviceQuery("max_1100").query()
        assert DeviceInfo.from_dict(info.to_dict()) == info
        assert info.eu_count == 448


class TestTorchDeviceQuery:

    def test_without_xpu(self):
        torch = pytest.importorskip("torch")
        if hasattr(torch, 'xpu') and torch.xpu.is_available():
            pytest.skip("XPU present")
        with pytest.raises(PlannerError, match="No XPU"):
            TorchDeviceQuery().query()

    @pytest.fixture
    def fake_xpu(self, monkeypatch):
        """Installs a torch.xpu reporting a cut-down Max 1550"""
        torch = pytest.importorskip("torch")
        props = SimpleNamespace(name="Intel(R) Data Center GPU Max 1550",
                                gpu_eu_count=896, gpu_subslice_count=112,
                                max_work_group_size=512)
        xpu = SimpleNamespace(is_available=lambda: True,
                              get_device_properties=lambda index: props)
        monkeypatch.setattr(torch, "xpu", xpu, raising=False)
        return props

    def test_reported_counts_override_preset(self, fake_xpu):
        info = TorchDeviceQuery().query()
        assert info.name == fake_xpu.name
        assert info.arch == GpuArch.XE_HPC
        assert info.threads_per_eu == 8
        assert info.eu_count == 896
        assert info.eus_per_ss == 8
        assert info.max_wg_size == 512

    def test_unknown_device_name(self, fake_xpu):
        fake_xpu.name = "Some Other GPU"
        with pytest.raises(PlannerError, match="does not match any preset"):
            TorchDeviceQuery().query()

    def test_auto_resolves_through_runtime(self, fake_xpu):
        assert isinstance(device_query_for("auto"), TorchDeviceQuery)
        assert isinstance(device_query_for("arc_a770"), PresetDeviceQuery)
        profile = HardwareProfile.from_device(device_query_for("auto").query())
        assert profile.compute_unit_count == 896
        assert profile.fingerprint.startswith("xe_hpc-eu896-")
