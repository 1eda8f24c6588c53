"""
Device Query

Answers "what is the target device?" for a planner session. Device
enumeration itself belongs to the runtime; this module only turns its answer
(or a named preset) into a DeviceInfo.

Usage:
    from kernel_planner.hardware.device_query import device_query_for

    info = device_query_for("max_1550").query()   # or "auto" for the XPU runtime
    profile = HardwareProfile.from_device(info)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..core.errors import PlannerError
from .profile import GpuArch


DEVICES_FILE = Path(__file__).parent / "data" / "devices.yaml"
AUTO_DEVICE = "auto"

_preset_cache: Optional[Dict[str, Dict[str, Any]]] = None


@dataclass(frozen=True)
class DeviceInfo:
    """Raw device capabilities as reported by the runtime"""
    name: str
    arch: GpuArch
    eu_count: int
    threads_per_eu: int
    max_wg_size: int
    eus_per_ss: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['arch'] = self.arch.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeviceInfo':
        data = dict(data)
        data['arch'] = GpuArch.parse(data['arch'])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def load_presets() -> Dict[str, Dict[str, Any]]:
    """Load the bundled device preset table (cached after first call)"""
    global _preset_cache
    if _preset_cache is None:
        with open(DEVICES_FILE, 'r') as f:
            data = yaml.safe_load(f)
        _preset_cache = data.get('devices', {})
    return _preset_cache


def list_presets() -> List[str]:
    return sorted(load_presets())


def find_preset_by_device_name(device_name: str) -> Optional[str]:
    """Resolve a runtime device name to a preset key, or None"""
    for key, preset in load_presets().items():
        for pattern in preset.get('match', []):
            if pattern.lower() in device_name.lower():
                return key
    return None


class DeviceQuery(ABC):
    """Source of the target device description"""

    @abstractmethod
    def query(self) -> DeviceInfo:
        ...


class PresetDeviceQuery(DeviceQuery):
    """Device description from the bundled preset table"""

    def __init__(self, preset: str):
        self.preset = preset

    def query(self) -> DeviceInfo:
        presets = load_presets()
        if self.preset not in presets:
            raise PlannerError(
                f"Unknown device preset '{self.preset}'. "
                f"Available: {', '.join(list_presets())}")
        return DeviceInfo.from_dict(presets[self.preset])


class TorchDeviceQuery(DeviceQuery):
    """
    Device description from the PyTorch XPU runtime.

    The runtime does not report the architecture family or the thread count
    per EU, so the device name is resolved through the preset table first and
    the reported counts override the preset values.
    """

    def __init__(self, index: int = 0):
        self.index = index

    def query(self) -> DeviceInfo:
        import torch

        if not hasattr(torch, 'xpu') or not torch.xpu.is_available():
            raise PlannerError("No XPU device available to PyTorch")

        props = torch.xpu.get_device_properties(self.index)
        key = find_preset_by_device_name(props.name)
        if key is None:
            raise PlannerError(f"Device '{props.name}' does not match any preset")

        data = dict(load_presets()[key])
        data['name'] = props.name
        eu_count = getattr(props, 'gpu_eu_count', None)
        if eu_count:
            data['eu_count'] = eu_count
            subslices = getattr(props, 'gpu_subslice_count', None)
            if subslices:
                data['eus_per_ss'] = max(1, eu_count // subslices)
        max_wg = getattr(props, 'max_work_group_size', None)
        if max_wg:
            data['max_wg_size'] = max_wg
        return DeviceInfo.from_dict(data)


def device_query_for(device: str, index: int = 0) -> DeviceQuery:
    """'auto' asks the runtime for the device; anything else names a preset"""
    if device == AUTO_DEVICE:
        return TorchDeviceQuery(index)
    return PresetDeviceQuery(device)
