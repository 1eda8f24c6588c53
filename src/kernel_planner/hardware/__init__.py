"""
Target hardware description: architecture families, device presets and the
per-session HardwareProfile.
"""

from .profile import (
    GpuArch,
    HardwareProfile,
    MemoryParameters,
    memory_parameters,
    ATOMICS_MIN_ARCH,
)
from .device_query import (
    DeviceInfo,
    DeviceQuery,
    PresetDeviceQuery,
    TorchDeviceQuery,
    AUTO_DEVICE,
    device_query_for,
    list_presets,
    find_preset_by_device_name,
)

__all__ = [
    'GpuArch',
    'HardwareProfile',
    'MemoryParameters',
    'memory_parameters',
    'ATOMICS_MIN_ARCH',
    'DeviceInfo',
    'DeviceQuery',
    'PresetDeviceQuery',
    'TorchDeviceQuery',
    'AUTO_DEVICE',
    'device_query_for',
    'list_presets',
    'find_preset_by_device_name',
]
