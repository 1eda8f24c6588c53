"""
Core Planner Data Structures

Hardware-independent types shared by candidate generation, kernel
decomposition, cost estimation and the plan registry.
"""

from .structures import (
    DataType,
    KernelVariant,
    ReductionStrategy,
    MemoryTier,
    MemOperation,
    KernelRole,
    KernelKind,
    KERNEL_ROLES,
    Tunable,
    TUNABLE_FIELDS,
    WorkloadDescriptor,
    CandidateConfiguration,
    CandidateBuilder,
    Occupancy,
    KernelDescriptor,
)
from .errors import (
    PlannerError,
    PlanningError,
    UnsupportedArchitectureError,
    ModelLookupError,
    DescriptorParseError,
    RegistryError,
    SearchInterrupted,
)

__all__ = [
    # Structures
    'DataType',
    'KernelVariant',
    'ReductionStrategy',
    'MemoryTier',
    'MemOperation',
    'KernelRole',
    'KernelKind',
    'KERNEL_ROLES',
    'Tunable',
    'TUNABLE_FIELDS',
    'WorkloadDescriptor',
    'CandidateConfiguration',
    'CandidateBuilder',
    'Occupancy',
    'KernelDescriptor',
    # Errors
    'PlannerError',
    'PlanningError',
    'UnsupportedArchitectureError',
    'ModelLookupError',
    'DescriptorParseError',
    'RegistryError',
    'SearchInterrupted',
]
