"""
Plan registry and planner configuration.
"""

from .config import PlannerConfig, get_config, save_config
from .plan_registry import PlanRegistry, PlanRegistryEntry, SOURCES

__all__ = [
    'PlannerConfig',
    'get_config',
    'save_config',
    'PlanRegistry',
    'PlanRegistryEntry',
    'SOURCES',
]
