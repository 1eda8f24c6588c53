"""
Planner driver: session, workload descriptors and plan reports.
"""

from .descriptor import format_descriptor, parse_bool, parse_descriptor
from .report import add_tag, describe_plan, registry_line
from .session import PlannerMode, PlannerSession

__all__ = [
    'format_descriptor',
    'parse_bool',
    'parse_descriptor',
    'add_tag',
    'describe_plan',
    'registry_line',
    'PlannerMode',
    'PlannerSession',
]
