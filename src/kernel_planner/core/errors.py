"""
Planner Exceptions

Every failure the planner reports to its caller derives from PlannerError,
so the driver can map them to a single non-zero exit path.
"""


class PlannerError(Exception):
    """Base class for all planner failures."""


class PlanningError(PlannerError):
    """No legal configuration exists for the workload (cannot plan)."""


class UnsupportedArchitectureError(PlannerError):
    """The device architecture has no performance model. Not recoverable."""


class ModelLookupError(PlannerError):
    """A model table was queried with a key it does not cover.

    This signals a programming error (unexpected kernel kind, memory tier
    or a value the model cannot represent), never a condition to retry.
    """


class DescriptorParseError(PlannerError):
    """Malformed kernel-descriptor or driver arguments."""


class RegistryError(PlannerError):
    """The plan registry could not be read or written."""


class SearchInterrupted(PlannerError):
    """A search or rebuild ran out of its wall-clock budget."""
