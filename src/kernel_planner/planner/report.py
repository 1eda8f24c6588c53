"""
Plan rendering for the command line.
"""

from typing import Optional

from ..core.structures import TUNABLE_FIELDS
from ..estimation.selector import PlanResult
from ..hardware.profile import HardwareProfile
from ..registry.plan_registry import PlanRegistryEntry
from .descriptor import format_descriptor


def add_tag(tag: str, text: str, indent: int = 2) -> str:
    """'Tag:' header followed by the indented text"""
    pad = " " * indent
    body = "\n".join(pad + line for line in text.splitlines())
    return f"{tag}:\n{body}"


def describe_plan(result: PlanResult, hw: Optional[HardwareProfile] = None) -> str:
    """Human-readable plan: chosen values, derived outputs and kernels"""
    workload = result.workload
    lines = []
    if hw is not None:
        lines.append(f"hardware: {hw.name} ({hw.fingerprint})")
    lines.append(f"source: {'registry' if workload.found_in_table else result.source}")
    for name in TUNABLE_FIELDS:
        tunable = getattr(workload, name)
        value = tunable.value
        if isinstance(value, bool):
            value = int(value)
        suffix = " (pinned)" if tunable.pinned else ""
        lines.append(f"{name}: {value}{suffix}")
    lines.append(f"vect_size: {workload.vect_size}")
    lines.append(f"calc_stat_ic: {workload.calc_stat_ic}")
    if workload.found_in_table:
        lines.append("expected_time_ms: LT")
    else:
        lines.append(f"expected_time_ms: {result.expected_time_ms:.4f}")
    if result.evaluated:
        lines.append(f"candidates: {result.evaluated} evaluated, {result.excluded} excluded")
    if result.timing is not None:
        t = result.timing
        lines.append(f"measured: mean {t.mean_ms:.4f} ms, std {t.std_ms:.4f} ms, "
                     f"n={t.num_iterations}")

    text = add_tag("Plan", "\n".join(lines))
    if result.kernels:
        text += "\n" + add_tag("Kernels", "\n".join(str(k) for k in result.kernels))
    return text


def registry_line(entry: PlanRegistryEntry) -> str:
    """One-line registry form: workload descriptor and stored configuration"""
    config = entry.config
    return (f"{format_descriptor(entry.workload)} "
            f"-> atomics={int(config.use_fused_atomics_reduction)} "
            f"ic_block={config.ic_block} stat_sp_block={config.stat_sp_block} "
            f"update_sp_block={config.update_sp_block} vect={config.vect_size} "
            f"unroll={config.update_sp_unroll} time_ns={entry.time_ns:.1f}")
