"""
Workload Descriptor Parsing

Turns free-form `key=value` tokens of the command line into a
WorkloadDescriptor, and back.

Problem keys:
    dir=fwd|bwd  dt=f32|f16|bf16|s8  ic=N  sp=N  (or mb=N id=N ih=N iw=N)
    sg=N  variant=reusable|optimized  max_ic_block=N
Flags (0/1, true/false, yes/no):
    stats one_pass relu add_relu scale shift diff_stats deterministic
Pinned tunables (the planner never overrides these):
    atomics=0|1  max_vect=N  ic_block=N  stat_sp_block=N
    update_sp_block=N  update_sp_unroll=N
"""

from typing import Any, Dict, Iterable, List

from ..core.errors import DescriptorParseError
from ..core.structures import DataType, KernelVariant, WorkloadDescriptor


_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")

# descriptor key -> WorkloadDescriptor flag field
FLAG_KEYS = {
    'stats': 'calculate_stats',
    'one_pass': 'use_stats_one_pass',
    'relu': 'fuse_norm_relu',
    'add_relu': 'fuse_norm_add_relu',
    'scale': 'use_scale',
    'shift': 'use_shift',
    'diff_stats': 'calculate_diff_stats',
    'deterministic': 'deterministic',
}

# descriptor key -> pinned tunable field
TUNABLE_KEYS = {
    'atomics': 'use_fused_atomics_reduction',
    'max_vect': 'max_vect_size',
    'ic_block': 'ic_block',
    'stat_sp_block': 'stat_sp_block',
    'update_sp_block': 'update_sp_block',
    'update_sp_unroll': 'update_sp_unroll',
}

SPATIAL_KEYS = ('mb', 'id', 'ih', 'iw')
PROBLEM_KEYS = ('dir', 'dt', 'ic', 'sp', 'sg', 'variant', 'max_ic_block') + SPATIAL_KEYS
KNOWN_KEYS = PROBLEM_KEYS + tuple(FLAG_KEYS) + tuple(TUNABLE_KEYS)


def parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise DescriptorParseError(f"'{key}' expects a boolean, got '{value}'")


def parse_positive_int(key: str, value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise DescriptorParseError(f"'{key}' expects an integer, got '{value}'") from None
    if parsed <= 0:
        raise DescriptorParseError(f"'{key}' must be positive, got {parsed}")
    return parsed


def split_tokens(tokens: Iterable[str]) -> Dict[str, str]:
    """Split key=value tokens; unknown and repeated keys are errors."""
    values: Dict[str, str] = {}
    for token in tokens:
        if '=' not in token:
            raise DescriptorParseError(f"Expected key=value, got '{token}'")
        key, value = token.split('=', 1)
        key = key.strip().lstrip('-')
        if key not in KNOWN_KEYS:
            raise DescriptorParseError(
                f"Unknown descriptor key '{key}'. Known keys: {', '.join(KNOWN_KEYS)}")
        if key in values:
            raise DescriptorParseError(f"Descriptor key '{key}' given more than once")
        if not value:
            raise DescriptorParseError(f"Descriptor key '{key}' has no value")
        values[key] = value
    return values


def parse_descriptor(tokens: Iterable[str]) -> WorkloadDescriptor:
    """
    Build a workload from key=value tokens.

    Raises:
        DescriptorParseError: malformed, unknown, or missing keys
    """
    values = split_tokens(tokens)
    fields: Dict[str, Any] = {}

    if 'ic' not in values:
        raise DescriptorParseError("Descriptor requires 'ic'")
    fields['ic'] = parse_positive_int('ic', values['ic'])

    spatial = [k for k in SPATIAL_KEYS if k in values]
    if 'sp' in values and spatial:
        raise DescriptorParseError(f"Give either 'sp' or {'/'.join(SPATIAL_KEYS)}, not both")
    if 'sp' in values:
        fields['sp'] = parse_positive_int('sp', values['sp'])
    elif spatial:
        sp = 1
        for key in SPATIAL_KEYS:
            if key in values:
                sp *= parse_positive_int(key, values[key])
        fields['sp'] = sp
    else:
        raise DescriptorParseError("Descriptor requires 'sp' or mb/id/ih/iw")

    direction = values.get('dir', 'fwd').lower()
    if direction not in ('fwd', 'bwd'):
        raise DescriptorParseError(f"'dir' expects fwd or bwd, got '{direction}'")
    fields['is_forward'] = direction == 'fwd'

    if 'dt' in values:
        try:
            fields['data_type'] = DataType(values['dt'].lower())
        except ValueError:
            raise DescriptorParseError(
                f"'dt' expects one of {', '.join(d.value for d in DataType)}, "
                f"got '{values['dt']}'") from None
    if 'variant' in values:
        try:
            fields['variant'] = KernelVariant(values['variant'].lower())
        except ValueError:
            raise DescriptorParseError(
                f"'variant' expects reusable or optimized, got '{values['variant']}'") from None
    if 'sg' in values:
        fields['sub_group_size'] = parse_positive_int('sg', values['sg'])
    if 'max_ic_block' in values:
        fields['max_ic_block'] = parse_positive_int('max_ic_block', values['max_ic_block'])

    for key, field_name in FLAG_KEYS.items():
        if key in values:
            fields[field_name] = parse_bool(key, values[key])

    pinned: Dict[str, Any] = {}
    for key, field_name in TUNABLE_KEYS.items():
        if key not in values:
            continue
        if key == 'atomics':
            pinned[field_name] = parse_bool(key, values[key])
        else:
            pinned[field_name] = parse_positive_int(key, values[key])

    try:
        workload = WorkloadDescriptor(**fields)
    except (TypeError, ValueError) as e:
        raise DescriptorParseError(str(e)) from e
    return workload.with_pinned(**pinned) if pinned else workload


def format_descriptor(workload: WorkloadDescriptor) -> str:
    """Canonical key=value form of a workload (pinned tunables included)"""
    parts: List[str] = [
        f"dir={'fwd' if workload.is_forward else 'bwd'}",
        f"dt={workload.data_type.value}",
        f"ic={workload.ic}",
        f"sp={workload.sp}",
        f"sg={workload.sub_group_size}",
        f"variant={workload.variant.value}",
    ]
    for key, field_name in FLAG_KEYS.items():
        parts.append(f"{key}={int(getattr(workload, field_name))}")
    if workload.max_ic_block is not None:
        parts.append(f"max_ic_block={workload.max_ic_block}")
    for key, field_name in TUNABLE_KEYS.items():
        if workload.is_pinned(field_name):
            value = workload.value(field_name)
            parts.append(f"{key}={int(value) if isinstance(value, bool) else value}")
    return " ".join(parts)
