"""
Tests for key=value workload descriptor parsing.
"""

import pytest

from kernel_planner.core.errors import DescriptorParseError
from kernel_planner.core.structures import DataType, KernelVariant, WorkloadDescriptor
from kernel_planner.planner.descriptor import (
    format_descriptor,
    parse_bool,
    parse_descriptor,
)


class TestParseBool:

    def test_accepted_spellings(self):
        for value in ("1", "true", "Yes", "ON"):
            assert parse_bool("relu", value) is True
        for value in ("0", "false", "No", "off"):
            assert parse_bool("relu", value) is False

    def test_rejected(self):
        with pytest.raises(DescriptorParseError, match="relu"):
            parse_bool("relu", "maybe")


class TestParseDescriptor:
    """Test parse_descriptor()."""

    def test_minimal(self):
        workload = parse_descriptor(["ic=256", "sp=3136"])
        assert workload == WorkloadDescriptor(ic=256, sp=3136)

    def test_spatial_product(self):
        workload = parse_descriptor(["ic=256", "mb=16", "ih=56", "iw=56"])
        assert workload.sp == 16 * 56 * 56

    def test_spatial_with_depth(self):
        workload = parse_descriptor(["ic=64", "mb=2", "id=4", "ih=8", "iw=8"])
        assert workload.sp == 2 * 4 * 8 * 8

    def test_problem_keys(self):
        workload = parse_descriptor(["dir=bwd", "dt=bf16", "ic=128", "sp=12544", "sg=32",
                                     "variant=reusable", "max_ic_block=64"])
        assert workload.is_backward
        assert workload.data_type == DataType.BF16
        assert workload.sub_group_size == 32
        assert workload.variant == KernelVariant.REUSABLE
        assert workload.max_ic_block == 64

    def test_flags(self):
        workload = parse_descriptor(["ic=64", "sp=100", "relu=1", "one_pass=yes",
                                     "stats=0", "deterministic=true"])
        assert workload.fuse_norm_relu
        assert workload.use_stats_one_pass
        assert not workload.calculate_stats
        assert workload.deterministic

    def test_pinned_tunables(self):
        workload = parse_descriptor(["ic=256", "sp=3136", "ic_block=64", "atomics=0",
                                     "update_sp_unroll=2"])
        assert workload.pinned_fields() == {
            'use_fused_atomics_reduction': False,
            'ic_block': 64,
            'update_sp_unroll': 2,
        }
        assert not workload.is_pinned('stat_sp_block')

    @pytest.mark.parametrize("tokens,message", [
        (["sp=3136"], "requires 'ic'"),
        (["ic=256"], "requires 'sp'"),
        (["ic=256", "sp=3136", "mb=16"], "not both"),
        (["ic=256", "sp=3136", "color=red"], "Unknown descriptor key"),
        (["ic=256", "ic=128", "sp=1"], "more than once"),
        (["ic=256", "sp"], "key=value"),
        (["ic=256", "sp="], "no value"),
        (["ic=0", "sp=3136"], "positive"),
        (["ic=abc", "sp=3136"], "integer"),
        (["ic=256", "sp=3136", "dir=up"], "fwd or bwd"),
        (["ic=256", "sp=3136", "dt=f64"], "'dt' expects"),
        (["ic=256", "sp=3136", "variant=fast"], "'variant' expects"),
        (["ic=256", "sp=3136", "atomics=2"], "boolean"),
    ])
    def test_malformed(self, tokens, message):
        with pytest.raises(DescriptorParseError, match=message):
            parse_descriptor(tokens)


class TestFormatDescriptor:

    def test_defaults(self):
        text = format_descriptor(WorkloadDescriptor(ic=256, sp=3136))
        assert text.startswith("dir=fwd dt=f32 ic=256 sp=3136 sg=16 variant=optimized")
        assert "stats=1" in text
        assert "atomics" not in text

    def test_pinned_values_included(self):
        workload = WorkloadDescriptor(ic=256, sp=3136).with_pinned(
            use_fused_atomics_reduction=True, ic_block=32)
        text = format_descriptor(workload)
        assert "atomics=1" in text
        assert "ic_block=32" in text

    def test_parse_of_formatted(self):
        workload = parse_descriptor(["dir=bwd", "dt=f16", "ic=96", "sp=49", "relu=1",
                                     "max_ic_block=48", "stat_sp_block=7"])
        assert parse_descriptor(format_descriptor(workload).split()) == workload
