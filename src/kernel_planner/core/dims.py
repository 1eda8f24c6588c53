"""Integer helpers for NHWC dispatch dimensions"""


def div_up(a: int, b: int) -> int:
    return -(-a // b)


def round_up(a: int, b: int) -> int:
    return div_up(a, b) * b


def calc_stat_ic(ic: int, ic_block: int, sub_group_size: int) -> int:
    """Channel extent of the statistics kernels: one sub-group per channel block"""
    return div_up(ic, ic_block) * sub_group_size
