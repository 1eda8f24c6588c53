#!/usr/bin/env python
"""
Kernel Configuration Planner CLI

Chooses the execution configuration (channel block, spatial blocks, vector
width, reduction strategy, unroll) of an NHWC batch normalization workload
for a target GPU, from the performance model, the plan registry, or live
measurement.

Modes (mutually exclusive):
    (default)      Trace: print the plan for one workload
    --bench        Measure the model's plan and store it in the registry
    --search       Measure every candidate and store the fastest
    --auto-search  Re-run search for every stored plan of the device

Workload descriptor (key=value tokens):
    dir=fwd|bwd dt=f32|f16|bf16|s8 ic=N sp=N (or mb= id= ih= iw=) sg=N
    stats= one_pass= relu= add_relu= scale= shift= diff_stats= deterministic=
    variant=reusable|optimized max_ic_block=N
    Pinned: atomics= max_vect= ic_block= stat_sp_block= update_sp_block=
            update_sp_unroll=

Usage:
    # Plan a forward pass from the model
    ./cli/plan_kernel.py dir=fwd dt=f32 ic=256 mb=16 ih=56 iw=56

    # Show the model version and its hardware parameters as well
    ./cli/plan_kernel.py --model nhwc_bnorm_v1 --device max_1550 ic=64 sp=1024

    # Plan for the XPU device PyTorch sees
    ./cli/plan_kernel.py --device auto ic=256 sp=3136

    # Keep the channel block fixed
    ./cli/plan_kernel.py ic=512 sp=3136 ic_block=64

    # Measure and store
    ./cli/plan_kernel.py --bench --registry plans.db dir=bwd dt=bf16 ic=128 sp=12544

    # Exhaustive search with a 60 second budget
    ./cli/plan_kernel.py --search --time-budget 60 ic=256 sp=3136

    # Rebuild every stored plan of the device
    ./cli/plan_kernel.py --auto-search --registry plans.db
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add repo root to path
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root / "src"))

from kernel_planner.core.errors import PlannerError, RegistryError
from kernel_planner.core.logging import LogConfig, PlannerLogger
from kernel_planner.execute.executor import ExecutionConfig
from kernel_planner.hardware.device_query import list_presets
from kernel_planner.planner.descriptor import parse_descriptor
from kernel_planner.planner.report import add_tag, describe_plan, registry_line
from kernel_planner.planner.session import PlannerMode, PlannerSession
from kernel_planner.registry.config import get_config


class _ArgumentParser(argparse.ArgumentParser):
    """Argument errors exit with status 1 like every other failure"""

    def error(self, message):
        self.print_usage(sys.stderr)
        print(f"Error: {message}", file=sys.stderr)
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        description="Kernel Configuration Planner - NHWC batch normalization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        'descriptor',
        nargs='*',
        help="Workload descriptor tokens (key=value)",
    )

    # Modes
    parser.add_argument(
        '--bench',
        action='store_true',
        help="Measure the model's plan and store it",
    )
    parser.add_argument(
        '--search',
        action='store_true',
        help="Measure every candidate and store the fastest",
    )
    parser.add_argument(
        '--auto-search',
        action='store_true',
        help="Rebuild every stored plan of the device",
    )

    # Model and hardware
    parser.add_argument(
        '--model',
        type=str,
        help="Cost model version or YAML table path (also prints the Model tag)",
    )
    parser.add_argument(
        '--device',
        type=str,
        help=f"Device preset ({', '.join(list_presets())}), or 'auto' for the XPU runtime device",
    )
    parser.add_argument(
        '--registry',
        type=Path,
        help="Plan registry database (default: from configuration)",
    )

    # Search settings
    parser.add_argument(
        '--time-budget',
        type=float,
        help="Wall-clock budget of search and auto-search, seconds",
    )
    parser.add_argument(
        '--workers',
        type=int,
        help="Threads evaluating candidates in model mode",
    )

    # Logging
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help="Print per-candidate model estimates",
    )
    parser.add_argument(
        '--log-dir',
        type=Path,
        help="Also write a debug log file to this directory",
    )
    return parser


def select_mode(args) -> PlannerMode:
    chosen = [mode for flag, mode in ((args.bench, PlannerMode.BENCH),
                                      (args.search, PlannerMode.SEARCH),
                                      (args.auto_search, PlannerMode.AUTO_SEARCH))
              if flag]
    if len(chosen) > 1:
        raise PlannerError("--bench, --search and --auto-search are mutually exclusive")
    return chosen[0] if chosen else PlannerMode.TRACE


def create_session(args, mode: PlannerMode, logger: PlannerLogger) -> PlannerSession:
    config = get_config()
    if args.workers is not None:
        config.workers = args.workers
    if args.time_budget is not None:
        config.time_budget_s = args.time_budget

    executor = None
    if mode.measures:
        # PyTorch is only needed when kernels are actually run
        from kernel_planner.execute.torch_executor import TorchProxyExecutor
        executor = TorchProxyExecutor(ExecutionConfig(
            warmup_iterations=config.warmup_iterations,
            measurement_iterations=config.measurement_iterations,
        ))

    kwargs = dict(device=args.device, model=args.model, registry_path=args.registry,
                  executor=executor, logger=logger)
    try:
        return PlannerSession.from_config(config, **kwargs)
    except RegistryError as e:
        if mode is not PlannerMode.TRACE:
            raise
        logger.warning(f"{e}; planning without registry")
        return PlannerSession.from_config(config, use_registry=False, **kwargs)


def format_reqs(session: PlannerSession, workload) -> str:
    pinned = workload.pinned_fields()
    lines = [f"{name}={int(v) if isinstance(v, bool) else v}" for name, v in pinned.items()]
    if not session.hw.supports_atomics_reduction:
        lines.append("atomics reduction unavailable on this architecture")
    if workload.deterministic:
        lines.append("deterministic: atomics reduction disabled")
    return "\n".join(lines) if lines else "none"


def format_model(session: PlannerSession) -> str:
    table = session.table
    lines = [f"version: {session.model_name}",
             f"entries: {len(table)}",
             session.hw.format_summary()]
    return "\n".join(lines)


def run(args, mode: PlannerMode, session: PlannerSession) -> int:
    if mode is PlannerMode.AUTO_SEARCH:
        count = session.auto_search()
        print(f"Rebuilt {count} plan(s) for {session.hw.fingerprint}")
        return 0

    workload = parse_descriptor(args.descriptor)

    if mode is PlannerMode.TRACE:
        result = session.create_plan(workload)
        print(describe_plan(result, session.hw))
        print(add_tag("Reqs", format_reqs(session, workload)))
        if args.model:
            print(add_tag("Model", format_model(session)))
        return 0

    if mode is PlannerMode.BENCH:
        result, entry = session.bench(workload)
    else:
        result, entry = session.search(workload)
    print(describe_plan(result, session.hw))
    print(entry.summary())
    print(add_tag("Registry entry", registry_line(entry)))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        mode = select_mode(args)
        if mode is not PlannerMode.AUTO_SEARCH and not args.descriptor:
            raise PlannerError("A workload descriptor is required, e.g. ic=256 sp=3136")
        if mode is PlannerMode.AUTO_SEARCH and args.descriptor:
            raise PlannerError("--auto-search takes no workload descriptor")
    except PlannerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    log_config = LogConfig(console_level=logging.DEBUG if args.verbose else logging.INFO)
    logger = PlannerLogger(output_dir=args.log_dir,
                           filename_prefix=f"plan_{mode.value}" if args.log_dir else None,
                           config=log_config, stream=sys.stderr)
    try:
        with create_session(args, mode, logger) as session:
            return run(args, mode, session)
    except PlannerError as e:
        print(f"Error: {e}", file=sys.stderr)
        logger.close()
        return 1


if __name__ == "__main__":
    sys.exit(main())
