"""
PyTorch Proxy Executor

Measures a kernel sequence on a real device by replaying each kernel's memory
traffic with PyTorch: the input volume is streamed through a reduction and
the output volume is written with a fill, `ncalls` times per kernel. The
proxy captures launch overhead and memory-tier effects of the sequence; it
does not execute the normalization arithmetic itself.

Usage:
    from kernel_planner.execute.torch_executor import TorchProxyExecutor

    executor = TorchProxyExecutor(ExecutionConfig(device="xpu"))
    stats = executor.measure(kernels, workload, candidate, hw)
    print(f"{stats.mean_ms:.3f} ms")
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import torch

from ..core.structures import (
    CandidateConfiguration,
    KernelDescriptor,
    KernelKind,
    WorkloadDescriptor,
)
from ..hardware.profile import HardwareProfile
from .executor import (
    AnalyticalExecutor,
    ExecutionConfig,
    KernelExecutor,
    LaunchGeometry,
    TimingStats,
    compute_stats,
)


def resolve_device(device: str = "auto") -> str:
    """Resolve 'auto' to the best available torch device"""
    if device != "auto":
        return device
    if hasattr(torch, 'xpu') and torch.xpu.is_available():
        return "xpu"
    if torch.cuda.is_available():
        return "cuda"
    return "cpu"


def synchronize(device: str):
    if device.startswith("cuda"):
        torch.cuda.synchronize()
    elif device.startswith("xpu"):
        torch.xpu.synchronize()


@dataclass
class RunContext:
    """Context for one measurement"""
    device: str
    config: ExecutionConfig

    # Timing infrastructure
    use_cuda_events: bool = False
    start_event: Optional[Any] = None
    end_event: Optional[Any] = None

    def __post_init__(self):
        if self.device.startswith("cuda") and torch.cuda.is_available():
            self.use_cuda_events = True
            self.start_event = torch.cuda.Event(enable_timing=True)
            self.end_event = torch.cuda.Event(enable_timing=True)


class TorchProxyExecutor(KernelExecutor):
    """
    Live measurement through PyTorch memory-traffic proxies.

    Launch geometry is not observable through PyTorch, so it is derived in
    closed form exactly like AnalyticalExecutor does.
    """

    def __init__(self, config: Optional[ExecutionConfig] = None):
        self.config = config or ExecutionConfig()
        self.device = resolve_device(self.config.device)
        self._geometry = AnalyticalExecutor()

    def launch_geometry(self, kind: KernelKind, workload: WorkloadDescriptor,
                        candidate: CandidateConfiguration,
                        hw: HardwareProfile) -> LaunchGeometry:
        return self._geometry.launch_geometry(kind, workload, candidate, hw)

    def measure(self, kernels: List[KernelDescriptor], workload: WorkloadDescriptor,
                candidate: CandidateConfiguration, hw: HardwareProfile) -> TimingStats:
        ctx = RunContext(device=self.device, config=self.config)
        operation = self._build_sequence(kernels, ctx.device)
        timings = self._run_timed(operation, ctx)
        return compute_stats(timings)

    def _build_sequence(self, kernels: List[KernelDescriptor], device: str) -> Callable:
        """Allocate proxy buffers and return a callable replaying the sequence"""
        steps = []
        for kernel in kernels:
            if kernel.ncalls == 0:
                continue
            src = None
            if kernel.input_nbytes > 0:
                src = torch.ones(kernel.input_nbytes, dtype=torch.uint8, device=device)
            dst = None
            if kernel.output_nbytes > 0:
                dst = torch.empty(kernel.output_nbytes, dtype=torch.uint8, device=device)
            steps.append((kernel.ncalls, src, dst))

        def operation():
            for ncalls, src, dst in steps:
                for _ in range(ncalls):
                    if src is not None:
                        torch.sum(src)
                    if dst is not None:
                        dst.fill_(1)

        return operation

    def _run_timed(self, operation: Callable, ctx: RunContext) -> List[float]:
        """
        Run operation with timing.

        Returns list of timing measurements in milliseconds.
        """
        config = ctx.config
        timings = []

        # Warmup
        for _ in range(config.warmup_iterations):
            operation()

        synchronize(ctx.device)

        for _ in range(config.measurement_iterations):
            if ctx.use_cuda_events:
                ctx.start_event.record()
                operation()
                ctx.end_event.record()
                torch.cuda.synchronize()
                elapsed_ms = ctx.start_event.elapsed_time(ctx.end_event)
            else:
                if config.sync_before_timing:
                    synchronize(ctx.device)

                start = time.perf_counter()
                operation()

                if config.sync_before_timing:
                    synchronize(ctx.device)

                elapsed_ms = (time.perf_counter() - start) * 1000

            timings.append(elapsed_ms)

        return timings
