"""
Planner Session

Explicit context object of one planning run. A session owns the hardware
profile, the approximation table, the executor, the optional plan registry
and the logger; every planning mode runs through it and nothing is kept in
module state, so independent sessions can plan concurrently.

Modes:
- trace:       registry lookup, falling back to the cost model
- bench:       model plan, measured on the device, stored in the registry
- search:      every candidate measured, best stored in the registry
- auto-search: every stored plan of this hardware regenerated by search

Usage:
    from kernel_planner.planner.session import PlannerSession

    session = PlannerSession.from_config(get_config(), device="max_1550")
    workload, ms = session.plan(parse_descriptor(["ic=256", "sp=3136"]))
"""

from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

from ..calibration.approximation import ApproximationTable, load_table
from ..core.errors import PlanningError, RegistryError
from ..core.logging import PlannerLogger
from ..core.structures import WorkloadDescriptor
from ..estimation.cost_model import CostEstimator
from ..estimation.selector import ConfigurationSelector, PlanResult, write_back
from ..execute.executor import AnalyticalExecutor, DeviceLocks, KernelExecutor
from ..hardware.device_query import device_query_for
from ..hardware.profile import HardwareProfile
from ..registry.config import PlannerConfig
from ..registry.plan_registry import PlanRegistry, PlanRegistryEntry


class PlannerMode(Enum):
    TRACE = "trace"
    BENCH = "bench"
    SEARCH = "search"
    AUTO_SEARCH = "auto-search"

    @property
    def measures(self) -> bool:
        """Modes that need a measuring executor"""
        return self is not PlannerMode.TRACE


class PlannerSession:
    """
    Holds everything one planning run needs.

    The registry is optional: without one, trace mode always consults the
    model and the storing modes raise RegistryError.
    """

    def __init__(
        self,
        hw: HardwareProfile,
        table: ApproximationTable,
        executor: Optional[KernelExecutor] = None,
        registry: Optional[PlanRegistry] = None,
        logger: Optional[PlannerLogger] = None,
        workers: int = 1,
        time_budget_s: Optional[float] = None,
        model_name: Optional[str] = None,
    ):
        self.hw = hw
        self.table = table
        self.executor = executor or AnalyticalExecutor()
        self.registry = registry
        self.logger = logger or PlannerLogger.console()
        self.workers = workers
        self.time_budget_s = time_budget_s
        self.model_name = model_name or table.name
        self.device_locks = DeviceLocks()
        self.estimator = CostEstimator(hw, table, self.logger)
        self._selector = ConfigurationSelector(
            hw, self.estimator, self.executor, self.logger,
            workers=workers, device_locks=self.device_locks)

    @classmethod
    def from_config(
        cls,
        config: PlannerConfig,
        device: Optional[str] = None,
        model: Optional[str] = None,
        registry_path: Optional[Union[str, Path]] = None,
        executor: Optional[KernelExecutor] = None,
        logger: Optional[PlannerLogger] = None,
        use_registry: bool = True,
    ) -> 'PlannerSession':
        """
        Build a session from a configuration; explicit arguments win.

        Raises:
            UnsupportedArchitectureError: the device cannot be modeled
            ModelLookupError: the cost model is unknown or malformed
            RegistryError: the registry cannot be opened
        """
        info = device_query_for(device or config.device).query()
        hw = HardwareProfile.from_device(info)
        model_name = model or config.model
        table = load_table(model_name)
        registry = None
        if use_registry:
            registry = PlanRegistry(registry_path or config.registry_path)
        return cls(hw, table, executor=executor, registry=registry, logger=logger,
                   workers=config.workers, time_budget_s=config.time_budget_s,
                   model_name=model_name)

    @property
    def selector(self) -> ConfigurationSelector:
        return self._selector

    # =========================================================================
    # OPERATOR COMPILER ENTRY POINT
    # =========================================================================

    def plan(self, workload: WorkloadDescriptor) -> Tuple[WorkloadDescriptor, float]:
        """
        Fill the unpinned tunables of a workload.

        Returns:
            (updated workload, estimated time in ms)

        Raises:
            PlanningError: no configuration satisfies the workload
        """
        result = self.create_plan(workload)
        return result.workload, result.expected_time_ms

    # =========================================================================
    # MODES
    # =========================================================================

    def create_plan(self, workload: WorkloadDescriptor) -> PlanResult:
        """Trace mode: stored plan if there is one, else the model's choice"""
        stored = self._lookup(workload)
        if stored is not None:
            result = self._from_registry(workload, stored)
            if result is not None:
                return result
        self.logger.debug(f"model search for {workload.shape_class()}")
        return self._selector.select(workload)

    def bench(self, workload: WorkloadDescriptor) -> Tuple[PlanResult, PlanRegistryEntry]:
        """
        Benchmark mode: measure the model's plan and store it.

        Raises:
            PlanningError: the executor cannot measure
            RegistryError: no registry, or storing failed
        """
        self._require_measurement()
        registry = self._require_registry()
        planned = self._selector.select(workload)
        evaluation = self._selector.measure(workload, planned.candidate)
        if evaluation is None:
            raise PlanningError(f"cannot plan: [{planned.candidate}] cannot be dispatched")

        result = PlanResult(
            workload=write_back(workload, planned.candidate,
                                evaluation.total_time_ns, self.logger),
            candidate=planned.candidate,
            total_time_ns=evaluation.total_time_ns,
            kernels=planned.kernels,
            source="bench",
            evaluated=planned.evaluated,
            excluded=planned.excluded,
            timing=evaluation.timing,
        )
        entry = PlanRegistryEntry.create(workload, planned.candidate,
                                         evaluation.total_time_ns, self.hw.fingerprint,
                                         source="bench")
        self._store(registry, entry)
        return result, entry

    def search(self, workload: WorkloadDescriptor) -> Tuple[PlanResult, PlanRegistryEntry]:
        """
        Search mode: measure every candidate and store the fastest.

        Raises:
            SearchInterrupted: the budget expired before any measurement
            RegistryError: no registry, or storing failed
        """
        self._require_measurement()
        registry = self._require_registry()
        result = self._selector.search(workload, time_budget_s=self.time_budget_s)
        entry = PlanRegistryEntry.create(workload, result.candidate, result.total_time_ns,
                                         self.hw.fingerprint, source="search")
        self._store(registry, entry)
        return result, entry

    def auto_search(self) -> int:
        """
        Auto-search mode: re-run search for every stored plan of this hardware.

        The registry is replaced all-or-nothing; on any failure it keeps its
        previous contents.

        Returns:
            Number of rebuilt entries
        """
        self._require_measurement()
        registry = self._require_registry()
        fingerprint = self.hw.fingerprint

        def regenerate(workload: WorkloadDescriptor) -> PlanRegistryEntry:
            self.logger.info(f"rebuilding {workload.shape_class()}")
            result = self._selector.search(workload)
            return PlanRegistryEntry.create(workload, result.candidate,
                                            result.total_time_ns, fingerprint,
                                            source="rebuild")

        self.logger.section(f"Rebuilding plans of {fingerprint}")
        count = registry.rebuild(fingerprint, regenerate, time_budget_s=self.time_budget_s)
        self.logger.success(f"Rebuilt {count} plan(s)")
        return count

    def close(self):
        if self.registry is not None:
            self.registry.close()
        self.logger.close()

    def __enter__(self) -> 'PlannerSession':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _lookup(self, workload: WorkloadDescriptor) -> Optional[PlanRegistryEntry]:
        if self.registry is None:
            return None
        try:
            return self.registry.lookup(workload.shape_class(), self.hw.fingerprint)
        except RegistryError as e:
            self.logger.warning(f"{e}; using the cost model")
            return None

    def _from_registry(self, workload: WorkloadDescriptor,
                       entry: PlanRegistryEntry) -> Optional[PlanResult]:
        """Plan from a stored entry; None if it no longer dispatches"""
        evaluation = self._selector.evaluate(workload, entry.config)
        if evaluation is None:
            self.logger.warning(f"stored plan [{entry.config}] cannot be dispatched; "
                                f"using the cost model")
            return None
        updated = write_back(workload, entry.config, entry.time_ns, self.logger)
        return PlanResult(
            workload=updated.with_outputs(found_in_table=True),
            candidate=entry.config,
            total_time_ns=entry.time_ns,
            kernels=list(evaluation.kernels),
            source="registry",
        )

    def _store(self, registry: PlanRegistry, entry: PlanRegistryEntry):
        if registry.upsert(entry):
            self.logger.success(f"Stored {entry.source} plan for {entry.shape_class}")
        else:
            self.logger.info(f"Kept faster stored plan for {entry.shape_class}")

    def _require_registry(self) -> PlanRegistry:
        if self.registry is None:
            raise RegistryError("This mode needs a plan registry")
        return self.registry

    def _require_measurement(self):
        if not self.executor.can_measure:
            raise PlanningError(
                f"{type(self.executor).__name__} cannot measure kernels")
