"""
Builder assembling a validated, ready-to-run DynamicProgram.

Typical usage::

    dp = (DynamicProgramBuilder()
          .set_field_types(terrain)
          .set_field_kernels({FieldType.GRASSLAND: UniformKernel(1),
                              FieldType.WATER: SinkKernel()})
          .set_initial_distribution(InitialDistribution.point(10, 10))
          .set_boundary_policy(BoundaryPolicy.REFLECT)
          .set_iterations(100)
          .set_parallelism(4)
          .build())

All configuration problems surface from ``build()`` as ConfigError
subclasses; nothing is validated lazily during stepping.
"""

from typing import Dict, List, Mapping, Optional, Tuple, Union

import numpy as np

from ..errors import (
    BarrierOutOfRangeError,
    ConfigError,
    InvalidDistributionError,
    InvalidGridError,
    InvalidKernelError,
    MissingKernelError,
    NoTerminationError,
    NumericError,
)
from .engine import DEFAULT_TOLERANCE, DynamicProgram
from .executor import ParallelExecutor
from .field_type import BoundaryPolicy, FieldType
from .grid import GridField, InitialDistribution, as_field_type_matrix
from .kernel import Kernel, SinkKernel


class DynamicProgramBuilder:
    """Collects configuration and validates it in ``build()``."""

    def __init__(self):
        self._field_types = None
        self._kernels: Dict[FieldType, Kernel] = {}
        self._initial: Optional[InitialDistribution] = None
        self._boundary = BoundaryPolicy.ABSORB
        self._iterations: Optional[int] = None
        self._epsilon: Optional[float] = None
        self._parallelism = 1
        self._executor: Optional[ParallelExecutor] = None
        self._history_capacity = 0
        self._target_mass = 1.0
        self._tolerance = DEFAULT_TOLERANCE
        self._barriers: List[Tuple[int, int]] = []
        self._name = "dp"

    def set_name(self, name: str) -> "DynamicProgramBuilder":
        self._name = name
        return self

    def set_field_types(self, field_types) -> "DynamicProgramBuilder":
        """Terrain classification: row-major matrix of FieldType tags."""
        self._field_types = field_types
        return self

    def set_field_kernels(self, mapping: Mapping) -> "DynamicProgramBuilder":
        """FieldType -> Kernel table. Keys may be members, codes or names."""
        self._kernels = dict(mapping)
        return self

    def set_initial_distribution(self, initial: Union[InitialDistribution, str, np.ndarray]
                                 ) -> "DynamicProgramBuilder":
        if isinstance(initial, str):
            if initial != InitialDistribution.UNIFORM:
                raise InvalidDistributionError(
                    f"Only 'uniform' can be given by name, got {initial!r}"
                )
            initial = InitialDistribution.uniform()
        elif not isinstance(initial, InitialDistribution):
            initial = InitialDistribution.matrix(initial)
        self._initial = initial
        return self

    def set_boundary_policy(self, policy: Union[BoundaryPolicy, str]) -> "DynamicProgramBuilder":
        self._boundary = policy
        return self

    def set_iterations(self, iterations: int) -> "DynamicProgramBuilder":
        self._iterations = iterations
        return self

    def set_convergence_epsilon(self, epsilon: float) -> "DynamicProgramBuilder":
        self._epsilon = epsilon
        return self

    def set_parallelism(self, workers: int) -> "DynamicProgramBuilder":
        self._parallelism = workers
        return self

    def set_executor(self, executor: ParallelExecutor) -> "DynamicProgramBuilder":
        """Use a shared executor instead of creating one per program."""
        self._executor = executor
        return self

    def set_history_capacity(self, capacity: int) -> "DynamicProgramBuilder":
        self._history_capacity = capacity
        return self

    def set_target_mass(self, mass: float) -> "DynamicProgramBuilder":
        self._target_mass = mass
        return self

    def set_tolerance(self, tolerance: float) -> "DynamicProgramBuilder":
        self._tolerance = tolerance
        return self

    def add_single_barrier(self, row: int, col: int) -> "DynamicProgramBuilder":
        """Turn a single cell into an impassable BARRIER cell."""
        self._barriers.append((row, col))
        return self

    def add_rect_barrier(self, row0: int, col0: int,
                         row1: int, col1: int) -> "DynamicProgramBuilder":
        """Turn every cell of the inclusive rectangle into BARRIER."""
        for r in range(min(row0, row1), max(row0, row1) + 1):
            for c in range(min(col0, col1), max(col0, col1) + 1):
                self._barriers.append((r, c))
        return self

    def _terrain(self) -> np.ndarray:
        if self._field_types is None:
            raise InvalidGridError("Field types (terrain) must be set")
        codes = np.array(as_field_type_matrix(self._field_types))

        rows, cols = codes.shape
        for r, c in self._barriers:
            if not (0 <= r < rows and 0 <= c < cols):
                raise BarrierOutOfRangeError(
                    f"Barrier ({r}, {c}) outside grid of shape {codes.shape}"
                )
            codes[r, c] = int(FieldType.BARRIER)
        return codes

    def _kernel_table(self, codes: np.ndarray) -> Dict[FieldType, Kernel]:
        present = {FieldType(int(code)) for code in np.unique(codes)}
        table = {FieldType.parse(ft): kernel for ft, kernel in self._kernels.items()}
        if FieldType.BARRIER in present and FieldType.BARRIER not in table:
            table[FieldType.BARRIER] = SinkKernel()

        missing = present - set(table)
        if missing:
            raise MissingKernelError(missing)

        for ft, kernel in table.items():
            if not isinstance(kernel, Kernel):
                raise InvalidKernelError(f"Kernel for {ft.name} is not a Kernel: {kernel!r}")
            try:
                kernel.contributions(1.0)
            except NumericError as e:
                raise InvalidKernelError(f"Kernel for {ft.name} is invalid: {e}") from e
        return table

    def _initial_mass(self, shape: Tuple[int, int]) -> np.ndarray:
        if self._initial is None:
            raise InvalidDistributionError("Initial distribution must be set")
        if not np.isfinite(self._target_mass) or self._target_mass < 0:
            raise InvalidDistributionError(f"Invalid target mass: {self._target_mass}")

        mass = self._initial.materialize(shape, self._target_mass)
        if not np.all(np.isfinite(mass)) or np.any(mass < 0):
            raise InvalidDistributionError("Initial distribution must be finite and non-negative")

        total = float(mass.sum())
        tol = self._tolerance * max(1.0, self._target_mass)
        if abs(total - self._target_mass) > tol:
            raise InvalidDistributionError(
                f"Initial distribution sums to {total}, expected {self._target_mass}"
            )
        return mass

    def _check_termination(self) -> None:
        if self._iterations is None and self._epsilon is None:
            raise NoTerminationError(
                "At least one termination condition (iterations or convergence epsilon) is required"
            )
        if self._iterations is not None and (
                isinstance(self._iterations, bool) or int(self._iterations) != self._iterations
                or self._iterations < 1):
            raise NoTerminationError(f"Iterations must be a positive integer, got {self._iterations}")
        if self._epsilon is not None and not (np.isfinite(self._epsilon) and self._epsilon > 0):
            raise NoTerminationError(f"Convergence epsilon must be positive, got {self._epsilon}")

    def build(self) -> DynamicProgram:
        """
        Validate the configuration and construct the program.

        Raises a ConfigError subclass on any problem.
        """
        codes = self._terrain()
        kernels = self._kernel_table(codes)
        boundary = BoundaryPolicy.parse(self._boundary)
        mass = self._initial_mass(codes.shape)
        self._check_termination()
        if not (self._tolerance > 0):
            raise ConfigError(f"Tolerance must be positive, got {self._tolerance}")
        if self._history_capacity < 0:
            raise ConfigError(f"History capacity must be non-negative, got {self._history_capacity}")

        executor = self._executor
        owns_executor = executor is None
        if executor is None:
            if int(self._parallelism) < 1:
                raise ConfigError(f"Parallelism must be at least 1, got {self._parallelism}")
            executor = ParallelExecutor(int(self._parallelism))
        elif executor.closed:
            raise ConfigError("Injected executor has already been shut down")

        grid = GridField(codes, mass)
        return DynamicProgram(
            grid=grid,
            kernels=kernels,
            boundary=boundary,
            executor=executor,
            iterations=int(self._iterations) if self._iterations is not None else None,
            epsilon=float(self._epsilon) if self._epsilon is not None else None,
            history_capacity=int(self._history_capacity),
            tolerance=float(self._tolerance),
            owns_executor=owns_executor,
            name=self._name
        )
