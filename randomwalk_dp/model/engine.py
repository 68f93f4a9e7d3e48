"""Dynamic program stepping engine."""

import logging
import time
from collections import deque
from types import MappingProxyType
from typing import Deque, Dict, List, Mapping, NamedTuple, Optional, Tuple

import numpy as np
from scipy import sparse

from ..errors import NumericError
from .executor import ParallelExecutor
from .field_type import BoundaryPolicy, FieldType
from .grid import GridField
from .kernel import Kernel
from .state import ProgramState, StepSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 1e-9


def compile_transitions(field_types: np.ndarray,
                        kernels: Mapping[FieldType, Kernel],
                        boundary: BoundaryPolicy) -> Tuple[sparse.csr_matrix, np.ndarray]:
    """
    Compile the kernel table into a sparse transition operator.

    ``T[d, s]`` is the fraction of the mass of source cell ``s`` (flat,
    row-major index) that arrives at destination ``d`` after the boundary
    policy is applied. Each source uses the kernel of its own field type.
    Returns the operator and the per-source retained fraction (column
    sums); the rest of a source's mass is absorbed.
    """
    rows, cols = field_types.shape
    dest_idx: List[np.ndarray] = []
    src_idx: List[np.ndarray] = []
    data: List[np.ndarray] = []

    for code in np.unique(field_types):
        kernel = kernels[FieldType(int(code))]
        src_r, src_c = np.nonzero(field_types == code)
        src_flat = src_r * cols + src_c

        for (dr, dc), weight in kernel.contributions(1.0).items():
            if weight == 0.0:
                continue
            dst_r, keep_r = boundary.resolve_array(src_r + dr, rows)
            dst_c, keep_c = boundary.resolve_array(src_c + dc, cols)
            keep = keep_r & keep_c
            if not np.any(keep):
                continue
            dest_idx.append(dst_r[keep] * cols + dst_c[keep])
            src_idx.append(src_flat[keep])
            data.append(np.full(int(keep.sum()), weight))

    n = rows * cols
    if data:
        operator = sparse.csr_matrix(
            (np.concatenate(data), (np.concatenate(dest_idx), np.concatenate(src_idx))),
            shape=(n, n),
        )
    else:
        operator = sparse.csr_matrix((n, n), dtype=np.float64)
    # Canonical CSR keeps the per-row summation order fixed
    operator.sum_duplicates()
    operator.sort_indices()
    retained = np.asarray(operator.sum(axis=0)).ravel()
    return operator, retained


class Checkpoint(NamedTuple):
    """Committed state of a DynamicProgram, as taken by ``checkpoint()``."""
    mass: np.ndarray
    step_count: int
    state: ProgramState
    absorbed_mass: float
    last_max_change: float
    history: Tuple[StepSnapshot, ...]


class DynamicProgram:
    """
    One runnable random walk simulation over a single grid.

    Implements:
    1. Kernel dispatch by field type (compiled once into a transition operator)
    2. Double-buffered stepping, one row chunk per worker
    3. Mass conservation checks before a step is published
    4. Termination by iteration count or convergence epsilon
    5. Bounded history of committed snapshots

    Instances are created by DynamicProgramBuilder.
    """

    def __init__(self, grid: GridField,
                 kernels: Mapping[FieldType, Kernel],
                 boundary: BoundaryPolicy,
                 executor: ParallelExecutor,
                 iterations: Optional[int] = None,
                 epsilon: Optional[float] = None,
                 history_capacity: int = 0,
                 tolerance: float = DEFAULT_TOLERANCE,
                 owns_executor: bool = False,
                 name: str = "dp"):
        self.name = name
        self.grid = grid
        self.boundary = boundary
        self.iterations = iterations
        self.epsilon = epsilon
        self.tolerance = tolerance
        self.executor = executor
        self._owns_executor = owns_executor
        self._kernels: Mapping[FieldType, Kernel] = MappingProxyType(dict(kernels))

        self.state = ProgramState.BUILT
        self.step_count = 0
        self.absorbed_mass = 0.0
        self.last_max_change = float("nan")

        self._operator, self._retained = compile_transitions(
            grid.field_types, self._kernels, boundary
        )
        self._loss = np.clip(1.0 - self._retained, 0.0, None)
        self._can_absorb = bool(np.any(self._loss > 0.0))
        self._blocks = self._partition_operator()

        self._history: Optional[Deque[StepSnapshot]] = (
            deque(maxlen=history_capacity) if history_capacity > 0 else None
        )
        self._record()

        logger.info(
            "Built %s: grid %dx%d, %d kernel(s), boundary=%s, iterations=%s, epsilon=%s, workers=%d",
            self.name, grid.rows, grid.cols, len(self._kernels), boundary.value,
            iterations, epsilon, executor.workers
        )

    def _partition_operator(self) -> List[Tuple[int, int, sparse.csr_matrix]]:
        """Split the operator into one destination row-block per worker."""
        cols = self.grid.cols
        blocks = []
        for start, stop in self.executor.partition(self.grid.rows):
            a, b = start * cols, stop * cols
            blocks.append((a, b, self._operator[a:b]))
        return blocks

    @property
    def kernels(self) -> Mapping[FieldType, Kernel]:
        """Read-only FieldType -> Kernel table."""
        return self._kernels

    @property
    def shape(self) -> Tuple[int, int]:
        return self.grid.shape

    @property
    def transitions(self) -> sparse.csr_matrix:
        """Compiled operator, ``T[d, s]`` over flat row-major cell indices."""
        return self._operator

    @property
    def history_capacity(self) -> int:
        return self._history.maxlen if self._history is not None else 0

    def is_finished(self) -> bool:
        """Check if stepping has reached a terminal state."""
        return self.state.terminal

    def distribution(self) -> np.ndarray:
        return self.grid.distribution()

    def total_mass(self) -> float:
        return self.grid.total_mass()

    def snapshot(self) -> StepSnapshot:
        return StepSnapshot(
            step=self.step_count,
            distribution=self.grid.distribution(),
            absorbed_mass=self.absorbed_mass,
            max_change=self.last_max_change
        )

    def history(self) -> List[StepSnapshot]:
        """Retained snapshots, oldest first. Empty if history is disabled."""
        return list(self._history) if self._history is not None else []

    def _record(self) -> None:
        if self._history is not None:
            self._history.append(self.snapshot())

    def checkpoint(self) -> Checkpoint:
        """Capture the committed state so a later ``restore()`` can return to it."""
        return Checkpoint(
            mass=self.grid.mass,
            step_count=self.step_count,
            state=self.state,
            absorbed_mass=self.absorbed_mass,
            last_max_change=self.last_max_change,
            history=tuple(self._history) if self._history is not None else ()
        )

    def restore(self, checkpoint: Checkpoint) -> None:
        """Roll back to a checkpoint taken from this program."""
        self.grid.publish(checkpoint.mass)
        self.step_count = checkpoint.step_count
        self.state = checkpoint.state
        self.absorbed_mass = checkpoint.absorbed_mass
        self.last_max_change = checkpoint.last_max_change
        if self._history is not None:
            self._history = deque(checkpoint.history, maxlen=self._history.maxlen)
        logger.info("%s: restored to step %d", self.name, self.step_count)

    def step(self) -> StepSnapshot:
        """
        Execute one discrete time step.

        1. Take the published buffer as the immutable input
        2. Apply the transition operator chunk-wise on the executor
        3. Wait for all chunks (barrier)
        4. Verify finiteness, non-negativity and mass conservation
        5. Publish the next buffer and update counters
        6. Evaluate termination

        Once terminal, further calls return the current snapshot unchanged.
        On NumericError or ExecutionError nothing is published.
        """
        if self.state.terminal:
            return self.snapshot()

        # Phase 1: immutable input
        prev = self.grid.mass
        prev_flat = prev.ravel()
        next_flat = np.empty_like(prev_flat)

        # Phase 2 & 3: each worker owns a disjoint slice of the next buffer
        def make_task(a: int, b: int, block: sparse.csr_matrix):
            def task() -> int:
                next_flat[a:b] = block.dot(prev_flat)
                return b - a
            return task

        self.executor.run_step([make_task(a, b, block) for a, b, block in self._blocks])

        # Phase 4: validate before anything becomes visible
        self._verify(prev_flat, next_flat)
        absorbed = float(prev_flat.dot(self._loss)) if self._can_absorb else 0.0
        next_mass = next_flat.reshape(self.grid.shape)
        max_change = float(np.max(np.abs(next_flat - prev_flat)))

        # Phase 5: commit
        self.grid.publish(next_mass)
        self.step_count += 1
        self.absorbed_mass += absorbed
        self.last_max_change = max_change

        logger.debug(
            "%s step %d: mass=%.12g absorbed=%.3g max_change=%.3g",
            self.name, self.step_count, self.grid.total_mass(), absorbed, max_change
        )

        # Phase 6: termination
        previous_state = self.state
        if self.epsilon is not None and max_change < self.epsilon:
            self.state = ProgramState.CONVERGED
        elif self.iterations is not None and self.step_count >= self.iterations:
            self.state = ProgramState.COMPLETE
        else:
            self.state = ProgramState.STEPPING
        if self.state is not previous_state:
            logger.info("%s: %s -> %s at step %d", self.name,
                        previous_state.value, self.state.value, self.step_count)

        self._record()
        return self.snapshot()

    def _verify(self, prev_flat: np.ndarray, next_flat: np.ndarray) -> None:
        if not np.all(np.isfinite(next_flat)):
            raise NumericError(f"{self.name}: step {self.step_count + 1} produced non-finite mass")
        if np.any(next_flat < 0):
            raise NumericError(f"{self.name}: step {self.step_count + 1} produced negative mass")

        prev_total = float(prev_flat.sum())
        next_total = float(next_flat.sum())
        absorbed = float(prev_flat.dot(self._loss)) if self._can_absorb else 0.0
        tol = self.tolerance * max(1.0, prev_total)

        if abs(next_total - (prev_total - absorbed)) > tol:
            raise NumericError(
                f"{self.name}: mass not conserved at step {self.step_count + 1}: "
                f"before={prev_total!r} after={next_total!r} absorbed={absorbed!r}"
            )
        if next_total > prev_total + tol:
            raise NumericError(
                f"{self.name}: mass increased at step {self.step_count + 1}: "
                f"before={prev_total!r} after={next_total!r}"
            )

    def run(self, deadline: Optional[float] = None,
            max_steps: Optional[int] = None) -> StepSnapshot:
        """
        Step until terminal.

        ``deadline`` (seconds of wall-clock time) and ``max_steps`` are only
        checked between steps, so the returned snapshot is always a fully
        committed one.
        """
        start = time.monotonic()
        taken = 0
        while not self.is_finished():
            if max_steps is not None and taken >= max_steps:
                break
            if deadline is not None and time.monotonic() - start >= deadline:
                logger.warning("%s: deadline of %.3fs reached after step %d",
                               self.name, deadline, self.step_count)
                break
            self.step()
            taken += 1

        logger.info("%s: computation took %.3fs (%d step(s), state=%s)",
                    self.name, time.monotonic() - start, taken, self.state.value)
        return self.snapshot()

    def get_summary(self) -> Dict:
        """Get summary statistics for the program."""
        (peak_row, peak_col), peak_mass = self.grid.peak()
        return {
            'name': self.name,
            'total_steps': self.step_count,
            'state': self.state.value,
            'total_mass': self.grid.total_mass(),
            'absorbed_mass': self.absorbed_mass,
            'peak_mass': peak_mass,
            'peak_cell': (peak_row, peak_col),
            'max_change': self.last_max_change
        }

    def close(self) -> None:
        """Shut down the executor if this program created it."""
        if self._owns_executor:
            self.executor.shutdown()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return (f"DynamicProgram(name={self.name!r}, shape={self.shape}, "
                f"step={self.step_count}, state={self.state.value})")
