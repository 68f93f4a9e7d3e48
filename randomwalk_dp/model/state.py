"""State snapshot dataclasses for the random walk dynamic program."""

from dataclasses import dataclass
from enum import Enum

import numpy as np


class ProgramState(Enum):
    """Lifecycle of a DynamicProgram."""
    BUILT = "built"
    STEPPING = "stepping"
    CONVERGED = "converged"
    COMPLETE = "complete"

    @property
    def terminal(self) -> bool:
        return self in (ProgramState.CONVERGED, ProgramState.COMPLETE)


@dataclass(frozen=True)
class StepSnapshot:
    """Immutable copy of a committed time step."""
    step: int
    distribution: np.ndarray  # Copy of the mass buffer, row-major
    absorbed_mass: float      # Cumulative mass absorbed up to this step
    max_change: float         # Max per-cell change from the previous step

    def total_mass(self) -> float:
        return float(self.distribution.sum())
