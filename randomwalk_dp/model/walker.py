"""
Sampling individual walks from a computed dynamic program.

A DynamicProgram run with history keeps the distribution P_t of every
retained step. A walk ending at cell ``a`` at step T is drawn backwards:
at each step the predecessor ``b`` of the current cell is chosen with
probability proportional to its weight at step t-1, until step 0 is
reached. The result is ordered from step 0 to step T.

Two walkers are provided:
- StandardWalker weighs the stay/north/south/west/east neighbours by
  P_{t-1}(b) alone, which matches the simple random walk.
- LandCoverWalker weighs every possible source by P_{t-1}(b) * T[a, b],
  using the compiled transition operator, so each field type's kernel
  and the boundary policy are honoured.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np

from ..errors import (
    ConfigError,
    InconsistentPathError,
    InsufficientHistoryError,
    NoPathExistsError,
    WalkerError,
)
from .engine import DynamicProgram

logger = logging.getLogger(__name__)

Walk = List[Tuple[int, int]]

# Stay, north, south, west, east
NEIGHBOURHOOD = ((0, 0), (-1, 0), (1, 0), (0, -1), (0, 1))


def step_distributions(dp: DynamicProgram, time_steps: int) -> List[np.ndarray]:
    """
    Flat distributions for steps 0..time_steps, taken from the history.

    Raises InsufficientHistoryError when the program does not retain
    all of them.
    """
    needed = time_steps + 1
    if dp.history_capacity < needed:
        raise InsufficientHistoryError(
            f"{dp.name}: a walk over {time_steps} step(s) needs history capacity "
            f"{needed}, got {dp.history_capacity}"
        )
    by_step = {s.step: s.distribution.ravel() for s in dp.history()}
    missing = [t for t in range(needed) if t not in by_step]
    if missing:
        raise InsufficientHistoryError(
            f"{dp.name}: steps {missing[0]}..{missing[-1]} are not retained "
            f"(program is at step {dp.step_count})"
        )
    return [by_step[t] for t in range(needed)]


class Walker:
    """Base class for backward walk sampling."""

    name = "Walker"
    short_name = "w"

    def __init__(self, seed: Optional[int] = None,
                 rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def predecessors(self, dp: DynamicProgram, cell: int,
                     previous: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Candidate flat source indices of ``cell`` and their unnormalized weights."""
        raise NotImplementedError

    def generate_path(self, dp: DynamicProgram, row: int, col: int,
                      time_steps: Optional[int] = None) -> Walk:
        """
        Sample one walk that is at (row, col) after ``time_steps`` steps.

        ``time_steps`` defaults to the program's current step. Returns
        ``time_steps + 1`` (row, col) cells, starting at step 0.
        """
        if not isinstance(dp, DynamicProgram):
            raise WalkerError(f"{self.name} requires a single DynamicProgram, got {type(dp).__name__}")
        time_steps = dp.step_count if time_steps is None else time_steps
        if isinstance(time_steps, bool) or int(time_steps) != time_steps or time_steps < 0:
            raise ConfigError(f"Walk length must be a non-negative integer, got {time_steps}")
        time_steps = int(time_steps)
        dp.grid.check_bounds(row, col)

        distributions = step_distributions(dp, time_steps)
        cols = dp.grid.cols
        current = row * cols + col
        if not distributions[time_steps][current] > 0:
            raise NoPathExistsError(
                f"{dp.name}: no mass at ({row}, {col}) after {time_steps} step(s)"
            )

        path = [current]
        for t in range(time_steps, 0, -1):
            candidates, weights = self.predecessors(dp, current, distributions[t - 1])
            total = float(weights.sum()) if len(weights) else 0.0
            if not total > 0:
                r, c = divmod(current, cols)
                raise InconsistentPathError(
                    f"{dp.name}: no predecessor of ({r}, {c}) holds mass at step {t - 1}"
                )
            current = int(candidates[self.rng.choice(len(candidates), p=weights / total)])
            path.append(current)

        path.reverse()
        logger.debug("%s: sampled %d step walk ending at (%d, %d)",
                     self.name, time_steps, row, col)
        return [divmod(cell, cols) for cell in path]

    def generate_paths(self, dp: DynamicProgram, qty: int, row: int, col: int,
                       time_steps: Optional[int] = None) -> List[Walk]:
        """Sample ``qty`` independent walks with the same endpoint."""
        return [self.generate_path(dp, row, col, time_steps) for _ in range(qty)]

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class StandardWalker(Walker):
    """Steps to one of the five simple-walk neighbours, weighted by prior mass."""

    name = "Standard Walker"
    short_name = "swg"

    def predecessors(self, dp, cell, previous):
        row, col = divmod(cell, dp.grid.cols)
        candidates = np.array([
            (row + dr) * dp.grid.cols + (col + dc)
            for dr, dc in NEIGHBOURHOOD
            if dp.grid.in_bounds(row + dr, col + dc)
        ], dtype=np.int64)
        return candidates, previous[candidates]


class LandCoverWalker(Walker):
    """Weighs every source by its prior mass and its field type's kernel."""

    name = "Land Cover Walker"
    short_name = "lcw"

    def predecessors(self, dp, cell, previous):
        operator = dp.transitions
        start, stop = operator.indptr[cell], operator.indptr[cell + 1]
        sources = operator.indices[start:stop]
        return sources, operator.data[start:stop] * previous[sources]
