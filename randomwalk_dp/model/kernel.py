"""
Transition kernels for the random walk dynamic program.

A kernel is a square stencil of weights centred on the source cell:
``weights[dr + radius, dc + radius]`` is the fraction of the source mass
sent to the cell at offset (dr, dc). Conserving kernels sum to 1;
absorbing kernels may sum to less, the remainder being absorbed.
"""

from enum import Enum
from typing import Dict, List, Tuple

import numpy as np
from scipy.stats import multivariate_normal

from ..errors import NumericError

# Tolerance for kernel weight sums
KERNEL_TOLERANCE = 1e-9

Offset = Tuple[int, int]


class Direction(Enum):
    """Compass direction as a (row, col) offset. Row 0 is the top edge."""
    NORTH = (-1, 0)
    EAST = (0, 1)
    SOUTH = (1, 0)
    WEST = (0, -1)


class Kernel:
    """
    Transition rule redistributing one cell's mass to its neighbourhood.

    Subclasses only differ in how they generate the weight stencil; the
    mapping from mass to contributions is shared.
    """

    name = "custom"

    def __init__(self, weights, absorbing: bool = False):
        weights = np.array(weights, dtype=np.float64)
        self.absorbing = absorbing
        self._validate(weights)
        weights.setflags(write=False)
        self.weights = weights

    def _validate(self, weights: np.ndarray) -> None:
        if weights.ndim != 2 or weights.shape[0] != weights.shape[1]:
            raise NumericError(f"Kernel must be a square matrix, got shape {weights.shape}")
        if weights.shape[0] % 2 == 0:
            raise NumericError(f"Kernel size must be odd, got {weights.shape[0]}")
        if not np.all(np.isfinite(weights)):
            raise NumericError("Kernel weights must be finite")
        if np.any(weights < 0):
            raise NumericError("Kernel weights must be non-negative")

        total = float(weights.sum())
        if self.absorbing:
            if total > 1.0 + KERNEL_TOLERANCE:
                raise NumericError(f"Absorbing kernel weights sum to {total} > 1")
        elif abs(total - 1.0) > KERNEL_TOLERANCE:
            raise NumericError(
                f"Kernel weights sum to {total}, expected 1 (mark the kernel absorbing to allow less)"
            )

    @property
    def size(self) -> int:
        return self.weights.shape[0]

    @property
    def radius(self) -> int:
        return self.size // 2

    @property
    def retention(self) -> float:
        """Fraction of the source mass that stays on the grid (before boundaries)."""
        return float(self.weights.sum())

    def at(self, dr: int, dc: int) -> float:
        """Weight for offset (dr, dc); zero outside the stencil."""
        r = self.radius
        if abs(dr) > r or abs(dc) > r:
            return 0.0
        return float(self.weights[dr + r, dc + r])

    def offsets(self) -> List[Offset]:
        """Offsets with non-zero weight, in row-major order."""
        r = self.radius
        rows, cols = np.nonzero(self.weights)
        return [(int(i) - r, int(j) - r) for i, j in zip(rows, cols)]

    def contributions(self, mass: float) -> Dict[Offset, float]:
        """
        Distribute ``mass`` over the stencil.

        Raises NumericError if any contribution is negative or non-finite.
        """
        out: Dict[Offset, float] = {}
        for dr, dc in self.offsets():
            value = mass * self.at(dr, dc)
            if not np.isfinite(value) or value < 0:
                raise NumericError(
                    f"{self.name} kernel emitted invalid mass {value} at offset ({dr}, {dc})"
                )
            out[(dr, dc)] = value
        return out

    def __eq__(self, other) -> bool:
        if not isinstance(other, Kernel):
            return NotImplemented
        return (self.absorbing == other.absorbing
                and self.weights.shape == other.weights.shape
                and np.array_equal(self.weights, other.weights))

    def __hash__(self):
        return hash((self.absorbing, self.weights.tobytes()))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(size={self.size}, absorbing={self.absorbing})"


class IdentityKernel(Kernel):
    """All mass stays in place."""

    name = "identity"

    def __init__(self):
        super().__init__([[1.0]])


class SimpleRwKernel(Kernel):
    """Von Neumann walk: stay or move to one of the 4 neighbours, 0.2 each."""

    name = "simple_rw"

    def __init__(self):
        super().__init__([
            [0.0, 0.2, 0.0],
            [0.2, 0.2, 0.2],
            [0.0, 0.2, 0.0],
        ])


class UniformKernel(Kernel):
    """Uniform diffusion over the (2r+1)x(2r+1) Moore neighbourhood."""

    name = "uniform"

    def __init__(self, radius: int = 1):
        if radius < 0:
            raise NumericError(f"Kernel radius must be non-negative, got {radius}")
        size = 2 * radius + 1
        super().__init__(np.full((size, size), 1.0 / (size * size)))


class BiasedRwKernel(Kernel):
    """
    Simple walk with a drift.

    ``probability`` of the mass moves towards ``direction``; the rest is
    spread like the simple walk.
    """

    name = "biased_rw"

    def __init__(self, probability: float, direction: Direction):
        if not 0.0 <= probability <= 1.0:
            raise NumericError(f"Bias probability must lie in [0, 1], got {probability}")
        direction = direction if isinstance(direction, Direction) else Direction[str(direction).upper()]
        weights = np.array(SimpleRwKernel().weights) * (1.0 - probability)
        dr, dc = direction.value
        weights[1 + dr, 1 + dc] += probability
        self.probability = probability
        self.direction = direction
        super().__init__(weights)


class NormalKernel(Kernel):
    """Isotropic bivariate normal distribution sampled on the stencil."""

    name = "normal"

    def __init__(self, diffusion: float, size: int):
        if diffusion <= 0:
            raise NumericError(f"Diffusion must be positive, got {diffusion}")
        self.diffusion = diffusion
        super().__init__(self._normalized(self._pdf(diffusion, size)))

    @staticmethod
    def _pdf(diffusion: float, size: int) -> np.ndarray:
        if size < 1 or size % 2 == 0:
            raise NumericError(f"Kernel size must be odd and positive, got {size}")
        r = size // 2
        dr, dc = np.mgrid[-r:r + 1, -r:r + 1]
        dist = multivariate_normal(mean=[0.0, 0.0], cov=[[diffusion, 0.0], [0.0, diffusion]])
        return dist.pdf(np.dstack((dr, dc))).reshape(size, size)

    @staticmethod
    def _normalized(weights: np.ndarray) -> np.ndarray:
        total = weights.sum()
        if not np.isfinite(total) or total <= 0:
            raise NumericError("Kernel weights cannot be normalized")
        return weights / total


class HalfNormalKernel(NormalKernel):
    """
    Normal kernel truncated to one side.

    Stencil rows/columns more than one step away from the centre on the
    side opposite to ``side`` are removed, then the weights renormalized.
    """

    name = "half_normal"

    def __init__(self, diffusion: float, size: int, side: Direction):
        if diffusion <= 0:
            raise NumericError(f"Diffusion must be positive, got {diffusion}")
        side = side if isinstance(side, Direction) else Direction[str(side).upper()]
        weights = self._pdf(diffusion, size)
        r = size // 2
        dr, dc = np.mgrid[-r:r + 1, -r:r + 1]
        sr, sc = side.value
        # keep the centre band plus everything on the chosen side
        weights[(dr * sr + dc * sc) < -1] = 0.0
        self.diffusion = diffusion
        self.side = side
        Kernel.__init__(self, self._normalized(weights))


class SinkKernel(Kernel):
    """
    Absorbing kernel for terminal/obstacle cells.

    ``retention`` of the mass stays in place, the rest is absorbed.
    """

    name = "sink"

    def __init__(self, retention: float = 0.0):
        if not 0.0 <= retention <= 1.0:
            raise NumericError(f"Retention must lie in [0, 1], got {retention}")
        super().__init__([[retention]], absorbing=True)


KERNEL_TYPES = {
    cls.name: cls
    for cls in (Kernel, IdentityKernel, SimpleRwKernel, UniformKernel,
                BiasedRwKernel, NormalKernel, HalfNormalKernel, SinkKernel)
}
