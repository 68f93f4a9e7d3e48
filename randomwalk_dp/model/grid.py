"""Grid field management for the random walk dynamic program."""

from dataclasses import dataclass
from typing import Optional, Set, Tuple

import numpy as np

from ..errors import InvalidDistributionError, InvalidGridError
from .field_type import FieldType


class GridIndexError(IndexError):
    """Coordinate outside the grid."""


@dataclass(frozen=True)
class Cell:
    """Read-only view of a single grid cell."""
    row: int
    col: int
    field_type: FieldType
    mass: float


def _frozen(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


def as_field_type_matrix(field_types) -> np.ndarray:
    """Convert a matrix of FieldType tags (members, codes or names) to codes."""
    raw = np.asarray(field_types, dtype=object)
    if raw.ndim != 2 or raw.shape[0] == 0 or raw.shape[1] == 0:
        raise InvalidGridError(
            f"Field types must be a non-empty 2D matrix, got shape {raw.shape}"
        )
    codes = np.empty(raw.shape, dtype=np.int32)
    cache = {}
    for idx, value in np.ndenumerate(raw):
        key = value if isinstance(value, (str, int)) else int(value)
        if key not in cache:
            cache[key] = int(FieldType.parse(value))
        codes[idx] = cache[key]
    return codes


class GridField:
    """
    Owns the 2D terrain classification and the current probability mass.

    Both arrays are row-major with shape (rows, cols) and are kept
    read-only. A step never modifies the published mass buffer; it writes
    a new buffer which the owning DynamicProgram publishes afterwards.
    """

    def __init__(self, field_types: np.ndarray, mass: np.ndarray):
        field_types = np.array(field_types, dtype=np.int32)
        mass = np.array(mass, dtype=np.float64)

        if field_types.ndim != 2 or 0 in field_types.shape:
            raise InvalidGridError(
                f"Grid must be a non-empty 2D matrix, got shape {field_types.shape}"
            )
        if mass.shape != field_types.shape:
            raise InvalidDistributionError(
                f"Mass shape {mass.shape} does not match grid shape {field_types.shape}"
            )
        if not np.all(np.isfinite(mass)) or np.any(mass < 0):
            raise InvalidDistributionError("Initial mass must be finite and non-negative")

        self.rows, self.cols = field_types.shape
        self._field_types = _frozen(field_types)
        self._mass = _frozen(mass)

    @classmethod
    def from_matrix(cls, field_types, mass) -> "GridField":
        """Build from a terrain matrix and an explicit initial mass matrix."""
        return cls(as_field_type_matrix(field_types), mass)

    @classmethod
    def uniform(cls, field_types, target_mass: float = 1.0) -> "GridField":
        """Spread target_mass evenly over every cell."""
        codes = as_field_type_matrix(field_types)
        mass = np.full(codes.shape, target_mass / codes.size, dtype=np.float64)
        return cls(codes, mass)

    @classmethod
    def point(cls, field_types, row: int, col: int,
              target_mass: float = 1.0) -> "GridField":
        """Place all of target_mass on a single cell."""
        codes = as_field_type_matrix(field_types)
        rows, cols = codes.shape
        if not (0 <= row < rows and 0 <= col < cols):
            raise InvalidDistributionError(
                f"Point ({row}, {col}) outside grid of shape {codes.shape}"
            )
        mass = np.zeros(codes.shape, dtype=np.float64)
        mass[row, col] = target_mass
        return cls(codes, mass)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.rows, self.cols

    @property
    def size(self) -> int:
        return self.rows * self.cols

    @property
    def field_types(self) -> np.ndarray:
        """Read-only matrix of FieldType codes."""
        return self._field_types

    @property
    def mass(self) -> np.ndarray:
        """Read-only view of the currently published mass buffer."""
        return self._mass

    def check_bounds(self, row: int, col: int) -> None:
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise GridIndexError(
                f"Cell ({row}, {col}) outside grid of shape {self.shape}"
            )

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.cols

    def field_type_at(self, row: int, col: int) -> FieldType:
        self.check_bounds(row, col)
        return FieldType(int(self._field_types[row, col]))

    def mass_at(self, row: int, col: int) -> float:
        self.check_bounds(row, col)
        return float(self._mass[row, col])

    def cell(self, row: int, col: int) -> Cell:
        self.check_bounds(row, col)
        return Cell(row, col, self.field_type_at(row, col), self.mass_at(row, col))

    def total_mass(self) -> float:
        return float(self._mass.sum())

    def field_types_present(self) -> Set[FieldType]:
        return {FieldType(int(code)) for code in np.unique(self._field_types)}

    def distribution(self) -> np.ndarray:
        """Writable row-major copy of the current mass."""
        return self._mass.copy()

    def peak(self) -> Tuple[Tuple[int, int], float]:
        """Return ((row, col), mass) of the cell holding the most mass."""
        flat = int(np.argmax(self._mass))
        row, col = divmod(flat, self.cols)
        return (row, col), float(self._mass[row, col])

    def publish(self, next_mass: np.ndarray) -> None:
        """Swap in a fully computed next buffer. Owner use only."""
        if next_mass.shape != self.shape:
            raise ValueError(
                f"Buffer shape {next_mass.shape} does not match grid {self.shape}"
            )
        self._mass = _frozen(next_mass)


class InitialDistribution:
    """
    Specification of the starting mass: uniform, point or explicit matrix.

    Use the ``uniform``, ``point`` and ``matrix`` constructors.
    """

    UNIFORM = "uniform"
    POINT = "point"
    MATRIX = "matrix"

    def __init__(self, kind: str, coord: Optional[Tuple[int, int]] = None,
                 values: Optional[np.ndarray] = None):
        if kind not in (self.UNIFORM, self.POINT, self.MATRIX):
            raise InvalidDistributionError(f"Unknown initial distribution kind: {kind!r}")
        self.kind = kind
        self.coord = coord
        self.values = values

    @classmethod
    def uniform(cls) -> "InitialDistribution":
        return cls(cls.UNIFORM)

    @classmethod
    def point(cls, row: int, col: int) -> "InitialDistribution":
        return cls(cls.POINT, coord=(int(row), int(col)))

    @classmethod
    def matrix(cls, values) -> "InitialDistribution":
        return cls(cls.MATRIX, values=np.array(values, dtype=np.float64))

    def materialize(self, shape: Tuple[int, int], target_mass: float = 1.0) -> np.ndarray:
        """Produce the initial mass array for a grid of the given shape."""
        rows, cols = shape
        if self.kind == self.UNIFORM:
            return np.full(shape, target_mass / (rows * cols), dtype=np.float64)

        if self.kind == self.POINT:
            row, col = self.coord
            if not (0 <= row < rows and 0 <= col < cols):
                raise InvalidDistributionError(
                    f"Point ({row}, {col}) outside grid of shape {shape}"
                )
            mass = np.zeros(shape, dtype=np.float64)
            mass[row, col] = target_mass
            return mass

        if self.values.shape != tuple(shape):
            raise InvalidDistributionError(
                f"Initial matrix shape {self.values.shape} does not match grid shape {tuple(shape)}"
            )
        return self.values.copy()

    def __repr__(self) -> str:
        if self.kind == self.POINT:
            return f"InitialDistribution.point{self.coord}"
        return f"InitialDistribution.{self.kind}()"
