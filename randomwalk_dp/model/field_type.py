"""Terrain categories and boundary policies."""

from enum import Enum, IntEnum
from typing import Optional, Tuple, Union

import numpy as np

from ..errors import ConfigError, UnknownFieldTypeError


class FieldType(IntEnum):
    """
    Closed set of terrain/medium categories for a grid cell.

    Values follow the ESA WorldCover land cover codes so that classified
    land cover rasters can be used as terrain input directly.
    """
    TREE_COVER = 10
    SHRUBLAND = 20
    GRASSLAND = 30
    CROPLAND = 40
    BUILT_UP = 50
    BARE = 60
    SNOW_ICE = 70
    WATER = 80
    WETLAND = 90
    MANGROVES = 95
    MOSS_LICHEN = 100
    BARRIER = 255

    @classmethod
    def parse(cls, value: Union["FieldType", int, str]) -> "FieldType":
        """Accept a member, an integer code or a (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper().replace("-", "_").replace(" ", "_")
            if key in cls.__members__:
                return cls.__members__[key]
            try:
                value = int(key)
            except ValueError:
                raise UnknownFieldTypeError(f"Unknown field type: {value!r}")
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise UnknownFieldTypeError(f"Unknown field type: {value!r}")


class BoundaryPolicy(Enum):
    """What happens to mass directed outside the grid."""
    ABSORB = "absorb"
    REFLECT = "reflect"
    WRAP = "wrap"

    @classmethod
    def parse(cls, value: Union["BoundaryPolicy", str]) -> "BoundaryPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown boundary policy: {value!r}")

    def resolve(self, index: int, size: int) -> Optional[int]:
        """
        Map a 1D index onto [0, size).

        Returns None if the mass is absorbed. Reflection mirrors about the
        edge cell (-1 -> 1, size -> size - 2) and folds repeatedly for
        offsets longer than the axis.
        """
        if 0 <= index < size:
            return index
        if self is BoundaryPolicy.ABSORB:
            return None
        if self is BoundaryPolicy.WRAP:
            return index % size
        if size == 1:
            return 0
        while not 0 <= index < size:
            if index < 0:
                index = -index
            if index >= size:
                index = 2 * (size - 1) - index
        return index

    def resolve_array(self, indices: np.ndarray, size: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Vectorized ``resolve``.

        Returns (resolved, kept) where ``kept`` masks the entries that stay
        on the grid; resolved values of dropped entries are meaningless.
        """
        indices = np.asarray(indices, dtype=np.int64)
        inside = (indices >= 0) & (indices < size)
        if self is BoundaryPolicy.ABSORB:
            return np.where(inside, indices, 0), inside
        kept = np.ones(indices.shape, dtype=bool)
        if self is BoundaryPolicy.WRAP:
            return np.mod(indices, size), kept
        if size == 1:
            return np.zeros_like(indices), kept
        period = 2 * (size - 1)
        folded = np.mod(indices, period)
        return np.where(folded >= size, period - folded, folded), kept
