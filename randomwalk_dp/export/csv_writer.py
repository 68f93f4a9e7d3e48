"""CSV export functionality for random walk distributions."""

import csv
from pathlib import Path
from typing import List, Optional, TextIO, Tuple, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from ..model.state import StepSnapshot

HEADER = ('step', 'row', 'col', 'mass')


class CSVWriter:
    """
    Streams the occupied cells of each step to a long-format CSV.

    Output format:
        step,row,col,mass
        0,2,2,1.0
        1,1,2,0.2
        ...

    Only cells holding more than ``threshold`` mass are written, so a
    point start on a large grid does not produce rows*cols lines per step.
    Cells are emitted in row-major order.
    """

    def __init__(self, output_path: Path, threshold: float = 0.0):
        if threshold < 0:
            raise ValueError(f"CSV threshold must be non-negative, got {threshold}")
        self.output_path = Path(output_path)
        self.threshold = threshold
        self.rows_written = 0
        self.steps_written = 0
        self._file: Optional[TextIO] = None
        self._writer = None

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> None:
        """Create the output file and write the header."""
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.output_path, 'w', newline='')
        self._writer = csv.writer(self._file)
        self._writer.writerow(HEADER)

    def rows(self, snapshot: "StepSnapshot") -> List[Tuple[int, int, int, float]]:
        """``(step, row, col, mass)`` for every cell above the threshold."""
        distribution = snapshot.distribution
        occupied_r, occupied_c = np.nonzero(distribution > self.threshold)
        masses = distribution[occupied_r, occupied_c]
        return [
            (snapshot.step, int(r), int(c), float(m))
            for r, c, m in zip(occupied_r, occupied_c, masses)
        ]

    def append(self, snapshot: "StepSnapshot") -> int:
        """Write one step. Returns the number of cells written."""
        if not self.is_open:
            self.open()
        rows = self.rows(snapshot)
        self._writer.writerows(rows)
        self._file.flush()
        self.rows_written += len(rows)
        self.steps_written += 1
        return len(rows)

    def close(self) -> None:
        """Close file handle."""
        if self._file is not None:
            self._file.close()
            self._file = None
            self._writer = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
