"""Compressed persistence of committed snapshots."""

from pathlib import Path
from typing import Tuple

import numpy as np

from ..model.state import StepSnapshot

FORMAT_VERSION = 1


def save_snapshot(path: Path, snapshot: StepSnapshot, field_types: np.ndarray) -> Path:
    """
    Write a snapshot and its terrain to a compressed ``.npz`` file.

    Returns the path actually written (numpy appends ``.npz`` if missing).
    """
    path = Path(path)
    if path.suffix != ".npz":
        path = path.with_name(path.name + ".npz")
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(
        path,
        version=np.array(FORMAT_VERSION),
        step=np.array(snapshot.step),
        absorbed_mass=np.array(snapshot.absorbed_mass),
        max_change=np.array(snapshot.max_change),
        distribution=snapshot.distribution,
        field_types=np.asarray(field_types, dtype=np.int32),
    )
    return path


def load_snapshot(path: Path) -> Tuple[StepSnapshot, np.ndarray]:
    """Read back a file written by ``save_snapshot``."""
    with np.load(Path(path)) as data:
        version = int(data["version"])
        if version != FORMAT_VERSION:
            raise ValueError(f"Unsupported snapshot format version {version}")
        snapshot = StepSnapshot(
            step=int(data["step"]),
            distribution=np.array(data["distribution"], dtype=np.float64),
            absorbed_mass=float(data["absorbed_mass"]),
            max_change=float(data["max_change"]),
        )
        field_types = np.array(data["field_types"], dtype=np.int32)
    return snapshot, field_types
