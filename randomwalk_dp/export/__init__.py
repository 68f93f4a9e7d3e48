"""I/O package for random walk simulations."""

from .csv_writer import CSVWriter
from .visualizer import Visualizer
from .reporter import Reporter
from .archive import save_snapshot, load_snapshot

__all__ = ['CSVWriter', 'Visualizer', 'Reporter', 'save_snapshot', 'load_snapshot']
