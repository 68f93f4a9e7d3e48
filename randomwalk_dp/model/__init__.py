"""Model package for the random walk dynamic program."""

from .field_type import FieldType, BoundaryPolicy
from .grid import Cell, GridField, GridIndexError, InitialDistribution
from .kernel import (
    Direction,
    Kernel,
    IdentityKernel,
    SimpleRwKernel,
    UniformKernel,
    BiasedRwKernel,
    NormalKernel,
    HalfNormalKernel,
    SinkKernel,
)
from .state import ProgramState, StepSnapshot
from .executor import ParallelExecutor
from .engine import DynamicProgram
from .builder import DynamicProgramBuilder
from .multi import MergeStrategy, MultiDynamicProgram
from .walker import Walk, Walker, StandardWalker, LandCoverWalker

__all__ = [
    'FieldType',
    'BoundaryPolicy',
    'Cell',
    'GridField',
    'GridIndexError',
    'InitialDistribution',
    'Direction',
    'Kernel',
    'IdentityKernel',
    'SimpleRwKernel',
    'UniformKernel',
    'BiasedRwKernel',
    'NormalKernel',
    'HalfNormalKernel',
    'SinkKernel',
    'ProgramState',
    'StepSnapshot',
    'ParallelExecutor',
    'DynamicProgram',
    'DynamicProgramBuilder',
    'MergeStrategy',
    'MultiDynamicProgram',
    'Walk',
    'Walker',
    'StandardWalker',
    'LandCoverWalker',
]
