"""Random walk probability distributions computed by dynamic programming."""

from .errors import (
    RandomWalkError,
    ConfigError,
    MissingKernelError,
    InvalidGridError,
    InvalidDistributionError,
    InvalidKernelError,
    InvalidMergeWeightsError,
    NoTerminationError,
    BarrierOutOfRangeError,
    UnknownFieldTypeError,
    NumericError,
    ExecutionError,
    InsufficientHistoryError,
    WalkerError,
    NoPathExistsError,
    InconsistentPathError,
)
from .model import *  # noqa: F401,F403
from .model import __all__ as _model_all

__version__ = "0.2.0"

__all__ = [
    'RandomWalkError',
    'ConfigError',
    'MissingKernelError',
    'InvalidGridError',
    'InvalidDistributionError',
    'InvalidKernelError',
    'InvalidMergeWeightsError',
    'NoTerminationError',
    'BarrierOutOfRangeError',
    'UnknownFieldTypeError',
    'NumericError',
    'ExecutionError',
    'InsufficientHistoryError',
    'WalkerError',
    'NoPathExistsError',
    'InconsistentPathError',
] + list(_model_all)
