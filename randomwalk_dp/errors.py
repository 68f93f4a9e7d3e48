"""Exception hierarchy for dynamic program construction and stepping."""

from typing import Iterable, List, Tuple


class RandomWalkError(Exception):
    """Base class for all errors raised by randomwalk_dp."""


class ConfigError(RandomWalkError, ValueError):
    """Invalid configuration. Always raised before any step is taken."""


class MissingKernelError(ConfigError):
    """A field type present in the grid has no kernel assigned."""

    def __init__(self, field_types: Iterable):
        self.field_types = sorted(field_types)
        names = ", ".join(getattr(ft, "name", str(ft)) for ft in self.field_types)
        super().__init__(f"No kernel assigned for field type(s): {names}")


class InvalidGridError(ConfigError):
    pass


class InvalidDistributionError(ConfigError):
    pass


class InvalidKernelError(ConfigError):
    pass


class InvalidMergeWeightsError(ConfigError):
    pass


class NoTerminationError(ConfigError):
    pass


class BarrierOutOfRangeError(ConfigError):
    pass


class UnknownFieldTypeError(ConfigError):
    pass


class InsufficientHistoryError(ConfigError):
    """A walk needs more retained steps than the program keeps."""


class NumericError(RandomWalkError, ArithmeticError):
    """A kernel emitted invalid mass or a step violated mass conservation."""


class ExecutionError(RandomWalkError, RuntimeError):
    """
    One or more workers failed during a step.

    All failures of the step are collected in ``failures`` as
    ``(task_index, exception)`` pairs, ordered by task index.
    """

    def __init__(self, message: str,
                 failures: List[Tuple[int, BaseException]] = None):
        self.failures = list(failures or [])
        if self.failures:
            details = "; ".join(
                f"task {idx}: {type(exc).__name__}: {exc}"
                for idx, exc in self.failures
            )
            message = f"{message} ({len(self.failures)} failure(s): {details})"
        super().__init__(message)


class WalkerError(RandomWalkError):
    """A path cannot be sampled from a computed program."""


class NoPathExistsError(WalkerError):
    """The endpoint holds no mass at the final step, so no walk ends there."""


class InconsistentPathError(WalkerError):
    """No predecessor with mass was found part way through a walk."""
