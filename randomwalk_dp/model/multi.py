"""Composition of several dynamic programs merged into one distribution."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import ConfigError, ExecutionError, InvalidMergeWeightsError, NumericError
from .engine import DynamicProgram

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-9


class MergeStrategy(Enum):
    """How member distributions are combined."""
    SUM = "sum"
    MAX = "max"
    WEIGHTED_AVERAGE = "weighted-average"

    @classmethod
    def parse(cls, value: Union["MergeStrategy", str]) -> "MergeStrategy":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "-")
        try:
            return cls(key)
        except ValueError:
            raise ConfigError(f"Unknown merge strategy: {value!r}")


class MultiDynamicProgram:
    """
    Drives an ordered collection of DynamicPrograms in lock-step.

    Members share no mutable state, so each step advances all of them
    concurrently (each one internally parallel on its own executor). A
    merge only ever sees members that have all committed the same step.
    """

    def __init__(self, programs: Sequence[DynamicProgram],
                 strategy: Union[MergeStrategy, str] = MergeStrategy.SUM,
                 weights: Optional[Sequence[float]] = None,
                 per_step: bool = False,
                 driver_threads: Optional[int] = None):
        self.programs: List[DynamicProgram] = list(programs)
        if not self.programs:
            raise ConfigError("MultiDynamicProgram requires at least one program")

        shapes = {dp.shape for dp in self.programs}
        if len(shapes) != 1:
            raise ConfigError(f"All programs must share a grid shape, got {sorted(shapes)}")

        self.strategy = MergeStrategy.parse(strategy)
        self.weights = self._validate_weights(weights)
        self.per_step = per_step
        self.step_count = 0
        self._merged_history: List[np.ndarray] = []
        self._driver = ThreadPoolExecutor(
            max_workers=driver_threads or len(self.programs),
            thread_name_prefix="multi-dp"
        )

        if self.per_step:
            self._merged_history.append(self.merge())

    def _validate_weights(self, weights: Optional[Sequence[float]]) -> Optional[np.ndarray]:
        if self.strategy is not MergeStrategy.WEIGHTED_AVERAGE:
            if weights is not None:
                raise InvalidMergeWeightsError(
                    f"Weights are only used with {MergeStrategy.WEIGHTED_AVERAGE.value}"
                )
            return None

        if weights is None:
            raise InvalidMergeWeightsError("Weighted average requires weights")
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != (len(self.programs),):
            raise InvalidMergeWeightsError(
                f"Expected {len(self.programs)} weights, got {weights.size}"
            )
        if not np.all(np.isfinite(weights)) or np.any(weights < 0):
            raise InvalidMergeWeightsError("Weights must be finite and non-negative")
        if abs(float(weights.sum()) - 1.0) > WEIGHT_TOLERANCE:
            raise InvalidMergeWeightsError(f"Weights sum to {weights.sum()}, expected 1.0")
        return weights

    @property
    def shape(self):
        return self.programs[0].shape

    @property
    def target_steps(self) -> Optional[int]:
        """Largest iteration target among members, if any has one."""
        targets = [dp.iterations for dp in self.programs if dp.iterations is not None]
        return max(targets) if targets else None

    def is_finished(self) -> bool:
        return all(dp.is_finished() for dp in self.programs)

    def _combine(self, arrays: Sequence[np.ndarray]) -> np.ndarray:
        stacked = np.stack(arrays)
        if self.strategy is MergeStrategy.SUM:
            return stacked.sum(axis=0)
        if self.strategy is MergeStrategy.MAX:
            return stacked.max(axis=0)
        return np.tensordot(self.weights, stacked, axes=1)

    def merge(self) -> np.ndarray:
        """Combine the current member distributions."""
        return self._combine([dp.distribution() for dp in self.programs])

    @property
    def absorbed_mass(self) -> float:
        """Absorbed mass combined with the same strategy as the distributions."""
        return float(self._combine([np.array(dp.absorbed_mass) for dp in self.programs]))

    def merged_history(self) -> List[np.ndarray]:
        """Per-step merged distributions (only recorded with per_step=True)."""
        return [m.copy() for m in self._merged_history]

    def step(self) -> np.ndarray:
        """
        Advance every unfinished member by one step and wait for all of them.

        Finished members keep their state (their step is a no-op). When every
        member is finished nothing is stepped and the step count stays put.

        If any member fails, the members that did commit are rolled back so
        all of them stay on the same step. Raises NumericError when every
        failure was numeric, otherwise ExecutionError listing every failure.
        """
        active = [(idx, dp) for idx, dp in enumerate(self.programs) if not dp.is_finished()]
        if not active:
            return self.merge()

        checkpoints = {idx: dp.checkpoint() for idx, dp in active}
        futures = [(idx, self._driver.submit(dp.step)) for idx, dp in active]
        wait([f for _, f in futures])

        failures = [(idx, f.exception()) for idx, f in futures if f.exception() is not None]
        if failures:
            failed = {idx for idx, _ in failures}
            for idx, dp in active:
                if idx not in failed:
                    dp.restore(checkpoints[idx])
            logger.warning("multi step %d failed in program(s) %s, rolled back",
                           self.step_count + 1, sorted(failed))
            self._raise_step_error(failures, len(futures))

        self.step_count += 1
        merged = self.merge()
        if self.per_step:
            self._merged_history.append(merged.copy())
        logger.debug("multi step %d: merged mass=%.12g", self.step_count, float(merged.sum()))
        return merged

    def _raise_step_error(self, failures: List[Tuple[int, BaseException]], submitted: int) -> None:
        message = f"{len(failures)} of {submitted} program(s) failed to step"
        if all(isinstance(exc, NumericError) for _, exc in failures):
            details = "; ".join(f"{self.programs[idx].name}: {exc}" for idx, exc in failures)
            raise NumericError(f"{message}: {details}") from failures[0][1]
        raise ExecutionError(message, failures)

    def run(self, steps: Optional[int] = None,
            deadline: Optional[float] = None,
            on_step: Optional[Callable[[int, np.ndarray], None]] = None) -> np.ndarray:
        """
        Step all members ``steps`` times (default: the largest member target)
        or until all are finished, then return the merged distribution.

        The deadline, in seconds, is only checked between steps.
        ``on_step(step_count, merged)`` is called after every committed step.
        """
        steps = steps if steps is not None else self.target_steps
        start = time.monotonic()
        taken = 0
        while not self.is_finished():
            if steps is not None and taken >= steps:
                break
            if deadline is not None and time.monotonic() - start >= deadline:
                logger.warning("multi: deadline of %.3fs reached after step %d",
                               deadline, self.step_count)
                break
            merged = self.step()
            taken += 1
            if on_step is not None:
                on_step(self.step_count, merged)

        logger.info("Computation took %.3fs (%d program(s), %d step(s), strategy=%s)",
                    time.monotonic() - start, len(self.programs), taken, self.strategy.value)
        return self.merge()

    def get_summary(self) -> dict:
        merged = self.merge()
        return {
            'programs': [dp.get_summary() for dp in self.programs],
            'strategy': self.strategy.value,
            'total_steps': self.step_count,
            'merged_mass': float(merged.sum()),
            'merged_peak': float(merged.max()),
            'absorbed_mass': self.absorbed_mass
        }

    def close(self) -> None:
        """Shut down the driver pool and every member's own executor."""
        self._driver.shutdown(wait=True)
        for dp in self.programs:
            dp.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
