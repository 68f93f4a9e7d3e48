"""Worker pool driving the per-step chunks of a dynamic program."""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from ..errors import ConfigError, ExecutionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ParallelExecutor:
    """
    Fixed-size thread pool with a barrier after every batch of tasks.

    The executor is constructed explicitly and handed to the programs that
    use it; there is no process-wide pool. Each call to ``run_step`` is one
    time step: every task runs to completion before the call returns, and
    failures are aggregated instead of surfacing only the first.
    """

    def __init__(self, workers: int = 1, thread_name_prefix: str = "dp-worker"):
        if int(workers) < 1:
            raise ConfigError(f"Parallelism must be at least 1, got {workers}")
        self.workers = int(workers)
        self._pool: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix=thread_name_prefix
        )

    @property
    def closed(self) -> bool:
        return self._pool is None

    def partition(self, rows: int, chunks: Optional[int] = None) -> List[Tuple[int, int]]:
        """
        Split [0, rows) into contiguous, disjoint (start, stop) ranges.

        At most one range per worker (or per ``chunks``); sizes differ by
        at most one row.
        """
        if rows <= 0:
            return []
        count = max(1, min(chunks or self.workers, rows))
        base, extra = divmod(rows, count)
        ranges = []
        start = 0
        for i in range(count):
            stop = start + base + (1 if i < extra else 0)
            ranges.append((start, stop))
            start = stop
        return ranges

    def run_step(self, tasks: Sequence[Callable[[], T]]) -> List[T]:
        """
        Run all tasks and wait for every one of them.

        Returns results in submission order. Raises ExecutionError carrying
        all failures if any task raised.
        """
        if self._pool is None:
            raise ExecutionError("Executor has been shut down")
        if not tasks:
            return []

        try:
            futures = [self._pool.submit(task) for task in tasks]
        except RuntimeError as e:
            raise ExecutionError(f"Could not schedule step tasks: {e}") from e

        # Barrier: nothing is published before every chunk finished
        wait(futures)

        results: List[T] = []
        failures = []
        for idx, future in enumerate(futures):
            exc = future.exception()
            if exc is not None:
                failures.append((idx, exc))
                results.append(None)
            else:
                results.append(future.result())

        if failures:
            for idx, exc in failures:
                logger.debug("Task %d failed: %s: %s", idx, type(exc).__name__, exc)
            raise ExecutionError(
                f"{len(failures)} of {len(tasks)} worker task(s) failed", failures
            )
        return results

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    def __repr__(self) -> str:
        return f"ParallelExecutor(workers={self.workers}, closed={self.closed})"
