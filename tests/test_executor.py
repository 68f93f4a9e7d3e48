import threading

import pytest

from randomwalk_dp.errors import ConfigError, ExecutionError
from randomwalk_dp.model.executor import ParallelExecutor


@pytest.mark.parametrize("rows, workers, expected", [
    (10, 3, [(0, 4), (4, 7), (7, 10)]),
    (2, 4, [(0, 1), (1, 2)]),
    (5, 1, [(0, 5)]),
    (0, 2, []),
])
def test_partition(rows, workers, expected):
    with ParallelExecutor(workers) as executor:
        assert executor.partition(rows) == expected


def test_partition_with_explicit_chunks():
    with ParallelExecutor(2) as executor:
        ranges = executor.partition(9, chunks=4)
        assert ranges == [(0, 3), (3, 5), (5, 7), (7, 9)]


def test_run_step_keeps_submission_order():
    with ParallelExecutor(4) as executor:
        results = executor.run_step([lambda i=i: i * i for i in range(10)])
        assert results == [i * i for i in range(10)]
        assert executor.run_step([]) == []


def test_run_step_aggregates_all_failures():
    ran = []
    lock = threading.Lock()

    def ok(i):
        def task():
            with lock:
                ran.append(i)
            return i
        return task

    def fail(exc):
        def task():
            with lock:
                ran.append(exc)
            raise exc
        return task

    value_error = ValueError("bad chunk")
    key_error = KeyError("missing")
    with ParallelExecutor(3) as executor:
        with pytest.raises(ExecutionError) as excinfo:
            executor.run_step([ok(0), fail(value_error), ok(2), fail(key_error)])

    assert [idx for idx, _ in excinfo.value.failures] == [1, 3]
    assert excinfo.value.failures[0][1] is value_error
    assert "2 failure(s)" in str(excinfo.value)
    assert len(ran) == 4


def test_shutdown_executor_rejects_work():
    executor = ParallelExecutor(2)
    executor.shutdown()
    assert executor.closed
    with pytest.raises(ExecutionError):
        executor.run_step([lambda: 1])
    executor.shutdown()


def test_invalid_worker_count():
    with pytest.raises(ConfigError):
        ParallelExecutor(0)
