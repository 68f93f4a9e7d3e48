import numpy as np
import pytest

from randomwalk_dp.errors import ConfigError, ExecutionError, InvalidMergeWeightsError, NumericError
from randomwalk_dp.model.builder import DynamicProgramBuilder
from randomwalk_dp.model.executor import ParallelExecutor
from randomwalk_dp.model.field_type import BoundaryPolicy, FieldType
from randomwalk_dp.model.grid import InitialDistribution
from randomwalk_dp.model.kernel import SimpleRwKernel
from randomwalk_dp.model.multi import MergeStrategy, MultiDynamicProgram
from randomwalk_dp.model.state import ProgramState


def make_program(row=2, col=2, iterations=4, rows=5, cols=5, executor=None):
    builder = (DynamicProgramBuilder()
               .set_field_types([[FieldType.GRASSLAND] * cols for _ in range(rows)])
               .set_field_kernels({FieldType.GRASSLAND: SimpleRwKernel()})
               .set_initial_distribution(InitialDistribution.point(row, col))
               .set_boundary_policy(BoundaryPolicy.REFLECT)
               .set_iterations(iterations))
    if executor is not None:
        builder.set_executor(executor)
    return builder.build()


@pytest.fixture
def programs():
    built = [make_program(1, 1), make_program(3, 3)]
    yield built
    for dp in built:
        dp.close()


def test_weighted_average_of_identical_programs():
    reference = make_program()
    reference.run()
    with MultiDynamicProgram([make_program(), make_program()],
                             MergeStrategy.WEIGHTED_AVERAGE, weights=[0.5, 0.5]) as multi:
        merged = multi.run()
        assert np.allclose(merged, reference.distribution())
        assert merged.sum() == pytest.approx(1.0)
    reference.close()


def test_sum_merge(programs):
    with MultiDynamicProgram(programs, "sum") as multi:
        merged = multi.run()
        assert merged.sum() == pytest.approx(2.0)
        expected = programs[0].distribution() + programs[1].distribution()
        assert np.allclose(merged, expected)
        assert multi.step_count == 4


def test_max_merge(programs):
    with MultiDynamicProgram(programs, MergeStrategy.MAX) as multi:
        multi.step()
        merged = multi.merge()
        expected = np.maximum(programs[0].distribution(), programs[1].distribution())
        assert np.array_equal(merged, expected)


@pytest.mark.parametrize("strategy, weights", [
    ("weighted-average", None),
    ("weighted-average", [1.0]),
    ("weighted-average", [0.7, 0.7]),
    ("weighted-average", [1.5, -0.5]),
    ("weighted-average", [float("nan"), 1.0]),
    ("sum", [0.5, 0.5]),
])
def test_invalid_weights(programs, strategy, weights):
    with pytest.raises(InvalidMergeWeightsError):
        MultiDynamicProgram(programs, strategy, weights=weights)


def test_merge_strategy_parse():
    assert MergeStrategy.parse("weighted_average") is MergeStrategy.WEIGHTED_AVERAGE
    assert MergeStrategy.parse("MAX") is MergeStrategy.MAX
    with pytest.raises(ConfigError):
        MergeStrategy.parse("median")


def test_requires_matching_shapes():
    small = make_program(rows=3, cols=3, row=1, col=1)
    large = make_program()
    try:
        with pytest.raises(ConfigError):
            MultiDynamicProgram([small, large])
        with pytest.raises(ConfigError):
            MultiDynamicProgram([])
    finally:
        small.close()
        large.close()


def test_runs_to_largest_target():
    short, long = make_program(iterations=2), make_program(iterations=5)
    with MultiDynamicProgram([short, long], per_step=True) as multi:
        assert multi.target_steps == 5
        multi.run()
        assert multi.step_count == 5
        assert short.step_count == 2
        assert long.step_count == 5
        assert multi.is_finished()
        assert len(multi.merged_history()) == 6


def test_summary(programs):
    with MultiDynamicProgram(programs) as multi:
        multi.run(steps=1)
        summary = multi.get_summary()
        assert summary['strategy'] == 'sum'
        assert summary['total_steps'] == 1
        assert [p['total_steps'] for p in summary['programs']] == [1, 1]
        assert summary['merged_mass'] == pytest.approx(2.0)


class FailingExecutor(ParallelExecutor):
    def run_step(self, tasks):
        raise ExecutionError("worker died", [(0, RuntimeError("boom"))])


def test_member_failure_is_reported():
    with FailingExecutor(1) as executor:
        good = make_program()
        bad = make_program(executor=executor)
        with MultiDynamicProgram([good, bad]) as multi:
            before = multi.merge()
            with pytest.raises(ExecutionError) as excinfo:
                multi.step()
            assert [idx for idx, _ in excinfo.value.failures] == [1]
            assert multi.step_count == 0
            assert good.step_count == bad.step_count == 0
            assert np.array_equal(multi.merge(), before)


class FlakyExecutor(ParallelExecutor):
    """Fails the first ``failures`` steps, then runs normally."""

    def __init__(self, workers, failures=1, error=None):
        super().__init__(workers)
        self.remaining = failures
        self.error = error

    def run_step(self, tasks):
        if self.remaining > 0:
            self.remaining -= 1
            raise self.error or ExecutionError("worker died", [(0, RuntimeError("boom"))])
        return super().run_step(tasks)


def test_failed_step_rolls_back_every_member():
    with FlakyExecutor(1, failures=0) as executor:
        good = make_program(1, 1, iterations=6)
        bad = make_program(3, 3, iterations=6, executor=executor)
        with MultiDynamicProgram([good, bad], per_step=True) as multi:
            multi.step()
            before = multi.merge()
            good_history = [s.step for s in good.history()]

            executor.remaining = 1
            with pytest.raises(ExecutionError):
                multi.step()
            assert good.step_count == bad.step_count == multi.step_count == 1
            assert np.array_equal(multi.merge(), before)
            assert [s.step for s in good.history()] == good_history
            assert len(multi.merged_history()) == 2

            multi.step()
            assert good.step_count == bad.step_count == multi.step_count == 2


def test_rollback_restores_history_and_absorbed_mass():
    with FlakyExecutor(1, failures=0) as executor:
        good = (DynamicProgramBuilder()
                .set_field_types([[FieldType.GRASSLAND] * 3 for _ in range(3)])
                .set_field_kernels({FieldType.GRASSLAND: SimpleRwKernel()})
                .set_initial_distribution(InitialDistribution.point(0, 0))
                .set_iterations(5)
                .set_history_capacity(3)
                .build())
        bad = make_program(1, 1, rows=3, cols=3, executor=executor)
        with MultiDynamicProgram([good, bad]) as multi:
            multi.run(steps=2)
            absorbed = good.absorbed_mass
            assert absorbed > 0.0

            executor.remaining = 1
            with pytest.raises(ExecutionError):
                multi.step()
            assert good.absorbed_mass == absorbed
            assert [s.step for s in good.history()] == [0, 1, 2]
            assert good.state is ProgramState.STEPPING


def test_numeric_member_failure_keeps_its_type():
    with FlakyExecutor(1, error=NumericError("negative mass")) as executor:
        good = make_program()
        bad = make_program(executor=executor)
        with MultiDynamicProgram([good, bad]) as multi:
            with pytest.raises(NumericError) as excinfo:
                multi.step()
            assert "negative mass" in str(excinfo.value)
            assert not isinstance(excinfo.value, ExecutionError)
            assert good.step_count == 0


def test_mixed_member_failures_raise_execution_error():
    with FlakyExecutor(1, error=NumericError("nan")) as numeric, FailingExecutor(1) as failing:
        programs = [make_program(executor=numeric), make_program(executor=failing)]
        with MultiDynamicProgram(programs) as multi:
            with pytest.raises(ExecutionError) as excinfo:
                multi.step()
            assert [type(exc) for _, exc in excinfo.value.failures] == [NumericError, ExecutionError]


def test_step_when_finished_does_not_count():
    with MultiDynamicProgram([make_program(iterations=2)], per_step=True) as multi:
        multi.run()
        assert multi.step_count == 2
        merged = multi.step()
        assert multi.step_count == 2
        assert len(multi.merged_history()) == 3
        assert np.array_equal(merged, multi.merge())


def test_run_reports_every_committed_step(programs):
    seen = []
    with MultiDynamicProgram(programs) as multi:
        multi.run(on_step=lambda step, merged: seen.append((step, merged.sum())))
    assert [step for step, _ in seen] == [1, 2, 3, 4]
    assert all(total == pytest.approx(2.0) for _, total in seen)


def test_run_stops_at_deadline(programs):
    with MultiDynamicProgram(programs) as multi:
        multi.run(deadline=0.0)
        assert multi.step_count == 0
