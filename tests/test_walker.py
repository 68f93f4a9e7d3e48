import pytest

from randomwalk_dp.errors import (
    ConfigError,
    InsufficientHistoryError,
    NoPathExistsError,
    WalkerError,
)
from randomwalk_dp.model.builder import DynamicProgramBuilder
from randomwalk_dp.model.field_type import BoundaryPolicy, FieldType
from randomwalk_dp.model.grid import GridIndexError, InitialDistribution
from randomwalk_dp.model.kernel import IdentityKernel, NormalKernel, SimpleRwKernel, SinkKernel
from randomwalk_dp.model.multi import MultiDynamicProgram
from randomwalk_dp.model.walker import LandCoverWalker, StandardWalker


def computed(iterations=4, history=5, size=7, kernels=None, field_types=None,
             boundary=BoundaryPolicy.REFLECT):
    start = size // 2
    dp = (DynamicProgramBuilder()
          .set_field_types(field_types or [[FieldType.GRASSLAND] * size for _ in range(size)])
          .set_field_kernels(kernels or {FieldType.GRASSLAND: SimpleRwKernel()})
          .set_initial_distribution(InitialDistribution.point(start, start))
          .set_boundary_policy(boundary)
          .set_iterations(iterations)
          .set_history_capacity(history)
          .build())
    dp.run()
    return dp


def test_standard_walk_ends_at_target():
    with computed() as dp:
        path = StandardWalker(seed=7).generate_path(dp, 3, 5, 4)
        assert len(path) == 5
        assert path[0] == (3, 3)
        assert path[-1] == (3, 5)
        for (r0, c0), (r1, c1) in zip(path, path[1:]):
            assert abs(r1 - r0) + abs(c1 - c0) <= 1


def test_seeded_walks_are_reproducible():
    with computed() as dp:
        first = StandardWalker(seed=11).generate_paths(dp, 5, 2, 2, 4)
        second = StandardWalker(seed=11).generate_paths(dp, 5, 2, 2, 4)
        assert len(first) == 5
        assert first == second
        assert all(path[-1] == (2, 2) for path in first)


def test_walk_length_defaults_to_current_step():
    with computed(iterations=3, history=4) as dp:
        path = StandardWalker(seed=1).generate_path(dp, 3, 4)
        assert len(path) == 4


def test_zero_mass_endpoint_has_no_path():
    with computed(iterations=1, history=2) as dp:
        with pytest.raises(NoPathExistsError) as excinfo:
            StandardWalker(seed=0).generate_path(dp, 0, 0, 1)
        assert isinstance(excinfo.value, WalkerError)


def test_walk_needs_enough_history():
    with computed(iterations=4, history=2) as dp:
        with pytest.raises(InsufficientHistoryError) as excinfo:
            StandardWalker().generate_path(dp, 3, 3, 4)
        assert isinstance(excinfo.value, ConfigError)

    # Capacity is large enough but step 0 has been evicted
    with computed(iterations=6, history=5) as dp:
        with pytest.raises(InsufficientHistoryError):
            StandardWalker().generate_path(dp, 3, 3, 4)


def test_invalid_endpoint_and_length():
    with computed() as dp:
        walker = StandardWalker()
        with pytest.raises(GridIndexError):
            walker.generate_path(dp, 7, 0, 4)
        with pytest.raises(ConfigError):
            walker.generate_path(dp, 3, 3, -1)


def test_walker_requires_single_program():
    dp = computed()
    with MultiDynamicProgram([dp]) as multi:
        with pytest.raises(WalkerError):
            StandardWalker().generate_path(multi, 3, 3, 4)


def test_land_cover_walk_follows_transitions():
    size = 9
    field_types = [[FieldType.GRASSLAND] * size for _ in range(size)]
    for r in range(size):
        field_types[r][6] = FieldType.WATER
    kernels = {FieldType.GRASSLAND: NormalKernel(1.5, 5), FieldType.WATER: SinkKernel(0.5)}
    with computed(iterations=5, history=6, size=size, kernels=kernels,
                  field_types=field_types, boundary=BoundaryPolicy.WRAP) as dp:
        (row, col), _ = dp.grid.peak()
        operator = dp.transitions.toarray()
        paths = LandCoverWalker(seed=3).generate_paths(dp, 10, row, col)
        for path in paths:
            assert len(path) == 6
            assert path[0] == (4, 4)
            assert path[-1] == (row, col)
            for (r0, c0), (r1, c1) in zip(path, path[1:]):
                assert operator[r1 * size + c1, r0 * size + c0] > 0


def test_land_cover_walk_with_identity_kernel_stays_put():
    with computed(kernels={FieldType.GRASSLAND: IdentityKernel()}, size=5) as dp:
        path = LandCoverWalker(seed=5).generate_path(dp, 2, 2, 4)
        assert path == [(2, 2)] * 5
