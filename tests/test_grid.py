import numpy as np
import pytest

from randomwalk_dp.errors import (
    ConfigError,
    InvalidDistributionError,
    InvalidGridError,
    UnknownFieldTypeError,
)
from randomwalk_dp.model.field_type import BoundaryPolicy, FieldType
from randomwalk_dp.model.grid import GridField, GridIndexError, InitialDistribution


@pytest.mark.parametrize("value, expected", [
    (FieldType.WATER, FieldType.WATER),
    (80, FieldType.WATER),
    ("80", FieldType.WATER),
    ("grassland", FieldType.GRASSLAND),
    ("Tree-Cover", FieldType.TREE_COVER),
    ("snow ice", FieldType.SNOW_ICE),
])
def test_field_type_parse(value, expected):
    assert FieldType.parse(value) is expected


@pytest.mark.parametrize("value", ["lava", 11, None])
def test_field_type_parse_unknown(value):
    with pytest.raises(UnknownFieldTypeError):
        FieldType.parse(value)


def test_boundary_parse():
    assert BoundaryPolicy.parse("Reflect") is BoundaryPolicy.REFLECT
    with pytest.raises(ConfigError):
        BoundaryPolicy.parse("bounce")


@pytest.mark.parametrize("policy, index, size, expected", [
    (BoundaryPolicy.ABSORB, -1, 5, None),
    (BoundaryPolicy.ABSORB, 5, 5, None),
    (BoundaryPolicy.ABSORB, 3, 5, 3),
    (BoundaryPolicy.WRAP, -1, 5, 4),
    (BoundaryPolicy.WRAP, 5, 5, 0),
    (BoundaryPolicy.REFLECT, -1, 5, 1),
    (BoundaryPolicy.REFLECT, -2, 5, 2),
    (BoundaryPolicy.REFLECT, 5, 5, 3),
    (BoundaryPolicy.REFLECT, 9, 5, 1),
    (BoundaryPolicy.REFLECT, -1, 1, 0),
])
def test_boundary_resolve(policy, index, size, expected):
    assert policy.resolve(index, size) == expected


@pytest.mark.parametrize("policy", list(BoundaryPolicy))
@pytest.mark.parametrize("size", [1, 2, 5])
def test_resolve_array_matches_resolve(policy, size):
    indices = np.arange(-12, 17)
    resolved, kept = policy.resolve_array(indices, size)
    for i, index in enumerate(indices):
        expected = policy.resolve(int(index), size)
        if expected is None:
            assert not kept[i]
        else:
            assert kept[i]
            assert resolved[i] == expected


def terrain(rows=3, cols=4, ft=FieldType.GRASSLAND):
    return [[ft] * cols for _ in range(rows)]


def test_uniform_grid():
    grid = GridField.uniform(terrain(), 2.0)
    assert grid.shape == (3, 4)
    assert grid.size == 12
    assert grid.total_mass() == pytest.approx(2.0)
    assert grid.field_types_present() == {FieldType.GRASSLAND}


def test_point_grid_and_cell_access():
    grid = GridField.point(terrain(), 1, 2)
    assert grid.mass_at(1, 2) == 1.0
    assert grid.peak() == ((1, 2), 1.0)
    cell = grid.cell(1, 2)
    assert cell.field_type is FieldType.GRASSLAND
    assert cell.mass == 1.0
    assert grid.in_bounds(2, 3)
    assert not grid.in_bounds(3, 0)
    with pytest.raises(GridIndexError):
        grid.field_type_at(-1, 0)


def test_point_outside_grid():
    with pytest.raises(InvalidDistributionError):
        GridField.point(terrain(), 3, 0)


def test_published_mass_is_read_only():
    grid = GridField.uniform(terrain())
    with pytest.raises(ValueError):
        grid.mass[0, 0] = 1.0
    copy = grid.distribution()
    copy[0, 0] = 5.0
    assert grid.mass_at(0, 0) == pytest.approx(1.0 / 12)


def test_publish_swaps_buffer():
    grid = GridField.uniform(terrain())
    grid.publish(np.zeros((3, 4)))
    assert grid.total_mass() == 0.0
    assert not grid.mass.flags.writeable
    with pytest.raises(ValueError):
        grid.publish(np.zeros((4, 3)))


@pytest.mark.parametrize("field_types", [[], [[]], [1, 2, 3]])
def test_invalid_grid_shape(field_types):
    with pytest.raises(InvalidGridError):
        GridField.uniform(field_types)


def test_invalid_mass():
    with pytest.raises(InvalidDistributionError):
        GridField.from_matrix(terrain(1, 2), [[0.5, -0.5]])
    with pytest.raises(InvalidDistributionError):
        GridField.from_matrix(terrain(1, 2), [[1.0]])


def test_initial_distribution_materialize():
    assert InitialDistribution.uniform().materialize((2, 2)).tolist() == [[0.25, 0.25], [0.25, 0.25]]
    assert InitialDistribution.point(0, 1).materialize((1, 2), 3.0).tolist() == [[0.0, 3.0]]
    with pytest.raises(InvalidDistributionError):
        InitialDistribution.point(2, 0).materialize((2, 2))
    with pytest.raises(InvalidDistributionError):
        InitialDistribution.matrix([[1.0]]).materialize((2, 2))
