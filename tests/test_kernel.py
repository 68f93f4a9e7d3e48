import numpy as np
import pytest

from randomwalk_dp.errors import NumericError
from randomwalk_dp.model.kernel import (
    KERNEL_TYPES,
    BiasedRwKernel,
    Direction,
    HalfNormalKernel,
    IdentityKernel,
    Kernel,
    NormalKernel,
    SimpleRwKernel,
    SinkKernel,
    UniformKernel,
)


def test_simple_rw_weights():
    k = SimpleRwKernel()
    assert k.size == 3
    assert k.radius == 1
    assert k.at(0, 0) == pytest.approx(0.2)
    assert k.at(-1, 0) == pytest.approx(0.2)
    assert k.at(1, 1) == 0.0
    assert k.at(5, 5) == 0.0
    assert sorted(k.offsets()) == [(-1, 0), (0, -1), (0, 0), (0, 1), (1, 0)]
    assert k.retention == pytest.approx(1.0)


def test_identity_keeps_mass():
    assert IdentityKernel().contributions(0.7) == {(0, 0): 0.7}


@pytest.mark.parametrize("radius", [0, 1, 2])
def test_uniform_kernel(radius):
    k = UniformKernel(radius)
    size = 2 * radius + 1
    assert k.size == size
    assert np.allclose(k.weights, 1.0 / size ** 2)


def test_biased_kernel_drifts_towards_direction():
    k = BiasedRwKernel(0.5, "north")
    assert k.direction is Direction.NORTH
    assert k.at(-1, 0) == pytest.approx(0.6)
    assert k.at(1, 0) == pytest.approx(0.1)
    assert k.retention == pytest.approx(1.0)


def test_biased_kernel_rejects_bad_probability():
    with pytest.raises(NumericError):
        BiasedRwKernel(1.5, Direction.EAST)


def test_normal_kernel_is_symmetric_and_peaked():
    k = NormalKernel(1.0, 5)
    assert k.retention == pytest.approx(1.0)
    assert np.allclose(k.weights, k.weights.T)
    assert np.allclose(k.weights, k.weights[::-1, ::-1])
    assert k.at(0, 0) == k.weights.max()


def test_half_normal_kernel_drops_far_side():
    k = HalfNormalKernel(1.0, 5, "east")
    assert k.retention == pytest.approx(1.0)
    assert k.at(0, -2) == 0.0
    assert k.at(0, -1) > 0.0
    assert k.at(0, 2) > 0.0


def test_sink_kernel_absorbs():
    k = SinkKernel()
    assert k.absorbing
    assert k.retention == 0.0
    assert k.contributions(1.0) == {}
    assert SinkKernel(0.5).contributions(2.0) == {(0, 0): 1.0}


@pytest.mark.parametrize("weights", [
    [[0.5, 0.5]],                    # not square
    [[0.25, 0.25], [0.25, 0.25]],    # even size
    [[0.5]],                         # does not sum to one
    [[1.5, -0.5, 0.0], [0.0] * 3, [0.0] * 3],
    [[np.nan]],
])
def test_invalid_weights_rejected(weights):
    with pytest.raises(NumericError):
        Kernel(weights)


def test_absorbing_kernel_may_lose_mass():
    k = Kernel([[0.5]], absorbing=True)
    assert k.retention == 0.5
    with pytest.raises(NumericError):
        Kernel([[1.5]], absorbing=True)


@pytest.mark.parametrize("mass", [np.nan, np.inf, -1.0])
def test_contributions_reject_invalid_mass(mass):
    with pytest.raises(NumericError):
        SimpleRwKernel().contributions(mass)


def test_kernel_equality_by_weights():
    assert SimpleRwKernel() == Kernel(SimpleRwKernel().weights)
    assert hash(SimpleRwKernel()) == hash(Kernel(SimpleRwKernel().weights))
    assert UniformKernel(1) != SimpleRwKernel()


def test_kernel_types_registry():
    assert KERNEL_TYPES["simple_rw"] is SimpleRwKernel
    assert KERNEL_TYPES["sink"] is SinkKernel
    assert KERNEL_TYPES["custom"] is Kernel
