import math

import numpy as np
import pytest

from gradstep.activations import softmax
from gradstep.errors import DimensionError, UnknownPolicyError
from gradstep.gradcheck import compare, numerical_gradient
from gradstep.losses import binary_crossentropy, categorical_crossentropy, check_gradient, get_loss, mse
from gradstep.matrix import Matrix

PREDICTED = Matrix.from_array([0.7, 0.2, 0.1])
TARGET = Matrix.from_array([1.0, 0.0, 0.0])


def test_mse_values():
    assert mse.forward(PREDICTED, TARGET) == pytest.approx((0.09 + 0.04 + 0.01) / 3)
    assert mse.backward(PREDICTED, TARGET).to_array() == pytest.approx([-0.2, 2 / 15, 1 / 15])


def test_binary_crossentropy_values():
    expected = -(math.log(0.7) + math.log(0.8) + math.log(0.9)) / 3
    assert binary_crossentropy.forward(PREDICTED, TARGET) == pytest.approx(expected)


def test_binary_crossentropy_clamps():
    certain = Matrix.from_array([0.0, 1.0])
    wrong = Matrix.from_array([1.0, 0.0])
    loss = binary_crossentropy.forward(certain, wrong)
    assert math.isfinite(loss)
    assert all(math.isfinite(v) for v in binary_crossentropy.backward(certain, wrong).to_array())


def test_categorical_crossentropy_values():
    assert categorical_crossentropy.forward(PREDICTED, TARGET) == pytest.approx(-math.log(0.7) / 3)
    assert categorical_crossentropy.backward(PREDICTED, TARGET).to_array() == pytest.approx([-0.1, 0.2 / 3, 0.1 / 3])


@pytest.mark.parametrize("loss", [mse, binary_crossentropy], ids=lambda l: l.name)
def test_gradient_check(loss):
    predicted = Matrix(2, 2, [[0.3, 0.85], [0.6, 0.15]])
    target = Matrix(2, 2, [[0.0, 1.0], [1.0, 0.0]])
    result = check_gradient(loss, predicted, target)
    assert result.passed, result.max_error


def test_categorical_crossentropy_gradient_through_softmax():
    logits = Matrix.from_array([0.2, -1.3, 0.8, 0.1])
    target = Matrix.from_array([0.0, 0.0, 1.0, 0.0])
    analytical = categorical_crossentropy.backward(softmax.forward(logits), target)
    numerical = numerical_gradient(
        lambda z, i, j: categorical_crossentropy.forward(softmax.forward(z), target), logits)
    assert compare(analytical, numerical).passed


@pytest.mark.parametrize("loss", [mse, binary_crossentropy, categorical_crossentropy], ids=lambda l: l.name)
def test_shape_mismatch(loss):
    with pytest.raises(DimensionError, match="3x1.*2x1"):
        loss.forward(PREDICTED, Matrix.from_array([1.0, 0.0]))
    with pytest.raises(DimensionError):
        loss.backward(PREDICTED, Matrix.from_array([1.0, 0.0]))


def test_lookup():
    assert get_loss('mse') is mse
    with pytest.raises(UnknownPolicyError):
        get_loss('hinge')


def test_gradient_check_random_samples():
    rng = np.random.default_rng(11)
    for _ in range(5):
        predicted = Matrix(3, 2, rng.uniform(0.05, 0.95, size=(3, 2)))
        target = Matrix(3, 2, rng.integers(0, 2, size=(3, 2)))
        assert check_gradient(mse, predicted, target).passed
        assert check_gradient(binary_crossentropy, predicted, target).passed

        logits = Matrix(4, 1, rng.normal(size=(4, 1)))
        one_hot = Matrix.from_array(np.eye(4)[rng.integers(0, 4)])
        analytical = categorical_crossentropy.backward(softmax.forward(logits), one_hot)
        numerical = numerical_gradient(
            lambda z, i, j: categorical_crossentropy.forward(softmax.forward(z), one_hot), logits)
        assert compare(analytical, numerical).passed
