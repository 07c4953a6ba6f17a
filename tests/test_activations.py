import numpy as np
import pytest

from gradstep import activations
from gradstep.activations import check_gradient, get_activation
from gradstep.errors import UnknownPolicyError
from gradstep.matrix import Matrix

# values kept away from 0 so ReLU kinks do not sit inside the finite difference
SAMPLE = Matrix(2, 3, [[-2.0, -0.5, 0.3], [1.2, 2.5, -1.7]])


@pytest.mark.parametrize("name", ['sigmoid', 'tanh', 'relu', 'leaky_relu', 'linear'])
def test_gradient_check(name):
    result = check_gradient(get_activation(name), SAMPLE)
    assert result.passed, result.max_error
    assert result.max_error < 1e-5


def test_gradient_check_random_inputs():
    rng = np.random.default_rng(7)
    for _ in range(5):
        x = Matrix.random(3, 4, scale=3.0, rng=rng)
        assert check_gradient(activations.tanh, x).passed
        assert check_gradient(activations.sigmoid, x).passed


def test_forward_values():
    x = Matrix.from_array([-1.0, 0.0, 2.0])
    assert activations.relu.forward(x).to_array() == [0.0, 0.0, 2.0]
    assert activations.relu.backward(x).to_array() == [0.0, 0.0, 1.0]
    assert activations.sigmoid.forward(x).get(1, 0) == 0.5
    assert activations.linear.backward(x).to_array() == [1.0, 1.0, 1.0]
    leaky = get_activation('leaky_relu', alpha=0.2)
    assert leaky.forward(x).to_array() == [-0.2, 0.0, 2.0]
    assert leaky.backward(x).to_array() == [0.2, 0.2, 1.0]


def test_default_leaky_alpha():
    assert get_activation('leaky_relu').alpha == 0.01


def test_softmax_columns_are_distributions():
    x = Matrix(3, 2, [[1.0, 1000.0], [2.0, 1001.0], [3.0, 1002.0]])
    probs = activations.softmax.forward(x)
    sums = probs.to_numpy().sum(axis=0)
    assert sums == pytest.approx([1.0, 1.0])
    assert not np.isnan(probs.to_numpy()).any()
    # shifting a column does not change its softmax
    assert probs.get(0, 0) == pytest.approx(probs.get(0, 1))


def test_softmax_backward_returns_output():
    x = Matrix.from_array([0.5, -1.0, 2.0])
    assert activations.softmax.backward(x) == activations.softmax.forward(x)
    assert activations.softmax.fused_with_loss


def test_unknown_activation():
    with pytest.raises(UnknownPolicyError, match="swish"):
        get_activation('swish')
