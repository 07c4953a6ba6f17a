"""
Activation functions and their derivatives for backpropagation.

Each activation maps a Matrix of pre-activations z to a Matrix of the same
shape. backward(z) is the derivative with respect to z (not with respect to
the activation output), so a layer computes dZ = dA * backward(z).
"""
import numpy as np

from gradstep.config import DEFAULT_LEAKY_RELU_ALPHA, GRADIENT_CHECK_EPSILON
from gradstep.errors import UnknownPolicyError
from gradstep.gradcheck import compare, numerical_gradient
from gradstep.matrix import Matrix


class Activation:
    """Stateless forward/derivative pair."""

    name = None
    # True when the derivative is folded into the loss gradient (softmax + cross-entropy)
    fused_with_loss = False

    def forward(self, x):
        raise NotImplementedError

    def backward(self, x):
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class Sigmoid(Activation):
    """σ(x) = 1 / (1 + e^(-x)), range (0, 1). σ'(x) = σ(x)(1 - σ(x))."""

    name = 'sigmoid'

    def forward(self, x):
        return x.apply(lambda v: 1.0 / (1.0 + np.exp(-v)))

    def backward(self, x):
        return self.forward(x).apply(lambda s: s * (1 - s))


class Tanh(Activation):
    """tanh(x), range (-1, 1), centered on 0. tanh'(x) = 1 - tanh(x)²."""

    name = 'tanh'

    def forward(self, x):
        return x.apply(np.tanh)

    def backward(self, x):
        return self.forward(x).apply(lambda v: 1 - v * v)


class ReLU(Activation):
    name = 'relu'

    def forward(self, x):
        return x.apply(lambda v: np.maximum(0.0, v))

    def backward(self, x):
        return x.apply(lambda v: (v > 0).astype(float))


class LeakyReLU(Activation):
    """x if x > 0 else alpha * x. Keeps a small slope so units never die."""

    name = 'leaky_relu'

    def __init__(self, alpha=DEFAULT_LEAKY_RELU_ALPHA):
        self.alpha = alpha

    def forward(self, x):
        return x.apply(lambda v: np.where(v > 0, v, self.alpha * v))

    def backward(self, x):
        return x.apply(lambda v: np.where(v > 0, 1.0, self.alpha))

    def __repr__(self):
        return f"LeakyReLU(alpha={self.alpha})"


class Linear(Activation):
    name = 'linear'

    def forward(self, x):
        return x.copy()

    def backward(self, x):
        return Matrix.ones(x.rows, x.cols)


class Softmax(Activation):
    """
    Column-wise softmax: each column (one sample) becomes a probability
    distribution. The max of the column is subtracted before exponentiating.

    The full Jacobian is never built: backward returns the softmax output
    itself and the real derivative is handled together with categorical
    cross-entropy, whose gradient (ŷ - y) / n already is dL/dz.
    """

    name = 'softmax'
    fused_with_loss = True

    def forward(self, x):
        def stable(v):
            e = np.exp(v - v.max(axis=0, keepdims=True))
            return e / e.sum(axis=0, keepdims=True)
        return x.apply(stable)

    def backward(self, x):
        return self.forward(x)


sigmoid = Sigmoid()
tanh = Tanh()
relu = ReLU()
linear = Linear()
softmax = Softmax()


def leaky_relu(alpha=DEFAULT_LEAKY_RELU_ALPHA):
    return LeakyReLU(alpha)


ACTIVATIONS = {
    'sigmoid': sigmoid,
    'tanh': tanh,
    'relu': relu,
    'linear': linear,
    'softmax': softmax,
}


def get_activation(name, alpha=None):
    """
    Look up an activation by name.

    Args:
        name: One of sigmoid, tanh, relu, leaky_relu, linear, softmax
        alpha: Negative slope, only used by leaky_relu
    """
    if name == 'leaky_relu':
        return leaky_relu(DEFAULT_LEAKY_RELU_ALPHA if alpha is None else alpha)
    try:
        return ACTIVATIONS[name]
    except KeyError:
        raise UnknownPolicyError(f"Unknown activation function: {name}") from None


def check_gradient(activation, x, epsilon=GRADIENT_CHECK_EPSILON):
    """
    Compare activation.backward(x) with a central-difference derivative of
    activation.forward, element by element.
    """
    analytical = activation.backward(x)
    numerical = numerical_gradient(lambda m, i, j: activation.forward(m).get(i, j), x, epsilon)
    return compare(analytical, numerical)
