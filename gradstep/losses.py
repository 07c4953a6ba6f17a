"""
Loss functions for training neural networks.

forward(predicted, target) returns a scalar, backward(predicted, target)
returns dL/d(predicted) with the shape of predicted. That gradient is where
backpropagation through the network starts.
"""
import numpy as np

from gradstep.config import GRADIENT_CHECK_EPSILON, LOSS_CLAMP_EPSILON
from gradstep.errors import DimensionError, UnknownPolicyError
from gradstep.gradcheck import compare, numerical_gradient
from gradstep.matrix import Matrix


def _check_shapes(predicted, target):
    if predicted.shape != target.shape:
        raise DimensionError(
            f"Predicted ({predicted.rows}x{predicted.cols}) and target "
            f"({target.rows}x{target.cols}) matrices must have the same shape"
        )


class Loss:
    name = None

    def forward(self, predicted, target):
        raise NotImplementedError

    def backward(self, predicted, target):
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class MeanSquaredError(Loss):
    """
    L = (1/n) * Σ(ŷ - y)²
    dL/dŷ = (2/n) * (ŷ - y)

    Use case: regression.
    """

    name = 'mse'

    def forward(self, predicted, target):
        _check_shapes(predicted, target)
        diff = predicted.subtract(target)
        n = predicted.rows * predicted.cols
        return diff.hadamard(diff).sum() / n

    def backward(self, predicted, target):
        _check_shapes(predicted, target)
        n = predicted.rows * predicted.cols
        return predicted.subtract(target).scale(2 / n)


class BinaryCrossEntropy(Loss):
    """
    L = -(1/n) * Σ[y*log(ŷ) + (1-y)*log(1-ŷ)]
    dL/dŷ = -(y/ŷ - (1-y)/(1-ŷ)) / n

    ŷ is clamped to [eps, 1-eps] in both directions. Expects sigmoid outputs
    and 0/1 labels.
    """

    name = 'binary_crossentropy'

    def forward(self, predicted, target):
        _check_shapes(predicted, target)
        y = target.to_numpy()
        y_hat = np.clip(predicted.to_numpy(), LOSS_CLAMP_EPSILON, 1 - LOSS_CLAMP_EPSILON)
        n = predicted.rows * predicted.cols
        return float(-np.sum(y * np.log(y_hat) + (1 - y) * np.log(1 - y_hat)) / n)

    def backward(self, predicted, target):
        _check_shapes(predicted, target)
        y = target.to_numpy()
        n = predicted.rows * predicted.cols
        y_hat = np.clip(predicted.to_numpy(), LOSS_CLAMP_EPSILON, 1 - LOSS_CLAMP_EPSILON)
        return Matrix(predicted.rows, predicted.cols, -(y / y_hat - (1 - y) / (1 - y_hat)) / n)


class CategoricalCrossEntropy(Loss):
    """
    L = -(1/rows) * Σ y * log(ŷ) over one-hot targets

    backward returns (ŷ - y) / rows, which is the gradient with respect to
    the softmax input rather than ŷ. It is only meant to be paired with a
    softmax output layer.
    """

    name = 'categorical_crossentropy'

    def forward(self, predicted, target):
        _check_shapes(predicted, target)
        y = target.to_numpy()
        y_hat = np.maximum(predicted.to_numpy(), LOSS_CLAMP_EPSILON)
        # only the non-zero targets contribute
        terms = np.where(y > 0, y * np.log(y_hat), 0.0)
        return float(-np.sum(terms) / predicted.rows)

    def backward(self, predicted, target):
        _check_shapes(predicted, target)
        return predicted.subtract(target).scale(1 / predicted.rows)


mse = MeanSquaredError()
binary_crossentropy = BinaryCrossEntropy()
categorical_crossentropy = CategoricalCrossEntropy()

LOSSES = {
    'mse': mse,
    'binary_crossentropy': binary_crossentropy,
    'categorical_crossentropy': categorical_crossentropy,
}


def get_loss(name):
    try:
        return LOSSES[name]
    except KeyError:
        raise UnknownPolicyError(f"Unknown loss function: {name}") from None


def check_gradient(loss, predicted, target, epsilon=GRADIENT_CHECK_EPSILON):
    """Compare loss.backward with a central-difference gradient of loss.forward."""
    analytical = loss.backward(predicted, target)
    numerical = numerical_gradient(lambda m, i, j: loss.forward(m, target), predicted, epsilon)
    return compare(analytical, numerical)
