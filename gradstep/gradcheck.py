"""
Central-difference gradient checking.

The numerical derivative of f at x is (f(x + eps) - f(x - eps)) / (2 * eps).
An analytical backward passes the check when its largest absolute deviation
from the numerical one stays below the tolerance.
"""
from dataclasses import dataclass

from gradstep.config import GRADIENT_CHECK_EPSILON, GRADIENT_CHECK_TOLERANCE
from gradstep.matrix import Matrix


@dataclass
class GradientCheck:
    passed: bool
    max_error: float


def numerical_gradient(fn, x, epsilon=GRADIENT_CHECK_EPSILON):
    """
    Element-wise central difference of a function over a Matrix.

    Args:
        fn: Called as fn(perturbed_matrix, row, col), returns the scalar to differentiate
        x: Point at which to differentiate (not modified)
        epsilon: Perturbation size

    Returns:
        Matrix of the same shape as x
    """
    numerical = Matrix.zeros(x.rows, x.cols)
    for i in range(x.rows):
        for j in range(x.cols):
            plus = x.copy()
            plus.set(i, j, plus.get(i, j) + epsilon)
            minus = x.copy()
            minus.set(i, j, minus.get(i, j) - epsilon)
            numerical.set(i, j, (fn(plus, i, j) - fn(minus, i, j)) / (2 * epsilon))
    return numerical


def compare(analytical, numerical, tolerance=GRADIENT_CHECK_TOLERANCE):
    max_error = analytical.subtract(numerical).apply(abs).to_numpy().max(initial=0.0)
    return GradientCheck(passed=bool(max_error < tolerance), max_error=float(max_error))
