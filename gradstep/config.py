"""
Numeric defaults shared across gradstep.

Kept in one place so the engine, the policies and the trainer agree on the
same epsilons and tolerances.
"""

# Gradient descent
DEFAULT_LEARNING_RATE = 0.01

# Central-difference gradient checking: (f(x+eps) - f(x-eps)) / 2eps
GRADIENT_CHECK_EPSILON = 1e-7
GRADIENT_CHECK_TOLERANCE = 1e-5

# Clamp applied to predictions before taking logs in the cross-entropy losses
LOSS_CLAMP_EPSILON = 1e-15

DEFAULT_LEAKY_RELU_ALPHA = 0.01

# Auto-play delay between steps, in seconds
DEFAULT_PLAY_DELAY = 1.0

# Decimal places used when rendering equations
EQUATION_PRECISION = 3

# Training progress is logged every N epochs
LOG_EVERY_EPOCHS = 10
