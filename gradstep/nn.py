"""
Neural Network Module for gradstep
Implements the batched building blocks: Layer (dense) and NeuralNetwork.

Data shape convention: a batch is a matrix whose columns are samples.
    input:  (input_size  x batch_size)
    output: (output_size x batch_size)
"""
import logging
from dataclasses import dataclass

import numpy as np
from tqdm import tqdm

from gradstep.activations import get_activation
from gradstep.config import (
    DEFAULT_LEARNING_RATE,
    GRADIENT_CHECK_EPSILON,
    GRADIENT_CHECK_TOLERANCE,
    LOG_EVERY_EPOCHS,
)
from gradstep.errors import DimensionError, GradstepError, PreconditionError
from gradstep.gradcheck import GradientCheck, compare
from gradstep.losses import get_loss
from gradstep.matrix import Matrix

logger = logging.getLogger(__name__)


class Module:
    """
    Base class for all neural network modules.
    Provides common functionality like zeroing gradients and getting parameters.
    """

    def zero_grad(self):
        """Drop any pending gradients so the next update needs a fresh backward pass."""
        pass

    def parameters(self):
        """
        Return a list of all trainable parameter matrices.
        Override this in subclasses.
        """
        return []


@dataclass
class ForwardPassData:
    layer_index: int
    input: Matrix
    pre_activation: Matrix
    activation: Matrix


@dataclass
class BackwardPassData:
    layer_index: int
    # dL/d(input of this layer), passed on to the previous layer
    gradient: Matrix
    weight_gradient: Matrix
    bias_gradient: Matrix


class Layer(Module):
    """
    Dense (fully connected) layer.

    Forward pass: a = activation(W * x + b)
    Where:
        - W: weight matrix (output_size x input_size), Xavier initialized
        - x: input (input_size x batch_size)
        - b: bias vector (output_size x 1), zero initialized, broadcast over the batch

    Example: Layer(2, 3, 'relu') maps 2 features to 3 outputs per sample.
    """

    def __init__(self, input_size, output_size, activation='sigmoid', use_bias=True,
                 alpha=None, rng=None, position=(0.0, 0.0)):
        """
        Initialize a layer.

        Args:
            input_size: Number of input features
            output_size: Number of units (outputs)
            activation: Activation name (sigmoid, tanh, relu, leaky_relu, linear, softmax)
            use_bias: Add a bias vector to the pre-activation
            alpha: Negative slope for leaky_relu
            rng: Optional numpy Generator used for the weight initialization
            position: Placement for a renderer, never read here
        """
        self.input_size = input_size
        self.output_size = output_size
        self.activation = get_activation(activation, alpha)
        self.use_bias = use_bias
        self.position = position

        self.weights = Matrix.random(output_size, input_size, rng=rng)
        self.bias = Matrix.zeros(output_size, 1)

        # Cache of the in-flight forward pass, consumed by backward
        self._last_input = None
        self._last_z = None
        self._last_a = None

        # Gradients from the last backward pass, consumed by update_weights
        self._d_weights = None
        self._d_bias = None

    def __call__(self, x):
        return self.forward(x)

    def forward(self, input):
        """
        Forward propagation through the layer.

        Steps:
            1. z = W * x + b
            2. a = activation(z)
            3. Cache x, z and a for backward

        Args:
            input: Input matrix (input_size x batch_size)

        Returns:
            Output matrix (output_size x batch_size)
        """
        if input.rows != self.input_size:
            raise DimensionError(f"Input size mismatch: expected {self.input_size}, got {input.rows}")

        z = self.weights.multiply(input)
        if self.use_bias:
            z = z.add_column_vector(self.bias)
        a = self.activation.forward(z)

        self._last_input = input.copy()
        self._last_z = z
        self._last_a = a
        return a

    def backward(self, d_loss):
        """
        Backward propagation through the layer.

        Given dL/da from the next layer (or the loss):
            1. dL/dz = dL/da ⊙ activation'(z)
            2. dL/dW = dL/dz * x^T / batch_size
            3. dL/db = row sums of dL/dz / batch_size
            4. dL/dx = W^T * dL/dz, handed to the previous layer

        Args:
            d_loss: Gradient from the next layer (output_size x batch_size)

        Returns:
            Gradient for the previous layer (input_size x batch_size)
        """
        if self._last_input is None:
            raise PreconditionError("Forward pass must be called before backward pass")
        if d_loss.rows != self.output_size:
            raise DimensionError(f"Gradient size mismatch: expected {self.output_size}, got {d_loss.rows}")

        batch_size = self._last_input.cols
        if self.activation.fused_with_loss:
            # softmax: the loss gradient already is dL/dz
            d_z = d_loss.copy()
        else:
            d_z = d_loss.hadamard(self.activation.backward(self._last_z))

        self._d_weights = d_z.multiply(self._last_input.transpose()).scale(1 / batch_size)
        self._d_bias = d_z.row_sums().scale(1 / batch_size) if self.use_bias else Matrix.zeros(self.output_size, 1)

        d_input = self.weights.transpose().multiply(d_z)

        self._last_input = self._last_z = self._last_a = None
        return d_input

    def update_weights(self, learning_rate):
        """
        Gradient descent step:
            W = W - learning_rate * dL/dW
            b = b - learning_rate * dL/db
        """
        if self._d_weights is None:
            raise PreconditionError("Backward pass must be called before updating weights")

        self.weights = self.weights.subtract(self._d_weights.scale(learning_rate))
        if self.use_bias:
            self.bias = self.bias.subtract(self._d_bias.scale(learning_rate))
        self.zero_grad()

    def zero_grad(self):
        self._d_weights = None
        self._d_bias = None

    # kept under the name used by the visualization layer
    reset_gradients = zero_grad

    @property
    def weight_gradient(self):
        return self._d_weights

    @property
    def bias_gradient(self):
        return self._d_bias

    def parameters(self):
        return [self.weights, self.bias] if self.use_bias else [self.weights]

    def get_parameters(self):
        """Copies of the weights, biases and pending gradients (for visualization)."""
        return {
            'weights': self.weights.copy(),
            'biases': self.bias.copy(),
            'weight_gradients': self._d_weights.copy() if self._d_weights is not None else None,
            'bias_gradients': self._d_bias.copy() if self._d_bias is not None else None,
        }

    def get_cached_values(self):
        """Copies of the in-flight forward cache, None entries once backward consumed it."""
        def maybe_copy(m):
            return m.copy() if m is not None else None
        return {
            'input': maybe_copy(self._last_input),
            'pre_activation': maybe_copy(self._last_z),
            'activation': maybe_copy(self._last_a),
        }

    def __repr__(self):
        return f"Layer({self.input_size} → {self.output_size}, activation: {self.activation.name})"


class NeuralNetwork(Module):
    """
    A sequence of dense layers trained with plain gradient descent.

    Example: NeuralNetwork(2, [(4, 'sigmoid'), (1, 'sigmoid')], loss='mse') creates:
        Input(2) → Layer(2→4) → Layer(4→1) → Output(1)
    """

    def __init__(self, input_size, layers, loss='mse', learning_rate=DEFAULT_LEARNING_RATE, seed=None):
        """
        Initialize the network.

        Args:
            input_size: Number of input features
            layers: Sequence of (output_size, activation) pairs, or dicts with
                    'output_size' (or 'outputSize') and 'activation' keys
            loss: Loss name (mse, binary_crossentropy, categorical_crossentropy)
            learning_rate: Gradient descent step size
            seed: Seed for the weight initialization
        """
        if not layers:
            raise GradstepError("A network needs at least one layer")
        self.loss_function = get_loss(loss)
        self.learning_rate = learning_rate
        self.history = []
        rng = np.random.default_rng(seed)

        # each layer reads the output size of the one before it
        self.layers = []
        size = input_size
        for config in layers:
            output_size, activation, alpha = _layer_config(config)
            self.layers.append(Layer(size, output_size, activation, use_bias=True, alpha=alpha, rng=rng))
            size = output_size

        for layer in self.layers[:-1]:
            if layer.activation.fused_with_loss:
                raise GradstepError("softmax is only supported on the output layer")
        if self.layers[-1].activation.fused_with_loss and self.loss_function.name != 'categorical_crossentropy':
            raise GradstepError("softmax output must be paired with categorical_crossentropy loss")

        self._last_forward_pass = []
        self._last_backward_pass = []
        self._last_loss = 0.0
        logger.debug(f"Built {self!r}")

    @classmethod
    def from_config(cls, architecture, seed=None):
        """Build from the 'architecture' block of the export format."""
        return cls(
            input_size=architecture['inputSize'],
            layers=architecture['layers'],
            loss=architecture['loss'],
            learning_rate=architecture.get('learningRate', DEFAULT_LEARNING_RATE),
            seed=seed,
        )

    @classmethod
    def from_state(cls, state):
        """Rebuild a network (weights, biases, history included) from export_state()."""
        network = cls.from_config(state['architecture'])
        if len(state['weights']) != len(network.layers) or len(state['biases']) != len(network.layers):
            raise DimensionError(
                f"State holds {len(state['weights'])} weight and {len(state['biases'])} bias matrices "
                f"for {len(network.layers)} layers"
            )
        for layer, weights, biases in zip(network.layers, state['weights'], state['biases']):
            layer.weights = Matrix(layer.output_size, layer.input_size, weights)
            layer.bias = Matrix(layer.output_size, 1, biases)
        network.history = [dict(entry) for entry in state.get('history', [])]
        return network

    @property
    def learning_rate(self):
        return self._learning_rate

    @learning_rate.setter
    def learning_rate(self, value):
        if value <= 0:
            raise ValueError(f"Learning rate must be positive, got {value}")
        self._learning_rate = value

    def __call__(self, x):
        return self.forward(x)

    def forward(self, input):
        """
        Forward propagation through the whole network.

        Args:
            input: Input data (input_size x batch_size)

        Returns:
            Network output (output_size x batch_size)
        """
        self._last_forward_pass = []
        output = input
        for i, layer in enumerate(self.layers):
            layer_input = output
            output = layer.forward(output)
            cached = layer.get_cached_values()
            self._last_forward_pass.append(ForwardPassData(
                layer_index=i,
                input=layer_input.copy(),
                pre_activation=cached['pre_activation'],
                activation=cached['activation'],
            ))
        return output

    def backward(self, predicted, target):
        """
        Backward propagation through the whole network, last layer first.

        Args:
            predicted: Network output from forward()
            target: Ground truth (same shape as predicted)
        """
        self._last_backward_pass = []
        gradient = self.loss_function.backward(predicted, target)
        for i in reversed(range(len(self.layers))):
            layer = self.layers[i]
            gradient = layer.backward(gradient)
            self._last_backward_pass.insert(0, BackwardPassData(
                layer_index=i,
                gradient=gradient,
                weight_gradient=layer.weight_gradient.copy(),
                bias_gradient=layer.bias_gradient.copy(),
            ))

    def update_weights(self):
        for layer in self.layers:
            layer.update_weights(self.learning_rate)

    def train_batch(self, input, target):
        """
        One gradient descent step: forward, loss, backward, update.

        Returns:
            Loss before the update
        """
        predicted = self.forward(input)
        loss = self.loss_function.forward(predicted, target)
        self._last_loss = loss
        self.backward(predicted, target)
        self.update_weights()
        return loss

    def train(self, inputs, targets, epochs, verbose=False):
        """
        Train for several epochs, one train_batch per (input, target) pair.

        Args:
            inputs: Sequence of input matrices
            targets: Sequence of target matrices, same length as inputs
            epochs: Number of passes over the data
            verbose: Show a progress bar

        Returns:
            The training history ([{'epoch', 'loss'}, ...])
        """
        if len(inputs) != len(targets):
            raise ValueError(f"Number of inputs ({len(inputs)}) must match number of targets ({len(targets)})")
        if not inputs:
            raise ValueError("Cannot train on an empty dataset")

        start = len(self.history)
        for epoch in tqdm(range(epochs), desc="Training", disable=not verbose):
            total_loss = 0.0
            for x, y in zip(inputs, targets):
                total_loss += self.train_batch(x, y)
            avg_loss = total_loss / len(inputs)
            self.history.append({'epoch': start + epoch + 1, 'loss': avg_loss})
            if (epoch + 1) % LOG_EVERY_EPOCHS == 0:
                logger.debug(f"Epoch {epoch + 1}/{epochs}, Loss: {avg_loss:.6f}")

        if self.history:
            logger.info(f"Trained {epochs} epochs, final loss {self.history[-1]['loss']:.6f}")
        return self.history

    def predict(self, input):
        return self.forward(input)

    def evaluate(self, inputs, targets):
        """
        Classification accuracy: fraction of samples whose predicted argmax
        row equals the target argmax row.
        """
        correct = 0
        total = 0
        for x, y in zip(inputs, targets):
            predicted = self.predict(x).argmax_rows()
            expected = y.argmax_rows()
            correct += sum(p == e for p, e in zip(predicted, expected))
            total += len(expected)
        return correct / total if total else 0.0

    def check_gradients(self, input, target, epsilon=GRADIENT_CHECK_EPSILON):
        """
        Gradient check over every weight of every layer.

        Runs one forward/backward pass for the analytical dL/dW, then perturbs
        each weight by ±epsilon and compares with the central difference of
        the loss. Weights are restored, a clean forward pass refreshes the
        layer caches and no update is applied.

        Only a single sample (one column) is accepted: the loss averages over
        every element and Layer.backward averages dW over the batch again, so
        for a wider batch the two sides differ by the batch size.
        """
        if input.cols != 1 or target.cols != 1:
            raise DimensionError(
                f"Gradient check takes a single sample, got {input.cols} input "
                f"and {target.cols} target columns"
            )
        predicted = self.forward(input)
        self.backward(predicted, target)
        analytical = [layer.weight_gradient for layer in self.layers]

        max_error = 0.0
        for layer, grads in zip(self.layers, analytical):
            numerical = Matrix.zeros(layer.output_size, layer.input_size)
            for i in range(layer.output_size):
                for j in range(layer.input_size):
                    original = layer.weights.get(i, j)
                    layer.weights.set(i, j, original + epsilon)
                    loss_plus = self.loss_function.forward(self.forward(input), target)
                    layer.weights.set(i, j, original - epsilon)
                    loss_minus = self.loss_function.forward(self.forward(input), target)
                    layer.weights.set(i, j, original)
                    numerical.set(i, j, (loss_plus - loss_minus) / (2 * epsilon))
            max_error = max(max_error, compare(grads, numerical).max_error)

        # the caches still hold the last perturbed pass
        self.forward(input)
        for layer in self.layers:
            layer.zero_grad()
        return GradientCheck(passed=max_error < GRADIENT_CHECK_TOLERANCE, max_error=max_error)

    def parameters(self):
        return [p for layer in self.layers for p in layer.parameters()]

    def zero_grad(self):
        for layer in self.layers:
            layer.zero_grad()

    def get_visualization_data(self):
        return {
            'forward_pass': list(self._last_forward_pass),
            'backward_pass': list(self._last_backward_pass),
            'loss': self._last_loss,
            'layers': list(self.layers),
        }

    def architecture(self):
        return [
            {
                'input_size': layer.input_size,
                'output_size': layer.output_size,
                'activation': layer.activation.name,
                'num_weights': layer.input_size * layer.output_size + layer.output_size,
            }
            for layer in self.layers
        ]

    def total_parameters(self):
        return sum(layer.input_size * layer.output_size + layer.output_size for layer in self.layers)

    def reset_history(self):
        self.history = []

    def export_state(self):
        """
        Snapshot in the export format:
            {architecture: {inputSize, layers: [{outputSize, activation}], loss, learningRate},
             weights: number[][][], biases: number[][][], history: [{epoch, loss}]}
        """
        layers = []
        for layer in self.layers:
            entry = {'outputSize': layer.output_size, 'activation': layer.activation.name}
            if layer.activation.name == 'leaky_relu':
                entry['alpha'] = layer.activation.alpha
            layers.append(entry)
        return {
            'architecture': {
                'inputSize': self.layers[0].input_size,
                'layers': layers,
                'loss': self.loss_function.name,
                'learningRate': self.learning_rate,
            },
            'weights': [layer.weights.data for layer in self.layers],
            'biases': [layer.bias.data for layer in self.layers],
            'history': [dict(entry) for entry in self.history],
        }

    def __repr__(self):
        return f"NeuralNetwork of [{', '.join(str(layer) for layer in self.layers)}], loss: {self.loss_function.name}"


def _layer_config(config):
    if isinstance(config, dict):
        output_size = config.get('output_size', config.get('outputSize'))
        if output_size is None:
            raise GradstepError(f"Layer config {config} has no output size")
        return output_size, config.get('activation', 'sigmoid'), config.get('alpha')
    output_size, activation = config
    return output_size, activation, None
