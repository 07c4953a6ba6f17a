"""
Scalar autodiff engine for gradstep.

A ComputationGraph holds ComputationNodes in an arena keyed by id. Nodes do not
own their inputs: they keep the ids of the nodes that feed them and the graph
resolves those ids. That way one node can feed several consumers (the graph is
a DAG, not a tree) and every consumer adds its share of the gradient.

Key concept: the forward pass visits nodes in topological order (inputs before
consumers), the backward pass applies the chain rule in the exact reverse of
that order.
"""
import logging
import math
from dataclasses import dataclass
from enum import Enum

from gradstep.config import EQUATION_PRECISION
from gradstep.errors import GraphError

logger = logging.getLogger(__name__)


class NodeType(Enum):
    """The closed set of operations a node can perform."""
    INPUT = 'input'
    PARAMETER = 'parameter'
    MULTIPLY = 'multiply'
    ADD = 'add'
    SUBTRACT = 'subtract'
    SQUARE = 'square'
    SIGMOID = 'sigmoid'
    RELU = 'relu'
    MAX = 'max'


class NodeState(Enum):
    IDLE = 'idle'
    FORWARDED = 'forwarded'
    BACKWARD_VISITED = 'backward_visited'


# Number of operands each node type takes
ARITY = {
    NodeType.INPUT: 0,
    NodeType.PARAMETER: 0,
    NodeType.MULTIPLY: 2,
    NodeType.ADD: 2,
    NodeType.SUBTRACT: 2,
    NodeType.SQUARE: 1,
    NodeType.SIGMOID: 1,
    NodeType.RELU: 1,
    NodeType.MAX: 2,
}

EXPLANATIONS = {
    NodeType.MULTIPLY: "Multiplication: output = input1 × input2. Gradient multiplies by the other input.",
    NodeType.ADD: "Addition: output = input1 + input2. Gradient passes through unchanged.",
    NodeType.SUBTRACT: "Subtraction: x - y. First input gets gradient, second gets negated gradient.",
    NodeType.SQUARE: "Square: x². Local gradient: 2x (power rule)",
    NodeType.SIGMOID: "Sigmoid activation: σ(x) = 1/(1+e^(-x)). Gradient: σ'(x) = σ(x)(1-σ(x))",
    NodeType.RELU: "ReLU: max(0, x). Gradient: 1 if x > 0, else 0 (gate)",
}


def _fmt(number):
    return f"{number:.{EQUATION_PRECISION}f}"


def _id_of(ref):
    return ref.id if isinstance(ref, ComputationNode) else ref


class ComputationNode:
    """
    One scalar operation in a computation graph.

    Attributes:
        id: Unique key within the owning graph
        type: NodeType tag selecting the forward/backward rule
        name: Label used in equations (defaults to the id)
        value: Result of the last forward pass
        gradient: dL/d(this node), accumulated during backward
        inputs: Ids of the operand nodes, in operand order
        x, y: Placement for a renderer, never read by the engine
        active: Highlight flag toggled by the ExecutionEngine

    Nodes are usually built with the named constructors:

        x = ComputationNode.input('x', 2.0)
        y = ComputationNode.input('y', 3.0)
        z = ComputationNode.multiply('z', x, y)
    """

    def __init__(self, id, type, name=None, inputs=(), value=0.0, x=0.0, y=0.0):
        type = NodeType(type)
        inputs = tuple(_id_of(ref) for ref in inputs)
        if len(inputs) != ARITY[type]:
            raise GraphError(
                f"Node '{id}' of type {type.value} takes {ARITY[type]} inputs, got {len(inputs)}"
            )
        self.id = id
        self.type = type
        self.name = name if name is not None else str(id)
        self.value = float(value)
        self.gradient = 0.0
        self.inputs = inputs
        self.x = x
        self.y = y
        self.active = False
        self.state = NodeState.IDLE
        # Operand index that won the last MAX comparison
        self.winner = 0

    # Named constructors, one per variant

    @classmethod
    def input(cls, id, value=0.0, name=None, **kwargs):
        return cls(id, NodeType.INPUT, name, value=value, **kwargs)

    @classmethod
    def parameter(cls, id, value=0.0, name=None, **kwargs):
        return cls(id, NodeType.PARAMETER, name, value=value, **kwargs)

    @classmethod
    def multiply(cls, id, a, b, name=None, **kwargs):
        return cls(id, NodeType.MULTIPLY, name, (a, b), **kwargs)

    @classmethod
    def add(cls, id, a, b, name=None, **kwargs):
        return cls(id, NodeType.ADD, name, (a, b), **kwargs)

    @classmethod
    def subtract(cls, id, a, b, name=None, **kwargs):
        return cls(id, NodeType.SUBTRACT, name, (a, b), **kwargs)

    @classmethod
    def square(cls, id, a, name=None, **kwargs):
        return cls(id, NodeType.SQUARE, name, (a,), **kwargs)

    @classmethod
    def sigmoid(cls, id, a, name=None, **kwargs):
        return cls(id, NodeType.SIGMOID, name, (a,), **kwargs)

    @classmethod
    def relu(cls, id, a, name=None, **kwargs):
        return cls(id, NodeType.RELU, name, (a,), **kwargs)

    @classmethod
    def max(cls, id, a, b, name=None, **kwargs):
        return cls(id, NodeType.MAX, name, (a, b), **kwargs)

    @property
    def is_leaf(self):
        return self.type in (NodeType.INPUT, NodeType.PARAMETER)

    def set_value(self, value):
        """Change the stored value of a leaf (input or parameter) node."""
        if not self.is_leaf:
            raise GraphError(f"Only input and parameter nodes hold a settable value, '{self.id}' is {self.type.value}")
        self.value = float(value)

    def update(self, learning_rate):
        """Gradient descent step for a parameter: value -= lr * gradient."""
        if self.type is not NodeType.PARAMETER:
            raise GraphError(f"Only parameter nodes are trainable, '{self.id}' is {self.type.value}")
        self.value -= learning_rate * self.gradient

    def forward(self, operands):
        """
        Compute this node's value from its operand nodes.

        Args:
            operands: The input nodes, resolved by the graph, in operand order

        Returns:
            The new value (also stored in self.value)
        """
        values = [op.value for op in operands]
        match self.type:
            case NodeType.INPUT | NodeType.PARAMETER:
                pass
            case NodeType.MULTIPLY:
                self.value = values[0] * values[1]
            case NodeType.ADD:
                self.value = values[0] + values[1]
            case NodeType.SUBTRACT:
                self.value = values[0] - values[1]
            case NodeType.SQUARE:
                self.value = values[0] ** 2
            case NodeType.SIGMOID:
                self.value = 1.0 / (1.0 + math.exp(-values[0]))
            case NodeType.RELU:
                self.value = max(0.0, values[0])
            case NodeType.MAX:
                # ties go to the first operand
                self.winner = 0 if values[0] >= values[1] else 1
                self.value = values[self.winner]
        self.state = NodeState.FORWARDED
        return self.value

    def local_gradients(self, upstream, operands):
        """
        Chain rule for one node: split the upstream gradient among the operands.

        Args:
            upstream: dL/d(this node)
            operands: The input nodes, in operand order

        Returns:
            List of dL/d(operand), one per operand (empty for leaves)
        """
        values = [op.value for op in operands]
        match self.type:
            case NodeType.INPUT | NodeType.PARAMETER:
                return []
            case NodeType.MULTIPLY:
                # d(a*b)/da = b, d(a*b)/db = a
                return [values[1] * upstream, values[0] * upstream]
            case NodeType.ADD:
                return [upstream, upstream]
            case NodeType.SUBTRACT:
                return [upstream, -upstream]
            case NodeType.SQUARE:
                return [2 * values[0] * upstream]
            case NodeType.SIGMOID:
                # uses the cached output, not the input
                return [self.value * (1 - self.value) * upstream]
            case NodeType.RELU:
                return [upstream if values[0] > 0 else 0.0]
            case NodeType.MAX:
                grads = [0.0, 0.0]
                grads[self.winner] = upstream
                return grads

    def forward_equation(self, operands):
        names = [op.name for op in operands]
        values = [_fmt(op.value) for op in operands]
        out = _fmt(self.value)
        match self.type:
            case NodeType.INPUT | NodeType.PARAMETER:
                return f"{self.name} = {out}"
            case NodeType.MULTIPLY:
                return f"{self.name} = {names[0]} × {names[1]} = {values[0]} × {values[1]} = {out}"
            case NodeType.ADD:
                return f"{self.name} = {names[0]} + {names[1]} = {values[0]} + {values[1]} = {out}"
            case NodeType.SUBTRACT:
                return f"{self.name} = {names[0]} - {names[1]} = {values[0]} - {values[1]} = {out}"
            case NodeType.SQUARE:
                return f"{self.name} = {names[0]}² = ({values[0]})² = {out}"
            case NodeType.SIGMOID:
                return f"{self.name} = σ({names[0]}) = 1/(1+e^(-{values[0]})) = {out}"
            case NodeType.RELU:
                return f"{self.name} = ReLU({names[0]}) = max(0, {values[0]}) = {out}"
            case NodeType.MAX:
                return f"{self.name} = max({names[0]}, {names[1]}) = max({values[0]}, {values[1]}) = {out}"

    def backward_equation(self, operands):
        names = [op.name for op in operands]
        grad = _fmt(self.gradient)
        match self.type:
            case NodeType.INPUT | NodeType.PARAMETER:
                return f"∂L/∂{self.name} = {grad}"
            case NodeType.MULTIPLY:
                a, b = operands
                return (f"∂L/∂{a.name} = {b.name} × ∂L/∂{self.name} = "
                        f"{_fmt(b.value)} × {grad} = {_fmt(b.value * self.gradient)}, "
                        f"∂L/∂{b.name} = {a.name} × ∂L/∂{self.name} = "
                        f"{_fmt(a.value)} × {grad} = {_fmt(a.value * self.gradient)}")
            case NodeType.ADD:
                return f"∂L/∂{names[0]} = ∂L/∂{names[1]} = ∂L/∂{self.name} = {grad}"
            case NodeType.SUBTRACT:
                return f"∂L/∂{names[0]} = {grad}, ∂L/∂{names[1]} = {_fmt(-self.gradient)}"
            case NodeType.SQUARE:
                local = 2 * operands[0].value
                return (f"∂L/∂{names[0]} = 2×{names[0]} × ∂L/∂{self.name} = "
                        f"{_fmt(local)} × {grad} = {_fmt(local * self.gradient)}")
            case NodeType.SIGMOID:
                local = self.value * (1 - self.value)
                return (f"∂L/∂{names[0]} = σ'({names[0]}) × ∂L/∂{self.name} = "
                        f"{_fmt(local)} × {grad} = {_fmt(local * self.gradient)}")
            case NodeType.RELU:
                local = 1 if operands[0].value > 0 else 0
                return (f"∂L/∂{names[0]} = {local} × ∂L/∂{self.name} = "
                        f"{local} × {grad} = {_fmt(local * self.gradient)}")
            case NodeType.MAX:
                return f"∂L/∂{names[self.winner]} = {grad} (gradient flows to max input only)"

    def explanation(self, operands=()):
        match self.type:
            case NodeType.INPUT:
                return f"Input variable {self.name}"
            case NodeType.PARAMETER:
                return f"Parameter {self.name} (trainable)"
            case NodeType.MAX:
                winner = operands[self.winner].name if operands else "the larger input"
                return f"Max operation: Gradient flows only to the input that was larger ({winner}), like a gate."
            case _:
                return EXPLANATIONS[self.type]

    def __repr__(self):
        return f"ComputationNode(id={self.id!r}, type={self.type.value}, value={self.value}, grad={self.gradient})"


@dataclass
class ComputationStep:
    """Record of one node evaluated during a completed forward pass."""
    node_id: str
    operation: str
    inputs: list
    output: float
    equation: str
    explanation: str


class ComputationGraph:
    """
    Owns every node of a scalar computation, keyed by id.

    The graph is a DAG rooted at one output node. Setting the output computes
    the execution order: a post-order depth-first traversal from the output,
    so every node appears once and after all of its inputs.

    Example:
        graph = ComputationGraph()
        x = graph.add_node(ComputationNode.input('x', 2.0))
        y = graph.add_node(ComputationNode.input('y', 3.0))
        z = graph.add_node(ComputationNode.multiply('z', x, y))
        graph.set_output(z)
        graph.forward()   # 6.0
        graph.backward()  # x.gradient = 3.0, y.gradient = 2.0
    """

    def __init__(self):
        self._by_id = {}
        # insertion order kept explicitly, not through dict ordering
        self._order = []
        self.output_node = None
        self.execution_order = []

    @property
    def nodes(self):
        return list(self._order)

    def __contains__(self, node_id):
        return node_id in self._by_id

    def __len__(self):
        return len(self._order)

    def node(self, node_id):
        try:
            return self._by_id[node_id]
        except KeyError:
            raise GraphError(f"No node with id '{node_id}' in the graph") from None

    def inputs_of(self, node):
        """Resolve a node's input ids to the nodes themselves."""
        operands = []
        for input_id in node.inputs:
            if input_id not in self._by_id:
                raise GraphError(f"Node '{node.id}' references missing input '{input_id}'")
            operands.append(self._by_id[input_id])
        return operands

    def add_node(self, node):
        if node.id in self._by_id:
            raise GraphError(f"Duplicate node id '{node.id}'")
        self._by_id[node.id] = node
        self._order.append(node)
        return node

    def set_output(self, node):
        """Designate the output node and rebuild the execution order."""
        output = self.node(_id_of(node))
        self.execution_order = self._topological_order(output)
        self.output_node = output
        logger.debug(f"Output set to '{output.id}', execution order: {[n.id for n in self.execution_order]}")
        return output

    def _topological_order(self, output):
        # recursive, so depth is bounded by the interpreter recursion limit
        order = []
        visited = set()
        on_path = set()

        def visit(node):
            if node.id in visited:
                return
            if node.id in on_path:
                raise GraphError(f"Cycle detected through node '{node.id}'")
            on_path.add(node.id)
            for operand in self.inputs_of(node):
                visit(operand)
            on_path.discard(node.id)
            visited.add(node.id)
            # appended only after all of its inputs
            order.append(node)

        visit(output)
        return order

    def _require_output(self):
        if self.output_node is None:
            raise GraphError("Graph is missing an output node")

    def edges(self):
        """Edge ids ("<from>-<to>") of every connection in execution order."""
        return [f"{input_id}-{node.id}" for node in self.execution_order for input_id in node.inputs]

    def forward(self):
        """Evaluate every node in execution order and return the output value."""
        self._require_output()
        for node in self.execution_order:
            node.forward(self.inputs_of(node))
        return self.output_node.value

    def backward(self):
        """
        Backpropagate from the output, whose gradient is seeded with 1.0.

        Each node passes its local contributions to its operands recursively,
        so a node fed into k consumers receives (and sums) k contributions.
        Gradients are zeroed first, so repeated calls give the same result.
        Every path from the output is walked separately, so the cost grows
        with the number of paths; fine for teaching-sized graphs.
        """
        self._require_output()
        for node in self._order:
            node.gradient = 0.0

        def propagate(node, upstream):
            node.gradient += upstream
            node.state = NodeState.BACKWARD_VISITED
            operands = self.inputs_of(node)
            for operand, grad in zip(operands, node.local_gradients(upstream, operands)):
                propagate(operand, grad)

        propagate(self.output_node, 1.0)

    def forward_steps(self):
        """Describe the last forward pass one node at a time."""
        steps = []
        for node in self.execution_order:
            operands = self.inputs_of(node)
            steps.append(ComputationStep(
                node_id=node.id,
                operation=node.type.value,
                inputs=[(op.name, op.value) for op in operands],
                output=node.value,
                equation=node.forward_equation(operands),
                explanation=node.explanation(operands),
            ))
        return steps

    def reset(self):
        """Zero every gradient and highlight flag. Values are left untouched."""
        for node in self._order:
            node.gradient = 0.0
            node.active = False
            node.state = NodeState.IDLE

    def __repr__(self):
        output = self.output_node.id if self.output_node else None
        return f"ComputationGraph(nodes={len(self._order)}, output={output!r})"
