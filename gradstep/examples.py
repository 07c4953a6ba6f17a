"""
Ready-made computation graphs for learning backpropagation.

Each example builds on the previous one: a single multiplication, then
addition, the chain rule, a neuron, a squared-error loss, a two-input neuron
and finally an expression with a max gate.
"""
from dataclasses import dataclass, field

from gradstep.engine import ComputationGraph, ComputationNode as Node


@dataclass
class Example:
    id: str
    name: str
    description: str
    graph: ComputationGraph
    default_inputs: dict = field(default_factory=dict)

    def apply_inputs(self, values=None):
        """Set leaf values (defaults when values is None) on the graph."""
        for node_id, value in (values if values is not None else self.default_inputs).items():
            self.graph.node(node_id).set_value(value)


def _graph(*nodes):
    graph = ComputationGraph()
    for node in nodes:
        graph.add_node(node)
    # the last node is the output
    graph.set_output(nodes[-1])
    return graph


def multiplication_example():
    x = Node.input('x', 2.0, x=100, y=150)
    y = Node.input('y', 3.0, x=100, y=250)
    z = Node.multiply('z', x, y, x=300, y=200)
    return Example(
        id='multiply',
        name='Simple Multiplication',
        description='Learn how gradients flow through multiplication. '
                    'Change x and y to see how ∂L/∂x = y and ∂L/∂y = x.',
        graph=_graph(x, y, z),
        default_inputs={'x': 2.0, 'y': 3.0},
    )


def addition_example():
    x = Node.input('x', 2.0, x=100, y=150)
    y = Node.input('y', 3.0, x=100, y=250)
    z = Node.add('z', x, y, x=300, y=200)
    return Example(
        id='add',
        name='Addition',
        description='See how addition distributes gradients equally: ∂L/∂x = ∂L/∂z and ∂L/∂y = ∂L/∂z.',
        graph=_graph(x, y, z),
        default_inputs={'x': 2.0, 'y': 3.0},
    )


def chain_example():
    x = Node.input('x', 2.0)
    y = Node.input('y', 3.0)
    c = Node.input('c', 1.0)
    mul = Node.multiply('mul', x, y, name='x×y')
    z = Node.add('z', mul, c)
    return Example(
        id='chain',
        name='Chain Rule',
        description='Watch the chain rule in action: z = (x×y) + c. '
                    'Gradients flow backward through multiple operations.',
        graph=_graph(x, y, c, mul, z),
        default_inputs={'x': 2.0, 'y': 3.0, 'c': 1.0},
    )


def neuron_example():
    x = Node.input('x', 0.5)
    w = Node.parameter('w', 2.0)
    b = Node.parameter('b', -1.0)
    wx = Node.multiply('wx', w, x, name='w×x')
    z = Node.add('z', wx, b)
    a = Node.sigmoid('a', z, name='σ(z)')
    return Example(
        id='neuron',
        name='Simple Neuron',
        description='A single neuron: σ(w×x + b). See how gradients flow through '
                    'activation functions and learn parameters w and b.',
        graph=_graph(x, w, b, wx, z, a),
        default_inputs={'x': 0.5, 'w': 2.0, 'b': -1.0},
    )


def loss_example():
    pred = Node.input('pred', 0.8, name='ŷ')
    target = Node.input('target', 1.0, name='y')
    diff = Node.subtract('diff', pred, target, name='ŷ-y')
    loss = Node.square('loss', diff, name='L')
    return Example(
        id='loss',
        name='MSE Loss',
        description='Squared error: L = (ŷ-y)². Understand how the loss gradient '
                    '∂L/∂ŷ depends on the prediction error.',
        graph=_graph(pred, target, diff, loss),
        default_inputs={'pred': 0.8, 'target': 1.0},
    )


def xor_component_example():
    x1 = Node.input('x1', 1.0, name='x₁')
    x2 = Node.input('x2', 0.0, name='x₂')
    w1 = Node.parameter('w1', 1.5, name='w₁')
    w2 = Node.parameter('w2', 1.5, name='w₂')
    b = Node.parameter('b', -1.0)
    w1x1 = Node.multiply('w1x1', w1, x1, name='w₁×x₁')
    w2x2 = Node.multiply('w2x2', w2, x2, name='w₂×x₂')
    total = Node.add('sum', w1x1, w2x2, name='Σ')
    z = Node.add('z', total, b)
    a = Node.sigmoid('a', z, name='σ(z)')
    return Example(
        id='xor-component',
        name='XOR Component',
        description='A neuron with 2 inputs, one piece of solving XOR. '
                    'Trace gradients through branching paths.',
        graph=_graph(x1, x2, w1, w2, b, w1x1, w2x2, total, z, a),
        default_inputs={'x1': 1.0, 'x2': 0.0, 'w1': 1.5, 'w2': 1.5, 'b': -1.0},
    )


def max_gate_example():
    """f(x, y, z, w) = 2(xy + max(z, w))"""
    x = Node.input('x', 3.0)
    y = Node.input('y', -4.0)
    z = Node.input('z', 2.0)
    w = Node.input('w', -1.0)
    two = Node.input('const2', 2.0, name='2')
    xy = Node.multiply('xy', x, y, name='x×y')
    maxzw = Node.max('maxzw', z, w, name='max(z,w)')
    total = Node.add('sum', xy, maxzw, name='xy+max')
    result = Node.multiply('result', total, two, name='f')
    return Example(
        id='max-gate',
        name='f(x,y,z,w) = 2(xy + max(z,w))',
        description='Expression with a max operation. Watch how gradients flow '
                    'through multiple paths and the max gate.',
        graph=_graph(x, y, z, w, two, xy, maxzw, total, result),
        default_inputs={'x': 3.0, 'y': -4.0, 'z': 2.0, 'w': -1.0},
    )


EXAMPLE_BUILDERS = (
    multiplication_example,
    addition_example,
    chain_example,
    neuron_example,
    loss_example,
    xor_component_example,
    max_gate_example,
)


def get_all_examples():
    """Fresh copies of every example, in teaching order."""
    return [build() for build in EXAMPLE_BUILDERS]


def get_example(example_id):
    for example in get_all_examples():
        if example.id == example_id:
            return example
    raise KeyError(f"No example with id '{example_id}'")
