"""
Step-by-step execution of a ComputationGraph.

ComputationGraph.backward commits to the whole backward pass in one recursive
call. The ExecutionEngine instead breaks a full forward + backward run into
atomic steps (one node each) so a caller can play, pause, rewind and seek.

Step list:
    forward steps  = graph.execution_order
    backward steps = graph.execution_order reversed

Because the execution order is topological, its reverse visits each node only
after every consumer of that node has already added its share of the gradient.
Gradients are accumulated explicitly in a pending map keyed by node id, never
through node-to-node recursion.
"""
import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum

from gradstep.config import DEFAULT_PLAY_DELAY
from gradstep.engine import NodeState
from gradstep.errors import GraphError

logger = logging.getLogger(__name__)


class ExecutionMode(Enum):
    IDLE = 'idle'
    FORWARD = 'forward'
    BACKWARD = 'backward'


@dataclass
class StepInfo:
    """What the view layer needs to render one step."""
    mode: ExecutionMode
    node_id: str
    node_name: str
    equation: str
    explanation: str
    values: dict = field(default_factory=dict)
    active_node_ids: list = field(default_factory=list)
    # "<from>-<to>", reversed for backward steps
    active_edge_ids: list = field(default_factory=list)


@dataclass
class ExecutionState:
    mode: ExecutionMode
    current_step: int
    total_steps: int
    active_nodes: set
    steps: list
    is_complete: bool


class ExecutionEngine:
    """
    Cursor over the forward and backward steps of a graph.

    The cursor starts at -1 (before the first step). step_forward executes
    the next step, step_backward undoes the current one, jump_to_step replays
    from scratch up to a given step.

    Example:
        engine = ExecutionEngine(graph)
        while engine.step_forward():
            print(engine.current_step_info().equation)
    """

    def __init__(self, graph):
        if graph.output_node is None:
            raise GraphError("Graph is missing an output node")
        self.graph = graph
        self.mode = ExecutionMode.IDLE
        self._cursor = -1
        self._forward_steps = []
        self._backward_steps = []
        self._pending_gradients = {}
        self._stop_requested = False
        self.reset()

    @property
    def current_step(self):
        return self._cursor

    @property
    def total_steps(self):
        return len(self._forward_steps) + len(self._backward_steps)

    def reset(self):
        """Return to the position before the first step."""
        self._cursor = -1
        self.mode = ExecutionMode.IDLE
        self._pending_gradients.clear()
        self.graph.reset()
        self._generate_steps()

    def _generate_steps(self):
        # skeletons only; equations and values are filled in as steps execute
        order = self.graph.execution_order
        self._forward_steps = []
        for node in order:
            self._forward_steps.append(StepInfo(
                mode=ExecutionMode.FORWARD,
                node_id=node.id,
                node_name=node.name,
                equation='',
                explanation=node.explanation(),
                active_node_ids=[*node.inputs, node.id],
                active_edge_ids=[f"{input_id}-{node.id}" for input_id in node.inputs],
            ))

        self._backward_steps = []
        for node in reversed(order):
            self._backward_steps.append(StepInfo(
                mode=ExecutionMode.BACKWARD,
                node_id=node.id,
                node_name=node.name,
                equation='',
                explanation=f"Computing gradients: {node.explanation()}",
                active_node_ids=[node.id, *node.inputs],
                active_edge_ids=[f"{node.id}-{input_id}" for input_id in node.inputs],
            ))

    def all_steps(self):
        return self._forward_steps + self._backward_steps

    def _step_at(self, index):
        if index < len(self._forward_steps):
            return self._forward_steps[index]
        return self._backward_steps[index - len(self._forward_steps)]

    def current_step_info(self):
        if 0 <= self._cursor < self.total_steps:
            return self._step_at(self._cursor)
        return None

    def is_at_start(self):
        return self._cursor < 0

    def is_at_end(self):
        return self._cursor >= self.total_steps - 1

    def step_forward(self):
        """
        Execute the next step.

        Returns:
            False if already at the last step (nothing happens), True otherwise
        """
        if self.is_at_end():
            return False

        self._cursor += 1
        step = self._step_at(self._cursor)
        self.mode = step.mode
        node = self.graph.node(step.node_id)
        operands = self.graph.inputs_of(node)

        if step.mode is ExecutionMode.FORWARD:
            node.forward(operands)
            step.explanation = node.explanation(operands)
            step.equation = node.forward_equation(operands)
            step.values = {'output': node.value, **{op.name: op.value for op in operands}}
        else:
            backward_index = self._cursor - len(self._forward_steps)
            if backward_index == 0:
                # seed dL/dL = 1 at the output
                self._pending_gradients.clear()
                self._pending_gradients[node.id] = 1.0

            upstream = self._pending_gradients.get(node.id, 0.0)
            node.gradient = upstream
            for operand, grad in zip(operands, node.local_gradients(upstream, operands)):
                # accumulate, several consumers may feed the same input
                self._pending_gradients[operand.id] = self._pending_gradients.get(operand.id, 0.0) + grad
            node.state = NodeState.BACKWARD_VISITED

            step.explanation = f"Computing gradients: {node.explanation(operands)}"
            step.equation = node.backward_equation(operands)
            step.values = {
                'gradient': node.gradient,
                'value': node.value,
                **{f"grad_{op.name}": self._pending_gradients.get(op.id, 0.0) for op in operands},
            }

        node.active = True
        logger.debug(f"Step {self._cursor} ({step.mode.value}) on '{node.id}': {step.equation}")
        return True

    def step_backward(self):
        """
        Undo the current step.

        The state before the current step is rebuilt by replaying from the
        start, so pending gradients are never counted twice.

        Returns:
            False if already before the first step, True otherwise
        """
        if self._cursor < 0:
            return False

        # stepping below 0 lands on reset(): idle mode, graph reset
        self.jump_to_step(self._cursor - 1)
        return True

    def jump_to_step(self, step_index):
        """
        Reset everything, then replay step_forward() step_index + 1 times.

        Args:
            step_index: Target step, -1 for the position before the first step
        """
        if not -1 <= step_index < self.total_steps:
            raise IndexError(f"Step {step_index} out of range for {self.total_steps} steps")

        self.reset()
        for _ in range(step_index + 1):
            self.step_forward()

    def get_state(self):
        current = self.current_step_info()
        active = set(current.active_node_ids) if current else set()
        return ExecutionState(
            mode=self.mode,
            current_step=self._cursor,
            total_steps=self.total_steps,
            active_nodes=active,
            steps=[replace(step, values=dict(step.values),
                           active_node_ids=list(step.active_node_ids),
                           active_edge_ids=list(step.active_edge_ids))
                   for step in self.all_steps()],
            is_complete=self._cursor == self.total_steps - 1,
        )

    def gradient_of(self, node_id):
        """Gradient accumulated so far for a node by the backward steps."""
        return self._pending_gradients.get(node_id, 0.0)

    def stop(self):
        """Ask a running play() to stop before its next step."""
        self._stop_requested = True

    async def play(self, delay=DEFAULT_PLAY_DELAY, on_step=None):
        """
        Step forward until the end, sleeping `delay` seconds between steps.

        The stop flag is checked before every step, so stop() (or task
        cancellation during the sleep) never interrupts a step half way.

        Args:
            delay: Seconds to wait between steps, none after the last one
            on_step: Optional callback invoked with the engine after each step

        Returns:
            Number of steps taken
        """
        self._stop_requested = False
        taken = 0
        while not self.is_at_end():
            if self._stop_requested:
                logger.info(f"Auto-play stopped at step {self._cursor}")
                break
            self.step_forward()
            taken += 1
            if on_step is not None:
                on_step(self)
            if not self.is_at_end():
                await asyncio.sleep(delay)
        self._stop_requested = False
        return taken
