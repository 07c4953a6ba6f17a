import asyncio

import pytest

from gradstep.engine import ComputationGraph, ComputationNode as Node
from gradstep.errors import GraphError
from gradstep.examples import get_all_examples, get_example
from gradstep.execution import ExecutionEngine, ExecutionMode


def run_to_end(engine):
    while engine.step_forward():
        pass


def shared_input_graph():
    graph = ComputationGraph()
    for node in (
        Node.input('x', 3.0),
        Node.input('y', 2.0),
        Node.input('c', 1.0),
        Node.multiply('a', 'x', 'y'),
        Node.add('b', 'x', 'c'),
        Node.multiply('out', 'a', 'b'),
    ):
        graph.add_node(node)
    graph.set_output('out')
    return graph


def test_step_list_is_forward_then_reversed_forward():
    graph = get_example('chain').graph
    engine = ExecutionEngine(graph)
    steps = engine.all_steps()
    order = [n.id for n in graph.execution_order]

    assert engine.total_steps == 2 * len(order)
    assert [s.node_id for s in steps[:len(order)]] == order
    assert [s.node_id for s in steps[len(order):]] == order[::-1]
    assert all(s.mode is ExecutionMode.FORWARD for s in steps[:len(order)])
    assert all(s.mode is ExecutionMode.BACKWARD for s in steps[len(order):])
    # skeletons carry no equation until executed
    assert all(s.equation == '' for s in steps)


def test_edges_flip_between_passes():
    engine = ExecutionEngine(get_example('multiply').graph)
    steps = engine.all_steps()
    forward_z = steps[2]
    backward_z = steps[3]
    assert forward_z.active_edge_ids == ['x-z', 'y-z']
    assert forward_z.active_node_ids == ['x', 'y', 'z']
    assert backward_z.active_edge_ids == ['z-x', 'z-y']
    assert backward_z.active_node_ids == ['z', 'x', 'y']


def test_full_run_matches_recursive_backward():
    for example in get_all_examples():
        engine = ExecutionEngine(example.graph)
        run_to_end(engine)
        stepped = {n.id: n.gradient for n in example.graph.nodes}

        reference = example.graph
        reference.reset()
        reference.forward()
        reference.backward()
        assert stepped == pytest.approx({n.id: n.gradient for n in reference.nodes})


def test_accumulates_across_consumers():
    engine = ExecutionEngine(shared_input_graph())
    run_to_end(engine)
    assert engine.gradient_of('x') == 14.0
    assert engine.graph.node('x').gradient == 14.0
    assert engine.graph.node('out').value == 24.0


def test_step_records_values_and_equations():
    engine = ExecutionEngine(get_example('multiply').graph)
    for _ in range(3):
        engine.step_forward()
    info = engine.current_step_info()
    assert engine.mode is ExecutionMode.FORWARD
    assert info.values == {'output': 6.0, 'x': 2.0, 'y': 3.0}
    assert info.equation == "z = x × y = 2.000 × 3.000 = 6.000"

    engine.step_forward()
    info = engine.current_step_info()
    assert engine.mode is ExecutionMode.BACKWARD
    assert info.values == {'gradient': 1.0, 'value': 6.0, 'grad_x': 3.0, 'grad_y': 2.0}
    assert info.explanation.startswith("Computing gradients: Multiplication")


def test_step_forward_stops_at_end():
    engine = ExecutionEngine(get_example('add').graph)
    run_to_end(engine)
    state = engine.get_state()
    assert state.is_complete
    assert engine.is_at_end()
    assert engine.step_forward() is False
    assert engine.get_state() == state


def test_step_backward_to_idle():
    engine = ExecutionEngine(get_example('multiply').graph)
    assert engine.is_at_start()
    assert engine.step_backward() is False

    engine.step_forward()
    assert engine.step_backward() is True
    assert engine.current_step == -1
    assert engine.mode is ExecutionMode.IDLE
    assert engine.get_state().active_nodes == set()


def test_step_backward_does_not_double_count():
    engine = ExecutionEngine(shared_input_graph())
    run_to_end(engine)
    engine.step_backward()
    engine.step_backward()
    engine.step_forward()
    engine.step_forward()
    assert engine.gradient_of('x') == 14.0


def test_step_backward_equals_jump():
    engine = ExecutionEngine(get_example('max-gate').graph)
    for _ in range(12):
        engine.step_forward()
    engine.step_backward()
    after_undo = engine.get_state()
    engine.jump_to_step(10)
    assert engine.get_state() == after_undo


def test_jump_matches_sequential_steps():
    engine = ExecutionEngine(get_example('xor-component').graph)
    for target in range(engine.total_steps):
        engine.reset()
        for _ in range(target + 1):
            engine.step_forward()
        sequential = engine.get_state()

        engine.jump_to_step(target)
        assert engine.get_state() == sequential
        assert engine.current_step == target


def test_jump_out_of_range():
    engine = ExecutionEngine(get_example('add').graph)
    with pytest.raises(IndexError):
        engine.jump_to_step(engine.total_steps)
    engine.step_forward()
    engine.jump_to_step(-1)
    assert engine.is_at_start()


def test_state_snapshot_is_detached():
    engine = ExecutionEngine(get_example('add').graph)
    engine.step_forward()
    state = engine.get_state()
    state.steps[0].values['output'] = 99.0
    assert engine.all_steps()[0].values['output'] == 2.0


def test_active_nodes_follow_current_step():
    engine = ExecutionEngine(get_example('multiply').graph)
    engine.jump_to_step(2)
    state = engine.get_state()
    assert state.active_nodes == {'x', 'y', 'z'}
    assert state.mode is ExecutionMode.FORWARD
    assert state.total_steps == 6
    assert not state.is_complete


def test_graph_without_output():
    with pytest.raises(GraphError):
        ExecutionEngine(ComputationGraph())


def test_play_runs_to_the_end():
    engine = ExecutionEngine(get_example('chain').graph)
    seen = []
    taken = asyncio.run(engine.play(delay=0, on_step=lambda e: seen.append(e.current_step)))
    assert taken == engine.total_steps
    assert seen == list(range(engine.total_steps))
    assert engine.is_at_end()


def test_play_can_be_stopped():
    engine = ExecutionEngine(get_example('chain').graph)

    def stop_after_two(e):
        if e.current_step == 1:
            e.stop()

    taken = asyncio.run(engine.play(delay=0, on_step=stop_after_two))
    assert taken == 2
    assert engine.current_step == 1

    # a later play starts fresh and resumes from the cursor
    taken = asyncio.run(engine.play(delay=0))
    assert taken == engine.total_steps - 2


def test_play_does_not_wait_after_last_step(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(asyncio, 'sleep', fake_sleep)
    engine = ExecutionEngine(get_example('multiply').graph)
    taken = asyncio.run(engine.play(delay=0.5))
    assert taken == engine.total_steps
    assert delays == [0.5] * (engine.total_steps - 1)
