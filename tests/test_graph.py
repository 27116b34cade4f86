import pytest
import torch

import tunegraph as tg
from tunegraph import ConfigurationError, Graph, GraphConfig, OpKind, Shape, ShapeMismatch, inits
from tunegraph.ir import describe, infer_shape


def test_param_is_reused_by_name(graph):
    w = graph.param("w", (2, 3), inits.normal(seed=0))
    assert graph.param("w", (2, 3), inits.zeros()) is w
    assert graph.params == {"w": w}
    with pytest.raises(ShapeMismatch):
        graph.param("w", (3, 2), inits.zeros())


def test_input_from_nested_list(graph):
    x = graph.input([[1, 2], [3, 4]], name="x")
    assert x.kind is OpKind.INPUT
    assert x.shape == Shape((2, 2))
    assert x.value.dtype == torch.float32
    assert x.name == "x"


def test_indices_shaped_by_context(graph):
    x = graph.zeros((2, 3, 4))
    idx = graph.indices([1, 2], context=x, axis=1)
    assert idx.kind is OpKind.INDICES
    assert idx.shape == Shape((1, 2, 1))
    assert graph.indices([0, 1, 2]).shape == Shape((3,))


def test_initializer_shape_is_checked(graph):
    with pytest.raises(ShapeMismatch):
        graph.constant((2, 2), inits.from_vector([1.0, 2.0, 3.0]))


def test_inputs_from_another_graph_are_rejected(graph):
    other = Graph()
    a = graph.ones((2,))
    b = other.ones((2,))
    with pytest.raises(ConfigurationError):
        a + b


def test_deduplication_can_be_disabled():
    graph = Graph(GraphConfig(deduplicate=False))
    a = graph.ones((2, 2))
    assert tg.relu(a) is not tg.relu(a)
    assert len(graph) == 3


def test_node_ids_follow_creation_order(graph):
    a = graph.ones((2,))
    b = tg.exp(a)
    c = b * a
    assert [e.node.id for e in graph.nodes] == [0, 1, 2]
    assert c.node.inputs == (b, a)


def test_forward_only_runs_reachable_nodes(graph):
    a = graph.ones((2,))
    used = tg.exp(a)
    unused = tg.sigmoid(a)
    result = graph.forward(used)
    assert torch.allclose(result, torch.exp(torch.ones(2)))
    assert unused.value is None
    assert graph.forward() is None
    assert unused.value is not None


def test_optimize_toggle(graph):
    assert not graph.is_optimized()
    graph.set_optimized(True)
    assert graph.is_optimized()
    a, b = graph.ones((2, 4)), graph.ones((4, 2))
    assert tg.dot(a, b).kind is OpKind.INT16_DOT


def test_constant_like(graph):
    a = graph.zeros((3, 2))
    c = tg.constant_like(a, inits.from_value(7.0))
    assert c.shape == a.shape
    assert torch.equal(c.value, torch.full((3, 2), 7.0))


def test_infer_shape_is_pure():
    shapes = [Shape((2, 3)), Shape((3, 4))]
    attrs = (False, False, 1.0)
    assert infer_shape(OpKind.DOT, shapes, attrs) == infer_shape(OpKind.DOT, shapes, attrs) == Shape((2, 4))
    with pytest.raises(ShapeMismatch):
        infer_shape(OpKind.DOT, [Shape((2, 3)), Shape((4, 4))], attrs)


def test_describe_and_repr(graph):
    a = graph.input([1.0, 2.0], name="a")
    b = tg.debug(tg.exp(a), "activation")
    info = describe(b.node)
    assert info["kind"] == "exp"
    assert info["inputs"] == [a.node.id]
    assert info["debug"] == "activation"
    assert repr(a) == "Expr(#0 input 'a' [2])"
