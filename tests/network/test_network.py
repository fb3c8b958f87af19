from __future__ import annotations

import pytest

from onnx2net.network import (
    FLOAT32,
    INT32,
    ElementWiseOp,
    LayerKind,
    Network,
    ReduceOp,
    supports_shape_tensor,
)


def test_add_layer_assigns_default_names() -> None:
    net = Network()
    x = net.add_input("x", FLOAT32, [2, 3])
    single = net.add_layer(LayerKind.SHAPE, [x], [(INT32, [2])])
    multi = net.add_layer(LayerKind.IDENTITY, [x], [(FLOAT32, [2, 3]), (FLOAT32, [2, 3])])
    assert single.name == "(Unnamed Layer* 0) [SHAPE]"
    assert single.outputs[0].name == "(Unnamed Layer* 0) [SHAPE]_output"
    assert [t.name for t in multi.outputs] == [
        "(Unnamed Layer* 1) [IDENTITY]_output_0",
        "(Unnamed Layer* 1) [IDENTITY]_output_1",
    ]


def test_duplicate_input_rejected() -> None:
    net = Network()
    net.add_input("x", FLOAT32, [1])
    with pytest.raises(ValueError):
        net.add_input("x", FLOAT32, [1])


def test_tensors_compare_by_identity() -> None:
    net = Network()
    a = net.add_input("a", FLOAT32, [1])
    b = net.add_input("b", FLOAT32, [1])
    b.name = "a"
    assert a != b
    assert a == a


def test_invalid_dynamic_range() -> None:
    net = Network()
    x = net.add_input("x", FLOAT32, [1])
    x.set_dynamic_range(-2, 2)
    assert x.dynamic_range == (-2.0, 2.0)
    with pytest.raises(ValueError):
        x.set_dynamic_range(1, 0)


def test_mark_and_unmark_output() -> None:
    net = Network()
    x = net.add_input("x", FLOAT32, [1])
    y = net.add_identity(x).outputs[0]
    net.mark_output(y)
    net.mark_output(y)
    assert net.outputs == [y]
    net.unmark_output(y)
    assert net.outputs == []
    assert not y.is_network_output


def test_shape_tensors_propagate_backwards_from_shape_slots() -> None:
    net = Network()
    x = net.add_input("x", FLOAT32, [2, 3])
    shape = net.add_layer(LayerKind.SHAPE, [x], [(INT32, [2])]).outputs[0]
    doubled = net.add_layer(
        LayerKind.ELEMENTWISE, [shape, shape], [(INT32, [2])], operation=ElementWiseOp.SUM
    ).outputs[0]
    reshaped = net.add_layer(
        LayerKind.SHUFFLE, [x, doubled], [(FLOAT32, [-1, -1])], shape_input_slots=(1,)
    ).outputs[0]

    found = net.shape_tensors()
    assert id(shape) in found
    assert id(doubled) in found
    # data inputs and outputs are not shape tensors
    assert id(x) not in found
    assert id(reshaped) not in found
    assert net.is_shape_tensor(doubled)


def test_shape_slot_tensor_from_network_input() -> None:
    net = Network()
    x = net.add_input("x", FLOAT32, [2, 3])
    s = net.add_input("s", INT32, [2])
    net.add_layer(LayerKind.SHUFFLE, [x, s], [(FLOAT32, [-1, -1])], shape_input_slots=(1,))
    assert net.shape_tensors() == {id(s)}


@pytest.mark.parametrize(
    "kind, operation, expected",
    [
        (LayerKind.SHAPE, None, True),
        (LayerKind.SHUFFLE, None, True),
        (LayerKind.CONSTANT, None, True),
        (LayerKind.IDENTITY, None, True),
        (LayerKind.ELEMENTWISE, ElementWiseOp.SUM, True),
        (LayerKind.ELEMENTWISE, ElementWiseOp.POW, False),
        (LayerKind.REDUCE, ReduceOp.MAX, True),
        (LayerKind.REDUCE, ReduceOp.AVG, False),
        (LayerKind.UNARY, "ABS", False),
        (LayerKind.ACTIVATION, "RELU", False),
        (LayerKind.MATRIX_MULTIPLY, None, False),
    ],
)
def test_supports_shape_tensor(kind: str, operation: str | None, expected: bool) -> None:
    assert supports_shape_tensor(kind, operation) is expected
