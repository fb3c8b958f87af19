from __future__ import annotations

import onnx
from onnx import TensorProto, helper

from onnx2net import ErrorCode, ImporterConfig, ModelImporter
from onnx2net.network import FLOAT16, INT32, LayerKind


def _model(nodes, inputs, outputs) -> onnx.ModelProto:
    graph = helper.make_graph(nodes, "g", inputs, outputs)
    return helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])


def test_input_passed_through_as_output() -> None:
    x = helper.make_tensor_value_info("x", TensorProto.FLOAT, [2, 3])
    importer = ModelImporter()
    assert importer.parse(_model([], [x], [x]))
    net = importer.network
    assert len(net.inputs) == 1
    assert len(net.outputs) == 1
    assert net.outputs[0] is not net.inputs[0]
    assert net.outputs[0].name == "x"
    assert net.inputs[0].name == "__x"
    assert net.layers[0].kind == LayerKind.IDENTITY
    assert net.layers[0].inputs[0] is net.inputs[0]


def test_integer_output_type_mismatch() -> None:
    model = _model(
        [helper.make_node("Identity", ["x"], ["y"])],
        [helper.make_tensor_value_info("x", TensorProto.INT32, [2])],
        [helper.make_tensor_value_info("y", TensorProto.FLOAT, [2])],
    )
    importer = ModelImporter()
    assert not importer.parse(model)
    assert importer.get_error(0).code == ErrorCode.UNSUPPORTED_NODE


def test_int64_output_accepts_int32_tensor() -> None:
    model = _model(
        [helper.make_node("Shape", ["x"], ["y"])],
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, [2, 3])],
        [helper.make_tensor_value_info("y", TensorProto.INT64, [2])],
    )
    importer = ModelImporter()
    assert importer.parse(model)
    assert importer.network.outputs[0].dtype == INT32


def test_float_output_takes_declared_type() -> None:
    model = _model(
        [helper.make_node("Relu", ["x"], ["y"])],
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, [2])],
        [helper.make_tensor_value_info("y", TensorProto.FLOAT16, [2])],
    )
    importer = ModelImporter()
    assert importer.parse(model)
    assert importer.network.outputs[0].dtype == FLOAT16


def test_constant_output_is_materialized() -> None:
    value = helper.make_tensor("v", TensorProto.FLOAT, [2], [1.0, 2.0])
    model = _model(
        [helper.make_node("Constant", [], ["y"], value=value)],
        [],
        [helper.make_tensor_value_info("y", TensorProto.FLOAT, [2])],
    )
    importer = ModelImporter()
    assert importer.parse(model)
    out = importer.network.outputs[0]
    assert out.name == "y"
    assert importer.network.layers[0].kind == LayerKind.CONSTANT
    assert importer.network.layers[0].outputs[0] is out


def test_unproduced_output_fails() -> None:
    x = helper.make_tensor_value_info("x", TensorProto.FLOAT, [2])
    nope = helper.make_tensor_value_info("nope", TensorProto.FLOAT, [2])
    importer = ModelImporter()
    assert not importer.parse(_model([], [x], [nope]))
    assert importer.get_error(0).code == ErrorCode.INVALID_GRAPH


def test_user_outputs_returned_not_marked() -> None:
    model = _model(
        [
            helper.make_node("Relu", ["x"], ["r"]),
            helper.make_node("Sigmoid", ["r"], ["y"]),
        ],
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, [2])],
        [helper.make_tensor_value_info("y", TensorProto.FLOAT, [2])],
    )
    importer = ModelImporter(ImporterConfig(user_outputs={"r"}))
    assert importer.parse(model)
    assert [t.name for t in importer.network.outputs] == ["y"]
    assert importer.user_outputs["r"] is importer.network.layers[0].outputs[0]
    assert not importer.user_outputs["r"].is_network_output


def test_user_output_must_be_tensor() -> None:
    value = helper.make_tensor("v", TensorProto.FLOAT, [1], [1.0])
    model = _model(
        [
            helper.make_node("Constant", [], ["c"], value=value),
            helper.make_node("Relu", ["x"], ["y"]),
        ],
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, [1])],
        [helper.make_tensor_value_info("y", TensorProto.FLOAT, [1])],
    )
    importer = ModelImporter(ImporterConfig(user_outputs={"c"}))
    assert not importer.parse(model)
    assert importer.get_error(0).code == ErrorCode.INVALID_VALUE
