from __future__ import annotations

import numpy as np
import onnx
from onnx import TensorProto, helper

from onnx2net import ErrorCode, ImporterConfig, ModelImporter
from onnx2net.importer import ImporterContext, PluginRegistry, TensorOrWeights
from onnx2net.ir import Node
from onnx2net.network import FLOAT32, LayerKind, Network


def _model(nodes, inputs, outputs, initializers=None) -> onnx.ModelProto:
    graph = helper.make_graph(nodes, "g", inputs, outputs, initializer=initializers or [])
    return helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])


def _f(name: str, shape: list[int]) -> onnx.ValueInfoProto:
    return helper.make_tensor_value_info(name, TensorProto.FLOAT, shape)


class _EchoPlugin:
    def get_output_specs(self, inputs):
        return list(inputs)


def test_import_chain_with_initializer() -> None:
    b = helper.make_tensor("b", TensorProto.FLOAT, [3], [1.0, 2.0, 3.0])
    model = _model(
        [
            helper.make_node("Relu", ["x"], ["r"], name="relu0"),
            helper.make_node("Add", ["r", "b"], ["y"], name="add0"),
        ],
        [_f("x", [1, 3])],
        [_f("y", [1, 3])],
        [b],
    )
    importer = ModelImporter()
    assert importer.parse(model)
    net = importer.network
    assert [t.name for t in net.inputs] == ["x"]
    # dynamic batch by default
    assert net.inputs[0].shape == [-1, 3]
    assert [t.name for t in net.outputs] == ["y"]
    assert net.outputs[0].dtype == FLOAT32
    assert [layer.kind for layer in net.layers] == [
        LayerKind.ACTIVATION,
        LayerKind.CONSTANT,
        LayerKind.ELEMENTWISE,
    ]
    assert importer.context.lookup("b").is_weights()
    assert importer.num_errors == 0


def test_static_batch_keeps_declared_dims() -> None:
    model = _model([helper.make_node("Relu", ["x"], ["y"])], [_f("x", [1, 3])], [_f("y", [1, 3])])
    importer = ModelImporter(ImporterConfig(dynamic_batch=False))
    assert importer.parse(model)
    assert importer.network.inputs[0].shape == [1, 3]


def test_initializer_listed_as_input_is_not_a_network_input() -> None:
    w = helper.make_tensor("w", TensorProto.FLOAT, [3], [1.0, 1.0, 1.0])
    model = _model(
        [helper.make_node("Mul", ["x", "w"], ["y"])],
        [_f("x", [2, 3]), _f("w", [3])],
        [_f("y", [2, 3])],
        [w],
    )
    importer = ModelImporter()
    assert importer.parse(model)
    assert [t.name for t in importer.network.inputs] == ["x"]


def test_caller_weights_substitute_inputs_and_skip_dims_index() -> None:
    model = _model(
        [helper.make_node("MatMul", ["x", "w"], ["y"])],
        [_f("w", [3, 4]), _f("x", [2, 3])],
        [_f("y", [2, 4])],
    )
    importer = ModelImporter(ImporterConfig(input_dims=[[5, 3]]))
    assert importer.parse(model, weights={"w": np.ones((3, 4), dtype=np.float32)})
    net = importer.network
    assert [t.name for t in net.inputs] == ["x"]
    assert net.inputs[0].shape == [5, 3]
    assert net.outputs[0].shape == [5, 4]
    assert importer.context.lookup("w").is_weights()


def test_input_dims_rank_mismatch() -> None:
    model = _model([helper.make_node("Relu", ["x"], ["y"])], [_f("x", [1, 3])], [_f("y", [1, 3])])
    importer = ModelImporter(ImporterConfig(input_dims=[[1, 3, 4]]))
    assert not importer.parse(model)
    first = importer.get_error(0)
    assert first.code == ErrorCode.INVALID_VALUE
    assert first.input_name == "x"
    assert importer.get_error(importer.num_errors - 1).code == ErrorCode.UNSUPPORTED_GRAPH


def test_all_bad_inputs_are_reported() -> None:
    model = _model(
        [helper.make_node("Add", ["a", "b"], ["y"])],
        [
            helper.make_tensor_value_info("a", TensorProto.UINT8, [2]),
            helper.make_tensor_value_info("b", TensorProto.DOUBLE, [2]),
        ],
        [_f("y", [2])],
    )
    importer = ModelImporter()
    assert not importer.parse(model)
    assert [e.input_name for e in importer.errors[:2]] == ["a", "b"]
    assert all(e.code == ErrorCode.UNSUPPORTED_NODE for e in importer.errors[:2])


def test_user_input_tensor_is_used_unchecked() -> None:
    net = Network()
    x = net.add_input("x", FLOAT32, [7, 3])
    model = _model([helper.make_node("Relu", ["x"], ["y"])], [_f("x", [1, 3])], [_f("y", [1, 3])])
    importer = ModelImporter(ImporterConfig(user_inputs={"x": x}))
    assert importer.parse(model, network=net)
    assert importer.network is net
    assert net.inputs == [x]
    assert net.layers[0].inputs[0] is x


def test_unresolved_input_name_is_tagged_with_node() -> None:
    model = _model(
        [
            helper.make_node("Relu", ["x"], ["r"]),
            helper.make_node("Add", ["r", "missing"], ["y"]),
        ],
        [_f("x", [2])],
        [_f("y", [2])],
    )
    importer = ModelImporter()
    assert not importer.parse(model)
    error = importer.get_error(0)
    assert error.code == ErrorCode.INVALID_GRAPH
    assert error.node == 1
    assert error.func


def test_unregistered_op_without_plugin() -> None:
    model = _model([helper.make_node("NoSuchOp", ["x"], ["y"])], [_f("x", [2])], [_f("y", [2])])
    importer = ModelImporter()
    assert not importer.supports_operator("NoSuchOp")
    assert not importer.parse(model)
    assert importer.get_error(0).code == ErrorCode.UNSUPPORTED_NODE
    assert importer.get_error(0).node == 0


def test_plugin_fallback() -> None:
    plugins = PluginRegistry()
    plugins.register("EchoOp", lambda attrs: _EchoPlugin())
    model = _model([helper.make_node("EchoOp", ["x"], ["y"], name="echo")], [_f("x", [2])], [_f("y", [2])])
    importer = ModelImporter(ImporterConfig(plugins=plugins))
    assert importer.parse(model)
    layer = importer.network.layers[0]
    assert layer.kind == LayerKind.PLUGIN
    assert layer.operation == "EchoOp"
    assert layer.name == "echo"
    assert importer.network.outputs[0] is layer.outputs[0]


def test_plugin_version_must_match() -> None:
    plugins = PluginRegistry()
    plugins.register("EchoOp", lambda attrs: _EchoPlugin())
    node = helper.make_node("EchoOp", ["x"], ["y"], plugin_version="2")
    model = _model([node], [_f("x", [2])], [_f("y", [2])])
    importer = ModelImporter(ImporterConfig(plugins=plugins))
    assert not importer.parse(model)
    assert importer.get_error(0).code == ErrorCode.UNSUPPORTED_NODE


def test_optional_empty_input_resolves_to_absent() -> None:
    seen: list[TensorOrWeights] = []

    def record_inputs(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
        seen.extend(inputs)
        return [TensorOrWeights(tensor=ctx.network.add_identity(inputs[0].tensor).outputs[0])]

    model = _model([helper.make_node("RecordInputs", ["x", ""], ["y"])], [_f("x", [2])], [_f("y", [2])])
    importer = ModelImporter(ImporterConfig(extra_importers={"RecordInputs": record_inputs}))
    assert importer.parse(model)
    assert len(seen) == 2
    assert seen[0].is_tensor()
    assert not seen[1]


def test_empty_output_names_are_discarded() -> None:
    def split(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
        x = inputs[0].tensor
        layer = ctx.network.add_layer(LayerKind.IDENTITY, [x], [(x.dtype, x.shape), (x.dtype, x.shape)])
        return [TensorOrWeights(tensor=t) for t in layer.outputs]

    model = _model([helper.make_node("Split2", ["x"], ["y", ""])], [_f("x", [2])], [_f("y", [2])])
    importer = ModelImporter(ImporterConfig(extra_importers={"Split2": split}))
    assert importer.parse(model)
    assert importer.context.is_bound("y")
    assert not importer.context.is_bound("")


def test_too_few_outputs_fails() -> None:
    def nothing(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
        return []

    model = _model([helper.make_node("Nothing", ["x"], ["y"])], [_f("x", [2])], [_f("y", [2])])
    importer = ModelImporter(ImporterConfig(extra_importers={"Nothing": nothing}))
    assert not importer.parse(model)
    assert importer.get_error(0).code == ErrorCode.UNSUPPORTED_NODE


def test_importer_value_error_is_wrapped() -> None:
    def broken(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
        raise ValueError("bad attribute")

    model = _model([helper.make_node("Broken", ["x"], ["y"])], [_f("x", [2])], [_f("y", [2])])
    importer = ModelImporter(ImporterConfig(extra_importers={"Broken": broken}))
    assert not importer.parse(model)
    error = importer.get_error(0)
    assert error.code == ErrorCode.UNSUPPORTED_NODE
    assert error.node == 0
    assert isinstance(error.__cause__, ValueError)


def test_clear_errors() -> None:
    importer = ModelImporter()
    assert not importer.parse(b"")
    assert importer.get_error(0).code == ErrorCode.MODEL_DESERIALIZE_FAILED
    importer.clear_errors()
    assert importer.num_errors == 0
