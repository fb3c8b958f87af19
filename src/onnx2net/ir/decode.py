from __future__ import annotations

from pathlib import Path
from typing import Any

import onnx
from google.protobuf import text_format
from google.protobuf.message import DecodeError
from onnx import numpy_helper

from onnx2net.errors import ErrorCode, ParserError
from onnx2net.ir.graph import Graph, Node, ValueInfo
from onnx2net.utils import get_logger

logger = get_logger(__name__)


def _shape_from_value_info(vi: onnx.ValueInfoProto) -> list[int] | None:
    tensor_type = vi.type.tensor_type
    if not tensor_type.HasField("shape"):
        return None
    out: list[int] = []
    for d in tensor_type.shape.dim:
        if d.HasField("dim_value"):
            out.append(int(d.dim_value))
        else:
            # symbolic or missing -> dynamic
            out.append(-1)
    return out


def _value_info(vi: onnx.ValueInfoProto) -> ValueInfo:
    return ValueInfo(
        name=vi.name,
        elem_type=int(vi.type.tensor_type.elem_type),
        shape=_shape_from_value_info(vi),
    )


def _parse_attributes(node: onnx.NodeProto) -> dict[str, Any]:
    attrs: dict[str, Any] = {}
    for a in node.attribute:
        if a.type == onnx.AttributeProto.INT:
            attrs[a.name] = int(a.i)
        elif a.type == onnx.AttributeProto.FLOAT:
            attrs[a.name] = float(a.f)
        elif a.type == onnx.AttributeProto.STRING:
            attrs[a.name] = a.s.decode("utf-8", errors="ignore")
        elif a.type == onnx.AttributeProto.INTS:
            attrs[a.name] = [int(x) for x in a.ints]
        elif a.type == onnx.AttributeProto.FLOATS:
            attrs[a.name] = [float(x) for x in a.floats]
        elif a.type == onnx.AttributeProto.STRINGS:
            attrs[a.name] = [s.decode("utf-8", errors="ignore") for s in a.strings]
        elif a.type == onnx.AttributeProto.TENSOR:
            attrs[a.name] = numpy_helper.to_array(a.t)
        elif a.type == onnx.AttributeProto.GRAPH:
            attrs[a.name] = decode_graph(a.g)
        else:
            logger.debug(
                "Skipping attribute '%s' of unsupported type %d on node '%s'",
                a.name,
                a.type,
                node.name,
            )
    return attrs


def decode_graph(graph_proto: onnx.GraphProto) -> Graph:
    """Convert an ONNX GraphProto into the in-memory source Graph."""
    g = Graph(name=graph_proto.name)
    for init in graph_proto.initializer:
        g.initializers[init.name] = numpy_helper.to_array(init)
    for inp in graph_proto.input:
        g.inputs.append(_value_info(inp))
    for out in graph_proto.output:
        g.outputs.append(_value_info(out))
    for vi in graph_proto.value_info:
        g.value_info[vi.name] = _value_info(vi)
    for n in graph_proto.node:
        g.add_node(
            Node(
                op_type=n.op_type,
                inputs=list(n.input),
                outputs=list(n.output),
                name=n.name,
                attributes=_parse_attributes(n),
                domain=n.domain,
            )
        )
    return g


def decode_model(model: onnx.ModelProto) -> Graph:
    g = decode_graph(model.graph)
    g.producer_name = model.producer_name
    for opset in model.opset_import:
        g.opsets[opset.domain] = int(opset.version)
    return g


def deserialize_model(data: bytes) -> onnx.ModelProto:
    """Decode serialized bytes, trying the binary encoding first, then text."""
    if not data:
        raise ParserError(
            "Cannot deserialize an empty model buffer",
            code=ErrorCode.MODEL_DESERIALIZE_FAILED,
        )
    try:
        return onnx.load_model_from_string(data)
    except (DecodeError, RuntimeWarning, ValueError):
        logger.debug("Binary decode failed; retrying as text format")
    try:
        return text_format.Parse(data.decode("utf-8"), onnx.ModelProto())
    except (text_format.ParseError, UnicodeDecodeError) as exc:
        raise ParserError(
            f"Failed to deserialize model: {exc}",
            code=ErrorCode.MODEL_DESERIALIZE_FAILED,
        ) from exc


def load_model(model_or_path: Any) -> onnx.ModelProto:
    if isinstance(model_or_path, onnx.ModelProto):
        return model_or_path
    if isinstance(model_or_path, (bytes, bytearray)):
        return deserialize_model(bytes(model_or_path))
    if isinstance(model_or_path, (str, Path)):
        path = Path(model_or_path)
        if not path.is_file():
            raise ParserError(
                f"Model file not found: {path}",
                code=ErrorCode.MODEL_DESERIALIZE_FAILED,
            )
        return deserialize_model(path.read_bytes())
    raise TypeError("Unsupported model type for ONNX import")
