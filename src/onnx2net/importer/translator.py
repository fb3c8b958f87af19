from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from onnx2net.errors import ErrorCode, ParserError, input_error
from onnx2net.importer.context import ImporterContext
from onnx2net.importer.op_importers import NodeImporter, select_importer
from onnx2net.importer.weights import (
    TensorOrWeights,
    convert_dtype,
    convert_onnx_weights,
    convert_to_tensor,
)
from onnx2net.ir.graph import Graph, Node, ValueInfo
from onnx2net.ir.utils import toposort
from onnx2net.network import INTEGER_TYPES, Layer, Tensor
from onnx2net.network.types import MAX_DIMS
from onnx2net.utils import get_logger

logger = get_logger(__name__)

# Marks models exported by this package; their nodes may carry metadata overrides.
PRODUCER_NAME = "onnx2net"

ATTR_OUTPUTS_LOC = "net_outputs_loc"
ATTR_OUTPUTS_RANGE_MIN = "net_outputs_range_min"
ATTR_OUTPUTS_RANGE_MAX = "net_outputs_range_max"
ATTR_LAYER_PRECISION = "net_layer_precision"


@dataclass
class TranslationTracker:
    """Progress of one translation: the node being imported and the layers each node built."""

    current_node: int = -1
    order: list[int] = field(default_factory=list)
    node_layers: dict[int, list[Layer]] = field(default_factory=dict)

    def output_names(self, node_index: int) -> set[str]:
        return {t.name for layer in self.node_layers.get(node_index, []) for t in layer.outputs}


def _import_input(
    ctx: ImporterContext, vi: ValueInfo, dims_setup: Sequence[int] | None, dynamic_batch: bool
) -> Tensor:
    dtype = convert_dtype(vi.elem_type)
    if dtype is None:
        raise input_error(
            f"Input '{vi.name}' has unsupported element type {vi.elem_type}",
            ErrorCode.UNSUPPORTED_NODE,
            vi.name,
        )
    if vi.shape is None or len(vi.shape) > MAX_DIMS:
        raise input_error(
            f"Input '{vi.name}' has no usable declared shape", ErrorCode.UNSUPPORTED_GRAPH, vi.name
        )
    user_input = ctx.user_inputs.get(vi.name)
    if user_input is not None:
        # dims and type are deliberately not checked so callers may change them
        return user_input

    dims = list(vi.shape)
    if dims_setup is not None:
        if len(dims_setup) != len(dims):
            raise input_error(
                f"Input '{vi.name}' override has rank {len(dims_setup)}, expected {len(dims)}",
                ErrorCode.INVALID_VALUE,
                vi.name,
            )
        logger.info(
            "Setup network input: %s, final dimensions: %s, origin dimensions: %s",
            vi.name,
            list(dims_setup),
            dims,
        )
        dims = list(dims_setup)
    elif dynamic_batch and dims:
        dims[0] = -1

    logger.debug("Adding network input: %s with dtype: %s, dimensions: %s", vi.name, dtype, dims)
    try:
        return ctx.network.add_input(vi.name, dtype, dims)
    except ValueError as exc:
        raise input_error(str(exc), ErrorCode.UNSUPPORTED_NODE, vi.name) from exc


def import_inputs(
    ctx: ImporterContext,
    graph: Graph,
    errors: list[ParserError],
    *,
    input_dims: Sequence[Sequence[int]] = (),
    weights: Mapping[str, np.ndarray] | None = None,
    dynamic_batch: bool = True,
) -> None:
    """
    Bind every declared graph input that is not an initializer.

    Each input is attempted even after another one fails; input-rooted
    failures are appended to ``errors`` and the import then aborts.
    """
    weights = weights or {}
    failures: list[ParserError] = []
    index_input = 0
    for vi in graph.inputs:
        if vi.name in graph.initializers:
            continue
        try:
            if vi.name in weights:
                try:
                    converted = convert_onnx_weights(np.asarray(weights[vi.name]), vi.name)
                except ParserError as exc:
                    exc.input_name = vi.name
                    raise
                ctx.bind(vi.name, TensorOrWeights(weights=converted))
                continue
            dims = input_dims[index_input] if index_input < len(input_dims) else None
            index_input += 1
            tensor = _import_input(ctx, vi, dims, dynamic_batch)
            ctx.bind(vi.name, TensorOrWeights(tensor=tensor))
        except ParserError as exc:
            failures.append(exc)
    if failures:
        for failure in failures:
            errors.append(failure)
        raise ParserError(
            f"{len(failures)} graph input(s) could not be imported",
            code=ErrorCode.UNSUPPORTED_GRAPH,
        )


def _record_node_metadata(ctx: ImporterContext, node: Node) -> None:
    outputs = list(node.outputs)
    attrs = node.attributes

    locations = list(attrs.get(ATTR_OUTPUTS_LOC, []))
    if len(locations) > len(outputs):
        raise ParserError(
            f"{node.describe()}: more output locations than outputs", code=ErrorCode.INVALID_GRAPH
        )
    for name, location in zip(outputs, locations):
        ctx.record_location(name, location)

    mins = list(attrs.get(ATTR_OUTPUTS_RANGE_MIN, []))
    maxs = list(attrs.get(ATTR_OUTPUTS_RANGE_MAX, []))
    if len(mins) != len(maxs) or len(mins) > len(outputs):
        raise ParserError(
            f"{node.describe()}: output ranges do not match the outputs", code=ErrorCode.INVALID_GRAPH
        )
    for name, low, high in zip(outputs, mins, maxs):
        ctx.record_range(name, (low, high))

    if ATTR_LAYER_PRECISION in attrs:
        ctx.record_precision(node.name, str(attrs[ATTR_LAYER_PRECISION]))


def _resolve_inputs(ctx: ImporterContext, node: Node) -> list[TensorOrWeights]:
    inputs: list[TensorOrWeights] = []
    for name in node.inputs:
        # empty names mark optional inputs that were not supplied
        if not name:
            inputs.append(TensorOrWeights.absent())
            continue
        logger.debug("Searching for input: %s", name)
        inputs.append(ctx.lookup(name))
    return inputs


def _invoke(importer: NodeImporter, ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    try:
        return importer(ctx, node, inputs)
    except ParserError:
        raise
    except (ValueError, TypeError, KeyError, IndexError) as exc:
        raise ParserError(
            f"{node.describe()}: {exc}", code=ErrorCode.UNSUPPORTED_NODE
        ) from exc


def parse_graph(
    ctx: ImporterContext,
    graph: Graph,
    op_importers: Mapping[str, NodeImporter],
    *,
    deserializing_network: bool = False,
    tracker: TranslationTracker | None = None,
) -> None:
    """
    Translate every node of ``graph`` into ``ctx.network``.

    Any failure aborts the whole translation; the raised error carries the
    index of the node being imported.
    """
    tracker = tracker if tracker is not None else TranslationTracker()

    for name, array in graph.initializers.items():
        logger.debug("Importing initializer: %s", name)
        ctx.bind(name, TensorOrWeights(weights=convert_onnx_weights(array, name)))

    tracker.order = toposort(graph.nodes)

    for node_index in tracker.order:
        tracker.current_node = node_index
        node = graph.nodes[node_index]
        logger.debug("Parsing node: %s", node.describe())
        layers_before = len(ctx.network.layers)
        try:
            inputs = _resolve_inputs(ctx, node)
            logger.debug("%s inputs: %s", node.describe(), inputs)
            importer = select_importer(op_importers, node.op_type)
            outputs = _invoke(importer, ctx, node, inputs)

            if deserializing_network:
                # locations, ranges and precisions are applied after the network is built
                _record_node_metadata(ctx, node)

            if len(outputs) < len(node.outputs):
                raise ParserError(
                    f"{node.describe()}: produced {len(outputs)} outputs, expected {len(node.outputs)}",
                    code=ErrorCode.UNSUPPORTED_NODE,
                )
            for output_name, output in zip(node.outputs, outputs):
                # weights are always bound, even empty ones, since the name may be used elsewhere
                if output_name and (output or output.is_weights()):
                    ctx.bind(output_name, output)
            logger.debug("%s outputs: %s", node.describe(), outputs[: len(node.outputs)])
        except ParserError as exc:
            if exc.node < 0 and not exc.is_input_error:
                exc.node = node_index
            raise
        finally:
            tracker.node_layers[node_index] = ctx.network.layers[layers_before:]


def mark_outputs(ctx: ImporterContext, graph: Graph) -> dict[str, Tensor]:
    """Mark declared graph outputs on the network; return requested user outputs."""
    network = ctx.network
    for vi in graph.outputs:
        if not ctx.is_bound(vi.name):
            raise ParserError(
                f"Graph output '{vi.name}' was never produced", code=ErrorCode.INVALID_GRAPH
            )
        if vi.name in ctx.user_outputs:
            continue

        tensor = convert_to_tensor(ctx.lookup(vi.name), network)
        logger.debug("Marking %s as output: %s, shape: %s", tensor.name, vi.name, tensor.shape)
        tensor.name = vi.name
        if tensor.is_network_input:
            # an input cannot also be an output, so route it through a copy
            tensor.name = "__" + vi.name
            tensor = network.add_identity(tensor).outputs[0]
            tensor.name = vi.name

        network.mark_output(tensor)
        dtype = convert_dtype(vi.elem_type)
        if dtype is None:
            raise ParserError(
                f"Graph output '{vi.name}' has unsupported element type {vi.elem_type}",
                code=ErrorCode.UNSUPPORTED_NODE,
            )
        if tensor.dtype in INTEGER_TYPES and tensor.dtype != dtype:
            raise ParserError(
                f"Graph output '{vi.name}' is {tensor.dtype} but declared {dtype}",
                code=ErrorCode.UNSUPPORTED_NODE,
            )
        tensor.dtype = dtype

    user_outputs: dict[str, Tensor] = {}
    for name in sorted(ctx.user_outputs):
        if not ctx.is_bound(name) or not ctx.lookup(name).is_tensor():
            raise ParserError(
                f"Requested output '{name}' is not a tensor", code=ErrorCode.INVALID_VALUE
            )
        user_outputs[name] = ctx.lookup(name).tensor
    return user_outputs


def check_opsets(ctx: ImporterContext, graph: Graph, min_opset: int = 7) -> None:
    for domain, version in graph.opsets.items():
        # the default domain is either "" or "ai.onnx"
        if domain in ("", "ai.onnx") and version < min_opset:
            logger.warning(
                "Models using opsets older than %d are not guaranteed to import correctly.",
                min_opset,
            )
        ctx.add_opset(domain, version)


