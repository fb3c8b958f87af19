from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from onnx2net.errors import ParserError
from onnx2net.importer.context import ImporterContext
from onnx2net.importer.op_importers import NodeImporter
from onnx2net.importer.passes import ShapeTensorCastPass
from onnx2net.importer.plugins import PluginRegistry
from onnx2net.importer.translator import (
    PRODUCER_NAME,
    TranslationTracker,
    check_opsets,
    import_inputs,
    mark_outputs,
    parse_graph,
)
from onnx2net.ir.graph import Graph
from onnx2net.ir.utils import toposort
from onnx2net.network import Network
from onnx2net.network.types import FLOAT_TYPES
from onnx2net.utils import get_logger

logger = get_logger(__name__)

# Control-flow operators that may legally carry shape tensors across iterations
ITERATIVE_OPS = frozenset({"Loop", "Scan"})


def loop_aliases(graph: Graph) -> dict[str, set[str]]:
    """Map each outer name fed to a ``Loop``/``Scan`` node to the body inputs that carry it."""
    aliases: dict[str, set[str]] = {}
    for node in graph.nodes:
        body = node.attributes.get("body")
        if node.op_type not in ITERATIVE_OPS or not isinstance(body, Graph):
            continue
        # a Loop body takes the iteration number where the node takes the trip count
        start = 1 if node.op_type == "Loop" else 0
        for outer, inner in zip(node.inputs[start:], body.inputs[start:]):
            if outer:
                aliases.setdefault(outer, set()).add(inner.name)
    return aliases


@dataclass
class SubGraph:
    """A contiguous run of node indices, in sequenced order."""

    nodes: list[int] = field(default_factory=list)
    supported: bool = False


@dataclass
class SupportResult:
    subgraphs: list[SubGraph] = field(default_factory=list)
    fully_supported: bool = True
    errors: list[ParserError] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.fully_supported


class SupportAnalyzer:
    """
    Dry-run partitioning of a source graph into maximal runs of translatable nodes.

    The translation runs against a fresh context and a disposable network; any
    network the caller owns is never touched. Failures are collected as data.
    """

    def __init__(
        self,
        op_importers: Mapping[str, NodeImporter],
        *,
        plugins: PluginRegistry | None = None,
        input_dims: Sequence[Sequence[int]] = (),
        weights: Mapping[str, np.ndarray] | None = None,
        dynamic_batch: bool = True,
        min_opset: int = 7,
    ) -> None:
        self.op_importers = op_importers
        self.plugins = plugins
        self.input_dims = input_dims
        self.weights = weights
        self.dynamic_batch = dynamic_batch
        self.min_opset = min_opset

    def supports_operator(self, op_type: str) -> bool:
        return op_type in self.op_importers

    def _translate(
        self, ctx: ImporterContext, graph: Graph, tracker: TranslationTracker, errors: list[ParserError]
    ) -> None:
        try:
            check_opsets(ctx, graph, self.min_opset)
            import_inputs(
                ctx,
                graph,
                errors,
                input_dims=self.input_dims,
                weights=self.weights,
                dynamic_batch=self.dynamic_batch,
            )
            parse_graph(
                ctx,
                graph,
                self.op_importers,
                deserializing_network=graph.producer_name == PRODUCER_NAME,
                tracker=tracker,
            )
            mark_outputs(ctx, graph)
        except ParserError as exc:
            errors.append(exc)
        for error in errors:
            error.capture_provenance()

    def analyze(self, graph: Graph) -> SupportResult:
        result = SupportResult()
        try:
            order = toposort(graph.nodes)
        except ParserError as exc:
            logger.error("Failed to sort model topologically: %s", exc)
            result.errors.append(exc.capture_provenance())
            result.fully_supported = False
            return result

        ctx = ImporterContext(Network(graph.name), plugins=self.plugins)
        tracker = TranslationTracker()
        self._translate(ctx, graph, tracker, result.errors)

        illegal_shape_tensors = ShapeTensorCastPass().run(ctx)
        ctx.unsupported_shape_tensors = set(illegal_shape_tensors)

        failed_nodes = {e.node for e in result.errors if e.node >= 0}
        aliases = loop_aliases(graph)
        bad_names: set[str] = set()
        for e in result.errors:
            if e.is_input_error:
                bad_names |= ctx.aliases_of(e.input_name)
                bad_names |= aliases.get(e.input_name, set())

        shape_ids = ctx.network.shape_tensors()
        float_shape_inputs = {
            name
            for name, value in ctx.tensors.items()
            if value.is_tensor()
            and value.tensor.is_network_input
            and value.tensor.dtype in FLOAT_TYPES
            and id(value.tensor) in shape_ids
        }

        new_subgraph = True
        for node_idx in order:
            node = graph.nodes[node_idx]
            consumed = [name for name in node.inputs if name]
            iterative = node.op_type in ITERATIVE_OPS
            registered = self.supports_operator(node.op_type)
            unsupported_input = any(name in bad_names for name in consumed)
            illegal_shape_output = not iterative and bool(
                tracker.output_names(node_idx) & illegal_shape_tensors
            )
            float_shape_input = not iterative and any(
                name in float_shape_inputs for name in consumed
            )
            failed = node_idx in failed_nodes
            eligible = (
                registered
                and not failed
                and not unsupported_input
                and not illegal_shape_output
                and not float_shape_input
            )
            logger.debug(
                "Node %d %s: registered=%s failed=%s bad_input=%s illegal_shape=%s float_shape_input=%s",
                node_idx,
                node.describe(),
                registered,
                failed,
                unsupported_input,
                illegal_shape_output,
                float_shape_input,
            )
            if eligible:
                if new_subgraph:
                    result.subgraphs.append(SubGraph())
                    new_subgraph = False
                result.subgraphs[-1].nodes.append(node_idx)
            else:
                new_subgraph = True
                result.fully_supported = False

        # only a single run covering every node, with no failure anywhere, is supported
        result.fully_supported = result.fully_supported and not result.errors
        if result.fully_supported and result.subgraphs:
            result.subgraphs[-1].supported = True
        return result
