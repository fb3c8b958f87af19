from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import numpy as np
import onnx

from onnx2net.config import ImporterConfig
from onnx2net.errors import ErrorCode, ParserError
from onnx2net.importer.context import ImporterContext
from onnx2net.importer.op_importers import build_op_importers
from onnx2net.importer.passes import MetadataReconciliationPass, ShapeTensorCastPass
from onnx2net.importer.support import SupportAnalyzer, SupportResult
from onnx2net.importer.translator import (
    PRODUCER_NAME,
    TranslationTracker,
    check_opsets,
    import_inputs,
    mark_outputs,
    parse_graph,
)
from onnx2net.ir.decode import decode_model, load_model
from onnx2net.ir.graph import Graph
from onnx2net.network import Network, Tensor
from onnx2net.utils import get_logger

logger = get_logger(__name__)


class ModelImporter:
    """Import ONNX models into engine networks, or analyze how much of one can be imported."""

    def __init__(self, config: ImporterConfig | None = None) -> None:
        self.config = config or ImporterConfig()
        self.op_importers = build_op_importers(self.config.extra_importers)
        self.network: Network | None = None
        self.context: ImporterContext | None = None
        self.user_outputs: dict[str, Tensor] = {}
        self._errors: list[ParserError] = []

    @property
    def errors(self) -> list[ParserError]:
        return list(self._errors)

    @property
    def num_errors(self) -> int:
        return len(self._errors)

    def get_error(self, index: int) -> ParserError:
        return self._errors[index]

    def clear_errors(self) -> None:
        self._errors.clear()

    def supports_operator(self, op_type: str) -> bool:
        return op_type in self.op_importers

    def _record(self, error: ParserError) -> None:
        self._errors.append(error)
        for e in self._errors:
            e.capture_provenance()

    def _load(self, model: Any) -> tuple[onnx.ModelProto, Graph]:
        onnx_model = load_model(model)
        try:
            return onnx_model, decode_model(onnx_model)
        except (ValueError, TypeError) as exc:
            raise ParserError(
                f"Failed to decode model: {exc}", code=ErrorCode.MODEL_DESERIALIZE_FAILED
            ) from exc

    def _import_graph(self, ctx: ImporterContext, graph: Graph, weights: Mapping[str, np.ndarray] | None) -> None:
        config = self.config
        check_opsets(ctx, graph, config.min_opset)
        import_inputs(
            ctx,
            graph,
            self._errors,
            input_dims=config.input_dims,
            weights=weights,
            dynamic_batch=config.dynamic_batch,
        )
        reimport = graph.producer_name == PRODUCER_NAME
        parse_graph(
            ctx,
            graph,
            self.op_importers,
            deserializing_network=reimport,
            tracker=TranslationTracker(),
        )
        self.user_outputs = mark_outputs(ctx, graph)
        if reimport:
            MetadataReconciliationPass().run(ctx)
        ctx.unsupported_shape_tensors = ShapeTensorCastPass().run(ctx)
        logger.debug("Import summary: %s", ctx.summary())

    def parse(
        self,
        model: Any,
        *,
        network: Network | None = None,
        weights: Mapping[str, np.ndarray] | None = None,
    ) -> bool:
        """
        Import ``model`` (ModelProto, serialized bytes or a path) into a network.

        A fresh network is created unless one is passed in; partially built
        state is not rolled back on failure. Returns False and records the
        errors on failure.
        """
        self.user_outputs = {}
        try:
            _, graph = self._load(model)
        except ParserError as exc:
            self._record(exc)
            return False

        self.network = network if network is not None else Network(graph.name)
        self.context = ImporterContext(
            self.network,
            plugins=self.config.plugins,
            user_inputs=self.config.user_inputs,
            user_outputs=self.config.user_outputs,
        )
        try:
            self._import_graph(self.context, graph, weights)
        except ParserError as exc:
            self._record(exc)
            return False
        return True

    def supports_model(
        self, model: Any, *, weights: Mapping[str, np.ndarray] | None = None
    ) -> SupportResult:
        """Partition ``model`` into maximal runs of importable nodes without building a network."""
        try:
            _, graph = self._load(model)
        except ParserError as exc:
            self._record(exc)
            return SupportResult(fully_supported=False, errors=[exc])

        analyzer = SupportAnalyzer(
            self.op_importers,
            plugins=self.config.plugins,
            input_dims=self.config.input_dims,
            weights=weights,
            dynamic_batch=self.config.dynamic_batch,
            min_opset=self.config.min_opset,
        )
        result = analyzer.analyze(graph)
        self._errors.extend(result.errors)
        return result

    def parse_from_file(self, path: str | Path) -> bool:
        try:
            onnx_model, graph = self._load(path)
        except ParserError as exc:
            self._record(exc)
            logger.error("Failed to parse ONNX model from file: %s", path)
            return False

        opset_version = onnx_model.opset_import[0].version if onnx_model.opset_import else 0
        logger.info("Input filename:   %s", path)
        logger.info("ONNX IR version:  %d", onnx_model.ir_version)
        logger.info("Opset version:    %d", opset_version)
        logger.info("Producer name:    %s", onnx_model.producer_name)
        logger.info("Producer version: %s", onnx_model.producer_version)
        logger.info("Domain:           %s", onnx_model.domain)
        logger.info("Model version:    %d", onnx_model.model_version)
        logger.info("Doc string:       %s", onnx_model.doc_string)

        errors_before = self.num_errors
        if self.parse(onnx_model):
            logger.info("Parsing of ONNX model %s is done", path)
            return True
        for error in self._errors[errors_before:]:
            if 0 <= error.node < len(graph.nodes):
                node = graph.nodes[error.node]
                first_output = node.outputs[0] if node.outputs else ""
                logger.error(
                    'While parsing node number %d [%s -> "%s"]:', error.node, node.op_type, first_output
                )
            logger.error(
                "ERROR: %s:%d In function %s:\n[%s] %s",
                error.file,
                error.line,
                error.func,
                error.code.value,
                error.desc,
            )
        return False
