from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

from onnx2net.errors import ErrorCode, ParserError
from onnx2net.importer.context import ImporterContext
from onnx2net.network import BOOL, INT32, Layer, Tensor, supports_shape_tensor
from onnx2net.utils import get_logger

logger = get_logger(__name__)

C = TypeVar("C")


class PostProcessPass(ABC, Generic[C]):
    """A single sweep over a built network: every match is applied once."""

    @abstractmethod
    def match(self, ctx: ImporterContext) -> Iterable[C]:
        raise NotImplementedError

    @abstractmethod
    def apply(self, ctx: ImporterContext, candidate: C) -> None:
        raise NotImplementedError

    def run(self, ctx: ImporterContext) -> None:
        for candidate in list(self.match(ctx)):
            self.apply(ctx, candidate)


@dataclass(frozen=True)
class MetadataItem:
    kind: str  # "location" | "range" | "precision"
    name: str


class MetadataReconciliationPass(PostProcessPass[MetadataItem]):
    """Apply recorded locations, dynamic ranges and layer precisions to the network."""

    def __init__(self) -> None:
        self._tensors: dict[str, Tensor] = {}
        self._layers: dict[str, Layer] = {}

    def run(self, ctx: ImporterContext) -> None:
        self._tensors = ctx.network.all_tensors()
        self._layers = {layer.name: layer for layer in ctx.network.layers}
        super().run(ctx)

    def match(self, ctx: ImporterContext) -> Iterable[MetadataItem]:
        for name in ctx.tensor_locations:
            yield MetadataItem("location", name)
        for name in ctx.tensor_ranges:
            yield MetadataItem("range", name)
        for name in ctx.layer_precisions:
            yield MetadataItem("precision", name)

    def _tensor(self, name: str) -> Tensor:
        tensor = self._tensors.get(name)
        if tensor is None:
            raise ParserError(
                f"Recorded metadata refers to unknown tensor '{name}'",
                code=ErrorCode.INVALID_GRAPH,
            )
        return tensor

    def apply(self, ctx: ImporterContext, candidate: MetadataItem) -> None:
        try:
            self._apply(ctx, candidate)
        except ValueError as exc:
            raise ParserError(str(exc), code=ErrorCode.INVALID_GRAPH) from exc

    def _apply(self, ctx: ImporterContext, candidate: MetadataItem) -> None:
        name = candidate.name
        if candidate.kind == "location":
            self._tensor(name).location = ctx.tensor_locations[name]
        elif candidate.kind == "range":
            tensor = self._tensor(name)
            low, high = ctx.tensor_ranges[name]
            if math.isnan(low):
                return
            tensor.set_dynamic_range(low, high)
        else:
            layer = self._layers.get(name)
            if layer is None:
                raise ParserError(
                    f"Recorded precision refers to unknown layer '{name}'",
                    code=ErrorCode.INVALID_GRAPH,
                )
            layer.set_precision(ctx.layer_precisions[name])


class ShapeTensorCastPass(PostProcessPass[Layer]):
    """
    Force every layer whose first output is a shape tensor to an integral (or
    boolean) type, dropping any cast requested on it. ``run`` returns the names
    of shape tensors produced by layers that cannot legally produce them.
    """

    def __init__(self) -> None:
        self.illegal: set[str] = set()

    def match(self, ctx: ImporterContext) -> Iterable[Layer]:
        shape_ids = ctx.network.shape_tensors()
        for layer in ctx.network.layers:
            if layer.outputs and id(layer.outputs[0]) in shape_ids:
                yield layer

    def apply(self, ctx: ImporterContext, candidate: Layer) -> None:
        layer = candidate
        layer.reset_precision()
        layer.reset_output_type(0)
        tensor = layer.outputs[0]
        # boolean tensors are assumed never to have been cast
        shape_type = BOOL if tensor.dtype == BOOL else INT32
        layer.set_precision(shape_type)
        layer.set_output_type(0, shape_type)
        if tensor.dtype != shape_type:
            tensor.dtype = shape_type
        if not supports_shape_tensor(layer.kind, layer.operation):
            self.illegal.add(tensor.name)
            logger.error(
                "Found %s as a shape tensor output from a layer that does not support it!",
                tensor.name,
            )

    def run(self, ctx: ImporterContext) -> set[str]:  # type: ignore[override]
        self.illegal = set()
        super().run(ctx)
        return set(self.illegal)
