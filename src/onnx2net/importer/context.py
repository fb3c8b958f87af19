from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, TypeVar

from onnx2net.errors import ErrorCode, ParserError
from onnx2net.importer.plugins import PluginRegistry, default_plugin_registry
from onnx2net.importer.weights import TensorOrWeights
from onnx2net.network import DATA_TYPES, DEVICE, HOST, Network, Tensor
from onnx2net.utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _ranges_equal(a: tuple[float, float], b: tuple[float, float]) -> bool:
    # NaN marks "no range supplied" and must compare equal to itself
    return all(x == y or (math.isnan(x) and math.isnan(y)) for x, y in zip(a, b))


class ImporterContext:
    """
    Name bindings and deferred metadata for one import session.

    Every recorder follows the same rule: the first value written for a name
    wins, and a later write must be equal to it or the graph is invalid.
    """

    def __init__(
        self,
        network: Network,
        *,
        plugins: PluginRegistry | None = None,
        user_inputs: Mapping[str, Tensor] | None = None,
        user_outputs: set[str] | None = None,
    ) -> None:
        self.network = network
        self.plugins = plugins if plugins is not None else default_plugin_registry
        self.user_inputs: dict[str, Tensor] = dict(user_inputs or {})
        self.user_outputs: set[str] = set(user_outputs or ())
        self.reset()

    def reset(self) -> None:
        self.tensors: dict[str, TensorOrWeights] = {}
        self.tensor_locations: dict[str, str] = {}
        self.tensor_ranges: dict[str, tuple[float, float]] = {}
        self.layer_precisions: dict[str, str] = {}
        self.unsupported_shape_tensors: set[str] = set()
        self.loop_tensors: dict[str, str] = {}
        self.opsets: dict[str, int] = {}

    def bind(self, name: str, value: TensorOrWeights) -> None:
        existing = self.tensors.get(name)
        if existing is not None:
            if existing != value:
                raise ParserError(
                    f"Tensor '{name}' is already bound to a different value",
                    code=ErrorCode.INVALID_GRAPH,
                )
            return
        if value.is_tensor():
            value.tensor.name = name
        self.tensors[name] = value

    def lookup(self, name: str) -> TensorOrWeights:
        value = self.tensors.get(name)
        if value is None:
            raise ParserError(
                f"Tensor '{name}' has not been produced or declared",
                code=ErrorCode.INVALID_GRAPH,
            )
        return value

    def is_bound(self, name: str) -> bool:
        return name in self.tensors

    def _record(self, table: dict[str, T], name: str, value: T, what: str) -> None:
        if name in table:
            if table[name] != value:
                raise ParserError(
                    f"Conflicting {what} for '{name}': {table[name]!r} vs {value!r}",
                    code=ErrorCode.INVALID_GRAPH,
                )
            return
        table[name] = value

    def record_location(self, name: str, location: str) -> None:
        if location not in (DEVICE, HOST):
            raise ParserError(
                f"Unknown tensor location '{location}' for '{name}'",
                code=ErrorCode.INVALID_GRAPH,
            )
        self._record(self.tensor_locations, name, location, "location")

    def record_range(self, name: str, value: tuple[float, float]) -> None:
        value = (float(value[0]), float(value[1]))
        low, high = value
        if not math.isnan(low) and not low <= high:
            raise ParserError(
                f"Invalid range [{low}, {high}] for '{name}'",
                code=ErrorCode.INVALID_GRAPH,
            )
        existing = self.tensor_ranges.get(name)
        if existing is not None:
            if not _ranges_equal(existing, value):
                raise ParserError(
                    f"Conflicting range for '{name}': {existing!r} vs {value!r}",
                    code=ErrorCode.INVALID_GRAPH,
                )
            return
        self.tensor_ranges[name] = value

    def record_precision(self, layer_name: str, dtype: str) -> None:
        if dtype not in DATA_TYPES:
            raise ParserError(
                f"Unknown precision '{dtype}' for layer '{layer_name}'",
                code=ErrorCode.INVALID_GRAPH,
            )
        self._record(self.layer_precisions, layer_name, dtype, "precision")

    def record_loop_alias(self, name: str, alias: str) -> None:
        self._record(self.loop_tensors, name, alias, "loop alias")

    def aliases_of(self, name: str) -> set[str]:
        names = {name}
        alias = self.loop_tensors.get(name)
        if alias:
            names.add(alias)
        names.update(body for body, outer in self.loop_tensors.items() if outer == name)
        return names

    def add_opset(self, domain: str, version: int) -> None:
        self.opsets[domain] = version

    def opset_version(self, domain: str = "") -> int:
        if domain in self.opsets:
            return self.opsets[domain]
        if domain == "":
            return self.opsets.get("ai.onnx", 0)
        return 0

    def summary(self) -> dict[str, Any]:
        return {
            "tensors": len(self.tensors),
            "locations": len(self.tensor_locations),
            "ranges": len(self.tensor_ranges),
            "precisions": len(self.layer_precisions),
            "unsupported_shape_tensors": sorted(self.unsupported_shape_tensors),
        }
