from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from onnx2net.network.types import DATA_TYPES, DEVICE, LayerKind


@dataclass(eq=False)
class Tensor:
    """Engine tensor. Compared by identity: two tensors are never interchangeable."""

    name: str
    dtype: str
    shape: list[int]
    location: str = DEVICE
    dynamic_range: tuple[float, float] | None = None
    is_network_input: bool = False
    is_network_output: bool = False

    def set_dynamic_range(self, low: float, high: float) -> None:
        if low > high:
            raise ValueError(
                f"Invalid dynamic range [{low}, {high}] for tensor '{self.name}'"
            )
        self.dynamic_range = (float(low), float(high))

    @property
    def rank(self) -> int:
        return len(self.shape)


@dataclass(eq=False)
class Layer:
    name: str
    kind: str
    inputs: list[Tensor | None]
    outputs: list[Tensor]
    operation: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    # indices of inputs whose values describe a shape rather than data
    shape_input_slots: frozenset[int] = frozenset()
    precision: str | None = None
    output_types: dict[int, str] = field(default_factory=dict)

    def set_precision(self, dtype: str) -> None:
        _check_dtype(dtype)
        self.precision = dtype

    def reset_precision(self) -> None:
        self.precision = None

    def set_output_type(self, index: int, dtype: str) -> None:
        _check_dtype(dtype)
        if not 0 <= index < len(self.outputs):
            raise IndexError(f"Layer '{self.name}' has no output {index}")
        self.output_types[index] = dtype

    def reset_output_type(self, index: int) -> None:
        self.output_types.pop(index, None)


def _check_dtype(dtype: str) -> None:
    if dtype not in DATA_TYPES:
        raise ValueError(f"Unknown engine data type '{dtype}'")


class Network:
    """Target engine graph: declared inputs, an ordered layer list, marked outputs."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.inputs: list[Tensor] = []
        self.outputs: list[Tensor] = []
        self.layers: list[Layer] = []

    def add_input(self, name: str, dtype: str, shape: Sequence[int]) -> Tensor:
        _check_dtype(dtype)
        if any(t.name == name for t in self.inputs):
            raise ValueError(f"Network already has an input named '{name}'")
        tensor = Tensor(name=name, dtype=dtype, shape=list(shape), is_network_input=True)
        self.inputs.append(tensor)
        return tensor

    def add_layer(
        self,
        kind: str,
        inputs: Sequence[Tensor | None],
        outputs: Sequence[tuple[str, Sequence[int]]],
        *,
        operation: str | None = None,
        params: dict[str, Any] | None = None,
        shape_input_slots: Iterable[int] = (),
    ) -> Layer:
        """Append a layer; ``outputs`` lists (dtype, shape) per result."""
        name = f"(Unnamed Layer* {len(self.layers)}) [{kind}]"
        out_tensors = []
        for i, (dtype, shape) in enumerate(outputs):
            _check_dtype(dtype)
            suffix = "_output" if len(outputs) == 1 else f"_output_{i}"
            out_tensors.append(Tensor(name=name + suffix, dtype=dtype, shape=list(shape)))
        layer = Layer(
            name=name,
            kind=kind,
            inputs=list(inputs),
            outputs=out_tensors,
            operation=operation,
            params=dict(params or {}),
            shape_input_slots=frozenset(shape_input_slots),
        )
        self.layers.append(layer)
        return layer

    def add_identity(self, tensor: Tensor) -> Layer:
        return self.add_layer(LayerKind.IDENTITY, [tensor], [(tensor.dtype, tensor.shape)])

    def add_constant(self, values: np.ndarray, dtype: str) -> Layer:
        return self.add_layer(
            LayerKind.CONSTANT,
            [],
            [(dtype, list(values.shape))],
            params={"values": values},
        )

    def mark_output(self, tensor: Tensor) -> None:
        if tensor.is_network_output:
            return
        tensor.is_network_output = True
        self.outputs.append(tensor)

    def unmark_output(self, tensor: Tensor) -> None:
        if tensor.is_network_output:
            tensor.is_network_output = False
            self.outputs.remove(tensor)

    def get_layer(self, name: str) -> Layer | None:
        for layer in self.layers:
            if layer.name == name:
                return layer
        return None

    def all_tensors(self) -> dict[str, Tensor]:
        """Every tensor reachable from inputs, outputs and layers, keyed by current name."""
        tensors: dict[str, Tensor] = {}
        for t in self.inputs:
            tensors[t.name] = t
        for t in self.outputs:
            tensors[t.name] = t
        for layer in self.layers:
            for t in layer.inputs:
                if t is not None:
                    tensors[t.name] = t
            for t in layer.outputs:
                tensors[t.name] = t
        return tensors

    def shape_tensors(self) -> set[int]:
        """
        Ids of tensors whose values describe shapes: outputs of SHAPE layers,
        tensors fed into a shape-input slot, and transitively the inputs of any
        layer producing a shape tensor (SHAPE layers excepted).
        """
        found: set[int] = set()
        for layer in self.layers:
            if layer.kind == LayerKind.SHAPE:
                found.update(id(t) for t in layer.outputs)
            for slot in layer.shape_input_slots:
                t = layer.inputs[slot] if slot < len(layer.inputs) else None
                if t is not None:
                    found.add(id(t))
        changed = True
        while changed:
            changed = False
            for layer in reversed(self.layers):
                if layer.kind == LayerKind.SHAPE:
                    continue
                if not any(id(t) in found for t in layer.outputs):
                    continue
                for t in layer.inputs:
                    if t is not None and id(t) not in found:
                        found.add(id(t))
                        changed = True
        return found

    def is_shape_tensor(self, tensor: Tensor) -> bool:
        return id(tensor) in self.shape_tensors()
