"""Target engine intermediate representation."""

from .network import Layer, Network, Tensor
from .types import (
    BOOL,
    COMPARISON_OPS,
    DATA_TYPES,
    DEVICE,
    FLOAT16,
    FLOAT32,
    HOST,
    INT8,
    INT32,
    INTEGER_TYPES,
    ElementWiseOp,
    LayerKind,
    ReduceOp,
    supports_shape_tensor,
)

__all__ = [
    "Network",
    "Layer",
    "Tensor",
    "LayerKind",
    "ElementWiseOp",
    "ReduceOp",
    "supports_shape_tensor",
    "FLOAT32",
    "FLOAT16",
    "INT8",
    "INT32",
    "BOOL",
    "COMPARISON_OPS",
    "INTEGER_TYPES",
    "DATA_TYPES",
    "DEVICE",
    "HOST",
]
