from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import onnx

from onnx2net.errors import ErrorCode, ParserError
from onnx2net.network import BOOL, FLOAT16, FLOAT32, INT8, INT32, Network, Tensor
from onnx2net.utils import get_logger

logger = get_logger(__name__)

_ONNX_TO_ENGINE = {
    onnx.TensorProto.FLOAT: FLOAT32,
    onnx.TensorProto.FLOAT16: FLOAT16,
    onnx.TensorProto.INT8: INT8,
    onnx.TensorProto.INT32: INT32,
    onnx.TensorProto.INT64: INT32,
    onnx.TensorProto.BOOL: BOOL,
}

_NUMPY_TO_ENGINE = {
    np.dtype(np.float32): FLOAT32,
    np.dtype(np.float64): FLOAT32,
    np.dtype(np.float16): FLOAT16,
    np.dtype(np.int8): INT8,
    np.dtype(np.int32): INT32,
    np.dtype(np.int64): INT32,
    np.dtype(np.bool_): BOOL,
}

_ENGINE_TO_NUMPY = {
    FLOAT32: np.float32,
    FLOAT16: np.float16,
    INT8: np.int8,
    INT32: np.int32,
    BOOL: np.bool_,
}


def convert_dtype(elem_type: int) -> str | None:
    """ONNX TensorProto element type -> engine type name, or None if unsupported."""
    dtype = _ONNX_TO_ENGINE.get(elem_type)
    if elem_type == onnx.TensorProto.INT64:
        logger.debug("INT64 is not natively supported; casting down to INT32")
    return dtype


def to_numpy_dtype(dtype: str) -> type:
    return _ENGINE_TO_NUMPY[dtype]


@dataclass(eq=False)
class ShapedWeights:
    """Owned weight buffer with an engine element type."""

    values: np.ndarray
    dtype: str

    @property
    def shape(self) -> list[int]:
        return list(self.values.shape)

    @property
    def count(self) -> int:
        return int(self.values.size)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShapedWeights):
            return NotImplemented
        return (
            self.dtype == other.dtype
            and self.values.shape == other.values.shape
            and bool(np.array_equal(self.values, other.values))
        )

    __hash__ = None  # type: ignore[assignment]


def convert_onnx_weights(array: np.ndarray, name: str = "") -> ShapedWeights:
    """Convert a decoded initializer or attribute tensor into engine weights."""
    dtype = _NUMPY_TO_ENGINE.get(array.dtype)
    if dtype is None:
        raise ParserError(
            f"Unsupported weight type {array.dtype} for '{name}'",
            code=ErrorCode.UNSUPPORTED_NODE,
        )
    if array.dtype == np.int64:
        info = np.iinfo(np.int32)
        if array.size and (array.min() < info.min or array.max() > info.max):
            logger.warning(
                "Weights '%s' have INT64 values outside INT32 range; clamping", name
            )
        array = np.clip(array, info.min, info.max)
    return ShapedWeights(values=np.ascontiguousarray(array, dtype=_ENGINE_TO_NUMPY[dtype]), dtype=dtype)


class TensorOrWeights:
    """Exactly one of an engine tensor, a weight buffer, or nothing (absent)."""

    __slots__ = ("_tensor", "_weights")

    def __init__(
        self, tensor: Tensor | None = None, weights: ShapedWeights | None = None
    ) -> None:
        if tensor is not None and weights is not None:
            raise ValueError("TensorOrWeights holds a tensor or weights, not both")
        self._tensor = tensor
        self._weights = weights

    @classmethod
    def absent(cls) -> TensorOrWeights:
        return cls()

    def is_tensor(self) -> bool:
        return self._tensor is not None

    def is_weights(self) -> bool:
        return self._weights is not None

    def __bool__(self) -> bool:
        return self._tensor is not None or self._weights is not None

    @property
    def tensor(self) -> Tensor:
        if self._tensor is None:
            raise ParserError("Value is not a tensor", code=ErrorCode.INTERNAL_ERROR)
        return self._tensor

    @property
    def weights(self) -> ShapedWeights:
        if self._weights is None:
            raise ParserError("Value is not weights", code=ErrorCode.INTERNAL_ERROR)
        return self._weights

    @property
    def shape(self) -> list[int]:
        if self._tensor is not None:
            return list(self._tensor.shape)
        if self._weights is not None:
            return self._weights.shape
        return []

    @property
    def dtype(self) -> str | None:
        if self._tensor is not None:
            return self._tensor.dtype
        if self._weights is not None:
            return self._weights.dtype
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TensorOrWeights):
            return NotImplemented
        if self._tensor is not None or other._tensor is not None:
            return self._tensor is other._tensor
        if self._weights is not None and other._weights is not None:
            return self._weights == other._weights
        return self._weights is None and other._weights is None

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self._tensor is not None:
            return f"TensorOrWeights(tensor={self._tensor.name!r}, shape={self.shape})"
        if self._weights is not None:
            return f"TensorOrWeights(weights={self._weights.dtype}, shape={self.shape})"
        return "TensorOrWeights(absent)"


def convert_to_tensor(value: TensorOrWeights, network: Network) -> Tensor:
    """Return the tensor in ``value``, materializing weights as a constant layer."""
    if value.is_tensor():
        return value.tensor
    if value.is_weights():
        w = value.weights
        return network.add_constant(w.values, w.dtype).outputs[0]
    raise ParserError(
        "Cannot convert an absent value to a tensor", code=ErrorCode.INVALID_GRAPH
    )
