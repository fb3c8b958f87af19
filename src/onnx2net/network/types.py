from __future__ import annotations

# Engine data types
FLOAT32 = "float32"
FLOAT16 = "float16"
INT8 = "int8"
INT32 = "int32"
BOOL = "bool"

DATA_TYPES = (FLOAT32, FLOAT16, INT8, INT32, BOOL)
INTEGER_TYPES = frozenset({INT8, INT32})
FLOAT_TYPES = frozenset({FLOAT32, FLOAT16})

# Tensor locations
DEVICE = "device"
HOST = "host"

MAX_DIMS = 8


class LayerKind:
    ACTIVATION = "ACTIVATION"
    CONCATENATION = "CONCATENATION"
    CONDITION = "CONDITION"
    CONSTANT = "CONSTANT"
    ELEMENTWISE = "ELEMENTWISE"
    GATHER = "GATHER"
    IDENTITY = "IDENTITY"
    MATRIX_MULTIPLY = "MATRIX_MULTIPLY"
    PADDING = "PADDING"
    PLUGIN = "PLUGIN"
    REDUCE = "REDUCE"
    SHAPE = "SHAPE"
    SHUFFLE = "SHUFFLE"
    SLICE = "SLICE"
    SOFTMAX = "SOFTMAX"
    UNARY = "UNARY"


class ElementWiseOp:
    SUM = "SUM"
    PROD = "PROD"
    MAX = "MAX"
    MIN = "MIN"
    SUB = "SUB"
    DIV = "DIV"
    POW = "POW"
    AND = "AND"
    OR = "OR"
    XOR = "XOR"
    EQUAL = "EQUAL"
    GREATER = "GREATER"
    LESS = "LESS"


class ReduceOp:
    SUM = "SUM"
    PROD = "PROD"
    MAX = "MAX"
    MIN = "MIN"
    AVG = "AVG"


COMPARISON_OPS = frozenset(
    {ElementWiseOp.EQUAL, ElementWiseOp.GREATER, ElementWiseOp.LESS}
)

_SHAPE_CAPABLE_KINDS = frozenset(
    {
        LayerKind.CONCATENATION,
        LayerKind.CONDITION,
        LayerKind.CONSTANT,
        LayerKind.GATHER,
        LayerKind.IDENTITY,
        LayerKind.PADDING,
        LayerKind.SHAPE,
        LayerKind.SHUFFLE,
        LayerKind.SLICE,
    }
)
_SHAPE_CAPABLE_REDUCE_OPS = frozenset(
    {ReduceOp.SUM, ReduceOp.PROD, ReduceOp.MAX, ReduceOp.MIN}
)


def supports_shape_tensor(kind: str, operation: str | None = None) -> bool:
    """Whether a layer of ``kind`` (with sub-operation ``operation``) may output a shape tensor."""
    if kind in _SHAPE_CAPABLE_KINDS:
        return True
    if kind == LayerKind.ELEMENTWISE:
        return operation != ElementWiseOp.POW
    if kind == LayerKind.REDUCE:
        return operation in _SHAPE_CAPABLE_REDUCE_OPS
    return False
