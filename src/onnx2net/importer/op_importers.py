from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from functools import lru_cache
from math import prod
from types import MappingProxyType

import numpy as np

from onnx2net.errors import ErrorCode, ParserError
from onnx2net.importer.context import ImporterContext
from onnx2net.importer.weights import (
    ShapedWeights,
    TensorOrWeights,
    convert_dtype,
    convert_onnx_weights,
    convert_to_tensor,
    to_numpy_dtype,
)
from onnx2net.ir.graph import Node
from onnx2net.network import (
    BOOL,
    COMPARISON_OPS,
    FLOAT16,
    FLOAT32,
    INT32,
    ElementWiseOp,
    Layer,
    LayerKind,
    ReduceOp,
    Tensor,
)
from onnx2net.utils import get_logger

logger = get_logger(__name__)

NodeImporter = Callable[[ImporterContext, Node, list[TensorOrWeights]], list[TensorOrWeights]]

_BUILTIN_IMPORTERS: dict[str, NodeImporter] = {}


def register_importer(*op_types: str) -> Callable[[NodeImporter], NodeImporter]:
    def wrapper(fn: NodeImporter) -> NodeImporter:
        for op_type in op_types:
            _BUILTIN_IMPORTERS[op_type] = fn
        return fn

    return wrapper


def _unsupported(node: Node, message: str) -> ParserError:
    return ParserError(f"{node.describe()}: {message}", code=ErrorCode.UNSUPPORTED_NODE)


def _check_arity(node: Node, inputs: list[TensorOrWeights], low: int, high: int | None = None) -> None:
    high = low if high is None else high
    present = len(inputs)
    if present < low or present > high:
        expected = str(low) if low == high else f"{low}..{high}"
        raise _unsupported(node, f"expects {expected} inputs, got {present}")
    for i in range(low):
        if not inputs[i]:
            raise _unsupported(node, f"required input {i} is missing")


def _finish(ctx: ImporterContext, node: Node, layer: Layer) -> list[TensorOrWeights]:
    """Name the layer after its node and return its outputs."""
    if node.name and ctx.network.get_layer(node.name) is None:
        layer.name = node.name
    return [TensorOrWeights(tensor=t) for t in layer.outputs]


def _normalize_axis(node: Node, axis: int, rank: int) -> int:
    if not -rank <= axis < max(rank, 1):
        raise _unsupported(node, f"axis {axis} is out of range for rank {rank}")
    return axis + rank if axis < 0 else axis


def _broadcast_shape(node: Node, a: Sequence[int], b: Sequence[int]) -> list[int]:
    ra = list(reversed(a))
    rb = list(reversed(b))
    result: list[int] = []
    for i in range(max(len(ra), len(rb))):
        da = ra[i] if i < len(ra) else 1
        db = rb[i] if i < len(rb) else 1
        if da == db or db == 1:
            result.append(da)
        elif da == 1:
            result.append(db)
        elif da == -1:
            result.append(db)
        elif db == -1:
            result.append(da)
        else:
            raise _unsupported(node, f"cannot broadcast {list(a)} with {list(b)}")
    return list(reversed(result))


def _weights(values: np.ndarray) -> TensorOrWeights:
    return TensorOrWeights(weights=convert_onnx_weights(np.asarray(values)))


def _axes_from(node: Node, inputs: list[TensorOrWeights], index: int) -> list[int] | None:
    """Axes come from an attribute (older opsets) or a constant input (newer)."""
    if "axes" in node.attributes:
        return list(node.attributes["axes"])
    if len(inputs) > index and inputs[index]:
        if not inputs[index].is_weights():
            raise _unsupported(node, "axes must be a constant")
        return [int(v) for v in inputs[index].weights.values.reshape(-1)]
    return None


# ---------------------------------------------------------------------------
# Identity, casts and constants


@register_importer("Identity")
def import_identity(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1)
    if inputs[0].is_weights():
        return [inputs[0]]
    return _finish(ctx, node, ctx.network.add_identity(inputs[0].tensor))


@register_importer("Cast")
def import_cast(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1)
    dtype = convert_dtype(int(node.attributes.get("to", 0)))
    if dtype is None:
        raise _unsupported(node, f"unsupported cast target {node.attributes.get('to')}")
    if inputs[0].is_weights():
        values = inputs[0].weights.values.astype(to_numpy_dtype(dtype))
        return [TensorOrWeights(weights=ShapedWeights(values=values, dtype=dtype))]
    x = inputs[0].tensor
    layer = ctx.network.add_layer(LayerKind.IDENTITY, [x], [(dtype, x.shape)])
    layer.set_output_type(0, dtype)
    return _finish(ctx, node, layer)


@register_importer("Constant")
def import_constant(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    attrs = node.attributes
    if "value" in attrs:
        return [_weights(attrs["value"])]
    if "value_float" in attrs:
        return [_weights(np.array(attrs["value_float"], dtype=np.float32))]
    if "value_floats" in attrs:
        return [_weights(np.array(attrs["value_floats"], dtype=np.float32))]
    if "value_int" in attrs:
        return [_weights(np.array(attrs["value_int"], dtype=np.int64))]
    if "value_ints" in attrs:
        return [_weights(np.array(attrs["value_ints"], dtype=np.int64))]
    raise _unsupported(node, "no supported value attribute")


# ---------------------------------------------------------------------------
# Pointwise operations

_ACTIVATIONS = {"Relu": "RELU", "Sigmoid": "SIGMOID", "Tanh": "TANH"}
_UNARY = {"Abs": "ABS", "Neg": "NEG", "Exp": "EXP", "Log": "LOG", "Sqrt": "SQRT", "Not": "NOT"}


@register_importer(*_ACTIVATIONS)
def import_activation(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1)
    x = convert_to_tensor(inputs[0], ctx.network)
    if x.dtype not in (FLOAT32, FLOAT16):
        raise _unsupported(node, f"activation does not accept {x.dtype} input")
    layer = ctx.network.add_layer(
        LayerKind.ACTIVATION, [x], [(x.dtype, x.shape)], operation=_ACTIVATIONS[node.op_type]
    )
    return _finish(ctx, node, layer)


@register_importer(*_UNARY)
def import_unary(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1)
    x = convert_to_tensor(inputs[0], ctx.network)
    if (node.op_type == "Not") != (x.dtype == BOOL):
        raise _unsupported(node, f"unary operation does not accept {x.dtype} input")
    layer = ctx.network.add_layer(
        LayerKind.UNARY, [x], [(x.dtype, x.shape)], operation=_UNARY[node.op_type]
    )
    return _finish(ctx, node, layer)


_ELEMENTWISE: dict[str, tuple[str, Callable[[np.ndarray, np.ndarray], np.ndarray] | None]] = {
    "Add": (ElementWiseOp.SUM, np.add),
    "Sub": (ElementWiseOp.SUB, np.subtract),
    "Mul": (ElementWiseOp.PROD, np.multiply),
    "Div": (ElementWiseOp.DIV, None),
    "Pow": (ElementWiseOp.POW, None),
    "Max": (ElementWiseOp.MAX, np.maximum),
    "Min": (ElementWiseOp.MIN, np.minimum),
    "Equal": (ElementWiseOp.EQUAL, np.equal),
    "Greater": (ElementWiseOp.GREATER, np.greater),
    "Less": (ElementWiseOp.LESS, np.less),
    "And": (ElementWiseOp.AND, np.logical_and),
    "Or": (ElementWiseOp.OR, np.logical_or),
    "Xor": (ElementWiseOp.XOR, np.logical_xor),
}

_LOGICAL = frozenset({ElementWiseOp.AND, ElementWiseOp.OR, ElementWiseOp.XOR})


def _elementwise(
    ctx: ImporterContext, node: Node, op: str, a: TensorOrWeights, b: TensorOrWeights
) -> Layer:
    x = convert_to_tensor(a, ctx.network)
    y = convert_to_tensor(b, ctx.network)
    if x.dtype != y.dtype:
        raise _unsupported(node, f"mismatched input types {x.dtype} and {y.dtype}")
    if (op in _LOGICAL) != (x.dtype == BOOL):
        raise _unsupported(node, f"operation {op} does not accept {x.dtype} inputs")
    out_dtype = BOOL if op in COMPARISON_OPS else x.dtype
    shape = _broadcast_shape(node, x.shape, y.shape)
    return ctx.network.add_layer(LayerKind.ELEMENTWISE, [x, y], [(out_dtype, shape)], operation=op)


@register_importer(*_ELEMENTWISE)
def import_elementwise(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    op, fold = _ELEMENTWISE[node.op_type]
    variadic = node.op_type in ("Max", "Min")
    _check_arity(node, inputs, 1 if variadic else 2, len(inputs) if variadic else 2)
    if fold is not None and all(v.is_weights() for v in inputs):
        result = inputs[0].weights.values
        for v in inputs[1:]:
            result = fold(result, v.weights.values)
        return [_weights(result)]
    if len(inputs) == 1:
        return _finish(ctx, node, ctx.network.add_identity(convert_to_tensor(inputs[0], ctx.network)))
    layer = _elementwise(ctx, node, op, inputs[0], inputs[1])
    for v in inputs[2:]:
        layer = _elementwise(ctx, node, op, TensorOrWeights(tensor=layer.outputs[0]), v)
    return _finish(ctx, node, layer)


# ---------------------------------------------------------------------------
# Linear algebra and normalization


@register_importer("MatMul")
def import_matmul(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 2)
    a = convert_to_tensor(inputs[0], ctx.network)
    b = convert_to_tensor(inputs[1], ctx.network)
    if a.rank < 2 or b.rank < 2:
        raise _unsupported(node, "MatMul requires tensors with rank >= 2")
    if a.dtype != b.dtype or a.dtype not in (FLOAT32, FLOAT16):
        raise _unsupported(node, f"MatMul does not accept {a.dtype} x {b.dtype}")
    k1, k2 = a.shape[-1], b.shape[-2]
    if k1 != -1 and k2 != -1 and k1 != k2:
        raise _unsupported(node, f"incompatible inner dims: {k1} vs {k2}")
    batch = _broadcast_shape(node, a.shape[:-2], b.shape[:-2])
    shape = batch + [a.shape[-2], b.shape[-1]]
    layer = ctx.network.add_layer(LayerKind.MATRIX_MULTIPLY, [a, b], [(a.dtype, shape)])
    return _finish(ctx, node, layer)


@register_importer("Softmax")
def import_softmax(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1)
    x = convert_to_tensor(inputs[0], ctx.network)
    default_axis = -1 if ctx.opset_version() >= 13 else 1
    axis = _normalize_axis(node, int(node.attributes.get("axis", default_axis)), x.rank)
    layer = ctx.network.add_layer(
        LayerKind.SOFTMAX, [x], [(x.dtype, x.shape)], params={"axis": axis}
    )
    return _finish(ctx, node, layer)


_REDUCE_OPS = {
    "ReduceSum": ReduceOp.SUM,
    "ReduceMean": ReduceOp.AVG,
    "ReduceMax": ReduceOp.MAX,
    "ReduceMin": ReduceOp.MIN,
    "ReduceProd": ReduceOp.PROD,
}


@register_importer(*_REDUCE_OPS)
def import_reduce(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1, 2)
    x = convert_to_tensor(inputs[0], ctx.network)
    axes = _axes_from(node, inputs, 1)
    if axes is None:
        axes = list(range(x.rank))
    axes = sorted({_normalize_axis(node, a, x.rank) for a in axes})
    keepdims = bool(node.attributes.get("keepdims", 1))
    shape = []
    for i, d in enumerate(x.shape):
        if i in axes:
            if keepdims:
                shape.append(1)
        else:
            shape.append(d)
    layer = ctx.network.add_layer(
        LayerKind.REDUCE,
        [x],
        [(x.dtype, shape)],
        operation=_REDUCE_OPS[node.op_type],
        params={"axes": axes, "keepdims": keepdims},
    )
    return _finish(ctx, node, layer)


# ---------------------------------------------------------------------------
# Shape manipulation


@register_importer("Shape")
def import_shape(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1)
    if inputs[0].is_weights():
        return [_weights(np.array(inputs[0].shape, dtype=np.int32))]
    x = inputs[0].tensor
    layer = ctx.network.add_layer(LayerKind.SHAPE, [x], [(INT32, [x.rank])])
    return _finish(ctx, node, layer)


@register_importer("Gather")
def import_gather(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 2)
    data, indices = inputs
    axis = _normalize_axis(node, int(node.attributes.get("axis", 0)), len(data.shape))
    if data.is_weights() and indices.is_weights():
        return [_weights(np.take(data.weights.values, indices.weights.values, axis=axis))]
    x = convert_to_tensor(data, ctx.network)
    idx = convert_to_tensor(indices, ctx.network)
    if idx.dtype != INT32:
        raise _unsupported(node, f"indices must be integers, got {idx.dtype}")
    shape = x.shape[:axis] + idx.shape + x.shape[axis + 1 :]
    layer = ctx.network.add_layer(
        LayerKind.GATHER, [x, idx], [(x.dtype, shape)], params={"axis": axis}
    )
    return _finish(ctx, node, layer)


@register_importer("Concat")
def import_concat(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    if not inputs or not all(inputs):
        raise _unsupported(node, "Concat requires at least one input and no missing inputs")
    if "axis" not in node.attributes:
        raise _unsupported(node, "missing required attribute 'axis'")
    if all(v.is_weights() for v in inputs):
        axis = int(node.attributes["axis"])
        return [_weights(np.concatenate([v.weights.values for v in inputs], axis=axis))]
    tensors = [convert_to_tensor(v, ctx.network) for v in inputs]
    rank = tensors[0].rank
    axis = _normalize_axis(node, int(node.attributes["axis"]), rank)
    if any(t.rank != rank for t in tensors) or len({t.dtype for t in tensors}) != 1:
        raise _unsupported(node, "inputs must share rank and type")
    shape = list(tensors[0].shape)
    dims = [t.shape[axis] for t in tensors]
    shape[axis] = -1 if -1 in dims else sum(dims)
    layer = ctx.network.add_layer(
        LayerKind.CONCATENATION, tensors, [(tensors[0].dtype, shape)], params={"axis": axis}
    )
    return _finish(ctx, node, layer)


def _resolve_reshape(node: Node, in_shape: Sequence[int], target: Sequence[int]) -> list[int]:
    """Apply ONNX reshape rules: 0 copies the input dim, a single -1 is inferred."""
    if list(target).count(-1) > 1:
        raise _unsupported(node, "shape may contain at most one -1")
    out = [in_shape[i] if d == 0 and i < len(in_shape) else d for i, d in enumerate(target)]
    if -1 in in_shape:
        return out
    total = prod(in_shape)
    if -1 in target:
        infer_at = list(target).index(-1)
        known = prod(d for i, d in enumerate(out) if i != infer_at)
        if known == 0 or total % known != 0:
            raise _unsupported(node, f"cannot reshape {list(in_shape)} to {list(target)}")
        out[infer_at] = total // known
    elif prod(out) != total:
        raise _unsupported(node, f"cannot reshape {list(in_shape)} to {list(target)}")
    return out


def _shuffle(ctx: ImporterContext, node: Node, x: Tensor, shape: list[int], **params: object) -> list[TensorOrWeights]:
    layer = ctx.network.add_layer(LayerKind.SHUFFLE, [x], [(x.dtype, shape)], params=dict(params))
    return _finish(ctx, node, layer)


@register_importer("Reshape")
def import_reshape(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 2)
    data, shape_value = inputs
    if shape_value.is_weights():
        target = [int(v) for v in shape_value.weights.values.reshape(-1)]
        out = _resolve_reshape(node, data.shape, target)
        if data.is_weights():
            return [_weights(data.weights.values.reshape(out))]
        return _shuffle(ctx, node, data.tensor, out, reshape=out)
    x = convert_to_tensor(data, ctx.network)
    shape_tensor = shape_value.tensor
    if shape_tensor.rank != 1 or shape_tensor.shape[0] < 0:
        raise _unsupported(node, "dynamic shape input must be a 1D tensor of known length")
    layer = ctx.network.add_layer(
        LayerKind.SHUFFLE,
        [x, shape_tensor],
        [(x.dtype, [-1] * shape_tensor.shape[0])],
        shape_input_slots=(1,),
    )
    return _finish(ctx, node, layer)


@register_importer("Flatten")
def import_flatten(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1)
    x = convert_to_tensor(inputs[0], ctx.network)
    axis = int(node.attributes.get("axis", 1))
    axis = axis + x.rank if axis < 0 else axis
    if not 0 <= axis <= x.rank:
        raise _unsupported(node, f"axis {axis} is out of range for rank {x.rank}")
    head, tail = x.shape[:axis], x.shape[axis:]
    out = [-1 if -1 in head else prod(head), -1 if -1 in tail else prod(tail)]
    return _shuffle(ctx, node, x, out, reshape=out)


@register_importer("Transpose")
def import_transpose(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1)
    rank = len(inputs[0].shape)
    perm = node.attributes.get("perm", list(reversed(range(rank))))
    if sorted(perm) != list(range(rank)):
        raise _unsupported(node, f"invalid permutation {perm}")
    if inputs[0].is_weights():
        return [_weights(np.transpose(inputs[0].weights.values, perm))]
    x = inputs[0].tensor
    return _shuffle(ctx, node, x, [x.shape[p] for p in perm], first_transpose=list(perm))


@register_importer("Squeeze")
def import_squeeze(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1, 2)
    in_shape = inputs[0].shape
    axes = _axes_from(node, inputs, 1)
    if axes is None:
        axes = [i for i, d in enumerate(in_shape) if d == 1]
    axes = {_normalize_axis(node, a, len(in_shape)) for a in axes}
    if any(in_shape[a] not in (1, -1) for a in axes):
        raise _unsupported(node, f"cannot squeeze non-unit axes {sorted(axes)} of {in_shape}")
    out = [d for i, d in enumerate(in_shape) if i not in axes]
    if inputs[0].is_weights():
        return [_weights(inputs[0].weights.values.reshape(out))]
    return _shuffle(ctx, node, inputs[0].tensor, out, reshape=out)


@register_importer("Unsqueeze")
def import_unsqueeze(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    _check_arity(node, inputs, 1, 2)
    in_shape = inputs[0].shape
    axes = _axes_from(node, inputs, 1)
    if not axes:
        raise _unsupported(node, "missing axes")
    out_rank = len(in_shape) + len(axes)
    normalized = {_normalize_axis(node, a, out_rank) for a in axes}
    if len(normalized) != len(axes):
        raise _unsupported(node, f"duplicate axes {axes}")
    axes = normalized
    dims = iter(in_shape)
    out = [1 if i in axes else next(dims) for i in range(out_rank)]
    if inputs[0].is_weights():
        return [_weights(inputs[0].weights.values.reshape(out))]
    return _shuffle(ctx, node, inputs[0].tensor, out, reshape=out)


# ---------------------------------------------------------------------------
# Dispatch


def import_fallback_plugin(ctx: ImporterContext, node: Node, inputs: list[TensorOrWeights]) -> list[TensorOrWeights]:
    """Import an unregistered operator through a registered plugin creator."""
    version = str(node.attributes.get("plugin_version", "1"))
    if ctx.plugins.get(node.op_type, version) is None:
        raise _unsupported(
            node, f"no importer registered for op '{node.op_type}' and no plugin creator found"
        )
    plugin = ctx.plugins.create(node.op_type, dict(node.attributes), version)
    tensors = [convert_to_tensor(v, ctx.network) for v in inputs if v]
    specs = plugin.get_output_specs([(t.dtype, list(t.shape)) for t in tensors])
    layer = ctx.network.add_layer(
        LayerKind.PLUGIN,
        tensors,
        specs,
        operation=node.op_type,
        params={"plugin": plugin, "version": version},
    )
    return _finish(ctx, node, layer)


@lru_cache(maxsize=None)
def get_builtin_op_importers() -> Mapping[str, NodeImporter]:
    """The read-only builtin dispatch table, built once."""
    return MappingProxyType(dict(_BUILTIN_IMPORTERS))


def build_op_importers(extra: Mapping[str, NodeImporter] | None = None) -> Mapping[str, NodeImporter]:
    if not extra:
        return get_builtin_op_importers()
    table = dict(get_builtin_op_importers())
    table.update(extra)
    return MappingProxyType(table)


def select_importer(op_importers: Mapping[str, NodeImporter], op_type: str) -> NodeImporter:
    importer = op_importers.get(op_type)
    if importer is None:
        logger.info(
            "No importer registered for op: %s. Attempting to import as plugin.", op_type
        )
        return import_fallback_plugin
    return importer
