from __future__ import annotations

import onnx
from onnx import helper

from onnx2net.importer.translator import (
    ATTR_LAYER_PRECISION,
    ATTR_OUTPUTS_LOC,
    ATTR_OUTPUTS_RANGE_MAX,
    ATTR_OUTPUTS_RANGE_MIN,
    PRODUCER_NAME,
)
from onnx2net.network import Network

_METADATA_ATTRS = (
    ATTR_OUTPUTS_LOC,
    ATTR_OUTPUTS_RANGE_MIN,
    ATTR_OUTPUTS_RANGE_MAX,
    ATTR_LAYER_PRECISION,
)


def annotate_model(model: onnx.ModelProto, network: Network) -> onnx.ModelProto:
    """
    Return a copy of ``model`` stamped with this package's producer name and
    carrying, per node, the locations, dynamic ranges and layer precision that
    ``network`` holds, so that re-importing it reproduces them.
    """
    annotated = onnx.ModelProto()
    annotated.CopyFrom(model)
    annotated.producer_name = PRODUCER_NAME

    tensors = network.all_tensors()
    layers = {layer.name: layer for layer in network.layers}

    for node in annotated.graph.node:
        kept = [a for a in node.attribute if a.name not in _METADATA_ATTRS]
        del node.attribute[:]
        node.attribute.extend(kept)

        outputs = [tensors.get(name) for name in node.output]
        if outputs and all(t is not None for t in outputs):
            node.attribute.append(
                helper.make_attribute(ATTR_OUTPUTS_LOC, [t.location for t in outputs])
            )
            if any(t.dynamic_range is not None for t in outputs):
                nan = float("nan")
                ranges = [t.dynamic_range or (nan, nan) for t in outputs]
                node.attribute.append(
                    helper.make_attribute(ATTR_OUTPUTS_RANGE_MIN, [r[0] for r in ranges])
                )
                node.attribute.append(
                    helper.make_attribute(ATTR_OUTPUTS_RANGE_MAX, [r[1] for r in ranges])
                )

        layer = layers.get(node.name) if node.name else None
        if layer is not None and layer.precision is not None:
            node.attribute.append(helper.make_attribute(ATTR_LAYER_PRECISION, layer.precision))
    return annotated
