"""ONNX to engine network translation and support analysis."""

from .context import ImporterContext
from .metadata import annotate_model
from .model_importer import ModelImporter
from .op_importers import (
    NodeImporter,
    build_op_importers,
    get_builtin_op_importers,
    register_importer,
)
from .passes import MetadataReconciliationPass, PostProcessPass, ShapeTensorCastPass
from .plugins import PluginRegistry, default_plugin_registry
from .support import ITERATIVE_OPS, SubGraph, SupportAnalyzer, SupportResult
from .translator import PRODUCER_NAME, TranslationTracker, import_inputs, mark_outputs, parse_graph
from .weights import ShapedWeights, TensorOrWeights, convert_to_tensor

__all__ = [
    "ImporterContext",
    "ModelImporter",
    "annotate_model",
    "NodeImporter",
    "build_op_importers",
    "get_builtin_op_importers",
    "register_importer",
    "PostProcessPass",
    "MetadataReconciliationPass",
    "ShapeTensorCastPass",
    "PluginRegistry",
    "default_plugin_registry",
    "ITERATIVE_OPS",
    "SubGraph",
    "SupportAnalyzer",
    "SupportResult",
    "PRODUCER_NAME",
    "TranslationTracker",
    "import_inputs",
    "mark_outputs",
    "parse_graph",
    "ShapedWeights",
    "TensorOrWeights",
    "convert_to_tensor",
]
