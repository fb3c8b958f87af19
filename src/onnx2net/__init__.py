"""Translate ONNX graphs into engine networks and analyze how much of a graph is supported."""

from onnx2net.config import ImporterConfig
from onnx2net.errors import ErrorCode, ParserError
from onnx2net.importer import ModelImporter, SubGraph, SupportResult, annotate_model
from onnx2net.network import Network

__version__ = "0.1.0"

__all__ = [
    "ErrorCode",
    "ImporterConfig",
    "ModelImporter",
    "Network",
    "ParserError",
    "SubGraph",
    "SupportResult",
    "annotate_model",
]
