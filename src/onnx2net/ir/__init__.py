"""Source graph data structures, decoding and ordering utilities."""

from .decode import decode_graph, decode_model, deserialize_model, load_model
from .graph import Graph, Node, ValueInfo
from .utils import build_producer_map, toposort

__all__ = [
    "Graph",
    "Node",
    "ValueInfo",
    "build_producer_map",
    "toposort",
    "decode_graph",
    "decode_model",
    "deserialize_model",
    "load_model",
]
