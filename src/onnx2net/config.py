from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from onnx2net.network import Tensor

if TYPE_CHECKING:
    from onnx2net.importer.op_importers import NodeImporter
    from onnx2net.importer.plugins import PluginRegistry


@dataclass
class ImporterConfig:
    """Options for one ModelImporter.

    ``input_dims`` overrides the declared shapes of the graph inputs that are
    neither initializers nor supplied as weights, positionally and in input
    order. ``user_inputs`` maps input names to tensors the caller already
    created in the target network; ``user_outputs`` names tensors the caller
    wants handed back instead of marked as network outputs.
    """

    input_dims: list[list[int]] = field(default_factory=list)
    user_inputs: dict[str, Tensor] = field(default_factory=dict)
    user_outputs: set[str] = field(default_factory=set)
    dynamic_batch: bool = True
    min_opset: int = 7
    extra_importers: Mapping[str, NodeImporter] = field(default_factory=dict)
    plugins: PluginRegistry | None = None

    @staticmethod
    def parse_dims(text: str) -> list[int]:
        """Parse ``"1x3x224x224"`` (``-1`` or ``?`` for dynamic) into a dims list."""
        dims: list[int] = []
        for part in text.lower().split("x"):
            part = part.strip()
            dims.append(-1 if part in ("?", "-1") else int(part))
        return dims
