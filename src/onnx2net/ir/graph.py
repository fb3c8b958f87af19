from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np


@dataclass
class ValueInfo:
    """Declared graph input/output. Unknown dims are -1; ``shape`` is None if undeclared."""

    name: str
    elem_type: int
    shape: list[int] | None = None


@dataclass
class Node:
    op_type: str
    inputs: list[str]
    outputs: list[str]
    name: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)
    domain: str = ""

    def describe(self) -> str:
        return f"{self.name} [{self.op_type}]"


@dataclass
class Graph:
    nodes: list[Node] = field(default_factory=list)
    initializers: dict[str, np.ndarray] = field(default_factory=dict)
    inputs: list[ValueInfo] = field(default_factory=list)
    outputs: list[ValueInfo] = field(default_factory=list)
    value_info: dict[str, ValueInfo] = field(default_factory=dict)
    opsets: dict[str, int] = field(default_factory=dict)
    producer_name: str = ""
    name: str = ""

    def add_node(self, node: Node) -> None:
        self.nodes.append(node)

    def get_input(self, name: str) -> ValueInfo | None:
        for vi in self.inputs:
            if vi.name == name:
                return vi
        return None

    def get_output(self, name: str) -> ValueInfo | None:
        for vi in self.outputs:
            if vi.name == name:
                return vi
        return None
