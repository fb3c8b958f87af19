from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

OutputSpec = tuple[str, list[int]]


class Plugin(Protocol):
    """A custom layer implementation the engine provides outside the builtin set."""

    def get_output_specs(self, inputs: list[OutputSpec]) -> list[OutputSpec]:
        """Return (dtype, shape) for each output given (dtype, shape) per input."""
        ...


PluginFactory = Callable[[dict[str, Any]], Plugin]


@dataclass
class RegisteredPlugin:
    name: str
    version: str
    factory: PluginFactory


class PluginRegistry:
    def __init__(self) -> None:
        self._items: dict[str, RegisteredPlugin] = {}

    def register(self, name: str, factory: PluginFactory, version: str = "1") -> None:
        key = f"{name}:{version}"
        self._items[key] = RegisteredPlugin(name=name, version=version, factory=factory)

    def get(self, name: str, version: str = "1") -> RegisteredPlugin | None:
        return self._items.get(f"{name}:{version}")

    def create(self, name: str, attributes: dict[str, Any], version: str = "1") -> Plugin:
        item = self.get(name, version)
        if not item:
            raise KeyError(f"Plugin creator not found: {name}:{version}")
        return item.factory(attributes)

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)


default_plugin_registry = PluginRegistry()
