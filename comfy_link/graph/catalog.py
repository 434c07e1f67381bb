"""Node-type catalog built from ComfyUI's /object_info response."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterator

from ..errors import CatalogFetchError

WIDGET_TYPES = {"INT", "FLOAT", "STRING", "BOOLEAN", "COMBO"}

# INT widgets that the frontend follows with a "control_after_generate" widget
SEED_WIDGET_NAMES = {"seed", "noise_seed"}

_TYPE_DEFAULTS: dict[str, Any] = {
    "INT": 0,
    "FLOAT": 0.0,
    "STRING": "",
    "BOOLEAN": False,
}


@dataclass(frozen=True)
class InputSpec:
    """One declared input of a node type."""

    name: str
    type: str
    required: bool = True
    options: dict = field(default_factory=dict)
    choices: tuple = ()

    @property
    def is_widget(self) -> bool:
        if self.options.get("forceInput"):
            return False
        return self.type in WIDGET_TYPES

    @property
    def default(self) -> Any:
        if "default" in self.options:
            return self.options["default"]
        if self.type == "COMBO":
            return self.choices[0] if self.choices else None
        return _TYPE_DEFAULTS.get(self.type)

    @property
    def has_control_widget(self) -> bool:
        """Whether the frontend stores an extra control value after this widget."""
        if self.type != "INT":
            return False
        if "control_after_generate" in self.options:
            return bool(self.options["control_after_generate"])
        return self.name in SEED_WIDGET_NAMES

    @property
    def has_upload_widget(self) -> bool:
        return bool(self.options.get("image_upload") or self.options.get("video_upload"))

    @staticmethod
    def parse(name: str, spec: Any, required: bool) -> "InputSpec":
        if not isinstance(spec, (list, tuple)) or not spec:
            raise CatalogFetchError(f"Invalid input spec for '{name}': {spec!r}")
        kind = spec[0]
        options = spec[1] if len(spec) > 1 and isinstance(spec[1], dict) else {}
        if isinstance(kind, (list, tuple)):
            return InputSpec(name, "COMBO", required, dict(options), tuple(kind))
        if not isinstance(kind, str):
            raise CatalogFetchError(f"Invalid input type for '{name}': {kind!r}")
        choices = tuple(options.get("options", ())) if kind == "COMBO" else ()
        return InputSpec(name, kind, required, dict(options), choices)


@dataclass(frozen=True)
class NodeType:
    """Descriptor of one node type known to the server."""

    name: str
    display_name: str
    category: str = ""
    description: str = ""
    inputs: tuple[InputSpec, ...] = ()
    outputs: tuple[str, ...] = ()
    output_names: tuple[str, ...] = ()
    output_node: bool = False

    @property
    def widgets(self) -> list[InputSpec]:
        """Widget inputs in the order the frontend stores their values."""
        return [i for i in self.inputs if i.is_widget]

    def input(self, name: str) -> InputSpec | None:
        for spec in self.inputs:
            if spec.name == name:
                return spec
        return None

    @staticmethod
    def parse(name: str, info: Any) -> "NodeType":
        if not isinstance(info, dict):
            raise CatalogFetchError(f"Invalid node type descriptor for '{name}'")
        declared = info.get("input") or {}
        if not isinstance(declared, dict):
            raise CatalogFetchError(f"Invalid inputs for node type '{name}'")
        order = info.get("input_order") or {}

        inputs: list[InputSpec] = []
        for group, required in (("required", True), ("optional", False)):
            specs = declared.get(group) or {}
            if not isinstance(specs, dict):
                raise CatalogFetchError(f"Invalid '{group}' inputs for node type '{name}'")
            names = order.get(group) or list(specs.keys())
            for input_name in names:
                if input_name in specs:
                    inputs.append(InputSpec.parse(input_name, specs[input_name], required))

        return NodeType(
            name=name,
            display_name=info.get("display_name") or name,
            category=info.get("category", ""),
            description=info.get("description", ""),
            inputs=tuple(inputs),
            outputs=tuple(info.get("output") or ()),
            output_names=tuple(info.get("output_name") or ()),
            output_node=bool(info.get("output_node", False)),
        )


class NodeTypeCatalog(Mapping):
    """Immutable lookup table of node types, keyed by type name."""

    def __init__(self, node_types: Mapping[str, NodeType]):
        self._types = dict(node_types)

    @staticmethod
    def from_object_info(object_info: Any) -> "NodeTypeCatalog":
        if not isinstance(object_info, dict):
            raise CatalogFetchError("ComfyUI /object_info did not return an object")
        return NodeTypeCatalog(
            {name: NodeType.parse(name, info) for name, info in object_info.items()}
        )

    def __getitem__(self, name: str) -> NodeType:
        return self._types[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __repr__(self) -> str:
        return f"NodeTypeCatalog({len(self._types)} node types)"

    def options(self, node_name: str, input_name: str) -> list:
        """Choices of a combo input, empty if the node or input is unknown."""
        node = self._types.get(node_name)
        spec = node.input(input_name) if node else None
        return list(spec.choices) if spec else []
