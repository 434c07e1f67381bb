"""Workflow graph model.

A workflow document is the JSON the ComfyUI frontend saves (``nodes`` and
``links``). Building a graph pairs every node with its descriptor from the
node-type catalog so that widget values become named properties carrying
defaults and constraints. Nodes whose type the server does not know are kept
(ids and links stay intact) and reported in ``missing_types``.
"""
from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import IntEnum
from os import PathLike
from pathlib import Path
from typing import Any, BinaryIO, Iterator

from ..errors import (
    CatalogUnavailableError,
    DocumentMalformedError,
    MissingNodeTypesError,
)
from .catalog import InputSpec, NodeType, NodeTypeCatalog
from .metadata import WORKFLOW_KEY, extract_workflow

# Frontend-only node types, never part of /object_info
VIRTUAL_NODE_TYPES = {"Note", "MarkdownNote", "Reroute", "PrimitiveNode"}

CONTROL_VALUES = {"fixed", "increment", "decrement", "randomize"}

_UNSET = object()


class NodeMode(IntEnum):
    always = 0
    on_event = 1
    never = 2
    on_trigger = 3
    bypass = 4


class Property:
    """A named widget value of a node.

    Values are stored as given, without coercion; the server validates them
    when the graph is submitted. A property that was never set and had no
    value in the document reports the catalog default.
    """

    def __init__(self, name: str, spec: InputSpec | None = None, value: Any = _UNSET):
        self.name = name
        self.spec = spec
        self._value = value

    @property
    def default(self) -> Any:
        return self.spec.default if self.spec else None

    @property
    def is_set(self) -> bool:
        return self._value is not _UNSET

    def get_value(self) -> Any:
        return self.default if self._value is _UNSET else self._value

    def set_value(self, value: Any) -> None:
        self._value = value

    value = property(get_value, set_value)

    def __repr__(self):
        return f"Property({self.name!r}, {self.get_value()!r})"


@dataclass
class InputSlot:
    name: str
    type: str = "*"
    link: int | None = None
    widget: str | None = None


@dataclass
class OutputSlot:
    name: str
    type: str = "*"
    links: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class Link:
    id: int
    origin_id: int
    origin_slot: int
    target_id: int
    target_slot: int
    type: str = "*"


class Node:
    """One processing step of a workflow."""

    def __init__(
        self,
        id: int,
        type: str,
        title: str,
        mode: int = NodeMode.always,
        inputs: list[InputSlot] | None = None,
        outputs: list[OutputSlot] | None = None,
        node_type: NodeType | None = None,
        widgets_values: Any = None,
    ):
        self.id = id
        self.type = type
        self.title = title
        self.mode = mode
        self.inputs = inputs or []
        self.outputs = outputs or []
        self.node_type = node_type
        self.properties: dict[str, Property] = {}
        # control_after_generate / upload values keyed by the widget they follow
        self._extra_values: dict[str, Any] = {}
        self._widgets_as_dict = isinstance(widgets_values, dict)
        self._raw_widgets_values = copy.deepcopy(widgets_values)
        if node_type is not None:
            self._init_properties(node_type, widgets_values)

    def _init_properties(self, node_type: NodeType, widgets_values: Any):
        widgets = node_type.widgets
        if isinstance(widgets_values, dict):
            values = {w.name: widgets_values[w.name] for w in widgets if w.name in widgets_values}
        else:
            values = self._align(widgets, list(widgets_values or []))
        for spec in widgets:
            self.properties[spec.name] = Property(spec.name, spec, values.get(spec.name, _UNSET))

    def _align(self, widgets: list[InputSpec], values: list) -> dict[str, Any]:
        result: dict[str, Any] = {}
        surplus = len(values) - len(widgets)
        i = 0
        for spec in widgets:
            if i >= len(values):
                break
            result[spec.name] = values[i]
            i += 1
            if surplus <= 0 or i >= len(values):
                continue
            follower = values[i]
            if spec.has_control_widget and follower in CONTROL_VALUES:
                self._extra_values[spec.name] = follower
            elif spec.has_upload_widget and isinstance(follower, str):
                self._extra_values[spec.name] = follower
            else:
                continue
            i += 1
            surplus -= 1
        return result

    @property
    def is_virtual(self) -> bool:
        return self.type in VIRTUAL_NODE_TYPES

    @property
    def is_known(self) -> bool:
        return self.node_type is not None

    def get_property(self, name: str) -> Property | None:
        return self.properties.get(name)

    def widget_values(self) -> list | dict | None:
        """Widget values in the layout the frontend saves."""
        if self.node_type is None:
            return copy.deepcopy(self._raw_widgets_values)
        if self._widgets_as_dict:
            result = dict(self._raw_widgets_values or {})
            result.update({name: p.get_value() for name, p in self.properties.items()})
            return result
        values = []
        for name, prop in self.properties.items():
            values.append(prop.get_value())
            if name in self._extra_values:
                values.append(self._extra_values[name])
        return values

    def __repr__(self):
        return f"Node({self.id}, {self.type!r}, title={self.title!r})"


class Graph:
    """A workflow built from a document and checked against a catalog.

    Not safe for concurrent mutation; mutate properties before submitting.
    """

    def __init__(
        self,
        nodes: list[Node],
        links: dict[int, Link],
        document: dict,
        missing_types: list[str] | None = None,
    ):
        self.nodes = nodes
        self.links = links
        self.document = document
        self.missing_types = list(missing_types or [])
        self._by_id = {node.id: node for node in nodes}

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._by_id

    def get_node(self, node_id: int) -> Node | None:
        return self._by_id.get(node_id)

    def get_nodes_by_type(self, type: str) -> list[Node]:
        return [node for node in self.nodes if node.type == type]

    def get_node_by_title(self, title: str) -> Node | None:
        for node in self.nodes:
            if node.title == title:
                return node
        return None

    def ensure_complete(self) -> None:
        """Raise MissingNodeTypesError if any node type is unknown to the server."""
        if self.missing_types:
            raise MissingNodeTypesError(self.missing_types)

    # Construction adapters; all of them end in build()

    @staticmethod
    def from_string(text: str, catalog: NodeTypeCatalog | None) -> tuple["Graph", list[str]]:
        return build(parse_document(text), catalog)

    @staticmethod
    def from_bytes(data: bytes, catalog: NodeTypeCatalog | None) -> tuple["Graph", list[str]]:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise DocumentMalformedError(f"Workflow is not valid UTF-8: {e}") from e
        return Graph.from_string(text, catalog)

    @staticmethod
    def from_stream(stream: BinaryIO, catalog: NodeTypeCatalog | None) -> tuple["Graph", list[str]]:
        return Graph.from_bytes(stream.read(), catalog)

    @staticmethod
    def from_file(path: str | PathLike, catalog: NodeTypeCatalog | None) -> tuple["Graph", list[str]]:
        return Graph.from_bytes(Path(path).read_bytes(), catalog)

    @staticmethod
    def from_png(
        source: str | PathLike | BinaryIO | bytes,
        catalog: NodeTypeCatalog | None,
        key: str = WORKFLOW_KEY,
    ) -> tuple["Graph", list[str]]:
        """Build from the workflow embedded in a generated PNG image."""
        return Graph.from_string(extract_workflow(source, key), catalog)

    # Serialization

    def to_prompt(self) -> dict[str, dict]:
        """Serialize to the API format accepted by POST /prompt."""
        prompt: dict[str, dict] = {}
        for node in self.nodes:
            if node.is_virtual or node.mode in (NodeMode.never, NodeMode.bypass):
                continue
            inputs: dict[str, Any] = {
                name: prop.get_value() for name, prop in node.properties.items()
            }
            for slot in node.inputs:
                if slot.link is None:
                    continue
                source = self._resolve_source(slot.link, set())
                if source is None:
                    continue
                inputs[slot.widget or slot.name] = [str(source[0]), source[1]]
            prompt[str(node.id)] = {
                "class_type": node.type,
                "inputs": inputs,
                "_meta": {"title": node.title},
            }
        return prompt

    def _resolve_source(self, link_id: int, seen: set[int]) -> tuple[int, int] | None:
        link = self.links.get(link_id)
        if link is None or link_id in seen:
            return None
        seen.add(link_id)
        origin = self.get_node(link.origin_id)
        if origin is None:
            return None
        if origin.type == "Reroute":
            upstream = next((s.link for s in origin.inputs if s.link is not None), None)
            return None if upstream is None else self._resolve_source(upstream, seen)
        if origin.is_virtual or origin.mode == NodeMode.never:
            # PrimitiveNode values are already stored on the target widget
            return None
        if origin.mode == NodeMode.bypass:
            for slot in origin.inputs:
                if slot.link is not None and _types_match(slot.type, link.type):
                    return self._resolve_source(slot.link, seen)
            return None
        return (origin.id, link.origin_slot)

    def to_document(self) -> dict:
        """The source document with current property values written back."""
        document = copy.deepcopy(self.document)
        for raw in document.get("nodes", []):
            node = self.get_node(_node_id(raw.get("id")))
            if node is not None and node.is_known:
                raw["widgets_values"] = node.widget_values()
        return document


def _types_match(a: str, b: str) -> bool:
    return a == b or "*" in (a, b)


def parse_document(text: str) -> dict:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise DocumentMalformedError(f"Workflow is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise DocumentMalformedError("Workflow document must be a JSON object")
    return document


def _node_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _parse_link(raw: Any) -> Link:
    try:
        if isinstance(raw, dict):
            return Link(
                id=int(raw["id"]),
                origin_id=int(raw["origin_id"]),
                origin_slot=int(raw["origin_slot"]),
                target_id=int(raw["target_id"]),
                target_slot=int(raw["target_slot"]),
                type=str(raw.get("type", "*")),
            )
        if isinstance(raw, (list, tuple)) and len(raw) >= 5:
            link_type = raw[5] if len(raw) > 5 else "*"
            return Link(int(raw[0]), int(raw[1]), int(raw[2]), int(raw[3]), int(raw[4]), str(link_type))
    except (KeyError, TypeError, ValueError):
        pass
    raise DocumentMalformedError(f"Malformed link: {raw!r}")


def _parse_inputs(raw: Any) -> list[InputSlot]:
    slots = []
    for item in raw or []:
        if not isinstance(item, dict):
            raise DocumentMalformedError(f"Malformed input slot: {item!r}")
        widget = item.get("widget")
        slots.append(
            InputSlot(
                name=str(item.get("name", "")),
                type=str(item.get("type", "*")),
                link=item.get("link"),
                widget=widget.get("name") if isinstance(widget, dict) else None,
            )
        )
    return slots


def _parse_outputs(raw: Any) -> list[OutputSlot]:
    slots = []
    for item in raw or []:
        if not isinstance(item, dict):
            raise DocumentMalformedError(f"Malformed output slot: {item!r}")
        slots.append(
            OutputSlot(
                name=str(item.get("name", "")),
                type=str(item.get("type", "*")),
                links=list(item.get("links") or []),
            )
        )
    return slots


def build(document: dict, catalog: NodeTypeCatalog | None) -> tuple[Graph, list[str]]:
    """Build a graph from a parsed workflow document.

    Returns the graph and the list of node types missing from the catalog.
    Structural problems (duplicate node ids, links to unknown nodes) raise
    DocumentMalformedError.
    """
    if catalog is None:
        raise CatalogUnavailableError()
    if not isinstance(document, dict):
        raise DocumentMalformedError("Workflow document must be a JSON object")
    raw_nodes = document.get("nodes")
    if not isinstance(raw_nodes, list):
        raise DocumentMalformedError("Workflow document has no 'nodes' list")

    nodes: list[Node] = []
    seen: set[int] = set()
    missing: list[str] = []
    for raw in raw_nodes:
        if not isinstance(raw, dict):
            raise DocumentMalformedError(f"Malformed node: {raw!r}")
        node_id = _node_id(raw.get("id"))
        if node_id is None:
            raise DocumentMalformedError(f"Node has no valid id: {raw.get('id')!r}")
        if node_id in seen:
            raise DocumentMalformedError(f"Duplicate node id {node_id}")
        seen.add(node_id)
        type_name = raw.get("type")
        if not isinstance(type_name, str) or not type_name:
            raise DocumentMalformedError(f"Node {node_id} has no type")

        node_type = catalog.get(type_name)
        if node_type is None and type_name not in VIRTUAL_NODE_TYPES and type_name not in missing:
            missing.append(type_name)
        mode = raw.get("mode") or 0
        if not isinstance(mode, int):
            raise DocumentMalformedError(f"Node {node_id} has invalid mode {mode!r}")
        title = raw.get("title") or (node_type.display_name if node_type else type_name)
        nodes.append(
            Node(
                id=node_id,
                type=type_name,
                title=title,
                mode=mode,
                inputs=_parse_inputs(raw.get("inputs")),
                outputs=_parse_outputs(raw.get("outputs")),
                node_type=node_type,
                widgets_values=raw.get("widgets_values"),
            )
        )

    raw_links = document.get("links") or []
    if not isinstance(raw_links, list):
        raise DocumentMalformedError("Workflow 'links' must be a list")
    links: dict[int, Link] = {}
    for raw in raw_links:
        link = _parse_link(raw)
        for end in (link.origin_id, link.target_id):
            if end not in seen:
                raise DocumentMalformedError(f"Link {link.id} references unknown node {end}")
        links[link.id] = link

    return Graph(nodes, links, document, missing), missing
