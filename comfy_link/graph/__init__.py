"""Workflow graph model and node-type catalog."""
from .catalog import InputSpec, NodeType, NodeTypeCatalog
from .metadata import extract_workflow, read_png_metadata
from .workflow import (
    Graph,
    InputSlot,
    Link,
    Node,
    NodeMode,
    OutputSlot,
    Property,
    VIRTUAL_NODE_TYPES,
    build,
    parse_document,
)

__all__ = [
    "InputSpec",
    "NodeType",
    "NodeTypeCatalog",
    "extract_workflow",
    "read_png_metadata",
    "Graph",
    "InputSlot",
    "Link",
    "Node",
    "NodeMode",
    "OutputSlot",
    "Property",
    "VIRTUAL_NODE_TYPES",
    "build",
    "parse_document",
]
