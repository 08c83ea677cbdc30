"""Core data models for flowsync."""

from flowsync.models.cells import Cell, CellKind, Connection
from flowsync.models.process import (
    MAIN_PARENT,
    Node,
    ParsedDiagram,
    Subprocess,
    subprocess_parent,
)
from flowsync.models.shapes import (
    SHAPE_STYLES,
    STYLE_TOKEN_SHAPES,
    ShapeKind,
    coerce_shape,
    style_for_shape,
)

__all__ = [
    # cells
    "Cell",
    "CellKind",
    "Connection",
    # process structure
    "MAIN_PARENT",
    "Node",
    "ParsedDiagram",
    "Subprocess",
    "subprocess_parent",
    # shapes
    "SHAPE_STYLES",
    "STYLE_TOKEN_SHAPES",
    "ShapeKind",
    "coerce_shape",
    "style_for_shape",
]
