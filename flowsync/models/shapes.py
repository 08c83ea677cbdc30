"""Closed set of step shapes and their mapping to mxGraph style tokens."""

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class ShapeKind(str, Enum):
    """Shapes a process step can take in the form view."""

    rectangle = "rectangle"
    ellipse = "ellipse"
    decision = "decision"
    data = "data"
    document = "document"
    subprocess = "subprocess"


# style token (bare leading token or shape=<token>) -> shape kind
STYLE_TOKEN_SHAPES: dict[str, ShapeKind] = {
    "rect": ShapeKind.rectangle,
    "rectangle": ShapeKind.rectangle,
    "label": ShapeKind.rectangle,
    "text": ShapeKind.rectangle,
    "ellipse": ShapeKind.ellipse,
    "doubleEllipse": ShapeKind.ellipse,
    "terminator": ShapeKind.ellipse,
    "rhombus": ShapeKind.decision,
    "decision": ShapeKind.decision,
    "parallelogram": ShapeKind.data,
    "data": ShapeKind.data,
    "document": ShapeKind.document,
    "swimlane": ShapeKind.subprocess,
    "process": ShapeKind.subprocess,
    "predefinedProcess": ShapeKind.subprocess,
}

# shape kind -> style written on cells created by the engine
SHAPE_STYLES: dict[ShapeKind, str] = {
    ShapeKind.rectangle: "rounded=0;whiteSpace=wrap;html=1;",
    ShapeKind.ellipse: "ellipse;whiteSpace=wrap;html=1;aspect=fixed;",
    ShapeKind.decision: "rhombus;whiteSpace=wrap;html=1;",
    ShapeKind.data: "shape=parallelogram;perimeter=parallelogramPerimeter;whiteSpace=wrap;html=1;fixedSize=1;",
    ShapeKind.document: "shape=document;whiteSpace=wrap;html=1;",
    ShapeKind.subprocess: "swimlane;whiteSpace=wrap;html=1;",
}

# keys that carry shape information and are replaced when a step changes shape
SHAPE_STYLE_KEYS = ("shape", "perimeter", "aspect", "fixedSize")


def coerce_shape(value: "ShapeKind | str | None") -> ShapeKind:
    """Turn a user-supplied shape name into a ShapeKind (rectangle if unknown)."""
    if isinstance(value, ShapeKind):
        return value
    if not value:
        return ShapeKind.rectangle
    try:
        return ShapeKind(value)
    except ValueError:
        token_shape = STYLE_TOKEN_SHAPES.get(value)
        if token_shape is not None:
            return token_shape
        logger.debug("unknown shape name %r, using rectangle", value)
        return ShapeKind.rectangle


def style_for_shape(shape: "ShapeKind | str | None") -> str:
    """Style string used when the engine creates a vertex of the given shape."""
    return SHAPE_STYLES[coerce_shape(shape)]
