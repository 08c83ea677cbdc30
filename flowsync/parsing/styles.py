"""Helpers for mxGraph style strings ("ellipse;whiteSpace=wrap;strokeColor=#000;")."""

import logging

from flowsync.models.shapes import (
    SHAPE_STYLE_KEYS,
    SHAPE_STYLES,
    STYLE_TOKEN_SHAPES,
    ShapeKind,
    coerce_shape,
)

logger = logging.getLogger(__name__)


def parse_style(style: str | None) -> dict[str, str]:
    """Split a style string into an ordered mapping.

    Bare tokens such as "ellipse" map to an empty string.
    """
    entries: dict[str, str] = {}
    for part in (style or "").split(";"):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        entries[key.strip()] = value.strip() if sep else ""
    return entries


def format_style(entries: dict[str, str]) -> str:
    parts = [key if value == "" else f"{key}={value}" for key, value in entries.items()]
    return "".join(f"{part};" for part in parts)


def _shape_token(token: str) -> ShapeKind | None:
    if token in STYLE_TOKEN_SHAPES:
        return STYLE_TOKEN_SHAPES[token]
    # stencil names such as mxgraph.flowchart.document
    tail = token.rsplit(".", 1)[-1]
    return STYLE_TOKEN_SHAPES.get(tail)


def shape_from_style(style: str | None) -> ShapeKind:
    """Classify a vertex style into a ShapeKind using exact token matches."""
    entries = parse_style(style)
    candidates = []
    if entries.get("shape"):
        candidates.append(entries["shape"])
    candidates.extend(key for key, value in entries.items() if value == "")

    for token in candidates:
        shape = _shape_token(token)
        if shape is not None:
            return shape

    if candidates:
        logger.debug("no known shape token in %r, classifying as rectangle", candidates)
    return ShapeKind.rectangle


def _is_shape_entry(key: str, value: str) -> bool:
    return key in SHAPE_STYLE_KEYS or (value == "" and _shape_token(key) is not None)


def restyle_shape(style: str | None, shape: ShapeKind | str) -> str:
    """Swap only the shape-related tokens of a style, keeping everything else."""
    target = parse_style(SHAPE_STYLES[coerce_shape(shape)])
    shape_part = {k: v for k, v in target.items() if _is_shape_entry(k, v)}
    rest = {k: v for k, v in parse_style(style).items() if not _is_shape_entry(k, v)}
    return format_style({**shape_part, **rest})


def _as_float(value: str | None) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        return None


def edge_style_fields(style: str | None) -> dict:
    """Visual attributes of a connector, keyed by Connection field name."""
    entries = parse_style(style)
    return {
        "stroke_width": _as_float(entries.get("strokeWidth")),
        "stroke_color": entries.get("strokeColor") or None,
        "end_arrow": entries.get("endArrow") or None,
        "start_arrow": entries.get("startArrow") or None,
        "dashed": entries.get("dashed") == "1",
        "dash_pattern": entries.get("dashPattern") or None,
    }


def uses_html_labels(style: str | None) -> bool:
    return parse_style(style).get("html") == "1"
