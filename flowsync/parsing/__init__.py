"""Graph extraction from decompressed mxGraph bodies."""

from flowsync.parsing.graph_extractor import (
    cells_to_graph,
    extract_cells,
    extract_document,
    extract_graph,
    extract_or_empty,
    iter_cell_elements,
    parse_body,
    parse_body_tree,
)
from flowsync.parsing.labels import label_to_text, text_to_label
from flowsync.parsing.styles import (
    edge_style_fields,
    format_style,
    parse_style,
    restyle_shape,
    shape_from_style,
)

__all__ = [
    "cells_to_graph",
    "extract_cells",
    "extract_document",
    "extract_graph",
    "extract_or_empty",
    "iter_cell_elements",
    "parse_body",
    "parse_body_tree",
    "label_to_text",
    "text_to_label",
    "edge_style_fields",
    "format_style",
    "parse_style",
    "restyle_shape",
    "shape_from_style",
]
