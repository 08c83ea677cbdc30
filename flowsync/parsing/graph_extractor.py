"""Extract a typed node/connection graph from a decompressed mxGraph body.

Usage:

    from flowsync.parsing.graph_extractor import extract_document
    parsed = extract_document(open("process.drawio").read())
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterator

from flowsync.codec.document import split_document
from flowsync.errors import MalformedDocument
from flowsync.models.cells import Cell, CellKind, Connection
from flowsync.models.process import Node, ParsedDiagram
from flowsync.parsing.styles import edge_style_fields, shape_from_style

logger = logging.getLogger(__name__)

CELL_TAG = "mxCell"
GEOMETRY_TAG = "mxGeometry"


def parse_body_tree(body: str) -> tuple[ET.Element, ET.Element]:
    """Parse a graph body, returning (top-level element, <mxGraphModel> element).

    Raises:
        MalformedDocument: the body is empty, not well-formed, or has no
            mxGraphModel/root structure.
    """
    if not body or not body.strip():
        raise MalformedDocument("graph body is empty")
    try:
        top = ET.fromstring(body)
    except ET.ParseError as exc:
        raise MalformedDocument(f"graph body is not well-formed XML: {exc}") from exc

    model = top if top.tag == "mxGraphModel" else top.find(".//mxGraphModel")
    if model is None:
        raise MalformedDocument(f"no <mxGraphModel> element (top-level tag is <{top.tag}>)")
    if model.find("root") is None:
        raise MalformedDocument("<mxGraphModel> has no <root> element")
    return top, model


def parse_body(body: str) -> ET.Element:
    """Parse a graph body and return its <mxGraphModel> element."""
    return parse_body_tree(body)[1]


def iter_cell_elements(element: ET.Element) -> Iterator[tuple[ET.Element, ET.Element]]:
    """Yield (outer, cell) pairs for every mxCell below `element`.

    A non-mxCell element holding an mxCell child is a wrapper (UserObject,
    object, ...): it is yielded as `outer` with its inner cell. Plain cells
    are yielded as (cell, cell).
    """
    for child in element:
        if child.tag == CELL_TAG:
            yield child, child
            yield from iter_cell_elements(child)
            continue

        inner = child.find(CELL_TAG)
        if inner is not None:
            yield child, inner
            for grandchild in child:
                if grandchild is inner:
                    yield from iter_cell_elements(inner)
                elif grandchild.tag == CELL_TAG:
                    yield grandchild, grandchild
                else:
                    yield from iter_cell_elements(grandchild)
            continue

        yield from iter_cell_elements(child)


def effective_id(outer: ET.Element, cell: ET.Element) -> str | None:
    return outer.get("id") or cell.get("id")


def effective_label(outer: ET.Element, cell: ET.Element) -> str:
    if outer is not cell and outer.get("label") is not None:
        return outer.get("label", "")
    if cell.get("value") is not None:
        return cell.get("value", "")
    return outer.get("value", "")


def _as_float(value: str | None) -> float:
    try:
        return float(value) if value not in (None, "") else 0.0
    except ValueError:
        return 0.0


def cell_from_elements(outer: ET.Element, cell: ET.Element) -> Cell | None:
    """Build a Cell for a vertex/edge element pair, None for root/layer cells."""
    cell_id = effective_id(outer, cell)
    if cell_id is None:
        return None

    if cell.get("vertex") == "1":
        kind = CellKind.vertex
    elif cell.get("edge") == "1":
        kind = CellKind.edge
    else:
        return None

    geometry = cell.find(GEOMETRY_TAG)
    attrs = geometry.attrib if geometry is not None else {}
    return Cell(
        id=cell_id,
        kind=kind,
        style=cell.get("style", ""),
        parent=cell.get("parent"),
        wrapped=outer is not cell,
        label=effective_label(outer, cell) if kind is CellKind.vertex else "",
        x=_as_float(attrs.get("x")),
        y=_as_float(attrs.get("y")),
        width=_as_float(attrs.get("width")),
        height=_as_float(attrs.get("height")),
        source=cell.get("source"),
        target=cell.get("target"),
    )


def extract_cells(model: ET.Element) -> list[Cell]:
    """Flat list of vertex and edge cells in document order (first id wins)."""
    cells: list[Cell] = []
    seen: set[str] = set()
    for outer, cell in iter_cell_elements(model.find("root")):
        extracted = cell_from_elements(outer, cell)
        if extracted is None:
            continue
        if extracted.id in seen:
            logger.warning("duplicate cell id %s in document, keeping first occurrence", extracted.id)
            continue
        seen.add(extracted.id)
        cells.append(extracted)
    return cells


def cells_to_graph(cells: list[Cell], diagram_id: str = "Page-1") -> ParsedDiagram:
    """Promote cells to process nodes and connections."""
    edge_ids = {cell.id for cell in cells if cell.kind is CellKind.edge}
    nodes: list[Node] = []
    connections: list[Connection] = []

    for cell in cells:
        if cell.kind is CellKind.vertex:
            # labels attached to a connector are children of the edge cell
            if cell.parent in edge_ids:
                continue
            nodes.append(Node(
                id=cell.id,
                label=cell.label,
                shape=shape_from_style(cell.style),
                x=cell.x,
                y=cell.y,
            ))
        elif cell.source and cell.target:
            connections.append(Connection(
                source=cell.source,
                target=cell.target,
                id=cell.id,
                style=cell.style,
                **edge_style_fields(cell.style),
            ))

    return ParsedDiagram(diagram_id=diagram_id, nodes=nodes, connections=connections)


def extract_graph(body: str, diagram_id: str = "Page-1") -> ParsedDiagram:
    """Parse a literal graph body into nodes and connections.

    Raises:
        MalformedDocument: when the body cannot be parsed.
    """
    model = parse_body(body)
    return cells_to_graph(extract_cells(model), diagram_id)


def extract_or_empty(body: str, diagram_id: str = "Page-1") -> ParsedDiagram:
    """Like extract_graph, but a malformed body yields an empty graph."""
    try:
        return extract_graph(body, diagram_id)
    except MalformedDocument as exc:
        logger.warning("falling back to an empty graph: %s", exc)
        return ParsedDiagram(diagram_id=diagram_id)


def extract_document(text: str) -> ParsedDiagram:
    """Extract the graph of a stored document (compressed or literal).

    DecompressionFailure propagates; a malformed body yields an empty graph.
    """
    document = split_document(text)
    return extract_or_empty(document.body, document.diagram_name)
