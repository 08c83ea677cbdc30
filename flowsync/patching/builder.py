"""Regenerate a diagram from scratch out of form nodes and connections.

Usage:

    from flowsync.patching.builder import build_document
    text = build_document(nodes, connections, name="Order handling")

Steps and connections are written first; sub-steps without a cell are then
added through apply_patch, so new ids and sub-step edges follow exactly the
same rules as an incremental save.
"""

import logging
import xml.etree.ElementTree as ET

from flowsync.codec.compression import compress_body
from flowsync.codec.document import DEFAULT_DIAGRAM_NAME
from flowsync.config import DEFAULT_SETTINGS, EngineSettings
from flowsync.models.cells import Connection
from flowsync.models.process import Node
from flowsync.models.shapes import ShapeKind, style_for_shape
from flowsync.parsing.graph_extractor import parse_body
from flowsync.parsing.labels import text_to_label
from flowsync.patching.elements import (
    CHAIN_EDGE_STYLE,
    CONNECTION_EDGE_STYLE,
    SUBSTEP_EDGE_STYLE,
    edge_element,
    vertex_element,
)
from flowsync.patching.id_allocator import IdAllocator
from flowsync.patching.patch_engine import PatchResult, apply_patch, resolve_parent_cells
from flowsync.utils.identifiers import generate_page_id, utc_timestamp

logger = logging.getLogger(__name__)

LAYER_ID = "1"

GRAPH_MODEL_ATTRIBUTES = {
    "dx": "1484",
    "dy": "645",
    "grid": "1",
    "gridSize": "10",
    "guides": "1",
    "tooltips": "1",
    "connect": "1",
    "arrows": "1",
    "fold": "1",
    "page": "1",
    "pageScale": "1",
    "pageWidth": "827",
    "pageHeight": "1169",
    "math": "0",
    "shadow": "0",
}


def _skeleton(
    nodes: list[Node],
    connections: list[Connection],
    settings: EngineSettings,
) -> tuple[ET.Element, list[Node]]:
    model = ET.Element("mxGraphModel", GRAPH_MODEL_ATTRIBUTES)
    root = ET.SubElement(model, "root")
    ET.SubElement(root, "mxCell", {"id": "0"})
    ET.SubElement(root, "mxCell", {"id": LAYER_ID, "parent": "0"})
    allocator = IdAllocator(used={"0", LAYER_ID})

    kept: list[Node] = []
    for node in nodes:
        if not allocator.reserve(node.id):
            logger.warning("duplicate step id %s, keeping the first one", node.id)
            continue
        height = settings.ellipse_height if node.shape is ShapeKind.ellipse else settings.node_height
        root.append(vertex_element(
            node.id,
            text_to_label(node.label, html_style=True),
            style_for_shape(node.shape),
            LAYER_ID,
            node.x,
            node.y,
            settings.node_width,
            height,
        ))
        kept.append(node)

    # sub-steps that already have a cell keep it, along with the edge from their parent;
    # a detected branch that already has edges keeps only those
    touched = {conn.source for conn in connections} | {conn.target for conn in connections}
    substep_edges: list[Connection] = []
    for node in kept:
        cell_ids: list[str | None] = []
        for row, item in enumerate(node.subprocesses):
            if not item.cell_id or not allocator.reserve(item.cell_id):
                cell_ids.append(None)
                continue
            cell_ids.append(item.cell_id)
            root.append(vertex_element(
                item.cell_id,
                text_to_label(item.name, html_style=True),
                style_for_shape(item.shape),
                LAYER_ID,
                node.x + settings.node_width + settings.subprocess_spacing,
                node.y + row * settings.subprocess_row_spacing,
                settings.subprocess_width,
                settings.subprocess_height,
            ))
        parent_cells = resolve_parent_cells(node.id, node.subprocesses, cell_ids)
        for item, cell_id, parent_id in zip(node.subprocesses, cell_ids, parent_cells):
            if item.is_detected and cell_id in touched:
                continue
            if cell_id and parent_id:
                style = SUBSTEP_EDGE_STYLE if parent_id == node.id else CHAIN_EDGE_STYLE
                substep_edges.append(Connection(source=parent_id, target=cell_id, style=style))

    vertex_ids = set(allocator.used)
    seen: set[tuple[str, str]] = set()
    edges: list[tuple[str | None, Connection]] = []
    for conn in [*connections, *substep_edges]:
        if conn.source not in vertex_ids or conn.target not in vertex_ids:
            logger.warning("skipping connection %s -> %s, endpoint is not a known cell", conn.source, conn.target)
            continue
        if conn.key in seen:
            continue
        seen.add(conn.key)
        edges.append((conn.id if conn.id and allocator.reserve(conn.id) else None, conn))

    # ids for the remaining edges are drawn once every explicit id is reserved
    fresh = IdAllocator.for_ids(allocator.used, settings)
    for edge_id, conn in edges:
        root.append(edge_element(
            edge_id or fresh.edge_id(),
            conn.source,
            conn.target,
            LAYER_ID,
            conn.style or CONNECTION_EDGE_STYLE,
        ))
    return model, kept


def build_graph(
    nodes: list[Node],
    connections: list[Connection],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> PatchResult:
    """Build a body and report the nodes with the ids given to new sub-steps."""
    model, kept = _skeleton(nodes, connections, settings)
    body = ET.tostring(model, encoding="unicode")
    return apply_patch(body, kept, settings=settings)


def build_graph_body(
    nodes: list[Node],
    connections: list[Connection],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> str:
    """Complete <mxGraphModel> XML for the given steps, sub-steps and connections."""
    return build_graph(nodes, connections, settings).body


def wrap_document(
    body: str,
    name: str = DEFAULT_DIAGRAM_NAME,
    diagram_id: str | None = None,
    compressed: bool = True,
) -> str:
    """Put a graph body into an <mxfile>/<diagram> wrapper."""
    mxfile = ET.Element("mxfile", {
        "host": "flowsync",
        "modified": utc_timestamp(),
        "agent": "flowsync",
        "type": "device",
    })
    diagram = ET.SubElement(mxfile, "diagram", {"name": name, "id": diagram_id or generate_page_id()})
    if compressed:
        diagram.text = compress_body(body)
    else:
        diagram.append(parse_body(body))
    return ET.tostring(mxfile, encoding="unicode")


def build_document(
    nodes: list[Node],
    connections: list[Connection],
    name: str = DEFAULT_DIAGRAM_NAME,
    diagram_id: str | None = None,
    compressed: bool = True,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> str:
    """A full <mxfile> document around build_graph_body()."""
    return wrap_document(build_graph_body(nodes, connections, settings), name, diagram_id, compressed)
