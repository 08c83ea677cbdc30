"""In-memory access to the cells of a parsed mxGraph body.

The patch engine mutates the parsed tree through CellIndex and serialises it
once at the end; the builder uses the same element factories.
"""

import xml.etree.ElementTree as ET

from flowsync.parsing.graph_extractor import (
    GEOMETRY_TAG,
    effective_id,
    effective_label,
    iter_cell_elements,
)

# parent step -> sub-step connector (leaves the right side, enters the left)
SUBSTEP_EDGE_STYLE = (
    "edgeStyle=none;startArrow=none;endArrow=block;startSize=5;endSize=5;strokeColor=#000000;html=1;"
    "exitX=1;exitY=0.5;exitDx=0;exitDy=0;entryX=0;entryY=0.5;entryDx=0;entryDy=0;"
)
# sub-step -> sub-step connector (leaves the bottom, enters the top)
CHAIN_EDGE_STYLE = (
    "edgeStyle=none;startArrow=none;endArrow=block;startSize=5;endSize=5;strokeColor=#000000;html=1;"
    "exitX=0.5;exitY=1;exitDx=0;exitDy=0;entryX=0.5;entryY=0;entryDx=0;entryDy=0;"
)
# connections written by the from-scratch builder
CONNECTION_EDGE_STYLE = "edgeStyle=orthogonalEdgeStyle;rounded=0;orthogonalLoop=1;jettySize=auto;html=1;"


def format_number(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else str(value)


def vertex_element(
    cell_id: str,
    label: str,
    style: str,
    parent: str,
    x: float,
    y: float,
    width: float,
    height: float,
) -> ET.Element:
    cell = ET.Element("mxCell", {
        "id": cell_id,
        "value": label,
        "style": style,
        "vertex": "1",
        "parent": parent,
    })
    ET.SubElement(cell, GEOMETRY_TAG, {
        "x": format_number(x),
        "y": format_number(y),
        "width": format_number(width),
        "height": format_number(height),
        "as": "geometry",
    })
    return cell


def edge_element(cell_id: str, source: str, target: str, parent: str, style: str) -> ET.Element:
    cell = ET.Element("mxCell", {
        "id": cell_id,
        "value": "",
        "style": style,
        "edge": "1",
        "parent": parent,
        "source": source,
        "target": target,
    })
    ET.SubElement(cell, GEOMETRY_TAG, {"relative": "1", "as": "geometry"})
    return cell


def _as_float(value: str | None, default: float = 0.0) -> float:
    try:
        return float(value) if value not in (None, "") else default
    except ValueError:
        return default


class CellIndex:
    """Cells of one <mxGraphModel>, keyed by effective id (first occurrence wins)."""

    def __init__(self, model: ET.Element) -> None:
        self.model = model
        self.root = model.find("root")
        self._container = {child: parent for parent in model.iter() for child in parent}
        self._cells: dict[str, tuple[ET.Element, ET.Element]] = {}
        for outer, cell in iter_cell_elements(self.root):
            cell_id = effective_id(outer, cell)
            if cell_id is not None and cell_id not in self._cells:
                self._cells[cell_id] = (outer, cell)

    def __contains__(self, cell_id: str) -> bool:
        return cell_id in self._cells

    def get(self, cell_id: str) -> tuple[ET.Element, ET.Element] | None:
        return self._cells.get(cell_id)

    def cell(self, cell_id: str) -> ET.Element:
        return self._cells[cell_id][1]

    def is_vertex(self, cell_id: str) -> bool:
        entry = self._cells.get(cell_id)
        return entry is not None and entry[1].get("vertex") == "1"

    def label(self, cell_id: str) -> str:
        outer, cell = self._cells[cell_id]
        return effective_label(outer, cell)

    def set_label(self, cell_id: str, value: str) -> None:
        outer, cell = self._cells[cell_id]
        if outer is not cell and outer.get("label") is not None:
            outer.set("label", value)
        else:
            cell.set("value", value)

    def geometry(self, cell_id: str) -> tuple[float, float, float, float]:
        """(x, y, width, height) of a vertex; zeros where absent."""
        geometry = self.cell(cell_id).find(GEOMETRY_TAG)
        if geometry is None:
            return 0.0, 0.0, 0.0, 0.0
        return (
            _as_float(geometry.get("x")),
            _as_float(geometry.get("y")),
            _as_float(geometry.get("width")),
            _as_float(geometry.get("height")),
        )

    def default_layer(self) -> str:
        """Id of the first layer cell (the child of the root cell)."""
        root_ids = {cell_id for cell_id, (_, cell) in self._cells.items() if cell.get("parent") is None}
        for cell_id, (_, cell) in self._cells.items():
            if cell.get("parent") in root_ids:
                return cell_id
        return "1"

    def container_of(self, cell_id: str) -> str:
        """Parent attribute of a cell; new cells next to it use the same one."""
        return self.cell(cell_id).get("parent") or self.default_layer()

    def edges(self) -> list[tuple[str, ET.Element]]:
        return [(cell_id, cell) for cell_id, (_, cell) in self._cells.items() if cell.get("edge") == "1"]

    def incoming(self, target: str) -> list[tuple[str, str]]:
        """(edge id, source id) of edges ending at `target`."""
        return [(edge_id, cell.get("source")) for edge_id, cell in self.edges() if cell.get("target") == target]

    def outgoing(self, source: str) -> list[tuple[str, str]]:
        """(edge id, target id) of edges starting at `source`."""
        return [(edge_id, cell.get("target")) for edge_id, cell in self.edges() if cell.get("source") == source]

    def edges_between(self, source: str, target: str) -> list[str]:
        return [
            edge_id
            for edge_id, cell in self.edges()
            if cell.get("source") == source and cell.get("target") == target
        ]

    def add(self, element: ET.Element) -> None:
        self.root.append(element)
        self._container[element] = self.root
        self._cells[element.get("id")] = (element, element)

    def remove(self, cell_id: str) -> list[str]:
        """Remove a cell, the cells parented to it and every edge touching it.

        Returns:
            Ids of all removed cells, `cell_id` first.
        """
        removed: list[str] = []
        pending = [cell_id]
        while pending:
            current = pending.pop(0)
            entry = self._cells.pop(current, None)
            if entry is None:
                continue
            outer, _ = entry
            container = self._container.get(outer)
            if container is not None and outer in list(container):
                container.remove(outer)
            removed.append(current)
            for other_id, (_, other) in self._cells.items():
                if current in (other.get("parent"), other.get("source"), other.get("target")):
                    pending.append(other_id)
        return removed

    def ids(self) -> list[str]:
        return list(self._cells)
