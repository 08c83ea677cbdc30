"""Apply form edits to an existing diagram body with minimal disturbance.

The body is parsed once, cells are edited in place through a CellIndex and
the tree is serialised once at the end. Nothing that the edits do not touch
(geometry, styles, unrelated cells, wrapper attributes) changes.

Rules that keep repeated saves well-formed:

* every id already in the document is collected before anything is added,
  and new ids come from IdAllocator;
* a new sub-step gets a fresh id for its position in the owning node's list,
  never an id found by matching its name in the document;
* positional parents ("subprocess-<k>") are resolved against that same list,
  and a reference that does not point at an earlier sibling is rejected;
* when a sub-step moves to a different parent, both its old incoming edge and
  its outgoing edges to siblings that no longer hang off it are removed;
* deletions are relative to an explicit baseline (the node list the editor
  loaded); without a baseline nothing is deleted;
* a sub-step listed under a different step than before is moved, not
  deleted: the edge from its old owner goes and one from the new owner is added;
* a detected sub-step that is renamed, reshaped or moved becomes user-authored;
* the result is validated and, on failure, the original body is returned.
"""

import logging
import xml.etree.ElementTree as ET
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from flowsync.codec.document import split_document
from flowsync.config import DEFAULT_SETTINGS, EngineSettings
from flowsync.errors import MalformedDocument, StructuralValidationFailure
from flowsync.models.process import MAIN_PARENT, Node, Subprocess, subprocess_parent
from flowsync.models.shapes import ShapeKind, style_for_shape
from flowsync.parsing.graph_extractor import parse_body_tree
from flowsync.parsing.labels import label_to_text, text_to_label
from flowsync.parsing.styles import restyle_shape, shape_from_style, uses_html_labels
from flowsync.patching.elements import (
    CHAIN_EDGE_STYLE,
    SUBSTEP_EDGE_STYLE,
    CellIndex,
    edge_element,
    vertex_element,
)
from flowsync.patching.id_allocator import IdAllocator, scan_ids

logger = logging.getLogger(__name__)


@dataclass
class PatchResult:
    """Outcome of one patch.

    `body` is the graph body to store (the untouched input when nothing
    changed or the patch was discarded). `nodes` carries the ids allocated to
    new sub-steps and any rejected positional parents rewritten to "main".
    """

    body: str
    nodes: list[Node]
    applied: bool = True
    changed: bool = False
    created_ids: list[str] = field(default_factory=list)
    removed_ids: list[str] = field(default_factory=list)
    reason: str | None = None
    # full document text, set by patch_document
    document: str | None = None


def resolve_parent_cells(node_id: str, items: list[Subprocess], cell_ids: list[str | None]) -> list[str | None]:
    """Cell id each sub-step hangs off, resolving positional references."""
    parents: list[str | None] = []
    for position, item in enumerate(items):
        index = item.parent_index
        if index is None:
            parents.append(node_id)
        elif index < position:
            parents.append(cell_ids[index])
        else:
            parents.append(node_id)
    return parents


def validate_body(body: str, original_ids: Iterable[str] = (), created_edges: Iterable[str] = ()) -> None:
    """Sanity-check a patched body.

    Raises:
        StructuralValidationFailure: root markers are missing, the body does
            not parse, an id is duplicated that was not duplicated before, or
            a created edge points at a missing cell.
    """
    if "<mxGraphModel" not in body or "<root" not in body:
        raise StructuralValidationFailure("graph model root markers are missing")
    try:
        _, model = parse_body_tree(body)
    except MalformedDocument as exc:
        raise StructuralValidationFailure(f"patched body does not parse: {exc}") from exc

    before = Counter(original_ids)
    after = Counter(scan_ids(model))
    duplicated = sorted(cell_id for cell_id, count in after.items() if count > max(1, before[cell_id]))
    if duplicated:
        raise StructuralValidationFailure(f"duplicate cell ids after patch: {', '.join(duplicated)}")

    created = set(created_edges)
    if created:
        for cell in model.iter("mxCell"):
            if cell.get("id") not in created:
                continue
            for endpoint in (cell.get("source"), cell.get("target")):
                if endpoint not in after:
                    raise StructuralValidationFailure(
                        f"edge {cell.get('id')} points at missing cell {endpoint}"
                    )


class _Patcher:
    """Mutation state of one apply_patch call."""

    def __init__(
        self,
        index: CellIndex,
        allocator: IdAllocator,
        settings: EngineSettings,
        nodes: list[Node],
        previous: list[Node] | None,
    ):
        self.index = index
        self.allocator = allocator
        self.settings = settings
        # main-step ids of the target list; never removed as a sub-step
        self.protected = {node.id for node in nodes}
        # sub-step cells still listed under some step; a move is not a deletion
        self.kept = {item.cell_id for node in nodes for item in node.subprocesses if item.cell_id}
        # baseline owner of every sub-step cell, and each owner's cells
        self.baseline_owner: dict[str, str] = {}
        self.baseline_groups: dict[str, set[str]] = {}
        for node in previous or []:
            group = self.baseline_groups.setdefault(node.id, {node.id})
            for item in node.subprocesses:
                if item.cell_id:
                    self.baseline_owner.setdefault(item.cell_id, node.id)
                    group.add(item.cell_id)
        self.created: list[str] = []
        self.created_edges: list[str] = []
        self.removed: list[str] = []
        self.changed = False

    def update_label(self, cell_id: str, text: str) -> bool:
        current = self.index.label(cell_id)
        if text in (current, label_to_text(current)):
            return False
        style = self.index.cell(cell_id).get("style")
        self.index.set_label(cell_id, text_to_label(text, uses_html_labels(style)))
        self.changed = True
        logger.debug("relabelled cell %s", cell_id)
        return True

    def update_shape(self, cell_id: str, shape: ShapeKind) -> bool:
        cell = self.index.cell(cell_id)
        style = cell.get("style", "")
        if shape_from_style(style) is shape:
            return False
        cell.set("style", restyle_shape(style, shape))
        self.changed = True
        logger.debug("reshaped cell %s to %s", cell_id, shape.value)
        return True

    def remove(self, cell_id: str) -> None:
        removed = self.index.remove(cell_id)
        if removed:
            self.removed.extend(removed)
            self.changed = True

    def add_edge(self, source: str, target: str, style: str) -> str:
        edge_id = self.allocator.edge_id()
        self.index.add(edge_element(edge_id, source, target, self.index.container_of(source), style))
        self.created.append(edge_id)
        self.created_edges.append(edge_id)
        self.changed = True
        return edge_id

    def add_subprocess(self, owner_id: str, item: Subprocess, row: int) -> str:
        settings = self.settings
        x, y, width, _ = self.index.geometry(owner_id)
        cell_id = self.allocator.subprocess_id()
        self.index.add(vertex_element(
            cell_id,
            text_to_label(item.name, html_style=True),
            style_for_shape(item.shape),
            self.index.container_of(owner_id),
            x + (width or settings.subprocess_width) + settings.subprocess_spacing,
            y + row * settings.subprocess_row_spacing,
            settings.subprocess_width,
            settings.subprocess_height,
        ))
        self.created.append(cell_id)
        self.changed = True
        logger.debug("created sub-step %r of node %s as cell %s", item.name, owner_id, cell_id)
        return cell_id

    def delete_missing_nodes(self, nodes: list[Node], previous: list[Node]) -> None:
        """Remove main steps present in the baseline but not in the target list."""
        target_ids = {node.id for node in nodes}
        for node in previous:
            if node.id in target_ids or node.id not in self.index:
                continue
            logger.info("deleting step %s and its sub-steps", node.id)
            self.remove(node.id)
            for item in node.subprocesses:
                if item.is_detected or not item.cell_id or item.cell_id in self.protected:
                    continue
                if item.cell_id in self.kept:
                    continue
                if item.cell_id in self.index:
                    self.remove(item.cell_id)

    def _present(self, node: Node) -> list[Subprocess]:
        """Sub-steps whose backing cell still exists, parents compacted."""
        kept: list[Subprocess] = []
        new_index: dict[int, int] = {}
        for position, item in enumerate(node.subprocesses):
            if item.cell_id and not self.index.is_vertex(item.cell_id):
                logger.info(
                    "sub-step %r of node %s refers to cell %s which is no longer in the document, dropping it",
                    item.name, node.id, item.cell_id,
                )
                continue
            new_index[position] = len(kept)
            kept.append(item)

        compacted = []
        for position, item in enumerate(kept):
            index = item.parent_index
            if index is not None and index in new_index:
                mapped = new_index[index]
                item = item.model_copy(update={"parent": subprocess_parent(mapped)})
            elif index is not None and index < len(node.subprocesses):
                # the referenced sibling was dropped
                item = item.model_copy(update={"parent": MAIN_PARENT})
            compacted.append(item)
        return compacted

    def patch_node(self, node: Node, baseline: Node | None) -> Node | None:
        if not self.index.is_vertex(node.id):
            logger.warning("step %s is no longer in the document, skipping its edits", node.id)
            return None

        self.update_label(node.id, node.label)
        self.update_shape(node.id, node.shape)

        items = self._present(node)

        # baseline state: which cells existed and what they hung off
        baseline_parent: dict[str, str | None] = {}
        baseline_order: list[str] = []
        if baseline is not None:
            old_items = baseline.subprocesses
            old_cells = [item.cell_id for item in old_items]
            for item, parent in zip(old_items, resolve_parent_cells(node.id, old_items, old_cells)):
                if item.cell_id:
                    baseline_parent[item.cell_id] = parent
                    baseline_order.append(item.cell_id)

        # user-initiated deletions; a cell listed under another step has moved
        for cell_id in baseline_order:
            if cell_id in self.kept or cell_id in self.protected or cell_id not in self.index:
                continue
            logger.info("deleting sub-step cell %s of step %s", cell_id, node.id)
            self.remove(cell_id)

        # cells: existing ones are edited in place, new ones get positional ids
        cell_ids: list[str] = []
        is_new: list[bool] = []
        edited: list[bool] = []
        for row, item in enumerate(items):
            if item.cell_id and item.cell_id in self.index:
                cell_ids.append(item.cell_id)
                is_new.append(False)
                relabelled = False
                current = label_to_text(self.index.label(item.cell_id))
                if current or item.name != item.cell_id:
                    relabelled = self.update_label(item.cell_id, item.name)
                reshaped = self.update_shape(item.cell_id, item.shape)
                edited.append(relabelled or reshaped)
            else:
                edited.append(False)
                cell_ids.append(self.add_subprocess(node.id, item, row))
                is_new.append(True)

        # desired parent of every sub-step; reject references that do not precede
        for position, item in enumerate(items):
            index = item.parent_index
            if index is not None and index >= position:
                logger.warning(
                    "sub-step %r of step %s references subprocess-%d which does not precede it, attaching it to the step",
                    item.name, node.id, index,
                )
                items[position] = item.model_copy(update={"parent": MAIN_PARENT})
        parents = resolve_parent_cells(node.id, items, cell_ids)
        desired = dict(zip(cell_ids, parents))
        managed = {node.id, *cell_ids}

        # re-parenting: drop the old incoming edge and stale outgoing edges
        rewire: set[str] = set()
        created_now = {cell_id for cell_id, new in zip(cell_ids, is_new) if new}
        for position, (cell_id, parent_id, new) in enumerate(zip(cell_ids, parents, is_new)):
            if new:
                rewire.add(cell_id)
                continue
            stale = set(managed)
            old_owner = self.baseline_owner.get(cell_id)
            if parent_id in created_now:
                moved = True
            elif old_owner is not None and old_owner != node.id:
                # listed under another step in the baseline
                moved = True
                stale |= self.baseline_groups[old_owner]
            elif cell_id in baseline_parent:
                moved = baseline_parent[cell_id] != parent_id
                if baseline_parent[cell_id] is not None:
                    stale.add(baseline_parent[cell_id])
            else:
                # no baseline: only an edge from another managed cell or step tells us it moved
                stale |= self.protected
                sources = {source for _, source in self.index.incoming(cell_id) if source in stale}
                moved = bool(sources) and parent_id not in sources
            if not moved:
                continue
            logger.debug("sub-step cell %s moves under %s", cell_id, parent_id)
            rewire.add(cell_id)
            edited[position] = True
            for edge_id, source in self.index.incoming(cell_id):
                if source in stale and source != parent_id:
                    self.remove(edge_id)
            for edge_id, target in self.index.outgoing(cell_id):
                if target in desired and desired[target] != cell_id:
                    self.remove(edge_id)
                    rewire.add(target)

        for cell_id, parent_id in zip(cell_ids, parents):
            if cell_id not in rewire or self.index.edges_between(parent_id, cell_id):
                continue
            style = SUBSTEP_EDGE_STYLE if parent_id == node.id else CHAIN_EDGE_STYLE
            self.add_edge(parent_id, cell_id, style)

        subprocesses: list[Subprocess] = []
        for item, cell_id, new, changed in zip(items, cell_ids, is_new, edited):
            if new:
                item = item.model_copy(update={"id": cell_id})
            elif changed and item.is_detected:
                # an edited detected sub-step is user-authored from now on
                logger.debug("sub-step cell %s of step %s is now user-authored", cell_id, node.id)
                item = item.model_copy(update={"is_detected": False})
            subprocesses.append(item)
        return node.model_copy(update={"subprocesses": subprocesses})


def apply_patch(
    body: str,
    nodes: list[Node],
    previous: list[Node] | None = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> PatchResult:
    """Apply edited nodes to a literal graph body.

    Args:
        body: decompressed <mxGraphModel> XML to patch
        nodes: target main steps with labels, shapes and sub-steps
        previous: baseline node list; steps and sub-steps missing from
            `nodes` relative to it are deleted. None means additive only.
        settings: id ranges and geometry of new cells

    Returns:
        PatchResult. On any structural problem the original body is returned
        with applied=False.

    Raises:
        IdentifierExhaustion: the allocator could not find a free id.
    """
    try:
        top, model = parse_body_tree(body)
    except MalformedDocument as exc:
        logger.error("patch discarded, keeping the original body: %s", exc)
        return PatchResult(body=body, nodes=list(nodes), applied=False, reason=str(exc))

    original_ids = scan_ids(model)
    index = CellIndex(model)
    patcher = _Patcher(index, IdAllocator.for_ids(original_ids, settings), settings, nodes, previous)

    if previous is not None:
        patcher.delete_missing_nodes(nodes, previous)

    baseline = {node.id: node for node in previous or []}
    patched: list[Node] = []
    for node in nodes:
        result = patcher.patch_node(node, baseline.get(node.id))
        if result is not None:
            patched.append(result)

    if not patcher.changed:
        return PatchResult(body=body, nodes=patched)

    new_body = ET.tostring(top, encoding="unicode")
    try:
        validate_body(new_body, original_ids, patcher.created_edges)
    except StructuralValidationFailure as exc:
        logger.error("patch discarded, keeping the original body: %s", exc.reason)
        return PatchResult(body=body, nodes=list(nodes), applied=False, reason=exc.reason)

    logger.info(
        "patched diagram: %d cells created, %d removed",
        len(patcher.created),
        len(patcher.removed),
    )
    return PatchResult(
        body=new_body,
        nodes=patched,
        changed=True,
        created_ids=patcher.created,
        removed_ids=patcher.removed,
    )


def patch_document(
    text: str,
    nodes: list[Node],
    previous: list[Node] | None = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> PatchResult:
    """apply_patch on a stored document, re-splicing the wrapper.

    The returned `document` is the input text itself when nothing changed.

    Raises:
        DecompressionFailure: the stored body cannot be inflated.
        IdentifierExhaustion: the allocator could not find a free id.
    """
    document = split_document(text)
    result = apply_patch(document.body, nodes, previous, settings)
    result.document = document.render(result.body) if result.changed else text
    return result
