"""Turn flow analysis into the form view: main-flow nodes with merged sub-steps.

Sub-steps come from two places: branches detected in the graph and sub-steps
a user entered in the form (stored alongside the document). Positional parent
references ("subprocess-<k>") always point into the merged list, so every
reordering here rewrites them.
"""

import logging
from collections.abc import Iterable

from flowsync.analysis.flow_analyzer import FlowAnalysis, analyze_flow
from flowsync.config import DEFAULT_SETTINGS, EngineSettings
from flowsync.models.cells import Connection
from flowsync.models.process import MAIN_PARENT, Node, ParsedDiagram, Subprocess, subprocess_parent
from flowsync.parsing.labels import label_to_text

logger = logging.getLogger(__name__)


def subprocess_key(name: str) -> str:
    """Normalised name used for name-based dedup."""
    return label_to_text(name).strip()


def _parents_first(branch_nodes: list[Node], parents: dict[str, list[str]]) -> list[Node]:
    """Order a branch group so a node's in-group parents come before it."""
    by_id = {node.id: node for node in branch_nodes}
    ordered: list[Node] = []
    placed: set[str] = set()

    def place(node_id: str, trail: set[str]) -> None:
        if node_id in placed or node_id in trail:
            return
        trail.add(node_id)
        for parent in parents.get(node_id, []):
            if parent in by_id:
                place(parent, trail)
        placed.add(node_id)
        ordered.append(by_id[node_id])

    for node in branch_nodes:
        place(node.id, set())
    return ordered


def detected_subprocesses(
    branch_nodes: list[Node],
    parents: dict[str, list[str]],
) -> list[Subprocess]:
    """Sub-steps for the branch nodes attached to one main-flow node."""
    ordered = _parents_first(branch_nodes, parents)
    position = {node.id: index for index, node in enumerate(ordered)}

    detected: list[Subprocess] = []
    for index, node in enumerate(ordered):
        parent = MAIN_PARENT
        for graph_parent in parents.get(node.id, []):
            if graph_parent in position and position[graph_parent] < index:
                parent = subprocess_parent(position[graph_parent])
                break
        detected.append(Subprocess(
            name=label_to_text(node.label) or node.id,
            shape=node.shape,
            parent=parent,
            is_detected=True,
            branch_id=node.id,
        ))
    return detected


def compact_subprocesses(items: list[Subprocess], keep: list[bool]) -> list[Subprocess]:
    """Drop items and rewrite positional parents for the survivors.

    A reference to a dropped item, or to an item that no longer precedes the
    referrer, falls back to "main".
    """
    new_index: dict[int, int] = {}
    survivors: list[tuple[int, Subprocess]] = []
    for old, (item, kept) in enumerate(zip(items, keep)):
        if kept:
            new_index[old] = len(survivors)
            survivors.append((old, item))

    result: list[Subprocess] = []
    for position, (old, item) in enumerate(survivors):
        target = item.parent_index
        if target is None:
            result.append(item)
            continue
        mapped = new_index.get(target)
        parent = subprocess_parent(mapped) if mapped is not None and mapped < position else MAIN_PARENT
        result.append(item if parent == item.parent else item.model_copy(update={"parent": parent}))
    return result


def shift_parents(items: list[Subprocess], offset: int) -> list[Subprocess]:
    """Move every positional parent reference `offset` places down."""
    if offset == 0:
        return list(items)
    shifted = []
    for item in items:
        index = item.parent_index
        if index is None:
            shifted.append(item)
        else:
            shifted.append(item.model_copy(update={"parent": subprocess_parent(index + offset)}))
    return shifted


def merge_subprocesses(
    stored: list[Subprocess],
    detected: list[Subprocess],
    deleted_names: Iterable[str] = (),
    known_ids: set[str] | None = None,
) -> list[Subprocess]:
    """Merge detected branches with stored sub-steps.

    Detected entries already represented in the stored list (same name or
    same backing cell id) are dropped, as are detected entries the user
    deleted in this session. Stored entries whose backing cell no longer
    exists in the document are dropped when `known_ids` is given.

    Returns:
        New detected entries first, then the stored entries, with all
        positional parents rewritten to the merged order.
    """
    if known_ids is not None:
        keep = [item.cell_id is None or item.cell_id in known_ids for item in stored]
        for item, kept in zip(stored, keep):
            if not kept:
                logger.debug("dropping sub-step %r, cell %s is gone from the document", item.name, item.cell_id)
        stored = compact_subprocesses(stored, keep)

    # a stored entry without a cell adopts the cell of a same-named branch
    detected_by_name: dict[str, Subprocess] = {}
    for item in detected:
        detected_by_name.setdefault(subprocess_key(item.name), item)
    claimed = {item.cell_id for item in stored if item.cell_id}
    adopted = []
    for item in stored:
        match = detected_by_name.get(subprocess_key(item.name))
        if item.cell_id is None and match is not None and match.branch_id not in claimed:
            claimed.add(match.branch_id)
            item = item.model_copy(update={"branch_id": match.branch_id})
        adopted.append(item)
    stored = adopted

    stored_names = {subprocess_key(item.name) for item in stored}
    stored_ids = {item.cell_id for item in stored if item.cell_id}
    deleted = {subprocess_key(name) for name in deleted_names}

    keep_detected = []
    for item in detected:
        key = subprocess_key(item.name)
        keep_detected.append(
            item.branch_id not in stored_ids and key not in stored_names and key not in deleted
        )
    fresh = compact_subprocesses(detected, keep_detected)

    return fresh + shift_parents(stored, len(fresh))


def build_display_nodes(
    parsed: ParsedDiagram,
    analysis: FlowAnalysis | None = None,
    stored_nodes: list[Node] | None = None,
    deleted: dict[str, Iterable[str]] | None = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> list[Node]:
    """Main-flow nodes as the form shows them.

    Args:
        parsed: graph extracted from the current document
        analysis: precomputed flow analysis of `parsed` (computed if omitted)
        stored_nodes: node records kept alongside the document (owners and
            user-authored sub-steps)
        deleted: node id -> names of sub-steps the user deleted this session
        settings: engine settings

    Returns:
        One Node per main-flow step, labels as plain text, sub-steps merged.
    """
    if analysis is None:
        analysis = analyze_flow(parsed.nodes, parsed.connections, settings)
    stored_by_id = {node.id: node for node in stored_nodes or []}
    deleted = deleted or {}
    known_ids = parsed.node_ids()

    display: list[Node] = []
    for main in analysis.main_flow:
        detected = detected_subprocesses(analysis.branches.get(main.id, []), analysis.parents)
        stored = stored_by_id.get(main.id)
        subprocesses = merge_subprocesses(
            stored.subprocesses if stored else [],
            detected,
            deleted.get(main.id, ()),
            known_ids,
        )
        display.append(main.model_copy(update={
            "label": label_to_text(main.label),
            "owner": stored.owner if stored else "",
            "subprocesses": subprocesses,
        }))
    return display


def prune_connections(nodes: list[Node], connections: list[Connection]) -> list[Connection]:
    """Drop connections to unknown ids and collapse exact duplicates.

    Known ids are the node ids plus the backing cell ids of their sub-steps.
    """
    known = {node.id for node in nodes}
    for node in nodes:
        known.update(item.cell_id for item in node.subprocesses if item.cell_id)

    pruned: list[Connection] = []
    seen: set[tuple[str, str]] = set()
    for conn in connections:
        if conn.source not in known or conn.target not in known:
            logger.debug("pruning connection %s -> %s, endpoint unknown", conn.source, conn.target)
            continue
        if conn.key in seen:
            continue
        seen.add(conn.key)
        pruned.append(conn)
    return pruned
