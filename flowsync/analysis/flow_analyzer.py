"""Infer the main flow and branch attachments of an arbitrary directed graph.

The main flow is the longest simple path from an in-degree-0 node to an
out-degree-0 node. Every other node is a branch and is attached to the
main-flow node it logically depends from.

Tie-break: start nodes are tried in document order and children in
connection order; a path only replaces the current best when it is strictly
longer, so the first longest path discovered wins. For a fixed input this is
fully deterministic.
"""

import logging
from collections import deque
from dataclasses import dataclass, field

from flowsync.config import DEFAULT_SETTINGS, EngineSettings
from flowsync.models.cells import Connection
from flowsync.models.process import Node, ParsedDiagram

logger = logging.getLogger(__name__)


@dataclass
class FlowAnalysis:
    """Result of flow analysis over one graph."""

    main_flow: list[Node]
    # main-flow node id -> branch nodes attached to it, in document order
    branches: dict[str, list[Node]] = field(default_factory=dict)
    # branch node ids with no resolvable main-flow ancestor
    orphans: list[str] = field(default_factory=list)
    # adjacency restricted to edges whose endpoints are both known nodes
    children: dict[str, list[str]] = field(default_factory=dict)
    parents: dict[str, list[str]] = field(default_factory=dict)
    used_fallback: bool = False
    budget_exhausted: bool = False

    @property
    def main_flow_ids(self) -> list[str]:
        return [node.id for node in self.main_flow]

    def anchor_of(self, node_id: str) -> str | None:
        """Main-flow node a branch node is attached to, if any."""
        for main_id, branch_nodes in self.branches.items():
            if any(branch.id == node_id for branch in branch_nodes):
                return main_id
        return None


def build_adjacency(
    nodes: list[Node],
    connections: list[Connection],
) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    """Children/parents maps over known nodes; duplicate edges collapse to one."""
    children: dict[str, list[str]] = {node.id: [] for node in nodes}
    parents: dict[str, list[str]] = {node.id: [] for node in nodes}
    seen: set[tuple[str, str]] = set()
    for conn in connections:
        if conn.source not in children or conn.target not in children:
            continue
        if conn.key in seen:
            continue
        seen.add(conn.key)
        children[conn.source].append(conn.target)
        parents[conn.target].append(conn.source)
    return children, parents


def _longest_path(
    starts: list[str],
    children: dict[str, list[str]],
    max_steps: int,
) -> tuple[list[str], bool]:
    """Longest simple start->end path, searched depth-first without recursion."""
    best: list[str] = []
    steps = 0

    for start in starts:
        path = [start]
        on_path = {start}
        if not children[start]:
            if len(path) > len(best):
                best = list(path)
            continue

        stack = [iter(children[start])]
        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if child in on_path:
                continue

            steps += 1
            if steps > max_steps:
                return best, True

            path.append(child)
            on_path.add(child)
            if not children[child]:
                # reached an end node
                if len(path) > len(best):
                    best = list(path)
                path.pop()
                on_path.discard(child)
                continue
            stack.append(iter(children[child]))

    return best, False


def _topological_fallback(
    seed: str,
    children: dict[str, list[str]],
    parents: dict[str, list[str]],
) -> list[str]:
    """Kahn-style order reachable from a single seed node."""
    in_degree = {node_id: len(node_parents) for node_id, node_parents in parents.items()}
    queue = deque([seed])
    visited: set[str] = set()
    order: list[str] = []

    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        order.append(current)
        for child in children[current]:
            in_degree[child] -= 1
            if in_degree[child] == 0 and child not in visited:
                queue.append(child)
    return order


def _find_anchor(
    node_id: str,
    main_index: dict[str, int],
    main_ids: list[str],
    children: dict[str, list[str]],
    parents: dict[str, list[str]],
) -> str | None:
    """Resolve the main-flow node a branch node belongs under."""
    # direct parents, then ancestors through other branch nodes (nearest first)
    visited = {node_id}
    frontier = deque([node_id])
    while frontier:
        current = frontier.popleft()
        for parent in parents[current]:
            if parent in main_index:
                return parent
        for parent in parents[current]:
            if parent not in visited:
                visited.add(parent)
                frontier.append(parent)

    # a branch that re-merges into the flow attaches before the merge point
    for child in children[node_id]:
        if child in main_index:
            position = main_index[child]
            return main_ids[position - 1] if position > 0 else child
    return None


def analyze_flow(
    nodes: list[Node],
    connections: list[Connection],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> FlowAnalysis:
    """Compute the main flow and the branch-to-main-node mapping.

    Args:
        nodes: process nodes in document order
        connections: directed connections; edges to unknown ids are ignored
        settings: engine settings (search budget)

    Returns:
        FlowAnalysis with the main flow, branch mapping and orphans.
    """
    children, parents = build_adjacency(nodes, connections)
    node_by_id = {node.id: node for node in nodes}

    if not any(children.values()):
        return FlowAnalysis(main_flow=list(nodes), children=children, parents=parents)

    starts = [node.id for node in nodes if not parents[node.id]]
    main_ids, exhausted = _longest_path(starts, children, settings.max_flow_steps)
    if exhausted:
        logger.warning(
            "main-flow search stopped after %d steps; using longest path found so far (%d nodes)",
            settings.max_flow_steps,
            len(main_ids),
        )

    used_fallback = False
    if not main_ids:
        seed = starts[0] if starts else nodes[0].id
        main_ids = _topological_fallback(seed, children, parents)
        used_fallback = True
        logger.debug("no start-to-end path found, topological order from %s", seed)

    main_index = {node_id: position for position, node_id in enumerate(main_ids)}
    branches: dict[str, list[Node]] = {}
    orphans: list[str] = []

    for node in nodes:
        if node.id in main_index:
            continue
        anchor = _find_anchor(node.id, main_index, main_ids, children, parents)
        if anchor is None:
            logger.warning("branch node %s has no main-flow ancestor, dropping it", node.id)
            orphans.append(node.id)
            continue
        branches.setdefault(anchor, []).append(node)

    return FlowAnalysis(
        main_flow=[node_by_id[node_id] for node_id in main_ids],
        branches=branches,
        orphans=orphans,
        children=children,
        parents=parents,
        used_fallback=used_fallback,
        budget_exhausted=exhausted,
    )


def analyze_diagram(parsed: ParsedDiagram, settings: EngineSettings = DEFAULT_SETTINGS) -> FlowAnalysis:
    """analyze_flow over a ParsedDiagram."""
    return analyze_flow(parsed.nodes, parsed.connections, settings)
