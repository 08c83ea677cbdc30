"""Convenience wrapper for one form editing session.

Provides a simple interface over extraction, flow analysis, patching and
rebuilding with minimal boilerplate.
"""

import logging
from dataclasses import dataclass, field

from flowsync.analysis.flow_analyzer import FlowAnalysis, analyze_flow
from flowsync.analysis.subprocess_merge import (
    build_display_nodes,
    compact_subprocesses,
    prune_connections,
    subprocess_key,
)
from flowsync.codec.document import DEFAULT_DIAGRAM_NAME
from flowsync.config import DEFAULT_SETTINGS, EngineSettings
from flowsync.models.cells import Connection
from flowsync.models.process import Node, ParsedDiagram, Subprocess
from flowsync.parsing.graph_extractor import extract_document
from flowsync.patching.builder import build_graph, wrap_document
from flowsync.patching.patch_engine import patch_document

logger = logging.getLogger(__name__)


@dataclass
class SessionSave:
    """What a save produced."""

    document: str
    nodes: list[Node]
    connections: list[Connection] = field(default_factory=list)
    applied: bool = True
    changed: bool = False


class FlowSession:
    """High-level interface for the form surface.

    Usage:
        from flowsync import FlowSession

        session = FlowSession()
        nodes = session.load(document_text, stored_nodes)
        nodes[0].subprocesses.append(Subprocess(name="Check stock"))
        saved = session.save(latest_document_text, nodes)

    The node list returned by load() is remembered as the baseline; a save
    deletes only what was removed relative to it.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        """Initialize an empty session.

        Args:
            settings: engine settings; defaults are used when None.
        """
        self.settings = settings or DEFAULT_SETTINGS
        self.document: str | None = None
        self.parsed = ParsedDiagram()
        self.analysis: FlowAnalysis | None = None
        self.nodes: list[Node] = []
        self._stored: list[Node] = []
        self._baseline: list[Node] | None = None
        # step id -> names of sub-steps deleted by the user in this session
        self._deleted: dict[str, set[str]] = {}

    @property
    def connections(self) -> list[Connection]:
        """Connections of the currently loaded document."""
        return self.parsed.connections

    @property
    def baseline(self) -> list[Node] | None:
        return self._baseline

    def load(self, document: str, stored_nodes: list[Node] | None = None) -> list[Node]:
        """Load a document and build the form view.

        Args:
            document: stored document text (compressed or literal)
            stored_nodes: node records kept next to the document (owners and
                user-authored sub-steps)

        Returns:
            Main-flow nodes with merged sub-steps.

        Raises:
            DecompressionFailure: the stored body cannot be inflated.
        """
        self.document = document
        if stored_nodes is not None:
            self._stored = list(stored_nodes)
        self.parsed = extract_document(document)
        self.analysis = analyze_flow(self.parsed.nodes, self.parsed.connections, self.settings)
        self.nodes = build_display_nodes(
            self.parsed,
            self.analysis,
            self._stored,
            self._deleted,
            self.settings,
        )
        self._baseline = [node.model_copy(deep=True) for node in self.nodes]
        logger.debug("loaded diagram with %d steps", len(self.nodes))
        return self.nodes

    def reload(self, document: str) -> list[Node]:
        """Explicit refresh after the document changed on the visual surface."""
        return self.load(document)

    def _node(self, node_id: str) -> tuple[int, Node]:
        for position, node in enumerate(self.nodes):
            if node.id == node_id:
                return position, node
        raise KeyError(f"no step with id {node_id!r} in this session")

    def delete_subprocess(self, node_id: str, index: int) -> Subprocess:
        """Remove the index-th sub-step of a step and remember the deletion.

        Raises:
            KeyError: unknown step id.
            IndexError: no sub-step at that position.
        """
        position, node = self._node(node_id)
        items = list(node.subprocesses)
        removed = items[index]
        keep = [i != index for i in range(len(items))]
        self.nodes[position] = node.model_copy(update={"subprocesses": compact_subprocesses(items, keep)})
        self._deleted.setdefault(node_id, set()).add(subprocess_key(removed.name))
        logger.debug("sub-step %r of step %s marked as deleted", removed.name, node_id)
        return removed

    def save(self, latest_document: str | None = None, nodes: list[Node] | None = None) -> SessionSave:
        """Patch the latest persisted document with the edited nodes.

        Args:
            latest_document: the document as persisted right now; the loaded
                document is used when None
            nodes: edited nodes; the session's own node list when None

        Returns:
            SessionSave with the new document text, nodes carrying allocated
            ids, and the connections extracted from the new document.
        """
        if self.document is None and latest_document is None:
            raise ValueError("nothing loaded and no document given")
        document = latest_document if latest_document is not None else self.document
        nodes = list(nodes) if nodes is not None else list(self.nodes)

        result = patch_document(document, nodes, self._baseline, self.settings)
        if not result.applied:
            logger.warning("save did not apply: %s", result.reason)

        self._stored = result.nodes
        self.load(result.document)
        return SessionSave(
            document=result.document,
            nodes=result.nodes,
            connections=self.parsed.connections,
            applied=result.applied,
            changed=result.changed,
        )

    def rebuild(
        self,
        nodes: list[Node] | None = None,
        connections: list[Connection] | None = None,
        name: str = DEFAULT_DIAGRAM_NAME,
    ) -> str:
        """Regenerate the whole document from nodes and connections.

        Returns:
            The new document text, which also becomes the loaded document.
        """
        nodes = list(nodes) if nodes is not None else list(self.nodes)
        connections = connections if connections is not None else self.connections
        result = build_graph(nodes, prune_connections(nodes, connections), self.settings)
        document = wrap_document(result.body, name=name)
        self._stored = result.nodes
        self.load(document)
        return document

    def __repr__(self) -> str:
        return f"FlowSession(steps={len(self.nodes)}, loaded={self.document is not None})"
