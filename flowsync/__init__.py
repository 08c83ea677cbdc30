"""flowsync - keeps a flowchart diagram and its step-by-step form in sync."""

from flowsync.analysis.flow_analyzer import FlowAnalysis, analyze_flow
from flowsync.analysis.subprocess_merge import build_display_nodes, prune_connections
from flowsync.codec.compression import compress_body, decompress_body
from flowsync.codec.document import DiagramDocument, split_document
from flowsync.config import EngineSettings, load_settings
from flowsync.errors import (
    DecompressionFailure,
    FlowSyncError,
    IdentifierExhaustion,
    MalformedDocument,
    StructuralValidationFailure,
)
from flowsync.models.cells import Connection
from flowsync.models.process import Node, ParsedDiagram, Subprocess
from flowsync.models.shapes import ShapeKind
from flowsync.parsing.graph_extractor import extract_document, extract_graph
from flowsync.patching.builder import build_document, build_graph_body
from flowsync.patching.patch_engine import PatchResult, apply_patch, patch_document
from flowsync.session import FlowSession, SessionSave

__all__ = [
    # Models
    "Connection",
    "Node",
    "ParsedDiagram",
    "ShapeKind",
    "Subprocess",
    # Codec
    "DiagramDocument",
    "compress_body",
    "decompress_body",
    "split_document",
    # Extraction and analysis
    "FlowAnalysis",
    "analyze_flow",
    "build_display_nodes",
    "extract_document",
    "extract_graph",
    "prune_connections",
    # Patching and building
    "PatchResult",
    "apply_patch",
    "build_document",
    "build_graph_body",
    "patch_document",
    # Errors
    "DecompressionFailure",
    "FlowSyncError",
    "IdentifierExhaustion",
    "MalformedDocument",
    "StructuralValidationFailure",
    # High-level APIs
    "EngineSettings",
    "FlowSession",
    "SessionSave",
    "load_settings",
]
