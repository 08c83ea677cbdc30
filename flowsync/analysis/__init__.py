"""Flow analysis: main flow, branches and the form view built from them."""

from flowsync.analysis.flow_analyzer import FlowAnalysis, analyze_diagram, analyze_flow
from flowsync.analysis.subprocess_merge import (
    build_display_nodes,
    detected_subprocesses,
    merge_subprocesses,
    prune_connections,
)

__all__ = [
    "FlowAnalysis",
    "analyze_diagram",
    "analyze_flow",
    "build_display_nodes",
    "detected_subprocesses",
    "merge_subprocesses",
    "prune_connections",
]
