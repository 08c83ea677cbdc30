#!/usr/bin/env python3
"""CLI script to analyze a diagram file.

Usage:
    python -m flowsync.analysis.analyze_drawio <process.drawio>

    # or with JSON output
    python -m flowsync.analysis.analyze_drawio <process.drawio> --json

    # or store it on a running diagram server as well
    python -m flowsync.analysis.analyze_drawio <process.drawio> --upload http://localhost:8000
"""

import argparse
import json
import sys
from pathlib import Path

from flowsync.analysis.flow_analyzer import FlowAnalysis, analyze_flow
from flowsync.analysis.subprocess_merge import build_display_nodes
from flowsync.config import load_settings
from flowsync.errors import DecompressionFailure
from flowsync.models.process import Node, ParsedDiagram
from flowsync.parsing.graph_extractor import extract_document
from flowsync.parsing.labels import label_to_text
from flowsync.utils.logging import configure_logging


def _name(node: Node) -> str:
    text = label_to_text(node.label).replace("\n", " ")
    return f"{text} [{node.id}]" if text else f"[{node.id}]"


def format_analysis(parsed: ParsedDiagram, analysis: FlowAnalysis, display: list[Node]) -> str:
    """Format flow analysis for human-readable output."""
    lines = []
    lines.append("=" * 60)
    lines.append("DIAGRAM SUMMARY")
    lines.append("=" * 60)
    lines.append("")

    # basic info
    lines.append(f"Page:        {parsed.diagram_id}")
    lines.append(f"Steps:       {len(parsed.nodes)}")
    lines.append(f"Connections: {len(parsed.connections)}")
    lines.append("")

    # main flow
    lines.append("-" * 40)
    lines.append("MAIN FLOW")
    lines.append("-" * 40)
    for position, node in enumerate(analysis.main_flow, 1):
        lines.append(f"  {position:>3}. {_name(node)}")
    if not analysis.main_flow:
        lines.append("  (empty diagram)")
    if analysis.used_fallback:
        lines.append("  (no start-to-end path, topological order shown)")
    lines.append("")

    # sub-steps as the form shows them
    with_subprocesses = [node for node in display if node.subprocesses]
    if with_subprocesses:
        lines.append("-" * 40)
        lines.append("SUB-STEPS")
        lines.append("-" * 40)
        for node in with_subprocesses:
            lines.append(f"  {_name(node)}")
            for index, item in enumerate(node.subprocesses):
                origin = "detected" if item.is_detected else "user"
                lines.append(f"    {index}. {item.name} ({item.shape.value}, {item.parent}, {origin})")
        lines.append("")

    if analysis.orphans:
        lines.append("-" * 40)
        lines.append("ORPHANS (not shown in the form)")
        lines.append("-" * 40)
        for node_id in analysis.orphans:
            lines.append(f"  • {node_id}")
        lines.append("")

    if analysis.budget_exhausted:
        lines.append("-" * 40)
        lines.append("! main-flow search stopped early, result may not be the longest path")
        lines.append("-" * 40)
        lines.append("")

    return "\n".join(lines)


def analysis_to_dict(parsed: ParsedDiagram, analysis: FlowAnalysis, display: list[Node]) -> dict:
    """Convert analysis results to a JSON-serializable dict."""
    return {
        "diagramId": parsed.diagram_id,
        "mainFlow": analysis.main_flow_ids,
        "branchesByMainNode": {
            main_id: [node.id for node in nodes] for main_id, nodes in analysis.branches.items()
        },
        "orphans": analysis.orphans,
        "usedFallback": analysis.used_fallback,
        "nodes": [node.model_dump(mode="json", by_alias=True) for node in display],
        "connections": [conn.model_dump(mode="json", by_alias=True) for conn in parsed.connections],
    }


def main():
    parser = argparse.ArgumentParser(
        description="Analyze a diagram file and print its main flow and sub-steps."
    )
    parser.add_argument(
        "diagram_file",
        type=Path,
        help="path to the .drawio / .xml document",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="output analysis as JSON instead of human-readable format",
    )
    parser.add_argument(
        "--upload",
        metavar="BASE_URL",
        help="also store the document on a diagram server",
    )

    args = parser.parse_args()
    settings = load_settings()
    configure_logging(settings.log_level)

    if not args.diagram_file.exists():
        print(f"Error: diagram file not found: {args.diagram_file}", file=sys.stderr)
        sys.exit(1)

    text = args.diagram_file.read_text(encoding="utf-8")
    try:
        parsed = extract_document(text)
    except DecompressionFailure as exc:
        print(f"Error: could not decompress diagram: {exc}", file=sys.stderr)
        sys.exit(1)

    analysis = analyze_flow(parsed.nodes, parsed.connections, settings)
    display = build_display_nodes(parsed, analysis, settings=settings)

    if args.json:
        print(json.dumps(analysis_to_dict(parsed, analysis, display), indent=2))
    else:
        print(format_analysis(parsed, analysis, display))

    if args.upload:
        from flowsync.client import DiagramClient, DiagramClientError

        try:
            record = DiagramClient(base_url=args.upload).upload(
                args.diagram_file.stem, text, source_file_name=args.diagram_file.name
            )
        except DiagramClientError as exc:
            print(f"Error: upload failed: {exc}", file=sys.stderr)
            sys.exit(1)
        print(f"Uploaded as {record['id']}", file=sys.stderr)


if __name__ == "__main__":
    main()
