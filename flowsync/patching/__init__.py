"""Incremental patching and from-scratch building of diagram bodies."""

from flowsync.patching.builder import build_document, build_graph, build_graph_body, wrap_document
from flowsync.patching.id_allocator import IdAllocator, scan_ids
from flowsync.patching.patch_engine import (
    PatchResult,
    apply_patch,
    patch_document,
    validate_body,
)

__all__ = [
    "build_document",
    "build_graph",
    "build_graph_body",
    "wrap_document",
    "IdAllocator",
    "scan_ids",
    "PatchResult",
    "apply_patch",
    "patch_document",
    "validate_body",
]
