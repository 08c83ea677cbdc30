"""Error taxonomy for the diagram synchronization engine.

Only DecompressionFailure and IdentifierExhaustion are meant to reach callers.
MalformedDocument and StructuralValidationFailure are recovered close to where
they are raised (empty graph, original body respectively).
"""


class FlowSyncError(Exception):
    """Base class for every error raised by flowsync."""


class MalformedDocument(FlowSyncError):
    """The graph body is not well-formed XML or has no mxGraphModel root."""


class DecompressionFailure(FlowSyncError):
    """Neither the raw nor the zlib-header inflate variant could decode the body."""


class IdentifierExhaustion(FlowSyncError):
    """The id allocator kept colliding with existing ids and gave up."""


class StructuralValidationFailure(FlowSyncError):
    """A patched body failed its post-patch sanity check."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
