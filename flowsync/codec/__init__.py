"""Interchange codec: compression and document wrapper handling."""

from flowsync.codec.compression import (
    compress_body,
    decode_uri_component,
    decompress_body,
    encode_uri_component,
    looks_compressed,
)
from flowsync.codec.document import (
    DEFAULT_DIAGRAM_NAME,
    DiagramDocument,
    read_body,
    split_document,
)

__all__ = [
    "compress_body",
    "decode_uri_component",
    "decompress_body",
    "encode_uri_component",
    "looks_compressed",
    "DEFAULT_DIAGRAM_NAME",
    "DiagramDocument",
    "read_body",
    "split_document",
]
