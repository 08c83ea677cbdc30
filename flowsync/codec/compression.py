"""Compression of mxGraph bodies as draw.io stores them.

compressed = base64(raw_deflate(encodeURIComponent(xml)))
"""

import base64
import binascii
import logging
import urllib.parse
import zlib

from flowsync.errors import DecompressionFailure

logger = logging.getLogger(__name__)

# characters encodeURIComponent leaves alone besides letters, digits and "_.-~"
_URI_COMPONENT_SAFE = "!*'()"


def encode_uri_component(text: str) -> str:
    """Percent-encode text exactly like JavaScript's encodeURIComponent."""
    return urllib.parse.quote(text, safe=_URI_COMPONENT_SAFE)


def decode_uri_component(text: str) -> str:
    """Inverse of encode_uri_component."""
    return urllib.parse.unquote(text, errors="strict")


def looks_compressed(payload: str) -> bool:
    """True when a <diagram> payload is a base64 blob rather than literal XML."""
    stripped = payload.strip()
    return bool(stripped) and not stripped.startswith("<") and "<mxGraphModel" not in stripped


def compress_body(body: str) -> str:
    """Compress a literal graph body into the draw.io base64 form."""
    encoded = encode_uri_component(body).encode("ascii")
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS)
    deflated = compressor.compress(encoded) + compressor.flush()
    return base64.b64encode(deflated).decode("ascii")


def decompress_body(payload: str) -> str:
    """Decompress a base64 payload back into the literal graph body.

    Raw deflate is tried first; documents written by other tools sometimes
    carry a zlib header, so that variant is tried before giving up.
    """
    payload = payload.strip()
    if not payload:
        return ""

    try:
        raw = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise DecompressionFailure(f"payload is not valid base64: {exc}") from exc

    try:
        inflated = zlib.decompress(raw, -zlib.MAX_WBITS)
    except zlib.error as raw_error:
        logger.debug("raw inflate failed (%s), retrying with zlib header", raw_error)
        try:
            inflated = zlib.decompress(raw)
        except zlib.error as exc:
            raise DecompressionFailure(
                f"payload could not be inflated (raw: {raw_error}; zlib: {exc})"
            ) from exc

    try:
        return decode_uri_component(inflated.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise DecompressionFailure(f"inflated payload is not UTF-8: {exc}") from exc
