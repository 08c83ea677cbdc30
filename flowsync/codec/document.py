"""Splitting a stored document into an opaque wrapper and its graph body.

Everything outside the <diagram> payload (mxfile host/version/etag attributes,
the diagram name and id, surrounding whitespace) is kept as prefix/suffix text
and spliced back unchanged, so it survives any number of edit cycles.
"""

import re
from dataclasses import dataclass

from flowsync.codec.compression import compress_body, decompress_body, looks_compressed

DEFAULT_DIAGRAM_NAME = "Page-1"

_DIAGRAM_PATTERN = re.compile(r"<diagram\b([^>]*)>(.*?)</diagram>", re.DOTALL)
_SELF_CLOSING_DIAGRAM = re.compile(r"<diagram\b([^>]*)/>")
_ATTRIBUTE_PATTERN = re.compile(r'([\w:.-]+)\s*=\s*"([^"]*)"')


@dataclass
class DiagramDocument:
    """A stored document split around its graph body."""

    prefix: str
    payload: str
    suffix: str
    compressed: bool
    diagram_name: str = DEFAULT_DIAGRAM_NAME
    diagram_id: str | None = None

    @property
    def body(self) -> str:
        """The literal mxGraphModel XML (decompressed if needed)."""
        if self.compressed:
            return decompress_body(self.payload)
        return self.payload

    def render(self, body: str) -> str:
        """Rebuild the full document text around a (possibly edited) body."""
        payload = compress_body(body) if self.compressed else body
        return f"{self.prefix}{payload}{self.suffix}"

    @property
    def text(self) -> str:
        return f"{self.prefix}{self.payload}{self.suffix}"


def _attributes(fragment: str) -> dict[str, str]:
    return dict(_ATTRIBUTE_PATTERN.findall(fragment))


def split_document(text: str) -> DiagramDocument:
    """Locate the graph body in a stored document.

    Accepts an <mxfile> with a compressed or literal first <diagram>, a bare
    <mxGraphModel>, or a bare compressed payload.
    """
    if "<mxfile" in text and "<diagram" in text:
        match = _DIAGRAM_PATTERN.search(text)
        if match is None:
            # empty page written as <diagram .../>
            empty = _SELF_CLOSING_DIAGRAM.search(text)
            if empty is not None:
                attrs = _attributes(empty.group(1))
                return DiagramDocument(
                    prefix=text,
                    payload="",
                    suffix="",
                    compressed=False,
                    diagram_name=attrs.get("name", DEFAULT_DIAGRAM_NAME),
                    diagram_id=attrs.get("id"),
                )
        if match is not None:
            attrs = _attributes(match.group(1))
            content = match.group(2)
            stripped = content.strip()
            lead = len(content) - len(content.lstrip())
            start = match.start(2) + lead
            end = start + len(stripped)
            return DiagramDocument(
                prefix=text[:start],
                payload=stripped,
                suffix=text[end:],
                compressed=looks_compressed(stripped),
                diagram_name=attrs.get("name", DEFAULT_DIAGRAM_NAME),
                diagram_id=attrs.get("id"),
            )

    stripped = text.strip()
    lead = len(text) - len(text.lstrip())
    return DiagramDocument(
        prefix=text[:lead],
        payload=stripped,
        suffix=text[lead + len(stripped):],
        compressed=looks_compressed(stripped),
    )


def read_body(text: str) -> str:
    """Shortcut: the literal graph body of a stored document."""
    return split_document(text).body
