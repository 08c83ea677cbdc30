"""Conversion between HTML cell labels and the plain text the form edits."""

import html
import re

_BREAK_TAGS = re.compile(r"<br\s*/?>|</(?:p|div|li)\s*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_MARKUP = re.compile(r"<[a-zA-Z/][^>]*>")


def label_to_text(label: str | None) -> str:
    """Reduce a (possibly HTML) label to plain text, one line per block."""
    if not label:
        return ""
    text = _BREAK_TAGS.sub("\n", label)
    text = _ANY_TAG.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def has_markup(text: str) -> bool:
    return bool(_MARKUP.search(text))


def text_to_label(text: str, html_style: bool) -> str:
    """Turn edited plain text into a cell value.

    Text that already carries markup is kept verbatim. For html=1 cells the
    text is escaped and multiple lines become <div> blocks.
    """
    if has_markup(text) or not html_style:
        return text
    lines = text.split("\n")
    if len(lines) == 1:
        return html.escape(text, quote=False)
    return "".join(f"<div>{html.escape(line, quote=False)}</div>" for line in lines)
