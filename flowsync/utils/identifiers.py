"""ID generation and timestamp utilities."""

import uuid
from datetime import datetime, timezone


def generate_diagram_id() -> str:
    """Generate a unique stored-diagram ID (UUID4 hex)."""
    return uuid.uuid4().hex


def generate_page_id() -> str:
    """Generate a draw.io style page id (20 url-safe characters)."""
    return uuid.uuid4().hex[:20]


def utc_timestamp() -> str:
    """Generate an ISO8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


def numeric_id(value: str) -> int | None:
    """Return the integer value of a cell id, or None for textual ids."""
    value = value.strip()
    if value.isascii() and value.isdigit():
        return int(value)
    return None
