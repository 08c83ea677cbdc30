"""Utility functions for flowsync."""

from flowsync.utils.identifiers import (
    generate_diagram_id,
    generate_page_id,
    numeric_id,
    utc_timestamp,
)
from flowsync.utils.logging import configure_logging

__all__ = [
    "generate_diagram_id",
    "generate_page_id",
    "numeric_id",
    "utc_timestamp",
    "configure_logging",
]
