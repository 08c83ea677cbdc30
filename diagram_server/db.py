"""database initialization helpers."""

from diagram_server.diagram_db import init_db as init_diagram_db


def init_all() -> None:
    """initialize all sqlite tables."""
    init_diagram_db()
