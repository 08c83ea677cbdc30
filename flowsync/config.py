"""Engine settings.

Defaults mirror the constants the diagrams were historically written with;
every value can be overridden with a FLOWSYNC_* environment variable.
"""

import os

from pydantic import BaseModel


class EngineSettings(BaseModel):
    """Tunable constants for id allocation, layout of new cells and flow analysis."""

    model_config = {"frozen": True}

    # id allocation
    subprocess_id_floor: int = 10000
    subprocess_id_offset: int = 1000
    edge_id_span: int = 10000
    max_id_attempts: int = 100000

    # geometry of sub-step vertices created by the patch engine
    subprocess_width: float = 120
    subprocess_height: float = 60
    subprocess_spacing: float = 100
    subprocess_row_spacing: float = 80

    # geometry of vertices written by the from-scratch builder
    node_width: float = 120
    node_height: float = 60
    ellipse_height: float = 80

    # main-flow search budget (DFS node expansions before giving up)
    max_flow_steps: int = 200000

    log_level: str = "INFO"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def load_settings() -> EngineSettings:
    """Build settings from the environment, falling back to defaults."""
    defaults = EngineSettings()
    return EngineSettings(
        subprocess_id_floor=_env_int("FLOWSYNC_SUBPROCESS_ID_FLOOR", defaults.subprocess_id_floor),
        subprocess_id_offset=_env_int("FLOWSYNC_SUBPROCESS_ID_OFFSET", defaults.subprocess_id_offset),
        edge_id_span=_env_int("FLOWSYNC_EDGE_ID_SPAN", defaults.edge_id_span),
        max_id_attempts=_env_int("FLOWSYNC_MAX_ID_ATTEMPTS", defaults.max_id_attempts),
        max_flow_steps=_env_int("FLOWSYNC_MAX_FLOW_STEPS", defaults.max_flow_steps),
        log_level=os.getenv("FLOWSYNC_LOG_LEVEL", defaults.log_level),
    )


DEFAULT_SETTINGS = EngineSettings()
