"""Logging configuration shared by the API server and the CLI.

The library itself only creates module loggers; handlers are installed here.
"""

import logging
import sys


def configure_logging(level: str | int = logging.INFO) -> None:
    """Install a single stdout handler with an ISO timestamp format."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger.setLevel(level if isinstance(level, int) else level.upper())
    root_logger.addHandler(handler)

    # uvicorn access lines and httpx request lines drown out engine messages
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
