"""Logging setup for applications embedding the engine.

The library itself never configures logging; call ``configure_logging`` once
from the entry point.
"""

import logging

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Configure the stdlib root logger and structlog at the same level."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(
        level=numeric,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(min_level=numeric),
    )
