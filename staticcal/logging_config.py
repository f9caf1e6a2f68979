"""
Central logging configuration for staticcal.

Keeps staticcal module loggers at INFO (DEBUG when troubleshooting) and
quiets the libraries it leans on.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

STATICCAL_MODULES = [
    "staticcal",
    "staticcal.engine",
    "staticcal.sources",
    "staticcal.rrule_expander",
    "staticcal.event_index",
    "staticcal.event_merger",
    "staticcal.views",
    "staticcal.pagination",
    "staticcal.config_loader",
]


def build_console_handler(level: int = logging.NOTSET) -> logging.Handler:
    """Stream handler on stderr with the colorized level column."""
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt="%H:%M:%S", log_colors=LOG_COLORS))
    return handler


LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(
    debug_mode: bool = False,
    force_debug: Optional[bool] = None,
    level_name: Optional[str] = None,
) -> None:
    """
    Configure logging levels for staticcal.

    Args:
        debug_mode: Whether to enable debug logging for staticcal modules
        force_debug: Override debug mode setting (None to use env var detection)
        level_name: Configured level (the config ``log_level``) used when not in debug mode

    Environment Variables:
        STATICCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        STATICCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("STATICCAL_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("STATICCAL_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    configured_level = logging.INFO
    if level_name and level_name.upper() in LEVEL_NAMES:
        configured_level = getattr(logging, level_name.upper())

    root_level = logging.DEBUG if final_debug else configured_level
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    # Don't use force=True; an existing handler (e.g. pytest's) stays in place
    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    if not root_logger.handlers:
        root_logger.addHandler(build_console_handler(root_level))

    logger_config: dict[str, int] = {
        "dateutil": logging.WARNING,
        "yaml": logging.WARNING,
        "concurrent.futures": logging.WARNING,
    }

    staticcal_level = logging.DEBUG if final_debug else configured_level
    for module in STATICCAL_MODULES:
        logger_config[module] = staticcal_level

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.debug("Debug logging enabled for staticcal modules")
