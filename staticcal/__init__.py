"""staticcal - temporal event index and view materialization for static calendars.

Expands calendar definitions from several sources into one ordered,
deduplicated event index and slices it into day, week, month, agenda and
per-event windows ready for a static site renderer.
"""

__version__ = "0.1.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    This sets the colorized formatter and level so that early startup
    messages are visible on the console. Callers may adjust the level later
    (e.g. from config).

    The STATICCAL_DEBUG environment variable (truthy values: "1", "true",
    "yes", "on") forces DEBUG verbosity without changing code.
    """
    import logging
    import os

    from .logging_config import build_console_handler

    debug_env = os.environ.get("STATICCAL_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output.
    if not root.handlers:
        root.addHandler(build_console_handler())

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )
