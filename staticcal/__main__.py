"""Command-line entry for staticcal.

Loads the configuration and the configured sources, builds the event index
and writes one JSON data context per window (plus a listing per
granularity) for an external renderer to turn into pages.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Optional

import yaml

from . import _init_logging
from .config_loader import load_config
from .engine import CalendarEngine
from .exceptions import DuplicateKeyError
from .logging_config import configure_logging
from .models import Granularity
from .sources import load_source_feeds

logger = logging.getLogger(__name__)


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for staticcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="staticcal",
        description="staticcal - materialize calendar views for static publication",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  staticcal --config staticcal.yaml                   # All configured granularities into ./output
  staticcal --today 2024-01-02 --granularity day      # Day windows as of a fixed date
  STATICCAL_DEBUG=1 staticcal --output site/data      # Verbose run
        """,
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to the YAML/JSON configuration (default: ./staticcal.yaml)",
    )
    parser.add_argument(
        "--today",
        metavar="DATE",
        type=date.fromisoformat,
        help="ISO date treated as today (default: from config, else the current date)",
    )
    parser.add_argument(
        "--output",
        metavar="DIR",
        default="output",
        help="Directory receiving the JSON window contexts (default: ./output)",
    )
    parser.add_argument(
        "--granularity",
        action="append",
        choices=[g.value for g in Granularity],
        help="Granularity to generate; repeat for several (default: from config)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def write_views(engine: CalendarEngine, output: Path) -> int:
    """Write every window context and listing below ``output``.

    Returns:
        Number of window files written
    """
    written = 0
    for granularity in engine.granularities:
        for window in engine.windows(granularity):
            _write_json(output / Path(window.path).with_suffix(".json"), window.to_context())
            written += 1
        listing = engine.listing(granularity)
        _write_json(output / granularity.value / "index.json", listing.model_dump(mode="json"))
        logger.debug("Wrote %s listing with %d windows", granularity.value, len(listing.windows))
    return written


def main(argv: Optional[list[str]] = None) -> int:
    """Run the staticcal CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    _init_logging("DEBUG" if args.debug else None)
    configure_logging(debug_mode=args.debug)

    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error("Cannot load configuration: %s", exc)
        return 2
    configure_logging(debug_mode=args.debug, level_name=config.log_level)

    if args.today:
        config.today = args.today.isoformat()
    if args.granularity:
        config.granularities = list(dict.fromkeys(args.granularity))

    engine = CalendarEngine(config)
    feeds = load_source_feeds(config.sources)
    try:
        report = engine.run(feeds)
    except DuplicateKeyError:
        logger.exception("Event index invariant violated; aborting")
        return 1

    written = write_views(engine, Path(args.output))
    print(report.summary())
    print(f"Windows written: {written} to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
