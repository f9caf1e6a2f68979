"""Source loading for staticcal.

Reads already-parsed event definition records, one file per configured
source, and hands them to the engine as SourceFeed objects. A source that
cannot be read becomes a feed carrying an error instead of raising, so one
missing file never stops the other sources from being published.

Accepted file shapes (YAML or JSON, by suffix)::

    - id: standup
      summary: Daily standup
      start: 2024-01-01T09:00:00
      end: 2024-01-01T09:30:00
      time_zone: Europe/Berlin
      rrule: FREQ=DAILY

or a mapping with ``events:`` (and an optional ``title:``) holding that list.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from .config_loader import SourceConfig
from .exceptions import SourceRetrievalError
from .models import EventDefinition, SourceFeed

logger = logging.getLogger(__name__)


def read_records(path: Path) -> tuple[list[Any], Optional[str]]:
    """Read raw definition records (and an optional title) from a file.

    Raises:
        SourceRetrievalError: If the file is missing, unreadable, or malformed
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SourceRetrievalError(f"Cannot read {path}: {exc}") from exc

    try:
        loaded = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SourceRetrievalError(f"Cannot parse {path}: {exc}") from exc

    if loaded is None:
        return [], None
    if isinstance(loaded, dict):
        records = loaded.get("events") or []
        title = loaded.get("title")
    else:
        records, title = loaded, None
    if not isinstance(records, list):
        raise SourceRetrievalError(f"{path} does not contain a list of events")
    return records, str(title) if title else None


def parse_definitions(records: Iterable[Any], source_id: str) -> tuple[list[EventDefinition], list[str]]:
    """Validate raw records into EventDefinitions.

    Returns:
        (definitions, rejected) where rejected holds one message per bad record
    """
    definitions: list[EventDefinition] = []
    rejected: list[str] = []
    for position, record in enumerate(records):
        if not isinstance(record, dict):
            rejected.append(f"record {position} is not a mapping")
            continue
        data = dict(record)
        data.setdefault("source_id", source_id)
        if "id" in data:
            data["id"] = str(data["id"])
        for key in ("start", "end"):
            value = data.get(key)
            # YAML reads bare dates as date objects
            if isinstance(value, date) and not isinstance(value, datetime):
                data[key] = datetime.combine(value, time.min)
        try:
            definitions.append(EventDefinition.model_validate(data))
        except ValidationError as exc:
            label = data.get("id", position)
            rejected.append(f"record {label!s}: {exc.error_count()} validation error(s)")
            logger.debug("Rejected record %s from %s: %s", label, source_id, exc)
    return definitions, rejected


def load_source(source: SourceConfig) -> SourceFeed:
    """Load one configured source.

    Raises:
        SourceRetrievalError: If the source file cannot be retrieved
    """
    try:
        records, title = read_records(Path(source.path))
    except SourceRetrievalError as exc:
        exc.source_id = source.name
        raise
    definitions, rejected = parse_definitions(records, source.name)
    logger.debug(
        "Source %s: %d definitions (%d rejected)", source.name, len(definitions), len(rejected)
    )
    return SourceFeed(
        source_id=source.name,
        definitions=definitions,
        title=source.title or title,
        rejected=rejected,
    )


def load_source_feeds(sources: Iterable[SourceConfig]) -> list[SourceFeed]:
    """Load every configured source, in configured order.

    Failed sources are returned as feeds with ``error`` set and no definitions.
    """
    feeds = []
    for source in sources:
        try:
            feeds.append(load_source(source))
        except SourceRetrievalError as exc:
            logger.warning("Source %s unavailable: %s", source.name, exc)
            feeds.append(SourceFeed(source_id=source.name, title=source.title, error=str(exc)))
    return feeds
