"""staticcal.config_loader

Config loader for staticcal.

- Reads YAML (PyYAML ``safe_load``) or JSON, chosen by file suffix.
- Exposes a typed dataclass `Config` and a `load_config()` helper that accepts
  an optional path override, then applies ``STATICCAL_*`` environment overrides.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional

import yaml

from .models import Granularity
from .timezone_utils import normalize_timezone_name
from .views import weekday_number

logger = logging.getLogger(__name__)

HORIZON_MODES = ("relative", "span")
DEFAULT_GRANULARITIES = ["month", "week", "day", "agenda", "event"]


@dataclass
class SourceConfig:
    """One configured calendar source, in precedence order."""

    name: str
    path: str
    title: Optional[str] = None


@dataclass
class Config:
    """Typed configuration for staticcal.

    Fields:
        sources: ordered calendar sources; list order is source precedence
        display_timezone: zone every occurrence is rendered in
        today: ISO date treated as today, or "today" to derive it from now
        horizon_mode: "relative" (today +/- N days) or "span" (definition bounds)
        horizon_days_before / horizon_days_after: relative horizon size (0..3650)
        horizon_start / horizon_end: explicit horizon bounds overriding either mode
        weekend_days: weekday names flagged as weekend
        week_start: first weekday of week windows and month rows
        agenda_page_size: occurrences per agenda page (1..500)
        granularities: requested outputs
        default_view: granularity whose index window is the site index
        max_occurrences_per_rule: expansion cap per recurring definition
        materialize_workers: threads used for expansion
        log_level: logging level name
    """

    sources: list[SourceConfig] = field(default_factory=list)
    display_timezone: str = "UTC"
    today: str = "today"
    horizon_mode: str = "relative"
    horizon_days_before: int = 30
    horizon_days_after: int = 365
    horizon_start: Optional[date] = None
    horizon_end: Optional[date] = None
    weekend_days: list[str] = field(default_factory=lambda: ["saturday", "sunday"])
    week_start: str = "sunday"
    agenda_page_size: int = 10
    granularities: list[str] = field(default_factory=lambda: list(DEFAULT_GRANULARITIES))
    default_view: str = "month"
    max_occurrences_per_rule: int = 5000
    materialize_workers: int = 1
    event_time_format: str = "%H:%M"
    day_label_format: str = "%A, %B %-d, %Y"
    week_label_format: str = "%B %Y"
    month_label_format: str = "%B %Y"
    agenda_header_format: str = "%a, %-d %B %Y"
    log_level: str = "INFO"

    @property
    def source_order(self) -> list[str]:
        return [source.name for source in self.sources]

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Values that cannot be used are replaced by their default (or clamped
        into range) with a logged warning; nothing here raises for a bad value.
        """
        if data is None:
            data = {}
        defaults = cls()

        def _coerce_int(key: str, default: int, low: int, high: int) -> int:
            raw = data.get(key, default)
            try:
                value = int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw, default)
                return default
            if value < low:
                logger.warning("%s %d below minimum; coercing to %d", key, value, low)
                return low
            if value > high:
                logger.warning("%s %d above maximum; coercing to %d", key, value, high)
                return high
            return value

        def _coerce_date(key: str) -> Optional[date]:
            raw = data.get(key)
            if raw is None or raw == "":
                return None
            if isinstance(raw, date):
                return raw
            try:
                return date.fromisoformat(str(raw))
            except ValueError:
                logger.warning("Config %s=%r is not an ISO date; ignoring", key, raw)
                return None

        def _coerce_str(key: str, default: str) -> str:
            raw = data.get(key, default)
            return str(raw) if raw is not None else default

        display_timezone = _coerce_str("display_timezone", defaults.display_timezone)
        if normalize_timezone_name(display_timezone) is None:
            logger.warning("display_timezone %r is not a known zone; using UTC", display_timezone)
            display_timezone = "UTC"

        horizon_mode = _coerce_str("horizon_mode", defaults.horizon_mode).lower()
        if horizon_mode not in HORIZON_MODES:
            logger.warning("horizon_mode %r unknown; using 'relative'", horizon_mode)
            horizon_mode = "relative"

        horizon_start = _coerce_date("horizon_start")
        horizon_end = _coerce_date("horizon_end")
        if horizon_start and horizon_end and horizon_end < horizon_start:
            logger.warning("horizon_end %s precedes horizon_start %s; ignoring both", horizon_end, horizon_start)
            horizon_start = horizon_end = None

        today = _coerce_str("today", defaults.today).strip() or "today"
        if today.lower() != "today":
            try:
                date.fromisoformat(today)
            except ValueError:
                logger.warning("Config today=%r is not an ISO date; using 'today'", today)
                today = "today"

        weekend_raw = data.get("weekend_days", defaults.weekend_days)
        if not isinstance(weekend_raw, (list, tuple)):
            logger.warning("Config `weekend_days` is not a list; coercing to single-item list")
            weekend_raw = [weekend_raw]
        weekend_days = [str(d).lower() for d in weekend_raw if _is_weekday(d, "weekend_days")]

        week_start = _coerce_str("week_start", defaults.week_start).lower()
        if not _is_weekday(week_start, "week_start"):
            week_start = defaults.week_start

        granularities_raw = data.get("granularities", defaults.granularities)
        if not isinstance(granularities_raw, (list, tuple)):
            granularities_raw = [granularities_raw]
        granularities = []
        for name in granularities_raw:
            key = str(name).lower()
            if key not in {g.value for g in Granularity}:
                logger.warning("Unknown granularity %r dropped", name)
                continue
            if key not in granularities:
                granularities.append(key)

        default_view = _coerce_str("default_view", defaults.default_view).lower()
        if default_view not in {g.value for g in Granularity}:
            logger.warning("default_view %r unknown; using 'month'", default_view)
            default_view = "month"

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        return cls(
            sources=_coerce_sources(data.get("sources")),
            display_timezone=display_timezone,
            today=today,
            horizon_mode=horizon_mode,
            horizon_days_before=_coerce_int("horizon_days_before", 30, 0, 3650),
            horizon_days_after=_coerce_int("horizon_days_after", 365, 0, 3650),
            horizon_start=horizon_start,
            horizon_end=horizon_end,
            weekend_days=weekend_days,
            week_start=week_start,
            agenda_page_size=_coerce_int("agenda_page_size", 10, 1, 500),
            granularities=granularities,
            default_view=default_view,
            max_occurrences_per_rule=_coerce_int("max_occurrences_per_rule", 5000, 1, 1_000_000),
            materialize_workers=_coerce_int("materialize_workers", 1, 1, 64),
            event_time_format=_coerce_str("event_time_format", defaults.event_time_format),
            day_label_format=_coerce_str("day_label_format", defaults.day_label_format),
            week_label_format=_coerce_str("week_label_format", defaults.week_label_format),
            month_label_format=_coerce_str("month_label_format", defaults.month_label_format),
            agenda_header_format=_coerce_str("agenda_header_format", defaults.agenda_header_format),
            log_level=log_level,
        )


def _is_weekday(value: Any, key: str) -> bool:
    try:
        weekday_number(str(value))
    except ValueError:
        logger.warning("Config %s entry %r is not a weekday name; ignoring", key, value)
        return False
    return True


def _coerce_sources(raw: Any) -> list[SourceConfig]:
    """Normalize the sources list, keeping the first entry for each name."""
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        logger.warning("Config `sources` is not a list; coercing to single-item list")
        raw = [raw]

    sources: list[SourceConfig] = []
    seen: set[str] = set()
    for position, entry in enumerate(raw):
        if isinstance(entry, str):
            entry = {"path": entry}
        if not isinstance(entry, dict) or not entry.get("path"):
            logger.warning("Source entry %d has no path; ignoring: %r", position, entry)
            continue
        path = str(entry["path"])
        name = str(entry.get("name") or Path(path).stem)
        if name in seen:
            logger.warning("Duplicate source name %r; keeping the first", name)
            continue
        seen.add(name)
        title = entry.get("title")
        sources.append(SourceConfig(name=name, path=path, title=str(title) if title else None))
    return sources


def _load_yaml_or_json(path: Path) -> Any:
    """Load a mapping from a YAML or JSON file.

    JSON is used for ``.json`` files; everything else goes through PyYAML.
    """
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    loaded = yaml.safe_load(text)
    # safe_load can return None for empty files; normalize to empty dict
    if loaded is None:
        return {}
    return loaded


def apply_env_overrides(data: dict[str, Any], environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Overlay STATICCAL_* environment variables onto a raw config mapping."""
    env = os.environ if environ is None else environ
    merged = dict(data)
    for key in ("display_timezone", "today", "log_level"):
        value = env.get(f"STATICCAL_{key.upper()}")
        if value:
            merged[key] = value

    page_size = env.get("STATICCAL_AGENDA_PAGE_SIZE")
    if page_size:
        try:
            merged["agenda_page_size"] = int(page_size)
        except ValueError:
            logger.warning("STATICCAL_AGENDA_PAGE_SIZE=%r is not an int; ignoring", page_size)
    return merged


def load_config(path: str | None = None, environ: Optional[dict[str, str]] = None) -> Config:
    """Load configuration from a YAML/JSON file and return a Config instance.

    Args:
        path: Optional path to the config file. Defaults to ./staticcal.yaml.
        environ: Environment mapping for overrides (defaults to os.environ)

    Returns:
        Config dataclass instance with values from file (or defaults).

    Behavior:
    - If file is missing: returns defaults (plus environment overrides).
    - If file exists but top-level is not a mapping: raises ValueError.
    - Relative source paths are resolved against the config file's directory.
    """
    p = Path(path) if path else Path.cwd() / "staticcal.yaml"
    logger.debug("Attempting to load config from %s", p)
    if not p.exists():
        logger.info("Config file %s not found; using defaults", p)
        raw: Any = {}
    else:
        raw = _load_yaml_or_json(p)
        if not isinstance(raw, dict):
            logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
            raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004

    cfg = Config.from_dict(apply_env_overrides(raw, environ))
    for source in cfg.sources:
        if not Path(source.path).is_absolute():
            source.path = str(p.parent / source.path)

    logger.info("Loaded configuration from %s", p)
    logger.debug("Configuration values: %s", cfg)
    return cfg
