"""Timezone resolution and conversion utilities for staticcal."""

from __future__ import annotations

import datetime
import logging
import zoneinfo
from functools import lru_cache
from typing import ClassVar

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_TIMEZONE = "UTC"


class TimezoneResolver:
    """Maps the zone names found in calendar feeds to IANA identifiers."""

    # Windows timezone names used by Outlook/Exchange exports
    WINDOWS_TZ_MAP: ClassVar[dict[str, str]] = {
        "Pacific Standard Time": "America/Los_Angeles",
        "Mountain Standard Time": "America/Denver",
        "Central Standard Time": "America/Chicago",
        "Eastern Standard Time": "America/New_York",
        "Alaskan Standard Time": "America/Anchorage",
        "Hawaiian Standard Time": "Pacific/Honolulu",
        "US Mountain Standard Time": "America/Phoenix",
        "Atlantic Standard Time": "America/Halifax",
        "GMT Standard Time": "Europe/London",
        "W. Europe Standard Time": "Europe/Berlin",
        "Romance Standard Time": "Europe/Paris",
        "Central Europe Standard Time": "Europe/Budapest",
        "Central European Standard Time": "Europe/Warsaw",
        "E. Europe Standard Time": "Europe/Chisinau",
        "FLE Standard Time": "Europe/Helsinki",
        "GTB Standard Time": "Europe/Athens",
        "Russian Standard Time": "Europe/Moscow",
        "India Standard Time": "Asia/Kolkata",
        "China Standard Time": "Asia/Shanghai",
        "Tokyo Standard Time": "Asia/Tokyo",
        "Korea Standard Time": "Asia/Seoul",
        "Singapore Standard Time": "Asia/Singapore",
        "AUS Eastern Standard Time": "Australia/Sydney",
        "New Zealand Standard Time": "Pacific/Auckland",
        "E. South America Standard Time": "America/Sao_Paulo",
        "South Africa Standard Time": "Africa/Johannesburg",
    }

    # Obsolete or alternate names
    TZ_ALIAS_MAP: ClassVar[dict[str, str]] = {
        "US/Pacific": "America/Los_Angeles",
        "US/Mountain": "America/Denver",
        "US/Central": "America/Chicago",
        "US/Eastern": "America/New_York",
        "US/Arizona": "America/Phoenix",
        "GMT": "UTC",
        "Etc/UTC": "UTC",
        "Etc/GMT": "UTC",
        "Universal": "UTC",
        "Zulu": "UTC",
        "Z": "UTC",
        "Asia/Rangoon": "Asia/Yangon",
        "America/Godthab": "America/Nuuk",
    }

    def normalize(self, tz_name: str | None) -> str | None:
        """Return the canonical IANA identifier for tz_name, or None if unknown."""
        if not tz_name:
            return None

        name = tz_name.strip()
        candidate = self.WINDOWS_TZ_MAP.get(name) or self.TZ_ALIAS_MAP.get(name, name)
        try:
            zoneinfo.ZoneInfo(candidate)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown timezone name: %r", tz_name)
            return None
        return candidate


_resolver = TimezoneResolver()


def normalize_timezone_name(tz_name: str | None) -> str | None:
    """Normalize a Windows name, alias, or IANA identifier.

    Examples:
        >>> normalize_timezone_name("Pacific Standard Time")
        'America/Los_Angeles'
        >>> normalize_timezone_name("US/Eastern")
        'America/New_York'
        >>> normalize_timezone_name("Invalid/Zone") is None
        True
    """
    return _resolver.normalize(tz_name)


@lru_cache(maxsize=64)
def get_zone(tz_name: str | None, fallback: str = DEFAULT_DISPLAY_TIMEZONE) -> zoneinfo.ZoneInfo:
    """Resolve tz_name to a ZoneInfo, falling back with a warning when unknown."""
    canonical = normalize_timezone_name(tz_name)
    if canonical is None:
        if tz_name:
            logger.warning("Invalid timezone %r, falling back to %r", tz_name, fallback)
        canonical = fallback
    return zoneinfo.ZoneInfo(canonical)


def zone_name(tz: datetime.tzinfo | None) -> str | None:
    """Best-effort identifier for a tzinfo object."""
    if tz is None:
        return None
    key = getattr(tz, "key", None)
    if key:
        return str(key)
    if tz is datetime.UTC or tz == datetime.timezone.utc:
        return "UTC"
    return None


def localize(dt: datetime.datetime, tz: datetime.tzinfo) -> datetime.datetime:
    """Attach tz to a naive datetime, or convert an aware one into tz."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def local_midnight(day: datetime.date, tz: datetime.tzinfo) -> datetime.datetime:
    """Aware datetime for the start of ``day`` in ``tz``."""
    return datetime.datetime.combine(day, datetime.time.min, tzinfo=tz)


def local_date(dt: datetime.datetime, tz: datetime.tzinfo) -> datetime.date:
    """Calendar date of an instant as seen in ``tz``."""
    return localize(dt, tz).date()


def parse_now(value: str | datetime.datetime | None) -> datetime.datetime:
    """Parse an explicit "now" value into an aware UTC datetime.

    Naive values are taken as UTC. ``None`` means the wall clock, which only
    the CLI entry point should ask for.
    """
    if value is None:
        return datetime.datetime.now(datetime.UTC)
    if isinstance(value, str):
        from dateutil import parser as date_parser

        value = date_parser.isoparse(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)
