"""View materialization: turning the event index into calendar windows.

Every granularity goes through the same two steps. First a boundary is
computed for the anchor: a list of calendar days plus the instants that
enclose them. Then the index is queried once over that boundary and each
occurrence is dropped into the bucket of the local day it starts on. Month
grids pad to full weeks. Agenda and event windows are bounded by occurrence
count (a page, or a single occurrence) rather than by time span, but still
reuse the shared bucketing.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Optional

from .event_index import EventIndex
from .models import BucketEntry, DayBucket, Granularity, Occurrence, WeekRow, Window, WindowRef
from .timezone_utils import get_zone, local_midnight, zone_name

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_ONE_DAY = timedelta(days=1)
_SLUG_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def weekday_number(name: str) -> int:
    """Map a weekday name, or a prefix of at least three letters, to date.weekday() numbering."""
    key = name.strip().lower()
    if len(key) >= 3:
        for number, weekday in enumerate(WEEKDAY_NAMES):
            if weekday.startswith(key):
                return number
    raise ValueError(f"Unknown weekday name: {name!r}")


def start_of_week(day: date, week_start: int) -> date:
    """First day of the week containing ``day``."""
    return day - timedelta(days=(day.weekday() - week_start) % 7)


def month_start(day: date) -> date:
    return day.replace(day=1)


def next_month(day: date) -> date:
    """First day of the month after the one containing ``day``."""
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def owning_month(first_day: date) -> str:
    """YYYY-MM of the month holding at least four days of the 7-day week.

    With seven days split across at most two months, the middle day always
    falls in the majority month.
    """
    middle = first_day + timedelta(days=3)
    return f"{middle.year:04d}-{middle.month:02d}"


def window_id(granularity: Granularity, anchor: date, page: Optional[int] = None) -> str:
    """Opaque identifier of the window of ``granularity`` holding ``anchor``.

    Agenda pages are identified by their number relative to today; an agenda
    window built from an anchor date alone is identified by that date.
    """
    granularity = Granularity(granularity)
    if granularity == Granularity.AGENDA and page is not None:
        return f"agenda/{page}"
    if granularity == Granularity.MONTH:
        return f"month/{anchor:%Y-%m}"
    return f"{granularity.value}/{anchor.isoformat()}"


def event_slug(definition_id: str) -> str:
    return _SLUG_UNSAFE.sub("-", definition_id).strip("-") or "event"


def event_window_id(day: date, definition_id: str, ordinal: int = 1) -> str:
    """Identifier of one occurrence page: ``event/<local date>-<definition slug>``.

    ``ordinal`` numbers repeated instances of the same definition on the same
    day; the first keeps the bare identifier.
    """
    suffix = f"-{ordinal}" if ordinal > 1 else ""
    return f"event/{day.isoformat()}-{event_slug(definition_id)}{suffix}"


def window_path(identifier: str) -> str:
    """Relative output path for a window identifier."""
    return f"{identifier}.html"


@dataclass
class ViewSettings:
    """View-related configuration values."""

    display_timezone: str = "UTC"
    weekend_days: Sequence[str] = ("saturday", "sunday")
    week_start: str = "sunday"
    agenda_page_size: int = 10
    event_time_format: str = "%H:%M"
    day_label_format: str = "%A, %B %-d, %Y"
    week_label_format: str = "%B %Y"
    month_label_format: str = "%B %Y"
    agenda_header_format: str = "%a, %-d %B %Y"

    @classmethod
    def from_settings(cls, settings: Any) -> "ViewSettings":
        """Extract view settings from a settings object, keeping defaults for missing values."""
        if settings is None:
            return cls()
        defaults = cls()
        values = {
            name: getattr(settings, name, getattr(defaults, name))
            for name in cls.__dataclass_fields__
        }
        return cls(**values)


@dataclass
class _Boundary:
    """Days covered by a window and the instants enclosing them."""

    days: list[date]
    start: datetime
    end: datetime
    month: Optional[tuple[int, int]] = None


class ViewBuilder:
    """Builds render-ready windows from a populated, read-only EventIndex."""

    def __init__(self, index: EventIndex, settings: Any = None, today: Optional[date] = None):
        """Initialize the view builder.

        Args:
            index: Fully built event index
            settings: Object exposing the ViewSettings attributes
            today: Date treated as today for is-today flags
        """
        self.index = index
        self.settings = ViewSettings.from_settings(settings)
        self.tz: tzinfo = get_zone(self.settings.display_timezone)
        self.today = today
        self.week_start = weekday_number(self.settings.week_start)
        self.weekend = {weekday_number(name) for name in self.settings.weekend_days}
        self.page_size = max(1, int(self.settings.agenda_page_size))

    # Boundaries

    def boundary(self, granularity: Granularity, anchor: date) -> _Boundary:
        """Compute the days and enclosing instants of the window at ``anchor``."""
        granularity = Granularity(granularity)
        if granularity == Granularity.AGENDA:
            return self._span_boundary(self.agenda_slice(anchor), anchor)
        if granularity == Granularity.EVENT:
            return self._span_boundary(self.index.slice(*self._positions_from(anchor, 1)), anchor)

        if granularity == Granularity.DAY:
            days = [anchor]
            month = None
        elif granularity == Granularity.WEEK:
            first = start_of_week(anchor, self.week_start)
            days = [first + timedelta(days=i) for i in range(7)]
            month = None
        else:
            first = start_of_week(month_start(anchor), self.week_start)
            last_of_month = next_month(anchor) - _ONE_DAY
            last = start_of_week(last_of_month, self.week_start) + timedelta(days=6)
            days = [first + timedelta(days=i) for i in range((last - first).days + 1)]
            month = (anchor.year, anchor.month)

        return _Boundary(
            days=days,
            start=local_midnight(days[0], self.tz),
            end=local_midnight(days[-1] + _ONE_DAY, self.tz),
            month=month,
        )

    def _span_boundary(self, occurrences: Sequence[Occurrence], anchor: date) -> _Boundary:
        """Boundary of an occurrence-count window: the local days its occurrences start on.

        The end reaches past the last day when an occurrence runs longer. An
        empty slice collapses to the anchor's midnight.
        """
        if not occurrences:
            start = local_midnight(anchor, self.tz)
            return _Boundary(days=[], start=start, end=start)
        days = sorted({o.start.astimezone(self.tz).date() for o in occurrences})
        end = max(
            local_midnight(days[-1] + _ONE_DAY, self.tz),
            max(o.end for o in occurrences).astimezone(self.tz),
        )
        return _Boundary(days=days, start=local_midnight(days[0], self.tz), end=end)

    def _positions_from(self, anchor: date, count: int) -> tuple[int, int]:
        position = self.index.position_at(local_midnight(anchor, self.tz))
        return position, position + count

    def agenda_slice(self, anchor: date) -> list[Occurrence]:
        """The ``agenda_page_size`` occurrences starting on or after ``anchor``."""
        return self.index.slice(*self._positions_from(anchor, self.page_size))

    def anchor_for(self, granularity: Granularity, day: date) -> date:
        """Canonical anchor of the window holding ``day``."""
        granularity = Granularity(granularity)
        if granularity == Granularity.WEEK:
            return start_of_week(day, self.week_start)
        if granularity == Granularity.MONTH:
            return month_start(day)
        return day

    # References

    def calendar_ref(self, granularity: Granularity, day: date) -> WindowRef:
        """Reference to the day, week or month window holding ``day``."""
        granularity = Granularity(granularity)
        anchor = self.anchor_for(granularity, day)
        identifier = window_id(granularity, anchor)
        return WindowRef(
            window_id=identifier,
            granularity=granularity,
            anchor=anchor,
            path=window_path(identifier),
            label=self.label(granularity, anchor),
        )

    def event_ref(self, occurrence: Occurrence) -> WindowRef:
        """Reference to the page of one indexed occurrence.

        Repeated instances of a definition on one local day are numbered in
        index order so every occurrence keeps a distinct, stable identifier.
        """
        day = occurrence.start.astimezone(self.tz).date()
        slug = event_slug(occurrence.definition_id)
        ordinal = 1
        for other in self.index.range(local_midnight(day, self.tz), local_midnight(day + _ONE_DAY, self.tz)):
            if other.index_key >= occurrence.index_key:
                break
            if event_slug(other.definition_id) == slug:
                ordinal += 1

        identifier = event_window_id(day, occurrence.definition_id, ordinal)
        return WindowRef(
            window_id=identifier,
            granularity=Granularity.EVENT,
            anchor=day,
            path=window_path(identifier),
            label=occurrence.summary or occurrence.definition_id,
        )

    # Windows

    def build_window(
        self,
        granularity: Granularity,
        anchor: date,
        previous_ref: Optional[WindowRef] = None,
        next_ref: Optional[WindowRef] = None,
    ) -> Window:
        """Build the window of ``granularity`` at ``anchor``.

        Day, week and month windows contain ``anchor``. An agenda window holds
        the ``agenda_page_size`` occurrences starting on or after it, and an
        event window the first such occurrence.
        """
        granularity = Granularity(granularity)
        if granularity == Granularity.AGENDA:
            return self._agenda_window(
                window_id(granularity, anchor),
                anchor.strftime(self.settings.agenda_header_format),
                anchor,
                self.agenda_slice(anchor),
                page_number=None,
                previous_ref=previous_ref,
                next_ref=next_ref,
            )
        if granularity == Granularity.EVENT:
            found = self.index.slice(*self._positions_from(anchor, 1))
            if not found:
                return self._empty_event_window(anchor)
            return self.build_event_window(found[0], previous_ref, next_ref)

        anchor = self.anchor_for(granularity, anchor)
        bound = self.boundary(granularity, anchor)
        occurrences = self.index.range(bound.start, bound.end)
        buckets = self._bucket(bound.days, occurrences, bound.month)

        identifier = window_id(granularity, anchor)
        window = Window(
            window_id=identifier,
            granularity=granularity,
            anchor=anchor,
            path=window_path(identifier),
            label=self.label(granularity, anchor),
            timezone=zone_name(self.tz) or self.settings.display_timezone,
            start=bound.start,
            end=bound.end,
            buckets=buckets,
            previous=previous_ref,
            next=next_ref,
            today=self.today,
        )

        if granularity == Granularity.WEEK:
            first, last = bound.days[0], bound.days[-1]
            window.iso_week = bound.days[3].isocalendar()[1]
            window.owner_month = owning_month(first)
            window.switches_month = first.month != last.month
            window.switches_year = first.year != last.year
        elif granularity == Granularity.MONTH:
            window.owner_month = f"{anchor:%Y-%m}"
            window.week_rows = self._week_rows(bound.days, window.owner_month)

        logger.debug(
            "Built %s window with %d occurrences in %d buckets",
            identifier,
            sum(len(b.entries) for b in buckets),
            len(buckets),
        )
        return window

    def build_agenda_page(
        self,
        page_number: int,
        occurrences: Sequence[Occurrence],
        previous_ref: Optional[WindowRef] = None,
        next_ref: Optional[WindowRef] = None,
    ) -> Window:
        """Build one numbered agenda page from its slice of chronologically ordered occurrences.

        The page is bucketed per calendar day so the renderer can print one
        header per date; days without occurrences are omitted.
        """
        if occurrences:
            anchor = occurrences[0].start.astimezone(self.tz).date()
        else:
            anchor = self.today or date.today()
        return self._agenda_window(
            window_id(Granularity.AGENDA, anchor, page_number),
            f"Page {page_number}",
            anchor,
            occurrences,
            page_number=page_number,
            previous_ref=previous_ref,
            next_ref=next_ref,
        )

    def _agenda_window(
        self,
        identifier: str,
        label: str,
        anchor: date,
        occurrences: Sequence[Occurrence],
        page_number: Optional[int],
        previous_ref: Optional[WindowRef],
        next_ref: Optional[WindowRef],
    ) -> Window:
        bound = self._span_boundary(occurrences, anchor)
        buckets = self._bucket(bound.days, occurrences, None, label_format=self.settings.agenda_header_format)
        return Window(
            window_id=identifier,
            granularity=Granularity.AGENDA,
            anchor=anchor,
            path=window_path(identifier),
            label=label,
            timezone=zone_name(self.tz) or self.settings.display_timezone,
            start=bound.start,
            end=bound.end,
            buckets=buckets,
            page_number=page_number,
            previous=previous_ref,
            next=next_ref,
            is_empty=not occurrences,
            today=self.today,
        )

    def build_event_window(
        self,
        occurrence: Occurrence,
        previous_ref: Optional[WindowRef] = None,
        next_ref: Optional[WindowRef] = None,
    ) -> Window:
        """Build the page of a single occurrence, bucketed on its local start day."""
        ref = self.event_ref(occurrence)
        bound = self._span_boundary([occurrence], ref.anchor)
        return Window(
            window_id=ref.window_id,
            granularity=Granularity.EVENT,
            anchor=ref.anchor,
            path=ref.path,
            label=ref.label,
            timezone=zone_name(self.tz) or self.settings.display_timezone,
            start=occurrence.start.astimezone(self.tz),
            end=occurrence.end.astimezone(self.tz),
            buckets=self._bucket(bound.days, [occurrence], None),
            previous=previous_ref,
            next=next_ref,
            today=self.today,
        )

    def _empty_event_window(self, anchor: date) -> Window:
        identifier = window_id(Granularity.EVENT, anchor)
        start = local_midnight(anchor, self.tz)
        return Window(
            window_id=identifier,
            granularity=Granularity.EVENT,
            anchor=anchor,
            path=window_path(identifier),
            timezone=zone_name(self.tz) or self.settings.display_timezone,
            start=start,
            end=start,
            is_empty=True,
            today=self.today,
        )

    def build_empty_window(self, granularity: Granularity) -> Window:
        """Explicit 'no events' placeholder used when the index is empty."""
        granularity = Granularity(granularity)
        anchor = self.today or date.today()
        if granularity == Granularity.AGENDA:
            return self.build_agenda_page(0, [])
        if granularity == Granularity.EVENT:
            return self._empty_event_window(anchor)
        window = self.build_window(granularity, anchor)
        window.is_empty = True
        return window

    # Labels

    def label(self, granularity: Granularity, anchor: date) -> str:
        """Human readable label of a calendar window."""
        granularity = Granularity(granularity)
        if granularity == Granularity.DAY:
            return anchor.strftime(self.settings.day_label_format)
        if granularity == Granularity.WEEK:
            return anchor.strftime(self.settings.week_label_format)
        if granularity == Granularity.MONTH:
            return anchor.strftime(self.settings.month_label_format)
        return ""

    def _time_label(self, dt: datetime, all_day: bool) -> str:
        if all_day:
            return ""
        return dt.astimezone(self.tz).strftime(self.settings.event_time_format)

    # Bucketing

    def _bucket(
        self,
        days: Sequence[date],
        occurrences: Sequence[Occurrence],
        month: Optional[tuple[int, int]],
        label_format: Optional[str] = None,
    ) -> list[DayBucket]:
        """Distribute occurrences over day buckets by local start date."""
        label_format = label_format or self.settings.day_label_format
        per_day: dict[date, list[Occurrence]] = {day: [] for day in days}
        for occurrence in occurrences:
            day = occurrence.start.astimezone(self.tz).date()
            if day in per_day:
                per_day[day].append(occurrence)

        buckets = []
        for day in days:
            buckets.append(
                DayBucket(
                    date=day,
                    label=day.strftime(label_format),
                    day_ref=self.calendar_ref(Granularity.DAY, day),
                    is_weekend=day.weekday() in self.weekend,
                    is_other_month=month is not None and (day.year, day.month) != month,
                    is_today=self.today is not None and day == self.today,
                    entries=self._entries(day, per_day[day]),
                )
            )
        return buckets

    def _entries(self, day: date, occurrences: Sequence[Occurrence]) -> list[BucketEntry]:
        """Assign overlap sets within one day bucket.

        Occurrences arrive in index order. A sweep keeps the latest end seen in
        the current set; an occurrence starting before that end (or sharing the
        previous start, for instant markers) joins the set, otherwise a new set
        begins. Touching intervals do not overlap.

        Each entry also names the day, week, month and event windows holding
        its occurrence so grids can link across granularities.
        """
        sets: list[int] = []
        set_number = -1
        set_end: Optional[datetime] = None
        previous_start: Optional[datetime] = None

        for occurrence in occurrences:
            start, end = occurrence.start_utc, occurrence.end_utc
            joins = set_end is not None and (start < set_end or start == previous_start)
            if not joins:
                set_number += 1
                set_end = end
            else:
                set_end = max(set_end, end)
            previous_start = start
            sets.append(set_number)

        sizes: dict[int, int] = {}
        for number in sets:
            sizes[number] = sizes.get(number, 0) + 1

        day_id = window_id(Granularity.DAY, day)
        week_id = window_id(Granularity.WEEK, start_of_week(day, self.week_start))
        month_id = window_id(Granularity.MONTH, day)

        return [
            BucketEntry(
                occurrence=occurrence,
                overlap_set=number,
                overlap_size=sizes[number],
                start_label=self._time_label(occurrence.start, occurrence.all_day),
                end_label=self._time_label(occurrence.end, occurrence.all_day),
                duration_minutes=int(occurrence.duration.total_seconds() // 60),
                day_window_id=day_id,
                week_window_id=week_id,
                month_window_id=month_id,
                event_window_id=self.event_ref(occurrence).window_id,
            )
            for occurrence, number in zip(occurrences, sets)
        ]

    def _week_rows(self, days: Sequence[date], owner: str) -> list[WeekRow]:
        rows = []
        for offset in range(0, len(days), 7):
            first = days[offset]
            row_owner = owning_month(first)
            rows.append(
                WeekRow(
                    first_day=first,
                    last_day=days[offset + 6],
                    iso_week=(first + timedelta(days=3)).isocalendar()[1],
                    owner_month=row_owner,
                    is_owned=row_owner == owner,
                )
            )
        return rows
