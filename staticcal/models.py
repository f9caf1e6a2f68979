"""Data models for the staticcal temporal event index and view engine."""

from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class Granularity(str, Enum):
    """Supported window granularities."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    AGENDA = "agenda"
    EVENT = "event"


# Input models (produced by the external parser, read-only to the engine)


class EventOverride(BaseModel):
    """Replacement for one rule-generated instance of a recurring definition."""

    recurrence_id: datetime = Field(..., description="Original start of the instance being replaced")
    start: Optional[datetime] = Field(default=None, description="Replacement start")
    end: Optional[datetime] = Field(default=None, description="Replacement end")
    summary: Optional[str] = Field(default=None, description="Replacement summary text")
    description: Optional[str] = Field(default=None, description="Replacement description")
    location: Optional[str] = Field(default=None, description="Replacement location")
    cancelled: bool = Field(default=False, description="Drop the instance instead of replacing it")

    model_config = ConfigDict(frozen=True)


class EventDefinition(BaseModel):
    """Source-level description of an event, possibly recurring."""

    id: str = Field(..., description="Stable unique identifier (UID)")
    source_id: Optional[str] = Field(
        default=None, description="Source calendar identifier; filled in from the feed if missing"
    )
    summary: str = Field(default="", description="Event summary/title")
    description: Optional[str] = Field(default=None, description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")
    url: Optional[str] = Field(default=None, description="Event URL")

    start: datetime = Field(..., description="Event start (naive values are local to time_zone)")
    end: Optional[datetime] = Field(
        default=None, description="Event end; omitted means a point event (or one day if all-day)"
    )
    time_zone: Optional[str] = Field(default=None, description="Source timezone identifier")
    all_day: bool = Field(default=False, description="All-day event flag")

    rrule: Optional[str] = Field(default=None, description="RRULE text, e.g. FREQ=DAILY;COUNT=5")
    exdates: list[datetime] = Field(
        default_factory=list, description="Instances to suppress, matched by exact start"
    )
    exdate_days: list[date] = Field(
        default_factory=list, description="Local dates on which every instance is suppressed"
    )
    overrides: list[EventOverride] = Field(
        default_factory=list, description="Replacement instances keyed by recurrence_id"
    )

    model_config = ConfigDict(frozen=True)

    @property
    def is_recurring(self) -> bool:
        """Check if the definition carries a recurrence rule."""
        return bool(self.rrule and self.rrule.strip())


class SourceFeed(BaseModel):
    """One configured source as handed to the engine."""

    source_id: str = Field(..., description="Source calendar identifier")
    definitions: list[EventDefinition] = Field(default_factory=list)
    error: Optional[str] = Field(default=None, description="Retrieval error, if the source failed")
    title: Optional[str] = Field(default=None, description="User facing calendar title")
    rejected: list[str] = Field(
        default_factory=list, description="Records that could not be read as event definitions"
    )

    @property
    def failed(self) -> bool:
        """Check if the source could not be retrieved."""
        return self.error is not None


# Engine models


class Occurrence(BaseModel):
    """One concrete, non-recurring materialization of an EventDefinition.

    Start and end are normalized to the display timezone. Instances are
    immutable; the index never changes one in place.
    """

    definition_id: str
    source_id: str
    start: datetime
    end: datetime
    summary: str = ""
    description: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None
    all_day: bool = False
    is_override: bool = Field(default=False, description="Produced by an EventOverride")
    recurrence_id: Optional[datetime] = Field(
        default=None, description="Rule instance this occurrence stands for, if recurring"
    )

    model_config = ConfigDict(frozen=True)

    @property
    def start_utc(self) -> datetime:
        return self.start.astimezone(UTC)

    @property
    def end_utc(self) -> datetime:
        return self.end.astimezone(UTC)

    @property
    def duration(self) -> timedelta:
        """Elapsed (absolute) duration, independent of DST changes."""
        return self.end_utc - self.start_utc

    @property
    def is_instant(self) -> bool:
        """Zero-duration marker event."""
        return self.end_utc == self.start_utc

    @property
    def tie_break_key(self) -> tuple[str, str]:
        return (self.source_id, self.definition_id)

    @property
    def index_key(self) -> tuple[datetime, str, str]:
        """Unique key in the event index: start instant, then tie-break key."""
        return (self.start_utc, self.source_id, self.definition_id)

    @field_serializer("start", "end")
    def serialize_instant(self, dt: datetime) -> str:
        return dt.isoformat()

    @field_serializer("recurrence_id", when_used="unless-none")
    def serialize_recurrence_id(self, dt: datetime) -> str:
        return dt.isoformat()


class Span(BaseModel):
    """Minimum start and maximum end across all indexed occurrences."""

    start: datetime
    end: datetime

    model_config = ConfigDict(frozen=True)


class WindowRef(BaseModel):
    """Opaque reference to another window, turned into a link by the renderer."""

    window_id: str
    granularity: Granularity
    anchor: date
    path: str
    label: str = ""

    model_config = ConfigDict(use_enum_values=True)


class BucketEntry(BaseModel):
    """An occurrence placed in a day bucket, with its overlap-set membership."""

    occurrence: Occurrence
    overlap_set: int = Field(..., description="Overlap-set number, unique within the bucket")
    overlap_size: int = Field(default=1, description="Number of occurrences in the overlap set")
    start_label: str = ""
    end_label: str = ""
    duration_minutes: int = 0

    # Windows holding this occurrence in the other granularities
    day_window_id: str = ""
    week_window_id: str = ""
    month_window_id: str = ""
    event_window_id: str = ""


class DayBucket(BaseModel):
    """One calendar day inside a window."""

    date: date
    label: str = ""
    day_ref: Optional[WindowRef] = Field(default=None, description="Day window of this date")
    is_weekend: bool = False
    is_other_month: bool = Field(default=False, description="Padding day from an adjacent month")
    is_today: bool = False
    entries: list[BucketEntry] = Field(default_factory=list)

    @property
    def occurrences(self) -> list[Occurrence]:
        return [entry.occurrence for entry in self.entries]

    @property
    def overlap_sets(self) -> list[list[Occurrence]]:
        """Occurrences grouped by overlap set, in set order."""
        groups: dict[int, list[Occurrence]] = {}
        for entry in self.entries:
            groups.setdefault(entry.overlap_set, []).append(entry.occurrence)
        return [groups[key] for key in sorted(groups)]


class WeekRow(BaseModel):
    """One seven-day row of a month grid."""

    first_day: date
    last_day: date
    iso_week: int
    owner_month: str = Field(..., description="YYYY-MM of the month holding at least 4 of the 7 days")
    is_owned: bool = Field(default=False, description="Owned by the month of the enclosing window")


class Window(BaseModel):
    """A granularity-tagged time slice with its bucketed occurrences."""

    window_id: str
    granularity: Granularity
    anchor: date
    path: str
    label: str = ""
    timezone: str = "UTC"

    start: datetime = Field(..., description="Inclusive lower boundary instant")
    end: datetime = Field(..., description="Exclusive upper boundary instant")

    buckets: list[DayBucket] = Field(default_factory=list)

    # Week
    iso_week: Optional[int] = None
    owner_month: Optional[str] = None
    switches_month: bool = False
    switches_year: bool = False

    # Month
    week_rows: list[WeekRow] = Field(default_factory=list)

    # Agenda
    page_number: Optional[int] = None

    previous: Optional[WindowRef] = None
    next: Optional[WindowRef] = None

    is_empty: bool = Field(default=False, description="Explicit 'no events' placeholder window")
    today: Optional[date] = None

    model_config = ConfigDict(use_enum_values=True)

    @field_serializer("start", "end")
    def serialize_boundary(self, dt: datetime) -> str:
        return dt.isoformat()

    @property
    def occurrences(self) -> list[Occurrence]:
        """Occurrences owned by this window, excluding adjacent-month padding."""
        result: list[Occurrence] = []
        for bucket in self.buckets:
            if not bucket.is_other_month:
                result.extend(bucket.occurrences)
        return result

    def ref(self) -> WindowRef:
        """Build a reference to this window."""
        return WindowRef(
            window_id=self.window_id,
            granularity=Granularity(self.granularity),
            anchor=self.anchor,
            path=self.path,
            label=self.label,
        )

    def to_context(self) -> dict[str, Any]:
        """Render-ready data context."""
        return self.model_dump(mode="json")


class WindowListing(BaseModel):
    """Ordered index of every generated window of one granularity."""

    granularity: Granularity
    windows: list[WindowRef] = Field(default_factory=list)
    index_window_id: Optional[str] = Field(
        default=None, description="Window used for the granularity's index page"
    )
    is_default_view: bool = False

    model_config = ConfigDict(use_enum_values=True)
