"""Run orchestration for staticcal.

One run reads the source feeds, expands every definition inside the
materialization horizon, resolves duplicates across sources, bulk-loads the
event index and then serves windows and listings from it. Per-source and
per-definition failures are collected in a RunReport; only index invariant
violations (DuplicateKeyError) escape.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from .config_loader import Config
from .event_index import EventIndex
from .event_merger import DuplicatePolicy, EventMerger
from .exceptions import EmptyIndexWarning, MaterializationError
from .models import EventDefinition, Granularity, Occurrence, SourceFeed, Window, WindowListing
from .pagination import Paginator
from .rrule_expander import OccurrenceMaterializer
from .timezone_utils import get_zone, local_midnight, parse_now
from .views import ViewBuilder

logger = logging.getLogger(__name__)

ISSUE_SOURCE = "source"
ISSUE_DEFINITION = "definition"
ISSUE_RECORD = "record"
ISSUE_EMPTY = "empty-index"


@dataclass
class RunIssue:
    """One non-fatal problem met during a run."""

    kind: str
    message: str
    source_id: Optional[str] = None
    definition_id: Optional[str] = None


@dataclass
class RunReport:
    """Aggregated outcome of a run, for the summary printed at the end."""

    issues: list[RunIssue] = field(default_factory=list)
    horizon_start: Optional[datetime] = None
    horizon_end: Optional[datetime] = None

    # Statistics
    sources_total: int = 0
    sources_failed: int = 0
    definitions_total: int = 0
    definitions_skipped: int = 0
    occurrences_materialized: int = 0
    duplicates_dropped: int = 0
    occurrences_indexed: int = 0

    def add_issue(
        self,
        kind: str,
        message: str,
        source_id: Optional[str] = None,
        definition_id: Optional[str] = None,
    ) -> None:
        """Record a non-fatal issue and log it."""
        self.issues.append(
            RunIssue(kind=kind, message=message, source_id=source_id, definition_id=definition_id)
        )
        logger.warning("[%s] %s", kind, message)

    def issues_of(self, kind: str) -> list[RunIssue]:
        return [issue for issue in self.issues if issue.kind == kind]

    @property
    def is_empty(self) -> bool:
        return bool(self.issues_of(ISSUE_EMPTY))

    def summary(self) -> str:
        """Human readable run summary."""
        lines = [
            f"Sources: {self.sources_total - self.sources_failed}/{self.sources_total} loaded",
            f"Definitions: {self.definitions_total - self.definitions_skipped}/"
            f"{self.definitions_total} expanded",
            f"Occurrences: {self.occurrences_indexed} indexed "
            f"({self.occurrences_materialized} materialized, "
            f"{self.duplicates_dropped} duplicates dropped)",
        ]
        if self.horizon_start and self.horizon_end:
            lines.append(
                f"Horizon: {self.horizon_start.isoformat()} .. {self.horizon_end.isoformat()}"
            )
        if self.issues:
            lines.append(f"Skipped items ({len(self.issues)}):")
            for issue in self.issues:
                subject = issue.definition_id or issue.source_id or "-"
                lines.append(f"  - [{issue.kind}] {subject}: {issue.message}")
        return "\n".join(lines)


class CalendarEngine:
    """Builds the event index for one run and serves windows from it."""

    def __init__(
        self,
        config: Optional[Config] = None,
        now: str | datetime | None = None,
        duplicate_policy: Optional[DuplicatePolicy] = None,
    ):
        """Initialize the engine.

        Args:
            config: Run configuration (defaults when omitted)
            now: Current instant; passed explicitly so runs are reproducible.
                None reads the wall clock.
            duplicate_policy: Optional field-level duplicate policy
        """
        self.config = config or Config()
        self.now = parse_now(now)
        self.tz = get_zone(self.config.display_timezone)
        self.today = self._resolve_today()
        self.materializer = OccurrenceMaterializer(self.config)
        self.duplicate_policy = duplicate_policy
        self.index = EventIndex()
        self.report = RunReport()
        self._builder: Optional[ViewBuilder] = None
        self._paginator: Optional[Paginator] = None

    def _resolve_today(self) -> date:
        value = (self.config.today or "today").strip()
        if value.lower() != "today":
            return date.fromisoformat(value)
        return self.now.astimezone(self.tz).date()

    # Horizon

    def horizon(self, feeds: Sequence[SourceFeed]) -> tuple[datetime, datetime]:
        """Materialization horizon [start, end] in the display timezone."""
        cfg = self.config
        relative_start = local_midnight(self.today - timedelta(days=cfg.horizon_days_before), self.tz)
        relative_end = local_midnight(self.today + timedelta(days=cfg.horizon_days_after + 1), self.tz)

        start, end = relative_start, relative_end
        if cfg.horizon_mode == "span":
            span = self._definition_span(feeds, relative_end)
            if span is not None:
                start, end = span

        if cfg.horizon_start is not None:
            start = local_midnight(cfg.horizon_start, self.tz)
        if cfg.horizon_end is not None:
            end = local_midnight(cfg.horizon_end + timedelta(days=1), self.tz)
        if end < start:
            logger.warning("Horizon end precedes start; using the relative horizon")
            start, end = relative_start, relative_end
        return start, end

    def _definition_span(
        self, feeds: Sequence[SourceFeed], unbounded_end: datetime
    ) -> Optional[tuple[datetime, datetime]]:
        """Earliest start and latest finite end over all definitions.

        Rules without an end are capped at ``unbounded_end``. Broken
        definitions are ignored here; materialization reports them.
        """
        starts: list[datetime] = []
        ends: list[datetime] = []
        for feed in feeds:
            for definition in feed.definitions:
                try:
                    first, last = self.materializer.definition_bounds(definition, feed.source_id)
                except MaterializationError:
                    continue
                starts.append(first)
                ends.append(last if last is not None else max(first, unbounded_end))
        if not starts:
            return None
        return min(starts), max(ends)

    # Run

    def run(self, feeds: Sequence[SourceFeed]) -> RunReport:
        """Build the event index from the given feeds.

        Returns:
            RunReport describing what was indexed and what was skipped

        Raises:
            DuplicateKeyError: If the index invariant is violated
        """
        report = RunReport()
        self.report = report
        self.index = EventIndex()
        self._builder = None
        self._paginator = None

        report.sources_total = len(feeds)
        jobs: list[tuple[SourceFeed, EventDefinition]] = []
        for feed in feeds:
            if feed.failed:
                report.sources_failed += 1
                report.add_issue(
                    ISSUE_SOURCE, f"Source unavailable: {feed.error}", source_id=feed.source_id
                )
                continue
            for message in feed.rejected:
                report.add_issue(ISSUE_RECORD, message, source_id=feed.source_id)
            jobs.extend((feed, definition) for definition in feed.definitions)
        report.definitions_total = len(jobs)

        horizon_start, horizon_end = self.horizon([feed for feed in feeds if not feed.failed])
        report.horizon_start, report.horizon_end = horizon_start, horizon_end
        logger.info(
            "Materializing %d definitions from %d sources over %s .. %s",
            len(jobs),
            report.sources_total - report.sources_failed,
            horizon_start.date(),
            horizon_end.date(),
        )

        candidates: list[Occurrence] = []
        for (feed, definition), outcome in zip(jobs, self._materialize_all(jobs, horizon_start, horizon_end)):
            if isinstance(outcome, MaterializationError):
                report.definitions_skipped += 1
                report.add_issue(
                    ISSUE_DEFINITION,
                    str(outcome),
                    source_id=feed.source_id,
                    definition_id=definition.id,
                )
                continue
            candidates.extend(outcome)
        report.occurrences_materialized = len(candidates)

        source_order = list(self.config.source_order)
        source_order.extend(f.source_id for f in feeds if f.source_id not in source_order)
        resolution = EventMerger(source_order, policy=self.duplicate_policy).resolve(candidates)
        report.duplicates_dropped = resolution.duplicates_dropped

        report.occurrences_indexed = self.index.bulk_load(resolution.kept)
        if not self.index:
            report.add_issue(ISSUE_EMPTY, str(EmptyIndexWarning("No occurrences in the aggregate span")))

        logger.info(
            "Indexed %d occurrences (%d duplicates dropped, %d issues)",
            report.occurrences_indexed,
            report.duplicates_dropped,
            len(report.issues),
        )
        return report

    def _materialize_all(
        self,
        jobs: Sequence[tuple[SourceFeed, EventDefinition]],
        horizon_start: datetime,
        horizon_end: datetime,
    ) -> list[Any]:
        """Expand every job; each result is a list of occurrences or the error raised.

        Results are returned in job order whether or not a thread pool is used.
        """

        def expand(job: tuple[SourceFeed, EventDefinition]) -> Any:
            feed, definition = job
            try:
                return self.materializer.materialize_to_list(
                    definition, horizon_start, horizon_end, source_id=feed.source_id
                )
            except MaterializationError as exc:
                return exc

        workers = max(1, int(self.config.materialize_workers))
        if workers == 1 or len(jobs) < 2:
            return [expand(job) for job in jobs]

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="staticcal-expand") as pool:
            futures = [pool.submit(expand, job) for job in jobs]
            return [future.result() for future in futures]

    # Views

    @property
    def builder(self) -> ViewBuilder:
        if self._builder is None:
            self._builder = ViewBuilder(self.index, self.config, today=self.today)
        return self._builder

    @property
    def paginator(self) -> Paginator:
        if self._paginator is None:
            self._paginator = Paginator(
                self.index, self.builder, self.today, default_view=self.config.default_view
            )
        return self._paginator

    @property
    def granularities(self) -> list[Granularity]:
        return [Granularity(name) for name in self.config.granularities]

    def build_window(self, granularity: Granularity | str, anchor: date) -> Window:
        """Build the window of ``granularity`` at ``anchor`` without neighbour references."""
        return self.builder.build_window(Granularity(granularity), anchor)

    def windows(self, granularity: Granularity | str) -> Iterator[Window]:
        """Every window of ``granularity``, chained by previous/next references."""
        return self.paginator.enumerate(granularity)

    def listing(self, granularity: Granularity | str) -> WindowListing:
        """Global listing of the windows of ``granularity``."""
        return self.paginator.listing(granularity)

    def materialize_views(self) -> dict[Granularity, tuple[WindowListing, list[Window]]]:
        """Listing and windows for every requested granularity."""
        return {
            granularity: (self.listing(granularity), list(self.windows(granularity)))
            for granularity in self.granularities
        }
