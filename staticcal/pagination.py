"""Pagination indexer: the ordered sequence of windows per granularity.

The sequence is recomputed from the index every time it is asked for and is
the only place previous/next references are decided, so every navigation
link the renderer produces comes from here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from .event_index import EventIndex
from .models import Granularity, Window, WindowListing, WindowRef
from .timezone_utils import local_midnight
from .views import ViewBuilder, next_month, window_id, window_path

logger = logging.getLogger(__name__)

_ONE_MICROSECOND = timedelta(microseconds=1)


@dataclass(frozen=True)
class _Page:
    """Position of one agenda page in the occurrence sequence."""

    number: int
    start: int
    stop: int


def _neighbours(refs: Sequence[WindowRef], position: int) -> tuple[Optional[WindowRef], Optional[WindowRef]]:
    previous_ref = refs[position - 1] if position > 0 else None
    next_ref = refs[position + 1] if position + 1 < len(refs) else None
    return previous_ref, next_ref


class Paginator:
    """Enumerates every window of a granularity across the index span."""

    def __init__(
        self,
        index: EventIndex,
        builder: ViewBuilder,
        today: date,
        default_view: Granularity | str = Granularity.MONTH,
    ):
        self.index = index
        self.builder = builder
        self.today = today
        self.default_view = Granularity(default_view)

    def enumerate(self, granularity: Granularity | str) -> Iterator[Window]:
        """Lazily yield the windows of ``granularity`` in chronological order.

        Each window carries previous/next references into this same sequence.
        An empty index yields exactly one placeholder window flagged is_empty.
        """
        granularity = Granularity(granularity)
        if not self.index:
            yield self.builder.build_empty_window(granularity)
            return

        if granularity == Granularity.AGENDA:
            yield from self._agenda_windows()
            return
        if granularity == Granularity.EVENT:
            yield from self._event_windows()
            return

        anchors = self.anchors(granularity)
        refs = [self.builder.calendar_ref(granularity, anchor) for anchor in anchors]
        for position, anchor in enumerate(anchors):
            previous_ref, next_ref = _neighbours(refs, position)
            yield self.builder.build_window(granularity, anchor, previous_ref=previous_ref, next_ref=next_ref)

    def refs(self, granularity: Granularity | str) -> list[WindowRef]:
        """References to every window of ``granularity`` without building them."""
        granularity = Granularity(granularity)
        if not self.index:
            return [self.builder.build_empty_window(granularity).ref()]
        if granularity == Granularity.AGENDA:
            return [self._agenda_ref(page) for page in self._agenda_pages()]
        if granularity == Granularity.EVENT:
            return [self.builder.event_ref(occurrence) for occurrence in self.index]
        return [self.builder.calendar_ref(granularity, anchor) for anchor in self.anchors(granularity)]

    def listing(self, granularity: Granularity | str) -> WindowListing:
        """Global index of the generated windows of ``granularity``."""
        granularity = Granularity(granularity)
        refs = self.refs(granularity)
        return WindowListing(
            granularity=granularity,
            windows=refs,
            index_window_id=self._index_window_id(granularity, refs),
            is_default_view=granularity == self.default_view,
        )

    def anchors(self, granularity: Granularity | str) -> list[date]:
        """Anchors of every calendar window covering the index span."""
        granularity = Granularity(granularity)
        span = self.index.span()
        if span is None:
            return []

        tz = self.builder.tz
        first_day = span.start.astimezone(tz).date()
        last_instant = max(span.start, span.end - _ONE_MICROSECOND)
        last_day = last_instant.astimezone(tz).date()

        anchor = self.builder.anchor_for(granularity, first_day)
        last_anchor = self.builder.anchor_for(granularity, last_day)
        anchors = []
        while anchor <= last_anchor:
            anchors.append(anchor)
            anchor = self._step(granularity, anchor)
        return anchors

    @staticmethod
    def _step(granularity: Granularity, anchor: date) -> date:
        if granularity == Granularity.DAY:
            return anchor + timedelta(days=1)
        if granularity == Granularity.WEEK:
            return anchor + timedelta(days=7)
        return next_month(anchor)

    # Agenda

    def _agenda_pages(self) -> list[_Page]:
        """Split the index into pages relative to today.

        Occurrences starting on or after today fill pages 0, 1, ... forwards.
        Earlier ones are chunked backwards from today into pages -1, -2, ...
        so page -1 always holds the most recent past occurrences.
        """
        size = self.builder.page_size
        total = len(self.index)
        split = self.index.position_at(local_midnight(self.today, self.builder.tz))

        past = []
        stop = split
        number = -1
        while stop > 0:
            start = max(0, stop - size)
            past.append(_Page(number, start, stop))
            stop = start
            number -= 1
        past.reverse()

        future = [
            _Page(number, start, min(start + size, total))
            for number, start in enumerate(range(split, total, size))
        ]
        return past + future

    def _agenda_ref(self, page: _Page) -> WindowRef:
        identifier = window_id(Granularity.AGENDA, self.today, page.number)
        first = self.index.slice(page.start, page.start + 1)[0]
        return WindowRef(
            window_id=identifier,
            granularity=Granularity.AGENDA,
            anchor=first.start.astimezone(self.builder.tz).date(),
            path=window_path(identifier),
            label=f"Page {page.number}",
        )

    def _agenda_windows(self) -> Iterator[Window]:
        pages = self._agenda_pages()
        refs = [self._agenda_ref(page) for page in pages]
        for position, page in enumerate(pages):
            previous_ref, next_ref = _neighbours(refs, position)
            yield self.builder.build_agenda_page(
                page.number,
                self.index.slice(page.start, page.stop),
                previous_ref=previous_ref,
                next_ref=next_ref,
            )

    # Events

    def _event_windows(self) -> Iterator[Window]:
        """One page per indexed occurrence, linked in index order."""
        occurrences = list(self.index)
        refs = [self.builder.event_ref(occurrence) for occurrence in occurrences]
        for position, occurrence in enumerate(occurrences):
            previous_ref, next_ref = _neighbours(refs, position)
            yield self.builder.build_event_window(occurrence, previous_ref, next_ref)

    # Index page

    def _index_window_id(self, granularity: Granularity, refs: Sequence[WindowRef]) -> Optional[str]:
        """Window used for the index page.

        The window holding today, else the first one after today, else the
        last one. For the agenda that is page 0 when any upcoming
        occurrence exists; for events it is the first occurrence starting
        today or later.
        """
        if not refs:
            return None
        if granularity == Granularity.AGENDA:
            for ref in refs:
                if ref.window_id == window_id(Granularity.AGENDA, self.today, 0):
                    return ref.window_id
            return refs[-1].window_id

        today_anchor = self.builder.anchor_for(granularity, self.today)
        for ref in refs:
            if ref.anchor >= today_anchor:
                return ref.window_id
        return refs[-1].window_id
