"""Ordered, range-queryable index of concrete occurrences."""

from __future__ import annotations

import bisect
import logging
import threading
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from typing import Optional

from .exceptions import DuplicateKeyError
from .models import Occurrence, Span

logger = logging.getLogger(__name__)

IndexKey = tuple[datetime, str, str]


class EventIndex:
    """Occurrences keyed by (start instant, source id, definition id).

    Iteration order is chronological, with the tie-break key making
    simultaneous occurrences render in a stable order across runs. Keys are
    compared in UTC so the index is independent of the display timezone.
    """

    def __init__(self) -> None:
        self._keys: list[IndexKey] = []
        self._items: dict[IndexKey, Occurrence] = {}
        self._max_end: Optional[datetime] = None
        self._lock = threading.Lock()

    def insert(self, occurrence: Occurrence) -> None:
        """Insert one occurrence.

        Raises:
            DuplicateKeyError: If the key is already present
        """
        key = occurrence.index_key
        with self._lock:
            if key in self._items:
                raise DuplicateKeyError(key)
            bisect.insort(self._keys, key)
            self._items[key] = occurrence
            self._track_end(occurrence)

    def bulk_load(self, occurrences: Iterable[Occurrence]) -> int:
        """Load many occurrences in one ordered pass.

        Returns:
            Number of occurrences added

        Raises:
            DuplicateKeyError: If any key collides with another or an existing one
        """
        incoming = sorted(occurrences, key=lambda o: o.index_key)
        with self._lock:
            for previous, current in zip(incoming, incoming[1:]):
                if previous.index_key == current.index_key:
                    raise DuplicateKeyError(current.index_key)
            for occurrence in incoming:
                if occurrence.index_key in self._items:
                    raise DuplicateKeyError(occurrence.index_key)

            if self._keys:
                for occurrence in incoming:
                    bisect.insort(self._keys, occurrence.index_key)
            else:
                self._keys = [o.index_key for o in incoming]
            for occurrence in incoming:
                self._items[occurrence.index_key] = occurrence
                self._track_end(occurrence)

        logger.debug("Bulk loaded %d occurrences (index size %d)", len(incoming), len(self._keys))
        return len(incoming)

    def remove(self, occurrence: Occurrence) -> bool:
        """Remove an occurrence; corrections are modelled as remove-then-insert.

        Returns:
            True if the occurrence was present
        """
        key = occurrence.index_key
        with self._lock:
            if key not in self._items:
                return False
            position = bisect.bisect_left(self._keys, key)
            del self._keys[position]
            del self._items[key]
            self._max_end = max((o.end_utc for o in self._items.values()), default=None)
        return True

    def range(self, start: datetime, end: datetime) -> list[Occurrence]:
        """Occurrences whose start instant lies in the half-open interval [start, end)."""
        if end <= start:
            return []
        lower = bisect.bisect_left(self._keys, (start.astimezone(UTC),))
        upper = bisect.bisect_left(self._keys, (end.astimezone(UTC),))
        return [self._items[key] for key in self._keys[lower:upper]]

    def first(self) -> Optional[Occurrence]:
        """Earliest occurrence, or None when empty."""
        return self._items[self._keys[0]] if self._keys else None

    def last(self) -> Optional[Occurrence]:
        """Latest-starting occurrence, or None when empty."""
        return self._items[self._keys[-1]] if self._keys else None

    def span(self) -> Optional[Span]:
        """Minimum start and maximum end across all occurrences, or None when empty."""
        first = self.first()
        if first is None or self._max_end is None:
            return None
        return Span(start=first.start, end=self._max_end.astimezone(first.start.tzinfo))

    def position(self, occurrence: Occurrence) -> int:
        """Zero-based chronological position of an indexed occurrence."""
        key = occurrence.index_key
        position = bisect.bisect_left(self._keys, key)
        if position >= len(self._keys) or self._keys[position] != key:
            raise KeyError(key)
        return position

    def position_at(self, instant: datetime) -> int:
        """Position of the first occurrence starting at or after ``instant``."""
        return bisect.bisect_left(self._keys, (instant.astimezone(UTC),))

    def slice(self, start: int, stop: int) -> list[Occurrence]:
        """Occurrences by chronological position, like list slicing."""
        return [self._items[key] for key in self._keys[start:stop]]

    def _track_end(self, occurrence: Occurrence) -> None:
        end = occurrence.end_utc
        if self._max_end is None or end > self._max_end:
            self._max_end = end

    def __len__(self) -> int:
        return len(self._keys)

    def __bool__(self) -> bool:
        return bool(self._keys)

    def __iter__(self) -> Iterator[Occurrence]:
        return iter([self._items[key] for key in self._keys])

    def __contains__(self, occurrence: object) -> bool:
        return isinstance(occurrence, Occurrence) and occurrence.index_key in self._items

    def __repr__(self) -> str:
        return f"EventIndex(size={len(self._keys)})"
