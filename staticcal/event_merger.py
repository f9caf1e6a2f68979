"""Cross-source merging and deduplication of occurrences for staticcal.

Every occurrence passes through the resolver before it reaches the index.
Duplicates are collapsed by whole-occurrence precedence: the copy from the
source listed earliest in the configured source order wins and the others
are dropped. Field-level merging plugs in through ``DuplicatePolicy``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from .models import Occurrence

logger = logging.getLogger(__name__)

REASON_SAME_DEFINITION = "same-definition"
REASON_SAME_CONTENT = "same-content"


class DuplicatePolicy(Protocol):
    """Decides what survives when two occurrences are duplicates."""

    def combine(self, winner: Occurrence, loser: Occurrence) -> Occurrence:
        """Return the occurrence to keep in place of ``winner``.

        ``winner`` comes from the higher-precedence source. The result must
        keep the winner's index key.
        """
        ...


class KeepWinnerPolicy:
    """Whole-occurrence precedence: the winner is kept unchanged."""

    def combine(self, winner: Occurrence, loser: Occurrence) -> Occurrence:
        return winner


@dataclass
class DroppedOccurrence:
    """An occurrence removed by the resolver."""

    occurrence: Occurrence
    kept: Occurrence
    reason: str


@dataclass
class Resolution:
    """Outcome of resolving a candidate set."""

    kept: list[Occurrence] = field(default_factory=list)
    dropped: list[DroppedOccurrence] = field(default_factory=list)

    @property
    def duplicates_dropped(self) -> int:
        return len(self.dropped)


class EventMerger:
    """Collapses duplicate occurrences using the configured source order."""

    def __init__(
        self,
        source_order: Sequence[str] = (),
        policy: DuplicatePolicy | None = None,
        match_content: bool = True,
    ):
        """Initialize the resolver.

        Args:
            source_order: Source identifiers, highest precedence first
            policy: Duplicate policy; defaults to keeping the winner unchanged
            match_content: Also treat identical summary/start/end across sources as duplicates
        """
        self.source_rank = {source_id: rank for rank, source_id in enumerate(source_order)}
        self.policy: DuplicatePolicy = policy or KeepWinnerPolicy()
        self.match_content = match_content

    def precedence_key(self, occurrence: Occurrence) -> tuple[int, str, datetime, str, bool]:
        """Sort key putting higher-precedence occurrences first.

        Sources missing from the configured order rank after all listed ones,
        alphabetically. Rule instances rank before overrides of the same slot.
        """
        rank = self.source_rank.get(occurrence.source_id, len(self.source_rank))
        return (
            rank,
            occurrence.source_id,
            occurrence.start_utc,
            occurrence.definition_id,
            occurrence.is_override,
        )

    def resolve(self, candidates: Iterable[Occurrence]) -> Resolution:
        """Resolve a complete candidate set.

        Two occurrences are duplicates when they share definition id and
        start instant, or (weaker) when summary, start and end are identical
        and they come from different sources. The result does not depend on
        the order in which candidates arrive.

        Args:
            candidates: Every occurrence destined for the index

        Returns:
            Resolution with kept occurrences (in precedence order) and drops
        """
        ordered = sorted(candidates, key=self.precedence_key)
        resolution = Resolution()

        by_definition: dict[tuple[str, datetime], int] = {}
        by_content: dict[tuple[str, datetime, datetime], int] = {}

        for occurrence in ordered:
            definition_key = (occurrence.definition_id, occurrence.start_utc)
            content_key = (occurrence.summary, occurrence.start_utc, occurrence.end_utc)

            slot = by_definition.get(definition_key)
            reason = REASON_SAME_DEFINITION
            if slot is None and self.match_content:
                content_slot = by_content.get(content_key)
                if (
                    content_slot is not None
                    and resolution.kept[content_slot].source_id != occurrence.source_id
                ):
                    slot = content_slot
                    reason = REASON_SAME_CONTENT

            if slot is not None:
                winner = resolution.kept[slot]
                resolution.kept[slot] = self.policy.combine(winner, occurrence)
                resolution.dropped.append(
                    DroppedOccurrence(occurrence=occurrence, kept=winner, reason=reason)
                )
                logger.debug(
                    "Dropped duplicate %s from %s at %s (%s; kept %s from %s)",
                    occurrence.definition_id,
                    occurrence.source_id,
                    occurrence.start.isoformat(),
                    reason,
                    winner.definition_id,
                    winner.source_id,
                )
                continue

            by_definition[definition_key] = len(resolution.kept)
            by_content.setdefault(content_key, len(resolution.kept))
            resolution.kept.append(occurrence)

        if resolution.dropped:
            logger.info(
                "Deduplication removed %d of %d occurrences",
                len(resolution.dropped),
                len(ordered),
            )
        return resolution
