"""Unit tests for staticcal.event_merger.EventMerger."""

import random
from datetime import UTC, datetime

import pytest

from staticcal.event_merger import (
    REASON_SAME_CONTENT,
    REASON_SAME_DEFINITION,
    EventMerger,
    KeepWinnerPolicy,
)
from staticcal.models import Occurrence

pytestmark = pytest.mark.unit

NINE = datetime(2024, 1, 2, 9, 0, tzinfo=UTC)
NINE_THIRTY = datetime(2024, 1, 2, 9, 30, tzinfo=UTC)
TEN = datetime(2024, 1, 2, 10, 0, tzinfo=UTC)


class TestEventMerger:
    """Tests for duplicate detection and source precedence."""

    def setup_method(self):
        """Set up test fixtures."""
        self.merger = EventMerger(["source-a", "source-b", "source-c"])

    def create_occurrence(
        self,
        source_id: str,
        definition_id: str = "standup",
        start: datetime = NINE,
        end: datetime = NINE_THIRTY,
        summary: str = "Standup",
    ) -> Occurrence:
        """Create a test occurrence."""
        return Occurrence(
            definition_id=definition_id,
            source_id=source_id,
            start=start,
            end=end,
            summary=summary,
        )

    def test_same_definition_from_two_sources(self):
        """The earlier configured source wins; the other copy is dropped."""
        resolution = self.merger.resolve(
            [self.create_occurrence("source-b"), self.create_occurrence("source-a")]
        )

        assert len(resolution.kept) == 1
        assert resolution.kept[0].source_id == "source-a"
        assert resolution.duplicates_dropped == 1
        assert resolution.dropped[0].occurrence.source_id == "source-b"
        assert resolution.dropped[0].reason == REASON_SAME_DEFINITION

    def test_same_content_different_definition(self):
        """Identical summary, start and end across sources count as duplicates."""
        resolution = self.merger.resolve(
            [
                self.create_occurrence("source-c", definition_id="uid-1"),
                self.create_occurrence("source-b", definition_id="uid-2"),
            ]
        )

        assert [o.source_id for o in resolution.kept] == ["source-b"]
        assert resolution.dropped[0].reason == REASON_SAME_CONTENT

    def test_same_content_within_one_source_is_kept(self):
        """Two definitions in one source with identical text are both real events."""
        resolution = self.merger.resolve(
            [
                self.create_occurrence("source-a", definition_id="uid-1"),
                self.create_occurrence("source-a", definition_id="uid-2"),
            ]
        )
        assert len(resolution.kept) == 2

    def test_content_matching_can_be_disabled(self):
        """With match_content off only the definition key is used."""
        merger = EventMerger(["source-a", "source-b"], match_content=False)
        resolution = merger.resolve(
            [
                self.create_occurrence("source-a", definition_id="uid-1"),
                self.create_occurrence("source-b", definition_id="uid-2"),
            ]
        )
        assert len(resolution.kept) == 2

    def test_different_end_is_not_content_duplicate(self):
        """Content matching needs an identical end too."""
        resolution = self.merger.resolve(
            [
                self.create_occurrence("source-a", definition_id="uid-1"),
                self.create_occurrence("source-b", definition_id="uid-2", end=TEN),
            ]
        )
        assert len(resolution.kept) == 2

    def test_different_start_is_not_duplicate(self):
        """Same definition at different instants are separate occurrences."""
        resolution = self.merger.resolve(
            [
                self.create_occurrence("source-a"),
                self.create_occurrence("source-b", start=TEN, end=TEN),
            ]
        )
        assert len(resolution.kept) == 2

    def test_unlisted_sources_rank_last_alphabetically(self):
        """Sources missing from the configured order lose to listed ones."""
        resolution = self.merger.resolve(
            [
                self.create_occurrence("zeta"),
                self.create_occurrence("alpha"),
                self.create_occurrence("source-c"),
            ]
        )
        assert [o.source_id for o in resolution.kept] == ["source-c"]

        resolution = EventMerger([]).resolve(
            [self.create_occurrence("zeta"), self.create_occurrence("alpha")]
        )
        assert [o.source_id for o in resolution.kept] == ["alpha"]

    def test_resolution_independent_of_arrival_order(self):
        """Shuffling the candidates does not change the outcome."""
        candidates = [
            self.create_occurrence(source, definition_id=uid, start=start, end=end)
            for source in ("source-a", "source-b", "source-c")
            for uid, start, end in (("standup", NINE, NINE_THIRTY), ("review", TEN, TEN))
        ]
        expected = self.merger.resolve(candidates).kept

        rng = random.Random(7)
        for _ in range(5):
            shuffled = candidates[:]
            rng.shuffle(shuffled)
            assert self.merger.resolve(shuffled).kept == expected

    def test_resolve_is_idempotent(self):
        """Resolving an already resolved set drops nothing more."""
        first = self.merger.resolve(
            [self.create_occurrence("source-a"), self.create_occurrence("source-b")]
        )
        second = self.merger.resolve(first.kept)
        assert second.kept == first.kept
        assert second.duplicates_dropped == 0

    def test_custom_policy_is_applied(self):
        """A duplicate policy can fill gaps in the winner from the loser."""

        class FillLocation:
            def combine(self, winner, loser):
                if winner.location is None and loser.location:
                    return winner.model_copy(update={"location": loser.location})
                return winner

        merger = EventMerger(["source-a", "source-b"], policy=FillLocation())
        loser = self.create_occurrence("source-b").model_copy(update={"location": "Room 4"})
        resolution = merger.resolve([self.create_occurrence("source-a"), loser])

        assert resolution.kept[0].source_id == "source-a"
        assert resolution.kept[0].location == "Room 4"

    def test_default_policy_keeps_winner(self):
        """KeepWinnerPolicy never alters the winner."""
        winner = self.create_occurrence("source-a")
        assert KeepWinnerPolicy().combine(winner, self.create_occurrence("source-b")) is winner
