"""Shared fixtures for the staticcal test-suite."""

import logging
from collections.abc import Callable, Generator, Iterable
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

import pytest

from staticcal.event_index import EventIndex
from staticcal.logging_config import STATICCAL_MODULES
from staticcal.models import EventDefinition, Occurrence


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object accepted wherever a Config is.

    Fields:
      - display_timezone: zone occurrences are normalized to
      - max_occurrences_per_rule: expansion cap
      - weekend_days / week_start: view grid conventions
      - agenda_page_size: occurrences per agenda page
    """
    return SimpleNamespace(
        display_timezone="UTC",
        max_occurrences_per_rule=5000,
        weekend_days=["saturday", "sunday"],
        week_start="sunday",
        agenda_page_size=3,
    )


@pytest.fixture
def make_definition() -> Callable[..., EventDefinition]:
    """Factory for EventDefinitions with sensible defaults."""

    def _make(definition_id: str = "evt-1", **overrides: Any) -> EventDefinition:
        data: dict[str, Any] = {
            "id": definition_id,
            "source_id": "primary",
            "summary": f"Event {definition_id}",
            "start": datetime(2024, 1, 1, 9, 0, tzinfo=UTC),
            "end": datetime(2024, 1, 1, 10, 0, tzinfo=UTC),
        }
        data.update(overrides)
        return EventDefinition(**data)

    return _make


@pytest.fixture
def make_occurrence() -> Callable[..., Occurrence]:
    """Factory for UTC occurrences."""

    def _make(
        start: datetime,
        end: datetime | None = None,
        definition_id: str = "evt-1",
        source_id: str = "primary",
        summary: str = "Event",
        **extra: Any,
    ) -> Occurrence:
        return Occurrence(
            definition_id=definition_id,
            source_id=source_id,
            start=start,
            end=end or start,
            summary=summary,
            **extra,
        )

    return _make


@pytest.fixture
def build_index() -> Callable[[Iterable[Occurrence]], EventIndex]:
    """Bulk-load occurrences into a fresh index."""

    def _build(occurrences: Iterable[Occurrence]) -> EventIndex:
        index = EventIndex()
        index.bulk_load(occurrences)
        return index

    return _build


@pytest.fixture(autouse=True)
def clean_staticcal_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear STATICCAL_* variables so host settings never leak into tests."""
    for name in (
        "STATICCAL_DEBUG",
        "STATICCAL_LOG_LEVEL",
        "STATICCAL_DISPLAY_TIMEZONE",
        "STATICCAL_TODAY",
        "STATICCAL_AGENDA_PAGE_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def restore_logger_levels() -> Generator[None, Any, None]:
    """Undo level changes made by configure_logging and the CLI."""
    names = ["", *STATICCAL_MODULES, "dateutil", "yaml", "concurrent.futures"]
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)
