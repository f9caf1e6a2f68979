"""Exception hierarchy for the staticcal engine.

Per-source and per-definition failures are isolated and aggregated into the
run report; only index invariant violations propagate and abort the run.
"""

from __future__ import annotations

from typing import Any


class StaticCalError(Exception):
    """Base exception for all staticcal errors."""


class SourceRetrievalError(StaticCalError):
    """A whole calendar source is unavailable.

    The source contributes zero definitions; the run continues with the rest.
    """

    def __init__(self, message: str, source_id: str | None = None):
        super().__init__(message)
        self.source_id = source_id


class MaterializationError(StaticCalError):
    """A single definition could not be expanded into occurrences.

    Raised when:
    - The recurrence rule cannot be parsed
    - The rule describes zero valid occurrences ever
    - The definition ends before it starts
    """

    def __init__(self, message: str, definition_id: str | None = None):
        super().__init__(message)
        self.definition_id = definition_id


class DuplicateKeyError(StaticCalError):
    """Two occurrences with the same index key reached the index.

    This means the merge/dedup step was bypassed or is broken. It is a bug,
    not a user-facing condition, and aborts the run.
    """

    def __init__(self, key: Any):
        super().__init__(f"Duplicate index key: {key!r}")
        self.key = key


class EmptyIndexWarning(StaticCalError, UserWarning):
    """The aggregate span holds no occurrences.

    Recorded in the run report; views degrade to an explicit "no events" window.
    """
