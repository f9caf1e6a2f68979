"""Occurrence materialization for staticcal.

Expands one EventDefinition into concrete Occurrence instances bounded to a
closed horizon. Recurrence rules are evaluated with dateutil in the event's
own source timezone so that wall-clock repeats survive DST transitions, and
every instant is converted to the display timezone before it leaves here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any, Optional

from dateutil.rrule import rruleset, rrulestr

from .exceptions import MaterializationError
from .models import EventDefinition, EventOverride, Occurrence
from .timezone_utils import get_zone, local_midnight, localize, normalize_timezone_name

logger = logging.getLogger(__name__)

_ONE_MICROSECOND = timedelta(microseconds=1)


@dataclass
class MaterializerConfig:
    """Configuration for occurrence materialization."""

    display_timezone: str = "UTC"
    max_occurrences_per_rule: int = 5000

    @classmethod
    def from_settings(cls, settings: Any) -> "MaterializerConfig":
        """Extract materializer configuration from a settings object."""
        return cls(
            display_timezone=getattr(settings, "display_timezone", "UTC") or "UTC",
            max_occurrences_per_rule=getattr(settings, "max_occurrences_per_rule", 5000),
        )


@dataclass
class _Prepared:
    """A definition resolved against its zones, ready for enumeration."""

    definition: EventDefinition
    source_id: str
    source_tz: tzinfo
    start: datetime
    end: datetime
    duration: timedelta


class OccurrenceMaterializer:
    """Expands event definitions into horizon-bounded occurrences."""

    def __init__(self, settings: Any = None):
        """Initialize the materializer.

        Args:
            settings: Object exposing display_timezone and max_occurrences_per_rule
        """
        config = MaterializerConfig.from_settings(settings)
        self.display_tz = get_zone(config.display_timezone)
        self.max_occurrences = max(1, int(config.max_occurrences_per_rule))

    def materialize(
        self,
        definition: EventDefinition,
        horizon_start: datetime,
        horizon_end: datetime,
        source_id: Optional[str] = None,
    ) -> Iterator[Occurrence]:
        """Produce the occurrences of ``definition`` intersecting the horizon.

        Validation happens eagerly so a broken definition raises here rather
        than half way through iteration; the returned iterator is lazy.

        Args:
            definition: Event definition to expand
            horizon_start: Inclusive horizon start (naive means display timezone)
            horizon_end: Inclusive horizon end (naive means display timezone)
            source_id: Source calendar identifier, overriding definition.source_id

        Returns:
            Iterator of Occurrence objects

        Raises:
            MaterializationError: If the definition or its recurrence rule is invalid
        """
        lower = localize(horizon_start, self.display_tz)
        upper = localize(horizon_end, self.display_tz)
        if upper < lower:
            raise MaterializationError(
                f"Horizon end {upper.isoformat()} precedes start {lower.isoformat()}",
                definition_id=definition.id,
            )

        prepared = self._prepare(definition, source_id)

        if not definition.is_recurring:
            return self._single(prepared, lower, upper)

        rules, naive = self._build_ruleset(prepared)
        return self._expand(prepared, rules, naive, lower, upper)

    def materialize_to_list(
        self,
        definition: EventDefinition,
        horizon_start: datetime,
        horizon_end: datetime,
        source_id: Optional[str] = None,
    ) -> list[Occurrence]:
        """Expand a definition and return the occurrences as a list."""
        return list(self.materialize(definition, horizon_start, horizon_end, source_id))

    def definition_bounds(
        self, definition: EventDefinition, source_id: Optional[str] = None
    ) -> tuple[datetime, Optional[datetime]]:
        """Return (first start, last end) of a definition in the display timezone.

        The end is None for rules without COUNT or UNTIL, or whose finite
        expansion exceeds the per-rule occurrence cap.

        Raises:
            MaterializationError: If the definition or its recurrence rule is invalid
        """
        prepared = self._prepare(definition, source_id)
        first_start = prepared.start.astimezone(self.display_tz)
        if not definition.is_recurring:
            return first_start, prepared.end.astimezone(self.display_tz)

        rules, _naive = self._build_ruleset(prepared)
        rule_text = (definition.rrule or "").upper()
        if "COUNT=" not in rule_text and "UNTIL=" not in rule_text:
            return first_start, None

        last = None
        for i, generated in enumerate(rules):
            if i >= self.max_occurrences:
                return first_start, None
            last = generated
        last_start = localize(last, prepared.source_tz)
        last_end = (last_start.astimezone(UTC) + prepared.duration).astimezone(self.display_tz)
        return first_start, max(last_end, prepared.end.astimezone(self.display_tz))

    def _prepare(self, definition: EventDefinition, source_id: Optional[str]) -> _Prepared:
        resolved_source = source_id or definition.source_id
        if not resolved_source:
            raise MaterializationError(
                "Definition has no source calendar identifier", definition_id=definition.id
            )

        if definition.all_day:
            # All-day dates float: they land on the same date in every zone
            source_tz: tzinfo = self.display_tz
            start = local_midnight(definition.start.date(), source_tz)
            if definition.end is None:
                end = local_midnight(definition.start.date() + timedelta(days=1), source_tz)
            else:
                end = local_midnight(definition.end.date(), source_tz)
        else:
            source_tz = self._source_zone(definition)
            start = localize(definition.start, source_tz)
            end = start if definition.end is None else localize(definition.end, source_tz)

        if end < start:
            raise MaterializationError(
                f"Event ends ({end.isoformat()}) before it starts ({start.isoformat()})",
                definition_id=definition.id,
            )

        return _Prepared(
            definition=definition,
            source_id=resolved_source,
            source_tz=source_tz,
            start=start,
            end=end,
            duration=end.astimezone(UTC) - start.astimezone(UTC),
        )

    def _source_zone(self, definition: EventDefinition) -> tzinfo:
        """Zone in which the definition's wall-clock times are meant."""
        if definition.time_zone:
            if normalize_timezone_name(definition.time_zone) is None:
                logger.warning(
                    "Event %s has unknown timezone %r; using display timezone",
                    definition.id,
                    definition.time_zone,
                )
                return self.display_tz
            return get_zone(definition.time_zone)
        if definition.start.tzinfo is not None:
            return definition.start.tzinfo
        return self.display_tz

    def _build_ruleset(self, prepared: _Prepared) -> tuple[rruleset, bool]:
        """Parse the RRULE text into a rruleset anchored at the local start.

        Returns:
            (ruleset, naive) where naive means the set yields naive local times,
            used when the rule's UNTIL is floating.
        """
        definition = prepared.definition
        rule_text = (definition.rrule or "").strip()
        if "FREQ=" not in rule_text.upper():
            raise MaterializationError(
                f"RRULE missing required FREQ parameter: {rule_text!r}",
                definition_id=definition.id,
            )

        try:
            try:
                rules = rrulestr(rule_text, dtstart=prepared.start, forceset=True)
                naive = False
            except ValueError as exc:
                if "UNTIL" not in str(exc).upper():
                    raise
                # Floating UNTIL against an aware DTSTART: evaluate on wall-clock time
                rules = rrulestr(
                    rule_text, dtstart=prepared.start.replace(tzinfo=None), forceset=True
                )
                naive = True
            first = next(iter(rules), None)
        except (ValueError, TypeError, KeyError, OverflowError) as exc:
            raise MaterializationError(
                f"Invalid RRULE {rule_text!r}: {exc}", definition_id=definition.id
            ) from exc

        if first is None:
            raise MaterializationError(
                f"RRULE {rule_text!r} describes zero occurrences", definition_id=definition.id
            )
        return rules, naive

    def _single(self, prepared: _Prepared, lower: datetime, upper: datetime) -> Iterator[Occurrence]:
        if prepared.start <= upper and prepared.end >= lower:
            yield self._occurrence(prepared, prepared.start)

    def _expand(
        self,
        prepared: _Prepared,
        rules: rruleset,
        naive: bool,
        lower: datetime,
        upper: datetime,
    ) -> Iterator[Occurrence]:
        definition = prepared.definition
        source_tz = prepared.source_tz

        excluded = {localize(ex, source_tz).astimezone(UTC) for ex in definition.exdates}
        excluded_days = set(definition.exdate_days)
        overrides = {
            localize(o.recurrence_id, source_tz).astimezone(UTC): o for o in definition.overrides
        }
        matched: set[datetime] = set()

        def to_rule_time(dt: datetime) -> datetime:
            local = dt.astimezone(source_tz)
            return local.replace(tzinfo=None) if naive else local

        # Instances that started before the horizon but are still running count too
        scan_from = to_rule_time(lower - prepared.duration)
        scan_to = to_rule_time(upper)

        emitted = 0
        for generated in rules.xafter(scan_from, inc=True):
            if generated > scan_to:
                break
            instance = localize(generated, source_tz)
            instance_utc = instance.astimezone(UTC)

            if instance_utc in excluded or instance.date() in excluded_days:
                logger.debug("Suppressed excluded instance of %s at %s", definition.id, instance)
                continue

            override = overrides.get(instance_utc)
            if override is not None:
                matched.add(instance_utc)
                occurrence = self._override_occurrence(prepared, override, instance)
            else:
                occurrence = self._occurrence(prepared, instance, recurrence_id=instance)

            if occurrence is None or not self._intersects(occurrence, lower, upper):
                continue

            if emitted >= self.max_occurrences:
                logger.warning(
                    "RRULE expansion for %s limited to %d occurrences",
                    definition.id,
                    self.max_occurrences,
                )
                return
            emitted += 1
            yield occurrence

        # Overrides that move an instance from outside the scanned range into the horizon
        for rid_utc, override in overrides.items():
            if rid_utc in matched or rid_utc in excluded or override.cancelled:
                continue
            instance = rid_utc.astimezone(source_tz)
            if not self._is_rule_instance(rules, to_rule_time(instance)):
                logger.warning(
                    "Override for %s at %s does not match any rule instance; ignoring",
                    definition.id,
                    instance.isoformat(),
                )
                continue
            occurrence = self._override_occurrence(prepared, override, instance)
            if occurrence is not None and self._intersects(occurrence, lower, upper):
                yield occurrence

        logger.debug("Materialized %d occurrences for %s", emitted, definition.id)

    @staticmethod
    def _is_rule_instance(rules: rruleset, when: datetime) -> bool:
        return rules.after(when - _ONE_MICROSECOND, inc=True) == when

    @staticmethod
    def _intersects(occurrence: Occurrence, lower: datetime, upper: datetime) -> bool:
        return occurrence.start <= upper and occurrence.end >= lower

    def _occurrence(
        self,
        prepared: _Prepared,
        start: datetime,
        recurrence_id: Optional[datetime] = None,
    ) -> Occurrence:
        definition = prepared.definition
        display_start = start.astimezone(self.display_tz)
        if definition.all_day:
            # Whole days stay whole days even when the span crosses a DST change
            days = round(prepared.duration / timedelta(days=1))
            display_end = local_midnight(start.date() + timedelta(days=days), self.display_tz)
        else:
            display_end = (start.astimezone(UTC) + prepared.duration).astimezone(self.display_tz)

        return Occurrence(
            definition_id=definition.id,
            source_id=prepared.source_id,
            start=display_start,
            end=display_end,
            summary=definition.summary,
            description=definition.description,
            location=definition.location,
            url=definition.url,
            all_day=definition.all_day,
            recurrence_id=recurrence_id.astimezone(self.display_tz) if recurrence_id else None,
        )

    def _override_occurrence(
        self,
        prepared: _Prepared,
        override: EventOverride,
        instance: datetime,
    ) -> Optional[Occurrence]:
        definition = prepared.definition
        if override.cancelled:
            logger.debug("Cancelled instance of %s at %s", definition.id, instance)
            return None

        start = localize(override.start, prepared.source_tz) if override.start else instance
        if override.end is not None:
            end = localize(override.end, prepared.source_tz)
        else:
            end = (start.astimezone(UTC) + prepared.duration).astimezone(prepared.source_tz)
        if end < start:
            logger.warning(
                "Override for %s at %s ends before it starts; keeping rule instance",
                definition.id,
                instance.isoformat(),
            )
            return self._occurrence(prepared, instance, recurrence_id=instance)

        return Occurrence(
            definition_id=definition.id,
            source_id=prepared.source_id,
            start=start.astimezone(self.display_tz),
            end=end.astimezone(self.display_tz),
            summary=override.summary if override.summary is not None else definition.summary,
            description=(
                override.description if override.description is not None else definition.description
            ),
            location=override.location if override.location is not None else definition.location,
            url=definition.url,
            all_day=definition.all_day,
            is_override=True,
            recurrence_id=instance.astimezone(self.display_tz),
        )

