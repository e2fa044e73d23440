"""Turn raw timeline candidates into linked, dated timeline events.

For each batch:

1. Every candidate is matched by identity ``(source_semantic_key, event_type)``
   against stored events and earlier candidates of the batch; a repeat merges
   pages, tags and links into the existing event.
2. Relative anchors are looked up by ``source_semantic_key`` among stored events
   and every candidate of the batch, so forward references resolve.
3. Relative dates are computed in dependency order: an event waits until its
   anchor has settled. Events whose anchor never settles (cycles) keep no date.
4. ``blocking_for_others`` is recomputed for the whole document.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from licitagraph.extraction.models import RawTimelineEvent
from licitagraph.normalization import normalize_date, normalize_time
from licitagraph.storage.repository import DocumentRepository
from licitagraph.storage.schemas import (
    DateType,
    EntityType,
    ExtractedEntity,
    Importance,
    LinkedObligation,
    LinkedPenalty,
    LinkedRequirement,
    RelativeDirection,
    RelativeReference,
    RelativeUnit,
    TimelineEvent,
    Urgency,
)
from licitagraph.timeline.phases import phase_for_event_type, semantic_order
from licitagraph.utils.config import TimelineConfig

_PENALTY_TYPES = {EntityType.PENALTY, EntityType.SANCTION}
_REQUIREMENT_TYPES = {
    EntityType.REQUIREMENT,
    EntityType.TECHNICAL_CERTIFICATE,
    EntityType.MANDATORY_DOCUMENT,
}


class TimelineResult(BaseModel):
    """Outcome of resolving one batch of timeline candidates."""

    created: List[TimelineEvent] = Field(default_factory=list)
    merged: int = 0
    skipped: int = 0
    unresolved: int = Field(default=0, description="Events left without a date")
    links_dropped: int = Field(default=0, description="Linked keys that did not resolve")


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's end."""
    index = moment.year * 12 + (moment.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def add_business_days(moment: datetime, days: int) -> datetime:
    """Shift by ``days`` weekdays, skipping Saturdays and Sundays."""
    step = 1 if days >= 0 else -1
    remaining = abs(days)
    current = moment
    while remaining:
        current += timedelta(days=step)
        if current.weekday() < 5:
            remaining -= 1
    return current


def shift_date(
    anchor: datetime,
    offset: int,
    unit: RelativeUnit,
    direction: RelativeDirection = RelativeDirection.AFTER,
) -> datetime:
    """Return ``anchor`` moved by ``offset`` units before or after."""
    amount = -abs(offset) if direction == RelativeDirection.BEFORE else abs(offset)
    if unit == RelativeUnit.BUSINESS_DAYS:
        return add_business_days(anchor, amount)
    if unit == RelativeUnit.WEEKS:
        return anchor + timedelta(weeks=amount)
    if unit == RelativeUnit.MONTHS:
        return add_months(anchor, amount)
    if unit == RelativeUnit.YEARS:
        return add_months(anchor, amount * 12)
    if unit == RelativeUnit.HOURS:
        return anchor + timedelta(hours=amount)
    return anchor + timedelta(days=amount)


def parse_event_date(date_normalized: Optional[str], date_raw: str = "") -> Optional[datetime]:
    """Best-effort concrete timestamp from the extractor's date fields.

    ``date_normalized`` wins when it parses (ISO date or datetime, or any
    format the date normalizer understands); otherwise the raw text is tried.
    A time of day found in the raw text is attached to date-only values.
    """
    if date_normalized:
        try:
            parsed = datetime.fromisoformat(date_normalized.strip())
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is not None:
                parsed = parsed.replace(tzinfo=None)
            if "T" in date_normalized or ":" in date_normalized:
                return parsed
            return _with_time(parsed, date_raw)

    iso_day = normalize_date(date_normalized) or normalize_date(date_raw)
    if not iso_day:
        return None
    return _with_time(datetime.fromisoformat(iso_day), date_raw)


def _with_time(day: datetime, date_raw: str) -> datetime:
    time_of_day = normalize_time(date_raw)
    if not time_of_day:
        return day
    hours, minutes = (int(part) for part in time_of_day.split(":"))
    return day.replace(hour=hours, minute=minutes)


class TimelineResolver:
    """Creates timeline events for a document from raw candidates."""

    def __init__(self, repository: DocumentRepository, config: Optional[TimelineConfig] = None) -> None:
        self.repository = repository
        self.config = config or TimelineConfig()

    def process_timeline_events(
        self,
        document_id: str,
        raw_events: Sequence[RawTimelineEvent | Mapping[str, Any]],
        entity_id_map: Optional[Mapping[str, str]] = None,
    ) -> TimelineResult:
        """Resolve one batch of raw events.

        Args:
            document_id: Owning document.
            raw_events: Candidates (typed or plain mappings).
            entity_id_map: ``semantic_key -> entity id``; defaults to every
                entity stored for the document.

        Returns:
            Created events plus merge/skip counters.
        """
        result = TimelineResult()
        with self.repository.document_transaction(document_id):
            if entity_id_map is None:
                entity_id_map = {e.semantic_key: e.id for e in self.repository.list_entities(document_id)}
            entity_cache: Dict[str, Optional[ExtractedEntity]] = {}

            stored = self.repository.list_events(document_id)
            by_identity: Dict[Tuple[str, str], TimelineEvent] = {}
            anchors: Dict[str, TimelineEvent] = {}
            for event in stored:
                if event.source_semantic_key:
                    by_identity.setdefault((event.source_semantic_key, event.event_type), event)
                    anchors.setdefault(event.source_semantic_key, event)

            touched: Dict[str, TimelineEvent] = {}
            relative: List[Tuple[TimelineEvent, RawTimelineEvent]] = []
            created_ids: List[str] = []

            for index, item in enumerate(raw_events):
                raw = self._coerce(item, index)
                if raw is None:
                    result.skipped += 1
                    continue

                links, dropped = self._resolve_links(raw, entity_id_map, entity_cache)
                result.links_dropped += dropped
                identity = (raw.source_semantic_key, raw.event_type)
                event = by_identity.get(identity) if raw.source_semantic_key else None
                if event is None:
                    event = self._new_event(document_id, raw, entity_id_map, links)
                    created_ids.append(event.id)
                    if raw.source_semantic_key:
                        by_identity[identity] = event
                        anchors.setdefault(raw.source_semantic_key, event)
                else:
                    self._merge(event, raw, links)
                    result.merged += 1

                touched[event.id] = event
                # A stored fixed date is never replaced by a relative sighting.
                if raw.date_type == DateType.RELATIVE and event.date_type == DateType.RELATIVE:
                    relative.append((event, raw))

            self._resolve_relative_dates(relative, anchors)

            for event in touched.values():
                if event.date is None:
                    result.unresolved += 1
                self.repository.save_event(event)

            refreshed = self._recompute_blocking(document_id)
            result.created = [refreshed[event_id] for event_id in created_ids if event_id in refreshed]

        logger.info(
            "Processed timeline events",
            document_id=document_id,
            created=len(result.created),
            merged=result.merged,
            skipped=result.skipped,
            unresolved=result.unresolved,
        )
        return result

    def recompute_blocking(self, document_id: str) -> int:
        """Recompute ``blocking_for_others`` for every event; returns how many block others."""
        with self.repository.document_transaction(document_id):
            events = self._recompute_blocking(document_id)
        return sum(1 for event in events.values() if event.urgency.blocking_for_others)

    def clear_document_events(self, document_id: str) -> int:
        """Delete every event (and its comments) of a document."""
        with self.repository.document_transaction(document_id):
            return self.repository.delete_events(document_id)

    # -----------------------
    # Internals
    # -----------------------
    def _coerce(self, item: RawTimelineEvent | Mapping[str, Any], index: int) -> Optional[RawTimelineEvent]:
        if isinstance(item, RawTimelineEvent):
            return item
        if not isinstance(item, Mapping):
            return None
        try:
            return RawTimelineEvent.model_validate(dict(item))
        except ValidationError as exc:
            logger.warning("Skipping malformed timeline event", index=index, errors=exc.error_count())
            return None

    def _new_event(
        self,
        document_id: str,
        raw: RawTimelineEvent,
        entity_id_map: Mapping[str, str],
        links: Dict[str, List[Any]],
    ) -> TimelineEvent:
        phase = raw.phase or phase_for_event_type(raw.event_type)
        penalties: List[LinkedPenalty] = links["penalties"]
        event = TimelineEvent(
            document_id=document_id,
            date=None if raw.date_type == DateType.RELATIVE else parse_event_date(raw.date_normalized, raw.date_raw),
            date_raw=raw.date_raw,
            date_type=raw.date_type,
            event_type=raw.event_type,
            phase=phase,
            semantic_order=semantic_order(phase),
            title=raw.title,
            description=raw.description,
            importance=raw.importance or Importance(self.config.default_importance),
            action_required=raw.action_required,
            linked_penalties=penalties,
            linked_requirements=links["requirements"],
            linked_obligations=links["obligations"],
            linked_risk_ids=links["risks"],
            urgency=Urgency(
                has_penalty=bool(penalties),
                penalty_amount=penalties[0].value if penalties else None,
            ),
            tags=raw.tags,
            source_entity_id=entity_id_map.get(raw.source_semantic_key),
            source_semantic_key=raw.source_semantic_key,
            source_pages=[raw.page_number],
            excerpt=raw.excerpt,
        )
        if raw.confidence is not None:
            event.confidence = raw.confidence
        return event

    @staticmethod
    def _merge(event: TimelineEvent, raw: RawTimelineEvent, links: Dict[str, List[Any]]) -> None:
        event.source_pages = sorted({*event.source_pages, raw.page_number})
        event.tags = sorted({*event.tags, *raw.tags})

        known = event.linked_entity_ids()
        event.linked_penalties += [link for link in links["penalties"] if link.entity_id not in known]
        event.linked_requirements += [link for link in links["requirements"] if link.entity_id not in known]
        event.linked_obligations += [link for link in links["obligations"] if link.entity_id not in known]
        event.linked_risk_ids += [risk for risk in links["risks"] if risk not in known]

        if event.linked_penalties:
            event.urgency.has_penalty = True
            event.urgency.penalty_amount = event.urgency.penalty_amount or event.linked_penalties[0].value
        if not event.description and raw.description:
            event.description = raw.description
        if not event.action_required and raw.action_required:
            event.action_required = raw.action_required
        if not event.excerpt and raw.excerpt:
            event.excerpt = raw.excerpt
        if event.date is None:
            if raw.date_type == DateType.RELATIVE:
                event.date_type = DateType.RELATIVE
            else:
                date = parse_event_date(raw.date_normalized, raw.date_raw)
                if date is not None:
                    event.date = date
                    event.date_type = raw.date_type
                    event.relative_to = None
        if raw.confidence is not None and raw.confidence > event.confidence:
            event.confidence = raw.confidence

    def _resolve_links(
        self,
        raw: RawTimelineEvent,
        entity_id_map: Mapping[str, str],
        cache: Dict[str, Optional[ExtractedEntity]],
    ) -> Tuple[Dict[str, List[Any]], int]:
        dropped = 0

        def lookup(key: str) -> Optional[ExtractedEntity]:
            nonlocal dropped
            entity_id = entity_id_map.get(key)
            if entity_id is None:
                dropped += 1
                return None
            if entity_id not in cache:
                cache[entity_id] = self.repository.get_entity(entity_id)
            if cache[entity_id] is None:
                dropped += 1
            return cache[entity_id]

        penalties: List[LinkedPenalty] = []
        for key in raw.linked_penalty_keys:
            entity = lookup(key)
            if entity is not None and entity.type in _PENALTY_TYPES:
                penalties.append(
                    LinkedPenalty(
                        entity_id=entity.id,
                        semantic_key=entity.semantic_key,
                        type=entity.type,
                        description=entity.name,
                        value=entity.raw_value or None,
                    )
                )

        requirements: List[LinkedRequirement] = []
        for key in raw.linked_requirement_keys:
            entity = lookup(key)
            if entity is not None and entity.type in _REQUIREMENT_TYPES:
                requirements.append(
                    LinkedRequirement(
                        entity_id=entity.id,
                        semantic_key=entity.semantic_key,
                        type=entity.type,
                        description=entity.name,
                        mandatory=getattr(entity.metadata, "mandatory", True) is not False,
                    )
                )

        obligations: List[LinkedObligation] = []
        for key in raw.linked_obligation_keys:
            entity = lookup(key)
            if entity is not None and entity.type == EntityType.OBLIGATION:
                obligations.append(
                    LinkedObligation(
                        entity_id=entity.id,
                        semantic_key=entity.semantic_key,
                        description=entity.name,
                        action_required=getattr(entity.metadata, "action", "") or entity.raw_value or None,
                    )
                )

        risks: List[str] = []
        for key in raw.linked_risk_keys:
            entity_id = entity_id_map.get(key)
            if entity_id is None:
                dropped += 1
            elif entity_id not in risks:
                risks.append(entity_id)

        links = {
            "penalties": _unique_by_entity(penalties),
            "requirements": _unique_by_entity(requirements),
            "obligations": _unique_by_entity(obligations),
            "risks": risks,
        }
        return links, dropped

    @staticmethod
    def _resolve_relative_dates(
        relative: List[Tuple[TimelineEvent, RawTimelineEvent]],
        anchors: Mapping[str, TimelineEvent],
    ) -> None:
        pending: Dict[str, Tuple[TimelineEvent, RawTimelineEvent, TimelineEvent]] = {}

        for event, raw in relative:
            reference = raw.relative_to
            if reference is None:
                event.relative_to = None
                event.date = None
                continue

            anchor = anchors.get(reference.event_semantic_key)
            if anchor is not None and anchor.id == event.id:
                anchor = None
            direction = reference.direction
            if reference.offset < 0:
                direction = (
                    RelativeDirection.AFTER if direction == RelativeDirection.BEFORE else RelativeDirection.BEFORE
                )
            event.relative_to = RelativeReference(
                event_id=anchor.id if anchor else None,
                anchor_semantic_key=reference.event_semantic_key,
                offset=abs(reference.offset),
                unit=reference.unit,
                direction=direction,
            )
            event.date = None
            if anchor is None:
                logger.debug(
                    "Relative anchor not found; event stays unresolved",
                    event_id=event.id,
                    anchor=reference.event_semantic_key,
                )
                continue
            pending[event.id] = (event, raw, anchor)

        progress = True
        while pending and progress:
            progress = False
            for event_id, (event, raw, anchor) in list(pending.items()):
                if anchor.id in pending:
                    continue
                reference = event.relative_to
                if anchor.date is not None and reference is not None:
                    event.date = shift_date(anchor.date, reference.offset, reference.unit, reference.direction)
                else:
                    event.date = parse_event_date(raw.date_normalized, raw.date_raw)
                del pending[event_id]
                progress = True

        for event, _raw, _anchor in pending.values():
            logger.debug("Relative date chain is cyclic; event stays unresolved", event_id=event.id)

    def _recompute_blocking(self, document_id: str) -> Dict[str, TimelineEvent]:
        events = self.repository.list_events(document_id)
        anchored = {
            event.relative_to.event_id
            for event in events
            if event.relative_to is not None and event.relative_to.event_id
        }
        refreshed: Dict[str, TimelineEvent] = {}
        for event in events:
            blocking = event.id in anchored
            if event.urgency.blocking_for_others != blocking:
                event.urgency.blocking_for_others = blocking
                event = self.repository.save_event(event)
            refreshed[event.id] = event
        return refreshed


def _unique_by_entity(links: List[Any]) -> List[Any]:
    seen: set[str] = set()
    unique = []
    for link in links:
        if link.entity_id not in seen:
            seen.add(link.entity_id)
            unique.append(link)
    return unique
