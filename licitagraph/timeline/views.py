"""Read-side timeline views: buckets, ordering, urgency and aggregate stats."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from licitagraph.storage.repository import DocumentRepository
from licitagraph.storage.schemas import DateType, Importance, Phase, TimelineEvent, Urgency
from licitagraph.timeline.phases import PHASE_ORDER, semantic_order
from licitagraph.utils.config import TimelineConfig

_SECONDS_PER_DAY = 24 * 60 * 60


class TimelineStats(BaseModel):
    total_events: int = 0
    by_importance: Dict[str, int] = Field(default_factory=dict)
    by_date_type: Dict[str, int] = Field(default_factory=dict)
    upcoming_critical: int = Field(default=0, description="CRITICAL/HIGH events inside the window")
    with_penalties: int = 0
    tags: List[str] = Field(default_factory=list)


class TimelineSummary(BaseModel):
    total: int = 0
    with_date: int = 0
    relative: int = 0
    unresolved: int = 0
    by_importance: Dict[str, int] = Field(default_factory=dict)
    upcoming_critical: int = 0
    tags: List[str] = Field(default_factory=list)


class Timeline(BaseModel):
    """Full timeline of a document, split into the three buckets."""

    document_id: str
    timeline: List[TimelineEvent] = Field(default_factory=list, description="Dated events")
    relative_events: List[TimelineEvent] = Field(default_factory=list)
    unresolved_events: List[TimelineEvent] = Field(default_factory=list)
    stats: TimelineSummary = Field(default_factory=TimelineSummary)


class PhaseGroup(BaseModel):
    phase: Phase
    order: int
    events: List[TimelineEvent] = Field(default_factory=list)
    count: int = 0


def days_until(moment: datetime, now: datetime) -> int:
    """Whole days from ``now`` to ``moment``, rounded up."""
    return math.ceil((moment - now).total_seconds() / _SECONDS_PER_DAY)


def compute_urgency(event: TimelineEvent, now: Optional[datetime] = None) -> Urgency:
    """Urgency flags derived from the event's date and links at ``now``."""
    now = now or datetime.now()
    return Urgency(
        days_until_deadline=days_until(event.date, now) if event.date is not None else None,
        has_penalty=bool(event.linked_penalties),
        penalty_amount=event.linked_penalties[0].value if event.linked_penalties else None,
        blocking_for_others=event.urgency.blocking_for_others,
    )


def sort_key(event: TimelineEvent) -> Tuple[bool, datetime, int, datetime]:
    return (
        event.date is None,
        event.date or datetime.max,
        event.semantic_order or semantic_order(event.phase),
        event.created_at,
    )


def sort_events(events: Iterable[TimelineEvent]) -> List[TimelineEvent]:
    """Order by date ascending, ties broken by procedural phase."""
    return sorted(events, key=sort_key)


def categorize_events(
    events: Iterable[TimelineEvent],
) -> Tuple[List[TimelineEvent], List[TimelineEvent], List[TimelineEvent]]:
    """Split into (dated, relative-resolved, unresolved); each event lands in exactly one."""
    dated: List[TimelineEvent] = []
    relative: List[TimelineEvent] = []
    unresolved: List[TimelineEvent] = []
    for event in events:
        if event.is_dated:
            dated.append(event)
        elif event.is_relative_resolved:
            relative.append(event)
        else:
            unresolved.append(event)
    return dated, relative, unresolved


class TimelineViews:
    """Query side of the timeline for one repository."""

    def __init__(self, repository: DocumentRepository, config: Optional[TimelineConfig] = None) -> None:
        self.repository = repository
        self.config = config or TimelineConfig()

    def get_events(self, document_id: str, now: Optional[datetime] = None) -> List[TimelineEvent]:
        """All events of a document, sorted, with urgency refreshed at ``now``."""
        now = now or datetime.now()
        events = self.repository.list_events(document_id)
        return sort_events(
            event.model_copy(update={"urgency": compute_urgency(event, now)}) for event in events
        )

    def build_timeline(self, document_id: str, now: Optional[datetime] = None) -> Timeline:
        now = now or datetime.now()
        events = self.get_events(document_id, now)
        dated, relative, unresolved = categorize_events(events)
        stats = self._stats(events, now)
        return Timeline(
            document_id=document_id,
            timeline=dated,
            relative_events=relative,
            unresolved_events=unresolved,
            stats=TimelineSummary(
                total=len(events),
                with_date=len(dated),
                relative=len(relative),
                unresolved=len(unresolved),
                by_importance=stats.by_importance,
                upcoming_critical=stats.upcoming_critical,
                tags=stats.tags,
            ),
        )

    def get_critical_events(
        self,
        document_id: str,
        days_ahead: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[TimelineEvent]:
        """CRITICAL events, plus any event due between now and ``days_ahead`` days.

        Undated events qualify only when CRITICAL.
        """
        now = now or datetime.now()
        horizon = self.config.critical_window_days if days_ahead is None else days_ahead
        critical: List[TimelineEvent] = []
        for event in self.get_events(document_id, now):
            is_critical = event.importance == Importance.CRITICAL
            if event.date is None:
                if is_critical:
                    critical.append(event)
                continue
            due_in = event.urgency.days_until_deadline
            if due_in is not None and due_in <= horizon and (is_critical or event.date >= now):
                critical.append(event)
        return critical

    def group_by_phase(self, document_id: str, now: Optional[datetime] = None) -> List[PhaseGroup]:
        groups: Dict[Phase, List[TimelineEvent]] = {}
        for event in self.get_events(document_id, now):
            groups.setdefault(event.phase, []).append(event)
        return [
            PhaseGroup(phase=phase, order=PHASE_ORDER.get(phase, 99), events=events, count=len(events))
            for phase, events in sorted(groups.items(), key=lambda item: PHASE_ORDER.get(item[0], 99))
        ]

    def get_events_by_tag(self, document_id: str, tag: str) -> List[TimelineEvent]:
        return [event for event in self.get_events(document_id) if tag in event.tags]

    def get_events_by_importance(self, document_id: str, importance: Importance | str) -> List[TimelineEvent]:
        wanted = Importance(importance)
        return [event for event in self.get_events(document_id) if event.importance == wanted]

    def get_events_for_entity(self, document_id: str, entity_id: str) -> List[TimelineEvent]:
        """Events sourced from or linked to ``entity_id``."""
        return [event for event in self.get_events(document_id) if entity_id in event.linked_entity_ids()]

    def get_event(self, event_id: str, now: Optional[datetime] = None) -> Optional[TimelineEvent]:
        event = self.repository.get_event(event_id)
        if event is None:
            return None
        return event.model_copy(update={"urgency": compute_urgency(event, now)})

    def get_timeline_stats(self, document_id: str, now: Optional[datetime] = None) -> TimelineStats:
        now = now or datetime.now()
        return self._stats(self.repository.list_events(document_id), now)

    def _stats(self, events: List[TimelineEvent], now: datetime) -> TimelineStats:
        window_end = now + timedelta(days=self.config.critical_window_days)
        by_importance = {importance.value: 0 for importance in Importance}
        by_date_type = {date_type.value: 0 for date_type in DateType}
        upcoming_critical = 0
        with_penalties = 0
        tags: set[str] = set()

        for event in events:
            by_importance[event.importance.value] += 1
            by_date_type[event.date_type.value] += 1
            if event.linked_penalties:
                with_penalties += 1
            if (
                event.date is not None
                and now <= event.date <= window_end
                and event.importance in (Importance.CRITICAL, Importance.HIGH)
            ):
                upcoming_critical += 1
            tags.update(event.tags)

        return TimelineStats(
            total_events=len(events),
            by_importance=by_importance,
            by_date_type=by_date_type,
            upcoming_critical=upcoming_critical,
            with_penalties=with_penalties,
            tags=sorted(tags),
        )
