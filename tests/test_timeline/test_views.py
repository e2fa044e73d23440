"""Tests for timeline read views."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from licitagraph.storage import InMemoryRepository
from licitagraph.storage.schemas import (
    DateType,
    EntityType,
    Importance,
    LinkedPenalty,
    Phase,
    RelativeReference,
    TimelineEvent,
    Urgency,
)
from licitagraph.timeline.timeline_resolver import TimelineResolver
from licitagraph.timeline.views import (
    TimelineViews,
    categorize_events,
    compute_urgency,
    days_until,
    sort_events,
)
from licitagraph.utils.config import TimelineConfig

DOC = "edital-001"
NOW = datetime(2024, 9, 20, 12, 0)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def views(repository: InMemoryRepository) -> TimelineViews:
    return TimelineViews(repository, TimelineConfig(critical_window_days=30))


def _save(repository: InMemoryRepository, title: str, date: datetime | None = None, **kwargs) -> TimelineEvent:
    return repository.save_event(TimelineEvent(document_id=DOC, title=title, date=date, **kwargs))


def test_days_until_rounds_up() -> None:
    assert days_until(datetime(2024, 9, 24), NOW) == 4
    assert days_until(datetime(2024, 9, 20, 13, 0), NOW) == 1
    assert days_until(datetime(2024, 9, 10), NOW) == -10


def test_compute_urgency_keeps_blocking_flag() -> None:
    event = TimelineEvent(
        document_id=DOC,
        date=datetime(2024, 9, 24),
        linked_penalties=[
            LinkedPenalty(entity_id="p1", semantic_key="MULTA:A", type=EntityType.PENALTY, value="10%")
        ],
        urgency=Urgency(blocking_for_others=True),
    )

    urgency = compute_urgency(event, NOW)

    assert urgency.days_until_deadline == 4
    assert urgency.has_penalty is True
    assert urgency.penalty_amount == "10%"
    assert urgency.blocking_for_others is True
    assert compute_urgency(TimelineEvent(document_id=DOC), NOW).days_until_deadline is None


def test_same_date_ties_break_by_phase() -> None:
    day = datetime(2024, 9, 24)
    events = [
        TimelineEvent(document_id=DOC, date=day, phase=Phase.RATIFICATION, title="homologação"),
        TimelineEvent(document_id=DOC, date=day, phase=Phase.PUBLIC_SESSION, title="sessão"),
        TimelineEvent(document_id=DOC, date=day, phase=Phase.PUBLICATION, title="publicação"),
        TimelineEvent(document_id=DOC, date=None, phase=Phase.PUBLICATION, title="sem data"),
        TimelineEvent(document_id=DOC, date=day - timedelta(days=1), phase=Phase.PAYMENT, title="antes"),
    ]

    ordered = sort_events(events)

    assert [e.title for e in ordered] == ["antes", "publicação", "sessão", "homologação", "sem data"]


def test_tie_break_through_resolver(repository: InMemoryRepository, views: TimelineViews) -> None:
    TimelineResolver(repository).process_timeline_events(
        DOC,
        [
            {"sourceSemanticKey": "C", "eventType": "HOMOLOGACAO", "dateNormalized": "2024-09-24"},
            {"sourceSemanticKey": "B", "eventType": "SESSAO_PUBLICA", "dateNormalized": "2024-09-24"},
            {"sourceSemanticKey": "A", "eventType": "PUBLICACAO", "dateNormalized": "2024-09-24"},
        ],
    )

    assert [e.phase for e in views.get_events(DOC, NOW)] == [
        Phase.PUBLICATION,
        Phase.PUBLIC_SESSION,
        Phase.RATIFICATION,
    ]


def test_categorize_events_partitions() -> None:
    anchor = TimelineEvent(document_id=DOC, date=datetime(2024, 9, 24))
    resolved = TimelineEvent(
        document_id=DOC,
        date=datetime(2024, 9, 29),
        date_type=DateType.RELATIVE,
        relative_to=RelativeReference(event_id=anchor.id, anchor_semantic_key="A", offset=5),
    )
    dangling = TimelineEvent(
        document_id=DOC,
        date_type=DateType.RELATIVE,
        relative_to=RelativeReference(anchor_semantic_key="X", offset=5),
    )
    undated = TimelineEvent(document_id=DOC, date_raw="a definir")
    ranged = TimelineEvent(document_id=DOC, date=datetime(2024, 10, 1), date_type=DateType.RANGE)

    dated, relative, unresolved = categorize_events([anchor, resolved, dangling, undated, ranged])

    assert dated == [anchor, ranged]
    assert relative == [resolved]
    assert unresolved == [dangling, undated]


def test_build_timeline_buckets_and_summary(repository: InMemoryRepository, views: TimelineViews) -> None:
    anchor = _save(repository, "sessão", datetime(2024, 9, 24), importance=Importance.CRITICAL, tags=["sessao"])
    _save(
        repository,
        "recurso",
        datetime(2024, 9, 27),
        date_type=DateType.RELATIVE,
        relative_to=RelativeReference(event_id=anchor.id, anchor_semantic_key="A", offset=3),
        tags=["recurso"],
    )
    _save(repository, "assinatura", None, date_type=DateType.RELATIVE, relative_to=RelativeReference(offset=5))

    timeline = views.build_timeline(DOC, NOW)

    assert [e.title for e in timeline.timeline] == ["sessão"]
    assert [e.title for e in timeline.relative_events] == ["recurso"]
    assert [e.title for e in timeline.unresolved_events] == ["assinatura"]
    assert timeline.stats.total == 3
    assert (timeline.stats.with_date, timeline.stats.relative, timeline.stats.unresolved) == (1, 1, 1)
    assert timeline.stats.upcoming_critical == 1
    assert timeline.stats.tags == ["recurso", "sessao"]
    assert timeline.timeline[0].urgency.days_until_deadline == 4


def test_critical_events(repository: InMemoryRepository, views: TimelineViews) -> None:
    _save(repository, "critical-soon", datetime(2024, 9, 24), importance=Importance.CRITICAL)
    _save(repository, "low-soon", datetime(2024, 10, 5), importance=Importance.LOW)
    _save(repository, "low-far", datetime(2024, 12, 31), importance=Importance.LOW)
    _save(repository, "low-past", datetime(2024, 9, 10), importance=Importance.LOW)
    _save(repository, "critical-past", datetime(2024, 9, 10), importance=Importance.CRITICAL)
    _save(repository, "critical-undated", None, importance=Importance.CRITICAL)
    _save(repository, "high-undated", None, importance=Importance.HIGH)

    titles = [e.title for e in views.get_critical_events(DOC, now=NOW)]

    assert titles == ["critical-past", "critical-soon", "low-soon", "critical-undated"]
    assert [e.title for e in views.get_critical_events(DOC, days_ahead=7, now=NOW)] == [
        "critical-past",
        "critical-soon",
        "critical-undated",
    ]


def test_timeline_stats(repository: InMemoryRepository, views: TimelineViews) -> None:
    penalty = LinkedPenalty(entity_id="p1", semantic_key="MULTA:A", type=EntityType.PENALTY, value="10%")
    _save(repository, "a", datetime(2024, 9, 24), importance=Importance.CRITICAL, linked_penalties=[penalty])
    _save(repository, "b", datetime(2024, 10, 1), importance=Importance.HIGH, tags=["z", "a"])
    _save(repository, "c", datetime(2025, 1, 1), importance=Importance.HIGH)
    _save(repository, "d", None, date_type=DateType.RELATIVE)

    stats = views.get_timeline_stats(DOC, NOW)

    assert stats.total_events == 4
    assert stats.by_importance == {"critical": 1, "high": 2, "medium": 1, "low": 0}
    assert stats.by_date_type == {"fixed": 3, "relative": 1, "range": 0}
    assert stats.upcoming_critical == 2
    assert stats.with_penalties == 1
    assert stats.tags == ["a", "z"]


def test_group_by_phase(repository: InMemoryRepository, views: TimelineViews) -> None:
    _save(repository, "pagamento", datetime(2024, 12, 1), phase=Phase.PAYMENT)
    _save(repository, "sessão", datetime(2024, 9, 24), phase=Phase.PUBLIC_SESSION)
    _save(repository, "lances", datetime(2024, 9, 24, 11), phase=Phase.PUBLIC_SESSION)
    _save(repository, "publicação", datetime(2024, 9, 1), phase=Phase.PUBLICATION)

    groups = views.group_by_phase(DOC, NOW)

    assert [(g.phase, g.count) for g in groups] == [
        (Phase.PUBLICATION, 1),
        (Phase.PUBLIC_SESSION, 2),
        (Phase.PAYMENT, 1),
    ]
    assert [e.title for e in groups[1].events] == ["sessão", "lances"]
    assert groups[1].order == 5


def test_filters(repository: InMemoryRepository, views: TimelineViews) -> None:
    linked = _save(
        repository,
        "assinatura",
        datetime(2024, 10, 15),
        importance=Importance.HIGH,
        tags=["contrato"],
        source_entity_id="entity-1",
    )
    _save(
        repository,
        "entrega",
        datetime(2024, 11, 15),
        linked_penalties=[LinkedPenalty(entity_id="entity-2", semantic_key="M", type=EntityType.PENALTY)],
    )

    assert [e.id for e in views.get_events_by_tag(DOC, "contrato")] == [linked.id]
    assert [e.id for e in views.get_events_by_importance(DOC, "high")] == [linked.id]
    assert [e.id for e in views.get_events_for_entity(DOC, "entity-1")] == [linked.id]
    assert [e.title for e in views.get_events_for_entity(DOC, "entity-2")] == ["entrega"]
    assert views.get_events_for_entity("edital-999", "entity-1") == []


def test_get_event_refreshes_urgency(repository: InMemoryRepository, views: TimelineViews) -> None:
    event = _save(repository, "sessão", datetime(2024, 9, 24))

    fetched = views.get_event(event.id, NOW)

    assert fetched.urgency.days_until_deadline == 4
    assert repository.get_event(event.id).urgency.days_until_deadline is None
    assert views.get_event("missing") is None
