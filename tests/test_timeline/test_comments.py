"""Tests for TimelineCommentService."""

from __future__ import annotations

from datetime import datetime

import pytest

from licitagraph.exceptions import NotFoundError
from licitagraph.storage import InMemoryRepository
from licitagraph.storage.schemas import TimelineEvent
from licitagraph.timeline.comments import TimelineCommentService

DOC = "edital-001"


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def service(repository: InMemoryRepository) -> TimelineCommentService:
    return TimelineCommentService(repository)


@pytest.fixture
def event(repository: InMemoryRepository) -> TimelineEvent:
    return repository.save_event(
        TimelineEvent(document_id=DOC, title="Sessão pública", date=datetime(2024, 9, 24, 10))
    )


def test_create_comment_updates_count(
    service: TimelineCommentService, repository: InMemoryRepository, event: TimelineEvent
) -> None:
    comment = service.create_comment(event.id, "  Confirmar credenciamento  ", author="Ana")

    assert comment.content == "Confirmar credenciamento"
    assert comment.author == "Ana"
    assert comment.document_id == DOC
    assert repository.get_event(event.id).comments_count == 1


def test_blank_author_defaults_to_anonymous(service: TimelineCommentService, event: TimelineEvent) -> None:
    assert service.create_comment(event.id, "ok", author="  ").author == "anonymous"
    assert service.create_comment(event.id, "ok").author == "anonymous"


def test_create_comment_rejects_unknown_event(service: TimelineCommentService) -> None:
    with pytest.raises(NotFoundError):
        service.create_comment("missing", "texto")


def test_create_comment_rejects_empty_content(
    service: TimelineCommentService, repository: InMemoryRepository, event: TimelineEvent
) -> None:
    with pytest.raises(ValueError):
        service.create_comment(event.id, "   ")

    assert repository.get_event(event.id).comments_count == 0
    assert service.get_comments_by_event(event.id) == []


def test_update_comment(service: TimelineCommentService, event: TimelineEvent) -> None:
    comment = service.create_comment(event.id, "primeira versão")

    updated = service.update_comment(comment.id, "segunda versão")

    assert updated.content == "segunda versão"
    assert updated.updated_at >= comment.updated_at
    assert service.get_comment(comment.id).content == "segunda versão"

    with pytest.raises(NotFoundError):
        service.update_comment("missing", "x")
    with pytest.raises(ValueError):
        service.update_comment(comment.id, "")


def test_delete_comment_syncs_count(
    service: TimelineCommentService, repository: InMemoryRepository, event: TimelineEvent
) -> None:
    first = service.create_comment(event.id, "um")
    service.create_comment(event.id, "dois")

    assert service.delete_comment(first.id) is True
    assert repository.get_event(event.id).comments_count == 1
    assert service.delete_comment(first.id) is False


def test_listing_by_event_and_document(
    service: TimelineCommentService, repository: InMemoryRepository, event: TimelineEvent
) -> None:
    other = repository.save_event(TimelineEvent(document_id=DOC, title="Recurso"))
    foreign = repository.save_event(TimelineEvent(document_id="edital-002", title="Sessão"))
    service.create_comment(event.id, "a")
    service.create_comment(other.id, "b")
    service.create_comment(foreign.id, "c")

    assert [c.content for c in service.get_comments_by_event(event.id)] == ["a"]
    assert sorted(c.content for c in service.get_comments_by_document(DOC)) == ["a", "b"]
    assert [c.content for c in service.get_comments_by_document("edital-002")] == ["c"]


def test_clear_event_comments(
    service: TimelineCommentService, repository: InMemoryRepository, event: TimelineEvent
) -> None:
    service.create_comment(event.id, "a")
    service.create_comment(event.id, "b")

    assert service.clear_event_comments(event.id) == 2
    assert service.get_comments_by_event(event.id) == []
    assert repository.get_event(event.id).comments_count == 0

    with pytest.raises(NotFoundError):
        service.clear_event_comments("missing")
