"""Tests for the in-memory document repository."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import List

import pytest

from licitagraph.exceptions import StorageError
from licitagraph.storage import InMemoryRepository, create_repository
from licitagraph.storage.schemas import (
    ConflictResolution,
    DocumentSection,
    EntityConflict,
    EntityType,
    ExtractedEntity,
    SectionLevel,
    TimelineComment,
    TimelineEvent,
)
from licitagraph.utils.config import DatabaseConfig

DOC = "edital-001"


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


def _entity(semantic_key: str = "MULTA:ATRASO", document_id: str = DOC, **kwargs) -> ExtractedEntity:
    return ExtractedEntity(
        document_id=document_id,
        type=kwargs.pop("type", EntityType.PENALTY),
        semantic_key=semantic_key,
        **kwargs,
    )


def test_create_repository_defaults_to_memory() -> None:
    repo = create_repository(DatabaseConfig(storage_backend="memory"))

    assert isinstance(repo, InMemoryRepository)
    assert repo.health_check() is True


def test_save_and_find_entity(repository: InMemoryRepository) -> None:
    entity = repository.save_entity(_entity(normalized_value="0.1"))

    found = repository.find_entity_by_semantic_key(DOC, "MULTA:ATRASO")

    assert found is not None
    assert found.id == entity.id
    assert repository.get_entity(entity.id).normalized_value == "0.1"
    assert repository.find_entity_by_semantic_key("other-doc", "MULTA:ATRASO") is None


def test_returned_records_are_copies(repository: InMemoryRepository) -> None:
    entity = repository.save_entity(_entity(normalized_value="0.1"))

    entity.normalized_value = "changed"
    fetched = repository.get_entity(entity.id)
    fetched.raw_value = "changed too"

    assert repository.get_entity(entity.id).normalized_value == "0.1"
    assert repository.get_entity(entity.id).raw_value == ""


def test_semantic_key_is_unique_per_document(repository: InMemoryRepository) -> None:
    repository.save_entity(_entity())

    with pytest.raises(StorageError, match="already bound"):
        repository.save_entity(_entity())

    # Same key in another document is a different fact
    repository.save_entity(_entity(document_id="edital-002"))
    assert len(repository.list_entities("edital-002")) == 1


def test_list_entities_filters_by_type(repository: InMemoryRepository) -> None:
    repository.save_entity(_entity("MULTA:ATRASO"))
    repository.save_entity(_entity("PRAZO:SESSAO", type=EntityType.DEADLINE))

    assert [e.semantic_key for e in repository.list_entities(DOC, EntityType.DEADLINE)] == ["PRAZO:SESSAO"]
    assert len(repository.list_entities(DOC)) == 2


def test_transaction_rolls_back_on_error(repository: InMemoryRepository) -> None:
    kept = repository.save_entity(_entity("MULTA:ATRASO", normalized_value="0.1"))

    with pytest.raises(RuntimeError):
        with repository.document_transaction(DOC):
            repository.save_entity(_entity("MULTA:RESCISAO"))
            changed = repository.get_entity(kept.id)
            changed.normalized_value = "0.2"
            repository.save_entity(changed)
            raise RuntimeError("boom")

    assert [e.semantic_key for e in repository.list_entities(DOC)] == ["MULTA:ATRASO"]
    assert repository.get_entity(kept.id).normalized_value == "0.1"
    assert repository.find_entity_by_semantic_key(DOC, "MULTA:RESCISAO") is None


def test_rollback_of_new_document_leaves_nothing(repository: InMemoryRepository) -> None:
    with pytest.raises(RuntimeError):
        with repository.document_transaction(DOC):
            saved = repository.save_entity(_entity())
            raise RuntimeError("boom")

    assert repository.list_entities(DOC) == []
    assert repository.get_entity(saved.id) is None


def test_rollback_keeps_other_documents(repository: InMemoryRepository) -> None:
    with pytest.raises(RuntimeError):
        with repository.document_transaction(DOC):
            dropped = repository.save_entity(_entity("MULTA:RESCISAO"))
            other = repository.save_entity(_entity("MULTA:ATRASO", document_id="edital-002"))
            raise RuntimeError("boom")

    assert repository.get_entity(dropped.id) is None
    assert repository.get_entity(other.id).document_id == "edital-002"


def test_parallel_documents_keep_their_records(repository: InMemoryRepository) -> None:
    def ingest(document_id: str) -> List[str]:
        kept: List[str] = []
        for index in range(40):
            try:
                with repository.document_transaction(document_id):
                    saved = repository.save_entity(_entity(f"MULTA:{index}", document_id=document_id))
                    if index % 2:
                        raise RuntimeError("discard")
                kept.append(saved.id)
            except RuntimeError:
                pass
        return kept

    documents = [f"edital-{n:03d}" for n in range(8)]
    with ThreadPoolExecutor(max_workers=len(documents)) as executor:
        results = dict(zip(documents, executor.map(ingest, documents)))

    for document_id, kept in results.items():
        assert len(kept) == 20
        assert len(repository.list_entities(document_id)) == 20
        assert all(repository.get_entity(entity_id) is not None for entity_id in kept)


def test_nested_transaction_commits_with_outermost(repository: InMemoryRepository) -> None:
    with pytest.raises(RuntimeError):
        with repository.document_transaction(DOC):
            with repository.document_transaction(DOC):
                repository.save_entity(_entity())
            # Inner block exited cleanly; the outer failure still discards it
            raise RuntimeError("boom")

    assert repository.list_entities(DOC) == []

    with repository.document_transaction(DOC):
        with repository.document_transaction(DOC):
            repository.save_entity(_entity())
    assert len(repository.list_entities(DOC)) == 1


def test_conflicts_are_appended(repository: InMemoryRepository) -> None:
    existing = _entity(normalized_value="0.1")
    incoming = _entity(normalized_value="0.12")
    conflict = EntityConflict(
        document_id=DOC,
        semantic_key=existing.semantic_key,
        existing_entity=existing,
        incoming_entity=incoming,
        resolution=ConflictResolution.KEPT_EXISTING,
    )

    repository.append_conflict(conflict)

    assert repository.list_conflicts(DOC) == [conflict]
    assert repository.list_conflicts("other-doc") == []


def test_sections_listed_by_order(repository: InMemoryRepository) -> None:
    second = repository.save_section(
        DocumentSection(document_id=DOC, level=SectionLevel.SECTION, order=1, title="Objeto")
    )
    first = repository.save_section(
        DocumentSection(document_id=DOC, level=SectionLevel.CHAPTER, order=0, title="Preâmbulo")
    )

    assert [s.id for s in repository.list_sections(DOC)] == [first.id, second.id]
    assert repository.get_section(second.id).title == "Objeto"


def test_comments_filtered_by_event_and_document(repository: InMemoryRepository) -> None:
    event = repository.save_event(TimelineEvent(document_id=DOC, title="Sessão pública"))
    other = repository.save_event(TimelineEvent(document_id="edital-002", title="Sessão"))
    repository.save_comment(TimelineComment(timeline_event_id=event.id, document_id=DOC, content="a"))
    repository.save_comment(
        TimelineComment(timeline_event_id=other.id, document_id="edital-002", content="b")
    )

    assert [c.content for c in repository.list_comments(event_id=event.id)] == ["a"]
    assert [c.content for c in repository.list_comments(document_id="edital-002")] == ["b"]
    assert len(repository.list_comments()) == 2


def test_delete_comment(repository: InMemoryRepository) -> None:
    event = repository.save_event(TimelineEvent(document_id=DOC))
    comment = repository.save_comment(
        TimelineComment(timeline_event_id=event.id, document_id=DOC, content="revisar")
    )

    assert repository.delete_comment(comment.id) is True
    assert repository.delete_comment(comment.id) is False
    assert repository.get_comment(comment.id) is None


def test_delete_events_removes_comments(repository: InMemoryRepository) -> None:
    event = repository.save_event(TimelineEvent(document_id=DOC))
    comment = repository.save_comment(
        TimelineComment(timeline_event_id=event.id, document_id=DOC, content="revisar")
    )
    repository.save_entity(_entity())

    assert repository.delete_events(DOC) == 1
    assert repository.get_event(event.id) is None
    assert repository.get_comment(comment.id) is None
    assert len(repository.list_entities(DOC)) == 1


def test_delete_document_cascades(repository: InMemoryRepository) -> None:
    entity = repository.save_entity(_entity())
    section = repository.save_section(
        DocumentSection(document_id=DOC, level=SectionLevel.CHAPTER, order=0)
    )
    event = repository.save_event(TimelineEvent(document_id=DOC))
    repository.save_comment(TimelineComment(timeline_event_id=event.id, document_id=DOC, content="x"))
    repository.save_entity(_entity(document_id="edital-002"))

    counts = repository.delete_document(DOC)

    assert counts == {"entities": 1, "conflicts": 0, "sections": 1, "events": 1, "comments": 1}
    assert repository.get_entity(entity.id) is None
    assert repository.get_section(section.id) is None
    assert repository.get_event(event.id) is None
    assert len(repository.list_entities("edital-002")) == 1


def test_delete_unknown_document(repository: InMemoryRepository) -> None:
    assert repository.delete_document("missing") == {
        "entities": 0,
        "conflicts": 0,
        "sections": 0,
        "events": 0,
        "comments": 0,
    }
