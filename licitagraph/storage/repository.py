"""Storage-agnostic persistence interface plus an in-memory implementation.

Every engine receives a :class:`DocumentRepository` through its constructor.
Writers for one document are serialized by ``document_transaction``, which is
re-entrant and atomic: if the outermost block raises, everything written inside
it is rolled back.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from loguru import logger

from licitagraph.exceptions import StorageError
from licitagraph.storage.schemas import (
    DocumentSection,
    EntityConflict,
    EntityType,
    ExtractedEntity,
    TimelineComment,
    TimelineEvent,
)


class DocumentRepository(ABC):
    """Persistence collaborator shared by the unifier, structure builder and timeline."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._depth: Dict[str, int] = {}

    def _lock_for(self, document_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(document_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[document_id] = lock
            return lock

    @contextmanager
    def document_transaction(self, document_id: str) -> Iterator["DocumentRepository"]:
        """Serialize writers for ``document_id`` and make the enclosed block atomic."""
        with self._lock_for(document_id):
            depth = self._depth.get(document_id, 0)
            if depth == 0:
                self._begin(document_id)
            self._depth[document_id] = depth + 1
            try:
                yield self
            except BaseException:
                self._depth[document_id] = depth
                if depth == 0:
                    logger.warning("Rolling back document transaction", document_id=document_id)
                    self._rollback(document_id)
                raise
            else:
                self._depth[document_id] = depth
                if depth == 0:
                    self._commit(document_id)

    # Transaction hooks

    @abstractmethod
    def _begin(self, document_id: str) -> None: ...

    @abstractmethod
    def _commit(self, document_id: str) -> None: ...

    @abstractmethod
    def _rollback(self, document_id: str) -> None: ...

    # Entities

    @abstractmethod
    def find_entity_by_semantic_key(
        self, document_id: str, semantic_key: str
    ) -> Optional[ExtractedEntity]: ...

    @abstractmethod
    def get_entity(self, entity_id: str) -> Optional[ExtractedEntity]: ...

    @abstractmethod
    def save_entity(self, entity: ExtractedEntity) -> ExtractedEntity: ...

    @abstractmethod
    def list_entities(
        self, document_id: str, entity_type: Optional[EntityType] = None
    ) -> List[ExtractedEntity]: ...

    # Conflicts

    @abstractmethod
    def append_conflict(self, conflict: EntityConflict) -> None: ...

    @abstractmethod
    def list_conflicts(self, document_id: str) -> List[EntityConflict]: ...

    # Sections

    @abstractmethod
    def save_section(self, section: DocumentSection) -> DocumentSection: ...

    @abstractmethod
    def get_section(self, section_id: str) -> Optional[DocumentSection]: ...

    @abstractmethod
    def list_sections(self, document_id: str) -> List[DocumentSection]:
        """Sections of a document ordered by ``order``."""

    # Timeline events

    @abstractmethod
    def save_event(self, event: TimelineEvent) -> TimelineEvent: ...

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[TimelineEvent]: ...

    @abstractmethod
    def list_events(self, document_id: str) -> List[TimelineEvent]: ...

    # Comments

    @abstractmethod
    def save_comment(self, comment: TimelineComment) -> TimelineComment: ...

    @abstractmethod
    def get_comment(self, comment_id: str) -> Optional[TimelineComment]: ...

    @abstractmethod
    def delete_comment(self, comment_id: str) -> bool: ...

    @abstractmethod
    def list_comments(
        self, *, document_id: Optional[str] = None, event_id: Optional[str] = None
    ) -> List[TimelineComment]: ...

    @abstractmethod
    def delete_entities(self, document_id: str) -> int:
        """Remove a document's entities and their conflict records."""

    @abstractmethod
    def delete_sections(self, document_id: str) -> int:
        """Remove a document's sections."""

    @abstractmethod
    def delete_events(self, document_id: str) -> int:
        """Remove a document's timeline events and their comments."""

    # Documents

    @abstractmethod
    def delete_document(self, document_id: str) -> Dict[str, int]:
        """Cascade delete; returns the number of removed records per kind."""

    def health_check(self) -> bool:
        return True

    def close(self) -> None:
        """Release resources (no-op by default)."""


class _DocumentState:
    """All records for one document."""

    def __init__(self) -> None:
        self.entities: Dict[str, ExtractedEntity] = {}
        self.key_index: Dict[str, str] = {}
        self.conflicts: List[EntityConflict] = []
        self.sections: Dict[str, DocumentSection] = {}
        self.events: Dict[str, TimelineEvent] = {}
        self.comments: Dict[str, TimelineComment] = {}

    def copy(self) -> "_DocumentState":
        clone = _DocumentState()
        clone.entities = {k: v.model_copy(deep=True) for k, v in self.entities.items()}
        clone.key_index = dict(self.key_index)
        clone.conflicts = list(self.conflicts)
        clone.sections = {k: v.model_copy(deep=True) for k, v in self.sections.items()}
        clone.events = {k: v.model_copy(deep=True) for k, v in self.events.items()}
        clone.comments = {k: v.model_copy(deep=True) for k, v in self.comments.items()}
        return clone


def _record_keys(state: _DocumentState) -> Iterator[Tuple[str, str]]:
    for kind, records in (
        ("entity", state.entities),
        ("section", state.sections),
        ("event", state.events),
        ("comment", state.comments),
    ):
        for record_id in records:
            yield kind, record_id


class InMemoryRepository(DocumentRepository):
    """Dict-backed repository used for tests and single-process runs.

    Records are copied on the way in and on the way out, so callers never alias
    stored state.
    """

    def __init__(self) -> None:
        super().__init__()
        self._documents: Dict[str, _DocumentState] = {}
        self._snapshots: Dict[str, Optional[_DocumentState]] = {}
        # (kind, record id) -> document id, for lookups by id alone
        self._owners: Dict[Tuple[str, str], str] = {}
        # Guards the maps shared by every document; per-document locks do not cover them.
        self._registry = threading.RLock()

    def _state(self, document_id: str) -> _DocumentState:
        with self._registry:
            state = self._documents.get(document_id)
            if state is None:
                state = _DocumentState()
                self._documents[document_id] = state
            return state

    def _begin(self, document_id: str) -> None:
        current = self._documents.get(document_id)
        snapshot = current.copy() if current is not None else None
        with self._registry:
            self._snapshots[document_id] = snapshot

    def _commit(self, document_id: str) -> None:
        with self._registry:
            self._snapshots.pop(document_id, None)

    def _rollback(self, document_id: str) -> None:
        with self._registry:
            snapshot = self._snapshots.pop(document_id, None)
            discarded = self._documents.pop(document_id, None)
            if discarded is not None:
                self._disown(*_record_keys(discarded))
            if snapshot is not None:
                self._documents[document_id] = snapshot
                for key in _record_keys(snapshot):
                    self._owners[key] = document_id

    def _own(self, kind: str, record_id: str, document_id: str) -> None:
        with self._registry:
            self._owners[(kind, record_id)] = document_id

    def _disown(self, *keys: Tuple[str, str]) -> None:
        with self._registry:
            for key in keys:
                self._owners.pop(key, None)

    def _owned(self, kind: str, record_id: str) -> Optional[_DocumentState]:
        with self._registry:
            document_id = self._owners.get((kind, record_id))
            if document_id is None:
                return None
            return self._documents.get(document_id)

    # Entities

    def find_entity_by_semantic_key(
        self, document_id: str, semantic_key: str
    ) -> Optional[ExtractedEntity]:
        state = self._documents.get(document_id)
        if state is None:
            return None
        entity_id = state.key_index.get(semantic_key)
        if entity_id is None:
            return None
        return state.entities[entity_id].model_copy(deep=True)

    def get_entity(self, entity_id: str) -> Optional[ExtractedEntity]:
        state = self._owned("entity", entity_id)
        if state is None or entity_id not in state.entities:
            return None
        return state.entities[entity_id].model_copy(deep=True)

    def save_entity(self, entity: ExtractedEntity) -> ExtractedEntity:
        state = self._state(entity.document_id)
        indexed = state.key_index.get(entity.semantic_key)
        if indexed is not None and indexed != entity.id:
            raise StorageError(
                f"Semantic key {entity.semantic_key!r} already bound to entity {indexed} "
                f"in document {entity.document_id}"
            )
        previous = state.entities.get(entity.id)
        if previous is not None and previous.semantic_key != entity.semantic_key:
            state.key_index.pop(previous.semantic_key, None)
        state.entities[entity.id] = entity.model_copy(deep=True)
        state.key_index[entity.semantic_key] = entity.id
        self._own("entity", entity.id, entity.document_id)
        return entity.model_copy(deep=True)

    def list_entities(
        self, document_id: str, entity_type: Optional[EntityType] = None
    ) -> List[ExtractedEntity]:
        state = self._documents.get(document_id)
        if state is None:
            return []
        return [
            entity.model_copy(deep=True)
            for entity in state.entities.values()
            if entity_type is None or entity.type == entity_type
        ]

    # Conflicts

    def append_conflict(self, conflict: EntityConflict) -> None:
        self._state(conflict.document_id).conflicts.append(conflict)

    def list_conflicts(self, document_id: str) -> List[EntityConflict]:
        state = self._documents.get(document_id)
        return list(state.conflicts) if state else []

    # Sections

    def save_section(self, section: DocumentSection) -> DocumentSection:
        self._state(section.document_id).sections[section.id] = section.model_copy(deep=True)
        self._own("section", section.id, section.document_id)
        return section.model_copy(deep=True)

    def get_section(self, section_id: str) -> Optional[DocumentSection]:
        state = self._owned("section", section_id)
        if state is None or section_id not in state.sections:
            return None
        return state.sections[section_id].model_copy(deep=True)

    def list_sections(self, document_id: str) -> List[DocumentSection]:
        state = self._documents.get(document_id)
        if state is None:
            return []
        return [
            section.model_copy(deep=True)
            for section in sorted(state.sections.values(), key=lambda s: s.order)
        ]

    # Timeline events

    def save_event(self, event: TimelineEvent) -> TimelineEvent:
        self._state(event.document_id).events[event.id] = event.model_copy(deep=True)
        self._own("event", event.id, event.document_id)
        return event.model_copy(deep=True)

    def get_event(self, event_id: str) -> Optional[TimelineEvent]:
        state = self._owned("event", event_id)
        if state is None or event_id not in state.events:
            return None
        return state.events[event_id].model_copy(deep=True)

    def list_events(self, document_id: str) -> List[TimelineEvent]:
        state = self._documents.get(document_id)
        if state is None:
            return []
        return [event.model_copy(deep=True) for event in state.events.values()]

    # Comments

    def save_comment(self, comment: TimelineComment) -> TimelineComment:
        self._state(comment.document_id).comments[comment.id] = comment.model_copy(deep=True)
        self._own("comment", comment.id, comment.document_id)
        return comment.model_copy(deep=True)

    def get_comment(self, comment_id: str) -> Optional[TimelineComment]:
        state = self._owned("comment", comment_id)
        if state is None or comment_id not in state.comments:
            return None
        return state.comments[comment_id].model_copy(deep=True)

    def delete_comment(self, comment_id: str) -> bool:
        state = self._owned("comment", comment_id)
        if state is None or comment_id not in state.comments:
            return False
        del state.comments[comment_id]
        self._disown(("comment", comment_id))
        return True

    def list_comments(
        self, *, document_id: Optional[str] = None, event_id: Optional[str] = None
    ) -> List[TimelineComment]:
        with self._registry:
            if document_id is not None:
                states = [self._documents[document_id]] if document_id in self._documents else []
            else:
                states = list(self._documents.values())
        comments = [
            comment.model_copy(deep=True)
            for state in states
            for comment in state.comments.values()
            if event_id is None or comment.timeline_event_id == event_id
        ]
        return sorted(comments, key=lambda c: c.created_at)

    def delete_entities(self, document_id: str) -> int:
        state = self._documents.get(document_id)
        if state is None:
            return 0
        removed = len(state.entities)
        for entity_id in state.entities:
            self._disown(("entity", entity_id))
        state.entities.clear()
        state.key_index.clear()
        state.conflicts.clear()
        return removed

    def delete_sections(self, document_id: str) -> int:
        state = self._documents.get(document_id)
        if state is None:
            return 0
        removed = len(state.sections)
        for section_id in state.sections:
            self._disown(("section", section_id))
        state.sections.clear()
        return removed

    def delete_events(self, document_id: str) -> int:
        state = self._documents.get(document_id)
        if state is None:
            return 0
        removed = len(state.events)
        for event_id in state.events:
            self._disown(("event", event_id))
        for comment_id in state.comments:
            self._disown(("comment", comment_id))
        state.events.clear()
        state.comments.clear()
        return removed

    # Documents

    def delete_document(self, document_id: str) -> Dict[str, int]:
        with self.document_transaction(document_id):
            with self._registry:
                state = self._documents.pop(document_id, None)
                if state is not None:
                    self._disown(*_record_keys(state))
            if state is None:
                return {"entities": 0, "conflicts": 0, "sections": 0, "events": 0, "comments": 0}
            counts = {
                "entities": len(state.entities),
                "conflicts": len(state.conflicts),
                "sections": len(state.sections),
                "events": len(state.events),
                "comments": len(state.comments),
            }
        logger.info("Deleted document records", document_id=document_id, **counts)
        return counts
