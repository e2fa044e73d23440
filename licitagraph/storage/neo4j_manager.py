"""Neo4j-backed document repository.

Each record is stored as one node carrying its filter keys (``id``,
``document_id`` and, for entities, ``semantic_key`` and ``type``) as properties
plus the full model serialized as JSON in ``payload``.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from loguru import logger
from neo4j import GraphDatabase, Session
from neo4j.exceptions import DriverError, Neo4jError

from licitagraph.exceptions import StorageError
from licitagraph.storage.repository import DocumentRepository
from licitagraph.storage.schemas import (
    DocumentSection,
    EntityConflict,
    EntityType,
    ExtractedEntity,
    TimelineComment,
    TimelineEvent,
)
from licitagraph.utils.config import DatabaseConfig

NODE_LABELS = ("Entity", "EntityConflict", "DocumentSection", "TimelineEvent", "TimelineComment")


class Neo4jManager(DocumentRepository):
    """Manager for Neo4j graph database operations.

    Handles the driver lifecycle, schema creation and record persistence. Writes
    inside ``document_transaction`` run on one explicit Neo4j transaction per
    document; outside of it every call is auto-committed.

    Attributes:
        uri: Neo4j connection URI
        user: Neo4j username
        password: Neo4j password
        database: Neo4j database name
        driver: Neo4j driver instance
    """

    def __init__(self, config: DatabaseConfig, driver: Any = None):
        """Initialize Neo4j manager with configuration.

        Args:
            config: Database configuration
            driver: Pre-built driver (tests inject a mock here)
        """
        super().__init__()
        self.uri = config.neo4j_uri
        self.user = config.neo4j_user
        self.password = config.neo4j_password
        self.database = config.neo4j_database
        self.driver = driver
        self._connected = driver is not None
        self._local = threading.local()

    def connect(self) -> None:
        """Establish connection to Neo4j database.

        Raises:
            StorageError: If connection fails
        """
        try:
            self.driver = GraphDatabase.driver(
                self.uri, auth=(self.user, self.password), max_connection_pool_size=50
            )
            self.driver.verify_connectivity()
            self._connected = True
            logger.info("Connected to Neo4j", uri=self.uri)
        except (Neo4jError, DriverError) as e:
            logger.error("Failed to connect to Neo4j", uri=self.uri, error=str(e))
            raise StorageError(f"Failed to connect to Neo4j at {self.uri}: {e}") from e

    def close(self) -> None:
        """Close connection to Neo4j database."""
        if self.driver:
            self.driver.close()
            self._connected = False
            logger.info("Closed Neo4j connection")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for Neo4j session.

        Raises:
            StorageError: If not connected to database
        """
        if not self._connected or not self.driver:
            raise StorageError("Not connected to Neo4j. Call connect() first.")

        session = self.driver.session(database=self.database)
        try:
            yield session
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create uniqueness constraints and lookup indexes (idempotent)."""
        statements = [
            f"CREATE CONSTRAINT {label.lower()}_id_unique IF NOT EXISTS "
            f"FOR (n:{label}) REQUIRE n.id IS UNIQUE"
            for label in NODE_LABELS
        ]
        statements.append(
            "CREATE CONSTRAINT entity_semantic_key_unique IF NOT EXISTS "
            "FOR (n:Entity) REQUIRE (n.document_id, n.semantic_key) IS UNIQUE"
        )
        statements.extend(
            f"CREATE INDEX {label.lower()}_document_idx IF NOT EXISTS "
            f"FOR (n:{label}) ON (n.document_id)"
            for label in NODE_LABELS
        )
        with self.session() as session:
            for statement in statements:
                try:
                    session.run(statement)
                except Neo4jError as e:
                    logger.warning("Could not apply schema statement", statement=statement, error=str(e))
        logger.info("Neo4j schema ready")

    def health_check(self) -> bool:
        """Check if Neo4j connection is healthy."""
        try:
            with self.session() as session:
                result = session.run("RETURN 1")
                return result.single() is not None
        except (StorageError, Neo4jError, DriverError) as e:
            logger.error("Health check failed", error=str(e))
            return False

    # Query plumbing

    def _active_tx(self, document_id: Optional[str] = None) -> Any:
        transactions: Dict[str, Any] = getattr(self._local, "transactions", {})
        if document_id is not None:
            return transactions.get(document_id)
        # Lookups by id alone run in whichever transaction this thread holds
        return next(iter(transactions.values()), None)

    def _run(self, query: str, **params: Any) -> List[Dict[str, Any]]:
        try:
            tx = self._active_tx(params.get("document_id"))
            if tx is not None:
                return [dict(record) for record in tx.run(query, **params)]
            with self.session() as session:
                return [dict(record) for record in session.run(query, **params)]
        except (Neo4jError, DriverError) as e:
            logger.error("Neo4j query failed", error=str(e))
            raise StorageError(f"Neo4j query failed: {e}") from e

    def _begin(self, document_id: str) -> None:
        if not self._connected or not self.driver:
            raise StorageError("Not connected to Neo4j. Call connect() first.")
        try:
            session = self.driver.session(database=self.database)
            tx = session.begin_transaction()
        except (Neo4jError, DriverError) as e:
            raise StorageError(f"Could not open transaction: {e}") from e
        if not hasattr(self._local, "transactions"):
            self._local.transactions = {}
            self._local.sessions = {}
        self._local.transactions[document_id] = tx
        self._local.sessions[document_id] = session

    def _finish(self, document_id: str, *, commit: bool) -> None:
        tx = self._local.transactions.pop(document_id, None)
        session = self._local.sessions.pop(document_id, None)
        try:
            if tx is not None:
                if commit:
                    tx.commit()
                else:
                    tx.rollback()
        except (Neo4jError, DriverError) as e:
            raise StorageError(f"Could not finish transaction: {e}") from e
        finally:
            if session is not None:
                session.close()

    def _commit(self, document_id: str) -> None:
        self._finish(document_id, commit=True)

    def _rollback(self, document_id: str) -> None:
        self._finish(document_id, commit=False)

    def _upsert(self, label: str, record_id: str, document_id: str, payload: str, **extra: Any) -> None:
        query = f"""
        MERGE (n:{label} {{id: $record_id}})
        SET n += $props
        """
        props = {"document_id": document_id, "payload": payload, **extra}
        self._run(query, document_id=document_id, record_id=record_id, props=props)

    def _fetch_one(self, label: str, record_id: str) -> Optional[str]:
        rows = self._run(
            f"MATCH (n:{label} {{id: $record_id}}) RETURN n.payload AS payload",
            record_id=record_id,
        )
        return rows[0]["payload"] if rows else None

    def _fetch_by_document(self, label: str, document_id: str, where: str = "", **params: Any) -> List[str]:
        query = f"""
        MATCH (n:{label} {{document_id: $document_id}})
        {where}
        RETURN n.payload AS payload
        """
        rows = self._run(query, document_id=document_id, **params)
        return [row["payload"] for row in rows]

    # Entities

    def find_entity_by_semantic_key(
        self, document_id: str, semantic_key: str
    ) -> Optional[ExtractedEntity]:
        payloads = self._fetch_by_document(
            "Entity", document_id, "WHERE n.semantic_key = $semantic_key", semantic_key=semantic_key
        )
        return ExtractedEntity.model_validate_json(payloads[0]) if payloads else None

    def get_entity(self, entity_id: str) -> Optional[ExtractedEntity]:
        payload = self._fetch_one("Entity", entity_id)
        return ExtractedEntity.model_validate_json(payload) if payload else None

    def save_entity(self, entity: ExtractedEntity) -> ExtractedEntity:
        self._upsert(
            "Entity",
            entity.id,
            entity.document_id,
            entity.model_dump_json(),
            semantic_key=entity.semantic_key,
            type=entity.type.value,
        )
        logger.debug("Saved entity", entity_id=entity.id, semantic_key=entity.semantic_key)
        return entity

    def list_entities(
        self, document_id: str, entity_type: Optional[EntityType] = None
    ) -> List[ExtractedEntity]:
        if entity_type is None:
            payloads = self._fetch_by_document("Entity", document_id)
        else:
            payloads = self._fetch_by_document(
                "Entity", document_id, "WHERE n.type = $type", type=entity_type.value
            )
        return [ExtractedEntity.model_validate_json(p) for p in payloads]

    # Conflicts

    def append_conflict(self, conflict: EntityConflict) -> None:
        self._upsert(
            "EntityConflict",
            conflict.id,
            conflict.document_id,
            conflict.model_dump_json(),
            semantic_key=conflict.semantic_key,
            detected_at=conflict.detected_at.isoformat(),
        )

    def list_conflicts(self, document_id: str) -> List[EntityConflict]:
        conflicts = [
            EntityConflict.model_validate_json(p)
            for p in self._fetch_by_document("EntityConflict", document_id)
        ]
        return sorted(conflicts, key=lambda c: c.detected_at)

    # Sections

    def save_section(self, section: DocumentSection) -> DocumentSection:
        self._upsert(
            "DocumentSection",
            section.id,
            section.document_id,
            section.model_dump_json(),
            order=section.order,
            number=section.number,
        )
        return section

    def get_section(self, section_id: str) -> Optional[DocumentSection]:
        payload = self._fetch_one("DocumentSection", section_id)
        return DocumentSection.model_validate_json(payload) if payload else None

    def list_sections(self, document_id: str) -> List[DocumentSection]:
        sections = [
            DocumentSection.model_validate_json(p)
            for p in self._fetch_by_document("DocumentSection", document_id)
        ]
        return sorted(sections, key=lambda s: s.order)

    # Timeline events

    def save_event(self, event: TimelineEvent) -> TimelineEvent:
        self._upsert(
            "TimelineEvent",
            event.id,
            event.document_id,
            event.model_dump_json(),
            source_semantic_key=event.source_semantic_key,
        )
        return event

    def get_event(self, event_id: str) -> Optional[TimelineEvent]:
        payload = self._fetch_one("TimelineEvent", event_id)
        return TimelineEvent.model_validate_json(payload) if payload else None

    def list_events(self, document_id: str) -> List[TimelineEvent]:
        return [
            TimelineEvent.model_validate_json(p)
            for p in self._fetch_by_document("TimelineEvent", document_id)
        ]

    # Comments

    def save_comment(self, comment: TimelineComment) -> TimelineComment:
        self._upsert(
            "TimelineComment",
            comment.id,
            comment.document_id,
            comment.model_dump_json(),
            timeline_event_id=comment.timeline_event_id,
        )
        return comment

    def get_comment(self, comment_id: str) -> Optional[TimelineComment]:
        payload = self._fetch_one("TimelineComment", comment_id)
        return TimelineComment.model_validate_json(payload) if payload else None

    def delete_comment(self, comment_id: str) -> bool:
        rows = self._run(
            """
            MATCH (n:TimelineComment {id: $comment_id})
            DETACH DELETE n
            RETURN count(n) AS deleted
            """,
            comment_id=comment_id,
        )
        return bool(rows and rows[0]["deleted"])

    def list_comments(
        self, *, document_id: Optional[str] = None, event_id: Optional[str] = None
    ) -> List[TimelineComment]:
        query = """
        MATCH (n:TimelineComment)
        WHERE ($document_id IS NULL OR n.document_id = $document_id)
          AND ($event_id IS NULL OR n.timeline_event_id = $event_id)
        RETURN n.payload AS payload
        """
        rows = self._run(query, document_id=document_id, event_id=event_id)
        comments = [TimelineComment.model_validate_json(row["payload"]) for row in rows]
        return sorted(comments, key=lambda c: c.created_at)

    # Documents

    def _delete_label(self, label: str, document_id: str) -> int:
        rows = self._run(
            f"""
            MATCH (n:{label} {{document_id: $document_id}})
            DETACH DELETE n
            RETURN count(n) AS deleted
            """,
            document_id=document_id,
        )
        return rows[0]["deleted"] if rows else 0

    def delete_entities(self, document_id: str) -> int:
        removed = self._delete_label("Entity", document_id)
        self._delete_label("EntityConflict", document_id)
        return removed

    def delete_sections(self, document_id: str) -> int:
        return self._delete_label("DocumentSection", document_id)

    def delete_events(self, document_id: str) -> int:
        removed = self._delete_label("TimelineEvent", document_id)
        self._delete_label("TimelineComment", document_id)
        return removed

    def delete_document(self, document_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        keys = {
            "Entity": "entities",
            "EntityConflict": "conflicts",
            "DocumentSection": "sections",
            "TimelineEvent": "events",
            "TimelineComment": "comments",
        }
        with self.document_transaction(document_id):
            for label, key in keys.items():
                counts[key] = self._delete_label(label, document_id)
        logger.info("Deleted document records", document_id=document_id, **counts)
        return counts
