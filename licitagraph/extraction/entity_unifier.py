"""Unify raw candidate entities into one record per semantic key.

Unification runs in two passes over a batch:

1. Creation/merge. Each candidate's value is normalized according to its type
   and matched against the stored entity with the same ``(document_id,
   semantic_key)``:
   - no stored entity: create one;
   - equal values, or values within the acceptable variation: merge the new
     source into the stored entity;
   - otherwise: resolve by confidence. A strictly more confident candidate
     replaces the stored value; in both outcomes an ``EntityConflict`` audit
     record is appended.
2. Relationships. Declared ``related_semantic_keys`` are resolved against the
   document's semantic-key -> id map once every candidate of the batch has an
   id, so references to later items of the same batch resolve. Keys that are
   still unknown are dropped.

Acceptable variation: when both normalized values parse as numbers their
difference must not exceed ``numeric_tolerance`` times the larger magnitude;
otherwise both are compared with every non-alphanumeric character removed.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from licitagraph.extraction.models import RawEntity
from licitagraph.normalization import (
    fold_text,
    generate_deduplication_key,
    normalize_date,
    normalize_days_period,
    normalize_monetary,
    normalize_percentage,
    normalize_time,
    normalize_warranty_period,
    parse_number,
)
from licitagraph.storage.metadata import build_metadata
from licitagraph.storage.repository import DocumentRepository
from licitagraph.storage.schemas import (
    ConflictResolution,
    DeclaredRelation,
    EntityConflict,
    EntityType,
    ExtractedEntity,
    RelatedEntity,
    Source,
)
from licitagraph.utils.config import NormalizationConfig, UnificationConfig

_NON_ALNUM_RE = re.compile(r"[^A-Z0-9]")
_WHITESPACE_RE = re.compile(r"\s+")

_TEMPORAL_TYPES = {EntityType.DEADLINE, EntityType.DATE}
_MONETARY_TYPES = {EntityType.PENALTY, EntityType.SANCTION}
_COMPOSITE_TYPES = {
    EntityType.REQUIREMENT,
    EntityType.TECHNICAL_CERTIFICATE,
    EntityType.MANDATORY_DOCUMENT,
}


class UnificationResult(BaseModel):
    """Outcome of unifying one batch."""

    entities: List[ExtractedEntity] = Field(default_factory=list)
    created: int = 0
    updated: int = 0
    conflicts_resolved: int = 0
    conflicts: List[EntityConflict] = Field(default_factory=list)
    skipped: int = 0
    relationships_resolved: int = 0
    relationships_dropped: int = 0
    id_map: Dict[str, str] = Field(default_factory=dict, description="semantic_key -> entity id")


def values_match(existing: str, incoming: str, *, tolerance: float = 0.001) -> bool:
    """Return True when two normalized values denote the same fact."""
    if existing == incoming:
        return True

    existing_num = parse_number(existing)
    incoming_num = parse_number(incoming)
    if existing_num is not None and incoming_num is not None:
        larger = max(abs(existing_num), abs(incoming_num))
        return abs(existing_num - incoming_num) <= larger * tolerance

    return _NON_ALNUM_RE.sub("", fold_text(existing)) == _NON_ALNUM_RE.sub("", fold_text(incoming))


def _format_number(value: float) -> str:
    return repr(float(value))


class EntityUnifier:
    """Deduplicate and reconcile extracted entities for a document."""

    def __init__(
        self,
        repository: DocumentRepository,
        config: Optional[UnificationConfig] = None,
        normalization: Optional[NormalizationConfig] = None,
    ) -> None:
        self.repository = repository
        self.config = config or UnificationConfig()
        self.normalization = normalization or NormalizationConfig()

    # -----------------------
    # Public API
    # -----------------------
    def unify(
        self, document_id: str, batch: Sequence[RawEntity | Mapping[str, Any]]
    ) -> UnificationResult:
        """Unify one batch of raw entities into the repository."""
        result = UnificationResult()
        touched: Dict[str, ExtractedEntity] = {}
        declared: List[tuple[str, RawEntity]] = []

        with self.repository.document_transaction(document_id):
            # Pass 1: create, merge or resolve conflicts
            for index, item in enumerate(batch):
                raw = self._coerce(item, index)
                if raw is None:
                    result.skipped += 1
                    continue

                candidate = self.build_candidate(document_id, raw)
                entity = self._upsert(candidate, result)
                touched[entity.id] = entity
                declared.append((entity.id, raw))

            # Pass 2: resolve declared relationships against the complete map
            id_map = self._key_map(document_id)
            for entity_id, raw in declared:
                entity = touched[entity_id]
                changed = False
                for related in raw.related_semantic_keys:
                    target_id = id_map.get(related.semantic_key)
                    if target_id is None:
                        result.relationships_dropped += 1
                        logger.debug(
                            "Dropping dangling relationship",
                            document_id=document_id,
                            source=entity.semantic_key,
                            target=related.semantic_key,
                        )
                        continue
                    if entity.add_relation(
                        RelatedEntity(target_id=target_id, relationship_kind=related.relationship)
                    ):
                        result.relationships_resolved += 1
                        changed = True
                if changed:
                    entity.updated_at = datetime.now()
                    touched[entity_id] = self.repository.save_entity(entity)

        result.entities = list(touched.values())
        result.id_map = id_map
        logger.info(
            "Unified entity batch",
            document_id=document_id,
            created=result.created,
            updated=result.updated,
            conflicts_resolved=result.conflicts_resolved,
            skipped=result.skipped,
        )
        return result

    def build_candidate(self, document_id: str, raw: RawEntity) -> ExtractedEntity:
        """Normalize a raw entity into an unsaved :class:`ExtractedEntity`."""
        metadata_input = dict(raw.metadata)
        if raw.type == EntityType.OBLIGATION and raw.obligation_details:
            metadata_input.update(raw.obligation_details)
        metadata = build_metadata(raw.type.value, metadata_input)

        normalized_value = self.normalize_value(raw.type, raw.raw_value, metadata)
        confidence = raw.confidence if raw.confidence is not None else self.config.default_confidence
        source = Source(
            page_number=raw.page_number,
            excerpt=raw.excerpt_text[: self.config.excerpt_max_length],
            confidence=confidence,
        )
        return ExtractedEntity(
            document_id=document_id,
            type=raw.type,
            semantic_key=raw.semantic_key,
            deduplication_key=generate_deduplication_key(
                raw.type.value, normalized_value, length=self.config.dedup_key_length
            ),
            name=raw.name,
            raw_value=raw.raw_value,
            normalized_value=normalized_value,
            section_id=raw.section_id,
            metadata=metadata,
            sources=[source],
            declared_relations=[
                DeclaredRelation(semantic_key=r.semantic_key, relationship=r.relationship)
                for r in raw.related_semantic_keys
            ],
            confidence=confidence,
        )

    def normalize_value(self, entity_type: EntityType, raw_value: str, metadata: Any = None) -> str:
        """Type-specific canonical value; falls back to the raw text on a parse miss."""
        if entity_type in _TEMPORAL_TYPES:
            date = normalize_date(raw_value)
            time = normalize_time(raw_value)
            if date and time:
                return f"{date}T{time}"
            if date:
                return date
            days = normalize_days_period(raw_value)
            if days:
                return days.canonical()
            months = normalize_warranty_period(
                raw_value, days_per_month=self.normalization.days_per_month
            )
            if months:
                return f"{months}M"
            return raw_value

        if entity_type in _MONETARY_TYPES:
            percentage = normalize_percentage(raw_value)
            if percentage is not None:
                return _format_number(percentage)
            amount = normalize_monetary(raw_value)
            if amount is not None:
                return _format_number(amount)
            return raw_value

        if entity_type in _COMPOSITE_TYPES and metadata is not None:
            category, item = metadata.composite_parts()
            return _WHITESPACE_RE.sub("_", f"{category}:{item}".upper())

        return _WHITESPACE_RE.sub("_", raw_value.upper())[: self.normalization.max_default_value_length]

    def backfill_relationships(self, document_id: str) -> int:
        """Re-resolve every entity's declared relations against the full key map.

        Returns:
            Number of relationships added.
        """
        added = 0
        with self.repository.document_transaction(document_id):
            id_map = self._key_map(document_id)
            for entity in self.repository.list_entities(document_id):
                changed = False
                for relation in entity.declared_relations:
                    target_id = id_map.get(relation.semantic_key)
                    if target_id is None:
                        continue
                    if entity.add_relation(
                        RelatedEntity(target_id=target_id, relationship_kind=relation.relationship)
                    ):
                        added += 1
                        changed = True
                if changed:
                    entity.updated_at = datetime.now()
                    self.repository.save_entity(entity)
        logger.info("Backfilled relationships", document_id=document_id, added=added)
        return added

    # -----------------------
    # Read operations
    # -----------------------
    def get_entities_by_document(self, document_id: str) -> List[ExtractedEntity]:
        return self.repository.list_entities(document_id)

    def get_entities_by_type(self, document_id: str, entity_type: EntityType | str) -> List[ExtractedEntity]:
        return self.repository.list_entities(document_id, EntityType(entity_type))

    def get_entity_by_semantic_key(self, document_id: str, semantic_key: str) -> Optional[ExtractedEntity]:
        return self.repository.find_entity_by_semantic_key(document_id, semantic_key.strip())

    def get_existing_semantic_keys(self, document_id: str) -> List[str]:
        return sorted(self._key_map(document_id))

    def search_entities(
        self,
        document_id: str,
        query: str,
        entity_type: EntityType | str | None = None,
    ) -> List[ExtractedEntity]:
        """Case- and accent-insensitive substring match on semantic key or name."""
        needle = fold_text(query)
        entities = self.repository.list_entities(
            document_id, EntityType(entity_type) if entity_type else None
        )
        if not needle:
            return entities
        return [
            e
            for e in entities
            if needle in fold_text(e.semantic_key) or needle in fold_text(e.name)
        ]

    def get_conflicts(self, document_id: str) -> List[EntityConflict]:
        return self.repository.list_conflicts(document_id)

    def clear_document_entities(self, document_id: str) -> int:
        with self.repository.document_transaction(document_id):
            return self.repository.delete_entities(document_id)

    # -----------------------
    # Internals
    # -----------------------
    def _coerce(self, item: RawEntity | Mapping[str, Any], index: int) -> Optional[RawEntity]:
        if isinstance(item, RawEntity):
            return item
        if not isinstance(item, Mapping):
            logger.debug("Skipping non-object entity", index=index)
            return None
        try:
            return RawEntity.model_validate(dict(item))
        except ValidationError as exc:
            logger.warning("Skipping malformed entity", index=index, errors=exc.error_count())
            return None

    def _key_map(self, document_id: str) -> Dict[str, str]:
        return {e.semantic_key: e.id for e in self.repository.list_entities(document_id)}

    def _upsert(self, candidate: ExtractedEntity, result: UnificationResult) -> ExtractedEntity:
        existing = self.repository.find_entity_by_semantic_key(
            candidate.document_id, candidate.semantic_key
        )
        if existing is None:
            result.created += 1
            logger.debug("Created entity", semantic_key=candidate.semantic_key)
            return self.repository.save_entity(candidate)

        if values_match(
            existing.normalized_value, candidate.normalized_value, tolerance=self.config.numeric_tolerance
        ):
            self._absorb(existing, candidate)
            result.updated += 1
            return self.repository.save_entity(existing)

        before = existing.model_copy(deep=True)
        if candidate.confidence > existing.confidence:
            existing.name = candidate.name or existing.name
            existing.raw_value = candidate.raw_value
            existing.normalized_value = candidate.normalized_value
            existing.deduplication_key = candidate.deduplication_key
            existing.metadata = candidate.metadata
            existing.confidence = candidate.confidence
            if candidate.section_id:
                existing.section_id = candidate.section_id
            resolution = ConflictResolution.REPLACED_WITH_INCOMING
        else:
            resolution = ConflictResolution.KEPT_EXISTING
        self._absorb(existing, candidate)

        conflict = EntityConflict(
            document_id=candidate.document_id,
            semantic_key=candidate.semantic_key,
            existing_entity=before,
            incoming_entity=candidate,
            resolution=resolution,
        )
        self.repository.append_conflict(conflict)
        result.conflicts.append(conflict)
        result.conflicts_resolved += 1
        logger.info(
            "Resolved value conflict",
            semantic_key=candidate.semantic_key,
            existing=before.normalized_value,
            incoming=candidate.normalized_value,
            resolution=resolution.value,
        )
        return self.repository.save_entity(existing)

    @staticmethod
    def _absorb(existing: ExtractedEntity, candidate: ExtractedEntity) -> None:
        for source in candidate.sources:
            existing.add_source(source)
        for relation in candidate.declared_relations:
            existing.add_declared_relation(relation)
        existing.updated_at = datetime.now()

