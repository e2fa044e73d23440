"""Pydantic models for the persisted document knowledge graph."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from licitagraph.normalization import fold_text
from licitagraph.storage.metadata import EntityMetadata, GenericMetadata


def _new_id() -> str:
    return str(uuid4())


class EntityType(str, Enum):
    """Entity types extracted from procurement notices."""

    DEADLINE = "deadline"
    DATE = "date"
    OBLIGATION = "obligation"
    REQUIREMENT = "requirement"
    PENALTY = "penalty"
    SANCTION = "sanction"
    RISK = "risk"
    DELIVERY_RULE = "delivery_rule"
    TECHNICAL_CERTIFICATE = "technical_certificate"
    MANDATORY_DOCUMENT = "mandatory_document"
    OTHER = "other"

    @classmethod
    def _missing_(cls, value: object) -> "EntityType":
        if isinstance(value, str):
            label = value.strip()
            alias = ENTITY_TYPE_ALIASES.get(fold_text(label))
            if alias is not None:
                return alias
            for member in cls:
                if member.value == label.lower():
                    return member
        return cls.OTHER


# Labels emitted by the extractor
ENTITY_TYPE_ALIASES: Dict[str, EntityType] = {
    "PRAZO": EntityType.DEADLINE,
    "DATA": EntityType.DATE,
    "OBRIGACAO": EntityType.OBLIGATION,
    "REQUISITO": EntityType.REQUIREMENT,
    "MULTA": EntityType.PENALTY,
    "SANCAO": EntityType.SANCTION,
    "RISCO": EntityType.RISK,
    "REGRA_ENTREGA": EntityType.DELIVERY_RULE,
    "CERTIDAO_TECNICA": EntityType.TECHNICAL_CERTIFICATE,
    "DOCUMENTACAO": EntityType.MANDATORY_DOCUMENT,
    "DOCUMENTACAO_OBRIGATORIA": EntityType.MANDATORY_DOCUMENT,
    "OUTRO": EntityType.OTHER,
}


class RelationshipKind(str, Enum):
    """Directed relationship kinds between entities."""

    DEPENDS_ON = "DEPENDS_ON"
    TRIGGERS = "TRIGGERS"
    SAME_DATE = "SAME_DATE"
    SAME_VALUE = "SAME_VALUE"
    PREREQUISITE = "PREREQUISITE"
    CONSEQUENCE = "CONSEQUENCE"
    PENALTY_FOR = "PENALTY_FOR"
    REQUIRED_BY = "REQUIRED_BY"
    RELATED_TO = "RELATED_TO"

    @classmethod
    def _missing_(cls, value: object) -> "RelationshipKind":
        if isinstance(value, str):
            label = value.strip().upper()
            if label in cls.__members__:
                return cls[label]
        return cls.RELATED_TO


class ConflictResolution(str, Enum):
    """Outcome of a value disagreement on a semantic key."""

    KEPT_EXISTING = "kept_existing"
    REPLACED_WITH_INCOMING = "replaced_with_incoming"


class SectionLevel(str, Enum):
    """Hierarchy levels, shallowest first."""

    CHAPTER = "CHAPTER"
    SECTION = "SECTION"
    CLAUSE = "CLAUSE"
    SUBCLAUSE = "SUBCLAUSE"
    ITEM = "ITEM"

    @property
    def rank(self) -> int:
        return _SECTION_RANK[self]

    @classmethod
    def _missing_(cls, value: object) -> Optional["SectionLevel"]:
        if isinstance(value, str):
            label = fold_text(value)
            if label in cls.__members__:
                return cls[label]
            return _SECTION_ALIASES.get(label)
        return None


_SECTION_RANK = {
    SectionLevel.CHAPTER: 1,
    SectionLevel.SECTION: 2,
    SectionLevel.CLAUSE: 3,
    SectionLevel.SUBCLAUSE: 4,
    SectionLevel.ITEM: 5,
}

_SECTION_ALIASES = {
    "CAPITULO": SectionLevel.CHAPTER,
    "SECAO": SectionLevel.SECTION,
    "CLAUSULA": SectionLevel.CLAUSE,
    "SUBCLAUSULA": SectionLevel.SUBCLAUSE,
}


class DateType(str, Enum):
    """How an event's date is expressed."""

    FIXED = "fixed"
    RELATIVE = "relative"
    RANGE = "range"

    @classmethod
    def _missing_(cls, value: object) -> "DateType":
        if isinstance(value, str):
            label = value.strip().lower()
            for member in cls:
                if member.value == label:
                    return member
        return cls.FIXED


class Importance(str, Enum):
    """Event importance."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Importance"]:
        if isinstance(value, str):
            label = value.strip().lower()
            for member in cls:
                if member.value == label:
                    return member
        return None


class Phase(str, Enum):
    """Procedural phases of a procurement, in lifecycle order."""

    PUBLICATION = "PUBLICACAO"
    CLARIFICATIONS = "ESCLARECIMENTOS"
    REGISTRATION = "CREDENCIAMENTO"
    PROPOSAL = "PROPOSTA"
    PUBLIC_SESSION = "SESSAO_PUBLICA"
    BIDDING = "LANCES"
    JUDGMENT = "JULGAMENTO"
    QUALIFICATION = "HABILITACAO"
    APPEALS = "RECURSOS"
    AWARD = "ADJUDICACAO"
    RATIFICATION = "HOMOLOGACAO"
    SIGNATURE = "ASSINATURA"
    EXECUTION = "EXECUCAO"
    PAYMENT = "PAGAMENTO"
    WARRANTY = "GARANTIA"
    OTHER = "OUTRO"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Phase"]:
        if isinstance(value, str):
            label = value.strip().upper()
            for member in cls:
                if member.value == label:
                    return member
            if label in cls.__members__:
                return cls[label]
        return None


class RelativeUnit(str, Enum):
    """Offset units for relative dates."""

    DAYS = "days"
    BUSINESS_DAYS = "business_days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"
    HOURS = "hours"

    @classmethod
    def _missing_(cls, value: object) -> "RelativeUnit":
        label = str(value).strip().lower() if value is not None else ""
        for member in cls:
            if member.value == label:
                return member
        return _RELATIVE_UNIT_ALIASES.get(label, cls.DAYS)


_RELATIVE_UNIT_ALIASES = {
    "day": RelativeUnit.DAYS,
    "dias": RelativeUnit.DAYS,
    "dias_corridos": RelativeUnit.DAYS,
    "business_day": RelativeUnit.BUSINESS_DAYS,
    "dias_uteis": RelativeUnit.BUSINESS_DAYS,
    "week": RelativeUnit.WEEKS,
    "semanas": RelativeUnit.WEEKS,
    "month": RelativeUnit.MONTHS,
    "meses": RelativeUnit.MONTHS,
    "year": RelativeUnit.YEARS,
    "anos": RelativeUnit.YEARS,
    "hour": RelativeUnit.HOURS,
    "horas": RelativeUnit.HOURS,
}


class RelativeDirection(str, Enum):
    """Whether a relative offset points before or after its anchor."""

    BEFORE = "before"
    AFTER = "after"

    @classmethod
    def _missing_(cls, value: object) -> "RelativeDirection":
        label = str(value).strip().lower() if value is not None else ""
        if label in {"antes", "before", "-"}:
            return cls.BEFORE
        return cls.AFTER


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class Source(BaseModel):
    """Immutable provenance record for one sighting of an entity."""

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(..., ge=0, description="Page where the value was seen")
    excerpt: str = Field(default="", description="Truncated excerpt of the source text")
    confidence: float = Field(default=0.8, ge=0.0, le=1.0, description="Extractor confidence")

    @property
    def identity(self) -> tuple[int, str]:
        return self.page_number, self.excerpt


class RelatedEntity(BaseModel):
    """Resolved outgoing relationship."""

    model_config = ConfigDict(frozen=True)

    target_id: str = Field(..., description="Target entity id")
    relationship_kind: RelationshipKind = Field(
        default=RelationshipKind.RELATED_TO, description="Relationship kind"
    )


class DeclaredRelation(BaseModel):
    """Relationship as declared by the extractor (by semantic key)."""

    model_config = ConfigDict(frozen=True)

    semantic_key: str = Field(..., description="Target semantic key")
    relationship: RelationshipKind = Field(
        default=RelationshipKind.RELATED_TO, description="Relationship kind"
    )


class ExtractedEntity(BaseModel):
    """A deduplicated fact extracted from a document."""

    id: str = Field(default_factory=_new_id, description="Unique entity identifier")
    document_id: str = Field(..., description="Owning document")
    type: EntityType = Field(..., description="Entity type")
    semantic_key: str = Field(..., min_length=1, description="Extractor-assigned identity")
    deduplication_key: str = Field(default="", description="Legacy content hash")
    name: str = Field(default="", description="Display name")
    raw_value: str = Field(default="", description="Value as written in the document")
    normalized_value: str = Field(default="", description="Canonical value used for comparison")
    section_id: Optional[str] = Field(default=None, description="Section the entity belongs to")
    metadata: EntityMetadata = Field(default_factory=GenericMetadata, description="Typed metadata")
    sources: List[Source] = Field(default_factory=list, description="Provenance, append-only")
    related_entities: List[RelatedEntity] = Field(
        default_factory=list, description="Resolved relationships (set semantics)"
    )
    declared_relations: List[DeclaredRelation] = Field(
        default_factory=list, description="Relationships as declared, kept for backfill"
    )
    confidence: float = Field(default=0.8, ge=0.0, le=1.0, description="Confidence of the retained value")
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.now, description="Last update timestamp")

    def add_source(self, source: Source) -> bool:
        """Append ``source`` unless a source with the same page and excerpt exists."""
        if any(existing.identity == source.identity for existing in self.sources):
            return False
        self.sources.append(source)
        return True

    def add_relation(self, relation: RelatedEntity) -> bool:
        if relation.target_id == self.id or relation in self.related_entities:
            return False
        self.related_entities.append(relation)
        return True

    def add_declared_relation(self, relation: DeclaredRelation) -> None:
        if relation not in self.declared_relations:
            self.declared_relations.append(relation)


class EntityConflict(BaseModel):
    """Audit record of a value disagreement; never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id, description="Conflict identifier")
    document_id: str = Field(..., description="Owning document")
    semantic_key: str = Field(..., description="Contested semantic key")
    conflict_type: str = Field(default="value_mismatch", description="Kind of disagreement")
    existing_entity: ExtractedEntity = Field(..., description="Stored entity before resolution")
    incoming_entity: ExtractedEntity = Field(..., description="Incoming candidate")
    resolution: ConflictResolution = Field(..., description="How the conflict was resolved")
    detected_at: datetime = Field(default_factory=datetime.now, description="Detection timestamp")


# ---------------------------------------------------------------------------
# Document structure
# ---------------------------------------------------------------------------


class DocumentSection(BaseModel):
    """One node of a document's section hierarchy."""

    id: str = Field(default_factory=_new_id, description="Section identifier")
    document_id: str = Field(..., description="Owning document")
    level: SectionLevel = Field(..., description="Hierarchy level")
    parent_id: Optional[str] = Field(default=None, description="Parent section id (None for roots)")
    order: int = Field(..., ge=0, description="Processing sequence index")
    title: str = Field(default="", description="Section title")
    number: Optional[str] = Field(default=None, description="Declared numbering, e.g. 5.1.2")
    summary: Optional[str] = Field(default=None, description="Short summary")
    source_pages: List[int] = Field(default_factory=list, description="Pages (sorted, unique)")
    line_start: Optional[int] = Field(default=None, description="First line on the page")
    line_end: Optional[int] = Field(default=None, description="Last line on the page")
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")

    @field_validator("source_pages")
    @classmethod
    def _sorted_unique(cls, value: List[int]) -> List[int]:
        return sorted(set(value))

    def add_page(self, page_number: int) -> bool:
        if page_number in self.source_pages:
            return False
        self.source_pages = sorted({*self.source_pages, page_number})
        return True


class SectionNode(DocumentSection):
    """A section with its children attached (tree view)."""

    children: List["SectionNode"] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


class RelativeReference(BaseModel):
    """Anchor of a relative date."""

    event_id: Optional[str] = Field(default=None, description="Resolved anchor event id")
    anchor_semantic_key: str = Field(default="", description="Anchor as declared by the extractor")
    offset: int = Field(default=0, description="Offset magnitude")
    unit: RelativeUnit = Field(default=RelativeUnit.DAYS, description="Offset unit")
    direction: RelativeDirection = Field(default=RelativeDirection.AFTER, description="Offset direction")


class LinkedPenalty(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    semantic_key: str
    type: EntityType
    description: str = ""
    value: Optional[str] = None


class LinkedRequirement(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    semantic_key: str
    type: EntityType
    description: str = ""
    mandatory: bool = True


class LinkedObligation(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    semantic_key: str
    description: str = ""
    action_required: Optional[str] = None


class Urgency(BaseModel):
    """Derived urgency flags (recomputed at read time)."""

    days_until_deadline: Optional[int] = Field(default=None, description="Whole days until the event")
    has_penalty: bool = Field(default=False, description="Any penalty linked")
    penalty_amount: Optional[str] = Field(default=None, description="Value of the first linked penalty")
    blocking_for_others: bool = Field(default=False, description="Other events are anchored on this one")


class TimelineEvent(BaseModel):
    """A dated, relative or unresolved procedural event."""

    id: str = Field(default_factory=_new_id, description="Event identifier")
    document_id: str = Field(..., description="Owning document")
    date: Optional[datetime] = Field(default=None, description="Concrete timestamp, when known")
    date_raw: str = Field(default="", description="Date as written in the document")
    date_type: DateType = Field(default=DateType.FIXED, description="How the date is expressed")
    relative_to: Optional[RelativeReference] = Field(default=None, description="Anchor of a relative date")
    event_type: str = Field(default="OUTRO", description="Extractor event label")
    phase: Phase = Field(default=Phase.OTHER, description="Procedural phase")
    semantic_order: int = Field(default=0, description="Phase-derived tie-break")
    title: str = Field(default="", description="Event title")
    description: str = Field(default="", description="Event description")
    importance: Importance = Field(default=Importance.MEDIUM, description="Importance")
    action_required: Optional[str] = Field(default=None, description="What the bidder must do")
    linked_penalties: List[LinkedPenalty] = Field(default_factory=list)
    linked_requirements: List[LinkedRequirement] = Field(default_factory=list)
    linked_obligations: List[LinkedObligation] = Field(default_factory=list)
    linked_risk_ids: List[str] = Field(default_factory=list)
    urgency: Urgency = Field(default_factory=Urgency, description="Urgency snapshot")
    tags: List[str] = Field(default_factory=list, description="Tags (sorted, unique)")
    source_entity_id: Optional[str] = Field(default=None, description="Entity the event came from")
    source_semantic_key: str = Field(default="", description="Semantic key of the source fact")
    source_pages: List[int] = Field(default_factory=list, description="Pages (sorted, unique)")
    excerpt: str = Field(default="", description="Source excerpt")
    comments_count: int = Field(default=0, ge=0, description="Stored comments")
    confidence: float = Field(default=0.8, ge=0.0, le=1.0, description="Extractor confidence")
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")

    @field_validator("tags", "source_pages")
    @classmethod
    def _sorted_unique(cls, value: List[Any]) -> List[Any]:
        return sorted(set(value))

    @property
    def is_dated(self) -> bool:
        return self.date is not None and self.date_type != DateType.RELATIVE

    @property
    def is_relative_resolved(self) -> bool:
        return (
            self.date is not None
            and self.date_type == DateType.RELATIVE
            and self.relative_to is not None
            and self.relative_to.event_id is not None
        )

    @property
    def is_unresolved(self) -> bool:
        return not (self.is_dated or self.is_relative_resolved)

    def linked_entity_ids(self) -> set[str]:
        ids = {link.entity_id for link in self.linked_penalties}
        ids.update(link.entity_id for link in self.linked_requirements)
        ids.update(link.entity_id for link in self.linked_obligations)
        ids.update(self.linked_risk_ids)
        if self.source_entity_id:
            ids.add(self.source_entity_id)
        return ids


class TimelineComment(BaseModel):
    """Manual annotation on a timeline event."""

    id: str = Field(default_factory=_new_id, description="Comment identifier")
    timeline_event_id: str = Field(..., description="Annotated event")
    document_id: str = Field(..., description="Owning document")
    content: str = Field(..., min_length=1, description="Comment text")
    author: str = Field(default="anonymous", description="Author name")
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.now, description="Last update timestamp")
