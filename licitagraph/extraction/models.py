"""Raw candidate models produced by the external extraction call.

Everything here is untrusted: optional fields fall back to empty values, enum
labels are coerced leniently, and only a missing identity (semantic key,
section level) makes an item invalid.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from licitagraph.normalization import validate_semantic_key
from licitagraph.storage.schemas import (
    DateType,
    EntityType,
    Importance,
    Phase,
    RelationshipKind,
    RelativeDirection,
    RelativeUnit,
    SectionLevel,
)


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


def _clamp_confidence(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(score, 1.0))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_optional_text(value: Any) -> Optional[str]:
    text = _as_text(value)
    return text or None


def _as_string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return []


class _RawModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RelatedKey(_RawModel):
    """A relationship declared by semantic key."""

    semantic_key: str = Field(..., validation_alias=_alias("semantic_key", "semanticKey"))
    relationship: RelationshipKind = Field(default=RelationshipKind.RELATED_TO)

    @field_validator("semantic_key", mode="before")
    @classmethod
    def _check_key(cls, value: Any) -> str:
        return validate_semantic_key(_as_text(value))

    @field_validator("relationship", mode="before")
    @classmethod
    def _default_relationship(cls, value: Any) -> RelationshipKind:
        return RelationshipKind(_as_text(value))


class RawEntity(_RawModel):
    """Candidate entity as emitted by the extractor."""

    type: EntityType = Field(default=EntityType.OTHER)
    name: str = ""
    raw_value: str = Field(default="", validation_alias=_alias("raw_value", "rawValue"))
    semantic_key: str = Field(..., validation_alias=_alias("semantic_key", "semanticKey"))
    metadata: Dict[str, Any] = Field(default_factory=dict)
    obligation_details: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=_alias("obligation_details", "obligationDetails")
    )
    confidence: Optional[float] = None
    page_number: int = Field(default=1, ge=0, validation_alias=_alias("page_number", "pageNumber"))
    section_id: Optional[str] = Field(default=None, validation_alias=_alias("section_id", "sectionId"))
    excerpt_text: str = Field(
        default="", validation_alias=_alias("excerpt_text", "excerptText", "excerpt")
    )
    related_semantic_keys: List[RelatedKey] = Field(
        default_factory=list, validation_alias=_alias("related_semantic_keys", "relatedSemanticKeys")
    )

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        return EntityType(value) if value else EntityType.OTHER

    @field_validator("semantic_key", mode="before")
    @classmethod
    def _check_key(cls, value: Any) -> str:
        return validate_semantic_key(_as_text(value))

    @field_validator("name", "raw_value", "excerpt_text", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("section_id", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return _as_optional_text(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _mapping(cls, value: Any) -> Dict[str, Any]:
        return dict(value) if isinstance(value, dict) else {}

    @field_validator("obligation_details", mode="before")
    @classmethod
    def _optional_mapping(cls, value: Any) -> Optional[Dict[str, Any]]:
        return dict(value) if isinstance(value, dict) and value else None

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> Optional[float]:
        return _clamp_confidence(value)

    @field_validator("page_number", mode="before")
    @classmethod
    def _page(cls, value: Any) -> Any:
        return value if value not in (None, "") else 1

    @field_validator("related_semantic_keys", mode="before")
    @classmethod
    def _related(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        related = []
        for item in value:
            if isinstance(item, str) and item.strip():
                related.append({"semantic_key": item})
            elif isinstance(item, dict) and _as_text(item.get("semanticKey") or item.get("semantic_key")):
                related.append(item)
        return related


class RawSection(_RawModel):
    """Candidate section declaration."""

    level: SectionLevel
    number: Optional[str] = None
    title: str = ""
    parent_number: Optional[str] = Field(
        default=None, validation_alias=_alias("parent_number", "parentNumber")
    )
    summary: Optional[str] = None
    page_number: int = Field(default=1, ge=0, validation_alias=_alias("page_number", "pageNumber"))
    line_start: Optional[int] = Field(default=None, validation_alias=_alias("line_start", "lineStart"))
    line_end: Optional[int] = Field(default=None, validation_alias=_alias("line_end", "lineEnd"))

    @field_validator("number", "parent_number", "summary", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return _as_optional_text(value)

    @field_validator("title", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("page_number", mode="before")
    @classmethod
    def _page(cls, value: Any) -> Any:
        return value if value not in (None, "") else 1

    @field_validator("line_start", "line_end", mode="before")
    @classmethod
    def _line(cls, value: Any) -> Optional[int]:
        # 0 means "unknown" in the extractor's vocabulary
        try:
            line = int(value)
        except (TypeError, ValueError):
            return None
        return line if line > 0 else None


class RawRelativeTo(_RawModel):
    """Relative date anchor, by semantic key of the anchor event."""

    event_semantic_key: str = Field(
        ..., validation_alias=_alias("event_semantic_key", "eventSemanticKey")
    )
    offset: int = 0
    unit: RelativeUnit = RelativeUnit.DAYS
    direction: RelativeDirection = RelativeDirection.AFTER

    @field_validator("event_semantic_key", mode="before")
    @classmethod
    def _check_key(cls, value: Any) -> str:
        return validate_semantic_key(_as_text(value))

    @field_validator("offset", mode="before")
    @classmethod
    def _offset(cls, value: Any) -> int:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0

    @field_validator("unit", "direction", mode="before")
    @classmethod
    def _label(cls, value: Any, info: ValidationInfo) -> Any:
        enum = RelativeUnit if info.field_name == "unit" else RelativeDirection
        return enum(_as_text(value))


class RawTimelineEvent(_RawModel):
    """Candidate timeline event."""

    date_raw: str = Field(default="", validation_alias=_alias("date_raw", "dateRaw"))
    date_normalized: Optional[str] = Field(
        default=None, validation_alias=_alias("date_normalized", "dateNormalized")
    )
    date_type: DateType = Field(default=DateType.FIXED, validation_alias=_alias("date_type", "dateType"))
    event_type: str = Field(default="OUTRO", validation_alias=_alias("event_type", "eventType"))
    phase: Optional[Phase] = None
    title: str = ""
    description: str = ""
    importance: Optional[Importance] = None
    action_required: Optional[str] = Field(
        default=None, validation_alias=_alias("action_required", "actionRequired")
    )
    tags: List[str] = Field(default_factory=list)
    linked_penalty_keys: List[str] = Field(
        default_factory=list, validation_alias=_alias("linked_penalty_keys", "linkedPenaltyKeys")
    )
    linked_requirement_keys: List[str] = Field(
        default_factory=list,
        validation_alias=_alias("linked_requirement_keys", "linkedRequirementKeys"),
    )
    linked_obligation_keys: List[str] = Field(
        default_factory=list,
        validation_alias=_alias("linked_obligation_keys", "linkedObligationKeys"),
    )
    linked_risk_keys: List[str] = Field(
        default_factory=list, validation_alias=_alias("linked_risk_keys", "linkedRiskKeys")
    )
    relative_to: Optional[RawRelativeTo] = Field(
        default=None, validation_alias=_alias("relative_to", "relativeTo")
    )
    source_semantic_key: str = Field(
        default="", validation_alias=_alias("source_semantic_key", "sourceSemanticKey")
    )
    page_number: int = Field(default=1, ge=0, validation_alias=_alias("page_number", "pageNumber"))
    excerpt: str = ""
    confidence: Optional[float] = None

    @field_validator("date_raw", "title", "description", "excerpt", "source_semantic_key", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("date_normalized", "action_required", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return _as_optional_text(value)

    @field_validator("event_type", mode="before")
    @classmethod
    def _event_type(cls, value: Any) -> str:
        return _as_text(value).upper() or "OUTRO"

    @field_validator("date_type", mode="before")
    @classmethod
    def _date_type(cls, value: Any) -> DateType:
        return DateType(_as_text(value))

    @field_validator("phase", mode="before")
    @classmethod
    def _phase(cls, value: Any) -> Optional[Phase]:
        text = _as_text(value)
        if not text:
            return None
        try:
            return Phase(text)
        except ValueError:
            return None

    @field_validator("importance", mode="before")
    @classmethod
    def _importance(cls, value: Any) -> Optional[Importance]:
        text = _as_text(value)
        if not text:
            return None
        try:
            return Importance(text)
        except ValueError:
            return None

    @field_validator(
        "tags",
        "linked_penalty_keys",
        "linked_requirement_keys",
        "linked_obligation_keys",
        "linked_risk_keys",
        mode="before",
    )
    @classmethod
    def _string_list(cls, value: Any) -> List[str]:
        return _as_string_list(value)

    @field_validator("relative_to", mode="before")
    @classmethod
    def _relative(cls, value: Any) -> Any:
        if isinstance(value, dict) and _as_text(
            value.get("eventSemanticKey") or value.get("event_semantic_key")
        ):
            return value
        return None

    @field_validator("page_number", mode="before")
    @classmethod
    def _page(cls, value: Any) -> Any:
        return value if value not in (None, "") else 1

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> Optional[float]:
        return _clamp_confidence(value)
