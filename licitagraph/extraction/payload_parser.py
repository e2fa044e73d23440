"""Parsing of extraction tool-call payloads into typed raw batches.

The extraction call may encode sub-objects as JSON strings (``metadataJson``,
``tagsJson``, ``relativeToJson`` ...) or pass them as native structures. A
sub-object that cannot be decoded becomes the empty value of its type, and an
item that still fails validation is skipped.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from licitagraph.extraction.models import RawEntity, RawSection, RawTimelineEvent

ModelT = TypeVar("ModelT", bound=BaseModel)

# (JSON-string key, native key, empty value)
_ENTITY_JSON_FIELDS: List[Tuple[str, str, Any]] = [
    ("metadataJson", "metadata", {}),
    ("obligationDetailsJson", "obligationDetails", None),
    ("relatedSemanticKeysJson", "relatedSemanticKeys", []),
]

_EVENT_JSON_FIELDS: List[Tuple[str, str, Any]] = [
    ("tagsJson", "tags", []),
    ("linkedPenaltyKeysJson", "linkedPenaltyKeys", []),
    ("linkedRequirementKeysJson", "linkedRequirementKeys", []),
    ("linkedObligationKeysJson", "linkedObligationKeys", []),
    ("linkedRiskKeysJson", "linkedRiskKeys", []),
    ("relativeToJson", "relativeTo", None),
]


class BatchExtraction(BaseModel):
    """Typed raw candidates for one batch."""

    entities: List[RawEntity] = Field(default_factory=list)
    sections: List[RawSection] = Field(default_factory=list)
    timeline_events: List[RawTimelineEvent] = Field(default_factory=list)
    skipped: int = Field(default=0, description="Malformed items dropped while parsing")

    @property
    def is_empty(self) -> bool:
        return not (self.entities or self.sections or self.timeline_events)


def extract_json(text: str) -> Any:
    """Decode ``text`` as JSON, falling back to the first object/array embedded in it."""
    if not text:
        return None

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    match = re.search(r"(\{.*\}|\[.*\])", text, flags=re.DOTALL)
    if not match:
        return None

    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError:
        return None


def _decode_field(value: Any, empty: Any) -> Any:
    if isinstance(value, str):
        if not value.strip():
            return empty
        decoded = extract_json(value)
        if decoded is None:
            return empty
        if empty is not None and not isinstance(decoded, type(empty)):
            return empty
        return decoded
    return value if value is not None else empty


def _expand_json_fields(item: Mapping[str, Any], fields: List[Tuple[str, str, Any]]) -> Dict[str, Any]:
    expanded = dict(item)
    for json_key, native_key, empty in fields:
        encoded = expanded.pop(json_key, None)
        if native_key in expanded and expanded[native_key] is not None:
            expanded[native_key] = _decode_field(expanded[native_key], empty)
        elif encoded is not None:
            expanded[native_key] = _decode_field(encoded, empty)
    return expanded


def _validate_items(
    items: Any,
    model: Type[ModelT],
    *,
    kind: str,
    default_page: int,
    json_fields: Optional[List[Tuple[str, str, Any]]] = None,
) -> Tuple[List[ModelT], int]:
    if not isinstance(items, list):
        return [], 0

    parsed: List[ModelT] = []
    skipped = 0
    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            skipped += 1
            logger.debug("Skipping non-object item", kind=kind, index=index)
            continue
        data = _expand_json_fields(item, json_fields) if json_fields else dict(item)
        if data.get("pageNumber") in (None, "", 0) and data.get("page_number") in (None, "", 0):
            data["pageNumber"] = default_page
        try:
            parsed.append(model.model_validate(data))
        except ValidationError as exc:
            skipped += 1
            logger.warning(
                "Skipping malformed item",
                kind=kind,
                index=index,
                errors=exc.error_count(),
            )
    return parsed, skipped


def parse_extraction_payload(payload: str | Mapping[str, Any] | None, *, default_page: int = 1) -> BatchExtraction:
    """Convert an extraction payload into a :class:`BatchExtraction`.

    Args:
        payload: JSON text or a mapping with ``entities``, ``sections`` and
            ``timelineEvents`` lists.
        default_page: Page number assigned to items that do not declare one.

    Returns:
        Parsed batch; never raises on malformed content.
    """
    data: Any = extract_json(payload) if isinstance(payload, str) else payload
    if not isinstance(data, Mapping):
        if payload:
            logger.warning("Extraction payload is not an object; ignoring it")
        return BatchExtraction()

    entities, skipped_entities = _validate_items(
        data.get("entities"),
        RawEntity,
        kind="entity",
        default_page=default_page,
        json_fields=_ENTITY_JSON_FIELDS,
    )
    sections, skipped_sections = _validate_items(
        data.get("sections"), RawSection, kind="section", default_page=default_page
    )
    raw_events = data.get("timelineEvents", data.get("timeline_events", data.get("events")))
    events, skipped_events = _validate_items(
        raw_events,
        RawTimelineEvent,
        kind="timeline_event",
        default_page=default_page,
        json_fields=_EVENT_JSON_FIELDS,
    )

    batch = BatchExtraction(
        entities=entities,
        sections=sections,
        timeline_events=events,
        skipped=skipped_entities + skipped_sections + skipped_events,
    )
    logger.debug(
        "Parsed extraction payload",
        entities=len(entities),
        sections=len(sections),
        timeline_events=len(events),
        skipped=batch.skipped,
    )
    return batch
