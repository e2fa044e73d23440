"""Tests for extraction payload parsing."""

from __future__ import annotations

import json

from licitagraph.extraction.payload_parser import extract_json, parse_extraction_payload
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


def test_extract_json_from_wrapped_text() -> None:
    text = 'Segue o resultado:\n```json\n{"entities": []}\n```'

    assert extract_json(text) == {"entities": []}
    assert extract_json("not json at all") is None
    assert extract_json("") is None


def test_parses_entities_with_json_string_fields() -> None:
    payload = {
        "entities": [
            {
                "type": "MULTA",
                "name": "Multa por atraso",
                "rawValue": "0,5% ao dia",
                "semanticKey": "MULTA:ATRASO_ENTREGA",
                "metadataJson": json.dumps({"percentual": 0.5, "tipoInfracao": "ATRASO"}),
                "relatedSemanticKeysJson": json.dumps(
                    [{"semanticKey": "PRAZO:ENTREGA", "relationship": "penalty_for"}]
                ),
                "confidence": 0.9,
                "pageNumber": 12,
                "excerptText": "multa de 0,5% ao dia",
            }
        ]
    }

    batch = parse_extraction_payload(payload)

    assert batch.skipped == 0
    entity = batch.entities[0]
    assert entity.type == EntityType.PENALTY
    assert entity.raw_value == "0,5% ao dia"
    assert entity.metadata == {"percentual": 0.5, "tipoInfracao": "ATRASO"}
    assert entity.related_semantic_keys[0].semantic_key == "PRAZO:ENTREGA"
    assert entity.related_semantic_keys[0].relationship == RelationshipKind.PENALTY_FOR
    assert entity.page_number == 12
    assert entity.excerpt_text == "multa de 0,5% ao dia"


def test_undecodable_sub_object_becomes_empty() -> None:
    payload = {
        "entities": [
            {"type": "PRAZO", "semanticKey": "PRAZO:X", "metadataJson": "{broken", "relatedSemanticKeysJson": "42"}
        ]
    }

    entity = parse_extraction_payload(payload).entities[0]

    assert entity.metadata == {}
    assert entity.related_semantic_keys == []


def test_items_without_semantic_key_are_skipped() -> None:
    payload = {
        "entities": [
            {"type": "MULTA", "semanticKey": ""},
            {"type": "MULTA"},
            "not an object",
            {"type": "MULTA", "semanticKey": "MULTA:OK"},
        ]
    }

    batch = parse_extraction_payload(payload)

    assert [e.semantic_key for e in batch.entities] == ["MULTA:OK"]
    assert batch.skipped == 3


def test_unknown_entity_type_becomes_other() -> None:
    batch = parse_extraction_payload({"entities": [{"type": "ALGO_NOVO", "semanticKey": "X:1"}]})

    assert batch.entities[0].type == EntityType.OTHER


def test_sections_and_default_page() -> None:
    payload = {
        "sections": [
            {"level": "CAPITULO", "number": "5", "title": "Das Sanções"},
            {"level": "CLAUSE", "number": "5.1", "parentNumber": "5", "title": "Multas", "lineStart": 0},
            {"level": "desconhecido", "title": "sem nível"},
        ]
    }

    batch = parse_extraction_payload(payload, default_page=7)

    assert [s.level for s in batch.sections] == [SectionLevel.CHAPTER, SectionLevel.CLAUSE]
    assert batch.sections[1].parent_number == "5"
    assert batch.sections[1].line_start is None
    assert all(s.page_number == 7 for s in batch.sections)
    assert batch.skipped == 1


def test_timeline_events_lenient_fields() -> None:
    payload = json.dumps(
        {
            "timelineEvents": [
                {
                    "dateRaw": "5 dias úteis após a homologação",
                    "dateType": "relative",
                    "eventType": "assinatura_contrato",
                    "title": "Assinatura do contrato",
                    "importance": "urgentíssimo",
                    "phase": "FASE_INEXISTENTE",
                    "tagsJson": json.dumps(["contrato", "prazo"]),
                    "relativeToJson": json.dumps(
                        {"eventSemanticKey": "DATA:HOMOLOGACAO", "offset": "5", "unit": "dias_uteis"}
                    ),
                    "sourceSemanticKey": "PRAZO:ASSINATURA",
                    "confidence": 1.7,
                }
            ]
        }
    )

    event = parse_extraction_payload(payload).timeline_events[0]

    assert event.date_type == DateType.RELATIVE
    assert event.event_type == "ASSINATURA_CONTRATO"
    assert event.importance is None
    assert event.phase is None
    assert event.tags == ["contrato", "prazo"]
    assert event.relative_to.event_semantic_key == "DATA:HOMOLOGACAO"
    assert event.relative_to.offset == 5
    assert event.relative_to.unit == RelativeUnit.BUSINESS_DAYS
    assert event.relative_to.direction == RelativeDirection.AFTER
    assert event.confidence == 1.0


def test_timeline_event_known_labels() -> None:
    payload = {
        "timelineEvents": [
            {"dateNormalized": "2024-09-24", "eventType": "SESSAO_PUBLICA", "importance": "CRITICAL", "phase": "SESSAO_PUBLICA"}
        ]
    }

    event = parse_extraction_payload(payload).timeline_events[0]

    assert event.importance == Importance.CRITICAL
    assert event.phase == Phase.PUBLIC_SESSION
    assert event.date_type == DateType.FIXED
    assert event.relative_to is None


def test_non_object_payload_is_empty() -> None:
    assert parse_extraction_payload("[1, 2, 3]").is_empty
    assert parse_extraction_payload(None).is_empty
    assert parse_extraction_payload({}).is_empty
