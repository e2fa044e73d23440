"""Tests for the batch ingestion pipeline."""

from __future__ import annotations

from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest

from licitagraph.exceptions import BatchIngestionError, StorageError
from licitagraph.extraction.payload_parser import parse_extraction_payload
from licitagraph.pipeline.batch_pipeline import (
    BatchContext,
    DocumentPage,
    DocumentPipeline,
    PageBatch,
    calculate_batches,
)
from licitagraph.storage import InMemoryRepository
from licitagraph.utils.config import Config

DOC = "edital-001"


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def pipeline(repository: InMemoryRepository) -> DocumentPipeline:
    return DocumentPipeline(Config(), repository=repository)


def _page(number: int, words: int) -> DocumentPage:
    return DocumentPage(page_number=number, text=" ".join(["palavra"] * words))


def _payload() -> Dict[str, Any]:
    return {
        "entities": [
            {"type": "MULTA", "semanticKey": "MULTA:ATRASO", "name": "Multa por atraso", "rawValue": "10%"},
            {"type": "PRAZO", "semanticKey": "PRAZO:SESSAO", "name": "Sessão pública", "rawValue": "24/09/2024"},
        ],
        "sections": [
            {"level": "CLAUSE", "number": "5.1", "parentNumber": "5", "title": "Multas"},
            {"level": "CHAPTER", "number": "5", "title": "Das Sanções"},
        ],
        "timelineEvents": [
            {
                "sourceSemanticKey": "PRAZO:SESSAO",
                "eventType": "SESSAO_PUBLICA",
                "dateNormalized": "2024-09-24",
                "title": "Sessão pública",
                "linkedPenaltyKeys": ["MULTA:ATRASO"],
            }
        ],
    }


def test_calculate_batches_respects_word_cap() -> None:
    pages = [_page(1, 3000), _page(2, 3000), _page(3, 3000), _page(4, 100)]

    batches = calculate_batches(pages, word_cap=8000)

    assert [b.page_numbers for b in batches] == [[1, 2], [3, 4]]
    assert [b.total_words for b in batches] == [6000, 3100]
    assert [b.batch_number for b in batches] == [1, 2]


def test_oversized_page_gets_its_own_batch() -> None:
    pages = [_page(1, 100), _page(2, 9000), _page(3, 100)]

    batches = calculate_batches(pages, word_cap=8000)

    assert [b.page_numbers for b in batches] == [[1], [2], [3]]


def test_batches_close_at_page_limit() -> None:
    pages = [_page(n, 10) for n in range(1, 8)]

    batches = calculate_batches(pages, word_cap=8000, max_pages_per_batch=3)

    assert [b.page_numbers for b in batches] == [[1, 2, 3], [4, 5, 6], [7]]


def test_batch_text_keeps_page_markers() -> None:
    pages = [DocumentPage(page_number=1, text="primeira"), DocumentPage(page_number=2, text="segunda")]

    batch = calculate_batches(pages)[0]

    assert batch.consolidated_text == "Página 1:\nprimeira\n\n---\n\nPágina 2:\nsegunda"


def test_declared_word_count_wins() -> None:
    assert DocumentPage(page_number=1, text="duas palavras", word_count=500).words == 500
    assert DocumentPage(page_number=1, text="duas palavras").words == 2
    assert calculate_batches([]) == []


def test_batch_context_render() -> None:
    context = BatchContext()
    assert context.render() == ""

    context.update(parse_extraction_payload(_payload()))
    context.update(parse_extraction_payload(_payload()))
    rendered = context.render(entity_limit=1)

    assert "## ENTIDADES JÁ EXTRAÍDAS (2 total)" in rendered
    assert "MULTA:ATRASO: Multa por atraso" in rendered
    assert "PRAZO:SESSAO" not in rendered
    assert "... e mais 1 entidades" in rendered
    assert "## ESTRUTURA DO DOCUMENTO JÁ IDENTIFICADA" in rendered
    assert "5.1 Multas" in rendered
    assert "## EVENTOS DO TIMELINE JÁ CRIADOS (1 total)" in rendered
    assert context.existing_semantic_keys == ["MULTA:ATRASO", "PRAZO:SESSAO"]


def test_process_batch_links_across_stages(pipeline: DocumentPipeline, repository: InMemoryRepository) -> None:
    result = pipeline.process_batch(DOC, _payload(), batch_number=1)

    assert result.success is True
    assert result.entities_created == 2
    assert result.sections_created == 2
    assert result.timeline_events_created == 1

    penalty = repository.find_entity_by_semantic_key(DOC, "MULTA:ATRASO")
    deadline = repository.find_entity_by_semantic_key(DOC, "PRAZO:SESSAO")
    event = repository.list_events(DOC)[0]
    assert event.source_entity_id == deadline.id
    assert [link.entity_id for link in event.linked_penalties] == [penalty.id]

    sections = {s.number: s for s in repository.list_sections(DOC)}
    assert sections["5.1"].parent_id == sections["5"].id


def test_process_batch_accepts_json_text(pipeline: DocumentPipeline, repository: InMemoryRepository) -> None:
    text = '```json\n{"entities": [{"type": "MULTA", "semanticKey": "MULTA:X", "rawValue": "2%"}]}\n```'

    result = pipeline.process_batch(DOC, text, batch_number=1, default_page=7)

    assert result.entities_created == 1
    assert repository.find_entity_by_semantic_key(DOC, "MULTA:X").sources[0].page_number == 7


def test_storage_failure_rolls_back_batch(
    pipeline: DocumentPipeline, repository: InMemoryRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
    def fail(*args: Any, **kwargs: Any) -> None:
        raise StorageError("neo4j unavailable")

    monkeypatch.setattr(pipeline.timeline_resolver, "process_timeline_events", fail)

    with pytest.raises(BatchIngestionError) as excinfo:
        pipeline.process_batch(DOC, _payload(), batch_number=3)

    assert excinfo.value.batch_number == 3
    assert isinstance(excinfo.value.cause, StorageError)
    assert repository.list_entities(DOC) == []
    assert repository.list_sections(DOC) == []


def test_process_document_runs_every_batch(pipeline: DocumentPipeline, repository: InMemoryRepository) -> None:
    pages = [_page(n, 10) for n in range(1, 4)]
    seen: List[str] = []

    def extractor(batch: PageBatch, context: BatchContext) -> Dict[str, Any]:
        seen.append(context.render())
        if batch.batch_number == 2:
            raise RuntimeError("model timeout")
        return {
            "entities": [
                {
                    "type": "MULTA",
                    "semanticKey": f"MULTA:P{batch.batch_number}",
                    "rawValue": "1%",
                    "relatedSemanticKeys": ["MULTA:P3"] if batch.batch_number == 1 else [],
                }
            ]
        }

    pipeline.config.batch.max_pages_per_batch = 1
    result = pipeline.process_document(DOC, pages, extractor, backfill=True)

    assert result.total_batches == 3
    assert result.success is False
    assert [r.success for r in result.batch_results] == [True, False, True]
    assert result.batch_results[1].error == "model timeout"
    assert result.batch_results[1].pages_processed == [2]
    assert result.entities_created == 2
    assert result.relationships_backfilled == 1
    assert seen[0] == ""
    assert "MULTA:P1" in seen[1]
    assert {e.semantic_key for e in repository.list_entities(DOC)} == {"MULTA:P1", "MULTA:P3"}

    stats = pipeline.get_statistics()
    assert stats["documents_processed"] == 1
    assert stats["batches_processed"] == 2
    assert stats["batches_failed"] == 1


def test_clear_health_and_close(repository: InMemoryRepository) -> None:
    with DocumentPipeline(Config(), repository=repository) as pipeline:
        pipeline.process_batch(DOC, _payload())
        assert pipeline.health_check() == {"repository": True}
        counts = pipeline.clear_document(DOC)

    assert counts["entities"] == 2
    assert repository.list_entities(DOC) == []


def test_health_check_reports_storage_failure() -> None:
    repository = MagicMock()
    repository.health_check.side_effect = StorageError("down")

    pipeline = DocumentPipeline(Config(), repository=repository)

    assert pipeline.health_check() == {"repository": False}
