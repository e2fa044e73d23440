"""Document ingestion in page batches.

A document's pages are grouped into batches under a word cap (pages are never
split). Each batch is handed to an extractor together with the context gathered
from earlier batches, and the extractor's payload is ingested in one
per-document transaction: entities are unified first, then sections are built,
then timeline events are resolved against the cumulative semantic-key map.
"""

import time
from types import TracebackType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from licitagraph.exceptions import BatchIngestionError, StorageError
from licitagraph.extraction.entity_unifier import EntityUnifier
from licitagraph.extraction.payload_parser import BatchExtraction, parse_extraction_payload
from licitagraph.storage import create_repository
from licitagraph.storage.repository import DocumentRepository
from licitagraph.structure.structure_builder import StructureBuilder
from licitagraph.timeline.timeline_resolver import TimelineResolver
from licitagraph.utils.config import Config


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


class DocumentPage(BaseModel):
    """Already-extracted text of one page."""

    page_number: int = Field(..., ge=1)
    text: str = ""
    word_count: Optional[int] = Field(default=None, ge=0)

    @property
    def words(self) -> int:
        return self.word_count if self.word_count is not None else count_words(self.text)


class PageBatch(BaseModel):
    """Group of whole pages processed together."""

    batch_number: int
    pages: List[DocumentPage]
    total_words: int
    consolidated_text: str

    @property
    def page_numbers(self) -> List[int]:
        return [page.page_number for page in self.pages]


def _make_batch(pages: List[DocumentPage], batch_number: int, total_words: int) -> PageBatch:
    text = "\n\n---\n\n".join(f"Página {page.page_number}:\n{page.text}" for page in pages)
    return PageBatch(batch_number=batch_number, pages=list(pages), total_words=total_words, consolidated_text=text)


def calculate_batches(
    pages: Sequence[DocumentPage],
    word_cap: int = 8000,
    max_pages_per_batch: int = 10,
) -> List[PageBatch]:
    """Split pages into batches without breaking any page.

    A page that would push the current batch over ``word_cap`` starts the next
    batch; a page larger than the cap on its own gets a batch to itself; a batch
    is also closed once it holds ``max_pages_per_batch`` pages.
    """
    batches: List[PageBatch] = []
    current: List[DocumentPage] = []
    current_words = 0

    for page in pages:
        page_words = page.words
        if current and current_words + page_words > word_cap:
            batches.append(_make_batch(current, len(batches) + 1, current_words))
            current, current_words = [page], page_words
        elif not current and page_words > word_cap:
            batches.append(_make_batch([page], len(batches) + 1, page_words))
            continue
        else:
            current.append(page)
            current_words += page_words

        if len(current) >= max_pages_per_batch:
            batches.append(_make_batch(current, len(batches) + 1, current_words))
            current, current_words = [], 0

    if current:
        batches.append(_make_batch(current, len(batches) + 1, current_words))
    return batches


class ContextEntity(BaseModel):
    type: str
    semantic_key: str
    name: str


class ContextSection(BaseModel):
    level: str
    number: Optional[str] = None
    title: str = ""


class BatchContext(BaseModel):
    """What earlier batches of the same document already produced."""

    existing_semantic_keys: List[str] = Field(default_factory=list)
    entity_summary: List[ContextEntity] = Field(default_factory=list)
    existing_sections: List[ContextSection] = Field(default_factory=list)
    timeline_event_keys: List[str] = Field(default_factory=list)
    entity_limit: int = Field(default=50, ge=0, description="Entities listed by render()")

    def update(self, extraction: BatchExtraction) -> None:
        known = set(self.existing_semantic_keys)
        for entity in extraction.entities:
            if entity.semantic_key not in known:
                known.add(entity.semantic_key)
                self.existing_semantic_keys.append(entity.semantic_key)
                self.entity_summary.append(
                    ContextEntity(type=entity.type.value, semantic_key=entity.semantic_key, name=entity.name)
                )

        for section in extraction.sections:
            self.existing_sections.append(
                ContextSection(level=section.level.value, number=section.number, title=section.title)
            )

        event_keys = set(self.timeline_event_keys)
        for event in extraction.timeline_events:
            if event.source_semantic_key and event.source_semantic_key not in event_keys:
                event_keys.add(event.source_semantic_key)
                self.timeline_event_keys.append(event.source_semantic_key)

    def render(self, entity_limit: Optional[int] = None) -> str:
        """Context block handed to the extractor for the next batch."""
        if entity_limit is None:
            entity_limit = self.entity_limit
        parts: List[str] = []

        if self.existing_semantic_keys:
            lines = [
                f"## ENTIDADES JÁ EXTRAÍDAS ({len(self.existing_semantic_keys)} total)",
                "Use as mesmas semanticKeys para entidades relacionadas. NÃO repita entidades já extraídas.",
                "",
            ]
            lines.extend(
                f"- [{entity.type}] {entity.semantic_key}: {entity.name}"
                for entity in self.entity_summary[:entity_limit]
            )
            hidden = len(self.entity_summary) - entity_limit
            if hidden > 0:
                lines.append(f"... e mais {hidden} entidades")
            parts.append("\n".join(lines))

        if self.existing_sections:
            lines = ["## ESTRUTURA DO DOCUMENTO JÁ IDENTIFICADA"]
            lines.extend(
                " ".join(part for part in (f"- [{s.level}]", s.number or "", s.title) if part)
                for s in self.existing_sections
            )
            parts.append("\n".join(lines))

        if self.timeline_event_keys:
            parts.append(
                f"## EVENTOS DO TIMELINE JÁ CRIADOS ({len(self.timeline_event_keys)} total)\n"
                "NÃO crie eventos duplicados para estas datas/prazos."
            )

        return "\n\n".join(parts)


Extractor = Callable[[PageBatch, BatchContext], Any]


class BatchResult(BaseModel):
    """Counts for one ingested batch."""

    model_config = ConfigDict(extra="allow")

    batch_number: Optional[int] = None
    pages_processed: List[int] = Field(default_factory=list)
    success: bool = True
    error: Optional[str] = None
    processing_time: float = 0.0
    entities_created: int = 0
    entities_updated: int = 0
    conflicts_resolved: int = 0
    sections_created: int = 0
    timeline_events_created: int = 0
    timeline_events_merged: int = 0
    items_skipped: int = 0


class DocumentResult(BaseModel):
    """Aggregated result of ingesting a whole document."""

    document_id: str
    success: bool
    total_batches: int = 0
    batch_results: List[BatchResult] = Field(default_factory=list)
    processing_time: float = 0.0
    entities_created: int = 0
    entities_updated: int = 0
    conflicts_resolved: int = 0
    sections_created: int = 0
    timeline_events_created: int = 0
    relationships_backfilled: int = 0


class DocumentPipeline:
    """Batch ingestion pipeline for one repository.

    Example:
        >>> with DocumentPipeline(config) as pipeline:
        ...     result = pipeline.process_document("edital-42", pages, extractor)
        ...     print(result.entities_created)
    """

    def __init__(self, config: Config, repository: Optional[DocumentRepository] = None) -> None:
        """Initialize the pipeline.

        Args:
            config: Application configuration
            repository: Storage to use; built from ``config.database`` when omitted
        """
        self.config = config
        self.repository = repository or create_repository(config.database)
        self.unifier = EntityUnifier(self.repository, config.unification, config.normalization)
        self.structure_builder = StructureBuilder(self.repository)
        self.timeline_resolver = TimelineResolver(self.repository, config.timeline)

        self.stats = {
            "documents_processed": 0,
            "batches_processed": 0,
            "batches_failed": 0,
            "entities_created": 0,
            "conflicts_resolved": 0,
            "sections_created": 0,
            "timeline_events_created": 0,
            "total_processing_time": 0.0,
        }
        logger.info("DocumentPipeline initialized", backend=config.database.storage_backend)

    def process_batch(
        self,
        document_id: str,
        extraction: BatchExtraction | Mapping[str, Any] | str,
        batch_number: Optional[int] = None,
        *,
        context: Optional[BatchContext] = None,
        default_page: int = 1,
    ) -> BatchResult:
        """Ingest one batch's extraction atomically.

        Raises:
            BatchIngestionError: If the repository fails; nothing of the batch is kept.
        """
        start_time = time.time()
        if not isinstance(extraction, BatchExtraction):
            extraction = parse_extraction_payload(extraction, default_page=default_page)

        try:
            with self.repository.document_transaction(document_id):
                unification = self.unifier.unify(document_id, extraction.entities)
                sections = self.structure_builder.process_sections(document_id, extraction.sections)
                timeline = self.timeline_resolver.process_timeline_events(
                    document_id, extraction.timeline_events, unification.id_map
                )
        except StorageError as exc:
            logger.error(
                "Batch ingestion failed",
                document_id=document_id,
                batch_number=batch_number,
                error=str(exc),
            )
            raise BatchIngestionError(document_id, batch_number, exc) from exc

        if context is not None:
            context.update(extraction)

        result = BatchResult(
            batch_number=batch_number,
            processing_time=time.time() - start_time,
            entities_created=unification.created,
            entities_updated=unification.updated,
            conflicts_resolved=unification.conflicts_resolved,
            sections_created=len(sections),
            timeline_events_created=len(timeline.created),
            timeline_events_merged=timeline.merged,
            items_skipped=extraction.skipped + unification.skipped + timeline.skipped,
        )
        self.stats["batches_processed"] += 1
        self.stats["entities_created"] += result.entities_created
        self.stats["conflicts_resolved"] += result.conflicts_resolved
        self.stats["sections_created"] += result.sections_created
        self.stats["timeline_events_created"] += result.timeline_events_created
        logger.info(
            "Batch ingested",
            document_id=document_id,
            batch_number=batch_number,
            entities_created=result.entities_created,
            entities_updated=result.entities_updated,
            conflicts_resolved=result.conflicts_resolved,
            sections_created=result.sections_created,
            timeline_events_created=result.timeline_events_created,
        )
        return result

    def process_document(
        self,
        document_id: str,
        pages: Sequence[DocumentPage],
        extractor: Extractor,
        *,
        backfill: bool = False,
    ) -> DocumentResult:
        """Process a whole document batch by batch.

        A failing batch is recorded and the remaining batches still run.

        Args:
            document_id: Owning document
            pages: Page texts in document order
            extractor: Called with each batch and the running context; returns
                a :class:`BatchExtraction`, a payload mapping or JSON text
            backfill: Re-resolve relationships once every batch has run

        Returns:
            DocumentResult with per-batch and aggregated counts
        """
        start_time = time.time()
        batches = calculate_batches(
            pages, self.config.batch.word_cap, self.config.batch.max_pages_per_batch
        )
        logger.info("Document split into batches", document_id=document_id, batches=len(batches))

        context = BatchContext(entity_limit=self.config.batch.context_entity_limit)
        results: List[BatchResult] = []
        for batch in batches:
            logger.debug(
                "Processing batch",
                batch_number=batch.batch_number,
                pages=batch.page_numbers,
                words=batch.total_words,
            )
            batch_start = time.time()
            try:
                payload = extractor(batch, context)
                result = self.process_batch(
                    document_id,
                    payload,
                    batch.batch_number,
                    context=context,
                    default_page=batch.pages[0].page_number,
                )
            except Exception as e:
                logger.error(f"Batch {batch.batch_number} failed: {e}")
                self.stats["batches_failed"] += 1
                result = BatchResult(
                    batch_number=batch.batch_number,
                    success=False,
                    error=str(e),
                    processing_time=time.time() - batch_start,
                )
            result.pages_processed = batch.page_numbers
            results.append(result)

        successful = [r for r in results if r.success]
        backfilled = 0
        if backfill and successful:
            backfilled = self.backfill(document_id)

        processing_time = time.time() - start_time
        self.stats["documents_processed"] += 1
        self.stats["total_processing_time"] += processing_time

        document_result = DocumentResult(
            document_id=document_id,
            success=len(successful) == len(results),
            total_batches=len(batches),
            batch_results=results,
            processing_time=processing_time,
            entities_created=sum(r.entities_created for r in successful),
            entities_updated=sum(r.entities_updated for r in successful),
            conflicts_resolved=sum(r.conflicts_resolved for r in successful),
            sections_created=sum(r.sections_created for r in successful),
            timeline_events_created=sum(r.timeline_events_created for r in successful),
            relationships_backfilled=backfilled,
        )
        logger.success(
            f"Document {document_id} processed: {len(successful)}/{len(results)} batches, "
            f"{processing_time:.2f}s"
        )
        return document_result

    def backfill(self, document_id: str) -> int:
        """Resolve relationships that pointed at keys introduced by later batches."""
        with self.repository.document_transaction(document_id):
            resolved = self.unifier.backfill_relationships(document_id)
            self.timeline_resolver.recompute_blocking(document_id)
        return resolved

    def clear_document(self, document_id: str) -> Dict[str, int]:
        return self.repository.delete_document(document_id)

    def get_statistics(self) -> Dict[str, Any]:
        return self.stats.copy()

    def health_check(self) -> Dict[str, bool]:
        try:
            return {"repository": self.repository.health_check()}
        except StorageError:
            return {"repository": False}

    def close(self) -> None:
        self.repository.close()
        logger.info("DocumentPipeline closed")

    def __enter__(self) -> "DocumentPipeline":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
