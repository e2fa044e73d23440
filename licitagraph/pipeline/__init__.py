"""Pipeline orchestrators for document ingestion."""

from licitagraph.pipeline.batch_pipeline import (
    BatchContext,
    BatchResult,
    DocumentPage,
    DocumentPipeline,
    DocumentResult,
    PageBatch,
    calculate_batches,
)

__all__ = [
    "BatchContext",
    "BatchResult",
    "DocumentPage",
    "DocumentPipeline",
    "DocumentResult",
    "PageBatch",
    "calculate_batches",
]
