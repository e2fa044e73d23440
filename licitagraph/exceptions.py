"""Exception hierarchy for the extraction unification pipeline.

Data-quality problems (parse misses, conflicts, dangling references, malformed
items) are recovered locally and never surface here. Only environment problems
and read-side lookups of unknown ids raise.
"""

from __future__ import annotations


class LicitaGraphError(Exception):
    """Base class for all licitagraph errors."""


class StorageError(LicitaGraphError):
    """The persistence collaborator failed."""


class NotFoundError(LicitaGraphError):
    """A record addressed by id does not exist."""


class BatchIngestionError(LicitaGraphError):
    """A batch could not be ingested because of an infrastructure failure."""

    def __init__(self, document_id: str, batch_number: int | None, cause: Exception) -> None:
        self.document_id = document_id
        self.batch_number = batch_number
        self.cause = cause
        label = f"batch {batch_number}" if batch_number is not None else "batch"
        super().__init__(f"Ingestion of {label} for document {document_id} failed: {cause}")
