"""Helpers for building deterministic identity keys.

The primary identity of an extracted fact is the extractor-supplied semantic key
(e.g. ``PRAZO:SESSAO_PUBLICA:2024-09-24``). The content hash produced by
``generate_deduplication_key`` is kept for legacy/opaque grouping only.
"""

from __future__ import annotations

import hashlib
import re
import uuid

from licitagraph.normalization.tables import fold_text

DEFAULT_KEY_LENGTH = 16


def generate_deduplication_key(
    entity_type: str,
    normalized_value: str,
    context: str | None = None,
    *,
    length: int = DEFAULT_KEY_LENGTH,
) -> str:
    """Hash ``type:value[:context]`` (order-sensitive) and truncate the hex digest."""
    parts = [entity_type, normalized_value]
    if context:
        parts.append(context)
    content = ":".join(parts)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:length]


def generate_entity_id() -> str:
    """Opaque identifier for a newly created record."""
    return str(uuid.uuid4())


def validate_semantic_key(value: str | None) -> str:
    """Return the trimmed semantic key, raising ValueError when it is empty."""
    key = (value or "").strip()
    if not key:
        raise ValueError("Semantic key cannot be empty")
    return key


def normalize_key_fragment(value: str | None) -> str:
    """Upper-case slug (accents stripped, non-alphanumerics collapsed to ``_``)."""
    folded = fold_text(value or "")
    return re.sub(r"[^A-Z0-9]+", "_", folded).strip("_")
