"""Normalization package."""

from licitagraph.normalization.identity import (
    generate_deduplication_key,
    generate_entity_id,
    normalize_key_fragment,
    validate_semantic_key,
)
from licitagraph.normalization.tables import MONTHS, NUMBER_WORDS, fold_text
from licitagraph.normalization.value_normalizer import (
    DaysPeriod,
    extract_number,
    normalize_date,
    normalize_days_period,
    normalize_monetary,
    normalize_percentage,
    normalize_text,
    normalize_time,
    normalize_warranty_period,
    parse_number,
)

__all__ = [
    "DaysPeriod",
    "MONTHS",
    "NUMBER_WORDS",
    "extract_number",
    "fold_text",
    "generate_deduplication_key",
    "generate_entity_id",
    "normalize_date",
    "normalize_days_period",
    "normalize_key_fragment",
    "normalize_monetary",
    "normalize_percentage",
    "normalize_text",
    "normalize_time",
    "normalize_warranty_period",
    "parse_number",
    "validate_semantic_key",
]
