"""Extraction package exports."""

from licitagraph.extraction.entity_unifier import EntityUnifier, UnificationResult, values_match
from licitagraph.extraction.models import RawEntity, RawRelativeTo, RawSection, RawTimelineEvent
from licitagraph.extraction.payload_parser import BatchExtraction, parse_extraction_payload

__all__ = [
    "BatchExtraction",
    "EntityUnifier",
    "RawEntity",
    "RawRelativeTo",
    "RawSection",
    "RawTimelineEvent",
    "UnificationResult",
    "parse_extraction_payload",
    "values_match",
]
