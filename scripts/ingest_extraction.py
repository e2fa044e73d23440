#!/usr/bin/env python3
"""Replay recorded extractions through the batch pipeline.

Each input file is a JSON object holding the document's page texts and the
extraction payload recorded for every batch:

    {
      "documentId": "edital-042",          (optional, defaults to the file stem)
      "pages": [{"pageNumber": 1, "text": "..."}, ...],
      "extractions": [{"entities": [...], "sections": [...], "timelineEvents": [...]}, ...]
    }

Pages are batched with the configured word cap; batch N receives
``extractions[N-1]`` (an empty payload when the recording is shorter).

Usage:
    python scripts/ingest_extraction.py recordings/edital-042.json
    python scripts/ingest_extraction.py --directory recordings/ --backfill
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger

from licitagraph.exceptions import LicitaGraphError
from licitagraph.pipeline.batch_pipeline import BatchContext, DocumentPage, DocumentPipeline, PageBatch
from licitagraph.utils.config import load_config


def find_recordings(paths: List[Path]) -> List[Path]:
    """Collect ``.json`` recordings from files and directories."""
    found: List[Path] = []
    for path in paths:
        if path.is_file() and path.suffix.lower() == ".json":
            found.append(path)
        elif path.is_dir():
            found.extend(path.rglob("*.json"))
        else:
            logger.warning(f"Skipping unsupported path: {path}")
    return sorted({p.resolve() for p in found})


def load_recording(path: Path) -> Dict[str, Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: recording root must be an object")
    return data


def make_replay_extractor(extractions: List[Any]):
    """Extractor that returns the recorded payload of each batch."""

    def extractor(batch: PageBatch, context: BatchContext) -> Any:
        logger.debug(
            f"Replaying batch {batch.batch_number} ({len(context.existing_semantic_keys)} known keys)"
        )
        index = batch.batch_number - 1
        return extractions[index] if index < len(extractions) else {}

    return extractor


def main():
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Replay recorded extractions into the configured repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("paths", nargs="*", type=Path, help="Recording files or directories")
    parser.add_argument("--directory", "-d", type=Path, help="Directory containing recordings")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config/config.yaml"),
        help="Path to configuration file (default: config/config.yaml)",
    )
    parser.add_argument(
        "--backfill",
        action="store_true",
        help="Re-resolve relationships after the last batch of each document",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    paths = list(args.paths or [])
    if args.directory:
        paths.append(args.directory)
    if not paths:
        parser.error("No files or directories specified. Use --help for usage.")

    log_level = "DEBUG" if args.verbose else "INFO"
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=log_level,
    )

    config = load_config(args.config if args.config.exists() else None)
    recordings = find_recordings(paths)
    if not recordings:
        logger.error("No recordings found to process")
        return 1

    failures = 0
    with DocumentPipeline(config) as pipeline:
        for path in recordings:
            try:
                recording = load_recording(path)
            except (OSError, ValueError) as e:
                logger.error(f"Could not read {path.name}: {e}")
                failures += 1
                continue

            document_id = str(recording.get("documentId") or path.stem)
            pages = [
                DocumentPage(page_number=page.get("pageNumber", index), text=page.get("text", ""))
                for index, page in enumerate(recording.get("pages", []), start=1)
            ]
            extractor = make_replay_extractor(list(recording.get("extractions", [])))

            try:
                result = pipeline.process_document(document_id, pages, extractor, backfill=args.backfill)
            except LicitaGraphError as e:
                logger.error(f"{document_id}: {e}")
                failures += 1
                continue

            if not result.success:
                failures += 1
            logger.info(
                f"{document_id}: {result.total_batches} batches, "
                f"{result.entities_created} entities, {result.conflicts_resolved} conflicts, "
                f"{result.sections_created} sections, {result.timeline_events_created} events"
            )

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
