"""Command line interface: ingest extraction batches and inspect the results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from licitagraph.exceptions import BatchIngestionError, LicitaGraphError
from licitagraph.pipeline.batch_pipeline import DocumentPipeline
from licitagraph.storage.schemas import EntityType, SectionNode, TimelineEvent
from licitagraph.timeline.views import TimelineViews
from licitagraph.utils.config import Config, load_config
from licitagraph.utils.logging import configure_logging

app = typer.Typer(help="Unify procurement document extractions into entities, structure and timeline.")

console = Console(width=120)


def _load(config_path: Path, *, verbose: bool = False) -> Config:
    cfg = load_config(config_path if config_path.exists() else None)
    configure_logging(cfg.logging, level="DEBUG" if verbose else "WARNING")
    return cfg


def _read_batches(path: Path) -> List[Any]:
    """A JSON list of batch payloads, or an object with a ``batches`` list, or one payload."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Could not read {path}: {e}[/red]")
        raise typer.Exit(code=1)

    if isinstance(data, list):
        return data
    if isinstance(data, Mapping) and isinstance(data.get("batches"), list):
        return data["batches"]
    return [data]


def _default_page(payload: Any) -> int:
    if isinstance(payload, Mapping):
        page = payload.get("pageNumber") or payload.get("page_number")
        if isinstance(page, int) and page > 0:
            return page
    return 1


def _render_tree(document_id: str, roots: Iterable[SectionNode]) -> None:
    tree = Tree(f"[bold]{document_id}[/bold]")
    stack = [(tree, root) for root in reversed(list(roots))]
    while stack:
        parent, node = stack.pop()
        label = " ".join(part for part in (node.number or "", node.title) if part) or "(sem título)"
        branch = parent.add(f"[cyan]{node.level.value}[/cyan] {label}")
        stack.extend((branch, child) for child in reversed(node.children))
    console.print(tree)


def _render_events(title: str, events: List[TimelineEvent]) -> None:
    if not events:
        return
    table = Table(title=f"{title} ({len(events)})")
    table.add_column("Date")
    table.add_column("Phase")
    table.add_column("Type", style="cyan")
    table.add_column("Title")
    table.add_column("Importance")
    table.add_column("Days", justify="right")
    for event in events:
        days = event.urgency.days_until_deadline
        table.add_row(
            event.date.strftime("%Y-%m-%d %H:%M") if event.date else event.date_raw or "-",
            event.phase.value,
            event.event_type,
            event.title,
            event.importance.value,
            "-" if days is None else str(days),
        )
    console.print(table)


def _render_timeline(pipeline: DocumentPipeline, document_id: str) -> None:
    timeline = TimelineViews(pipeline.repository, pipeline.config.timeline).build_timeline(document_id)
    _render_events("Timeline", timeline.timeline)
    _render_events("Relative events", timeline.relative_events)
    _render_events("Unresolved events", timeline.unresolved_events)
    stats = timeline.stats
    console.print(
        f"Events: {stats.total} (dated={stats.with_date}, relative={stats.relative}, "
        f"unresolved={stats.unresolved}), upcoming critical: {stats.upcoming_critical}"
    )


@app.command("ingest")
def ingest(
    payload_file: Path = typer.Argument(..., help="JSON file with extraction batch payloads."),
    document_id: str = typer.Option(..., "--document-id", "-d", help="Document identifier."),
    backfill: bool = typer.Option(False, help="Re-resolve relationships after the last batch."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Ingest extraction batches and print entities, structure and timeline."""
    cfg = _load(config, verbose=verbose)
    batches = _read_batches(payload_file)

    with DocumentPipeline(cfg) as pipeline:
        table = Table(title=f"Batches for {document_id}")
        table.add_column("Batch", justify="right")
        table.add_column("Created", justify="right")
        table.add_column("Updated", justify="right")
        table.add_column("Conflicts", justify="right")
        table.add_column("Sections", justify="right")
        table.add_column("Events", justify="right")
        table.add_column("Skipped", justify="right")

        failed = 0
        for number, payload in enumerate(batches, start=1):
            try:
                result = pipeline.process_batch(
                    document_id, payload, number, default_page=_default_page(payload)
                )
            except BatchIngestionError as e:
                failed += 1
                console.print(f"[red]{e}[/red]")
                continue
            table.add_row(
                str(number),
                str(result.entities_created),
                str(result.entities_updated),
                str(result.conflicts_resolved),
                str(result.sections_created),
                str(result.timeline_events_created),
                str(result.items_skipped),
            )
        console.print(table)

        if backfill:
            resolved = pipeline.backfill(document_id)
            console.print(f"Backfilled relationships: {resolved}")

        _render_tree(document_id, pipeline.structure_builder.get_hierarchy_tree(document_id))
        _render_timeline(pipeline, document_id)

    if failed:
        raise typer.Exit(code=1)


@app.command("entities")
def entities(
    document_id: str = typer.Argument(..., help="Document identifier."),
    entity_type: Optional[str] = typer.Option(None, "--type", help="Filter by entity type."),
    query: Optional[str] = typer.Option(None, help="Substring search on semantic key or name."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """List unified entities of a document."""
    cfg = _load(config)
    with DocumentPipeline(cfg) as pipeline:
        unifier = pipeline.unifier
        if query:
            found = unifier.search_entities(document_id, query, EntityType(entity_type) if entity_type else None)
        elif entity_type:
            found = unifier.get_entities_by_type(document_id, entity_type)
        else:
            found = unifier.get_entities_by_document(document_id)

        if not found:
            console.print("[yellow]No entities found.[/yellow]")
            return

        table = Table(title=f"Entities ({len(found)})")
        table.add_column("Semantic key", style="cyan")
        table.add_column("Type")
        table.add_column("Value")
        table.add_column("Conf", justify="right")
        table.add_column("Pages")
        for entity in found:
            pages = sorted({source.page_number for source in entity.sources})
            table.add_row(
                entity.semantic_key,
                entity.type.value,
                entity.normalized_value,
                f"{entity.confidence:.2f}",
                ", ".join(str(p) for p in pages),
            )
        console.print(table)


@app.command("structure")
def structure(
    document_id: str = typer.Argument(..., help="Document identifier."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Print the section tree of a document."""
    cfg = _load(config)
    with DocumentPipeline(cfg) as pipeline:
        builder = pipeline.structure_builder
        _render_tree(document_id, builder.get_hierarchy_tree(document_id))
        stats = builder.get_structure_stats(document_id)
        console.print(f"Sections: {stats.total_sections}, max depth: {stats.max_depth}")


@app.command("timeline")
def timeline(
    document_id: str = typer.Argument(..., help="Document identifier."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Print the timeline buckets of a document."""
    cfg = _load(config)
    with DocumentPipeline(cfg) as pipeline:
        _render_timeline(pipeline, document_id)


@app.command("clear")
def clear(
    document_id: str = typer.Argument(..., help="Document identifier."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Delete every record of a document."""
    if not yes and not typer.confirm(f"Delete all records of document '{document_id}'?"):
        raise typer.Exit(code=1)
    cfg = _load(config)
    try:
        with DocumentPipeline(cfg) as pipeline:
            counts = pipeline.clear_document(document_id)
    except LicitaGraphError as e:
        console.print(f"[red]Clear failed: {e}[/red]")
        raise typer.Exit(code=1)
    console.print(", ".join(f"{kind}={count}" for kind, count in counts.items()))


def run() -> None:
    """Entrypoint for Typer."""
    app()


if __name__ == "__main__":
    run()
