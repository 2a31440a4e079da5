"""Command-line interface for the SOP Reconciler."""

import json
import logging
import sys
from functools import lru_cache
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sop_reconciler.config import get_settings
from sop_reconciler.errors import SOPReconcilerError
from sop_reconciler.extraction.document_extractor import resolve_file_kind
from sop_reconciler.models import MergeStrategy, StructuredSOP
from sop_reconciler.pipeline import PipelineServices, build_services
from sop_reconciler.storage import (
    create_engine_from_url,
    generate_unique_filename,
    get_file_mime_type,
    init_db,
)

app = typer.Typer(
    name="sopctl",
    help="SOP Reconciler - Turn documents into bilingual SOPs and reconcile them with the corpus",
    add_completion=False,
)
console = Console()


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Route structlog through stdlib logging with a level filter."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@lru_cache
def _services() -> PipelineServices:
    return build_services(get_settings())


def _fail(error: Exception, verbose: bool = False) -> None:
    console.print(f"\n[red]Error:[/red] {error}")
    if verbose:
        console.print_exception()
    sys.exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_json)


@app.command("init-db")
def init_database() -> None:
    """Create the database tables."""
    settings = get_settings()
    init_db(create_engine_from_url(settings.database_url))
    console.print(f"[green]Database ready:[/green] {settings.database_url}")


@app.command()
def upload(
    file_path: Path = typer.Argument(
        ...,
        help="PDF or Word (.docx) document",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    user_id: Optional[int] = typer.Option(None, "--user", help="Uploading user id"),
) -> None:
    """Store a document and register it for processing."""
    try:
        kind = resolve_file_kind(file_path.suffix)
        services = _services()
        data = file_path.read_bytes()
        url = services.blob_store.put(
            data,
            generate_unique_filename(file_path.name),
            get_file_mime_type(file_path.name),
        )
        document = services.repository.create_document(
            filename=file_path.name,
            file_url=url,
            file_type=kind.value,
            uploaded_by=user_id,
            file_size=len(data),
        )
    except SOPReconcilerError as e:
        _fail(e)

    console.print(f"[green]Uploaded[/green] {file_path.name} as document [bold]{document.id}[/bold]")


@app.command()
def generate(
    document_id: int = typer.Argument(..., help="Document id"),
    user_id: Optional[int] = typer.Option(None, "--user", help="Acting user id"),
) -> None:
    """Generate a bilingual SOP pair from a document."""
    console.print("[yellow]Generating SOP... (this may take a few minutes)[/yellow]")
    try:
        result = _services().pipeline.generate(document_id, user_id=user_id)
    except SOPReconcilerError as e:
        _fail(e)

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Title", result.sop_primary.title)
    table.add_row("Primary SOP", f"{result.sop_primary.id} ({result.sop_primary.language})")
    table.add_row("Secondary SOP", f"{result.sop_secondary.id} ({result.sop_secondary.language})")
    table.add_row("Steps", str(result.step_count))
    console.print(table)

    if result.translation_step_mismatch:
        console.print("[yellow]Warning:[/yellow] translated step count differs from the source")


@app.command()
def analyze(
    document_id: int = typer.Argument(..., help="Document id"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the analysis JSON here"),
) -> None:
    """Extract a document's SOP and check it against existing SOPs."""
    console.print("[yellow]Analyzing document...[/yellow]")
    try:
        result = _services().pipeline.analyze_conflicts(document_id)
    except SOPReconcilerError as e:
        _fail(e)

    analysis = result.conflict_analysis
    console.print(
        Panel.fit(
            f"[bold]{result.structured_sop.title}[/bold]\n"
            f"{len(result.structured_sop.steps)} steps | "
            f"conflicts: {analysis.has_conflicts} | duplicates: {analysis.has_duplicates}",
            border_style="blue",
        )
    )

    if analysis.related_sops:
        table = Table(title="Related SOPs")
        table.add_column("ID", justify="right")
        table.add_column("Title")
        table.add_column("Similarity", justify="right")
        table.add_column("Relationship")
        for related in analysis.related_sops:
            table.add_row(str(related.id), related.title, f"{related.similarity:.0%}", related.conflict_type.value)
        console.print(table)

    for suggestion in analysis.suggestions:
        target = f" -> SOP {suggestion.target_sop_id}" if suggestion.target_sop_id else ""
        console.print(f"  [cyan]{suggestion.action.value}[/cyan]{target}: {suggestion.reason}")

    if output:
        with open(output, "w", encoding="utf-8") as f:
            json.dump(result.model_dump(mode="json", by_alias=True), f, indent=2, ensure_ascii=False)
        console.print(f"\n[green]Analysis saved to:[/green] {output}")


@app.command()
def merge(
    document_id: int = typer.Argument(..., help="Analyzed document id"),
    target_sop_id: int = typer.Argument(..., help="Existing primary-language SOP id"),
    strategy: MergeStrategy = typer.Option(MergeStrategy.SMART_COMBINE, "--strategy", "-s"),
    user_id: Optional[int] = typer.Option(None, "--user", help="Acting user id"),
) -> None:
    """Merge an analyzed document into an existing SOP."""
    console.print(f"[yellow]Merging with strategy {strategy.value}...[/yellow]")
    try:
        result = _services().pipeline.merge(document_id, target_sop_id, strategy, user_id=user_id)
    except SOPReconcilerError as e:
        _fail(e)

    console.print(
        f"[green]Merged[/green] into SOP {result.sop.id} "
        f"(version {result.sop.version}, {len(result.merged_sop.steps)} steps, {result.image_count} images)"
    )
    if result.merge_notes:
        console.print(Panel(result.merge_notes, title="Merge notes", border_style="dim"))


@app.command()
def revise(
    sop_id: int = typer.Argument(..., help="SOP id to overwrite"),
    sop_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="SOP JSON"),
    user_id: Optional[int] = typer.Option(None, "--user", help="Acting user id"),
) -> None:
    """Replace an SOP's content from JSON and re-translate its partner."""
    try:
        sop = StructuredSOP.model_validate_json(sop_file.read_text(encoding="utf-8"))
        result = _services().pipeline.revise_sop(sop_id, sop, user_id=user_id)
    except (SOPReconcilerError, ValueError) as e:
        _fail(e)

    console.print(f"[green]Revised[/green] SOP {result.sop.id} (version {result.sop.version})")


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question about the procedures"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Answer language (zh/en)"),
    user_id: Optional[int] = typer.Option(None, "--user", help="Asking user id"),
) -> None:
    """Answer a question from the stored SOPs."""
    try:
        result = _services().answerer.ask(question, language=language, user_id=user_id)
    except SOPReconcilerError as e:
        _fail(e)

    console.print(Panel(result.answer, border_style="green" if result.found_results else "yellow"))
    for related in result.related_sops:
        console.print(f"  [dim]SOP {related['id']}:[/dim] {related['title']}")


@app.command("delete-sop")
def delete_sop(sop_id: int = typer.Argument(..., help="SOP id")) -> None:
    """Delete one SOP record and unlink its translation partner."""
    try:
        _services().pipeline.delete_sop(sop_id)
    except SOPReconcilerError as e:
        _fail(e)

    console.print(f"[green]Deleted[/green] SOP {sop_id}")


@app.command()
def embed() -> None:
    """Compute embeddings for every stored content block."""
    services = _services()
    if services.indexer is None:
        console.print("[yellow]Vector search is disabled (VECTOR_SEARCH_ENABLED=false)[/yellow]")
        raise typer.Exit(code=1)

    count = services.indexer.backfill()
    console.print(f"[green]Indexed[/green] {count} content blocks")


@app.command()
def info() -> None:
    """Display system information and configuration."""
    from sop_reconciler import __version__
    from sop_reconciler.llm import get_llm_settings

    settings = get_settings()
    llm_settings = get_llm_settings()

    console.print(
        Panel.fit(
            "[bold blue]SOP Reconciler[/bold blue]",
            border_style="blue",
        )
    )

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("Database", settings.database_url)
    table.add_row("Storage", settings.storage_backend.value)
    table.add_row("Languages", f"{settings.primary_language} + {settings.secondary_language}")
    table.add_row("LLM Model", llm_settings.model_name)
    table.add_row("Ollama URL", llm_settings.ollama_base_url)
    table.add_row("Embedding Model", llm_settings.embedding_model or "disabled")
    table.add_row("Vector Search", "enabled" if settings.vector_search_enabled else "disabled")
    table.add_row("Chunk Size", f"{settings.chunk_max_chars} chars")

    console.print(table)


if __name__ == "__main__":
    app()
