"""
CLI Interface
=============
Command-line interface for text bank parsing and document ingestion.

Usage:
    exambank parse-bank <file_or_dir> [--subject S] [--json-output] [--load]
    exambank upload <pdf_path> --subject S
    exambank extract <document_id>
    exambank process <document_id> [--subject-name N] [--mode test|content]
    exambank process-page <document_id> <page_id>
    exambank candidates <document_id> [--status pending]
    exambank approve <candidate_id> [--topic T] [--notes N]
    exambank reject <candidate_id> [--notes N]
    exambank approve-all <document_id> [--topic T]
    exambank delete <document_id>
    exambank serve [--host H] [--port P]
"""

from __future__ import annotations

import json
import os
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from . import database as db
from .approval import ApprovalWorkflow
from .config import PipelineConfig, setup_logging
from .crud import parse_bank, store_questions
from .errors import ExamBankError
from .ingestion import IngestionPipeline
from .models import CandidateStatus, ExtractionMode

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="exambank")
@click.option("--db-path", default=None, help="SQLite database file")
@click.option("--storage-dir", default=None, help="Root folder for uploaded files")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option("--log-file", default=None, help="Path to log file")
@click.pass_context
def cli(ctx, db_path, storage_dir, log_level, log_file):
    """Exam bank ingestion: text bank parser and scanned exam pipeline."""
    config = PipelineConfig.from_env(
        db_path=db_path,
        storage_dir=storage_dir,
        log_level=log_level,
        log_file=log_file,
    )
    setup_logging(config.log_level, config.log_file)
    ctx.obj = config


def _config(ctx) -> PipelineConfig:
    return ctx.find_root().obj


def _pipeline(ctx) -> IngestionPipeline:
    config = _config(ctx)
    db.init_db(config.db_path)
    return IngestionPipeline(config)


def _workflow(ctx) -> ApprovalWorkflow:
    config = _config(ctx)
    db.init_db(config.db_path)
    return ApprovalWorkflow(config.db_path)


def _fail(error: Exception):
    console.print(f"[red]Error:[/] {error}")
    sys.exit(1)


# ─── Text Banks ───────────────────────────────────────────────────────────────


@cli.command("parse-bank")
@click.argument("path", type=click.Path(exists=True))
@click.option("--subject", "-s", default="", help="Subject id for the questions")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
@click.option(
    "--load",
    is_flag=True,
    default=False,
    help="Store complete questions in the database",
)
@click.pass_context
def parse_bank_cmd(ctx, path: str, subject: str, json_output: bool, load: bool):
    """Parse a Preguntas_*.md file or a directory of them."""
    if json_output:
        setup_logging("ERROR")

    try:
        result, report = parse_bank(path, subject)
        if load:
            summary = store_questions(result.questions, _config(ctx).db_path)
    except OSError as e:
        _fail(e)

    if json_output:
        print(json.dumps(
            {
                "questions": [q.model_dump() for q in result.questions],
                "failed_files": [f.model_dump() for f in result.failed_files],
                "validation": report.model_dump(),
            },
            indent=2,
            ensure_ascii=False,
            default=str,
        ))
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Text Bank Parser v{__version__}[/]\n"
            f"[dim]Source: {os.path.basename(os.path.abspath(path))}[/]",
            border_style="cyan",
        )
    )
    console.print()
    _display_bank_files(result)
    _display_validation_table(report.model_dump())

    if load:
        console.print(
            f"[green]Stored {summary['stored_questions']} question(s)[/], "
            f"skipped {len(summary['skipped_questions'])} incomplete"
        )
        console.print()


# ─── Document Pipeline ────────────────────────────────────────────────────────


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
@click.option("--subject", "-s", required=True, help="Subject id")
@click.pass_context
def upload(ctx, pdf_path: str, subject: str):
    """Store a scanned exam PDF and register it."""
    try:
        document = _pipeline(ctx).upload(pdf_path, subject)
    except (ExamBankError, OSError, ValueError) as e:
        _fail(e)

    console.print(
        f"[green]Uploaded[/] {document.filename} "
        f"([bold]{document.page_count}[/] pages) as [cyan]{document.id}[/]"
    )


@cli.command()
@click.argument("document_id")
@click.pass_context
def extract(ctx, document_id: str):
    """Render the pages of an uploaded document."""
    try:
        pages = _pipeline(ctx).extract_pages(document_id)
    except (ExamBankError, OSError, ValueError, RuntimeError) as e:
        _fail(e)

    console.print(f"[green]Extracted[/] {len(pages)} page(s) from {document_id}")


@cli.command()
@click.argument("document_id")
@click.option("--subject-name", "-n", default=None, help="Subject hint for the vision prompt")
@click.option(
    "--mode",
    default=ExtractionMode.TEST.value,
    type=click.Choice([m.value for m in ExtractionMode]),
    help="test: multiple choice, content: open questions",
)
@click.pass_context
def process(ctx, document_id: str, subject_name: str, mode: str):
    """Run vision extraction over every pending page of a document."""
    pipeline = _pipeline(ctx)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Processing pages...", total=None)

            def on_progress(done: int, total: int):
                progress.update(task, completed=done, total=total)

            summary = pipeline.process_document(
                document_id, subject_name, ExtractionMode(mode), on_progress
            )
    except ExamBankError as e:
        _fail(e)

    table = Table(title="Processing Summary", border_style="cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Pages processed", str(summary.pages_processed))
    table.add_row("Pages skipped", str(summary.pages_skipped))
    table.add_row(
        "Pages failed",
        f"[red]{summary.pages_failed}[/]" if summary.pages_failed else "0",
    )
    table.add_row("Questions extracted", str(summary.questions_extracted))
    console.print(table)

    for page_id in summary.failed_pages:
        console.print(f"  [red]✗[/] {page_id}")


@cli.command("process-page")
@click.argument("document_id")
@click.argument("page_id")
@click.option("--subject-name", "-n", default=None, help="Subject hint for the vision prompt")
@click.pass_context
def process_page(ctx, document_id: str, page_id: str, subject_name: str):
    """Reprocess a single page."""
    try:
        result = _pipeline(ctx).process_page(document_id, page_id, subject_name)
    except ExamBankError as e:
        _fail(e)

    if result.error:
        console.print(f"[red]Page {page_id} failed:[/] {result.error}")
        sys.exit(1)
    console.print(f"[green]✓[/] {page_id}: {result.questions_found} question(s)")


@cli.command()
@click.argument("document_id")
@click.option(
    "--status",
    default=None,
    type=click.Choice([s.value for s in CandidateStatus]),
    help="Only show candidates in this status",
)
@click.pass_context
def candidates(ctx, document_id: str, status: str):
    """List the question candidates of a document."""
    config = _config(ctx)
    db.init_db(config.db_path)
    rows = db.list_candidates(document_id, status, config.db_path)

    table = Table(title=f"Candidates of {document_id}", border_style="cyan")
    table.add_column("ID", style="bold")
    table.add_column("#", justify="right")
    table.add_column("Options", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Question")

    for c in rows:
        preview = c.display_content.replace("\n", " ")
        if len(preview) > 60:
            preview = preview[:57] + "..."
        if c.is_incomplete:
            preview = "[yellow][INCOMPLETE][/] " + preview
        table.add_row(
            c.id, str(c.question_number), str(c.option_count), c.status.value, preview
        )

    console.print(table)


@cli.command()
@click.argument("document_id")
@click.pass_context
def delete(ctx, document_id: str):
    """Delete a document with its pages, candidates and files."""
    try:
        removed = _pipeline(ctx).delete_document(document_id)
    except ExamBankError as e:
        _fail(e)

    console.print(f"[green]Deleted[/] {document_id} ({removed} storage path(s) removed)")


# ─── Approval ─────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("candidate_id")
@click.option("--topic", "-t", default=None, help="Topic for the new question")
@click.option("--notes", default=None, help="Reviewer notes")
@click.pass_context
def approve(ctx, candidate_id: str, topic: str, notes: str):
    """Promote a candidate into the question bank."""
    try:
        question = _workflow(ctx).approve(candidate_id, topic, notes)
    except ExamBankError as e:
        _fail(e)

    console.print(f"[green]Approved[/] {candidate_id} as [cyan]{question.id}[/]")


@cli.command()
@click.argument("candidate_id")
@click.option("--notes", default=None, help="Reason for rejection")
@click.pass_context
def reject(ctx, candidate_id: str, notes: str):
    """Reject a candidate."""
    try:
        _workflow(ctx).reject(candidate_id, notes)
    except ExamBankError as e:
        _fail(e)

    console.print(f"[yellow]Rejected[/] {candidate_id}")


@cli.command("approve-all")
@click.argument("document_id")
@click.option("--topic", "-t", default=None, help="Topic for every new question")
@click.pass_context
def approve_all(ctx, document_id: str, topic: str):
    """Approve every pending candidate of a document."""
    try:
        summary = _workflow(ctx).approve_all(document_id, topic)
    except ExamBankError as e:
        _fail(e)

    console.print(
        f"[green]Approved {summary.approved}[/], "
        f"skipped {summary.skipped} with fewer than 2 options"
    )


# ─── Server ───────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
@click.pass_context
def serve(ctx, host: str, port: int, debug: bool):
    """Start the HTTP API server."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Exam Bank API[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug, config=_config(ctx))


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_bank_files(result):
    table = Table(title="Bank Files", border_style="cyan")
    table.add_column("File", style="bold")
    table.add_column("Status", justify="center")

    for name in result.parsed_files:
        table.add_row(name, "[green]✓[/]")
    for failed in result.failed_files:
        table.add_row(failed.file, f"[red]✗ {failed.error}[/]")

    console.print(table)
    console.print()


def _display_validation_table(validation: dict):
    """Display validation report as a rich table."""
    table = Table(title="Validation Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    total = validation.get("total_questions_detected", 0)
    success = validation.get("structured_successfully", 0)
    rate = validation.get("success_rate", 0)

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    table.add_row(
        "Total Questions Detected",
        str(total),
        "[green]✓[/]" if total > 0 else "[red]✗[/]",
    )
    table.add_row(
        "Structured Successfully",
        f"{success} ({rate}%)",
        "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]",
    )

    missing = sum(len(v) for v in validation.get("missing_question_numbers", {}).values())
    table.add_row("Missing Question Numbers", str(missing), status_icon(missing))

    dupes = sum(len(v) for v in validation.get("duplicate_question_numbers", {}).values())
    table.add_row("Duplicate Question Numbers", str(dupes), status_icon(dupes))

    no_options = len(validation.get("questions_missing_options", []))
    table.add_row("Questions Missing Options", str(no_options), status_icon(no_options))

    no_text = len(validation.get("questions_missing_text", []))
    table.add_row("Questions Missing Text", str(no_text), status_icon(no_text))

    console.print(table)
    console.print()

    breakdown = validation.get("anomaly_breakdown", {})
    if breakdown:
        anomaly_table = Table(title="Anomaly Breakdown", border_style="yellow")
        anomaly_table.add_column("Type", style="bold")
        anomaly_table.add_column("Count", justify="right")

        for atype, count in sorted(breakdown.items()):
            anomaly_table.add_row(atype, str(count))

        console.print(anomaly_table)
        console.print()


if __name__ == "__main__":
    cli()
