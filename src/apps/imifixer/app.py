"""Typer commands for the IMI fixer."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import List, Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from apps.imifixer.config import FixerSettings, load_settings
from apps.imifixer.utils.errors import (
    ExitCode,
    ImiFixerConfigError,
    ImiFixerIOError,
    ImiFixerRuntimeError,
    ImiFixerValidationError,
)
from apps.imifixer.utils.logging import configure_logging
from libraries.pipeline.processor import FileOutcome, FileProcessor, FileStatus
from libraries.pipeline.retry import RetryPolicy
from libraries.pipeline.service import FixerPipeline
from libraries.reconcile.index import (
    ReferenceIndex,
    ReferenceIndexError,
    build_reference_index,
)

log = structlog.get_logger(__name__)

app = typer.Typer(name="imifixer", help="Restore published IMI values in TVA schedules.")

ProfileOption = typer.Option(None, "--profile", help="Configuration profile to use.")
OutputFolderOption = typer.Option(
    None, "--output-folder", help="Folder receiving corrected schedule files."
)
ReferenceFolderOption = typer.Option(
    None, "--reference-folder", help="Folder holding the published *_TVA.xml exports."
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")
JsonLogsOption = typer.Option(False, "--json-logs", help="Emit JSON log lines.")


def _load_index(settings: FixerSettings) -> ReferenceIndex:
    typer.secho(
        f"Loading reference TVAs from {settings.reference_folder}",
        fg=typer.colors.CYAN,
        err=True,
    )
    try:
        index = build_reference_index(
            settings.reference_folder, settings.reference_pattern
        )
    except ReferenceIndexError as exc:
        raise ImiFixerIOError(str(exc)) from exc
    typer.secho(f"{index.total_records} events", fg=typer.colors.CYAN, err=True)
    return index


def _build_processor(settings: FixerSettings, index: ReferenceIndex) -> FileProcessor:
    if settings.output_folder is None:
        raise ImiFixerConfigError(
            "An output folder is required; pass --output-folder or set output_folder in the profile."
        )
    log.debug(
        "imifixer.processor",
        output=str(settings.output_folder),
        max_attempts=settings.max_attempts,
        retry_delay=settings.retry_delay,
    )
    return FileProcessor(
        index,
        settings.output_folder,
        retry_policy=RetryPolicy(
            max_attempts=settings.max_attempts, delay=settings.retry_delay
        ),
    )


def format_outcome(outcome: FileOutcome) -> str:
    """Return the operator-facing line for *outcome*."""

    if outcome.status is FileStatus.FAILED:
        return f"Failed to process {outcome.source}"
    summary = outcome.summary
    if summary is None:
        return f"Skipped {outcome.source}: file no longer exists"
    return (
        f"Fixed {summary.corrected} imis, Same {summary.unchanged} imis "
        f"in {summary.seen} events in {outcome.source.name} "
        f"[{summary.reference_events_for_service} BEs for that service]"
    )


def report_outcome(outcome: FileOutcome) -> None:
    if outcome.status is FileStatus.VANISHED:
        return
    if outcome.status is FileStatus.FAILED:
        typer.secho(format_outcome(outcome), fg=typer.colors.RED, err=True)
        return
    colour = typer.colors.GREEN if outcome.summary and outcome.summary.corrected else None
    typer.secho(format_outcome(outcome), fg=colour)


def wait_for_shutdown(stop: threading.Event | None = None) -> None:
    """Block until Ctrl+C, or until *stop* is set."""

    stop = stop or threading.Event()
    try:
        while not stop.wait(0.5):
            pass
    except KeyboardInterrupt:
        typer.secho("Stopping, waiting for files in progress...", fg=typer.colors.YELLOW)


@app.command("watch")
def watch(
    profile: Optional[str] = ProfileOption,
    watch_folder: Optional[Path] = typer.Option(
        None, "--watch-folder", help="Folder to watch (recursively) for schedule files."
    ),
    output_folder: Optional[Path] = OutputFolderOption,
    reference_folder: Optional[Path] = ReferenceFolderOption,
    quiet_period: Optional[float] = typer.Option(
        None, "--quiet-period", help="Seconds without events before a file is processed."
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", help="Number of files processed concurrently."
    ),
    verbose: bool = VerboseOption,
    json_logs: bool = JsonLogsOption,
) -> None:
    """Watch a folder and correct every schedule file that lands in it."""

    configure_logging(verbose=verbose, json_logs=json_logs)
    settings = load_settings(
        profile=profile,
        overrides={
            "watch_folder": watch_folder,
            "output_folder": output_folder,
            "reference_folder": reference_folder,
            "quiet_period": quiet_period,
            "workers": workers,
        },
    )
    if settings.watch_folder is None:
        raise ImiFixerConfigError(
            "A watch folder is required; pass --watch-folder or set watch_folder in the profile."
        )

    index = _load_index(settings)
    pipeline = FixerPipeline(
        _build_processor(settings, index),
        settings.watch_folder,
        pattern=settings.file_pattern,
        quiet_period=settings.quiet_period,
        workers=settings.workers,
        on_outcome=report_outcome,
    )
    try:
        pipeline.start()
    except OSError as exc:
        raise ImiFixerRuntimeError(
            f"Unable to watch '{settings.watch_folder}': {exc}"
        ) from exc
    try:
        typer.secho(
            f"Watching {settings.watch_folder}. Press Ctrl+C to exit.",
            fg=typer.colors.BLUE,
        )
        wait_for_shutdown()
    finally:
        pipeline.stop()


@app.command("fix")
def fix(
    files: List[Path] = typer.Argument(..., help="Schedule files to correct."),
    profile: Optional[str] = ProfileOption,
    output_folder: Optional[Path] = OutputFolderOption,
    reference_folder: Optional[Path] = ReferenceFolderOption,
    verbose: bool = VerboseOption,
    json_logs: bool = JsonLogsOption,
) -> None:
    """Correct the given files once, without watching a folder."""

    configure_logging(verbose=verbose, json_logs=json_logs)
    missing = [str(path) for path in files if not path.is_file()]
    if missing:
        raise ImiFixerValidationError(f"Files not found: {', '.join(missing)}")

    settings = load_settings(
        profile=profile,
        overrides={
            "output_folder": output_folder,
            "reference_folder": reference_folder,
        },
    )
    processor = _build_processor(settings, _load_index(settings))

    failures = 0
    for path in files:
        outcome = processor.process_with_retry(path)
        report_outcome(outcome)
        if outcome.status is FileStatus.FAILED:
            failures += 1

    if failures:
        raise typer.Exit(code=int(ExitCode.IO))


@app.command("index")
def index(
    profile: Optional[str] = ProfileOption,
    reference_folder: Optional[Path] = ReferenceFolderOption,
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON."),
    verbose: bool = VerboseOption,
) -> None:
    """Build the reference index and print what it contains."""

    configure_logging(verbose=verbose)
    settings = load_settings(
        profile=profile, overrides={"reference_folder": reference_folder}
    )
    summary = _load_index(settings).summary()

    if as_json:
        typer.echo(summary.model_dump_json(indent=2))
        return

    table = Table(title=f"Reference index ({summary.distinct_keys} keys)")
    table.add_column("Service")
    table.add_column("Events", justify="right")
    for service, count in summary.records_per_service.items():
        table.add_row(service, str(count))
    Console().print(table)


__all__ = ["app", "format_outcome", "report_outcome", "wait_for_shutdown"]
