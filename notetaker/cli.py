"""Command line interface for the notetaker application."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict
from pathlib import Path
from typing import Dict, NoReturn, Optional

import typer

from . import __version__
from .chunker import probe_duration
from .config import ConfigError, mask_secret
from .errors import NotetakerError, ProcessError
from .export import FORMATS, export_meeting, format_duration
from .models import Meeting
from .services import Services, build_services

app = typer.Typer(add_completion=False, help="Record meetings, transcribe them and keep summarised notes.")

STOP_WAIT = 10.0
POLL_INTERVAL = 0.5


def _fail(exc: Exception) -> NoReturn:
    typer.secho(str(exc), fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def _services() -> Services:
    return build_services()


def _print_meeting(meeting: Meeting) -> None:
    typer.secho(f"Title: {meeting.title}", fg=typer.colors.BLUE)
    typer.echo(f"ID: {meeting.id}")
    typer.echo(f"Date: {meeting.date.astimezone():%Y-%m-%d %H:%M}")
    typer.echo(f"Duration: {format_duration(meeting.duration)}")
    typer.echo(f"Status: {meeting.status.value}")
    if meeting.summary:
        typer.secho("\nSummary:\n" + meeting.summary, fg=typer.colors.GREEN)
    if meeting.transcript:
        typer.echo("\nTranscript:\n" + meeting.transcript)


def _run_pipeline(services: Services, meeting: Meeting) -> None:
    typer.echo("Transcribing and summarising...")
    try:
        meeting = services.pipeline.process(meeting.id)
    except NotetakerError as exc:
        typer.secho(
            f"{exc}\nThe recording was kept; retry with `notetaker transcribe {meeting.id}`.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1) from exc
    _print_meeting(meeting)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    if version:
        typer.echo(f"notetaker v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def record(
    title: Optional[str] = typer.Option(None, "--title", help="Optional display title."),
    process: bool = typer.Option(True, "--process/--no-process", help="Transcribe and summarise when stopped."),
) -> None:
    """Record system audio until Ctrl+C, then store the meeting."""

    services = _services()
    try:
        path = services.recorder.start()
    except NotetakerError as exc:
        _fail(exc)

    typer.secho(f"Recording to {path}. Press Ctrl+C to stop.", fg=typer.colors.BLUE)
    try:
        while services.recorder.is_recording:
            time.sleep(POLL_INTERVAL)
        typer.secho("Recorder exited on its own.", fg=typer.colors.YELLOW, err=True)
    except KeyboardInterrupt:
        pass

    try:
        recording = services.recorder.stop(wait=STOP_WAIT)
    except NotetakerError as exc:
        _fail(exc)

    meeting = services.pipeline.record_completed(recording, title=title)
    typer.secho(
        f"Saved meeting {meeting.id} ({format_duration(meeting.duration)}).",
        fg=typer.colors.BLUE,
    )
    if process:
        _run_pipeline(services, meeting)


@app.command()
def add(
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Path to the audio file."),
    title: Optional[str] = typer.Option(None, "--title", help="Optional display title."),
    duration: Optional[int] = typer.Option(None, "--duration", help="Length in seconds (probed when omitted)."),
    process: bool = typer.Option(True, "--process/--no-process", help="Transcribe and summarise immediately."),
) -> None:
    """Store an existing audio file as a meeting."""

    services = _services()
    if duration is None:
        try:
            duration = int(probe_duration(audio))
        except ProcessError as exc:
            logging.warning("Could not probe duration of %s: %s", audio, exc)
            duration = 0

    meeting = services.pipeline.create_meeting(audio.resolve(), duration, title=title or audio.stem)
    typer.secho(f"Saved meeting {meeting.id}.", fg=typer.colors.BLUE)
    if process:
        _run_pipeline(services, meeting)


@app.command("list")
def list_command() -> None:
    """List stored meetings."""

    rows = list(_services().storage.list_meetings())
    if not rows:
        typer.echo("No meetings found. Use `notetaker record` to create one.")
        return
    header = f"{'ID':<32}  {'Title':<30}  {'Date':<16}  {'Status':<12}"
    typer.echo(header)
    typer.echo("-" * len(header))
    for meeting in rows:
        date = f"{meeting.date.astimezone():%Y-%m-%d %H:%M}"
        typer.echo(f"{meeting.id:<32}  {meeting.title[:30]:<30}  {date:<16}  {meeting.status.value:<12}")


@app.command()
def show(meeting_id: str = typer.Argument(..., help="Identifier of the meeting to display.")) -> None:
    """Show a stored meeting."""

    try:
        meeting = _services().pipeline.get(meeting_id)
    except NotetakerError as exc:
        _fail(exc)
    _print_meeting(meeting)


@app.command()
def rename(
    meeting_id: str = typer.Argument(..., help="Identifier of the meeting."),
    title: str = typer.Argument(..., help="New title."),
) -> None:
    """Change the title of a meeting."""

    try:
        meeting = _services().pipeline.rename(meeting_id, title)
    except (NotetakerError, ValueError) as exc:
        _fail(exc)
    typer.secho(f"Renamed to {meeting.title}.", fg=typer.colors.BLUE)


@app.command()
def delete(
    meeting_id: str = typer.Argument(..., help="Identifier of the meeting to delete."),
    keep_audio: bool = typer.Option(False, "--keep-audio", help="Leave the recording on disk."),
) -> None:
    """Delete a stored meeting and its recording."""

    services = _services()
    try:
        meeting = services.pipeline.get(meeting_id)
    except NotetakerError as exc:
        _fail(exc)
    services.storage.delete_meeting(meeting_id)
    if not keep_audio:
        services.recorder.delete_recording(meeting.audio_path)
    typer.secho(f"Meeting {meeting_id} deleted.", fg=typer.colors.BLUE)


@app.command()
def transcribe(
    meeting_id: str = typer.Argument(..., help="Identifier of the meeting."),
    summarise: bool = typer.Option(True, "--summarise/--no-summarise", help="Summarise after transcribing."),
) -> None:
    """Transcribe a recorded meeting (and summarise it)."""

    try:
        meeting = _services().pipeline.transcribe(meeting_id, chain=summarise)
    except NotetakerError as exc:
        _fail(exc)
    _print_meeting(meeting)


@app.command()
def summarise(meeting_id: str = typer.Argument(..., help="Identifier of the meeting.")) -> None:
    """Generate or refresh the summary for a meeting."""

    try:
        meeting = _services().pipeline.summarize(meeting_id)
    except NotetakerError as exc:
        _fail(exc)
    typer.secho(f"Title: {meeting.title}", fg=typer.colors.BLUE)
    typer.secho("Summary updated:\n" + (meeting.summary or ""), fg=typer.colors.GREEN)


@app.command()
def title(meeting_id: str = typer.Argument(..., help="Identifier of the meeting.")) -> None:
    """Suggest a title from the meeting summary and apply it."""

    services = _services()
    try:
        meeting = services.pipeline.get(meeting_id)
        suggestion = services.summarizer.title_from(meeting.summary or "")
        meeting = services.pipeline.rename(meeting_id, suggestion)
    except NotetakerError as exc:
        _fail(exc)
    typer.secho(f"Renamed to {meeting.title}.", fg=typer.colors.BLUE)


@app.command()
def export(
    meeting_id: str = typer.Argument(..., help="Identifier of the meeting."),
    fmt: str = typer.Option("md", "--format", "-f", help="Output format: md or txt."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout."),
) -> None:
    """Export a meeting as Markdown or plain text."""

    if fmt not in FORMATS:
        _fail(ValueError(f"Unsupported export format: {fmt}"))
    try:
        meeting = _services().pipeline.get(meeting_id)
    except NotetakerError as exc:
        _fail(exc)

    content = export_meeting(meeting, fmt)
    if output is None:
        typer.echo(content)
        return
    output.write_text(content, encoding="utf-8")
    typer.secho(f"Exported to {output}.", fg=typer.colors.BLUE)


@app.command()
def config(
    transcription_provider: Optional[str] = typer.Option(None, help="Transcription provider (openai)."),
    transcription_api_key: Optional[str] = typer.Option(None, help="API key for transcription."),
    transcription_model: Optional[str] = typer.Option(None, help="Transcription model id."),
    summary_provider: Optional[str] = typer.Option(None, help="Summary provider (openai)."),
    summary_api_key: Optional[str] = typer.Option(None, help="API key for summaries."),
    summary_model: Optional[str] = typer.Option(None, help="Summary model id."),
    template_file: Optional[Path] = typer.Option(
        None, "--template-file", exists=True, readable=True, help="File holding the summary template."
    ),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect the encrypted configuration."""

    vault = _services().vault
    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "transcription_provider": transcription_provider,
            "transcription_api_key": transcription_api_key,
            "transcription_model": transcription_model,
            "summary_provider": summary_provider,
            "summary_api_key": summary_api_key,
            "summary_model": summary_model,
        }.items()
        if value is not None
    }
    if template_file is not None:
        updates["summary_template"] = template_file.read_text(encoding="utf-8")

    if show or not updates:
        data = asdict(vault.load())
        data["transcription_api_key"] = mask_secret(data["transcription_api_key"])
        data["summary_api_key"] = mask_secret(data["summary_api_key"])
        typer.echo(json.dumps(data, indent=2))
        return

    try:
        vault.update(**updates)
    except (ConfigError, OSError) as exc:
        _fail(exc)
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def setup() -> None:
    """Run the interactive setup wizard."""

    from .onboarding import run_onboarding

    try:
        run_onboarding(_services().vault)
    except OSError as exc:
        typer.secho(f"Setup failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def permissions() -> None:
    """Check whether the recorder may capture system audio."""

    if _services().recorder.check_permissions():
        typer.secho("Screen recording permission granted.", fg=typer.colors.GREEN)
        return
    typer.secho(
        "Screen recording permission missing. Grant it in System Settings > Privacy & Security.",
        fg=typer.colors.RED,
        err=True,
    )
    raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
