from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .config import CredentialVault, mask_secret
from .models import Config


def _ask_key(console: Console, label: str, current: str) -> str:
    if current:
        console.print(f"Current key: [dim]{mask_secret(current)}[/dim] (leave blank to keep it)")
    value = Prompt.ask(f"{label} API key", password=True, default="", show_default=False)
    return value.strip() or current


def run_onboarding(vault: CredentialVault, console: Optional[Console] = None) -> Config:
    console = console or Console()

    welcome_text = Text()
    welcome_text.append("Welcome to notetaker!\n\n", style="bold cyan")
    welcome_text.append("Record meetings, then get transcripts and summaries\n", style="dim")
    console.print(Panel(welcome_text, border_style="cyan", expand=False))
    console.print()

    config = vault.load()

    console.print("[bold]Transcription[/bold]")
    console.print("(Get an OpenAI key at https://platform.openai.com/api-keys)")
    config.transcription_api_key = _ask_key(console, "Transcription", config.transcription_api_key)
    config.transcription_model = Prompt.ask("Transcription model", default=config.transcription_model)
    console.print()

    console.print("[bold]Summaries[/bold]")
    if config.transcription_api_key and Confirm.ask("Use the same key for summaries?", default=True):
        config.summary_api_key = config.transcription_api_key
    else:
        config.summary_api_key = _ask_key(console, "Summary", config.summary_api_key)
    config.summary_model = Prompt.ask("Summary model", default=config.summary_model)
    console.print()

    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column(style="cyan")
    summary.add_column()
    summary.add_row("Transcription key:", mask_secret(config.transcription_api_key) or "(not set)")
    summary.add_row("Transcription model:", config.transcription_model)
    summary.add_row("Summary key:", mask_secret(config.summary_api_key) or "(not set)")
    summary.add_row("Summary model:", config.summary_model)
    console.print(Panel(summary, title="Your Configuration", border_style="green"))
    console.print()

    if Confirm.ask("Save this configuration?", default=True):
        vault.save(config)
        console.print("[green]Configuration saved to[/green]", vault.config_path)
        console.print()
        console.print("[bold]To record a meeting, run:[/bold]")
        console.print("  [cyan]notetaker record[/cyan]")
        console.print()
        return config

    console.print("[yellow]Configuration not saved. Run 'notetaker setup' to try again.[/yellow]")
    return config
