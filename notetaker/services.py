"""Wiring of the vault, store, orchestrators and recorder for one app directory."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .config import APP_DIR, CredentialVault
from .pipeline import MeetingPipeline
from .recorder import RecorderSupervisor
from .storage import Storage
from .summarizer import Summarizer
from .transcriber import Transcriber


@dataclass
class Services:
    vault: CredentialVault
    storage: Storage
    transcriber: Transcriber
    summarizer: Summarizer
    pipeline: MeetingPipeline
    recorder: RecorderSupervisor


def build_services(app_dir: Path = APP_DIR, recorder_command: Optional[Sequence[str]] = None) -> Services:
    app_dir = Path(app_dir)
    vault = CredentialVault(app_dir)
    storage = Storage(app_dir / "meetings.db")
    transcriber = Transcriber(vault)
    summarizer = Summarizer(vault)
    return Services(
        vault=vault,
        storage=storage,
        transcriber=transcriber,
        summarizer=summarizer,
        pipeline=MeetingPipeline(storage, transcriber, summarizer),
        recorder=RecorderSupervisor(recorder_command, recordings_dir=app_dir / "recordings"),
    )
