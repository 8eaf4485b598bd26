"""Dataclasses describing persistent and transient objects for notetaker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

DEFAULT_SUMMARY_TEMPLATE = """# Meeting Summary

## Key Points
- [Main discussion points]

## Decisions Made
- [Decisions and conclusions]

## Action Items
- [Tasks and assignments]

## Next Steps
- [Follow-up actions]"""


class MeetingStatus(str, Enum):
    """Lifecycle of a meeting record, in pipeline order."""

    RECORDED = "recorded"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    SUMMARIZING = "summarizing"
    SUMMARIZED = "summarized"


@dataclass(slots=True)
class Meeting:
    """Represents a stored meeting record."""

    id: str
    title: str
    date: datetime
    duration: int
    audio_path: Path
    transcript: Optional[str]
    summary: Optional[str]
    status: MeetingStatus
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Config:
    """Provider credentials and preferences, persisted only in encrypted form."""

    transcription_provider: str = "openai"
    transcription_api_key: str = ""
    transcription_model: str = "gpt-4o-transcribe"
    summary_provider: str = "openai"
    summary_api_key: str = ""
    summary_model: str = "gpt-5"
    summary_template: str = DEFAULT_SUMMARY_TEMPLATE


@dataclass(slots=True, frozen=True)
class AudioSegment:
    """One time-boxed slice of an oversized recording."""

    index: int
    start: float
    duration: float
    path: Path

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(slots=True, frozen=True)
class CompletedRecording:
    path: Path
    started_at: datetime
    duration: int


@dataclass(slots=True, frozen=True)
class SummaryResult:
    summary: str
    title: Optional[str] = None
