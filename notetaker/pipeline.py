"""Meeting lifecycle: recorded -> transcribing -> transcribed -> summarizing -> summarized."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Protocol, Set, Tuple

from .errors import InvalidTransitionError, NotFoundError
from .models import CompletedRecording, Meeting, MeetingStatus, SummaryResult
from .storage import Storage, StorageError

TRANSCRIBE_FROM = frozenset({MeetingStatus.RECORDED, MeetingStatus.TRANSCRIBING})
SUMMARIZE_FROM = frozenset(
    {MeetingStatus.TRANSCRIBED, MeetingStatus.SUMMARIZING, MeetingStatus.SUMMARIZED}
)


class TranscriptionStage(Protocol):
    def transcribe(self, audio_path: Path, job_key: Optional[str] = None) -> str:
        ...


class SummaryStage(Protocol):
    def summarize(self, transcript: str) -> SummaryResult:
        ...


def default_title(date: datetime) -> str:
    return f"Meeting {date.astimezone():%Y-%m-%d %H:%M}"


class MeetingPipeline:
    """Drive a meeting record through transcription and summarization.

    The in-progress status is written before each external call. When a stage
    fails the previous status is restored and the error re-raised; nothing is
    retried automatically.
    """

    def __init__(
        self,
        storage: Storage,
        transcriber: TranscriptionStage,
        summarizer: SummaryStage,
    ) -> None:
        self.storage = storage
        self.transcriber = transcriber
        self.summarizer = summarizer
        self._lock = threading.Lock()
        self._active: Set[Tuple[str, str]] = set()

    def get(self, meeting_id: str) -> Meeting:
        meeting = self.storage.get_meeting(meeting_id)
        if meeting is None:
            raise NotFoundError(f"Meeting {meeting_id} not found")
        return meeting

    def create_meeting(
        self,
        audio_path: Path,
        duration: int,
        title: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> Meeting:
        date = date or datetime.now(timezone.utc)
        meeting = self.storage.add_meeting(
            title=title or default_title(date),
            audio_path=Path(audio_path),
            duration=duration,
            date=date,
        )
        logging.info("Created meeting %s for %s", meeting.id, meeting.audio_path)
        return meeting

    def record_completed(self, recording: CompletedRecording, title: Optional[str] = None) -> Meeting:
        return self.create_meeting(
            recording.path,
            recording.duration,
            title=title,
            date=recording.started_at,
        )

    def rename(self, meeting_id: str, title: str) -> Meeting:
        title = title.strip()
        if not title:
            raise ValueError("Title cannot be empty.")
        self.get(meeting_id)
        return self.storage.update_meeting(meeting_id, title=title)

    def is_running(self, meeting_id: str, stage: str) -> bool:
        with self._lock:
            return (meeting_id, stage) in self._active

    @contextmanager
    def _claim(self, meeting_id: str, stage: str) -> Iterator[bool]:
        key = (meeting_id, stage)
        with self._lock:
            if key in self._active:
                claimed = False
            else:
                self._active.add(key)
                claimed = True
        try:
            yield claimed
        finally:
            if claimed:
                with self._lock:
                    self._active.discard(key)

    def _restore_status(self, meeting_id: str, status: MeetingStatus) -> None:
        try:
            self.storage.update_meeting(meeting_id, status=status)
        except (StorageError, sqlite3.Error) as exc:
            logging.warning("Could not restore status of %s to %s: %s", meeting_id, status.value, exc)

    def process(self, meeting_id: str) -> Meeting:
        """Run every remaining stage for ``meeting_id``."""

        meeting = self.get(meeting_id)
        if meeting.status in TRANSCRIBE_FROM:
            return self.transcribe(meeting_id, chain=True)
        return self.summarize(meeting_id)

    def transcribe(self, meeting_id: str, chain: bool = True) -> Meeting:
        with self._claim(meeting_id, "transcribe") as claimed:
            if not claimed:
                logging.info("Transcription already running for %s", meeting_id)
                return self.get(meeting_id)

            meeting = self.get(meeting_id)
            if meeting.status not in TRANSCRIBE_FROM:
                raise InvalidTransitionError(
                    f"Cannot transcribe meeting {meeting_id} in status '{meeting.status.value}'"
                )

            self.storage.update_meeting(meeting_id, status=MeetingStatus.TRANSCRIBING)
            try:
                transcript = self.transcriber.transcribe(meeting.audio_path, job_key=meeting_id)
            except Exception:
                logging.exception("Transcription failed for %s", meeting_id)
                self._restore_status(meeting_id, MeetingStatus.RECORDED)
                raise

            meeting = self.storage.update_meeting(
                meeting_id,
                transcript=transcript,
                status=MeetingStatus.TRANSCRIBED,
            )
            logging.info("Meeting %s transcribed (%d characters)", meeting_id, len(transcript))

        if chain:
            return self.summarize(meeting_id)
        return meeting

    def summarize(self, meeting_id: str) -> Meeting:
        with self._claim(meeting_id, "summarize") as claimed:
            if not claimed:
                logging.info("Summarization already running for %s", meeting_id)
                return self.get(meeting_id)

            meeting = self.get(meeting_id)
            if meeting.status not in SUMMARIZE_FROM:
                raise InvalidTransitionError(
                    f"Cannot summarize meeting {meeting_id} in status '{meeting.status.value}'"
                )

            previous = MeetingStatus.SUMMARIZED if meeting.summary else MeetingStatus.TRANSCRIBED
            self.storage.update_meeting(meeting_id, status=MeetingStatus.SUMMARIZING)
            try:
                result = self.summarizer.summarize(meeting.transcript or "")
            except Exception:
                logging.exception("Summarization failed for %s", meeting_id)
                self._restore_status(meeting_id, previous)
                raise

            updates = {"summary": result.summary, "status": MeetingStatus.SUMMARIZED}
            if result.title:
                updates["title"] = result.title
            meeting = self.storage.update_meeting(meeting_id, **updates)
            logging.info("Meeting %s summarized", meeting_id)
            return meeting
