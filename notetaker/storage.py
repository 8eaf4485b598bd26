"""SQLite backed persistence for meeting records."""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from .config import APP_DIR
from .models import Meeting, MeetingStatus

DB_PATH = APP_DIR / "meetings.db"
SCHEMA_VERSION = 1

# Columns a caller may change through update_meeting.
UPDATABLE_FIELDS = frozenset({"title", "duration", "audio_path", "transcript", "summary", "status"})


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the storage."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_column(value: Any) -> Any:
    if isinstance(value, MeetingStatus):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class Storage:
    """Manage persistence of meetings using SQLite.

    Every public method is a single statement inside its own connection, so
    each read or write is atomic for one record.
    """

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path
        self._ensure_initialised()

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS meetings (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    date TEXT NOT NULL,
                    duration INTEGER NOT NULL,
                    audio_path TEXT NOT NULL,
                    transcript TEXT,
                    summary TEXT,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_meetings_date ON meetings(date DESC)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cur = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",))
            row = cur.fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO metadata(key, value) VALUES(?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )

    def add_meeting(
        self,
        title: str,
        audio_path: Path,
        duration: int,
        date: Optional[datetime] = None,
        status: MeetingStatus = MeetingStatus.RECORDED,
        transcript: Optional[str] = None,
        summary: Optional[str] = None,
    ) -> Meeting:
        meeting_id = uuid.uuid4().hex
        now = _now().isoformat()
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO meetings(id, title, date, duration, audio_path, transcript, summary, status,
                                     created_at, updated_at)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    meeting_id,
                    title,
                    (date or _now()).isoformat(),
                    int(duration),
                    str(audio_path),
                    transcript,
                    summary,
                    status.value,
                    now,
                    now,
                ),
            )
        return self._require(meeting_id)

    def list_meetings(self) -> Iterator[Meeting]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute("SELECT * FROM meetings ORDER BY date DESC, created_at DESC").fetchall()
        for row in rows:
            yield _row_to_meeting(row)

    def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute("SELECT * FROM meetings WHERE id = ?", (meeting_id,)).fetchone()
        return _row_to_meeting(row) if row is not None else None

    def update_meeting(self, meeting_id: str, **updates: Any) -> Meeting:
        """Apply ``updates`` to one meeting in a single statement."""

        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise StorageError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        columns = [f"{name} = ?" for name in updates] + ["updated_at = ?"]
        values = [_to_column(value) for value in updates.values()]
        values.extend([_now().isoformat(), meeting_id])

        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute(f"UPDATE meetings SET {', '.join(columns)} WHERE id = ?", values)
            if cur.rowcount == 0:
                raise StorageError(f"Meeting with id {meeting_id} not found")
        return self._require(meeting_id)

    def delete_meeting(self, meeting_id: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM meetings WHERE id = ?", (meeting_id,))
            if cur.rowcount == 0:
                raise StorageError(f"Meeting with id {meeting_id} not found")

    def _require(self, meeting_id: str) -> Meeting:
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            raise StorageError(f"Meeting with id {meeting_id} not found")
        return meeting


def _row_to_meeting(row: sqlite3.Row) -> Meeting:
    return Meeting(
        id=row["id"],
        title=row["title"],
        date=datetime.fromisoformat(row["date"]),
        duration=row["duration"],
        audio_path=Path(row["audio_path"]),
        transcript=row["transcript"],
        summary=row["summary"],
        status=MeetingStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )
