"""Supervision of the external system-audio recorder process.

The recorder binary is started with ``--record <dir> --filename <stem>`` and
reports its progress as newline-delimited JSON objects on stdout, each with a
``code`` field. Sending SIGINT asks it to finalise the file and exit.
"""

from __future__ import annotations

import json
import logging
import os
import queue
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .config import APP_DIR
from .errors import CapturePermissionError, ProcessError, RecorderTimeoutError, RecordingStateError
from .models import CompletedRecording

RECORDINGS_DIR = APP_DIR / "recordings"
DEFAULT_RECORDER = os.getenv("NOTETAKER_RECORDER", "Recorder")
START_TIMEOUT = 5.0
KILL_TIMEOUT = 2.0


class RecorderState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RECORDING = "recording"
    STOPPING = "stopping"


@dataclass(frozen=True)
class RecordingStarted:
    path: Path


@dataclass(frozen=True)
class RecordingStopped:
    pass


@dataclass(frozen=True)
class PermissionGranted:
    pass


@dataclass(frozen=True)
class PermissionDenied:
    pass


@dataclass(frozen=True)
class NoDisplayFound:
    pass


@dataclass(frozen=True)
class CaptureFailed:
    pass


@dataclass(frozen=True)
class ProcessExited:
    returncode: Optional[int]


RecorderEvent = Union[
    RecordingStarted,
    RecordingStopped,
    PermissionGranted,
    PermissionDenied,
    NoDisplayFound,
    CaptureFailed,
    ProcessExited,
]

_SIMPLE_EVENTS = {
    "RECORDING_STOPPED": RecordingStopped,
    "PERMISSION_GRANTED": PermissionGranted,
    "PERMISSION_DENIED": PermissionDenied,
    "NO_DISPLAY_FOUND": NoDisplayFound,
    "CAPTURE_FAILED": CaptureFailed,
}


def parse_event(line: str) -> Optional[RecorderEvent]:
    """Parse one line of recorder output.

    Returns ``None`` for blank, malformed or unknown messages so that newer
    recorder builds can add codes without breaking older supervisors.
    """

    text = line.strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    code = payload.get("code")
    if code == "RECORDING_STARTED":
        path = payload.get("path")
        if not isinstance(path, str) or not path:
            return None
        return RecordingStarted(Path(path))
    factory = _SIMPLE_EVENTS.get(code) if isinstance(code, str) else None
    return factory() if factory is not None else None


@dataclass
class _Session:
    process: subprocess.Popen
    events: "queue.Queue[RecorderEvent]" = field(default_factory=queue.Queue)
    path: Optional[Path] = None
    started_at: Optional[datetime] = None
    started_clock: float = 0.0
    exit_code: Optional[int] = None


class RecorderSupervisor:
    """Start, watch and stop one recorder process at a time."""

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        recordings_dir: Path = RECORDINGS_DIR,
    ) -> None:
        self.command: List[str] = list(command) if command else [DEFAULT_RECORDER]
        self.recordings_dir = Path(recordings_dir)
        self._lock = threading.Lock()
        self._session: Optional[_Session] = None
        self._state = RecorderState.IDLE

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_recording(self) -> bool:
        """True while a started recorder process is still running."""

        session = self._session
        return (
            self._state is RecorderState.RECORDING
            and session is not None
            and session.process.poll() is None
        )

    def start(self, stem: Optional[str] = None, timeout: float = START_TIMEOUT) -> Path:
        """Launch the recorder and return the path it announces.

        Raises :class:`RecorderTimeoutError` if no ``RECORDING_STARTED`` message
        arrives within ``timeout`` seconds; the process is killed in that case.
        """

        with self._lock:
            if self._session is not None:
                if self._session.exit_code is None:
                    raise RecordingStateError("A recording is already in progress")
                logging.warning("Discarding recorder session that exited with code %s", self._session.exit_code)
                self._session = None
            self.recordings_dir.mkdir(parents=True, exist_ok=True)
            stem = stem or f"recording_{int(time.time() * 1000)}"
            argv = [*self.command, "--record", str(self.recordings_dir), "--filename", stem]
            logging.info("Starting recorder: %s", " ".join(argv))
            try:
                process = subprocess.Popen(
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                    text=True,
                    bufsize=1,
                )
            except OSError as exc:
                raise ProcessError(f"Failed to launch recorder {self.command[0]}: {exc}") from exc
            session = _Session(process=process)
            self._session = session
            self._state = RecorderState.STARTING

        listener = threading.Thread(
            target=self._listen,
            args=(session,),
            name="recorder-listener",
            daemon=True,
        )
        listener.start()
        return self._await_start(session, timeout)

    def _await_start(self, session: _Session, timeout: float) -> Path:
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            try:
                if remaining <= 0:
                    raise queue.Empty
                event = session.events.get(timeout=remaining)
            except queue.Empty:
                self._discard(session)
                raise RecorderTimeoutError("Recording start timeout") from None

            if isinstance(event, RecordingStarted):
                with self._lock:
                    session.path = event.path
                    session.started_at = datetime.now(timezone.utc)
                    session.started_clock = time.monotonic()
                    if self._session is session:
                        self._state = RecorderState.RECORDING
                logging.info("Recording to %s", event.path)
                return event.path
            if isinstance(event, PermissionDenied):
                self._discard(session)
                raise CapturePermissionError("Screen recording permission denied")
            if isinstance(event, NoDisplayFound):
                self._discard(session)
                raise CapturePermissionError(
                    "No display found. Please check Screen Recording permissions in System Settings."
                )
            if isinstance(event, CaptureFailed):
                self._discard(session)
                raise ProcessError("Failed to start audio capture")
            if isinstance(event, ProcessExited):
                self._discard(session)
                raise ProcessError(f"Recorder exited unexpectedly (exit code {event.returncode})")
            # RecordingStopped and PermissionGranted carry no meaning while starting.

    def _listen(self, session: _Session) -> None:
        stream = session.process.stdout
        assert stream is not None
        for line in iter(stream.readline, ""):
            event = parse_event(line)
            if event is None:
                if line.strip():
                    logging.debug("Ignoring recorder output: %s", line.strip())
                continue
            logging.debug("Recorder event: %s", event)
            session.events.put(event)
        stream.close()

        returncode = session.process.wait()
        session.events.put(ProcessExited(returncode))
        with self._lock:
            if self._session is session and self._state is RecorderState.RECORDING:
                logging.warning("Recorder exited unexpectedly with code %s", returncode)
                session.exit_code = returncode
                self._state = RecorderState.IDLE

    def _discard(self, session: _Session) -> None:
        with self._lock:
            if self._session is session:
                self._session = None
                self._state = RecorderState.IDLE
        process = session.process
        if process.poll() is None:
            process.kill()
            try:
                process.wait(timeout=KILL_TIMEOUT)
            except subprocess.TimeoutExpired:
                logging.warning("Recorder process %s did not exit after kill", process.pid)

    def stop(self, wait: Optional[float] = None) -> CompletedRecording:
        """Interrupt the recorder and return the finished recording.

        Returns immediately after signalling unless ``wait`` is given, in which
        case up to ``wait`` seconds are spent waiting for the recorder to exit.
        If the recorder already exited on its own, the recording is returned
        when its file exists and :class:`ProcessError` is raised otherwise.
        """

        with self._lock:
            session = self._session
            if session is None:
                raise RecordingStateError("No active recording")
            if session.exit_code is not None:
                self._session = None
                return self._salvage(session)
            self._state = RecorderState.STOPPING
            self._session = None
            try:
                session.process.send_signal(signal.SIGINT)
            except OSError as exc:
                logging.debug("Recorder already gone: %s", exc)
            self._state = RecorderState.IDLE

        if session.path is None or session.started_at is None:
            self._discard(session)
            raise RecordingStateError("Recording stopped before it started")

        duration = int(time.monotonic() - session.started_clock)
        if wait:
            try:
                session.process.wait(timeout=wait)
            except subprocess.TimeoutExpired:
                logging.warning("Recorder did not exit within %.1fs of SIGINT", wait)
        logging.info("Recording stopped: %s (%ds)", session.path, duration)
        return CompletedRecording(path=session.path, started_at=session.started_at, duration=duration)

    def _salvage(self, session: _Session) -> CompletedRecording:
        assert session.path is not None and session.started_at is not None
        if not session.path.exists():
            raise ProcessError(f"Recorder exited unexpectedly (exit code {session.exit_code})")
        duration = int(time.monotonic() - session.started_clock)
        logging.warning("Recorder had already exited; keeping partial recording %s", session.path)
        return CompletedRecording(path=session.path, started_at=session.started_at, duration=duration)

    def check_permissions(self, timeout: float = START_TIMEOUT) -> bool:
        """Return whether the recorder reports capture permission."""

        try:
            result = subprocess.run(
                [*self.command, "--check-permissions"],
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logging.warning("Permission check failed: %s", exc)
            return False
        return any(isinstance(parse_event(line), PermissionGranted) for line in result.stdout.splitlines())

    @staticmethod
    def delete_recording(path: Path) -> None:
        Path(path).unlink(missing_ok=True)
