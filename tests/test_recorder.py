import os
import sys
import textwrap
import time
from pathlib import Path

import pytest

from notetaker import recorder
from notetaker.errors import (
    CapturePermissionError,
    ProcessError,
    RecorderTimeoutError,
    RecordingStateError,
)
from notetaker.recorder import (
    CaptureFailed,
    NoDisplayFound,
    PermissionDenied,
    PermissionGranted,
    RecorderState,
    RecorderSupervisor,
    RecordingStarted,
    RecordingStopped,
    parse_event,
)

pytestmark = pytest.mark.skipif(os.name != "posix", reason="recorder protocol relies on SIGINT")

PRELUDE = """
import json, os, signal, sys, time

args = sys.argv[1:]

def emit(payload):
    print(payload if isinstance(payload, str) else json.dumps(payload), flush=True)

def target():
    directory = args[args.index("--record") + 1]
    stem = args[args.index("--filename") + 1]
    return os.path.join(directory, stem + ".m4a")
"""

RECORDS = """
if "--check-permissions" in args:
    emit({"code": "PERMISSION_GRANTED"})
    sys.exit(0)

path = target()

def stop(*_):
    with open(path, "wb") as fh:
        fh.write(b"audio")
    emit({"code": "RECORDING_STOPPED"})
    sys.exit(0)

signal.signal(signal.SIGINT, stop)
emit("this is not json")
emit({"code": "SOMETHING_NEW", "detail": 1})
emit([1, 2, 3])
emit({"code": "RECORDING_STARTED", "path": path})
while True:
    time.sleep(0.05)
"""

SILENT = """
time.sleep(60)
"""

DENIED = """
emit({"code": "PERMISSION_DENIED"})
time.sleep(60)
"""

NO_DISPLAY = """
emit({"code": "NO_DISPLAY_FOUND"})
time.sleep(60)
"""

CAPTURE_FAILED = """
emit({"code": "CAPTURE_FAILED"})
time.sleep(60)
"""

CRASHES = """
emit({"code": "RECORDING_STOPPED"})
sys.exit(3)
"""

DIES_WHILE_RECORDING = """
emit({"code": "RECORDING_STARTED", "path": target()})
time.sleep(0.2)
sys.exit(1)
"""

DIES_AFTER_WRITING = """
path = target()
emit({"code": "RECORDING_STARTED", "path": path})
with open(path, "wb") as fh:
    fh.write(b"partial audio")
time.sleep(0.2)
sys.exit(2)
"""


def _supervisor(tmp_path: Path, body: str) -> RecorderSupervisor:
    script = tmp_path / "fake_recorder.py"
    script.write_text(PRELUDE + textwrap.dedent(body))
    return RecorderSupervisor([sys.executable, str(script)], recordings_dir=tmp_path / "recordings")


def test_parse_event_known_codes():
    assert parse_event('{"code": "RECORDING_STARTED", "path": "/tmp/a.m4a"}') == RecordingStarted(Path("/tmp/a.m4a"))
    assert parse_event('{"code": "RECORDING_STOPPED"}') == RecordingStopped()
    assert parse_event('{"code": "PERMISSION_GRANTED"}') == PermissionGranted()
    assert parse_event('{"code": "PERMISSION_DENIED"}') == PermissionDenied()
    assert parse_event('{"code": "NO_DISPLAY_FOUND"}') == NoDisplayFound()
    assert parse_event('{"code": "CAPTURE_FAILED"}') == CaptureFailed()


@pytest.mark.parametrize(
    "line",
    [
        "",
        "   ",
        "garbage",
        "[1, 2]",
        '{"no_code": true}',
        '{"code": "SOMETHING_NEW"}',
        '{"code": 5}',
        '{"code": "RECORDING_STARTED"}',
        '{"code": "RECORDING_STARTED", "path": 42}',
    ],
)
def test_parse_event_ignores_unknown_and_malformed(line):
    assert parse_event(line) is None


def test_start_and_stop_round_trip(tmp_path):
    supervisor = _supervisor(tmp_path, RECORDS)

    path = supervisor.start(stem="standup")

    assert path == tmp_path / "recordings" / "standup.m4a"
    assert supervisor.state is RecorderState.RECORDING
    assert supervisor.is_recording

    recording = supervisor.stop(wait=5)

    assert recording.path == path
    assert recording.duration >= 0
    assert recording.started_at is not None
    assert path.read_bytes() == b"audio"
    assert supervisor.state is RecorderState.IDLE
    assert not supervisor.is_recording


def test_stop_returns_immediately_without_wait(tmp_path):
    supervisor = _supervisor(tmp_path, RECORDS)
    path = supervisor.start()

    recording = supervisor.stop()

    assert recording.path == path
    assert supervisor.state is RecorderState.IDLE


def test_start_times_out_and_leaves_no_session(tmp_path):
    supervisor = _supervisor(tmp_path, SILENT)

    began = time.monotonic()
    with pytest.raises(RecorderTimeoutError, match="timeout"):
        supervisor.start(timeout=0.5)
    assert time.monotonic() - began < 5

    assert supervisor.state is RecorderState.IDLE
    with pytest.raises(RecordingStateError, match="No active recording"):
        supervisor.stop()


def test_default_start_timeout_is_five_seconds():
    assert recorder.START_TIMEOUT == 5.0


@pytest.mark.parametrize("body", [DENIED, NO_DISPLAY])
def test_permission_problems_are_typed(tmp_path, body):
    supervisor = _supervisor(tmp_path, body)

    with pytest.raises(CapturePermissionError):
        supervisor.start()

    assert supervisor.state is RecorderState.IDLE


def test_capture_failure_is_process_error(tmp_path):
    supervisor = _supervisor(tmp_path, CAPTURE_FAILED)

    with pytest.raises(ProcessError, match="Failed to start audio capture"):
        supervisor.start()


def test_unexpected_exit_is_process_error(tmp_path):
    supervisor = _supervisor(tmp_path, CRASHES)

    with pytest.raises(ProcessError, match="exit code 3"):
        supervisor.start()
    assert supervisor.state is RecorderState.IDLE


def test_spawn_failure_is_process_error(tmp_path):
    supervisor = RecorderSupervisor([str(tmp_path / "no-such-recorder")], recordings_dir=tmp_path)

    with pytest.raises(ProcessError, match="Failed to launch recorder"):
        supervisor.start()
    assert supervisor.state is RecorderState.IDLE


def test_stop_without_session_is_reported(tmp_path):
    supervisor = RecorderSupervisor(["unused"], recordings_dir=tmp_path)

    with pytest.raises(RecordingStateError, match="No active recording"):
        supervisor.stop()


def test_second_start_while_recording_is_rejected(tmp_path):
    supervisor = _supervisor(tmp_path, RECORDS)
    supervisor.start()
    try:
        with pytest.raises(RecordingStateError):
            supervisor.start()
    finally:
        supervisor.stop(wait=5)


def test_retry_after_failure_starts_new_session(tmp_path):
    supervisor = _supervisor(tmp_path, SILENT)
    with pytest.raises(RecorderTimeoutError):
        supervisor.start(timeout=0.3)

    (tmp_path / "fake_recorder.py").write_text(PRELUDE + textwrap.dedent(RECORDS))
    path = supervisor.start(stem="second")

    assert path.name == "second.m4a"
    supervisor.stop(wait=5)


def _wait_for_exit(supervisor):
    deadline = time.monotonic() + 5
    while supervisor.state is not RecorderState.IDLE and time.monotonic() < deadline:
        time.sleep(0.05)


def test_is_recording_false_after_recorder_dies(tmp_path):
    supervisor = _supervisor(tmp_path, DIES_WHILE_RECORDING)
    supervisor.start()
    _wait_for_exit(supervisor)

    assert not supervisor.is_recording
    assert supervisor.state is RecorderState.IDLE
    with pytest.raises(ProcessError, match="exit code 1"):
        supervisor.stop()
    with pytest.raises(RecordingStateError, match="No active recording"):
        supervisor.stop()


def test_start_after_recorder_died_launches_new_session(tmp_path):
    supervisor = _supervisor(tmp_path, DIES_WHILE_RECORDING)
    supervisor.start(stem="first")
    _wait_for_exit(supervisor)

    (tmp_path / "fake_recorder.py").write_text(PRELUDE + textwrap.dedent(RECORDS))
    path = supervisor.start(stem="again")

    assert path.name == "again.m4a"
    assert supervisor.is_recording
    supervisor.stop(wait=5)


def test_stop_after_recorder_died_keeps_written_file(tmp_path):
    supervisor = _supervisor(tmp_path, DIES_AFTER_WRITING)
    path = supervisor.start(stem="partial")
    _wait_for_exit(supervisor)

    recording = supervisor.stop()

    assert recording.path == path
    assert path.read_bytes() == b"partial audio"
    assert supervisor.state is RecorderState.IDLE


def test_check_permissions(tmp_path):
    assert _supervisor(tmp_path, RECORDS).check_permissions()
    assert not RecorderSupervisor([str(tmp_path / "missing")], recordings_dir=tmp_path).check_permissions()


def test_delete_recording(tmp_path):
    audio = tmp_path / "a.m4a"
    audio.write_bytes(b"x")

    RecorderSupervisor.delete_recording(audio)
    RecorderSupervisor.delete_recording(audio)

    assert not audio.exists()
