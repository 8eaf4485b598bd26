import math
import subprocess
from pathlib import Path

import pytest

from notetaker import chunker
from notetaker.errors import NotFoundError, ProcessError


@pytest.mark.parametrize(
    "total,budget",
    [(180.0, 120), (240.0, 120), (59.5, 120), (3601.2, 120), (1.0, 0.25), (120.0, 120)],
)
def test_plan_segments_partitions_duration(total, budget):
    segments = chunker.plan_segments(total, budget)

    assert len(segments) == math.ceil(total / budget)
    assert [s.index for s in segments] == list(range(len(segments)))
    for previous, current in zip(segments, segments[1:]):
        assert previous.duration == budget
        assert current.start == pytest.approx(previous.end)
    remainder = total % budget
    assert segments[-1].duration == pytest.approx(remainder or budget)
    assert segments[-1].end == pytest.approx(total)


def test_plan_segments_short_source_is_single_segment(tmp_path):
    segments = chunker.plan_segments(42.0, 120, output_dir=tmp_path, stem="meeting1")

    assert len(segments) == 1
    assert segments[0].start == 0
    assert segments[0].duration == 42.0
    assert segments[0].path == tmp_path / "meeting1_chunk_0.flac"


def test_plan_segments_rejects_bad_budget():
    with pytest.raises(ValueError):
        chunker.plan_segments(10.0, 0)


class FakeTools:
    """Stand-in for ffprobe/ffmpeg that records invocations."""

    def __init__(self, duration="180.0", fail_on_index=None):
        self.duration = duration
        self.fail_on_index = fail_on_index
        self.calls = []

    def __call__(self, command, timeout):
        self.calls.append(list(command))
        if command[0] == chunker.FFPROBE:
            return subprocess.CompletedProcess(command, 0, stdout=self.duration + "\n", stderr="")
        output = Path(command[-2])
        index = int(output.stem.rsplit("_", 1)[1])
        output.write_bytes(b"partial")
        if index == self.fail_on_index:
            raise ProcessError("`ffmpeg` failed: boom")
        output.write_bytes(b"flac" * 10)
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")


def test_split_encodes_segments_in_order(tmp_path, monkeypatch):
    source = tmp_path / "recording.m4a"
    source.write_bytes(b"audio")
    tools = FakeTools(duration="180.0")
    monkeypatch.setattr(chunker, "_run", tools)

    paths = chunker.split(source, 120, stem="abc123")

    assert paths == [tmp_path / "abc123_chunk_0.flac", tmp_path / "abc123_chunk_1.flac"]
    assert all(p.exists() for p in paths)
    encodes = [c for c in tools.calls if c[0] == chunker.FFMPEG]
    assert [c[c.index("-ss") + 1] for c in encodes] == ["0.000", "120.000"]
    assert [c[c.index("-t") + 1] for c in encodes] == ["120.000", "60.000"]
    assert all(c[c.index("-ar") + 1] == "16000" for c in encodes)
    assert all(c[c.index("-acodec") + 1] == "flac" for c in encodes)


def test_tiny_trailing_remainder_uses_plain_decimals(tmp_path, monkeypatch):
    source = tmp_path / "recording.m4a"
    source.write_bytes(b"audio")
    tools = FakeTools(duration="240.00002")
    monkeypatch.setattr(chunker, "_run", tools)

    paths = chunker.split(source, 120, stem="edge")

    assert len(paths) == 3
    encodes = [c for c in tools.calls if c[0] == chunker.FFMPEG]
    times = [c[c.index(flag) + 1] for c in encodes for flag in ("-ss", "-t")]
    assert times[-2:] == ["240.000", "0.000"]
    assert not any("e" in value.lower() for value in times)


def test_split_short_source_still_reencodes(tmp_path, monkeypatch):
    source = tmp_path / "short.wav"
    source.write_bytes(b"audio")
    tools = FakeTools(duration="30.5")
    monkeypatch.setattr(chunker, "_run", tools)

    paths = chunker.split(source, 120)

    assert paths == [tmp_path / "short_chunk_0.flac"]
    assert len([c for c in tools.calls if c[0] == chunker.FFMPEG]) == 1


def test_split_failure_removes_partial_segments(tmp_path, monkeypatch):
    source = tmp_path / "long.wav"
    source.write_bytes(b"audio")
    monkeypatch.setattr(chunker, "_run", FakeTools(duration="400", fail_on_index=2))

    with pytest.raises(ProcessError):
        chunker.split(source, 120, stem="job")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["long.wav"]


def test_split_missing_source(tmp_path):
    with pytest.raises(NotFoundError):
        chunker.split(tmp_path / "nope.wav", 120)


def test_probe_duration_rejects_garbage(tmp_path, monkeypatch):
    monkeypatch.setattr(chunker, "_run", FakeTools(duration="N/A"))

    with pytest.raises(ProcessError):
        chunker.probe_duration(tmp_path / "x.wav")


def test_missing_binary_is_process_error(monkeypatch):
    monkeypatch.setattr(chunker, "FFPROBE", "definitely-not-a-real-ffprobe-binary")

    with pytest.raises(ProcessError, match="not installed"):
        chunker.probe_duration(Path("x.wav"))


def test_remove_files_logs_and_continues(tmp_path, caplog):
    keep_going = tmp_path / "a.flac"
    keep_going.write_bytes(b"x")
    directory = tmp_path / "dir.flac"
    directory.mkdir()

    chunker.remove_files([directory, keep_going])

    assert not keep_going.exists()
    assert "Failed to delete chunk" in caplog.text
