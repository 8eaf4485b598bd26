"""Split oversized recordings into re-encoded, time-boxed segments.

Segments are cut on time boundaries and re-encoded to 16 kHz FLAC with
``ffmpeg`` rather than split by byte offset, so every segment starts on a
valid frame and stays well below the transcription upload limit.
"""

from __future__ import annotations

import logging
import math
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import NotFoundError, ProcessError
from .models import AudioSegment

FFPROBE = "ffprobe"
FFMPEG = "ffmpeg"
SEGMENT_FORMAT = "flac"
SEGMENT_SAMPLE_RATE = 16000
PROBE_TIMEOUT = 30.0
ENCODE_TIMEOUT = 300.0


def plan_segments(
    total_duration: float,
    max_segment_seconds: float,
    output_dir: Path = Path("."),
    stem: str = "audio",
) -> List[AudioSegment]:
    """Partition ``total_duration`` seconds into contiguous segments.

    All segments but the last last exactly ``max_segment_seconds``. A source
    shorter than one segment still yields a single segment.
    """

    if max_segment_seconds <= 0:
        raise ValueError("max_segment_seconds must be positive")
    if total_duration < 0:
        raise ValueError("total_duration cannot be negative")

    count = max(1, math.ceil(total_duration / max_segment_seconds))
    segments = []
    for index in range(count):
        start = index * max_segment_seconds
        duration = min(max_segment_seconds, total_duration - start)
        if duration <= 0:  # zero-length probe result
            duration = max_segment_seconds
        segments.append(
            AudioSegment(
                index=index,
                start=start,
                duration=duration,
                path=output_dir / f"{stem}_chunk_{index}.{SEGMENT_FORMAT}",
            )
        )
    return segments


def _run(command: Sequence[str], timeout: float) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            list(command),
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise ProcessError(f"`{command[0]}` is not installed or not on PATH.") from exc
    except subprocess.TimeoutExpired as exc:
        raise ProcessError(f"`{command[0]}` timed out after {timeout:.0f}s.") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip().splitlines()
        message = detail[-1] if detail else f"exit code {exc.returncode}"
        raise ProcessError(f"`{command[0]}` failed: {message}") from exc


def probe_duration(path: Path) -> float:
    """Return the duration of ``path`` in seconds as reported by ffprobe."""

    result = _run(
        [
            FFPROBE,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(path),
        ],
        PROBE_TIMEOUT,
    )
    output = result.stdout.strip()
    try:
        duration = float(output)
    except ValueError as exc:
        raise ProcessError(f"Could not read duration of {path}: {output!r}") from exc
    if math.isnan(duration) or duration < 0:
        raise ProcessError(f"Could not read duration of {path}: {output!r}")
    return duration


def _timestamp(seconds: float) -> str:
    # ffmpeg rejects exponent notation in time specifications.
    return f"{seconds:.3f}"


def encode_segment(source: Path, segment: AudioSegment) -> Path:
    _run(
        [
            FFMPEG,
            "-i",
            str(source),
            "-ss",
            _timestamp(segment.start),
            "-t",
            _timestamp(segment.duration),
            "-acodec",
            SEGMENT_FORMAT,
            "-ar",
            str(SEGMENT_SAMPLE_RATE),
            str(segment.path),
            "-y",
        ],
        ENCODE_TIMEOUT,
    )
    return segment.path


def remove_files(paths: Sequence[Path]) -> None:
    """Delete ``paths``, logging rather than raising on failure."""

    for path in paths:
        try:
            path.unlink(missing_ok=True)
            logging.debug("Deleted: %s", path)
        except OSError as exc:
            logging.warning("Failed to delete chunk %s: %s", path, exc)


def split(
    path: Path,
    max_segment_seconds: float,
    stem: Optional[str] = None,
    output_dir: Optional[Path] = None,
) -> List[Path]:
    """Re-encode ``path`` into ordered segments and return their paths.

    Each ffmpeg invocation runs to completion before the next one starts. If
    any encode fails the segments written so far are removed before the
    :class:`ProcessError` propagates.
    """

    path = Path(path)
    if not path.exists():
        raise NotFoundError(f"Audio file not found: {path}")

    total = probe_duration(path)
    segments = plan_segments(
        total,
        max_segment_seconds,
        output_dir=output_dir or path.parent,
        stem=stem or path.stem,
    )
    logging.info(
        "Splitting %.0fs audio into %d chunks of max %ss each",
        total,
        len(segments),
        max_segment_seconds,
    )

    produced: List[Path] = []
    try:
        for segment in segments:
            encode_segment(path, segment)
            produced.append(segment.path)
            logging.info("Created chunk %d/%d: %s", segment.index + 1, len(segments), segment.path)
    except BaseException:
        remove_files(produced + [segments[len(produced)].path])
        raise
    return produced
