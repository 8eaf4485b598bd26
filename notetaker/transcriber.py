"""Audio transcription backends and the chunking orchestrator."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from . import chunker
from .config import CredentialVault
from .errors import (
    BackendError,
    ConfigurationError,
    EmptyResultError,
    NotFoundError,
    ProcessError,
    classify_backend_error,
)
from .models import Config

MAX_UPLOAD_BYTES = 25 * 1024 * 1024
SEGMENT_SECONDS = 120
DEFAULT_LANGUAGE = "en"
REQUEST_TIMEOUT = 300.0
MAX_RETRIES = 2


class TranscriptionBackend(Protocol):
    """Common interface for transcription backends."""

    def transcribe(self, audio_path: Path) -> str:
        """Return the transcript text of a single uploadable file."""


class OpenAITranscriptionBackend:
    """Cloud transcription using the OpenAI audio API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        language: str = DEFAULT_LANGUAGE,
        client: Optional[Any] = None,
    ) -> None:
        if client is None:
            from openai import OpenAI

            # The SDK retries connection resets and 5xx responses on its own.
            client = OpenAI(api_key=api_key, timeout=REQUEST_TIMEOUT, max_retries=MAX_RETRIES)
        self._client = client
        self.model = model
        self.language = language

    def transcribe(self, audio_path: Path) -> str:
        with audio_path.open("rb") as fh:
            response = self._client.audio.transcriptions.create(
                model=self.model,
                file=fh,
                language=self.language,
                response_format="text",
            )
        # response_format="text" yields a plain string; older SDKs wrap it.
        text = response if isinstance(response, str) else getattr(response, "text", "")
        return (text or "").strip()


BackendFactory = Callable[[Config], TranscriptionBackend]

_BACKENDS: Dict[str, BackendFactory] = {
    "openai": lambda cfg: OpenAITranscriptionBackend(cfg.transcription_api_key, cfg.transcription_model),
}


def get_backend(config: Config) -> TranscriptionBackend:
    """Return the backend registered for ``config.transcription_provider``."""

    if not config.transcription_api_key:
        raise ConfigurationError("Transcription API key not configured")
    try:
        factory = _BACKENDS[config.transcription_provider]
    except KeyError:
        raise ConfigurationError(
            f"Unknown transcription provider: {config.transcription_provider}"
        ) from None
    return factory(config)


class Transcriber:
    """Transcribe a recording, chunking it first when it is too large to upload.

    Segments are submitted one after the other in index order and their texts
    joined with single spaces, so the transcript follows the recording's
    timeline. Temporary segment files are always removed before returning.
    """

    def __init__(
        self,
        vault: CredentialVault,
        backend_factory: BackendFactory = get_backend,
        splitter: Callable[..., List[Path]] = chunker.split,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        segment_seconds: int = SEGMENT_SECONDS,
    ) -> None:
        self._vault = vault
        self._backend_factory = backend_factory
        self._splitter = splitter
        self.max_upload_bytes = max_upload_bytes
        self.segment_seconds = segment_seconds

    def transcribe(self, audio_path: Path, job_key: Optional[str] = None) -> str:
        """Return the transcript for ``audio_path``.

        ``job_key`` names the temporary segments; callers pass the meeting id so
        concurrent jobs on the same source never share segment files.
        """

        audio_path = Path(audio_path)
        backend = self._backend_factory(self._vault.load())

        if not audio_path.exists():
            raise NotFoundError(f"Audio file not found: {audio_path}")

        size = audio_path.stat().st_size
        logging.info("Transcribing file: %s (%.2f MB)", audio_path, size / (1024 * 1024))

        chunked = size > self.max_upload_bytes
        if chunked:
            logging.info("File exceeds %d bytes, splitting into chunks...", self.max_upload_bytes)
            segments = self._splitter(audio_path, self.segment_seconds, stem=job_key or audio_path.stem)
        else:
            segments = [audio_path]

        try:
            texts = []
            for index, segment in enumerate(segments):
                logging.info("Transcribing chunk %d/%d: %s", index + 1, len(segments), segment)
                texts.append(self._transcribe_segment(backend, segment))
        finally:
            if chunked:
                logging.info("Cleaning up temporary chunk files...")
                chunker.remove_files(segments)

        transcript = " ".join(texts)
        if not transcript.strip():
            raise EmptyResultError("Transcription returned no text.")
        logging.info("Transcription complete: %d characters", len(transcript))
        return transcript

    def _transcribe_segment(self, backend: TranscriptionBackend, segment: Path) -> str:
        try:
            return backend.transcribe(segment)
        except (BackendError, ProcessError):
            raise
        except Exception as exc:
            logging.error("Transcription error on %s: %s", segment, exc)
            raise classify_backend_error(exc, "Transcription failed") from exc
