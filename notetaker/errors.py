"""Error taxonomy shared by the pipeline stages."""

from __future__ import annotations

from typing import Optional

import httpx
import openai


class NotetakerError(RuntimeError):
    """Base class for all errors raised by notetaker."""


class ConfigurationError(NotetakerError):
    """A credential or provider setting is missing or invalid."""


class NotFoundError(NotetakerError):
    """A referenced audio file or meeting record does not exist."""


class CapturePermissionError(NotetakerError):
    """The host refused permission to capture audio."""


class ProcessError(NotetakerError):
    """An external process failed to spawn, failed, or exited unexpectedly."""


class RecorderTimeoutError(ProcessError):
    """The recorder did not announce a started recording in time."""


class RecordingStateError(NotetakerError):
    """A recorder operation was requested in the wrong state."""


class InvalidTransitionError(NotetakerError):
    """A pipeline stage was triggered from a status that does not allow it."""


class EmptyInputError(NotetakerError):
    """Blank text was handed to a stage that needs content."""


class BackendError(NotetakerError):
    """A transcription or summarization provider call failed."""

    kind = "generic"

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class NetworkError(BackendError):
    kind = "network"


class AuthenticationError(BackendError):
    kind = "authentication"


class QuotaError(BackendError):
    kind = "quota"


class IncompleteResponseError(BackendError):
    """The provider stopped generating before the response was complete."""

    kind = "incomplete"

    def __init__(self, message: str, *, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason


class EmptyResultError(BackendError):
    """The provider answered without any usable content."""

    kind = "empty"


NETWORK_MESSAGE = "Network connection failed. Check your internet connection and try again."
AUTHENTICATION_MESSAGE = "Invalid API key. Please check your API key in settings."
QUOTA_MESSAGE = "API quota exceeded or billing issue. Check your provider account."

_NETWORK_PATTERNS = ("connection", "econnreset", "timed out", "timeout")
_AUTH_PATTERNS = ("api key", "api_key", "unauthorized", "authentication")
_QUOTA_PATTERNS = ("quota", "billing")


def classify_backend_error(exc: BaseException, action: str) -> BackendError:
    """Convert a provider failure into the matching :class:`BackendError`.

    SDK exception types are checked first; anything else is classified by
    message pattern, and falls back to a generic error prefixed by ``action``
    (for example ``"Transcription failed"``).
    """

    if isinstance(exc, BackendError):
        return exc

    message = str(exc)
    lowered = message.lower()

    if isinstance(exc, openai.AuthenticationError):
        return AuthenticationError(AUTHENTICATION_MESSAGE, cause=exc)
    if isinstance(exc, openai.RateLimitError) and any(p in lowered for p in _QUOTA_PATTERNS):
        return QuotaError(QUOTA_MESSAGE, cause=exc)
    if isinstance(exc, (openai.APIConnectionError, httpx.TransportError, ConnectionError)):
        return NetworkError(NETWORK_MESSAGE, cause=exc)

    if any(p in lowered for p in _NETWORK_PATTERNS):
        return NetworkError(NETWORK_MESSAGE, cause=exc)
    if any(p in lowered for p in _AUTH_PATTERNS):
        return AuthenticationError(AUTHENTICATION_MESSAGE, cause=exc)
    if any(p in lowered for p in _QUOTA_PATTERNS):
        return QuotaError(QUOTA_MESSAGE, cause=exc)
    return BackendError(f"{action}: {message}", cause=exc)
