"""Summaries and titles generated by a language model backend."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from .config import CredentialVault
from .errors import (
    BackendError,
    ConfigurationError,
    EmptyInputError,
    EmptyResultError,
    IncompleteResponseError,
    classify_backend_error,
)
from .models import Config, SummaryResult

REASONING_MODEL_PREFIXES = ("gpt-5", "o1", "o3", "o4")
REQUEST_TIMEOUT = 300.0
MAX_RETRIES = 2

TITLE_PREFIX = "TITLE:"
_TITLE_LINE_RE = re.compile(r"^[#*_>\s]*title\s*:\s*(.*)$", re.IGNORECASE)
_TITLE_STRIP = " \t\"'`*_#“”‘’"


@dataclass(slots=True, frozen=True)
class ModelParams:
    """Request parameters for one model class.

    Exactly one of ``temperature`` and ``reasoning_effort`` is set.
    """

    max_output_tokens: int
    temperature: Optional[float] = None
    reasoning_effort: Optional[str] = None


@dataclass(slots=True, frozen=True)
class Generation:
    text: str
    complete: bool = True
    incomplete_reason: Optional[str] = None


REASONING_PARAMS = ModelParams(max_output_tokens=8000, reasoning_effort="low")
STANDARD_PARAMS = ModelParams(max_output_tokens=2000, temperature=0.3)
TITLE_REASONING_PARAMS = ModelParams(max_output_tokens=2000, reasoning_effort="low")
TITLE_STANDARD_PARAMS = ModelParams(max_output_tokens=60, temperature=0.3)


def is_reasoning_model(model: str) -> bool:
    return model.strip().lower().startswith(REASONING_MODEL_PREFIXES)


def params_for(model: str) -> ModelParams:
    return REASONING_PARAMS if is_reasoning_model(model) else STANDARD_PARAMS


class SummaryBackend(Protocol):
    """Common interface for text generation backends."""

    def generate(self, instructions: str, content: str, model: str, params: ModelParams) -> Generation:
        """Return generated text plus its completion status."""


class OpenAISummaryBackend:
    """Text generation through the OpenAI Responses API."""

    def __init__(self, api_key: str, client: Optional[Any] = None) -> None:
        if client is None:
            from openai import OpenAI

            client = OpenAI(api_key=api_key, timeout=REQUEST_TIMEOUT, max_retries=MAX_RETRIES)
        self._client = client

    def generate(self, instructions: str, content: str, model: str, params: ModelParams) -> Generation:
        request: Dict[str, Any] = {
            "model": model,
            "instructions": instructions,
            "input": content,
            "max_output_tokens": params.max_output_tokens,
        }
        if params.reasoning_effort is not None:
            request["reasoning"] = {"effort": params.reasoning_effort}
        else:
            request["temperature"] = params.temperature

        response = self._client.responses.create(**request)
        details = getattr(response, "incomplete_details", None)
        return Generation(
            text=response.output_text or "",
            complete=getattr(response, "status", "completed") != "incomplete",
            incomplete_reason=getattr(details, "reason", None),
        )


BackendFactory = Callable[[Config], SummaryBackend]

_BACKENDS: Dict[str, BackendFactory] = {
    "openai": lambda cfg: OpenAISummaryBackend(cfg.summary_api_key),
}


def get_backend(config: Config) -> SummaryBackend:
    """Return the backend registered for ``config.summary_provider``."""

    if not config.summary_api_key:
        raise ConfigurationError("Summary API key not configured")
    try:
        factory = _BACKENDS[config.summary_provider]
    except KeyError:
        raise ConfigurationError(f"Unknown summary provider: {config.summary_provider}") from None
    return factory(config)


def build_instructions(template: str) -> str:
    return (
        "You are a professional meeting summarizer. Generate a concise, well-structured "
        "summary of the meeting transcript.\n\n"
        f"The very first line of your response must be exactly `{TITLE_PREFIX} <short descriptive "
        "meeting title>` and nothing else.\n"
        "After that line, fill in the following template. Keep every heading of the template "
        "exactly as written:\n\n"
        f"{template}\n\n"
        "Extract the key points, decisions, and action items accurately."
    )


TITLE_INSTRUCTIONS = (
    "Generate a short, descriptive title (at most 8 words) for the meeting described by "
    "the summary. Respond with the title only, without quotes or punctuation around it."
)


def clean_title(raw: str) -> Optional[str]:
    title = raw.strip().strip(_TITLE_STRIP).strip()
    return title or None


def extract_title(text: str) -> Tuple[Optional[str], str]:
    """Split a ``TITLE:`` first line off ``text``.

    Returns ``(title, body)``. Without a title line the whole text is the body.
    """

    lines = text.strip().splitlines()
    if not lines:
        return None, ""

    match = _TITLE_LINE_RE.match(lines[0])
    if match is None:
        return None, text.strip()

    title = clean_title(match.group(1))
    body = "\n".join(lines[1:]).strip()
    return title, body


class Summarizer:
    """Produce a templated summary and an optional title for a transcript."""

    def __init__(self, vault: CredentialVault, backend_factory: BackendFactory = get_backend) -> None:
        self._vault = vault
        self._backend_factory = backend_factory

    def summarize(self, transcript: str) -> SummaryResult:
        config = self._vault.load()
        backend = self._backend_factory(config)
        if not transcript or not transcript.strip():
            raise EmptyInputError("Transcript is empty")

        text = self._generate(
            backend,
            build_instructions(config.summary_template),
            f"Please summarize the following meeting transcript:\n\n{transcript}",
            config.summary_model,
            params_for(config.summary_model),
            "Summary generation failed",
        )
        title, body = extract_title(text)
        if not body:
            raise EmptyResultError("The model returned a title but no summary.")
        logging.info("Summary generated (%d characters, title=%r)", len(body), title)
        return SummaryResult(summary=body, title=title)

    def title_from(self, summary: str) -> str:
        config = self._vault.load()
        backend = self._backend_factory(config)
        if not summary or not summary.strip():
            raise EmptyInputError("Summary is empty")

        params = TITLE_REASONING_PARAMS if is_reasoning_model(config.summary_model) else TITLE_STANDARD_PARAMS
        text = self._generate(
            backend,
            TITLE_INSTRUCTIONS,
            summary,
            config.summary_model,
            params,
            "Title generation failed",
        )
        # Models sometimes echo the TITLE: convention anyway.
        title, body = extract_title(text)
        if title is None and body:
            title = clean_title(body.splitlines()[0])
        if not title:
            raise EmptyResultError("The model returned an empty title.")
        return title

    def _generate(
        self,
        backend: SummaryBackend,
        instructions: str,
        content: str,
        model: str,
        params: ModelParams,
        action: str,
    ) -> str:
        try:
            generation = backend.generate(instructions, content, model, params)
        except BackendError:
            raise
        except Exception as exc:
            logging.error("%s: %s", action, exc)
            raise classify_backend_error(exc, action) from exc

        if not generation.complete:
            reason = generation.incomplete_reason or "unknown"
            raise IncompleteResponseError(
                f"{action}: the response was cut off ({reason}). Try again with a shorter transcript.",
                reason=reason,
            )
        if not generation.text or not generation.text.strip():
            raise EmptyResultError(f"{action}: the model returned an empty response.")
        return generation.text
