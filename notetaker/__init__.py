"""Top-level package for notetaker."""

__version__ = "0.1.0"

from . import config, pipeline, storage, summarizer, transcriber  # noqa: E402

__all__ = ["config", "pipeline", "storage", "summarizer", "transcriber", "__version__"]
