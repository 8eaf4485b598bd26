"""Render meetings as Markdown or plain text documents."""

from __future__ import annotations

from .models import Meeting

FORMATS = ("md", "txt")


def format_duration(seconds: int) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _format_date(meeting: Meeting) -> str:
    return f"{meeting.date.astimezone():%Y-%m-%d %H:%M}"


def export_markdown(meeting: Meeting) -> str:
    parts = [
        f"# {meeting.title}\n\n",
        f"**Date:** {_format_date(meeting)}\n",
        f"**Duration:** {format_duration(meeting.duration)}\n\n",
    ]
    if meeting.summary:
        parts.append(f"## Summary\n\n{meeting.summary}\n\n")
    if meeting.transcript:
        parts.append(f"## Full Transcript\n\n{meeting.transcript}\n")
    return "".join(parts)


def export_text(meeting: Meeting) -> str:
    parts = [
        f"{meeting.title}\n",
        f"{'=' * len(meeting.title)}\n\n",
        f"Date: {_format_date(meeting)}\n",
        f"Duration: {format_duration(meeting.duration)}\n\n",
    ]
    if meeting.summary:
        parts.append(f"SUMMARY\n-------\n\n{meeting.summary}\n\n")
    if meeting.transcript:
        parts.append(f"FULL TRANSCRIPT\n---------------\n\n{meeting.transcript}\n")
    return "".join(parts)


def export_meeting(meeting: Meeting, fmt: str) -> str:
    if fmt == "md":
        return export_markdown(meeting)
    if fmt == "txt":
        return export_text(meeting)
    raise ValueError(f"Unsupported export format: {fmt}")
