"""FastAPI application exposing the meeting pipeline to local clients."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from functools import lru_cache
from typing import Callable, List, Literal, Optional, TypeVar

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .. import __version__
from ..errors import (
    BackendError,
    CapturePermissionError,
    ConfigurationError,
    EmptyInputError,
    InvalidTransitionError,
    NotetakerError,
    NotFoundError,
    ProcessError,
    RecordingStateError,
)
from ..export import export_meeting
from ..models import DEFAULT_SUMMARY_TEMPLATE, Config, Meeting
from ..services import Services, build_services
from ..storage import StorageError

app = FastAPI(
    title="notetaker API",
    description="Local control surface for recording, transcribing and summarising meetings.",
    version=__version__,
)

T = TypeVar("T")


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services()


class MeetingPayload(BaseModel):
    id: str
    title: str
    date: datetime
    duration: int
    audio_path: str
    transcript: Optional[str]
    summary: Optional[str]
    status: str
    created_at: datetime
    updated_at: datetime


class CreateMeetingRequest(BaseModel):
    audio_path: str
    duration: int = Field(0, ge=0)
    title: Optional[str] = None


class RenameRequest(BaseModel):
    title: str = Field(..., min_length=1)


class ConfigPayload(BaseModel):
    transcription_provider: str = "openai"
    transcription_api_key: str = ""
    transcription_model: str = "gpt-4o-transcribe"
    summary_provider: str = "openai"
    summary_api_key: str = ""
    summary_model: str = "gpt-5"
    summary_template: str = DEFAULT_SUMMARY_TEMPLATE


class RecordingStartedResponse(BaseModel):
    path: str


class PermissionResponse(BaseModel):
    granted: bool


class ExportResponse(BaseModel):
    format: str
    content: str


def _meeting_to_payload(meeting: Meeting) -> MeetingPayload:
    return MeetingPayload(
        id=meeting.id,
        title=meeting.title,
        date=meeting.date,
        duration=meeting.duration,
        audio_path=str(meeting.audio_path),
        transcript=meeting.transcript,
        summary=meeting.summary,
        status=meeting.status.value,
        created_at=meeting.created_at,
        updated_at=meeting.updated_at,
    )


_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (RecordingStateError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_400_BAD_REQUEST),
    (EmptyInputError, status.HTTP_400_BAD_REQUEST),
    (CapturePermissionError, status.HTTP_403_FORBIDDEN),
    (BackendError, status.HTTP_502_BAD_GATEWAY),
    (ProcessError, status.HTTP_502_BAD_GATEWAY),
)


def _to_http(exc: NotetakerError) -> HTTPException:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


async def _call(func: Callable[..., T], *args, **kwargs) -> T:
    try:
        return await run_in_threadpool(func, *args, **kwargs)
    except NotetakerError as exc:
        raise _to_http(exc) from exc


def _process_in_background(services: Services, meeting_id: str) -> None:
    try:
        services.pipeline.process(meeting_id)
    except (NotetakerError, StorageError):
        logging.exception("Background processing of %s failed", meeting_id)


@app.get("/meetings", response_model=List[MeetingPayload])
async def list_meetings(services: Services = Depends(get_services)) -> List[MeetingPayload]:
    meetings = await run_in_threadpool(lambda: list(services.storage.list_meetings()))
    return [_meeting_to_payload(meeting) for meeting in meetings]


@app.post("/meetings", response_model=MeetingPayload, status_code=status.HTTP_201_CREATED)
async def create_meeting(
    request: CreateMeetingRequest,
    background: BackgroundTasks,
    process: bool = True,
    services: Services = Depends(get_services),
) -> MeetingPayload:
    meeting = await _call(
        services.pipeline.create_meeting,
        request.audio_path,
        request.duration,
        title=request.title,
    )
    if process:
        background.add_task(_process_in_background, services, meeting.id)
    return _meeting_to_payload(meeting)


@app.get("/meetings/{meeting_id}", response_model=MeetingPayload)
async def get_meeting(meeting_id: str, services: Services = Depends(get_services)) -> MeetingPayload:
    return _meeting_to_payload(await _call(services.pipeline.get, meeting_id))


@app.patch("/meetings/{meeting_id}", response_model=MeetingPayload)
async def rename_meeting(
    meeting_id: str,
    request: RenameRequest,
    services: Services = Depends(get_services),
) -> MeetingPayload:
    try:
        meeting = await _call(services.pipeline.rename, meeting_id, request.title)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _meeting_to_payload(meeting)


@app.delete("/meetings/{meeting_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_meeting(
    meeting_id: str,
    keep_audio: bool = False,
    services: Services = Depends(get_services),
) -> Response:
    meeting = await _call(services.pipeline.get, meeting_id)
    await run_in_threadpool(services.storage.delete_meeting, meeting_id)
    if not keep_audio:
        services.recorder.delete_recording(meeting.audio_path)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/meetings/{meeting_id}/transcription", response_model=MeetingPayload)
async def transcribe_meeting(
    meeting_id: str,
    summarise: bool = True,
    services: Services = Depends(get_services),
) -> MeetingPayload:
    meeting = await _call(services.pipeline.transcribe, meeting_id, chain=summarise)
    return _meeting_to_payload(meeting)


@app.post("/meetings/{meeting_id}/summary", response_model=MeetingPayload)
async def summarise_meeting(meeting_id: str, services: Services = Depends(get_services)) -> MeetingPayload:
    return _meeting_to_payload(await _call(services.pipeline.summarize, meeting_id))


@app.post("/meetings/{meeting_id}/title", response_model=MeetingPayload)
async def retitle_meeting(meeting_id: str, services: Services = Depends(get_services)) -> MeetingPayload:
    meeting = await _call(services.pipeline.get, meeting_id)
    suggestion = await _call(services.summarizer.title_from, meeting.summary or "")
    return _meeting_to_payload(await _call(services.pipeline.rename, meeting_id, suggestion))


@app.get("/meetings/{meeting_id}/export", response_model=ExportResponse)
async def export(
    meeting_id: str,
    fmt: Literal["md", "txt"] = Query("md", alias="format"),
    services: Services = Depends(get_services),
) -> ExportResponse:
    meeting = await _call(services.pipeline.get, meeting_id)
    return ExportResponse(format=fmt, content=export_meeting(meeting, fmt))


@app.get("/config", response_model=ConfigPayload)
async def get_config(services: Services = Depends(get_services)) -> ConfigPayload:
    config = await run_in_threadpool(services.vault.load)
    return ConfigPayload(**asdict(config))


@app.put("/config", response_model=ConfigPayload)
async def save_config(payload: ConfigPayload, services: Services = Depends(get_services)) -> ConfigPayload:
    config = Config(**payload.model_dump())
    try:
        await run_in_threadpool(services.vault.save, config)
    except OSError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return payload


@app.post("/recording/start", response_model=RecordingStartedResponse)
async def start_recording(services: Services = Depends(get_services)) -> RecordingStartedResponse:
    path = await _call(services.recorder.start)
    return RecordingStartedResponse(path=str(path))


@app.post("/recording/stop", response_model=MeetingPayload, status_code=status.HTTP_201_CREATED)
async def stop_recording(
    background: BackgroundTasks,
    process: bool = True,
    services: Services = Depends(get_services),
) -> MeetingPayload:
    recording = await _call(services.recorder.stop)
    meeting = await _call(services.pipeline.record_completed, recording)
    if process:
        background.add_task(_process_in_background, services, meeting.id)
    return _meeting_to_payload(meeting)


@app.get("/recording/permissions", response_model=PermissionResponse)
async def recording_permissions(services: Services = Depends(get_services)) -> PermissionResponse:
    granted = await run_in_threadpool(services.recorder.check_permissions)
    return PermissionResponse(granted=granted)
