"""
Stream job endpoints.

HTTP adapter over StreamService. Domain errors are translated to status
codes in one place (_http_error); raw provider exceptions never reach a
client as a traceback.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..jobs.errors import JobError, NotFoundError, ValidationError
from ..jobs.models import Item, ItemStatusView, JobKind, JobStatus, JobStatusView
from ..persistence.errors import PersistenceError
from ..services.streams import StreamService
from ..sources.errors import (
    ProviderError,
    ProviderAuthError,
    ProviderRateLimitError,
    SourceUnavailableError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["streams"])


# ============================================================================
# API MODELS
# ============================================================================

class _ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class StartItemRequest(_ApiModel):
    """One source video in a start request."""

    name: str
    source_ref: str


class StartJobRequest(_ApiModel):
    """Request body for upload job creation."""

    name: str
    items: List[StartItemRequest]


class ChannelJobRequest(_ApiModel):
    """Request body for YouTube channel job creation."""

    channel_name: str
    video_count: int = 10
    shuffle: bool = False


class SecondaryStreamRequest(_ApiModel):
    """Request body for attaching a viewer stream."""

    id: Optional[str] = None
    name: str
    url: str
    type: str = "user-stream"


class StartJobResponse(_ApiModel):
    id: str
    name: str
    status: JobStatus
    type: JobKind
    message: str


class OperationResponse(_ApiModel):
    success: bool
    stopped: int = 0


class NextItemResponse(_ApiModel):
    item: Optional[ItemStatusView] = None


class UploadResponse(_ApiModel):
    path: str
    name: str
    size: int
    url: str


class MuxWebhookEvent(BaseModel):
    """Subset of a Mux webhook payload."""

    model_config = ConfigDict(extra="ignore")

    type: str
    data: dict = Field(default_factory=dict)


# ============================================================================
# HELPERS
# ============================================================================

def _service(request: Request) -> StreamService:
    return request.app.state.stream_service


def _http_error(exc: Exception) -> HTTPException:
    """Map a domain exception to an HTTPException."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=exc.message)
    if isinstance(exc, (NotFoundError, SourceUnavailableError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ProviderRateLimitError):
        headers = {"Retry-After": str(int(exc.retry_after))} if exc.retry_after else None
        return HTTPException(status_code=429, detail=exc.message, headers=headers)
    if isinstance(exc, ProviderAuthError):
        return HTTPException(status_code=503, detail=exc.message)
    if isinstance(exc, ProviderError):
        return HTTPException(status_code=502, detail=exc.message)
    logger.error(f"Unexpected error in stream endpoint: {exc}")
    return HTTPException(status_code=500, detail="Internal server error")


def _start_response(view: JobStatusView, message: str) -> StartJobResponse:
    return StartJobResponse(
        id=view.id,
        name=view.name,
        status=view.status,
        type=view.type,
        message=message,
    )


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.post("/stream/start", response_model=StartJobResponse)
async def start_stream_endpoint(body: StartJobRequest, request: Request):
    """
    Create an upload job and schedule processing.

    Returns immediately with status 'queued'. Poll
    /api/stream/{id}/status for the outcome.

    Raises:
        400: Validation failed
    """
    try:
        view = await _service(request).start_job(
            body.name,
            [Item(name=item.name, source_ref=item.source_ref) for item in body.items],
        )
    except (JobError, ProviderError, PersistenceError) as e:
        raise _http_error(e)
    return _start_response(view, "Stream processing started")


@router.post("/stream/youtube", response_model=StartJobResponse)
async def start_channel_endpoint(body: ChannelJobRequest, request: Request):
    """
    Create a job from a YouTube channel's latest videos.

    Raises:
        400: Validation failed
        404: Channel not found
        429: YouTube quota exhausted
        503: YouTube API key missing or rejected
    """
    try:
        view = await _service(request).start_channel_job(
            body.channel_name,
            video_count=body.video_count,
            shuffle=body.shuffle,
        )
    except (JobError, ProviderError, PersistenceError) as e:
        raise _http_error(e)
    return _start_response(view, "YouTube channel stream processing started")


@router.get("/stream/list", response_model=List[JobStatusView])
async def list_streams_endpoint(request: Request):
    """List ACTIVE jobs."""
    return _service(request).list_active()


@router.get("/stream/provider/check")
async def check_provider_endpoint(request: Request):
    """Probe connectivity of the configured upload provider."""
    return await _service(request).check_provider()


@router.post("/stream/stop", response_model=OperationResponse)
async def stop_all_endpoint(request: Request):
    """Stop every ACTIVE job."""
    stopped = _service(request).stop_job()
    return OperationResponse(success=True, stopped=stopped)


@router.post("/stream/stop/{job_id}", response_model=OperationResponse)
async def stop_stream_endpoint(job_id: str, request: Request):
    """
    Stop one job. Stopping a stopped job succeeds.

    Raises:
        404: Job not found
    """
    try:
        stopped = _service(request).stop_job(job_id)
    except (JobError, PersistenceError) as e:
        raise _http_error(e)
    return OperationResponse(success=True, stopped=stopped)


@router.get("/stream/{job_id}/status", response_model=JobStatusView)
async def stream_status_endpoint(job_id: str, request: Request):
    try:
        return _service(request).get_status(job_id)
    except (JobError, PersistenceError) as e:
        raise _http_error(e)


@router.post("/stream/{job_id}/streams", response_model=JobStatusView)
async def append_stream_endpoint(job_id: str, body: SecondaryStreamRequest, request: Request):
    """
    Attach a viewer-submitted stream to a job.

    Raises:
        400: Validation failed
        404: Job not found
    """
    try:
        return _service(request).append_secondary_stream(
            job_id,
            name=body.name,
            url=body.url,
            type=body.type,
            id=body.id,
        )
    except (JobError, PersistenceError) as e:
        raise _http_error(e)


@router.get("/stream/{job_id}/next", response_model=NextItemResponse)
async def next_item_endpoint(job_id: str, request: Request):
    """Resolve the next item to play (null when nothing is ready)."""
    try:
        return NextItemResponse(item=_service(request).next_item(job_id))
    except (JobError, PersistenceError) as e:
        raise _http_error(e)


@router.get("/stream/{job_id}/current", response_model=NextItemResponse)
async def current_item_endpoint(job_id: str, request: Request):
    """Item at the job's current index, without advancing."""
    try:
        return NextItemResponse(item=_service(request).current_item(job_id))
    except (JobError, PersistenceError) as e:
        raise _http_error(e)


@router.post("/stream/{job_id}/advance", response_model=JobStatusView)
async def advance_stream_endpoint(job_id: str, request: Request):
    """
    Process the next uploaded item of an ACTIVE job.

    Raises:
        400: Job not active, or no queued next item
        404: Job not found
    """
    try:
        return await _service(request).advance_upload(job_id)
    except (JobError, PersistenceError) as e:
        raise _http_error(e)


@router.post("/upload", response_model=UploadResponse)
async def upload_endpoint(request: Request, video: UploadFile = File(...)):
    """
    Store an uploaded video for a later start request.

    Raises:
        400: Empty or oversized upload
    """
    try:
        stored = await run_in_threadpool(
            _service(request).save_upload,
            video.filename or "upload",
            video.file,
        )
    except ValidationError as e:
        raise _http_error(e)
    finally:
        await video.close()
    return UploadResponse(**stored)


@router.post("/webhooks/mux")
async def mux_webhook_endpoint(event: MuxWebhookEvent, request: Request):
    """
    Settle hosted items from Mux asset events.

    Unknown event types are acknowledged and ignored.
    """
    asset_id = event.data.get("id")
    if asset_id and event.type in ("video.asset.ready", "video.asset.errored"):
        ready = event.type == "video.asset.ready"
        error = None
        if not ready:
            messages = (event.data.get("errors") or {}).get("messages") or []
            error = "; ".join(messages) or f"Hosted asset {asset_id} errored"
        try:
            await _service(request).handle_asset_event(asset_id, ready, error)
        except (JobError, PersistenceError) as e:
            logger.error(f"[Mux] Failed to apply {event.type} for {asset_id}: {e}")
            raise _http_error(e)
    else:
        logger.debug(f"[Mux] Ignoring webhook event {event.type}")
    return {"received": True}
