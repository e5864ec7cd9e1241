"""
StreamService: the job query/control surface.

This is the single entry point the HTTP layer calls for stream jobs:
- Upload jobs (start_job, advance_upload)
- YouTube channel jobs (start_channel_job)
- Status, listing and stop
- Secondary streams and playback resolution
- Hosted asset webhooks and provider probes

Orchestration is scheduled as an asyncio task and never awaited by the
caller. Clients observe progress only by polling get_status.
"""

import asyncio
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Set

from ..config import Settings
from ..jobs.errors import ValidationError
from ..jobs.models import (
    Job,
    Item,
    ItemStatus,
    JobKind,
    JobStatus,
    ProviderMetadata,
    SecondaryStream,
    JobStatusView,
    ItemStatusView,
)
from ..jobs.state import validate_job_transition
from ..jobs.store import JobStore
from ..pipeline.orchestrator import Orchestrator
from ..pipeline.playback import PlaybackResolver
from ..sources.registry import AdapterRegistry

logger = logging.getLogger(__name__)

MAX_CHANNEL_VIDEOS = 50
_UPLOAD_CHUNK = 1024 * 1024
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a safe basename."""
    base = os.path.basename(filename.replace("\\", "/")).strip()
    cleaned = _UNSAFE_FILENAME.sub("_", base).strip("._")
    return cleaned or "upload"


class StreamService:
    """
    Job control for the HTTP boundary.

    Two orchestrators share the store: uploads use the configured
    provider's adapter, channel jobs use the embed adapter.
    """

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        registry: AdapterRegistry,
        resolver: Optional[PlaybackResolver] = None,
    ):
        self._settings = settings
        self._store = store
        self._registry = registry
        self._resolver = resolver or PlaybackResolver(store)

        cleanup_dir = settings.upload_dir if settings.cleanup_sources else None
        self._upload_orchestrator = Orchestrator(store, registry.upload_adapter, cleanup_dir=cleanup_dir)
        self._channel_orchestrator = Orchestrator(store, registry.embed_adapter)

        # Strong references keep fire-and-forget tasks alive until they finish
        self._tasks: Set[asyncio.Task] = set()

    @property
    def store(self) -> JobStore:
        return self._store

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _schedule(self, orchestrator: Orchestrator, job_id: str) -> None:
        task = asyncio.get_running_loop().create_task(
            orchestrator.run(job_id),
            name=f"orchestrate-{job_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait until every scheduled orchestration has finished."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel pending orchestration tasks (application shutdown)."""
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info(f"Cancelled {len(pending)} orchestration tasks on shutdown")

    # ------------------------------------------------------------------
    # Job creation
    # ------------------------------------------------------------------

    async def start_job(self, name: str, items: List[Item]) -> JobStatusView:
        """
        Create an upload job and schedule its orchestration.

        Args:
            name: Job display name
            items: Source items in playback order

        Returns:
            Status view (QUEUED)

        Raises:
            ValidationError: Blank name, no items, or incomplete items
        """
        job = Job(name=name.strip() if name else "", kind=JobKind.UPLOAD, items=items)
        self._store.create(job)
        logger.info(f"[LIFECYCLE] Upload job {job.id} created with {len(items)} items")
        self._schedule(self._upload_orchestrator, job.id)
        return JobStatusView.from_job(job)

    async def start_channel_job(
        self,
        channel_name: str,
        video_count: int = 10,
        shuffle: bool = False,
    ) -> JobStatusView:
        """
        Create a job from a YouTube channel's latest videos.

        Raises:
            ValidationError: Blank channel name or bad video count
            ProviderAuthError: No YouTube API key, or the key was rejected
            ProviderRateLimitError: YouTube quota exhausted
            SourceUnavailableError: Channel not found or empty
        """
        if not channel_name or not channel_name.strip():
            raise ValidationError("Channel name is required")
        if not 1 <= video_count <= MAX_CHANNEL_VIDEOS:
            raise ValidationError(f"videoCount must be between 1 and {MAX_CHANNEL_VIDEOS}")

        channel = await self._registry.youtube.get_channel_videos(channel_name.strip(), video_count)

        job = Job(
            name=f"YouTube: {channel.channel_title}",
            kind=JobKind.YOUTUBE,
            items=[
                Item(name=video.title, source_ref=video.id, thumbnail=video.thumbnail)
                for video in channel.videos
            ],
            provider_metadata=ProviderMetadata(
                provider=self._registry.embed_adapter.adapter_type.value,
                thumbnail=channel.channel_thumbnail,
                shuffle=shuffle,
                channel_id=channel.channel_id,
                channel_title=channel.channel_title,
            ),
        )
        self._store.create(job)
        logger.info(f"[LIFECYCLE] Channel job {job.id} created for {channel.channel_title}")
        self._schedule(self._channel_orchestrator, job.id)
        return JobStatusView.from_job(job)

    async def advance_upload(self, job_id: str) -> JobStatusView:
        """
        Move an ACTIVE upload job to its next queued item and process it.

        The previous playback URL stays in place until the next item is
        active.

        Raises:
            JobNotFoundError: Unknown job
            ValidationError: Wrong job kind, not ACTIVE, or no queued next item
        """
        def advance(job: Job) -> None:
            if job.kind != JobKind.UPLOAD:
                raise ValidationError("Only upload jobs advance item by item")
            if job.status != JobStatus.ACTIVE:
                raise ValidationError(f"Job is {job.status.value}, only active jobs can advance")
            next_index = job.current_item_index + 1
            if next_index >= len(job.items):
                raise ValidationError("No further items to process")
            if job.items[next_index].status != ItemStatus.QUEUED:
                raise ValidationError(f"Item {next_index} is {job.items[next_index].status.value}")
            validate_job_transition(job.status, JobStatus.QUEUED)
            job.current_item_index = next_index
            job.status = JobStatus.QUEUED

        job = self._store.mutate(job_id, advance, skip_if_stopped=True)
        if job is None:
            raise ValidationError("Job is stopped")
        logger.info(f"[LIFECYCLE] Job {job_id} advanced to item {job.current_item_index}")
        self._schedule(self._upload_orchestrator, job_id)
        return JobStatusView.from_job(job)

    # ------------------------------------------------------------------
    # Queries and control
    # ------------------------------------------------------------------

    def stop_job(self, job_id: Optional[str] = None) -> int:
        """
        Stop one job, or every ACTIVE job when job_id is None.

        In-flight adapter calls are not cancelled; their results are
        discarded when they complete.

        Raises:
            JobNotFoundError: If job_id is given and unknown
        """
        return self._store.stop(job_id)

    def get_status(self, job_id: str) -> JobStatusView:
        """
        Raises:
            JobNotFoundError: Unknown job
        """
        return JobStatusView.from_job(self._store.get(job_id))

    def list_active(self) -> List[JobStatusView]:
        return [JobStatusView.from_job(job) for job in self._store.list_by_status(JobStatus.ACTIVE)]

    def append_secondary_stream(
        self,
        job_id: str,
        name: str,
        url: str,
        type: str = "user-stream",
        id: Optional[str] = None,
    ) -> JobStatusView:
        """
        Attach a viewer-submitted stream to a job.

        Raises:
            ValidationError: Blank name or url
            JobNotFoundError: Unknown job
        """
        if not name or not name.strip():
            raise ValidationError("Stream name is required")
        if not url or not url.strip():
            raise ValidationError("Stream url is required")

        entry = SecondaryStream(
            id=id or str(uuid.uuid4()),
            name=name.strip(),
            url=url.strip(),
            type=type or "user-stream",
        )
        job = self._store.append_secondary_stream(job_id, entry)
        logger.info(f"Secondary stream {entry.id} added to job {job_id}")
        return JobStatusView.from_job(job)

    def next_item(self, job_id: str) -> Optional[ItemStatusView]:
        item = self._resolver.next_item(job_id)
        return ItemStatusView.from_item(item) if item else None

    def current_item(self, job_id: str) -> Optional[ItemStatusView]:
        item = self._resolver.current_item(job_id)
        return ItemStatusView.from_item(item) if item else None

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def handle_asset_event(
        self,
        asset_id: str,
        ready: bool,
        error: Optional[str] = None,
    ) -> Optional[Job]:
        return await self._upload_orchestrator.handle_asset_event(asset_id, ready, error)

    async def check_provider(self) -> Dict:
        """Probe the upload provider and list registered adapters."""
        result = await self._registry.upload_adapter.check()
        result["adapters"] = self._registry.list_adapters()
        return result

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def save_upload(self, filename: str, stream: BinaryIO) -> Dict:
        """
        Store an uploaded video under the upload directory.

        The file is named <epoch_ms>-<safe name>. Its public URL is what
        the hosted provider fetches.

        Raises:
            ValidationError: Empty upload or larger than max_upload_bytes
        """
        upload_dir = Path(self._settings.upload_dir)
        upload_dir.mkdir(parents=True, exist_ok=True)

        stored_name = f"{int(time.time() * 1000)}-{safe_filename(filename or '')}"
        path = upload_dir / stored_name
        limit = self._settings.max_upload_bytes
        size = 0
        try:
            with open(path, "wb") as handle:
                while True:
                    chunk = stream.read(_UPLOAD_CHUNK)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > limit:
                        raise ValidationError(f"Upload exceeds {limit} bytes")
                    handle.write(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        if size == 0:
            path.unlink(missing_ok=True)
            raise ValidationError("Uploaded file is empty")

        logger.info(f"Stored upload {stored_name} ({size} bytes)")
        return {
            "path": str(path),
            "name": stored_name,
            "size": size,
            "url": f"{self._settings.base_url}/temp/{stored_name}",
        }
