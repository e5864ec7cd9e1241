"""
Job and Item data models.

A Job (the platform's "stream") is one ingestion unit tracked end-to-end.
Items are the source videos inside it, embedded in the job record and
never shared between jobs.

All models use Pydantic for validation.
State transitions are validated externally (see state.py).
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobStatus(str, Enum):
    """
    Job-level status.

    Terminal states are STOPPED (explicit) and ERROR.
    """

    QUEUED = "queued"  # Created, orchestration scheduled
    PROCESSING = "processing"  # Orchestrator owns the job
    ACTIVE = "active"  # At least one item is playable
    ERROR = "error"  # Orchestration failed, see Job.error
    STOPPED = "stopped"  # Stopped by operator


class ItemStatus(str, Enum):
    """Per-item status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class JobKind(str, Enum):
    """
    Ingestion path.

    UPLOAD jobs process one item per orchestrator run.
    YOUTUBE jobs resolve every item in a single pass.
    """

    UPLOAD = "upload"
    YOUTUBE = "youtube"


class Item(BaseModel):
    """One source video within a job."""

    model_config = ConfigDict(extra="forbid")

    name: str
    source_ref: str  # Local file path or YouTube video id

    status: ItemStatus = ItemStatus.QUEUED
    error: Optional[str] = None

    # Set by the source adapter
    external_asset_id: Optional[str] = None
    external_playback_id: Optional[str] = None
    playback_url: Optional[str] = None
    thumbnail: Optional[str] = None
    document_path: Optional[str] = None


class SecondaryStream(BaseModel):
    """An externally supplied stream descriptor layered onto a job."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    url: str
    type: str = "user-stream"
    status: str = "active"


class ProviderMetadata(BaseModel):
    """Structured data published by the active source adapter."""

    model_config = ConfigDict(extra="forbid")

    provider: Optional[str] = None
    asset_id: Optional[str] = None
    playback_id: Optional[str] = None
    thumbnail: Optional[str] = None
    shuffle: bool = False
    channel_id: Optional[str] = None
    channel_title: Optional[str] = None


class Job(BaseModel):
    """
    A stream ingestion job.

    Items are kept in insertion order, which is the sequential playback
    order. The store checks invariants on every write (see
    invariant_violation).
    """

    model_config = ConfigDict(extra="forbid")

    # Identity
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    kind: JobKind = JobKind.UPLOAD

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # State
    status: JobStatus = JobStatus.QUEUED
    items: List[Item] = Field(default_factory=list)
    current_item_index: int = 0

    # Outcome
    playback_url: Optional[str] = None
    error: Optional[str] = None

    provider_metadata: Optional[ProviderMetadata] = None
    secondary_streams: List[SecondaryStream] = Field(default_factory=list)

    @property
    def current_item(self) -> Optional[Item]:
        """Item under current_item_index, or None when out of range."""
        if 0 <= self.current_item_index < len(self.items):
            return self.items[self.current_item_index]
        return None

    @property
    def shuffle(self) -> bool:
        return bool(self.provider_metadata and self.provider_metadata.shuffle)

    @property
    def ready_count(self) -> int:
        """Number of playable items."""
        return sum(1 for item in self.items if item.status == ItemStatus.READY)

    def invariant_violation(self) -> Optional[str]:
        """
        Describe the first broken invariant, or None if the job is consistent.

        - current_item_index points into items (or items is empty)
        - ACTIVE implies playback_url
        - ERROR implies error
        """
        if self.items and not 0 <= self.current_item_index < len(self.items):
            return (
                f"current_item_index {self.current_item_index} out of range "
                f"for {len(self.items)} items"
            )
        if self.status == JobStatus.ACTIVE and not self.playback_url:
            return "active job has no playback_url"
        if self.status == JobStatus.ERROR and not self.error:
            return "errored job has no error reason"
        return None


# ============================================================================
# EXTERNAL PROJECTIONS
# ============================================================================

class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class ItemStatusView(_CamelModel):
    """Per-item projection for polling clients."""

    name: str
    status: ItemStatus
    playback_url: Optional[str] = None
    thumbnail: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_item(cls, item: Item) -> "ItemStatusView":
        return cls(
            name=item.name,
            status=item.status,
            playback_url=item.playback_url,
            thumbnail=item.thumbnail,
            error=item.error,
        )


class JobStatusView(_CamelModel):
    """
    Projection of a Job safe for external consumption.

    Adapter internals (external asset ids, source paths) are left out.
    """

    id: str
    name: str
    type: JobKind
    status: JobStatus
    playback_url: Optional[str] = None
    thumbnail: Optional[str] = None
    error: Optional[str] = None
    current_item_index: int = 0
    items: List[ItemStatusView] = Field(default_factory=list)
    secondary_streams: List[SecondaryStream] = Field(default_factory=list)

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusView":
        thumbnail = job.provider_metadata.thumbnail if job.provider_metadata else None
        return cls(
            id=job.id,
            name=job.name,
            type=job.kind,
            status=job.status,
            playback_url=job.playback_url,
            thumbnail=thumbnail,
            error=job.error,
            current_item_index=job.current_item_index,
            items=[ItemStatusView.from_item(item) for item in job.items],
            secondary_streams=list(job.secondary_streams),
        )
