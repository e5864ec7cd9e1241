"""
Passthrough adapter.

Returns a deterministic playlist URL without touching the source. Used
for development and tests where neither ffmpeg nor a hosted provider is
available.
"""

import logging
from typing import TYPE_CHECKING

from .base import SourceAdapter, AdapterType, Artifact, ArtifactStatus

if TYPE_CHECKING:
    from ..config import Settings
    from ..jobs.models import Job, Item

logger = logging.getLogger(__name__)


class PassthroughAdapter(SourceAdapter):
    """No-I/O adapter: every item is immediately READY."""

    def __init__(self, settings: "Settings"):
        self._settings = settings

    @property
    def adapter_type(self) -> AdapterType:
        return AdapterType.PASSTHROUGH

    @property
    def name(self) -> str:
        return "Passthrough"

    async def produce_artifact(self, job: "Job", item: "Item", index: int) -> Artifact:
        url = f"{self._settings.base_url}/streams/{job.id}/playlist.m3u8"
        logger.debug(f"Passthrough artifact for job {job.id} item {index}: {url}")
        return Artifact(status=ArtifactStatus.READY, playback_url=url)
