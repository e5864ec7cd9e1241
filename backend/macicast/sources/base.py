"""
Source adapter abstraction layer.

An adapter turns one Item's source reference into a playable artifact:
an HLS manifest, a hosted playback URL, or a generated embed document.

Design rules:
- Adapters are injected into the orchestrator, never chosen inline
- Adapters never mutate job records; they return an Artifact
- Expected conditions (video missing on YouTube) are reported in the
  Artifact, unexpected ones are raised as ProviderError subclasses
- An artifact is only READY when its output is complete
"""

import os
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Optional, TYPE_CHECKING
from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from ..jobs.models import Job, Item


class AdapterType(str, Enum):
    """Supported source adapters."""

    LOCAL = "local"
    MUX = "mux"
    EMBED = "embed"
    PASSTHROUGH = "passthrough"


class ArtifactStatus(str, Enum):
    """
    Artifact outcome.

    PROCESSING: accepted by a provider but not yet playable
    """

    READY = "ready"
    PROCESSING = "processing"
    ERROR = "error"


class Artifact(BaseModel):
    """Playable output for one item."""

    model_config = ConfigDict(extra="forbid")

    status: ArtifactStatus = ArtifactStatus.READY
    playback_url: Optional[str] = None
    thumbnail: Optional[str] = None
    external_asset_id: Optional[str] = None
    external_playback_id: Optional[str] = None
    document_path: Optional[str] = None
    error: Optional[str] = None

    # Publish this artifact as the job's first secondary stream
    promote_to_secondary: bool = False


class SourceAdapter(ABC):
    """
    Abstract base class for source adapters.

    All adapters must implement:
    - produce_artifact: Turn one item into a playable artifact
    - check: Probe provider connectivity
    """

    @property
    @abstractmethod
    def adapter_type(self) -> AdapterType:
        """Return the adapter type identifier."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable adapter name for logs."""
        pass

    @property
    def available(self) -> bool:
        """True if the adapter can run on this system."""
        return True

    @abstractmethod
    async def produce_artifact(self, job: "Job", item: "Item", index: int) -> Artifact:
        """
        Produce a playable artifact for one item.

        Args:
            job: Owning job (read-only)
            item: Item to process
            index: Position of the item in job.items

        Returns:
            Artifact describing the outcome

        Raises:
            ProviderError: Or a subclass, when the artifact cannot be produced
        """
        pass

    async def check(self) -> dict:
        """
        Probe provider connectivity.

        Returns:
            Dict with at least 'provider' and 'ok'
        """
        return {"provider": self.adapter_type.value, "ok": self.available}


def write_document(path: Path, content: str) -> None:
    """
    Write a text document atomically.

    The parent directory is created first. Readers never observe a
    half-written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
