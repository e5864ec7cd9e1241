"""
Ingestion pipeline: orchestration and playback resolution.
"""

from .orchestrator import Orchestrator
from .playback import PlaybackResolver, next_ready_index

__all__ = [
    "Orchestrator",
    "PlaybackResolver",
    "next_ready_index",
]
