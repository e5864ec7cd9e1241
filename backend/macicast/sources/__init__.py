"""
Source adapters: turn an Item's source reference into a playable artifact.

Adapters never write job records. The orchestrator (macicast.pipeline)
applies their Artifacts to the store.
"""

from .base import SourceAdapter, AdapterType, Artifact, ArtifactStatus, write_document
from .errors import (
    ProviderError,
    ProviderAuthError,
    ProviderRateLimitError,
    SourceUnavailableError,
    TranscodeFailure,
)
from .embed import EmbedRedirectAdapter
from .hosted import HostedAssetAdapter
from .passthrough import PassthroughAdapter
from .registry import AdapterRegistry, build_adapter
from .transcode import LocalTranscodeAdapter
from .youtube import YouTubeClient, ChannelVideos, ChannelVideo

__all__ = [
    # Base
    "SourceAdapter",
    "AdapterType",
    "Artifact",
    "ArtifactStatus",
    "write_document",
    # Errors
    "ProviderError",
    "ProviderAuthError",
    "ProviderRateLimitError",
    "SourceUnavailableError",
    "TranscodeFailure",
    # Adapters
    "LocalTranscodeAdapter",
    "HostedAssetAdapter",
    "EmbedRedirectAdapter",
    "PassthroughAdapter",
    "AdapterRegistry",
    "build_adapter",
    # YouTube
    "YouTubeClient",
    "ChannelVideos",
    "ChannelVideo",
]
