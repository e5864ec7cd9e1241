"""
Source adapter registry.

Central place where adapters are built from Settings.

Design rules:
- Explicit provider selection (STREAM_PROVIDER), no inference
- No fallback providers: a misconfigured provider fails at startup
- One adapter instance per type within a registry
"""

import logging
from typing import Dict, Optional

import httpx

from ..config import Settings
from .base import SourceAdapter, AdapterType
from .embed import EmbedRedirectAdapter
from .errors import ProviderAuthError, ProviderError
from .hosted import HostedAssetAdapter
from .passthrough import PassthroughAdapter
from .transcode import LocalTranscodeAdapter
from .youtube import YouTubeClient

logger = logging.getLogger(__name__)


def build_adapter(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SourceAdapter:
    """
    Build the adapter used for uploaded videos.

    Args:
        settings: Runtime settings (stream_provider selects the adapter)
        transport: Optional httpx transport for the hosted adapter

    Returns:
        The configured SourceAdapter

    Raises:
        ProviderAuthError: mux selected without credentials
        ProviderError: Unknown provider name
    """
    provider = settings.stream_provider
    if provider == AdapterType.MUX.value:
        if not (settings.mux_token_id and settings.mux_token_secret):
            raise ProviderAuthError(
                "STREAM_PROVIDER=mux requires MUX_TOKEN_ID and MUX_TOKEN_SECRET", "mux"
            )
        return HostedAssetAdapter(settings, transport=transport)
    if provider == AdapterType.LOCAL.value:
        adapter = LocalTranscodeAdapter(settings)
        if not adapter.available:
            logger.warning("[FFmpeg] ffmpeg not found; local transcodes will fail until it is installed")
        return adapter
    if provider == AdapterType.PASSTHROUGH.value:
        return PassthroughAdapter(settings)
    raise ProviderError(f"Unknown stream provider: {provider}")


class AdapterRegistry:
    """
    Adapters for both ingestion paths.

    upload_adapter serves upload jobs (per STREAM_PROVIDER).
    embed_adapter serves YouTube jobs.
    """

    def __init__(
        self,
        settings: Settings,
        youtube: Optional[YouTubeClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        upload_adapter: Optional[SourceAdapter] = None,
    ):
        self.youtube = youtube or YouTubeClient(
            settings.youtube_api_key,
            settings.youtube_api_base,
            transport=transport,
        )
        self.upload_adapter = upload_adapter or build_adapter(settings, transport=transport)
        self.embed_adapter = EmbedRedirectAdapter(settings, self.youtube)

        self._adapters: Dict[AdapterType, SourceAdapter] = {
            self.upload_adapter.adapter_type: self.upload_adapter,
            self.embed_adapter.adapter_type: self.embed_adapter,
        }
        for adapter_type, adapter in self._adapters.items():
            status = "available" if adapter.available else "not available"
            logger.info(f"Adapter '{adapter.name}' ({adapter_type.value}): {status}")

    def list_adapters(self) -> list[dict]:
        """List registered adapters with availability status."""
        return [
            {
                "type": adapter_type.value,
                "name": adapter.name,
                "available": adapter.available,
            }
            for adapter_type, adapter in self._adapters.items()
        ]
