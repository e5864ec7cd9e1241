"""
YouTube Data API client.

Channel lookup for channel jobs and video existence checks for the embed
adapter. Without an API key, existence falls back to the public oEmbed
endpoint; channel lookup always needs a key.
"""

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    ProviderError,
    ProviderAuthError,
    ProviderRateLimitError,
    SourceUnavailableError,
)

logger = logging.getLogger(__name__)

PROVIDER = "youtube"
OEMBED_URL = "https://www.youtube.com/oembed"
REQUEST_TIMEOUT = 15.0

# 403 reasons that mean "quota", not "bad key"
_QUOTA_REASONS = {"quotaExceeded", "rateLimitExceeded", "userRateLimitExceeded", "dailyLimitExceeded"}


class ChannelVideo(BaseModel):
    """One video returned by a channel search."""

    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    thumbnail: Optional[str] = None
    published_at: Optional[str] = None


class ChannelVideos(BaseModel):
    """A channel and its most recent videos."""

    model_config = ConfigDict(extra="forbid")

    channel_id: str
    channel_title: str
    channel_thumbnail: Optional[str] = None
    videos: List[ChannelVideo] = Field(default_factory=list)


def _thumbnail(snippet: dict) -> Optional[str]:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("high", "medium", "default"):
        if thumbnails.get(size, {}).get("url"):
            return thumbnails[size]["url"]
    return None


def _error_reason(response: httpx.Response) -> str:
    try:
        errors = response.json().get("error", {}).get("errors") or []
    except ValueError:
        return ""
    return errors[0].get("reason", "") if errors else ""


class YouTubeClient:
    """
    Thin async wrapper over the YouTube Data API v3.

    Args:
        api_key: Data API key (None disables channel lookup)
        api_base: Data API base URL
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        api_key: Optional[str],
        api_base: str = "https://www.googleapis.com/youtube/v3",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        self._transport = transport

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self._transport)

    async def _api_get(self, client: httpx.AsyncClient, resource: str, params: dict) -> dict:
        if not self._api_key:
            raise ProviderAuthError("YOUTUBE_API_KEY is not configured", PROVIDER)
        try:
            response = await client.get(
                f"{self._api_base}/{resource}",
                params={**params, "key": self._api_key},
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"YouTube request failed: {e}", PROVIDER) from e

        if response.status_code == 403 and _error_reason(response) in _QUOTA_REASONS:
            raise ProviderRateLimitError("YouTube API quota exceeded", PROVIDER)
        if response.status_code == 429:
            raise ProviderRateLimitError("YouTube API rate limit exceeded", PROVIDER)
        if response.status_code in (400, 401, 403):
            reason = _error_reason(response) or f"HTTP {response.status_code}"
            raise ProviderAuthError(f"YouTube API rejected the request: {reason}", PROVIDER)
        if response.status_code >= 400:
            raise ProviderError(f"YouTube API error (HTTP {response.status_code})", PROVIDER)
        return response.json()

    async def get_channel_videos(self, channel_name: str, video_count: int = 10) -> ChannelVideos:
        """
        Find a channel by name and list its latest videos.

        Args:
            channel_name: Free-text channel name
            video_count: Maximum number of videos (newest first)

        Returns:
            ChannelVideos

        Raises:
            ProviderAuthError: No API key, or the key was rejected
            ProviderRateLimitError: Quota exhausted
            SourceUnavailableError: Channel not found or has no videos
        """
        async with self._client() as client:
            search = await self._api_get(client, "search", {
                "part": "snippet",
                "q": channel_name,
                "type": "channel",
                "maxResults": 1,
            })
            channels = search.get("items") or []
            if not channels:
                raise SourceUnavailableError(channel_name, "channel not found")

            channel = channels[0]
            channel_id = channel.get("id", {}).get("channelId") or channel.get("snippet", {}).get("channelId")
            snippet = channel.get("snippet", {})
            channel_title = snippet.get("title") or channel_name
            logger.info(f"[YouTube] Resolved channel '{channel_name}' -> {channel_id} ({channel_title})")

            listing = await self._api_get(client, "search", {
                "part": "snippet",
                "channelId": channel_id,
                "order": "date",
                "type": "video",
                "maxResults": video_count,
            })

        videos = []
        for entry in listing.get("items") or []:
            video_id = entry.get("id", {}).get("videoId")
            if not video_id:
                continue
            video_snippet = entry.get("snippet", {})
            videos.append(ChannelVideo(
                id=video_id,
                title=video_snippet.get("title") or video_id,
                thumbnail=_thumbnail(video_snippet),
                published_at=video_snippet.get("publishedAt"),
            ))

        if not videos:
            raise SourceUnavailableError(channel_name, "no videos found for this channel")

        logger.info(f"[YouTube] Found {len(videos)} videos for {channel_title}")
        return ChannelVideos(
            channel_id=channel_id,
            channel_title=channel_title,
            channel_thumbnail=_thumbnail(snippet),
            videos=videos,
        )

    async def video_exists(self, video_id: str) -> bool:
        """
        Check whether a video id resolves to a playable video.

        Uses videos.list when an API key is configured, oEmbed otherwise.

        Raises:
            ProviderAuthError: The key was rejected
            ProviderRateLimitError: Quota exhausted or throttled
            ProviderError: Transport failure or unexpected response
        """
        async with self._client() as client:
            if self._api_key:
                data = await self._api_get(client, "videos", {"part": "status", "id": video_id})
                return bool(data.get("items"))

            try:
                response = await client.get(
                    OEMBED_URL,
                    params={"url": f"https://www.youtube.com/watch?v={video_id}", "format": "json"},
                )
            except httpx.HTTPError as e:
                raise ProviderError(f"YouTube oEmbed request failed: {e}", PROVIDER) from e

        if response.status_code == 200:
            return True
        if response.status_code in (400, 401, 403, 404):
            # oEmbed answers 401 for private/embedding-disabled, 404 for removed
            return False
        if response.status_code == 429:
            raise ProviderRateLimitError("YouTube oEmbed rate limit exceeded", PROVIDER)
        raise ProviderError(f"YouTube oEmbed error (HTTP {response.status_code})", PROVIDER)
