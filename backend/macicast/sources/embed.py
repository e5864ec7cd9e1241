"""
Embed/redirect adapter for YouTube items.

Nothing is downloaded. For each video id the adapter writes small HTML
documents under the job's stream directory:

- <id>_player.html    iframe embed of the video
- <id>_redirect.html  meta-refresh to the player (the item's playback URL)
- <id>_error.html     "unavailable" page with a fallback playlist

A missing video is an expected outcome and comes back as an ERROR
artifact. Auth and rate-limit failures still raise.
"""

import html
import logging
from typing import TYPE_CHECKING

from .base import SourceAdapter, AdapterType, Artifact, ArtifactStatus, write_document
from .youtube import YouTubeClient

if TYPE_CHECKING:
    from ..config import Settings
    from ..jobs.models import Job, Item

logger = logging.getLogger(__name__)

_IFRAME_ALLOW = "accelerometer; autoplay; clipboard-write; encrypted-media; gyroscope; picture-in-picture"

PLAYER_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{title}</title>
  <style>
    body, html {{ margin: 0; padding: 0; width: 100%; height: 100%; overflow: hidden; background: #000; }}
    iframe {{ width: 100%; height: 100%; border: none; }}
  </style>
</head>
<body>
  <iframe src="https://www.youtube.com/embed/{video_id}?autoplay=1&amp;mute=0&amp;controls=1&amp;rel=0"
    allow="{allow}" allowfullscreen></iframe>
</body>
</html>
"""

REDIRECT_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta http-equiv="refresh" content="0;url={target}">
</head>
<body>
  <p>Redirecting to <a href="{target}">player</a>...</p>
</body>
</html>
"""

ERROR_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Video Unavailable</title>
  <style>
    body, html {{ margin: 0; padding: 0; width: 100%; height: 100%; overflow: hidden; background: #000; color: #fff; font-family: Arial, sans-serif; }}
    .container {{ display: flex; flex-direction: column; align-items: center; justify-content: center; height: 100%; }}
    iframe {{ width: 100%; height: 50%; border: none; }}
  </style>
</head>
<body>
  <div class="container">
    <h1>Video Unavailable</h1>
    <p>{message}</p>
    <iframe src="https://www.youtube.com/embed/videoseries?list={playlist}&amp;autoplay=1&amp;mute=0&amp;controls=1&amp;rel=0"
      allow="{allow}" allowfullscreen></iframe>
  </div>
</body>
</html>
"""


class EmbedRedirectAdapter(SourceAdapter):
    """Writes player/redirect documents for YouTube video ids."""

    def __init__(self, settings: "Settings", youtube: YouTubeClient):
        self._settings = settings
        self._youtube = youtube

    @property
    def adapter_type(self) -> AdapterType:
        return AdapterType.EMBED

    @property
    def name(self) -> str:
        return "YouTube Embed"

    def document_url(self, job_id: str, filename: str) -> str:
        return f"{self._settings.base_url}/streams/{job_id}/{filename}"

    async def produce_artifact(self, job: "Job", item: "Item", index: int) -> Artifact:
        video_id = item.source_ref
        out_dir = self._settings.streams_dir / job.id

        if not await self._youtube.video_exists(video_id):
            logger.warning(f"[YouTube] Video {video_id} is unavailable, writing error page")
            error_name = f"{video_id}_error.html"
            error_path = out_dir / error_name
            write_document(error_path, ERROR_TEMPLATE.format(
                message="The requested video is no longer available on YouTube. "
                        "Showing an alternative playlist instead.",
                playlist=html.escape(self._settings.youtube_fallback_playlist, quote=True),
                allow=_IFRAME_ALLOW,
            ))
            return Artifact(
                status=ArtifactStatus.ERROR,
                playback_url=self.document_url(job.id, error_name),
                document_path=str(error_path),
                error=f"YouTube video {video_id} is not available",
            )

        player_name = f"{video_id}_player.html"
        redirect_name = f"{video_id}_redirect.html"
        escaped_id = html.escape(video_id, quote=True)

        # Player first: the redirect must never point at a missing file
        write_document(out_dir / player_name, PLAYER_TEMPLATE.format(
            title=html.escape(item.name),
            video_id=escaped_id,
            allow=_IFRAME_ALLOW,
        ))
        redirect_path = out_dir / redirect_name
        write_document(redirect_path, REDIRECT_TEMPLATE.format(
            target=html.escape(player_name, quote=True),
        ))

        logger.info(f"[YouTube] Wrote embed documents for {video_id} (job {job.id} item {index})")
        return Artifact(
            status=ArtifactStatus.READY,
            playback_url=self.document_url(job.id, redirect_name),
            thumbnail=item.thumbnail,
            external_playback_id=video_id,
            document_path=str(redirect_path),
        )

    async def check(self) -> dict:
        return {
            "provider": self.adapter_type.value,
            "ok": True,
            "api_key": self._youtube.has_api_key,
        }
