"""
Runtime configuration.

Settings are read from environment variables once at startup and passed
explicitly to every component. Nothing reads os.environ after that.
"""

import os
from pathlib import Path
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict


DEFAULT_FALLBACK_PLAYLIST = "PLRz-wq-Mubhl_-iHBPHB91LCQWFJMVeOR"

ProviderName = Literal["local", "mux", "passthrough"]


def _env_bool(name: str, default: bool) -> bool:
    return os.environ.get(name, str(default)).lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """
    Backend settings.

    Paths default to directories under the current working directory.
    """

    model_config = ConfigDict(extra="forbid")

    # Storage
    db_path: str = "./macicast.db"
    static_dir: str = "./public"
    upload_dir: str = "./temp"
    max_upload_bytes: int = 100 * 1024 * 1024

    # Public base URL of this backend (generated artifact URLs hang off it)
    public_base_url: str = "http://localhost:3000"

    # Provider selection for uploaded videos
    stream_provider: ProviderName = "passthrough"

    # Mux
    mux_token_id: Optional[str] = None
    mux_token_secret: Optional[str] = None
    mux_api_base: str = "https://api.mux.com"
    mux_poll_interval: float = 2.0
    mux_poll_timeout: float = 60.0

    # YouTube
    youtube_api_key: Optional[str] = None
    youtube_api_base: str = "https://www.googleapis.com/youtube/v3"
    youtube_fallback_playlist: str = DEFAULT_FALLBACK_PLAYLIST

    # Local transcoding
    ffmpeg_path: Optional[str] = None
    hls_segment_seconds: int = 4
    hls_list_size: int = 0  # 0 keeps every segment; N keeps a sliding window

    cleanup_sources: bool = True
    log_level: str = "INFO"

    @property
    def streams_dir(self) -> Path:
        return Path(self.static_dir) / "streams"

    @property
    def base_url(self) -> str:
        return self.public_base_url.rstrip("/")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        env = os.environ
        defaults = cls()
        return cls(
            db_path=env.get("MACICAST_DB_PATH", defaults.db_path),
            static_dir=env.get("MACICAST_STATIC_DIR", defaults.static_dir),
            upload_dir=env.get("MACICAST_UPLOAD_DIR", defaults.upload_dir),
            max_upload_bytes=int(env.get("MACICAST_MAX_UPLOAD_BYTES", defaults.max_upload_bytes)),
            public_base_url=env.get("BACKEND_URL", defaults.public_base_url),
            stream_provider=env.get("STREAM_PROVIDER", defaults.stream_provider).lower(),
            mux_token_id=env.get("MUX_TOKEN_ID") or None,
            mux_token_secret=env.get("MUX_TOKEN_SECRET") or None,
            mux_api_base=env.get("MUX_API_BASE", defaults.mux_api_base),
            mux_poll_interval=float(env.get("MUX_POLL_INTERVAL", defaults.mux_poll_interval)),
            mux_poll_timeout=float(env.get("MUX_POLL_TIMEOUT", defaults.mux_poll_timeout)),
            youtube_api_key=env.get("YOUTUBE_API_KEY") or None,
            youtube_api_base=env.get("YOUTUBE_API_BASE", defaults.youtube_api_base),
            youtube_fallback_playlist=env.get(
                "YOUTUBE_FALLBACK_PLAYLIST", defaults.youtube_fallback_playlist
            ),
            ffmpeg_path=env.get("FFMPEG_PATH") or None,
            hls_segment_seconds=int(env.get("HLS_SEGMENT_SECONDS", defaults.hls_segment_seconds)),
            hls_list_size=int(env.get("HLS_LIST_SIZE", defaults.hls_list_size)),
            cleanup_sources=_env_bool("MACICAST_CLEANUP_SOURCES", defaults.cleanup_sources),
            log_level=env.get("MACICAST_LOG_LEVEL", defaults.log_level).upper(),
        )

    def ensure_directories(self) -> None:
        """Create the static, streams and upload directories."""
        for path in (Path(self.static_dir), self.streams_dir, Path(self.upload_dir)):
            path.mkdir(parents=True, exist_ok=True)
