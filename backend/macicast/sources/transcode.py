"""
Local transcode adapter.

Converts an uploaded file into an HLS playlist (index.m3u8 + seg_NNNN.ts)
under the served streams directory, one subdirectory per item.

Design rules:
- One ffmpeg subprocess per item, awaited without blocking the loop
- Capture stderr for the failure reason
- Non-zero exit = TranscodeFailure
- READY only when the manifest and at least one segment exist
- Partial output is removed on failure
- A cancelled transcode terminates its ffmpeg process
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from .base import SourceAdapter, AdapterType, Artifact, ArtifactStatus
from .errors import SourceUnavailableError, TranscodeFailure

if TYPE_CHECKING:
    from ..config import Settings
    from ..jobs.models import Job, Item

logger = logging.getLogger(__name__)

MANIFEST_NAME = "index.m3u8"
SEGMENT_PATTERN = "seg_%04d.ts"

# Keep the tail of ffmpeg's stderr; it is chatty
STDERR_TAIL_CHARS = 4000

# Seconds to wait after SIGTERM before SIGKILL
TERMINATE_TIMEOUT = 5


class LocalTranscodeAdapter(SourceAdapter):
    """
    FFmpeg-based HLS packager.
    """

    def __init__(self, settings: "Settings"):
        self._settings = settings
        self._ffmpeg_path: Optional[str] = settings.ffmpeg_path

    @property
    def adapter_type(self) -> AdapterType:
        return AdapterType.LOCAL

    @property
    def name(self) -> str:
        return "FFmpeg HLS"

    @property
    def available(self) -> bool:
        """Check if ffmpeg is installed and accessible."""
        return self._find_ffmpeg() is not None

    def _find_ffmpeg(self) -> Optional[str]:
        """Find ffmpeg binary path."""
        if self._ffmpeg_path:
            if os.path.isfile(self._ffmpeg_path) and os.access(self._ffmpeg_path, os.X_OK):
                return self._ffmpeg_path
            return None

        ffmpeg_path = shutil.which("ffmpeg")
        if ffmpeg_path:
            self._ffmpeg_path = ffmpeg_path
            return ffmpeg_path

        for path in ("/usr/local/bin/ffmpeg", "/usr/bin/ffmpeg", "/opt/homebrew/bin/ffmpeg"):
            if os.path.isfile(path) and os.access(path, os.X_OK):
                self._ffmpeg_path = path
                return path

        return None

    def output_dir(self, job_id: str, index: int) -> Path:
        return self._settings.streams_dir / job_id / str(index)

    def playback_url(self, job_id: str, index: int) -> str:
        return f"{self._settings.base_url}/streams/{job_id}/{index}/{MANIFEST_NAME}"

    def build_command(self, ffmpeg_path: str, source_path: str, out_dir: Path) -> list[str]:
        """Build ffmpeg arguments for H.264/AAC HLS output."""
        list_size = self._settings.hls_list_size
        cmd = [
            ffmpeg_path,
            "-y",
            "-i", source_path,
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-crf", "23",
            "-c:a", "aac",
            "-b:a", "128k",
            "-f", "hls",
            "-hls_time", str(self._settings.hls_segment_seconds),
            "-hls_list_size", str(list_size),
        ]
        if list_size > 0:
            # Sliding window: ffmpeg rewrites the manifest as segments roll off
            cmd.extend(["-hls_flags", "delete_segments+temp_file"])
        cmd.extend([
            "-hls_segment_filename", str(out_dir / SEGMENT_PATTERN),
            str(out_dir / MANIFEST_NAME),
        ])
        return cmd

    async def produce_artifact(self, job: "Job", item: "Item", index: int) -> Artifact:
        source_path = Path(item.source_ref)
        if not source_path.is_file():
            raise SourceUnavailableError(item.source_ref, "file does not exist")

        ffmpeg_path = self._find_ffmpeg()
        if not ffmpeg_path:
            raise TranscodeFailure(item.source_ref, "ffmpeg is not installed or not in PATH")

        out_dir = self.output_dir(job.id, index)
        out_dir.mkdir(parents=True, exist_ok=True)

        cmd = self.build_command(ffmpeg_path, str(source_path), out_dir)
        logger.info(f"[FFmpeg] Executing: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            logger.info(f"[FFmpeg] Started PID {process.pid} for job {job.id} item {index}")
        except OSError as e:
            shutil.rmtree(out_dir, ignore_errors=True)
            raise TranscodeFailure(item.source_ref, f"could not start ffmpeg: {e}") from e

        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            await self._terminate(process)
            shutil.rmtree(out_dir, ignore_errors=True)
            raise

        exit_code = process.returncode
        logger.info(f"[FFmpeg] PID {process.pid} exited with code {exit_code}")

        if exit_code != 0:
            stderr_text = stderr.decode("utf-8", errors="ignore").strip()[-STDERR_TAIL_CHARS:]
            shutil.rmtree(out_dir, ignore_errors=True)
            logger.error(f"[FFmpeg] Failed: {stderr_text or exit_code}")
            raise TranscodeFailure(
                item.source_ref,
                stderr_text or "ffmpeg exited with an error",
                exit_code=exit_code,
                stderr=stderr_text,
            )

        manifest = out_dir / MANIFEST_NAME
        segments = list(out_dir.glob("seg_*.ts"))
        if not manifest.is_file() or not segments:
            shutil.rmtree(out_dir, ignore_errors=True)
            raise TranscodeFailure(item.source_ref, "manifest or segments were not created")

        logger.info(f"[FFmpeg] Completed: {manifest} ({len(segments)} segments)")
        return Artifact(
            status=ArtifactStatus.READY,
            playback_url=self.playback_url(job.id, index),
            document_path=str(manifest),
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """
        Stop a running ffmpeg process.

        Uses SIGTERM first, escalates to SIGKILL after timeout.
        """
        if process.returncode is not None:
            return
        logger.info(f"[FFmpeg] Sending SIGTERM to PID {process.pid}")
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=TERMINATE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(f"[FFmpeg] PID {process.pid} did not terminate, sending SIGKILL")
                process.kill()
                await process.wait()
        except ProcessLookupError:
            pass  # Process already dead

    async def check(self) -> dict:
        return {
            "provider": self.adapter_type.value,
            "ok": self.available,
            "ffmpeg": self._find_ffmpeg(),
        }
