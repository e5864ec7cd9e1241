"""
Tests for LocalTranscodeAdapter.

ffmpeg is replaced by small shell scripts so the adapter's process
handling, output verification and cleanup run for real.
"""

import asyncio
import os
import stat

import pytest

from macicast.config import Settings
from macicast.jobs.models import Job, Item
from macicast.sources.base import ArtifactStatus
from macicast.sources.errors import SourceUnavailableError, TranscodeFailure
from macicast.sources.transcode import LocalTranscodeAdapter


FAKE_FFMPEG_OK = """#!/bin/sh
prev=""
for arg in "$@"; do
  prev="$arg"
done
dir=$(dirname "$prev")
printf '#EXTM3U\\n#EXTINF:4.0,\\nseg_0000.ts\\n#EXT-X-ENDLIST\\n' > "$prev"
printf 'ts' > "$dir/seg_0000.ts"
printf 'ts' > "$dir/seg_0001.ts"
"""

FAKE_FFMPEG_FAIL = """#!/bin/sh
prev=""
for arg in "$@"; do
  prev="$arg"
done
printf 'partial' > "$(dirname "$prev")/seg_0000.ts"
echo "Invalid data found when processing input" >&2
exit 1
"""

FAKE_FFMPEG_NO_SEGMENTS = """#!/bin/sh
prev=""
for arg in "$@"; do
  prev="$arg"
done
printf '#EXTM3U\\n' > "$prev"
"""


FAKE_FFMPEG_SLOW = """#!/bin/sh
prev=""
for arg in "$@"; do
  prev="$arg"
done
printf 'partial' > "$(dirname "$prev")/seg_0000.ts"
echo $$ > "{pid_file}"
exec sleep 30
"""


def _script(tmp_path, body: str) -> str:
    path = tmp_path / "ffmpeg"
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "v1.mp4"
    path.write_bytes(b"not really a video")
    return path


def _settings(tmp_path, ffmpeg_path: str, **kwargs) -> Settings:
    return Settings(
        static_dir=str(tmp_path / "public"),
        public_base_url="http://localhost:3000/",
        ffmpeg_path=ffmpeg_path,
        **kwargs,
    )


def _job(source_ref: str) -> Job:
    return Job(name="Test", items=[Item(name="v1", source_ref=source_ref)])


class TestLocalTranscodeAdapter:
    def test_success_produces_manifest_url(self, tmp_path, source):
        adapter = LocalTranscodeAdapter(_settings(tmp_path, _script(tmp_path, FAKE_FFMPEG_OK)))
        job = _job(str(source))

        artifact = asyncio.run(adapter.produce_artifact(job, job.items[0], 0))

        assert artifact.status == ArtifactStatus.READY
        assert artifact.playback_url == f"http://localhost:3000/streams/{job.id}/0/index.m3u8"
        out_dir = tmp_path / "public" / "streams" / job.id / "0"
        assert (out_dir / "index.m3u8").is_file()
        assert artifact.document_path == str(out_dir / "index.m3u8")

    def test_nonzero_exit_raises_and_removes_partial_output(self, tmp_path, source):
        adapter = LocalTranscodeAdapter(_settings(tmp_path, _script(tmp_path, FAKE_FFMPEG_FAIL)))
        job = _job(str(source))

        with pytest.raises(TranscodeFailure) as exc_info:
            asyncio.run(adapter.produce_artifact(job, job.items[0], 0))

        assert exc_info.value.exit_code == 1
        assert "Invalid data found" in exc_info.value.stderr
        assert not (tmp_path / "public" / "streams" / job.id / "0").exists()

    def test_missing_segments_is_a_failure(self, tmp_path, source):
        adapter = LocalTranscodeAdapter(_settings(tmp_path, _script(tmp_path, FAKE_FFMPEG_NO_SEGMENTS)))
        job = _job(str(source))

        with pytest.raises(TranscodeFailure) as exc_info:
            asyncio.run(adapter.produce_artifact(job, job.items[0], 0))

        assert "segments" in str(exc_info.value)
        assert not (tmp_path / "public" / "streams" / job.id / "0").exists()

    def test_missing_source_file(self, tmp_path):
        adapter = LocalTranscodeAdapter(_settings(tmp_path, _script(tmp_path, FAKE_FFMPEG_OK)))
        job = _job(str(tmp_path / "nope.mp4"))

        with pytest.raises(SourceUnavailableError):
            asyncio.run(adapter.produce_artifact(job, job.items[0], 0))

    def test_missing_binary(self, tmp_path, source):
        adapter = LocalTranscodeAdapter(_settings(tmp_path, str(tmp_path / "no-ffmpeg")))
        job = _job(str(source))

        assert adapter.available is False
        with pytest.raises(TranscodeFailure) as exc_info:
            asyncio.run(adapter.produce_artifact(job, job.items[0], 0))
        assert "not installed" in str(exc_info.value)


class TestBuildCommand:
    def test_full_playlist_by_default(self, tmp_path):
        adapter = LocalTranscodeAdapter(_settings(tmp_path, "/bin/true", hls_segment_seconds=6))
        cmd = adapter.build_command("/bin/ffmpeg", "/in.mp4", tmp_path)

        assert cmd[:4] == ["/bin/ffmpeg", "-y", "-i", "/in.mp4"]
        assert cmd[cmd.index("-hls_time") + 1] == "6"
        assert cmd[cmd.index("-hls_list_size") + 1] == "0"
        assert "-hls_flags" not in cmd
        assert cmd[-1] == os.path.join(str(tmp_path), "index.m3u8")
        assert cmd[cmd.index("-hls_segment_filename") + 1].endswith("seg_%04d.ts")

    def test_sliding_window(self, tmp_path):
        adapter = LocalTranscodeAdapter(_settings(tmp_path, "/bin/true", hls_list_size=5))
        cmd = adapter.build_command("/bin/ffmpeg", "/in.mp4", tmp_path)

        assert cmd[cmd.index("-hls_list_size") + 1] == "5"
        assert "delete_segments" in cmd[cmd.index("-hls_flags") + 1]


class TestCancellation:
    def test_cancel_terminates_ffmpeg_and_removes_output(self, tmp_path, source):
        pid_file = tmp_path / "ffmpeg.pid"
        script = _script(tmp_path, FAKE_FFMPEG_SLOW.format(pid_file=pid_file))
        adapter = LocalTranscodeAdapter(_settings(tmp_path, script))
        job = _job(str(source))

        async def scenario() -> int:
            task = asyncio.create_task(adapter.produce_artifact(job, job.items[0], 0))
            for _ in range(250):
                if pid_file.is_file() and pid_file.read_text().strip():
                    break
                await asyncio.sleep(0.02)
            pid = int(pid_file.read_text().strip())

            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return pid

        pid = asyncio.run(scenario())

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)
        assert not (tmp_path / "public" / "streams" / job.id / "0").exists()
