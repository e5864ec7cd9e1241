"""
Tests for the ingestion Orchestrator.

Adapters are replaced by an in-memory fake so each path (upload, channel
pass, stop race, re-entry, hosted asset events) is exercised without
ffmpeg or network access.
"""

import asyncio
from typing import Dict, Optional

import pytest

from macicast.jobs.models import Job, Item, ItemStatus, JobKind, JobStatus
from macicast.jobs.store import JobStore
from macicast.persistence.manager import PersistenceManager
from macicast.pipeline.orchestrator import Orchestrator
from macicast.sources.base import SourceAdapter, AdapterType, Artifact, ArtifactStatus
from macicast.sources.errors import (
    ProviderAuthError,
    ProviderRateLimitError,
    SourceUnavailableError,
    TranscodeFailure,
)


class FakeAdapter(SourceAdapter):
    """Returns scripted outcomes per source_ref and records every call."""

    def __init__(self, outcomes: Optional[Dict] = None, gate: Optional[asyncio.Event] = None):
        self.outcomes = outcomes or {}
        self.gate = gate
        self.calls = []
        self.called = asyncio.Event()

    @property
    def adapter_type(self) -> AdapterType:
        return AdapterType.PASSTHROUGH

    @property
    def name(self) -> str:
        return "Fake"

    async def produce_artifact(self, job, item, index):
        self.calls.append(item.source_ref)
        self.called.set()
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        outcome = self.outcomes.get(item.source_ref)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        return Artifact(status=ArtifactStatus.READY, playback_url=f"http://play/{job.id}/{index}")


@pytest.fixture
def store(tmp_path):
    return JobStore(PersistenceManager(db_path=str(tmp_path / "jobs.db")))


def _create(store: JobStore, refs, kind=JobKind.UPLOAD) -> str:
    job = Job(
        name="Test",
        kind=kind,
        items=[Item(name=f"item{i}", source_ref=ref) for i, ref in enumerate(refs)],
    )
    return store.create(job)


class TestUploadPath:
    def test_success_activates_job(self, store):
        job_id = _create(store, ["/tmp/v1.mp4", "/tmp/v2.mp4"])
        adapter = FakeAdapter()

        status = asyncio.run(Orchestrator(store, adapter).run(job_id))

        job = store.get(job_id)
        assert status == JobStatus.ACTIVE
        assert job.status == JobStatus.ACTIVE
        assert job.playback_url == f"http://play/{job_id}/0"
        assert job.items[0].status == ItemStatus.READY
        assert job.items[1].status == ItemStatus.QUEUED
        assert job.provider_metadata.provider == "passthrough"
        # One item per run on the upload path
        assert adapter.calls == ["/tmp/v1.mp4"]

    def test_adapter_failure_marks_item_and_job(self, store):
        job_id = _create(store, ["/tmp/missing.mp4"])
        adapter = FakeAdapter({"/tmp/missing.mp4": SourceUnavailableError("/tmp/missing.mp4", "gone")})

        status = asyncio.run(Orchestrator(store, adapter).run(job_id))

        job = store.get(job_id)
        assert status == JobStatus.ERROR
        assert job.status == JobStatus.ERROR
        assert "gone" in job.error
        assert job.items[0].status == ItemStatus.ERROR
        assert job.items[0].error == job.error
        assert job.current_item_index == 0
        assert job.playback_url is None

    def test_unexpected_exception_is_contained(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])
        adapter = FakeAdapter({"/tmp/v1.mp4": RuntimeError("disk on fire")})

        status = asyncio.run(Orchestrator(store, adapter).run(job_id))

        assert status == JobStatus.ERROR
        assert store.get(job_id).error == "disk on fire"

    def test_error_artifact_fails_job(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])
        adapter = FakeAdapter({"/tmp/v1.mp4": Artifact(status=ArtifactStatus.ERROR, error="rejected")})

        asyncio.run(Orchestrator(store, adapter).run(job_id))

        job = store.get(job_id)
        assert job.status == JobStatus.ERROR
        assert job.error == "rejected"

    def test_incomplete_artifact_becomes_error_not_active(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])
        adapter = FakeAdapter({"/tmp/v1.mp4": Artifact(status=ArtifactStatus.READY)})

        status = asyncio.run(Orchestrator(store, adapter).run(job_id))

        job = store.get(job_id)
        assert status == JobStatus.ERROR
        assert job.status == JobStatus.ERROR
        assert "playback_url" in job.error
        assert job.items[0].status == ItemStatus.ERROR

    def test_promoted_artifact_adds_secondary_stream(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])
        artifact = Artifact(
            status=ArtifactStatus.READY,
            playback_url="https://stream.mux.com/p1.m3u8",
            thumbnail="https://image.mux.com/p1/thumbnail.jpg",
            external_asset_id="a1",
            external_playback_id="p1",
            promote_to_secondary=True,
        )
        asyncio.run(Orchestrator(store, FakeAdapter({"/tmp/v1.mp4": artifact})).run(job_id))

        job = store.get(job_id)
        assert len(job.secondary_streams) == 1
        entry = job.secondary_streams[0]
        assert (entry.id, entry.name, entry.url, entry.type) == (
            job_id, "Test", "https://stream.mux.com/p1.m3u8", "live"
        )
        assert job.provider_metadata.asset_id == "a1"
        assert job.provider_metadata.playback_id == "p1"
        assert job.items[0].external_playback_id == "p1"

    def test_unknown_job_returns_none(self, store):
        assert asyncio.run(Orchestrator(store, FakeAdapter()).run("missing")) is None


class TestReentryAndStop:
    def test_concurrent_runs_invoke_adapter_once(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])
        adapter = FakeAdapter()
        orchestrator = Orchestrator(store, adapter)

        async def scenario():
            return await asyncio.gather(orchestrator.run(job_id), orchestrator.run(job_id))

        statuses = asyncio.run(scenario())

        assert adapter.calls == ["/tmp/v1.mp4"]
        assert JobStatus.ACTIVE in statuses
        assert store.get(job_id).status == JobStatus.ACTIVE

    def test_reentry_observes_single_claim(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])

        async def scenario():
            adapter = FakeAdapter(gate=asyncio.Event())
            orchestrator = Orchestrator(store, adapter)
            observed = [store.get(job_id).status]

            first = asyncio.create_task(orchestrator.run(job_id))
            await adapter.called.wait()
            observed.append(store.get(job_id).status)

            second = await orchestrator.run(job_id)
            observed.append(store.get(job_id).status)

            adapter.gate.set()
            await first
            observed.append(store.get(job_id).status)
            return adapter, second, observed

        adapter, second, observed = asyncio.run(scenario())

        assert adapter.calls == ["/tmp/v1.mp4"]
        assert second == JobStatus.PROCESSING
        assert observed == [JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.PROCESSING, JobStatus.ACTIVE]
        claims = [
            (before, after) for before, after in zip(observed, observed[1:])
            if (before, after) == (JobStatus.QUEUED, JobStatus.PROCESSING)
        ]
        assert len(claims) == 1

    def test_run_after_settle_is_noop(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])
        adapter = FakeAdapter()
        orchestrator = Orchestrator(store, adapter)
        asyncio.run(orchestrator.run(job_id))

        assert asyncio.run(orchestrator.run(job_id)) == JobStatus.ACTIVE
        assert len(adapter.calls) == 1

    def test_stopped_job_is_not_started(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])
        store.stop(job_id)
        adapter = FakeAdapter()

        assert asyncio.run(Orchestrator(store, adapter).run(job_id)) == JobStatus.STOPPED
        assert adapter.calls == []

    def test_stop_during_adapter_call_is_not_resurrected(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])

        async def scenario():
            adapter = FakeAdapter(gate=asyncio.Event())
            task = asyncio.create_task(Orchestrator(store, adapter).run(job_id))
            await adapter.called.wait()
            store.stop(job_id)
            adapter.gate.set()
            return await task

        status = asyncio.run(scenario())

        job = store.get(job_id)
        assert status == JobStatus.STOPPED
        assert job.status == JobStatus.STOPPED
        assert job.playback_url is None

    def test_stop_during_failing_call_stays_stopped(self, store):
        job_id = _create(store, ["/tmp/v1.mp4"])

        async def scenario():
            adapter = FakeAdapter({"/tmp/v1.mp4": TranscodeFailure("/tmp/v1.mp4", "bad")}, gate=asyncio.Event())
            task = asyncio.create_task(Orchestrator(store, adapter).run(job_id))
            await adapter.called.wait()
            store.stop(job_id)
            adapter.gate.set()
            return await task

        assert asyncio.run(scenario()) == JobStatus.STOPPED
        assert store.get(job_id).error is None


class TestSourceCleanup:
    def test_ready_item_removes_uploaded_source(self, store, tmp_path):
        upload_dir = tmp_path / "temp"
        upload_dir.mkdir()
        source = upload_dir / "123-v1.mp4"
        source.write_bytes(b"video")
        job_id = _create(store, [str(source)])

        asyncio.run(Orchestrator(store, FakeAdapter(), cleanup_dir=str(upload_dir)).run(job_id))

        assert store.get(job_id).status == JobStatus.ACTIVE
        assert not source.exists()

    def test_failure_keeps_source(self, store, tmp_path):
        upload_dir = tmp_path / "temp"
        upload_dir.mkdir()
        source = upload_dir / "123-v1.mp4"
        source.write_bytes(b"video")
        job_id = _create(store, [str(source)])
        adapter = FakeAdapter({str(source): TranscodeFailure(str(source), "bad", exit_code=1)})

        asyncio.run(Orchestrator(store, adapter, cleanup_dir=str(upload_dir)).run(job_id))

        assert store.get(job_id).status == JobStatus.ERROR
        assert source.exists()

    def test_sources_outside_upload_dir_are_kept(self, store, tmp_path):
        upload_dir = tmp_path / "temp"
        upload_dir.mkdir()
        source = tmp_path / "library.mp4"
        source.write_bytes(b"video")
        job_id = _create(store, [str(source)])

        asyncio.run(Orchestrator(store, FakeAdapter(), cleanup_dir=str(upload_dir)).run(job_id))

        assert source.exists()

    def test_cleanup_disabled(self, store, tmp_path):
        source = tmp_path / "v1.mp4"
        source.write_bytes(b"video")
        job_id = _create(store, [str(source)])

        asyncio.run(Orchestrator(store, FakeAdapter()).run(job_id))

        assert source.exists()


class TestHostedAssetEvents:
    def _processing_job(self, store, tmp_path):
        upload_dir = tmp_path / "temp"
        upload_dir.mkdir()
        source = upload_dir / "123-v1.mp4"
        source.write_bytes(b"video")
        job_id = _create(store, [str(source)])
        artifact = Artifact(
            status=ArtifactStatus.PROCESSING,
            playback_url="https://stream.mux.com/p1.m3u8",
            external_asset_id="asset-1",
            external_playback_id="p1",
            promote_to_secondary=True,
        )
        orchestrator = Orchestrator(store, FakeAdapter({str(source): artifact}), cleanup_dir=str(upload_dir))
        asyncio.run(orchestrator.run(job_id))
        return orchestrator, job_id, source

    def test_processing_artifact_activates_but_defers_cleanup(self, store, tmp_path):
        _, job_id, source = self._processing_job(store, tmp_path)

        job = store.get(job_id)
        assert job.status == JobStatus.ACTIVE
        assert job.items[0].status == ItemStatus.PROCESSING
        assert source.exists()

    def test_ready_event_settles_item_and_cleans_up(self, store, tmp_path):
        orchestrator, job_id, source = self._processing_job(store, tmp_path)

        updated = asyncio.run(orchestrator.handle_asset_event("asset-1", ready=True))

        assert updated.items[0].status == ItemStatus.READY
        assert updated.status == JobStatus.ACTIVE
        assert not source.exists()

    def test_errored_event_fails_current_item(self, store, tmp_path):
        orchestrator, job_id, source = self._processing_job(store, tmp_path)

        asyncio.run(orchestrator.handle_asset_event("asset-1", ready=False, error="invalid input"))

        job = store.get(job_id)
        assert job.items[0].status == ItemStatus.ERROR
        assert job.status == JobStatus.ERROR
        assert job.error == "invalid input"
        assert source.exists()

    def test_events_for_stopped_or_unknown_jobs_are_ignored(self, store, tmp_path):
        orchestrator, job_id, _ = self._processing_job(store, tmp_path)
        store.stop(job_id)

        assert asyncio.run(orchestrator.handle_asset_event("asset-1", ready=True)) is None
        assert asyncio.run(orchestrator.handle_asset_event("unknown", ready=True)) is None
        assert store.get(job_id).items[0].status == ItemStatus.PROCESSING

    def test_duplicate_ready_event_is_noop(self, store, tmp_path):
        orchestrator, job_id, _ = self._processing_job(store, tmp_path)
        asyncio.run(orchestrator.handle_asset_event("asset-1", ready=True))

        assert asyncio.run(orchestrator.handle_asset_event("asset-1", ready=True)) is None


class TestChannelPass:
    def test_partial_failures_still_activate(self, store):
        job_id = _create(store, ["ok1", "gone", "missing", "ok2"], kind=JobKind.YOUTUBE)
        adapter = FakeAdapter({
            "gone": Artifact(
                status=ArtifactStatus.ERROR,
                playback_url="http://docs/gone_error.html",
                error="YouTube video gone is not available",
            ),
            "missing": SourceUnavailableError("missing"),
        })

        status = asyncio.run(Orchestrator(store, adapter).run(job_id))

        job = store.get(job_id)
        assert status == JobStatus.ACTIVE
        assert adapter.calls == ["ok1", "gone", "missing", "ok2"]
        assert [item.status for item in job.items] == [
            ItemStatus.READY, ItemStatus.ERROR, ItemStatus.ERROR, ItemStatus.READY,
        ]
        assert job.items[1].playback_url == "http://docs/gone_error.html"
        assert job.current_item_index == 0
        assert job.playback_url == job.items[0].playback_url

    def test_first_ready_item_becomes_current(self, store):
        job_id = _create(store, ["gone", "ok"], kind=JobKind.YOUTUBE)
        adapter = FakeAdapter({"gone": ProviderRateLimitError("quota", "youtube")})

        asyncio.run(Orchestrator(store, adapter).run(job_id))

        job = store.get(job_id)
        assert job.status == JobStatus.ACTIVE
        assert job.current_item_index == 1

    def test_all_items_failing_errors_job(self, store):
        job_id = _create(store, ["a", "b"], kind=JobKind.YOUTUBE)
        adapter = FakeAdapter({"a": SourceUnavailableError("a"), "b": RuntimeError("boom")})

        status = asyncio.run(Orchestrator(store, adapter).run(job_id))

        job = store.get(job_id)
        assert status == JobStatus.ERROR
        assert job.error
        assert all(item.status == ItemStatus.ERROR for item in job.items)

    def test_auth_error_aborts_pass(self, store):
        job_id = _create(store, ["a", "b", "c"], kind=JobKind.YOUTUBE)
        adapter = FakeAdapter({"b": ProviderAuthError("key rejected", "youtube")})

        status = asyncio.run(Orchestrator(store, adapter).run(job_id))

        job = store.get(job_id)
        assert status == JobStatus.ERROR
        assert job.error == "key rejected"
        assert adapter.calls == ["a", "b"]
        assert job.items[2].status == ItemStatus.QUEUED

    def test_stop_mid_pass_ends_iteration(self, store):
        job_id = _create(store, ["a", "b", "c"], kind=JobKind.YOUTUBE)

        async def scenario():
            adapter = FakeAdapter(gate=asyncio.Event())
            task = asyncio.create_task(Orchestrator(store, adapter).run(job_id))
            await adapter.called.wait()
            store.stop(job_id)
            adapter.gate.set()
            status = await task
            return status, adapter

        status, adapter = asyncio.run(scenario())

        assert status == JobStatus.STOPPED
        assert adapter.calls == ["a"]
        assert store.get(job_id).status == JobStatus.STOPPED
