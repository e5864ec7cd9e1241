"""
Ingestion orchestrator.

Drives one job through QUEUED → PROCESSING → ACTIVE | ERROR using an
injected SourceAdapter.

Two paths, selected by Job.kind:
- UPLOAD: one adapter call for the current item per run. Further items
  are reached by an explicit advance, never automatically.
- YOUTUBE: every item in one pass; per-item failures are tolerated.

Rules:
- Re-entry is a no-op: only the run that claims QUEUED → PROCESSING
  invokes the adapter
- No store lock is held across an adapter await
- Every write after an await is skipped if the job was STOPPED meanwhile
- No exception leaves run(); failures land in Job.error
- Uploaded source files are removed only after a READY item, never on failure
"""

import logging
import os
from datetime import datetime
from typing import Optional

from ..jobs.models import Job, Item, JobKind, JobStatus, ItemStatus, ProviderMetadata, SecondaryStream
from ..jobs.state import validate_job_transition, validate_item_transition
from ..jobs.store import JobStore
from ..jobs.errors import JobError
from ..persistence.errors import PersistenceError
from ..sources.base import SourceAdapter, Artifact, ArtifactStatus
from ..sources.errors import ProviderError, ProviderAuthError

logger = logging.getLogger(__name__)

_ARTIFACT_TO_ITEM = {
    ArtifactStatus.READY: ItemStatus.READY,
    ArtifactStatus.PROCESSING: ItemStatus.PROCESSING,
    ArtifactStatus.ERROR: ItemStatus.ERROR,
}


def _error_text(exc: Exception) -> str:
    if isinstance(exc, ProviderError):
        return exc.message
    return str(exc) or exc.__class__.__name__


def _apply_artifact(item: Item, artifact: Artifact) -> None:
    """Copy adapter output onto an item and move it to the matching status."""
    target = _ARTIFACT_TO_ITEM[artifact.status]
    validate_item_transition(item.status, target)
    item.status = target
    item.playback_url = artifact.playback_url
    item.thumbnail = artifact.thumbnail or item.thumbnail
    item.external_asset_id = artifact.external_asset_id or item.external_asset_id
    item.external_playback_id = artifact.external_playback_id or item.external_playback_id
    item.document_path = artifact.document_path
    item.error = artifact.error if target == ItemStatus.ERROR else None


def _fail_item(item: Item, reason: str) -> None:
    validate_item_transition(item.status, ItemStatus.ERROR)
    item.status = ItemStatus.ERROR
    item.error = reason


def _fail_job(job: Job, reason: str) -> None:
    validate_job_transition(job.status, JobStatus.ERROR)
    job.status = JobStatus.ERROR
    job.error = reason
    job.completed_at = datetime.now()


class Orchestrator:
    """
    Runs ingestion for jobs using one adapter.

    Args:
        store: Job record store
        adapter: Source adapter used for every item
        cleanup_dir: Upload directory. Source files inside it are removed
            once their item is READY; None disables cleanup.
    """

    def __init__(
        self,
        store: JobStore,
        adapter: SourceAdapter,
        cleanup_dir: Optional[str] = None,
    ):
        self._store = store
        self._adapter = adapter
        self._cleanup_dir = os.path.realpath(cleanup_dir) if cleanup_dir else None

    @property
    def adapter(self) -> SourceAdapter:
        return self._adapter

    async def run(self, job_id: str) -> Optional[JobStatus]:
        """
        Orchestrate one job.

        Safe to call repeatedly and concurrently for the same job.

        Returns:
            The job status after this call, or None if the job does not exist
        """
        try:
            return await self._run(job_id)
        except Exception as e:
            logger.exception(f"[LIFECYCLE] Orchestration crashed for job {job_id}: {e}")
            return self._abort(job_id, f"Internal error: {_error_text(e)}")

    async def _run(self, job_id: str) -> Optional[JobStatus]:
        job = self._store.find(job_id)
        if job is None:
            logger.warning(f"[LIFECYCLE] run() called for unknown job {job_id}")
            return None
        if job.status == JobStatus.STOPPED:
            logger.info(f"[LIFECYCLE] Job {job_id} is stopped, nothing to do")
            return JobStatus.STOPPED

        claimed = self._store.claim(job_id)
        if claimed is None:
            # Another run owns the job, or it already settled
            current = self._store.find(job_id)
            status = current.status if current else None
            logger.info(f"[LIFECYCLE] Job {job_id} not claimable (status: {status.value if status else None})")
            return status

        logger.info(
            f"[LIFECYCLE] Job {job_id} transitioned: queued -> processing "
            f"({claimed.kind.value}, adapter: {self._adapter.name})"
        )

        if claimed.current_item is None:
            return self._abort(job_id, "no items")

        if claimed.kind == JobKind.YOUTUBE:
            return await self._run_all_items(claimed)
        return await self._run_current_item(claimed)

    # ------------------------------------------------------------------
    # Upload path
    # ------------------------------------------------------------------

    async def _run_current_item(self, job: Job) -> Optional[JobStatus]:
        index = job.current_item_index

        def start_item(stored: Job) -> None:
            item = stored.items[index]
            validate_item_transition(item.status, ItemStatus.PROCESSING)
            item.status = ItemStatus.PROCESSING

        started = self._store.mutate(job.id, start_item, skip_if_stopped=True)
        if started is None:
            return JobStatus.STOPPED
        item = started.items[index]

        try:
            artifact = await self._adapter.produce_artifact(started, item, index)
        except ProviderError as e:
            logger.error(f"[LIFECYCLE] Job {job.id} item {index} failed: {e}")
            return self._settle_failure(job.id, index, e.message)
        except Exception as e:
            logger.exception(f"[LIFECYCLE] Job {job.id} item {index} crashed: {e}")
            return self._settle_failure(job.id, index, _error_text(e))

        if artifact.status == ArtifactStatus.ERROR:
            return self._settle_failure(job.id, index, artifact.error or "adapter reported an error")

        def activate(stored: Job) -> None:
            _apply_artifact(stored.items[index], artifact)
            validate_job_transition(stored.status, JobStatus.ACTIVE)
            stored.status = JobStatus.ACTIVE
            stored.playback_url = artifact.playback_url
            stored.error = None
            stored.provider_metadata = ProviderMetadata(
                provider=self._adapter.adapter_type.value,
                asset_id=artifact.external_asset_id,
                playback_id=artifact.external_playback_id,
                thumbnail=artifact.thumbnail,
                shuffle=stored.shuffle,
            )
            if artifact.promote_to_secondary and not any(
                entry.id == stored.id for entry in stored.secondary_streams
            ):
                stored.secondary_streams.append(SecondaryStream(
                    id=stored.id,
                    name=stored.name,
                    url=artifact.playback_url,
                    type="live",
                ))

        written = self._store.mutate(job.id, activate, skip_if_stopped=True)
        if written is None:
            logger.info(f"[LIFECYCLE] Job {job.id} stopped during processing, result discarded")
            return JobStatus.STOPPED

        logger.info(
            f"[LIFECYCLE] Job {job.id} transitioned: processing -> active "
            f"(item {index} {artifact.status.value}, {artifact.playback_url})"
        )
        if artifact.status == ArtifactStatus.READY:
            self._remove_source(item.source_ref)
        return written.status

    def _settle_failure(self, job_id: str, index: int, reason: str) -> JobStatus:
        def fail(stored: Job) -> None:
            _fail_item(stored.items[index], reason)
            _fail_job(stored, reason)

        written = self._store.mutate(job_id, fail, skip_if_stopped=True)
        if written is None:
            return JobStatus.STOPPED
        logger.info(f"[LIFECYCLE] Job {job_id} transitioned: processing -> error ({reason})")
        return JobStatus.ERROR

    # ------------------------------------------------------------------
    # Channel path
    # ------------------------------------------------------------------

    async def _run_all_items(self, job: Job) -> Optional[JobStatus]:
        for index in range(len(job.items)):
            def start_item(stored: Job, index: int = index) -> None:
                item = stored.items[index]
                validate_item_transition(item.status, ItemStatus.PROCESSING)
                item.status = ItemStatus.PROCESSING

            started = self._store.mutate(job.id, start_item, skip_if_stopped=True)
            if started is None:
                logger.info(f"[LIFECYCLE] Job {job.id} stopped, pass ended at item {index}")
                return JobStatus.STOPPED
            item = started.items[index]

            artifact: Optional[Artifact] = None
            reason: Optional[str] = None
            try:
                artifact = await self._adapter.produce_artifact(started, item, index)
            except ProviderAuthError as e:
                logger.error(f"[LIFECYCLE] Job {job.id} aborted, provider rejected credentials: {e}")

                def abort(stored: Job, index: int = index, reason: str = e.message) -> None:
                    _fail_item(stored.items[index], reason)
                    _fail_job(stored, reason)

                written = self._store.mutate(job.id, abort, skip_if_stopped=True)
                return JobStatus.ERROR if written else JobStatus.STOPPED
            except ProviderError as e:
                logger.warning(f"[LIFECYCLE] Job {job.id} item {index} ({item.source_ref}) failed: {e}")
                reason = e.message
            except Exception as e:
                logger.exception(f"[LIFECYCLE] Job {job.id} item {index} crashed: {e}")
                reason = _error_text(e)

            def settle(stored: Job, index: int = index, artifact=artifact, reason=reason) -> None:
                if artifact is not None:
                    _apply_artifact(stored.items[index], artifact)
                else:
                    _fail_item(stored.items[index], reason)

            if self._store.mutate(job.id, settle, skip_if_stopped=True) is None:
                logger.info(f"[LIFECYCLE] Job {job.id} stopped, pass ended at item {index}")
                return JobStatus.STOPPED

        def finish(stored: Job) -> None:
            ready = [i for i, item in enumerate(stored.items) if item.status == ItemStatus.READY]
            if not ready:
                _fail_job(stored, "No playable items: every video failed")
                return
            first = ready[0]
            validate_job_transition(stored.status, JobStatus.ACTIVE)
            stored.status = JobStatus.ACTIVE
            stored.current_item_index = first
            stored.playback_url = stored.items[first].playback_url
            metadata = stored.provider_metadata or ProviderMetadata()
            metadata.provider = self._adapter.adapter_type.value
            stored.provider_metadata = metadata

        written = self._store.mutate(job.id, finish, skip_if_stopped=True)
        if written is None:
            return JobStatus.STOPPED
        logger.info(
            f"[LIFECYCLE] Job {job.id} transitioned: processing -> {written.status.value} "
            f"({written.ready_count}/{len(written.items)} items ready)"
        )
        return written.status

    # ------------------------------------------------------------------
    # Hosted asset events
    # ------------------------------------------------------------------

    async def handle_asset_event(
        self,
        asset_id: str,
        ready: bool,
        error: Optional[str] = None,
    ) -> Optional[Job]:
        """
        Settle an item whose hosted asset changed state.

        Args:
            asset_id: Provider asset id (Item.external_asset_id)
            ready: True for a ready asset, False for a failed one
            error: Failure reason when ready is False

        Returns:
            The updated job, or None if no live job owns the asset
        """
        owner = self._store.find_by_asset(asset_id)
        if owner is None:
            logger.info(f"[Mux] No live job owns asset {asset_id}, event ignored")
            return None

        settled: dict = {}

        def apply(stored: Job) -> bool:
            index = next(
                (i for i, item in enumerate(stored.items) if item.external_asset_id == asset_id),
                None,
            )
            if index is None or stored.items[index].status != ItemStatus.PROCESSING:
                return False
            item = stored.items[index]
            if ready:
                validate_item_transition(item.status, ItemStatus.READY)
                item.status = ItemStatus.READY
                settled["source_ref"] = item.source_ref
                return True

            reason = error or f"Hosted asset {asset_id} failed"
            _fail_item(item, reason)
            if index == stored.current_item_index and stored.status == JobStatus.ACTIVE:
                _fail_job(stored, reason)
            return True

        written = self._store.mutate(owner.id, apply, skip_if_stopped=True)
        if written is None:
            return None

        logger.info(f"[Mux] Asset {asset_id} settled as {'ready' if ready else 'error'} (job {owner.id})")
        if "source_ref" in settled:
            self._remove_source(settled["source_ref"])
        return written

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _abort(self, job_id: str, reason: str) -> Optional[JobStatus]:
        """Move a job to ERROR from whatever non-stopped state it is in."""
        def fail(stored: Job) -> bool:
            if stored.status not in (JobStatus.PROCESSING, JobStatus.ACTIVE):
                return False
            for item in stored.items:
                if item.status == ItemStatus.PROCESSING:
                    item.status = ItemStatus.ERROR
                    item.error = reason
            _fail_job(stored, reason)
            return True

        try:
            self._store.mutate(job_id, fail, skip_if_stopped=True)
            current = self._store.find(job_id)
        except (JobError, PersistenceError) as e:
            logger.error(f"[LIFECYCLE] Could not record failure for job {job_id}: {e}")
            return None
        return current.status if current else None

    def _remove_source(self, source_ref: str) -> None:
        if not self._cleanup_dir:
            return
        # Only files we received through the upload directory are ours to delete
        if os.path.dirname(os.path.realpath(source_ref)) != self._cleanup_dir:
            logger.debug(f"Source {source_ref} is outside the upload directory, kept")
            return
        try:
            os.remove(source_ref)
            logger.info(f"Removed source file {source_ref}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove source file {source_ref}: {e}")
