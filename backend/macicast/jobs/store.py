"""
Job record store.

Typed access to persisted jobs. Every write goes through one SQLite
transaction that reads the freshest document, applies the change and
checks Job invariants before committing, so concurrent appends to
secondary_streams are never lost to a stale copy.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..persistence.manager import PersistenceManager
from .models import Job, JobStatus, SecondaryStream
from .errors import JobNotFoundError, ValidationError, InvariantViolationError

logger = logging.getLogger(__name__)


def _dump(job: Job) -> Dict:
    return job.model_dump(mode="json")


def _load(document: Dict) -> Job:
    return Job.model_validate(document)


def _checked(job: Job) -> Job:
    violation = job.invariant_violation()
    if violation:
        raise InvariantViolationError(job.id, violation)
    job.updated_at = datetime.now()
    return job


class JobStore:
    """
    Durable CRUD for Job records, keyed by job id, queryable by status.
    """

    def __init__(self, persistence_manager: PersistenceManager):
        self._persistence = persistence_manager

    def create(self, job: Job) -> str:
        """
        Persist a new job in QUEUED state.

        Args:
            job: The job to persist (status is forced to QUEUED)

        Returns:
            The job id

        Raises:
            ValidationError: If name or items are empty
        """
        if not job.name or not job.name.strip():
            raise ValidationError("Job name is required")
        if not job.items:
            raise ValidationError("At least one item is required")
        for position, item in enumerate(job.items):
            if not item.name or not item.name.strip():
                raise ValidationError(f"Item {position} has no name")
            if not item.source_ref or not item.source_ref.strip():
                raise ValidationError(f"Item {position} has no source reference")

        job.status = JobStatus.QUEUED
        job.current_item_index = 0
        self._persistence.insert_job(_dump(_checked(job)))
        logger.info(f"[STORE] Created job {job.id} ({job.kind.value}, {len(job.items)} items)")
        return job.id

    def get(self, job_id: str) -> Job:
        """
        Retrieve a job by ID.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        document = self._persistence.load_job(job_id)
        if document is None:
            raise JobNotFoundError(job_id)
        return _load(document)

    def find(self, job_id: str) -> Optional[Job]:
        """Retrieve a job by ID, or None."""
        document = self._persistence.load_job(job_id)
        return _load(document) if document else None

    def list_by_status(self, status: JobStatus) -> List[Job]:
        """List jobs with the given status, oldest first."""
        return [_load(d) for d in self._persistence.load_jobs_by_status(status.value)]

    def list_all(self) -> List[Job]:
        return [_load(d) for d in self._persistence.load_jobs_by_status()]

    def find_by_asset(self, asset_id: str) -> Optional[Job]:
        """Oldest non-stopped job with an item bound to the hosted asset."""
        documents = self._persistence.load_jobs_by_asset(asset_id, JobStatus.STOPPED.value)
        return _load(documents[0]) if documents else None

    def mutate(
        self,
        job_id: str,
        fn: Callable[[Job], Optional[bool]],
        skip_if_stopped: bool = False,
    ) -> Optional[Job]:
        """
        Transactional read-modify-write of one job.

        fn mutates the freshest stored Job in place. Returning False from
        fn discards the change.

        Args:
            job_id: The job ID
            fn: Mutation applied to the stored job
            skip_if_stopped: Discard the write if the stored job is STOPPED

        Returns:
            The written job, or None if the write was skipped

        Raises:
            JobNotFoundError: If the job does not exist
            InvariantViolationError: If the mutation leaves the job inconsistent
        """
        def apply(document: Dict) -> Optional[Dict]:
            job = _load(document)
            if skip_if_stopped and job.status == JobStatus.STOPPED:
                logger.info(f"[STORE] Job {job_id} is stopped, discarding write")
                return None
            if fn(job) is False:
                return None
            return _dump(_checked(job))

        try:
            written = self._persistence.transaction(job_id, apply)
        except KeyError:
            raise JobNotFoundError(job_id) from None
        return _load(written) if written else None

    def update(self, job_id: str, **fields) -> Job:
        """
        Atomic partial update.

        Only the named fields are replaced; everything else, including
        secondary_streams, comes from the freshest stored record.
        """
        unknown = set(fields) - set(Job.model_fields)
        if unknown:
            raise ValidationError(f"Unknown job fields: {sorted(unknown)}")

        def apply(job: Job) -> None:
            for name, value in fields.items():
                setattr(job, name, value)

        return self.mutate(job_id, apply)

    def claim(self, job_id: str) -> Optional[Job]:
        """
        Compare-and-set QUEUED → PROCESSING.

        Returns:
            The claimed job, or None if the job was not QUEUED
        """
        def apply(job: Job) -> bool:
            if job.status != JobStatus.QUEUED:
                return False
            job.status = JobStatus.PROCESSING
            job.started_at = datetime.now()
            return True

        return self.mutate(job_id, apply)

    def append_secondary_stream(self, job_id: str, entry: SecondaryStream) -> Job:
        """Append a secondary stream to the freshest stored array."""
        def apply(job: Job) -> None:
            job.secondary_streams.append(entry)

        return self.mutate(job_id, apply)

    def stop(self, job_id: Optional[str] = None) -> int:
        """
        Mark one job, or every ACTIVE job, as STOPPED.

        Idempotent: stopping a stopped job changes nothing.

        Returns:
            Number of jobs that changed state

        Raises:
            JobNotFoundError: If job_id is given and unknown
        """
        def apply_document(document: Dict) -> Optional[Dict]:
            job = _load(document)
            if job.status == JobStatus.STOPPED:
                return None
            job.status = JobStatus.STOPPED
            job.completed_at = datetime.now()
            return _dump(_checked(job))

        if job_id is None:
            count = self._persistence.transaction_many(JobStatus.ACTIVE.value, apply_document)
            logger.info(f"[STORE] Stopped {count} active jobs")
            return count

        try:
            written = self._persistence.transaction(job_id, apply_document)
        except KeyError:
            raise JobNotFoundError(job_id) from None
        if written:
            logger.info(f"[STORE] Stopped job {job_id}")
        return 1 if written else 0

    def delete(self, job_id: str) -> None:
        """
        Remove a job and everything embedded in it.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        if not self._persistence.delete_job(job_id):
            raise JobNotFoundError(job_id)
