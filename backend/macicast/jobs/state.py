"""
State transition validation for jobs and items.

Job lifecycle: QUEUED → PROCESSING → ACTIVE | ERROR, STOPPED from anywhere.
Item lifecycle: QUEUED → PROCESSING → READY | ERROR

INVARIANT: STOPPED is immutable. A stopped job is never resumed
automatically; a late orchestrator write must not resurrect it.
ERROR is terminal for orchestration. Recovery means creating a new job.
"""

from typing import FrozenSet, Set, Tuple
from .models import JobStatus, ItemStatus
from .errors import InvalidStateTransitionError


TERMINAL_JOB_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.ERROR,
    JobStatus.STOPPED,
})


def is_job_terminal(status: JobStatus) -> bool:
    """
    Check if a job status is terminal.

    Args:
        status: The job status to check

    Returns:
        True if the status is terminal, False otherwise
    """
    return status in TERMINAL_JOB_STATES


_JOB_TRANSITIONS: Set[Tuple[JobStatus, JobStatus]] = {
    # Orchestrator claims the job
    (JobStatus.QUEUED, JobStatus.PROCESSING),

    # Orchestration outcome
    (JobStatus.PROCESSING, JobStatus.ACTIVE),
    (JobStatus.PROCESSING, JobStatus.ERROR),

    # Explicit advance to the next uploaded item
    (JobStatus.ACTIVE, JobStatus.QUEUED),

    # Hosted asset of the current item failed after activation
    (JobStatus.ACTIVE, JobStatus.ERROR),

    # Operator stop
    (JobStatus.QUEUED, JobStatus.STOPPED),
    (JobStatus.PROCESSING, JobStatus.STOPPED),
    (JobStatus.ACTIVE, JobStatus.STOPPED),
    (JobStatus.ERROR, JobStatus.STOPPED),
}


# No retry: ERROR → QUEUED is intentionally absent.
_ITEM_TRANSITIONS: Set[Tuple[ItemStatus, ItemStatus]] = {
    (ItemStatus.QUEUED, ItemStatus.PROCESSING),
    (ItemStatus.PROCESSING, ItemStatus.READY),
    (ItemStatus.PROCESSING, ItemStatus.ERROR),
}


def can_transition_job(from_status: JobStatus, to_status: JobStatus) -> bool:
    """
    Check if a job state transition is legal.

    Args:
        from_status: Current job status
        to_status: Target job status

    Returns:
        True if the transition is allowed, False otherwise
    """
    # Allow staying in same state (idempotent operations)
    if from_status == to_status:
        return True

    if from_status == JobStatus.STOPPED:
        return False

    return (from_status, to_status) in _JOB_TRANSITIONS


def can_transition_item(from_status: ItemStatus, to_status: ItemStatus) -> bool:
    """Check if an item state transition is legal."""
    if from_status == to_status:
        return True

    return (from_status, to_status) in _ITEM_TRANSITIONS


def validate_job_transition(from_status: JobStatus, to_status: JobStatus) -> None:
    """
    Validate a job state transition, raising an exception if illegal.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_job(from_status, to_status):
        raise InvalidStateTransitionError("job", from_status.value, to_status.value)


def validate_item_transition(from_status: ItemStatus, to_status: ItemStatus) -> None:
    """
    Validate an item state transition, raising an exception if illegal.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_item(from_status, to_status):
        raise InvalidStateTransitionError("item", from_status.value, to_status.value)
