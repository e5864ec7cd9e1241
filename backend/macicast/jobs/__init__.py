"""
Job records: models, lifecycle rules and the persistent store.

This package does NOT produce artifacts or talk to providers.
See macicast.sources for adapters and macicast.pipeline for orchestration.
"""

from .errors import (
    JobError,
    ValidationError,
    NotFoundError,
    JobNotFoundError,
    InvalidStateTransitionError,
    InvariantViolationError,
)
from .models import (
    JobStatus,
    ItemStatus,
    JobKind,
    Item,
    SecondaryStream,
    ProviderMetadata,
    Job,
    ItemStatusView,
    JobStatusView,
)
from .state import (
    can_transition_job,
    can_transition_item,
)
from .store import JobStore

__all__ = [
    # Errors
    "JobError",
    "ValidationError",
    "NotFoundError",
    "JobNotFoundError",
    "InvalidStateTransitionError",
    "InvariantViolationError",
    # Models
    "JobStatus",
    "ItemStatus",
    "JobKind",
    "Item",
    "SecondaryStream",
    "ProviderMetadata",
    "Job",
    "ItemStatusView",
    "JobStatusView",
    # State validation
    "can_transition_job",
    "can_transition_item",
    # Store
    "JobStore",
]
