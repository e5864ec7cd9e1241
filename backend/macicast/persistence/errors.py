"""
Persistence-specific errors.
"""


class PersistenceError(Exception):
    """Base exception for persistence operations."""

    pass


class DocumentDecodeError(PersistenceError):
    """A stored document could not be decoded."""

    def __init__(self, record_id: str, reason: str):
        self.record_id = record_id
        super().__init__(f"Stored document {record_id} is unreadable: {reason}")
