"""
Persistence layer for Macicast job records.

SQLite-backed document storage for jobs.
"""

from .manager import PersistenceManager
from .errors import PersistenceError

__all__ = ["PersistenceManager", "PersistenceError"]
