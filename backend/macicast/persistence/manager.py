"""
SQLite persistence manager for job documents.

Single-file SQLite database. Each job is one JSON document with its items
and secondary streams embedded; status, kind and timestamps are mirrored
into columns for querying.

Writes that depend on the stored state go through transaction(), which
takes the write lock up front (BEGIN IMMEDIATE) so a read-modify-write
never interleaves with another writer.
"""

import sqlite3
import json
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional
from datetime import datetime
from contextlib import contextmanager

from .errors import PersistenceError, DocumentDecodeError


# Database schema version
SCHEMA_VERSION = 1


class PersistenceManager:
    """
    Manages SQLite persistence for job documents.

    Stores:
    - Job documents (items and secondary streams embedded)

    Does NOT store:
    - Generated artifacts (written to the static directory)
    - Provider credentials
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize persistence manager.

        Args:
            db_path: Path to SQLite database file (defaults to ./macicast.db)
        """
        if db_path is None:
            db_path = str(Path.cwd() / "macicast.db")

        self.db_path = db_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _connect(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row  # Access columns by name
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise PersistenceError(f"Database operation failed: {e}") from e
        except BaseException:
            # Domain errors raised inside a transaction pass through untouched
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _ensure_schema(self):
        """Create schema if it doesn't exist."""
        with self._connect(immediate=True) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
            """)

            row = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            ).fetchone()
            current_version = row[0] if row else 0

            if current_version < SCHEMA_VERSION:
                self._create_tables(conn)

    def _create_tables(self, conn: sqlite3.Connection):
        conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                kind TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT,
                document TEXT NOT NULL
            )
        """)

        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_status
            ON jobs (status)
        """)

        conn.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, datetime.now().isoformat())
        )

    # Document helpers

    @staticmethod
    def _decode(row: sqlite3.Row) -> Dict:
        try:
            return json.loads(row["document"])
        except (TypeError, ValueError) as e:
            raise DocumentDecodeError(row["id"], str(e)) from e

    @staticmethod
    def _write(conn: sqlite3.Connection, document: Dict) -> None:
        conn.execute("""
            INSERT INTO jobs (id, status, kind, created_at, updated_at, document)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                kind = excluded.kind,
                updated_at = excluded.updated_at,
                document = excluded.document
        """, (
            document["id"],
            document["status"],
            document["kind"],
            document["created_at"],
            document.get("updated_at"),
            json.dumps(document),
        ))

    # Job persistence

    def insert_job(self, document: Dict) -> None:
        """
        Insert a new job document.

        Raises:
            PersistenceError: If a job with the same id already exists
        """
        with self._connect(immediate=True) as conn:
            exists = conn.execute(
                "SELECT 1 FROM jobs WHERE id = ?", (document["id"],)
            ).fetchone()
            if exists:
                raise PersistenceError(f"Job with ID '{document['id']}' already exists")
            self._write(conn, document)

    def load_job(self, job_id: str) -> Optional[Dict]:
        """
        Load a job document.

        Returns:
            Dict with job data or None if not found
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, document FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
            return self._decode(row) if row else None

    def load_jobs_by_status(self, status: Optional[str] = None) -> List[Dict]:
        """
        Load job documents, optionally filtered by status, oldest first.
        """
        with self._connect() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT id, document FROM jobs ORDER BY created_at"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT id, document FROM jobs WHERE status = ? ORDER BY created_at",
                    (status,)
                ).fetchall()
            return [self._decode(row) for row in rows]

    def load_jobs_by_asset(self, asset_id: str, exclude_status: str) -> List[Dict]:
        """
        Load job documents with an item bound to a hosted asset, oldest first.

        Jobs in exclude_status are skipped.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, document FROM jobs WHERE status != ? AND EXISTS ("
                "SELECT 1 FROM json_each(jobs.document, '$.items') "
                "WHERE json_extract(json_each.value, '$.external_asset_id') = ?"
                ") ORDER BY created_at",
                (exclude_status, asset_id)
            ).fetchall()
            return [self._decode(row) for row in rows]

    def transaction(
        self,
        job_id: str,
        fn: Callable[[Dict], Optional[Dict]],
    ) -> Optional[Dict]:
        """
        Read-modify-write a single job document under the write lock.

        fn receives the freshest stored document and returns the document
        to write, or None to leave the record untouched.

        Returns:
            The written document, None if fn declined to write

        Raises:
            KeyError: If the job does not exist
        """
        with self._connect(immediate=True) as conn:
            row = conn.execute(
                "SELECT id, document FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
            if row is None:
                raise KeyError(job_id)

            updated = fn(self._decode(row))
            if updated is None:
                return None

            self._write(conn, updated)
            return updated

    def transaction_many(
        self,
        status: str,
        fn: Callable[[Dict], Optional[Dict]],
    ) -> int:
        """
        Apply fn to every job with the given status in one transaction.

        Returns:
            Number of documents written
        """
        written = 0
        with self._connect(immediate=True) as conn:
            rows = conn.execute(
                "SELECT id, document FROM jobs WHERE status = ?", (status,)
            ).fetchall()
            for row in rows:
                updated = fn(self._decode(row))
                if updated is not None:
                    self._write(conn, updated)
                    written += 1
        return written

    def delete_job(self, job_id: str) -> bool:
        """Delete a job document. Returns True if a row was removed."""
        with self._connect(immediate=True) as conn:
            cursor = conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            return cursor.rowcount > 0
