"""
Job Store
SQLite persistence for print job records
"""

import asyncio
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import JobNotFoundError
from .models import TERMINAL_STATUSES, PrintJob

COLUMNS = list(PrintJob.model_fields)
_TERMINAL_VALUES = tuple(sorted(status.value for status in TERMINAL_STATUSES))

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS print_jobs (
        id TEXT PRIMARY KEY,
        employee_id TEXT NOT NULL,
        employee_name TEXT NOT NULL,
        file_name TEXT NOT NULL,
        file_type TEXT NOT NULL,
        printer TEXT NOT NULL,
        paper_size TEXT NOT NULL,
        copies INTEGER NOT NULL,
        color_mode TEXT NOT NULL,
        sides TEXT NOT NULL,
        orientation TEXT NOT NULL,
        page_layout TEXT NOT NULL,
        margins TEXT NOT NULL,
        pages_to_print TEXT NOT NULL,
        sheets_from INTEGER,
        sheets_to INTEGER,
        pages INTEGER NOT NULL,
        status TEXT NOT NULL,
        job_handle TEXT,
        job_start_time TEXT,
        job_end_time TEXT,
        error_message TEXT,
        pages_printed INTEGER NOT NULL DEFAULT 0,
        file_path TEXT,
        created_by TEXT NOT NULL,
        updated_by TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""


def _to_column(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return value


class JobStore:
    """SQLite job table; every write refreshes updated_at

    The async methods run the blocking calls in a worker thread.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.logger = logging.getLogger(__name__)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute(_SCHEMA)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_print_jobs_employee ON print_jobs(employee_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_print_jobs_updated_at ON print_jobs(updated_at DESC)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_print_jobs_status ON print_jobs(status)")

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> PrintJob:
        return PrintJob.model_validate(dict(row))

    # Blocking API

    def insert(self, job: PrintJob) -> PrintJob:
        values = [_to_column(getattr(job, column)) for column in COLUMNS]
        placeholders = ", ".join("?" for _ in COLUMNS)
        with self._get_connection() as conn:
            conn.execute(
                f"INSERT INTO print_jobs ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                values,
            )
        return job

    def fetch(self, job_id: str) -> Optional[PrintJob]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM print_jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def update(self, job_id: str, fields: Dict[str, Any], only_if_active: bool = False) -> PrintJob:
        """Apply fields to one job and return the stored record

        With only_if_active, a job already in a terminal state is left
        untouched and returned as stored.
        """
        unknown = set(fields) - set(COLUMNS)
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

        fields = dict(fields)
        fields.pop("id", None)
        fields["updated_at"] = datetime.now()

        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [_to_column(value) for value in fields.values()]

        query = f"UPDATE print_jobs SET {assignments} WHERE id = ?"
        params = [*values, job_id]
        if only_if_active:
            query += f" AND status NOT IN ({', '.join('?' for _ in _TERMINAL_VALUES)})"
            params.extend(_TERMINAL_VALUES)

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            row = conn.execute("SELECT * FROM print_jobs WHERE id = ?", (job_id,)).fetchone()
            if row is None:
                raise JobNotFoundError(job_id)
            if cursor.rowcount == 0:
                self.logger.debug(f"Job {job_id} already finished, update skipped")
        return self._row_to_job(row)

    def select(self, employee_id: Optional[str] = None) -> List[PrintJob]:
        query = "SELECT * FROM print_jobs"
        params: tuple = ()
        if employee_id is not None:
            query += " WHERE employee_id = ?"
            params = (employee_id,)
        query += " ORDER BY updated_at DESC"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    # Async API

    async def create(self, job: PrintJob) -> PrintJob:
        return await asyncio.to_thread(self.insert, job)

    async def get(self, job_id: str) -> Optional[PrintJob]:
        return await asyncio.to_thread(self.fetch, job_id)

    async def update_fields(self, job_id: str, **fields: Any) -> PrintJob:
        return await asyncio.to_thread(self.update, job_id, fields)

    async def update_active(self, job_id: str, **fields: Any) -> PrintJob:
        """Like update_fields, but never overwrites a terminal job"""
        return await asyncio.to_thread(self.update, job_id, fields, True)

    async def list_by_requester(self, employee_id: str) -> List[PrintJob]:
        return await asyncio.to_thread(self.select, employee_id)

    async def list_all(self) -> List[PrintJob]:
        return await asyncio.to_thread(self.select)
