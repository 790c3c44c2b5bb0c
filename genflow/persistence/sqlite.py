"""SQLite implementation of the job repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from .models import Job, JobFilter, Task, utc_now
from .repository import (
    JOB_UPDATE_FIELDS,
    TASK_UPDATE_FIELDS,
    JobRepository,
    check_fields,
)

_JSON_FIELDS = frozenset({"input_params", "result_data", "trace_data"})
_TIME_FIELDS = frozenset({"created_at", "started_at", "completed_at"})

_JOB_COLUMNS = (
    "id, workflow_type, status, current_step_index, total_steps, input_params, "
    "user_id, project_id, error_message, created_at, started_at, completed_at"
)
_TASK_COLUMNS = (
    "id, job_id, step_index, task_type, target_type, user_id, project_id, status, "
    "progress, input_params, result_data, error_message, trace_data, model_name, "
    "started_at, completed_at"
)


def _encode(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _JSON_FIELDS:
        return json.dumps(value)
    if name in _TIME_FIELDS:
        return value.isoformat()
    return value


def _decode_row(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    for key, value in data.items():
        if value is None:
            continue
        if key in _JSON_FIELDS:
            data[key] = json.loads(value)
        elif key in _TIME_FIELDS:
            data[key] = datetime.fromisoformat(value)
    return data


class SQLiteJobRepository(JobRepository):
    """Persist jobs and tasks using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # One connection is shared by worker threads; serialize access to it.
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workflow_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    current_step_index INTEGER NOT NULL DEFAULT 0,
                    total_steps INTEGER NOT NULL,
                    input_params TEXT,
                    user_id INTEGER,
                    project_id INTEGER,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL REFERENCES jobs(id),
                    step_index INTEGER NOT NULL,
                    task_type TEXT NOT NULL,
                    target_type TEXT,
                    user_id INTEGER,
                    project_id INTEGER,
                    status TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    input_params TEXT,
                    result_data TEXT,
                    error_message TEXT,
                    trace_data TEXT,
                    model_name TEXT,
                    started_at TEXT,
                    completed_at TEXT,
                    UNIQUE (job_id, step_index)
                )
                """
            )

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock, self._conn:
            cur = self._conn.execute(query, params)
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    def _insert_job(self, job: Job, tasks: list[Task]) -> tuple[int, list[int]]:
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO jobs (workflow_type, status, current_step_index, total_steps,
                                  input_params, user_id, project_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.workflow_type,
                    job.status,
                    job.current_step_index,
                    job.total_steps,
                    _encode("input_params", job.input_params),
                    job.user_id,
                    job.project_id,
                    _encode("created_at", job.created_at),
                ),
            )
            job_id = cur.lastrowid
            task_ids = []
            for task in tasks:
                cur = self._conn.execute(
                    """
                    INSERT INTO tasks (job_id, step_index, task_type, target_type,
                                       user_id, project_id, status, progress)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job_id,
                        task.step_index,
                        task.task_type,
                        task.target_type,
                        task.user_id,
                        task.project_id,
                        task.status,
                        task.progress,
                    ),
                )
                task_ids.append(cur.lastrowid)
        return job_id, task_ids

    @staticmethod
    def _set_clause(fields: dict[str, Any]) -> tuple[str, list[Any]]:
        clause = ", ".join(f"{name} = ?" for name in fields)
        values = [_encode(name, value) for name, value in fields.items()]
        return clause, values

    # ------------------------------------------------------------------
    # Repository API
    async def create_job(self, job: Job, tasks: list[Task]) -> tuple[Job, list[Task]]:
        job_id, task_ids = await asyncio.to_thread(self._insert_job, job, tasks)
        created_job = job.model_copy(update={"id": job_id})
        created_tasks = [
            task.model_copy(update={"id": task_id, "job_id": job_id})
            for task, task_id in zip(tasks, task_ids)
        ]
        return created_job, created_tasks

    async def get_job(self, job_id: int) -> Job | None:
        row = await asyncio.to_thread(
            self._fetchone, f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?", job_id
        )
        return Job(**_decode_row(row)) if row else None

    async def get_task(self, task_id: int) -> Task | None:
        row = await asyncio.to_thread(
            self._fetchone, f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", task_id
        )
        return Task(**_decode_row(row)) if row else None

    async def list_tasks(
        self, job_id: int, statuses: Iterable[str] | None = None
    ) -> list[Task]:
        query = f"SELECT {_TASK_COLUMNS} FROM tasks WHERE job_id = ?"
        params: list[Any] = [job_id]
        if statuses is not None:
            statuses = list(statuses)
            if not statuses:
                return []
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)
        query += " ORDER BY step_index ASC"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [Task(**_decode_row(r)) for r in rows]

    async def first_task(self, job_id: int, status: str) -> Task | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"""
            SELECT {_TASK_COLUMNS} FROM tasks
            WHERE job_id = ? AND status = ?
            ORDER BY step_index ASC LIMIT 1
            """,
            job_id,
            status,
        )
        return Task(**_decode_row(row)) if row else None

    async def update_job(self, job_id: int, **fields: Any) -> None:
        check_fields(fields, JOB_UPDATE_FIELDS)
        if not fields:
            return
        clause, values = self._set_clause(fields)
        await asyncio.to_thread(
            self._execute, f"UPDATE jobs SET {clause} WHERE id = ?", *values, job_id
        )

    async def mark_job_started(self, job_id: int, step_index: int) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE jobs
            SET status = 'running', current_step_index = ?,
                started_at = COALESCE(started_at, ?)
            WHERE id = ?
            """,
            step_index,
            utc_now().isoformat(),
            job_id,
        )

    async def update_task(self, task_id: int, **fields: Any) -> None:
        check_fields(fields, TASK_UPDATE_FIELDS)
        if not fields:
            return
        clause, values = self._set_clause(fields)
        await asyncio.to_thread(
            self._execute, f"UPDATE tasks SET {clause} WHERE id = ?", *values, task_id
        )

    async def update_tasks(
        self, job_id: int, from_statuses: Iterable[str], **fields: Any
    ) -> int:
        check_fields(fields, TASK_UPDATE_FIELDS)
        from_statuses = list(from_statuses)
        if not fields or not from_statuses:
            return 0
        clause, values = self._set_clause(fields)
        placeholders = ", ".join("?" for _ in from_statuses)
        return await asyncio.to_thread(
            self._execute,
            f"UPDATE tasks SET {clause} WHERE job_id = ? AND status IN ({placeholders})",
            *values,
            job_id,
            *from_statuses,
        )

    async def list_jobs(self, filters: JobFilter) -> list[Job]:
        query = f"SELECT {_JOB_COLUMNS} FROM jobs WHERE 1 = 1"
        params: list[Any] = []
        if filters.user_id is not None:
            query += " AND user_id = ?"
            params.append(filters.user_id)
        if filters.project_id is not None:
            query += " AND project_id = ?"
            params.append(filters.project_id)
        if filters.workflow_type:
            query += " AND workflow_type = ?"
            params.append(filters.workflow_type)
        if filters.statuses:
            query += f" AND status IN ({', '.join('?' for _ in filters.statuses)})"
            params.extend(filters.statuses)
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([filters.limit, filters.offset])
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [Job(**_decode_row(r)) for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
