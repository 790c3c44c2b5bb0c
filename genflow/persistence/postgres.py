"""PostgreSQL implementation of the job repository."""

from __future__ import annotations

import json
from typing import Any, Iterable

import asyncpg

from .models import Job, JobFilter, Task, utc_now
from .repository import (
    JOB_UPDATE_FIELDS,
    TASK_UPDATE_FIELDS,
    JobRepository,
    check_fields,
)

_JSON_FIELDS = frozenset({"input_params", "result_data", "trace_data"})

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
    if value is not None and name in _JSON_FIELDS:
        return json.dumps(value)
    return value


def _decode_record(record: asyncpg.Record) -> dict[str, Any]:
    # asyncpg hands JSONB columns back as text unless a codec is registered.
    data = dict(record)
    for key in _JSON_FIELDS & data.keys():
        if isinstance(data[key], str):
            data[key] = json.loads(data[key])
    return data


def _set_clause(fields: dict[str, Any], start: int = 1) -> tuple[str, list[Any]]:
    parts = []
    values = []
    for offset, (name, value) in enumerate(fields.items()):
        cast = "::jsonb" if name in _JSON_FIELDS else ""
        parts.append(f"{name} = ${start + offset}{cast}")
        values.append(_encode(name, value))
    return ", ".join(parts), values


class PostgresJobRepository(JobRepository):
    """Persist jobs and tasks using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id SERIAL PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step_index INTEGER NOT NULL DEFAULT 0,
                total_steps INTEGER NOT NULL,
                input_params JSONB,
                user_id INTEGER,
                project_id INTEGER,
                error_message TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id SERIAL PRIMARY KEY,
                job_id INTEGER NOT NULL REFERENCES jobs(id),
                step_index INTEGER NOT NULL,
                task_type TEXT NOT NULL,
                target_type TEXT,
                user_id INTEGER,
                project_id INTEGER,
                status TEXT NOT NULL,
                progress INTEGER NOT NULL DEFAULT 0,
                input_params JSONB,
                result_data JSONB,
                error_message TEXT,
                trace_data JSONB,
                model_name TEXT,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                UNIQUE (job_id, step_index)
            )
            """
        )

    # ------------------------------------------------------------------
    async def create_job(self, job: Job, tasks: list[Task]) -> tuple[Job, list[Task]]:
        conn = await self._connect()
        try:
            async with conn.transaction():
                job_id = await conn.fetchval(
                    """
                    INSERT INTO jobs (workflow_type, status, current_step_index, total_steps,
                                      input_params, user_id, project_id, created_at)
                    VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8)
                    RETURNING id
                    """,
                    job.workflow_type,
                    job.status,
                    job.current_step_index,
                    job.total_steps,
                    json.dumps(job.input_params),
                    job.user_id,
                    job.project_id,
                    job.created_at,
                )
                task_ids = []
                for task in tasks:
                    task_ids.append(
                        await conn.fetchval(
                            """
                            INSERT INTO tasks (job_id, step_index, task_type, target_type,
                                               user_id, project_id, status, progress)
                            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                            RETURNING id
                            """,
                            job_id,
                            task.step_index,
                            task.task_type,
                            task.target_type,
                            task.user_id,
                            task.project_id,
                            task.status,
                            task.progress,
                        )
                    )
        finally:
            await conn.close()
        return (
            job.model_copy(update={"id": job_id}),
            [
                task.model_copy(update={"id": task_id, "job_id": job_id})
                for task, task_id in zip(tasks, task_ids)
            ],
        )

    async def get_job(self, job_id: int) -> Job | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = $1", job_id
            )
        finally:
            await conn.close()
        return Job(**_decode_record(row)) if row else None

    async def get_task(self, task_id: int) -> Task | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = $1", task_id
            )
        finally:
            await conn.close()
        return Task(**_decode_record(row)) if row else None

    async def list_tasks(
        self, job_id: int, statuses: Iterable[str] | None = None
    ) -> list[Task]:
        query = f"SELECT {_TASK_COLUMNS} FROM tasks WHERE job_id = $1"
        params: list[Any] = [job_id]
        if statuses is not None:
            query += " AND status = ANY($2::text[])"
            params.append(list(statuses))
        query += " ORDER BY step_index ASC"
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [Task(**_decode_record(r)) for r in rows]

    async def first_task(self, job_id: int, status: str) -> Task | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"""
                SELECT {_TASK_COLUMNS} FROM tasks
                WHERE job_id = $1 AND status = $2
                ORDER BY step_index ASC LIMIT 1
                """,
                job_id,
                status,
            )
        finally:
            await conn.close()
        return Task(**_decode_record(row)) if row else None

    async def update_job(self, job_id: int, **fields: Any) -> None:
        check_fields(fields, JOB_UPDATE_FIELDS)
        if not fields:
            return
        clause, values = _set_clause(fields)
        conn = await self._connect()
        try:
            await conn.execute(
                f"UPDATE jobs SET {clause} WHERE id = ${len(values) + 1}",
                *values,
                job_id,
            )
        finally:
            await conn.close()

    async def mark_job_started(self, job_id: int, step_index: int) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE jobs
                SET status = 'running', current_step_index = $1,
                    started_at = COALESCE(started_at, $2)
                WHERE id = $3
                """,
                step_index,
                utc_now(),
                job_id,
            )
        finally:
            await conn.close()

    async def update_task(self, task_id: int, **fields: Any) -> None:
        check_fields(fields, TASK_UPDATE_FIELDS)
        if not fields:
            return
        clause, values = _set_clause(fields)
        conn = await self._connect()
        try:
            await conn.execute(
                f"UPDATE tasks SET {clause} WHERE id = ${len(values) + 1}",
                *values,
                task_id,
            )
        finally:
            await conn.close()

    async def update_tasks(
        self, job_id: int, from_statuses: Iterable[str], **fields: Any
    ) -> int:
        check_fields(fields, TASK_UPDATE_FIELDS)
        if not fields:
            return 0
        clause, values = _set_clause(fields)
        n = len(values)
        conn = await self._connect()
        try:
            result = await conn.execute(
                f"UPDATE tasks SET {clause} "
                f"WHERE job_id = ${n + 1} AND status = ANY(${n + 2}::text[])",
                *values,
                job_id,
                list(from_statuses),
            )
        finally:
            await conn.close()
        # asyncpg returns the command tag, e.g. "UPDATE 3"
        return int(result.split()[-1])

    async def list_jobs(self, filters: JobFilter) -> list[Job]:
        clauses = []
        params: list[Any] = []
        if filters.user_id is not None:
            params.append(filters.user_id)
            clauses.append(f"user_id = ${len(params)}")
        if filters.project_id is not None:
            params.append(filters.project_id)
            clauses.append(f"project_id = ${len(params)}")
        if filters.workflow_type:
            params.append(filters.workflow_type)
            clauses.append(f"workflow_type = ${len(params)}")
        if filters.statuses:
            params.append(list(filters.statuses))
            clauses.append(f"status = ANY(${len(params)}::text[])")
        where = " AND ".join(clauses) if clauses else "TRUE"
        params.extend([filters.limit, filters.offset])
        query = (
            f"SELECT {_JOB_COLUMNS} FROM jobs WHERE {where} "
            f"ORDER BY created_at DESC, id DESC "
            f"LIMIT ${len(params) - 1} OFFSET ${len(params)}"
        )
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [Job(**_decode_record(r)) for r in rows]
