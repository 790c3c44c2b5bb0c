"""In-memory implementation of the job repository."""

from __future__ import annotations

from typing import Any, Dict, Iterable

from .models import Job, JobFilter, Task, utc_now
from .repository import (
    JOB_UPDATE_FIELDS,
    TASK_UPDATE_FIELDS,
    JobRepository,
    check_fields,
)


class InMemoryJobRepository(JobRepository):
    """Store jobs and tasks in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._jobs: Dict[int, Job] = {}
        self._tasks: Dict[int, Task] = {}
        self._job_id = 0
        self._task_id = 0

    # ------------------------------------------------------------------
    async def create_job(self, job: Job, tasks: list[Task]) -> tuple[Job, list[Task]]:
        self._job_id += 1
        stored_job = job.model_copy(deep=True, update={"id": self._job_id})
        stored_tasks = []
        for task in tasks:
            self._task_id += 1
            stored_tasks.append(
                task.model_copy(
                    deep=True, update={"id": self._task_id, "job_id": self._job_id}
                )
            )
        self._jobs[stored_job.id] = stored_job
        for task in stored_tasks:
            self._tasks[task.id] = task
        return (
            stored_job.model_copy(deep=True),
            [t.model_copy(deep=True) for t in stored_tasks],
        )

    async def get_job(self, job_id: int) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def get_task(self, task_id: int) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def list_tasks(
        self, job_id: int, statuses: Iterable[str] | None = None
    ) -> list[Task]:
        wanted = set(statuses) if statuses is not None else None
        tasks = [
            t
            for t in self._tasks.values()
            if t.job_id == job_id and (wanted is None or t.status in wanted)
        ]
        tasks.sort(key=lambda t: t.step_index)
        return [t.model_copy(deep=True) for t in tasks]

    async def first_task(self, job_id: int, status: str) -> Task | None:
        tasks = await self.list_tasks(job_id, [status])
        return tasks[0] if tasks else None

    async def update_job(self, job_id: int, **fields: Any) -> None:
        check_fields(fields, JOB_UPDATE_FIELDS)
        job = self._jobs.get(job_id)
        if job:
            self._jobs[job_id] = job.model_copy(deep=True, update=fields)

    async def mark_job_started(self, job_id: int, step_index: int) -> None:
        job = self._jobs.get(job_id)
        if job:
            self._jobs[job_id] = job.model_copy(
                update={
                    "status": "running",
                    "current_step_index": step_index,
                    "started_at": job.started_at or utc_now(),
                }
            )

    async def update_task(self, task_id: int, **fields: Any) -> None:
        check_fields(fields, TASK_UPDATE_FIELDS)
        task = self._tasks.get(task_id)
        if task:
            self._tasks[task_id] = task.model_copy(deep=True, update=fields)

    async def update_tasks(
        self, job_id: int, from_statuses: Iterable[str], **fields: Any
    ) -> int:
        check_fields(fields, TASK_UPDATE_FIELDS)
        wanted = set(from_statuses)
        updated = 0
        for task_id, task in list(self._tasks.items()):
            if task.job_id == job_id and task.status in wanted:
                self._tasks[task_id] = task.model_copy(deep=True, update=fields)
                updated += 1
        return updated

    async def list_jobs(self, filters: JobFilter) -> list[Job]:
        jobs = [
            j
            for j in self._jobs.values()
            if (filters.user_id is None or j.user_id == filters.user_id)
            and (filters.project_id is None or j.project_id == filters.project_id)
            and (
                filters.workflow_type is None
                or j.workflow_type == filters.workflow_type
            )
            and (not filters.statuses or j.status in filters.statuses)
        ]
        jobs.sort(key=lambda j: (j.created_at, j.id), reverse=True)
        page = jobs[filters.offset : filters.offset + filters.limit]
        return [j.model_copy(deep=True) for j in page]
