"""Repository abstraction for job and task persistence."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from .models import Job, JobFilter, Task

# Columns the engine is allowed to write through ``update_job``/``update_task``.
JOB_UPDATE_FIELDS = frozenset(
    {
        "status",
        "current_step_index",
        "error_message",
        "started_at",
        "completed_at",
    }
)
TASK_UPDATE_FIELDS = frozenset(
    {
        "status",
        "progress",
        "input_params",
        "result_data",
        "error_message",
        "trace_data",
        "model_name",
        "started_at",
        "completed_at",
    }
)


def check_fields(fields: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown fields for update: {sorted(unknown)}")


class JobRepository(Protocol):
    """Protocol for job/task persistence backends.

    Every method is a single atomic operation. ``create_job`` and
    ``update_tasks`` touch several rows and must apply them as a unit.
    """

    async def create_job(self, job: Job, tasks: list[Task]) -> tuple[Job, list[Task]]:
        """Insert a job and all of its tasks, returning them with ids assigned."""

    async def get_job(self, job_id: int) -> Job | None:
        """Retrieve a job by id."""

    async def get_task(self, task_id: int) -> Task | None:
        """Retrieve a task by id."""

    async def list_tasks(
        self, job_id: int, statuses: Iterable[str] | None = None
    ) -> list[Task]:
        """Return a job's tasks ordered by step index, optionally by status."""

    async def first_task(self, job_id: int, status: str) -> Task | None:
        """Return the lowest-index task of a job in ``status``."""

    async def update_job(self, job_id: int, **fields: Any) -> None:
        """Set ``fields`` on a job."""

    async def mark_job_started(self, job_id: int, step_index: int) -> None:
        """Set a job running at ``step_index``; stamp ``started_at`` only once."""

    async def update_task(self, task_id: int, **fields: Any) -> None:
        """Set ``fields`` on a task."""

    async def update_tasks(
        self, job_id: int, from_statuses: Iterable[str], **fields: Any
    ) -> int:
        """Set ``fields`` on every task of a job in ``from_statuses``."""

    async def list_jobs(self, filters: JobFilter) -> list[Job]:
        """Return jobs matching ``filters``, newest first."""
