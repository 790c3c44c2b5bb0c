"""Read-only projections of jobs and their tasks."""

from __future__ import annotations

from typing import List, Optional

from ..constants import DEFAULT_LIST_LIMIT
from ..errors import JobNotFoundError
from ..persistence import Job, JobFilter, JobRepository
from ..registry import WorkflowRegistry
from .models import JobView


def parse_statuses(status: Optional[str]) -> List[str]:
    """Split a comma separated status filter, dropping blanks."""
    if not status:
        return []
    return [s.strip() for s in status.split(",") if s.strip()]


class WorkflowQuery:
    def __init__(self, repository: JobRepository, registry: WorkflowRegistry) -> None:
        self._repository = repository
        self._registry = registry

    def _workflow_name(self, workflow_type: str) -> str:
        definition = self._registry.get(workflow_type)
        return definition.name if definition else workflow_type

    def _view(self, job: Job, tasks=None) -> JobView:
        return JobView(
            **job.model_dump(),
            workflow_name=self._workflow_name(job.workflow_type),
            tasks=tasks,
        )

    async def get_job_status(self, job_id: int) -> JobView:
        job = await self._repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        tasks = await self._repository.list_tasks(job_id)
        return self._view(job, tasks)

    async def list_jobs(
        self,
        user_id: Optional[int],
        project_id: Optional[int] = None,
        workflow_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> List[JobView]:
        """List a user's jobs, newest first.

        ``status`` accepts a comma separated set such as ``"running,failed"``.
        """
        jobs = await self._repository.list_jobs(
            JobFilter(
                user_id=user_id,
                project_id=project_id,
                workflow_type=workflow_type,
                statuses=parse_statuses(status),
                limit=limit,
                offset=offset,
            )
        )
        return [self._view(job) for job in jobs]
