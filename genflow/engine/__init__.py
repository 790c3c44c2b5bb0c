"""Workflow engine: start, resume, cancel and inspect multi-step jobs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..constants import DEFAULT_LIST_LIMIT
from ..persistence import JobRepository, get_repository
from ..registry import REGISTRY, WorkflowRegistry
from .canceller import WorkflowCanceller
from .context import ContextBuilder
from .executor import WorkflowExecutor
from .models import JobAction, JobView, StartedWorkflow, TaskSummary
from .query import WorkflowQuery, parse_statuses
from .resumer import WorkflowResumer
from .starter import WorkflowStarter
from .status import JobStatusManager

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Facade over the executor and the lifecycle operations.

    Start and resume return as soon as state is persisted; the executor runs
    in background ``asyncio`` tasks owned by the engine. Their errors are
    logged, never raised to the caller. ``join`` waits for them.
    """

    def __init__(
        self,
        repository: Optional[JobRepository] = None,
        registry: Optional[WorkflowRegistry] = None,
    ) -> None:
        self.repository = repository if repository is not None else get_repository()
        self.registry = registry if registry is not None else REGISTRY
        self.status = JobStatusManager(self.repository)
        self.executor = WorkflowExecutor(
            self.repository,
            self.registry,
            status=self.status,
            context_builder=ContextBuilder(self.repository),
        )
        self._starter = WorkflowStarter(self.repository, self.registry, self._trigger)
        self._resumer = WorkflowResumer(self.repository, self.status, self._trigger)
        self._canceller = WorkflowCanceller(self.repository, self.status)
        self._query = WorkflowQuery(self.repository, self.registry)
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Background execution
    def _trigger(self, job_id: int) -> asyncio.Task:
        task = asyncio.create_task(
            self._run_in_background(job_id), name=f"genflow-job-{job_id}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run_in_background(self, job_id: int) -> None:
        try:
            await self.executor.run_next_step(job_id)
        except Exception:
            logger.exception(f"Background execution of job {job_id} failed")

    async def join(self) -> None:
        """Wait until every background job trigger has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Public operations
    async def start_workflow(
        self,
        workflow_type: str,
        user_id: Optional[int] = None,
        project_id: Optional[int] = None,
        job_params: Optional[Dict[str, Any]] = None,
    ) -> StartedWorkflow:
        return await self._starter.start(workflow_type, user_id, project_id, job_params)

    async def resume_workflow(
        self, job_id: int, user_id: Optional[int] = None, force: bool = False
    ) -> JobAction:
        return await self._resumer.resume(job_id, user_id, force=force)

    async def cancel_workflow(self, job_id: int, user_id: int) -> JobAction:
        return await self._canceller.cancel(job_id, user_id)

    async def get_job_status(self, job_id: int) -> JobView:
        return await self._query.get_job_status(job_id)

    async def list_jobs(
        self,
        user_id: Optional[int],
        project_id: Optional[int] = None,
        workflow_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> List[JobView]:
        return await self._query.list_jobs(
            user_id, project_id, workflow_type, status, limit, offset
        )

    async def run_next_step(self, job_id: int) -> None:
        """Advance ``job_id`` in the caller's task instead of the background."""
        await self.executor.run_next_step(job_id)

    def available_workflows(self) -> List[Dict[str, Any]]:
        return self.registry.available()


__all__ = [
    "WorkflowEngine",
    "WorkflowExecutor",
    "WorkflowStarter",
    "WorkflowResumer",
    "WorkflowCanceller",
    "WorkflowQuery",
    "ContextBuilder",
    "JobStatusManager",
    "StartedWorkflow",
    "TaskSummary",
    "JobAction",
    "JobView",
    "parse_statuses",
]
