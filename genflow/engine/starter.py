"""Create a job with all of its tasks and hand it to the executor."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from ..errors import WorkflowNotFoundError
from ..persistence import Job, JobRepository, Task
from ..registry import WorkflowRegistry
from .models import StartedWorkflow, TaskSummary

logger = logging.getLogger(__name__)

Trigger = Callable[[int], Any]


class WorkflowStarter:
    def __init__(
        self, repository: JobRepository, registry: WorkflowRegistry, trigger: Trigger
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._trigger = trigger

    async def start(
        self,
        workflow_type: str,
        user_id: Optional[int] = None,
        project_id: Optional[int] = None,
        job_params: Optional[dict[str, Any]] = None,
    ) -> StartedWorkflow:
        """Persist a pending job plus one pending task per step.

        The executor is triggered in the background; this returns as soon as
        the rows exist.
        """
        definition = self._registry.get(workflow_type)
        if definition is None:
            raise WorkflowNotFoundError(workflow_type)

        job = Job(
            workflow_type=workflow_type,
            total_steps=len(definition.steps),
            input_params=dict(job_params or {}),
            user_id=user_id,
            project_id=project_id,
        )
        tasks = [
            Task(
                step_index=index,
                task_type=step.task_type,
                target_type=step.target_type,
                user_id=user_id,
                project_id=project_id,
            )
            for index, step in enumerate(definition.steps)
        ]
        job, tasks = await self._repository.create_job(job, tasks)
        logger.info(
            f"Workflow started: job_id={job.id}, type={workflow_type}, "
            f"steps={len(tasks)}"
        )

        self._trigger(job.id)
        return StartedWorkflow(
            job_id=job.id,
            tasks=[
                TaskSummary(
                    id=t.id, step_index=t.step_index, task_type=t.task_type, status=t.status
                )
                for t in tasks
            ],
        )
