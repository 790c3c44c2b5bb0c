"""Assemble the execution context handed to a step's input builder."""

from __future__ import annotations

import logging

from ..constants import TASK_COMPLETED
from ..persistence import Job, JobRepository
from ..registry import ExecutionContext

logger = logging.getLogger(__name__)


class ContextBuilder:
    """Build an :class:`ExecutionContext` from persisted job and task rows.

    Results are passed through as the repository returns them; decoding
    stored JSON is the repository's job.
    """

    def __init__(self, repository: JobRepository) -> None:
        self._repository = repository

    async def build_context(self, job_id: int, job: Job) -> ExecutionContext:
        completed = await self._repository.list_tasks(job_id, [TASK_COMPLETED])
        previous_results = {task.step_index: task.result_data for task in completed}
        logger.debug(
            f"Built context for job_id={job_id} with steps {sorted(previous_results)}"
        )
        return ExecutionContext(
            job_params=dict(job.input_params or {}),
            previous_results=previous_results,
            user_id=job.user_id,
            project_id=job.project_id,
        )
