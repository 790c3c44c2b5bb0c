"""Resume a failed (or stalled) job from its first unfinished step."""

from __future__ import annotations

import logging
from typing import Optional

from ..constants import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    TASK_FAILED,
    TASK_PROCESSING,
)
from ..errors import JobNotFoundError, PermissionDeniedError, WorkflowStateError
from ..persistence import JobRepository
from .models import JobAction
from .starter import Trigger
from .status import JobStatusManager

logger = logging.getLogger(__name__)


class WorkflowResumer:
    def __init__(
        self, repository: JobRepository, status: JobStatusManager, trigger: Trigger
    ) -> None:
        self._repository = repository
        self._status = status
        self._trigger = trigger

    async def resume(
        self, job_id: int, user_id: Optional[int] = None, force: bool = False
    ) -> JobAction:
        """Reset failed tasks to pending and re-trigger the executor.

        A ``pending`` or ``running`` job with no step in flight (for example
        after a process restart) is simply re-triggered. A step still marked
        ``processing`` is refused unless ``force`` is set, in which case it
        is treated as abandoned by a crashed worker and run again. Completed
        and cancelled jobs cannot be resumed.
        """
        job = await self._repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if user_id is not None and job.user_id != user_id:
            raise PermissionDeniedError(f"job {job_id} does not belong to user {user_id}")
        if job.status in (JOB_COMPLETED, JOB_CANCELLED):
            raise WorkflowStateError(
                f"job {job_id} is {job.status} and cannot be resumed"
            )

        running = await self._repository.first_task(job_id, TASK_PROCESSING)
        if running is not None:
            if not force:
                raise WorkflowStateError(
                    f"job {job_id} is still running step {running.step_index}; "
                    "resume with force to recover a step abandoned by a crash"
                )
            logger.warning(
                f"Job {job_id} step {running.step_index} is marked processing, "
                "forcing it back to pending"
            )
            await self._status.reset_stale_tasks(job_id)

        if job.status == JOB_FAILED:
            failed = await self._repository.list_tasks(job_id, [TASK_FAILED])
            if len(failed) > 1:
                logger.warning(
                    f"Job {job_id} has {len(failed)} failed tasks "
                    f"(steps {[t.step_index for t in failed]}); resetting all, "
                    "execution restarts at the lowest"
                )
            await self._status.reset_failed_tasks(job_id)

        logger.info(f"Resuming workflow: job_id={job_id}")
        self._trigger(job_id)
        return JobAction(job_id=job_id, status="resuming")
