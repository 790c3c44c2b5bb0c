"""Cancel an in-flight job."""

from __future__ import annotations

import logging

from ..constants import JOB_CANCELLED, JOB_COMPLETED
from ..errors import JobNotFoundError, PermissionDeniedError, WorkflowStateError
from ..persistence import JobRepository
from .models import JobAction
from .status import JobStatusManager

logger = logging.getLogger(__name__)


class WorkflowCanceller:
    """Mark a job's unfinished tasks failed and the job cancelled.

    Cancellation is state based: a handler already running is not
    interrupted, the executor drops its outcome once it sees the job is
    cancelled.
    """

    def __init__(self, repository: JobRepository, status: JobStatusManager) -> None:
        self._repository = repository
        self._status = status

    async def cancel(self, job_id: int, user_id: int) -> JobAction:
        job = await self._repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.user_id != user_id:
            raise PermissionDeniedError(f"job {job_id} does not belong to user {user_id}")
        if job.status in (JOB_COMPLETED, JOB_CANCELLED):
            raise WorkflowStateError(
                f"job {job_id} is already {job.status} and cannot be cancelled"
            )

        await self._status.cancel_job(job_id)
        return JobAction(job_id=job_id, status=JOB_CANCELLED)
