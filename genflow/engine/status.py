"""The single writer of job and task status fields.

Each method is one persisted update plus a log line. Nothing here reads
state back to decide whether a transition is legal; the executor and the
lifecycle operations own that decision.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..constants import (
    CANCELLED_JOB_MESSAGE,
    CANCELLED_TASK_MESSAGE,
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_RUNNING,
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_PENDING,
    TASK_PROCESSING,
    TASK_START_PROGRESS,
)
from ..persistence import JobRepository
from ..persistence.models import utc_now

logger = logging.getLogger(__name__)


class JobStatusManager:
    def __init__(self, repository: JobRepository) -> None:
        self._repository = repository

    async def complete_task(
        self,
        task_id: int,
        result_data: Any,
        trace_data: Optional[dict[str, Any]] = None,
    ) -> None:
        await self._repository.update_task(
            task_id,
            status=TASK_COMPLETED,
            progress=100,
            result_data=result_data,
            trace_data=trace_data,
            completed_at=utc_now(),
        )
        logger.info(f"Task completed: task_id={task_id}")

    async def fail_task(
        self,
        task_id: int,
        error_message: str,
        trace_data: Optional[dict[str, Any]] = None,
    ) -> None:
        await self._repository.update_task(
            task_id,
            status=TASK_FAILED,
            error_message=error_message,
            trace_data=trace_data,
            completed_at=utc_now(),
        )
        logger.error(f"Task failed: task_id={task_id}, error={error_message}")

    async def complete_job(self, job_id: int) -> None:
        await self._repository.update_job(
            job_id, status=JOB_COMPLETED, completed_at=utc_now()
        )
        logger.info(f"Job completed: job_id={job_id}")

    async def fail_job(self, job_id: int, error_message: str) -> None:
        await self._repository.update_job(
            job_id, status=JOB_FAILED, error_message=error_message
        )
        logger.error(f"Job failed: job_id={job_id}, error={error_message}")

    async def mark_job_running(self, job_id: int, step_index: int) -> None:
        """Set the job running at ``step_index``; ``started_at`` is set once."""
        await self._repository.mark_job_started(job_id, step_index)
        logger.info(f"Job running: job_id={job_id}, step={step_index}")

    async def mark_task_processing(
        self,
        task_id: int,
        input_params: dict[str, Any],
        model_name: Optional[str] = None,
    ) -> None:
        await self._repository.update_task(
            task_id,
            status=TASK_PROCESSING,
            progress=TASK_START_PROGRESS,
            input_params=input_params,
            model_name=model_name,
            started_at=utc_now(),
        )
        logger.info(f"Task processing: task_id={task_id}, model={model_name}")

    async def report_progress(self, task_id: int, progress: int) -> None:
        progress = max(0, min(100, int(progress)))
        await self._repository.update_task(task_id, progress=progress)
        logger.debug(f"Task progress: task_id={task_id}, progress={progress}")

    async def reset_failed_tasks(self, job_id: int) -> int:
        """Put the job back to running and its failed tasks back to pending."""
        reset = await self._repository.update_tasks(
            job_id,
            [TASK_FAILED],
            status=TASK_PENDING,
            error_message=None,
            progress=0,
            completed_at=None,
        )
        await self._repository.update_job(
            job_id, status=JOB_RUNNING, error_message=None, completed_at=None
        )
        logger.info(f"Job reset for resume: job_id={job_id}, tasks_reset={reset}")
        return reset

    async def reset_stale_tasks(self, job_id: int) -> int:
        """Return tasks left ``processing`` by a dead worker to pending."""
        reset = await self._repository.update_tasks(
            job_id,
            [TASK_PROCESSING],
            status=TASK_PENDING,
            error_message=None,
            progress=0,
            started_at=None,
        )
        logger.warning(f"Stale tasks reset: job_id={job_id}, tasks_reset={reset}")
        return reset

    async def cancel_job(self, job_id: int) -> int:
        """Fail every unfinished task with a cancellation message, then cancel."""
        now = utc_now()
        cancelled = await self._repository.update_tasks(
            job_id,
            [TASK_PENDING, TASK_PROCESSING],
            status=TASK_FAILED,
            error_message=CANCELLED_TASK_MESSAGE,
            completed_at=now,
        )
        await self._repository.update_job(
            job_id,
            status=JOB_CANCELLED,
            error_message=CANCELLED_JOB_MESSAGE,
            completed_at=now,
        )
        logger.info(f"Job cancelled: job_id={job_id}, tasks_cancelled={cancelled}")
        return cancelled
