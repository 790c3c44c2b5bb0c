"""Workflow executor: advances a job one step at a time."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from ..constants import (
    MODEL_NAME_KEYS,
    TASK_PENDING,
    TASK_PROCESSING,
    TERMINAL_JOB_STATUSES,
)
from ..errors import (
    JobNotFoundError,
    StepDefinitionNotFoundError,
    WorkflowNotFoundError,
    WorkflowStateError,
)
from ..persistence import JobRepository
from ..registry import REGISTRY, StepDefinition, WorkflowRegistry
from ..tracing import get_trace, run_with_trace
from .context import ContextBuilder
from .status import JobStatusManager

logger = logging.getLogger(__name__)


def _error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _model_name(input_params: Any) -> Optional[str]:
    if not isinstance(input_params, dict):
        return None
    for key in MODEL_NAME_KEYS:
        value = input_params.get(key)
        if value:
            return str(value)
    return None


class _ProgressReporter:
    """Progress callback handed to step handlers.

    Each call schedules a progress write and returns it as an awaitable, so
    async handlers can ``await on_progress(50)`` and sync handlers can fire
    and forget. ``drain`` waits for outstanding writes before the task's
    outcome is recorded.
    """

    def __init__(self, status: JobStatusManager, task_id: int) -> None:
        self._status = status
        self._task_id = task_id
        self._pending: set[asyncio.Future] = set()

    def __call__(self, progress: int) -> asyncio.Future:
        future = asyncio.ensure_future(
            self._status.report_progress(self._task_id, progress)
        )
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        return future

    async def drain(self) -> None:
        if not self._pending:
            return
        results = await asyncio.gather(*self._pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(
                    f"Progress update failed for task_id={self._task_id}: {result}"
                )


class WorkflowExecutor:
    """Runs the steps of a job in order until it completes or a step fails.

    ``run_next_step`` is the single entry point for starting, continuing and
    resuming a job. Every status write goes through :class:`JobStatusManager`.
    """

    def __init__(
        self,
        repository: JobRepository,
        registry: Optional[WorkflowRegistry] = None,
        status: Optional[JobStatusManager] = None,
        context_builder: Optional[ContextBuilder] = None,
    ) -> None:
        self._repository = repository
        self._registry = registry if registry is not None else REGISTRY
        self._status = status or JobStatusManager(repository)
        self._context = context_builder or ContextBuilder(repository)

    async def run_next_step(self, job_id: int) -> None:
        """Run pending steps of ``job_id`` until none remain or one fails.

        A job already completed, failed or cancelled is left untouched.
        """
        while await self._advance(job_id):
            pass

    async def _advance(self, job_id: int) -> bool:
        job = await self._repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status in TERMINAL_JOB_STATUSES:
            logger.info(f"Job {job_id} is {job.status}, nothing to run")
            return False

        definition = self._registry.get(job.workflow_type)
        if definition is None:
            await self._status.fail_job(
                job_id, str(WorkflowNotFoundError(job.workflow_type))
            )
            return False

        running = await self._repository.first_task(job_id, TASK_PROCESSING)
        if running is not None:
            logger.warning(
                f"Job {job_id} already has step {running.step_index} processing, "
                "ignoring duplicate trigger"
            )
            return False

        task = await self._repository.first_task(job_id, TASK_PENDING)
        if task is None:
            await self._status.complete_job(job_id)
            return False

        step_def = definition.step(task.step_index)
        if step_def is None:
            message = str(StepDefinitionNotFoundError(task.step_index))
            await self._status.fail_task(task.id, message)
            await self._status.fail_job(job_id, message)
            return False

        try:
            await self._status.mark_job_running(job_id, task.step_index)
            context = await self._context.build_context(job_id, job)
        except Exception as exc:
            await self._record_prepare_failure(
                job_id, task.id, task.step_index, step_def, exc
            )
            raise

        try:
            input_params = step_def.build_input(context)
        except Exception as exc:
            error = _error_text(exc)
            logger.exception(
                f"Building input for job {job_id} step {task.step_index} failed"
            )
            await self._status.fail_task(task.id, f"failed to build input: {error}")
            await self._status.fail_job(
                job_id,
                f"step {task.step_index} ({step_def.task_type}) input build failed: {error}",
            )
            return False

        return await self.execute_task(task.id, step_def, input_params, job_id)

    async def execute_task(
        self,
        task_id: int,
        step_def: StepDefinition,
        input_params: dict[str, Any],
        job_id: int,
    ) -> bool:
        """Run one step's handler under an execution trace.

        Returns ``True`` when the step completed and the job should advance.
        If the job was cancelled while the handler ran, the outcome is
        discarded.
        """
        task = await self._repository.get_task(task_id)
        if task is None:
            raise WorkflowStateError(f"task not found: task_id={task_id}")

        await self._status.mark_task_processing(
            task_id, input_params, _model_name(input_params)
        )
        reporter = _ProgressReporter(self._status, task_id)
        logger.info(
            f"Running job {job_id} step {task.step_index} ({step_def.task_type})"
        )

        try:
            result, trace_data = await run_with_trace(
                task_id,
                step_def.task_type,
                lambda: step_def.handler(input_params, reporter),
            )
        except Exception as exc:
            await reporter.drain()
            if await self._job_finished(job_id):
                return False
            error = _error_text(exc)
            await self._status.fail_task(task_id, error, get_trace(exc))
            await self._status.fail_job(
                job_id, f"step {task.step_index} ({step_def.task_type}) failed: {error}"
            )
            return False

        await reporter.drain()
        if await self._job_finished(job_id):
            return False
        await self._status.complete_task(task_id, result, trace_data)
        return True

    async def _record_prepare_failure(
        self,
        job_id: int,
        task_id: int,
        step_index: int,
        step_def: StepDefinition,
        exc: Exception,
    ) -> None:
        # Best effort: the store that just failed may reject these writes too.
        error = _error_text(exc)
        try:
            await self._status.fail_task(task_id, f"failed to prepare step: {error}")
            await self._status.fail_job(
                job_id,
                f"step {step_index} ({step_def.task_type}) preparation failed: {error}",
            )
        except Exception:
            logger.exception(f"Could not record failure of job {job_id} step {step_index}")

    async def _job_finished(self, job_id: int) -> bool:
        job = await self._repository.get_job(job_id)
        if job is None or job.status in TERMINAL_JOB_STATUSES:
            logger.warning(
                f"Job {job_id} became {job.status if job else 'missing'} while a "
                "step was running, discarding its outcome"
            )
            return True
        return False
