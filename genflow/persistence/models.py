"""Data models for persisted job and task state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

JobStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
TaskStatus = Literal["pending", "processing", "completed", "failed"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Task(BaseModel):
    """Execution record of one workflow step within a job."""

    id: Optional[int] = None
    job_id: Optional[int] = None
    step_index: int
    task_type: str
    target_type: Optional[str] = None
    user_id: Optional[int] = None
    project_id: Optional[int] = None
    status: TaskStatus = "pending"
    progress: int = 0
    input_params: Optional[dict[str, Any]] = None
    result_data: Optional[Any] = None
    error_message: Optional[str] = None
    trace_data: Optional[dict[str, Any]] = None
    model_name: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class Job(BaseModel):
    """One instantiated run of a workflow definition."""

    id: Optional[int] = None
    workflow_type: str
    status: JobStatus = "pending"
    current_step_index: int = 0
    total_steps: int
    input_params: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[int] = None
    project_id: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobFilter(BaseModel):
    """Filters accepted by ``JobRepository.list_jobs``."""

    user_id: Optional[int] = None
    project_id: Optional[int] = None
    workflow_type: Optional[str] = None
    statuses: list[str] = Field(default_factory=list)
    limit: int = 50
    offset: int = 0
