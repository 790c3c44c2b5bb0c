"""Return shapes of the workflow engine's public operations."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ..persistence import Job, Task


class TaskSummary(BaseModel):
    id: int
    step_index: int
    task_type: str
    status: str


class StartedWorkflow(BaseModel):
    """A freshly created job and its pre-created tasks."""

    job_id: int
    tasks: List[TaskSummary] = Field(default_factory=list)


class JobAction(BaseModel):
    """Acknowledgement of a resume or cancel request."""

    job_id: int
    status: str


class JobView(Job):
    """Read projection of a job with its human readable workflow name.

    ``tasks`` is populated for single-job lookups and left ``None`` in lists.
    """

    workflow_name: str
    tasks: Optional[List[Task]] = None
