"""Pydantic models describing workflow definitions."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

ProgressReporter = Callable[[int], Awaitable[None]]
StepHandler = Callable[[Dict[str, Any], ProgressReporter], Union[Any, Awaitable[Any]]]


class ExecutionContext(BaseModel):
    """Input available to a step: job parameters plus prior step results."""

    job_params: Dict[str, Any] = Field(default_factory=dict)
    previous_results: Dict[int, Any] = Field(default_factory=dict)
    user_id: Optional[int] = None
    project_id: Optional[int] = None


class StepDefinition(BaseModel):
    """One step of a workflow backed by a capability handler.

    ``build_input`` turns the :class:`ExecutionContext` into the handler's
    input dict and may raise when upstream data is missing. ``handler`` is
    called as ``handler(input_params, on_progress)`` and may be sync or
    async; ``on_progress(percent)`` returns an awaitable.
    """

    task_type: str
    target_type: Optional[str] = None
    build_input: Callable[[ExecutionContext], Dict[str, Any]]
    handler: StepHandler


class WorkflowDefinition(BaseModel):
    """Static, ordered list of steps registered under a workflow type."""

    name: str
    description: Optional[str] = None
    steps: List[StepDefinition] = Field(default_factory=list)

    def step(self, index: int) -> Optional[StepDefinition]:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def summary(self, workflow_type: str) -> Dict[str, Any]:
        return {
            "type": workflow_type,
            "name": self.name,
            "description": self.description,
            "total_steps": len(self.steps),
            "steps": [
                {
                    "index": i,
                    "task_type": s.task_type,
                    "target_type": s.target_type,
                }
                for i, s in enumerate(self.steps)
            ],
        }
