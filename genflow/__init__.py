"""Genflow: multi-step AI generation workflows with resumable jobs."""

from .config import GenflowConfig, configure_logging, load_config
from .engine import JobView, StartedWorkflow, WorkflowEngine
from .errors import GenflowError
from .persistence import get_repository
from .providers import HttpProviderClient, PollOptions, ProviderPoller, submit_and_poll
from .registry import (
    REGISTRY,
    ExecutionContext,
    StepDefinition,
    WorkflowDefinition,
    create_build_input,
    register_workflow,
)
from .tracing import get_trace, run_with_trace, trace, traced

__version__ = "0.1.0"
__all__ = [
    "GenflowConfig",
    "load_config",
    "configure_logging",
    "WorkflowEngine",
    "StartedWorkflow",
    "JobView",
    "GenflowError",
    "get_repository",
    "HttpProviderClient",
    "PollOptions",
    "ProviderPoller",
    "submit_and_poll",
    "REGISTRY",
    "ExecutionContext",
    "StepDefinition",
    "WorkflowDefinition",
    "create_build_input",
    "register_workflow",
    "trace",
    "traced",
    "run_with_trace",
    "get_trace",
]
