"""Exception hierarchy for genflow."""

from __future__ import annotations


class GenflowError(Exception):
    """Base class for all genflow errors."""


class ConfigurationError(GenflowError):
    """A workflow, step or provider is not configured correctly."""


class WorkflowNotFoundError(ConfigurationError):
    """No workflow definition is registered for a workflow type."""

    def __init__(self, workflow_type: str) -> None:
        super().__init__(f"workflow definition not found: {workflow_type}")
        self.workflow_type = workflow_type


class StepDefinitionNotFoundError(ConfigurationError):
    """A persisted task points at a step the definition no longer has."""

    def __init__(self, step_index: int) -> None:
        super().__init__(f"step definition not found: index={step_index}")
        self.step_index = step_index


class ProviderConfigurationError(ConfigurationError):
    """A provider is missing configuration needed to call or poll it."""


class InputBuildError(GenflowError):
    """A step's input could not be built from the execution context."""


class JobNotFoundError(GenflowError):
    def __init__(self, job_id: int) -> None:
        super().__init__(f"job not found: job_id={job_id}")
        self.job_id = job_id


class WorkflowStateError(GenflowError):
    """The requested lifecycle operation is illegal in the job's current state."""


class PermissionDeniedError(GenflowError):
    """The caller does not own the job."""


class ProviderError(GenflowError):
    """An external generation provider call failed."""


class ProviderNetworkError(ProviderError):
    """Transient transport failure talking to a provider."""


class ProviderFailedError(ProviderError):
    """The provider reported the generation as failed."""

    def __init__(self, message: str, task_id: str | None = None) -> None:
        super().__init__(f"{message} (task_id: {task_id})" if task_id else message)
        self.task_id = task_id


class PollTimeoutError(ProviderError):
    def __init__(self, task_id: str, elapsed_seconds: float) -> None:
        super().__init__(
            f"polling timed out after {round(elapsed_seconds)}s (task_id: {task_id})"
        )
        self.task_id = task_id
        self.elapsed_seconds = elapsed_seconds


class TooManyNetworkErrorsError(ProviderError):
    def __init__(self, count: int, last_error: BaseException) -> None:
        super().__init__(
            f"polling failed: too many network errors ({count} in a row): {last_error}"
        )
        self.count = count
        self.last_error = last_error
