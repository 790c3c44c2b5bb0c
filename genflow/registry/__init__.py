"""Workflow definition registry."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..errors import ConfigurationError
from .inputs import FIELD_REGISTRY, FieldSpec, create_build_input
from .models import ExecutionContext, StepDefinition, WorkflowDefinition

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """Map workflow type strings to their :class:`WorkflowDefinition`."""

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}

    def register(
        self,
        workflow_type: str,
        definition: WorkflowDefinition,
        replace: bool = False,
    ) -> WorkflowDefinition:
        """Add ``definition`` under ``workflow_type``.

        Registering the same type twice is an error unless ``replace`` is set.
        """
        if not definition.steps:
            raise ConfigurationError(f"workflow {workflow_type!r} has no steps")
        if workflow_type in self._definitions and not replace:
            raise ConfigurationError(f"workflow {workflow_type!r} is already registered")
        self._definitions[workflow_type] = definition
        logger.debug(
            f"Registered workflow {workflow_type} ({len(definition.steps)} steps)"
        )
        return definition

    def unregister(self, workflow_type: str) -> None:
        self._definitions.pop(workflow_type, None)

    def get(self, workflow_type: str) -> Optional[WorkflowDefinition]:
        return self._definitions.get(workflow_type)

    def available(self) -> List[Dict[str, Any]]:
        """Describe every registered workflow with its steps."""
        return [
            definition.summary(workflow_type)
            for workflow_type, definition in self._definitions.items()
        ]

    def __contains__(self, workflow_type: object) -> bool:
        return workflow_type in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)


# Process-wide registry populated by definition modules at import time.
REGISTRY = WorkflowRegistry()


def register_workflow(
    workflow_type: str, definition: WorkflowDefinition, replace: bool = False
) -> WorkflowDefinition:
    """Add ``definition`` to ``REGISTRY``."""
    return REGISTRY.register(workflow_type, definition, replace=replace)


def get_workflow_definition(workflow_type: str) -> Optional[WorkflowDefinition]:
    return REGISTRY.get(workflow_type)


def available_workflows() -> List[Dict[str, Any]]:
    return REGISTRY.available()


__all__ = [
    "ExecutionContext",
    "StepDefinition",
    "WorkflowDefinition",
    "WorkflowRegistry",
    "REGISTRY",
    "register_workflow",
    "get_workflow_definition",
    "available_workflows",
    "FIELD_REGISTRY",
    "FieldSpec",
    "create_build_input",
]
