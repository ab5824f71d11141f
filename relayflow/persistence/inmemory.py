"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..errors import ConcurrentModification, InvalidState, NotFound
from ..models import (
    ClientValidation,
    StepExecution,
    ValidationStatus,
    WorkflowDefinition,
    WorkflowInstance,
)
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._executions: Dict[str, StepExecution] = {}
        self._validations: Dict[str, ClientValidation] = {}

    # ------------------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.id] = definition

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        return self._definitions.get(workflow_id)

    async def list_definitions(self) -> list[WorkflowDefinition]:
        return list(self._definitions.values())

    # ------------------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> None:
        self._instances[instance.id] = instance.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def list_instances(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowInstance]:
        instances = [
            i.model_copy(deep=True)
            for i in self._instances.values()
            if workflow_id is None or i.workflow_id == workflow_id
        ]
        return sorted(instances, key=lambda i: i.started_at, reverse=True)

    async def update_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> WorkflowInstance:
        stored = self._instances.get(instance.id)
        if stored is None:
            raise NotFound(f"Workflow instance {instance.id} not found")
        if stored.version != expected_version:
            raise ConcurrentModification(
                f"Workflow instance {instance.id} changed (expected version {expected_version}, found {stored.version})"
            )
        updated = instance.model_copy(update={"version": expected_version + 1}, deep=True)
        self._instances[instance.id] = updated
        return updated.model_copy(deep=True)

    async def delete_instance(self, instance_id: str) -> None:
        self._instances.pop(instance_id, None)
        for key in [k for k, e in self._executions.items() if e.instance_id == instance_id]:
            del self._executions[key]
        for key in [k for k, v in self._validations.items() if v.instance_id == instance_id]:
            del self._validations[key]

    # ------------------------------------------------------------------
    async def add_step_execution(self, execution: StepExecution) -> None:
        self._executions[execution.id] = execution.model_copy(deep=True)

    async def seal_step_execution(self, execution: StepExecution) -> None:
        stored = self._executions.get(execution.id)
        if stored is None:
            raise NotFound(f"Step execution {execution.id} not found")
        if stored.is_sealed:
            raise InvalidState(f"Step execution {execution.id} is already sealed")
        self._executions[execution.id] = execution.model_copy(deep=True)

    async def get_step_execution(self, execution_id: str) -> StepExecution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_step_executions(self, instance_id: str) -> list[StepExecution]:
        # dicts keep insertion order
        return [
            e.model_copy(deep=True)
            for e in self._executions.values()
            if e.instance_id == instance_id
        ]

    # ------------------------------------------------------------------
    async def create_validation(self, validation: ClientValidation) -> None:
        self._validations[validation.id] = validation.model_copy(deep=True)

    async def get_validation(self, validation_id: str) -> ClientValidation | None:
        validation = self._validations.get(validation_id)
        return validation.model_copy(deep=True) if validation else None

    async def get_validation_by_token(self, token: str) -> ClientValidation | None:
        for validation in self._validations.values():
            if validation.secure_token == token:
                return validation.model_copy(deep=True)
        return None

    async def find_open_validation(
        self, instance_id: str, step_id: str
    ) -> ClientValidation | None:
        matches: List[ClientValidation] = [
            v
            for v in self._validations.values()
            if v.instance_id == instance_id
            and v.step_id == step_id
            and v.status == ValidationStatus.PENDING
        ]
        return matches[-1].model_copy(deep=True) if matches else None

    async def update_validation(
        self, validation: ClientValidation, expected_version: int
    ) -> ClientValidation:
        stored = self._validations.get(validation.id)
        if stored is None:
            raise NotFound(f"Client validation {validation.id} not found")
        if stored.version != expected_version:
            raise ConcurrentModification(
                f"Client validation {validation.id} changed (expected version {expected_version}, found {stored.version})"
            )
        updated = validation.model_copy(
            update={"version": expected_version + 1}, deep=True
        )
        self._validations[validation.id] = updated
        return updated.model_copy(deep=True)
