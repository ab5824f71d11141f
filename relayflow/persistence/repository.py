"""Repository abstraction for workflow persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..models import ClientValidation, StepExecution, WorkflowDefinition, WorkflowInstance


class WorkflowRepository(Protocol):
    """Protocol for persistence backends.

    ``update_instance`` and ``update_validation`` are compare-and-swap writes:
    they only succeed when the stored ``version`` equals ``expected_version``,
    store the record with ``version + 1`` and return it. Otherwise they raise
    ``ConcurrentModification``.
    """

    # Definitions -------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        """Insert or replace a workflow definition."""

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        """Retrieve a workflow definition by id."""

    async def list_definitions(self) -> list[WorkflowDefinition]:
        """Return all workflow definitions."""

    # Instances ---------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> None:
        """Persist a new workflow instance."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance by id."""

    async def list_instances(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowInstance]:
        """Return instances, newest first, optionally for one workflow."""

    async def update_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> WorkflowInstance:
        """Conditionally replace an instance."""

    async def delete_instance(self, instance_id: str) -> None:
        """Delete an instance with its step executions and validations."""

    # Step executions ---------------------------------------------------
    async def add_step_execution(self, execution: StepExecution) -> None:
        """Append a step execution to the ledger."""

    async def seal_step_execution(self, execution: StepExecution) -> None:
        """Store the terminal state of an execution that is still in progress.

        Raises ``InvalidState`` when the stored record is already sealed.
        """

    async def get_step_execution(self, execution_id: str) -> StepExecution | None:
        """Retrieve one step execution."""

    async def list_step_executions(self, instance_id: str) -> list[StepExecution]:
        """Return the ledger of an instance in insertion order."""

    # Client validations ------------------------------------------------
    async def create_validation(self, validation: ClientValidation) -> None:
        """Persist a new client validation."""

    async def get_validation(self, validation_id: str) -> ClientValidation | None:
        """Retrieve a client validation by id."""

    async def get_validation_by_token(self, token: str) -> ClientValidation | None:
        """Retrieve a client validation by its secure token."""

    async def find_open_validation(
        self, instance_id: str, step_id: str
    ) -> ClientValidation | None:
        """Return the pending validation for a step, if any."""

    async def update_validation(
        self, validation: ClientValidation, expected_version: int
    ) -> ClientValidation:
        """Conditionally replace a client validation."""
