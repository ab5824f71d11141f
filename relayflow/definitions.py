"""Step definition store: registers and serves workflow definitions."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .errors import NotFound
from .models import (
    AIStep,
    ClientValidateStep,
    HumanStep,
    StepDefinition,
    WorkflowDefinition,
)
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


def human(label: str, instructions: str = "", **kwargs) -> dict:
    return {"kind": "human", "label": label, "instructions": instructions, **kwargs}


def ai(label: str, system_prompt: str, user_prompt_template: str, **kwargs) -> dict:
    return {
        "kind": "ai",
        "label": label,
        "system_prompt": system_prompt,
        "user_prompt_template": user_prompt_template,
        **kwargs,
    }


def client_validate(label: str, instructions: str = "", **kwargs) -> dict:
    return {
        "kind": "client_validate",
        "label": label,
        "instructions": instructions,
        **kwargs,
    }


_STEP_TYPES = {
    "human": HumanStep,
    "ai": AIStep,
    "client_validate": ClientValidateStep,
}


def build_steps(entries: Iterable[dict | StepDefinition]) -> list[StepDefinition]:
    """Turn plain step dicts into step definitions numbered in list order.

    Entries that are already step definitions keep their own ``order_index``.
    """
    steps: list[StepDefinition] = []
    for index, entry in enumerate(entries):
        if isinstance(entry, (HumanStep, AIStep, ClientValidateStep)):
            steps.append(entry)
            continue
        data = dict(entry)
        data.setdefault("order_index", index)
        kind = data.get("kind")
        if kind not in _STEP_TYPES:
            raise ValueError(f"Unknown step kind: {kind}")
        steps.append(_STEP_TYPES[kind].model_validate(data))
    return steps


class DefinitionStore:
    """Thin service over the repository for workflow definitions.

    Definitions are immutable values. ``revise`` writes a new version under
    the same id; running instances are unaffected because they work from the
    step snapshot taken at start.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def register(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        await self._repository.save_definition(definition)
        logger.info(
            f"Registered workflow {definition.id} '{definition.title}' v{definition.version} with {len(definition.steps)} steps"
        )
        return definition

    async def create(
        self,
        title: str,
        steps: Iterable[dict | StepDefinition],
        *,
        description: str = "",
        author_id: Optional[str] = None,
        version: str = "1.0",
        version_notes: str = "",
        category: str = "custom",
        is_public: bool = False,
    ) -> WorkflowDefinition:
        definition = WorkflowDefinition(
            title=title,
            description=description,
            steps=build_steps(steps),
            author_id=author_id,
            version=version,
            version_notes=version_notes,
            category=category,
            is_public=is_public,
        )
        return await self.register(definition)

    async def get(self, workflow_id: str) -> WorkflowDefinition:
        definition = await self._repository.get_definition(workflow_id)
        if definition is None:
            raise NotFound(f"Workflow {workflow_id} not found")
        return definition

    async def list_definitions(self) -> list[WorkflowDefinition]:
        return await self._repository.list_definitions()

    async def revise(
        self,
        workflow_id: str,
        steps: Iterable[dict | StepDefinition],
        *,
        version: str,
        version_notes: str = "",
    ) -> WorkflowDefinition:
        current = await self.get(workflow_id)
        revised = current.model_copy(
            update={
                "steps": build_steps(steps),
                "version": version,
                "version_notes": version_notes,
            }
        )
        # model_copy skips validation; round-trip to re-check step ordering
        revised = WorkflowDefinition.model_validate(revised.model_dump())
        return await self.register(revised)
