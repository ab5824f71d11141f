"""AI executor backed by a pydantic-ai agent."""

from __future__ import annotations

import logging
from typing import Optional, Union

from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from ..errors import ExecutorError
from .base import AIExecutor, AIResult, CostModel

logger = logging.getLogger(__name__)


class PydanticAIExecutor(AIExecutor):
    """Send each AI step to a pydantic-ai model as a single run.

    A fresh agent is built per call since every step carries its own system
    prompt. Provider failures of any kind surface as ``ExecutorError``.
    """

    def __init__(
        self,
        model: Union[str, Model],
        cost_model: Optional[CostModel] = None,
        model_settings: Optional[ModelSettings] = None,
    ) -> None:
        self._model = model
        self._cost_model = cost_model or CostModel()
        self._model_settings = model_settings

    @property
    def model_name(self) -> str:
        if isinstance(self._model, str):
            return self._model
        return self._model.model_name

    async def execute(self, system_prompt: str, user_prompt: str) -> AIResult:
        logger.debug(f"Running prompt against {self.model_name}")
        try:
            agent = Agent(
                self._model,
                system_prompt=system_prompt,
                model_settings=self._model_settings,
            )
            result = await agent.run(user_prompt)
            # a method on older pydantic-ai releases, an attribute on newer ones
            usage = result.usage() if callable(result.usage) else result.usage
            prompt_tokens = usage.input_tokens or 0
            completion_tokens = usage.output_tokens or 0
            content = str(result.output)
        except ModelHTTPError as exc:
            raise ExecutorError(
                f"{exc.model_name} returned HTTP {exc.status_code}: {exc.body}",
                status=exc.status_code,
            ) from exc
        except Exception as exc:
            raise ExecutorError(f"{type(exc).__name__}: {exc}") from exc

        return AIResult(
            content=content,
            cost=self._cost_model.cost(prompt_tokens, completion_tokens),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            model_used=self.model_name,
        )
