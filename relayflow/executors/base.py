"""Base AI executor interface and cost model."""

from __future__ import annotations

import abc
from typing import Optional

from pydantic import BaseModel, Field

from ..constants import DEFAULT_COMPLETION_TOKEN_PRICE, DEFAULT_PROMPT_TOKEN_PRICE


class CostModel(BaseModel):
    """Per-token pricing. Cost is a pure function of token counts."""

    price_per_prompt_token: float = Field(default=DEFAULT_PROMPT_TOKEN_PRICE, ge=0)
    price_per_completion_token: float = Field(
        default=DEFAULT_COMPLETION_TOKEN_PRICE, ge=0
    )

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (
            prompt_tokens * self.price_per_prompt_token
            + completion_tokens * self.price_per_completion_token
        )


class AIResult(BaseModel):
    """What an executor hands back for one prompt."""

    content: str
    cost: float = Field(default=0.0, ge=0)
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    model_used: Optional[str] = None


class AIExecutor(metaclass=abc.ABCMeta):
    """Abstract executor for AI steps."""

    @abc.abstractmethod
    async def execute(self, system_prompt: str, user_prompt: str) -> AIResult:
        """Run one prompt.

        Raises:
            ExecutorError: On any transport or provider failure.
        """
        raise NotImplementedError
