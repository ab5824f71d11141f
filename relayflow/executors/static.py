"""Offline executor that answers every prompt with a fixed response."""

from __future__ import annotations

from typing import Optional

from .base import AIExecutor, AIResult, CostModel


class StaticExecutor(AIExecutor):
    """Return ``content`` for every prompt. Handy for demos and dry runs."""

    def __init__(self, content: str = "OK", cost_model: Optional[CostModel] = None) -> None:
        self.content = content
        self._cost_model = cost_model or CostModel()
        self.calls: list[tuple[str, str]] = []

    async def execute(self, system_prompt: str, user_prompt: str) -> AIResult:
        self.calls.append((system_prompt, user_prompt))
        # rough whitespace token estimate
        prompt_tokens = len(system_prompt.split()) + len(user_prompt.split())
        completion_tokens = len(self.content.split())
        return AIResult(
            content=self.content,
            cost=self._cost_model.cost(prompt_tokens, completion_tokens),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            model_used="static",
        )
