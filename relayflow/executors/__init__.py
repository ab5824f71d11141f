"""AI executor factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import RelayflowConfig, load_config
from .base import AIExecutor, AIResult, CostModel
from .static import StaticExecutor


def cost_model_from_config(config: RelayflowConfig) -> CostModel:
    return CostModel(
        price_per_prompt_token=config.ai.price_per_prompt_token,
        price_per_completion_token=config.ai.price_per_completion_token,
    )


def get_executor(
    backend: Optional[str] = None, config: Optional[RelayflowConfig] = None
) -> AIExecutor:
    """Factory function to get the configured AI executor."""

    config = config or load_config()
    backend = (
        backend or os.getenv("RELAYFLOW_AI_BACKEND") or config.ai.backend
    ).lower()
    cost_model = cost_model_from_config(config)

    if backend == "static":
        return StaticExecutor(config.ai.static_response, cost_model=cost_model)
    elif backend == "pydantic_ai":
        from .agent import PydanticAIExecutor

        return PydanticAIExecutor(
            config.ai.model,
            cost_model=cost_model,
            model_settings={
                "max_tokens": config.ai.max_tokens,
                "temperature": config.ai.temperature,
            },
        )
    else:
        raise ValueError(f"Unsupported AI executor backend: {backend}")


__all__ = [
    "AIExecutor",
    "AIResult",
    "CostModel",
    "StaticExecutor",
    "cost_model_from_config",
    "get_executor",
]
