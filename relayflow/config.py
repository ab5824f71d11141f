from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_AI_MODEL,
    DEFAULT_COMPLETION_TOKEN_PRICE,
    DEFAULT_PROMPT_TOKEN_PRICE,
    DEFAULT_TOKEN_BYTES,
    DEFAULT_VALIDATION_TTL_DAYS,
)


class AIConfig(BaseModel):
    """Settings for the AI executor and its cost model."""

    backend: Literal["pydantic_ai", "static"] = "pydantic_ai"
    model: str = DEFAULT_AI_MODEL
    price_per_prompt_token: float = Field(default=DEFAULT_PROMPT_TOKEN_PRICE, ge=0)
    price_per_completion_token: float = Field(
        default=DEFAULT_COMPLETION_TOKEN_PRICE, ge=0
    )
    max_tokens: int = 2000
    temperature: float = 0.7
    static_response: str = "OK"


class ValidationConfig(BaseModel):
    """Settings for client validation requests."""

    ttl_days: float = Field(default=DEFAULT_VALIDATION_TTL_DAYS, gt=0)
    token_bytes: int = Field(default=DEFAULT_TOKEN_BYTES, ge=16)
    public_base_url: str = "http://localhost:3000"


class UploadConfig(BaseModel):
    """Where uploaded client files are written."""

    storage_dir: str = "uploads"


class RelayflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    ai: AIConfig = AIConfig()
    validation: ValidationConfig = ValidationConfig()
    uploads: UploadConfig = UploadConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> RelayflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to RELAYFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("RELAYFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = RelayflowConfig(**data)
    else:
        config = RelayflowConfig()

    env_db_url = os.getenv("RELAYFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_model = os.getenv("RELAYFLOW_AI_MODEL")
    if env_model:
        config.ai.model = env_model
    return config
