"""Relayflow: workflows that hand work between people, AI models and clients."""

from .clock import ManualClock, SystemClock
from .config import load_config
from .definitions import DefinitionStore
from .engine import WorkflowEngine
from .errors import (
    ConcurrentModification,
    Expired,
    InvalidInput,
    InvalidState,
    NotFound,
    RelayflowError,
)
from .executors import get_executor
from .models import (
    ClientValidation,
    StepExecution,
    StepInput,
    WorkflowDefinition,
    WorkflowInstance,
)
from .persistence import get_repository

__version__ = "0.1.0"
__all__ = [
    "ClientValidation",
    "ConcurrentModification",
    "DefinitionStore",
    "Expired",
    "InvalidInput",
    "InvalidState",
    "ManualClock",
    "NotFound",
    "RelayflowError",
    "StepExecution",
    "StepInput",
    "SystemClock",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowInstance",
    "get_executor",
    "get_repository",
    "load_config",
]
