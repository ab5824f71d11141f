"""Data models for workflow definitions, instances and their execution ledger."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepKind(str, Enum):
    HUMAN = "human"
    AI = "ai"
    CLIENT_VALIDATE = "client_validate"


class InstanceStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ValidationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


# ----------------------------------------------------------------------
# Step definitions


class _StepBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    order_index: int = Field(ge=0)
    label: str


class HumanStep(_StepBase):
    """Step performed by a person who hands back the output directly."""

    kind: Literal["human"] = "human"
    instructions: str = ""


class AIStep(_StepBase):
    """Step executed by the AI executor from a prompt template."""

    kind: Literal["ai"] = "ai"
    system_prompt: str = "You are a helpful assistant."
    user_prompt_template: str = ""


class ClientValidateStep(_StepBase):
    """Step waiting on an external party to upload files."""

    kind: Literal["client_validate"] = "client_validate"
    instructions: str = ""


StepDefinition = Annotated[
    Union[HumanStep, AIStep, ClientValidateStep], Field(discriminator="kind")
]


class WorkflowDefinition(BaseModel):
    """Ordered list of step templates. Instances snapshot the steps at start."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    title: str
    description: str = ""
    steps: List[StepDefinition] = Field(default_factory=list)
    version: str = "1.0"
    version_notes: str = ""
    author_id: Optional[str] = None
    category: str = "custom"
    is_public: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("steps")
    @classmethod
    def _ensure_contiguous(cls, steps: List[StepDefinition]) -> List[StepDefinition]:
        ordered = sorted(steps, key=lambda s: s.order_index)
        for expected, step in enumerate(ordered):
            if step.order_index != expected:
                raise ValueError(
                    f"step order_index values must be contiguous from 0, got {step.order_index} at position {expected}"
                )
        if len({s.id for s in ordered}) != len(ordered):
            raise ValueError("step ids must be unique within a workflow")
        return ordered


# ----------------------------------------------------------------------
# Runtime state


class WorkflowInstance(BaseModel):
    """One running execution of a workflow definition."""

    id: str = Field(default_factory=_new_id)
    workflow_id: str
    workflow_version: str = "1.0"
    title: str = ""
    steps: List[StepDefinition] = Field(default_factory=list)
    started_by: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: InstanceStatus = InstanceStatus.IN_PROGRESS
    current_step_index: int = Field(default=0, ge=0)
    failure_reason: Optional[str] = None

    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None

    total_execution_time_ms: int = Field(default=0, ge=0)
    human_time_spent_ms: int = Field(default=0, ge=0)
    ai_processing_time_ms: int = Field(default=0, ge=0)
    client_wait_time_ms: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0)
    output_quality_score: Optional[float] = None

    # Bumped on every persisted write; used for compare-and-swap updates.
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != InstanceStatus.IN_PROGRESS

    @property
    def current_step(self) -> Optional[StepDefinition]:
        if self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None


class StepExecution(BaseModel):
    """Ledger entry for one attempt at one step. Sealed once it leaves InProgress."""

    id: str = Field(default_factory=_new_id)
    instance_id: str
    step_id: str
    step_index: int
    kind: StepKind
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: StepStatus = StepStatus.IN_PROGRESS
    execution_time_ms: Optional[int] = None
    token_count: Optional[int] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    cost: Optional[float] = None
    model_used: Optional[str] = None
    output: Any = None
    input_data: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    @property
    def is_sealed(self) -> bool:
        return self.status != StepStatus.IN_PROGRESS


class ClientValidation(BaseModel):
    """Time-boxed upload request addressed by a bearer token."""

    id: str = Field(default_factory=_new_id)
    instance_id: str
    step_id: str
    execution_id: str
    client_email: str
    created_at: datetime
    expires_at: datetime
    status: ValidationStatus = ValidationStatus.PENDING
    secure_token: str = Field(repr=False)
    completed_at: Optional[datetime] = None
    uploaded_file_refs: List[str] = Field(default_factory=list)
    version: int = 0

    def is_expired_at(self, now: datetime) -> bool:
        """True when the stored status or the clock says the window has closed."""
        if self.status == ValidationStatus.EXPIRED:
            return True
        return self.status == ValidationStatus.PENDING and now >= self.expires_at


# ----------------------------------------------------------------------
# Operation inputs and results


class StepInput(BaseModel):
    """Caller-supplied input for executing the current step.

    Keys other than the declared fields are treated as prompt variables, so
    ``{"topic": "pricing"}`` and ``{"variables": {"topic": "pricing"}}`` are
    equivalent. Entries under ``variables`` win on a clash.
    """

    output: Any = None
    execution_time_ms: int = Field(default=0, ge=0)
    variables: dict[str, Any] = Field(default_factory=dict)
    client_email: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _fold_extra_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        extra = {k: v for k, v in data.items() if k not in cls.model_fields}
        if not extra:
            return data
        variables = data.get("variables") or {}
        if not isinstance(variables, dict):
            return data
        known = {k: v for k, v in data.items() if k in cls.model_fields}
        return {**known, "variables": {**extra, **variables}}


class StepExecutionResult(BaseModel):
    """Outcome of ``execute_current_step``."""

    instance: WorkflowInstance
    execution: StepExecution
    validation: Optional[ClientValidation] = None
    advanced: bool = False


class ClientContext(BaseModel):
    """Optional client details attached to an instance at start."""

    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None


class ValidationReceipt(BaseModel):
    """Acknowledgement returned once a client validation is resolved."""

    validation: ClientValidation
    instance: WorkflowInstance
    wait_time_ms: int


class InstanceDetails(BaseModel):
    """Instance together with its ledger and the validation it is waiting on."""

    instance: WorkflowInstance
    executions: List[StepExecution] = Field(default_factory=list)
    open_validation: Optional[ClientValidation] = None
