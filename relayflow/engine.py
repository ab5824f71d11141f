"""Workflow instance execution engine.

The engine advances an instance through its snapshot of steps one at a time:

* human steps complete in the same call; the caller hands over the output.
* AI steps run the configured executor. A failed call is recorded as a
  failed step execution and the step stays current so it can be retried.
* client validation steps issue a time-boxed upload request and return.
  The step only completes, and the pointer only moves, when the external
  party resolves the request through :meth:`WorkflowEngine.resolve_client_validation`.

All instance writes are compare-and-swap on the instance ``version``. The
engine never holds a lock while waiting on the executor; a racing caller that
advanced the instance first makes the slower one fail with
``ConcurrentModification``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from .clock import Clock, SystemClock, elapsed_ms
from .config import RelayflowConfig, load_config
from .constants import WRITE_RETRY_ATTEMPTS
from .errors import (
    AIExecutionFailed,
    AlreadyCompleted,
    ClientEmailRequired,
    ConcurrentModification,
    Expired,
    ExecutorError,
    InvalidQualityScore,
    InvalidState,
    MissingOutput,
    NotFound,
    StepIndexOutOfRange,
)
from .executors import AIExecutor, get_executor
from .files import FileIntake, InMemoryFileIntake, LocalFileIntake, Upload
from .metrics import IndustryAverage, MetricsSummary, summarize
from .models import (
    AIStep,
    ClientContext,
    ClientValidateStep,
    ClientValidation,
    HumanStep,
    InstanceDetails,
    InstanceStatus,
    StepExecution,
    StepExecutionResult,
    StepInput,
    StepKind,
    StepStatus,
    ValidationReceipt,
    ValidationStatus,
    WorkflowInstance,
)
from .persistence import WorkflowRepository, get_repository
from .prompts import interpolate, placeholders
from .validations import ClientValidationBroker

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """State machine over workflow instances."""

    def __init__(
        self,
        repository: WorkflowRepository,
        executor: AIExecutor,
        broker: Optional[ClientValidationBroker] = None,
        clock: Optional[Clock] = None,
        file_intake: Optional[FileIntake] = None,
    ) -> None:
        self._repository = repository
        self._executor = executor
        self._broker = broker or ClientValidationBroker()
        self._clock = clock or SystemClock()
        self._file_intake = file_intake or InMemoryFileIntake()

    @classmethod
    def from_config(
        cls,
        config: Optional[RelayflowConfig] = None,
        repository: Optional[WorkflowRepository] = None,
    ) -> "WorkflowEngine":
        """Build an engine from the configured repository, executor and broker."""
        config = config or load_config()
        return cls(
            repository=repository or get_repository(config=config),
            executor=get_executor(config=config),
            broker=ClientValidationBroker.from_config(config),
            file_intake=LocalFileIntake(config.uploads.storage_dir),
        )

    @property
    def broker(self) -> ClientValidationBroker:
        return self._broker

    # ------------------------------------------------------------------
    # Instance lifecycle

    async def start_instance(
        self,
        workflow_id: str,
        started_by: str,
        client_context: Optional[ClientContext] = None,
    ) -> WorkflowInstance:
        """Create an instance from a snapshot of the workflow's steps.

        Raises:
            NotFound: The workflow does not exist or has no steps.
        """
        definition = await self._repository.get_definition(workflow_id)
        if definition is None or not definition.steps:
            raise NotFound(f"Workflow {workflow_id} not found")

        context = client_context or ClientContext()
        instance = WorkflowInstance(
            workflow_id=definition.id,
            workflow_version=definition.version,
            title=definition.title,
            steps=list(definition.steps),
            started_by=started_by,
            started_at=self._clock.now(),
            client_id=context.client_id,
            client_name=context.client_name,
            client_email=context.client_email,
        )
        await self._repository.create_instance(instance)
        logger.info(
            f"Started instance {instance.id} of workflow {workflow_id} v{definition.version} for {started_by}"
        )
        return instance

    async def execute_current_step(
        self,
        instance_id: str,
        step_input: StepInput | dict[str, Any] | None = None,
    ) -> StepExecutionResult:
        """Run the step the instance is currently pointing at.

        Raises:
            NotFound: Unknown instance.
            InvalidState: The instance already completed or failed.
            StepIndexOutOfRange: The pointer is past the last step.
            MissingOutput: A human step was submitted without output.
            AIExecutionFailed: The AI executor failed; the step stays current.
            ClientEmailRequired: No contact for a new client validation.
            ConcurrentModification: Another caller advanced the instance first.
        """
        data = StepInput.model_validate(step_input or {})
        instance = await self._load_instance(instance_id)
        if instance.is_terminal:
            raise InvalidState(
                f"Workflow instance {instance_id} is {instance.status.value}"
            )
        step = instance.current_step
        if step is None:
            raise StepIndexOutOfRange(
                f"Step index {instance.current_step_index} is out of range for instance {instance_id}"
            )

        if isinstance(step, HumanStep):
            return await self._execute_human(instance, step, data)
        if isinstance(step, AIStep):
            return await self._execute_ai(instance, step, data)
        return await self._execute_client_validation(instance, step, data)

    async def fail_instance(self, instance_id: str, reason: str) -> WorkflowInstance:
        """Force an in-progress instance into ``failed``.

        Any step execution still in progress is sealed as failed as well.

        Raises:
            InvalidState: The instance is already terminal.
        """
        for _ in range(WRITE_RETRY_ATTEMPTS):
            instance = await self._load_instance(instance_id)
            if instance.is_terminal:
                raise InvalidState(
                    f"Workflow instance {instance_id} is already {instance.status.value}"
                )
            now = self._clock.now()
            failed = instance.model_copy(
                update={
                    "status": InstanceStatus.FAILED,
                    "completed_at": now,
                    "total_execution_time_ms": elapsed_ms(instance.started_at, now),
                    "failure_reason": reason,
                }
            )
            try:
                saved = await self._repository.update_instance(failed, instance.version)
            except ConcurrentModification:
                logger.warning(f"Retrying fail of instance {instance_id} after a concurrent write")
                continue
            break
        else:
            raise ConcurrentModification(
                f"Could not fail instance {instance_id}: it kept changing"
            )

        for execution in await self._repository.list_step_executions(instance_id):
            if not execution.is_sealed:
                await self._seal_if_open(
                    execution.model_copy(
                        update={
                            "status": StepStatus.FAILED,
                            "completed_at": now,
                            "execution_time_ms": elapsed_ms(execution.started_at, now),
                            "error": reason,
                        }
                    )
                )
        logger.info(f"Instance {instance_id} failed: {reason}")
        return saved

    async def rate_instance(self, instance_id: str, score: float) -> WorkflowInstance:
        """Record a human-assigned output quality score between 0.0 and 5.0."""
        if not 0.0 <= score <= 5.0:
            raise InvalidQualityScore(f"Quality score must be between 0 and 5, got {score}")
        instance = await self._load_instance(instance_id)
        rated = instance.model_copy(update={"output_quality_score": score})
        return await self._repository.update_instance(rated, instance.version)

    async def delete_instance(self, instance_id: str) -> None:
        """Delete an instance together with its ledger and validations."""
        await self._load_instance(instance_id)
        await self._repository.delete_instance(instance_id)
        logger.info(f"Deleted instance {instance_id}")

    # ------------------------------------------------------------------
    # Read paths

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        """Return the instance after correcting the expiry of any validation it waits on."""
        instance = await self._load_instance(instance_id)
        await self._open_validation_for(instance)
        return instance

    async def get_instance_details(self, instance_id: str) -> InstanceDetails:
        instance = await self._load_instance(instance_id)
        validation = await self._open_validation_for(instance)
        executions = await self._repository.list_step_executions(instance_id)
        return InstanceDetails(
            instance=instance, executions=executions, open_validation=validation
        )

    async def list_instances(self, workflow_id: Optional[str] = None) -> list[WorkflowInstance]:
        return await self._repository.list_instances(workflow_id)

    async def list_step_executions(self, instance_id: str) -> list[StepExecution]:
        await self._load_instance(instance_id)
        return await self._repository.list_step_executions(instance_id)

    async def get_metrics(
        self,
        instance_id: str,
        industry_average: Optional[IndustryAverage] = None,
    ) -> MetricsSummary:
        instance = await self._load_instance(instance_id)
        return summarize(instance, self._clock.now(), industry_average)

    async def get_validation(self, validation_id: str) -> ClientValidation:
        """Return a validation by id with its status lazily corrected."""
        validation = await self._repository.get_validation(validation_id)
        if validation is None:
            raise NotFound(f"Client validation {validation_id} not found")
        if validation.is_expired_at(self._clock.now()):
            validation = await self._expire(validation)
        return validation

    async def get_validation_for_client(self, token: str) -> ClientValidation:
        """Look up the validation an external party was sent a link for.

        Raises:
            NotFound: No validation carries ``token``.
            Expired: The window has closed. The stored status is corrected.
        """
        validation = await self._repository.get_validation_by_token(token)
        if validation is None:
            raise NotFound("Client validation not found")
        if validation.is_expired_at(self._clock.now()):
            await self._expire(validation)
            raise Expired("Client validation has expired")
        return validation

    # ------------------------------------------------------------------
    # Client validation resolution

    async def resolve_client_validation(
        self, token: str, file_refs: Iterable[str] = ()
    ) -> ValidationReceipt:
        """Complete a pending client validation and advance its instance.

        Raises:
            NotFound: No validation carries ``token``.
            AlreadyCompleted: It was resolved before. Nothing is changed.
            Expired: Its window closed. The stored status becomes ``expired``.
            InvalidState: The instance is no longer waiting on this step.
            ConcurrentModification: Another caller resolved it at the same time.
        """
        refs = list(file_refs)
        now = self._clock.now()
        validation = await self._repository.get_validation_by_token(token)
        if validation is None:
            raise NotFound("Client validation not found")
        try:
            self._broker.ensure_resolvable(validation, now)
        except Expired:
            await self._expire(validation)
            raise

        instance = await self._load_instance(validation.instance_id)
        self._ensure_waiting_on(instance, validation)

        completed = await self._repository.update_validation(
            self._broker.mark_completed(validation, now, refs), validation.version
        )
        wait_time = elapsed_ms(validation.created_at, now)

        # The validation CAS above makes this caller the only resolver, so a
        # lost race on the instance row is safe to re-read and reapply.
        for attempt in range(WRITE_RETRY_ATTEMPTS):
            if attempt:
                instance = await self._load_instance(validation.instance_id)
                try:
                    self._ensure_waiting_on(instance, validation)
                except InvalidState:
                    # The validation stays completed; the instance moved on without it.
                    logger.warning(
                        f"Validation {validation.id} completed but instance {instance.id} "
                        f"is {instance.status.value} at step {instance.current_step_index}"
                    )
                    raise
            advanced = self._advance(instance, now, client_wait_time_ms=wait_time)
            try:
                saved = await self._repository.update_instance(advanced, instance.version)
            except ConcurrentModification:
                logger.warning(
                    f"Instance {instance.id} changed while resolving validation {validation.id}; retrying"
                )
                continue
            break
        else:
            raise ConcurrentModification(
                f"Could not advance instance {validation.instance_id} for validation {validation.id}"
            )

        execution = await self._repository.get_step_execution(validation.execution_id)
        if execution is not None:
            await self._repository.seal_step_execution(
                execution.model_copy(
                    update={
                        "status": StepStatus.COMPLETED,
                        "completed_at": now,
                        "execution_time_ms": wait_time,
                        "output": {"files": refs},
                    }
                )
            )
        logger.info(
            f"Client validation {validation.id} resolved with {len(refs)} file(s) after {wait_time} ms"
        )
        self._log_progress(saved)
        return ValidationReceipt(validation=completed, instance=saved, wait_time_ms=wait_time)

    async def submit_client_files(
        self, token: str, uploads: Iterable[Upload]
    ) -> ValidationReceipt:
        """Store uploaded files, then resolve the validation with their references.

        The token is checked before any bytes are stored.
        """
        validation = await self.get_validation_for_client(token)
        if validation.status == ValidationStatus.COMPLETED:
            raise AlreadyCompleted("Client validation already completed")
        refs = []
        for upload in uploads:
            stored = await self._file_intake.store(upload)
            refs.append(stored.ref)
        return await self.resolve_client_validation(token, refs)

    # ------------------------------------------------------------------
    # Step dispatch

    async def _execute_human(
        self, instance: WorkflowInstance, step: HumanStep, data: StepInput
    ) -> StepExecutionResult:
        if data.output is None or data.output == "":
            raise MissingOutput(f"Output is required for human step '{step.label}'")

        now = self._clock.now()
        advanced = self._advance(
            instance, now, human_time_spent_ms=data.execution_time_ms
        )
        saved = await self._repository.update_instance(advanced, instance.version)

        execution = StepExecution(
            instance_id=instance.id,
            step_id=step.id,
            step_index=instance.current_step_index,
            kind=StepKind.HUMAN,
            started_at=now,
            completed_at=now,
            status=StepStatus.COMPLETED,
            execution_time_ms=data.execution_time_ms,
            output=data.output,
            input_data=data.variables,
        )
        await self._repository.add_step_execution(execution)
        self._log_progress(saved)
        return StepExecutionResult(instance=saved, execution=execution, advanced=True)

    async def _execute_ai(
        self, instance: WorkflowInstance, step: AIStep, data: StepInput
    ) -> StepExecutionResult:
        missing = [name for name in placeholders(step.user_prompt_template) if name not in data.variables]
        if missing:
            logger.warning(
                f"AI step '{step.label}' of instance {instance.id} has no value for: {', '.join(missing)}"
            )
        prompt = interpolate(step.user_prompt_template, data.variables)
        started = self._clock.now()
        execution = StepExecution(
            instance_id=instance.id,
            step_id=step.id,
            step_index=instance.current_step_index,
            kind=StepKind.AI,
            started_at=started,
            input_data=data.variables,
        )
        await self._repository.add_step_execution(execution)

        try:
            result = await self._executor.execute(step.system_prompt, prompt)
        except Exception as exc:
            if isinstance(exc, ExecutorError):
                error = exc
            else:
                error = ExecutorError(f"{type(exc).__name__}: {exc}")
            finished = self._clock.now()
            await self._repository.seal_step_execution(
                execution.model_copy(
                    update={
                        "status": StepStatus.FAILED,
                        "completed_at": finished,
                        "execution_time_ms": elapsed_ms(started, finished),
                        "error": error.message,
                    }
                )
            )
            logger.error(
                f"AI step '{step.label}' failed for instance {instance.id} (status={error.status}): {error.message}"
            )
            raise AIExecutionFailed(execution.id, error) from exc

        finished = self._clock.now()
        duration = elapsed_ms(started, finished)
        sealed = execution.model_copy(
            update={
                "status": StepStatus.COMPLETED,
                "completed_at": finished,
                "execution_time_ms": duration,
                "token_count": result.total_tokens,
                "prompt_tokens": result.prompt_tokens,
                "completion_tokens": result.completion_tokens,
                "cost": result.cost,
                "model_used": result.model_used,
                "output": result.content,
            }
        )
        advanced = self._advance(
            instance,
            finished,
            ai_processing_time_ms=duration,
            total_cost=result.cost,
        )
        try:
            saved = await self._repository.update_instance(advanced, instance.version)
        except ConcurrentModification:
            await self._seal_if_open(
                sealed.model_copy(
                    update={
                        "status": StepStatus.FAILED,
                        "error": "instance was modified concurrently",
                    }
                )
            )
            logger.warning(
                f"Discarded AI result for instance {instance.id}: another caller advanced it first"
            )
            raise

        await self._repository.seal_step_execution(sealed)
        self._log_progress(saved)
        return StepExecutionResult(instance=saved, execution=sealed, advanced=True)

    async def _execute_client_validation(
        self, instance: WorkflowInstance, step: ClientValidateStep, data: StepInput
    ) -> StepExecutionResult:
        now = self._clock.now()
        existing = await self._repository.find_open_validation(instance.id, step.id)
        if existing is not None:
            if not existing.is_expired_at(now):
                execution = await self._repository.get_step_execution(existing.execution_id)
                if execution is None:
                    raise NotFound(
                        f"Step execution {existing.execution_id} for validation {existing.id} not found"
                    )
                return StepExecutionResult(
                    instance=instance, execution=execution, validation=existing
                )
            await self._expire(existing)

        email = data.client_email or instance.client_email
        if not email:
            raise ClientEmailRequired(
                f"Client email is required for validation step '{step.label}'"
            )

        # Writing the instance back unchanged bumps its version, so only one
        # concurrent caller gets to issue the validation.
        try:
            claimed = await self._repository.update_instance(instance, instance.version)
        except ConcurrentModification:
            winner = await self._repository.find_open_validation(instance.id, step.id)
            if winner is None:
                raise
            execution = await self._repository.get_step_execution(winner.execution_id)
            if execution is None:
                raise
            logger.info(
                f"Validation for step '{step.label}' of instance {instance.id} was issued by a concurrent caller"
            )
            current = await self._load_instance(instance.id)
            return StepExecutionResult(
                instance=current, execution=execution, validation=winner
            )

        execution = StepExecution(
            instance_id=instance.id,
            step_id=step.id,
            step_index=instance.current_step_index,
            kind=StepKind.CLIENT_VALIDATE,
            started_at=now,
            input_data={**data.variables, "client_email": email},
        )
        validation = self._broker.issue(
            instance_id=instance.id,
            step_id=step.id,
            execution_id=execution.id,
            client_email=email,
            now=now,
        )
        await self._repository.add_step_execution(execution)
        await self._repository.create_validation(validation)
        return StepExecutionResult(
            instance=claimed, execution=execution, validation=validation
        )

    # ------------------------------------------------------------------
    # Helpers

    async def _load_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise NotFound(f"Workflow instance {instance_id} not found")
        return instance

    def _advance(
        self,
        instance: WorkflowInstance,
        now: datetime,
        *,
        human_time_spent_ms: int = 0,
        ai_processing_time_ms: int = 0,
        client_wait_time_ms: int = 0,
        total_cost: float = 0.0,
    ) -> WorkflowInstance:
        """Return ``instance`` moved one step forward with the given metric increments."""
        next_index = instance.current_step_index + 1
        update: dict[str, Any] = {
            "current_step_index": next_index,
            "human_time_spent_ms": instance.human_time_spent_ms + human_time_spent_ms,
            "ai_processing_time_ms": instance.ai_processing_time_ms + ai_processing_time_ms,
            "client_wait_time_ms": instance.client_wait_time_ms + client_wait_time_ms,
            "total_cost": instance.total_cost + total_cost,
        }
        if next_index == len(instance.steps):
            update.update(
                status=InstanceStatus.COMPLETED,
                completed_at=now,
                total_execution_time_ms=elapsed_ms(instance.started_at, now),
            )
        return instance.model_copy(update=update)

    @staticmethod
    def _ensure_waiting_on(instance: WorkflowInstance, validation: ClientValidation) -> None:
        step = instance.current_step
        if instance.is_terminal or step is None or step.id != validation.step_id:
            raise InvalidState(
                f"Workflow instance {instance.id} is not waiting on client validation {validation.id}"
            )

    async def _open_validation_for(
        self, instance: WorkflowInstance
    ) -> Optional[ClientValidation]:
        step = instance.current_step
        if instance.is_terminal or not isinstance(step, ClientValidateStep):
            return None
        validation = await self._repository.find_open_validation(instance.id, step.id)
        if validation is not None and validation.is_expired_at(self._clock.now()):
            return await self._expire(validation)
        return validation

    async def _expire(self, validation: ClientValidation) -> ClientValidation:
        """Persist the expired status and fail the step execution waiting on it.

        Idempotent: an already expired validation is returned unchanged.
        """
        if validation.status != ValidationStatus.PENDING:
            return validation
        try:
            expired = await self._repository.update_validation(
                self._broker.mark_expired(validation), validation.version
            )
        except ConcurrentModification:
            # someone else already moved it on
            current = await self._repository.get_validation(validation.id)
            return current or validation

        logger.warning(
            f"Client validation {validation.id} for instance {validation.instance_id} expired at {validation.expires_at.isoformat()}"
        )
        execution = await self._repository.get_step_execution(validation.execution_id)
        if execution is not None and not execution.is_sealed:
            now = self._clock.now()
            await self._seal_if_open(
                execution.model_copy(
                    update={
                        "status": StepStatus.FAILED,
                        "completed_at": now,
                        "execution_time_ms": elapsed_ms(execution.started_at, now),
                        "error": "client validation expired",
                    }
                )
            )
        return expired

    async def _seal_if_open(self, execution: StepExecution) -> None:
        current = await self._repository.get_step_execution(execution.id)
        if current is not None and not current.is_sealed:
            await self._repository.seal_step_execution(execution)

    def _log_progress(self, instance: WorkflowInstance) -> None:
        if instance.status == InstanceStatus.COMPLETED:
            logger.info(
                f"Instance {instance.id} completed in {instance.total_execution_time_ms} ms, cost {instance.total_cost:.6f}"
            )
        else:
            logger.info(
                f"Instance {instance.id} advanced to step {instance.current_step_index}/{len(instance.steps)}"
            )
