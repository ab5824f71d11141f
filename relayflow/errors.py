"""Exception hierarchy for relayflow operations.

Every error is scoped to a single instance or validation; none of them is
fatal to the process.
"""

from __future__ import annotations

from typing import Optional


class RelayflowError(Exception):
    """Base class for all relayflow errors."""


class NotFound(RelayflowError):
    """A referenced entity does not exist."""


class InvalidState(RelayflowError):
    """The operation is not allowed for the entity's current status."""


class StepIndexOutOfRange(InvalidState):
    """The instance's step pointer is past the end of its step list."""


class AlreadyCompleted(InvalidState):
    """The client validation was already resolved."""


class ConcurrentModification(RelayflowError):
    """An optimistic-lock check failed.

    Always safe to retry by re-reading the entity and reapplying the change.
    """


class InvalidInput(RelayflowError):
    """Missing or malformed caller input."""


class MissingOutput(InvalidInput):
    """A human step was executed without an output."""


class ClientEmailRequired(InvalidInput):
    """A client validation step needs a contact identity."""


class InvalidQualityScore(InvalidInput):
    """Quality scores must lie between 0.0 and 5.0."""


class ExternalFailure(RelayflowError):
    """A collaborator outside the engine failed."""


class ExecutorError(RelayflowError):
    """Raised by AI executors on any transport or provider failure."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
        self.message = message


class AIExecutionFailed(ExternalFailure):
    """The AI executor failed; the step stays current and may be retried."""

    def __init__(self, execution_id: str, cause: ExecutorError):
        super().__init__(f"AI step execution {execution_id} failed: {cause.message}")
        self.execution_id = execution_id
        self.cause = cause


class FileIntakeFailed(ExternalFailure):
    """Uploaded bytes could not be stored."""


class Expired(RelayflowError):
    """A time-boxed resource is past its window. Not retryable."""
