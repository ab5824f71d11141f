"""Client validation broker: issues and checks time-boxed upload requests.

The secure token handed to the external party is the only thing that
authorises a submission, so it is generated with :mod:`secrets` and treated
as a bearer credential. It never appears in log output or ``repr``.

Expiry is lazy. Nothing sweeps stale validations in the background; every
read or resolve compares the clock against ``expires_at`` before trusting the
stored status.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from .config import RelayflowConfig
from .constants import DEFAULT_TOKEN_BYTES, DEFAULT_VALIDATION_TTL_DAYS
from .errors import AlreadyCompleted, Expired
from .models import ClientValidation, ValidationStatus

logger = logging.getLogger(__name__)


class ClientValidationBroker:
    """Creates client validations and decides whether they can still be resolved."""

    def __init__(
        self,
        ttl: timedelta = timedelta(days=DEFAULT_VALIDATION_TTL_DAYS),
        token_bytes: int = DEFAULT_TOKEN_BYTES,
        public_base_url: Optional[str] = None,
    ) -> None:
        self.ttl = ttl
        self.token_bytes = token_bytes
        self.public_base_url = public_base_url

    @classmethod
    def from_config(cls, config: RelayflowConfig) -> "ClientValidationBroker":
        return cls(
            ttl=timedelta(days=config.validation.ttl_days),
            token_bytes=config.validation.token_bytes,
            public_base_url=config.validation.public_base_url,
        )

    def new_token(self) -> str:
        return secrets.token_urlsafe(self.token_bytes)

    def issue(
        self,
        *,
        instance_id: str,
        step_id: str,
        execution_id: str,
        client_email: str,
        now: datetime,
    ) -> ClientValidation:
        """Build a pending validation whose window closes ``ttl`` after ``now``."""
        validation = ClientValidation(
            instance_id=instance_id,
            step_id=step_id,
            execution_id=execution_id,
            client_email=client_email,
            created_at=now,
            expires_at=now + self.ttl,
            secure_token=self.new_token(),
        )
        logger.info(
            f"Issued client validation {validation.id} for instance={instance_id} step={step_id}, expires {validation.expires_at.isoformat()}"
        )
        return validation

    def secure_link(self, validation: ClientValidation) -> Optional[str]:
        """URL the external party opens to upload files."""
        if not self.public_base_url:
            return None
        return f"{self.public_base_url.rstrip('/')}/client-validation/{validation.secure_token}"

    def ensure_resolvable(self, validation: ClientValidation, now: datetime) -> None:
        """Raise unless ``validation`` is pending and inside its window.

        Raises:
            AlreadyCompleted: The validation was resolved before.
            Expired: The window closed, whatever the stored status says.
        """
        if validation.status == ValidationStatus.COMPLETED:
            raise AlreadyCompleted("Client validation already completed")
        if validation.is_expired_at(now):
            raise Expired("Client validation has expired")

    @staticmethod
    def mark_expired(validation: ClientValidation) -> ClientValidation:
        return validation.model_copy(update={"status": ValidationStatus.EXPIRED})

    @staticmethod
    def mark_completed(
        validation: ClientValidation, now: datetime, file_refs: list[str]
    ) -> ClientValidation:
        return validation.model_copy(
            update={
                "status": ValidationStatus.COMPLETED,
                "completed_at": now,
                "uploaded_file_refs": list(file_refs),
            }
        )
