"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from typing import Optional

import asyncpg

from ..errors import ConcurrentModification, InvalidState, NotFound
from ..models import (
    ClientValidation,
    StepExecution,
    StepStatus,
    ValidationStatus,
    WorkflowDefinition,
    WorkflowInstance,
)
from .repository import WorkflowRepository


def _rowcount(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 1"
    return int(status.split()[-1])


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT PRIMARY KEY,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step_index INTEGER NOT NULL,
                version INTEGER NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                seq SERIAL PRIMARY KEY,
                id TEXT UNIQUE NOT NULL,
                instance_id TEXT NOT NULL
                    REFERENCES workflow_instances(id) ON DELETE CASCADE,
                status TEXT NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS client_validations (
                id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL
                    REFERENCES workflow_instances(id) ON DELETE CASCADE,
                step_id TEXT NOT NULL,
                secure_token TEXT UNIQUE NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )

    async def _exists(self, conn: asyncpg.Connection, table: str, record_id: str) -> bool:
        row = await conn.fetchrow(f"SELECT 1 FROM {table} WHERE id = $1", record_id)
        return row is not None

    # ------------------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_definitions (id, data) VALUES ($1, $2)
                ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
                """,
                definition.id,
                definition.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM workflow_definitions WHERE id = $1", workflow_id
            )
        finally:
            await conn.close()
        return WorkflowDefinition.model_validate_json(row["data"]) if row else None

    async def list_definitions(self) -> list[WorkflowDefinition]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data FROM workflow_definitions ORDER BY created_at"
            )
        finally:
            await conn.close()
        return [WorkflowDefinition.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_instances
                    (id, workflow_id, status, current_step_index, version, started_at, data)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                instance.id,
                instance.workflow_id,
                instance.status.value,
                instance.current_step_index,
                instance.version,
                instance.started_at,
                instance.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM workflow_instances WHERE id = $1", instance_id
            )
        finally:
            await conn.close()
        return WorkflowInstance.model_validate_json(row["data"]) if row else None

    async def list_instances(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            if workflow_id is None:
                rows = await conn.fetch(
                    "SELECT data FROM workflow_instances ORDER BY started_at DESC"
                )
            else:
                rows = await conn.fetch(
                    "SELECT data FROM workflow_instances WHERE workflow_id = $1 ORDER BY started_at DESC",
                    workflow_id,
                )
        finally:
            await conn.close()
        return [WorkflowInstance.model_validate_json(r["data"]) for r in rows]

    async def update_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> WorkflowInstance:
        updated = instance.model_copy(update={"version": expected_version + 1})
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE workflow_instances
                SET status = $1, current_step_index = $2, version = $3, data = $4
                WHERE id = $5 AND version = $6
                """,
                updated.status.value,
                updated.current_step_index,
                updated.version,
                updated.model_dump_json(),
                updated.id,
                expected_version,
            )
            if _rowcount(status) == 0:
                if not await self._exists(conn, "workflow_instances", instance.id):
                    raise NotFound(f"Workflow instance {instance.id} not found")
                raise ConcurrentModification(
                    f"Workflow instance {instance.id} changed since version {expected_version}"
                )
        finally:
            await conn.close()
        return updated

    async def delete_instance(self, instance_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "DELETE FROM workflow_instances WHERE id = $1", instance_id
            )
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def add_step_execution(self, execution: StepExecution) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO step_executions (id, instance_id, status, data) VALUES ($1, $2, $3, $4)",
                execution.id,
                execution.instance_id,
                execution.status.value,
                execution.model_dump_json(),
            )
        finally:
            await conn.close()

    async def seal_step_execution(self, execution: StepExecution) -> None:
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE step_executions SET status = $1, data = $2
                WHERE id = $3 AND status = $4
                """,
                execution.status.value,
                execution.model_dump_json(),
                execution.id,
                StepStatus.IN_PROGRESS.value,
            )
            if _rowcount(status) == 0:
                if not await self._exists(conn, "step_executions", execution.id):
                    raise NotFound(f"Step execution {execution.id} not found")
                raise InvalidState(f"Step execution {execution.id} is already sealed")
        finally:
            await conn.close()

    async def get_step_execution(self, execution_id: str) -> StepExecution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM step_executions WHERE id = $1", execution_id
            )
        finally:
            await conn.close()
        return StepExecution.model_validate_json(row["data"]) if row else None

    async def list_step_executions(self, instance_id: str) -> list[StepExecution]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data FROM step_executions WHERE instance_id = $1 ORDER BY seq",
                instance_id,
            )
        finally:
            await conn.close()
        return [StepExecution.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def create_validation(self, validation: ClientValidation) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO client_validations
                    (id, instance_id, step_id, secure_token, status, version, created_at, data)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                validation.id,
                validation.instance_id,
                validation.step_id,
                validation.secure_token,
                validation.status.value,
                validation.version,
                validation.created_at,
                validation.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_validation(self, validation_id: str) -> ClientValidation | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM client_validations WHERE id = $1", validation_id
            )
        finally:
            await conn.close()
        return ClientValidation.model_validate_json(row["data"]) if row else None

    async def get_validation_by_token(self, token: str) -> ClientValidation | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM client_validations WHERE secure_token = $1", token
            )
        finally:
            await conn.close()
        return ClientValidation.model_validate_json(row["data"]) if row else None

    async def find_open_validation(
        self, instance_id: str, step_id: str
    ) -> ClientValidation | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                """
                SELECT data FROM client_validations
                WHERE instance_id = $1 AND step_id = $2 AND status = $3
                ORDER BY created_at DESC LIMIT 1
                """,
                instance_id,
                step_id,
                ValidationStatus.PENDING.value,
            )
        finally:
            await conn.close()
        return ClientValidation.model_validate_json(row["data"]) if row else None

    async def update_validation(
        self, validation: ClientValidation, expected_version: int
    ) -> ClientValidation:
        updated = validation.model_copy(update={"version": expected_version + 1})
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE client_validations SET status = $1, version = $2, data = $3
                WHERE id = $4 AND version = $5
                """,
                updated.status.value,
                updated.version,
                updated.model_dump_json(),
                updated.id,
                expected_version,
            )
            if _rowcount(status) == 0:
                if not await self._exists(conn, "client_validations", validation.id):
                    raise NotFound(f"Client validation {validation.id} not found")
                raise ConcurrentModification(
                    f"Client validation {validation.id} changed since version {expected_version}"
                )
        finally:
            await conn.close()
        return updated
