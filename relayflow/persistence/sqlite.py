"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

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


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    Each record is stored as its JSON document next to the columns needed
    for lookups and conditional updates.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step_index INTEGER NOT NULL,
                version INTEGER NOT NULL,
                started_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE NOT NULL,
                instance_id TEXT NOT NULL
                    REFERENCES workflow_instances(id) ON DELETE CASCADE,
                status TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS client_validations (
                id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL
                    REFERENCES workflow_instances(id) ON DELETE CASCADE,
                step_id TEXT NOT NULL,
                secure_token TEXT UNIQUE NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    async def _exists(self, table: str, record_id: str) -> bool:
        row = await asyncio.to_thread(
            self._fetchone, f"SELECT 1 FROM {table} WHERE id = ?", record_id
        )
        return row is not None

    # ------------------------------------------------------------------
    # Definitions
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflow_definitions (id, data) VALUES (?, ?)",
            definition.id,
            definition.model_dump_json(),
        )

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflow_definitions WHERE id = ?",
            workflow_id,
        )
        return WorkflowDefinition.model_validate_json(row["data"]) if row else None

    async def list_definitions(self) -> list[WorkflowDefinition]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM workflow_definitions ORDER BY rowid"
        )
        return [WorkflowDefinition.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Instances
    async def create_instance(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_instances
                (id, workflow_id, status, current_step_index, version, started_at, data)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            instance.id,
            instance.workflow_id,
            instance.status.value,
            instance.current_step_index,
            instance.version,
            instance.started_at.isoformat(),
            instance.model_dump_json(),
        )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflow_instances WHERE id = ?",
            instance_id,
        )
        return WorkflowInstance.model_validate_json(row["data"]) if row else None

    async def list_instances(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowInstance]:
        if workflow_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT data FROM workflow_instances ORDER BY started_at DESC",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT data FROM workflow_instances WHERE workflow_id = ? ORDER BY started_at DESC",
                workflow_id,
            )
        return [WorkflowInstance.model_validate_json(r["data"]) for r in rows]

    async def update_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> WorkflowInstance:
        updated = instance.model_copy(update={"version": expected_version + 1})
        changed = await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_instances
            SET status = ?, current_step_index = ?, version = ?, data = ?
            WHERE id = ? AND version = ?
            """,
            updated.status.value,
            updated.current_step_index,
            updated.version,
            updated.model_dump_json(),
            updated.id,
            expected_version,
        )
        if changed == 0:
            if not await self._exists("workflow_instances", instance.id):
                raise NotFound(f"Workflow instance {instance.id} not found")
            raise ConcurrentModification(
                f"Workflow instance {instance.id} changed since version {expected_version}"
            )
        return updated

    async def delete_instance(self, instance_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM workflow_instances WHERE id = ?", instance_id
        )

    # ------------------------------------------------------------------
    # Step executions
    async def add_step_execution(self, execution: StepExecution) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO step_executions (id, instance_id, status, data) VALUES (?, ?, ?, ?)",
            execution.id,
            execution.instance_id,
            execution.status.value,
            execution.model_dump_json(),
        )

    async def seal_step_execution(self, execution: StepExecution) -> None:
        changed = await asyncio.to_thread(
            self._execute,
            """
            UPDATE step_executions SET status = ?, data = ?
            WHERE id = ? AND status = ?
            """,
            execution.status.value,
            execution.model_dump_json(),
            execution.id,
            StepStatus.IN_PROGRESS.value,
        )
        if changed == 0:
            if not await self._exists("step_executions", execution.id):
                raise NotFound(f"Step execution {execution.id} not found")
            raise InvalidState(f"Step execution {execution.id} is already sealed")

    async def get_step_execution(self, execution_id: str) -> StepExecution | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM step_executions WHERE id = ?", execution_id
        )
        return StepExecution.model_validate_json(row["data"]) if row else None

    async def list_step_executions(self, instance_id: str) -> list[StepExecution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM step_executions WHERE instance_id = ? ORDER BY seq",
            instance_id,
        )
        return [StepExecution.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Client validations
    async def create_validation(self, validation: ClientValidation) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO client_validations
                (id, instance_id, step_id, secure_token, status, version, created_at, data)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            validation.id,
            validation.instance_id,
            validation.step_id,
            validation.secure_token,
            validation.status.value,
            validation.version,
            validation.created_at.isoformat(),
            validation.model_dump_json(),
        )

    async def get_validation(self, validation_id: str) -> ClientValidation | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM client_validations WHERE id = ?",
            validation_id,
        )
        return ClientValidation.model_validate_json(row["data"]) if row else None

    async def get_validation_by_token(self, token: str) -> ClientValidation | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM client_validations WHERE secure_token = ?",
            token,
        )
        return ClientValidation.model_validate_json(row["data"]) if row else None

    async def find_open_validation(
        self, instance_id: str, step_id: str
    ) -> ClientValidation | None:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT data FROM client_validations
            WHERE instance_id = ? AND step_id = ? AND status = ?
            ORDER BY created_at DESC LIMIT 1
            """,
            instance_id,
            step_id,
            ValidationStatus.PENDING.value,
        )
        return ClientValidation.model_validate_json(row["data"]) if row else None

    async def update_validation(
        self, validation: ClientValidation, expected_version: int
    ) -> ClientValidation:
        updated = validation.model_copy(update={"version": expected_version + 1})
        changed = await asyncio.to_thread(
            self._execute,
            """
            UPDATE client_validations SET status = ?, version = ?, data = ?
            WHERE id = ? AND version = ?
            """,
            updated.status.value,
            updated.version,
            updated.model_dump_json(),
            updated.id,
            expected_version,
        )
        if changed == 0:
            if not await self._exists("client_validations", validation.id):
                raise NotFound(f"Client validation {validation.id} not found")
            raise ConcurrentModification(
                f"Client validation {validation.id} changed since version {expected_version}"
            )
        return updated
