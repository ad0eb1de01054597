"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from ..errors import PersistenceError
from .models import (
    DocumentRecord,
    ExceptionRecord,
    StepRecord,
    WorkflowInstance,
    WorkflowStatus,
)
from .repository import WorkflowRepository, check_deadline


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
            CREATE TABLE IF NOT EXISTS onboarding_workflows (
                id TEXT PRIMARY KEY,
                employee_id TEXT NOT NULL,
                template_name TEXT NOT NULL,
                status TEXT NOT NULL,
                current_stage TEXT NOT NULL,
                progress_percentage INTEGER NOT NULL DEFAULT 0,
                expected_days INTEGER NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                version INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS onboarding_steps (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL REFERENCES onboarding_workflows (id),
                step_order INTEGER NOT NULL,
                stage TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                integration_type TEXT,
                depends_on JSONB,
                due_date TIMESTAMPTZ,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                skip_reason TEXT,
                status_reason TEXT,
                integration_key TEXT,
                external_id TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS onboarding_exceptions (
                seq SERIAL,
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL REFERENCES onboarding_workflows (id),
                step_id TEXT,
                exception_type TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                severity TEXT NOT NULL,
                resolution_status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                resolved_at TIMESTAMPTZ,
                resolved_by TEXT,
                resolution_note TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS onboarding_documents (
                seq SERIAL,
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL REFERENCES onboarding_workflows (id),
                step_id TEXT,
                document_name TEXT NOT NULL,
                document_type TEXT NOT NULL,
                file_type TEXT NOT NULL,
                file_size_bytes BIGINT NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                signed_at TIMESTAMPTZ
            )
            """
        )

    # ------------------------------------------------------------------
    async def _write_children(
        self, conn: asyncpg.Connection, wf: WorkflowInstance
    ) -> None:
        await conn.executemany(
            """
            INSERT INTO onboarding_steps (
                id, workflow_id, step_order, stage, name, description,
                integration_type, depends_on, due_date, status, started_at,
                completed_at, skip_reason, status_reason, integration_key, external_id
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status,
                started_at = EXCLUDED.started_at,
                completed_at = EXCLUDED.completed_at,
                skip_reason = EXCLUDED.skip_reason,
                status_reason = EXCLUDED.status_reason,
                integration_key = EXCLUDED.integration_key,
                external_id = EXCLUDED.external_id
            """,
            [
                (
                    s.id,
                    s.workflow_id,
                    s.step_order,
                    s.stage.value,
                    s.name,
                    s.description,
                    s.integration_type,
                    json.dumps(s.depends_on),
                    s.due_date,
                    s.status.value,
                    s.started_at,
                    s.completed_at,
                    s.skip_reason,
                    s.status_reason,
                    s.integration_key,
                    s.external_id,
                )
                for s in wf.steps
            ],
        )
        await conn.executemany(
            """
            INSERT INTO onboarding_exceptions (
                id, workflow_id, step_id, exception_type, title, description,
                severity, resolution_status, created_at, resolved_at,
                resolved_by, resolution_note
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            ON CONFLICT (id) DO UPDATE SET
                resolution_status = EXCLUDED.resolution_status,
                resolved_at = EXCLUDED.resolved_at,
                resolved_by = EXCLUDED.resolved_by,
                resolution_note = EXCLUDED.resolution_note
            """,
            [
                (
                    e.id,
                    e.workflow_id,
                    e.step_id,
                    e.exception_type.value,
                    e.title,
                    e.description,
                    e.severity.value,
                    e.resolution_status.value,
                    e.created_at,
                    e.resolved_at,
                    e.resolved_by,
                    e.resolution_note,
                )
                for e in wf.exceptions
            ],
        )
        await conn.executemany(
            """
            INSERT INTO onboarding_documents (
                id, workflow_id, step_id, document_name, document_type,
                file_type, file_size_bytes, status, created_at, signed_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status,
                signed_at = EXCLUDED.signed_at
            """,
            [
                (
                    d.id,
                    d.workflow_id,
                    d.step_id,
                    d.document_name,
                    d.document_type,
                    d.file_type,
                    d.file_size_bytes,
                    d.status.value,
                    d.created_at,
                    d.signed_at,
                )
                for d in wf.documents
            ],
        )

    # ------------------------------------------------------------------
    async def create_workflow(
        self, workflow: WorkflowInstance, deadline: Optional[float] = None
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                try:
                    await conn.execute(
                        """
                        INSERT INTO onboarding_workflows (
                            id, employee_id, template_name, status, current_stage,
                            progress_percentage, expected_days, started_at,
                            completed_at, version
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                        """,
                        workflow.id,
                        workflow.employee_id,
                        workflow.template_name,
                        workflow.status.value,
                        workflow.current_stage.value,
                        workflow.progress_percentage,
                        workflow.expected_days,
                        workflow.started_at,
                        workflow.completed_at,
                        workflow.version,
                    )
                except asyncpg.UniqueViolationError as exc:
                    raise PersistenceError(
                        f"Workflow {workflow.id} already stored"
                    ) from exc
                await self._write_children(conn, workflow)
                check_deadline(deadline, workflow.id)
        finally:
            await conn.close()

    async def save_workflow(
        self,
        workflow: WorkflowInstance,
        expected_version: int,
        deadline: Optional[float] = None,
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                result = await conn.execute(
                    """
                    UPDATE onboarding_workflows
                    SET status = $1, current_stage = $2, progress_percentage = $3,
                        expected_days = $4, completed_at = $5, version = $6
                    WHERE id = $7 AND version = $8
                    """,
                    workflow.status.value,
                    workflow.current_stage.value,
                    workflow.progress_percentage,
                    workflow.expected_days,
                    workflow.completed_at,
                    expected_version + 1,
                    workflow.id,
                    expected_version,
                )
                if result != "UPDATE 1":
                    raise PersistenceError(
                        f"Version conflict for workflow {workflow.id}: expected {expected_version}",
                        workflow_id=workflow.id,
                    )
                await self._write_children(conn, workflow)
                check_deadline(deadline, workflow.id)
        finally:
            await conn.close()
        workflow.version = expected_version + 1

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM onboarding_workflows WHERE id = $1", workflow_id
            )
            if not row:
                return None
            step_rows = await conn.fetch(
                "SELECT * FROM onboarding_steps WHERE workflow_id = $1 ORDER BY step_order",
                workflow_id,
            )
            exception_rows = await conn.fetch(
                "SELECT * FROM onboarding_exceptions WHERE workflow_id = $1 ORDER BY seq",
                workflow_id,
            )
            document_rows = await conn.fetch(
                "SELECT * FROM onboarding_documents WHERE workflow_id = $1 ORDER BY seq",
                workflow_id,
            )
        finally:
            await conn.close()
        steps = []
        for r in step_rows:
            data = dict(r)
            data["depends_on"] = json.loads(data["depends_on"]) if data["depends_on"] else []
            steps.append(StepRecord.model_validate(data))
        return WorkflowInstance.model_validate(
            {
                **dict(row),
                "steps": steps,
                "exceptions": [ExceptionRecord.model_validate(dict(r)) for r in exception_rows],
                "documents": [DocumentRecord.model_validate(dict(r)) for r in document_rows],
            }
        )

    async def list_workflows(
        self,
        employee_id: Optional[str] = None,
        status: Optional[WorkflowStatus] = None,
    ) -> list[WorkflowInstance]:
        clauses = []
        params: list[Any] = []
        if employee_id is not None:
            params.append(employee_id)
            clauses.append(f"employee_id = ${len(params)}")
        if status is not None:
            params.append(WorkflowStatus(status).value)
            clauses.append(f"status = ${len(params)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT * FROM onboarding_workflows{where} ORDER BY started_at",
                *params,
            )
        finally:
            await conn.close()
        return [WorkflowInstance.model_validate(dict(r)) for r in rows]

    async def find_workflow_id_for_exception(self, exception_id: str) -> str | None:
        conn = await self._connect()
        try:
            return await conn.fetchval(
                "SELECT workflow_id FROM onboarding_exceptions WHERE id = $1",
                exception_id,
            )
        finally:
            await conn.close()
