"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from ..errors import PersistenceError
from .models import (
    DocumentRecord,
    ExceptionRecord,
    StepRecord,
    WorkflowInstance,
    WorkflowStatus,
)
from .repository import WorkflowRepository, check_deadline

_WORKFLOW_COLUMNS = (
    "id, employee_id, template_name, status, current_stage, progress_percentage, "
    "expected_days, started_at, completed_at, version"
)
_STEP_COLUMNS = (
    "id, workflow_id, step_order, stage, name, description, integration_type, "
    "depends_on, due_date, status, started_at, completed_at, skip_reason, status_reason, "
    "integration_key, external_id"
)
_EXCEPTION_COLUMNS = (
    "id, workflow_id, step_id, exception_type, title, description, severity, "
    "resolution_status, created_at, resolved_at, resolved_by, resolution_note"
)
_DOCUMENT_COLUMNS = (
    "id, workflow_id, step_id, document_name, document_type, file_type, "
    "file_size_bytes, status, created_at, signed_at"
)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _upsert(table: str, columns: str) -> str:
    names = [c.strip() for c in columns.split(",")]
    updates = ", ".join(f"{n} = excluded.{n}" for n in names if n != "id")
    placeholders = ", ".join("?" for _ in names)
    return (
        f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) "
        f"ON CONFLICT (id) DO UPDATE SET {updates}"
    )


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS workflows (
                    id TEXT PRIMARY KEY,
                    employee_id TEXT NOT NULL,
                    template_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    current_stage TEXT NOT NULL,
                    progress_percentage INTEGER NOT NULL DEFAULT 0,
                    expected_days INTEGER NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    version INTEGER NOT NULL DEFAULT 0
                );
                CREATE INDEX IF NOT EXISTS idx_workflows_employee
                    ON workflows (employee_id, status);
                CREATE TABLE IF NOT EXISTS workflow_steps (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL REFERENCES workflows (id),
                    step_order INTEGER NOT NULL,
                    stage TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    integration_type TEXT,
                    depends_on TEXT,
                    due_date TEXT,
                    status TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    skip_reason TEXT,
                    status_reason TEXT,
                    integration_key TEXT,
                    external_id TEXT
                );
                CREATE TABLE IF NOT EXISTS workflow_exceptions (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL REFERENCES workflows (id),
                    step_id TEXT,
                    exception_type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    severity TEXT NOT NULL,
                    resolution_status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    resolved_at TEXT,
                    resolved_by TEXT,
                    resolution_note TEXT
                );
                CREATE TABLE IF NOT EXISTS workflow_documents (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL REFERENCES workflows (id),
                    step_id TEXT,
                    document_name TEXT NOT NULL,
                    document_type TEXT NOT NULL,
                    file_type TEXT NOT NULL,
                    file_size_bytes INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    signed_at TEXT
                );
                """
            )

    # ------------------------------------------------------------------
    # Row conversion
    @staticmethod
    def _workflow_params(wf: WorkflowInstance, version: int) -> tuple:
        return (
            wf.id,
            wf.employee_id,
            wf.template_name,
            wf.status.value,
            wf.current_stage.value,
            wf.progress_percentage,
            wf.expected_days,
            _iso(wf.started_at),
            _iso(wf.completed_at),
            version,
        )

    @staticmethod
    def _step_params(step: StepRecord) -> tuple:
        return (
            step.id,
            step.workflow_id,
            step.step_order,
            step.stage.value,
            step.name,
            step.description,
            step.integration_type,
            json.dumps(step.depends_on),
            _iso(step.due_date),
            step.status.value,
            _iso(step.started_at),
            _iso(step.completed_at),
            step.skip_reason,
            step.status_reason,
            step.integration_key,
            step.external_id,
        )

    @staticmethod
    def _exception_params(record: ExceptionRecord) -> tuple:
        return (
            record.id,
            record.workflow_id,
            record.step_id,
            record.exception_type.value,
            record.title,
            record.description,
            record.severity.value,
            record.resolution_status.value,
            _iso(record.created_at),
            _iso(record.resolved_at),
            record.resolved_by,
            record.resolution_note,
        )

    @staticmethod
    def _document_params(doc: DocumentRecord) -> tuple:
        return (
            doc.id,
            doc.workflow_id,
            doc.step_id,
            doc.document_name,
            doc.document_type,
            doc.file_type,
            doc.file_size_bytes,
            doc.status.value,
            _iso(doc.created_at),
            _iso(doc.signed_at),
        )

    def _write_children(self, cur: sqlite3.Cursor, wf: WorkflowInstance) -> None:
        cur.executemany(
            _upsert("workflow_steps", _STEP_COLUMNS),
            [self._step_params(s) for s in wf.steps],
        )
        cur.executemany(
            _upsert("workflow_exceptions", _EXCEPTION_COLUMNS),
            [self._exception_params(e) for e in wf.exceptions],
        )
        cur.executemany(
            _upsert("workflow_documents", _DOCUMENT_COLUMNS),
            [self._document_params(d) for d in wf.documents],
        )

    # ------------------------------------------------------------------
    # Blocking helpers, run through asyncio.to_thread
    def _insert(self, wf: WorkflowInstance, deadline: Optional[float] = None) -> None:
        with self._lock, self._conn:
            cur = self._conn.cursor()
            try:
                cur.execute(
                    f"INSERT INTO workflows ({_WORKFLOW_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    self._workflow_params(wf, wf.version),
                )
            except sqlite3.IntegrityError as exc:
                raise PersistenceError(f"Workflow {wf.id} already stored") from exc
            self._write_children(cur, wf)
            check_deadline(deadline, wf.id)

    def _update(
        self, wf: WorkflowInstance, expected_version: int, deadline: Optional[float] = None
    ) -> None:
        with self._lock, self._conn:
            cur = self._conn.cursor()
            cur.execute(
                """
                UPDATE workflows
                SET status = ?, current_stage = ?, progress_percentage = ?,
                    expected_days = ?, completed_at = ?, version = ?
                WHERE id = ? AND version = ?
                """,
                (
                    wf.status.value,
                    wf.current_stage.value,
                    wf.progress_percentage,
                    wf.expected_days,
                    _iso(wf.completed_at),
                    expected_version + 1,
                    wf.id,
                    expected_version,
                ),
            )
            if cur.rowcount != 1:
                raise PersistenceError(
                    f"Version conflict for workflow {wf.id}: expected {expected_version}",
                    workflow_id=wf.id,
                )
            self._write_children(cur, wf)
            check_deadline(deadline, wf.id)

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

    def _load(self, workflow_id: str) -> WorkflowInstance | None:
        row = self._fetchone(
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE id = ?", workflow_id
        )
        if not row:
            return None
        steps = []
        for r in self._fetchall(
            f"SELECT {_STEP_COLUMNS} FROM workflow_steps WHERE workflow_id = ? ORDER BY step_order",
            workflow_id,
        ):
            data = dict(r)
            data["depends_on"] = json.loads(data["depends_on"]) if data["depends_on"] else []
            steps.append(StepRecord.model_validate(data))
        exceptions = [
            ExceptionRecord.model_validate(dict(r))
            for r in self._fetchall(
                f"SELECT {_EXCEPTION_COLUMNS} FROM workflow_exceptions WHERE workflow_id = ? ORDER BY rowid",
                workflow_id,
            )
        ]
        documents = [
            DocumentRecord.model_validate(dict(r))
            for r in self._fetchall(
                f"SELECT {_DOCUMENT_COLUMNS} FROM workflow_documents WHERE workflow_id = ? ORDER BY rowid",
                workflow_id,
            )
        ]
        return WorkflowInstance.model_validate(
            {**dict(row), "steps": steps, "exceptions": exceptions, "documents": documents}
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(
        self, workflow: WorkflowInstance, deadline: Optional[float] = None
    ) -> None:
        await asyncio.to_thread(self._insert, workflow, deadline)

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        return await asyncio.to_thread(self._load, workflow_id)

    async def save_workflow(
        self,
        workflow: WorkflowInstance,
        expected_version: int,
        deadline: Optional[float] = None,
    ) -> None:
        await asyncio.to_thread(self._update, workflow, expected_version, deadline)
        workflow.version = expected_version + 1

    async def list_workflows(
        self,
        employee_id: Optional[str] = None,
        status: Optional[WorkflowStatus] = None,
    ) -> list[WorkflowInstance]:
        clauses = []
        params: list[Any] = []
        if employee_id is not None:
            clauses.append("employee_id = ?")
            params.append(employee_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(WorkflowStatus(status).value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows{where} ORDER BY started_at",
            *params,
        )
        return [WorkflowInstance.model_validate(dict(row)) for row in rows]

    async def find_workflow_id_for_exception(self, exception_id: str) -> str | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT workflow_id FROM workflow_exceptions WHERE id = ?",
            exception_id,
        )
        return row["workflow_id"] if row else None

    def close(self) -> None:
        self._conn.close()
