"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, Optional

from ..errors import PersistenceError
from .models import WorkflowInstance, WorkflowStatus
from .repository import WorkflowRepository, check_deadline


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Stored aggregates are copies, so
    callers never share state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowInstance] = {}

    # ------------------------------------------------------------------
    async def create_workflow(
        self, workflow: WorkflowInstance, deadline: Optional[float] = None
    ) -> None:
        if workflow.id in self._workflows:
            raise PersistenceError(f"Workflow {workflow.id} already stored")
        check_deadline(deadline, workflow.id)
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def save_workflow(
        self,
        workflow: WorkflowInstance,
        expected_version: int,
        deadline: Optional[float] = None,
    ) -> None:
        stored = self._workflows.get(workflow.id)
        if stored is None:
            raise PersistenceError(f"Workflow {workflow.id} is not stored")
        if stored.version != expected_version:
            raise PersistenceError(
                f"Version conflict for workflow {workflow.id}: "
                f"expected {expected_version}, found {stored.version}",
                workflow_id=workflow.id,
            )
        check_deadline(deadline, workflow.id)
        copy = workflow.model_copy(deep=True)
        copy.version = expected_version + 1
        self._workflows[workflow.id] = copy
        workflow.version = expected_version + 1

    async def list_workflows(
        self,
        employee_id: Optional[str] = None,
        status: Optional[WorkflowStatus] = None,
    ) -> list[WorkflowInstance]:
        return [
            wf.model_copy(update={"steps": [], "exceptions": [], "documents": []})
            for wf in self._workflows.values()
            if (employee_id is None or wf.employee_id == employee_id)
            and (status is None or wf.status == status)
        ]

    async def find_workflow_id_for_exception(self, exception_id: str) -> str | None:
        for wf in self._workflows.values():
            if wf.find_exception(exception_id) is not None:
                return wf.id
        return None
