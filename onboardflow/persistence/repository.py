"""Repository abstraction for onboarding workflow persistence."""

from __future__ import annotations

import time
from typing import Optional, Protocol

from ..errors import PersistenceError
from .models import WorkflowInstance, WorkflowStatus


def check_deadline(deadline: Optional[float], workflow_id: str) -> None:
    """Refuse to commit once ``deadline`` (a ``time.monotonic()`` value) has passed.

    Backends call this inside their write transaction, right before it
    commits, so a write the caller already gave up on is rolled back.
    """
    if deadline is not None and time.monotonic() > deadline:
        raise PersistenceError(
            f"Write deadline passed before committing workflow {workflow_id}",
            workflow_id=workflow_id,
        )


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    A workflow is stored as one aggregate together with its steps, exceptions
    and documents. ``save_workflow`` writes the aggregate in a single
    transaction and only succeeds when the stored version still equals
    ``expected_version``; on success the stored and in-memory versions are
    bumped by one. Writes given a ``deadline`` never commit after it.
    """

    async def create_workflow(
        self, workflow: WorkflowInstance, deadline: Optional[float] = None
    ) -> None:
        """Persist a new workflow aggregate."""

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        """Retrieve the workflow aggregate by id."""

    async def save_workflow(
        self,
        workflow: WorkflowInstance,
        expected_version: int,
        deadline: Optional[float] = None,
    ) -> None:
        """Persist an updated aggregate, guarded by ``expected_version``."""

    async def list_workflows(
        self,
        employee_id: Optional[str] = None,
        status: Optional[WorkflowStatus] = None,
    ) -> list[WorkflowInstance]:
        """Return workflow headers (without child records) matching the filters."""

    async def find_workflow_id_for_exception(self, exception_id: str) -> str | None:
        """Return the id of the workflow owning ``exception_id``."""
