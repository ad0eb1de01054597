"""Result contracts returned by the onboarding workflow engine."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from .persistence.models import (
    DocumentRecord,
    ExceptionRecord,
    Stage,
    StepRecord,
    WorkflowInstance,
    WorkflowStatus,
)


class StepCounts(BaseModel):
    """Step totals by status."""

    total: int = 0
    completed: int = 0
    skipped: int = 0
    in_progress: int = 0
    pending: int = 0
    blocked: int = 0
    failed: int = 0


class ProgressSnapshot(BaseModel):
    """Workflow-level metrics derived from the current step list."""

    workflow_id: str
    status: WorkflowStatus
    current_stage: Stage
    progress_percentage: int = Field(ge=0, le=100)
    counts: StepCounts
    stage_progress: dict[Stage, int] = Field(default_factory=dict)
    days_elapsed: int
    expected_days: int
    expected_progress: int
    is_on_track: bool
    open_exceptions: int
    overdue_step_ids: list[str] = Field(default_factory=list)


class StepCommandResult(BaseModel):
    """Outcome of a step command.

    ``already_applied`` is set when the command was a replay of a transition
    that already happened; nothing was persisted and no downstream side effect
    should be triggered again.
    """

    step: StepRecord
    progress: ProgressSnapshot
    already_applied: bool = False
    signal: Optional[str] = None


class EmployeeRef(BaseModel):
    """Reference to the employee record held by the HR directory."""

    employee_id: str


class WorkflowDetails(BaseModel):
    """Full view of a workflow with its owned records."""

    workflow: WorkflowInstance
    employee: EmployeeRef
    progress: ProgressSnapshot

    @property
    def steps(self) -> list[StepRecord]:
        return self.workflow.steps

    @property
    def exceptions(self) -> list[ExceptionRecord]:
        return self.workflow.exceptions

    @property
    def documents(self) -> list[DocumentRecord]:
        return self.workflow.documents


__all__ = [
    "StepCounts",
    "ProgressSnapshot",
    "StepCommandResult",
    "EmployeeRef",
    "WorkflowDetails",
]
