"""Data models for persisted onboarding workflow state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, Field, model_validator


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # naive timestamps are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class Stage(str, Enum):
    """Ordered onboarding phases."""

    PRE_BOARDING = "pre-boarding"
    DAY_1 = "day-1"
    WEEK_1 = "week-1"
    MONTH_1 = "month-1"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.PRE_BOARDING,
    Stage.DAY_1,
    Stage.WEEK_1,
    Stage.MONTH_1,
)


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExceptionType(str, Enum):
    """Origin of an exception record."""

    MANUAL = "manual"
    BLOCKED = "blocked"
    STEP_FAILURE = "step_failure"
    INTEGRATION_FAILURE = "integration_failure"
    OVERDUE = "overdue"


class ResolutionStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class DocumentStatus(str, Enum):
    GENERATED = "generated"
    SIGNED = "signed"


class StepRecord(BaseModel):
    """One unit of onboarding work."""

    id: str = Field(default_factory=_new_id)
    workflow_id: str
    step_order: int = 0
    stage: Stage
    name: str
    description: str = ""
    integration_type: Optional[str] = None
    depends_on: list[str] = Field(default_factory=list)
    due_date: Optional[UtcDatetime] = None
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None
    skip_reason: Optional[str] = None
    status_reason: Optional[str] = None
    integration_key: Optional[str] = Field(
        default=None, description="Idempotency key sent to the integration provider"
    )
    external_id: Optional[str] = None

    @model_validator(mode="after")
    def _skip_reason_matches_status(self) -> "StepRecord":
        skipped = self.status == StepStatus.SKIPPED
        has_reason = bool(self.skip_reason and self.skip_reason.strip())
        if skipped and not has_reason:
            raise ValueError("skipped steps require a skip_reason")
        if not skipped and self.skip_reason is not None:
            raise ValueError("skip_reason is only allowed on skipped steps")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ExceptionRecord(BaseModel):
    """A flagged problem tied to a workflow and optionally a step."""

    id: str = Field(default_factory=_new_id)
    workflow_id: str
    step_id: Optional[str] = None
    exception_type: ExceptionType = ExceptionType.MANUAL
    title: str
    description: str = ""
    severity: Severity
    resolution_status: ResolutionStatus = ResolutionStatus.OPEN
    created_at: UtcDatetime = Field(default_factory=_utcnow)
    resolved_at: Optional[UtcDatetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.resolution_status == ResolutionStatus.OPEN


class DocumentRecord(BaseModel):
    """Metadata for a generated or required onboarding document."""

    id: str = Field(default_factory=_new_id)
    workflow_id: str
    step_id: Optional[str] = None
    document_name: str
    document_type: str
    file_type: str
    file_size_bytes: int = Field(default=0, ge=0)
    status: DocumentStatus = DocumentStatus.GENERATED
    created_at: UtcDatetime = Field(default_factory=_utcnow)
    signed_at: Optional[UtcDatetime] = None


class WorkflowInstance(BaseModel):
    """Persisted onboarding workflow for a single employee.

    ``progress_percentage`` is derived from ``steps`` and is refreshed by the
    engine on every read and write; it is never the source of truth.
    """

    id: str = Field(default_factory=_new_id)
    employee_id: str
    template_name: str
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    current_stage: Stage = Stage.PRE_BOARDING
    progress_percentage: int = Field(default=0, ge=0, le=100)
    expected_days: int = 30
    started_at: UtcDatetime = Field(default_factory=_utcnow)
    completed_at: Optional[UtcDatetime] = None
    version: int = 0
    steps: list[StepRecord] = Field(default_factory=list)
    exceptions: list[ExceptionRecord] = Field(default_factory=list)
    documents: list[DocumentRecord] = Field(default_factory=list)

    def find_step(self, step_id: str) -> Optional[StepRecord]:
        return next((s for s in self.steps if s.id == step_id), None)

    def find_exception(self, exception_id: str) -> Optional[ExceptionRecord]:
        return next((e for e in self.exceptions if e.id == exception_id), None)

    def find_document(self, document_id: str) -> Optional[DocumentRecord]:
        return next((d for d in self.documents if d.id == document_id), None)

    def summary(self) -> dict[str, Any]:
        """Flat representation used by listings."""
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "template_name": self.template_name,
            "status": self.status.value,
            "current_stage": self.current_stage.value,
            "progress_percentage": self.progress_percentage,
        }
