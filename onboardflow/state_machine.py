"""Lifecycle rules for steps, exceptions and documents.

``StepStateMachine`` is the only code that changes ``StepRecord.status``.
It works on a single step and never touches the owning workflow; stage
advancement is run by the engine after every successful transition.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, Optional

from .errors import InvalidTransition, ValidationError
from .persistence.models import (
    DocumentRecord,
    DocumentStatus,
    ExceptionRecord,
    ResolutionStatus,
    StepRecord,
    StepStatus,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

ALLOWED_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset(
        {
            StepStatus.IN_PROGRESS,
            StepStatus.SKIPPED,
            StepStatus.BLOCKED,
            StepStatus.FAILED,
        }
    ),
    StepStatus.IN_PROGRESS: frozenset(
        {
            StepStatus.COMPLETED,
            StepStatus.SKIPPED,
            StepStatus.BLOCKED,
            StepStatus.FAILED,
        }
    ),
    StepStatus.BLOCKED: frozenset({StepStatus.PENDING}),
    StepStatus.FAILED: frozenset({StepStatus.PENDING}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} must not be blank", field=field)
    return value.strip()


class StepStateMachine:
    """Validates and applies step status transitions."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utcnow

    def can_transition(self, step: StepRecord, target: StepStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[step.status]

    def _transition(self, step: StepRecord, target: StepStatus) -> StepStatus:
        if not self.can_transition(step, target):
            raise InvalidTransition(
                f"Step {step.id} cannot move from {step.status.value} to {target.value}",
                step_id=step.id,
                current=step.status.value,
                target=target.value,
            )
        previous = step.status
        step.status = target
        logger.debug(
            f"Step {step.id} ({step.name}) {previous.value} -> {target.value}"
        )
        return previous

    def start(self, step: StepRecord) -> StepRecord:
        """Move a pending step to in-progress and stamp ``started_at``."""
        self._transition(step, StepStatus.IN_PROGRESS)
        step.started_at = self._clock()
        return step

    def complete(self, step: StepRecord) -> StepRecord:
        """Complete an in-progress step.

        A pending step has to be started first so that every completion
        carries a start timestamp.
        """
        self._transition(step, StepStatus.COMPLETED)
        step.completed_at = self._clock()
        return step

    def skip(self, step: StepRecord, reason: Optional[str]) -> StepRecord:
        """Skip a pending or in-progress step, recording why."""
        reason = require_text(reason, "reason")
        self._transition(step, StepStatus.SKIPPED)
        step.skip_reason = reason
        step.completed_at = self._clock()
        return step

    def mark_blocked(self, step: StepRecord, cause: Optional[str]) -> StepRecord:
        cause = require_text(cause, "cause")
        self._transition(step, StepStatus.BLOCKED)
        step.status_reason = cause
        return step

    def mark_failed(self, step: StepRecord, cause: Optional[str]) -> StepRecord:
        cause = require_text(cause, "cause")
        self._transition(step, StepStatus.FAILED)
        step.status_reason = cause
        return step

    def requeue(self, step: StepRecord) -> StepRecord:
        """Return a blocked or failed step to pending after remediation.

        Integration bookkeeping is cleared so the next trigger is a new request.
        """
        self._transition(step, StepStatus.PENDING)
        step.status_reason = None
        step.started_at = None
        step.integration_key = None
        step.external_id = None
        return step


def resolve_exception(
    record: ExceptionRecord,
    actor: Optional[str],
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExceptionRecord:
    """Close an open exception on behalf of ``actor``."""
    actor = require_text(actor, "actor")
    if record.resolution_status != ResolutionStatus.OPEN:
        raise InvalidTransition(
            f"Exception {record.id} is already {record.resolution_status.value}",
            exception_id=record.id,
        )
    record.resolution_status = ResolutionStatus.RESOLVED
    record.resolved_by = actor
    record.resolution_note = note.strip() if note and note.strip() else None
    record.resolved_at = now or utcnow()
    return record


def sign_document(
    document: DocumentRecord, now: Optional[datetime] = None
) -> DocumentRecord:
    """Apply the single allowed document transition, generated -> signed."""
    if document.status != DocumentStatus.GENERATED:
        raise InvalidTransition(
            f"Document {document.id} is already {document.status.value}",
            document_id=document.id,
        )
    document.status = DocumentStatus.SIGNED
    document.signed_at = now or utcnow()
    return document


__all__ = [
    "ALLOWED_TRANSITIONS",
    "StepStateMachine",
    "require_text",
    "resolve_exception",
    "sign_document",
]
