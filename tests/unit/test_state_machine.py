from datetime import datetime, timezone

import pytest

from onboardflow.errors import InvalidTransition, ValidationError
from onboardflow.persistence.models import (
    DocumentRecord,
    DocumentStatus,
    ExceptionRecord,
    ResolutionStatus,
    Severity,
    Stage,
    StepRecord,
    StepStatus,
)
from onboardflow.state_machine import (
    ALLOWED_TRANSITIONS,
    StepStateMachine,
    resolve_exception,
    sign_document,
)

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _step(**kwargs) -> StepRecord:
    return StepRecord(workflow_id="wf-1", stage=Stage.PRE_BOARDING, name="Order Equipment", **kwargs)


def _machine() -> StepStateMachine:
    return StepStateMachine(clock=lambda: NOW)


def test_start_then_complete_stamps_timestamps():
    machine = _machine()
    step = _step()

    machine.start(step)
    assert step.status == StepStatus.IN_PROGRESS
    assert step.started_at == NOW

    machine.complete(step)
    assert step.status == StepStatus.COMPLETED
    assert step.completed_at == NOW


def test_complete_requires_started_step():
    step = _step()
    with pytest.raises(InvalidTransition):
        _machine().complete(step)
    assert step.status == StepStatus.PENDING
    assert step.completed_at is None


def test_skip_after_start_records_reason():
    machine = _machine()
    step = _step()
    machine.start(step)

    machine.skip(step, "Equipment already provided")

    assert step.status == StepStatus.SKIPPED
    assert step.skip_reason == "Equipment already provided"


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_skip_rejects_blank_reason(reason):
    step = _step()
    with pytest.raises(ValidationError):
        _machine().skip(step, reason)
    assert step.status == StepStatus.PENDING
    assert step.skip_reason is None


@pytest.mark.parametrize("status", [StepStatus.COMPLETED, StepStatus.SKIPPED])
def test_terminal_steps_allow_no_transitions(status):
    assert ALLOWED_TRANSITIONS[status] == frozenset()
    step = _step(status=status, skip_reason="n/a" if status == StepStatus.SKIPPED else None)
    machine = _machine()
    for target in StepStatus:
        assert not machine.can_transition(step, target)
    with pytest.raises(InvalidTransition):
        machine.start(step)
    with pytest.raises(InvalidTransition):
        machine.mark_failed(step, "late failure")


def test_blocked_step_requeues_to_pending():
    machine = _machine()
    step = _step()
    machine.start(step)
    machine.mark_blocked(step, "Waiting on vendor")
    assert step.status == StepStatus.BLOCKED
    assert step.status_reason == "Waiting on vendor"

    with pytest.raises(InvalidTransition):
        machine.start(step)

    machine.requeue(step)
    assert step.status == StepStatus.PENDING
    assert step.status_reason is None
    assert step.started_at is None


def test_failed_step_can_only_requeue():
    machine = _machine()
    step = _step()
    machine.mark_failed(step, "Vendor API down")
    assert step.status == StepStatus.FAILED
    assert machine.can_transition(step, StepStatus.PENDING)
    assert not machine.can_transition(step, StepStatus.COMPLETED)


def test_requeue_forgets_integration_request():
    machine = _machine()
    step = _step(integration_key="key-1", external_id="env-1")
    machine.start(step)
    machine.mark_failed(step, "Vendor API down")

    machine.requeue(step)
    assert step.integration_key is None
    assert step.external_id is None


def test_requeue_pending_step_is_rejected():
    with pytest.raises(InvalidTransition):
        _machine().requeue(_step())


def test_resolve_exception_once():
    record = ExceptionRecord(workflow_id="wf-1", title="Laptop delayed", severity=Severity.HIGH)
    assert record.is_open

    resolve_exception(record, "it-admin", "Replacement shipped", now=NOW)
    assert record.resolution_status == ResolutionStatus.RESOLVED
    assert record.resolved_by == "it-admin"
    assert record.resolution_note == "Replacement shipped"
    assert record.resolved_at == NOW

    with pytest.raises(InvalidTransition):
        resolve_exception(record, "it-admin")


def test_resolve_exception_requires_actor():
    record = ExceptionRecord(workflow_id="wf-1", title="Laptop delayed", severity=Severity.LOW)
    with pytest.raises(ValidationError):
        resolve_exception(record, " ")
    assert record.is_open


def test_sign_document_only_from_generated():
    doc = DocumentRecord(
        workflow_id="wf-1", document_name="offer.pdf", document_type="offer-letter", file_type="pdf"
    )
    sign_document(doc, NOW)
    assert doc.status == DocumentStatus.SIGNED
    assert doc.signed_at == NOW

    with pytest.raises(InvalidTransition):
        sign_document(doc, NOW)
