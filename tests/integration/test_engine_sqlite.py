import time
from datetime import datetime, timedelta, timezone

import pytest

from onboardflow.config import OnboardflowConfig
from onboardflow.engine import WorkflowEngine
from onboardflow.errors import PersistenceError
from onboardflow.persistence import SQLiteWorkflowRepository
from onboardflow.persistence.models import (
    DocumentStatus,
    Stage,
    StepStatus,
    WorkflowStatus,
)

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self) -> datetime:
        return self.now


class SlowSQLiteRepository(SQLiteWorkflowRepository):
    """Stalls inside the write thread, after the wait has given up."""

    def _update(self, wf, expected_version, deadline=None):
        time.sleep(0.3)
        super()._update(wf, expected_version, deadline)


def _engine(repo: SQLiteWorkflowRepository, clock: Clock) -> WorkflowEngine:
    return WorkflowEngine(repository=repo, config=OnboardflowConfig(), clock=clock)


@pytest.mark.asyncio
async def test_engineer_onboarding_survives_restart(tmp_path):
    db_path = tmp_path / "onboarding.db"
    clock = Clock()
    repo = SQLiteWorkflowRepository(db_path)
    engine = _engine(repo, clock)

    wf = await engine.create_workflow("emp-7", "software-engineer")
    steps = {s.name: s.id for s in wf.steps}

    await engine.trigger_integration(wf.id, steps["Send Offer Letter"])
    await engine.trigger_integration(wf.id, steps["Fetch Onboarding Documents"])
    exception = await engine.raise_exception(
        wf.id, "Visa paperwork pending", "Awaiting consulate", "critical"
    )
    repo.close()

    # a fresh process sees the same state
    clock.now = START + timedelta(days=2)
    repo = SQLiteWorkflowRepository(db_path)
    engine = _engine(repo, clock)

    details = await engine.get_workflow(wf.id)
    assert [s.id for s in details.steps] == [s.id for s in wf.steps]
    offer = next(s for s in details.steps if s.id == steps["Send Offer Letter"])
    assert offer.status == StepStatus.COMPLETED
    assert offer.external_id is not None
    assert offer.integration_key is not None
    assert {d.document_name for d in details.documents} == {
        "offer-letter.pdf",
        "Employee Handbook",
        "Code of Conduct",
    }
    assert details.progress.open_exceptions == 1
    assert details.progress.days_elapsed == 2

    resolved = await engine.resolve_exception(exception.id, "hr-admin", "Visa approved")
    assert resolved.resolved_by == "hr-admin"

    offer_doc = next(d for d in details.documents if d.document_type == "offer-letter")
    signed = await engine.sign_document(wf.id, offer_doc.id)
    assert signed.status == DocumentStatus.SIGNED

    remaining = [s for s in details.steps if not s.is_terminal]
    for step in remaining:
        if step.stage == Stage.PRE_BOARDING and step.name != "Initiate Background Check":
            await engine.skip_step(wf.id, step.id, "Handled outside the system")
    bg = await engine.trigger_integration(wf.id, steps["Initiate Background Check"])
    assert bg.step.status == StepStatus.IN_PROGRESS
    result = await engine.complete_step(wf.id, steps["Initiate Background Check"])
    assert result.progress.current_stage == Stage.DAY_1

    listed = await engine.list_workflows(employee_id="emp-7", status=WorkflowStatus.ACTIVE)
    assert [w.id for w in listed] == [wf.id]
    assert listed[0].current_stage == Stage.DAY_1
    assert listed[0].progress_percentage == result.progress.progress_percentage
    repo.close()


@pytest.mark.asyncio
async def test_timed_out_save_is_never_committed(tmp_path):
    repo = SlowSQLiteRepository(tmp_path / "slow.db")
    engine = WorkflowEngine(
        repository=repo,
        config=OnboardflowConfig(persist_timeout=0.05),
        clock=Clock(),
    )
    wf = await engine.create_workflow("emp-1", "generic")

    with pytest.raises(PersistenceError):
        await engine.start_step(wf.id, wf.steps[0].id)

    stored = await repo.get_workflow(wf.id)
    assert stored.steps[0].status == StepStatus.PENDING
    assert stored.version == 0
    repo.close()
