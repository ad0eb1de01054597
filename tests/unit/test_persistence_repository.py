from datetime import datetime, timezone

import pytest

from onboardflow.errors import PersistenceError
from onboardflow.persistence import (
    DocumentRecord,
    ExceptionRecord,
    InMemoryWorkflowRepository,
    Severity,
    SQLiteWorkflowRepository,
    Stage,
    StepRecord,
    StepStatus,
    WorkflowInstance,
    WorkflowStatus,
)

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _workflow(employee_id: str = "emp-1") -> WorkflowInstance:
    wf = WorkflowInstance(employee_id=employee_id, template_name="generic", started_at=START)
    first = StepRecord(workflow_id=wf.id, step_order=0, stage=Stage.PRE_BOARDING, name="Offer Letter")
    second = StepRecord(
        workflow_id=wf.id,
        step_order=1,
        stage=Stage.DAY_1,
        name="Office Tour",
        depends_on=[first.id],
        due_date=START,
    )
    wf.steps = [first, second]
    return wf


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryWorkflowRepository()
    else:
        repository = SQLiteWorkflowRepository(tmp_path / "wf.db")
        yield repository
        repository.close()


@pytest.mark.asyncio
async def test_repository_crud(repo):
    wf = _workflow()
    await repo.create_workflow(wf)

    loaded = await repo.get_workflow(wf.id)
    assert loaded is not None
    assert loaded.employee_id == "emp-1"
    assert loaded.version == 0
    assert [s.name for s in loaded.steps] == ["Offer Letter", "Office Tour"]
    assert loaded.steps[1].depends_on == [wf.steps[0].id]
    assert loaded.steps[1].due_date == START

    loaded.steps[0].status = StepStatus.IN_PROGRESS
    loaded.steps[0].started_at = START
    loaded.exceptions.append(
        ExceptionRecord(workflow_id=wf.id, step_id=loaded.steps[0].id, title="Late", severity=Severity.HIGH)
    )
    loaded.documents.append(
        DocumentRecord(workflow_id=wf.id, document_name="offer.pdf", document_type="offer-letter", file_type="pdf")
    )
    await repo.save_workflow(loaded, expected_version=0)
    assert loaded.version == 1

    reloaded = await repo.get_workflow(wf.id)
    assert reloaded.version == 1
    assert reloaded.steps[0].status == StepStatus.IN_PROGRESS
    assert reloaded.steps[0].started_at == START
    assert [e.title for e in reloaded.exceptions] == ["Late"]
    assert reloaded.exceptions[0].severity == Severity.HIGH
    assert [d.document_name for d in reloaded.documents] == ["offer.pdf"]

    assert await repo.find_workflow_id_for_exception(reloaded.exceptions[0].id) == wf.id
    assert await repo.find_workflow_id_for_exception("missing") is None
    assert await repo.get_workflow("missing") is None


@pytest.mark.asyncio
async def test_repository_rejects_stale_version(repo):
    wf = _workflow()
    await repo.create_workflow(wf)

    first = await repo.get_workflow(wf.id)
    second = await repo.get_workflow(wf.id)
    first.status = WorkflowStatus.CANCELLED
    await repo.save_workflow(first, expected_version=0)

    second.current_stage = Stage.DAY_1
    with pytest.raises(PersistenceError):
        await repo.save_workflow(second, expected_version=0)

    stored = await repo.get_workflow(wf.id)
    assert stored.status == WorkflowStatus.CANCELLED
    assert stored.current_stage == Stage.PRE_BOARDING


@pytest.mark.asyncio
async def test_repository_rejects_duplicate_create(repo):
    wf = _workflow()
    await repo.create_workflow(wf)
    with pytest.raises(PersistenceError):
        await repo.create_workflow(wf)


@pytest.mark.asyncio
async def test_list_workflows_filters(repo):
    active = _workflow("emp-1")
    other = _workflow("emp-2")
    done = _workflow("emp-1")
    done.status = WorkflowStatus.COMPLETED
    for wf in (active, other, done):
        await repo.create_workflow(wf)

    assert {w.id for w in await repo.list_workflows()} == {active.id, other.id, done.id}
    assert {w.id for w in await repo.list_workflows(employee_id="emp-1")} == {active.id, done.id}
    listed = await repo.list_workflows(employee_id="emp-1", status=WorkflowStatus.ACTIVE)
    assert [w.id for w in listed] == [active.id]
    assert listed[0].steps == []


@pytest.mark.asyncio
async def test_memory_repository_returns_copies():
    repo = InMemoryWorkflowRepository()
    wf = _workflow()
    await repo.create_workflow(wf)

    loaded = await repo.get_workflow(wf.id)
    loaded.steps[0].status = StepStatus.IN_PROGRESS
    wf.steps[1].status = StepStatus.BLOCKED

    stored = await repo.get_workflow(wf.id)
    assert [s.status for s in stored.steps] == [StepStatus.PENDING, StepStatus.PENDING]


@pytest.mark.asyncio
async def test_sqlite_repository_survives_reopen(tmp_path):
    db_path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(db_path)
    wf = _workflow()
    await repo.create_workflow(wf)
    repo.close()

    reopened = SQLiteWorkflowRepository(db_path)
    loaded = await reopened.get_workflow(wf.id)
    assert loaded is not None
    assert len(loaded.steps) == 2
    reopened.close()
