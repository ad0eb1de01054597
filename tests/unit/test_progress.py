from datetime import datetime, timedelta, timezone

import pytest

from onboardflow.persistence.models import (
    STAGE_ORDER,
    ExceptionRecord,
    Severity,
    Stage,
    StepRecord,
    StepStatus,
    WorkflowInstance,
)
from onboardflow.progress import (
    ProgressCalculator,
    count_by_status,
    days_elapsed,
    expected_progress,
    group_by_stage,
    is_on_track,
    overdue_steps,
    progress_percentage,
    resolve_current_stage,
    stage_complete,
)

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _step(stage: Stage, status: StepStatus = StepStatus.PENDING, **kwargs) -> StepRecord:
    if status == StepStatus.SKIPPED:
        kwargs.setdefault("skip_reason", "not needed")
    return StepRecord(workflow_id="wf-1", stage=stage, name=f"{stage.value} step", status=status, **kwargs)


def _workflow(steps, **kwargs) -> WorkflowInstance:
    return WorkflowInstance(
        id="wf-1", employee_id="emp-1", template_name="generic", started_at=START, steps=steps, **kwargs
    )


def test_percentage_is_zero_without_steps():
    assert progress_percentage([]) == 0


@pytest.mark.parametrize(
    "done,total,expected",
    [(1, 3, 33), (2, 3, 67), (1, 8, 13), (3, 8, 38), (4, 4, 100), (0, 5, 0)],
)
def test_percentage_rounds_half_up(done, total, expected):
    steps = [_step(Stage.DAY_1, StepStatus.COMPLETED) for _ in range(done)]
    steps += [_step(Stage.DAY_1) for _ in range(total - done)]
    assert progress_percentage(steps) == expected


def test_blocked_and_failed_do_not_count_as_done():
    steps = [
        _step(Stage.DAY_1, StepStatus.COMPLETED),
        _step(Stage.DAY_1, StepStatus.SKIPPED),
        _step(Stage.DAY_1, StepStatus.BLOCKED),
        _step(Stage.DAY_1, StepStatus.FAILED),
    ]
    assert progress_percentage(steps) == 50
    counts = count_by_status(steps)
    assert (counts.total, counts.completed, counts.skipped) == (4, 1, 1)
    assert (counts.blocked, counts.failed, counts.pending) == (1, 1, 0)


def test_group_by_stage_keeps_every_stage():
    steps = [_step(Stage.WEEK_1), _step(Stage.PRE_BOARDING), _step(Stage.WEEK_1)]
    grouped = group_by_stage(steps)
    assert list(grouped) == list(STAGE_ORDER)
    assert len(grouped[Stage.WEEK_1]) == 2
    assert grouped[Stage.DAY_1] == []


def test_stage_complete_requires_terminal_steps():
    steps = [_step(Stage.PRE_BOARDING, StepStatus.COMPLETED), _step(Stage.PRE_BOARDING, StepStatus.BLOCKED)]
    assert not stage_complete(steps, Stage.PRE_BOARDING)
    assert stage_complete(steps, Stage.DAY_1)


def test_stage_advances_to_next_stage_with_steps():
    wf = _workflow(
        [
            _step(Stage.PRE_BOARDING, StepStatus.COMPLETED),
            _step(Stage.PRE_BOARDING, StepStatus.SKIPPED),
            _step(Stage.WEEK_1),
        ]
    )
    assert resolve_current_stage(wf) == Stage.WEEK_1


def test_stage_cascades_through_completed_stages():
    wf = _workflow(
        [
            _step(Stage.PRE_BOARDING, StepStatus.COMPLETED),
            _step(Stage.DAY_1, StepStatus.COMPLETED),
            _step(Stage.MONTH_1),
        ]
    )
    assert resolve_current_stage(wf) == Stage.MONTH_1


def test_stage_stays_when_incomplete_or_last():
    open_wf = _workflow([_step(Stage.PRE_BOARDING, StepStatus.IN_PROGRESS), _step(Stage.DAY_1)])
    assert resolve_current_stage(open_wf) == Stage.PRE_BOARDING

    done_wf = _workflow([_step(Stage.PRE_BOARDING, StepStatus.COMPLETED)])
    assert resolve_current_stage(done_wf) == Stage.PRE_BOARDING


def test_stage_never_moves_backwards():
    wf = _workflow(
        [_step(Stage.PRE_BOARDING), _step(Stage.WEEK_1)],
        current_stage=Stage.WEEK_1,
    )
    assert resolve_current_stage(wf) == Stage.WEEK_1


def test_days_elapsed_counts_whole_days():
    assert days_elapsed(START, START + timedelta(days=3, hours=23)) == 3
    assert days_elapsed(START, START - timedelta(days=1)) == 0


def test_expected_progress_is_capped():
    assert expected_progress(15, 30) == 50
    assert expected_progress(40, 30) == 100
    assert expected_progress(5, 0) == 100


def test_past_deadline_but_complete_is_on_track():
    assert is_on_track(100, 40, 30)
    assert not is_on_track(90, 40, 30)
    assert is_on_track(10, 20, 30)


def test_overdue_ignores_terminal_and_undated_steps():
    now = START + timedelta(days=5)
    late = _step(Stage.PRE_BOARDING, due_date=START + timedelta(days=1))
    done = _step(Stage.PRE_BOARDING, StepStatus.COMPLETED, due_date=START + timedelta(days=1))
    future = _step(Stage.DAY_1, due_date=START + timedelta(days=7))
    undated = _step(Stage.DAY_1)
    assert overdue_steps([late, done, future, undated], now) == [late]


def test_snapshot_for_late_but_finished_workflow():
    wf = _workflow(
        [_step(Stage.PRE_BOARDING, StepStatus.COMPLETED), _step(Stage.DAY_1, StepStatus.SKIPPED)],
        expected_days=30,
    )
    calculator = ProgressCalculator(clock=lambda: START + timedelta(days=40))

    snapshot = calculator.snapshot(wf)

    assert snapshot.days_elapsed == 40
    assert snapshot.progress_percentage == 100
    assert snapshot.expected_progress == 100
    assert snapshot.is_on_track is True
    assert snapshot.stage_progress[Stage.DAY_1] == 100
    assert snapshot.stage_progress[Stage.MONTH_1] == 0


def test_snapshot_counts_open_exceptions_and_ignores_cached_percentage():
    wf = _workflow([_step(Stage.PRE_BOARDING, StepStatus.COMPLETED), _step(Stage.PRE_BOARDING)])
    wf.progress_percentage = 0
    wf.exceptions = [
        ExceptionRecord(workflow_id="wf-1", title="Missing form", severity=Severity.MEDIUM),
        ExceptionRecord(
            workflow_id="wf-1", title="Old", severity=Severity.LOW, resolution_status="resolved"
        ),
    ]

    snapshot = ProgressCalculator(clock=lambda: START).snapshot(wf)

    assert snapshot.progress_percentage == 50
    assert snapshot.open_exceptions == 1
    assert snapshot.counts.pending == 1
