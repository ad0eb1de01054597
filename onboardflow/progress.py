"""Pure derivation of workflow progress metrics.

Nothing in this module mutates a workflow. The engine applies the stage
returned by :func:`resolve_current_stage` itself.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from .contracts import ProgressSnapshot, StepCounts
from .persistence.models import (
    STAGE_ORDER,
    TERMINAL_STATUSES,
    Stage,
    StepRecord,
    StepStatus,
    WorkflowInstance,
)
from .state_machine import Clock, utcnow

SECONDS_PER_DAY = 86400


def _round_half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def progress_percentage(steps: Sequence[StepRecord]) -> int:
    """Share of completed or skipped steps, 0 when there are no steps."""
    if not steps:
        return 0
    done = sum(1 for s in steps if s.status in TERMINAL_STATUSES)
    return _round_half_up(100 * done, len(steps))


def count_by_status(steps: Iterable[StepRecord]) -> StepCounts:
    counts = StepCounts()
    for step in steps:
        counts.total += 1
        if step.status == StepStatus.COMPLETED:
            counts.completed += 1
        elif step.status == StepStatus.SKIPPED:
            counts.skipped += 1
        elif step.status == StepStatus.IN_PROGRESS:
            counts.in_progress += 1
        elif step.status == StepStatus.PENDING:
            counts.pending += 1
        elif step.status == StepStatus.BLOCKED:
            counts.blocked += 1
        elif step.status == StepStatus.FAILED:
            counts.failed += 1
    return counts


def group_by_stage(steps: Iterable[StepRecord]) -> dict[Stage, list[StepRecord]]:
    """Group steps by stage, keeping every stage key and insertion order."""
    grouped: dict[Stage, list[StepRecord]] = {stage: [] for stage in STAGE_ORDER}
    for step in steps:
        grouped[step.stage].append(step)
    return grouped


def stage_complete(steps: Iterable[StepRecord], stage: Stage) -> bool:
    """True when every step of ``stage`` is completed or skipped."""
    return all(s.status in TERMINAL_STATUSES for s in steps if s.stage == stage)


def resolve_current_stage(workflow: WorkflowInstance) -> Stage:
    """Return the stage the workflow belongs in after its latest transition.

    Starting at ``current_stage``, move forward while the current stage is
    complete and a later stage holds at least one step. The result is never
    earlier than ``current_stage``.
    """
    grouped = group_by_stage(workflow.steps)
    position = STAGE_ORDER.index(workflow.current_stage)
    while stage_complete(workflow.steps, STAGE_ORDER[position]):
        following = next(
            (
                index
                for index in range(position + 1, len(STAGE_ORDER))
                if grouped[STAGE_ORDER[index]]
            ),
            None,
        )
        if following is None:
            break
        position = following
    return STAGE_ORDER[position]


def workflow_finished(workflow: WorkflowInstance) -> bool:
    return bool(workflow.steps) and all(s.is_terminal for s in workflow.steps)


def days_elapsed(started_at: datetime, now: datetime) -> int:
    """Whole days between ``started_at`` and ``now``, never negative."""
    seconds = (now - started_at).total_seconds()
    return max(0, int(seconds // SECONDS_PER_DAY))


def expected_progress(elapsed: int, expected_days: int) -> int:
    """Percentage a workflow on pace should have reached, capped at 100."""
    if expected_days <= 0:
        return 100
    return min(100, _round_half_up(100 * elapsed, expected_days))


def is_on_track(percentage: int, elapsed: int, expected_days: int) -> bool:
    """Within the deadline, or at least as far along as the pace requires.

    A workflow past its expected duration that is already complete stays on
    track because the pace target is capped at 100.
    """
    return elapsed <= expected_days or percentage >= expected_progress(
        elapsed, expected_days
    )


def overdue_steps(steps: Iterable[StepRecord], now: datetime) -> list[StepRecord]:
    return [
        s
        for s in steps
        if s.due_date is not None and s.due_date < now and not s.is_terminal
    ]


class ProgressCalculator:
    """Builds :class:`ProgressSnapshot` views. Safe to call on every read."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utcnow

    def snapshot(self, workflow: WorkflowInstance) -> ProgressSnapshot:
        now = self._clock()
        percentage = progress_percentage(workflow.steps)
        elapsed = days_elapsed(workflow.started_at, now)
        grouped = group_by_stage(workflow.steps)
        return ProgressSnapshot(
            workflow_id=workflow.id,
            status=workflow.status,
            current_stage=workflow.current_stage,
            progress_percentage=percentage,
            counts=count_by_status(workflow.steps),
            stage_progress={
                stage: progress_percentage(grouped[stage]) for stage in STAGE_ORDER
            },
            days_elapsed=elapsed,
            expected_days=workflow.expected_days,
            expected_progress=expected_progress(elapsed, workflow.expected_days),
            is_on_track=is_on_track(percentage, elapsed, workflow.expected_days),
            open_exceptions=sum(1 for e in workflow.exceptions if e.is_open),
            overdue_step_ids=[s.id for s in overdue_steps(workflow.steps, now)],
        )


__all__ = [
    "ProgressCalculator",
    "count_by_status",
    "days_elapsed",
    "expected_progress",
    "group_by_stage",
    "is_on_track",
    "overdue_steps",
    "progress_percentage",
    "resolve_current_stage",
    "stage_complete",
    "workflow_finished",
]
