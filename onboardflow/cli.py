"""Command line interface for managing onboarding workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, TypeVar

import typer

from onboardflow import OnboardingError, WorkflowEngine, get_repository, load_config
from onboardflow.constants import DEFAULT_TEMPLATE
from onboardflow.contracts import ProgressSnapshot, StepCommandResult

T = TypeVar("T")

app = typer.Typer(help="CLI for onboarding workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")
step_app = typer.Typer(help="Commands for moving steps through their lifecycle")
exception_app = typer.Typer(help="Commands for raising and resolving exceptions")

app.add_typer(workflow_app, name="workflow")
app.add_typer(step_app, name="step")
app.add_typer(exception_app, name="exception")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Logging level, defaults to the configured log_level"
    ),
) -> None:
    """Onboardflow CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _engine() -> WorkflowEngine:
    return WorkflowEngine(repository=get_repository())


def _run(operation: Awaitable[T]) -> T:
    try:
        return asyncio.run(operation)
    except OnboardingError as exc:
        typer.secho(f"Error [{exc.code}]: {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_progress(progress: ProgressSnapshot) -> None:
    counts = progress.counts
    typer.echo(
        f"Progress: {progress.progress_percentage}% "
        f"({counts.completed} completed, {counts.skipped} skipped of {counts.total})"
    )
    typer.echo(f"Stage: {progress.current_stage.value}")
    typer.echo(
        f"Day {progress.days_elapsed} of {progress.expected_days}, "
        f"expected {progress.expected_progress}%, "
        + ("on track" if progress.is_on_track else "behind schedule")
    )
    if progress.open_exceptions:
        typer.echo(f"Open exceptions: {progress.open_exceptions}")


def _echo_step_result(result: StepCommandResult) -> None:
    step = result.step
    line = f"{step.name}: {step.status.value}"
    if result.already_applied:
        line += " (already applied)"
    typer.echo(line)
    if step.status_reason:
        typer.echo(f"Reason: {step.status_reason}")
    _echo_progress(result.progress)


@workflow_app.command("create")
def workflow_create(
    employee_id: str,
    template: str = typer.Option(DEFAULT_TEMPLATE, help="Workflow template name"),
    expected_days: Optional[int] = typer.Option(
        None, help="Expected duration in days, defaults to the template's"
    ),
) -> None:
    """
    Create an onboarding workflow for an employee.

    Example:
        onboardflow workflow create emp-42 --template software-engineer
    """
    wf = _run(_engine().create_workflow(employee_id, template, expected_days))
    typer.echo(f"Created workflow {wf.id} for {wf.employee_id}")
    typer.echo(f"Template: {wf.template_name} ({len(wf.steps)} steps)")


@workflow_app.command("list")
def workflow_list(
    employee_id: Optional[str] = typer.Option(None, help="Only this employee"),
    status: Optional[str] = typer.Option(None, help="active, completed or cancelled"),
) -> None:
    """List workflows with their status, stage and progress."""
    workflows = _run(_engine().list_workflows(employee_id=employee_id, status=status))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        row: dict[str, Any] = wf.summary()
        typer.echo(
            f"{row['id']}\t{row['employee_id']}\t{row['status']}\t"
            f"{row['current_stage']}\t{row['progress_percentage']}%"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """
    Show a workflow with its steps, exceptions and documents.

    Example:
        onboardflow workflow show 0b7e...
        # Output: Workflow 0b7e...: active (employee emp-42)
        #         [pre-boarding] Send Offer Letter: completed
    """
    details = _run(_engine().get_workflow(workflow_id))
    wf = details.workflow
    typer.echo(f"Workflow {wf.id}: {wf.status.value} (employee {wf.employee_id})")
    _echo_progress(details.progress)
    for step in details.steps:
        reason = step.skip_reason or step.status_reason
        typer.echo(
            f"- {step.id} [{step.stage.value}] {step.name}: {step.status.value}"
            + (f" ({reason})" if reason else "")
        )
    for record in details.exceptions:
        typer.echo(
            f"! {record.id} {record.severity.value} {record.title}: "
            f"{record.resolution_status.value}"
        )
    for doc in details.documents:
        typer.echo(f"# {doc.id} {doc.document_name} ({doc.file_type}): {doc.status.value}")


@workflow_app.command("progress")
def workflow_progress(workflow_id: str) -> None:
    """Show progress metrics recomputed from the current steps."""
    progress = _run(_engine().get_progress(workflow_id))
    _echo_progress(progress)
    for stage, percentage in progress.stage_progress.items():
        typer.echo(f"  {stage.value}: {percentage}%")
    if progress.overdue_step_ids:
        typer.echo(f"Overdue steps: {', '.join(progress.overdue_step_ids)}")


@workflow_app.command("cancel")
def workflow_cancel(workflow_id: str) -> None:
    """Cancel an active workflow."""
    wf = _run(_engine().cancel_workflow(workflow_id))
    typer.echo(f"Workflow {wf.id}: {wf.status.value}")


@workflow_app.command("templates")
def workflow_templates() -> None:
    """List the available workflow templates."""
    registry = _engine().templates
    for name in registry.names():
        template = registry.get(name)
        typer.echo(f"{name}\t{len(template.steps)} steps\t{template.description}")


@step_app.command("start")
def step_start(workflow_id: str, step_id: str) -> None:
    """Start a pending step."""
    _echo_step_result(_run(_engine().start_step(workflow_id, step_id)))


@step_app.command("complete")
def step_complete(workflow_id: str, step_id: str) -> None:
    """Complete an in-progress step."""
    _echo_step_result(_run(_engine().complete_step(workflow_id, step_id)))


@step_app.command("skip")
def step_skip(
    workflow_id: str,
    step_id: str,
    reason: str = typer.Option(..., help="Why the step is not needed"),
) -> None:
    """Skip a step, recording the reason."""
    _echo_step_result(_run(_engine().skip_step(workflow_id, step_id, reason)))


@step_app.command("requeue")
def step_requeue(workflow_id: str, step_id: str) -> None:
    """Return a blocked or failed step to pending."""
    _echo_step_result(_run(_engine().requeue_step(workflow_id, step_id)))


@step_app.command("trigger")
def step_trigger(workflow_id: str, step_id: str) -> None:
    """Run the integration attached to a step."""
    result = _run(_engine().trigger_integration(workflow_id, step_id))
    _echo_step_result(result)
    if result.signal:
        typer.echo(f"Signal: {result.signal}")


@exception_app.command("raise")
def exception_raise(
    workflow_id: str,
    title: str,
    description: str = typer.Option("", help="Details of the problem"),
    severity: str = typer.Option("medium", help="low, medium, high or critical"),
    step_id: Optional[str] = typer.Option(None, help="Step the problem relates to"),
) -> None:
    """Raise an exception on a workflow."""
    record = _run(
        _engine().raise_exception(
            workflow_id, title, description, severity, step_id=step_id
        )
    )
    typer.echo(f"Raised exception {record.id} ({record.severity.value})")


@exception_app.command("resolve")
def exception_resolve(
    exception_id: str,
    actor: str = typer.Option(..., help="Who resolved the exception"),
    note: Optional[str] = typer.Option(None, help="Resolution note"),
) -> None:
    """Resolve an open exception."""
    record = _run(_engine().resolve_exception(exception_id, actor, note))
    typer.echo(f"Exception {record.id} resolved by {record.resolved_by}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
