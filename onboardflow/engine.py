"""Orchestration facade for onboarding workflows.

Every mutating command follows the same path: take the per-workflow lock,
load the aggregate, apply the change to a deep copy, advance the stage,
persist with the loaded version, and only then hand the copy back. A command
that fails at any point leaves the stored workflow untouched.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    NamedTuple,
    Optional,
    Tuple,
    TypeVar,
)

from .config import OnboardflowConfig, load_config
from .contracts import (
    EmployeeRef,
    ProgressSnapshot,
    StepCommandResult,
    WorkflowDetails,
)
from .errors import (
    DuplicateWorkflow,
    InvalidTransition,
    NotFound,
    OnboardingError,
    PersistenceError,
    ValidationError,
)
from .integrations import (
    BaseIntegration,
    IntegrationError,
    IntegrationRequest,
    get_integrations,
)
from .persistence import WorkflowRepository, get_repository
from .persistence.models import (
    DocumentRecord,
    ExceptionRecord,
    ExceptionType,
    Severity,
    StepRecord,
    StepStatus,
    WorkflowInstance,
    WorkflowStatus,
)
from .progress import (
    ProgressCalculator,
    overdue_steps,
    progress_percentage,
    resolve_current_stage,
    workflow_finished,
)
from .state_machine import (
    Clock,
    StepStateMachine,
    require_text,
    resolve_exception as close_exception,
    sign_document as sign_document_record,
    utcnow,
)
from .templates import TemplateRegistry, get_template_registry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _KeyedLocks:
    """Per-key ``asyncio.Lock`` instances, dropped once nobody holds or awaits them."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class _StepOutcome(NamedTuple):
    step: StepRecord
    changed: bool = True
    signal: Optional[str] = None


def _parse_severity(value: Severity | str) -> Severity:
    try:
        return Severity(value)
    except ValueError:
        allowed = ", ".join(s.value for s in Severity)
        raise ValidationError(
            f"Unknown severity '{value}', expected one of: {allowed}",
            field="severity",
        ) from None


def _parse_exception_type(value: ExceptionType | str) -> ExceptionType:
    try:
        return ExceptionType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in ExceptionType)
        raise ValidationError(
            f"Unknown exception type '{value}', expected one of: {allowed}",
            field="exception_type",
        ) from None


class WorkflowEngine:
    """Receives onboarding commands and applies them to persisted workflows."""

    def __init__(
        self,
        repository: WorkflowRepository | None = None,
        templates: TemplateRegistry | None = None,
        integrations: Dict[str, BaseIntegration] | None = None,
        config: OnboardflowConfig | None = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config or load_config()
        self._repository = repository or get_repository(config=config)
        self._templates = templates or get_template_registry(self._config)
        self._integrations = (
            integrations if integrations is not None else get_integrations()
        )
        self._clock = clock or utcnow
        self._machine = StepStateMachine(self._clock)
        self._calculator = ProgressCalculator(self._clock)
        self._locks = _KeyedLocks()

    @property
    def templates(self) -> TemplateRegistry:
        return self._templates

    # ------------------------------------------------------------------
    # Storage helpers
    async def _storage(self, action: str, operation: Awaitable[T]) -> T:
        """Await a repository call, mapping every storage failure to PersistenceError."""
        try:
            return await asyncio.wait_for(
                operation, timeout=self._config.persist_timeout
            )
        except PersistenceError as exc:
            logger.warning(f"Storage rejected {action}: {exc}")
            raise
        except OnboardingError:
            raise
        except asyncio.TimeoutError as exc:
            logger.error(f"Timed out {action}")
            raise PersistenceError(f"Timed out {action}") from exc
        except Exception as exc:
            logger.error(f"Failed {action}: {exc}")
            raise PersistenceError(f"Failed {action}: {exc}") from exc

    async def _write(
        self, action: str, write: Callable[[float], Awaitable[None]]
    ) -> None:
        """Run a repository write bounded by ``persist_timeout``.

        The write is handed a deadline that the backend enforces before it
        commits. When the wait times out the write is not abandoned: it is
        awaited until it either commits, in which case the command succeeded,
        or rolls back on the deadline. A thread-backed write can never commit
        behind a reported failure.
        """
        deadline = time.monotonic() + self._config.persist_timeout
        task = asyncio.ensure_future(write(deadline))
        try:
            await self._storage(action, asyncio.shield(task))
        except PersistenceError as exc:
            if task.done():
                raise
            try:
                await task
            except Exception:
                logger.warning(f"Write for {action} rolled back after timing out")
                raise exc
            logger.warning(f"Write for {action} committed after the wait timed out")

    async def _load(self, workflow_id: str) -> WorkflowInstance:
        workflow = await self._storage(
            f"loading workflow {workflow_id}",
            self._repository.get_workflow(workflow_id),
        )
        if workflow is None:
            raise NotFound(f"Workflow {workflow_id} not found", workflow_id=workflow_id)
        return workflow

    def _refresh(self, workflow: WorkflowInstance) -> None:
        """Apply the stage advance, completion check and derived percentage."""
        stage = resolve_current_stage(workflow)
        if stage != workflow.current_stage:
            logger.info(
                f"Workflow {workflow.id} advanced from {workflow.current_stage.value} to {stage.value}"
            )
            workflow.current_stage = stage
        if workflow.status == WorkflowStatus.ACTIVE and workflow_finished(workflow):
            workflow.status = WorkflowStatus.COMPLETED
            workflow.completed_at = self._clock()
            logger.info(f"Workflow {workflow.id} completed")
        workflow.progress_percentage = progress_percentage(workflow.steps)

    async def _apply(
        self,
        workflow_id: str,
        mutation: Callable[[WorkflowInstance], Awaitable[Tuple[T, bool]]],
    ) -> Tuple[T, WorkflowInstance]:
        """Run ``mutation`` on a copy of the workflow and persist it if it changed.

        The caller must hold the workflow lock.
        """
        current = await self._load(workflow_id)
        draft = current.model_copy(deep=True)
        result, changed = await mutation(draft)
        if changed:
            self._refresh(draft)
            await self._write(
                f"saving workflow {workflow_id}",
                lambda deadline: self._repository.save_workflow(
                    draft, current.version, deadline
                ),
            )
        return result, draft

    async def _mutate(
        self,
        workflow_id: str,
        mutation: Callable[[WorkflowInstance], Awaitable[Tuple[T, bool]]],
    ) -> Tuple[T, WorkflowInstance]:
        async with self._locks.hold(workflow_id):
            return await self._apply(workflow_id, mutation)

    async def _step_command(
        self,
        workflow_id: str,
        apply: Callable[[WorkflowInstance], Awaitable[_StepOutcome]],
    ) -> StepCommandResult:
        async def mutation(workflow: WorkflowInstance) -> Tuple[_StepOutcome, bool]:
            outcome = await apply(workflow)
            return outcome, outcome.changed

        outcome, workflow = await self._mutate(workflow_id, mutation)
        return self._command_result(workflow_id, outcome, workflow)

    def _command_result(
        self, workflow_id: str, outcome: _StepOutcome, workflow: WorkflowInstance
    ) -> StepCommandResult:
        if outcome.changed:
            logger.info(
                f"Step {outcome.step.id} of workflow {workflow_id} is now {outcome.step.status.value}"
            )
        else:
            logger.debug(
                f"Replayed command on step {outcome.step.id} of workflow {workflow_id}: {outcome.signal}"
            )
        return StepCommandResult(
            step=outcome.step,
            progress=self._calculator.snapshot(workflow),
            already_applied=not outcome.changed,
            signal=outcome.signal,
        )

    # ------------------------------------------------------------------
    # Guards
    @staticmethod
    def _require_step(workflow: WorkflowInstance, step_id: str) -> StepRecord:
        step = workflow.find_step(step_id)
        if step is None:
            raise NotFound(
                f"Step {step_id} not found in workflow {workflow.id}",
                workflow_id=workflow.id,
                step_id=step_id,
            )
        return step

    @staticmethod
    def _require_active(workflow: WorkflowInstance) -> None:
        if workflow.status != WorkflowStatus.ACTIVE:
            raise InvalidTransition(
                f"Workflow {workflow.id} is {workflow.status.value}",
                workflow_id=workflow.id,
            )

    @staticmethod
    def _require_not_cancelled(workflow: WorkflowInstance) -> None:
        if workflow.status == WorkflowStatus.CANCELLED:
            raise InvalidTransition(
                f"Workflow {workflow.id} is cancelled", workflow_id=workflow.id
            )

    @staticmethod
    def _unmet_dependencies(
        workflow: WorkflowInstance, step: StepRecord
    ) -> list[Optional[StepRecord]]:
        unmet = []
        for dep_id in step.depends_on:
            dep = workflow.find_step(dep_id)
            if dep is None or not dep.is_terminal:
                unmet.append(dep)
        return unmet

    def _start_or_block(self, workflow: WorkflowInstance, step: StepRecord) -> Optional[str]:
        """Start a pending step, or block it while prerequisites are open."""
        if step.status == StepStatus.PENDING:
            unmet = self._unmet_dependencies(workflow, step)
            if unmet:
                names = ", ".join(d.name if d else "<missing>" for d in unmet)
                self._machine.mark_blocked(step, f"Waiting on prerequisite steps: {names}")
                logger.warning(f"Step {step.id} blocked by prerequisites: {names}")
                return "blocked_by_dependencies"
        self._machine.start(step)
        return None

    def _new_exception(
        self,
        workflow: WorkflowInstance,
        title: str,
        description: str,
        severity: Severity,
        step_id: Optional[str] = None,
        exception_type: ExceptionType = ExceptionType.MANUAL,
    ) -> ExceptionRecord:
        record = ExceptionRecord(
            workflow_id=workflow.id,
            step_id=step_id,
            exception_type=exception_type,
            title=title,
            description=description,
            severity=severity,
            created_at=self._clock(),
        )
        workflow.exceptions.append(record)
        return record

    # ------------------------------------------------------------------
    # Workflow lifecycle
    async def create_workflow(
        self,
        employee_id: str,
        template_id: str,
        expected_days: Optional[int] = None,
    ) -> WorkflowInstance:
        """Instantiate a workflow for ``employee_id`` from a named template.

        Raises:
            TemplateNotFound: If ``template_id`` is not registered.
            DuplicateWorkflow: If the employee already has an active workflow.
        """
        employee_id = require_text(employee_id, "employee_id")
        template = self._templates.get(template_id)
        if expected_days is None:
            expected_days = (
                template.expected_days
                if template.expected_days is not None
                else self._config.default_expected_days
            )
        if expected_days < 0:
            raise ValidationError("expected_days must not be negative", field="expected_days")

        async with self._locks.hold(f"employee:{employee_id}"):
            active = await self._storage(
                f"listing workflows for employee {employee_id}",
                self._repository.list_workflows(
                    employee_id=employee_id, status=WorkflowStatus.ACTIVE
                ),
            )
            if active:
                raise DuplicateWorkflow(
                    f"Employee {employee_id} already has active workflow {active[0].id}",
                    employee_id=employee_id,
                    workflow_id=active[0].id,
                )
            now = self._clock()
            workflow = WorkflowInstance(
                employee_id=employee_id,
                template_name=template.name,
                expected_days=expected_days,
                started_at=now,
            )
            workflow.steps = template.instantiate(workflow.id, now)
            self._refresh(workflow)
            await self._write(
                f"creating workflow {workflow.id}",
                lambda deadline: self._repository.create_workflow(workflow, deadline),
            )
        logger.info(
            f"Created workflow {workflow.id} for employee {employee_id} "
            f"from template {template.name} with {len(workflow.steps)} steps"
        )
        return workflow

    async def get_workflow(self, workflow_id: str) -> WorkflowDetails:
        workflow = await self._load(workflow_id)
        workflow.progress_percentage = progress_percentage(workflow.steps)
        return WorkflowDetails(
            workflow=workflow,
            employee=EmployeeRef(employee_id=workflow.employee_id),
            progress=self._calculator.snapshot(workflow),
        )

    async def list_workflows(
        self,
        employee_id: Optional[str] = None,
        status: Optional[WorkflowStatus | str] = None,
    ) -> list[WorkflowInstance]:
        if status is not None:
            try:
                status = WorkflowStatus(status)
            except ValueError:
                raise ValidationError(
                    f"Unknown workflow status '{status}'", field="status"
                ) from None
        return await self._storage(
            "listing workflows",
            self._repository.list_workflows(employee_id=employee_id, status=status),
        )

    async def get_progress(self, workflow_id: str) -> ProgressSnapshot:
        """Recompute progress from the stored steps; never served from cache."""
        workflow = await self._load(workflow_id)
        return self._calculator.snapshot(workflow)

    async def cancel_workflow(self, workflow_id: str) -> WorkflowInstance:
        async def mutation(workflow: WorkflowInstance) -> Tuple[None, bool]:
            self._require_active(workflow)
            workflow.status = WorkflowStatus.CANCELLED
            return None, True

        _, workflow = await self._mutate(workflow_id, mutation)
        logger.info(f"Cancelled workflow {workflow_id}")
        return workflow

    # ------------------------------------------------------------------
    # Step commands
    async def start_step(self, workflow_id: str, step_id: str) -> StepCommandResult:
        async def apply(workflow: WorkflowInstance) -> _StepOutcome:
            step = self._require_step(workflow, step_id)
            if step.status == StepStatus.IN_PROGRESS:
                return _StepOutcome(step, changed=False, signal="already_started")
            self._require_active(workflow)
            return _StepOutcome(step, signal=self._start_or_block(workflow, step))

        return await self._step_command(workflow_id, apply)

    async def complete_step(self, workflow_id: str, step_id: str) -> StepCommandResult:
        """Complete a started step.

        Completing an already completed step is a replay: the current state is
        returned with ``already_applied`` set and nothing is written.
        """

        async def apply(workflow: WorkflowInstance) -> _StepOutcome:
            step = self._require_step(workflow, step_id)
            if step.status == StepStatus.COMPLETED:
                return _StepOutcome(step, changed=False, signal="already_completed")
            self._require_active(workflow)
            self._machine.complete(step)
            return _StepOutcome(step)

        return await self._step_command(workflow_id, apply)

    async def skip_step(
        self, workflow_id: str, step_id: str, reason: Optional[str]
    ) -> StepCommandResult:
        reason = require_text(reason, "reason")

        async def apply(workflow: WorkflowInstance) -> _StepOutcome:
            step = self._require_step(workflow, step_id)
            if step.status == StepStatus.SKIPPED:
                return _StepOutcome(step, changed=False, signal="already_skipped")
            self._require_active(workflow)
            self._machine.skip(step, reason)
            return _StepOutcome(step)

        return await self._step_command(workflow_id, apply)

    async def requeue_step(self, workflow_id: str, step_id: str) -> StepCommandResult:
        """Return a blocked or failed step to pending."""

        async def apply(workflow: WorkflowInstance) -> _StepOutcome:
            step = self._require_step(workflow, step_id)
            self._require_active(workflow)
            self._machine.requeue(step)
            return _StepOutcome(step)

        return await self._step_command(workflow_id, apply)

    async def mark_step_blocked(
        self,
        workflow_id: str,
        step_id: str,
        cause: str,
        severity: Optional[Severity | str] = None,
    ) -> StepCommandResult:
        """System trigger: block a step. Raises an exception record when ``severity`` is given."""
        cause = require_text(cause, "cause")
        severity = _parse_severity(severity) if severity is not None else None

        async def apply(workflow: WorkflowInstance) -> _StepOutcome:
            step = self._require_step(workflow, step_id)
            self._require_active(workflow)
            self._machine.mark_blocked(step, cause)
            if severity is not None:
                self._new_exception(
                    workflow,
                    f"Step blocked: {step.name}",
                    cause,
                    severity,
                    step_id=step.id,
                    exception_type=ExceptionType.BLOCKED,
                )
            logger.warning(f"Step {step.id} of workflow {workflow_id} blocked: {cause}")
            return _StepOutcome(step)

        return await self._step_command(workflow_id, apply)

    async def mark_step_failed(
        self,
        workflow_id: str,
        step_id: str,
        cause: str,
        severity: Optional[Severity | str] = Severity.HIGH,
    ) -> StepCommandResult:
        """System trigger: fail a step. Raises an exception record unless ``severity`` is None."""
        cause = require_text(cause, "cause")
        severity = _parse_severity(severity) if severity is not None else None

        async def apply(workflow: WorkflowInstance) -> _StepOutcome:
            step = self._require_step(workflow, step_id)
            self._require_active(workflow)
            self._machine.mark_failed(step, cause)
            if severity is not None:
                self._new_exception(
                    workflow,
                    f"Step failed: {step.name}",
                    cause,
                    severity,
                    step_id=step.id,
                    exception_type=ExceptionType.STEP_FAILURE,
                )
            logger.warning(f"Step {step.id} of workflow {workflow_id} failed: {cause}")
            return _StepOutcome(step)

        return await self._step_command(workflow_id, apply)

    async def trigger_integration(
        self, workflow_id: str, step_id: str, **parameters: Any
    ) -> StepCommandResult:
        """Run the external action attached to a step.

        The trigger is saved with a fresh ``integration_key`` before the
        provider is called, then the provider's answer is saved in a second
        write. If that second write fails, a retry sends the same key again so
        the provider does not repeat the action. Once an answer is recorded the
        step carries an ``external_id`` and further triggers replay as
        ``already_triggered``.

        A provider failure is recorded rather than raised: the step moves to
        failed and a high severity ``integration_failure`` exception is opened.
        """

        async def prepare(workflow: WorkflowInstance) -> Tuple[_StepOutcome, bool]:
            step = self._require_step(workflow, step_id)
            if step.external_id is not None:
                return _StepOutcome(step, changed=False, signal="already_triggered"), False
            self._require_active(workflow)
            if not step.integration_type:
                raise ValidationError(
                    f"Step {step.id} has no integration", step_id=step.id
                )
            if step.integration_type not in self._integrations:
                raise ValidationError(
                    f"No provider registered for integration '{step.integration_type}'",
                    integration_type=step.integration_type,
                )
            if step.status not in (StepStatus.PENDING, StepStatus.IN_PROGRESS):
                raise InvalidTransition(
                    f"Step {step.id} is {step.status.value} and cannot run its integration",
                    step_id=step.id,
                )
            if step.integration_key is not None:
                logger.info(
                    f"Resending integration {step.integration_type} for step {step.id}"
                )
                return _StepOutcome(step, changed=False), False
            if step.status == StepStatus.PENDING:
                blocked = self._start_or_block(workflow, step)
                if blocked:
                    return _StepOutcome(step, signal=blocked), True
            step.integration_key = uuid.uuid4().hex
            return _StepOutcome(step), True

        async with self._locks.hold(workflow_id):
            outcome, workflow = await self._apply(workflow_id, prepare)
            if outcome.signal is not None:
                return self._command_result(workflow_id, outcome, workflow)

            step = outcome.step
            request = IntegrationRequest(
                workflow_id=workflow.id,
                step_id=step.id,
                employee_id=workflow.employee_id,
                integration_type=step.integration_type,
                idempotency_key=step.integration_key,
                parameters=parameters,
            )
            failure: Optional[IntegrationError] = None
            try:
                result = await self._integrations[step.integration_type].execute(request)
            except IntegrationError as exc:
                failure = exc

            async def record(workflow: WorkflowInstance) -> Tuple[_StepOutcome, bool]:
                step = self._require_step(workflow, step_id)
                if failure is not None:
                    cause = str(failure) or f"{step.integration_type} integration failed"
                    self._machine.mark_failed(step, cause)
                    self._new_exception(
                        workflow,
                        f"{step.integration_type} integration failed",
                        cause,
                        Severity.HIGH,
                        step_id=step.id,
                        exception_type=ExceptionType.INTEGRATION_FAILURE,
                    )
                    logger.warning(
                        f"Integration {step.integration_type} failed for step {step.id}: {cause}"
                    )
                    return _StepOutcome(step, signal="integration_failed"), True

                step.external_id = result.external_id or step.integration_key
                now = self._clock()
                for document in result.documents:
                    workflow.documents.append(
                        DocumentRecord(
                            workflow_id=workflow.id,
                            step_id=step.id,
                            created_at=now,
                            **document.model_dump(),
                        )
                    )
                if result.completed:
                    self._machine.complete(step)
                    return _StepOutcome(step, signal="integration_completed"), True
                return _StepOutcome(step, signal="integration_started"), True

            outcome, workflow = await self._apply(workflow_id, record)
        return self._command_result(workflow_id, outcome, workflow)

    # ------------------------------------------------------------------
    # Exceptions
    async def raise_exception(
        self,
        workflow_id: str,
        title: str,
        description: str,
        severity: Severity | str,
        step_id: Optional[str] = None,
        exception_type: ExceptionType | str = ExceptionType.MANUAL,
    ) -> ExceptionRecord:
        """Open an exception on a workflow, optionally tied to one of its steps."""
        title = require_text(title, "title")
        severity = _parse_severity(severity)
        exception_type = _parse_exception_type(exception_type)

        async def mutation(workflow: WorkflowInstance) -> Tuple[ExceptionRecord, bool]:
            if step_id is not None:
                self._require_step(workflow, step_id)
            record = self._new_exception(
                workflow,
                title,
                description or "",
                severity,
                step_id=step_id,
                exception_type=exception_type,
            )
            return record, True

        record, _ = await self._mutate(workflow_id, mutation)
        logger.info(
            f"Raised {record.severity.value} exception {record.id} on workflow {workflow_id}"
        )
        return record

    async def resolve_exception(
        self, exception_id: str, actor: str, note: Optional[str] = None
    ) -> ExceptionRecord:
        """Resolve an open exception. Resolving twice is an InvalidTransition."""
        actor = require_text(actor, "actor")
        workflow_id = await self._storage(
            f"looking up exception {exception_id}",
            self._repository.find_workflow_id_for_exception(exception_id),
        )
        if workflow_id is None:
            raise NotFound(
                f"Exception {exception_id} not found", exception_id=exception_id
            )

        async def mutation(workflow: WorkflowInstance) -> Tuple[ExceptionRecord, bool]:
            record = workflow.find_exception(exception_id)
            if record is None:
                raise NotFound(
                    f"Exception {exception_id} not found", exception_id=exception_id
                )
            close_exception(record, actor, note, self._clock())
            return record, True

        record, _ = await self._mutate(workflow_id, mutation)
        logger.info(f"Exception {exception_id} resolved by {actor}")
        return record

    async def flag_overdue_steps(
        self, workflow_id: str, severity: Severity | str = Severity.MEDIUM
    ) -> list[ExceptionRecord]:
        """Open one overdue exception per overdue step not already flagged."""
        severity = _parse_severity(severity)

        async def mutation(
            workflow: WorkflowInstance,
        ) -> Tuple[list[ExceptionRecord], bool]:
            if workflow.status != WorkflowStatus.ACTIVE:
                return [], False
            flagged = {
                e.step_id
                for e in workflow.exceptions
                if e.is_open and e.exception_type == ExceptionType.OVERDUE
            }
            created = []
            for step in overdue_steps(workflow.steps, self._clock()):
                if step.id in flagged:
                    continue
                created.append(
                    self._new_exception(
                        workflow,
                        f"Step overdue: {step.name}",
                        f"Due {step.due_date.isoformat()}, currently {step.status.value}",
                        severity,
                        step_id=step.id,
                        exception_type=ExceptionType.OVERDUE,
                    )
                )
            return created, bool(created)

        created, _ = await self._mutate(workflow_id, mutation)
        if created:
            logger.info(f"Flagged {len(created)} overdue steps on workflow {workflow_id}")
        return created

    # ------------------------------------------------------------------
    # Documents
    async def add_document(
        self,
        workflow_id: str,
        document_name: str,
        document_type: str,
        file_type: str,
        file_size_bytes: int = 0,
        step_id: Optional[str] = None,
    ) -> DocumentRecord:
        document_name = require_text(document_name, "document_name")
        document_type = require_text(document_type, "document_type")
        file_type = require_text(file_type, "file_type")
        if file_size_bytes < 0:
            raise ValidationError(
                "file_size_bytes must not be negative", field="file_size_bytes"
            )

        async def mutation(workflow: WorkflowInstance) -> Tuple[DocumentRecord, bool]:
            self._require_not_cancelled(workflow)
            if step_id is not None:
                self._require_step(workflow, step_id)
            document = DocumentRecord(
                workflow_id=workflow.id,
                step_id=step_id,
                document_name=document_name,
                document_type=document_type,
                file_type=file_type,
                file_size_bytes=file_size_bytes,
                created_at=self._clock(),
            )
            workflow.documents.append(document)
            return document, True

        document, _ = await self._mutate(workflow_id, mutation)
        logger.info(f"Added document {document.id} to workflow {workflow_id}")
        return document

    async def sign_document(self, workflow_id: str, document_id: str) -> DocumentRecord:
        async def mutation(workflow: WorkflowInstance) -> Tuple[DocumentRecord, bool]:
            self._require_not_cancelled(workflow)
            document = workflow.find_document(document_id)
            if document is None:
                raise NotFound(
                    f"Document {document_id} not found in workflow {workflow_id}",
                    document_id=document_id,
                )
            sign_document_record(document, self._clock())
            return document, True

        document, _ = await self._mutate(workflow_id, mutation)
        logger.info(f"Document {document_id} of workflow {workflow_id} signed")
        return document


__all__ = ["WorkflowEngine"]
